"""
Engine modules for the document reflow pipeline.
"""

from .io import load_extraction, ExtractionDump, save_json, load_json, ensure_dir
from .layout import (
    TextGlyphRun, Column, BoundingBox, Block, BlockType, PageInput, PageLayout,
    PageSegmenter, SegmenterConfig, detect_columns, assign_column,
)
from .classifier import (
    BlockClassifier, ClassifierConfig, ColumnAwareStrategy, GlobalOrderStrategy,
    join_lines, group_lines,
)
from .assembler import (
    Chapter, ChapterAssembler, AssemblerConfig, DocumentAssembler, Conversion,
    ConversionMetrics, OrderViolation, EmptyDocumentError, ConversionCancelled,
    find_order_violations, vertical_order,
)
from .export import (
    MarkupBlock, RenderedChapter, MarkupRenderer, RenderConfig, parse_markup,
    Publication, PublicationExporter, title_from_filename,
)
from .translation import (
    StructurePreservingTranslator, TranslationConfig, TranslationError,
    GoogleTranslateClient, SUPPORTED_LANGUAGES, DEFAULT_TARGET_LANGUAGE,
    get_language_name, is_language_supported,
)
from .images import ExtractedImage, ImageCorrelator, CorrelatorConfig, probe_asset

__all__ = [
    # IO
    "load_extraction", "ExtractionDump", "save_json", "load_json", "ensure_dir",
    # Layout
    "TextGlyphRun", "Column", "BoundingBox", "Block", "BlockType", "PageInput",
    "PageLayout", "PageSegmenter", "SegmenterConfig", "detect_columns", "assign_column",
    # Classification
    "BlockClassifier", "ClassifierConfig", "ColumnAwareStrategy", "GlobalOrderStrategy",
    "join_lines", "group_lines",
    # Assembly
    "Chapter", "ChapterAssembler", "AssemblerConfig", "DocumentAssembler", "Conversion",
    "ConversionMetrics", "OrderViolation", "EmptyDocumentError", "ConversionCancelled",
    "find_order_violations", "vertical_order",
    # Export
    "MarkupBlock", "RenderedChapter", "MarkupRenderer", "RenderConfig", "parse_markup",
    "Publication", "PublicationExporter", "title_from_filename",
    # Translation
    "StructurePreservingTranslator", "TranslationConfig", "TranslationError",
    "GoogleTranslateClient", "SUPPORTED_LANGUAGES", "DEFAULT_TARGET_LANGUAGE",
    "get_language_name", "is_language_supported",
    # Images
    "ExtractedImage", "ImageCorrelator", "CorrelatorConfig", "probe_asset",
]
