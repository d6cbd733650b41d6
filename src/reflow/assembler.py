"""
Chapter assembler module for document reflow.

Provides:
- Chapter data model
- Chapter splitting at top-level headings
- Reading-order diagnostics
- Pipeline orchestration (segment, classify, assemble, render, translate,
  correlate) with metrics and cancellation
"""

import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Dict, Any, Sequence

import numpy as np

from .classifier import BlockClassifier, ClassifierConfig
from .export import (
    DEFAULT_AUTHOR,
    MarkupRenderer,
    Publication,
    RenderConfig,
    RenderedChapter,
    title_from_filename,
)
from .images import CorrelatorConfig, ExtractedImage, ImageCorrelator, probe_asset
from .layout import Block, BlockType, BoundingBox, PageInput, PageLayout, PageSegmenter, SegmenterConfig
from .translation import (
    DEFAULT_TARGET_LANGUAGE,
    StructurePreservingTranslator,
    TranslateFn,
    TranslationConfig,
)

logger = logging.getLogger(__name__)


# ============================================================================
# Errors
# ============================================================================

class EmptyDocumentError(ValueError):
    """The document holds no text and no images at all."""


class ConversionCancelled(RuntimeError):
    """A conversion was cancelled at a phase boundary."""


# ============================================================================
# Data Classes
# ============================================================================

@dataclass(frozen=True)
class Chapter:
    """An ordered run of Blocks opened by a top-level heading."""
    title: str
    blocks: tuple = ()

    @property
    def page_numbers(self) -> List[int]:
        return sorted({b.page_number for b in self.blocks})

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "pages": self.page_numbers,
            "blocks": [b.to_dict() for b in self.blocks],
        }


@dataclass(frozen=True)
class OrderViolation:
    """Two same-page Blocks whose vertical order is inverted."""
    chapter_title: str
    page_number: int
    column_index: int
    previous_y: float
    current_y: float
    previous_text: str = ""
    current_text: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "chapter": self.chapter_title,
            "page_number": self.page_number,
            "column_index": self.column_index,
            "previous_y": round(self.previous_y, 2),
            "current_y": round(self.current_y, 2),
            "previous_text": self.previous_text[:60],
            "current_text": self.current_text[:60],
        }


@dataclass
class AssemblerConfig:
    """Chapter assembly options."""
    include_header_footer: bool = False
    implicit_title_template: str = "Page {page}"
    fallback_title: str = "Document"


@dataclass
class ConversionMetrics:
    """Metrics about one conversion."""
    pages_processed: int = 0
    runs_total: int = 0
    average_font_size: float = 0.0
    blocks_by_type: Dict[str, int] = field(default_factory=dict)
    chapters: int = 0
    images_total: int = 0
    images_inserted: int = 0
    images_skipped: int = 0
    spans_submitted: int = 0
    spans_translated: int = 0
    spans_failed: int = 0
    order_violations: int = 0
    processing_time_seconds: float = 0.0

    @property
    def blocks_total(self) -> int:
        return sum(self.blocks_by_type.values())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pages_processed": self.pages_processed,
            "runs_total": self.runs_total,
            "average_font_size": round(self.average_font_size, 2),
            "blocks": {"total": self.blocks_total, **self.blocks_by_type},
            "chapters": self.chapters,
            "images": {
                "total": self.images_total,
                "inserted": self.images_inserted,
                "skipped": self.images_skipped,
            },
            "translation": {
                "submitted": self.spans_submitted,
                "translated": self.spans_translated,
                "failed": self.spans_failed,
            },
            "order_violations": self.order_violations,
            "processing_time_seconds": round(self.processing_time_seconds, 2),
        }


@dataclass
class Conversion:
    """Complete result of converting one document."""
    source_file: str
    pages: List[PageLayout] = field(default_factory=list)
    chapters: List[Chapter] = field(default_factory=list)
    rendered: List[RenderedChapter] = field(default_factory=list)
    images: List[ExtractedImage] = field(default_factory=list)
    violations: List[OrderViolation] = field(default_factory=list)
    metrics: Optional[ConversionMetrics] = None
    language: str = DEFAULT_TARGET_LANGUAGE
    task_id: str = ""
    created_at: str = ""
    schema_version: str = "1.0"

    def __post_init__(self):
        if not self.task_id:
            self.task_id = str(uuid.uuid4())
        if not self.created_at:
            self.created_at = datetime.now().isoformat()

    def to_publication(
        self,
        title: Optional[str] = None,
        author: str = DEFAULT_AUTHOR,
        language: Optional[str] = None,
        cover: Optional[str] = None
    ) -> Publication:
        """
        Build the packaging hand-off.

        The cover defaults to the first extracted image whose asset exists.
        """
        if cover is None:
            cover = next(
                (im.asset_path for im in self.images if probe_asset(im.asset_path) is not None),
                None
            )
        return Publication(
            title=title or title_from_filename(self.source_file),
            chapters=list(self.rendered),
            author=author,
            language=language or self.language,
            cover=cover
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "task_id": self.task_id,
            "schema_version": self.schema_version,
            "source_file": self.source_file,
            "created_at": self.created_at,
            "language": self.language,
            "pages": [
                {
                    "page_number": p.page_number,
                    "width": p.width,
                    "height": p.height,
                    "strategy": p.strategy,
                    "columns": [c.to_dict() for c in p.columns],
                    "blocks": [b.to_dict() for b in p.blocks],
                }
                for p in self.pages
            ],
            "chapters": [
                {"title": r.title, "blocks": len(c.blocks), "image_count": r.image_count}
                for c, r in zip(self.chapters, self.rendered)
            ],
            "metrics": self.metrics.to_dict() if self.metrics else {},
            "diagnostics": {"order_violations": [v.to_dict() for v in self.violations]},
        }


# ============================================================================
# Chapter Assembly
# ============================================================================

def find_order_violations(chapter: Chapter) -> List[OrderViolation]:
    """Find same-page Blocks whose vertical start decreases in reading order."""
    last_seen: Dict[int, Block] = {}
    violations = []
    for block in chapter.blocks:
        previous = last_seen.get(block.page_number)
        if previous is not None and block.bbox.y_start < previous.bbox.y_start:
            violations.append(OrderViolation(
                chapter_title=chapter.title,
                page_number=block.page_number,
                column_index=block.column_index,
                previous_y=previous.bbox.y_start,
                current_y=block.bbox.y_start,
                previous_text=previous.text,
                current_text=block.text
            ))
        last_seen[block.page_number] = block
    return violations


def vertical_order(blocks: Sequence[Block]) -> List[Block]:
    """
    Order one page's Blocks top to bottom.

    The sort is stable, so Blocks starting at the same height keep their
    column order.
    """
    return sorted(blocks, key=lambda b: b.bbox.y_start)


class ChapterAssembler:
    """
    Splits the document's Blocks into Chapters.

    A level-1 heading closes the open chapter and opens a new one titled by
    its text. Content before the first heading goes into an implicit chapter
    titled by its page. Header/footer Blocks are dropped unless requested.
    """

    def __init__(self, config: Optional[AssemblerConfig] = None):
        self.config = config or AssemblerConfig()

    def assemble(self, blocks: Sequence[Block]) -> List[Chapter]:
        """
        Assemble chapters.

        Args:
            blocks: All Blocks in document reading order

        Returns:
            Non-empty list of Chapters, each holding at least one Block
        """
        chapters: List[Chapter] = []
        title: Optional[str] = None
        current: List[Block] = []

        for block in blocks:
            if block.is_marginal and not self.config.include_header_footer:
                continue

            if block.is_chapter_heading:
                if current:
                    chapters.append(Chapter(title, tuple(current)))
                title = block.text.strip() or self.config.fallback_title
                current = [block]
                continue

            if title is None:
                title = self.config.implicit_title_template.format(page=block.page_number)
            current.append(block)

        if current:
            chapters.append(Chapter(title, tuple(current)))

        if not chapters:
            first_page = min((b.page_number for b in blocks), default=1)
            logger.warning("No main-flow content; emitting a single empty chapter")
            empty = Block(
                block_type=BlockType.PARAGRAPH,
                text="",
                bbox=BoundingBox(0.0, 0.0, 0.0, 0.0),
                page_number=first_page
            )
            chapters.append(Chapter(self.config.fallback_title, (empty,)))

        for chapter in chapters:
            for violation in find_order_violations(chapter):
                logger.warning(
                    f"Reading-order inversion in '{chapter.title}' on page "
                    f"{violation.page_number} (column {violation.column_index}): "
                    f"y {violation.previous_y:.1f} -> {violation.current_y:.1f}"
                )

        logger.info(f"Assembled {len(chapters)} chapter(s) from {len(blocks)} block(s)")
        return chapters


# ============================================================================
# Document Assembler
# ============================================================================

class DocumentAssembler:
    """
    Orchestrates the reflow pipeline for one document.

    Coordinates:
    - Column detection and block classification, page by page
    - Chapter assembly
    - Markup rendering
    - Optional translation
    - Optional image correlation

    Each call to `convert` owns all of its intermediate structures; one
    instance may serve several conversions.
    """

    def __init__(
        self,
        segmenter_config: Optional[SegmenterConfig] = None,
        classifier_config: Optional[ClassifierConfig] = None,
        assembler_config: Optional[AssemblerConfig] = None,
        render_config: Optional[RenderConfig] = None,
        translation_config: Optional[TranslationConfig] = None,
        correlator_config: Optional[CorrelatorConfig] = None,
        strategy: Optional[str] = None,
        include_images: bool = True
    ):
        self.segmenter_config = segmenter_config or SegmenterConfig()
        self.classifier_config = classifier_config or ClassifierConfig()
        self.assembler_config = assembler_config or AssemblerConfig()
        self.render_config = render_config or RenderConfig()
        self.translation_config = translation_config or TranslationConfig()
        self.correlator_config = correlator_config or CorrelatorConfig()
        self.strategy = strategy
        self.include_images = include_images

        # Initialize components lazily
        self._classifier = None
        self._chapter_assembler = None
        self._renderer = None

    @property
    def classifier(self) -> BlockClassifier:
        if self._classifier is None:
            self._classifier = BlockClassifier(
                config=self.classifier_config,
                strategy=self.strategy,
                segmenter=PageSegmenter(self.segmenter_config)
            )
        return self._classifier

    @property
    def chapter_assembler(self) -> ChapterAssembler:
        if self._chapter_assembler is None:
            self._chapter_assembler = ChapterAssembler(self.assembler_config)
        return self._chapter_assembler

    @property
    def renderer(self) -> MarkupRenderer:
        if self._renderer is None:
            self._renderer = MarkupRenderer(self.render_config)
        return self._renderer

    def process_page(self, page: PageInput, average_font_size: Optional[float] = None) -> PageLayout:
        """Segment and classify a single page."""
        logger.info(f"Processing page {page.page_number}")
        layout = self.classifier.classify_page(page, average_font_size)
        logger.debug(
            f"Page {page.page_number}: {layout.num_columns} column(s), {len(layout.blocks)} block(s)"
        )
        return layout

    def convert(
        self,
        pages: Sequence[PageInput],
        images: Sequence[ExtractedImage] = (),
        source_file: str = "",
        translate_fn: Optional[TranslateFn] = None,
        language: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None
    ) -> Conversion:
        """
        Convert a complete document.

        Args:
            pages: Pages with their glyph runs
            images: Extracted images of the document
            source_file: Original source file path
            translate_fn: Optional text translation function
            language: Language of the produced text (defaults to the
                translation target when translating)
            cancel_event: Optional event checked at every phase boundary

        Returns:
            Conversion with chapters, rendered markup, metrics and diagnostics

        Raises:
            EmptyDocumentError: If there is no text and no image at all
            ConversionCancelled: If cancel_event is set at a phase boundary
        """
        start_time = time.time()
        images = list(images)
        ordered_pages = sorted(pages, key=lambda p: p.page_number)

        text_runs = [r for p in ordered_pages for r in p.runs if r.text and r.text.strip()]
        if not text_runs and not images:
            raise EmptyDocumentError(
                f"No text and no images found in document: {source_file or '<input>'}"
            )

        average_font_size = float(np.mean([r.font_size for r in text_runs])) if text_runs else 0.0
        metrics = ConversionMetrics(
            runs_total=len(text_runs),
            average_font_size=average_font_size,
            images_total=len(images)
        )

        # Segmentation and classification
        layouts = []
        for page in ordered_pages:
            self._check_cancelled(cancel_event, "segmentation")
            layouts.append(self.process_page(page, average_font_size or None))
        metrics.pages_processed = len(layouts)

        blocks = [b for layout in layouts for b in vertical_order(layout.blocks)]
        for block in blocks:
            key = block.block_type.value
            metrics.blocks_by_type[key] = metrics.blocks_by_type.get(key, 0) + 1

        # Assembly
        self._check_cancelled(cancel_event, "assembly")
        chapters = self.chapter_assembler.assemble(blocks)
        violations = [v for c in chapters for v in find_order_violations(c)]

        # Rendering
        self._check_cancelled(cancel_event, "rendering")
        rendered = [self.renderer.render(c) for c in chapters]

        # Translation
        if translate_fn is not None:
            self._check_cancelled(cancel_event, "translation")
            translator = StructurePreservingTranslator(translate_fn, self.translation_config)
            rendered = translator.translate_chapters(rendered)
            metrics.spans_submitted = translator.stats.submitted
            metrics.spans_translated = translator.stats.translated
            metrics.spans_failed = translator.stats.failed
            logger.info(
                f"Translated {translator.stats.translated}/{translator.stats.submitted} span(s)"
            )

        # Image correlation
        if self.include_images and images:
            self._check_cancelled(cancel_event, "correlation")
            correlator = ImageCorrelator(self.correlator_config)
            rendered = correlator.correlate(rendered, images)
            metrics.images_inserted = correlator.stats.inserted
            metrics.images_skipped = correlator.stats.skipped

        self._check_cancelled(cancel_event, "hand-off")

        metrics.chapters = len(chapters)
        metrics.order_violations = len(violations)
        metrics.processing_time_seconds = time.time() - start_time

        if language is None:
            language = self.translation_config.target_lang if translate_fn is not None else "und"

        logger.info(
            f"Converted {metrics.pages_processed} page(s) into {metrics.chapters} chapter(s) "
            f"in {metrics.processing_time_seconds:.2f}s"
        )

        return Conversion(
            source_file=source_file,
            pages=layouts,
            chapters=chapters,
            rendered=rendered,
            images=images,
            violations=violations,
            metrics=metrics,
            language=language
        )

    @staticmethod
    def _check_cancelled(cancel_event: Optional[threading.Event], phase: str):
        if cancel_event is not None and cancel_event.is_set():
            logger.warning(f"Conversion cancelled before {phase}")
            raise ConversionCancelled(f"Conversion cancelled before {phase}")
