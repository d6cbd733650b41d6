"""
Paragraph and block classification module.

Provides:
- Line grouping and text assembly (hyphenation repair)
- Paragraph segmentation from glyph geometry
- Block typing (heading, paragraph, caption, header, footer)

Two paragraph-detection strategies share one interface:
- "column": segment each detected column separately, read column by column
- "global": one flow over the whole page in vertical order
"""

import logging
import re
from dataclasses import dataclass
from typing import List, Optional, Sequence, Dict, Type

import numpy as np

from .layout import (
    Block,
    BlockType,
    BoundingBox,
    Column,
    PageInput,
    PageLayout,
    PageSegmenter,
    TextGlyphRun,
    assign_column,
)

logger = logging.getLogger(__name__)

_WHITESPACE_RE = re.compile(r"\s+")


# ============================================================================
# Configuration
# ============================================================================

@dataclass
class ClassifierConfig:
    """Paragraph segmentation and classification thresholds."""
    # (a) vertical gap between lines, as a multiple of the average font size
    paragraph_gap_ratio: float = 0.7
    # (b) font size difference between consecutive lines, in points
    font_change_pt: float = 1.0
    # (c) a line ending before this fraction of the expected width is short
    short_line_ratio: float = 0.7
    margin_tolerance_pt: float = 0.0
    # (d) indentation past the common margin that always starts a block
    strong_indent_pt: float = 10.0
    margin_percentile: float = 20.0
    # Runs closer than this fraction of the font size share a line
    same_line_ratio: float = 0.5
    # Horizontal gap (fraction of font size) that separates two words
    word_gap_ratio: float = 0.15
    # Font size ratio against the document average
    heading_ratio: float = 1.3
    title_ratio: float = 1.8
    # Page bands (fraction of page height) holding running headers/footers
    header_band: float = 0.10
    footer_band: float = 0.10
    caption_max_chars: int = 50
    strategy: str = "column"


# ============================================================================
# Lines and Text Assembly
# ============================================================================

@dataclass(frozen=True)
class Line:
    """Runs sharing one baseline, ordered left to right."""
    runs: tuple
    text: str

    @property
    def x(self) -> float:
        return min(r.x for r in self.runs)

    @property
    def right(self) -> float:
        return max(r.right for r in self.runs)

    @property
    def y(self) -> float:
        return min(r.y for r in self.runs)

    @property
    def bottom(self) -> float:
        return max(r.bottom for r in self.runs)

    @property
    def font_size(self) -> float:
        return float(np.mean([r.font_size for r in self.runs]))


def join_line_runs(
    runs: Sequence[TextGlyphRun],
    word_gap_ratio: float = ClassifierConfig.word_gap_ratio
) -> str:
    """
    Join the runs of one line left to right.

    A space is inserted only where the runs are visibly apart or already
    carry whitespace, so words split across runs stay whole.
    """
    parts = []
    prev = None
    for run in runs:
        if prev is not None:
            gap = run.x - prev.right
            apart = gap > word_gap_ratio * max(run.font_size, prev.font_size)
            if apart or prev.text[-1:].isspace() or run.text[:1].isspace():
                parts.append(" ")
        parts.append(run.text)
        prev = run
    return _WHITESPACE_RE.sub(" ", "".join(parts)).strip()


def join_lines(lines: Sequence[str]) -> str:
    """
    Join line texts into running text.

    Example: ["Hello wor-", "ld it is"] -> "Hello world it is"

    A trailing hyphen followed by a lowercase continuation is treated as a
    word break: the hyphen is dropped and no space is inserted.
    """
    texts = [t.strip() for t in lines if t and t.strip()]
    result = []
    for i, text in enumerate(texts):
        next_text = texts[i + 1] if i + 1 < len(texts) else None
        if next_text is not None and text.endswith("-") and next_text[:1].islower():
            result.append(text[:-1])
            continue
        result.append(text)
        if next_text is not None:
            result.append(" ")
    return "".join(result)


def group_lines(
    runs: Sequence[TextGlyphRun],
    same_line_ratio: float = ClassifierConfig.same_line_ratio,
    word_gap_ratio: float = ClassifierConfig.word_gap_ratio
) -> List[Line]:
    """Group runs into lines, top to bottom, each line left to right."""
    ordered = sorted(runs, key=lambda r: (r.y, r.x))
    groups: List[List[TextGlyphRun]] = []

    for run in ordered:
        if groups:
            anchor = groups[-1][0]
            tolerance = same_line_ratio * max(run.font_size, anchor.font_size)
            if abs(run.y - anchor.y) <= tolerance:
                groups[-1].append(run)
                continue
        groups.append([run])

    lines = []
    for group in groups:
        group.sort(key=lambda r: r.x)
        lines.append(Line(runs=tuple(group), text=join_line_runs(group, word_gap_ratio)))
    return lines


def common_left_margin(xs: Sequence[float], percentile: float = ClassifierConfig.margin_percentile) -> float:
    """Common left margin: a low percentile of line x-origins."""
    if len(xs) == 0:
        return 0.0
    return float(np.percentile(np.asarray(xs, dtype=float), percentile, method="lower"))


# ============================================================================
# Paragraph Strategies
# ============================================================================

class ParagraphStrategy:
    """
    Base paragraph-detection strategy.

    Subclasses decide how a page is split into reading flows; segmentation
    and classification are shared so results stay comparable.
    """

    name = ""

    def __init__(self, config: Optional[ClassifierConfig] = None):
        self.config = config or ClassifierConfig()

    def detect(
        self,
        page: PageInput,
        columns: Sequence[Column],
        average_font_size: float
    ) -> List[Block]:
        raise NotImplementedError

    def _segment(
        self,
        runs: Sequence[TextGlyphRun],
        flow: Column,
        average_font_size: float
    ) -> List[List[Line]]:
        """Split one reading flow into paragraphs of lines."""
        cfg = self.config
        lines = group_lines(runs, cfg.same_line_ratio, cfg.word_gap_ratio)
        if not lines:
            return []

        margin = common_left_margin([r.x for r in runs], cfg.margin_percentile)
        expected_width = flow.width if flow.width > 0 else 1.0

        segments: List[List[Line]] = [[lines[0]]]
        for prev, line in zip(lines, lines[1:]):
            gap = line.y - prev.bottom
            indent = line.x - margin

            large_gap = gap > cfg.paragraph_gap_ratio * average_font_size
            font_change = abs(line.font_size - prev.font_size) > cfg.font_change_pt
            ended_early = (prev.right - flow.x_start) / expected_width < cfg.short_line_ratio
            indented = indent > cfg.margin_tolerance_pt
            strong_indent = indent > cfg.strong_indent_pt

            if large_gap or font_change or (ended_early and indented) or strong_indent:
                segments.append([line])
            else:
                segments[-1].append(line)

        return segments

    def _build_block(
        self,
        lines: Sequence[Line],
        page: PageInput,
        column_index: int,
        average_font_size: float
    ) -> Block:
        """Merge lines into one typed Block."""
        cfg = self.config
        runs = tuple(r for line in lines for r in line.runs)
        bbox = BoundingBox.from_runs(runs)
        text = join_lines([line.text for line in lines])
        font_size = float(np.mean([r.font_size for r in runs]))

        block_type = BlockType.PARAGRAPH
        importance = 0

        ratio = font_size / average_font_size if average_font_size > 0 else 1.0
        if ratio > cfg.heading_ratio:
            block_type = BlockType.HEADING
            importance = 1 if ratio > cfg.title_ratio else 2

        if page.height > 0:
            if bbox.y_end <= page.height * cfg.header_band:
                block_type = BlockType.HEADER
                importance = 0
            elif bbox.y_start >= page.height * (1 - cfg.footer_band):
                block_type = BlockType.FOOTER
                importance = 0

        if block_type == BlockType.PARAGRAPH and len(text) < cfg.caption_max_chars:
            block_type = BlockType.CAPTION

        logger.debug(
            f"Page {page.page_number} col {column_index}: {block_type.value} "
            f"(ratio={ratio:.2f}, y={bbox.y_start:.1f}) {text[:40]!r}"
        )

        return Block(
            block_type=block_type,
            text=text,
            bbox=bbox,
            page_number=page.page_number,
            column_index=column_index,
            importance=importance,
            font_size=font_size,
            runs=runs
        )


class ColumnAwareStrategy(ParagraphStrategy):
    """Segment each column on its own; read column by column, top to bottom."""

    name = "column"

    def detect(
        self,
        page: PageInput,
        columns: Sequence[Column],
        average_font_size: float
    ) -> List[Block]:
        by_column: Dict[int, List[TextGlyphRun]] = {}
        for run in page.runs:
            by_column.setdefault(assign_column(run.x, columns), []).append(run)

        blocks = []
        for index in sorted(by_column):
            column_runs = by_column[index]
            for lines in self._segment(column_runs, columns[index], average_font_size):
                blocks.append(self._build_block(lines, page, index, average_font_size))

        blocks.sort(key=lambda b: (b.column_index, b.bbox.y_start))
        return blocks


class GlobalOrderStrategy(ParagraphStrategy):
    """Treat the whole page as one flow in vertical order."""

    name = "global"

    def detect(
        self,
        page: PageInput,
        columns: Sequence[Column],
        average_font_size: float
    ) -> List[Block]:
        flow = Column(0.0, page.width)
        blocks = [
            self._build_block(lines, page, 0, average_font_size)
            for lines in self._segment(page.runs, flow, average_font_size)
        ]
        blocks.sort(key=lambda b: b.bbox.y_start)
        return blocks


STRATEGIES: Dict[str, Type[ParagraphStrategy]] = {
    ColumnAwareStrategy.name: ColumnAwareStrategy,
    GlobalOrderStrategy.name: GlobalOrderStrategy,
}


# ============================================================================
# Block Classifier
# ============================================================================

class BlockClassifier:
    """
    Main classification interface.

    Runs column detection, then the selected paragraph strategy, and returns
    the page's Blocks in reading order.
    """

    def __init__(
        self,
        config: Optional[ClassifierConfig] = None,
        strategy: Optional[str] = None,
        segmenter: Optional[PageSegmenter] = None
    ):
        self.config = config or ClassifierConfig()
        name = strategy or self.config.strategy
        if name not in STRATEGIES:
            raise ValueError(
                f"Unknown paragraph strategy: {name!r} (expected one of {sorted(STRATEGIES)})"
            )
        self.strategy = STRATEGIES[name](self.config)
        self.segmenter = segmenter or PageSegmenter()

    def classify_page(
        self,
        page: PageInput,
        average_font_size: Optional[float] = None
    ) -> PageLayout:
        """
        Segment and classify one page.

        Args:
            page: Page dimensions and glyph runs
            average_font_size: Document-wide average font size; defaults to
                the page's own average

        Returns:
            PageLayout with columns and Blocks in reading order
        """
        runs = tuple(r for r in page.runs if r.text and r.text.strip())
        if len(runs) != len(page.runs):
            page = PageInput(page.page_number, page.width, page.height, runs)

        columns = self.segmenter.segment(runs, page.width)

        if not runs:
            return PageLayout(
                page_number=page.page_number,
                width=page.width,
                height=page.height,
                columns=tuple(columns),
                blocks=(),
                strategy=self.strategy.name
            )

        if not average_font_size:
            average_font_size = float(np.mean([r.font_size for r in runs]))

        blocks = self.strategy.detect(page, columns, average_font_size)
        return PageLayout(
            page_number=page.page_number,
            width=page.width,
            height=page.height,
            columns=tuple(columns),
            blocks=tuple(blocks),
            strategy=self.strategy.name
        )

    def classify(
        self,
        runs: Sequence[TextGlyphRun],
        page_width: float,
        page_height: float,
        average_font_size: Optional[float] = None,
        page_number: int = 1
    ) -> List[Block]:
        """Classify a bare list of runs; returns Blocks in reading order."""
        page = PageInput(page_number, page_width, page_height, tuple(runs))
        return list(self.classify_page(page, average_font_size).blocks)
