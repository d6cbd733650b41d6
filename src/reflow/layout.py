"""
Layout module for document reflow.

Provides:
- Page geometry data classes (glyph runs, columns, bounding boxes, blocks)
- Block type enumeration
- Column detection (page segmentation)

Coordinates are top-down: y grows towards the bottom of the page, so a
smaller y means higher on the page. Upstream extractors that report
bottom-up coordinates must flip them before handing runs over.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Tuple, Dict, Any, Sequence
from enum import Enum
import numpy as np

logger = logging.getLogger(__name__)


# ============================================================================
# Data Classes and Enums
# ============================================================================

class BlockType(Enum):
    """Types of document blocks."""
    HEADING = "heading"
    PARAGRAPH = "paragraph"
    CAPTION = "caption"
    HEADER = "header"
    FOOTER = "footer"


# Blocks kept out of the main reading flow unless explicitly requested
MARGINAL_TYPES = (BlockType.HEADER, BlockType.FOOTER)


@dataclass(frozen=True)
class TextGlyphRun:
    """One contiguous span of same-style characters at a known position."""
    text: str
    x: float
    y: float
    width: float
    height: float
    font_size: float
    font_family: str = ""
    page_number: int = 1

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        # Some extractors report zero height; fall back to the font size
        return self.y + (self.height or self.font_size)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "text": self.text,
            "x": self.x,
            "y": self.y,
            "width": self.width,
            "height": self.height,
            "font_size": self.font_size,
            "font_family": self.font_family,
            "page_number": self.page_number,
        }


@dataclass(frozen=True)
class Column:
    """A horizontal band of one page holding one reading flow."""
    x_start: float
    x_end: float

    @property
    def width(self) -> float:
        return self.x_end - self.x_start

    @property
    def center(self) -> float:
        return (self.x_start + self.x_end) / 2

    def contains(self, x: float) -> bool:
        return self.x_start <= x < self.x_end

    def to_dict(self) -> Dict[str, float]:
        return {"x_start": self.x_start, "x_end": self.x_end}


@dataclass(frozen=True)
class BoundingBox:
    """Axis-aligned box in page coordinates."""
    x_start: float
    x_end: float
    y_start: float
    y_end: float

    @property
    def width(self) -> float:
        return self.x_end - self.x_start

    @property
    def height(self) -> float:
        return self.y_end - self.y_start

    @property
    def y_mid(self) -> float:
        return (self.y_start + self.y_end) / 2

    def union(self, other: 'BoundingBox') -> 'BoundingBox':
        return BoundingBox(
            min(self.x_start, other.x_start),
            max(self.x_end, other.x_end),
            min(self.y_start, other.y_start),
            max(self.y_end, other.y_end)
        )

    @classmethod
    def from_runs(cls, runs: Sequence[TextGlyphRun]) -> 'BoundingBox':
        if not runs:
            return cls(0.0, 0.0, 0.0, 0.0)
        return cls(
            min(r.x for r in runs),
            max(r.right for r in runs),
            min(r.y for r in runs),
            max(r.bottom for r in runs)
        )

    def to_tuple(self) -> Tuple[float, float, float, float]:
        return (self.x_start, self.x_end, self.y_start, self.y_end)


@dataclass(frozen=True)
class Block:
    """
    A classified, contiguous unit of extracted text.

    Blocks reference their source glyph runs; they never own or modify them.
    """
    block_type: BlockType
    text: str
    bbox: BoundingBox
    page_number: int
    column_index: int = 0
    importance: int = 0
    font_size: float = 0.0
    runs: Tuple[TextGlyphRun, ...] = field(default=(), repr=False, compare=False)

    @property
    def is_marginal(self) -> bool:
        return self.block_type in MARGINAL_TYPES

    @property
    def is_chapter_heading(self) -> bool:
        return self.block_type == BlockType.HEADING and self.importance == 1

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.block_type.value,
            "importance": self.importance,
            "text": self.text,
            "bbox": self.bbox.to_tuple(),
            "page_number": self.page_number,
            "column_index": self.column_index,
            "font_size": round(self.font_size, 2),
            "run_count": len(self.runs),
        }


@dataclass(frozen=True)
class PageInput:
    """One page of upstream text extraction output."""
    page_number: int
    width: float
    height: float
    runs: Tuple[TextGlyphRun, ...] = ()


@dataclass(frozen=True)
class PageLayout:
    """Result of segmenting and classifying one page."""
    page_number: int
    width: float
    height: float
    columns: Tuple[Column, ...]
    blocks: Tuple[Block, ...]
    strategy: str = ""

    @property
    def num_columns(self) -> int:
        return len(self.columns)

    @property
    def content_blocks(self) -> List[Block]:
        return [b for b in self.blocks if not b.is_marginal]


# ============================================================================
# Page Segmentation
# ============================================================================

@dataclass
class SegmenterConfig:
    """Column detection thresholds."""
    # Clustering tolerance as a fraction of page width
    cluster_tolerance_ratio: float = 0.05
    # A cluster needs at least max(min_cluster_runs, min_cluster_fraction * runs)
    min_cluster_runs: int = 3
    min_cluster_fraction: float = 0.10


class PageSegmenter:
    """
    Detects reading columns on a page from glyph run x-origins.

    Runs are clustered in one dimension; small clusters are treated as noise
    (indented lines, page numbers, stray labels). Never fails: a page with no
    usable cluster is a single full-width column.
    """

    def __init__(self, config: Optional[SegmenterConfig] = None):
        self.config = config or SegmenterConfig()

    def segment(
        self,
        runs: Sequence[TextGlyphRun],
        page_width: float
    ) -> List[Column]:
        """
        Detect columns on one page.

        Args:
            runs: All glyph runs of the page
            page_width: Page width in page units

        Returns:
            Columns ordered left to right, covering [0, page_width)
        """
        if page_width <= 0:
            page_width = max((r.right for r in runs), default=0.0) or 1.0

        if not runs:
            return [Column(0.0, page_width)]

        tolerance = page_width * self.config.cluster_tolerance_ratio
        clusters = self._cluster_positions([r.x for r in runs], tolerance)

        min_items = max(
            self.config.min_cluster_runs,
            len(runs) * self.config.min_cluster_fraction
        )
        kept = [c for c in clusters if len(c) >= min_items]

        if not kept:
            logger.debug(f"No column cluster reached {min_items:.1f} runs; using full width")
            return [Column(0.0, page_width)]

        centers = [float(np.mean(c)) for c in kept]
        columns = []
        for i, center in enumerate(centers):
            x_start = 0.0 if i == 0 else (centers[i - 1] + center) / 2
            x_end = (center + centers[i + 1]) / 2 if i < len(centers) - 1 else page_width
            columns.append(Column(x_start, x_end))

        logger.debug(f"Detected {len(columns)} column(s) from {len(clusters)} x-cluster(s)")
        return columns

    @staticmethod
    def _cluster_positions(xs: Sequence[float], tolerance: float) -> List[List[float]]:
        """Chain-cluster sorted positions; a gap of `tolerance` or more splits."""
        ordered = sorted(xs)
        clusters = [[ordered[0]]]
        for x in ordered[1:]:
            if x - clusters[-1][-1] < tolerance:
                clusters[-1].append(x)
            else:
                clusters.append([x])
        return clusters


def detect_columns(
    runs: Sequence[TextGlyphRun],
    page_width: float,
    config: Optional[SegmenterConfig] = None
) -> List[Column]:
    """Convenience wrapper around PageSegmenter.segment."""
    return PageSegmenter(config).segment(runs, page_width)


def assign_column(x: float, columns: Sequence[Column]) -> int:
    """Return the index of the column holding x, or the nearest column."""
    for i, column in enumerate(columns):
        if column.contains(x):
            return i
    if not columns:
        return 0
    # Past the right edge or before the first column
    distances = [abs(x - c.center) for c in columns]
    return int(np.argmin(distances))
