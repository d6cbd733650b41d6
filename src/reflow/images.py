"""
Image position correlation module.

Provides:
- Extracted image model
- Asset probing (existence, decodability, pixel size) with Pillow
- Splicing of image nodes into rendered chapters by page/vertical position

Placement: an image on page P whose top edge is at Y goes immediately before
the first node of page P whose vertical midpoint is strictly below Y (greater
y); text sharing the exact coordinate stays first. Pages without positioned
text fall back to the first node of that page, then to the first node of a
later page, then to the end of the chapter.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Tuple, Dict, Any, Sequence, Union

from PIL import Image, UnidentifiedImageError

from .export import MarkupBlock, RenderedChapter, provenance_attributes

logger = logging.getLogger(__name__)


# ============================================================================
# Data Classes
# ============================================================================

@dataclass(frozen=True)
class ExtractedImage:
    """One raster asset extracted from the source document."""
    asset_path: str
    page_number: int
    x: float = 0.0
    y: float = 0.0
    width: float = 0.0
    height: float = 0.0

    @property
    def y_end(self) -> float:
        return self.y + self.height

    def to_dict(self) -> Dict[str, Any]:
        return {
            "path": self.asset_path,
            "page": self.page_number,
            "x": self.x,
            "y": self.y,
            "width": self.width,
            "height": self.height,
        }


@dataclass
class CorrelatorConfig:
    """Image correlation options."""
    # Icons are filtered at extraction; a positive value re-applies the filter here
    min_image_size: int = 0
    verify_assets: bool = True


@dataclass
class CorrelationStats:
    """Counters for one correlator instance."""
    inserted: int = 0
    skipped_missing: int = 0
    skipped_small: int = 0
    skipped_duplicate: int = 0
    failed: int = 0

    @property
    def skipped(self) -> int:
        return self.skipped_missing + self.skipped_small + self.skipped_duplicate + self.failed

    def to_dict(self) -> Dict[str, int]:
        return {
            "inserted": self.inserted,
            "skipped_missing": self.skipped_missing,
            "skipped_small": self.skipped_small,
            "skipped_duplicate": self.skipped_duplicate,
            "failed": self.failed,
        }


# ============================================================================
# Asset Helpers
# ============================================================================

def probe_asset(path: Union[str, Path]) -> Optional[Tuple[int, int]]:
    """
    Check that an image asset exists and can be decoded.

    Args:
        path: Path to the asset

    Returns:
        (width, height) in pixels, or None if missing or unreadable
    """
    path = Path(path)
    if not path.is_file():
        return None
    try:
        with Image.open(path) as img:
            return img.size
    except (UnidentifiedImageError, OSError) as e:
        logger.warning(f"Unreadable image asset {path}: {e}")
        return None


def image_node(image: ExtractedImage) -> MarkupBlock:
    """Build the figure node for an image."""
    return MarkupBlock(
        "figure",
        provenance_attributes(image.page_number, image.y, image.y_end),
        text=f"Image page {image.page_number}",
        image_ref=image.asset_path
    )


def _insertion_index(nodes: Sequence[MarkupBlock], image: ExtractedImage) -> int:
    """Index in `nodes` before which the image belongs."""
    page = image.page_number
    on_page = [i for i, n in enumerate(nodes) if n.page_number == page]
    positioned = [i for i in on_page if nodes[i].y_mid is not None]

    if positioned:
        for i in positioned:
            if nodes[i].y_mid > image.y:
                return i
        # Below everything on the page: after its last node and any
        # trailing untagged separators
        index = positioned[-1] + 1
        while index < len(nodes) and nodes[index].page_number is None:
            index += 1
        return index

    if on_page:
        return on_page[0]

    for i, node in enumerate(nodes):
        if node.page_number is not None and node.page_number > page:
            return i
    return len(nodes)


def _owner_index(chapters: Sequence[RenderedChapter], image: ExtractedImage) -> int:
    """Index of the single chapter that receives the image."""
    page = image.page_number
    holders = [
        ci for ci, chapter in enumerate(chapters)
        if any(n.page_number == page for n in chapter.nodes)
    ]
    if holders:
        for ci in holders:
            if any(
                n.page_number == page and n.y_mid is not None and n.y_mid > image.y
                for n in chapters[ci].nodes
            ):
                return ci
        return holders[-1]

    for ci, chapter in enumerate(chapters):
        if any(n.page_number is not None and n.page_number > page for n in chapter.nodes):
            return ci
    return len(chapters) - 1


# ============================================================================
# Image Correlator
# ============================================================================

class ImageCorrelator:
    """
    Splices extracted images into rendered chapters.

    One instance serves one conversion: its registry guarantees that no asset
    is inserted twice, across all chapters. Never raises; an image that cannot
    be resolved is logged and dropped.
    """

    def __init__(self, config: Optional[CorrelatorConfig] = None):
        self.config = config or CorrelatorConfig()
        self.stats = CorrelationStats()
        self._placed = set()

    def correlate(
        self,
        chapters: Sequence[RenderedChapter],
        images: Sequence[ExtractedImage]
    ) -> List[RenderedChapter]:
        """
        Correlate images across a whole conversion.

        Args:
            chapters: Rendered chapters in reading order
            images: All extracted images of the document

        Returns:
            New chapters with image nodes spliced in
        """
        if not chapters:
            return []

        assigned: Dict[int, List[ExtractedImage]] = {}
        for image in self._accepted(images):
            try:
                owner = _owner_index(chapters, image)
            except Exception as e:
                logger.warning(f"Could not place image {image.asset_path}: {e}")
                self._release(image)
                self.stats.failed += 1
                continue
            assigned.setdefault(owner, []).append(image)

        result = []
        for ci, chapter in enumerate(chapters):
            result.append(self._splice(chapter, assigned.get(ci, [])))

        logger.info(
            f"Inserted {self.stats.inserted} image(s) into {len(assigned)} chapter(s), "
            f"skipped {self.stats.skipped}"
        )
        return result

    def correlate_chapter(
        self,
        chapter: RenderedChapter,
        images: Sequence[ExtractedImage]
    ) -> RenderedChapter:
        """Correlate images into a single chapter."""
        return self._splice(chapter, self._accepted(images))

    def _accepted(self, images: Sequence[ExtractedImage]) -> List[ExtractedImage]:
        """Validate images and claim them in the registry, in (page, y) order."""
        accepted = []
        ordered = sorted(images, key=lambda im: (im.page_number, im.y, im.x))
        for image in ordered:
            try:
                if self._validate(image):
                    self._placed.add(self._key(image))
                    accepted.append(image)
            except Exception as e:
                logger.warning(f"Dropping image {image.asset_path}: {e}")
                self.stats.failed += 1
        return accepted

    def _validate(self, image: ExtractedImage) -> bool:
        key = self._key(image)
        if key in self._placed:
            logger.debug(f"Image already placed, skipping: {image.asset_path}")
            self.stats.skipped_duplicate += 1
            return False

        if not self.config.verify_assets:
            return True

        size = probe_asset(image.asset_path)
        if size is None:
            logger.warning(f"Image asset missing or unreadable, skipping: {image.asset_path}")
            self.stats.skipped_missing += 1
            return False

        width, height = size
        if width < self.config.min_image_size or height < self.config.min_image_size:
            logger.warning(f"Image too small ({width}x{height}), skipping: {image.asset_path}")
            self.stats.skipped_small += 1
            return False

        return True

    def _splice(
        self,
        chapter: RenderedChapter,
        images: Sequence[ExtractedImage]
    ) -> RenderedChapter:
        if not images:
            return chapter

        nodes = chapter.nodes
        inserts: Dict[int, List[ExtractedImage]] = {}
        for image in images:
            try:
                index = _insertion_index(nodes, image)
            except Exception as e:
                logger.warning(f"Could not place image {image.asset_path}: {e}")
                self._release(image)
                self.stats.failed += 1
                continue
            inserts.setdefault(index, []).append(image)

        spliced = []
        for i in range(len(nodes) + 1):
            for image in sorted(inserts.get(i, []), key=lambda im: (im.page_number, im.y, im.x)):
                spliced.append(image_node(image))
                self.stats.inserted += 1
            if i < len(nodes):
                spliced.append(nodes[i])

        return chapter.with_nodes(spliced)

    def _release(self, image: ExtractedImage):
        self._placed.discard(self._key(image))

    @staticmethod
    def _key(image: ExtractedImage) -> str:
        return str(Path(image.asset_path))
