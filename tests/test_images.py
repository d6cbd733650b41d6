"""
Tests for image asset probing and position correlation.
"""

import pytest
import sys
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))


def text_node(text, page, y_start, y_end, tag="p"):
    from reflow.export import MarkupBlock, provenance_attributes
    return MarkupBlock(tag, provenance_attributes(page, y_start, y_end), text)


@pytest.fixture
def asset_factory(tmp_path):
    """Write real PNG files with Pillow."""
    from PIL import Image

    def make(name, size=(64, 64)):
        path = tmp_path / name
        Image.new("RGB", size, "gray").save(path)
        return str(path)

    return make


@pytest.fixture
def chapter():
    from reflow.export import RenderedChapter
    return RenderedChapter("Chapter", (
        text_node("top", 1, 100, 120),
        text_node("bottom", 1, 300, 320),
        text_node("next page", 2, 100, 120),
    ))


@pytest.fixture
def correlator():
    from reflow.images import ImageCorrelator
    return ImageCorrelator()


def texts(chapter):
    return [n.image_ref if n.is_image else n.text for n in chapter.nodes]


class TestProbeAsset:
    """Test asset probing."""

    def test_existing_image(self, asset_factory):
        """Test size of a readable image."""
        from reflow.images import probe_asset

        assert probe_asset(asset_factory("a.png", (80, 40))) == (80, 40)

    def test_missing_image(self, tmp_path):
        """Test a missing asset."""
        from reflow.images import probe_asset

        assert probe_asset(tmp_path / "nope.png") is None

    def test_unreadable_image(self, tmp_path):
        """Test a file that is not an image."""
        from reflow.images import probe_asset

        path = tmp_path / "fake.png"
        path.write_text("not an image")

        assert probe_asset(path) is None


class TestPlacement:
    """Test image placement within a chapter."""

    def test_image_between_text_by_position(self, chapter, correlator, asset_factory):
        """Test insertion before the first lower node on the same page."""
        from reflow.images import ExtractedImage

        a = asset_factory("a.png")
        result = correlator.correlate_chapter(chapter, [ExtractedImage(a, 1, 72, 200, 100, 50)])

        assert texts(result) == ["top", a, "bottom", "next page"]

    def test_tie_places_text_first(self, chapter, correlator, asset_factory):
        """Test that an image at a node's midpoint goes after that node."""
        from reflow.images import ExtractedImage

        a = asset_factory("a.png")
        result = correlator.correlate_chapter(chapter, [ExtractedImage(a, 1, 72, 110, 100, 50)])

        assert texts(result) == ["top", a, "bottom", "next page"]

    def test_image_above_all_text_on_page(self, chapter, correlator, asset_factory):
        """Test insertion at the top of its page."""
        from reflow.images import ExtractedImage

        a = asset_factory("a.png")
        result = correlator.correlate_chapter(chapter, [ExtractedImage(a, 2, 72, 50, 100, 30)])

        assert texts(result) == ["top", "bottom", a, "next page"]

    def test_image_below_all_text_on_page(self, chapter, correlator, asset_factory):
        """Test insertion after the last node of its page."""
        from reflow.images import ExtractedImage

        a = asset_factory("a.png")
        result = correlator.correlate_chapter(chapter, [ExtractedImage(a, 1, 72, 500, 100, 30)])

        assert texts(result) == ["top", "bottom", a, "next page"]

    def test_same_page_images_keep_vertical_order(self, chapter, correlator, asset_factory):
        """Test several images in one gap."""
        from reflow.images import ExtractedImage

        a = asset_factory("a.png")
        b = asset_factory("b.png")
        images = [ExtractedImage(b, 1, 72, 250, 100, 100), ExtractedImage(a, 1, 72, 150, 100, 100)]

        result = correlator.correlate_chapter(chapter, images)

        assert texts(result) == ["top", a, b, "bottom", "next page"]

    def test_page_without_text(self, correlator, asset_factory):
        """Test fallback to the first node of a later page, then the end."""
        from reflow.export import RenderedChapter
        from reflow.images import ExtractedImage

        chapter = RenderedChapter("c", (text_node("p1", 1, 100, 120), text_node("p4", 4, 100, 120)))
        a = asset_factory("a.png")
        b = asset_factory("b.png")

        result = correlator.correlate_chapter(
            chapter, [ExtractedImage(a, 3, 0, 10), ExtractedImage(b, 9, 0, 10)]
        )

        assert texts(result) == ["p1", a, "p4", b]

    def test_image_after_heading_separator(self, correlator, asset_factory):
        """Test that a trailing rule stays with its heading."""
        from reflow.export import MarkupBlock, RenderedChapter
        from reflow.images import ExtractedImage

        chapter = RenderedChapter("c", (text_node("Title", 1, 100, 120, tag="h1"), MarkupBlock("hr")))
        a = asset_factory("a.png")

        result = correlator.correlate_chapter(chapter, [ExtractedImage(a, 1, 0, 300, 50, 50)])

        assert [n.tag for n in result.nodes] == ["h1", "hr", "figure"]

    def test_image_node_markup(self, chapter, correlator, asset_factory):
        """Test figure attributes."""
        from reflow.images import ExtractedImage

        a = asset_factory("a.png")
        result = correlator.correlate_chapter(chapter, [ExtractedImage(a, 1, 72, 200, 100, 50)])
        figure = result.nodes[1]

        assert figure.to_html() == (
            f'<figure data-page="1" data-y-start="200" data-y-end="250" data-y-mid="225">'
            f'<img src="{a}" alt="Image page 1"/></figure>'
        )


class TestValidation:
    """Test asset validation and de-duplication."""

    def test_missing_asset_skipped(self, chapter, correlator, asset_factory, tmp_path):
        """Test that only existing assets are inserted."""
        from reflow.images import ExtractedImage

        images = [
            ExtractedImage(asset_factory("a.png"), 1, 72, 200),
            ExtractedImage(str(tmp_path / "gone.png"), 1, 72, 250),
        ]

        result = correlator.correlate_chapter(chapter, images)

        assert result.image_count == 1
        assert correlator.stats.skipped_missing == 1

    def test_small_existing_asset_inserted_by_default(self, correlator, asset_factory):
        """Test that an existing small asset still counts as an image."""
        from reflow.export import RenderedChapter
        from reflow.images import ExtractedImage

        chapters = [RenderedChapter("c", (text_node("top", 1, 100, 120),))]
        small = asset_factory("small.png", (20, 20))

        result = correlator.correlate(chapters, [ExtractedImage(small, 1, 72, 200, 20, 20)])

        assert result[0].image_count == 1
        assert correlator.stats.skipped_small == 0

    def test_small_asset_skipped_when_configured(self, chapter, asset_factory):
        """Test the optional icon size guard."""
        from reflow.images import ExtractedImage, ImageCorrelator, CorrelatorConfig

        correlator = ImageCorrelator(CorrelatorConfig(min_image_size=32))
        images = [ExtractedImage(asset_factory("icon.png", (16, 16)), 1, 72, 200)]

        result = correlator.correlate_chapter(chapter, images)

        assert result.image_count == 0
        assert correlator.stats.skipped_small == 1

    def test_duplicate_asset_inserted_once(self, chapter, correlator, asset_factory):
        """Test the per-conversion registry."""
        from reflow.images import ExtractedImage

        a = asset_factory("a.png")
        first = correlator.correlate_chapter(chapter, [ExtractedImage(a, 1, 72, 200)])
        second = correlator.correlate_chapter(chapter, [ExtractedImage(a, 1, 72, 200)])

        assert first.image_count == 1
        assert second.image_count == 0
        assert correlator.stats.skipped_duplicate == 1

    def test_verification_can_be_disabled(self, chapter, tmp_path):
        """Test trusting asset references without probing."""
        from reflow.images import ExtractedImage, ImageCorrelator, CorrelatorConfig

        correlator = ImageCorrelator(CorrelatorConfig(verify_assets=False))
        result = correlator.correlate_chapter(chapter, [ExtractedImage("remote/a.png", 1, 72, 200)])

        assert result.image_count == 1


class TestCorrelateChapters:
    """Test correlation across a whole conversion."""

    def test_each_image_in_exactly_one_chapter(self, correlator, asset_factory):
        """Test assignment to a single chapter and the image count."""
        from reflow.export import RenderedChapter
        from reflow.images import ExtractedImage

        chapters = [
            RenderedChapter("One", (text_node("a", 1, 100, 120), text_node("b", 2, 100, 120))),
            RenderedChapter("Two", (text_node("c", 2, 400, 420), text_node("d", 3, 100, 120))),
        ]
        x = asset_factory("x.png")
        y = asset_factory("y.png")
        z = asset_factory("z.png")
        images = [
            ExtractedImage(x, 2, 0, 300),
            ExtractedImage(y, 2, 0, 50),
            ExtractedImage(z, 3, 0, 500),
            ExtractedImage(x, 2, 0, 300),
        ]

        result = correlator.correlate(chapters, images)

        assert texts(result[0]) == ["a", y, "b"]
        assert texts(result[1]) == [x, "c", "d", z]
        assert sum(c.image_count for c in result) == 3

    def test_no_chapters(self, correlator):
        """Test empty input."""
        assert correlator.correlate([], []) == []
