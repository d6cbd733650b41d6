"""
Markup rendering and export module.

Provides:
- Markup node model (MarkupBlock, RenderedChapter)
- Chapter rendering to structure-tagged HTML with page/position provenance
- Parsing of the rendered vocabulary back into nodes
- Publication hand-off (HTML fragments + JSON manifest for packaging)
"""

import html
import logging
import re
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Dict, Any, Optional, List, Tuple, Union

from .layout import Block, BlockType

logger = logging.getLogger(__name__)

DEFAULT_AUTHOR = "Unknown Author"
DEFAULT_DOCUMENT_TITLE = "Converted Document"

# Tags whose inner text may be replaced (translation); never nested
TEXT_TAGS = ("h1", "h2", "h3", "p")

HEADING_TAGS = {1: "h1", 2: "h2"}


# ============================================================================
# Markup Nodes
# ============================================================================

def escape_text(text: str) -> str:
    """Escape text content for an HTML text node."""
    return html.escape(text, quote=False)


def _format_attrs(attributes: Tuple[Tuple[str, str], ...]) -> str:
    return "".join(f' {name}="{html.escape(value, quote=True)}"' for name, value in attributes)


@dataclass(frozen=True)
class MarkupBlock:
    """
    One rendered node.

    Text nodes carry `text`; image nodes (`figure`) carry `image_ref` and use
    `text` as the alt text; separators (`hr`) carry neither.
    """
    tag: str
    attributes: Tuple[Tuple[str, str], ...] = ()
    text: str = ""
    image_ref: Optional[str] = None

    def attr(self, name: str) -> Optional[str]:
        for key, value in self.attributes:
            if key == name:
                return value
        return None

    @property
    def page_number(self) -> Optional[int]:
        value = self.attr("data-page")
        try:
            return int(value) if value is not None else None
        except ValueError:
            return None

    @property
    def y_mid(self) -> Optional[float]:
        value = self.attr("data-y-mid")
        try:
            return float(value) if value is not None else None
        except ValueError:
            return None

    @property
    def is_image(self) -> bool:
        return self.tag == "figure"

    @property
    def is_text(self) -> bool:
        return self.tag in TEXT_TAGS

    def to_html(self) -> str:
        attrs = _format_attrs(self.attributes)
        if self.tag == "hr":
            return f"<hr{attrs}/>"
        if self.is_image:
            src = html.escape(self.image_ref or "", quote=True)
            alt = html.escape(self.text, quote=True)
            return f'<figure{attrs}><img src="{src}" alt="{alt}"/></figure>'
        return f"<{self.tag}{attrs}>{escape_text(self.text)}</{self.tag}>"

    def to_dict(self) -> Dict[str, Any]:
        result = {"tag": self.tag, "attributes": dict(self.attributes)}
        if self.text:
            result["text"] = self.text
        if self.image_ref is not None:
            result["image_ref"] = self.image_ref
        return result


@dataclass(frozen=True)
class RenderedChapter:
    """A chapter title plus its ordered markup nodes."""
    title: str
    nodes: Tuple[MarkupBlock, ...] = ()

    @property
    def image_count(self) -> int:
        return sum(1 for n in self.nodes if n.is_image)

    @property
    def image_refs(self) -> List[str]:
        return [n.image_ref for n in self.nodes if n.is_image]

    def with_nodes(self, nodes) -> 'RenderedChapter':
        return replace(self, nodes=tuple(nodes))

    def to_html(self) -> str:
        return "\n".join(n.to_html() for n in self.nodes)


# ============================================================================
# Parsing
# ============================================================================

_ATTR_RE = re.compile(r'([\w:-]+)\s*=\s*"([^"]*)"')

_NODE_RE = re.compile(
    r'<hr(?P<hr_attrs>(?:\s+[\w:-]+\s*=\s*"[^"]*")*)\s*/?>'
    r'|<figure(?P<fig_attrs>(?:\s+[\w:-]+\s*=\s*"[^"]*")*)\s*>\s*'
    r'<img(?P<img_attrs>(?:\s+[\w:-]+\s*=\s*"[^"]*")*)\s*/?>\s*</figure>'
    r'|<(?P<tag>' + "|".join(TEXT_TAGS) + r')(?P<attrs>(?:\s+[\w:-]+\s*=\s*"[^"]*")*)\s*>'
    r'(?P<inner>.*?)</(?P=tag)>',
    re.DOTALL | re.IGNORECASE
)


def _parse_attrs(raw: str) -> Tuple[Tuple[str, str], ...]:
    return tuple((name, html.unescape(value)) for name, value in _ATTR_RE.findall(raw or ""))


def parse_markup(markup: str) -> List[MarkupBlock]:
    """
    Parse rendered chapter markup back into nodes.

    Only the flat vocabulary produced by MarkupRenderer is recognized;
    anything else is skipped with a warning.
    """
    nodes = []
    position = 0
    for match in _NODE_RE.finditer(markup):
        skipped = markup[position:match.start()].strip()
        if skipped:
            logger.warning(f"Skipping unrecognized markup: {skipped[:60]!r}")
        position = match.end()

        if match.group(0).lower().startswith("<hr"):
            nodes.append(MarkupBlock("hr", _parse_attrs(match.group("hr_attrs"))))
        elif match.group("img_attrs") is not None:
            img = dict(_parse_attrs(match.group("img_attrs")))
            nodes.append(MarkupBlock(
                "figure",
                _parse_attrs(match.group("fig_attrs")),
                text=img.get("alt", ""),
                image_ref=img.get("src", "")
            ))
        else:
            inner = re.sub(r"<[^>]+>", "", match.group("inner"))
            nodes.append(MarkupBlock(
                match.group("tag").lower(),
                _parse_attrs(match.group("attrs")),
                text=html.unescape(inner)
            ))

    trailing = markup[position:].strip()
    if trailing:
        logger.warning(f"Skipping unrecognized markup: {trailing[:60]!r}")
    return nodes


# ============================================================================
# Markup Renderer
# ============================================================================

@dataclass
class RenderConfig:
    """Markup rendering options."""
    add_separators: bool = True
    include_header_footer: bool = False


def provenance_attributes(
    page_number: int,
    y_start: float,
    y_end: float
) -> Tuple[Tuple[str, str], ...]:
    """Page and vertical-position attributes consumed by the image correlator."""
    return (
        ("data-page", str(page_number)),
        ("data-y-start", f"{y_start:.0f}"),
        ("data-y-end", f"{y_end:.0f}"),
        ("data-y-mid", f"{(y_start + y_end) / 2:.0f}"),
    )


class MarkupRenderer:
    """Serializes a chapter's Blocks into structure-tagged markup."""

    def __init__(self, config: Optional[RenderConfig] = None):
        self.config = config or RenderConfig()

    def render(self, chapter: Any) -> RenderedChapter:
        """
        Render one chapter.

        Args:
            chapter: Object with `title` and ordered `blocks`

        Returns:
            RenderedChapter with one node per Block (plus separators)
        """
        nodes = []
        for block in chapter.blocks:
            if block.is_marginal and not self.config.include_header_footer:
                continue
            nodes.append(self.render_block(block))
            if block.block_type == BlockType.HEADING and self.config.add_separators:
                nodes.append(MarkupBlock("hr"))
        return RenderedChapter(title=chapter.title, nodes=tuple(nodes))

    def render_block(self, block: Block) -> MarkupBlock:
        attrs = provenance_attributes(block.page_number, block.bbox.y_start, block.bbox.y_end)

        if block.block_type == BlockType.HEADING:
            return MarkupBlock(HEADING_TAGS.get(block.importance, "h3"), attrs, block.text)
        if block.block_type == BlockType.CAPTION:
            return MarkupBlock("p", (("class", "caption"),) + attrs, block.text)
        if block.is_marginal:
            return MarkupBlock("p", (("class", block.block_type.value),) + attrs, block.text)
        return MarkupBlock("p", attrs, block.text)


# ============================================================================
# Publication Hand-off
# ============================================================================

def title_from_filename(path: Union[str, Path, None]) -> str:
    """Derive a document title from a source file name."""
    if not path:
        return DEFAULT_DOCUMENT_TITLE
    name = Path(path).name
    for _ in range(2):
        stem, dot, suffix = name.rpartition(".")
        if dot and suffix.lower() in ("pdf", "json"):
            name = stem
    return name.strip() or DEFAULT_DOCUMENT_TITLE


@dataclass
class Publication:
    """Everything the external packaging service needs."""
    title: str
    chapters: List[RenderedChapter] = field(default_factory=list)
    author: str = DEFAULT_AUTHOR
    language: str = "pt"
    cover: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "title": self.title,
            "author": self.author,
            "language": self.language,
            "cover": self.cover,
            "chapters": [
                {"title": c.title, "markup": c.to_html(), "image_count": c.image_count}
                for c in self.chapters
            ],
        }


class PublicationExporter:
    """Writes a Publication as HTML fragments plus a JSON manifest."""

    def __init__(self, manifest_name: str = "publication.json"):
        self.manifest_name = manifest_name

    def export(
        self,
        publication: Publication,
        output_dir: Union[str, Path]
    ) -> Path:
        """
        Export a publication.

        Args:
            publication: Publication to write
            output_dir: Target directory

        Returns:
            Path to the manifest
        """
        from .io import ensure_dir, save_json

        output_dir = ensure_dir(output_dir)
        chapters_dir = ensure_dir(output_dir / "chapters")

        entries = []
        for i, chapter in enumerate(publication.chapters, 1):
            chapter_path = chapters_dir / f"chapter_{i:03d}.html"
            with open(chapter_path, "w", encoding="utf-8") as f:
                f.write(chapter.to_html())
                f.write("\n")
            entries.append({
                "index": i,
                "title": chapter.title,
                "file": str(chapter_path.relative_to(output_dir)),
                "image_count": chapter.image_count,
            })

        manifest = {
            "title": publication.title,
            "author": publication.author,
            "language": publication.language,
            "cover": publication.cover,
            "chapters": entries,
        }
        manifest_path = save_json(manifest, output_dir / self.manifest_name)
        logger.info(f"Exported {len(entries)} chapter(s) to: {output_dir}")
        return manifest_path
