"""
I/O utilities for the reflow pipeline.

Handles:
- Loading extraction dumps (glyph runs and image entries per page)
- JSON serialization
- Directory management
"""

import json
import logging
from dataclasses import dataclass, field, asdict
from enum import Enum
from pathlib import Path
from typing import List, Union, Any, Dict

import numpy as np

from .images import ExtractedImage
from .layout import PageInput, TextGlyphRun

logger = logging.getLogger(__name__)


# ============================================================================
# Extraction Dumps
# ============================================================================

@dataclass
class ExtractionDump:
    """Output of the upstream text and image extraction collaborators."""
    pages: List[PageInput] = field(default_factory=list)
    images: List[ExtractedImage] = field(default_factory=list)
    source_file: str = ""

    @property
    def run_count(self) -> int:
        return sum(len(p.runs) for p in self.pages)


def _number(entry: Dict[str, Any], key: str, default: float = 0.0) -> float:
    value = entry.get(key, default)
    if value is None:
        return default
    return float(value)


def parse_page(entry: Dict[str, Any], index: int = 1) -> PageInput:
    """Build a PageInput from one page entry of a dump."""
    page_number = int(entry.get("page_number", index))
    runs = []
    for run in entry.get("runs", []):
        runs.append(TextGlyphRun(
            text=str(run.get("text", "")),
            x=_number(run, "x"),
            y=_number(run, "y"),
            width=_number(run, "width"),
            height=_number(run, "height"),
            font_size=_number(run, "font_size", 12.0),
            font_family=str(run.get("font_family") or ""),
            page_number=page_number
        ))
    return PageInput(
        page_number=page_number,
        width=_number(entry, "width"),
        height=_number(entry, "height"),
        runs=tuple(runs)
    )


def parse_image(entry: Dict[str, Any], base_dir: Path) -> ExtractedImage:
    """Build an ExtractedImage; relative paths resolve against base_dir."""
    path = Path(str(entry["path"]))
    if not path.is_absolute():
        path = base_dir / path
    return ExtractedImage(
        asset_path=str(path),
        page_number=int(entry.get("page", 1)),
        x=_number(entry, "x"),
        y=_number(entry, "y"),
        width=_number(entry, "width"),
        height=_number(entry, "height")
    )


def load_extraction(dump_path: Union[str, Path]) -> ExtractionDump:
    """
    Load an extraction dump.

    Args:
        dump_path: Path to the JSON dump

    Returns:
        ExtractionDump with pages in file order and image entries

    Raises:
        FileNotFoundError: If the dump doesn't exist
        ValueError: If the dump is not valid JSON or misses required fields
    """
    dump_path = Path(dump_path)
    if not dump_path.exists():
        raise FileNotFoundError(f"Extraction dump not found: {dump_path}")

    try:
        data = load_json(dump_path)
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in extraction dump {dump_path}: {e}") from e

    if not isinstance(data, dict) or not isinstance(data.get("pages", []), list):
        raise ValueError(f"Malformed extraction dump (expected a 'pages' list): {dump_path}")

    try:
        pages = [parse_page(entry, i) for i, entry in enumerate(data.get("pages", []), 1)]
        images = [parse_image(entry, dump_path.parent) for entry in data.get("images", [])]
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        raise ValueError(f"Malformed extraction dump {dump_path}: {e}") from e

    dump = ExtractionDump(
        pages=pages,
        images=images,
        source_file=str(data.get("source_file") or dump_path)
    )
    logger.info(
        f"Loaded extraction dump: {len(pages)} page(s), {dump.run_count} run(s), "
        f"{len(images)} image(s)"
    )
    return dump


# ============================================================================
# JSON Serialization
# ============================================================================

class EnhancedJSONEncoder(json.JSONEncoder):
    """JSON encoder that handles numpy values, enums and dataclasses."""

    def default(self, obj):
        if isinstance(obj, np.ndarray):
            return obj.tolist()
        if isinstance(obj, np.integer):
            return int(obj)
        if isinstance(obj, np.floating):
            return float(obj)
        if isinstance(obj, Enum):
            return obj.value
        if hasattr(obj, 'to_dict'):
            return obj.to_dict()
        if hasattr(obj, '__dataclass_fields__'):
            return asdict(obj)
        if isinstance(obj, Path):
            return str(obj)
        return super().default(obj)


def save_json(
    data: Any,
    output_path: Union[str, Path],
    indent: int = 2,
    ensure_ascii: bool = False
) -> Path:
    """
    Save data to a JSON file.

    Args:
        data: Data to serialize (dict, list, dataclass, etc.)
        output_path: Path to save the JSON file
        indent: Indentation level for pretty printing
        ensure_ascii: If True, escape non-ASCII characters

    Returns:
        Path to the saved file
    """
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)

    with open(output_path, 'w', encoding='utf-8') as f:
        json.dump(data, f, indent=indent, ensure_ascii=ensure_ascii, cls=EnhancedJSONEncoder)

    logger.debug(f"Saved JSON: {output_path}")
    return output_path


def load_json(json_path: Union[str, Path]) -> Any:
    """Load data from a JSON file."""
    json_path = Path(json_path)
    if not json_path.exists():
        raise FileNotFoundError(f"JSON file not found: {json_path}")

    with open(json_path, 'r', encoding='utf-8') as f:
        return json.load(f)


# ============================================================================
# Directory Management
# ============================================================================

def ensure_dir(path: Union[str, Path]) -> Path:
    """Ensure a directory exists, creating it if necessary."""
    path = Path(path)
    path.mkdir(parents=True, exist_ok=True)
    return path
