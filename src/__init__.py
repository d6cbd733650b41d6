"""
Document Reflow Pipeline
========================

Turns a paginated document's extracted text runs and raster assets into
ordered, chaptered, structure-tagged markup for reflowable e-book output.

Main components:
- Column detection from glyph positions
- Paragraph, heading and caption classification
- Chapter assembly at top-level headings
- Markup rendering with page/position provenance
- Structure-preserving translation
- Image placement by coordinate proximity
"""

__version__ = "1.0.0"
__author__ = "Document Reflow Team"
