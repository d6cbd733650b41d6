#!/usr/bin/env python
"""
Command-line interface for the Document Reflow Pipeline.

Usage:
    python src/cli.py --input <extraction_dump.json> --output <output_dir> [options]

Examples:
    # Reflow an extracted document into chapters
    python src/cli.py --input book.json --output ./output

    # Translate to English while keeping the markup structure
    python src/cli.py --input book.json --output ./output --translate-to en

    # Read pages as a single vertical flow instead of column by column
    python src/cli.py --input book.json --output ./output --strategy global
"""

import sys
from pathlib import Path

# Add src directory to path for imports when running as script
_src_dir = Path(__file__).parent
if str(_src_dir) not in sys.path:
    sys.path.insert(0, str(_src_dir))

import argparse
import logging
import time
from typing import List, Optional

# Setup logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger("reflow")


def setup_argparser() -> argparse.ArgumentParser:
    """Create argument parser."""
    parser = argparse.ArgumentParser(
        description="Document Reflow Pipeline - Turn extracted page layouts into reflowable chapters",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  Reflow an extraction dump:
    pdf-reflow --input book.json --output ./output

  Translate to Spanish:
    pdf-reflow --input book.json --output ./output --translate-to es

  Keep running headers and footers:
    pdf-reflow --input book.json --output ./output --include-header-footer

  Process only specific pages:
    pdf-reflow --input book.json --output ./output --pages 1-5
        """
    )

    # Required arguments
    parser.add_argument(
        "--input", "-i",
        required=True,
        help="Extraction dump (JSON with pages, glyph runs and images)"
    )

    parser.add_argument(
        "--output", "-o",
        required=True,
        help="Output directory for generated files"
    )

    # Optional arguments
    parser.add_argument(
        "--strategy",
        choices=["column", "global"],
        default=None,
        help="Paragraph detection strategy (default: column)"
    )

    parser.add_argument(
        "--translate-to",
        metavar="LANG",
        default=None,
        help="Translate text to this language code (e.g. pt, en, es)"
    )

    parser.add_argument(
        "--source-lang",
        metavar="LANG",
        default="auto",
        help="Source language code (default: auto-detect)"
    )

    parser.add_argument(
        "--include-header-footer",
        action="store_true",
        help="Keep running headers and footers in the chapters"
    )

    parser.add_argument(
        "--no-images",
        action="store_true",
        help="Do not insert extracted images"
    )

    parser.add_argument(
        "--no-separators",
        action="store_true",
        help="Do not add horizontal rules after headings"
    )

    parser.add_argument(
        "--title",
        default=None,
        help="Publication title (default: derived from the input file name)"
    )

    parser.add_argument(
        "--author",
        default=None,
        help="Publication author (default: Unknown Author)"
    )

    parser.add_argument(
        "--cover",
        default=None,
        help="Cover image path (default: first extracted image)"
    )

    parser.add_argument(
        "--pages",
        type=str,
        default=None,
        help="Page range to process, e.g., '1-5' or '1,3,5' (default: all)"
    )

    parser.add_argument(
        "--workers",
        type=int,
        default=None,
        help="Chapters translated in parallel (default: 1)"
    )

    parser.add_argument(
        "--debug",
        action="store_true",
        help="Re-raise unexpected errors with a traceback"
    )

    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose output"
    )

    parser.add_argument(
        "--quiet", "-q",
        action="store_true",
        help="Suppress non-error output"
    )

    parser.add_argument(
        "--version",
        action="version",
        version="%(prog)s 1.0.0"
    )

    return parser


def parse_page_range(page_str: str, max_pages: int) -> List[int]:
    """Parse page range string to list of page numbers."""
    pages = []

    for part in page_str.split(","):
        part = part.strip()
        if not part:
            continue
        if "-" in part:
            start, end = part.split("-")
            start = max(int(start), 1)
            end = min(int(end), max_pages)
            pages.extend(range(start, end + 1))
        else:
            page = int(part)
            if 1 <= page <= max_pages:
                pages.append(page)

    return sorted(set(pages))


def run_pipeline(args) -> int:
    """Run the document reflow pipeline."""
    from reflow.io import load_extraction, save_json, ensure_dir
    from reflow.assembler import EmptyDocumentError
    from reflow.export import DEFAULT_AUTHOR, PublicationExporter
    from reflow.translation import GoogleTranslateClient, get_language_name, is_language_supported
    from config import get_config

    start_time = time.time()
    config = get_config()

    # Apply command-line overrides
    if args.strategy:
        config.classifier.strategy = args.strategy
    if args.include_header_footer:
        config.set_include_header_footer(True)
    if args.no_separators:
        config.render.add_separators = False
    if args.no_images:
        config.include_images = False
    if args.workers:
        config.translation.max_workers = max(1, args.workers)
    if args.translate_to:
        config.translation.target_lang = args.translate_to
    config.translation.source_lang = args.source_lang

    # Load input
    try:
        dump = load_extraction(args.input)
    except (FileNotFoundError, ValueError) as e:
        logger.error(f"Could not load input: {e}")
        return 1

    pages = dump.pages
    if args.pages:
        numbers = set(parse_page_range(args.pages, max((p.page_number for p in pages), default=0)))
        pages = [p for p in pages if p.page_number in numbers]
        dump.images = [im for im in dump.images if im.page_number in numbers]
        logger.info(f"Processing pages: {sorted(numbers)}")

    # Translation setup
    translate_fn = None
    language = args.source_lang if args.source_lang != "auto" else None
    if args.translate_to:
        target = config.translation.target_lang
        if not is_language_supported(target):
            logger.warning(f"Language '{target}' is not in the supported list; trying anyway")
        client = GoogleTranslateClient.from_config(config.translation)
        sample = " ".join(r.text for p in pages for r in p.runs)
        detected = args.source_lang if args.source_lang != "auto" else client.detect_language(sample)
        if detected == target:
            logger.info(f"Document is already in {get_language_name(target)}; skipping translation")
            language = target
        else:
            logger.info(f"Translating from {detected} to {get_language_name(target)}")
            translate_fn = client

    # Convert
    assembler = config.build_assembler()
    logger.info("Processing document...")
    try:
        conversion = assembler.convert(
            pages,
            images=dump.images,
            source_file=dump.source_file,
            translate_fn=translate_fn,
            language=language
        )
    except EmptyDocumentError as e:
        logger.error(f"Nothing to convert: {e}")
        return 1

    # Write outputs
    output_dir = ensure_dir(args.output)
    publication = conversion.to_publication(
        title=args.title,
        author=args.author or DEFAULT_AUTHOR,
        cover=args.cover
    )
    manifest_path = PublicationExporter().export(publication, output_dir)
    report_path = save_json(conversion.to_dict(), output_dir / "conversion.json")
    logger.info(f"Saved manifest: {manifest_path}")
    logger.info(f"Saved conversion report: {report_path}")

    # Print summary
    elapsed = time.time() - start_time
    metrics = conversion.metrics

    if not args.quiet:
        print("\n" + "="*60)
        print("DOCUMENT REFLOW COMPLETE")
        print("="*60)
        print(f"Source: {args.input}")
        print(f"Output: {output_dir}")
        print(f"Title: {publication.title}")
        print(f"Pages processed: {metrics.pages_processed}")
        print(f"Processing time: {elapsed:.2f}s")
        print()
        print("Metrics:")
        print(f"  Blocks: {metrics.blocks_total} {metrics.blocks_by_type}")
        print(f"  Chapters: {metrics.chapters}")
        print(f"  Images: {metrics.images_inserted} inserted, {metrics.images_skipped} skipped")
        if translate_fn is not None:
            print(f"  Translation: {metrics.spans_translated}/{metrics.spans_submitted} spans "
                  f"({metrics.spans_failed} kept original)")
        print(f"  Reading-order warnings: {metrics.order_violations}")
        print("="*60)

    return 0


def main(argv: Optional[List[str]] = None):
    """Main entry point."""
    parser = setup_argparser()
    args = parser.parse_args(argv)

    # Configure logging level
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)
    elif args.quiet:
        logging.getLogger().setLevel(logging.ERROR)

    # Run pipeline
    try:
        exit_code = run_pipeline(args)
        sys.exit(exit_code)
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        sys.exit(130)
    except Exception as e:
        logger.error(f"Unexpected error: {e}")
        if args.debug:
            raise
        sys.exit(1)


if __name__ == "__main__":
    main()
