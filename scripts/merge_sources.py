#!/usr/bin/env python3
"""
Reconcile a CSV-derived export with a DB-derived export into one envelope.
"""

import argparse
import logging
import sys

from common.config.settings import get_settings
from common.models.message import ExportSource
from ingest.dedup_merge import reconcile
from ingest.exceptions import IngestError
from ingest.loader import load_messages, write_envelope

logger = logging.getLogger("merge_sources")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Merge CSV and DB message exports without loss or duplication",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python merge_sources.py --csv csv-export.json --db db-export.json --output merged.json
        """,
    )
    parser.add_argument("--csv", required=True, help="CSV-derived envelope (primary)")
    parser.add_argument("--db", required=True, help="DB-derived envelope (authoritative)")
    parser.add_argument("--output", "-o", required=True, help="Merged envelope path")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level), format=settings.log_format
    )

    try:
        csv_messages = load_messages(args.csv)
        db_messages = load_messages(args.db)
        result = reconcile(csv_messages, db_messages)
        write_envelope(
            args.output,
            result.messages,
            ExportSource.MERGED,
            meta={"mergeStats": result.stats.model_dump(by_alias=True)},
        )
    except IngestError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except Exception:
        logger.exception("Unexpected error during merge")
        return 2

    stats = result.stats
    print(f"\n{'=' * 60}")
    print(f"CSV messages: {stats.csv_count}")
    print(f"DB messages: {stats.db_count}")
    print(f"Exact matches: {stats.exact_matches}")
    print(f"Content matches: {stats.content_matches}")
    print(f"Unmatched CSV: {stats.no_matches}")
    print(f"Output messages: {stats.output_count}")
    print(f"{'=' * 60}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
