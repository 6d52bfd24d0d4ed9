#!/usr/bin/env python3
"""
Run the enrichment pass over a normalized message export.
Supports checkpoint/resume, incremental runs and provider toggles.
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Any

import aiohttp
from pydantic import ValidationError

from common.config.settings import get_settings
from common.models.message import ExportSource
from enrichment.config import EnrichmentConfig
from enrichment.enrichment_merge import (
    backup_enriched_json,
    load_existing_enriched,
    merge_enrichments,
)
from enrichment.exceptions import ConfigHashMismatchError
from enrichment.incremental.state import reset_incremental_state
from enrichment.orchestrator import EnrichmentOrchestrator, EnrichmentRunResult
from enrichment.providers.base import EnrichmentProvider, ProviderSlot, slot_enabled
from enrichment.providers.link_context import LinkContextProvider
from ingest.exceptions import IngestError
from ingest.loader import load_messages, write_envelope

logger = logging.getLogger("run_enrichment")

EXIT_OK = 0
EXIT_FATAL = 1
EXIT_UNEXPECTED = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Enrich a normalized message export with provider context",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Basic usage
  python run_enrichment.py --input messages.json --output enriched.json

  # Long runs
  python run_enrichment.py --input messages.json --output enriched.json --checkpoint-interval 50
  python run_enrichment.py --input messages.json --output enriched.json --resume

  # Incremental runs (only messages not enriched before)
  python run_enrichment.py --input messages.json --output enriched.json --incremental
  python run_enrichment.py --input messages.json --output enriched.json --incremental --reset-state

  # Provider toggles
  python run_enrichment.py --input messages.json --output enriched.json --no-vision --no-audio
        """,
    )

    parser.add_argument("--input", "-i", required=True, help="Input export envelope (JSON)")
    parser.add_argument("--output", "-o", required=True, help="Output envelope path (JSON)")
    parser.add_argument(
        "--checkpoint-dir",
        help="Checkpoint directory (default: ./.checkpoints)",
    )
    parser.add_argument(
        "--checkpoint-file",
        help="Explicit checkpoint file instead of the config-hash named default",
    )
    parser.add_argument("--resume", action="store_true", help="Resume from last checkpoint")
    parser.add_argument(
        "--incremental",
        action="store_true",
        help="Only enrich messages not recorded in the state file",
    )
    parser.add_argument(
        "--state-file", help="Incremental state file (default: .imessage-state.json)"
    )
    parser.add_argument(
        "--reset-state",
        action="store_true",
        help="Delete the incremental state file before running",
    )
    parser.add_argument(
        "--force-refresh",
        action="store_true",
        default=None,
        help="Re-enrich messages that already carry an enrichment of the same kind",
    )
    parser.add_argument(
        "--rate-limit", type=int, metavar="MS", help="Delay between provider calls (ms)"
    )
    parser.add_argument("--max-retries", type=int, help="Retries for retryable failures")
    parser.add_argument(
        "--checkpoint-interval", type=int, metavar="N", help="Write a checkpoint every N items"
    )

    toggles = (
        ("vision", "image analysis"),
        ("audio", "audio transcription"),
        ("links", "link context"),
    )
    # The enable flag is registered first so its None default wins for the shared dest.
    for slot, label in toggles:
        group = parser.add_mutually_exclusive_group()
        group.add_argument(
            f"--enable-{slot}",
            dest=f"enable_{slot}",
            action="store_true",
            default=None,
            help=f"Enable {label}",
        )
        group.add_argument(
            f"--no-{slot}",
            dest=f"enable_{slot}",
            action="store_false",
            help=f"Disable {label}",
        )

    verbosity = parser.add_mutually_exclusive_group()
    verbosity.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    verbosity.add_argument("--quiet", "-q", action="store_true", help="Warnings and errors only")
    return parser


def build_config(args: argparse.Namespace) -> EnrichmentConfig:
    """Build an EnrichmentConfig from CLI flags; unset flags fall back to env/defaults.

    Raises:
        pydantic.ValidationError: If a flag value is out of range
    """
    overrides: dict[str, Any] = {
        "enable_vision": args.enable_vision,
        "enable_audio": args.enable_audio,
        "enable_links": args.enable_links,
        "rate_limit_delay_ms": args.rate_limit,
        "max_retries": args.max_retries,
        "checkpoint_interval": args.checkpoint_interval,
        "checkpoint_dir": args.checkpoint_dir,
        "state_file": args.state_file,
        "force_refresh": args.force_refresh,
        "verbose_logging": True if args.verbose else None,
    }
    return EnrichmentConfig(**{k: v for k, v in overrides.items() if v is not None})


def configure_logging(args: argparse.Namespace) -> None:
    settings = get_settings()
    if args.verbose:
        level = logging.DEBUG
    elif args.quiet:
        level = logging.WARNING
    else:
        level = getattr(logging, settings.log_level)
    logging.basicConfig(level=level, format=settings.log_format)


def warn_missing_providers(
    config: EnrichmentConfig, providers: list[EnrichmentProvider]
) -> None:
    available = {provider.slot for provider in providers}
    for slot in ProviderSlot:
        if slot_enabled(slot, config) and slot not in available:
            logger.warning(
                f"{slot.value} enrichment is enabled but no provider is installed; "
                "matching messages pass through unenriched"
            )


def print_summary(result: EnrichmentRunResult, output: str) -> None:
    print(f"\n{'=' * 60}")
    print(f"Processed: {result.total_processed}")
    print(f"Failed: {result.total_failed}")
    if result.skipped_circuit_open:
        print(f"Skipped (circuit open): {result.skipped_circuit_open}")
    for kind, count in sorted(result.enrichments_by_kind.items()):
        print(f"  {kind}: {count}")
    if result.failed_items:
        print("Failed items:")
        for item in result.failed_items[:10]:
            print(f"  [{item.index}] {item.guid} ({item.kind}): {item.error}")
        if len(result.failed_items) > 10:
            print(f"  ... and {len(result.failed_items) - 10} more")
    print(f"Checkpoint: {result.checkpoint_path}")
    print(f"Output: {output}")
    print(f"{'=' * 60}")


async def run(args: argparse.Namespace, config: EnrichmentConfig) -> int:
    messages = load_messages(args.input)

    if args.reset_state:
        reset_incremental_state(config.state_file)

    async with aiohttp.ClientSession() as session:
        providers: list[EnrichmentProvider] = [LinkContextProvider(session=session)]
        warn_missing_providers(config, providers)
        orchestrator = EnrichmentOrchestrator(config, providers, show_progress=not args.quiet)
        result = await orchestrator.run(
            messages,
            resume=args.resume,
            incremental=args.incremental,
            checkpoint_path=args.checkpoint_file,
        )

    output_messages = result.enriched
    if args.incremental:
        existing = load_existing_enriched(args.output)
        if existing is not None:
            backup_enriched_json(args.output)
            merged = merge_enrichments(
                existing.messages, result.enriched, force_refresh=config.force_refresh
            )
            output_messages = merged.messages

    write_envelope(
        Path(args.output),
        output_messages,
        ExportSource.MERGED,
        meta={
            "enrichment": {
                "totalProcessed": result.total_processed,
                "totalFailed": result.total_failed,
                "enrichmentsByKind": result.enrichments_by_kind,
            }
        },
    )
    print_summary(result, args.output)

    if result.checkpoint_error:
        logger.error(f"Final checkpoint was not written: {result.checkpoint_error}")
        return EXIT_FATAL
    return EXIT_OK


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args)

    try:
        config = build_config(args)
    except ValidationError as e:
        print(f"Error: invalid configuration: {e}", file=sys.stderr)
        return EXIT_FATAL

    try:
        return asyncio.run(run(args, config))
    except (IngestError, ConfigHashMismatchError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return EXIT_FATAL
    except Exception:
        logger.exception("Unexpected error during enrichment")
        return EXIT_UNEXPECTED


if __name__ == "__main__":
    sys.exit(main())
