"""
Resumable enrichment pass over a message collection.
Paces provider calls, isolates per-message failures, and checkpoints progress
so an interrupted run can resume where it stopped.
"""

import logging
import time
from collections import Counter
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from common.models.message import MediaEnrichment, Message
from common.utils.datetime_utils import utc_now
from enrichment.checkpoint import (
    FailedItem,
    OutputJournal,
    compute_config_hash,
    create_checkpoint,
    get_checkpoint_path,
    get_journal_path,
    get_resume_index,
    load_checkpoint,
    save_checkpoint,
    should_write_checkpoint,
    verify_config_hash,
)
from enrichment.config import EnrichmentConfig
from enrichment.exceptions import CheckpointError, ConfigHashMismatchError, ProviderError
from enrichment.idempotency import (
    add_enrichment_idempotent,
    kind_value,
    should_skip_enrichment,
)
from enrichment.incremental.delta import detect_delta
from enrichment.incremental.state import (
    EnrichmentRunStats,
    IncrementalState,
    create_incremental_state,
    save_incremental_state,
    update_state_with_enriched_guids,
)
from enrichment.progress import EnrichmentProgressTracker
from enrichment.providers.base import EnrichmentProvider, slot_enabled
from enrichment.rate_limiting import RateLimiter
from enrichment.retry import retry_with_backoff

logger = logging.getLogger(__name__)


@dataclass
class EnrichmentRunResult:
    """Summary of one enrichment run; always produced, even with failures."""

    enriched: list[Message]
    total_processed: int
    total_failed: int
    failed_items: list[FailedItem]
    start_index: int
    checkpoint_path: Path
    checkpoint_error: str | None = None
    state_error: str | None = None
    skipped_circuit_open: int = 0
    enrichments_by_kind: dict[str, int] = field(default_factory=dict)
    elapsed_seconds: float = 0.0


@dataclass
class _RunProgress:
    output: list[Message] = field(default_factory=list)
    failed_items: list[FailedItem] = field(default_factory=list)
    total_processed: int = 0
    total_failed: int = 0
    skipped_circuit_open: int = 0
    enrichments_by_kind: Counter = field(default_factory=Counter)
    journaled_count: int = 0
    journal_dirty: bool = False


class EnrichmentOrchestrator:
    """
    Drives providers over a message collection.
    One provider call is in flight at a time; the rate limiter is owned by this instance.
    """

    def __init__(
        self,
        config: EnrichmentConfig | None = None,
        providers: Sequence[EnrichmentProvider] = (),
        *,
        rate_limiter: RateLimiter | None = None,
        checkpoint_dir: str | Path | None = None,
        state_file: str | Path | None = None,
        show_progress: bool = False,
    ) -> None:
        """
        Create an orchestrator.

        Parameters:
            config: Run configuration; defaults to a new EnrichmentConfig().
            providers: Providers in priority order; the first enabled provider
                that supports a message handles it.
            rate_limiter: Limiter override; defaults to one built from ``config``.
            checkpoint_dir: Overrides ``config.checkpoint_dir``.
            state_file: Overrides ``config.state_file``.
            show_progress: Draw a console progress bar while running.
        """
        self.config = config or EnrichmentConfig()
        self.providers = list(providers)
        self.rate_limiter = rate_limiter or RateLimiter.from_config(self.config)
        self.checkpoint_dir = Path(checkpoint_dir or self.config.checkpoint_dir)
        self.state_file = Path(state_file or self.config.state_file)
        self.show_progress = show_progress
        self.config_hash = compute_config_hash(self.config)

        if self.config.verbose_logging:
            self.config.log_configuration()

    def default_checkpoint_path(self) -> Path:
        return get_checkpoint_path(self.checkpoint_dir, self.config_hash)

    def select_provider(self, message: Message) -> EnrichmentProvider | None:
        """First enabled provider that supports ``message``, if any."""
        for provider in self.providers:
            if slot_enabled(provider.slot, self.config) and provider.supports(message):
                return provider
        return None

    async def run(
        self,
        messages: Sequence[Message],
        *,
        resume: bool = False,
        incremental: bool = False,
        checkpoint_interval: int | None = None,
        checkpoint_path: str | Path | None = None,
    ) -> EnrichmentRunResult:
        """
        Enrich ``messages`` in input order.

        Parameters:
            messages: Collection to enrich.
            resume: Continue from the checkpoint for the current configuration.
            incremental: Only enrich messages absent from the incremental state file.
            checkpoint_interval: Overrides ``config.checkpoint_interval``.
            checkpoint_path: Explicit checkpoint file instead of the hash-named default.

        Returns:
            EnrichmentRunResult with the enriched collection and run totals.

        Raises:
            ConfigHashMismatchError: If resuming from a checkpoint written under
                a different configuration. Nothing is processed and the
                checkpoint is left untouched.
            ValueError: If ``checkpoint_interval`` is below 1.
        """
        started = time.time()
        started_at = utc_now()
        interval = (
            checkpoint_interval
            if checkpoint_interval is not None
            else self.config.checkpoint_interval
        )
        if interval < 1:
            raise ValueError("checkpoint_interval must be >= 1")  # noqa: TRY003

        path = Path(checkpoint_path) if checkpoint_path else self.default_checkpoint_path()
        journal = OutputJournal(get_journal_path(path))
        progress = _RunProgress()

        start_index = 0
        if resume:
            start_index = self._restore(path, journal, progress, len(messages))
        if start_index == 0:
            self._start_fresh(journal, progress)

        new_guids: set[str] | None = None
        previous_state: IncrementalState | None = None
        if incremental:
            delta = detect_delta(list(messages), self.state_file)
            new_guids = set(delta.new_guids)
            previous_state = None if delta.is_first_run else delta.state

        logger.info(
            f"Starting enrichment of {len(messages)} messages at index {start_index} "
            f"(checkpoint every {interval}, {path})"
        )

        with EnrichmentProgressTracker(
            len(messages), initial=start_index, disable=not self.show_progress
        ) as tracker:
            for index in range(start_index, len(messages)):
                message = messages[index]
                tracker.start_item()
                if new_guids is not None and message.guid not in new_guids:
                    enriched = message
                else:
                    enriched = await self._enrich_message(index, message, progress)

                progress.output.append(enriched)
                progress.total_processed += 1
                tracker.complete_item(progress.enrichments_by_kind)

                if should_write_checkpoint(index, interval):
                    try:
                        self._write_checkpoint(path, journal, progress, index)
                        logger.info(f"Checkpoint written at index {index + 1}/{len(messages)}")
                    except CheckpointError as e:
                        logger.warning(
                            f"Checkpoint write failed at index {index}, continuing: {e}"
                        )

        checkpoint_error: str | None = None
        try:
            self._write_checkpoint(path, journal, progress, len(messages) - 1)
        except CheckpointError as e:
            checkpoint_error = str(e)
            logger.error(f"Final checkpoint write failed: {e}")

        state_error: str | None = None
        if incremental:
            state_error = self._save_state(previous_state, progress, len(messages), started_at)

        elapsed = time.time() - started
        logger.info(
            f"Enrichment complete: {progress.total_processed} processed, "
            f"{progress.total_failed} failed, {progress.skipped_circuit_open} skipped "
            f"(circuit open) in {elapsed:.1f}s"
        )

        return EnrichmentRunResult(
            enriched=progress.output,
            total_processed=progress.total_processed,
            total_failed=progress.total_failed,
            failed_items=progress.failed_items,
            start_index=start_index,
            checkpoint_path=path,
            checkpoint_error=checkpoint_error,
            state_error=state_error,
            skipped_circuit_open=progress.skipped_circuit_open,
            enrichments_by_kind=dict(progress.enrichments_by_kind),
            elapsed_seconds=elapsed,
        )

    def _restore(
        self,
        path: Path,
        journal: OutputJournal,
        progress: _RunProgress,
        message_count: int,
    ) -> int:
        """Load the checkpoint and journal prefix into ``progress``; return the start index."""
        checkpoint = load_checkpoint(path)
        if checkpoint is None:
            logger.warning(f"No checkpoint found at {path}, starting from beginning")
            return 0

        if not verify_config_hash(checkpoint, self.config_hash):
            raise ConfigHashMismatchError(self.config_hash, checkpoint.config_hash, str(path))

        resume_index = get_resume_index(checkpoint)
        if resume_index > message_count:
            logger.warning(
                f"Checkpoint covers {resume_index} messages but input has {message_count}, "
                "starting from beginning"
            )
            return 0

        prefix = journal.load(resume_index)
        if prefix is None:
            logger.warning(
                f"Output journal {journal.path} does not cover checkpoint index "
                f"{checkpoint.last_processed_index}, starting from beginning"
            )
            return 0

        progress.output = prefix
        progress.total_processed = checkpoint.total_processed
        progress.total_failed = checkpoint.total_failed
        progress.failed_items = list(checkpoint.failed_items)
        progress.enrichments_by_kind = Counter(checkpoint.stats.enrichments_by_kind)
        progress.journaled_count = len(prefix)
        # Drop journal lines past the checkpoint so later appends line up.
        progress.journal_dirty = True

        logger.info(
            f"Resuming from checkpoint at index {resume_index} "
            f"({checkpoint.total_processed} processed, {checkpoint.total_failed} failed)"
        )
        return resume_index

    def _start_fresh(self, journal: OutputJournal, progress: _RunProgress) -> None:
        progress.output = []
        progress.failed_items = []
        progress.total_processed = 0
        progress.total_failed = 0
        progress.enrichments_by_kind = Counter()
        progress.journaled_count = 0
        try:
            journal.reset()
            progress.journal_dirty = False
        except CheckpointError as e:
            logger.warning(f"Could not reset output journal: {e}")
            progress.journal_dirty = True

    async def _enrich_message(
        self, index: int, message: Message, progress: _RunProgress
    ) -> Message:
        """Enrich one message; any exception is recorded as a failed item."""
        limiter = self.rate_limiter
        provider: EnrichmentProvider | None = None
        try:
            provider = self.select_provider(message)
            if provider is None:
                return message

            if not self.config.force_refresh and should_skip_enrichment(
                message, provider.enrichment_kind
            ):
                logger.debug(
                    f"Skipping {message.guid}: already has {kind_value(provider.enrichment_kind)}"
                )
                return message

            if limiter.is_circuit_open():
                progress.skipped_circuit_open += 1
                logger.debug(f"Circuit open, skipping enrichment of {message.guid}")
                return message

            record = await retry_with_backoff(
                provider.enrich,
                max_retries=limiter.max_retries,
                operation_args=(message, self.config),
                is_transient_error=limiter.is_retryable_error,
                delay_for=lambda error, attempt: limiter.retry_delay_ms(error, attempt) / 1000,
                before_attempt=limiter.wait_for_slot,
            )
            if not isinstance(record, MediaEnrichment):
                raise ProviderError(
                    provider.name,
                    f"returned {type(record).__name__} instead of an enrichment record",
                )
            kind = kind_value(record.kind)
            enriched = add_enrichment_idempotent(
                message, record, force_refresh=self.config.force_refresh
            )
        except Exception as e:
            limiter.record_failure()
            progress.total_failed += 1
            progress.failed_items.append(
                FailedItem(
                    index=index,
                    guid=message.guid,
                    kind=message.message_kind,
                    error=str(e) or type(e).__name__,
                )
            )
            source = provider.name if provider is not None else "provider selection"
            logger.warning(f"Enrichment failed for {message.guid} ({source}): {e}")
            return message

        limiter.record_success()
        progress.enrichments_by_kind[kind] += 1
        return enriched

    def _write_checkpoint(
        self,
        path: Path,
        journal: OutputJournal,
        progress: _RunProgress,
        last_processed_index: int,
    ) -> None:
        """Flush the journal, then save a checkpoint that never claims more than it holds.

        Raises:
            CheckpointError: If the journal or the checkpoint cannot be written.
        """
        try:
            if progress.journal_dirty:
                journal.rewrite(progress.output)
            else:
                journal.append(progress.output[progress.journaled_count :])
        except CheckpointError:
            progress.journal_dirty = True
            raise
        progress.journaled_count = len(progress.output)
        progress.journal_dirty = False

        state = create_checkpoint(
            config_hash=self.config_hash,
            last_processed_index=last_processed_index,
            total_processed=progress.total_processed,
            total_failed=progress.total_failed,
            failed_items=progress.failed_items,
            enrichments_by_kind=progress.enrichments_by_kind,
        )
        save_checkpoint(state, path)

    def _save_state(
        self,
        previous_state: IncrementalState | None,
        progress: _RunProgress,
        message_count: int,
        started_at: datetime,
    ) -> str | None:
        base = previous_state or create_incremental_state(config_hash=self.config_hash)
        stats = EnrichmentRunStats(
            processed_count=progress.total_processed,
            failed_count=progress.total_failed,
            start_time=started_at,
            end_time=utc_now(),
        )
        state = update_state_with_enriched_guids(
            base,
            (m.guid for m in progress.output),
            enrichment_stats=stats,
            total_messages=message_count,
        )
        try:
            save_incremental_state(state, self.state_file)
        except OSError as e:
            logger.error(f"Failed to save incremental state {self.state_file}: {e}")
            return str(e)
        return None
