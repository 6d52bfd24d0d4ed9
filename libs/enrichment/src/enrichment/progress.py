"""Console progress for long enrichment runs."""

import time
from collections import deque
from collections.abc import Callable, Mapping
from typing import Any

from tqdm import tqdm

DEFAULT_ETA_WINDOW = 10


class EnrichmentProgressTracker:
    """
    Overall progress bar with per-kind enrichment counts.

    The ETA is the mean duration of the last ``window`` items times the
    number of items left, so it follows the current provider pace instead
    of the whole-run average.
    """

    def __init__(
        self,
        total: int,
        *,
        initial: int = 0,
        disable: bool = False,
        window: int = DEFAULT_ETA_WINDOW,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if window < 1:
            raise ValueError("window must be >= 1")  # noqa: TRY003
        self.total = total
        self.processed = initial
        self.counts: dict[str, int] = {}
        self._durations: deque[float] = deque(maxlen=window)
        self._clock = clock
        self._item_started: float | None = None
        self._bar = tqdm(
            total=total,
            initial=initial,
            desc="Enriching",
            unit="msg",
            disable=disable,
        )

    def __enter__(self) -> "EnrichmentProgressTracker":
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def start_item(self) -> None:
        self._item_started = self._clock()

    def complete_item(self, counts: Mapping[str, int] | None = None) -> None:
        """Advance by one item and refresh the per-kind counts shown on the bar."""
        if self._item_started is not None:
            self._durations.append(self._clock() - self._item_started)
            self._item_started = None
        self.processed += 1
        if counts is not None:
            self.counts = dict(counts)
        self._bar.update(1)
        self._bar.set_postfix(self.postfix(), refresh=False)

    def average_duration(self) -> float:
        if not self._durations:
            return 0.0
        return sum(self._durations) / len(self._durations)

    def eta_seconds(self) -> float:
        remaining = max(self.total - self.processed, 0)
        return remaining * self.average_duration()

    def postfix(self) -> dict[str, str]:
        fields = {kind: str(count) for kind, count in sorted(self.counts.items())}
        fields["eta"] = format_eta(self.eta_seconds())
        return fields

    def close(self) -> None:
        self._bar.close()


def format_eta(seconds: float) -> str:
    """Render seconds as ``H:MM:SS`` (or ``M:SS`` under an hour)."""
    total = int(round(seconds))
    hours, rest = divmod(total, 3600)
    minutes, secs = divmod(rest, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"
