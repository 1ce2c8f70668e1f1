"""Running occurrence counter with run collapsing."""

from __future__ import annotations

import logging
import threading
from typing import Iterable, Optional

from models import CounterState, DetectionEvent, MatchMode

logger = logging.getLogger(__name__)


class DebounceCounter:
    """Integrates detection events into a count that only moves up.

    Fuzzy-window events from one chunk count once no matter how many
    overlapping windows matched. Exact-run events are already one per run
    and each adds its weight.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._count = 0
        self._in_run = False
        self._counted_sequence: Optional[int] = None

    @property
    def state(self) -> CounterState:
        with self._lock:
            return CounterState(count=self._count, in_run=self._in_run)

    def apply(self, events: Iterable[DetectionEvent]) -> CounterState:
        with self._lock:
            for event in events:
                self._apply_one(event)
            return CounterState(count=self._count, in_run=self._in_run)

    def reset(self) -> CounterState:
        with self._lock:
            self._count = 0
            self._in_run = False
            self._counted_sequence = None
            return CounterState()

    def _apply_one(self, event: DetectionEvent) -> None:
        weight = event.weight
        if weight < 0:
            logger.warning("Negative detection weight %d clamped to 0", weight)
            weight = 0

        if event.mode == MatchMode.FUZZY_WINDOW:
            if self._in_run and self._counted_sequence == event.chunk_sequence:
                return
            self._counted_sequence = event.chunk_sequence
            self._in_run = True
            self._count += weight
            return

        self._in_run = False
        self._counted_sequence = None
        self._count += weight
