"""Occurrence detection over normalized transcript chunks.

Two strategies, picked by ``TargetPattern.mode``:

* ``FUZZY_WINDOW`` slides a window the size of the collapsed target over the
  collapsed chunk and reports every window within ``max_edit_distance``.
  Overlapping hits are left for the counter to collapse.
* ``EXACT_RUN`` splits the chunk into tokens and reports one event per
  maximal run of the target token.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from typing import Callable, Dict, List

from models import DetectionEvent, MatchMode, TargetPattern
from normalizer import collapse

logger = logging.getLogger(__name__)

Strategy = Callable[[str, TargetPattern, int], List[DetectionEvent]]


def edit_distance(a: str, b: str) -> int:
    """Levenshtein distance with unit costs, one rolling row."""
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)
    if len(a) < len(b):
        a, b = b, a
    prev_row = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        curr_row = [i]
        for j, cb in enumerate(b, start=1):
            insert_cost = curr_row[j - 1] + 1
            delete_cost = prev_row[j] + 1
            replace_cost = prev_row[j - 1] + (0 if ca == cb else 1)
            curr_row.append(min(insert_cost, delete_cost, replace_cost))
        prev_row = curr_row
    return prev_row[-1]


def detect_fuzzy_window(text: str, pattern: TargetPattern, sequence: int = 0) -> List[DetectionEvent]:
    collapsed = collapse(text)
    if not collapsed:
        return []

    target = pattern.collapsed_target
    size = pattern.target_length
    limit = pattern.max_edit_distance

    if len(collapsed) < size:
        distance = edit_distance(collapsed, target)
        if distance <= limit:
            return [
                DetectionEvent(
                    chunk_sequence=sequence,
                    matched_span=collapsed,
                    distance=distance,
                    mode=MatchMode.FUZZY_WINDOW,
                )
            ]
        return []

    events: List[DetectionEvent] = []
    for start in range(len(collapsed) - size + 1):
        window = collapsed[start : start + size]
        distance = edit_distance(window, target)
        if distance <= limit:
            events.append(
                DetectionEvent(
                    chunk_sequence=sequence,
                    matched_span=window,
                    distance=distance,
                    mode=MatchMode.FUZZY_WINDOW,
                )
            )
    return events


def detect_exact_run(text: str, pattern: TargetPattern, sequence: int = 0) -> List[DetectionEvent]:
    target = pattern.collapsed_target
    events: List[DetectionEvent] = []
    in_run = False
    for token in text.split():
        if token != target:
            in_run = False
            continue
        if not in_run:
            events.append(
                DetectionEvent(
                    chunk_sequence=sequence,
                    matched_span=token,
                    distance=0,
                    mode=MatchMode.EXACT_RUN,
                    weight=pattern.run_weight,
                )
            )
        in_run = True
    return events


_STRATEGIES: Dict[MatchMode, Strategy] = {
    MatchMode.FUZZY_WINDOW: detect_fuzzy_window,
    MatchMode.EXACT_RUN: detect_exact_run,
}


def detect(text: str, pattern: TargetPattern, sequence: int = 0) -> List[DetectionEvent]:
    """Return detection events for one normalized chunk."""
    if not pattern.collapsed_target:
        logger.warning("Empty target pattern %r; nothing will be detected", pattern.phrase)
        return []
    if pattern.max_edit_distance < 0:
        logger.warning("Negative max_edit_distance clamped to 0")
        pattern = replace(pattern, max_edit_distance=0)
    events = _STRATEGIES[pattern.mode](text, pattern, sequence)
    if events:
        logger.debug("Chunk %d produced %d detection(s)", sequence, len(events))
    return events
