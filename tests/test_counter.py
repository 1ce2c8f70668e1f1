from __future__ import annotations

from counter import DebounceCounter
from detector import detect
from models import CounterState, DetectionEvent, MatchMode, TargetPattern


def _fuzzy(sequence: int, distance: int = 0) -> DetectionEvent:
    return DetectionEvent(chunk_sequence=sequence, matched_span="x", distance=distance)


def _run(sequence: int, weight: int = 1) -> DetectionEvent:
    return DetectionEvent(
        chunk_sequence=sequence,
        matched_span="x",
        distance=0,
        mode=MatchMode.EXACT_RUN,
        weight=weight,
    )


def test_overlapping_windows_from_one_chunk_count_once() -> None:
    counter = DebounceCounter()

    state = counter.apply([_fuzzy(1), _fuzzy(1, 1), _fuzzy(1, 2)])

    assert state == CounterState(count=1, in_run=True)


def test_each_chunk_counts_separately() -> None:
    counter = DebounceCounter()
    counter.apply([_fuzzy(1), _fuzzy(1)])
    counter.apply([])
    state = counter.apply([_fuzzy(2)])

    assert state.count == 2


def test_exact_run_events_always_advance_by_weight() -> None:
    counter = DebounceCounter()

    state = counter.apply([_run(1, 2), _run(1, 2)])

    assert state.count == 4
    assert state.in_run is False


def test_run_collapsing_through_detector() -> None:
    pattern = TargetPattern(phrase="X", mode=MatchMode.EXACT_RUN, run_weight=1)
    counter = DebounceCounter()

    assert counter.apply(detect("x x x", pattern, 1)).count == 1
    assert counter.apply(detect("x y x", pattern, 2)).count == 3


def test_count_is_monotonic_and_matches_accepted_events() -> None:
    counter = DebounceCounter()
    batches = [[_fuzzy(1), _fuzzy(1)], [], [_run(2)], [_fuzzy(3)], [_run(4), _run(4)]]

    seen = []
    for batch in batches:
        seen.append(counter.apply(batch).count)

    assert seen == sorted(seen)
    assert seen[-1] == 5


def test_reset_clears_count_and_open_run() -> None:
    counter = DebounceCounter()
    counter.apply([_fuzzy(7)])

    assert counter.reset() == CounterState()
    assert counter.state == CounterState()

    # a later window from the same chunk starts fresh instead of being suppressed
    assert counter.apply([_fuzzy(7)]).count == 1


def test_negative_weight_is_clamped() -> None:
    counter = DebounceCounter()
    counter.apply([_run(1, 2)])

    assert counter.apply([_run(2, -5)]).count == 2
