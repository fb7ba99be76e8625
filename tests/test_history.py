import pytest
from notes.model import NoteEvent
from notes.history import HistoryLedger


def ev(t, note=60, vel=100):
    return NoteEvent(timestamp=t, note=note, velocity=vel)


def test_empty_ledger_has_no_match():
    h = HistoryLedger(10)
    assert h.most_recent_match(60) is None
    assert len(h) == 0
    assert h.snapshot() == ((), ())


def test_most_recent_match_is_latest_same_pitch():
    h = HistoryLedger(100)
    a, b, c = ev(0, 60), ev(10, 62), ev(20, 60)
    for e in (a, b, c):
        h.append(e)
    assert h.most_recent_match(60) is c
    assert h.most_recent_match(62) is b
    assert h.most_recent_match(64) is None


def test_overflow_drops_oldest_tenth():
    h = HistoryLedger(10)
    events = [ev(i, note=i) for i in range(11)]
    for e in events:
        h.append(e)
    assert len(h) == 10
    assert h.played == tuple(events[1:])
    assert h.most_recent_match(0) is None
    assert h.most_recent_match(10) is events[10]


def test_overflow_drops_to_bound_minus_batch_then_grows():
    h = HistoryLedger(100)
    for i in range(100):
        h.append(ev(i, note=i % 128))
    assert len(h) == 100
    h.append(ev(100, note=1))
    # 100 - 10 kept, plus the new one
    assert len(h) == 91
    assert h.played[0].timestamp == 10


def test_length_never_exceeds_bound():
    h = HistoryLedger(37)
    for i in range(1000):
        h.append(ev(i, note=i % 128))
        assert len(h) <= 37


def test_small_capacity_still_bounded():
    h = HistoryLedger(3)
    for i in range(20):
        h.append(ev(i, note=i % 5))
    assert len(h) <= 3
    assert h.played[-1].timestamp == 19


def test_index_matches_backward_scan_after_eviction():
    h = HistoryLedger(20)
    for i in range(137):
        h.append(ev(i, note=(i * 7) % 11))
    played = h.played
    for note in range(12):
        expected = next((e for e in reversed(played) if e.note == note), None)
        assert h.most_recent_match(note) is expected


def test_duplicates_are_unbounded_and_separate():
    h = HistoryLedger(5)
    for i in range(50):
        h.append_duplicate(ev(i, vel=10), 12)
    assert len(h.duplicates) == 50
    assert len(h) == 0
    assert h.duplicates[0].time_diff_ms == 12.0
    assert h.counts() == (0, 50)


def test_clear_empties_both():
    h = HistoryLedger(10)
    h.append(ev(0))
    h.append_duplicate(ev(5, vel=20), 5)
    h.clear()
    assert h.snapshot() == ((), ())
    assert h.most_recent_match(60) is None


def test_invalid_capacity():
    with pytest.raises(ValueError):
        HistoryLedger(0)
