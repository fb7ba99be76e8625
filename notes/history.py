# ========================= notes/history.py =========================
import threading
from typing import Dict, List, Optional, Tuple
from notes.model import NoteEvent, DuplicateNote

class HistoryLedger:
    """Played notes (bounded) and duplicated notes (unbounded) of one session.

    Played history is trimmed in batches: once it grows past ``max_size``
    the oldest ``max_size // 10`` entries are dropped at once instead of one
    entry per append. A ``note -> last played event`` index gives the same
    answer as scanning the played list backwards, also after trimming.
    One lock guards both logs, so clear() is atomic for any reader.
    """
    def __init__(self, max_size: int = 25000):
        if max_size < 1:
            raise ValueError(f"history max size must be >= 1: {max_size}")
        self.max_size = max_size
        self._played: List[NoteEvent] = []
        self._duplicates: List[DuplicateNote] = []
        self._last_by_note: Dict[int, NoteEvent] = {}
        self._lock = threading.Lock()

    @property
    def evict_count(self) -> int:
        # 小容量時 max_size // 10 為 0，至少丟 1 筆才不會無限成長
        return max(1, self.max_size // 10)

    def append(self, event: NoteEvent) -> None:
        with self._lock:
            self._played.append(event)
            self._last_by_note[event.note] = event
            if len(self._played) > self.max_size:
                self._evict()

    def _evict(self) -> None:
        """Drop the oldest batch. Called with lock held."""
        n = self.evict_count
        dropped, self._played = self._played[:n], self._played[n:]
        for ev in dropped:
            # 若該 pitch 最新的一筆被丟掉，代表剩下的都沒有這個 pitch
            if self._last_by_note.get(ev.note) is ev:
                del self._last_by_note[ev.note]

    def append_duplicate(self, event: NoteEvent, time_diff_ms: float) -> DuplicateNote:
        dup = DuplicateNote(event=event, time_diff_ms=float(time_diff_ms))
        with self._lock:
            self._duplicates.append(dup)
        return dup

    def clear(self) -> None:
        with self._lock:
            self._played = []
            self._duplicates = []
            self._last_by_note = {}

    def most_recent_match(self, note: int) -> Optional[NoteEvent]:
        with self._lock:
            return self._last_by_note.get(note)

    def snapshot(self) -> Tuple[Tuple[NoteEvent, ...], Tuple[DuplicateNote, ...]]:
        with self._lock:
            return tuple(self._played), tuple(self._duplicates)

    @property
    def played(self) -> Tuple[NoteEvent, ...]:
        with self._lock:
            return tuple(self._played)

    @property
    def duplicates(self) -> Tuple[DuplicateNote, ...]:
        with self._lock:
            return tuple(self._duplicates)

    def counts(self) -> Tuple[int, int]:
        """(played, duplicates)"""
        with self._lock:
            return len(self._played), len(self._duplicates)

    def __len__(self) -> int:
        with self._lock:
            return len(self._played)
