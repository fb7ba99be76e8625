# ========================= notes/statistics.py =========================
from dataclasses import dataclass, asdict
from notes.history import HistoryLedger
from notes.model import round_half_up

@dataclass(frozen=True)
class Stats:
    notes_played: int
    duplicates_detected: int
    duplicate_ratio: float            # ratio (0.5), not percent
    avg_suppressed_interval_ms: float  # 0.0 when nothing was suppressed

    def to_dict(self) -> dict:
        return asdict(self)

class StatisticsAggregator:
    """Summary over the current ledger contents; nothing is cached."""
    def __init__(self, history: HistoryLedger):
        self.history = history

    def summarize(self) -> Stats:
        played, dups = self.history.snapshot()
        n_played, n_dup = len(played), len(dups)
        ratio = round_half_up(n_dup / max(n_played, 1) * 10000) / 10000
        avg = sum(d.time_diff_ms for d in dups) / n_dup if n_dup else 0.0
        return Stats(n_played, n_dup, ratio, avg)

def format_stats(stats: Stats) -> str:
    return (f"Notes played: {stats.notes_played} | Duplicate Notes: {stats.duplicates_detected} | "
            f"Ratio: {round_half_up(stats.duplicate_ratio * 100):g}% | "
            f"Avg. time diff: {stats.avg_suppressed_interval_ms:g}ms")
