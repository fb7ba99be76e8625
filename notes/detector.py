# ========================= notes/detector.py =========================
import logging
from dataclasses import dataclass
from typing import Optional
from notes.model import NoteEvent, round_half_up
from notes.history import HistoryLedger
from config import DedupConfig

log = logging.getLogger(__name__)

@dataclass(frozen=True)
class Verdict:
    duplicate: bool
    time_diff_ms: Optional[float] = None  # None when no earlier note of that pitch
    match: Optional[NoteEvent] = None
    reason: str = "no-match"  # no-match / duplicate / too-late / too-loud / flam

class DuplicateDetector:
    """Decide whether an incoming note-on is the echo of the last played one.

    Only the single most recent played note of the same pitch is consulted.
    A note is a duplicate when it arrives less than ``time_threshold`` ms
    after that note AND its velocity is below ``velocity_threshold``.
    The detector never writes to the ledger; the caller records the verdict.
    """
    def __init__(self, cfg: DedupConfig, history: HistoryLedger):
        self.cfg = cfg
        self.history = history

    def detect(self, event: NoteEvent) -> Verdict:
        last = self.history.most_recent_match(event.note)
        if last is None:
            return Verdict(False)

        diff = round_half_up(event.timestamp - last.timestamp)
        if diff < 0:
            log.debug("Out-of-order timestamp on %s: %sms", event.identifier, diff)

        if diff >= self.cfg.time_threshold:
            return Verdict(False, diff, last, "too-late")
        if event.velocity >= self.cfg.velocity_threshold:
            return Verdict(False, diff, last, "too-loud")

        # flam / accent：比上一下更大聲，視為有意的第二擊
        if self.cfg.flam_detection and event.velocity > last.velocity:
            log.debug("Flam/Accent detected (Allowed): Note: %d | Vel: %d > %d | Interval: %sms",
                      event.note, event.velocity, last.velocity, diff)
            return Verdict(False, diff, last, "flam")

        return Verdict(True, diff, last, "duplicate")

    def is_duplicate(self, event: NoteEvent) -> bool:
        return self.detect(event).duplicate
