# notes/model.py
import math
from dataclasses import dataclass

NOTE_NAMES = ["C", "C#", "D", "D#", "E", "F", "F#", "G", "G#", "A", "A#", "B"]

def note_name(number: int) -> str:
    """60 -> 'C4'（中央 C = C4）"""
    return f"{NOTE_NAMES[number % 12]}{number // 12 - 1}"

def round_half_up(x: float) -> float:
    # 與 JS Math.round 一致，不用 Python 的 banker's rounding
    return float(math.floor(x + 0.5))

def _check_range(name: str, value: int, hi: int):
    if not (0 <= value <= hi):
        raise ValueError(f"{name} out of range 0-{hi}: {value}")

@dataclass(frozen=True)
class NoteEvent:
    timestamp: float  # ms, source clock (not wall clock)
    note: int         # MIDI note number
    velocity: int     # raw velocity
    channel: int = 0

    def __post_init__(self):
        _check_range("note", self.note, 127)
        _check_range("velocity", self.velocity, 127)
        _check_range("channel", self.channel, 15)

    @property
    def identifier(self) -> str:
        return note_name(self.note)

@dataclass(frozen=True)
class DuplicateNote:
    event: NoteEvent
    time_diff_ms: float  # gap to the last played note of the same pitch
