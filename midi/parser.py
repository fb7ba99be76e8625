# midi/parser.py
import mido
from typing import List, Tuple
from notes.model import NoteEvent

# 每個 status 需要的位元組數（含 status）；sysex 另外處理
_SYSTEM_LENGTHS = {0xF1: 2, 0xF2: 3, 0xF3: 2, 0xF6: 1}

def message_length(status: int) -> int:
    if status < 0xF0:
        return 2 if (status & 0xF0) in (0xC0, 0xD0) else 3
    if status >= 0xF8:
        return 1  # realtime
    return _SYSTEM_LENGTHS.get(status, 1)

class RawDecoder:
    """Turns pygame.midi input events into timestamped mido messages.

    pygame.midi delivers ``[[status, d1, d2, d3], timestamp_ms]``. Channel and
    system messages only use the leading bytes; sysex arrives packed four
    bytes per event until 0xF7.
    """
    def __init__(self):
        self._parser = mido.Parser()
        self._in_sysex = False

    def _chunk(self, data) -> List[int]:
        data = [int(b) & 0xFF for b in data]
        if not data:
            return []
        head = data[0]
        if head == 0xF0 or (self._in_sysex and head < 0x80):
            out = []
            for b in data:
                out.append(b)
                if b == 0xF7:
                    self._in_sysex = False
                    return out
            self._in_sysex = True
            return out
        if head >= 0xF8:
            return [head]  # realtime 可插在 sysex 中間，不影響 sysex 狀態
        if head < 0x80:
            return []  # stray data bytes
        self._in_sysex = False
        return data[:message_length(head)]

    def decode(self, raw_events) -> List[Tuple[mido.Message, float]]:
        out: List[Tuple[mido.Message, float]] = []
        for data, ts in raw_events:
            self._parser.feed(self._chunk(data))
            for msg in self._parser:
                out.append((msg, float(ts)))
        return out

def is_note_on(msg: mido.Message) -> bool:
    # velocity 0 的 note_on 依慣例等同 note_off
    return msg.type == "note_on" and msg.velocity > 0

def note_event_from_message(msg: mido.Message, timestamp: float) -> NoteEvent:
    return NoteEvent(timestamp=float(timestamp), note=msg.note, velocity=msg.velocity, channel=msg.channel)
