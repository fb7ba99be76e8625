# midi/ports.py
import logging
import pygame.midi
import mido
from typing import List, Optional, Sequence, Tuple

log = logging.getLogger(__name__)

class PortNotFoundError(LookupError):
    pass

def _devices() -> List[Tuple[int, str, bool, bool]]:
    """(device_id, name, is_input, is_output) for every PortMidi device."""
    out = []
    for i in range(pygame.midi.get_count()):
        _interf, name, is_in, is_out, _opened = pygame.midi.get_device_info(i)
        if isinstance(name, bytes):
            name = name.decode("utf-8", errors="replace")
        out.append((i, name, bool(is_in), bool(is_out)))
    return out

def input_ports() -> List[Tuple[int, str]]:
    return [(i, n) for i, n, is_in, _ in _devices() if is_in]

def output_ports() -> List[Tuple[int, str]]:
    return [(i, n) for i, n, _, is_out in _devices() if is_out]

def match_port_name(names: Sequence[str], wanted: str) -> Optional[int]:
    """Index of ``wanted`` in ``names``: exact (case-insensitive) first, then prefix.

    Windows 換 USB 孔時會在名稱後加 " 2"、" 3"，所以用前綴比對當後備。
    """
    if not wanted or not wanted.strip():
        return None
    key = wanted.strip().lower()
    for idx, n in enumerate(names):
        if n.strip().lower() == key:
            return idx
    for idx, n in enumerate(names):
        if n.strip().lower().startswith(key):
            return idx
    return None

def _find(ports: List[Tuple[int, str]], name: str, kind: str) -> Tuple[int, str]:
    idx = match_port_name([n for _, n in ports], name)
    if idx is None:
        raise PortNotFoundError(f"MIDI {kind} device '{name}' not found")
    return ports[idx]

def find_input(name: str) -> Tuple[int, str]:
    return _find(input_ports(), name, "input")

def find_output(name: str) -> Tuple[int, str]:
    return _find(output_ports(), name, "output")

def _find_from_list(ports, names: Sequence[str], kind: str) -> Tuple[int, str]:
    for name in names:
        if not name:
            continue
        idx = match_port_name([n for _, n in ports], name)
        if idx is not None:
            return ports[idx]
    raise PortNotFoundError(f"no MIDI {kind} device found from list: {list(names)}")

def find_input_from_list(names: Sequence[str]) -> Tuple[int, str]:
    return _find_from_list(input_ports(), names, "input")

def find_output_from_list(names: Sequence[str]) -> Tuple[int, str]:
    return _find_from_list(output_ports(), names, "output")

def format_devices() -> str:
    lines = ["Available MIDI Input Devices:"]
    ins = input_ports()
    lines += [f"  {i}: {n}" for i, n in ins] or ["  (none)"]
    lines += ["", "Available MIDI Output Devices:"]
    outs = output_ports()
    lines += [f"  {i}: {n}" for i, n in outs] or ["  (none)"]
    return "\n".join(lines)

class MidiInput:
    def __init__(self, device_id: int, name: str = "", buffer_size: int = 4096):
        self.name = name
        self._port = pygame.midi.Input(device_id, buffer_size)

    def read(self, max_events: int = 256):
        """Raw ``[[status, d1, d2, d3], timestamp_ms]`` events, [] when idle."""
        if not self._port.poll():
            return []
        return self._port.read(max_events)

    def close(self):
        if self._port is not None:
            self._port.close()
            self._port = None

class MidiOutput:
    def __init__(self, device_id: int, name: str = ""):
        self.name = name
        self._port = pygame.midi.Output(device_id, latency=0)

    def send(self, msg: mido.Message):
        data = msg.bytes()
        if msg.type == "sysex":
            self._port.write_sys_ex(0, data)
        else:
            self._port.write_short(*data)

    def close(self):
        if self._port is not None:
            self._port.close()
            self._port = None

class Forwarder:
    """Sends each message to every configured output port (at most two)."""
    def __init__(self, outputs=None):
        self.outputs = list(outputs or [])

    def send(self, msg: mido.Message):
        for out in self.outputs:
            try:
                out.send(msg)
            except Exception as e:
                # 單一輸出失敗不影響其他埠，也不中斷處理
                log.debug("Error sending %s to %s: %s", msg.type, getattr(out, "name", out), e)

    def close(self):
        for out in self.outputs:
            out.close()
        self.outputs = []
