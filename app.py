# app.py
import logging, queue, sys, threading
import pygame
import mido
from typing import Optional
from config import AppConfig
from notes.model import NoteEvent
from notes.history import HistoryLedger
from notes.detector import DuplicateDetector, Verdict
from notes.statistics import StatisticsAggregator, Stats, format_stats
from midi.parser import RawDecoder, is_note_on, note_event_from_message
from midi.ports import Forwarder, MidiInput

log = logging.getLogger(__name__)

POLL_HZ = 1000  # 每秒輪詢輸入的次數上限

class DedupSession:
    """Owns everything one running filter needs: config, history, detector, stats.

    Messages go through handle(): note-ons are checked, accepted ones are
    recorded as played and forwarded, duplicates are recorded and dropped.
    Everything else (note-off, CC, pitch bend, sysex ...) passes through.
    """
    def __init__(self, cfg: AppConfig, forwarder: Optional[Forwarder] = None):
        self.cfg = cfg
        self.history = HistoryLedger(cfg.dedup.history_max_size)
        self.detector = DuplicateDetector(cfg.dedup, self.history)
        self.stats = StatisticsAggregator(self.history)
        self.forwarder = forwarder or Forwarder()
        self.total_note_ons = 0

    def process_note_on(self, event: NoteEvent) -> Verdict:
        self.total_note_ons += 1
        verdict = self.detector.detect(event)
        if verdict.duplicate:
            self.history.append_duplicate(event, verdict.time_diff_ms)
            n_dup = self.history.counts()[1]
            log.warning("Duplicate Note detected: Note: %s (%d) | Velocity: %d | Interval: %gms | Stats: %d/%d (%.2f%%)",
                        event.identifier, event.note, event.velocity, verdict.time_diff_ms,
                        n_dup, self.total_note_ons, n_dup / self.total_note_ons * 100)
        else:
            self.history.append(event)
        return verdict

    def handle(self, msg: mido.Message, timestamp: float) -> bool:
        """Returns True when the message was forwarded."""
        if not is_note_on(msg):
            self.forwarder.send(msg)
            return True
        try:
            event = note_event_from_message(msg, timestamp)
        except ValueError as e:
            log.error("Dropping invalid note-on %s: %s", msg, e)
            return False
        verdict = self.process_note_on(event)
        if verdict.duplicate:
            log.debug("FILTERED: ch=%d note=%d vel=%d", msg.channel, msg.note, msg.velocity)
            return False
        self.forwarder.send(msg)
        log.debug("Note ON:  ch=%d note=%d vel=%d (%s)", msg.channel, msg.note, msg.velocity, verdict.reason)
        return True

    def summarize(self) -> Stats:
        return self.stats.summarize()

    def reset(self):
        self.history.clear()
        self.total_note_ons = 0
        log.info("History cleared")

class ConsoleCommands:
    """Reads 'stats' / 'clear' / 'quit' from stdin on a daemon thread.

    Commands are only queued here; the main loop applies them between polls.
    """
    COMMANDS = ("stats", "clear", "quit")

    def __init__(self, stream=None):
        self.stream = stream or sys.stdin
        self.queue: "queue.Queue[str]" = queue.Queue()
        self._thread = None

    def start(self):
        self._thread = threading.Thread(target=self._read, name="console", daemon=True)
        self._thread.start()

    def _read(self):
        for line in self.stream:
            cmd = line.strip().lower()
            if not cmd:
                continue
            if cmd in ("q", "exit"):
                cmd = "quit"
            if cmd not in self.COMMANDS:
                log.info("Unknown command %r (try: %s)", cmd, ", ".join(self.COMMANDS))
                continue
            self.queue.put(cmd)
            if cmd == "quit":
                return
        # EOF（非終端機、service）只結束讀取，不停止主迴圈

    def pending(self):
        while True:
            try:
                yield self.queue.get_nowait()
            except queue.Empty:
                return

class App:
    def __init__(self, cfg: AppConfig, midi_in: MidiInput, forwarder: Forwarder,
                 console: Optional[ConsoleCommands] = None):
        self.cfg = cfg
        self.midi_in = midi_in
        self.session = DedupSession(cfg, forwarder)
        self.decoder = RawDecoder()
        self.console = console
        self.clock = pygame.time.Clock()
        self.running = False
        self._since_stats = 0.0

    def log_stats(self):
        log.info("Statistics: %s", format_stats(self.session.summarize()))

    def apply_command(self, cmd: str):
        if cmd == "stats":
            self.log_stats()
        elif cmd == "clear":
            self.session.reset()
        elif cmd == "quit":
            self.running = False

    def poll_once(self) -> int:
        events = self.midi_in.read()
        if not events:
            return 0
        msgs = self.decoder.decode(events)
        for msg, ts in msgs:
            self.session.handle(msg, ts)
        return len(msgs)

    def run(self):
        self.running = True
        if self.console:
            self.console.start()
        try:
            while self.running:
                dt = self.clock.tick(POLL_HZ) / 1000.0
                self.poll_once()
                if self.console:
                    for cmd in self.console.pending():
                        self.apply_command(cmd)
                if self.cfg.stats_every > 0:
                    self._since_stats += dt
                    if self._since_stats >= self.cfg.stats_every:
                        self._since_stats = 0.0
                        self.log_stats()
        except KeyboardInterrupt:
            log.info("Shutting down...")
        finally:
            self.running = False
            self.log_stats()
            self.close()

    def close(self):
        self.midi_in.close()
        self.session.forwarder.close()
