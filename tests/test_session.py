import io
import random

import mido
import pytest

from app import App, ConsoleCommands, DedupSession
from config import AppConfig, DedupConfig
from midi.ports import Forwarder
from notes.model import NoteEvent
from notes.statistics import Stats


class FakeOut:
    name = "fake"

    def __init__(self):
        self.sent = []

    def send(self, msg):
        self.sent.append(msg)

    def close(self):
        pass


class FakeInput:
    def __init__(self, batches):
        self.batches = list(batches)
        self.closed = False

    def read(self, max_events=256):
        return self.batches.pop(0) if self.batches else []

    def close(self):
        self.closed = True


def make_session(**dedup):
    out = FakeOut()
    cfg = AppConfig(dedup=DedupConfig(**dedup))
    return DedupSession(cfg, Forwarder([out])), out


def note_on(note, vel, ch=0):
    return mido.Message("note_on", channel=ch, note=note, velocity=vel)


def test_bounce_scenario():
    s, out = make_session(time_threshold=60, velocity_threshold=127)
    assert s.handle(note_on(60, 100), 0)
    assert not s.handle(note_on(60, 50), 30)
    assert s.handle(note_on(60, 20), 200)

    assert s.history.duplicates[0].time_diff_ms == 30.0
    assert s.summarize() == Stats(2, 1, 0.5, 30.0)
    assert [m.velocity for m in out.sent] == [100, 20]


def test_first_note_at_threshold_velocity_is_accepted():
    s, out = make_session(time_threshold=60, velocity_threshold=127)
    assert s.handle(note_on(61, 127), 10)
    assert len(out.sent) == 1


def test_eviction_scenario_forgets_discarded_pitch():
    s, _ = make_session(history_max_size=10)
    for i in range(11):
        s.process_note_on(NoteEvent(i, i, 100))
    assert len(s.history) == 10
    assert s.history.most_recent_match(0) is None


def test_every_event_lands_in_exactly_one_ledger():
    rnd = random.Random(7)
    s, _ = make_session(time_threshold=40, velocity_threshold=90, history_max_size=100000)
    events = []
    t = 0.0
    for _ in range(2000):
        t += rnd.choice([0, 1, 5, 20, 35, 80])
        events.append(NoteEvent(t, rnd.randint(36, 40), rnd.randint(1, 127)))
    for e in events:
        s.process_note_on(e)

    played, dups = s.history.snapshot()
    played_ids = {id(e) for e in played}
    dup_ids = {id(d.event) for d in dups}
    assert not played_ids & dup_ids
    assert played_ids | dup_ids == {id(e) for e in events}
    assert all(d.time_diff_ms >= 0 for d in dups)


def test_reset_then_summary_is_zero():
    s, _ = make_session()
    s.handle(note_on(60, 100), 0)
    s.handle(note_on(60, 10), 5)
    s.reset()
    stats = s.summarize()
    assert (stats.notes_played, stats.duplicates_detected, stats.duplicate_ratio) == (0, 0, 0.0)
    s.reset()
    assert s.summarize() == stats


@pytest.mark.parametrize("msg", [
    mido.Message("note_off", note=60, velocity=0),
    mido.Message("note_on", note=60, velocity=0),
    mido.Message("control_change", control=64, value=127),
    mido.Message("pitchwheel", pitch=100),
    mido.Message("sysex", data=[1, 2, 3]),
])
def test_non_note_on_messages_pass_through(msg):
    s, out = make_session()
    assert s.handle(msg, 0)
    assert out.sent == [msg]
    assert s.summarize().notes_played == 0


def test_note_offs_of_duplicates_are_still_forwarded():
    s, out = make_session()
    s.handle(note_on(60, 100), 0)
    s.handle(note_on(60, 10), 4)
    s.handle(mido.Message("note_off", note=60), 8)
    s.handle(mido.Message("note_off", note=60), 9)
    assert [m.type for m in out.sent] == ["note_on", "note_off", "note_off"]


def test_duplicate_is_logged_as_warning(caplog):
    s, _ = make_session()
    s.handle(note_on(60, 100), 0)
    with caplog.at_level("WARNING"):
        s.handle(note_on(60, 10), 12)
    assert "Duplicate Note detected: Note: C4 (60) | Velocity: 10 | Interval: 12ms" in caplog.text


def test_console_commands_are_queued():
    console = ConsoleCommands(io.StringIO("stats\n\nbogus\nCLEAR\nq\nstats\n"))
    console._read()
    assert list(console.pending()) == ["stats", "clear", "quit"]


def test_console_eof_only_stops_reading():
    console = ConsoleCommands(io.StringIO("stats\n"))
    console._read()
    assert list(console.pending()) == ["stats"]


class TestApp:

    def make_app(self, batches):
        out = FakeOut()
        midi_in = FakeInput(batches)
        app = App(AppConfig(), midi_in, Forwarder([out]))
        return app, midi_in, out

    def test_poll_once_filters_bounces(self):
        app, _, out = self.make_app([[
            [[0x99, 38, 110, 0], 1000],
            [[0x99, 38, 30, 0], 1008],
            [[0x89, 38, 0, 0], 1050],
        ]])
        assert app.poll_once() == 3
        assert [(m.type, m.velocity) for m in out.sent] == [("note_on", 110), ("note_off", 0)]
        assert app.session.summarize().duplicates_detected == 1
        assert app.poll_once() == 0

    def test_commands(self):
        app, midi_in, _ = self.make_app([[[[0x90, 60, 100, 0], 0]]])
        app.poll_once()
        app.running = True
        app.apply_command("clear")
        assert app.session.summarize().notes_played == 0
        app.apply_command("quit")
        assert not app.running

    def test_close_closes_ports(self):
        app, midi_in, _ = self.make_app([])
        app.close()
        assert midi_in.closed
        assert app.session.forwarder.outputs == []


class StoppingInput:
    """Idle input that stops the app after a fixed number of polls."""

    def __init__(self, polls):
        self.polls = polls
        self.reads = 0
        self.app = None
        self.closed = False

    def read(self, max_events=256):
        self.reads += 1
        if self.reads >= self.polls:
            self.app.running = False
        return []

    def close(self):
        self.closed = True


class FakeClock:
    def __init__(self, ms):
        self.ms = ms

    def tick(self, fps=0):
        return self.ms


class TestAppRun:

    def make_app(self, polls, console=None, stats_every=0.0):
        midi_in = StoppingInput(polls)
        app = App(AppConfig(stats_every=stats_every), midi_in, Forwarder([FakeOut()]), console=console)
        app.clock = FakeClock(500)
        midi_in.app = app
        return app, midi_in

    def test_keeps_running_when_stdin_is_empty(self):
        app, midi_in = self.make_app(50, console=ConsoleCommands(io.StringIO("")))
        app.run()
        assert midi_in.reads == 50
        assert midi_in.closed

    def test_quit_command_stops_loop(self):
        app, midi_in = self.make_app(10_000, console=ConsoleCommands(io.StringIO("quit\n")))
        app.console._read()
        app.console.start = lambda: None
        app.run()
        assert midi_in.reads == 1

    def test_stats_logged_every_interval_and_at_exit(self, caplog):
        app, _ = self.make_app(6, stats_every=1.0)
        with caplog.at_level("INFO", logger="app"):
            app.run()
        lines = [r for r in caplog.records if r.getMessage().startswith("Statistics:")]
        assert len(lines) == 4

    def test_no_periodic_stats_when_disabled(self, caplog):
        app, _ = self.make_app(6)
        with caplog.at_level("INFO", logger="app"):
            app.run()
        lines = [r for r in caplog.records if r.getMessage().startswith("Statistics:")]
        assert len(lines) == 1
