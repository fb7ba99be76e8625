# main.py
import sys, os
sys.path.append(os.path.dirname(os.path.abspath(__file__)))  # 確保能找到 config.py

from utils.crashlog import setup_crashlog, log_exception, log_dir

import argparse, logging, time, traceback
from logging.handlers import RotatingFileHandler
from config import (ConfigError, DEFAULT_CONFIG_PATH, DEFAULT_INPUTS, DEFAULT_OUTPUTS,
                    load_config, reset_config, save_config)

__version__ = "1.0.0"

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

def _init_logging(debug: bool = False):
    root = logging.getLogger()
    if root.handlers:
        return
    level = logging.DEBUG if debug else logging.INFO
    logging.basicConfig(level=level, format=LOG_FORMAT)
    try:
        fh = RotatingFileHandler(os.path.join(log_dir(), "midi-deduper.log"),
                                 maxBytes=2*1024*1024, backupCount=3, encoding="utf-8")
        fh.setLevel(level)
        fh.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(fh)
    except OSError as e:
        logging.warning("File logging disabled: %s", e)

def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="midi-deduper",
                                 description="Filter double-triggered MIDI note-on events (chatter) between a pad and its outputs")
    ap.add_argument('--input', help='Input MIDI device name (default: from config / auto-detect)')
    ap.add_argument('--output', help='Forward MIDI device name (default: from config / auto-detect)')
    ap.add_argument('--output2', help='Optional second forward MIDI device')
    ap.add_argument('--time', type=int, help='Time threshold in ms for duplicate detection')
    ap.add_argument('--velocity', type=int, help='Velocity threshold (0-127) for duplicate detection')
    ap.add_argument('--history-size', type=int, help='Maximum number of played notes kept in history')
    ap.add_argument('--flam', action='store_true', default=None, help='Let louder quick re-hits (flams/accents) through')
    ap.add_argument('--stats-every', type=float, help='Log statistics every N seconds (0 = off)')
    ap.add_argument('--config', default=DEFAULT_CONFIG_PATH, help='JSON config file')
    ap.add_argument('--save-config', action='store_true', help='Write the effective settings to the config file')
    ap.add_argument('--reset-config', action='store_true', help='Delete the config file and exit')
    ap.add_argument('--list', action='store_true', help='List available MIDI devices and exit')
    ap.add_argument('--wait', type=int, default=0, help='Startup delay in seconds (e.g. wait for loopMIDI)')
    ap.add_argument('--debug', action='store_true', help='Debug logging (every note, send errors)')
    ap.add_argument('--version', action='store_true', help='Show version and exit')
    return ap

def apply_overrides(cfg, args):
    """CLI flags win over the config file."""
    if args.input: cfg.ports.input_port = args.input
    if args.output: cfg.ports.forward_port_1 = args.output
    if args.output2: cfg.ports.forward_port_2 = args.output2
    if args.time is not None: cfg.dedup.time_threshold = args.time
    if args.velocity is not None: cfg.dedup.velocity_threshold = args.velocity
    if args.history_size is not None: cfg.dedup.history_max_size = args.history_size
    if args.flam is not None: cfg.dedup.flam_detection = args.flam
    if args.stats_every is not None: cfg.stats_every = args.stats_every
    return cfg.validate()

def open_input(cfg):
    """Named input must exist; without a name the default list is tried."""
    from midi.ports import MidiInput, find_input, find_input_from_list
    if cfg.ports.input_port:
        dev, name = find_input(cfg.ports.input_port)
    else:
        dev, name = find_input_from_list(DEFAULT_INPUTS)
    return MidiInput(dev, name)

def open_outputs(cfg):
    from midi.ports import MidiOutput, PortNotFoundError, find_output, find_output_from_list
    outputs = []
    try:
        if cfg.ports.forward_port_1:
            dev, name = find_output(cfg.ports.forward_port_1)
        else:
            dev, name = find_output_from_list(DEFAULT_OUTPUTS)
        outputs.append(MidiOutput(dev, name))
        logging.info("Connected MIDI Forward Port 1: %s", name)
    except PortNotFoundError as e:
        logging.warning("Could not connect to Forward Port 1: %s", e)
    if cfg.ports.forward_port_2:
        try:
            dev, name = find_output(cfg.ports.forward_port_2)
            outputs.append(MidiOutput(dev, name))
            logging.info("Connected MIDI Forward Port 2: %s", name)
        except PortNotFoundError as e:
            logging.warning("Could not connect to optional Forward Port 2: %s", e)
    return outputs

def run(cfg, args) -> int:
    import pygame, pygame.midi
    from app import App, ConsoleCommands
    from midi.ports import Forwarder, PortNotFoundError, format_devices

    # PortMidi 在 init 時就固定裝置清單，要先等完再 init
    if args.wait > 0 and not args.list:
        logging.info("Waiting %d seconds before starting...", args.wait)
        time.sleep(args.wait)

    pygame.init()
    pygame.midi.init()
    try:
        if args.list:
            print(format_devices())
            return 0

        try:
            midi_in = open_input(cfg)
        except PortNotFoundError as e:
            logging.error("Could not connect to Instrument MIDI Input: %s", e)
            return 1
        logging.info("Connected to input: %s", midi_in.name)

        outputs = open_outputs(cfg)
        if not outputs:
            logging.warning("No forward port connected, notes are only analysed")
        logging.info("Time threshold: %dms, Velocity threshold: %d, Flam detection: %s",
                     cfg.dedup.time_threshold, cfg.dedup.velocity_threshold, cfg.dedup.flam_detection)

        console = None
        if sys.stdin is not None and sys.stdin.isatty():
            console = ConsoleCommands()
            logging.info("MIDI Deduper running. Commands: stats / clear / quit (or Ctrl+C)")
        else:
            logging.info("MIDI Deduper running. Press Ctrl+C to exit.")

        App(cfg, midi_in, Forwarder(outputs), console=console).run()
        return 0
    finally:
        pygame.midi.quit()

def _run_cli(argv=None) -> int:
    args = build_parser().parse_args(argv)
    if args.version:
        print(f"MIDI Deduper v{__version__}")
        return 0

    _init_logging(args.debug)

    if args.reset_config:
        if reset_config(args.config):
            logging.info("Config reset: %s removed", args.config)
        else:
            logging.info("No config file at %s", args.config)
        return 0

    try:
        cfg = apply_overrides(load_config(args.config), args)
    except ConfigError as e:
        logging.error("%s", e)
        return 2

    if args.save_config:
        logging.info("Config saved to %s", save_config(cfg, args.config))

    return run(cfg, args)

def main(argv=None) -> int:
    setup_crashlog()
    try:
        return _run_cli(argv)
    except Exception as e:
        try:
            log_exception("Top-level exception", e)
        except OSError:
            pass
        logging.error("未捕捉的例外：%s", e, exc_info=True)
        print("程式發生錯誤，請到 logs/ 資料夾看 midi-deduper.log 與 error-*.txt")
        traceback.print_exc()
        return 1

if __name__ == '__main__':
    sys.exit(main())
