# ========================= config.py =========================
import json, logging, os
from dataclasses import dataclass, field, asdict, fields
from typing import Optional

log = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = os.path.join(os.path.expanduser("~"), ".config", "midi-deduper", "config.json")

# 沒指定埠時依序嘗試
DEFAULT_INPUTS = ["Finger Drum Pad"]
DEFAULT_OUTPUTS = ["loop1", "loopMIDI Port"]

class ConfigError(ValueError):
    pass

@dataclass
class DedupConfig:
    time_threshold: int = 60          # ms; closer than this counts as a bounce
    velocity_threshold: int = 127     # echoes must be quieter than this
    history_max_size: int = 25000     # played-notes history cap
    flam_detection: bool = False      # let louder quick re-hits through

    def validate(self):
        if self.time_threshold < 0:
            raise ConfigError(f"time_threshold must be >= 0: {self.time_threshold}")
        if not (0 <= self.velocity_threshold <= 127):
            raise ConfigError(f"velocity_threshold must be 0-127: {self.velocity_threshold}")
        if self.history_max_size < 1:
            raise ConfigError(f"history_max_size must be >= 1: {self.history_max_size}")
        if not isinstance(self.flam_detection, bool):
            raise ConfigError(f"flam_detection must be true or false: {self.flam_detection!r}")

@dataclass
class PortConfig:
    input_port: str = ""      # 空字串 = 依 DEFAULT_INPUTS 自動尋找
    forward_port_1: str = ""  # 空字串 = 依 DEFAULT_OUTPUTS 自動尋找
    forward_port_2: str = ""

@dataclass
class AppConfig:
    dedup: DedupConfig = field(default_factory=DedupConfig)
    ports: PortConfig = field(default_factory=PortConfig)
    stats_every: float = 0.0  # seconds, 0 = only on demand / at exit

    def validate(self):
        self.dedup.validate()
        if self.stats_every < 0:
            raise ConfigError(f"stats_every must be >= 0: {self.stats_every}")
        return self

def _pick(cls, obj):
    """只取 dataclass 認得的 key，其餘忽略。"""
    if not isinstance(obj, dict):
        return cls()
    names = {f.name for f in fields(cls)}
    return cls(**{k: v for k, v in obj.items() if k in names})

def config_from_dict(obj: dict) -> AppConfig:
    obj = obj or {}
    try:
        cfg = AppConfig(
            dedup=_pick(DedupConfig, obj.get("dedup")),
            ports=_pick(PortConfig, obj.get("ports")),
            stats_every=float(obj.get("stats_every", 0.0)),
        )
        return cfg.validate()
    except ConfigError:
        raise
    except (TypeError, ValueError) as e:
        raise ConfigError(f"Invalid config: {e}") from e

def load_config(path: Optional[str] = None) -> AppConfig:
    """Defaults merged with the user's JSON file; a broken file falls back to defaults."""
    path = path or DEFAULT_CONFIG_PATH
    if not os.path.exists(path):
        return AppConfig()
    try:
        with open(path, "r", encoding="utf-8") as f:
            obj = json.load(f)
    except (OSError, json.JSONDecodeError) as e:
        log.warning("Could not read config %s (%s), using defaults", path, e)
        return AppConfig()
    if not isinstance(obj, dict):
        log.warning("Config %s is not a JSON object, using defaults", path)
        return AppConfig()
    log.debug("Loaded config from %s", path)
    return config_from_dict(obj)

def save_config(cfg: AppConfig, path: Optional[str] = None) -> str:
    path = path or DEFAULT_CONFIG_PATH
    os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(asdict(cfg), f, ensure_ascii=False, indent=2)
    return path

def reset_config(path: Optional[str] = None) -> bool:
    path = path or DEFAULT_CONFIG_PATH
    if not os.path.exists(path):
        return False
    os.remove(path)
    return True
