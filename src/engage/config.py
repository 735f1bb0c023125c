"""
Configuration for Engage.

config.yaml lives under the base path (--data-dir > ENGAGE_BASE_PATH >
~/.engage360). Values in the file are merged over DEFAULT_CONFIG; the API
token is taken from ENGAGE_API_TOKEN when set.

Example config.yaml:

    remote:
      base_url: http://localhost:2137
      timeout_seconds: 10
    storage:
      db_path: engage360.db
    sync:
      interval_seconds: 60
    logging:
      level: WARNING
"""

import copy
import logging
import os
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

import yaml

logger = logging.getLogger(__name__)

DEFAULT_BASE_PATH = Path.home() / ".engage360"
CONFIG_FILENAME = "config.yaml"
TOKEN_ENV_VAR = "ENGAGE_API_TOKEN"
BASE_PATH_ENV_VAR = "ENGAGE_BASE_PATH"

DEFAULT_CONFIG: Dict[str, Any] = {
    "remote": {
        "base_url": "http://localhost:2137",
        "timeout_seconds": 10,
    },
    "storage": {
        "db_path": "engage360.db",
    },
    "sync": {
        "interval_seconds": 60,
        "pull_limit": 100,
        "max_pull_pages": 50,
        "probe_interval_seconds": 15,
        "failure_threshold": 3,
        "max_backoff_seconds": 600,
    },
    "logging": {
        "level": "WARNING",
    },
}

LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


class ConfigError(Exception):
    """Raised when configuration is missing, unreadable or invalid."""
    pass


@dataclass
class RemoteConfig:
    base_url: str = "http://localhost:2137"
    timeout_seconds: float = 10
    token: Optional[str] = None


@dataclass
class StorageConfig:
    db_path: str = "engage360.db"


@dataclass
class SyncConfig:
    interval_seconds: float = 60
    pull_limit: int = 100
    max_pull_pages: int = 50
    probe_interval_seconds: float = 15
    failure_threshold: int = 3
    max_backoff_seconds: float = 600


@dataclass
class LoggingConfig:
    level: str = "WARNING"


@dataclass
class EngageConfig:
    """Validated configuration."""
    base_path: Path = DEFAULT_BASE_PATH
    remote: RemoteConfig = field(default_factory=RemoteConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @property
    def db_path(self) -> Path:
        """Database path; relative paths resolve against base_path."""
        if self.storage.db_path == ":memory:":
            return Path(":memory:")
        path = Path(self.storage.db_path).expanduser()
        return path if path.is_absolute() else self.base_path / path

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "remote": asdict(self.remote),
            "storage": asdict(self.storage),
            "sync": asdict(self.sync),
            "logging": asdict(self.logging),
        }
        if data["remote"].get("token"):
            data["remote"]["token"] = "***"
        return data


def get_base_path(data_dir: Optional[Path] = None) -> Path:
    """
    Base path for Engage data.

    Priority: data_dir argument > ENGAGE_BASE_PATH env var > ~/.engage360
    """
    if data_dir:
        return Path(data_dir).expanduser()
    env_path = os.getenv(BASE_PATH_ENV_VAR)
    if env_path:
        return Path(env_path).expanduser()
    return DEFAULT_BASE_PATH


def deep_merge(base: Mapping[str, Any], override: Mapping[str, Any]) -> Dict[str, Any]:
    """
    Recursively merge override into a copy of base.

    Examples:
        >>> deep_merge({"a": {"b": 1, "c": 2}}, {"a": {"c": 3}})
        {'a': {'b': 1, 'c': 3}}
    """
    merged = copy.deepcopy(dict(base))
    for key, value in override.items():
        if isinstance(value, Mapping) and isinstance(merged.get(key), Mapping):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def get_dotted(data: Mapping[str, Any], key: str) -> Any:
    """
    Look up a dotted key ('sync.interval_seconds').

    Raises:
        KeyError: If any segment is missing
    """
    current: Any = data
    for part in key.split("."):
        if not isinstance(current, Mapping) or part not in current:
            raise KeyError(key)
        current = current[part]
    return current


def set_dotted(data: Dict[str, Any], key: str, value: Any) -> None:
    """Set a dotted key, creating intermediate sections."""
    parts = key.split(".")
    current = data
    for part in parts[:-1]:
        if not isinstance(current.get(part), dict):
            current[part] = {}
        current = current[part]
    current[parts[-1]] = value


def parse_value(raw: str) -> Any:
    """
    Interpret a CLI string the way YAML would ('60' -> 60, 'true' -> True).

    Examples:
        >>> parse_value("60"), parse_value("true"), parse_value("http://x")
        (60, True, 'http://x')
    """
    try:
        return yaml.safe_load(raw)
    except yaml.YAMLError:
        return raw


def read_config_file(config_path: Path) -> Dict[str, Any]:
    """
    Read config.yaml as a plain dict.

    Raises:
        ConfigError: If the file cannot be parsed or is not a mapping
    """
    try:
        data = yaml.safe_load(Path(config_path).read_text()) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {config_path}: {e}") from e
    except OSError as e:
        raise ConfigError(f"Cannot read {config_path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"{config_path} must contain a mapping at the top level")
    return data


def write_config_file(config_path: Path, data: Mapping[str, Any]) -> None:
    Path(config_path).write_text(yaml.safe_dump(dict(data), default_flow_style=False, sort_keys=False))


def default_config_yaml() -> str:
    """Initial config.yaml written by 'engage init'."""
    text = yaml.safe_dump(DEFAULT_CONFIG, default_flow_style=False, sort_keys=False)
    return text + f"# remote.token can be set here or via {TOKEN_ENV_VAR}\n"


def _number(section: str, key: str, value: Any, minimum: float, integer: bool = False) -> Any:
    if isinstance(value, bool):
        raise ConfigError(f"{section}.{key} must be a number, got {value!r}")
    try:
        number = int(value) if integer else float(value)
    except (TypeError, ValueError):
        raise ConfigError(f"{section}.{key} must be a number, got {value!r}") from None
    if number < minimum:
        raise ConfigError(f"{section}.{key} must be >= {minimum}, got {value!r}")
    return number


def build_config(data: Mapping[str, Any], base_path: Path,
                 env: Optional[Mapping[str, str]] = None) -> EngageConfig:
    """
    Validate merged config data.

    Raises:
        ConfigError: On any invalid value
    """
    env = os.environ if env is None else env
    merged = deep_merge(DEFAULT_CONFIG, data)

    for section in DEFAULT_CONFIG:
        if not isinstance(merged.get(section), Mapping):
            raise ConfigError(f"'{section}' must be a mapping")

    remote = merged["remote"]
    base_url = str(remote.get("base_url") or "")
    if not base_url.startswith(("http://", "https://")):
        raise ConfigError(f"remote.base_url must be an http(s) URL, got {base_url!r}")
    token = env.get(TOKEN_ENV_VAR) or remote.get("token") or None

    sync = merged["sync"]
    level = str(merged["logging"].get("level", "WARNING")).upper()
    if level not in LOG_LEVELS:
        raise ConfigError(f"logging.level must be one of {', '.join(LOG_LEVELS)}, got {level!r}")

    db_path = merged["storage"].get("db_path")
    if not db_path:
        raise ConfigError("storage.db_path must not be empty")

    return EngageConfig(
        base_path=Path(base_path),
        remote=RemoteConfig(
            base_url=base_url.rstrip("/"),
            timeout_seconds=_number("remote", "timeout_seconds", remote.get("timeout_seconds"), 0.1),
            token=str(token) if token else None,
        ),
        storage=StorageConfig(db_path=str(db_path)),
        sync=SyncConfig(
            interval_seconds=_number("sync", "interval_seconds", sync.get("interval_seconds"), 1),
            pull_limit=_number("sync", "pull_limit", sync.get("pull_limit"), 1, integer=True),
            max_pull_pages=_number("sync", "max_pull_pages", sync.get("max_pull_pages"), 1, integer=True),
            probe_interval_seconds=_number("sync", "probe_interval_seconds",
                                           sync.get("probe_interval_seconds"), 1),
            failure_threshold=_number("sync", "failure_threshold", sync.get("failure_threshold"), 1, integer=True),
            max_backoff_seconds=_number("sync", "max_backoff_seconds", sync.get("max_backoff_seconds"), 1),
        ),
        logging=LoggingConfig(level=level),
    )


def load_config(base_path: Optional[Path] = None,
                config_path: Optional[Path] = None,
                env: Optional[Mapping[str, str]] = None) -> EngageConfig:
    """
    Load configuration from config.yaml merged over the defaults.

    A missing config file yields the defaults.

    Args:
        base_path: Data directory (default: get_base_path())
        config_path: Explicit config file (default: <base_path>/config.yaml)
        env: Environment mapping (default: os.environ)

    Raises:
        ConfigError: If the file is unreadable or a value is invalid
    """
    base_path = Path(base_path) if base_path else get_base_path()
    config_path = Path(config_path) if config_path else base_path / CONFIG_FILENAME

    data: Dict[str, Any] = {}
    if config_path.exists():
        data = read_config_file(config_path)
    else:
        logger.debug(f"No config file at {config_path}; using defaults")

    return build_config(data, base_path, env)
