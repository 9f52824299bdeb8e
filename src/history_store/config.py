"""Configuration loading and management."""

import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from history_store.logging import get_logger

logger = get_logger("config")

ENV_ROOT = "CODEX_HISTORY_ROOT"
ENV_MAX_BYTES = "CODEX_HISTORY_MAX_BYTES"
ENV_MAX_MESSAGES = "CODEX_HISTORY_MAX_MESSAGES"
ENV_BACKUP_KEEP = "CODEX_HISTORY_BACKUP_KEEP"


@dataclass
class StoreConfig:
    root: Path | None = None  # Overrides every project root when set
    subdir: str = ".chat-history"
    max_log_messages: int = 300


@dataclass
class ComfortConfig:
    max_messages: int = 120
    max_bytes: int = 200_000


@dataclass
class BackupConfig:
    keep: int = 5

    def __post_init__(self) -> None:
        self.keep = max(1, int(self.keep))


@dataclass
class Config:
    store: StoreConfig = field(default_factory=StoreConfig)
    comfort: ComfortConfig = field(default_factory=ComfortConfig)
    backups: BackupConfig = field(default_factory=BackupConfig)


def expand_env_var(value: str) -> str:
    """Expand environment variables in string (e.g. ${VAR})."""
    if value.startswith("${") and value.endswith("}"):
        env_var = value[2:-1]
        return os.environ.get(env_var, value)
    return value


def expand_path(path_str: str) -> Path:
    """Expand ~ and environment variables in path."""
    return Path(os.path.expandvars(os.path.expanduser(path_str)))


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring non-integer %s=%r", name, raw)
        return default


def apply_env_overrides(config: Config) -> Config:
    """Apply CODEX_HISTORY_* environment variables on top of a config."""
    root = os.environ.get(ENV_ROOT)
    if root:
        config.store.root = expand_path(root)
    config.comfort.max_bytes = _env_int(ENV_MAX_BYTES, config.comfort.max_bytes)
    config.comfort.max_messages = _env_int(ENV_MAX_MESSAGES, config.comfort.max_messages)
    config.backups = BackupConfig(keep=_env_int(ENV_BACKUP_KEEP, config.backups.keep))
    return config


def load_config(config_path: Path | None = None) -> Config:
    """Load configuration from YAML file, then apply environment overrides."""
    if config_path is None:
        # Look for config in standard locations
        search_paths = [
            Path.cwd() / "history-store.yaml",
            Path.home() / ".config" / "history-store" / "config.yaml",
            Path("/etc/history-store/config.yaml"),
        ]
        for path in search_paths:
            if path.exists():
                config_path = path
                break

    if config_path is None or not config_path.exists():
        return apply_env_overrides(Config())

    with open(config_path) as f:
        data = yaml.safe_load(f) or {}

    store_data = data.get("store") or {}
    root = store_data.get("root")
    store = StoreConfig(
        root=expand_path(expand_env_var(root)) if root else None,
        subdir=store_data.get("subdir", ".chat-history"),
        max_log_messages=store_data.get("max_log_messages", 300),
    )

    comfort_data = data.get("comfort") or {}
    comfort = ComfortConfig(
        max_messages=comfort_data.get("max_messages", 120),
        max_bytes=comfort_data.get("max_bytes", 200_000),
    )

    backup_data = data.get("backups") or {}
    backups = BackupConfig(keep=backup_data.get("keep", 5))

    logger.debug("Loaded config from %s", config_path)

    return apply_env_overrides(Config(store=store, comfort=comfort, backups=backups))
