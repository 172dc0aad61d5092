"""Config loading from ~/.daemonkit/config.json with env var overrides."""

from __future__ import annotations

import json
from pathlib import Path
from typing import ClassVar, Literal

from pydantic_settings import BaseSettings, SettingsConfigDict

CONFIG_DIR = Path.home() / ".daemonkit"
CONFIG_PATH = CONFIG_DIR / "config.json"

LogLevel = Literal["CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG"]


class DaemonKitConfig(BaseSettings):
    model_config: ClassVar[SettingsConfigDict] = SettingsConfigDict(
        env_prefix="DAEMONKIT_",
        extra="ignore",
    )
    # Where default pidfiles live: <run_dir>/<program>.pid
    run_dir: str = "/var/run"
    pid_permissions: int = 0o600
    # Seconds `stop` waits for the owner to release its lock
    stop_timeout: float = 10.0
    log_level: LogLevel = "INFO"


def loadConfig() -> DaemonKitConfig:
    """Load config from ~/.daemonkit/config.json with env var overrides."""
    if CONFIG_PATH.exists():
        raw = json.loads(CONFIG_PATH.read_text())
        return DaemonKitConfig(**raw)
    return DaemonKitConfig()
