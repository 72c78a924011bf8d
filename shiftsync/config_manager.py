"""ConfigManager — environment profiles, settings, and logging setup."""

from __future__ import annotations

import json
import logging
import os
from pathlib import Path
from typing import Any

from pydantic import BaseModel, Field

from shiftsync import config as defaults

logger = logging.getLogger(__name__)

# All known configuration keys with defaults
_CONFIG_KEYS: dict[str, dict[str, Any]] = {
    "SHIFTSYNC_ENV": {"default": "development", "description": "Environment profile"},
    "SHIFTSYNC_POLL_INTERVAL": {
        "default": defaults.DEFAULT_POLL_INTERVAL_SECONDS,
        "description": "Seconds between background checks for newer snapshots",
    },
    "SHIFTSYNC_FILENAME_PREFIX": {
        "default": defaults.DEFAULT_FILENAME_PREFIX,
        "description": "Filename prefix of snapshot files",
    },
    "SHIFTSYNC_TOMBSTONE_RETENTION_DAYS": {
        "default": defaults.DEFAULT_TOMBSTONE_RETENTION_DAYS,
        "description": "Minimum age in days before a tombstone may be pruned",
    },
    "SHIFTSYNC_HEARTBEAT_STALE_SECONDS": {
        "default": defaults.DEFAULT_HEARTBEAT_STALE_SECONDS,
        "description": "Heartbeats older than this mark a user as inactive",
    },
    "SHIFTSYNC_LOCK_STALE_SECONDS": {
        "default": defaults.DEFAULT_LOCK_STALE_SECONDS,
        "description": "Exclusive-access locks older than this may be taken over",
    },
    "SHIFTSYNC_KEEP_VERSIONS": {
        "default": defaults.DEFAULT_KEEP_VERSIONS,
        "description": "Snapshots to keep after each save (0 keeps all)",
    },
    "SHIFTSYNC_LOG_LEVEL": {"default": "INFO", "description": "Logging level"},
    "TEAMS_WEBHOOK": {"default": "", "description": "MS Teams webhook URL (secret)"},
    "SLACK_WEBHOOK": {"default": "", "description": "Slack webhook URL (secret)"},
}

_PROFILES: dict[str, dict[str, str]] = {
    "development": {
        "SHIFTSYNC_ENV": "development",
        "SHIFTSYNC_LOG_LEVEL": "DEBUG",
    },
    "production": {
        "SHIFTSYNC_ENV": "production",
        "SHIFTSYNC_LOG_LEVEL": "WARNING",
        "SHIFTSYNC_KEEP_VERSIONS": "200",
    },
    "testing": {
        "SHIFTSYNC_ENV": "testing",
        "SHIFTSYNC_LOG_LEVEL": "DEBUG",
        "SHIFTSYNC_POLL_INTERVAL": "1",
        "TEAMS_WEBHOOK": "",
        "SLACK_WEBHOOK": "",
    },
}


class SyncSettings(BaseModel):
    """Typed view of the merged configuration."""

    env: str = "development"
    poll_interval_seconds: float = Field(default=defaults.DEFAULT_POLL_INTERVAL_SECONDS, gt=0)
    filename_prefix: str = defaults.DEFAULT_FILENAME_PREFIX
    tombstone_retention_days: int = Field(default=defaults.DEFAULT_TOMBSTONE_RETENTION_DAYS, ge=0)
    heartbeat_stale_seconds: int = Field(default=defaults.DEFAULT_HEARTBEAT_STALE_SECONDS, gt=0)
    lock_stale_seconds: int = Field(default=defaults.DEFAULT_LOCK_STALE_SECONDS, gt=0)
    keep_versions: int = Field(default=defaults.DEFAULT_KEEP_VERSIONS, ge=0)
    log_level: str = "INFO"
    teams_webhook: str = ""
    slack_webhook: str = ""

    @classmethod
    def from_config(cls, config: dict[str, str]) -> SyncSettings:
        """Build settings from a flat ``load_config`` dict."""
        mapping = {
            "env": "SHIFTSYNC_ENV",
            "poll_interval_seconds": "SHIFTSYNC_POLL_INTERVAL",
            "filename_prefix": "SHIFTSYNC_FILENAME_PREFIX",
            "tombstone_retention_days": "SHIFTSYNC_TOMBSTONE_RETENTION_DAYS",
            "heartbeat_stale_seconds": "SHIFTSYNC_HEARTBEAT_STALE_SECONDS",
            "lock_stale_seconds": "SHIFTSYNC_LOCK_STALE_SECONDS",
            "keep_versions": "SHIFTSYNC_KEEP_VERSIONS",
            "log_level": "SHIFTSYNC_LOG_LEVEL",
            "teams_webhook": "TEAMS_WEBHOOK",
            "slack_webhook": "SLACK_WEBHOOK",
        }
        return cls(**{field: config[key] for field, key in mapping.items() if key in config})


class ConfigManager:
    """Manage shiftsync configuration across environments."""

    def generate_env_template(self, project_path: str | Path) -> Path:
        """Write ``.env.example`` listing every key with its default."""
        target = Path(project_path) / ".env.example"
        lines = ["# shiftsync configuration template", "# Copy to .env and fill in values", ""]
        for key, spec in _CONFIG_KEYS.items():
            lines += [f"# {spec['description']}", f"{key}={spec['default']}", ""]
        target.write_text("\n".join(lines), encoding="utf-8")
        return target

    def load_config(self, project_path: str | Path) -> dict[str, str]:
        """Merge defaults, profile, ``.shiftsync/config.json``, ``.env``, and the environment.

        Later layers win. Returns a flat dict of strings.
        """
        root = Path(project_path)
        merged = {key: str(spec["default"]) for key, spec in _CONFIG_KEYS.items()}

        profile = os.environ.get("SHIFTSYNC_ENV", merged["SHIFTSYNC_ENV"])
        merged.update(_PROFILES.get(profile, {}))
        merged.update(_read_json_layer(root / ".shiftsync" / "config.json"))
        merged.update(_read_env_layer(root / ".env"))
        merged.update({key: os.environ[key] for key in _CONFIG_KEYS if key in os.environ})
        return merged

    def load_settings(self, project_path: str | Path) -> SyncSettings:
        return SyncSettings.from_config(self.load_config(project_path))


def _read_json_layer(path: Path) -> dict[str, str]:
    if not path.is_file():
        return {}
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (json.JSONDecodeError, OSError):
        logger.debug("Ignoring unreadable %s", path, exc_info=True)
        return {}
    return {str(k): str(v) for k, v in data.items()}


def _read_env_layer(path: Path) -> dict[str, str]:
    if not path.is_file():
        return {}
    try:
        text = path.read_text(encoding="utf-8")
    except OSError:
        logger.debug("Ignoring unreadable %s", path, exc_info=True)
        return {}
    values: dict[str, str] = {}
    for raw in text.splitlines():
        line = raw.strip()
        if line and not line.startswith("#") and "=" in line:
            key, _, value = line.partition("=")
            values[key.strip()] = value.strip()
    return values


def configure_logging(level: str | int = "INFO") -> None:
    """Apply *level* to the ``shiftsync`` logger tree.

    Adds a stderr handler only when the root logger has none.
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    if not logging.getLogger().handlers:
        logging.basicConfig(format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    logging.getLogger("shiftsync").setLevel(level)
