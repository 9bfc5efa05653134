"""Load and save the client configuration as JSON."""

from __future__ import annotations

import json
from pathlib import Path

from loguru import logger
from pydantic import ValidationError

from easypasta.config.schema import Config

DEFAULT_CONFIG_PATH = Path("~/.easypasta/config.json")


def get_config_path() -> Path:
    return DEFAULT_CONFIG_PATH.expanduser()


def load_config(path: str | Path | None = None) -> Config:
    """Read *path* (default ``~/.easypasta/config.json``).

    A missing file gives the defaults.  An unreadable or invalid file is
    logged and also gives the defaults.  Environment variables
    (``EASYPASTA_SESSION__DEVICE_ID`` and so on) fill in whatever the file
    leaves unset.
    """
    config_path = Path(path).expanduser() if path else get_config_path()
    if not config_path.exists():
        return Config()
    try:
        data = json.loads(config_path.read_text(encoding="utf-8"))
        if not isinstance(data, dict):
            raise ValueError("top-level JSON value must be an object")
        return Config(**data)
    except (OSError, ValueError, ValidationError) as exc:
        logger.warning("Failed to load config from {}: {}", config_path, exc)
        logger.warning("Using default configuration.")
        return Config()


def save_config(config: Config, path: str | Path | None = None) -> Path:
    """Write *config* with camelCase keys and return the path written."""
    config_path = Path(path).expanduser() if path else get_config_path()
    config_path.parent.mkdir(parents=True, exist_ok=True)
    data = config.model_dump(by_alias=True)
    config_path.write_text(json.dumps(data, indent=2, ensure_ascii=False), encoding="utf-8")
    return config_path
