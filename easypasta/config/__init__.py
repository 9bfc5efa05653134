"""Configuration for the EasyPasta peer link."""

from easypasta.config.loader import load_config, save_config
from easypasta.config.schema import Config

__all__ = ["Config", "load_config", "save_config"]
