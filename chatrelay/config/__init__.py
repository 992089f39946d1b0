"""Configuration module for chatrelay."""

from chatrelay.config.loader import load_config, get_config_path, save_config
from chatrelay.config.schema import Config, EndpointSettings

__all__ = ["Config", "EndpointSettings", "load_config", "get_config_path", "save_config"]
