"""Configuration module."""

from estimate_match.config.settings import Settings, get_settings

__all__ = ["Settings", "get_settings"]
