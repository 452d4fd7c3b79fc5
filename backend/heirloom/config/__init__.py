"""Runtime configuration."""

from heirloom.config.settings import LifecycleSettings, get_settings, load_settings

__all__ = ["LifecycleSettings", "get_settings", "load_settings"]
