"""
Lifecycle settings loader.

Constants of the reconciliation state machine and of its external calls.
Defaults are defined here; config/lifecycle.yml may override any key, and
environment variables override both.

Usage:
    from heirloom.config.settings import get_settings

    settings = get_settings()
    settings.max_warning_emails        # 3
    settings.release_token_days        # 90
"""

import logging
import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from threading import Lock
from typing import Any, Dict, Optional

import yaml

logger = logging.getLogger(__name__)

_SETTINGS_FILE_ENV = "HEIRLOOM_SETTINGS_FILE"

# Environment variable name for each overridable key
_ENV_OVERRIDES = {
    "max_workers": "HEIRLOOM_MAX_WORKERS",
    "external_timeout_seconds": "HEIRLOOM_EXTERNAL_TIMEOUT_SECONDS",
    "app_base_url": "HEIRLOOM_APP_URL",
    "max_warning_emails": "HEIRLOOM_MAX_WARNING_EMAILS",
    "warning_cooldown_hours": "HEIRLOOM_WARNING_COOLDOWN_HOURS",
    "reminder_window_hours": "HEIRLOOM_REMINDER_WINDOW_HOURS",
    "verification_token_days": "HEIRLOOM_VERIFICATION_TOKEN_DAYS",
    "release_token_days": "HEIRLOOM_RELEASE_TOKEN_DAYS",
    "release_resume_after_minutes": "HEIRLOOM_RELEASE_RESUME_AFTER_MINUTES",
}


@dataclass(frozen=True)
class LifecycleSettings:
    """Tunable constants of the vault lifecycle."""
    max_warning_emails: int = 3
    warning_cooldown_hours: int = 24
    reminder_window_hours: int = 24
    verification_token_days: int = 7
    release_token_days: int = 90
    release_resume_after_minutes: int = 30
    max_workers: int = 4
    external_timeout_seconds: float = 15.0
    batch_compensation_limit: int = 100
    app_base_url: str = "http://localhost:3000"

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


_settings: Optional[LifecycleSettings] = None
_lock = Lock()


def _resolve_path(config_path: Optional[str]) -> Optional[Path]:
    if config_path:
        return Path(config_path)

    env_path = os.getenv(_SETTINGS_FILE_ENV)
    if env_path:
        return Path(env_path)

    candidates = [
        Path(__file__).parent.parent.parent.parent / "config" / "lifecycle.yml",
        Path(os.getcwd()) / "config" / "lifecycle.yml",
    ]
    for p in candidates:
        resolved = p.resolve()
        if resolved.exists():
            return resolved
    return None


def _coerce(name: str, raw: Any) -> Any:
    default = getattr(LifecycleSettings, name)
    if isinstance(default, bool):
        return str(raw).lower() in ("1", "true", "yes")
    return type(default)(raw)


def load_settings(config_path: Optional[str] = None) -> LifecycleSettings:
    """
    Build settings from defaults, then YAML, then environment.

    A missing YAML file is not an error. Unknown YAML keys are ignored with
    a warning.
    """
    settings = LifecycleSettings()
    known = {f.name for f in fields(LifecycleSettings)}

    path = _resolve_path(config_path)
    if path is not None and path.exists():
        with open(path, "r") as f:
            raw = yaml.safe_load(f) or {}
        section = raw.get("lifecycle", raw)
        overrides = {}
        for key, value in section.items():
            if key not in known:
                logger.warning("Ignoring unknown lifecycle setting", extra={"key": key})
                continue
            overrides[key] = _coerce(key, value)
        settings = replace(settings, **overrides)
        logger.info("Loaded lifecycle settings from %s", path)

    env_overrides = {}
    for key, env_name in _ENV_OVERRIDES.items():
        value = os.getenv(env_name)
        if value:
            env_overrides[key] = _coerce(key, value)
    if env_overrides:
        settings = replace(settings, **env_overrides)

    return settings


def get_settings() -> LifecycleSettings:
    """Get the process-wide settings singleton."""
    global _settings
    if _settings is None:
        with _lock:
            if _settings is None:
                _settings = load_settings()
    return _settings


def reset_settings() -> None:
    """Drop the cached settings (tests, config reload)."""
    global _settings
    with _lock:
        _settings = None
