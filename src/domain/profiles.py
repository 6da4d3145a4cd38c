from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import tomlkit

from domain.models import CacheJobSettings

logger = logging.getLogger(__name__)


def read_profile_data(path: str | Path) -> dict[str, Any]:
    """Raw key/value pairs of a TOML profile."""
    path = Path(path)
    if not path.exists():
        msg = f'Profile not found: {path}'
        raise FileNotFoundError(msg)
    data = tomlkit.parse(path.read_text(encoding='utf-8'))
    return data.unwrap()


def load_profile(path: str | Path, **overrides: Any) -> CacheJobSettings:
    """
    Load and validate a TOML profile -> CacheJobSettings.

    Keyword overrides (e.g. values given on the command line) win over
    the profile; None values are ignored.
    """
    data = read_profile_data(path)
    data.update({k: v for k, v in overrides.items() if v is not None})
    settings = CacheJobSettings.model_validate(data)
    logger.info('Profile %s loaded', path)
    return settings


def save_profile(path: str | Path, settings: CacheJobSettings) -> Path:
    """Save settings as a TOML profile (no atomic replace)."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    data = settings.model_dump(mode='json')
    path.write_text(tomlkit.dumps(data), encoding='utf-8')
    return path
