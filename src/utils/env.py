"""Environment variable helpers used across the uploader."""
from __future__ import annotations

import os
from typing import Optional

from dotenv import load_dotenv

__all__ = ["_env", "_env_bool", "_env_int", "load_env_file"]


def _env(name: str, default: Optional[str] = None) -> Optional[str]:
    """Return the stripped environment variable or ``default`` when empty."""
    value = os.getenv(name)
    if value is None or str(value).strip() == "":
        return default
    return value.strip()


def _env_bool(name: str, default: bool = False) -> bool:
    value = _env(name)
    return default if value is None else value.lower() in ("1", "true", "yes", "on")


def _env_int(name: str, default: Optional[int] = None) -> Optional[int]:
    value = _env(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {value!r}") from None


def load_env_file(path: Optional[str] = None) -> bool:
    """Load ``.env`` into the process environment without overriding it."""
    return load_dotenv(dotenv_path=path, override=False)
