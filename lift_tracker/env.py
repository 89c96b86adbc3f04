from __future__ import annotations

import os

PREFIX = "LIFT_TRACKER_"
TRUTHY = {"1", "true", "yes", "on"}


def get_env(name: str, default: str | None = None) -> str | None:
    """Resolve a `LIFT_TRACKER_*` environment variable."""
    value = os.getenv(f"{PREFIX}{name}")
    if value is not None:
        return value
    return default


def get_env_flag(name: str, default: bool = False) -> bool:
    """Interpret `1/true/yes/on` (any case) as an enabled flag."""
    value = get_env(name)
    if value is None:
        return default
    return value.strip().lower() in TRUTHY

