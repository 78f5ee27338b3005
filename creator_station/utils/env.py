from __future__ import annotations

import os


def env_truthy(name: str, default: str = "0") -> bool:
    val = os.getenv(name, default)
    if val is None:
        return False
    return str(val).strip().lower() in {"1", "true", "yes", "on"}


def env_int(name: str, default: int) -> int:
    """Read an integer env var, falling back to `default` on empty or garbage values."""
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw.strip())
    except ValueError:
        return default


def env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw.strip())
    except ValueError:
        return default
