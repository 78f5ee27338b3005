from __future__ import annotations

import sys
from datetime import datetime

from typing import Any
from creator_station.utils.env import env_truthy


def _ts() -> str:
    return datetime.now().strftime("%H:%M:%S")


def log(*args: Any, **kwargs: Any) -> None:
    """Print logs when PYTEST or DEBUG is truthy.

    Keeps production quiet by default.
    """
    if env_truthy("PYTEST", "0") or env_truthy("DEBUG", "0"):
        print(f"[{_ts()}]", *args, **kwargs, file=sys.stdout, flush=True)


def log_error(*args: Any, **kwargs: Any) -> None:
    """Always print to stderr.

    Operator-facing diagnostics (ffmpeg stderr, cleanup failures, upstream errors)
    go here; they are never returned to API callers.
    """
    print(f"[{_ts()}] ERROR", *args, **kwargs, file=sys.stderr, flush=True)
