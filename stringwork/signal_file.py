"""The notify signal file other processes watch for state changes."""

from __future__ import annotations

import os
import time
from pathlib import Path


def touch_notify_signal(signal_path: "str | os.PathLike[str]") -> None:
    """Write a fresh nanosecond timestamp revision to the signal file.

    Parent directories are created as needed. An empty path does nothing.
    """
    if not os.fspath(signal_path):
        return
    path = Path(signal_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(str(time.time_ns()))