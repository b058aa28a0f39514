from __future__ import annotations

import os
from pathlib import Path
from typing import Union


def format_duration(seconds: float) -> str:
    """Human-readable duration, e.g. ``750ns``, ``12.345ms``, ``3m7s``, ``2d4h9m``.

    The unit is chosen so that the leading number is small; sub-second
    values keep three decimals, longer ones are split into whole units.
    """
    nanos = int(round(seconds * 1e9))
    if nanos <= 0:
        return "0s"
    if nanos < 1000:
        return f"{nanos}ns"
    micros = nanos // 1000
    if micros < 1000:
        return f"{micros}.{nanos % 1000:03d}µs"
    millis = micros // 1000
    if millis < 1000:
        return f"{millis}.{micros % 1000:03d}ms"
    secs = millis // 1000
    if secs < 60:
        return f"{secs}.{millis % 1000:03d}s"
    mins = secs // 60
    if mins < 60:
        return f"{mins}m{secs % 60}s"
    hours = mins // 60
    if hours < 24:
        return f"{hours}h{mins % 60}m{secs % 60}s"
    days = hours // 24
    if days < 7:
        return f"{days}d{hours % 24}h{mins % 60}m"
    return f"{days // 7}w{days % 7}d{hours % 24}h"


def parent_dir_exists(path: Union[str, Path]) -> bool:
    parent = Path(path).parent
    return parent == Path("") or os.path.isdir(parent)
