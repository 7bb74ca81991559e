from __future__ import annotations

import math
import re

LAZY_TIME_RE = re.compile(r"^(?:(?:(?P<hour>\d+):)?(?P<minute>\d+):)?(?P<second>\d+(?:\.\d+)?)$")


def parse_time(text: str) -> float:
    """Parse ``[[h:]m:]s[.fff]`` into seconds.

    Minutes and seconds are not range-checked, so ``90`` and ``1:30`` are
    both ninety seconds.
    """
    match = LAZY_TIME_RE.match(text.strip())
    if not match:
        raise ValueError(f"Time string is expected: {text!r}")
    seconds = float(match.group("second"))
    if match.group("minute"):
        seconds += int(match.group("minute")) * 60
    if match.group("hour"):
        seconds += int(match.group("hour")) * 3600
    return seconds


def try_parse_time(text: str) -> float | None:
    try:
        return parse_time(text)
    except ValueError:
        return None


def format_time(seconds: float, precision: int = 3) -> str:
    """Format seconds as ``H:MM:SS.fff`` with ``precision`` fractional digits."""
    if seconds < 0:
        raise ValueError(f"Negative time: {seconds}")
    scale = 10**precision
    ticks = int(math.floor(seconds * scale + 0.5))
    whole, fraction = divmod(ticks, scale)
    hours, remainder = divmod(whole, 3600)
    minutes, secs = divmod(remainder, 60)
    text = f"{hours}:{minutes:02d}:{secs:02d}"
    if precision > 0:
        text += f".{fraction:0{precision}d}"
    return text
