"""Provide timestamp and id helpers shared by the stores."""

from __future__ import annotations

import itertools
import threading
import uuid
from datetime import datetime, timezone
from typing import Callable, Optional, Protocol

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _now_iso(clock: Optional[Clock] = None) -> str:
    return (clock or utc_now)().isoformat()


def _parse_iso(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        if not isinstance(value, str):
            value = str(value)
        if value.endswith("Z"):
            value = value[:-1] + "+00:00"
        dt = datetime.fromisoformat(value)
        # If a naive timestamp slips in, assume UTC to avoid crashes.
        if dt.tzinfo is None:
            dt = dt.replace(tzinfo=timezone.utc)
        return dt
    except ValueError:
        return None


def _minutes_between(start: Optional[str], end: Optional[str]) -> Optional[int]:
    started = _parse_iso(start)
    finished = _parse_iso(end)
    if started is None or finished is None:
        return None
    return max(0, int((finished - started).total_seconds() // 60))


_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def to_base36(value: int) -> str:
    if value < 0:
        raise ValueError("base36 encoding expects a non-negative integer")
    if value == 0:
        return "0"
    digits: list[str] = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def time_suffix(clock: Optional[Clock] = None) -> str:
    """Return a short base36 suffix derived from the clock in milliseconds."""
    moment = (clock or utc_now)()
    return to_base36(int(moment.timestamp() * 1000))


class IdProvider(Protocol):
    def __call__(self, prefix: str) -> str: ...


class UuidIds:
    """Default id provider: a bare 32-char hex uuid.

    The prefix is ignored so that every leading character is random; branch
    names are built from the first few characters of a task id.
    """

    def __call__(self, prefix: str) -> str:
        return uuid.uuid4().hex


class SequentialIds:
    """Deterministic id provider, mostly for tests: ``<prefix>-0001``, ``<prefix>-0002``..."""

    def __init__(self, start: int = 1, width: int = 4) -> None:
        self._counter = itertools.count(start)
        self._width = width
        self._lock = threading.Lock()

    def __call__(self, prefix: str) -> str:
        with self._lock:
            n = next(self._counter)
        return f"{prefix}-{n:0{self._width}d}"
