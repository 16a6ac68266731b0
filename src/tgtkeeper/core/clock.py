"""
tgtkeeper Acquisition Clock

Lock-guarded timestamp read by the lock-free refresh fast path and
written under the acquisition gate.

INVARIANT: the stored value only moves forward
"""

from __future__ import annotations

import threading
from datetime import datetime, timezone
from typing import Optional, Tuple

import attrs

from tgtkeeper.core.exceptions import InvariantViolation


@attrs.define
class AtomicTimestamp:
    """
    Monotonic timestamp with a wall-clock companion.

    The monotonic value drives age calculations; the wall-clock value is
    only reported (logs, status). Both are read and written together
    under a private lock so a reader never observes a torn update.

    Example:
        stamp = AtomicTimestamp()
        stamp.age(now=time.monotonic())   # None: never acquired
        stamp.advance(time.monotonic())
    """

    _monotonic: Optional[float] = None
    _wall: Optional[datetime] = None
    _lock: threading.Lock = attrs.Factory(threading.Lock)

    def read(self) -> Tuple[Optional[float], Optional[datetime]]:
        """Return (monotonic, wall-clock); (None, None) means never."""
        with self._lock:
            return self._monotonic, self._wall

    @property
    def is_set(self) -> bool:
        with self._lock:
            return self._monotonic is not None

    def age(self, now: float) -> Optional[float]:
        """Seconds since the stored value, or None if never set."""
        with self._lock:
            if self._monotonic is None:
                return None
            return now - self._monotonic

    def advance(self, monotonic: float, wall: Optional[datetime] = None) -> None:
        """
        Store a new timestamp.

        Raises:
            InvariantViolation: if the value would move backwards
        """
        if wall is None:
            wall = datetime.now(timezone.utc)
        with self._lock:
            if self._monotonic is not None and monotonic < self._monotonic:
                raise InvariantViolation(
                    f"Acquisition timestamp moved backwards "
                    f"({monotonic} < {self._monotonic})"
                )
            self._monotonic = monotonic
            self._wall = wall
