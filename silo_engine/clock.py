"""
Clock abstractions for deterministic behavior.

Notes
-----
The regex time guard must not read the system timer directly. Callers provide
a Clock so tests can simulate slow evaluations without slow patterns.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Protocol


class Clock(Protocol):
    """A monotonic source of elapsed time."""

    def monotonic(self) -> float:
        """
        Return a monotonic timestamp.

        Returns
        -------
        float
            Seconds from an arbitrary, fixed reference point.
        """
        ...


@dataclass(frozen=True, slots=True)
class SystemClock:
    """Clock backed by ``time.perf_counter``."""

    def monotonic(self) -> float:
        """Return the current high-resolution counter value in seconds."""
        return time.perf_counter()


@dataclass(slots=True)
class SteppingClock:
    """
    Clock that advances by a fixed step on every read (useful for tests).

    Attributes
    ----------
    step:
        Seconds added after each call to :meth:`monotonic`.
    current:
        Value returned by the next call.
    """

    step: float
    current: float = field(default=0.0)

    def monotonic(self) -> float:
        """Return the current value, then advance it by ``step``."""
        value = self.current
        self.current += self.step
        return value
