"""
Protocol definitions for generic infrastructure services.

This module defines Protocol classes for infrastructure concerns that
services depend on but must be able to swap in tests.

Available Protocols:
    Clock: Source of the current time

Implementations:
    SystemClock: Wall-clock time via django.utils.timezone
    FixedClock: Manually controlled time for deterministic tests

Usage:
    from core.protocols import Clock, FixedClock

    def is_due(escrow, clock: Clock) -> bool:
        return escrow.release_date <= clock.now()

    clock = FixedClock(timezone.now())
    clock.advance(timedelta(days=4))

Note:
    - Protocols are primarily for type checking
    - @runtime_checkable allows isinstance() checks
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

from django.utils import timezone

if TYPE_CHECKING:
    from datetime import datetime, timedelta


@runtime_checkable
class Clock(Protocol):
    """
    Protocol for time sources.

    Release windows and refund eligibility windows are computed against
    a Clock rather than reading the system time directly, so tests can
    move time forward without sleeping.
    """

    def now(self) -> datetime:
        """Return the current timezone-aware datetime."""
        ...


class SystemClock:
    """Clock backed by django.utils.timezone.now()."""

    def now(self) -> datetime:
        return timezone.now()


class FixedClock:
    """
    Clock that only moves when told to.

    Example:
        clock = FixedClock(timezone.now())
        BaseService.set_clock(clock)
        clock.advance(timedelta(days=5))
    """

    def __init__(self, current: datetime) -> None:
        if timezone.is_naive(current):
            current = timezone.make_aware(current)
        self._current = current

    def now(self) -> datetime:
        return self._current

    def set(self, current: datetime) -> None:
        """Jump to an absolute point in time."""
        if timezone.is_naive(current):
            current = timezone.make_aware(current)
        self._current = current

    def advance(self, delta: timedelta) -> datetime:
        """Move the clock forward and return the new time."""
        self._current = self._current + delta
        return self._current


__all__ = [
    "Clock",
    "FixedClock",
    "SystemClock",
]
