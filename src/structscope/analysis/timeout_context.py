"""Cooperative deadlines for analysis runs.

A deadline and a progress clock live in context variables. Long loops call
:func:`check_deadline` between units of work; when the deadline has passed
(or a logical :class:`GasMeter` runs dry) :class:`TimeoutExceeded` propagates
and whatever was computed so far is discarded by the caller.

Worker threads do not inherit context variables, so callers that fan out
work submit it through ``contextvars.copy_context().run``.
"""

from __future__ import annotations

import inspect
import time
from collections.abc import Iterable, Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from dataclasses import dataclass
from typing import Protocol, TypeVar

from structscope.invariants import never

_LoopItem = TypeVar("_LoopItem")


class DeadlineClock(Protocol):
    def consume(self, ticks: int = 1) -> None:
        """Consume logical progress units."""

    def get_mark(self) -> int:
        """Return the current monotonic mark for profiling/deltas."""


class DeadlineClockExhausted(RuntimeError):
    """Raised by logical clocks when available ticks are exhausted."""


@dataclass(frozen=True)
class MonotonicClock:
    """Default wall-clock implementation used when no logical clock is injected."""

    def consume(self, ticks: int = 1) -> None:
        # Wall-clock mode does not consume logical gas.
        return

    def get_mark(self) -> int:
        return time.monotonic_ns()


@dataclass
class GasMeter:
    """Deterministic logical clock driven by consumed ticks."""

    limit: int
    current: int = 0

    def __post_init__(self) -> None:
        if int(self.limit) <= 0:
            never("invalid gas meter limit", limit=self.limit)
        self.limit = int(self.limit)
        self.current = int(self.current)
        if self.current < 0:
            never("invalid gas meter current", current=self.current)

    def consume(self, ticks: int = 1) -> None:
        ticks_value = int(ticks)
        if ticks_value <= 0:
            never("invalid gas meter ticks", ticks=ticks)
        self.current += ticks_value
        if self.current >= self.limit:
            raise DeadlineClockExhausted(f"Gas exhausted: {self.current}/{self.limit}")

    def get_mark(self) -> int:
        return self.current


@dataclass(frozen=True)
class TimeoutContext:
    site: str
    checks: int
    reason: str = "deadline"

    def as_payload(self) -> dict[str, str | int]:
        return {"site": self.site, "checks": self.checks, "reason": self.reason}


class TimeoutExceeded(TimeoutError):
    def __init__(self, context: TimeoutContext) -> None:
        super().__init__("Analysis timed out.")
        self.context = context


_SYSTEM_CLOCK = MonotonicClock()


@dataclass(frozen=True)
class Deadline:
    deadline_ns: int

    @classmethod
    def from_timeout_ticks(cls, ticks: int, tick_ns: int) -> "Deadline":
        ticks_value = int(ticks)
        tick_ns_value = int(tick_ns)
        if ticks_value < 0:
            never("invalid timeout ticks", ticks=ticks)
        if tick_ns_value <= 0:
            never("invalid timeout tick_ns", tick_ns=tick_ns)
        return cls(deadline_ns=_SYSTEM_CLOCK.get_mark() + ticks_value * tick_ns_value)

    @classmethod
    def from_timeout_ms(cls, milliseconds: int) -> "Deadline":
        return cls.from_timeout_ticks(milliseconds, 1_000_000)

    def expired(self) -> bool:
        return _SYSTEM_CLOCK.get_mark() >= self.deadline_ns


@dataclass
class _CheckCounter:
    checks: int = 0


_deadline_var: ContextVar[Deadline | None] = ContextVar("structscope_deadline", default=None)
_deadline_clock_var: ContextVar[DeadlineClock | None] = ContextVar(
    "structscope_deadline_clock", default=None
)
_check_counter_var: ContextVar[_CheckCounter | None] = ContextVar(
    "structscope_deadline_checks", default=None
)


def set_deadline(deadline: Deadline):
    if deadline is None:
        never("deadline carrier missing")
    return _deadline_var.set(deadline)


def reset_deadline(token) -> None:
    _deadline_var.reset(token)


def get_deadline() -> Deadline | None:
    return _deadline_var.get()


def set_deadline_clock(clock: DeadlineClock):
    if clock is None:
        never("deadline clock missing")
    return _deadline_clock_var.set(clock)


def reset_deadline_clock(token) -> None:
    _deadline_clock_var.reset(token)


def get_deadline_clock() -> DeadlineClock:
    clock = _deadline_clock_var.get()
    return clock if clock is not None else _SYSTEM_CLOCK


@contextmanager
def deadline_scope(deadline: Deadline):
    token = set_deadline(deadline)
    counter_token = _check_counter_var.set(_CheckCounter())
    try:
        yield
    finally:
        _check_counter_var.reset(counter_token)
        reset_deadline(token)


@contextmanager
def deadline_clock_scope(clock: DeadlineClock):
    token = set_deadline_clock(clock)
    try:
        yield
    finally:
        reset_deadline_clock(token)


def _caller_site() -> str:
    frame = inspect.currentframe()
    try:
        # Skip this helper and the check_deadline/consume frames.
        while frame is not None and frame.f_globals.get("__name__") == __name__:
            frame = frame.f_back
        if frame is None:
            return "<unknown>"
        return f"{frame.f_globals.get('__name__', '?')}.{frame.f_code.co_qualname}"
    finally:
        del frame


def _timeout_context(reason: str) -> TimeoutContext:
    counter = _check_counter_var.get()
    return TimeoutContext(
        site=_caller_site(),
        checks=counter.checks if counter is not None else 0,
        reason=reason,
    )


def consume_deadline_ticks(ticks: int = 1) -> None:
    clock = _deadline_clock_var.get()
    if clock is None:
        return
    try:
        clock.consume(ticks)
    except DeadlineClockExhausted as exc:
        raise TimeoutExceeded(_timeout_context("gas")) from exc


def check_deadline() -> None:
    """Raise :class:`TimeoutExceeded` once the active deadline has passed.

    Without an active deadline or clock this is a no-op, so library callers
    that never opened a scope are unaffected.
    """
    counter = _check_counter_var.get()
    if counter is not None:
        counter.checks += 1
    consume_deadline_ticks()
    deadline = _deadline_var.get()
    if deadline is not None and deadline.expired():
        raise TimeoutExceeded(_timeout_context("deadline"))


def deadline_loop_iter(values: Iterable[_LoopItem]) -> Iterator[_LoopItem]:
    for value in values:
        check_deadline()
        yield value
