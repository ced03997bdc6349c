"""Parsing and evaluation of standard five-field cron schedules."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Mapping

_STAR_BIT = 1 << 63
_NANOS_PER_SECOND = 10**9


class ScheduleError(ValueError):
    """Raised when a schedule specification cannot be parsed."""


@dataclass(frozen=True)
class _Bounds:
    low: int
    high: int
    names: Mapping[str, int] | None = None


_MINUTES = _Bounds(0, 59)
_HOURS = _Bounds(0, 23)
_DAYS_OF_MONTH = _Bounds(1, 31)
_MONTHS = _Bounds(
    1,
    12,
    {
        name: number
        for number, name in enumerate(
            ("jan", "feb", "mar", "apr", "may", "jun",
             "jul", "aug", "sep", "oct", "nov", "dec"),
            start=1,
        )
    },
)
_DAYS_OF_WEEK = _Bounds(
    0,
    6,
    {name: number for number, name in enumerate(("sun", "mon", "tue", "wed", "thu", "fri", "sat"))},
)


def _bits(start: int, end: int, step: int) -> int:
    return sum(1 << value for value in range(start, end + 1, step))


def _all(bounds: _Bounds) -> int:
    return _bits(bounds.low, bounds.high, 1) | _STAR_BIT


def _add_months(t: datetime, months: int) -> datetime:
    years, month_index = divmod(t.month - 1 + months, 12)
    first = t.replace(year=t.year + years, month=month_index + 1, day=1)
    return first + timedelta(days=t.day - 1)


def _add_absolute(t: datetime, delta: timedelta) -> datetime:
    if t.tzinfo is None:
        return t + delta
    return (t.astimezone(timezone.utc) + delta).astimezone(t.tzinfo)


def _weekday(t: datetime) -> int:
    return (t.weekday() + 1) % 7


@dataclass(frozen=True)
class CronSchedule:
    """A parsed schedule: either cron field bit sets or a constant delay."""

    second: int = 0
    minute: int = 0
    hour: int = 0
    dom: int = 0
    month: int = 0
    dow: int = 0
    delay: timedelta | None = None

    def _day_matches(self, t: datetime) -> bool:
        dom_match = bool((1 << t.day) & self.dom)
        dow_match = bool((1 << _weekday(t)) & self.dow)
        if self.dom & _STAR_BIT or self.dow & _STAR_BIT:
            return dom_match and dow_match
        return dom_match or dow_match

    def next(self, after: datetime) -> datetime | None:
        """Return the first activation strictly after ``after``.

        Returns None when no activation exists within five years.
        """
        if self.delay is not None:
            return after.replace(microsecond=0) + self.delay

        stages: tuple[tuple[Callable[[datetime], bool], Callable[[datetime], datetime],
                            Callable[[datetime], datetime], Callable[[datetime], bool]], ...] = (
            (
                lambda t: bool((1 << t.month) & self.month),
                lambda t: t.replace(day=1, hour=0, minute=0, second=0),
                lambda t: _add_months(t, 1),
                lambda t: t.month == 1,
            ),
            (
                self._day_matches,
                lambda t: t.replace(hour=0, minute=0, second=0),
                lambda t: t + timedelta(days=1),
                lambda t: t.day == 1,
            ),
            (
                lambda t: bool((1 << t.hour) & self.hour),
                lambda t: t.replace(minute=0, second=0),
                lambda t: _add_absolute(t, timedelta(hours=1)),
                lambda t: t.hour == 0,
            ),
            (
                lambda t: bool((1 << t.minute) & self.minute),
                lambda t: t.replace(second=0),
                lambda t: _add_absolute(t, timedelta(minutes=1)),
                lambda t: t.minute == 0,
            ),
            (
                lambda t: bool((1 << t.second) & self.second),
                lambda t: t,
                lambda t: _add_absolute(t, timedelta(seconds=1)),
                lambda t: t.second == 0,
            ),
        )

        t = _add_absolute(after.replace(microsecond=0), timedelta(seconds=1))
        year_limit = t.year + 5
        added = False
        while t.year <= year_limit:
            for matches, truncate, advance, wrapped in stages:
                restart = False
                while not matches(t):
                    if not added:
                        added = True
                        t = truncate(t)
                    t = advance(t)
                    if wrapped(t):
                        restart = True
                        break
                if restart:
                    break
            else:
                return t
        return None


_INT_PATTERN = re.compile(r"[+-]?[0-9]+")


def _parse_int(expr: str) -> int:
    if not _INT_PATTERN.fullmatch(expr):
        raise ScheduleError(f"Failed to parse int from {expr}: invalid syntax")
    number = int(expr)
    if number < 0:
        raise ScheduleError(f"Negative number ({number}) not allowed: {expr}")
    return number


def _parse_int_or_name(expr: str, names: Mapping[str, int] | None) -> int:
    if names is not None and expr.lower() in names:
        return names[expr.lower()]
    return _parse_int(expr)


def _parse_range(expr: str, bounds: _Bounds) -> int:
    range_and_step = expr.split("/")
    low_and_high = range_and_step[0].split("-")
    single = len(low_and_high) == 1
    extra = 0

    if low_and_high[0] in ("*", "?"):
        start, end = bounds.low, bounds.high
        extra = _STAR_BIT
    else:
        start = _parse_int_or_name(low_and_high[0], bounds.names)
        if len(low_and_high) == 1:
            end = start
        elif len(low_and_high) == 2:
            end = _parse_int_or_name(low_and_high[1], bounds.names)
        else:
            raise ScheduleError(f"Too many hyphens: {expr}")

    if len(range_and_step) == 1:
        step = 1
    elif len(range_and_step) == 2:
        step = _parse_int(range_and_step[1])
        if single:
            end = bounds.high
    else:
        raise ScheduleError(f"Too many slashes: {expr}")

    if start < bounds.low:
        raise ScheduleError(
            f"Beginning of range ({start}) below minimum ({bounds.low}): {expr}"
        )
    if end > bounds.high:
        raise ScheduleError(f"End of range ({end}) above maximum ({bounds.high}): {expr}")
    if start > end:
        raise ScheduleError(
            f"Beginning of range ({start}) beyond end of range ({end}): {expr}"
        )
    if step == 0:
        raise ScheduleError(f"Step of range should be a positive number: {expr}")
    return _bits(start, end, step) | extra


def _parse_field(text: str, bounds: _Bounds) -> int:
    bits = 0
    for part in filter(None, text.split(",")):
        bits |= _parse_range(part, bounds)
    return bits


_UNIT_NANOS = {
    "ns": 1,
    "us": 1_000,
    "\u00b5s": 1_000,
    "\u03bcs": 1_000,
    "ms": 1_000_000,
    "s": _NANOS_PER_SECOND,
    "m": 60 * _NANOS_PER_SECOND,
    "h": 3600 * _NANOS_PER_SECOND,
}
_DURATION_PART = re.compile(r"([0-9]*)(?:\.([0-9]*))?([^0-9.]*)")


def _parse_duration_nanos(text: str) -> int:
    body = text
    sign = 1
    if body.startswith(("-", "+")):
        sign = -1 if body[0] == "-" else 1
        body = body[1:]
    if body == "0":
        return 0
    if not body:
        raise ValueError(f'time: invalid duration "{text}"')
    total = 0
    pos = 0
    while pos < len(body):
        match = _DURATION_PART.match(body, pos)
        whole, fraction, unit = match.groups()
        if not whole and not fraction:
            raise ValueError(f'time: invalid duration "{text}"')
        if not unit:
            raise ValueError(f'time: missing unit in duration "{text}"')
        if unit not in _UNIT_NANOS:
            raise ValueError(f'time: unknown unit "{unit}" in duration "{text}"')
        scale = _UNIT_NANOS[unit]
        total += int(whole or "0") * scale
        if fraction:
            total += int(fraction) * scale // 10 ** len(fraction)
        pos = match.end()
    return sign * total


def _every(nanos: int) -> CronSchedule:
    nanos = max(nanos, _NANOS_PER_SECOND)
    return CronSchedule(delay=timedelta(seconds=nanos // _NANOS_PER_SECOND))


def _parse_descriptor(descriptor: str) -> CronSchedule:
    midnight = dict(second=1 << 0, minute=1 << _MINUTES.low, hour=1 << _HOURS.low)
    descriptors = {
        "@yearly": lambda: CronSchedule(**midnight, dom=1 << _DAYS_OF_MONTH.low,
                                        month=1 << _MONTHS.low, dow=_all(_DAYS_OF_WEEK)),
        "@monthly": lambda: CronSchedule(**midnight, dom=1 << _DAYS_OF_MONTH.low,
                                         month=_all(_MONTHS), dow=_all(_DAYS_OF_WEEK)),
        "@weekly": lambda: CronSchedule(**midnight, dom=_all(_DAYS_OF_MONTH),
                                        month=_all(_MONTHS), dow=1 << _DAYS_OF_WEEK.low),
        "@daily": lambda: CronSchedule(**midnight, dom=_all(_DAYS_OF_MONTH),
                                       month=_all(_MONTHS), dow=_all(_DAYS_OF_WEEK)),
        "@hourly": lambda: CronSchedule(second=1 << 0, minute=1 << _MINUTES.low,
                                        hour=_all(_HOURS), dom=_all(_DAYS_OF_MONTH),
                                        month=_all(_MONTHS), dow=_all(_DAYS_OF_WEEK)),
    }
    descriptors["@annually"] = descriptors["@yearly"]
    descriptors["@midnight"] = descriptors["@daily"]

    if descriptor in descriptors:
        return descriptors[descriptor]()
    every = "@every "
    if descriptor.startswith(every):
        try:
            nanos = _parse_duration_nanos(descriptor[len(every):])
        except ValueError as exc:
            raise ScheduleError(f"Failed to parse duration {descriptor}: {exc}") from exc
        return _every(nanos)
    raise ScheduleError(f"Unrecognized descriptor: {descriptor}")


def parse_standard(spec: str) -> CronSchedule:
    """Parse a five-field cron expression or an ``@`` descriptor."""
    if not spec:
        raise ScheduleError("Empty spec string")
    if spec.startswith("@"):
        return _parse_descriptor(spec)
    fields = spec.split()
    if len(fields) != 5:
        raise ScheduleError(f"Expected exactly 5 fields, found {len(fields)}: {spec}")
    minute, hour, dom, month, dow = (
        _parse_field(text, bounds)
        for text, bounds in zip(
            fields, (_MINUTES, _HOURS, _DAYS_OF_MONTH, _MONTHS, _DAYS_OF_WEEK)
        )
    )
    return CronSchedule(second=1 << 0, minute=minute, hour=hour, dom=dom, month=month, dow=dow)