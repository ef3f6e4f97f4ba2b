"""Durations written as whole minutes or as Go-style duration strings."""

from __future__ import annotations

import re

NANOSECOND = 1
MICROSECOND = 1000 * NANOSECOND
MILLISECOND = 1000 * MICROSECOND
SECOND = 1000 * MILLISECOND
MINUTE = 60 * SECOND
HOUR = 60 * MINUTE

_MAX_INT32 = 2**31 - 1
_MIN_INT32 = -(2**31)
_MAX_INT64 = 2**63 - 1
_LIMIT = 1 << 63

_UNITS = {
    "ns": NANOSECOND,
    "us": MICROSECOND,
    "\u00b5s": MICROSECOND,
    "\u03bcs": MICROSECOND,
    "ms": MILLISECOND,
    "s": SECOND,
    "m": MINUTE,
    "h": HOUR,
}

_INTEGER = re.compile(r"[+-]?[0-9]+")


class DurationError(ValueError):
    """A duration could not be parsed or is out of range."""


def _is_digit(c: str) -> bool:
    return "0" <= c <= "9"


def _leading_int(s: str, orig: str) -> tuple[int, str]:
    i = 0
    value = 0
    while i < len(s) and _is_digit(s[i]):
        if value > _LIMIT // 10:
            raise DurationError(f'time: invalid duration "{orig}"')
        value = value * 10 + int(s[i])
        if value > _LIMIT:
            raise DurationError(f'time: invalid duration "{orig}"')
        i += 1
    return value, s[i:]


def _leading_fraction(s: str) -> tuple[int, float, str]:
    i = 0
    value = 0
    scale = 1.0
    overflow = False
    while i < len(s) and _is_digit(s[i]):
        if not overflow:
            if value > _MAX_INT64 // 10:
                overflow = True
            else:
                candidate = value * 10 + int(s[i])
                if candidate > _LIMIT:
                    overflow = True
                else:
                    value = candidate
                    scale *= 10
        i += 1
    return value, scale, s[i:]


def parse_go_duration(text: str) -> int:
    """Parse a duration such as "1h10m" or "2.5h" into nanoseconds."""
    orig = text
    s = text
    invalid = DurationError(f'time: invalid duration "{orig}"')
    negative = False
    if s and s[0] in "+-":
        negative = s[0] == "-"
        s = s[1:]
    if s == "0":
        return 0
    if not s:
        raise invalid

    total = 0
    while s:
        if not (s[0] == "." or _is_digit(s[0])):
            raise invalid
        before = len(s)
        whole, s = _leading_int(s, orig)
        has_whole = before != len(s)

        fraction, scale, has_fraction = 0, 1.0, False
        if s and s[0] == ".":
            s = s[1:]
            before = len(s)
            fraction, scale, s = _leading_fraction(s)
            has_fraction = before != len(s)
        if not has_whole and not has_fraction:
            raise invalid

        i = 0
        while i < len(s) and not (s[i] == "." or _is_digit(s[i])):
            i += 1
        if i == 0:
            raise DurationError(f'time: missing unit in duration "{orig}"')
        unit_name, s = s[:i], s[i:]
        unit = _UNITS.get(unit_name)
        if unit is None:
            raise DurationError(
                f'time: unknown unit "{unit_name}" in duration "{orig}"'
            )
        if whole > _LIMIT // unit:
            raise invalid
        whole *= unit
        if fraction > 0:
            whole += int(float(fraction) * (float(unit) / scale))
            if whole > _LIMIT:
                raise invalid
        total += whole
        if total > _LIMIT:
            raise invalid

    if negative:
        return -total
    if total > _MAX_INT64:
        raise invalid
    return total


def _with_fraction(value: int, precision: int) -> str:
    base = 10**precision
    whole, fraction = divmod(value, base)
    if not fraction:
        return str(whole)
    digits = f"{fraction:0{precision}d}".rstrip("0")
    return f"{whole}.{digits}"


def format_go_duration(nanoseconds: int) -> str:
    """Format nanoseconds the way Go prints a duration, e.g. "1m6s"."""
    if nanoseconds == 0:
        return "0s"
    sign = "-" if nanoseconds < 0 else ""
    u = abs(nanoseconds)
    if u < SECOND:
        if u < MICROSECOND:
            body = f"{u}ns"
        elif u < MILLISECOND:
            body = _with_fraction(u, 3) + "\u00b5s"
        else:
            body = _with_fraction(u, 6) + "ms"
        return sign + body

    body = _with_fraction(u % MINUTE, 9) + "s"
    minutes = u // MINUTE
    if minutes:
        body = f"{minutes % 60}m{body}"
        hours = minutes // 60
        if hours:
            body = f"{hours}h{body}"
    return sign + body


def parse_minutes(text: str) -> int:
    """Parse a non-negative number of minutes, given plainly or as a duration."""
    if _INTEGER.fullmatch(text):
        value = int(text)
        if value < _MIN_INT32 or value > _MAX_INT32:
            int_error = DurationError(
                f'strconv.ParseInt: parsing "{text}": value out of range'
            )
        else:
            if value < 0:
                raise DurationError(f"duration out of range: {value}")
            return value
    else:
        int_error = DurationError(f'strconv.ParseInt: parsing "{text}": invalid syntax')

    try:
        nanoseconds = parse_go_duration(text)
    except DurationError:
        raise int_error from None

    minutes = nanoseconds / MINUTE
    if minutes < 0 or float(_MAX_INT32) < minutes:
        raise DurationError(
            f"duration out of range: {format_go_duration(nanoseconds)}"
        )
    if nanoseconds % MINUTE != 0:
        raise DurationError(
            f"duration not multiple of 1m: {format_go_duration(nanoseconds)}"
        )
    return int(minutes)