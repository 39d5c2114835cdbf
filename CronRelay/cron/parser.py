"""
Second-level cron expression parser.

Expressions carry six or seven space-separated fields::

    second minute hour day month weekday [year]

Each field is a comma-separated list of ``*``/``?``, single values,
``start-end`` ranges and ``*/step``, ``start-end/step`` or ``value/step``
steps.  Month and weekday fields also accept three-letter names.
"""

from __future__ import annotations

import re
from datetime import datetime, timedelta

FIELDS: dict[str, tuple[int, int]] = {
    "second": (0, 59),
    "minute": (0, 59),
    "hour": (0, 23),
    "day": (1, 31),
    "month": (1, 12),
    "weekday": (0, 6),  # 0 = Sunday
    "year": (1970, 2099),
}

MONTH_NAMES = {
    "JAN": 1, "FEB": 2, "MAR": 3, "APR": 4, "MAY": 5, "JUN": 6,
    "JUL": 7, "AUG": 8, "SEP": 9, "OCT": 10, "NOV": 11, "DEC": 12,
}

WEEKDAY_NAMES = {
    "SUN": 0, "MON": 1, "TUE": 2, "WED": 3, "THU": 4, "FRI": 5, "SAT": 6,
}

SEARCH_WINDOW = timedelta(days=366)

_NAME_RE = re.compile(r"[A-Za-z]{3}")


class CronExpressionError(ValueError):
    """Raised when an expression cannot be parsed"""


class NoMatchFound(RuntimeError):
    """Raised when no instant matches the expression within the search window"""


def normalize_expression(expression: str) -> str:
    """Collapse whitespace and prepend a zero second field to classic 5-field expressions"""
    parts = expression.split()
    if len(parts) == 5:
        parts.insert(0, "0")
    return " ".join(parts)


def parse(expression: str) -> dict[str, list[int]]:
    """Parse an expression into the sorted allowed values of each field"""
    fields = expression.split()
    if len(fields) not in (6, 7):
        raise CronExpressionError(
            f"Invalid cron expression: {expression!r}. "
            f"Expected 6 or 7 fields, got {len(fields)}."
        )

    names = list(FIELDS)
    return {
        names[i]: _parse_field(field, names[i]) for i, field in enumerate(fields)
    }


def _parse_field(field: str, name: str) -> list[int]:
    low, high = FIELDS[name]
    if field in ("*", "?"):
        return list(range(low, high + 1))

    field = _replace_names(field, name)

    values: set[int] = set()
    for part in field.split(","):
        if not part:
            raise CronExpressionError(f"Empty list item in {name} field: {field!r}")
        if "/" in part:
            values.update(_parse_step(part, low, high, name))
        elif "-" in part:
            start, end = _parse_bounds(part, name)
            values.update(range(max(start, low), min(end, high) + 1))
        else:
            value = _to_int(part, name)
            if low <= value <= high:
                values.add(value)

    return sorted(values)


def _replace_names(field: str, name: str) -> str:
    if name == "month":
        table = MONTH_NAMES
    elif name == "weekday":
        table = WEEKDAY_NAMES
    else:
        return field

    def substitute(match: re.Match) -> str:
        token = match.group(0).upper()
        if token not in table:
            raise CronExpressionError(f"Unknown {name} name: {match.group(0)!r}")
        return str(table[token])

    return _NAME_RE.sub(substitute, field)


def _parse_step(part: str, low: int, high: int, name: str) -> range:
    base, _, step_str = part.partition("/")
    step = _to_int(step_str, name)
    if step <= 0:
        raise CronExpressionError(f"Step must be positive in {name} field: {part!r}")

    if base in ("*", "?"):
        start, end = low, high
    elif "-" in base:
        start, end = _parse_bounds(base, name)
    else:
        start, end = _to_int(base, name), high

    return range(max(start, low), min(end, high) + 1, step)


def _parse_bounds(part: str, name: str) -> tuple[int, int]:
    start, sep, end = part.partition("-")
    if not sep:
        raise CronExpressionError(f"Invalid range in {name} field: {part!r}")
    return _to_int(start, name), _to_int(end, name)


def _to_int(token: str, name: str) -> int:
    try:
        return int(token)
    except ValueError:
        raise CronExpressionError(f"Invalid value {token!r} in {name} field") from None


def validate(expression: str) -> bool:
    """True when the expression parses"""
    try:
        parse(expression)
        return True
    except CronExpressionError:
        return False


def matches(parsed: dict[str, list[int]], moment: datetime) -> bool:
    """Check every parsed field against the calendar fields of moment"""
    parts = _time_parts(moment)
    return all(parts[name] in allowed for name, allowed in parsed.items())


def _time_parts(moment: datetime) -> dict[str, int]:
    return {
        "second": moment.second,
        "minute": moment.minute,
        "hour": moment.hour,
        "day": moment.day,
        "month": moment.month,
        "weekday": moment.isoweekday() % 7,
        "year": moment.year,
    }


def get_next_run_time(expression: str, base_time: datetime | None = None) -> datetime:
    """
    First instant strictly after base_time that matches the expression.

    Candidate instants are advanced field by field: a mismatching year, month
    or day skips to the start of the next one, a mismatching hour or minute to
    the next hour or minute, and only the second field is scanned one step at
    a time.  Times are naive and second-precise.
    """
    parsed = parse(expression)
    if base_time is None:
        base_time = datetime.now()

    allowed = {name: set(values) for name, values in parsed.items()}
    start = base_time.replace(microsecond=0) + timedelta(seconds=1)
    limit = start + SEARCH_WINDOW
    candidate = start

    while candidate < limit:
        if "year" in allowed and candidate.year not in allowed["year"]:
            candidate = datetime(candidate.year + 1, 1, 1)
            continue
        if candidate.month not in allowed["month"]:
            candidate = _start_of_next_month(candidate)
            continue
        if (
            candidate.day not in allowed["day"]
            or candidate.isoweekday() % 7 not in allowed["weekday"]
        ):
            candidate = datetime(candidate.year, candidate.month, candidate.day) + timedelta(days=1)
            continue
        if candidate.hour not in allowed["hour"]:
            candidate = candidate.replace(minute=0, second=0) + timedelta(hours=1)
            continue
        if candidate.minute not in allowed["minute"]:
            candidate = candidate.replace(second=0) + timedelta(minutes=1)
            continue
        if candidate.second not in allowed["second"]:
            candidate += timedelta(seconds=1)
            continue
        return candidate

    raise NoMatchFound(f"Could not find next run time for expression: {expression}")


def _start_of_next_month(moment: datetime) -> datetime:
    if moment.month == 12:
        return datetime(moment.year + 1, 1, 1)
    return datetime(moment.year, moment.month + 1, 1)


def get_next_run_times(
    expression: str, count: int = 5, base_time: datetime | None = None
) -> list[datetime]:
    """The next count run times, each computed from the previous one"""
    times = []
    current = base_time or datetime.now()
    for _ in range(count):
        current = get_next_run_time(expression, current)
        times.append(current)
    return times
