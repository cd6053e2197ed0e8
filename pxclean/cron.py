"""
Cron expression parsing and next-fire computation.

Supports the five standard fields (minute hour day-of-month month
day-of-week), ``*``, lists, ranges, steps, month and weekday names, and the
``@hourly``/``@daily``/``@weekly``/``@monthly``/``@yearly`` shortcuts.

When both day-of-month and day-of-week are restricted, a day matches if
either field matches (POSIX cron semantics).
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone, tzinfo
from typing import Dict, FrozenSet, Optional

MONTH_NAMES = {
    name: index
    for index, name in enumerate(
        ["jan", "feb", "mar", "apr", "may", "jun", "jul", "aug", "sep", "oct", "nov", "dec"],
        start=1,
    )
}
DAY_NAMES = {
    name: index
    for index, name in enumerate(["sun", "mon", "tue", "wed", "thu", "fri", "sat"])
}

MACROS = {
    "@yearly": "0 0 1 1 *",
    "@annually": "0 0 1 1 *",
    "@monthly": "0 0 1 * *",
    "@weekly": "0 0 * * 0",
    "@daily": "0 0 * * *",
    "@midnight": "0 0 * * *",
    "@hourly": "0 * * * *",
}

# Give up after this many years without a match (e.g. "0 0 30 2 *")
SEARCH_YEARS = 5


def _value(text: str, names: Dict[str, int]) -> int:
    lowered = text.lower()
    if lowered in names:
        return names[lowered]
    if not text.isdigit():
        raise ValueError(f"Invalid cron value: {text!r}")
    return int(text)


def _parse_field(text: str, low: int, high: int, names: Dict[str, int]) -> FrozenSet[int]:
    values = set()
    for part in text.split(","):
        if not part:
            raise ValueError(f"Empty list item in cron field {text!r}")
        base, has_step, step_text = part.partition("/")
        step = 1
        if has_step:
            if not step_text.isdigit() or int(step_text) < 1:
                raise ValueError(f"Invalid cron step: {part!r}")
            step = int(step_text)

        if base == "*":
            start, end = low, high
        elif "-" in base:
            first, _, last = base.partition("-")
            start, end = _value(first, names), _value(last, names)
        else:
            start = _value(base, names)
            end = high if has_step else start

        if start < low or end > high or start > end:
            raise ValueError(f"Cron value out of range {low}-{high}: {part!r}")
        values.update(range(start, end + 1, step))
    return frozenset(values)


@dataclass(frozen=True)
class CronExpression:
    """A parsed five-field cron expression."""

    text: str
    minutes: FrozenSet[int]
    hours: FrozenSet[int]
    days: FrozenSet[int]
    months: FrozenSet[int]
    weekdays: FrozenSet[int]
    day_restricted: bool
    weekday_restricted: bool

    @classmethod
    def parse(cls, text: str) -> "CronExpression":
        """
        Parse a cron expression.

        Raises:
            ValueError: If the expression is malformed.
        """
        source = (text or "").strip()
        expanded = MACROS.get(source.lower(), source)
        fields = expanded.split()
        if len(fields) != 5:
            raise ValueError(f"Cron expression must have 5 fields, got {len(fields)}: {text!r}")
        minute, hour, day, month, weekday = fields

        weekdays = _parse_field(weekday, 0, 7, DAY_NAMES)
        # 7 is an alias for Sunday
        if 7 in weekdays:
            weekdays = (weekdays - {7}) | {0}

        return cls(
            text=source,
            minutes=_parse_field(minute, 0, 59, {}),
            hours=_parse_field(hour, 0, 23, {}),
            days=_parse_field(day, 1, 31, {}),
            months=_parse_field(month, 1, 12, MONTH_NAMES),
            weekdays=weekdays,
            day_restricted=not day.startswith("*"),
            weekday_restricted=not weekday.startswith("*"),
        )

    def matches_day(self, moment: datetime) -> bool:
        day_ok = moment.day in self.days
        weekday_ok = moment.isoweekday() % 7 in self.weekdays
        if self.day_restricted and self.weekday_restricted:
            return day_ok or weekday_ok
        if self.day_restricted:
            return day_ok
        if self.weekday_restricted:
            return weekday_ok
        return True

    def matches(self, moment: datetime) -> bool:
        return (
            moment.minute in self.minutes
            and moment.hour in self.hours
            and moment.month in self.months
            and self.matches_day(moment)
        )

    def next_fire(self, after: datetime, tz: Optional[tzinfo] = None) -> datetime:
        """
        Return the first matching minute strictly after ``after``.

        Args:
            after: Reference time. Naive values are taken to be in tz.
            tz: Timezone the expression is evaluated in. Defaults to the
                timezone of ``after``, or UTC.

        Returns:
            datetime: Timezone-aware fire time in tz.

        Raises:
            ValueError: If no matching time exists within the search window.
        """
        tz = tz or after.tzinfo or timezone.utc
        if after.tzinfo is None:
            after = after.replace(tzinfo=tz)
        local = after.astimezone(tz).replace(tzinfo=None)
        candidate = local.replace(second=0, microsecond=0) + timedelta(minutes=1)
        limit_year = candidate.year + SEARCH_YEARS

        while candidate.year <= limit_year:
            if candidate.month not in self.months:
                if candidate.month == 12:
                    candidate = candidate.replace(year=candidate.year + 1, month=1, day=1, hour=0, minute=0)
                else:
                    candidate = candidate.replace(month=candidate.month + 1, day=1, hour=0, minute=0)
                continue
            if not self.matches_day(candidate):
                candidate = (candidate + timedelta(days=1)).replace(hour=0, minute=0)
                continue
            if candidate.hour not in self.hours:
                candidate = (candidate + timedelta(hours=1)).replace(minute=0)
                continue
            if candidate.minute not in self.minutes:
                candidate += timedelta(minutes=1)
                continue

            result = candidate.replace(tzinfo=tz)
            # Wall-clock times skipped by a DST transition do not exist
            roundtrip = result.astimezone(timezone.utc).astimezone(tz).replace(tzinfo=None)
            if roundtrip != candidate or result <= after:
                candidate += timedelta(minutes=1)
                continue
            return result

        raise ValueError(f"No fire time found for cron expression {self.text!r}")

    def __str__(self) -> str:
        return self.text
