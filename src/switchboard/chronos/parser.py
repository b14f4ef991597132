"""Schedule expression parsing for Chronos jobs.

Three schedule types are understood:

* ``once``: an ISO 8601 timestamp or a natural-language phrase ("tomorrow at
  9am", "next friday at 18:00", "October 20 at 3pm", "in 1 hour 30 minutes"),
  resolved in the job's timezone and required to be strictly in the future.
  Clock and weekday phrases are resolved here; anything else goes to dateparser.
* ``cron``: a 5-field croniter expression whose occurrences are never closer
  than 60 seconds. A trailing seconds field of 0 is dropped.
* ``interval``: phrases such as "every 30 minutes" or "daily", translated to cron.

Every failure raises ``ScheduleParseError`` so bad input is caught when a job is
created or updated, never when it fires.
"""

from __future__ import annotations

import re
from datetime import date, datetime, time, timedelta
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import dateparser
from croniter import croniter

from switchboard.chronos.types import ParsedSchedule, ScheduleParseError, ScheduleType
from switchboard.infrastructure.clock import now_ms, to_ms
from switchboard.infrastructure.config import CHRONOS_MIN_SPACING, TIMEZONE

# Occurrences inspected when checking the minimum spacing of a cron expression.
SPACING_SAMPLE = 10

INTERVAL_FORMATS = (
    '"every N minutes" (1-59), "every N hours" (1-23), "every N days" (1-31), '
    '"every minute", "every hour", "every day", "every week", "hourly", "daily", "weekly"'
)

_WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")

_SECONDS = re.compile(r"^every\s+\d+\s*(?:s|secs?|seconds?)$")
_EVERY_N = re.compile(r"^every\s+(\d+)\s*(mins?|minutes?|h|hrs?|hours?|d|days?)$")
_FIXED_INTERVALS = {
    "every minute": "* * * * *",
    "every hour": "0 * * * *",
    "hourly": "0 * * * *",
    "every day": "0 0 * * *",
    "daily": "0 0 * * *",
    "every week": "0 0 * * 0",
    "weekly": "0 0 * * 0",
}

_RELATIVE = re.compile(r"^in\s+(\d+)\s*(mins?|minutes?|h|hrs?|hours?|d|days?|w|weeks?)$")
_TIME = r"(?:(noon|midnight|morning|afternoon|evening|night)|(\d{1,2})(?::(\d{2}))?\s*(am|pm)?)"
_DAY_AND_TIME = re.compile(rf"^(?:(today|tomorrow|tonight)\s*)?(?:at\s+)?{_TIME}$")
_TIME_AND_DAY = re.compile(rf"^(?:at\s+)?{_TIME}\s+(today|tomorrow|tonight)$")
_WEEKDAY_AND_TIME = re.compile(rf"^(?:on\s+)?(next\s+)?({'|'.join(_WEEKDAYS)})(?:\s+(?:at\s+)?{_TIME})?$")

# Parts of the day, as the hour they stand for.
_NAMED_TIMES = {
    "midnight": time(0, 0),
    "morning": time(6, 0),
    "noon": time(12, 0),
    "afternoon": time(15, 0),
    "evening": time(20, 0),
    "night": time(20, 0),
}


def parse_schedule_expression(
    expression: str,
    schedule_type: ScheduleType,
    timezone: str | None = None,
    reference_ms: int | None = None,
) -> ParsedSchedule:
    tz = timezone or TIMEZONE
    zone = _zone(tz)
    reference = reference_ms if reference_ms is not None else now_ms()
    expression = (expression or "").strip()
    if not expression:
        raise ScheduleParseError("Schedule expression is empty.")

    if schedule_type == "once":
        when = parse_once(expression, zone, reference)
        run_at = to_ms(when)
        if run_at <= reference:
            raise ScheduleParseError(
                f'Scheduled time must be in the future. Got: "{expression}" which resolves to {when.isoformat()}.'
            )
        return ParsedSchedule(type="once", next_run_at=run_at, human_readable=format_datetime(when, zone))

    if schedule_type == "cron":
        normalized = validate_cron(expression, tz, reference)
        return ParsedSchedule(
            type="cron",
            next_run_at=parse_next_run(normalized, tz, reference),
            cron_normalized=normalized,
            human_readable=describe_cron(normalized),
        )

    if schedule_type == "interval":
        cron = interval_to_cron(expression)
        validate_cron(cron, tz, reference)
        return ParsedSchedule(
            type="interval",
            next_run_at=parse_next_run(cron, tz, reference),
            cron_normalized=cron,
            human_readable=describe_cron(cron),
        )

    raise ScheduleParseError(f'Unknown schedule type: "{schedule_type}"')


# --- Interval ---

def interval_to_cron(expression: str) -> str:
    """Translate an interval phrase to the equivalent cron expression."""
    text = _normalize(expression)

    if _SECONDS.match(text):
        raise ScheduleParseError(
            f'Sub-minute intervals are not supported: "{expression}". The minimum interval is 1 minute.'
        )
    if text in _FIXED_INTERVALS:
        return _FIXED_INTERVALS[text]

    m = _EVERY_N.match(text)
    if m:
        n = int(m.group(1))
        unit = m.group(2)[0]
        if unit == "m":
            _check_range(expression, n, 1, 59, "minutes")
            return "* * * * *" if n == 1 else f"*/{n} * * * *"
        if unit == "h":
            _check_range(expression, n, 1, 23, "hours")
            return "0 * * * *" if n == 1 else f"0 */{n} * * *"
        _check_range(expression, n, 1, 31, "days")
        return "0 0 * * *" if n == 1 else f"0 0 */{n} * *"

    raise ScheduleParseError(
        f'Cannot convert interval expression to cron: "{expression}". Supported formats: {INTERVAL_FORMATS}.'
    )


def _check_range(expression: str, n: int, low: int, high: int, unit: str) -> None:
    if not low <= n <= high:
        raise ScheduleParseError(f'Interval out of range in "{expression}": {unit} must be between {low} and {high}.')


# --- Cron ---

def validate_cron(expression: str, timezone: str, reference_ms: int | None = None) -> str:
    """Check syntax and minimum spacing. Returns the canonical 5-field expression."""
    fields = expression.split()
    if len(fields) == 6 and fields[5].isdigit() and int(fields[5]) == 0:
        # Firing on second 0 is what a 5-field expression already does.
        fields = fields[:5]
    if len(fields) != 5:
        raise ScheduleParseError(
            f'Invalid cron expression: "{expression}". Expected 5 fields (minute hour day month weekday).'
        )
    normalized = " ".join(fields)

    occurrences = get_next_occurrences(normalized, timezone, SPACING_SAMPLE, reference_ms)
    gaps = [b - a for a, b in zip(occurrences, occurrences[1:])]
    if gaps and min(gaps) < CHRONOS_MIN_SPACING * 1000:
        raise ScheduleParseError(
            f'Minimum interval is {int(CHRONOS_MIN_SPACING)} seconds. '
            f'The cron expression "{expression}" triggers more frequently.'
        )
    return normalized


def parse_next_run(cron_normalized: str, timezone: str, reference_ms: int | None = None) -> int:
    """Next fire time (ms) strictly after the reference instant."""
    return get_next_occurrences(cron_normalized, timezone, 1, reference_ms)[0]


def get_next_occurrences(
    cron_normalized: str, timezone: str, count: int = 3, reference_ms: int | None = None
) -> list[int]:
    zone = _zone(timezone)
    start = datetime.fromtimestamp((reference_ms if reference_ms is not None else now_ms()) / 1000, tz=zone)
    try:
        it = croniter(cron_normalized, start)
        return [to_ms(it.get_next(datetime)) for _ in range(count)]
    except (ValueError, KeyError) as err:
        raise ScheduleParseError(f'Invalid cron expression: "{cron_normalized}". {err}') from err


def describe_cron(cron: str) -> str:
    fields = cron.split()
    if len(fields) != 5:
        return cron
    minute, hour, dom, month, dow = fields
    if fields == ["*", "*", "*", "*", "*"]:
        return "Every minute"
    if minute.startswith("*/") and hour == dom == month == dow == "*":
        return f"Every {minute[2:]} minutes"
    if minute == "0" and hour == "*" and dom == month == dow == "*":
        return "Every hour"
    if minute == "0" and hour.startswith("*/") and dom == month == dow == "*":
        return f"Every {hour[2:]} hours"
    if minute == hour == "0" and dom == month == "*" and dow == "*":
        return "Every day at 00:00"
    if minute == hour == "0" and dom.startswith("*/") and month == dow == "*":
        return f"Every {dom[2:]} days"
    if minute == hour == "0" and dom == month == "*" and dow == "0":
        return "Every week on Sunday at 00:00"
    if minute.isdigit() and hour.isdigit() and dom == month == "*":
        at = f"{int(hour):02d}:{int(minute):02d}"
        return f"At {at}" if dow == "*" else f"At {at} (days of week: {dow})"
    return cron


# --- Once ---

def parse_once(expression: str, zone: ZoneInfo, reference_ms: int) -> datetime:
    """Resolve a one-shot expression to an aware datetime (not yet checked for being in the future)."""
    iso = _parse_iso(expression, zone)
    if iso is not None:
        return iso

    text = _normalize(expression)
    reference = datetime.fromtimestamp(reference_ms / 1000, tz=zone)

    m = _RELATIVE.match(text)
    if m:
        n = int(m.group(1))
        unit = m.group(2)[0]
        delta = {
            "m": timedelta(minutes=n),
            "h": timedelta(hours=n),
            "d": timedelta(days=n),
            "w": timedelta(weeks=n),
        }[unit]
        return reference + delta

    m = _DAY_AND_TIME.match(text)
    if m:
        day_word, *time_parts = m.groups()
        return _resolve_day_and_time(day_word, time_parts, reference, zone, expression)

    m = _TIME_AND_DAY.match(text)
    if m:
        *time_parts, day_word = m.groups()
        return _resolve_day_and_time(day_word, time_parts, reference, zone, expression)

    m = _WEEKDAY_AND_TIME.match(text)
    if m:
        is_next, weekday, *time_parts = m.groups()
        at = _clock_time(time_parts, None, expression) if any(time_parts) else time(9, 0)
        days_ahead = (_WEEKDAYS.index(weekday) - reference.weekday()) % 7
        candidate = _combine(reference.date() + timedelta(days=days_ahead), at, zone)
        if days_ahead == 0 and (is_next or candidate <= reference):
            candidate = _combine(reference.date() + timedelta(days=7), at, zone)
        return candidate

    parsed = dateparser.parse(
        expression,
        languages=["en"],
        settings={
            "RELATIVE_BASE": reference.replace(tzinfo=None),
            "TIMEZONE": zone.key,
            "RETURN_AS_TIMEZONE_AWARE": True,
            "PREFER_DATES_FROM": "future",
        },
    )
    if parsed is None:
        raise ScheduleParseError(
            f'Could not parse date/time expression: "{expression}". '
            'Try an ISO 8601 datetime or natural language like "tomorrow at 9am".'
        )
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=zone)
    return parsed.astimezone(zone)


def _resolve_day_and_time(
    day_word: str | None, time_parts: list[str | None], reference: datetime, zone: ZoneInfo, expression: str
) -> datetime:
    named = time_parts[0]
    if named == "midnight":
        # Midnight closes the named day.
        offset = 2 if day_word == "tomorrow" else 1
        return _combine(reference.date() + timedelta(days=offset), time(0, 0), zone)

    at = _clock_time(time_parts, day_word, expression)
    if day_word == "tomorrow":
        return _combine(reference.date() + timedelta(days=1), at, zone)
    candidate = _combine(reference.date(), at, zone)
    if day_word is None and candidate <= reference:
        candidate = _combine(reference.date() + timedelta(days=1), at, zone)
    return candidate


def _clock_time(parts: list[str | None], day_word: str | None, expression: str) -> time:
    named, hour_text, minute_text, meridiem = parts
    if named:
        return _NAMED_TIMES[named]

    hour = int(hour_text or 0)
    minute = int(minute_text or 0)
    if meridiem:
        if not 1 <= hour <= 12:
            raise ScheduleParseError(f'Invalid hour in "{expression}".')
        if meridiem == "pm" and hour != 12:
            hour += 12
        elif meridiem == "am" and hour == 12:
            hour = 0
    elif day_word == "tonight" and hour < 12:
        hour += 12

    if hour > 23 or minute > 59:
        raise ScheduleParseError(f'Invalid time of day in "{expression}".')
    return time(hour, minute)


def _parse_iso(expression: str, zone: ZoneInfo) -> datetime | None:
    try:
        parsed = datetime.fromisoformat(expression)
    except ValueError:
        try:
            parsed = datetime.combine(date.fromisoformat(expression), time(0, 0))
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=zone)
    return parsed


# --- Helpers ---

def format_datetime(dt: datetime, zone: ZoneInfo) -> str:
    return dt.astimezone(zone).strftime("%b %d, %Y, %H:%M %Z")


def _combine(day: date, at: time, zone: ZoneInfo) -> datetime:
    return datetime.combine(day, at, tzinfo=zone)


def _normalize(text: str) -> str:
    return re.sub(r"\s+", " ", text.strip().lower())


def _zone(timezone: str) -> ZoneInfo:
    try:
        return ZoneInfo(timezone)
    except (ZoneInfoNotFoundError, ValueError) as err:
        raise ScheduleParseError(f'Unknown timezone: "{timezone}"') from err
