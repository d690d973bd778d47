"""Natural-language time phrases to half-open UTC intervals.

All calendar arithmetic happens on local dates in the business timezone; the
resulting boundaries are local midnights converted to UTC instants, so
comparisons against stored UTC timestamps never drift across DST changes.
"""
from __future__ import annotations

import calendar
import re
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

from .config import BUSINESS_TIMEZONE, DEFAULT_FALLBACK_DAYS
from .errors import UnparseableTimeExpression

UTC = timezone.utc
ALL_TIME_TOKENS = {"all time", "all_time", "alltime", "ever", "all"}

_MONTHS = {name.lower(): index for index, name in enumerate(calendar.month_name) if name}
_MONTH_ABBREVIATIONS = {name.lower(): index for index, name in enumerate(calendar.month_abbr) if name}
_MONTH_ABBREVIATIONS["sept"] = 9
_MONTH_PATTERN = "|".join(sorted(set(_MONTHS) | set(_MONTH_ABBREVIATIONS), key=len, reverse=True))
_UNIT_PATTERN = r"(day|week|month|year)s?"
_NUMBER_WORDS = {
    "one": 1,
    "two": 2,
    "three": 3,
    "four": 4,
    "five": 5,
    "six": 6,
    "seven": 7,
    "eight": 8,
    "nine": 9,
    "ten": 10,
    "twelve": 12,
}

_ISO_RANGE_RE = re.compile(r"(\d{4}-\d{2}-\d{2})\s*(?:to|until|through|and|-)\s*(\d{4}-\d{2}-\d{2})")
_ISO_DAY_RE = re.compile(r"\b(\d{4}-\d{2}-\d{2})\b")
_RELATIVE_N_RE = re.compile(
    r"\b(?:last|past|previous|trailing)\s+(\d{1,3}|" + "|".join(_NUMBER_WORDS) + r")\s+" + _UNIT_PATTERN + r"\b"
)
_THIS_PERIOD_RE = re.compile(r"\b(?:this|current)\s+(week|month|quarter|year)\b")
_LAST_PERIOD_RE = re.compile(r"\b(?:last|previous|past|prior)\s+(week|month|quarter|year)\b")
_QUARTER_RE = re.compile(r"\b(?:q([1-4])|quarter\s+([1-4]))\s*(?:of\s+)?(\d{4})\b")
_MONTH_YEAR_RE = re.compile(r"\b(" + _MONTH_PATTERN + r")\.?\s*,?\s*(\d{4})\b")
_BARE_MONTH_RE = re.compile(r"^(?:in\s+)?(" + "|".join(sorted(_MONTHS, key=len, reverse=True)) + r")$")
_YEAR_RE = re.compile(r"\b(19\d{2}|20\d{2})\b")


@dataclass(frozen=True)
class TimeWindow:
    start: datetime
    end: datetime
    label: str

    def contains(self, instant: datetime) -> bool:
        return self.start <= instant < self.end

    @property
    def days(self) -> float:
        return (self.end - self.start).total_seconds() / 86400.0

    def local_bounds(self, tz: ZoneInfo | None = None) -> tuple[datetime, datetime]:
        zone = tz or business_zone()
        return self.start.astimezone(zone), self.end.astimezone(zone)

    def to_dict(self) -> dict[str, str]:
        return {"start": self.start.isoformat(), "end": self.end.isoformat(), "label": self.label}


def business_zone(name: str | None = None) -> ZoneInfo:
    return ZoneInfo(name or BUSINESS_TIMEZONE)


def local_today(now: datetime | None = None, tz: ZoneInfo | None = None) -> date:
    zone = tz or business_zone()
    reference = now or datetime.now(UTC)
    if reference.tzinfo is None:
        reference = reference.replace(tzinfo=zone)
    return reference.astimezone(zone).date()


def local_midnight(day: date, tz: ZoneInfo) -> datetime:
    return datetime.combine(day, time.min, tzinfo=tz).astimezone(UTC)


def window_from_dates(start: date, end_exclusive: date, label: str, tz: ZoneInfo | None = None) -> TimeWindow:
    zone = tz or business_zone()
    return TimeWindow(start=local_midnight(start, zone), end=local_midnight(end_exclusive, zone), label=label)


def add_months(day: date, months: int) -> date:
    month_index = day.year * 12 + (day.month - 1) + months
    year, month = divmod(month_index, 12)
    month += 1
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, min(day.day, last_day))


def _month_start(day: date) -> date:
    return day.replace(day=1)


def _quarter_start(day: date) -> date:
    return date(day.year, 3 * ((day.month - 1) // 3) + 1, 1)


def _week_start(day: date) -> date:
    return day - timedelta(days=day.weekday())


def _normalize_phrase(text: str) -> str:
    lowered = (text or "").lower().replace("_", " ")
    return re.sub(r"\s+", " ", lowered).strip()


def _to_number(token: str) -> int:
    if token.isdigit():
        return int(token)
    return _NUMBER_WORDS[token]


def _period_bounds(unit: str, anchor: date) -> tuple[date, date]:
    if unit == "week":
        start = _week_start(anchor)
        return start, start + timedelta(days=7)
    if unit == "month":
        start = _month_start(anchor)
        return start, add_months(start, 1)
    if unit == "quarter":
        start = _quarter_start(anchor)
        return start, add_months(start, 3)
    start = date(anchor.year, 1, 1)
    return start, date(anchor.year + 1, 1, 1)


def _parse_iso(value: str) -> date | None:
    try:
        return date.fromisoformat(value)
    except ValueError:
        return None


def _match(text: str, today: date, *, whole_phrase: bool) -> tuple[date, date, str] | None:
    tomorrow = today + timedelta(days=1)

    iso_range = _ISO_RANGE_RE.search(text)
    if iso_range:
        first, last = _parse_iso(iso_range.group(1)), _parse_iso(iso_range.group(2))
        if first and last and first <= last:
            return first, last + timedelta(days=1), f"{first.isoformat()} to {last.isoformat()}"

    relative = _RELATIVE_N_RE.search(text)
    if relative:
        count = _to_number(relative.group(1))
        unit = relative.group(2)
        if count > 0:
            if unit == "day":
                start = today - timedelta(days=count)
            elif unit == "week":
                start = today - timedelta(days=7 * count)
            elif unit == "month":
                start = add_months(today, -count)
            else:
                start = add_months(today, -12 * count)
            plural = "s" if count > 1 else ""
            return start, tomorrow, f"Last {count} {unit}{plural}"

    if re.search(r"\btoday\b", text):
        return today, tomorrow, "Today"
    if re.search(r"\byesterday\b", text):
        return today - timedelta(days=1), today, "Yesterday"

    this_period = _THIS_PERIOD_RE.search(text)
    if this_period:
        unit = this_period.group(1)
        start, end = _period_bounds(unit, today)
        return start, end, f"This {unit}"

    last_period = _LAST_PERIOD_RE.search(text)
    if last_period:
        unit = last_period.group(1)
        current_start, _ = _period_bounds(unit, today)
        start, end = _period_bounds(unit, current_start - timedelta(days=1))
        return start, end, f"Last {unit}"

    quarter = _QUARTER_RE.search(text)
    if quarter:
        number = int(quarter.group(1) or quarter.group(2))
        year = int(quarter.group(3))
        start = date(year, 3 * (number - 1) + 1, 1)
        return start, add_months(start, 3), f"Q{number} {year}"

    month_year = _MONTH_YEAR_RE.search(text)
    if month_year:
        token = month_year.group(1)
        month = _MONTHS.get(token) or _MONTH_ABBREVIATIONS[token]
        year = int(month_year.group(2))
        start = date(year, month, 1)
        return start, add_months(start, 1), f"{calendar.month_name[month]} {year}"

    if whole_phrase:
        bare_month = _BARE_MONTH_RE.match(text)
        if bare_month:
            month = _MONTHS[bare_month.group(1)]
            year = today.year if month <= today.month else today.year - 1
            start = date(year, month, 1)
            return start, add_months(start, 1), f"{calendar.month_name[month]} {year}"

    iso_day = _ISO_DAY_RE.search(text)
    if iso_day:
        day = _parse_iso(iso_day.group(1))
        if day:
            return day, day + timedelta(days=1), day.isoformat()

    year_match = _YEAR_RE.search(text)
    if year_match:
        year = int(year_match.group(1))
        return date(year, 1, 1), date(year + 1, 1, 1), str(year)

    return None


def default_window(*, now: datetime | None = None, tz: ZoneInfo | None = None, days: int | None = None) -> TimeWindow:
    zone = tz or business_zone()
    today = local_today(now, zone)
    span = days or DEFAULT_FALLBACK_DAYS
    return window_from_dates(today - timedelta(days=span), today + timedelta(days=1), f"Last {span} days", zone)


def is_all_time(phrase: str | None) -> bool:
    return _normalize_phrase(phrase or "") in ALL_TIME_TOKENS


def resolve_time_expression(
    phrase: str,
    *,
    now: datetime | None = None,
    tz: ZoneInfo | None = None,
    default_on_failure: bool = False,
) -> TimeWindow:
    """Resolve ``phrase`` to a half-open window in the business timezone.

    Raises ``UnparseableTimeExpression`` when nothing matches, unless
    ``default_on_failure`` is set, in which case the trailing default window
    is returned.
    """
    zone = tz or business_zone()
    today = local_today(now, zone)
    matched = _match(_normalize_phrase(phrase), today, whole_phrase=True)
    if matched is None:
        if default_on_failure:
            return default_window(now=now, tz=zone)
        raise UnparseableTimeExpression(phrase)
    start, end, label = matched
    return window_from_dates(start, end, label, zone)


def detect_time_expression(
    text: str,
    *,
    now: datetime | None = None,
    tz: ZoneInfo | None = None,
) -> TimeWindow | None:
    """Find the first resolvable time phrase inside free text, if any."""
    zone = tz or business_zone()
    matched = _match(_normalize_phrase(text), local_today(now, zone), whole_phrase=False)
    if matched is None:
        return None
    start, end, label = matched
    return window_from_dates(start, end, label, zone)


def resolve_timeframe(
    timeframe: str | None,
    *,
    now: datetime | None = None,
    tz: ZoneInfo | None = None,
) -> TimeWindow | None:
    """Resolve an operation timeframe token; ``None`` means all time."""
    if timeframe is None or is_all_time(timeframe):
        return None
    return resolve_time_expression(timeframe, now=now, tz=tz)


def shift_window(
    window: TimeWindow,
    *,
    days: int = 0,
    months: int = 0,
    label: str = "",
    tz: ZoneInfo | None = None,
) -> TimeWindow:
    """Move both local-date boundaries of ``window`` back or forward."""
    zone = tz or business_zone()
    local_start, local_end = window.local_bounds(zone)
    start = add_months(local_start.date(), months) + timedelta(days=days)
    end = add_months(local_end.date(), months) + timedelta(days=days)
    return window_from_dates(start, end, label or window.label, zone)
