"""Natural-language query intent parsing.

Time windows are resolved by an ordered rule table; the first rule whose pattern
matches wins. Platform and metric-type extraction are independent membership
tests, so a query can name any number of either.
"""

from __future__ import annotations

import re
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from enum import Enum

from metrics_rag.dates import (
    day_end_ms,
    day_start_ms,
    month_bounds,
    months_ago_bounds,
    parse_iso_date,
    shift_month,
    trailing_days,
    week_start,
)
from metrics_rag.types import DateRange, MemoryType, ParsedIntent, Timeframe


class IntentKind(str, Enum):
    TODAY = "today"
    YESTERDAY = "yesterday"
    THIS_WEEK = "this_week"
    LAST_WEEK = "last_week"
    THIS_MONTH = "this_month"
    LAST_MONTH = "last_month"
    MONTHS_AGO = "months_ago"
    LAST_N_DAYS = "last_n_days"
    LAST_N_WEEKS = "last_n_weeks"
    LAST_N_MONTHS = "last_n_months"
    NAMED_MONTH = "named_month"
    QUARTER = "quarter"
    DEFAULT = "default"
    FALLBACK = "fallback"


# Windows that are still in progress (or were never resolved from the text).
_CURRENT_KINDS = {
    IntentKind.TODAY,
    IntentKind.THIS_WEEK,
    IntentKind.THIS_MONTH,
    IntentKind.DEFAULT,
    IntentKind.FALLBACK,
}
_UNRESOLVED_KINDS = {IntentKind.DEFAULT, IntentKind.FALLBACK}

Resolver = Callable[[re.Match[str], date], tuple[date, date, str]]

# Longest window a "last N days/weeks/months" phrase can ask for.
MAX_LOOKBACK_DAYS = 3650


@dataclass(frozen=True, slots=True)
class TimeRule:
    kind: IntentKind
    pattern: re.Pattern[str]
    resolve: Resolver


def _rx(expression: str) -> re.Pattern[str]:
    return re.compile(expression, re.IGNORECASE)


def _today(_: re.Match[str], today: date) -> tuple[date, date, str]:
    return today, today, "Today"


def _yesterday(_: re.Match[str], today: date) -> tuple[date, date, str]:
    day = today - timedelta(days=1)
    return day, day, "Yesterday"


def _this_week(_: re.Match[str], today: date) -> tuple[date, date, str]:
    return week_start(today), today, "This Week"


def _last_week(_: re.Match[str], today: date) -> tuple[date, date, str]:
    end = week_start(today) - timedelta(days=1)
    return end - timedelta(days=6), end, "Last Week"


def _this_month(_: re.Match[str], today: date) -> tuple[date, date, str]:
    return today.replace(day=1), today, "This Month"


def _months_ago(months: int, label: str) -> Resolver:
    def resolve(_: re.Match[str], today: date) -> tuple[date, date, str]:
        start, end = months_ago_bounds(today, months)
        return start, end, label

    return resolve


def _count(digits: str, limit: int) -> int:
    if len(digits) > len(str(limit)):
        return limit
    return min(max(1, int(digits)), limit)


def _last_n_days(match: re.Match[str], today: date) -> tuple[date, date, str]:
    n = _count(match.group(2), MAX_LOOKBACK_DAYS)
    start, end = trailing_days(today, n)
    return start, end, f"Last {n} Days"


def _last_n_weeks(match: re.Match[str], today: date) -> tuple[date, date, str]:
    n = _count(match.group(2), MAX_LOOKBACK_DAYS // 7)
    start, end = trailing_days(today, n * 7)
    return start, end, f"Last {n} Weeks"


def _last_n_months(match: re.Match[str], today: date) -> tuple[date, date, str]:
    n = _count(match.group(2), MAX_LOOKBACK_DAYS // 30)
    start, _ = months_ago_bounds(today, n)
    _, end = months_ago_bounds(today, 1)
    return start, end, f"Last {n} Months"


def _named_month(month: int, name: str) -> Resolver:
    def resolve(_: re.Match[str], today: date) -> tuple[date, date, str]:
        year = today.year - 1 if month > today.month else today.year
        start, end = month_bounds(year, month)
        return start, end, f"{name} {year}"

    return resolve


def _quarter(quarter: int) -> Resolver:
    def resolve(_: re.Match[str], today: date) -> tuple[date, date, str]:
        current = (today.month - 1) // 3 + 1
        year = today.year - 1 if quarter >= current else today.year
        first_month = (quarter - 1) * 3 + 1
        start, _ = month_bounds(year, first_month)
        _, end = month_bounds(*shift_month(year, first_month, 2))
        return start, end, f"Q{quarter} {year}"

    return resolve


_MONTHS = [
    ("January", r"january|jan"),
    ("February", r"february|feb"),
    ("March", r"march|mar"),
    ("April", r"april|apr"),
    ("May", r"may"),
    ("June", r"june|jun"),
    ("July", r"july|jul"),
    ("August", r"august|aug"),
    ("September", r"september|sept?"),
    ("October", r"october|oct"),
    ("November", r"november|nov"),
    ("December", r"december|dec"),
]
_QUARTERS = ["first", "second", "third", "fourth"]

TIME_RULES: list[TimeRule] = [
    TimeRule(IntentKind.TODAY, _rx(r"\b(today|today'?s?)\b"), _today),
    TimeRule(IntentKind.YESTERDAY, _rx(r"\b(yesterday|yesterday'?s?)\b"), _yesterday),
    TimeRule(IntentKind.THIS_WEEK, _rx(r"\b(this\s+week|current\s+week)\b"), _this_week),
    TimeRule(IntentKind.LAST_WEEK, _rx(r"\b(last\s+week|previous\s+week|past\s+week)\b"), _last_week),
    TimeRule(IntentKind.THIS_MONTH, _rx(r"\b(this\s+month|current\s+month)\b"), _this_month),
    TimeRule(
        IntentKind.LAST_MONTH,
        _rx(r"\b(last\s+month|previous\s+month|past\s+month)\b"),
        _months_ago(1, "Last Month"),
    ),
    TimeRule(
        IntentKind.MONTHS_AGO,
        _rx(r"\b(two\s+months?\s+ago|2\s+months?\s+ago)\b"),
        _months_ago(2, "Two Months Ago"),
    ),
    TimeRule(
        IntentKind.MONTHS_AGO,
        _rx(r"\b(three\s+months?\s+ago|3\s+months?\s+ago)\b"),
        _months_ago(3, "Three Months Ago"),
    ),
    TimeRule(IntentKind.LAST_N_DAYS, _rx(r"\b(last|past)\s+(\d+)\s+days?\b"), _last_n_days),
    TimeRule(IntentKind.LAST_N_WEEKS, _rx(r"\b(last|past)\s+(\d+)\s+weeks?\b"), _last_n_weeks),
    TimeRule(IntentKind.LAST_N_MONTHS, _rx(r"\b(last|past)\s+(\d+)\s+months?\b"), _last_n_months),
    *(
        TimeRule(IntentKind.NAMED_MONTH, _rx(rf"\b({words})\b"), _named_month(index, name))
        for index, (name, words) in enumerate(_MONTHS, start=1)
    ),
    *(
        TimeRule(IntentKind.QUARTER, _rx(rf"\b(q{number}|{ordinal}\s+quarter)\b"), _quarter(number))
        for number, ordinal in enumerate(_QUARTERS, start=1)
    ),
]

PLATFORM_PATTERNS: dict[str, re.Pattern[str]] = {
    "googleAds": _rx(r"\b(google\s*ads?|adwords|google\s*advertising|paid\s*search)\b"),
    "metaAds": _rx(r"\b(meta\s*ads?|facebook\s*ads?|fb\s*ads?|instagram\s*ads?)\b"),
    "facebook": _rx(r"\b(facebook|fb)(?!\s*ads?)\b"),
    "instagram": _rx(r"\b(instagram|ig|insta)(?!\s*ads?)\b"),
    "searchConsole": _rx(r"\b(search\s*console|gsc|organic\s*search|seo)\b"),
    "googleAnalytics": _rx(r"\b(google\s*analytics|ga4?|analytics)\b"),
    "youtube": _rx(r"\b(youtube|yt)\b"),
    "linkedin": _rx(r"\b(linkedin)\b"),
}

METRIC_PATTERNS: dict[str, re.Pattern[str]] = {
    "overview": _rx(r"\b(overview|summary|overall|general)\b"),
    "conversion": _rx(r"\b(conversion|conversions|convert|sales|revenue|roas|roi)\b"),
    "channel": _rx(r"\b(channel|channels|traffic\s*source|source|acquisition)\b"),
    "platform": _rx(r"\b(platform|platforms?)\b"),
    "insight": _rx(r"\b(insight|insights?|recommendation|suggest)\b"),
    "campaign": _rx(r"\b(campaign|campaigns?|ad\s*set|ad\s*group)\b"),
}

CORRECTION_PATTERNS: list[tuple[re.Pattern[str], MemoryType]] = [
    (_rx(r"\b(actually|instead|rather|not\s+that|wrong)\b"), MemoryType.CORRECTION),
    (_rx(r"\b(focus\s+on|prioritize|emphasize|always\s+show)\b"), MemoryType.PREFERENCE),
    (_rx(r"\b(remember\s+that|keep\s+in\s+mind|note\s+that|don'?t\s+forget)\b"), MemoryType.INSTRUCTION),
    (_rx(r"\b(i\s+prefer|i\s+want|i\s+like|i\s+need)\b"), MemoryType.PREFERENCE),
]


@dataclass(frozen=True, slots=True)
class CorrectionSignal:
    is_correction: bool
    memory_type: MemoryType | None = None
    instruction: str | None = None


class IntentParser:
    """Deterministic parser from query text (and a reference time) to intent."""

    def __init__(self, rules: list[TimeRule] | None = None) -> None:
        self.rules = rules if rules is not None else TIME_RULES

    def parse(
        self,
        query: str,
        now: datetime | None = None,
        fallback_range: DateRange | None = None,
    ) -> ParsedIntent:
        reference = now or datetime.now()
        timeframe = self.extract_timeframe(query, reference.date(), fallback_range)
        platforms = extract_platforms(query)
        metric_types = extract_metric_types(query)

        confidence = 0.5
        if timeframe.kind not in _UNRESOLVED_KINDS:
            confidence += 0.3
        if platforms:
            confidence += 0.1
        if metric_types:
            confidence += 0.1

        return ParsedIntent(
            timeframe=timeframe,
            platforms=platforms,
            metric_types=metric_types,
            original_query=query,
            confidence=min(round(confidence, 2), 1.0),
        )

    def extract_timeframe(
        self, query: str, today: date, fallback_range: DateRange | None = None
    ) -> Timeframe:
        for rule in self.rules:
            match = rule.pattern.search(query)
            if match is not None:
                start, end, label = rule.resolve(match, today)
                return make_timeframe(start, end, label, rule.kind)

        if fallback_range is not None:
            return make_timeframe(
                fallback_range.start_date,
                fallback_range.end_date,
                fallback_range.label or "Selected Period",
                IntentKind.DEFAULT,
            )
        start, end = trailing_days(today, 7)
        return make_timeframe(start, end, "Last 7 Days", IntentKind.FALLBACK)


def make_timeframe(start: date, end: date, label: str, kind: IntentKind) -> Timeframe:
    return Timeframe(
        start_time=day_start_ms(start),
        end_time=day_end_ms(end),
        start_date=start,
        end_date=end,
        label=label,
        is_historical=kind not in _CURRENT_KINDS,
        kind=kind.value,
    )


def extract_platforms(query: str) -> list[str]:
    return [name for name, pattern in PLATFORM_PATTERNS.items() if pattern.search(query)]


def extract_metric_types(query: str) -> list[str]:
    return [name for name, pattern in METRIC_PATTERNS.items() if pattern.search(query)]


def detect_user_correction(query: str) -> CorrectionSignal:
    """Classify a message as a correction, preference or instruction worth remembering."""

    for pattern, memory_type in CORRECTION_PATTERNS:
        if pattern.search(query):
            return CorrectionSignal(True, memory_type, query.strip())
    return CorrectionSignal(False)


def parse_date_range(start: str | date, end: str | date, label: str = "") -> DateRange:
    """Build a range from two ISO dates given in either order."""

    first, last = parse_iso_date(start), parse_iso_date(end)
    return DateRange(min(first, last), max(first, last), label)
