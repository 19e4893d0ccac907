import json
from datetime import date, datetime

import pytest
from pydantic import ValidationError

from metrics_rag.agent.registry import ToolRegistry
from metrics_rag.agent.tools import register_builtin_tools


def _registry(**kwargs) -> ToolRegistry:
    registry = ToolRegistry()
    register_builtin_tools(registry, clock=lambda: datetime(2025, 3, 15, 10, 0), **kwargs)
    return registry


def test_time_parsing_resolves_relative_periods() -> None:
    registry = _registry()

    payload = json.loads(
        registry.execute(
            "time_parsing_tool",
            {"natural_language_date": "last month", "reference_date": "2025-03-15"},
        )
    )

    assert payload["success"] is True
    assert payload["interpretation"] == "Last Month"
    assert payload["start_date"] == "2025-02-01"
    assert payload["end_date"] == "2025-02-28"
    assert payload["days_in_range"] == 28


def test_time_parsing_uses_clock_without_reference() -> None:
    payload = json.loads(_registry().execute("time_parsing_tool", {"natural_language_date": "yesterday"}))

    assert payload["start_date"] == payload["end_date"] == "2025-03-14"


def test_time_parsing_accepts_explicit_dates_and_reports_failures() -> None:
    registry = _registry()

    explicit = json.loads(
        registry.execute("time_parsing_tool", {"natural_language_date": "2025-01-31 back to 2025-01-01"})
    )
    unknown = json.loads(registry.execute("time_parsing_tool", {"natural_language_date": "someday soon"}))

    assert (explicit["start_date"], explicit["end_date"]) == ("2025-01-01", "2025-01-31")
    assert explicit["days_in_range"] == 31
    assert unknown["error"] == "Could not parse date expression"
    assert "success" not in unknown


def test_time_parsing_rejects_impossible_calendar_dates() -> None:
    payload = json.loads(
        _registry().execute("time_parsing_tool", {"natural_language_date": "from 2025-13-45 to 2025-02-30"})
    )

    assert payload["error"] == "Could not parse date expression"


def test_only_supplied_platform_fetchers_are_registered() -> None:
    registry = _registry(
        platform_fetchers={"googleAds": lambda project_id, start, end: {"spend": 1200.0}},
        places_fetcher=lambda project_id: {"rating": 4.6},
    )

    assert set(registry.names()) == {"time_parsing_tool", "google_ads_tool", "google_places_tool"}


def test_platform_tool_wraps_fetcher_payload() -> None:
    calls = []

    def _fetch(project_id: str, start: date, end: date) -> dict:
        calls.append((project_id, start, end))
        return {"spend": 1200.0, "clicks": 80}

    registry = _registry(platform_fetchers={"googleAds": _fetch})

    payload = json.loads(
        registry.execute(
            "google_ads_tool",
            {"project_id": "tenant-a", "start_date": "2025-02-01", "end_date": "2025-02-28"},
        )
    )

    assert calls == [("tenant-a", date(2025, 2, 1), date(2025, 2, 28))]
    assert payload["platform"] == "Google Ads"
    assert payload["date_range"] == {"start_date": "2025-02-01", "end_date": "2025-02-28"}
    assert payload["spend"] == 1200.0


def test_platform_tool_rejects_inverted_range() -> None:
    registry = _registry(platform_fetchers={"googleAds": lambda project_id, start, end: {}})

    with pytest.raises(ValidationError):
        registry.execute(
            "google_ads_tool",
            {"project_id": "tenant-a", "start_date": "2025-03-01", "end_date": "2025-02-01"},
        )
