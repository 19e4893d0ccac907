from datetime import date

from metrics_rag.agent.prompts import build_system_prompt
from metrics_rag.retrieval.context import NO_DATA_HEADER, NO_FABRICATION_RULE, build_context
from metrics_rag.retrieval.intent import IntentKind, make_timeframe
from metrics_rag.types import ParsedIntent


def test_prompt_contains_groundedness_constraints() -> None:
    prompt = build_system_prompt(
        tenant_id="hotel-1",
        user_id="user-1",
        today=date(2025, 3, 15),
        connected_platforms=["Google Analytics", "Google Ads"],
        not_connected_platforms=["LinkedIn"],
        page_context="Dashboard",
    )

    assert NO_FABRICATION_RULE in prompt
    assert "Report only numbers returned by tools" in prompt
    assert "Project ID: hotel-1" in prompt
    assert "Today is Saturday, March 15, 2025 (2025-03-15)." in prompt
    assert "last 7 days (2025-03-08 to 2025-03-14)" in prompt
    assert "Connected platforms (2):" in prompt
    assert "Not connected (1):" in prompt
    assert "- Current page: Dashboard" in prompt


def test_prompt_without_platforms_says_none() -> None:
    prompt = build_system_prompt(tenant_id="hotel-1", user_id=None, today=date(2025, 3, 15))

    assert "Connected platforms (0):\n- None" in prompt
    assert "User ID: unknown" in prompt
    assert "Not connected" not in prompt


def test_empty_context_tells_the_model_not_to_invent_numbers() -> None:
    intent = ParsedIntent(
        timeframe=make_timeframe(date(2025, 2, 1), date(2025, 2, 28), "Last Month", IntentKind.LAST_MONTH),
        platforms=["googleAds"],
        metric_types=[],
        original_query="google ads last month",
        confidence=0.9,
    )

    context = build_context([], intent)

    assert NO_DATA_HEADER in context
    assert context.rstrip().endswith(NO_FABRICATION_RULE)
    assert "Focused Platforms: googleAds" in context
