"""System prompt for the analytics assistant."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import date

from langchain_core.prompts import PromptTemplate

from metrics_rag.dates import trailing_days
from metrics_rag.retrieval.context import NO_FABRICATION_RULE

_SYSTEM_TEMPLATE = PromptTemplate.from_template(
    """You are an expert marketing analyst for hotel and hospitality businesses.

Current date:
- Today is {today_readable} ({today}).
- Resolve "yesterday", "last week", "last month" and similar phrases relative to {today}.
- Default date range when the user gives none: last {window_days} days ({default_start} to {default_end}).

Tool rules:
1. Always call the matching platform tool for platform data; never answer from memory.
2. Call time_parsing_tool first when the user names a relative period.
3. Facebook or Instagram organic data -> facebook_tool / instagram_tool; paid Meta ads -> meta_ads_tool.
4. Hotel details, rating and reviews -> google_places_tool (no dates needed).
5. SEO and organic search -> search_console_tool.
6. Trends across periods, saved preferences or anything no platform tool covers -> vector_search_tool.
7. Independent lookups may be requested in parallel.
8. If a tool returns an error, say so and explain what is missing.

Data integrity:
- Report only numbers returned by tools or present in the provided context.
- {no_fabrication}

Connected platforms ({connected_count}):
{connected}
{not_connected_section}
Current context:
- Project ID: {tenant_id}
- User ID: {user_id}
{page_context}
Response style:
- Lead with a direct answer, then the numbers with their change (use ↑ / ↓).
- Format money as {currency}1,000 and never convert currencies.
- Close with one or two actionable recommendations."""
)


def build_system_prompt(
    *,
    tenant_id: str,
    user_id: str | None,
    today: date,
    connected_platforms: Sequence[str] = (),
    not_connected_platforms: Sequence[str] = (),
    page_context: str | None = None,
    window_days: int = 7,
    currency_symbol: str = "₹",
) -> str:
    default_start, default_end = trailing_days(today, window_days)
    connected = "\n".join(f"- {name}" for name in connected_platforms) or "- None"
    not_connected_section = ""
    if not_connected_platforms:
        lines = "\n".join(
            f"- {name} (suggest connecting it for fuller insights)" for name in not_connected_platforms
        )
        not_connected_section = f"\nNot connected ({len(not_connected_platforms)}):\n{lines}\n"

    return _SYSTEM_TEMPLATE.format(
        today_readable=today.strftime("%A, %B %d, %Y"),
        today=today.isoformat(),
        window_days=window_days,
        default_start=default_start.isoformat(),
        default_end=default_end.isoformat(),
        no_fabrication=NO_FABRICATION_RULE,
        connected_count=len(connected_platforms),
        connected=connected,
        not_connected_section=not_connected_section,
        tenant_id=tenant_id,
        user_id=user_id or "unknown",
        page_context=f"- Current page: {page_context}\n" if page_context else "",
        currency=currency_symbol,
    )
