"""Built-in tool implementations for the analytics agent."""

from __future__ import annotations

import json
import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any

from pydantic import BaseModel, Field, model_validator

from metrics_rag.agent.registry import ToolRegistry, ToolSpec
from metrics_rag.retrieval.intent import IntentKind, IntentParser, parse_date_range
from metrics_rag.retrieval.orchestrator import RetrievalOrchestrator
from metrics_rag.types import DateRange

PlatformFetcher = Callable[[str, date, date], Mapping[str, Any]]

_ISO_DATE = re.compile(r"\b(\d{4}-\d{2}-\d{2})\b")


class TimeParsingInput(BaseModel):
    natural_language_date: str = Field(min_length=1, description="Date expression such as 'last month'")
    reference_date: date | None = Field(default=None, description="Date the expression is relative to")


class PlatformToolInput(BaseModel):
    project_id: str = Field(min_length=1, description="Project the data belongs to")
    start_date: date = Field(description="Start date in YYYY-MM-DD format")
    end_date: date = Field(description="End date in YYYY-MM-DD format")

    @model_validator(mode="after")
    def _ordered(self) -> "PlatformToolInput":
        if self.start_date > self.end_date:
            raise ValueError("start_date must not be after end_date")
        return self


class PlacesToolInput(BaseModel):
    project_id: str = Field(min_length=1, description="Project the business belongs to")


class VectorSearchInput(BaseModel):
    query: str = Field(min_length=1, description="Question to search indexed history for")
    project_id: str = Field(min_length=1, description="Project to search")
    user_id: str | None = Field(default=None, description="User whose saved preferences apply")
    top_k: int = Field(default=10, ge=1, le=20)
    include_user_memory: bool = True


@dataclass(frozen=True, slots=True)
class PlatformTool:
    name: str
    platform: str
    display_name: str
    description: str


PLATFORM_TOOLS: list[PlatformTool] = [
    PlatformTool(
        "google_analytics_tool",
        "googleAnalytics",
        "Google Analytics",
        "Use ONLY for Google Analytics 4 website traffic and behavior: sessions, users, "
        "bounce rate, session duration, channel breakdown, website conversions and revenue. "
        "Not for paid ads, organic social posts or SEO rankings.",
    ),
    PlatformTool(
        "google_ads_tool",
        "googleAds",
        "Google Ads",
        "Use ONLY for Google Ads paid search metrics: spend, clicks, impressions, "
        "conversions, CPC, CTR and campaign performance.",
    ),
    PlatformTool(
        "meta_ads_tool",
        "metaAds",
        "Meta Ads",
        "Use ONLY for Meta Ads (paid Facebook and Instagram advertising): spend, reach, "
        "clicks, conversions and campaign performance.",
    ),
    PlatformTool(
        "facebook_tool",
        "facebook",
        "Facebook",
        "Use ONLY for organic Facebook Page metrics (not paid ads): followers, engagement, "
        "reach and posts.",
    ),
    PlatformTool(
        "instagram_tool",
        "instagram",
        "Instagram",
        "Use ONLY for organic Instagram profile metrics (not paid ads): followers, "
        "engagement, reach and posts.",
    ),
    PlatformTool(
        "search_console_tool",
        "searchConsole",
        "Google Search Console",
        "Use ONLY for organic Google search performance: clicks, impressions, CTR, "
        "average position, top queries and pages.",
    ),
    PlatformTool(
        "youtube_tool",
        "youtube",
        "YouTube",
        "Use ONLY for YouTube channel and video metrics: subscribers, views, watch time "
        "and video performance.",
    ),
    PlatformTool(
        "linkedin_tool",
        "linkedin",
        "LinkedIn",
        "Use ONLY for LinkedIn company page metrics: followers, engagement and post reach.",
    ),
]

PLACES_TOOL = PlatformTool(
    "google_places_tool",
    "googlePlaces",
    "Google Places",
    "Use ONLY for the connected hotel's Google Places listing: name, address, rating, "
    "review count, contact details and recent reviews. Takes no date range.",
)

TIME_PARSING_DESCRIPTION = (
    "Convert a natural-language date expression ('yesterday', 'last 7 days', 'last month', "
    "'Q1', 'September') into an ISO start_date and end_date. Call this before any platform "
    "tool when the user names a period."
)

VECTOR_SEARCH_DESCRIPTION = (
    "Search indexed historical metrics and the user's saved preferences. Use for trends "
    "across periods, strategic or qualitative questions, and as the fallback when no "
    "platform tool fits. Not for live metrics of a specific platform and period."
)


def register_builtin_tools(
    registry: ToolRegistry,
    *,
    orchestrator: RetrievalOrchestrator | None = None,
    intent_parser: IntentParser | None = None,
    platform_fetchers: Mapping[str, PlatformFetcher] | None = None,
    places_fetcher: Callable[[str], Mapping[str, Any]] | None = None,
    clock: Callable[[], datetime] = datetime.now,
) -> None:
    """Register the agent tool set.

    Tools:
    - `time_parsing_tool`: natural-language period to ISO date range.
    - one `<platform>_tool` per supplied fetcher, keyed by platform id.
    - `google_places_tool`: business listing, when a places fetcher is supplied.
    - `vector_search_tool`: indexed-history search, when an orchestrator is supplied.
    """

    parser = intent_parser or IntentParser()
    fetchers = dict(platform_fetchers or {})

    def _parse_time(input_data: TimeParsingInput) -> str:
        today = input_data.reference_date or clock().date()
        text = input_data.natural_language_date
        timeframe = parser.extract_timeframe(text, today)
        if timeframe.kind == IntentKind.FALLBACK.value:
            explicit = _explicit_range(text)
            if explicit is None:
                return _dumps(
                    {
                        "error": "Could not parse date expression",
                        "input": text,
                        "suggestion": "Try 'yesterday', 'last 7 days', 'last month' or a date like 2024-01-15",
                    }
                )
            start, end = explicit.start_date, explicit.end_date
            interpretation = explicit.label
        else:
            start, end = timeframe.start_date, timeframe.end_date
            interpretation = timeframe.label
        return _dumps(
            {
                "success": True,
                "input": text,
                "interpretation": interpretation,
                "start_date": start.isoformat(),
                "end_date": end.isoformat(),
                "days_in_range": (end - start).days + 1,
            }
        )

    registry.register(
        ToolSpec(
            name="time_parsing_tool",
            description=TIME_PARSING_DESCRIPTION,
            args_schema=TimeParsingInput,
            handler=_parse_time,
            tags=["time"],
        )
    )

    for tool in PLATFORM_TOOLS:
        fetcher = fetchers.get(tool.platform)
        if fetcher is None:
            continue
        registry.register(
            ToolSpec(
                name=tool.name,
                description=tool.description,
                args_schema=PlatformToolInput,
                handler=_platform_handler(tool, fetcher),
                tags=["platform", tool.platform],
            )
        )

    if places_fetcher is not None:

        def _places(input_data: PlacesToolInput) -> str:
            return _dumps({"platform": PLACES_TOOL.display_name, **places_fetcher(input_data.project_id)})

        registry.register(
            ToolSpec(
                name=PLACES_TOOL.name,
                description=PLACES_TOOL.description,
                args_schema=PlacesToolInput,
                handler=_places,
                tags=["platform", PLACES_TOOL.platform],
            )
        )

    if orchestrator is not None:

        def _search(input_data: VectorSearchInput) -> str:
            result = orchestrator.retrieve_context(
                input_data.query,
                input_data.project_id,
                input_data.user_id,
                top_k=input_data.top_k,
                include_user_memory=input_data.include_user_memory,
                now=clock(),
            )
            stats = {
                "chunks_retrieved": result.stats.chunks_retrieved,
                "memories_retrieved": result.stats.memories_retrieved,
                "used_fallback": result.stats.used_fallback,
                "total_ms": round(result.stats.total_ms, 1),
            }
            if not result.chunks:
                return _dumps(
                    {
                        "message": "No relevant historical context found",
                        "suggestion": "Ask about specific metrics with a date range.",
                        "stats": stats,
                        "context": result.context,
                    }
                )
            return _dumps(
                {
                    "success": True,
                    "query": input_data.query,
                    "timeframe": result.intent.timeframe.label,
                    "stats": stats,
                    "context": result.context,
                    "relevant_chunks": [
                        {
                            "platform": item.chunk.metadata.platform,
                            "category": item.chunk.metadata.category,
                            "date_range": f"{item.chunk.metadata.start_date} to {item.chunk.metadata.end_date}",
                            "relevance_score": round(item.score, 4),
                            "snippet": _truncate(item.chunk.text, 200),
                        }
                        for item in result.chunks[:5]
                    ],
                }
            )

        registry.register(
            ToolSpec(
                name="vector_search_tool",
                description=VECTOR_SEARCH_DESCRIPTION,
                args_schema=VectorSearchInput,
                handler=_search,
                tags=["retrieval", "rag"],
            )
        )


def _platform_handler(tool: PlatformTool, fetcher: PlatformFetcher) -> Callable[[PlatformToolInput], str]:
    def _handler(input_data: PlatformToolInput) -> str:
        data = fetcher(input_data.project_id, input_data.start_date, input_data.end_date)
        return _dumps(
            {
                "platform": tool.display_name,
                "date_range": {
                    "start_date": input_data.start_date.isoformat(),
                    "end_date": input_data.end_date.isoformat(),
                },
                **dict(data),
            }
        )

    return _handler


def _explicit_range(text: str) -> DateRange | None:
    found = _ISO_DATE.findall(text)
    if not found:
        return None
    try:
        return parse_date_range(found[0], found[-1], "Explicit dates")
    except ValueError:
        return None


def _dumps(payload: dict[str, Any]) -> str:
    return json.dumps(payload, indent=2, default=str, ensure_ascii=False)


def _truncate(text: str, max_length: int) -> str:
    if len(text) <= max_length:
        return text
    return text[: max_length - 3] + "..."
