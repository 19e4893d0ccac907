"""Metrics-snapshot to semantic text chunk conversion."""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from hashlib import sha1
from typing import Any

from pydantic import BaseModel

from metrics_rag.config import ChunkingConfig
from metrics_rag.snapshot import (
    AdPlatformMetrics,
    AggregatedMetrics,
    CampaignMetrics,
    ChannelMetrics,
    PlatformFacet,
    SearchConsoleMetrics,
    SocialPlatformMetrics,
    VideoPlatformMetrics,
)
from metrics_rag.types import (
    GENERAL_PLATFORM,
    ChunkMetadata,
    DateRange,
    MetricChunk,
    MetricType,
)

_SLUG_PATTERN = re.compile(r"[^a-z0-9]+")

_PLATFORM_LABELS = {
    "googleAds": ("Google Ads", "google-ads", "Google Ads is a paid search advertising platform."),
    "metaAds": ("Meta Ads", "meta-ads", "Meta Ads (Facebook/Instagram advertising) performance."),
    "facebook": ("Facebook Page", "facebook", "Facebook organic social media performance."),
    "instagram": ("Instagram", "instagram", "Instagram organic social media performance."),
    "searchConsole": (
        "Google Search Console",
        "search-console",
        "This shows organic search performance on Google.",
    ),
    "youtube": ("YouTube Channel", "youtube", "YouTube organic video performance."),
    "linkedin": ("LinkedIn Page", "linkedin", "LinkedIn organic social media performance."),
}


@dataclass(slots=True)
class _Facet:
    metric_type: MetricType
    platform: str
    category: str
    text: str
    snapshot: dict[str, Any]
    is_fallback_data: bool = False
    fallback_period: str | None = None
    name: str = ""


class MetricsChunker:
    """Turns one aggregated-metrics snapshot into self-describing text chunks.

    One chunk is produced per facet that carries signal: traffic overview,
    conversion performance, each breakdown channel, an insights/connections
    chunk, each connected platform with data, and each ad campaign. Numbers are
    rendered with thousands separators, the configured currency symbol and
    arrow-signed percentage deltas so the text stands on its own in a prompt.

    Chunk ids are derived from `(tenant, window, category)`, so re-chunking the
    same window yields the same ids and an upsert replaces the previous version.
    The function is pure apart from reading the clock when `now` is omitted.
    """

    def __init__(self, config: ChunkingConfig | None = None) -> None:
        self.config = config or ChunkingConfig()

    def chunk(
        self,
        metrics: AggregatedMetrics,
        tenant_id: str,
        date_range: DateRange,
        *,
        now: datetime | None = None,
    ) -> list[MetricChunk]:
        if not tenant_id:
            raise ValueError("tenant_id is required")
        created_at = now or datetime.now()
        expires_at = created_at + timedelta(days=self.config.ttl_days)
        label = date_range.label or _period(date_range)

        facets: list[_Facet] = []
        facets.extend(self._overview_facets(metrics, date_range, label))
        facets.extend(self._channel_facets(metrics.channels, label))
        facets.extend(self._insight_facets(metrics))
        facets.extend(self._platform_facets(metrics, label))
        _unique_categories(facets)

        chunks: list[MetricChunk] = []
        for facet in facets:
            text = facet.text[: self.config.max_text_length]
            chunks.append(
                MetricChunk(
                    chunk_id=_chunk_id(tenant_id, date_range, facet.category),
                    text=text,
                    metadata=ChunkMetadata(
                        tenant_id=tenant_id,
                        metric_type=facet.metric_type.value,
                        platform=facet.platform,
                        start_date=date_range.start_date,
                        end_date=date_range.end_date,
                        date_range_label=label,
                        category=facet.category,
                        text_content=text,
                        metrics_snapshot=facet.snapshot,
                        is_fallback_data=facet.is_fallback_data,
                        fallback_period=facet.fallback_period,
                        created_at=created_at,
                        expires_at=expires_at,
                    ),
                )
            )
        return chunks

    def _overview_facets(
        self, metrics: AggregatedMetrics, date_range: DateRange, label: str
    ) -> list[_Facet]:
        facets: list[_Facet] = []
        period = _period(date_range)
        money = self._money

        traffic = metrics.traffic
        if traffic is not None and traffic.has_signal():
            facets.append(
                _Facet(
                    metric_type=MetricType.OVERVIEW,
                    platform=GENERAL_PLATFORM,
                    category="traffic",
                    text=(
                        f"Traffic Overview for {label} ({period}):\n"
                        f"Sessions: {format_number(traffic.sessions)} ({format_change(traffic.sessions_change)})\n"
                        f"Users: {format_number(traffic.users)} ({format_change(traffic.users_change)})\n"
                        f"Bounce Rate: {traffic.bounce_rate:.1f}%\n"
                        f"Avg Session Duration: {format_duration(traffic.avg_session_duration)}\n\n"
                        "This shows the overall website traffic performance for the period."
                    ),
                    snapshot=_dump(traffic),
                )
            )

        conversions = metrics.conversions
        if conversions is not None and conversions.has_signal():
            facets.append(
                _Facet(
                    metric_type=MetricType.CONVERSION,
                    platform=GENERAL_PLATFORM,
                    category="conversions",
                    text=(
                        f"Conversion Performance for {label} ({period}):\n"
                        f"Total Conversions: {format_number(conversions.conversions)} "
                        f"({format_change(conversions.conversions_change)})\n"
                        f"Conversion Rate: {conversions.conversion_rate:.2f}%\n"
                        f"Revenue: {money(conversions.revenue)} ({format_change(conversions.revenue_change)})\n"
                        f"Average Revenue Per User: {money(conversions.avg_revenue_per_user, 2)}\n\n"
                        "This shows how well the website converts visitors into customers."
                    ),
                    snapshot=_dump(conversions),
                )
            )
        return facets

    def _channel_facets(self, channels: list[ChannelMetrics], label: str) -> list[_Facet]:
        facets: list[_Facet] = []
        for channel in channels:
            if not channel.has_signal():
                continue
            facets.append(
                _Facet(
                    metric_type=MetricType.CHANNEL,
                    platform=GENERAL_PLATFORM,
                    category=f"channel-{_slug(channel.channel)}",
                    name=channel.channel,
                    text=(
                        f"{channel.channel} Channel Performance for {label}:\n"
                        f"Sessions: {format_number(channel.sessions)} ({format_change(channel.sessions_change)})\n"
                        f"Users: {format_number(channel.users)}\n"
                        f"Conversions: {format_number(channel.conversions)}\n"
                        f"Revenue: {self._money(channel.revenue)}\n"
                        f"Share: {channel.percentage:.1f}% of total traffic\n\n"
                        f"This channel represents {channel.channel.lower()} traffic sources."
                    ),
                    snapshot=_dump(channel),
                )
            )
        return facets

    def _insight_facets(self, metrics: AggregatedMetrics) -> list[_Facet]:
        top = metrics.top_performers
        if top is not None and not (top.has_signal() and top.best_channel):
            top = None
        connections = metrics.platform_connections
        if connections is not None and not connections.has_signal():
            connections = None
        if top is None and connections is None:
            return []

        lines: list[str] = ["Performance Insights and Platform Connections:"]
        if top is not None:
            lines.append(
                f"Best Performing Channel: {top.best_channel} with "
                f"{format_number(top.best_channel_sessions)} sessions"
            )
            if top.worst_channel and top.worst_channel != top.best_channel:
                lines.append(
                    f"Lowest Performing Channel: {top.worst_channel} with "
                    f"{format_number(top.worst_channel_sessions)} sessions"
                )
        if connections is not None:
            lines.append(f"Total Available Platforms: {connections.total or connections.connected + connections.not_connected}")
            lines.append(
                f"Connected: {connections.connected} "
                f"({', '.join(connections.connected_platforms) or 'None'})"
            )
            lines.append(
                f"Not Connected: {connections.not_connected} "
                f"({', '.join(connections.not_connected_platforms) or 'All connected'})"
            )
        lines.append("")
        lines.append("This shows which channels lead performance and which marketing platforms are integrated.")

        return [
            _Facet(
                metric_type=MetricType.INSIGHT,
                platform=GENERAL_PLATFORM,
                category="insights",
                text="\n".join(lines),
                snapshot={
                    "top_performers": _dump(top) if top is not None else None,
                    "connected": list(connections.connected_platforms) if connections is not None else [],
                    "not_connected": list(connections.not_connected_platforms) if connections is not None else [],
                },
            )
        ]

    def _platform_facets(self, metrics: AggregatedMetrics, label: str) -> list[_Facet]:
        facets: list[_Facet] = []
        for platform_id, facet in metrics.platforms.items():
            if not facet.has_signal():
                continue
            name, category, footer = _PLATFORM_LABELS[platform_id]
            heading = f"{name} Performance{_fallback_note(facet)} for {label}:"
            body = self._platform_body(facet)
            snapshot = _dump(facet, exclude={"campaigns"})
            facets.append(
                _Facet(
                    metric_type=MetricType.PLATFORM,
                    platform=platform_id,
                    category=category,
                    text=f"{heading}\n{body}\n\n{footer}",
                    snapshot=snapshot,
                    is_fallback_data=facet.is_fallback_data,
                    fallback_period=facet.fallback_period,
                )
            )
            if isinstance(facet, AdPlatformMetrics):
                facets.extend(self._campaign_facets(platform_id, name, category, facet, label))
        return facets

    def _campaign_facets(
        self,
        platform_id: str,
        platform_name: str,
        platform_category: str,
        facet: AdPlatformMetrics,
        label: str,
    ) -> list[_Facet]:
        facets: list[_Facet] = []
        for campaign in facet.campaigns:
            if not campaign.has_signal():
                continue
            status = f" [{campaign.status}]" if campaign.status else ""
            facets.append(
                _Facet(
                    metric_type=MetricType.CAMPAIGN,
                    platform=platform_id,
                    category=f"{platform_category}-campaign-{_slug(campaign.name)}",
                    name=campaign.name,
                    text=(
                        f"{platform_name} Campaign '{campaign.name}'{status} for {label}:\n"
                        f"{self._campaign_body(campaign)}\n\n"
                        f"Campaign-level results on {platform_name}."
                    ),
                    snapshot=_dump(campaign),
                    is_fallback_data=facet.is_fallback_data,
                    fallback_period=facet.fallback_period,
                )
            )
        return facets

    def _platform_body(self, facet: PlatformFacet) -> str:
        money = self._money
        if isinstance(facet, AdPlatformMetrics):
            return (
                f"Ad Spend: {money(facet.spend)}\n"
                f"Clicks: {format_number(facet.clicks)}\n"
                f"Impressions: {format_number(facet.impressions)}\n"
                f"Conversions: {format_number(facet.conversions)}\n"
                f"CPC: {money(facet.cpc, 2)}\n"
                f"CTR: {facet.ctr:.2f}%"
            )
        if isinstance(facet, SearchConsoleMetrics):
            return (
                f"Total Clicks: {format_number(facet.clicks)}\n"
                f"Total Impressions: {format_number(facet.impressions)}\n"
                f"Average CTR: {facet.ctr:.2f}%\n"
                f"Average Position: {facet.avg_position:.1f}"
            )
        if isinstance(facet, VideoPlatformMetrics):
            return (
                f"Subscribers: {format_number(facet.subscribers)}\n"
                f"Views: {format_number(facet.views)}\n"
                f"Watch Time: {facet.watch_time_hours:,.1f} hours\n"
                f"Videos Published: {format_number(facet.videos)}"
            )
        if isinstance(facet, SocialPlatformMetrics):
            return (
                f"Followers: {format_number(facet.followers)}\n"
                f"Engagement: {format_number(facet.engagement)}\n"
                f"Reach: {format_number(facet.reach)}\n"
                f"Posts Published: {format_number(facet.posts)}"
            )
        raise TypeError(f"Unsupported platform facet: {type(facet).__name__}")

    def _campaign_body(self, campaign: CampaignMetrics) -> str:
        return (
            f"Spend: {self._money(campaign.spend)}\n"
            f"Clicks: {format_number(campaign.clicks)}\n"
            f"Impressions: {format_number(campaign.impressions)}\n"
            f"Conversions: {format_number(campaign.conversions)}\n"
            f"CPC: {self._money(campaign.cpc, 2)}\n"
            f"CTR: {campaign.ctr:.2f}%"
        )

    def _money(self, value: float | None, decimals: int = 0) -> str:
        return format_currency(value, self.config.currency_symbol, decimals)


def format_number(value: float | None) -> str:
    if value is None:
        return "0"
    return f"{value:,.0f}"


def format_currency(value: float | None, symbol: str = "₹", decimals: int = 0) -> str:
    amount = 0.0 if value is None else value
    sign = "-" if amount < 0 else ""
    return f"{sign}{symbol}{abs(amount):,.{decimals}f}"


def format_change(change: float | None) -> str:
    if change is None or abs(change) < 0.1:
        return "no change"
    arrow = "↑" if change > 0 else "↓"
    return f"{arrow}{abs(change):.1f}% vs previous period"


def format_duration(minutes: float | None) -> str:
    if not minutes:
        return "0 sec"
    if minutes < 1:
        return f"{round(minutes * 60)} sec"
    return f"{minutes:.1f} min"


def _fallback_note(facet: PlatformFacet) -> str:
    if not facet.is_fallback_data:
        return ""
    return f" (Fallback Data: {facet.fallback_period or 'most recent available period'})"


def _period(date_range: DateRange) -> str:
    return f"{date_range.start_date.isoformat()} to {date_range.end_date.isoformat()}"


def _slug(value: str) -> str:
    slug = _SLUG_PATTERN.sub("-", value.lower()).strip("-")
    # names without ASCII letters or digits still need distinct slugs
    return slug or f"n-{_digest(value)}"


def _digest(value: str) -> str:
    return sha1(value.encode("utf-8")).hexdigest()[:8]


def _unique_categories(facets: list[_Facet]) -> None:
    """Suffix categories that collide within one snapshot so chunk ids stay unique."""

    seen: set[str] = set()
    for facet in facets:
        category = facet.category
        if category in seen and facet.name:
            category = f"{facet.category}-{_digest(facet.name)}"
        suffix = 2
        while category in seen:
            category = f"{facet.category}-{suffix}"
            suffix += 1
        seen.add(category)
        facet.category = category


def _dump(model: BaseModel | None, exclude: set[str] | None = None) -> dict[str, Any]:
    if model is None:
        return {}
    return model.model_dump(mode="json", exclude=exclude)


def _chunk_id(tenant_id: str, date_range: DateRange, category: str) -> str:
    key = f"{tenant_id}|{date_range.start_date.isoformat()}|{date_range.end_date.isoformat()}|{category}"
    return sha1(key.encode("utf-8")).hexdigest()
