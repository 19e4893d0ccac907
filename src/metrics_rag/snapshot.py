"""Typed aggregated-metrics snapshot consumed by the chunker and sync worker.

The metrics aggregator is an external collaborator; whatever it returns is
validated into `AggregatedMetrics`. Every facet answers `has_signal()` with the
same generic rule (any non-zero number or non-empty list), so a facet added
here is automatically covered by `AggregatedMetrics.has_valid_metrics()`.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class Facet(BaseModel):
    model_config = ConfigDict(extra="ignore")

    def has_signal(self) -> bool:
        for _, value in self:
            if isinstance(value, bool) or value is None:
                continue
            if isinstance(value, (int, float)) and value != 0:
                return True
            if isinstance(value, list) and value:
                return True
            if isinstance(value, Facet) and value.has_signal():
                return True
        return False


class TrafficMetrics(Facet):
    sessions: int = 0
    users: int = 0
    sessions_change: float | None = None
    users_change: float | None = None
    bounce_rate: float = 0.0
    bounce_rate_change: float | None = None
    avg_session_duration: float = 0.0  # minutes
    avg_session_duration_change: float | None = None


class ConversionMetrics(Facet):
    conversions: int = 0
    conversions_change: float | None = None
    conversion_rate: float = 0.0
    conversion_rate_change: float | None = None
    revenue: float = 0.0
    revenue_change: float | None = None
    avg_revenue_per_user: float = 0.0
    avg_revenue_per_user_change: float | None = None


class ChannelMetrics(Facet):
    channel: str
    sessions: int = 0
    sessions_change: float | None = None
    users: int = 0
    conversions: int = 0
    revenue: float = 0.0
    percentage: float = 0.0


class TopPerformers(Facet):
    best_channel: str = ""
    best_channel_sessions: int = 0
    worst_channel: str = ""
    worst_channel_sessions: int = 0


class PlatformConnections(Facet):
    total: int = 0
    connected_platforms: list[str] = Field(default_factory=list)
    not_connected_platforms: list[str] = Field(default_factory=list)

    @property
    def connected(self) -> int:
        return len(self.connected_platforms)

    @property
    def not_connected(self) -> int:
        return len(self.not_connected_platforms)

    def has_signal(self) -> bool:
        return bool(self.connected_platforms)


class PlatformFacet(Facet):
    is_fallback_data: bool = False
    fallback_period: str | None = None


class CampaignMetrics(Facet):
    name: str
    status: str = ""
    spend: float = 0.0
    clicks: int = 0
    impressions: int = 0
    conversions: float = 0.0
    cpc: float = 0.0
    ctr: float = 0.0


class AdPlatformMetrics(PlatformFacet):
    spend: float = 0.0
    clicks: int = 0
    impressions: int = 0
    conversions: float = 0.0
    cpc: float = 0.0
    ctr: float = 0.0
    campaigns: list[CampaignMetrics] = Field(default_factory=list)


class SocialPlatformMetrics(PlatformFacet):
    followers: int = 0
    engagement: int = 0
    reach: int = 0
    posts: int = 0


class SearchConsoleMetrics(PlatformFacet):
    clicks: int = 0
    impressions: int = 0
    ctr: float = 0.0
    avg_position: float = 0.0

    def has_signal(self) -> bool:
        # avg_position alone is not activity
        return bool(self.clicks or self.impressions)


class VideoPlatformMetrics(PlatformFacet):
    subscribers: int = 0
    views: int = 0
    watch_time_hours: float = 0.0
    videos: int = 0


class PlatformMetrics(Facet):
    """Per-platform facets keyed by the platform identifiers used in metadata."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    google_ads: AdPlatformMetrics | None = Field(default=None, alias="googleAds")
    meta_ads: AdPlatformMetrics | None = Field(default=None, alias="metaAds")
    facebook: SocialPlatformMetrics | None = None
    instagram: SocialPlatformMetrics | None = None
    search_console: SearchConsoleMetrics | None = Field(default=None, alias="searchConsole")
    youtube: VideoPlatformMetrics | None = None
    linkedin: SocialPlatformMetrics | None = None

    def items(self) -> list[tuple[str, PlatformFacet]]:
        """Present facets as `(platform_id, facet)` in declaration order."""
        present: list[tuple[str, PlatformFacet]] = []
        for field_name, info in type(self).model_fields.items():
            facet = getattr(self, field_name)
            if facet is not None:
                present.append((info.alias or field_name, facet))
        return present


class AggregatedMetrics(BaseModel):
    model_config = ConfigDict(extra="ignore")

    traffic: TrafficMetrics | None = None
    conversions: ConversionMetrics | None = None
    channels: list[ChannelMetrics] = Field(default_factory=list)
    top_performers: TopPerformers | None = None
    platform_connections: PlatformConnections | None = None
    platforms: PlatformMetrics = Field(default_factory=PlatformMetrics)

    def has_valid_metrics(self) -> bool:
        """True when any data facet carries a non-default value."""
        facets: list[Facet | None] = [self.traffic, self.conversions, self.platforms]
        facets.extend(self.channels)
        return any(facet is not None and facet.has_signal() for facet in facets)


class InsightSnapshot(BaseModel):
    top_performers: TopPerformers | None = None
    connected: list[str] = Field(default_factory=list)
    not_connected: list[str] = Field(default_factory=list)


PLATFORM_MODELS: dict[str, type[PlatformFacet]] = {
    "googleAds": AdPlatformMetrics,
    "metaAds": AdPlatformMetrics,
    "facebook": SocialPlatformMetrics,
    "instagram": SocialPlatformMetrics,
    "searchConsole": SearchConsoleMetrics,
    "youtube": VideoPlatformMetrics,
    "linkedin": SocialPlatformMetrics,
}

_METRIC_TYPE_MODELS: dict[str, type[BaseModel]] = {
    "overview": TrafficMetrics,
    "conversion": ConversionMetrics,
    "channel": ChannelMetrics,
    "campaign": CampaignMetrics,
    "insight": InsightSnapshot,
}


def load_snapshot(
    metric_type: str, platform: str | None, payload: dict[str, Any]
) -> BaseModel:
    """Validate a stored snapshot payload into the model for its chunk kind."""

    if metric_type == "platform":
        model = PLATFORM_MODELS.get(platform or "")
        if model is None:
            raise ValueError(f"Unknown platform snapshot: {platform}")
        return model.model_validate(payload)
    model = _METRIC_TYPE_MODELS.get(metric_type)
    if model is None:
        raise ValueError(f"Unknown metric type: {metric_type}")
    return model.model_validate(payload)
