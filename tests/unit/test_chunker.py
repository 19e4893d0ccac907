from datetime import date, datetime, timedelta

from metrics_rag.config import ChunkingConfig
from metrics_rag.ingest.chunker import (
    MetricsChunker,
    format_change,
    format_currency,
    format_duration,
)
from metrics_rag.snapshot import AdPlatformMetrics, AggregatedMetrics, CampaignMetrics
from metrics_rag.types import DateRange

NOW = datetime(2025, 3, 15, 9, 0)
WINDOW = DateRange(date(2025, 3, 8), date(2025, 3, 14), "Current Week")


def _metrics() -> AggregatedMetrics:
    return AggregatedMetrics.model_validate(
        {
            "traffic": {
                "sessions": 12345,
                "users": 9876,
                "sessions_change": 12.5,
                "users_change": -4.0,
                "bounce_rate": 41.2,
                "avg_session_duration": 2.5,
            },
            "conversions": {"conversions": 120, "conversion_rate": 0.97, "revenue": 1234567.0},
            "channels": [
                {"channel": "Organic Search", "sessions": 6000, "users": 5000, "percentage": 48.6},
                {"channel": "Referral"},
            ],
            "top_performers": {"best_channel": "Organic Search", "best_channel_sessions": 6000},
            "platform_connections": {
                "total": 9,
                "connected_platforms": ["Google Analytics", "Google Ads"],
                "not_connected_platforms": ["LinkedIn"],
            },
            "platforms": {
                "googleAds": {
                    "spend": 50000,
                    "clicks": 1200,
                    "impressions": 40000,
                    "conversions": 35,
                    "cpc": 41.67,
                    "ctr": 3.0,
                    "campaigns": [
                        {"name": "Summer Stays", "status": "ENABLED", "spend": 30000, "clicks": 800},
                        {"name": "Paused Brand", "status": "PAUSED"},
                    ],
                },
                "metaAds": {
                    "spend": 8000,
                    "clicks": 300,
                    "is_fallback_data": True,
                    "fallback_period": "Last 30 Days",
                },
                "facebook": {"followers": 0, "engagement": 0},
                "searchConsole": {"avg_position": 7.4},
            },
        }
    )


def _by_category(chunks):
    return {chunk.metadata.category: chunk for chunk in chunks}


def test_chunker_emits_one_chunk_per_facet_with_signal() -> None:
    chunks = MetricsChunker().chunk(_metrics(), "tenant-a", WINDOW, now=NOW)
    categories = _by_category(chunks)

    assert set(categories) == {
        "traffic",
        "conversions",
        "channel-organic-search",
        "insights",
        "google-ads",
        "google-ads-campaign-summer-stays",
        "meta-ads",
    }
    assert categories["traffic"].metadata.metric_type == "overview"
    assert categories["google-ads"].metadata.platform == "googleAds"
    assert categories["google-ads-campaign-summer-stays"].metadata.metric_type == "campaign"
    assert categories["insights"].metadata.metric_type == "insight"


def test_chunk_text_is_self_describing() -> None:
    categories = _by_category(MetricsChunker().chunk(_metrics(), "tenant-a", WINDOW, now=NOW))

    traffic = categories["traffic"].text
    assert "Traffic Overview for Current Week (2025-03-08 to 2025-03-14)" in traffic
    assert "Sessions: 12,345 (↑12.5% vs previous period)" in traffic
    assert "Users: 9,876 (↓4.0% vs previous period)" in traffic
    assert "Avg Session Duration: 2.5 min" in traffic
    assert "Revenue: ₹1,234,567" in categories["conversions"].text
    assert "Ad Spend: ₹50,000" in categories["google-ads"].text
    assert "Connected: 2 (Google Analytics, Google Ads)" in categories["insights"].text


def test_fallback_platform_data_is_flagged() -> None:
    meta = _by_category(MetricsChunker().chunk(_metrics(), "tenant-a", WINDOW, now=NOW))["meta-ads"]

    assert meta.metadata.is_fallback_data is True
    assert meta.metadata.fallback_period == "Last 30 Days"
    assert "Fallback Data: Last 30 Days" in meta.text


def test_metadata_ttl_and_deterministic_ids() -> None:
    chunker = MetricsChunker(ChunkingConfig(ttl_days=90))
    first = chunker.chunk(_metrics(), "tenant-a", WINDOW, now=NOW)
    second = chunker.chunk(_metrics(), "tenant-a", WINDOW, now=NOW + timedelta(hours=1))
    other_tenant = chunker.chunk(_metrics(), "tenant-b", WINDOW, now=NOW)

    assert [chunk.chunk_id for chunk in first] == [chunk.chunk_id for chunk in second]
    assert not {c.chunk_id for c in first} & {c.chunk_id for c in other_tenant}
    for chunk in first:
        assert chunk.metadata.tenant_id == "tenant-a"
        assert chunk.metadata.expires_at - chunk.metadata.created_at == timedelta(days=90)
        assert chunk.metadata.text_content == chunk.text


def test_empty_snapshot_produces_no_chunks() -> None:
    empty = AggregatedMetrics()

    assert empty.has_valid_metrics() is False
    assert MetricsChunker().chunk(empty, "tenant-a", WINDOW, now=NOW) == []


def test_zero_valued_facets_are_skipped() -> None:
    metrics = AggregatedMetrics.model_validate(
        {"traffic": {"sessions": 0, "users": 0}, "platforms": {"youtube": {"views": 300}}}
    )

    chunks = MetricsChunker().chunk(metrics, "tenant-a", WINDOW, now=NOW)

    assert metrics.has_valid_metrics() is True
    assert [chunk.metadata.category for chunk in chunks] == ["youtube"]


def test_typed_snapshot_round_trips_facet_models() -> None:
    categories = _by_category(MetricsChunker().chunk(_metrics(), "tenant-a", WINDOW, now=NOW))

    ads = categories["google-ads"].metadata.typed_snapshot()
    campaign = categories["google-ads-campaign-summer-stays"].metadata.typed_snapshot()

    assert isinstance(ads, AdPlatformMetrics)
    assert ads.spend == 50000
    assert ads.campaigns == []
    assert isinstance(campaign, CampaignMetrics)
    assert campaign.name == "Summer Stays"


def test_formatting_helpers() -> None:
    assert format_change(None) == "no change"
    assert format_change(0) == "no change"
    assert format_change(0.09) == "no change"
    assert format_change(-0.1) == "↓0.1% vs previous period"
    assert format_change(-4.0) == "↓4.0% vs previous period"
    assert format_currency(1500.5, decimals=2) == "₹1,500.50"
    assert format_currency(-200) == "-₹200"
    assert format_duration(0.5) == "30 sec"
    assert format_duration(None) == "0 sec"


def test_campaigns_and_channels_with_colliding_names_get_distinct_ids() -> None:
    metrics = AggregatedMetrics.model_validate(
        {
            "channels": [
                {"channel": "प्रत्यक्ष", "sessions": 300},
                {"channel": "रेफ़रल", "sessions": 200},
            ],
            "platforms": {
                "googleAds": {
                    "spend": 900,
                    "campaigns": [
                        {"name": "गर्मी ऑफ़र", "spend": 100},
                        {"name": "दिवाली सेल", "spend": 200},
                        {"name": "Summer Stays", "spend": 300},
                        {"name": "summer-stays", "spend": 400},
                        {"name": "Summer Stays", "spend": 500},
                    ],
                }
            },
        }
    )

    chunks = MetricsChunker().chunk(metrics, "tenant-a", WINDOW, now=NOW)
    campaigns = [chunk for chunk in chunks if chunk.metadata.metric_type == "campaign"]
    channels = [chunk for chunk in chunks if chunk.metadata.metric_type == "channel"]

    assert len(campaigns) == 5
    assert len(channels) == 2
    assert len({chunk.chunk_id for chunk in chunks}) == len(chunks)
    assert len({chunk.metadata.category for chunk in chunks}) == len(chunks)
    assert campaigns[2].metadata.category == "google-ads-campaign-summer-stays"
    assert [c.metadata.metrics_snapshot["spend"] for c in campaigns] == [100, 200, 300, 400, 500]

    again = MetricsChunker().chunk(metrics, "tenant-a", WINDOW, now=NOW)
    assert [chunk.chunk_id for chunk in again] == [chunk.chunk_id for chunk in chunks]
