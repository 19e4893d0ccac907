"""Context-string composition for retrieved metric chunks."""

from __future__ import annotations

from collections.abc import Sequence

from metrics_rag.types import ParsedIntent, ScoredChunk, UserMemory

NO_DATA_HEADER = "DATA AVAILABILITY NOTICE"
NO_FABRICATION_RULE = (
    "DO NOT make up or hallucinate any metrics. Be honest that you do not have the data."
)


def build_context(
    chunks: Sequence[ScoredChunk],
    intent: ParsedIntent,
    memories: Sequence[UserMemory] = (),
) -> str:
    """Render memories, a period header, ranked sources and a metadata footer.

    With no chunks the body is replaced by an explicit no-data notice that tells
    the consumer to say so instead of inventing numbers.
    """

    timeframe = intent.timeframe
    period = f"{timeframe.start_date.isoformat()} to {timeframe.end_date.isoformat()}"
    sections: list[str] = []

    if memories:
        sections.append("=== USER-DEFINED RULES (Remember These) ===")
        sections.extend(f"• {memory.correction}" for memory in memories)
        sections.append("")

    sections.append(f"=== DATA CONTEXT FOR {timeframe.label.upper()} ===")
    sections.append(f"Period: {period}")
    if intent.platforms:
        sections.append(f"Focused Platforms: {', '.join(intent.platforms)}")
    sections.append("")

    if not chunks:
        sections.extend(
            [
                f"⚠️ {NO_DATA_HEADER}",
                f"No data was found for the requested period: {timeframe.label} ({period})",
                "",
                "IMPORTANT - Tell the user:",
                "1. You could not find data for the specific period they asked about.",
                '2. Suggest they ask about a different time period (e.g., "last 30 days", "last month").',
                "3. If they asked about a specific platform, suggest asking for that platform "
                "over the last 30 days.",
                "",
                "Possible reasons:",
                "- The platform may not have been active during this period",
                "- Data sync may still be in progress",
                "- The requested date range may be outside the retention window",
                "",
                NO_FABRICATION_RULE,
            ]
        )
        return "\n".join(sections)

    for index, item in enumerate(chunks, start=1):
        sections.append(f"[Source {index}] (Relevance: {item.score * 100:.1f}%):")
        sections.append(item.chunk.text)
        sections.append("")

    sections.append("=== RETRIEVAL METADATA ===")
    sections.append(f"Chunks Retrieved: {len(chunks)}")
    sections.append(f"Average Relevance: {average_score(chunks) * 100:.1f}%")
    platforms = represented_platforms(chunks)
    if platforms:
        sections.append(f"Platforms in Context: {', '.join(platforms)}")
    return "\n".join(sections)


def average_score(chunks: Sequence[ScoredChunk]) -> float:
    if not chunks:
        return 0.0
    return sum(item.score for item in chunks) / len(chunks)


def represented_platforms(chunks: Sequence[ScoredChunk]) -> list[str]:
    seen: list[str] = []
    for item in chunks:
        platform = item.chunk.metadata.platform
        if platform and platform not in seen:
            seen.append(platform)
    return seen
