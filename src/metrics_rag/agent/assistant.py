"""One chat turn: prompt, agent loop, then best-effort preference learning."""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from metrics_rag.agent.prompts import build_system_prompt
from metrics_rag.agent.runtime import AgentToolRuntime, ToolContext
from metrics_rag.obs.logging import get_logger
from metrics_rag.obs.tracing import Timer, over_budget
from metrics_rag.retrieval.orchestrator import RetrievalOrchestrator
from metrics_rag.types import DateRange, ToolTrace

logger = get_logger(__name__)


@dataclass(slots=True)
class AssistantReply:
    answer: str
    tools_used: list[str] = field(default_factory=list)
    tool_traces: list[ToolTrace] = field(default_factory=list)
    iterations: int = 0
    latency_ms: float = 0.0
    learned_memory: bool = False


class AnalyticsAssistant:
    def __init__(
        self,
        runtime: AgentToolRuntime,
        orchestrator: RetrievalOrchestrator | None = None,
        *,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.runtime = runtime
        self.orchestrator = orchestrator
        self._clock = clock

    def ask(
        self,
        tenant_id: str,
        user_id: str | None,
        message: str,
        *,
        history: Sequence[Any] = (),
        connected_platforms: Sequence[str] = (),
        not_connected_platforms: Sequence[str] = (),
        page_context: str | None = None,
        date_range: DateRange | None = None,
    ) -> AssistantReply:
        now = self._clock()
        prompt = build_system_prompt(
            tenant_id=tenant_id,
            user_id=user_id,
            today=now.date(),
            connected_platforms=connected_platforms,
            not_connected_platforms=not_connected_platforms,
            page_context=page_context,
            window_days=self.runtime.config.default_window_days,
        )
        context = ToolContext(
            tenant_id=tenant_id,
            user_id=user_id,
            start_date=date_range.start_date if date_range else None,
            end_date=date_range.end_date if date_range else None,
        )

        with Timer() as timer:
            result = self.runtime.run(prompt, history, message, context=context)
        if over_budget(timer.elapsed_ms, self.runtime.config.target_latency_seconds):
            logger.warning(
                "[AgentRuntime] Turn for tenant %s took %.0f ms (target %.1f s)",
                tenant_id,
                timer.elapsed_ms,
                self.runtime.config.target_latency_seconds,
            )

        return AssistantReply(
            answer=result.final_answer,
            tools_used=result.tools_used,
            tool_traces=result.tool_traces,
            iterations=result.iterations,
            latency_ms=timer.elapsed_ms,
            learned_memory=self._learn(tenant_id, user_id, message, now),
        )

    def _learn(self, tenant_id: str, user_id: str | None, message: str, now: datetime) -> bool:
        if self.orchestrator is None or not user_id:
            return False
        try:
            memory = self.orchestrator.learn_from_message(user_id, tenant_id, message, now=now)
        except Exception as exc:
            logger.warning("[AgentRuntime] Could not store user preference: %s", exc)
            return False
        return memory is not None
