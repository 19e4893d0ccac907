"""Bounded tool-calling loop around a LangChain chat model."""

from __future__ import annotations

import json
from collections.abc import Callable, Iterable, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any

from langchain_core.messages import (
    BaseMessage,
    HumanMessage,
    SystemMessage,
    ToolMessage,
    convert_to_messages,
)

from metrics_rag.agent.registry import ToolRegistry
from metrics_rag.config import AgentConfig
from metrics_rag.dates import trailing_days
from metrics_rag.errors import ToolExecutionError
from metrics_rag.obs.logging import get_logger
from metrics_rag.obs.tracing import Timer
from metrics_rag.types import ToolCall, ToolResult, ToolTrace

logger = get_logger(__name__)

ITERATION_LIMIT_MESSAGE = (
    "I apologize, but I couldn't complete the request within the allowed iterations. "
    "Please try a simpler query."
)


@dataclass(slots=True)
class ToolContext:
    """Caller context injected into tool arguments."""

    tenant_id: str
    user_id: str | None = None
    start_date: date | None = None
    end_date: date | None = None


@dataclass(slots=True)
class AgentRunResult:
    final_answer: str
    tools_used: list[str] = field(default_factory=list)
    iterations: int = 0
    tool_traces: list[ToolTrace] = field(default_factory=list)
    hit_iteration_limit: bool = False


class AgentToolRuntime:
    """Runs the model/tool cycle until a tool-free answer or the iteration cap.

    Tool calls requested in one model turn execute concurrently; turns are
    sequential. A failing tool is reported back to the model as a JSON error
    payload, so the loop always ends with either the model's answer or
    `ITERATION_LIMIT_MESSAGE`.
    """

    def __init__(
        self,
        llm: Any,
        registry: ToolRegistry,
        config: AgentConfig | None = None,
        *,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.llm = llm
        self.registry = registry
        self.config = config or AgentConfig()
        self._clock = clock

    def run(
        self,
        system_prompt: str,
        history: Sequence[Any],
        user_message: str,
        *,
        context: ToolContext,
        tools: Iterable[str] | None = None,
    ) -> AgentRunResult:
        allowed = list(tools) if tools is not None else self.registry.names()
        bound_tools = self.registry.as_langchain_tools(allowed)
        model = self.llm.bind_tools(bound_tools) if bound_tools else self.llm

        messages: list[BaseMessage] = [
            SystemMessage(content=system_prompt),
            *convert_to_messages(list(history)),
            HumanMessage(content=user_message),
        ]
        result = AgentRunResult(final_answer="")

        for iteration in range(1, self.config.max_iterations + 1):
            result.iterations = iteration
            response = model.invoke(messages)
            calls = _tool_calls(response, iteration)
            if not calls:
                answer = _content_text(getattr(response, "content", response)).strip()
                result.final_answer = answer or ITERATION_LIMIT_MESSAGE
                logger.info(
                    "[AgentRuntime] Finished after %d iteration(s), tools=%s",
                    iteration,
                    result.tools_used or "none",
                )
                return result

            messages.append(response)
            for call in calls:
                if call.name not in result.tools_used:
                    result.tools_used.append(call.name)
            outcomes = self._execute_calls(calls, context, set(allowed))
            for tool_result, trace in outcomes:
                result.tool_traces.append(trace)
                messages.append(
                    ToolMessage(
                        content=tool_result.content,
                        tool_call_id=tool_result.call_id,
                        name=tool_result.tool_name,
                    )
                )

        logger.warning(
            "[AgentRuntime] Iteration limit (%d) reached without a final answer",
            self.config.max_iterations,
        )
        result.final_answer = ITERATION_LIMIT_MESSAGE
        result.hit_iteration_limit = True
        return result

    def _execute_calls(
        self, calls: list[ToolCall], context: ToolContext, allowed: set[str]
    ) -> list[tuple[ToolResult, ToolTrace]]:
        if len(calls) == 1:
            return [self._execute_one(calls[0], context, allowed)]
        workers = min(len(calls), self.config.max_tool_workers)
        with ThreadPoolExecutor(max_workers=workers) as executor:
            return list(executor.map(lambda call: self._execute_one(call, context, allowed), calls))

    def _execute_one(
        self, call: ToolCall, context: ToolContext, allowed: set[str]
    ) -> tuple[ToolResult, ToolTrace]:
        payload = dict(call.arguments)
        is_error = False
        with Timer() as timer:
            try:
                if call.name not in allowed:
                    raise KeyError(f"Unknown tool: {call.name}")
                payload = self._inject_context(call.name, payload, context)
                content = self.registry.execute(call.name, payload)
            except Exception as exc:
                error = ToolExecutionError(call.name, exc)
                logger.warning("[AgentRuntime] %s", error)
                content = json.dumps(error.to_payload())
                is_error = True

        trace = ToolTrace(
            name=call.name,
            input_payload=payload,
            output_preview=content[:320],
            latency_ms=timer.elapsed_ms,
        )
        return (
            ToolResult(content=content, call_id=call.call_id, tool_name=call.name, is_error=is_error),
            trace,
        )

    def _inject_context(
        self, name: str, payload: dict[str, Any], context: ToolContext
    ) -> dict[str, Any]:
        spec = self.registry.get(name)
        enriched = dict(payload)

        # Tool calls always run against the caller's tenant.
        if spec.accepts("project_id"):
            requested = enriched.get("project_id")
            if requested and requested != context.tenant_id:
                logger.warning(
                    "[AgentRuntime] Replacing project_id %s requested by model for %s",
                    requested,
                    name,
                )
            enriched["project_id"] = context.tenant_id
        if spec.accepts("user_id") and not enriched.get("user_id") and context.user_id:
            enriched["user_id"] = context.user_id

        if spec.accepts("start_date") or spec.accepts("end_date"):
            start, end = self._default_range(context)
            if spec.accepts("start_date") and not enriched.get("start_date"):
                enriched["start_date"] = start.isoformat()
            if spec.accepts("end_date") and not enriched.get("end_date"):
                enriched["end_date"] = end.isoformat()
        return enriched

    def _default_range(self, context: ToolContext) -> tuple[date, date]:
        if context.start_date is not None and context.end_date is not None:
            return context.start_date, context.end_date
        return trailing_days(self._clock().date(), self.config.default_window_days)


def _tool_calls(response: Any, iteration: int) -> list[ToolCall]:
    calls: list[ToolCall] = []
    for index, raw in enumerate(getattr(response, "tool_calls", None) or []):
        name = raw.get("name") if isinstance(raw, dict) else getattr(raw, "name", None)
        args = raw.get("args") if isinstance(raw, dict) else getattr(raw, "args", None)
        call_id = raw.get("id") if isinstance(raw, dict) else getattr(raw, "id", None)
        calls.append(
            ToolCall(
                name=str(name or ""),
                arguments=dict(args or {}),
                call_id=str(call_id or f"call_{iteration}_{index}"),
            )
        )
    return calls


def _content_text(content: Any) -> str:
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts: list[str] = []
        for block in content:
            if isinstance(block, str):
                parts.append(block)
            elif isinstance(block, dict) and block.get("type") == "text":
                parts.append(str(block.get("text", "")))
        return "".join(parts)
    return "" if content is None else str(content)
