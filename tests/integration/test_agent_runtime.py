import json
from datetime import date, datetime

from langchain_core.messages import AIMessage, HumanMessage, SystemMessage, ToolMessage
from pydantic import BaseModel

from metrics_rag.agent.registry import ToolRegistry, ToolSpec
from metrics_rag.agent.runtime import ITERATION_LIMIT_MESSAGE, AgentToolRuntime, ToolContext


class ScriptedChatModel:
    """Replays queued AI messages; repeats the last one when the queue runs dry."""

    def __init__(self, responses: list[AIMessage]) -> None:
        self.responses = list(responses)
        self.calls: list[list] = []
        self.bound_tools: list[str] = []

    def bind_tools(self, tools):
        self.bound_tools = [tool.name for tool in tools]
        return self

    def invoke(self, messages):
        self.calls.append(list(messages))
        if len(self.responses) > 1:
            return self.responses.pop(0)
        return self.responses[0]


def _call(name: str, args: dict, call_id: str) -> dict:
    return {"name": name, "args": args, "id": call_id}


class WindowInput(BaseModel):
    project_id: str
    start_date: date
    end_date: date
    user_id: str | None = None


class MetricInput(BaseModel):
    metric: str


def _registry() -> ToolRegistry:
    registry = ToolRegistry()

    def _window(data: WindowInput) -> str:
        return data.model_dump_json()

    def _broken(data: MetricInput) -> str:
        raise RuntimeError(f"upstream returned 500 for {data.metric}")

    registry.register(
        ToolSpec(name="window_tool", description="Echo the resolved window", args_schema=WindowInput, handler=_window)
    )
    registry.register(
        ToolSpec(name="broken_tool", description="Always fails", args_schema=MetricInput, handler=_broken)
    )
    return registry


def _runtime(model: ScriptedChatModel) -> AgentToolRuntime:
    return AgentToolRuntime(model, _registry(), clock=lambda: datetime(2025, 3, 15, 10, 0))


def _tool_messages(messages) -> dict[str, ToolMessage]:
    return {message.tool_call_id: message for message in messages if isinstance(message, ToolMessage)}


def test_failed_tool_is_reported_and_loop_continues() -> None:
    model = ScriptedChatModel(
        [
            AIMessage(
                content="",
                tool_calls=[
                    _call("broken_tool", {"metric": "sessions"}, "call-1"),
                    _call("window_tool", {"project_id": "tenant-a"}, "call-2"),
                ],
            ),
            AIMessage(content="Sessions are unavailable right now; here is the window."),
        ]
    )

    result = _runtime(model).run("system", [], "How many sessions?", context=ToolContext("tenant-a"))

    assert result.final_answer == "Sessions are unavailable right now; here is the window."
    assert result.iterations == 2
    assert result.tools_used == ["broken_tool", "window_tool"]
    assert [trace.name for trace in result.tool_traces] == ["broken_tool", "window_tool"]
    assert result.hit_iteration_limit is False

    replies = _tool_messages(model.calls[1])
    error = json.loads(replies["call-1"].content)
    assert error["tool"] == "broken_tool"
    assert error["type"] == "RuntimeError"
    assert "upstream returned 500" in error["error"]
    assert json.loads(replies["call-2"].content)["project_id"] == "tenant-a"


def test_loop_stops_at_iteration_limit() -> None:
    model = ScriptedChatModel(
        [AIMessage(content="", tool_calls=[_call("window_tool", {"project_id": "tenant-a"}, "loop")])]
    )

    result = _runtime(model).run("system", [], "Keep going", context=ToolContext("tenant-a"))

    assert result.final_answer == ITERATION_LIMIT_MESSAGE
    assert result.hit_iteration_limit is True
    assert result.iterations == 5
    assert len(model.calls) == 5
    assert result.tools_used == ["window_tool"]


def test_empty_answer_is_replaced() -> None:
    model = ScriptedChatModel([AIMessage(content="   ")])

    result = _runtime(model).run("system", [], "Hello", context=ToolContext("tenant-a"))

    assert result.final_answer == ITERATION_LIMIT_MESSAGE
    assert result.hit_iteration_limit is False
    assert result.iterations == 1


def test_list_content_blocks_are_joined() -> None:
    model = ScriptedChatModel(
        [AIMessage(content=[{"type": "text", "text": "Revenue "}, {"type": "text", "text": "grew."}])]
    )

    result = _runtime(model).run("system", [], "Revenue?", context=ToolContext("tenant-a"))

    assert result.final_answer == "Revenue grew."


def test_context_is_injected_and_tenant_is_enforced() -> None:
    model = ScriptedChatModel(
        [
            AIMessage(content="", tool_calls=[_call("window_tool", {"project_id": "tenant-b"}, "c1")]),
            AIMessage(content="", tool_calls=[_call("window_tool", {}, "c2")]),
            AIMessage(content="done"),
        ]
    )
    context = ToolContext("tenant-a", user_id="user-1", start_date=date(2025, 2, 1), end_date=date(2025, 2, 28))

    result = _runtime(model).run("system", [], "Show me February", context=context)

    first = json.loads(_tool_messages(model.calls[1])["c1"].content)
    assert first == {
        "project_id": "tenant-a",
        "start_date": "2025-02-01",
        "end_date": "2025-02-28",
        "user_id": "user-1",
    }
    assert result.tool_traces[1].input_payload["project_id"] == "tenant-a"


def test_default_window_is_trailing_seven_days() -> None:
    model = ScriptedChatModel(
        [
            AIMessage(content="", tool_calls=[_call("window_tool", {}, "c1")]),
            AIMessage(content="done"),
        ]
    )

    _runtime(model).run("system", [], "How are we doing?", context=ToolContext("tenant-a"))

    payload = json.loads(_tool_messages(model.calls[1])["c1"].content)
    assert (payload["start_date"], payload["end_date"]) == ("2025-03-08", "2025-03-14")
    assert payload["user_id"] is None


def test_unknown_and_disallowed_tools_return_error_payloads() -> None:
    model = ScriptedChatModel(
        [
            AIMessage(
                content="",
                tool_calls=[
                    _call("delete_everything", {}, "c1"),
                    _call("broken_tool", {"metric": "sessions"}, "c2"),
                ],
            ),
            AIMessage(content="done"),
        ]
    )

    result = _runtime(model).run(
        "system", [], "Hi", context=ToolContext("tenant-a"), tools=["window_tool"]
    )

    replies = _tool_messages(model.calls[1])
    assert model.bound_tools == ["window_tool"]
    assert json.loads(replies["c1"].content)["type"] == "KeyError"
    assert "Unknown tool: broken_tool" in json.loads(replies["c2"].content)["error"]
    assert result.final_answer == "done"


def test_history_is_converted_between_system_and_user_message() -> None:
    model = ScriptedChatModel([AIMessage(content="Welcome back.")])

    _runtime(model).run(
        "system prompt",
        [("user", "Hi"), ("assistant", "Hello! How can I help?")],
        "What changed?",
        context=ToolContext("tenant-a"),
    )

    sent = model.calls[0]
    assert isinstance(sent[0], SystemMessage)
    assert sent[0].content == "system prompt"
    assert isinstance(sent[1], HumanMessage)
    assert isinstance(sent[2], AIMessage)
    assert isinstance(sent[3], HumanMessage)
    assert sent[3].content == "What changed?"
