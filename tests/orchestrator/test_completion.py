"""Unit tests for the completion engine (tool-calling loop).

The language model is a pydantic-ai ``FunctionModel`` scripted per test.
"""

from __future__ import annotations

import pytest
from pydantic import BaseModel
from pydantic_ai.messages import (
    ModelMessage,
    ModelRequest,
    ModelResponse,
    TextPart,
    ToolCallPart,
    ToolReturnPart,
    UserPromptPart,
)
from pydantic_ai.models.function import AgentInfo, FunctionModel

from crewbox.orchestrator.execution.completion import CompletionEngine, Tool


class AddArgs(BaseModel):
    a: int
    b: int


async def _add(args: AddArgs) -> str:
    return str(args.a + args.b)


async def _explode(args: AddArgs) -> str:
    msg = "boom"
    raise RuntimeError(msg)


ADD = Tool("add", "Add two integers.", AddArgs, _add)
EXPLODE = Tool("explode", "Always fails.", AddArgs, _explode)

PROMPT = [ModelRequest(parts=[UserPromptPart(content="What is 2 + 3?")])]


def _text(content: str) -> ModelResponse:
    return ModelResponse(parts=[TextPart(content=content)])


def _call(name: str, args: dict | str, call_id: str = "call-1") -> ModelResponse:
    return ModelResponse(parts=[ToolCallPart(tool_name=name, args=args, tool_call_id=call_id)])


def _returns(messages: list[ModelMessage]) -> list[ToolReturnPart]:
    last = messages[-1]
    assert isinstance(last, ModelRequest)
    return [p for p in last.parts if isinstance(p, ToolReturnPart)]


async def test_plain_answer_ends_after_one_round() -> None:
    engine = CompletionEngine(FunctionModel(lambda messages, info: _text("5")))

    result = await engine.complete(PROMPT)

    assert result.text == "5"
    assert result.rounds == 1
    assert result.tool_calls == []
    assert not result.hit_iteration_cap
    assert len(result.messages) == 2
    assert len(result.new_messages) == 1


async def test_tool_result_is_fed_back() -> None:
    seen_tools: list[str] = []

    def model(messages: list[ModelMessage], info: AgentInfo) -> ModelResponse:
        seen_tools[:] = [t.name for t in info.function_tools]
        if len(messages) == 1:
            return _call("add", {"a": 2, "b": 3})
        (ret,) = _returns(messages)
        return _text(f"The answer is {ret.content}.")

    result = await CompletionEngine(FunctionModel(model)).complete(PROMPT, tools=[ADD])

    assert seen_tools == ["add"]
    assert result.text == "The answer is 5."
    assert result.rounds == 2
    assert [(c.tool_name, c.result, c.is_error) for c in result.tool_calls] == [("add", "5", False)]
    assert len(result.new_messages) == 3


async def test_json_string_arguments() -> None:
    def model(messages: list[ModelMessage], info: AgentInfo) -> ModelResponse:
        if len(messages) == 1:
            return _call("add", '{"a": 40, "b": 2}')
        return _text(_returns(messages)[0].content)

    result = await CompletionEngine(FunctionModel(model)).complete(PROMPT, tools=[ADD])
    assert result.text == "42"


async def test_parallel_calls_return_in_one_request() -> None:
    def model(messages: list[ModelMessage], info: AgentInfo) -> ModelResponse:
        if len(messages) == 1:
            return ModelResponse(
                parts=[
                    ToolCallPart(tool_name="add", args={"a": 1, "b": 1}, tool_call_id="c1"),
                    ToolCallPart(tool_name="add", args={"a": 2, "b": 2}, tool_call_id="c2"),
                ]
            )
        returns = _returns(messages)
        return _text(",".join(f"{r.tool_call_id}={r.content}" for r in returns))

    result = await CompletionEngine(FunctionModel(model)).complete(PROMPT, tools=[ADD])
    assert result.text == "c1=2,c2=4"


async def test_failing_tool_does_not_abort_loop() -> None:
    """The error becomes the tool result and the model keeps going."""

    def model(messages: list[ModelMessage], info: AgentInfo) -> ModelResponse:
        attempts = sum(1 for m in messages if isinstance(m, ModelResponse))
        if attempts < 2:
            return _call("explode", {"a": 1, "b": 2}, call_id=f"call-{attempts}")
        return _text("Giving up: the tool keeps failing.")

    result = await CompletionEngine(FunctionModel(model)).complete(PROMPT, tools=[EXPLODE])

    assert result.rounds == 3
    assert not result.hit_iteration_cap
    assert [c.result for c in result.tool_calls] == ["Error: boom", "Error: boom"]
    assert all(c.is_error for c in result.tool_calls)
    assert result.text == "Giving up: the tool keeps failing."


async def test_iteration_cap() -> None:
    calls = 0

    def model(messages: list[ModelMessage], info: AgentInfo) -> ModelResponse:
        nonlocal calls
        calls += 1
        return _call("explode", {"a": 1, "b": 2}, call_id=f"call-{calls}")

    engine = CompletionEngine(FunctionModel(model), max_iterations=10)
    result = await engine.complete(PROMPT, tools=[EXPLODE], max_iterations=3)

    assert calls == 3
    assert result.rounds == 3
    assert result.hit_iteration_cap
    assert len(result.tool_calls) == 3


async def test_unknown_tool_and_bad_arguments() -> None:
    def model(messages: list[ModelMessage], info: AgentInfo) -> ModelResponse:
        if len(messages) == 1:
            return ModelResponse(
                parts=[
                    ToolCallPart(tool_name="nope", args={}, tool_call_id="c1"),
                    ToolCallPart(tool_name="add", args={"a": "two"}, tool_call_id="c2"),
                ]
            )
        return _text("done")

    result = await CompletionEngine(FunctionModel(model)).complete(PROMPT, tools=[ADD])

    unknown, invalid = result.tool_calls
    assert unknown.result == "Unknown tool: nope"
    assert unknown.is_error
    assert invalid.result.startswith("Invalid arguments for add:")
    assert invalid.is_error


async def test_duplicate_tool_names_later_wins() -> None:
    shadow = Tool("add", "Shadowing add.", AddArgs, _explode)

    def model(messages: list[ModelMessage], info: AgentInfo) -> ModelResponse:
        if len(messages) == 1:
            return _call("add", {"a": 1, "b": 1})
        return _text("done")

    result = await CompletionEngine(FunctionModel(model)).complete(PROMPT, tools=[ADD, shadow])
    assert result.tool_calls[0].result == "Error: boom"


async def test_invalid_cap() -> None:
    engine = CompletionEngine(FunctionModel(lambda messages, info: _text("x")))
    with pytest.raises(ValueError):
        await engine.complete(PROMPT, max_iterations=0)


def test_tool_definition_uses_argument_schema() -> None:
    definition = ADD.definition()
    assert definition.name == "add"
    assert definition.description == "Add two integers."
    assert set(definition.parameters_json_schema["properties"]) == {"a", "b"}
    assert definition.parameters_json_schema["required"] == ["a", "b"]
