"""Completion engine: the multi-round model-call / tool-execute loop.

Built on pydantic-ai's direct model interface (``pydantic_ai.direct``), so
the loop itself is ours: the model sees the tool definitions, every
requested call is executed here, and results go back as tool-return parts.

Each round is one model request.  A round whose response requests no tools
ends the loop; otherwise the tools run (sequentially, in the order the model
asked) and the next round starts.  After ``max_iterations`` rounds the loop
stops regardless.

Tool failures never abort the loop: unknown tool names, arguments that fail
validation and executor exceptions all become textual tool results.
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ValidationError
from pydantic_ai.direct import model_request
from pydantic_ai.messages import (
    ModelMessage,
    ModelRequest,
    ModelResponse,
    TextPart,
    ToolCallPart,
    ToolReturnPart,
)
from pydantic_ai.models import Model, ModelRequestParameters
from pydantic_ai.settings import ModelSettings
from pydantic_ai.tools import ToolDefinition

logger = logging.getLogger(__name__)

ArgsT = TypeVar("ArgsT", bound=BaseModel)


@dataclass
class Tool(Generic[ArgsT]):
    """A model-callable tool with a typed argument model.

    The argument model's JSON schema is what the model sees; raw arguments
    are validated against it before the executor runs.
    """

    name: str
    description: str
    args_model: type[ArgsT]
    executor: Callable[[ArgsT], Awaitable[str]]

    def definition(self) -> ToolDefinition:
        return ToolDefinition(
            name=self.name,
            description=self.description,
            parameters_json_schema=self.args_model.model_json_schema(),
        )

    async def invoke(self, raw_args: str | dict[str, Any] | None) -> str:
        """Validate *raw_args* and run the executor.  Raises on invalid arguments."""
        if isinstance(raw_args, str):
            args = self.args_model.model_validate_json(raw_args or "{}")
        else:
            args = self.args_model.model_validate(raw_args or {})
        return await self.executor(args)


@dataclass
class ToolCallRecord:
    """One executed tool call, kept for transcripts."""

    tool_name: str
    args: str | dict[str, Any] | None
    result: str
    is_error: bool = False


@dataclass
class CompletionResult:
    text: str
    """Text of the final model response."""

    messages: list[ModelMessage]
    """Full history: input messages followed by everything produced."""

    new_messages: list[ModelMessage]
    """Only the messages produced by this completion."""

    tool_calls: list[ToolCallRecord] = field(default_factory=list)
    rounds: int = 0
    hit_iteration_cap: bool = False


class CompletionEngine:
    """Drives one model through tool-calling rounds until it answers."""

    def __init__(
        self,
        model: Model | str,
        *,
        model_settings: ModelSettings | None = None,
        max_iterations: int = 10,
    ) -> None:
        self.model = model
        self.model_settings = model_settings
        self.max_iterations = max_iterations

    async def complete(
        self,
        messages: Sequence[ModelMessage],
        *,
        tools: Sequence[Tool[Any]] = (),
        max_iterations: int | None = None,
    ) -> CompletionResult:
        cap = max_iterations if max_iterations is not None else self.max_iterations
        if cap < 1:
            msg = "max_iterations must be at least 1"
            raise ValueError(msg)

        toolbox = _index_tools(tools)
        params = ModelRequestParameters(function_tools=[t.definition() for t in toolbox.values()])
        history: list[ModelMessage] = list(messages)
        produced: list[ModelMessage] = []
        records: list[ToolCallRecord] = []
        text = ""

        for round_no in range(1, cap + 1):
            response = await model_request(
                self.model,
                history,
                model_settings=self.model_settings,
                model_request_parameters=params,
            )
            history.append(response)
            produced.append(response)
            text = _response_text(response)

            calls = [p for p in response.parts if isinstance(p, ToolCallPart)]
            if not calls:
                logger.debug("Completion finished after %d round(s)", round_no)
                return CompletionResult(text, history, produced, records, rounds=round_no)

            logger.debug("Round %d: model requested %d tool call(s)", round_no, len(calls))
            returns: list[ToolReturnPart] = []
            for call in calls:
                record = await _execute(toolbox, call)
                records.append(record)
                returns.append(
                    ToolReturnPart(tool_name=call.tool_name, content=record.result, tool_call_id=call.tool_call_id)
                )
            request = ModelRequest(parts=returns)
            history.append(request)
            produced.append(request)

        logger.info("Completion stopped at the iteration cap (%d rounds)", cap)
        return CompletionResult(text, history, produced, records, rounds=cap, hit_iteration_cap=True)


def _index_tools(tools: Sequence[Tool[Any]]) -> dict[str, Tool[Any]]:
    toolbox: dict[str, Tool[Any]] = {}
    for tool in tools:
        if tool.name in toolbox:
            logger.warning("Duplicate tool name '%s'; the later definition wins", tool.name)
        toolbox[tool.name] = tool
    return toolbox


async def _execute(toolbox: dict[str, Tool[Any]], call: ToolCallPart) -> ToolCallRecord:
    tool = toolbox.get(call.tool_name)
    if tool is None:
        logger.info("Model called unknown tool '%s'", call.tool_name)
        return ToolCallRecord(call.tool_name, call.args, f"Unknown tool: {call.tool_name}", is_error=True)
    try:
        result = await tool.invoke(call.args)
    except ValidationError as exc:
        message = f"Invalid arguments for {call.tool_name}: {exc}"
        return ToolCallRecord(call.tool_name, call.args, message, is_error=True)
    except Exception as exc:
        logger.info("Tool '%s' raised %s", call.tool_name, type(exc).__name__)
        return ToolCallRecord(call.tool_name, call.args, f"Error: {exc}", is_error=True)
    return ToolCallRecord(call.tool_name, call.args, result)


def _response_text(response: ModelResponse) -> str:
    return "".join(p.content for p in response.parts if isinstance(p, TextPart))
