"""Bounded tool-use loop: the model proposes tool calls, the loop runs them
through the approval policy and feeds the results back until `done`."""

from __future__ import annotations

import json
import logging
from typing import Callable

from coqui.agents.approval import AllowAllPolicy, ExecutionPolicy
from coqui.agents.console_callback import AgentCallback, NullCallback
from coqui.models.agent_schemas import (
    AgentError,
    AgentRunOutput,
    MaxIterationsError,
    ModelResponse,
    ProviderError,
    TokenUsage,
    ToolCall,
    ToolResult,
)
from coqui.services.llm_service import ModelProvider
from coqui.tools import ToolRegistry

logger = logging.getLogger(__name__)

DONE_TOOL = "done"

DONE_TOOL_SCHEMA = {
    "type": "function",
    "function": {
        "name": DONE_TOOL,
        "description": "Finish the task. Call this exactly once with your final response to the user.",
        "parameters": {
            "type": "object",
            "properties": {
                "response": {"type": "string", "description": "The final response"},
            },
            "required": ["response"],
        },
    },
}

NO_TOOL_CALL_NUDGE = (
    "You did not call any tool. Continue working, and call the `done` tool "
    "with your final response when the task is complete."
)

WARN_REMAINING = 3


class AgentLoop:
    def __init__(
        self,
        provider: ModelProvider,
        registry: ToolRegistry,
        instructions: str = "",
        max_iterations: int = 25,
        policy: ExecutionPolicy | None = None,
        callback: AgentCallback | None = None,
        iteration_hooks: list[Callable[[int], None]] | None = None,
        history: list[dict] | None = None,
    ) -> None:
        if max_iterations < 1:
            raise ValueError("max_iterations must be at least 1")
        self.provider = provider
        self.registry = registry
        self.instructions = instructions
        self.max_iterations = max_iterations
        self.policy: ExecutionPolicy = policy or AllowAllPolicy()
        self.cb: AgentCallback = callback or NullCallback()
        self.iteration_hooks = iteration_hooks or []
        self.history = history or []
        self.messages: list[dict] = []

    def _tool_schemas(self) -> list[dict]:
        return self.registry.to_openai_tools() + [DONE_TOOL_SCHEMA]

    def run(self, prompt: str) -> AgentRunOutput:
        self.messages = []
        if self.instructions:
            self.messages.append({"role": "system", "content": self.instructions})
        self.messages.extend(self.history)
        self.messages.append({"role": "user", "content": prompt})

        tools = self._tool_schemas()
        usage: TokenUsage | None = None
        total_tool_calls = 0
        last_output = ""

        self.cb.on_run_start(prompt)

        for iteration in range(1, self.max_iterations + 1):
            for hook in self.iteration_hooks:
                hook(iteration)
            self.cb.on_iteration(iteration, self.max_iterations)
            self._inject_budget_warning(iteration)

            response = self._complete(tools)
            if response.usage is not None:
                usage = response.usage if usage is None else usage + response.usage
            self.messages.append(_assistant_message(response))

            if response.content:
                last_output = response.content
                self.cb.on_thinking(response.content)

            if not response.tool_calls:
                # Text-only turn: counts against the budget, the run goes on.
                logger.info("Iteration %d produced no tool calls", iteration)
                self.messages.append({"role": "user", "content": NO_TOOL_CALL_NUDGE})
                continue

            final: str | None = None
            for call in response.tool_calls:
                self.cb.on_tool_call(call)
                if final is not None:
                    result = ToolResult.error(
                        "Not executed: the run already finished with `done`.", call.id
                    )
                elif call.name == DONE_TOOL:
                    final = str(call.arguments.get("response") or last_output)
                    result = ToolResult.success("Done.", call.id)
                else:
                    result = self._dispatch(call)
                    total_tool_calls += 1
                self.cb.on_tool_result(call, result)
                self.messages.append(_tool_message(result))

            if final is not None:
                output = AgentRunOutput(
                    content=final,
                    iterations=iteration,
                    tool_calls_made=total_tool_calls,
                    usage=usage,
                )
                self.cb.on_done(output)
                return output

        logger.warning("Agent hit max iterations (%d) without calling done", self.max_iterations)
        error = MaxIterationsError(self.max_iterations, last_output)
        self.cb.on_error(str(error))
        raise error

    def _complete(self, tools: list[dict]) -> ModelResponse:
        try:
            return self.provider.complete(self.messages, tools)
        except AgentError as e:
            self.cb.on_error(str(e))
            raise
        except Exception as e:
            self.cb.on_error(str(e))
            raise ProviderError(f"Model provider failed: {e}") from e

    def _dispatch(self, call: ToolCall) -> ToolResult:
        """Gate and run one call. Never raises: every call yields one result."""
        try:
            decision = self.policy.should_execute(call.name, call.arguments)
        except Exception as e:
            logger.error("Approval check for '%s' failed: %s", call.name, e)
            return ToolResult.error(f"Approval check failed for '{call.name}': {e}", call.id)
        if not decision.allowed:
            return ToolResult.error(decision.reason, call.id)
        return self.registry.execute(call)

    def _inject_budget_warning(self, iteration: int) -> None:
        remaining = self.max_iterations - iteration + 1
        if self.max_iterations <= WARN_REMAINING:
            return
        if remaining == WARN_REMAINING:
            self.messages.append({
                "role": "user",
                "content": (
                    f"⚠️ You have {remaining} iterations remaining. "
                    "Wrap up now and call `done` with a summary. "
                    "Do NOT start new explorations."
                ),
            })
            logger.info("Injected iteration budget warning (%d remaining)", remaining)
        elif remaining == 1:
            self.messages.append({
                "role": "user",
                "content": "🛑 LAST ITERATION. Call `done` with your final response now.",
            })
            logger.info("Injected final iteration warning")


def _assistant_message(response: ModelResponse) -> dict:
    message: dict = {"role": "assistant", "content": response.content or None}
    if response.tool_calls:
        message["tool_calls"] = [
            {
                "id": call.id,
                "type": "function",
                "function": {"name": call.name, "arguments": json.dumps(call.arguments)},
            }
            for call in response.tool_calls
        ]
    return message


def _tool_message(result: ToolResult) -> dict:
    content = f"Error: {result.content}" if result.is_error else result.content
    return {"role": "tool", "tool_call_id": result.call_id, "content": content}
