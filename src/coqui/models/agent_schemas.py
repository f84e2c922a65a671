"""Models for the agent loop."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class ToolCall(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    arguments: dict[str, Any] = Field(default_factory=dict)


class ToolResultStatus(str, Enum):
    SUCCESS = "success"
    ERROR = "error"


class ToolResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    status: ToolResultStatus
    content: str
    call_id: str = ""

    @classmethod
    def success(cls, content: str, call_id: str = "") -> ToolResult:
        return cls(status=ToolResultStatus.SUCCESS, content=content, call_id=call_id)

    @classmethod
    def error(cls, message: str, call_id: str = "") -> ToolResult:
        return cls(status=ToolResultStatus.ERROR, content=message, call_id=call_id)

    @property
    def is_error(self) -> bool:
        return self.status == ToolResultStatus.ERROR

    def with_call_id(self, call_id: str) -> ToolResult:
        return self.model_copy(update={"call_id": call_id})


class TokenUsage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0

    def __add__(self, other: TokenUsage) -> TokenUsage:
        return TokenUsage(
            prompt_tokens=self.prompt_tokens + other.prompt_tokens,
            completion_tokens=self.completion_tokens + other.completion_tokens,
            total_tokens=self.total_tokens + other.total_tokens,
        )


class ModelResponse(BaseModel):
    """One assistant turn as returned by a model provider."""

    content: str = ""
    tool_calls: list[ToolCall] = []
    usage: TokenUsage | None = None


class AgentRunOutput(BaseModel):
    model_config = ConfigDict(frozen=True)

    content: str
    iterations: int
    tool_calls_made: int = 0
    usage: TokenUsage | None = None


class ExecutionDecision(BaseModel):
    model_config = ConfigDict(frozen=True)

    allowed: bool
    reason: str = ""

    @classmethod
    def allow(cls) -> ExecutionDecision:
        return cls(allowed=True)

    @classmethod
    def deny(cls, reason: str) -> ExecutionDecision:
        return cls(allowed=False, reason=reason)


class ChildAgentSpec(BaseModel):
    role: str
    task: str
    context: str = ""
    model: str
    tool_names: list[str] = []

    @property
    def prompt(self) -> str:
        if self.context:
            return f"## Context\n\n{self.context}\n\n## Task\n\n{self.task}"
        return self.task


class AgentError(Exception):
    """Base class for conditions that end an agent run without `done`."""


class MaxIterationsError(AgentError):
    """Raised when the agent exhausts its iteration budget."""

    def __init__(self, iterations: int, last_output: str = "") -> None:
        super().__init__(f"Agent reached the iteration limit ({iterations}) without calling done.")
        self.iterations = iterations
        self.last_output = last_output


class ProviderError(AgentError):
    """Raised when the model provider fails after its own retries."""
