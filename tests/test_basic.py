import pytest

from coqui.config import Settings
from coqui.models.agent_schemas import (
    AgentRunOutput,
    ChildAgentSpec,
    ExecutionDecision,
    MaxIterationsError,
    ProviderError,
    AgentError,
    TokenUsage,
    ToolCall,
    ToolResult,
)


def test_tool_result_success():
    result = ToolResult.success("ok", "call_1")
    assert not result.is_error
    assert result.content == "ok"
    assert result.call_id == "call_1"


def test_tool_result_error_with_call_id():
    result = ToolResult.error("boom").with_call_id("call_2")
    assert result.is_error
    assert result.content == "boom"
    assert result.call_id == "call_2"


def test_tool_call_is_immutable():
    call = ToolCall(id="c1", name="read_file", arguments={"path": "a.py"})
    with pytest.raises(Exception):
        call.name = "write_file"


def test_token_usage_add():
    total = TokenUsage(prompt_tokens=10, completion_tokens=5, total_tokens=15) + TokenUsage(
        prompt_tokens=1, completion_tokens=2, total_tokens=3
    )
    assert total.prompt_tokens == 11
    assert total.completion_tokens == 7
    assert total.total_tokens == 18


def test_agent_run_output():
    out = AgentRunOutput(content="done", iterations=2)
    assert out.tool_calls_made == 0
    assert out.usage is None


def test_execution_decision():
    assert ExecutionDecision.allow().allowed
    denied = ExecutionDecision.deny("nope")
    assert not denied.allowed
    assert denied.reason == "nope"


def test_child_spec_prompt_with_context():
    spec = ChildAgentSpec(role="coder", task="Write tests", context="Uses pytest", model="m")
    assert spec.prompt == "## Context\n\nUses pytest\n\n## Task\n\nWrite tests"


def test_child_spec_prompt_without_context():
    spec = ChildAgentSpec(role="coder", task="Write tests", model="m")
    assert spec.prompt == "Write tests"


def test_error_hierarchy():
    err = MaxIterationsError(15, "partial")
    assert isinstance(err, AgentError)
    assert err.iterations == 15
    assert err.last_output == "partial"
    assert "15" in str(err)
    assert issubclass(ProviderError, AgentError)


def test_settings_defaults():
    s = Settings(llm_api_key="k")
    assert s.max_iterations == 25
    assert s.child_max_iterations == 15
    assert s.max_delegation_depth == 1
    assert s.exec_timeout == 30
