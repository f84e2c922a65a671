"""Wires the top-level orchestrator agent: tools, policy, prompt and loop."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable

from rich.console import Console

from coqui.agents.agent_loop import AgentLoop
from coqui.agents.approval import ExecutionPolicy, InteractiveApprovalPolicy
from coqui.agents.console_callback import AgentCallback
from coqui.agents.delegation import SpawnAgentTool
from coqui.config import ModelConfig, RoleResolver, approval_keys, approval_rules, settings
from coqui.prompts.prompt_layer import render_prompt
from coqui.sandbox.executor import CodeExecutor, create_python_execute_tool
from coqui.services.llm_service import ModelProvider, create_provider
from coqui.services.local_service import LocalService
from coqui.tools import ToolRegistry
from coqui.tools.base_tools import create_filesystem_tools
from coqui.tools.credential_tools import create_credential_tool
from coqui.tools.memory_tools import create_memory_tool
from coqui.tools.package_tools import create_pip_tool, create_pypi_tool
from coqui.tools.shell_tools import ORCHESTRATOR_COMMANDS, create_shell_tool

logger = logging.getLogger(__name__)

ORCHESTRATOR_ROLE = "orchestrator"


def build_policy(config: dict, console: Console | None = None) -> InteractiveApprovalPolicy:
    return InteractiveApprovalPolicy(
        gated_tools=approval_rules(config),
        action_keys=approval_keys(config),
        console=console,
    )


def build_registry(
    project_root: Path,
    workspace: Path,
    spawn_tool: SpawnAgentTool | None = None,
) -> ToolRegistry:
    """Full orchestrator toolset. Filesystem tools are confined to the workspace."""
    registry = ToolRegistry()
    registry.register_many(create_filesystem_tools(LocalService(work_dir=workspace)))
    registry.register(create_shell_tool(project_root, ORCHESTRATOR_COMMANDS, settings.shell_timeout))
    registry.register(create_credential_tool(workspace))
    registry.register(create_memory_tool(workspace))
    executor = CodeExecutor(project_root, workspace, default_timeout=settings.exec_timeout)
    registry.register(create_python_execute_tool(executor))
    registry.register(create_pip_tool(project_root, workspace))
    registry.register(create_pypi_tool())
    if spawn_tool is not None:
        registry.register(spawn_tool.as_tool())
    return registry


def build_orchestrator(
    project_root: Path,
    workspace: Path,
    config: dict,
    provider_factory: Callable[[ModelConfig], ModelProvider] = create_provider,
    storage=None,
    session_id: str | None = None,
    callback: AgentCallback | None = None,
    policy: ExecutionPolicy | None = None,
    history: list[dict] | None = None,
) -> AgentLoop:
    resolver = RoleResolver(config)

    spawn_tool: SpawnAgentTool | None = None
    hooks = []
    if settings.max_delegation_depth > 0:
        spawn_tool = SpawnAgentTool(
            role_resolver=resolver,
            project_root=project_root,
            workspace=workspace,
            provider_factory=provider_factory,
            storage=storage,
            session_id=session_id,
            callback=callback,
            policy=policy,
            max_iterations=settings.child_max_iterations,
            depth=1,
            max_depth=settings.max_delegation_depth,
            shell_timeout=settings.shell_timeout,
        )
        hooks.append(spawn_tool.set_current_iteration)

    registry = build_registry(project_root, workspace, spawn_tool)
    roles = ", ".join(resolver.available_roles()) or "none (all roles use the primary model)"
    instructions = render_prompt(
        "orchestrator",
        workspace=str(workspace),
        project_root=str(project_root),
        roles=roles,
    )
    logger.debug("Orchestrator tools: %s", registry.names())

    return AgentLoop(
        provider=provider_factory(resolver.model_config(ORCHESTRATOR_ROLE)),
        registry=registry,
        instructions=instructions,
        max_iterations=settings.max_iterations,
        policy=policy,
        callback=callback,
        iteration_hooks=hooks,
        history=history,
    )
