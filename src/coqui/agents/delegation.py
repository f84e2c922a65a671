"""spawn_agent: runs a child agent loop with a role-scoped toolset and model."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable

from coqui.agents.agent_loop import AgentLoop
from coqui.agents.approval import ExecutionPolicy
from coqui.agents.console_callback import AgentCallback, NullCallback
from coqui.config import ModelConfig, RoleResolver
from coqui.models.agent_schemas import ChildAgentSpec, ToolResult
from coqui.prompts.prompt_layer import TEMPLATES_DIR, load_prompt, render_prompt
from coqui.services.llm_service import ModelProvider, create_provider
from coqui.services.local_service import LocalService
from coqui.tools import Tool, ToolRegistry
from coqui.tools.base_tools import create_filesystem_tools
from coqui.tools.shell_tools import CODER_COMMANDS, create_shell_tool

logger = logging.getLogger(__name__)

# Roles that get write access and the shell. Everything else is read-only.
WRITE_ROLES = ("coder",)


class SpawnAgentTool:
    """Delegates a task to a child agent and returns its final response.

    A child is a full AgentLoop. It only receives `spawn_agent` itself while
    its depth is below `max_depth`, so with the default of 1 delegation stops
    after one level.
    """

    def __init__(
        self,
        role_resolver: RoleResolver,
        project_root: Path,
        workspace: Path,
        provider_factory: Callable[[ModelConfig], ModelProvider] = create_provider,
        storage=None,
        session_id: str | None = None,
        callback: AgentCallback | None = None,
        policy: ExecutionPolicy | None = None,
        max_iterations: int = 15,
        depth: int = 1,
        max_depth: int = 1,
        shell_timeout: int = 60,
    ) -> None:
        self.role_resolver = role_resolver
        self.project_root = Path(project_root)
        self.workspace = Path(workspace)
        self.provider_factory = provider_factory
        self.storage = storage
        self.session_id = session_id
        self.cb: AgentCallback = callback or NullCallback()
        self.policy = policy
        self.max_iterations = max_iterations
        self.depth = depth
        self.max_depth = max_depth
        self.shell_timeout = shell_timeout
        self.current_iteration = 0

    def set_current_iteration(self, iteration: int) -> None:
        """Iteration hook for the parent loop, recorded in the audit log."""
        self.current_iteration = iteration

    def _nested(self) -> SpawnAgentTool:
        return SpawnAgentTool(
            role_resolver=self.role_resolver,
            project_root=self.project_root,
            workspace=self.workspace,
            provider_factory=self.provider_factory,
            storage=self.storage,
            session_id=self.session_id,
            callback=self.cb,
            policy=self.policy,
            max_iterations=self.max_iterations,
            depth=self.depth + 1,
            max_depth=self.max_depth,
            shell_timeout=self.shell_timeout,
        )

    def build_toolset(self, role: str) -> tuple[ToolRegistry, list[Callable[[int], None]]]:
        """Tools for a child of `role`, plus the iteration hooks they need."""
        registry = ToolRegistry()
        hooks: list[Callable[[int], None]] = []

        if role in WRITE_ROLES:
            service = LocalService(work_dir=self.workspace)
            registry.register_many(create_filesystem_tools(service))
            registry.register(create_shell_tool(self.project_root, CODER_COMMANDS, self.shell_timeout))
        else:
            service = LocalService(work_dir=self.workspace, read_only=True)
            registry.register_many(create_filesystem_tools(service, read_only=True))

        if self.depth < self.max_depth:
            nested = self._nested()
            registry.register(nested.as_tool())
            hooks.append(nested.set_current_iteration)
        return registry, hooks

    def build_spec(self, role: str, task: str, context: str = "") -> ChildAgentSpec:
        registry, _ = self.build_toolset(role)
        return ChildAgentSpec(
            role=role,
            task=task,
            context=context,
            model=self.role_resolver.resolve(role),
            tool_names=registry.names(),
        )

    def instructions(self, role: str, task: str) -> str:
        name = f"child_{role}"
        if not (TEMPLATES_DIR / f"{name}.txt").is_file():
            name = "child_default"
        return render_prompt("child_task", role_instructions=load_prompt(name), task=task)

    def execute(self, args: dict) -> ToolResult:
        role = str(args.get("role") or "").strip()
        task = str(args.get("task") or "").strip()
        if not role or not task:
            return ToolResult.error("Both role and task are required.")
        context = str(args.get("context") or "").strip()

        config = self.role_resolver.model_config(role)
        registry, hooks = self.build_toolset(role)
        spec = ChildAgentSpec(
            role=role,
            task=task,
            context=context,
            model=config.model,
            tool_names=registry.names(),
        )
        logger.info("Spawning %s child (model %s, depth %d, tools %s)", role, spec.model, self.depth, spec.tool_names)

        self.cb.on_child_start(role, spec.model)
        try:
            loop = AgentLoop(
                provider=self.provider_factory(config),
                registry=registry,
                instructions=self.instructions(role, task),
                max_iterations=self.max_iterations,
                policy=self.policy,
                callback=self.cb,
                iteration_hooks=hooks,
            )
            output = loop.run(spec.prompt)
        except Exception as e:
            logger.error("Child agent (%s) failed: %s", role, e)
            self._audit(spec, f"Error: {e}", 0)
            return ToolResult.error(f"Child agent failed: {e}")
        finally:
            self.cb.on_child_end(role)

        tokens = output.usage.total_tokens if output.usage is not None else 0
        self._audit(spec, output.content, tokens)
        return ToolResult.success(output.content)

    def _audit(self, spec: ChildAgentSpec, result: str, token_count: int) -> None:
        if self.storage is None or not self.session_id:
            return
        self.storage.log_child_run(
            self.session_id,
            self.current_iteration,
            spec.role,
            spec.model,
            spec.prompt,
            result,
            token_count,
        )

    def as_tool(self) -> Tool:
        roles = self.role_resolver.available_roles()
        role_hint = f" Configured roles: {', '.join(roles)}." if roles else ""
        return Tool(
            name="spawn_agent",
            description=(
                "Delegate a task to a specialist child agent running its own model. "
                "'coder' can write workspace files and run allowlisted commands; "
                "'reviewer' and any other role get read-only file access. "
                "Returns the child's final response." + role_hint
            ),
            parameters={
                "type": "object",
                "properties": {
                    "role": {"type": "string", "description": "Agent role, e.g. 'coder' or 'reviewer'"},
                    "task": {"type": "string", "description": "What the child agent must do"},
                    "context": {
                        "type": "string",
                        "description": "Optional background the child needs (file contents, decisions made so far)",
                    },
                },
                "required": ["role", "task"],
            },
            execute=self.execute,
        )
