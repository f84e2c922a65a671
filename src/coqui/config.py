from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    model_config = {"env_file": ".env", "env_file_encoding": "utf-8", "extra": "ignore"}

    llm_api_key: str = ""
    promptlayer_api_key: str = ""
    llm_base_url: str = "https://openrouter.ai/api/v1"
    llm_model: str = "openai/gpt-4o-mini"

    # Agent loop budgets
    max_iterations: int = 25
    child_max_iterations: int = 15
    max_delegation_depth: int = 1

    # Tool timeouts (seconds)
    exec_timeout: int = 30
    shell_timeout: int = 60

    config_path: str = "coqui.yaml"


settings = Settings()

DEFAULT_WORKSPACE = ".workspace"

# Tool name -> actions that need interactive approval. ["*"] gates every call.
DEFAULT_APPROVAL: dict[str, list[str]] = {
    "pip": ["install", "uninstall"],
    "exec": ["*"],
    "python_execute": ["*"],
}


@dataclass
class ModelConfig:
    model: str = ""
    temperature: float | None = None
    max_tokens: int | None = None
    base_url: str = ""


_config_cache: dict | None = None


def _config_path() -> Path:
    return Path(os.environ.get("COQUI_CONFIG_PATH", settings.config_path))


def load_config(path: Path | None = None) -> dict:
    """Load coqui.yaml. Results for the default path are cached per process."""
    global _config_cache
    if path is None and _config_cache is not None:
        return _config_cache

    config_path = path or _config_path()
    if not config_path.is_file():
        data: dict = {}
    else:
        import yaml

        with open(config_path) as f:
            data = yaml.safe_load(f) or {}

    if path is None:
        _config_cache = data
    return data


def get_model_config(role: str = "", data: dict | None = None) -> ModelConfig:
    """Get model config for a role, merging default + role override.

    Falls back to Settings env variables if coqui.yaml doesn't exist.
    """
    if data is None:
        data = load_config()

    if not data:
        return ModelConfig(
            model=settings.llm_model,
            base_url=settings.llm_base_url,
        )

    default = data.get("default") or {}
    merged = {
        "model": default.get("model", settings.llm_model),
        "temperature": default.get("temperature"),
        "max_tokens": default.get("max_tokens"),
        "base_url": default.get("base_url", settings.llm_base_url),
    }

    if role:
        roles = data.get("roles") or {}
        override = roles.get(role) or {}
        if isinstance(override, str):
            # Shorthand: `coder: anthropic/claude-sonnet-4`
            override = {"model": override}
        for key, value in override.items():
            if key in merged:
                merged[key] = value

    return ModelConfig(
        model=merged["model"],
        temperature=merged["temperature"],
        max_tokens=merged["max_tokens"],
        base_url=merged["base_url"],
    )


class RoleResolver:
    """Maps role names (orchestrator, coder, reviewer) to model configs.

    Roles missing from the config resolve to the primary (default) model.
    """

    def __init__(self, data: dict | None = None) -> None:
        self._data = load_config() if data is None else data
        roles = self._data.get("roles") or {}
        self._roles: dict = roles if isinstance(roles, dict) else {}

    @property
    def primary_model(self) -> str:
        return get_model_config("", self._data).model

    def resolve(self, role: str) -> str:
        return self.model_config(role).model

    def model_config(self, role: str) -> ModelConfig:
        return get_model_config(role, self._data)

    def has_role(self, role: str) -> bool:
        return role in self._roles

    def available_roles(self) -> list[str]:
        return list(self._roles.keys())

    def to_dict(self) -> dict[str, str]:
        return {role: self.resolve(role) for role in self._roles}


def _as_list(value) -> list[str]:
    """YAML lets a single action be written as a bare scalar."""
    if not value:
        return []
    if isinstance(value, str):
        return [value]
    return [str(item) for item in value]


def approval_rules(data: dict | None = None) -> dict[str, list[str]]:
    """Tool -> gated actions, from the `approval` section or the defaults."""
    if data is None:
        data = load_config()
    configured = data.get("approval")
    if not isinstance(configured, dict):
        return dict(DEFAULT_APPROVAL)
    return {name: _as_list(actions) or ["*"] for name, actions in configured.items()}


def approval_keys(data: dict | None = None) -> dict[str, list[str]]:
    """Tool -> argument keys holding the action discriminator."""
    if data is None:
        data = load_config()
    configured = data.get("approval_keys")
    if not isinstance(configured, dict):
        return {}
    return {name: _as_list(keys) for name, keys in configured.items()}


def resolve_workspace(project_root: Path, data: dict | None = None) -> Path:
    """Resolve the sandboxed workspace directory and make sure it exists.

    `~` expands to the home directory, absolute paths are used as-is and
    relative paths are resolved against the project root.
    """
    if data is None:
        data = load_config()
    configured = data.get("workspace") or DEFAULT_WORKSPACE
    if not isinstance(configured, str):
        configured = DEFAULT_WORKSPACE

    path = Path(configured).expanduser()
    if not path.is_absolute():
        path = project_root / path
    path = path.resolve()

    path.mkdir(parents=True, exist_ok=True)
    gitkeep = path / ".gitkeep"
    if not gitkeep.exists():
        gitkeep.write_text("")
    return path
