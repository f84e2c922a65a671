"""Tests for coqui.yaml loading, ModelConfig merging and role resolution."""

from __future__ import annotations

from unittest.mock import patch

import pytest
import yaml

from coqui.config import (
    DEFAULT_APPROVAL,
    ModelConfig,
    RoleResolver,
    approval_keys,
    approval_rules,
    get_model_config,
    load_config,
    resolve_workspace,
)


@pytest.fixture(autouse=True)
def _reset_cache():
    """Reset the module-level YAML cache before each test."""
    import coqui.config as cfg
    cfg._config_cache = None
    yield
    cfg._config_cache = None


# ---------------------------------------------------------------------------
# ModelConfig dataclass
# ---------------------------------------------------------------------------

def test_model_config_defaults():
    mc = ModelConfig()
    assert mc.model == ""
    assert mc.temperature is None
    assert mc.max_tokens is None
    assert mc.base_url == ""


# ---------------------------------------------------------------------------
# load_config
# ---------------------------------------------------------------------------

def test_load_config_missing_file(tmp_path):
    with patch.dict("os.environ", {"COQUI_CONFIG_PATH": str(tmp_path / "nope.yaml")}):
        result = load_config()
    assert result == {}


def test_load_config_valid_file(tmp_path):
    yaml_file = tmp_path / "coqui.yaml"
    yaml_file.write_text(
        "default:\n"
        "  model: openai/gpt-4.1-mini\n"
        "  temperature: 0.3\n"
    )
    with patch.dict("os.environ", {"COQUI_CONFIG_PATH": str(yaml_file)}):
        result = load_config()
    assert result["default"]["model"] == "openai/gpt-4.1-mini"
    assert result["default"]["temperature"] == 0.3


def test_load_config_empty_file(tmp_path):
    yaml_file = tmp_path / "coqui.yaml"
    yaml_file.write_text("")
    with patch.dict("os.environ", {"COQUI_CONFIG_PATH": str(yaml_file)}):
        result = load_config()
    assert result == {}


def test_load_config_caches_result(tmp_path):
    """Second call returns cached dict without re-reading."""
    yaml_file = tmp_path / "coqui.yaml"
    yaml_file.write_text("default:\n  model: m1\n")
    with patch.dict("os.environ", {"COQUI_CONFIG_PATH": str(yaml_file)}):
        first = load_config()
        yaml_file.write_text("default:\n  model: m2\n")
        second = load_config()
    assert first is second
    assert first["default"]["model"] == "m1"


def test_load_config_explicit_path_not_cached(tmp_path):
    yaml_file = tmp_path / "other.yaml"
    yaml_file.write_text("default:\n  model: m1\n")
    first = load_config(yaml_file)
    yaml_file.write_text("default:\n  model: m2\n")
    second = load_config(yaml_file)
    assert first["default"]["model"] == "m1"
    assert second["default"]["model"] == "m2"


# ---------------------------------------------------------------------------
# get_model_config
# ---------------------------------------------------------------------------

YAML_WITH_ROLES = (
    "default:\n"
    "  model: openai/gpt-4.1-mini\n"
    "  temperature: 0.2\n"
    "  base_url: https://openrouter.ai/api/v1\n"
    "roles:\n"
    "  coder:\n"
    "    model: anthropic/claude-sonnet-4\n"
    "    max_tokens: 16000\n"
    "  reviewer:\n"
    "    model: openai/gpt-4.1\n"
    "    temperature: 0.1\n"
    "  orchestrator: openai/gpt-4o\n"
)


def test_get_model_config_no_yaml_falls_back_to_settings(tmp_path):
    with patch.dict("os.environ", {"COQUI_CONFIG_PATH": str(tmp_path / "missing.yaml")}):
        mc = get_model_config("coder")
    assert mc.model != ""
    assert mc.temperature is None
    assert mc.max_tokens is None


def test_role_override_merges_with_default(tmp_path):
    (tmp_path / "c.yaml").write_text(YAML_WITH_ROLES)
    with patch.dict("os.environ", {"COQUI_CONFIG_PATH": str(tmp_path / "c.yaml")}):
        mc = get_model_config("reviewer")
    assert mc.model == "openai/gpt-4.1"
    assert mc.temperature == 0.1
    assert mc.base_url == "https://openrouter.ai/api/v1"
    assert mc.max_tokens is None


def test_role_override_partial(tmp_path):
    (tmp_path / "c.yaml").write_text(YAML_WITH_ROLES)
    with patch.dict("os.environ", {"COQUI_CONFIG_PATH": str(tmp_path / "c.yaml")}):
        mc = get_model_config("coder")
    assert mc.model == "anthropic/claude-sonnet-4"
    assert mc.max_tokens == 16000
    assert mc.temperature == 0.2


def test_role_string_shorthand(tmp_path):
    (tmp_path / "c.yaml").write_text(YAML_WITH_ROLES)
    with patch.dict("os.environ", {"COQUI_CONFIG_PATH": str(tmp_path / "c.yaml")}):
        mc = get_model_config("orchestrator")
    assert mc.model == "openai/gpt-4o"
    assert mc.temperature == 0.2


def test_unknown_role_gets_default(tmp_path):
    (tmp_path / "c.yaml").write_text(YAML_WITH_ROLES)
    with patch.dict("os.environ", {"COQUI_CONFIG_PATH": str(tmp_path / "c.yaml")}):
        mc = get_model_config("translator")
    assert mc.model == "openai/gpt-4.1-mini"


def test_null_temperature_in_yaml():
    mc = get_model_config("", {"default": {"model": "m", "temperature": None}})
    assert mc.temperature is None


def test_empty_default_section():
    mc = get_model_config("", {"default": None, "roles": {"coder": "x"}})
    assert mc.model != ""


# ---------------------------------------------------------------------------
# RoleResolver
# ---------------------------------------------------------------------------

class TestRoleResolver:
    def _resolver(self):
        return RoleResolver(yaml.safe_load(YAML_WITH_ROLES))

    def test_resolve_mapped_role(self):
        assert self._resolver().resolve("coder") == "anthropic/claude-sonnet-4"

    def test_resolve_unmapped_role_falls_back_to_primary(self):
        resolver = self._resolver()
        assert resolver.resolve("translator") == resolver.primary_model
        assert resolver.primary_model == "openai/gpt-4.1-mini"

    def test_has_role(self):
        resolver = self._resolver()
        assert resolver.has_role("reviewer")
        assert not resolver.has_role("translator")

    def test_available_roles(self):
        assert set(self._resolver().available_roles()) == {"coder", "reviewer", "orchestrator"}

    def test_to_dict(self):
        mapping = self._resolver().to_dict()
        assert mapping["reviewer"] == "openai/gpt-4.1"
        assert mapping["orchestrator"] == "openai/gpt-4o"

    def test_no_roles_section(self):
        resolver = RoleResolver({"default": {"model": "m"}})
        assert resolver.available_roles() == []
        assert resolver.resolve("coder") == "m"


# ---------------------------------------------------------------------------
# approval rules and workspace
# ---------------------------------------------------------------------------

def test_approval_rules_default():
    assert approval_rules({}) == DEFAULT_APPROVAL


def test_approval_rules_configured():
    rules = approval_rules({"approval": {"pip": ["install"], "credentials": None}})
    assert rules == {"pip": ["install"], "credentials": ["*"]}


def test_approval_rules_scalar_action():
    data = yaml.safe_load("approval:\n  pip: install\n  exec: '*'\n")
    assert approval_rules(data) == {"pip": ["install"], "exec": ["*"]}


def test_approval_keys():
    assert approval_keys({}) == {}
    assert approval_keys({"approval_keys": {"pip": ["op"]}}) == {"pip": ["op"]}
    assert approval_keys({"approval_keys": {"pip": "op"}}) == {"pip": ["op"]}


def test_resolve_workspace_default(tmp_path):
    ws = resolve_workspace(tmp_path, {})
    assert ws == (tmp_path / ".workspace").resolve()
    assert ws.is_dir()
    assert (ws / ".gitkeep").exists()


def test_resolve_workspace_relative(tmp_path):
    ws = resolve_workspace(tmp_path, {"workspace": "data/ws"})
    assert ws == (tmp_path / "data" / "ws").resolve()
    assert ws.is_dir()


def test_resolve_workspace_absolute(tmp_path):
    target = tmp_path / "elsewhere"
    ws = resolve_workspace(tmp_path / "project", {"workspace": str(target)})
    assert ws == target.resolve()


def test_resolve_workspace_home(tmp_path, monkeypatch):
    monkeypatch.setenv("HOME", str(tmp_path))
    ws = resolve_workspace(tmp_path / "project", {"workspace": "~/coqui-ws"})
    assert ws == (tmp_path / "coqui-ws").resolve()
