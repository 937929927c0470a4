"""
Unit tests for config models and the JSON loader
"""

import json

import pytest
from pydantic import ValidationError

from aster.config import (
    AgentConfig,
    Config,
    ExecutionMode,
    ModelConfig,
    SandboxConfig,
    load_config,
    save_config,
)
from aster.config.loader import camel_to_snake, convert_keys, snake_to_camel


def test_model_config_rejects_blank_fields():
    with pytest.raises(ValidationError):
        ModelConfig(provider="  ", model="x")
    with pytest.raises(ValidationError):
        ModelConfig(provider="openrouter", model="")


def test_model_config_is_frozen():
    config = ModelConfig(provider="openrouter", model="anthropic/claude-sonnet-4.5")
    assert config.execution_mode == ExecutionMode.STREAMING
    with pytest.raises(ValidationError):
        config.model = "other"


def test_agent_config_defaults(tmp_path):
    config = AgentConfig(
        template_id="simple-assistant",
        model={"provider": "openrouter", "model": "anthropic/claude-sonnet-4.5"},
        sandbox={"work_dir": str(tmp_path)},
    )
    assert config.max_steps == 20
    assert config.event_buffer == 1024
    assert config.sandbox.kind == "local"
    assert config.agent_id is None


def test_agent_config_rejects_zero_max_steps(tmp_path):
    with pytest.raises(ValidationError):
        AgentConfig(
            template_id="t",
            model={"provider": "p", "model": "m"},
            sandbox={"work_dir": str(tmp_path)},
            max_steps=0,
        )


def test_key_conversion():
    assert camel_to_snake("apiKey") == "api_key"
    assert snake_to_camel("restrict_to_workspace") == "restrictToWorkspace"
    assert convert_keys({"model": {"apiKey": "k", "baseUrl": None}}) == {"model": {"api_key": "k", "base_url": None}}


def test_save_and_load_round_trip(tmp_path):
    path = tmp_path / "config.json"
    config = Config()
    config.model.api_key = "sk-or-test"
    config.agent.max_steps = 7

    save_config(config, path)
    raw = json.loads(path.read_text())
    assert raw["model"]["apiKey"] == "sk-or-test"
    assert raw["agent"]["maxSteps"] == 7

    loaded = load_config(path)
    assert loaded.model.api_key == "sk-or-test"
    assert loaded.agent.max_steps == 7


def test_load_corrupt_config_falls_back_to_defaults(tmp_path):
    path = tmp_path / "config.json"
    path.write_text("{not json")
    config = load_config(path)
    assert config.model.provider == "openrouter"


def test_env_overrides(monkeypatch):
    monkeypatch.setenv("ASTER_MODEL__API_KEY", "from-env")
    assert Config().model.api_key == "from-env"


def test_to_agent_config(tmp_path):
    config = Config()
    config.sandbox.work_dir = str(tmp_path / "ws")
    agent_config = config.to_agent_config(agent_id="agt-1")
    assert agent_config.agent_id == "agt-1"
    assert agent_config.template_id == "simple-assistant"
    assert agent_config.model.model == "anthropic/claude-sonnet-4.5"
    assert agent_config.sandbox.work_dir == tmp_path / "ws"


def test_sandbox_kind_is_normalized_and_not_blank(tmp_path):
    assert SandboxConfig(kind=" Docker ", work_dir=tmp_path).kind == "docker"
    with pytest.raises(ValidationError):
        SandboxConfig(kind="  ", work_dir=tmp_path)
