"""
Unit tests for ToolRegistry and Tool parameter validation
"""

import pytest

from aster.agent.tools import BashTool, ReadTool, ToolRegistry, WriteTool, register_builtin
from aster.errors import ToolNotFoundError, ToolRegistrationError

from conftest import EchoTool


def test_register_same_instance_is_idempotent():
    registry = ToolRegistry()
    tool = EchoTool()
    registry.register(tool)
    registry.register(tool)
    assert len(registry) == 1
    assert registry.get("Echo") is tool


def test_register_different_instance_same_name_rejected():
    registry = ToolRegistry()
    registry.register(EchoTool())
    with pytest.raises(ToolRegistrationError):
        registry.register(EchoTool())


def test_lookup_and_get():
    registry = register_builtin(ToolRegistry())
    assert isinstance(registry.lookup("Read"), ReadTool)
    assert registry.get("Nope") is None
    assert "Bash" in registry
    assert registry.has("Write")
    with pytest.raises(ToolNotFoundError):
        registry.lookup("Nope")
    with pytest.raises(LookupError):
        registry.lookup("Nope")


def test_describe_all_keeps_order_and_skips_unknown():
    registry = register_builtin(ToolRegistry())
    schemas = registry.describe_all(["Write", "Later", "Read"])
    assert [s["function"]["name"] for s in schemas] == ["Write", "Read"]
    assert schemas[0]["type"] == "function"
    assert schemas[0]["function"]["parameters"]["required"] == ["path", "content"]


def test_describe_all_without_names_lists_everything():
    registry = register_builtin(ToolRegistry())
    names = {s["function"]["name"] for s in registry.describe_all()}
    assert names == {"Read", "Write", "Edit", "Ls", "Bash"}


def test_unregister():
    registry = ToolRegistry()
    registry.register(EchoTool())
    registry.unregister("Echo")
    registry.unregister("Echo")
    assert registry.tool_names == []


def test_validate_params():
    write = WriteTool()
    assert write.validate_params({"path": "a.txt", "content": "x"}) == []
    assert "missing required content" in write.validate_params({"path": "a.txt"})
    assert write.validate_params({"path": 1, "content": "x"}) == ["path should be string"]
    assert write.validate_params("not a dict") == ["parameters should be object, got str"]


def test_validate_params_bounds_and_bool():
    bash = BashTool()
    assert bash.validate_params({"command": "ls", "timeout": 0}) == ["timeout must be >= 1"]
    assert bash.validate_params({"command": "ls", "timeout": True}) == ["timeout should be integer"]
