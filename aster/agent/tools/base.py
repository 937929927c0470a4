"""
工具基类模块 (agent/tools/base.py)

模块职责：
    定义所有 Agent 工具的抽象基类 Tool。
    每个工具必须实现4个核心接口：name、description、parameters、execute。
    基类还提供了参数校验（validate_params）和 OpenAI Function Calling 格式转换（to_schema）的通用能力。

在架构中的位置：
    Tool 是工具系统的最底层抽象。ToolRegistry 持有 Tool 实例，
    状态机按名称查到 Tool 后交给 Sandbox.invoke() 执行；
    工具本身不直接碰文件系统或进程，所有副作用都通过传入的沙箱完成，
    这样沙箱就能统一限制工具的影响范围。

设计模式对比（Java 视角）：
    - Tool 相当于一个抽象接口
    - validate_params() 是模板方法，提供通用的 JSON Schema 校验逻辑
    - execute(sandbox, ...) 类似于把 SecurityManager 作为参数传入的业务方法
"""

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from aster.sandbox.base import Sandbox


class Tool(ABC):
    """
    Agent 工具的抽象基类。

    所有工具必须实现：
      - name: 工具名称，模型在 function call 中使用此名称来调用工具
      - description: 工具功能描述
      - parameters: JSON Schema 格式的参数定义
      - execute(): 在沙箱中执行工具逻辑的异步方法

    execute() 成功时返回文本结果；失败时抛出异常（通常是 ToolExecutionError），
    由沙箱捕获并记录为 ToolCall 的失败状态。
    """

    # JSON Schema 类型 -> Python 类型的映射表，用于参数校验
    _TYPE_MAP = {
        "string": str,
        "integer": int,
        "number": (int, float),
        "boolean": bool,
        "array": list,
        "object": dict,
    }

    @property
    @abstractmethod
    def name(self) -> str:
        pass

    @property
    @abstractmethod
    def description(self) -> str:
        pass

    @property
    @abstractmethod
    def parameters(self) -> dict[str, Any]:
        pass

    @abstractmethod
    async def execute(self, sandbox: "Sandbox", **kwargs: Any) -> str:
        """
        在沙箱中执行工具。

        参数:
            sandbox: 当前 Agent 的沙箱会话，工具的所有副作用都必须经由它完成
            **kwargs: 经过校验的工具参数

        返回:
            str: 工具执行结果文本，会回传给模型
        """
        pass

    def validate_params(self, params: dict[str, Any]) -> list[str]:
        """
        根据 JSON Schema 校验工具参数。

        返回:
            list[str]: 错误信息列表，空列表表示校验通过。
        """
        if not isinstance(params, dict):
            return [f"parameters should be object, got {type(params).__name__}"]
        schema = self.parameters or {}
        if schema.get("type", "object") != "object":
            raise ValueError(f"Schema must be object type, got {schema.get('type')!r}")
        return self._validate(params, {**schema, "type": "object"}, "")

    def _validate(self, val: Any, schema: dict[str, Any], path: str) -> list[str]:
        t, label = schema.get("type"), path or "parameter"
        # bool 是 int 的子类，integer/number 需要单独排除
        if t in ("integer", "number") and isinstance(val, bool):
            return [f"{label} should be {t}"]
        if t in self._TYPE_MAP and not isinstance(val, self._TYPE_MAP[t]):
            return [f"{label} should be {t}"]

        errors = []
        if "enum" in schema and val not in schema["enum"]:
            errors.append(f"{label} must be one of {schema['enum']}")
        if t in ("integer", "number"):
            if "minimum" in schema and val < schema["minimum"]:
                errors.append(f"{label} must be >= {schema['minimum']}")
            if "maximum" in schema and val > schema["maximum"]:
                errors.append(f"{label} must be <= {schema['maximum']}")
        if t == "string":
            if "minLength" in schema and len(val) < schema["minLength"]:
                errors.append(f"{label} must be at least {schema['minLength']} chars")
            if "maxLength" in schema and len(val) > schema["maxLength"]:
                errors.append(f"{label} must be at most {schema['maxLength']} chars")
        if t == "object":
            props = schema.get("properties", {})
            for k in schema.get("required", []):
                if k not in val:
                    errors.append(f"missing required {path + '.' + k if path else k}")
            for k, v in val.items():
                if k in props:
                    errors.extend(self._validate(v, props[k], path + '.' + k if path else k))
        if t == "array" and "items" in schema:
            for i, item in enumerate(val):
                errors.extend(self._validate(item, schema["items"], f"{path}[{i}]" if path else f"[{i}]"))
        return errors

    def to_schema(self) -> dict[str, Any]:
        """
        将工具转换为 OpenAI Function Calling 格式的描述。

        返回值示例:
            {"type": "function", "function": {"name": "Read", "description": "...", "parameters": {...}}}
        """
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            }
        }

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.name!r}>"
