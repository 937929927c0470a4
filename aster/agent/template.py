"""
Agent 模板模块。

模板描述"一类 Agent"：默认模型、系统提示词、可用工具名称集合。
模板注册后不可变，TemplateRegistry 保证 id 唯一，可以被多个 Agent 共享。

模板里的工具名称只是声明：工具是否真的存在要到对话中需要它时才检查，
因此模板可以引用稍后才注册的工具。
"""

from dataclasses import dataclass, field

from aster.errors import TemplateError


@dataclass(frozen=True)
class AgentTemplate:
    """
    Agent 模板。

    属性:
        id: 模板 ID（如 "simple-assistant"）
        model: 默认模型标识
        system_prompt: 系统提示词，每次调用模型时置于消息列表最前面
        tools: 声明的工具名称，按顺序提供给模型
    """

    id: str
    model: str = ""
    system_prompt: str = ""
    tools: tuple[str, ...] = field(default_factory=tuple)

    def __post_init__(self):
        if not self.id or not self.id.strip():
            raise TemplateError("Template id must not be empty")
        # 允许传入 list，统一转换为 tuple 保持不可变
        object.__setattr__(self, "tools", tuple(self.tools))


class TemplateRegistry:
    """模板注册表：模板 ID → AgentTemplate。"""

    def __init__(self):
        self._templates: dict[str, AgentTemplate] = {}

    def register(self, template: AgentTemplate) -> None:
        """
        注册模板。

        异常:
            TemplateError: 已存在同 id 的模板
        """
        if template.id in self._templates:
            raise TemplateError(f"Template '{template.id}' is already registered")
        self._templates[template.id] = template

    def get(self, template_id: str) -> AgentTemplate | None:
        return self._templates.get(template_id)

    def list(self) -> list[str]:
        return list(self._templates)

    def __contains__(self, template_id: str) -> bool:
        return template_id in self._templates

    def __len__(self) -> int:
        return len(self._templates)
