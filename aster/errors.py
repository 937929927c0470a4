"""
异常类型定义模块 - aster 全部业务异常的统一出口。

异常分层：
    AsterError
    ├── ConfigError            配置错误（模板未注册、模型/沙箱配置非法），创建 Agent 时立即失败
    │   └── TemplateError      模板注册冲突
    ├── AgentBusyError         同一 Agent 上并发调用 chat（串行策略：第二个调用立即失败）
    ├── AgentClosedError       Agent 已关闭后仍被调用
    ├── ProviderError          模型调用失败（网络、鉴权、响应格式错误）
    ├── ToolRegistrationError  工具重名注册
    ├── ToolNotFoundError      按名称查找不到工具
    ├── ToolExecutionError     工具执行失败（由沙箱捕获并转为 ToolCall 失败状态）
    ├── SandboxError
    │   ├── SandboxClosedError     沙箱已销毁后仍被调用
    │   └── SandboxViolationError  工具试图越过沙箱边界
    └── StoreError             持久化读写失败

传播策略：
    单个工具调用、单次模型往返内的错误会被状态机吸收为数据（ToolCall 失败、
    turn-done 的 reason=error），只有配置错误和取消会直接抛给 chat() 的调用方。
"""


class AsterError(Exception):
    """aster 所有异常的基类。"""


class ConfigError(AsterError):
    """Agent 配置不合法，创建阶段立即失败。"""


class TemplateError(ConfigError):
    """模板注册冲突（同一 id 重复注册）。"""


class AgentBusyError(AsterError):
    """Agent 正在处理另一轮对话。"""


class AgentClosedError(AsterError):
    """Agent 已关闭。"""


class ProviderError(AsterError):
    """LLM 服务调用失败。"""


class ToolRegistrationError(AsterError):
    """同名工具已注册为另一个实例。"""


class ToolNotFoundError(AsterError, LookupError):
    """工具未注册。"""


class ToolExecutionError(AsterError):
    """工具执行失败，message 会原样回传给模型。"""


class SandboxError(AsterError):
    """沙箱相关错误的基类。"""


class SandboxClosedError(SandboxError):
    """沙箱已销毁（session closed）。"""


class SandboxViolationError(SandboxError, PermissionError):
    """访问路径超出沙箱工作目录。"""


class StoreError(AsterError):
    """持久化存储读写失败。"""
