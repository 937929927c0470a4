"""
aster - Agent 编排核心

模块概述：
    本文件是 aster 包的入口文件（__init__.py），定义了包的元信息。
    aster 负责驱动与大语言模型的多轮对话：模型可以在隔离的沙箱中调用工具，
    执行过程中的进度/监控事件通过事件总线实时推送给任意多个订阅者。

    整个框架的核心组件包括：
    - 事件总线（Event Bus）：按通道分发 Progress / Monitor 事件
    - 工具注册表（Tool Registry）：工具名称 → 工具描述与调用契约
    - 沙箱会话（Sandbox）：工具执行的隔离环境（工作目录限制、进程管理）
    - 模型适配器（Provider）：屏蔽不同 LLM 服务商的差异
    - 会话状态机（AgentLoop）：用户消息 → 模型调用 ↔ 工具执行 → 最终回复
    - 状态/存储桥（Store）：状态快照与对话历史的持久化
"""

# 版本号，遵循语义化版本规范（主版本.次版本.修订号）
__version__ = "0.1.0"

# 项目 logo，用于 CLI 输出
__logo__ = "✳"
