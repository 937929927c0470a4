"""
Agent 会话状态机模块 - 整个 aster 的核心执行循环。

AgentLoop 负责一轮对话（turn）的完整流程：

    1. 把用户消息追加到对话历史，状态切换为 running
    2. 调用模型（携带完整历史与模板声明的工具定义）
    3. 模型请求工具调用 → 逐个在沙箱中执行，结果按请求顺序追加到历史 → 回到第 2 步
       （期间状态经过 awaiting-tool-results 再回到 running）
    4. 模型返回文本 → 文本块开始 / 增量 / 结束事件，然后发布 turn-done，状态进入 done
    5. 每次模型往返步数 +1；达到 max_steps 时以 reason=max-steps 结束本轮，而不是失败

异常处理：
    - 未注册的工具：tool-error 事件 + "Error: Tool 'X' not found" 回传给模型，本轮继续
    - 工具执行失败：由沙箱转换为 failed 的 ToolCall，同样回传给模型
    - ProviderError：Monitor error（phase=provider）+ turn-done(reason=error)，Agent 仍可继续使用
    - 其他异常（适配器抛出的 TimeoutError 等）：转换为 ProviderError 或按当前阶段上报，
      同样以 turn-done(reason=error) 结束，状态回到 idle
    - 取消（asyncio.CancelledError）：历史回滚到本轮开始前，Monitor error（severity=info），
      然后把 CancelledError 继续抛给调用方

【Java 开发者类比】
- AgentLoop 类似于一个有限状态机（Spring StateMachine），run_turn() 是一次完整的状态迁移序列
- 事件发布类似于 ApplicationEventPublisher.publishEvent()，但永不阻塞
"""

import asyncio
import json
from dataclasses import dataclass
from typing import Any

from loguru import logger

from aster.agent.template import AgentTemplate
from aster.agent.tools.base import Tool
from aster.agent.tools.registry import ToolRegistry
from aster.bus import (
    EventBus,
    MonitorBreakpointChangedEvent,
    MonitorErrorEvent,
    MonitorStateChangedEvent,
    MonitorTokenUsageEvent,
    ProgressDoneEvent,
    ProgressTextChunkEndEvent,
    ProgressTextChunkEvent,
    ProgressTextChunkStartEvent,
    ProgressToolEndEvent,
    ProgressToolErrorEvent,
    ProgressToolStartEvent,
)
from aster.config.schema import AgentConfig
from aster.errors import ProviderError, SandboxError, ToolNotFoundError
from aster.providers.base import (
    LLMProvider,
    ProviderResult,
    StreamReply,
    TextReply,
    ToolCallRequest,
    ToolCallsReply,
)
from aster.sandbox.base import Sandbox
from aster.types import (
    AgentState,
    BreakpointState,
    DoneReason,
    ToolCall,
    ToolCallState,
    new_call_id,
)
from aster.utils.helpers import preview


@dataclass(frozen=True)
class AgentStatus:
    """
    Agent 状态快照（只读）。

    属性:
        agent_id: Agent ID
        state: 当前状态
        step_count: 累计模型往返次数
        cursor: 对话历史中的消息条数
        breakpoint: 当前断点位置
        template_id: 模板 ID
    """

    agent_id: str
    state: AgentState
    step_count: int
    cursor: int
    breakpoint: BreakpointState
    template_id: str


@dataclass(frozen=True)
class ChatResult:
    """
    一轮对话的结果。

    属性:
        text: 助手最终回复文本（出错时为空）
        status: "ok" 或 "error"
        reason: 本轮结束原因
        steps: 本轮的模型往返次数
        error: 出错时的错误信息
    """

    text: str
    status: str
    reason: DoneReason
    steps: int
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == "ok"


class AgentLoop:
    """
    会话状态机。

    一个 AgentLoop 独占一段对话历史和一个沙箱会话；同一时间只运行一轮对话，
    串行化由外层的 Agent 保证。

    参数:
        agent_id: Agent ID（用于日志和状态快照）
        config: Agent 配置（max_steps、tool_timeout、执行模式等）
        template: Agent 模板（系统提示词、声明的工具）
        provider: 模型适配器
        tools: 工具注册表（可与其他 Agent 共享）
        sandbox: 沙箱会话
        bus: 事件总线
        messages: 恢复的历史消息（可选）
        step_count: 恢复的累计步数（可选）
    """

    def __init__(
        self,
        agent_id: str,
        config: AgentConfig,
        template: AgentTemplate,
        provider: LLMProvider,
        tools: ToolRegistry,
        sandbox: Sandbox,
        bus: EventBus,
        messages: list[dict[str, Any]] | None = None,
        step_count: int = 0,
    ):
        self.agent_id = agent_id
        self.config = config
        self.template = template
        self.provider = provider
        self.tools = tools
        self.sandbox = sandbox
        self.bus = bus
        self.messages: list[dict[str, Any]] = list(messages or [])
        self.step_count = step_count
        self.state = AgentState.IDLE
        self.breakpoint = BreakpointState.READY
        self._phase = "provider"
        self._log = logger.bind(agent_id=agent_id)
        # 已使用过的工具调用 ID（含恢复的历史），保证 Agent 生命周期内唯一
        self._seen_call_ids: set[str] = {
            tc.get("id")
            for m in self.messages
            for tc in (m.get("tool_calls") or [])
            if tc.get("id")
        }

    def status(self) -> AgentStatus:
        return AgentStatus(
            agent_id=self.agent_id,
            state=self.state,
            step_count=self.step_count,
            cursor=len(self.messages),
            breakpoint=self.breakpoint,
            template_id=self.template.id,
        )

    # ------------------------------------------------------------------
    # 状态与事件
    # ------------------------------------------------------------------

    def _set_state(self, state: AgentState) -> None:
        if state == self.state:
            return
        self._log.debug(f"State {self.state.value} -> {state.value}")
        self.state = state
        self.bus.publish(MonitorStateChangedEvent(state=state))

    def _set_breakpoint(self, current: BreakpointState) -> None:
        previous = self.breakpoint
        if current == previous:
            return
        self.breakpoint = current
        self.bus.publish(MonitorBreakpointChangedEvent(previous=previous, current=current))

    def _emit_usage(self, usage: dict[str, int]) -> None:
        if not usage:
            return
        self.bus.publish(MonitorTokenUsageEvent(
            input_tokens=usage.get("prompt_tokens", 0),
            output_tokens=usage.get("completion_tokens", 0),
            total_tokens=usage.get("total_tokens", 0),
        ))

    def _emit_text(self, step: int, text: str) -> None:
        """非流式文本：开始 → 整段文本作为一个增量 → 结束。"""
        self.bus.publish(ProgressTextChunkStartEvent(step=step))
        if text:
            self.bus.publish(ProgressTextChunkEvent(step=step, delta=text))
        self.bus.publish(ProgressTextChunkEndEvent(step=step, text=text))

    def _finish(self, step: int, reason: DoneReason) -> None:
        """发布 turn-done，并让 Agent 回到 idle。"""
        self.bus.publish(ProgressDoneEvent(step=step, reason=reason))
        self._set_state(AgentState.DONE if reason != DoneReason.ERROR else AgentState.ERROR)
        self._set_breakpoint(BreakpointState.READY)
        self._set_state(AgentState.IDLE)

    # ------------------------------------------------------------------
    # 历史消息
    # ------------------------------------------------------------------

    def _build_messages(self) -> list[dict[str, Any]]:
        """系统提示词在调用时置于最前面，不写入历史。"""
        if not self.template.system_prompt:
            return list(self.messages)
        return [{"role": "system", "content": self.template.system_prompt}, *self.messages]

    def _add_assistant_message(self, content: str | None, calls: list[ToolCall] | None = None) -> None:
        msg: dict[str, Any] = {"role": "assistant", "content": content or ""}
        if calls:
            msg["tool_calls"] = [
                {
                    "id": call.id,
                    "type": "function",
                    "function": {
                        "name": call.name,
                        "arguments": json.dumps(call.arguments, ensure_ascii=False),
                    },
                }
                for call in calls
            ]
        self.messages.append(msg)

    def _add_tool_result(self, call: ToolCall) -> None:
        self.messages.append({
            "role": "tool",
            "tool_call_id": call.id,
            "name": call.name,
            "content": call.output,
        })

    def _assign_call_id(self, provider_id: str | None) -> str:
        """保留服务商给出的 ID（未出现过时），否则生成新的 ID。"""
        call_id = provider_id if provider_id and provider_id not in self._seen_call_ids else new_call_id()
        while call_id in self._seen_call_ids:
            call_id = new_call_id()
        self._seen_call_ids.add(call_id)
        return call_id

    # ------------------------------------------------------------------
    # 一轮对话
    # ------------------------------------------------------------------

    async def run_turn(self, text: str) -> ChatResult:
        """
        运行一轮对话，直到模型给出最终文本、达到 max_steps 或出错。

        异常:
            asyncio.CancelledError: 调用方取消（历史已回滚到本轮开始前）
        """
        turn_start = len(self.messages)
        steps = 0
        self._log.info(f"Turn started: {preview(text)}")

        self.messages.append({"role": "user", "content": text})
        self._set_state(AgentState.RUNNING)

        try:
            while True:
                if steps >= self.config.max_steps:
                    note = f"Reached {self.config.max_steps} steps without completion."
                    self._log.warning(f"Turn stopped: {note}")
                    self._add_assistant_message(note)
                    self._emit_text(steps, note)
                    self._finish(steps, DoneReason.MAX_STEPS)
                    return ChatResult(text=note, status="ok", reason=DoneReason.MAX_STEPS, steps=steps)

                self._phase = "provider"
                self._set_breakpoint(BreakpointState.PRE_MODEL)
                result = await self._call_provider()
                steps += 1
                self.step_count += 1

                if isinstance(result, StreamReply):
                    content = await self._consume_stream(steps, result)
                    if result.tool_calls:
                        await self._run_tools(result.tool_calls, content)
                        continue
                    self._add_assistant_message(content)
                    self._finish(steps, DoneReason.STOP)
                    self._log.info(f"Turn finished after {steps} steps: {preview(content)}")
                    return ChatResult(text=content, status="ok", reason=DoneReason.STOP, steps=steps)

                self._emit_usage(result.usage)

                if isinstance(result, ToolCallsReply):
                    if result.text:
                        self._emit_text(steps, result.text)
                    await self._run_tools(result.tool_calls, result.text)
                    continue

                if isinstance(result, TextReply):
                    self._emit_text(steps, result.text)
                    self._add_assistant_message(result.text)
                    self._finish(steps, DoneReason.STOP)
                    self._log.info(f"Turn finished after {steps} steps: {preview(result.text)}")
                    return ChatResult(text=result.text, status="ok", reason=DoneReason.STOP, steps=steps)

                raise ProviderError(f"Unexpected provider result: {type(result).__name__}")

        except asyncio.CancelledError:
            self._log.info(f"Turn cancelled during {self._phase}, rolling back {len(self.messages) - turn_start} messages")
            del self.messages[turn_start:]
            self.bus.publish(MonitorErrorEvent(severity="info", phase=self._phase, message="Turn cancelled"))
            self._set_state(AgentState.ERROR)
            self._set_breakpoint(BreakpointState.READY)
            self._set_state(AgentState.IDLE)
            raise
        except ProviderError as e:
            self._log.error(f"Provider error after {steps} steps: {e}")
            self.bus.publish(MonitorErrorEvent(severity="error", phase="provider", message=str(e)))
            self._finish(steps, DoneReason.ERROR)
            return ChatResult(text="", status="error", reason=DoneReason.ERROR, steps=steps, error=str(e))
        except SandboxError as e:
            self._log.error(f"Sandbox error after {steps} steps: {e}")
            self._fail_pending_tools(turn_start, str(e))
            self.bus.publish(MonitorErrorEvent(severity="error", phase="sandbox", message=str(e)))
            self._finish(steps, DoneReason.ERROR)
            return ChatResult(text="", status="error", reason=DoneReason.ERROR, steps=steps, error=str(e))
        except Exception as e:
            self._log.exception(f"Unexpected error during {self._phase} after {steps} steps")
            self._fail_pending_tools(turn_start, str(e))
            self.bus.publish(MonitorErrorEvent(severity="error", phase=self._phase, message=str(e)))
            self._finish(steps, DoneReason.ERROR)
            return ChatResult(text="", status="error", reason=DoneReason.ERROR, steps=steps, error=str(e))

    async def _call_provider(self) -> ProviderResult:
        """调用模型；适配器抛出的非 ProviderError 异常（如 TimeoutError）统一转换为 ProviderError。"""
        try:
            return await self.provider.complete(
                self._build_messages(),
                tools=self.tools.describe_all(self.template.tools) or None,
                mode=self.config.model.execution_mode,
            )
        except ProviderError:
            raise
        except Exception as e:
            raise ProviderError(f"Error calling LLM: {type(e).__name__}: {e}") from e

    def _fail_pending_tools(self, turn_start: int, reason: str) -> None:
        """出错中断时，为本轮还没有结果的工具调用补上错误结果，保证历史仍可回放给模型。"""
        answered = {m.get("tool_call_id") for m in self.messages[turn_start:] if m["role"] == "tool"}
        for msg in list(self.messages[turn_start:]):
            for tc in msg.get("tool_calls") or []:
                if tc["id"] not in answered:
                    self.messages.append({
                        "role": "tool",
                        "tool_call_id": tc["id"],
                        "name": tc["function"]["name"],
                        "content": f"Error: {reason}",
                    })

    async def _consume_stream(self, step: int, reply: StreamReply) -> str:
        """逐个转发流式增量；流中途失败时部分文本不写入历史（由 ProviderError 处理）。"""
        self._phase = "stream"
        self._set_breakpoint(BreakpointState.STREAMING_MODEL)
        self.bus.publish(ProgressTextChunkStartEvent(step=step))
        try:
            async for delta in reply:
                self.bus.publish(ProgressTextChunkEvent(step=step, delta=delta))
        except ProviderError:
            raise
        except Exception as e:
            raise ProviderError(f"Error reading LLM stream: {e}") from e
        finally:
            await reply.aclose()
        self.bus.publish(ProgressTextChunkEndEvent(step=step, text=reply.text))
        self._emit_usage(reply.usage)
        return reply.text

    async def _run_tools(self, requests: list[ToolCallRequest], content: str | None) -> None:
        """按请求顺序逐个执行工具调用，每个调用恰好产生一条 tool 结果消息。"""
        calls = [
            ToolCall(id=self._assign_call_id(req.id), name=req.name, arguments=req.arguments)
            for req in requests
        ]
        self._set_breakpoint(BreakpointState.TOOL_PENDING)
        self._add_assistant_message(content, calls)
        self._set_state(AgentState.AWAITING_TOOL_RESULTS)
        self._phase = "tool"

        for call in calls:
            self._set_breakpoint(BreakpointState.PRE_TOOL)
            running = call.start()
            self.bus.publish(ProgressToolStartEvent(call=running))
            args_str = json.dumps(call.arguments, ensure_ascii=False)
            self._log.info(f"Tool call: {call.name}({args_str[:200]})")

            try:
                tool = self._resolve_tool(call.name)
            except ToolNotFoundError as e:
                finished = running.fail(str(e))
            else:
                self._set_breakpoint(BreakpointState.TOOL_EXECUTING)
                finished = await self.sandbox.invoke(tool, running, timeout=self.config.tool_timeout)

            if finished.state == ToolCallState.SUCCEEDED:
                self.bus.publish(ProgressToolEndEvent(call=finished))
            else:
                self._log.warning(f"Tool {call.name} ({call.id}) failed: {preview(finished.error)}")
                self.bus.publish(ProgressToolErrorEvent(call=finished, error=finished.error or ""))

            self._set_breakpoint(BreakpointState.POST_TOOL)
            self._add_tool_result(finished)

        self._set_state(AgentState.RUNNING)

    def _resolve_tool(self, name: str) -> Tool:
        """只允许调用模板声明过的工具。"""
        if name not in self.template.tools:
            raise ToolNotFoundError(f"Tool '{name}' not found")
        return self.tools.lookup(name)
