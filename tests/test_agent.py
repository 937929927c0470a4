"""
Tests for create_agent / Agent / AgentLoop driven by a scripted provider
"""

import asyncio
import json

import pytest

from aster.agent import AgentTemplate, TemplateRegistry, create_agent
from aster.bus import (
    Channel,
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
from aster.config.schema import ExecutionMode
from aster.errors import (
    AgentBusyError,
    AgentClosedError,
    ConfigError,
    ProviderError,
    StoreError,
    TemplateError,
)
from aster.providers.base import StreamReply, TextReply, ToolCallRequest
from aster.types import AgentState, BreakpointState, DoneReason, ToolCallState

from conftest import stream_reply, tool_calls


def _progress(sub):
    return [env.event for env in sub.drain() if env.channel == Channel.PROGRESS]


def _tool_messages(agent):
    return [m for m in agent.messages if m["role"] == "tool"]


# ---------------------------------------------------------------------------
# creation
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_create_agent_unknown_template(deps, make_config):
    with pytest.raises(ConfigError, match="not registered"):
        await create_agent(make_config(template_id="nope"), deps)


@pytest.mark.asyncio
async def test_create_agent_invalid_mapping(deps, work_dir):
    with pytest.raises(ConfigError):
        await create_agent(
            {"template_id": "echo-assistant", "model": {"provider": "", "model": "m"}, "sandbox": {"work_dir": str(work_dir)}},
            deps,
        )


@pytest.mark.asyncio
async def test_create_agent_tears_down_sandbox_on_failure(deps, make_config, monkeypatch):
    created = []
    original = deps.sandbox_factory.create

    async def tracking_create(config):
        sandbox = await original(config)
        created.append(sandbox)
        return sandbox

    async def broken_load(agent_id):
        raise StoreError("disk gone")

    monkeypatch.setattr(deps.sandbox_factory, "create", tracking_create)
    monkeypatch.setattr(deps.store, "load", broken_load)

    with pytest.raises(StoreError):
        await create_agent(make_config(agent_id="agt-x"), deps)
    assert created and created[0].closed


def test_template_registry_rejects_duplicates():
    templates = TemplateRegistry()
    templates.register(AgentTemplate(id="a", tools=["Read"]))
    with pytest.raises(TemplateError):
        templates.register(AgentTemplate(id="a"))
    assert templates.get("a").tools == ("Read",)
    assert templates.get("b") is None
    assert templates.list() == ["a"]


# ---------------------------------------------------------------------------
# turns
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_text_turn_events_and_status(deps, provider, make_config):
    provider.script(TextReply(text="hello there", usage={"prompt_tokens": 4, "completion_tokens": 2, "total_tokens": 6}))
    agent = await create_agent(make_config(), deps)
    sub = agent.subscribe()

    result = await agent.chat("hi")

    assert result.ok and result.text == "hello there"
    assert result.reason == DoneReason.STOP and result.steps == 1

    events = [env.event for env in sub.drain()]
    progress = [e for e in events if e.channel == Channel.PROGRESS]
    assert [type(e) for e in progress] == [
        ProgressTextChunkStartEvent,
        ProgressTextChunkEvent,
        ProgressTextChunkEndEvent,
        ProgressDoneEvent,
    ]
    states = [e.state for e in events if isinstance(e, MonitorStateChangedEvent)]
    assert states == [AgentState.RUNNING, AgentState.DONE, AgentState.IDLE]
    usage = [e for e in events if isinstance(e, MonitorTokenUsageEvent)]
    assert usage[0].total_tokens == 6
    breakpoints = [e.current for e in events if isinstance(e, MonitorBreakpointChangedEvent)]
    assert breakpoints == [BreakpointState.PRE_MODEL, BreakpointState.READY]

    status = agent.status()
    assert status.state == AgentState.IDLE
    assert status.step_count == 1
    assert status.cursor == 2 == len(agent.messages)
    await agent.close()


@pytest.mark.asyncio
async def test_system_prompt_is_prepended_not_stored(deps, provider, make_config):
    agent = await create_agent(make_config(), deps)
    await agent.chat("hi")

    sent = provider.calls[0]["messages"]
    assert sent[0] == {"role": "system", "content": "Echo things."}
    assert sent[1] == {"role": "user", "content": "hi"}
    assert agent.messages[0] == {"role": "user", "content": "hi"}
    assert [t["function"]["name"] for t in provider.calls[0]["tools"]] == ["Echo", "Sleep"]
    await agent.close()


@pytest.mark.asyncio
async def test_empty_message_is_forwarded(deps, provider, make_config):
    agent = await create_agent(make_config(), deps)
    result = await agent.chat("")
    assert result.ok
    assert provider.calls[0]["messages"][-1] == {"role": "user", "content": ""}
    await agent.close()


@pytest.mark.asyncio
async def test_one_tool_result_per_request_in_order(deps, provider, make_config):
    provider.script(
        tool_calls(("Echo", {"text": "a"}), ("Echo", {"text": "b"}), ("Echo", {"text": "c"})),
        tool_calls(("Echo", {"text": "d"})),
        TextReply(text="all done"),
    )
    agent = await create_agent(make_config(), deps)
    sub = agent.subscribe([Channel.PROGRESS])

    result = await agent.chat("go")

    assert result.text == "all done"
    assert result.steps == 3
    tool_msgs = _tool_messages(agent)
    assert [m["content"] for m in tool_msgs] == ["a", "b", "c", "d"]

    requested = [
        tc["id"] for m in agent.messages if m["role"] == "assistant" for tc in m.get("tool_calls", [])
    ]
    assert [m["tool_call_id"] for m in tool_msgs] == requested
    assert len(set(requested)) == 4

    progress = _progress(sub)
    assert isinstance(progress[-1], ProgressDoneEvent)
    assert sum(isinstance(e, ProgressDoneEvent) for e in progress) == 1
    ends = [e for e in progress if isinstance(e, ProgressToolEndEvent)]
    assert all(e.call.state == ToolCallState.SUCCEEDED for e in ends)
    await agent.close()


@pytest.mark.asyncio
async def test_duplicate_provider_ids_are_replaced(deps, provider, make_config):
    provider.script(
        tool_calls(("Echo", {"text": "a"}), ("Echo", {"text": "b"}), ids=["dup", "dup"]),
        tool_calls(("Echo", {"text": "c"}), ids=["dup"]),
    )
    agent = await create_agent(make_config(), deps)
    await agent.chat("go")

    ids = [m["tool_call_id"] for m in _tool_messages(agent)]
    assert ids[0] == "dup"
    assert len(set(ids)) == 3
    assert all(i.startswith("call_") for i in ids[1:])
    await agent.close()


@pytest.mark.asyncio
async def test_unknown_tool_reports_error_and_turn_completes(deps, provider, make_config):
    provider.script(tool_calls(("Missing", {})), TextReply(text="recovered"))
    agent = await create_agent(make_config(), deps)
    sub = agent.subscribe([Channel.PROGRESS])

    result = await asyncio.wait_for(agent.chat("use missing"), timeout=5)

    assert result.ok and result.text == "recovered"
    progress = _progress(sub)
    start = next(e for e in progress if isinstance(e, ProgressToolStartEvent))
    error = next(e for e in progress if isinstance(e, ProgressToolErrorEvent))
    assert start.call.name == error.call.name == "Missing"
    assert error.call.state == ToolCallState.FAILED
    assert _tool_messages(agent)[0]["content"] == "Error: Tool 'Missing' not found"
    assert isinstance(progress[-1], ProgressDoneEvent)
    await agent.close()


@pytest.mark.asyncio
async def test_undeclared_tool_is_not_callable(deps, provider, make_config):
    provider.script(tool_calls(("Bash", {"command": "ls"})), TextReply(text="ok"))
    agent = await create_agent(make_config(), deps)
    await agent.chat("go")
    assert _tool_messages(agent)[0]["content"] == "Error: Tool 'Bash' not found"
    await agent.close()


@pytest.mark.asyncio
async def test_failing_tool_is_fed_back(deps, provider, make_config):
    provider.script(tool_calls(("Echo", {})), TextReply(text="sorry"))
    agent = await create_agent(make_config(), deps)
    sub = agent.subscribe([Channel.PROGRESS])

    result = await agent.chat("go")

    assert result.ok
    assert _tool_messages(agent)[0]["content"].startswith("Error: Invalid parameters for tool 'Echo'")
    assert any(isinstance(e, ProgressToolErrorEvent) for e in _progress(sub))
    await agent.close()


@pytest.mark.asyncio
async def test_simple_assistant_writes_file(deps, provider, make_config, work_dir):
    provider.script(
        tool_calls(("Write", {"path": "test.txt", "content": "X"})),
        TextReply(text="Created test.txt with content X."),
    )
    agent = await create_agent(make_config(template_id="simple-assistant"), deps)
    sub = agent.subscribe([Channel.PROGRESS])

    result = await agent.chat("create test.txt with content X")

    assert (work_dir / "test.txt").read_text() == "X"
    end = next(e for e in _progress(sub) if isinstance(e, ProgressToolEndEvent))
    assert end.call.name == "Write"
    assert end.call.state == ToolCallState.SUCCEEDED
    assert "test.txt" in result.text
    await agent.close()


@pytest.mark.asyncio
async def test_max_steps_ends_turn(deps, provider, make_config):
    provider.script(*[tool_calls(("Echo", {"text": str(i)})) for i in range(40)])
    agent = await create_agent(make_config(max_steps=20), deps)
    sub = agent.subscribe([Channel.PROGRESS])

    result = await asyncio.wait_for(agent.chat("loop forever"), timeout=10)

    assert result.reason == DoneReason.MAX_STEPS
    assert result.status == "ok"
    assert result.steps == 20
    assert len(provider.calls) == 20
    assert result.text == "Reached 20 steps without completion."
    assert agent.messages[-1] == {"role": "assistant", "content": result.text}
    done = _progress(sub)[-1]
    assert isinstance(done, ProgressDoneEvent) and done.reason == DoneReason.MAX_STEPS
    await agent.close()


@pytest.mark.asyncio
async def test_provider_error_ends_turn_and_agent_recovers(deps, provider, make_config):
    provider.script(
        tool_calls(("Echo", {"text": "a"})),
        ProviderError("502 bad gateway"),
        TextReply(text="back"),
    )
    agent = await create_agent(make_config(), deps)
    sub = agent.subscribe()

    result = await agent.chat("go")

    assert result.status == "error"
    assert result.reason == DoneReason.ERROR
    assert "502" in result.error
    events = [env.event for env in sub.drain()]
    errors = [e for e in events if isinstance(e, MonitorErrorEvent)]
    assert errors[0].severity == "error" and errors[0].phase == "provider"
    done = [e for e in events if isinstance(e, ProgressDoneEvent)]
    assert done[-1].reason == DoneReason.ERROR
    assert agent.status().state == AgentState.IDLE
    # history keeps the tool round before the failing call
    assert [m["role"] for m in agent.messages] == ["user", "assistant", "tool"]

    again = await agent.chat("retry")
    assert again.ok and again.text == "back"
    await agent.close()


@pytest.mark.asyncio
async def test_streaming_deltas_are_forwarded(deps, provider, make_config):
    provider.script(stream_reply("Hel", "lo", " world"))
    agent = await create_agent(make_config(mode=ExecutionMode.STREAMING), deps)
    sub = agent.subscribe()

    result = await agent.chat("hi")

    assert result.text == "Hello world"
    assert provider.calls[0]["mode"] == ExecutionMode.STREAMING
    events = [env.event for env in sub.drain()]
    deltas = [e.delta for e in events if isinstance(e, ProgressTextChunkEvent)]
    assert deltas == ["Hel", "lo", " world"]
    end = next(e for e in events if isinstance(e, ProgressTextChunkEndEvent))
    assert end.text == "Hello world"
    assert any(isinstance(e, MonitorTokenUsageEvent) for e in events)
    bps = [e.current for e in events if isinstance(e, MonitorBreakpointChangedEvent)]
    assert BreakpointState.STREAMING_MODEL in bps
    await agent.close()


@pytest.mark.asyncio
async def test_streaming_text_with_trailing_tool_call(deps, provider, make_config):
    provider.script(
        stream_reply("Let me echo.", trailing=[ToolCallRequest(id="s1", name="Echo", arguments={"text": "z"})]),
        TextReply(text="echoed"),
    )
    agent = await create_agent(make_config(mode=ExecutionMode.STREAMING), deps)

    result = await agent.chat("hi")

    assert result.text == "echoed"
    assistant = agent.messages[1]
    assert assistant["content"] == "Let me echo."
    assert assistant["tool_calls"][0]["function"] == {"name": "Echo", "arguments": json.dumps({"text": "z"})}
    assert _tool_messages(agent)[0]["content"] == "z"
    await agent.close()


@pytest.mark.asyncio
async def test_stream_failure_does_not_append_partial_text(deps, provider, make_config):
    provider.script(stream_reply("par", "tial", fail_after=1))
    agent = await create_agent(make_config(mode=ExecutionMode.STREAMING), deps)

    result = await agent.chat("hi")

    assert result.status == "error"
    assert agent.messages == [{"role": "user", "content": "hi"}]
    await agent.close()


# ---------------------------------------------------------------------------
# concurrency, cancellation, close
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_concurrent_chat_fails_fast(deps, provider, make_config, sleep_tool):
    provider.script(tool_calls(("Sleep", {})))
    agent = await create_agent(make_config(), deps)

    first = asyncio.create_task(agent.chat("sleep"))
    await asyncio.wait_for(sleep_tool.started.wait(), timeout=5)

    with pytest.raises(AgentBusyError):
        await agent.chat("second")

    first.cancel()
    with pytest.raises(asyncio.CancelledError):
        await first
    await agent.close()


@pytest.mark.asyncio
async def test_cancel_mid_tool_rolls_back_and_next_chat_succeeds(deps, provider, make_config, sleep_tool):
    provider.script(tool_calls(("Sleep", {})), TextReply(text="fine"))
    agent = await create_agent(make_config(), deps)
    monitor = agent.subscribe([Channel.MONITOR])

    task = asyncio.create_task(agent.chat("sleep"))
    await asyncio.wait_for(sleep_tool.started.wait(), timeout=5)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await asyncio.wait_for(task, timeout=5)

    assert agent.messages == []
    assert agent.status().state == AgentState.IDLE
    errors = [env.event for env in monitor.drain() if isinstance(env.event, MonitorErrorEvent)]
    assert errors[-1].severity == "info"
    assert errors[-1].phase == "tool"

    result = await asyncio.wait_for(agent.chat("again"), timeout=5)
    assert result.ok and result.text == "fine"
    assert [m["role"] for m in agent.messages] == ["user", "assistant"]
    await agent.close()


@pytest.mark.asyncio
async def test_wait_for_timeout_cancels_provider_call(deps, provider, make_config):
    async def hang():
        await asyncio.sleep(3600)

    provider.script(hang)
    agent = await create_agent(make_config(), deps)
    monitor = agent.subscribe([Channel.MONITOR])

    with pytest.raises(asyncio.TimeoutError):
        await asyncio.wait_for(agent.chat("hi"), timeout=0.1)

    errors = [env.event for env in monitor.drain() if isinstance(env.event, MonitorErrorEvent)]
    assert errors[-1].phase == "provider"
    assert agent.status().cursor == 0
    await agent.close()


@pytest.mark.asyncio
async def test_close_is_idempotent_and_ends_subscribers(deps, make_config):
    agent = await create_agent(make_config(), deps)
    sub = agent.subscribe()
    waiter = asyncio.create_task(sub.get())
    await asyncio.sleep(0)

    await agent.close()
    await agent.close()

    assert await asyncio.wait_for(waiter, timeout=1) is None
    assert agent.closed
    with pytest.raises(AgentClosedError):
        await agent.chat("hi")
    late = agent.subscribe()
    assert await asyncio.wait_for(late.get(), timeout=1) is None


@pytest.mark.asyncio
async def test_close_cancels_running_chat(deps, provider, make_config, sleep_tool):
    provider.script(tool_calls(("Sleep", {})))
    agent = await create_agent(make_config(), deps)

    task = asyncio.create_task(agent.chat("sleep"))
    await asyncio.wait_for(sleep_tool.started.wait(), timeout=5)
    await asyncio.wait_for(agent.close(), timeout=5)

    with pytest.raises(asyncio.CancelledError):
        await task
    assert agent.messages == []


# ---------------------------------------------------------------------------
# persistence
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_turn_is_persisted_and_hydrated(deps, provider, store, make_config):
    provider.script(tool_calls(("Echo", {"text": "a"}), ids=["call_keep"]), TextReply(text="saved"))
    agent = await create_agent(make_config(), deps)
    await agent.chat("remember")
    status = agent.status()
    await agent.close()

    snapshot = await store.load(agent.id)
    assert snapshot.messages == agent.messages
    assert snapshot.step_count == status.step_count == 2

    resumed = await create_agent(make_config(agent_id=agent.id), deps)
    assert resumed.id == agent.id
    assert resumed.messages == agent.messages
    assert resumed.status().cursor == status.cursor
    assert resumed.status().step_count == 2

    # ids seen in hydrated history are never reused
    provider.script(tool_calls(("Echo", {"text": "b"}), ids=["call_keep"]), TextReply(text="ok"))
    await resumed.chat("more")
    ids = [m["tool_call_id"] for m in _tool_messages(resumed)]
    assert len(ids) == len(set(ids)) == 2
    await resumed.close()


@pytest.mark.asyncio
async def test_unknown_agent_id_starts_fresh(deps, make_config):
    agent = await create_agent(make_config(agent_id="agt-new"), deps)
    assert agent.id == "agt-new"
    assert agent.messages == []
    await agent.close()


@pytest.mark.asyncio
async def test_store_failure_is_reported_not_fatal(deps, provider, store, make_config, monkeypatch):
    async def broken_save(snapshot):
        raise StoreError("read-only filesystem")

    monkeypatch.setattr(store, "save", broken_save)
    agent = await create_agent(make_config(), deps)
    monitor = agent.subscribe([Channel.MONITOR])

    result = await agent.chat("hi")

    assert result.ok
    errors = [env.event for env in monitor.drain() if isinstance(env.event, MonitorErrorEvent)]
    assert errors and errors[0].severity == "warning" and errors[0].phase == "store"
    await agent.close()


@pytest.mark.asyncio
async def test_agents_share_registry_and_provider(deps, provider, make_config, tmp_path):
    a = await create_agent(make_config(), deps)
    b = await create_agent(make_config(), deps)
    assert a.id != b.id

    await asyncio.gather(a.chat("one"), b.chat("two"))

    assert a.messages[0]["content"] == "one"
    assert b.messages[0]["content"] == "two"
    await a.close()
    await b.close()


# ---------------------------------------------------------------------------
# unexpected failures
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_adapter_timeout_is_reported_as_provider_error(deps, provider, make_config):
    provider.script(TimeoutError("read timed out"), TextReply(text="back"))
    agent = await create_agent(make_config(), deps)
    sub = agent.subscribe()

    result = await asyncio.wait_for(agent.chat("hi"), timeout=5)

    assert result.status == "error"
    assert result.reason == DoneReason.ERROR
    assert "read timed out" in result.error
    assert agent.status().state == AgentState.IDLE
    assert agent.status().breakpoint == BreakpointState.READY
    assert agent.messages == [{"role": "user", "content": "hi"}]

    events = [env.event for env in sub.drain()]
    errors = [e for e in events if isinstance(e, MonitorErrorEvent)]
    assert errors[0].phase == "provider" and errors[0].severity == "error"
    done = [e for e in events if isinstance(e, ProgressDoneEvent)]
    assert len(done) == 1 and done[0].reason == DoneReason.ERROR

    again = await agent.chat("retry")
    assert again.ok and again.text == "back"
    await agent.close()


@pytest.mark.asyncio
async def test_unexpected_tool_phase_error_keeps_history_replayable(deps, provider, make_config, monkeypatch):
    from aster.sandbox import LocalSandbox

    async def exploding_invoke(self, tool, call, timeout=None):
        raise RuntimeError("boom")

    monkeypatch.setattr(LocalSandbox, "invoke", exploding_invoke)
    provider.script(tool_calls(("Echo", {"text": "a"}), ("Echo", {"text": "b"})))
    agent = await create_agent(make_config(), deps)
    monitor = agent.subscribe([Channel.MONITOR])

    result = await agent.chat("go")

    assert result.status == "error"
    assert agent.status().state == AgentState.IDLE
    tool_msgs = _tool_messages(agent)
    requested = [tc["id"] for tc in agent.messages[1]["tool_calls"]]
    assert [m["tool_call_id"] for m in tool_msgs] == requested
    assert all(m["content"] == "Error: boom" for m in tool_msgs)
    errors = [env.event for env in monitor.drain() if isinstance(env.event, MonitorErrorEvent)]
    assert errors[-1].phase == "tool"
    await agent.close()


@pytest.mark.asyncio
async def test_provider_factory_failure_is_config_error(deps, make_config, monkeypatch):
    def broken_create(config):
        raise KeyError("api_key")

    monkeypatch.setattr(deps.provider_factory, "create", broken_create)
    with pytest.raises(ConfigError, match="Invalid model config"):
        await create_agent(make_config(), deps)


@pytest.mark.asyncio
async def test_stream_source_is_released_on_cancel(deps, provider, make_config):
    released = asyncio.Event()
    started = asyncio.Event()

    async def source():
        try:
            yield "partial"
            started.set()
            await asyncio.sleep(3600)
            yield "never"
        finally:
            released.set()

    provider.script(StreamReply(source()))
    agent = await create_agent(make_config(mode=ExecutionMode.STREAMING), deps)

    task = asyncio.create_task(agent.chat("hi"))
    await asyncio.wait_for(started.wait(), timeout=5)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task

    assert released.is_set()
    assert agent.messages == []
    await agent.close()
