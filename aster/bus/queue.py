"""
事件总线模块 - 事件总线的核心实现。

本模块实现了 EventBus 和 Subscription 两个类，是 Agent 与观察者之间的中枢：

  状态机 → publish(event) → EventBus（分配序号，按通道广播）
                                 ├→ Subscription A（progress）的有界队列 → async for
                                 └→ Subscription B（monitor） 的有界队列 → async for

【Java 开发者类比】
- EventBus 类似于 Guava 的 EventBus，但每个订阅者拥有独立的有界队列（类似 ArrayBlockingQueue）
- Subscription 类似于一个可迭代的 BlockingQueue 消费端
- close() 时投递的结束哨兵类似于 "poison pill" 模式

【核心设计】
- 总线自己维护唯一的序号（seq），每个订阅者拿到的是同一序列的一个按通道过滤后的子序列
- 缓冲策略：有界队列 + 丢弃最旧（drop-oldest）。publish() 永远不会阻塞生产者，
  慢订阅者队列满时只丢弃自己队列里最旧的事件，并记入 Subscription.dropped，
  不影响其他订阅者的顺序和完整性
- 被放弃的订阅（既不消费也不取消）只会占用一个有界队列，不会拖住状态机
- close() 向每个订阅投递结束哨兵，等待中的消费者会确定性地看到流结束而不是永远挂起
"""

import asyncio
import itertools
from typing import Any, Callable, Iterable

from loguru import logger

from aster.bus.events import Channel, Envelope

EventFilter = Callable[[Any], bool]

# 流结束哨兵
_END = object()

_sub_ids = itertools.count(1)


class Subscription:
    """
    单个订阅者的接收句柄。

    支持三种消费方式：
    - async for envelope in sub: ...   （推荐）
    - await sub.get()                   （返回 None 表示流已结束）
    - sub.drain()                       （非阻塞地取出当前已缓冲的全部事件）

    属性:
        id: 订阅 ID
        channels: 订阅的通道集合
        dropped: 因队列已满被丢弃的事件数量
    """

    def __init__(
        self,
        bus: "EventBus",
        channels: Iterable[Channel],
        event_filter: EventFilter | None = None,
        buffer_size: int = 1024,
    ):
        if buffer_size < 1:
            raise ValueError("buffer_size must be >= 1")
        self.id = f"sub-{next(_sub_ids)}"
        self.channels = frozenset(Channel(c) for c in channels)
        self.dropped = 0
        self._bus = bus
        self._filter = event_filter
        self._buffer_size = buffer_size
        # 队列本身不设上限，容量由 _offer 控制，保证结束哨兵永远能放进去
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._closed = False
        self._ended = False

    @property
    def closed(self) -> bool:
        """是否已停止接收新事件。"""
        return self._closed

    def matches(self, envelope: Envelope) -> bool:
        if envelope.channel not in self.channels:
            return False
        if self._filter is None:
            return True
        try:
            return bool(self._filter(envelope.event))
        except Exception as e:
            logger.warning(f"Event filter of {self.id} raised, skipping event #{envelope.seq}: {e}")
            return False

    def _offer(self, envelope: Envelope) -> None:
        if self._closed or not self.matches(envelope):
            return
        if self._queue.qsize() >= self._buffer_size:
            self._queue.get_nowait()  # 丢弃最旧的一条
            self.dropped += 1
            if self.dropped == 1 or self.dropped % 100 == 0:
                logger.warning(f"Subscription {self.id} is falling behind, dropped {self.dropped} events")
        self._queue.put_nowait(envelope)

    def _finish(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._queue.put_nowait(_END)

    async def get(self) -> Envelope | None:
        """
        等待下一条事件。

        返回:
            下一条事件信封；流已结束（订阅被取消或总线关闭）时返回 None
        """
        if self._ended:
            return None
        item = await self._queue.get()
        if item is _END:
            self._ended = True
            return None
        return item

    def drain(self) -> list[Envelope]:
        """非阻塞地取出当前已缓冲的全部事件（不包含结束哨兵）。"""
        items = []
        while not self._queue.empty():
            item = self._queue.get_nowait()
            if item is _END:
                self._ended = True
                break
            items.append(item)
        return items

    def close(self) -> None:
        """取消订阅。之后不再收到新事件，无需继续消费。"""
        self._bus.unsubscribe(self)

    def __aiter__(self) -> "Subscription":
        return self

    async def __anext__(self) -> Envelope:
        envelope = await self.get()
        if envelope is None:
            raise StopAsyncIteration
        return envelope

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, *exc: Any) -> None:
        self.close()

    def __repr__(self) -> str:
        chans = ",".join(sorted(c.value for c in self.channels))
        return f"<Subscription {self.id} [{chans}] pending={self._queue.qsize()} dropped={self.dropped}>"


class EventBus:
    """
    类型化的发布/订阅总线，每个 Agent 独占一个实例。

    属性:
        buffer_size: 新订阅的默认队列容量
        cursor: 最近一次发布的事件序号
    """

    def __init__(self, buffer_size: int = 1024):
        self.buffer_size = buffer_size
        self._subscribers: dict[str, Subscription] = {}
        self._seq = 0
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def cursor(self) -> int:
        return self._seq

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def subscribe(
        self,
        channels: Iterable[Channel],
        event_filter: EventFilter | None = None,
        buffer_size: int | None = None,
    ) -> Subscription:
        """
        订阅一个或多个通道。

        参数:
            channels: 订阅的通道集合
            event_filter: 可选的事件谓词，返回 True 的事件才会投递（如只关注某个 ToolCall）
            buffer_size: 队列容量，默认使用总线的 buffer_size

        返回:
            Subscription 接收句柄。总线已关闭时返回一个立即结束的订阅。
        """
        sub = Subscription(self, channels, event_filter, self.buffer_size if buffer_size is None else buffer_size)
        if self._closed:
            sub._finish()
            return sub
        self._subscribers[sub.id] = sub
        logger.debug(f"Subscribed {sub.id} to {sorted(c.value for c in sub.channels)}")
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        """取消订阅，重复调用无副作用。"""
        self._subscribers.pop(sub.id, None)
        sub._finish()

    def publish(self, event: Any) -> Envelope | None:
        """
        发布一条事件。

        为事件分配序号后投递到所有匹配的订阅者队列。该方法从不阻塞：
        慢订阅者的队列满时按 drop-oldest 策略处理。

        参数:
            event: 事件对象（必须带有 channel 类属性）

        返回:
            事件信封；总线已关闭时返回 None
        """
        if self._closed:
            return None
        self._seq += 1
        envelope = Envelope(seq=self._seq, channel=Channel(event.channel), event=event)
        for sub in list(self._subscribers.values()):
            sub._offer(envelope)
        return envelope

    def close(self) -> None:
        """关闭总线：所有订阅者在消费完已缓冲事件后看到流结束。幂等。"""
        if self._closed:
            return
        self._closed = True
        subs = list(self._subscribers.values())
        self._subscribers.clear()
        for sub in subs:
            sub._finish()
        logger.debug(f"Event bus closed after {self._seq} events, {len(subs)} subscribers released")
