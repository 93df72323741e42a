"""
进度事件通道

流水线（唯一写入方）发布步骤状态变化，任意数量的订阅者接收
"""
import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Union

from ..models.task import StepId, StepStatus

logger = logging.getLogger(__name__)

# 队列中的关闭标记
_CLOSED = object()


@dataclass
class ProgressEvent:
    """步骤进度事件"""
    step_id: StepId
    status: StepStatus
    message: str
    data: Optional[Dict[str, Any]] = None
    timestamp: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        event = {
            "step_id": self.step_id.value,
            "status": self.status.value,
            "message": self.message,
            "timestamp": self.timestamp.isoformat(),
        }
        if self.data is not None:
            event["data"] = self.data
        return event


Listener = Callable[[ProgressEvent], Union[None, Awaitable[None]]]


class EventSubscription:
    """
    只读订阅端

    支持 `async for event in subscription`，通道关闭后迭代结束
    """

    def __init__(self, emitter: "EventEmitter"):
        self._emitter = emitter
        self._queue: asyncio.Queue = asyncio.Queue()
        self._finished = False

    def _deliver(self, item: Any) -> None:
        self._queue.put_nowait(item)

    async def get(self) -> Optional[ProgressEvent]:
        """等待下一个事件；通道关闭后返回None"""
        if self._finished:
            return None
        item = await self._queue.get()
        if item is _CLOSED:
            self._finished = True
            return None
        return item

    def drain(self) -> List[ProgressEvent]:
        """取出当前已到达的全部事件（不等待）"""
        events = []
        while not self._queue.empty():
            item = self._queue.get_nowait()
            if item is _CLOSED:
                self._finished = True
                break
            events.append(item)
        return events

    def unsubscribe(self) -> None:
        self._emitter._remove(self)
        self._finished = True

    def __aiter__(self) -> "EventSubscription":
        return self

    async def __anext__(self) -> ProgressEvent:
        event = await self.get()
        if event is None:
            raise StopAsyncIteration
        return event


class EventEmitter:
    """
    事件发布器

    队列无界，发布方不会因订阅者消费慢而阻塞；
    异步回调作为独立任务调度，不占用发布方的执行；
    并行阶段中不同步骤之间的事件顺序不作保证
    """

    def __init__(self):
        self._subscriptions: List[EventSubscription] = []
        self._listeners: List[Listener] = []
        self._pending: Set[asyncio.Future] = set()
        self._closed = False
        self.history: List[ProgressEvent] = []

    @property
    def closed(self) -> bool:
        return self._closed

    def subscribe(self) -> EventSubscription:
        """
        创建订阅

        通道已关闭时返回的订阅会立即结束
        """
        subscription = EventSubscription(self)
        if self._closed:
            subscription._deliver(_CLOSED)
        else:
            self._subscriptions.append(subscription)
        return subscription

    def add_listener(self, callback: Listener) -> None:
        """注册回调（同步函数或协程函数）"""
        self._listeners.append(callback)

    def _remove(self, subscription: EventSubscription) -> None:
        if subscription in self._subscriptions:
            self._subscriptions.remove(subscription)

    async def publish(self, event: ProgressEvent) -> None:
        """
        发布事件

        Raises:
            RuntimeError: 通道已关闭
        """
        if self._closed:
            raise RuntimeError("事件通道已关闭")

        self.history.append(event)
        for subscription in list(self._subscriptions):
            subscription._deliver(event)

        for callback in list(self._listeners):
            try:
                outcome = callback(event)
            except Exception:
                logger.exception("[EventEmitter] 事件回调失败: %s", callback)
                continue
            if inspect.isawaitable(outcome):
                future = asyncio.ensure_future(outcome)
                self._pending.add(future)
                future.add_done_callback(self._listener_done)

    def _listener_done(self, future: asyncio.Future) -> None:
        self._pending.discard(future)
        if future.cancelled():
            return
        error = future.exception()
        if error is not None:
            logger.error("[EventEmitter] 异步事件回调失败: %r", error)

    async def join(self) -> None:
        """等待已调度的异步回调全部结束"""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def close(self) -> None:
        """关闭通道并唤醒所有订阅者（可重复调用）"""
        if self._closed:
            return
        self._closed = True
        for subscription in self._subscriptions:
            subscription._deliver(_CLOSED)
        self._subscriptions.clear()
