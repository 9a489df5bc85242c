"""
Live fan-out of deployment output to per-project subscribers.

Each project has a channel, created on first subscribe and torn down when its
last subscriber leaves. Every subscriber owns a bounded buffer; when a slow
subscriber's buffer is full the oldest buffered event is dropped, so
publishing never waits on a subscriber. Late joiners get no replay.
"""
import asyncio
import logging
from collections import deque
from dataclasses import asdict, dataclass, field
from typing import Any, Deque, Dict, Optional, Set, Union
from uuid import uuid4

from dockyard.core.config import settings

logger = logging.getLogger(__name__)


@dataclass
class LogLineEvent:
    """One captured output line."""
    deployment_id: str
    line: str
    type: str = field(default="log", init=False)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class DeploymentFinishedEvent:
    """Terminal event; the subscription closes right after it."""
    deployment_id: str
    status: str
    url: Optional[str] = None
    type: str = field(default="finished", init=False)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


ChannelEvent = Union[LogLineEvent, DeploymentFinishedEvent]


class Subscription:
    """
    A subscriber's view of one project's channel.

    Iterate with ``async for event in subscription``; iteration ends after
    the finished event or when the subscription is closed.
    """

    def __init__(self, project_id: str, max_buffer: int):
        self.id = str(uuid4())
        self.project_id = project_id
        self.max_buffer = max(1, max_buffer)
        self.dropped = 0
        self._buffer: Deque[ChannelEvent] = deque()
        self._wakeup = asyncio.Event()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def offer(self, event: ChannelEvent) -> None:
        """Buffer an event without waiting; drops the oldest on overflow."""
        if self._closed:
            return
        if len(self._buffer) >= self.max_buffer:
            self._buffer.popleft()
            self.dropped += 1
        self._buffer.append(event)
        self._wakeup.set()

    def close(self) -> None:
        """Stop accepting events; buffered events can still be read."""
        self._closed = True
        self._wakeup.set()

    async def get(self) -> Optional[ChannelEvent]:
        """Next event, or None once closed and drained."""
        while not self._buffer:
            if self._closed:
                return None
            self._wakeup.clear()
            await self._wakeup.wait()
        return self._buffer.popleft()

    def __aiter__(self):
        return self

    async def __anext__(self) -> ChannelEvent:
        event = await self.get()
        if event is None:
            raise StopAsyncIteration
        return event


class LogBroadcaster:
    """
    Per-project channel registry.

    Responsibilities:
    - Register and remove subscribers per project
    - Fan out log lines in emission order to every subscriber
    - Deliver exactly one finished event per subscriber and close it
    """

    def __init__(self, max_buffer: Optional[int] = None):
        """
        Initialize the broadcaster.

        Args:
            max_buffer: Events buffered per subscriber (default from settings)
        """
        self.max_buffer = max_buffer or settings.BROADCAST_QUEUE_SIZE
        self._channels: Dict[str, Set[Subscription]] = {}

    def subscribe(self, project_id: Any) -> Subscription:
        """Join a project's channel, creating it if needed."""
        key = str(project_id)
        subscription = Subscription(key, self.max_buffer)
        self._channels.setdefault(key, set()).add(subscription)
        logger.debug(f"Subscriber {subscription.id} joined project {key}")
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        """Leave a channel; the channel is removed with its last subscriber."""
        subscription.close()
        subscribers = self._channels.get(subscription.project_id)
        if subscribers is None:
            return
        subscribers.discard(subscription)
        if not subscribers:
            del self._channels[subscription.project_id]
        logger.debug(f"Subscriber {subscription.id} left project {subscription.project_id}")

    def subscriber_count(self, project_id: Any) -> int:
        return len(self._channels.get(str(project_id), ()))

    def has_channel(self, project_id: Any) -> bool:
        return str(project_id) in self._channels

    def _fan_out(self, project_id: str, event: ChannelEvent) -> int:
        subscribers = self._channels.get(project_id)
        if not subscribers:
            return 0
        for subscription in list(subscribers):
            subscription.offer(event)
        return len(subscribers)

    def publish_line(self, project_id: Any, deployment_id: Any, line: str) -> int:
        """
        Send one output line to every current subscriber of the project.

        Returns:
            Number of subscribers the line was offered to
        """
        return self._fan_out(str(project_id), LogLineEvent(deployment_id=str(deployment_id), line=line))

    def publish_finished(
        self,
        project_id: Any,
        deployment_id: Any,
        status: str,
        url: Optional[str] = None,
    ) -> int:
        """
        Send the terminal event, then close every subscription of the attempt.

        Returns:
            Number of subscribers notified
        """
        key = str(project_id)
        event = DeploymentFinishedEvent(deployment_id=str(deployment_id), status=status, url=url)
        delivered = self._fan_out(key, event)

        for subscription in list(self._channels.get(key, ())):
            subscription.close()
        self._channels.pop(key, None)

        logger.info(f"Deployment {deployment_id} finished ({status}); notified {delivered} subscribers")
        return delivered


# Singleton instance
log_broadcaster = LogBroadcaster()
