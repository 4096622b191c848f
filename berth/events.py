import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from .models import BeadStatus


class EventType(str, Enum):
    BEAD_INIT = "bead_init"
    OUTPUT = "output"
    TOKEN_UPDATE = "token_update"
    BEAD_COMPLETE = "bead_complete"
    ERROR = "error"


@dataclass
class StreamEvent:
    type: EventType
    bead_id: str
    content: str = ""
    tokens: int = 0  # cumulative for the bead
    is_stderr: bool = False
    status: BeadStatus | None = None  # final status, set on orchestrator bead_complete
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def terminal(self) -> bool:
        return self.type in (EventType.BEAD_COMPLETE, EventType.ERROR)


class EventChannel:
    """Bounded, ordered, lossless event queue with explicit close.

    send() waits for free space instead of dropping, so a slow reader slows
    the writer down. close() never blocks; iterating the channel ends once it
    has been closed and drained, and a send still waiting for space when the
    channel closes raises instead of hanging.
    """

    def __init__(self, maxsize: int = 256):
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=max(1, maxsize))
        self._closed = asyncio.Event()

    @property
    def closed(self) -> bool:
        return self._closed.is_set()

    async def send(self, event: StreamEvent) -> None:
        if self.closed:
            raise RuntimeError("send on closed event channel")
        if not await self._until_closed(self._queue.put(event)):
            raise RuntimeError("event channel closed while sending")

    def close(self) -> None:
        self._closed.set()

    async def receive(self) -> StreamEvent | None:
        """Next event, or None once the channel is closed and drained."""
        if not self._queue.empty():
            return self._queue.get_nowait()
        if self.closed:
            return None

        getter = asyncio.ensure_future(self._queue.get())
        if await self._until_closed(getter):
            return getter.result()
        # Closed while waiting; anything queued meanwhile is still delivered.
        try:
            return self._queue.get_nowait()
        except asyncio.QueueEmpty:
            return None

    async def _until_closed(self, aw) -> bool:
        """Await aw unless the channel closes first. True if aw completed."""
        task = asyncio.ensure_future(aw)
        closer = asyncio.ensure_future(self._closed.wait())
        try:
            await asyncio.wait({task, closer}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            closer.cancel()
            if not task.done():
                task.cancel()
        if task.done() and not task.cancelled():
            task.result()
            return True
        return False

    def __aiter__(self):
        return self

    async def __anext__(self) -> StreamEvent:
        event = await self.receive()
        if event is None:
            raise StopAsyncIteration
        return event
