"""
Bounded outbound queue in front of one WebSocket leg.

The call worker enqueues and moves on; a writer task owns the socket writes,
so a slow peer can only back up its own queue. Audio frames are droppable:
when the queue is full a new audio frame is dropped, and a control message
evicts the oldest queued audio frame instead.
"""
import asyncio
import logging
from typing import Awaitable, Callable

logger = logging.getLogger("ivr.legs")

_CLOSE = object()


class OutboundLeg:
    def __init__(self, name: str, write: Callable[[dict], Awaitable[None]], maxsize: int = 256):
        self.name = name
        self._write = write
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._task: asyncio.Task | None = None
        self.closed = False
        self.dropped = 0

    def start(self) -> None:
        if self._task is None:
            self._task = asyncio.create_task(self._run(), name=f"{self.name}-writer")

    @property
    def open(self) -> bool:
        return not self.closed

    async def send(self, payload: dict, droppable: bool = False) -> None:
        if self.closed:
            return
        if self._queue.full():
            if droppable:
                self._note_drop()
                return
            self._evict_oldest_droppable()
        await self._queue.put((payload, droppable))

    def discard_droppable(self) -> int:
        """Remove queued audio frames that have not been written yet."""
        items = self._drain()
        kept = [item for item in items if item is _CLOSE or not item[1]]
        for item in kept:
            self._queue.put_nowait(item)
        return len(items) - len(kept)

    async def join(self) -> None:
        """Wait until everything queued so far has been written or discarded."""
        await self._queue.join()

    async def aclose(self, timeout: float = 5.0) -> None:
        """Flush what is queued, then stop the writer."""
        task, self._task = self._task, None
        if task is not None and not task.done():
            try:
                await asyncio.wait_for(self._close_writer(task), timeout)
            except asyncio.TimeoutError:
                logger.warning("[%s] Writer did not flush in %.1fs, cancelling", self.name, timeout)
                task.cancel()
        self.closed = True

    async def _close_writer(self, task: asyncio.Task) -> None:
        await self._queue.put(_CLOSE)
        await task

    def _drain(self) -> list:
        items = []
        while True:
            try:
                items.append(self._queue.get_nowait())
            except asyncio.QueueEmpty:
                return items
            self._queue.task_done()

    def _evict_oldest_droppable(self) -> None:
        items = self._drain()
        for idx, item in enumerate(items):
            if item is not _CLOSE and item[1]:
                del items[idx]
                self._note_drop()
                break
        for item in items:
            self._queue.put_nowait(item)

    def _note_drop(self) -> None:
        self.dropped += 1
        if self.dropped == 1 or self.dropped % 100 == 0:
            logger.warning("[%s] Outbound queue full, dropped %d audio frames", self.name, self.dropped)

    async def _run(self) -> None:
        while True:
            item = await self._queue.get()
            try:
                if item is _CLOSE:
                    return
                if self.closed:
                    continue
                payload, _ = item
                try:
                    await self._write(payload)
                except Exception as e:
                    self.closed = True
                    logger.info("[%s] Send failed, leg closed: %s", self.name, e)
            finally:
                self._queue.task_done()
