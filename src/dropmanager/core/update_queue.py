from __future__ import annotations

import asyncio
import logging
import uuid
from typing import Any, Mapping

from dropmanager.common.settings import UPDATE_QUEUE_SIZE
from dropmanager.utils.time_util import utcnow

from .project_manager import ProjectManager
from .schemas import ProcessUpdateRequest, UpdateTicket

logger = logging.getLogger(__name__)

# Finished tickets kept for status lookups; oldest are evicted first
TICKET_HISTORY = 1000


class UpdateQueue:
    """Bounded FIFO of pending updates drained by a single worker task.

    `submit` acknowledges immediately with a ``queued`` ticket; the worker
    moves it through ``processing`` to ``processed`` or ``failed``. A full
    queue yields a ``rejected`` ticket instead of blocking the caller.
    """

    def __init__(
        self,
        manager: ProjectManager,
        maxsize: int = UPDATE_QUEUE_SIZE,
        history: int = TICKET_HISTORY,
    ) -> None:
        self.manager = manager
        self.maxsize = maxsize
        self.history = history
        self._queue: asyncio.Queue[tuple[str, ProcessUpdateRequest | Mapping[str, Any]]] = asyncio.Queue(maxsize=maxsize)
        self._tickets: dict[str, UpdateTicket] = {}
        self._worker: asyncio.Task | None = None
        self.on_processed = None

    def submit(self, request: ProcessUpdateRequest | Mapping[str, Any]) -> UpdateTicket:
        ticket = UpdateTicket(ticket_id=f"ticket-{uuid.uuid4().hex[:12]}", status="queued")
        try:
            self._queue.put_nowait((ticket.ticket_id, request))
        except asyncio.QueueFull:
            ticket.status = "rejected"
            ticket.completed_at = utcnow()
            ticket.error = f"Update queue is full ({self.maxsize} pending)"
            logger.warning("Rejected update submission: queue full")
        self._tickets[ticket.ticket_id] = ticket
        self._evict_finished()
        return ticket

    def status(self, ticket_id: str) -> UpdateTicket | None:
        return self._tickets.get(ticket_id)

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def start(self) -> None:
        if self.running:
            return
        self._worker = asyncio.get_running_loop().create_task(self._run(), name="dropmanager-update-queue")
        logger.info("Update queue worker started (maxsize=%d)", self.maxsize)

    async def stop(self) -> None:
        worker = self._worker
        self._worker = None
        if worker is None:
            return
        worker.cancel()
        try:
            await worker
        except asyncio.CancelledError:
            pass
        logger.info("Update queue worker stopped")

    async def join(self) -> None:
        """Wait until every submitted update has been handled."""
        await self._queue.join()

    async def _run(self) -> None:
        while True:
            ticket_id, request = await self._queue.get()
            ticket = self._tickets[ticket_id]
            ticket.status = "processing"
            try:
                response = await self.manager.process_update(request)
            except Exception as exc:
                logger.exception("Queued update %s failed", ticket_id)
                ticket.status = "failed"
                ticket.error = str(exc)
            else:
                ticket.response = response
                ticket.status = "processed" if response.success else "failed"
                if not response.success:
                    ticket.error = response.message
                if self.on_processed is not None and response.success:
                    try:
                        self.on_processed(response)
                    except Exception:
                        logger.exception("on_processed callback failed for %s", ticket_id)
            finally:
                ticket.completed_at = utcnow()
                self._queue.task_done()
                self._evict_finished()

    def _evict_finished(self) -> None:
        finished = [tid for tid, t in self._tickets.items() if t.status in ("processed", "failed", "rejected")]
        for ticket_id in finished[: max(0, len(finished) - self.history)]:
            del self._tickets[ticket_id]
