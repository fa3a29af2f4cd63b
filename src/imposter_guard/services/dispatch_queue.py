from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional

from .stats import RuntimeStats

if TYPE_CHECKING:
    from ..moderation.dispatcher import ActionDispatcher

log = logging.getLogger("imposter_guard.queue")


@dataclass(frozen=True)
class QueuePolicy:
    max_queue_size: int = 100


@dataclass(frozen=True)
class _Job:
    subject_did: str
    list_uri: str


class DispatchQueue:
    """Single-worker FIFO in front of the ActionDispatcher.

    Jobs run strictly in submission order. ``submit`` waits when the queue is
    full, so a slow API stalls the stream instead of growing memory.
    """

    def __init__(self, dispatcher: "ActionDispatcher", policy: QueuePolicy, stats: RuntimeStats) -> None:
        self._dispatcher = dispatcher
        self._policy = policy
        self._stats = stats
        self._q: asyncio.Queue[_Job] = asyncio.Queue(maxsize=max(1, policy.max_queue_size))
        self._runner: Optional[asyncio.Task[None]] = None

    @property
    def running(self) -> bool:
        return self._runner is not None and not self._runner.done()

    def start(self) -> None:
        if self.running:
            return
        self._runner = asyncio.create_task(self._run(), name="imposter-guard-dispatch")
        log.info("DispatchQueue started (max_size=%s)", self._policy.max_queue_size)

    def size(self) -> int:
        return self._q.qsize()

    async def submit(self, subject_did: str, list_uri: str) -> None:
        if not self.running:
            raise RuntimeError("DispatchQueue is not running")
        await self._q.put(_Job(subject_did=subject_did, list_uri=list_uri))

    async def drain(self) -> None:
        """Wait until every submitted job has been dispatched."""
        await self._q.join()

    async def stop(self) -> int:
        """Cancel the worker without waiting for in-flight calls.

        Returns the number of queued jobs that were abandoned.
        """
        abandoned = 0
        while True:
            try:
                job = self._q.get_nowait()
            except asyncio.QueueEmpty:
                break
            self._q.task_done()
            abandoned += 1
            log.warning("Abandoning queued block action for %s", job.subject_did)

        if self._runner is not None:
            self._runner.cancel()
            try:
                await self._runner
            except asyncio.CancelledError:
                pass
            self._runner = None

        self._stats.actions_abandoned += abandoned
        log.info("DispatchQueue stopped (abandoned=%d)", abandoned)
        return abandoned

    async def _run(self) -> None:
        while True:
            job = await self._q.get()
            try:
                await self._dispatcher.dispatch(job.subject_did, job.list_uri)
            except asyncio.CancelledError:
                self._stats.actions_abandoned += 1
                raise
            except Exception:
                # dispatch() reports its own failures; this is a bug guard
                self._stats.actions_failed += 1
                log.exception("Dispatch job for %s failed", job.subject_did)
            finally:
                self._q.task_done()
