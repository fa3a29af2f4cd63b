from __future__ import annotations

import asyncio
import logging
from enum import Enum

from .errors import TransportError
from .interfaces import StreamTransport, validate_transport
from .moderation.pipeline import ModerationPipeline
from .observability import ObservabilityManager

log = logging.getLogger("imposter_guard.stream")


class StreamState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    PROCESSING = "processing"
    CLOSING = "closing"
    CLOSED = "closed"


class StreamLoop:
    """Owns one stream connection and feeds frames through the pipeline.

    Frames are processed one at a time in arrival order. A fault while
    processing a frame is logged and counted; only transport closure, a
    transport error or ``request_close()`` ends the loop.
    """

    def __init__(
        self,
        transport: StreamTransport,
        pipeline: ModerationPipeline,
        observability: ObservabilityManager,
    ) -> None:
        self.transport = validate_transport(transport)
        self.pipeline = pipeline
        self.obs = observability
        self.state = StreamState.DISCONNECTED
        self.history: list[StreamState] = [self.state]
        self._stop = asyncio.Event()

    def _set_state(self, state: StreamState) -> None:
        self.state = state
        self.history.append(state)
        self.obs.log_state(state.value)

    @property
    def closing(self) -> bool:
        return self._stop.is_set()

    def request_close(self) -> None:
        if not self._stop.is_set():
            log.info("Shutdown requested; closing stream")
        self._stop.set()

    async def run(self) -> None:
        if self.state is not StreamState.DISCONNECTED:
            raise RuntimeError(f"StreamLoop.run() called in state {self.state.value}")

        self._set_state(StreamState.CONNECTING)
        try:
            await self.transport.connect()
        except BaseException:
            # TransportError or cancellation mid-connect
            await self._shutdown()
            raise

        self._set_state(StreamState.CONNECTED)
        stop_waiter = asyncio.create_task(self._stop.wait(), name="imposter-guard-stop")
        try:
            await self._receive_loop(stop_waiter)
        finally:
            stop_waiter.cancel()
            await self._shutdown()

    async def _receive_loop(self, stop_waiter: "asyncio.Task[bool]") -> None:
        while not self._stop.is_set():
            recv = asyncio.ensure_future(self.transport.receive())
            try:
                done, _ = await asyncio.wait({recv, stop_waiter}, return_when=asyncio.FIRST_COMPLETED)
            except asyncio.CancelledError:
                recv.cancel()
                raise

            if recv not in done:
                recv.cancel()
                try:
                    await recv
                except (asyncio.CancelledError, TransportError):
                    pass
                return

            # TransportError propagates to run()
            frame = recv.result()
            if frame is None:
                log.info("Stream closed by peer")
                return

            self._set_state(StreamState.PROCESSING)
            try:
                await self.pipeline.process(frame)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                self.obs.stats.processing_faults += 1
                self.obs.log_fault("processing", e)
                log.debug("Processing fault detail", exc_info=True)
            self._set_state(StreamState.CONNECTED)

    async def _shutdown(self) -> None:
        if self.state is StreamState.CLOSED:
            return
        self._set_state(StreamState.CLOSING)
        try:
            await self.transport.close()
        except Exception:
            log.exception("Error while closing transport")
        self._set_state(StreamState.CLOSED)

