"""Tests for the Stream Loop lifecycle."""

import asyncio

import pytest

from factories import BLOCKLIST_URI, frame, profile_event
from imposter_guard.errors import TransportError
from imposter_guard.runner import build_components, run_stream
from imposter_guard.stream_loop import StreamLoop, StreamState
from imposter_guard.testing.fakes import FakeListWriter, FakeTransport

S = StreamState


class _ExplodingPipeline:
    """Pipeline stand-in that faults on selected frames."""

    def __init__(self, bad: set):
        self.bad = bad
        self.seen = []

    async def process(self, raw):
        self.seen.append(raw)
        if raw in self.bad:
            raise ValueError(f"cannot handle {raw}")


class _StalledConnectTransport(FakeTransport):
    """Transport whose connect() never completes."""

    async def connect(self):
        await asyncio.Event().wait()


class TestStreamLoop:
    def test_clean_close_walks_the_state_machine(self, registry, observability):
        transport = FakeTransport([frame(profile_event("did:plc:AAA", "Jane Doe"))])
        components = build_components(
            registry=registry, writer=FakeListWriter(), list_uri=BLOCKLIST_URI, observability=observability
        )
        loop = StreamLoop(transport, components.pipeline, observability)

        asyncio.run(loop.run())

        assert loop.state is S.CLOSED
        assert loop.history == [
            S.DISCONNECTED, S.CONNECTING, S.CONNECTED, S.PROCESSING, S.CONNECTED, S.CLOSING, S.CLOSED,
        ]
        assert transport.close_calls == 1

    def test_malformed_frame_keeps_loop_connected(self, registry, observability):
        writer = FakeListWriter()
        components = build_components(
            registry=registry, writer=writer, list_uri=BLOCKLIST_URI, observability=observability
        )
        transport = FakeTransport(["{not json", frame(profile_event("did:plc:AAA", "Elon Musk"))])
        loop = StreamLoop(transport, components.pipeline, observability)

        async def scenario():
            components.queue.start()
            try:
                await loop.run()
                await asyncio.wait_for(components.queue.drain(), timeout=1)
            finally:
                await components.queue.stop()

        asyncio.run(scenario())

        assert observability.stats.decode_failures == 1
        assert observability.stats.processing_faults == 0
        assert loop.history == [
            S.DISCONNECTED, S.CONNECTING, S.CONNECTED,
            S.PROCESSING, S.CONNECTED,
            S.PROCESSING, S.CONNECTED,
            S.CLOSING, S.CLOSED,
        ]
        assert writer.subjects == ["did:plc:AAA"]

    def test_processing_fault_is_contained(self, observability):
        pipeline = _ExplodingPipeline(bad={"b"})
        transport = FakeTransport(["a", "b", "c"])
        loop = StreamLoop(transport, pipeline, observability)

        asyncio.run(loop.run())

        assert pipeline.seen == ["a", "b", "c"]
        assert observability.stats.processing_faults == 1
        assert loop.state is S.CLOSED
        assert observability.get_health_summary()["error_counts"] == {"error:ValueError": 1}

    def test_transport_error_is_propagated(self, observability):
        pipeline = _ExplodingPipeline(bad=set())
        transport = FakeTransport(["a"], error=TransportError("connection reset"))
        loop = StreamLoop(transport, pipeline, observability)

        with pytest.raises(TransportError):
            asyncio.run(loop.run())

        assert pipeline.seen == ["a"]
        assert loop.history[-2:] == [S.CLOSING, S.CLOSED]
        assert transport.close_calls == 1

    def test_connect_failure_closes(self, observability):
        transport = FakeTransport(connect_error=TransportError("refused"))
        loop = StreamLoop(transport, _ExplodingPipeline(bad=set()), observability)

        with pytest.raises(TransportError):
            asyncio.run(loop.run())

        assert loop.history == [S.DISCONNECTED, S.CONNECTING, S.CLOSING, S.CLOSED]

    def test_request_close_interrupts_pending_receive(self, observability):
        transport = FakeTransport(["a"], hold_open=True)
        pipeline = _ExplodingPipeline(bad=set())
        loop = StreamLoop(transport, pipeline, observability)

        async def scenario():
            task = asyncio.create_task(loop.run())
            await asyncio.sleep(0.02)
            assert loop.state is S.CONNECTED
            loop.request_close()
            await asyncio.wait_for(task, timeout=1)

        asyncio.run(scenario())
        assert pipeline.seen == ["a"]
        assert loop.state is S.CLOSED

    def test_cancel_during_connect_closes_transport(self, observability):
        transport = _StalledConnectTransport()
        loop = StreamLoop(transport, _ExplodingPipeline(bad=set()), observability)

        async def scenario():
            task = asyncio.create_task(loop.run())
            await asyncio.sleep(0.02)
            assert loop.state is S.CONNECTING
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        asyncio.run(scenario())
        assert loop.history == [S.DISCONNECTED, S.CONNECTING, S.CLOSING, S.CLOSED]
        assert transport.close_calls == 1

    def test_run_twice_is_rejected(self, observability):
        loop = StreamLoop(FakeTransport(), _ExplodingPipeline(bad=set()), observability)
        asyncio.run(loop.run())
        with pytest.raises(RuntimeError):
            asyncio.run(loop.run())

    def test_rejects_non_transport(self, observability):
        with pytest.raises(TypeError):
            StreamLoop(object(), _ExplodingPipeline(bad=set()), observability)  # type: ignore[arg-type]


class TestRunStream:
    def _components(self, registry, writer):
        return build_components(registry=registry, writer=writer, list_uri=BLOCKLIST_URI)

    def test_stop_event_shuts_down(self, registry):
        writer = FakeListWriter()

        async def scenario():
            transport = FakeTransport([frame(profile_event("did:plc:AAA", "Elon Musk"))], hold_open=True)
            components = self._components(registry, writer)
            stop = asyncio.Event()
            task = asyncio.create_task(run_stream(transport, components, stop, shutdown_timeout=1))
            await asyncio.sleep(0.05)
            stop.set()
            return await asyncio.wait_for(task, timeout=2)

        assert asyncio.run(scenario()) == 0
        assert writer.subjects == ["did:plc:AAA"]

    def test_stop_while_connecting_closes_transport(self, registry):
        transport = _StalledConnectTransport()

        async def scenario():
            components = self._components(registry, FakeListWriter())
            stop = asyncio.Event()
            task = asyncio.create_task(run_stream(transport, components, stop, shutdown_timeout=0.1))
            await asyncio.sleep(0.02)
            stop.set()
            code = await asyncio.wait_for(task, timeout=2)
            return code, components.observability.get_health_summary()["state"]

        code, state = asyncio.run(scenario())
        assert code == 0
        assert state == "closed"
        assert transport.close_calls == 1

    def test_transport_failure_exit_code(self, registry):
        async def scenario():
            transport = FakeTransport(error=TransportError("boom"))
            return await run_stream(transport, self._components(registry, FakeListWriter()), asyncio.Event())

        assert asyncio.run(scenario()) == 1

    def test_shutdown_abandons_slow_dispatches(self, registry):
        writer = FakeListWriter(delay=30)

        async def scenario():
            frames = [frame(profile_event(f"did:plc:{i}", "Elon Musk")) for i in range(3)]
            transport = FakeTransport(frames, hold_open=True)
            components = self._components(registry, writer)
            stop = asyncio.Event()
            task = asyncio.create_task(run_stream(transport, components, stop, shutdown_timeout=0.5))
            await asyncio.sleep(0.05)
            stop.set()
            code = await asyncio.wait_for(task, timeout=2)
            return code, components.observability.stats

        code, stats = asyncio.run(scenario())
        assert code == 0
        assert writer.actions == []
        assert stats.actions_abandoned == 3
        assert stats.events_matched == 3
