from __future__ import annotations

import asyncio
import logging
import signal
from dataclasses import dataclass
from typing import Optional

from aiohttp import web

from .config import Settings
from .errors import ActionError, ImposterGuardError, TransportError
from .health import start_health_server
from .interfaces import ListItemWriter, StreamTransport
from .moderation.dispatcher import ActionDispatcher
from .moderation.pipeline import ModerationPipeline
from .moderation.registry import ImpersonationRegistry, load_registry
from .observability import ObservabilityManager
from .services.bsky_client import BskyClient
from .services.dispatch_queue import DispatchQueue, QueuePolicy
from .services.jetstream import JetstreamTransport
from .services.stats import RuntimeStats
from .stream_loop import StreamLoop
from .testing.dryrun import DryRunListWriter

log = logging.getLogger("imposter_guard.runner")


@dataclass
class Components:
    observability: ObservabilityManager
    registry: ImpersonationRegistry
    dispatcher: ActionDispatcher
    queue: DispatchQueue
    pipeline: ModerationPipeline


def build_components(
    *,
    registry: ImpersonationRegistry,
    writer: ListItemWriter,
    list_uri: str,
    queue_size: int = 100,
    observability: Optional[ObservabilityManager] = None,
) -> Components:
    """Wire the pipeline once; everything downstream receives its collaborators explicitly."""
    obs = observability or ObservabilityManager(RuntimeStats())
    dispatcher = ActionDispatcher(writer=writer, observability=obs)
    queue = DispatchQueue(dispatcher, QueuePolicy(max_queue_size=queue_size), obs.stats)
    pipeline = ModerationPipeline(registry=registry, sink=queue, list_uri=list_uri, observability=obs)
    return Components(
        observability=obs,
        registry=registry,
        dispatcher=dispatcher,
        queue=queue,
        pipeline=pipeline,
    )


def install_signal_handlers(stop_event: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()

    def _signal_handler(sig: signal.Signals) -> None:
        log.info("%s received. Closing stream...", sig.name)
        stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, _signal_handler, sig)
        except NotImplementedError:
            # Windows / limited environments
            pass


async def run_stream(
    transport: StreamTransport,
    components: Components,
    stop_event: asyncio.Event,
    *,
    shutdown_timeout: float = 5.0,
) -> int:
    """Run one stream connection until it closes or ``stop_event`` fires.

    Returns the process exit status: 0 for a clean close or requested
    shutdown, 1 for a transport failure.
    """
    stream = StreamLoop(transport, components.pipeline, components.observability)
    components.queue.start()

    run_task = asyncio.create_task(stream.run(), name="imposter-guard-stream")
    stop_task = asyncio.create_task(stop_event.wait(), name="imposter-guard-stop")
    exit_code = 0
    try:
        await asyncio.wait({run_task, stop_task}, return_when=asyncio.FIRST_COMPLETED)

        if stop_event.is_set() and not run_task.done():
            stream.request_close()
            done, _ = await asyncio.wait({run_task}, timeout=shutdown_timeout)
            if not done:
                log.warning("Stream did not close within %.1fs; cancelling", shutdown_timeout)
                run_task.cancel()
                await asyncio.gather(run_task, return_exceptions=True)

        if run_task.done() and not run_task.cancelled():
            exc = run_task.exception()
            if isinstance(exc, TransportError):
                log.error("Stream transport failed: %s", exc)
                exit_code = 1
            elif exc is not None:
                raise exc

        if not stop_event.is_set():
            # Stream ended on its own; give queued blocks a bounded chance to land.
            try:
                await asyncio.wait_for(components.queue.drain(), timeout=shutdown_timeout)
            except asyncio.TimeoutError:
                log.warning("Dispatch queue not drained within %.1fs", shutdown_timeout)
    finally:
        stop_task.cancel()
        await components.queue.stop()

    log.info("Stream loop finished: %s", components.observability.stats.snapshot())
    return exit_code


async def main_async(settings: Settings) -> int:
    obs = ObservabilityManager(RuntimeStats())

    try:
        registry = load_registry(settings.watchlist_path or None)
    except ImposterGuardError as e:
        obs.log_startup_event("registry", "FAILED", {"error": str(e)})
        return 1
    obs.log_startup_event("registry", "OK", {"entries": len(registry), "fingerprint": registry.fingerprint})

    health_runner: Optional[web.AppRunner] = None
    if settings.health_server_enabled:
        health_runner = await start_health_server(obs, settings.port)
        obs.log_startup_event("health_server", "OK")

    client: Optional[BskyClient] = None
    writer: ListItemWriter
    try:
        if settings.dry_run:
            writer = DryRunListWriter()
            log.info("DRY_RUN enabled; no list items will be written")
        else:
            client = BskyClient(
                settings.service_url,
                settings.identifier,
                settings.password,
                max_retries=settings.api_max_retries,
                timeout_seconds=settings.api_timeout_seconds,
            )
            await client.open()
            try:
                await client.login()
            except ActionError as e:
                obs.log_startup_event("session", "FAILED", {"error": str(e)})
                return 1
            writer = client
        obs.log_startup_event("session", "OK")

        components = build_components(
            registry=registry,
            writer=writer,
            list_uri=settings.blocklist_uri,
            queue_size=settings.dispatch_queue_size,
            observability=obs,
        )

        stop_event = asyncio.Event()
        install_signal_handlers(stop_event)

        transport = JetstreamTransport(settings.jetstream_url)
        return await run_stream(
            transport,
            components,
            stop_event,
            shutdown_timeout=settings.shutdown_timeout_seconds,
        )
    finally:
        if client is not None:
            await client.close()
        if health_runner is not None:
            await health_runner.cleanup()
