from __future__ import annotations

import logging

from aiohttp import web

from .constants import SERVICE_NAME
from .observability import ObservabilityManager

log = logging.getLogger("imposter_guard.health")


def build_health_app(observability: ObservabilityManager) -> web.Application:
    app = web.Application()

    async def health(_: web.Request) -> web.Response:
        summary = observability.get_health_summary()
        ok = summary["all_healthy"] and summary["state"] not in ("closing", "closed")
        return web.json_response(
            {"ok": ok, "service": SERVICE_NAME, "state": summary["state"], "stats": summary["stats"]},
            status=200 if ok else 503,
        )

    app.router.add_get("/", health)
    app.router.add_get("/healthz", health)
    return app


async def start_health_server(observability: ObservabilityManager, port: int, host: str = "0.0.0.0") -> web.AppRunner:
    runner = web.AppRunner(build_health_app(observability))
    await runner.setup()
    site = web.TCPSite(runner, host, port)
    await site.start()
    log.info("Health server listening on %s:%s", host, port)
    return runner
