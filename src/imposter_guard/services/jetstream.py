from __future__ import annotations

import asyncio
import logging
from typing import Optional, Union

import aiohttp

from ..errors import TransportError

log = logging.getLogger("imposter_guard.jetstream")

_CLOSED_TYPES = (
    aiohttp.WSMsgType.CLOSE,
    aiohttp.WSMsgType.CLOSING,
    aiohttp.WSMsgType.CLOSED,
)
_NORMAL_CLOSE = 1000


class JetstreamTransport:
    """aiohttp WebSocket connection to a Jetstream endpoint.

    No reconnection here. A dropped connection surfaces as
    ``receive() -> None`` (close code 1000) or ``TransportError`` (any other
    close code, or a failure).
    """

    def __init__(
        self,
        url: str,
        *,
        http: Optional[aiohttp.ClientSession] = None,
        heartbeat: float = 30.0,
        connect_timeout: float = 15.0,
    ) -> None:
        self.url = url
        self._http = http
        self._owns_http = http is None
        self._heartbeat = heartbeat
        self._connect_timeout = connect_timeout
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None

    @property
    def connected(self) -> bool:
        return self._ws is not None and not self._ws.closed

    async def connect(self) -> None:
        if self._http is None:
            self._http = aiohttp.ClientSession()
            self._owns_http = True
        log.info("Connecting to %s", self.url)
        try:
            self._ws = await asyncio.wait_for(
                self._http.ws_connect(self.url, heartbeat=self._heartbeat, max_msg_size=0),
                timeout=self._connect_timeout,
            )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            await self._release_http()
            raise TransportError(f"cannot connect to {self.url}: {e}") from e
        log.info("Connected to the Jetstream server")

    async def receive(self) -> Optional[Union[str, bytes]]:
        if self._ws is None:
            raise TransportError("receive() before connect()")
        try:
            msg = await self._ws.receive()
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise TransportError(f"stream receive failed: {e}") from e

        if msg.type == aiohttp.WSMsgType.TEXT:
            return msg.data
        if msg.type == aiohttp.WSMsgType.BINARY:
            return msg.data
        if msg.type in _CLOSED_TYPES:
            code = self._ws.close_code
            if code is None and msg.type == aiohttp.WSMsgType.CLOSE:
                code = msg.data
            if code is not None and code != _NORMAL_CLOSE:
                raise TransportError(f"stream closed abnormally (code={code})")
            log.info("WebSocket connection closed (code=%s)", code)
            return None
        if msg.type == aiohttp.WSMsgType.ERROR:
            raise TransportError(f"stream error: {self._ws.exception()!r}")
        # PING/PONG are handled by aiohttp; anything else is unexpected.
        raise TransportError(f"unexpected websocket message type: {msg.type!r}")

    async def close(self) -> None:
        ws, self._ws = self._ws, None
        if ws is not None and not ws.closed:
            await ws.close()
        await self._release_http()

    async def _release_http(self) -> None:
        if self._http is not None and self._owns_http:
            await self._http.close()
            self._http = None
