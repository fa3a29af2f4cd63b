from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Optional

import aiohttp

from ..constants import LISTITEM_COLLECTION, RETRYABLE_STATUSES
from ..errors import ActionError, AuthError
from ..moderation.models import BlockAction

log = logging.getLogger("imposter_guard.bsky_client")


@dataclass(frozen=True)
class Session:
    did: str
    handle: str
    access_jwt: str
    refresh_jwt: str


class BskyClient:
    """Minimal atproto XRPC client: session management plus list-item writes.

    Transient failures (rate limits, 5xx, timeouts, connection resets) are
    retried here with bounded exponential backoff; callers see either a
    record URI or an ``ActionError``.
    """

    def __init__(
        self,
        service_url: str,
        identifier: str,
        password: str,
        *,
        http: Optional[aiohttp.ClientSession] = None,
        max_retries: int = 2,
        base_delay: float = 0.5,
        max_delay: float = 30.0,
        timeout_seconds: float = 10.0,
    ) -> None:
        self.service_url = service_url.rstrip("/")
        self._identifier = identifier
        self._password = password
        self._http = http
        self._owns_http = http is None
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._timeout = aiohttp.ClientTimeout(total=timeout_seconds)
        self._session: Optional[Session] = None
        self._refresh_lock = asyncio.Lock()

    async def __aenter__(self) -> "BskyClient":
        await self.open()
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    async def open(self) -> None:
        if self._http is None:
            self._http = aiohttp.ClientSession(timeout=self._timeout)
            self._owns_http = True

    async def close(self) -> None:
        if self._http is not None and self._owns_http:
            await self._http.close()
        self._http = None

    @property
    def session(self) -> Optional[Session]:
        return self._session

    @property
    def did(self) -> str:
        if self._session is None:
            raise AuthError("not logged in")
        return self._session.did

    async def login(self) -> Session:
        try:
            data = await self._post(
                "com.atproto.server.createSession",
                {"identifier": self._identifier, "password": self._password},
            )
        except AuthError:
            raise
        except ActionError as e:
            raise AuthError(f"createSession failed: {e}", status=e.status, error=e.error) from e

        self._session = self._session_from(data)
        log.info("Logged in as %s (%s)", self._session.handle or self._identifier, self._session.did)
        return self._session

    async def refresh(self) -> Session:
        async with self._refresh_lock:
            if self._session is None:
                return await self.login()
            try:
                data = await self._post("com.atproto.server.refreshSession", None, token=self._session.refresh_jwt)
            except ActionError as e:
                log.warning("Session refresh failed (%s); logging in again", e)
                return await self.login()
            self._session = self._session_from(data)
            log.info("Session refreshed for %s", self._session.did)
            return self._session

    async def create_list_item(self, action: BlockAction) -> str:
        if self._session is None:
            raise AuthError("create_list_item called before login")

        body = {
            "repo": self._session.did,
            "collection": LISTITEM_COLLECTION,
            "record": action.to_record(),
        }
        try:
            data = await self._post(
                "com.atproto.repo.createRecord", body, token=self._session.access_jwt, idempotent=False
            )
        except ActionError as e:
            if e.error != "ExpiredToken":
                raise
            await self.refresh()
            body["repo"] = self.did
            data = await self._post(
                "com.atproto.repo.createRecord", body, token=self._session.access_jwt, idempotent=False
            )
        return str(data.get("uri") or "")

    # --- internals ---

    @staticmethod
    def _session_from(data: dict[str, Any]) -> Session:
        try:
            return Session(
                did=str(data["did"]),
                handle=str(data.get("handle") or ""),
                access_jwt=str(data["accessJwt"]),
                refresh_jwt=str(data["refreshJwt"]),
            )
        except KeyError as e:
            raise AuthError(f"session response missing {e.args[0]}") from e

    def _get_backoff_delay(self, attempt: int, retry_after: Optional[float] = None) -> float:
        if retry_after is not None:
            return min(max(retry_after, 0.0) + 0.1, self.max_delay)
        return min(self.base_delay * (2 ** attempt), self.max_delay)

    def _should_retry(self, error: ActionError, attempt: int, *, idempotent: bool = True) -> bool:
        if attempt >= self.max_retries:
            return False
        # No status means the request never got a response (timeout, reset).
        # A non-idempotent write may still have landed, unless we never connected.
        if error.status is None:
            return idempotent or error.error == "ConnectError"
        return error.status in RETRYABLE_STATUSES

    @staticmethod
    def _retry_after(resp: aiohttp.ClientResponse) -> Optional[float]:
        raw = resp.headers.get("Retry-After")
        if raw:
            try:
                return float(raw)
            except ValueError:
                pass
        reset = resp.headers.get("ratelimit-reset")
        if reset:
            try:
                return float(reset) - time.time()
            except ValueError:
                pass
        return None

    @staticmethod
    async def _read_json(resp: aiohttp.ClientResponse) -> dict[str, Any]:
        try:
            data = await resp.json(content_type=None)
        except ValueError:
            return {}
        return data if isinstance(data, dict) else {}

    async def _post(
        self,
        nsid: str,
        body: Optional[dict[str, Any]],
        *,
        token: Optional[str] = None,
        idempotent: bool = True,
    ) -> dict[str, Any]:
        if self._http is None:
            await self.open()
        assert self._http is not None

        url = f"{self.service_url}/xrpc/{nsid}"
        headers = {"Authorization": f"Bearer {token}"} if token else {}

        attempt = 0
        while True:
            retry_after: Optional[float] = None
            try:
                async with self._http.post(url, json=body, headers=headers) as resp:
                    data = await self._read_json(resp)
                    if resp.status < 400:
                        return data
                    err_cls = AuthError if resp.status == 401 else ActionError
                    error = err_cls(
                        str(data.get("message") or resp.reason or f"{nsid} failed"),
                        status=resp.status,
                        error=data.get("error") if isinstance(data.get("error"), str) else None,
                    )
                    retry_after = self._retry_after(resp)
            except asyncio.TimeoutError:
                error = ActionError(f"{nsid} timed out", error="Timeout")
            except aiohttp.ClientConnectorError as e:
                error = ActionError(f"{nsid} cannot connect: {e}", error="ConnectError")
            except aiohttp.ClientError as e:
                error = ActionError(f"{nsid} transport failure: {e}", error=type(e).__name__)

            if not self._should_retry(error, attempt, idempotent=idempotent):
                raise error

            delay = self._get_backoff_delay(attempt, retry_after)
            log.info(
                "XRPC %s failed (%s); retrying in %.2fs (attempt %d/%d)",
                nsid, error, delay, attempt + 1, self.max_retries,
            )
            await asyncio.sleep(delay)
            attempt += 1
