"""
HTTP client for the Gruenbeck softener's ``/mux_http`` query endpoint.

Issues one POST per poll cycle asking for either all fourteen daily water
fields or just the most recent one. Designed to be bounded:

- At most ``retries`` attempts, separated by a fixed BACKOFF_S sleep.
- Response bodies are streamed into a size-checked buffer capped at
  MAX_RESPONSE_BYTES; anything larger is rejected.
- One ``httpx.AsyncClient`` is opened at startup and reused for every cycle
  until shutdown.

Operations:
- fetch(): POST the query and return the raw response bytes.
- open() / close(): Connection handle lifecycle (or use ``async with``).

CHANGELOG:
- 2026-10-12: Initial creation (STORY-004)

TODO:
- None
"""

from __future__ import annotations

import asyncio
import logging

import httpx

from gruenbeck.src.errors import NetworkError
from gruenbeck.src.models import HISTORY_DAYS

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

BACKOFF_S: float = 3.0
"""Fixed sleep in seconds between two fetch attempts."""

MAX_RESPONSE_BYTES: int = 1024 * 1024
"""Largest response body accepted from the device (1 MiB)."""

REQUEST_TIMEOUT_S: float = 10.0
"""Default per-attempt HTTP timeout in seconds."""

QUERY_ID: int = 625
"""Device query page that exposes the daily water fields."""

FIELD_PREFIX: str = "D_Y_2_"
"""Name prefix of the numbered daily water fields (suffix is 1-based)."""


def build_url(host: str) -> str:
    """Return the device query URL for *host* (``http://<host>/mux_http``)."""
    return f"http://{host}/mux_http"


def build_query(history_enabled: bool) -> str:
    """Return the POST body selecting the daily water fields.

    History mode asks for ``D_Y_2_1`` through ``D_Y_2_14`` pipe-delimited;
    single-value mode asks for ``D_Y_2_1`` only. The device expects the field
    list terminated by ``~``.
    """
    count = HISTORY_DAYS if history_enabled else 1
    fields = "|".join(f"{FIELD_PREFIX}{n}" for n in range(1, count + 1))
    return f"id={QUERY_ID}&show={fields}~"


class DeviceClient:
    """Retrying fetcher for the softener's XML query endpoint.

    The request body is fixed at construction from *history_enabled*. The
    retry budget applies per :meth:`fetch` call; nothing carries over between
    cycles except the pooled connection.

    Args:
        host: Device hostname or IP address (no scheme).
        retries: Maximum number of attempts per fetch (>= 1).
        history_enabled: Request all fourteen days instead of the latest.
        timeout_s: Per-attempt HTTP timeout in seconds.
        http_client: Optional pre-built ``httpx.AsyncClient``. When given,
            the caller keeps ownership and :meth:`close` leaves it open.

    Usage::

        async with DeviceClient(host="192.168.1.40", retries=3) as client:
            raw = await client.fetch()
    """

    def __init__(
        self,
        *,
        host: str,
        retries: int = 1,
        history_enabled: bool = True,
        timeout_s: float = REQUEST_TIMEOUT_S,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        if retries < 1:
            raise ValueError("retries must be >= 1")
        self._url = build_url(host)
        self._body = build_query(history_enabled)
        self._retries = retries
        self._timeout_s = timeout_s
        self._http = http_client
        self._owns_http = http_client is None

    @property
    def url(self) -> str:
        return self._url

    async def open(self) -> None:
        """Create the shared HTTP connection handle if not injected."""
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=self._timeout_s)
            self._owns_http = True

    async def close(self) -> None:
        """Release the HTTP connection handle if this client created it."""
        if self._http is not None and self._owns_http:
            await self._http.aclose()
            self._http = None

    async def __aenter__(self) -> DeviceClient:
        await self.open()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: object,
    ) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def fetch(self) -> bytes:
        """POST the query and return the raw response body.

        Transport errors, timeouts and non-2xx responses count as failed
        attempts and are retried after BACKOFF_S. An oversized body is not
        retried.

        Returns:
            The response body as bytes.

        Raises:
            NetworkError: All attempts failed, or the body exceeded
                MAX_RESPONSE_BYTES.
        """
        assert self._http is not None, "DeviceClient not opened. Call open() or use async with."

        last_exc: Exception | None = None
        for attempt in range(1, self._retries + 1):
            if attempt > 1:
                await asyncio.sleep(BACKOFF_S)
            try:
                return await self._post_once()
            except httpx.HTTPError as exc:
                last_exc = exc
                logger.warning(
                    "Fetch attempt %d/%d to %s failed: %s",
                    attempt,
                    self._retries,
                    self._url,
                    exc,
                )

        raise NetworkError(
            f"Fetch from {self._url} failed after {self._retries} attempt(s): {last_exc}"
        ) from last_exc

    # ------------------------------------------------------------------
    # Private helpers
    # ------------------------------------------------------------------

    async def _post_once(self) -> bytes:
        """Issue a single POST and read the body into a capped buffer."""
        buf = bytearray()
        async with self._http.stream(  # type: ignore[union-attr]
            "POST",
            self._url,
            content=self._body,
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        ) as response:
            response.raise_for_status()
            async for chunk in response.aiter_bytes():
                if len(buf) + len(chunk) > MAX_RESPONSE_BYTES:
                    raise NetworkError(
                        f"Response from {self._url} exceeds {MAX_RESPONSE_BYTES} bytes"
                    )
                buf.extend(chunk)
        return bytes(buf)
