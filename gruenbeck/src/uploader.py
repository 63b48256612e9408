"""
Drains spooled gauge samples to the monitoring pipeline's ingest endpoint.

Each pass takes up to ``batch_size`` rows from the spool and decodes them
back into :class:`~gruenbeck.src.models.GaugeSample`. Rows that no longer
decode (hand-edited database, older schema) can never be delivered; they are
logged and acked so they do not block the queue. The remaining samples are
POSTed, oldest day first, as::

    {"samples": [{"plugin": "gruenbeck", "type": "gauge",
                  "type_instance": "water", "ts": "...", "value": 412.0}]}

to ``<ingest_base_url>/v1/ingest`` with Bearer authentication. A 2xx response
acks exactly the posted rows. Anything else leaves them queued and doubles
the wait before the next pass, up to ``max_backoff_s``.

Timestamps are usually in the past: a back-filled day carries the 23:00
boundary of the day it describes.

CHANGELOG:
- 2026-10-19: Decode rows as GaugeSample, drop undeliverable rows (STORY-015)
- 2026-10-13: Treat every transport error as a retryable upload failure
- 2026-10-12: Initial creation (STORY-009)

TODO:
- None
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import httpx
from pydantic import ValidationError

from gruenbeck.src.models import GaugeSample

if TYPE_CHECKING:
    from gruenbeck.src.spool import Spool

logger = logging.getLogger(__name__)

INGEST_PATH: str = "/v1/ingest"

_BACKOFF_START_S = 1.0


def decode_rows(
    rows: list[tuple[int, str]],
) -> tuple[list[tuple[int, GaugeSample]], list[int]]:
    """Split spool rows into decodable samples and undeliverable rowids."""
    decoded: list[tuple[int, GaugeSample]] = []
    rejected: list[int] = []
    for rowid, payload in rows:
        try:
            decoded.append((rowid, GaugeSample.model_validate_json(payload)))
        except ValidationError as exc:
            logger.warning(
                "Spool row %d is not a gauge sample (%d error(s)), dropping it",
                rowid,
                exc.error_count(),
            )
            rejected.append(rowid)
    return decoded, rejected


class Uploader:
    """Batch uploader for gauge samples.

    Args:
        ingest_base_url: Base URL of the ingest service; must be ``https://``.
        ingest_token: Bearer token for the Authorization header.
        batch_size: Maximum rows taken from the spool per pass.
        max_backoff_s: Upper bound of the failure backoff in seconds.

    Raises:
        ValueError: If *ingest_base_url* is not an ``https://`` URL.
    """

    def __init__(
        self,
        ingest_base_url: str,
        ingest_token: str,
        batch_size: int,
        max_backoff_s: float = 300.0,
    ) -> None:
        if not ingest_base_url.lower().startswith("https://"):
            raise ValueError(f"Ingest base URL must use HTTPS (got: '{ingest_base_url}').")
        self.ingest_url = ingest_base_url.rstrip("/") + INGEST_PATH
        self._headers = {"Authorization": f"Bearer {ingest_token}"}
        self._batch_size = batch_size
        self._max_backoff_s = max_backoff_s
        self._backoff_s = _BACKOFF_START_S

    @property
    def current_backoff(self) -> float:
        """Seconds the upload loop should wait at least before the next pass."""
        return self._backoff_s

    async def upload_batch(self, spool: Spool) -> bool:
        """Upload one batch from *spool*.

        Returns:
            True when samples were delivered and acked. False when the spool
            was empty, every row was undeliverable, or the POST failed.
        """
        rows = await spool.peek(self._batch_size)
        if not rows:
            logger.debug("Spool empty, skipping upload.")
            return False

        decoded, rejected = decode_rows(rows)
        if rejected:
            await spool.ack(rejected)
        if not decoded:
            return False

        decoded.sort(key=lambda item: item[1].ts)
        body = {"samples": [sample.model_dump(mode="json") for _, sample in decoded]}

        try:
            async with httpx.AsyncClient(verify=True) as client:
                response = await client.post(self.ingest_url, json=body, headers=self._headers)
        except httpx.TransportError as exc:
            self._failed(f"network error: {exc}")
            return False

        if not 200 <= response.status_code < 300:
            self._failed(f"HTTP {response.status_code}")
            return False

        rowids = [rowid for rowid, _ in decoded]
        await spool.ack(rowids)
        self._backoff_s = _BACKOFF_START_S
        logger.info(
            "Uploaded %d sample(s) from %s to %s",
            len(decoded),
            decoded[0][1].ts.isoformat(),
            decoded[-1][1].ts.isoformat(),
        )
        return True

    def _failed(self, reason: str) -> None:
        self._backoff_s = min(self._backoff_s * 2, self._max_backoff_s)
        logger.warning("Upload failed (%s), next attempt in %.1fs", reason, self._backoff_s)
