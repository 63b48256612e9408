"""
Collector configuration loaded from environment variables.

Uses Pydantic BaseSettings for env var / ``.env`` loading and validation.
``GRUENBECK_HOST`` and ``GRUENBECK_RETRY`` correspond to the device's
``Host`` and ``Retry`` settings; the rest configure state, cadence and the
downstream ingest endpoint.

CHANGELOG:
- 2026-10-12: Initial creation (STORY-010)

TODO:
- None
"""

from pydantic import field_validator
from pydantic_settings import BaseSettings


class GruenbeckSettings(BaseSettings):
    """Collector configuration.

    Attributes:
        gruenbeck_host: Softener hostname or IP; inserted into
            ``http://<host>/mux_http``.
        gruenbeck_retry: Fetch attempts per poll cycle (>= 1).
        history_enabled: Fetch and back-fill fourteen days instead of only
            the most recent one.
        state_dir: Runtime state directory; the watermark lives in
            ``<state_dir>/gruenbeck/history.dat``.
        poll_interval_s: Seconds between poll cycles (>= 10).
        request_timeout_s: Per-attempt HTTP timeout towards the device.
        ingest_base_url: Ingest service base URL (must be HTTPS).
        ingest_token: Bearer token for the ingest service.
        batch_size: Max samples per upload batch.
        upload_interval_s: Seconds between upload attempts.
        spool_path: SQLite spool file path.
        health_path: JSON health file path.
    """

    gruenbeck_host: str
    gruenbeck_retry: int = 1
    history_enabled: bool = True
    state_dir: str = "/var/run"
    poll_interval_s: int = 60
    request_timeout_s: float = 10.0
    ingest_base_url: str
    ingest_token: str
    batch_size: int = 30
    upload_interval_s: int = 10
    spool_path: str = "/data/spool.db"
    health_path: str = "/data/health.json"

    @field_validator("gruenbeck_host")
    @classmethod
    def host_must_be_bare(cls, v: str) -> str:
        """Reject empty hosts and hosts that already carry a scheme or path."""
        v = v.strip()
        if not v:
            raise ValueError("GRUENBECK_HOST must not be empty")
        if "://" in v or "/" in v:
            raise ValueError("GRUENBECK_HOST must be a bare host name or address, not a URL")
        return v

    @field_validator("gruenbeck_retry")
    @classmethod
    def retry_must_be_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("GRUENBECK_RETRY must be >= 1")
        return v

    @field_validator("poll_interval_s")
    @classmethod
    def poll_interval_must_be_reasonable(cls, v: int) -> int:
        """The softener's web interface should not be hammered."""
        if v < 10:
            raise ValueError("POLL_INTERVAL_S must be >= 10")
        return v

    @field_validator("request_timeout_s")
    @classmethod
    def request_timeout_must_be_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("REQUEST_TIMEOUT_S must be > 0")
        return v

    @field_validator("ingest_base_url")
    @classmethod
    def ingest_base_url_must_be_https(cls, v: str) -> str:
        if not v.startswith("https://"):
            raise ValueError(f"INGEST_BASE_URL must use HTTPS (got: '{v[:20]}...').")
        return v

    @field_validator("batch_size")
    @classmethod
    def batch_size_must_be_valid(cls, v: int) -> int:
        """Validate batch size is between 1 and 1000."""
        if v < 1 or v > 1000:
            raise ValueError("BATCH_SIZE must be >= 1 and <= 1000")
        return v

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}
