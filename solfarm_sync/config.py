from __future__ import annotations

import os
from typing import Any, Mapping, Optional

from pydantic import AnyUrl, BaseModel, ConfigDict, Field, ValidationError, field_validator

DEFAULT_FARM_CATALOG_URL = "https://api.raydium.io/v2/sdk/farm-v2/mainnet.json"

_COMMITMENTS = {"processed", "confirmed", "finalized"}


class FarmSyncSettings(BaseModel):
    """Runtime settings for the farm synchronisation pipeline."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    farm_catalog_url: AnyUrl = Field(default=DEFAULT_FARM_CATALOG_URL, validate_default=True)
    rpc_url: Optional[AnyUrl] = None
    commitment: str = "confirmed"
    hydrate_concurrency: int = 8
    rpc_batch_size: int = 100
    block_time_ttl: float = 60.0
    block_time_fallback: float = 2.0
    performance_sample_limit: int = 100
    http_timeout: float = 10.0
    http_attempts: int = 2
    http_backoff: float = 0.3

    @field_validator("commitment")
    @classmethod
    def _known_commitment(cls, value: str) -> str:
        text = value.strip().lower()
        if text not in _COMMITMENTS:
            raise ValueError(f"commitment must be one of {sorted(_COMMITMENTS)}")
        return text

    @field_validator("hydrate_concurrency", "http_attempts", "performance_sample_limit")
    @classmethod
    def _at_least_one(cls, value: int) -> int:
        if value < 1:
            raise ValueError("must be >= 1")
        return value

    @field_validator("rpc_batch_size")
    @classmethod
    def _batch_bounds(cls, value: int) -> int:
        # getMultipleAccounts accepts at most 100 keys per call
        if not 1 <= value <= 100:
            raise ValueError("rpc_batch_size must be between 1 and 100")
        return value

    @field_validator("block_time_ttl", "http_timeout", "http_backoff", "block_time_fallback")
    @classmethod
    def _non_negative(cls, value: float) -> float:
        if value < 0:
            raise ValueError("must be >= 0")
        return value

    @property
    def rpc_endpoint(self) -> str | None:
        return str(self.rpc_url) if self.rpc_url is not None else None


_ENV_FIELDS: dict[str, str] = {
    "FARM_CATALOG_URL": "farm_catalog_url",
    "SOLANA_RPC_URL": "rpc_url",
    "FARM_COMMITMENT": "commitment",
    "FARM_HYDRATE_CONCURRENCY": "hydrate_concurrency",
    "FARM_RPC_BATCH_SIZE": "rpc_batch_size",
    "BLOCK_TIME_CACHE_TTL": "block_time_ttl",
    "FARM_HTTP_TIMEOUT": "http_timeout",
    "FARM_HTTP_ATTEMPTS": "http_attempts",
    "FARM_HTTP_BACKOFF": "http_backoff",
}


def load_settings(env: Mapping[str, str] | None = None, **overrides: Any) -> FarmSyncSettings:
    """Build :class:`FarmSyncSettings` from ``env`` (defaults to ``os.environ``).

    Blank environment values are ignored. Keyword ``overrides`` win over the
    environment; ``None`` overrides are skipped so CLI flags can be passed
    through unconditionally. Raises ``ValueError`` on invalid values.
    """

    source = os.environ if env is None else env
    data: dict[str, Any] = {}
    for name, field in _ENV_FIELDS.items():
        raw = source.get(name)
        if raw is None or not str(raw).strip():
            continue
        data[field] = str(raw).strip()
    for key, value in overrides.items():
        if value is not None:
            data[key] = value
    try:
        return FarmSyncSettings(**data)
    except ValidationError as exc:
        raise ValueError(str(exc)) from exc


__all__ = ["DEFAULT_FARM_CATALOG_URL", "FarmSyncSettings", "load_settings"]
