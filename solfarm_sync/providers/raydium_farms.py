"""Raydium farm catalog adapter."""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Mapping, Sequence

import aiohttp

from ..config import DEFAULT_FARM_CATALOG_URL
from ..exceptions import CatalogFetchError
from ..http import HTTPError, HostCircuitOpenError, fetch_json
from ..types import FarmDescriptor

logger = logging.getLogger(__name__)

# Catalog groups in display order; "official" is the legacy name of "raydium".
_CATEGORY_KEYS: tuple[tuple[str, str], ...] = (
    ("official", "raydium"),
    ("raydium", "raydium"),
    ("fusion", "fusion"),
    ("ecosystem", "ecosystem"),
)

_SUPPORTED_VERSIONS = {3, 5, 6}


def _token_value(entry: Mapping[str, Any], *keys: str) -> str:
    for key in keys:
        raw = entry.get(key)
        if isinstance(raw, str) and raw:
            return raw
    return ""


def _coerce_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    if isinstance(value, (int, float)):
        return bool(value)
    return False


def _reward_mints(entry: Mapping[str, Any]) -> tuple[str, ...]:
    mints = entry.get("rewardMints")
    if isinstance(mints, Sequence) and not isinstance(mints, str):
        return tuple(str(m) for m in mints if isinstance(m, str) and m)
    infos = entry.get("rewardInfos")
    if isinstance(infos, Sequence) and not isinstance(infos, str):
        found = []
        for info in infos:
            if isinstance(info, Mapping):
                mint = _token_value(info, "rewardMint", "mint")
                if mint:
                    found.append(mint)
        return tuple(found)
    single = _token_value(entry, "rewardMint")
    return (single,) if single else ()


def _extract_groups(payload: Any) -> list[tuple[str | None, Mapping[str, Any]]]:
    if isinstance(payload, Sequence) and not isinstance(payload, str):
        return [(None, item) for item in payload if isinstance(item, Mapping)]
    if not isinstance(payload, Mapping):
        raise CatalogFetchError(f"unexpected catalog payload type {type(payload).__name__}")
    records: list[tuple[str | None, Mapping[str, Any]]] = []
    matched = False
    for key, category in _CATEGORY_KEYS:
        group = payload.get(key)
        if not isinstance(group, Sequence) or isinstance(group, str):
            continue
        matched = True
        records.extend((category, item) for item in group if isinstance(item, Mapping))
    if not matched:
        data = payload.get("data")
        if isinstance(data, Sequence) and not isinstance(data, str):
            return [(None, item) for item in data if isinstance(item, Mapping)]
        raise CatalogFetchError("catalog payload has no farm groups")
    return records


def normalise_farm_record(
    entry: Mapping[str, Any],
    category: str | None = None,
) -> FarmDescriptor | None:
    """Return a :class:`FarmDescriptor` for ``entry`` or ``None`` when malformed.

    Records without an explicit pool/AMM identifier fall back to their LP
    mint, which is how the catalog keys single-sided and ecosystem farms.
    """

    farm_id = _token_value(entry, "id", "farmId")
    if not farm_id:
        logger.debug("Skipping farm record without id: %r", entry)
        return None
    lp_mint = _token_value(entry, "lpMint", "lp_mint", "stakeMint") or None
    pool_id = _token_value(entry, "ammId", "poolId", "pool_id", "pool") or lp_mint
    if not pool_id:
        logger.debug("Skipping farm %s without pool id or lp mint", farm_id)
        return None
    try:
        version = int(entry.get("version", 3))
    except (TypeError, ValueError):
        logger.debug("Skipping farm %s with invalid version %r", farm_id, entry.get("version"))
        return None
    if version not in _SUPPORTED_VERSIONS:
        logger.debug("Skipping farm %s with unsupported version %s", farm_id, version)
        return None
    return FarmDescriptor(
        id=farm_id,
        pool_id=pool_id,
        reward_mints=_reward_mints(entry),
        upcoming=_coerce_bool(entry.get("upcoming")),
        version=version,
        program_id=_token_value(entry, "programId", "program_id") or None,
        lp_mint=lp_mint,
        symbol=_token_value(entry, "symbol", "name") or None,
        category=_token_value(entry, "category") or category,
        creator=_token_value(entry, "creator") or None,
    )


def parse_catalog(payload: Any) -> tuple[FarmDescriptor, ...]:
    """Flatten a catalog payload into ordered, de-duplicated descriptors."""

    seen: set[str] = set()
    descriptors: list[FarmDescriptor] = []
    for category, entry in _extract_groups(payload):
        descriptor = normalise_farm_record(entry, category)
        if descriptor is None or descriptor.id in seen:
            continue
        seen.add(descriptor.id)
        descriptors.append(descriptor)
    return tuple(descriptors)


async def fetch_farm_descriptors(
    url: str = DEFAULT_FARM_CATALOG_URL,
    *,
    session: aiohttp.ClientSession | None = None,
    timeout: float = 10.0,
    attempts: int | None = None,
    backoff: float | None = None,
) -> tuple[FarmDescriptor, ...]:
    """Fetch and normalise the farm catalog at ``url``.

    Raises :class:`CatalogFetchError` on transport or payload errors.
    """

    try:
        payload = await fetch_json(
            url,
            session=session,
            timeout=timeout,
            attempts=attempts,
            backoff=backoff,
        )
    except (aiohttp.ClientError, HTTPError, HostCircuitOpenError, asyncio.TimeoutError, ValueError) as exc:
        raise CatalogFetchError(f"farm catalog fetch failed: {exc}") from exc
    return parse_catalog(payload)


__all__ = [
    "fetch_farm_descriptors",
    "normalise_farm_record",
    "parse_catalog",
]
