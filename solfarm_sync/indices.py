"""Builders for the read-only lookup indices consumed during hydration."""

from __future__ import annotations

import math
from types import MappingProxyType
from typing import Any, Iterable, Mapping

from .types import AprBreakdown, LiquidityInfo


def _coerce_float(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        numeric = float(value)
    elif isinstance(value, str):
        try:
            numeric = float(value)
        except ValueError:
            return None
    else:
        return None
    if math.isnan(numeric) or math.isinf(numeric):
        return None
    return numeric


def _first(entry: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        if key in entry and entry[key] is not None:
            return entry[key]
    return None


def build_apr_index(pool_stats: Iterable[Mapping[str, Any]]) -> Mapping[str, AprBreakdown]:
    """Key pool APR statistics by AMM id.

    Missing or non-numeric figures stay ``None`` so "no data" is never
    confused with a zero APR.
    """

    index: dict[str, AprBreakdown] = {}
    for entry in pool_stats:
        pool_id = _first(entry, "ammId", "id", "poolId")
        if not isinstance(pool_id, str) or not pool_id:
            continue
        index[pool_id] = AprBreakdown(
            apr24h=_coerce_float(_first(entry, "apr24h", "apr_24h")),
            apr7d=_coerce_float(_first(entry, "apr7d", "apr_7d")),
            apr30d=_coerce_float(_first(entry, "apr30d", "apr_30d")),
        )
    return MappingProxyType(index)


def build_liquidity_index(pools: Iterable[Mapping[str, Any]]) -> Mapping[str, LiquidityInfo]:
    index: dict[str, LiquidityInfo] = {}
    for entry in pools:
        pool_id = _first(entry, "id", "ammId")
        lp_mint = _first(entry, "lpMint", "lp_mint")
        base = _first(entry, "baseMint", "base_mint")
        quote = _first(entry, "quoteMint", "quote_mint")
        if not all(isinstance(v, str) and v for v in (pool_id, lp_mint, base, quote)):
            continue
        lp_decimals = _first(entry, "lpDecimals", "lp_decimals")
        version = _first(entry, "version")
        index[pool_id] = LiquidityInfo(
            id=pool_id,
            lp_mint=lp_mint,
            base_mint=base,
            quote_mint=quote,
            lp_decimals=int(lp_decimals) if isinstance(lp_decimals, int) else None,
            version=int(version) if isinstance(version, int) else None,
        )
    return MappingProxyType(index)


def build_price_index(prices: Mapping[str, Any]) -> Mapping[str, float]:
    """Drop unusable prices; the remaining values are USD per token unit."""

    index: dict[str, float] = {}
    for mint, raw in prices.items():
        value = _coerce_float(raw)
        if value is not None and value >= 0:
            index[str(mint)] = value
    return MappingProxyType(index)


__all__ = ["build_apr_index", "build_liquidity_index", "build_price_index"]
