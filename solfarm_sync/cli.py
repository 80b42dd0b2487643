"""Command line entry point: sync the farm catalog once and print hydrated views."""

from __future__ import annotations

import argparse
import asyncio
import dataclasses
import json
import logging
import sys
from pathlib import Path
from typing import Any, Mapping, Optional, Sequence

from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Commitment

from .block_time import BlockTimeEstimator
from .chain_state import ChainStateParser
from .config import FarmSyncSettings, load_settings
from .descriptors import DescriptorSource
from .http import close_session
from .hydrate import Hydrator
from .indices import build_apr_index, build_liquidity_index, build_price_index
from .logging_utils import configure_logging
from .orchestrator import FarmPipeline
from .types import LiquidityInfo, LpTokenInfo, TokenInfo

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="solfarm-sync",
        description="Fetch farm descriptors, read their chain state and print hydrated farm views",
    )
    parser.add_argument("--rpc-url", default=None, help="Solana JSON-RPC endpoint (default: SOLANA_RPC_URL)")
    parser.add_argument("--catalog-url", default=None, help="Farm catalog URL (default: FARM_CATALOG_URL)")
    parser.add_argument("--owner", default=None, help="Wallet address whose farm ledgers are read")
    parser.add_argument("--prices", type=Path, default=None, help="JSON object mapping mint -> USD price")
    parser.add_argument("--aprs", type=Path, default=None, help="JSON list of pool stats with ammId/apr24h/apr7d/apr30d")
    parser.add_argument("--liquidity", type=Path, default=None, help="JSON list of liquidity pools (id, lpMint, baseMint, quoteMint)")
    parser.add_argument("--tokens", type=Path, default=None, help="JSON token list (mint, decimals, symbol, name)")
    parser.add_argument("--concurrency", type=int, default=None, help="Hydration worker count")
    parser.add_argument("--log-level", default=None, help="Logging level (default: LOG_LEVEL or INFO)")
    parser.add_argument("--json-logs", action="store_true", help="Emit logs as JSON lines")
    return parser


def _load_json(path: Optional[Path]) -> Any:
    if path is None:
        return None
    return json.loads(path.read_text(encoding="utf-8"))


def _records(payload: Any) -> list[Mapping[str, Any]]:
    if payload is None:
        return []
    if isinstance(payload, Mapping):
        if "data" in payload:
            payload = payload["data"]
        else:
            # grouped catalogs such as {"official": [...], "unOfficial": [...]}
            payload = [item for group in payload.values() if isinstance(group, list) for item in group]
    if not isinstance(payload, list):
        raise ValueError("expected a JSON list")
    return [entry for entry in payload if isinstance(entry, Mapping)]


def load_token_index(payload: Any) -> dict[str, TokenInfo]:
    """Token list entries keyed by mint; entries without decimals are skipped."""

    tokens: dict[str, TokenInfo] = {}
    if isinstance(payload, Mapping) and "tokens" in payload:
        payload = payload["tokens"]
    for entry in _records(payload):
        mint = entry.get("mint") or entry.get("address")
        decimals = entry.get("decimals")
        if not isinstance(mint, str) or not isinstance(decimals, int) or isinstance(decimals, bool):
            continue
        tokens[mint] = TokenInfo(
            mint=mint,
            decimals=decimals,
            symbol=entry.get("symbol"),
            name=entry.get("name"),
        )
    return tokens


def lp_token_lookup(
    liquidity: Mapping[str, LiquidityInfo],
    tokens: Mapping[str, TokenInfo],
):
    """Resolve a pool id to its LP token using the liquidity index."""

    def _lookup(pool_id: str) -> Optional[LpTokenInfo]:
        pool = liquidity.get(pool_id)
        if pool is None:
            return None
        decimals = pool.lp_decimals
        if decimals is None:
            token = tokens.get(pool.lp_mint)
            if token is None:
                return None
            decimals = token.decimals
        base, quote = tokens.get(pool.base_mint), tokens.get(pool.quote_mint)
        symbol = f"{base.symbol}-{quote.symbol}" if base and quote and base.symbol and quote.symbol else None
        return LpTokenInfo(
            mint=pool.lp_mint,
            decimals=decimals,
            base_mint=pool.base_mint,
            quote_mint=pool.quote_mint,
            symbol=symbol,
        )

    return _lookup


def _jsonable(value: Any) -> Any:
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return str(value)


async def run(args: argparse.Namespace, settings: FarmSyncSettings) -> FarmPipeline:
    tokens = load_token_index(_load_json(args.tokens))
    liquidity = build_liquidity_index(_records(_load_json(args.liquidity)))
    prices = build_price_index(_load_json(args.prices) or {})
    aprs = build_apr_index(_records(_load_json(args.aprs)))

    endpoint = settings.rpc_endpoint
    source = DescriptorSource(
        url=str(settings.farm_catalog_url),
        timeout=settings.http_timeout,
        attempts=settings.http_attempts,
        backoff=settings.http_backoff,
    )
    pipeline = FarmPipeline(
        source,
        parser=ChainStateParser(commitment=settings.commitment, batch_size=settings.rpc_batch_size),
        hydrator=Hydrator(settings.hydrate_concurrency),
        estimator=BlockTimeEstimator(
            ttl=settings.block_time_ttl,
            fallback=settings.block_time_fallback,
            sample_limit=settings.performance_sample_limit,
            timeout=settings.http_timeout,
            attempts=settings.http_attempts,
            backoff=settings.http_backoff,
        ),
    )
    client = AsyncClient(endpoint, commitment=Commitment(settings.commitment)) if endpoint else None
    if client is None:
        logger.warning("No RPC endpoint configured; chain state will not be read")
    try:
        pipeline.set_inputs(
            connection=client,
            owner=args.owner,
            prices=prices,
            liquidity=liquidity,
            aprs=aprs,
            endpoint=endpoint,
            token_resolver=tokens.get,
            lp_resolver=lp_token_lookup(liquidity, tokens),
        )
        pipeline.request_refresh()
        await pipeline.wait_idle()
    finally:
        await pipeline.close()
        if client is not None:
            await client.close()
        await close_session()
    return pipeline


def main(argv: Sequence[str] | None = None) -> int:
    args = build_parser().parse_args(list(argv) if argv is not None else None)
    configure_logging(level=args.log_level, json_logs=args.json_logs or None, stream=sys.stderr)
    try:
        settings = load_settings(
            rpc_url=args.rpc_url,
            farm_catalog_url=args.catalog_url,
            hydrate_concurrency=args.concurrency,
        )
    except ValueError as exc:
        logger.error("Invalid settings: %s", exc)
        return 2

    pipeline = asyncio.run(run(args, settings))
    if pipeline.catalog_error and not pipeline.descriptors:
        logger.error("Farm catalog unavailable: %s", pipeline.catalog_error)
        return 1

    report = {
        "descriptors": len(pipeline.descriptors),
        "parsed": len(pipeline.parsed_states),
        "have_upcoming_farms": pipeline.have_upcoming_farms,
        "parse_failures": dict(pipeline.parse_failures),
        "farms": [dataclasses.asdict(view) for view in pipeline.hydrated],
    }
    json.dump(report, sys.stdout, indent=2, default=_jsonable)
    sys.stdout.write("\n")
    return 0


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
