"""Turn parsed farm state into display-ready views."""

from __future__ import annotations

import inspect
import logging
import time
from datetime import datetime, timezone
from typing import Any, Callable, List, Mapping, Optional, Sequence

from .exceptions import FarmHydrationError
from .layouts import REWARD_MULTIPLIERS
from .types import (
    SECONDS_PER_YEAR,
    HydratedFarmView,
    HydratedRewardInfo,
    HydrationContext,
    LpTokenInfo,
    ParsedFarmState,
    RewardSchedule,
    TokenAmount,
    TokenInfo,
)
from .workers import DEFAULT_CONCURRENCY, bounded_map

logger = logging.getLogger(__name__)


def chain_datetime(offset_ms: float = 0.0, *, now: Optional[float] = None) -> datetime:
    """Wall-clock time shifted by the measured chain time offset (milliseconds)."""

    base = time.time() if now is None else now
    return datetime.fromtimestamp(base + (offset_ms or 0.0) / 1000.0, tz=timezone.utc)


async def _resolve(resolver: Callable[[str], Any], key: str) -> Any:
    result = resolver(key)
    if inspect.isawaitable(result):
        result = await result
    return result


def _price(index: Mapping[str, float], mint: Optional[str]) -> Optional[float]:
    if not mint:
        return None
    return index.get(mint)


def _to_datetime(ts: Optional[int]) -> Optional[datetime]:
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc)


def _multiplier(state: ParsedFarmState) -> int:
    if state.reward_multiplier:
        return state.reward_multiplier
    return REWARD_MULTIPLIERS.get(state.version, REWARD_MULTIPLIERS[6])


def _accrued_reward(state: ParsedFarmState, schedule: RewardSchedule, now_ts: float) -> int:
    """Reward emitted since the farm account was last updated on chain.

    v3/v5 farms accrue ``per_slot_reward`` for every slot between
    ``last_slot`` and the slot the account was read at. v6 farms accrue
    ``per_second_reward`` up to ``min(now, end_time)`` while the reward is
    enabled and open, never more than what is left to emit.
    """

    if state.version == 6:
        if not schedule.reward_state or schedule.last_update_time is None:
            return 0
        update_time = int(now_ts)
        if schedule.end_time is not None:
            update_time = min(update_time, schedule.end_time)
        if (schedule.open_time or 0) >= update_time:
            return 0
        reward = max(0, update_time - schedule.last_update_time) * schedule.per_second_reward
        if schedule.total_emissioned is not None:
            reward = min(reward, max(0, schedule.total_reward - schedule.total_emissioned))
        return reward
    if state.observed_slot is None or state.last_slot is None:
        return 0
    return max(0, state.observed_slot - state.last_slot) * schedule.per_slot_reward


def _current_acc(state: ParsedFarmState, schedule: RewardSchedule, now_ts: float) -> int:
    """``acc_reward_per_share`` brought forward to ``now_ts``."""

    if state.staked_lp_amount <= 0:
        return schedule.acc_reward_per_share
    accrued = _accrued_reward(state, schedule, now_ts)
    return schedule.acc_reward_per_share + accrued * _multiplier(state) // state.staked_lp_amount


def _pending_raw(state: ParsedFarmState, index: int, schedule: RewardSchedule, now_ts: float) -> Optional[int]:
    ledger = state.ledger
    if ledger is None:
        return None
    debt = ledger.reward_debts[index] if index < len(ledger.reward_debts) else 0
    acc = _current_acc(state, schedule, now_ts)
    return max(0, ledger.deposited * acc // _multiplier(state) - debt)


def _hydrate_reward(
    state: ParsedFarmState,
    index: int,
    schedule: RewardSchedule,
    token: Optional[TokenInfo],
    tvl: Optional[float],
    ctx: HydrationContext,
) -> HydratedRewardInfo:
    now_ts = ctx.chain_now.timestamp()
    price = _price(ctx.prices, schedule.mint)
    decimals = token.decimals if token is not None else None

    seconds_remaining: Optional[float] = None
    if state.version == 6:
        open_time = schedule.open_time or 0
        end_time = schedule.end_time or 0
        is_upcoming = now_ts < open_time
        is_ended = now_ts >= end_time
        is_running = not is_upcoming and not is_ended
        if not is_ended:
            seconds_remaining = end_time - now_ts
        raw_per_year = schedule.per_second_reward * SECONDS_PER_YEAR if is_running else 0
    else:
        is_upcoming = False
        is_running = schedule.per_slot_reward > 0
        is_ended = not is_running
        raw_per_year = schedule.per_slot_reward * ctx.block_time.slot_rate * SECONDS_PER_YEAR

    per_year = raw_per_year / 10**decimals if decimals is not None else None
    apr: Optional[float] = None
    if per_year is not None and price is not None and tvl:
        apr = per_year * price / tvl

    pending: Optional[TokenAmount] = None
    pending_usd: Optional[float] = None
    pending_raw = _pending_raw(state, index, schedule, now_ts)
    if pending_raw is not None and token is not None and schedule.mint:
        pending = TokenAmount(mint=schedule.mint, raw=pending_raw, decimals=token.decimals)
        if price is not None:
            pending_usd = pending.amount * price

    return HydratedRewardInfo(
        token=token,
        mint=schedule.mint,
        per_year=per_year,
        apr=apr,
        pending=pending,
        pending_usd=pending_usd,
        open_time=_to_datetime(schedule.open_time),
        end_time=_to_datetime(schedule.end_time),
        seconds_remaining=seconds_remaining,
        is_running=is_running,
        is_ended=is_ended,
        is_upcoming=is_upcoming,
    )


async def _farm_name(state: ParsedFarmState, lp: LpTokenInfo, ctx: HydrationContext) -> str:
    if state.descriptor.symbol:
        return state.descriptor.symbol
    if lp.symbol:
        return lp.symbol
    pool = ctx.liquidity.get(state.descriptor.pool_id)
    base_mint = lp.base_mint or (pool.base_mint if pool else None)
    quote_mint = lp.quote_mint or (pool.quote_mint if pool else None)
    if base_mint and quote_mint:
        base = await _resolve(ctx.get_token, base_mint)
        quote = await _resolve(ctx.get_token, quote_mint)
        if base is not None and quote is not None and base.symbol and quote.symbol:
            return f"{base.symbol}-{quote.symbol}"
    return state.descriptor.pool_id


def _sum_with(base: Optional[float], extras: Sequence[Optional[float]]) -> Optional[float]:
    if base is None:
        return None
    return base + sum(x for x in extras if x is not None)


async def hydrate_farm_info(state: ParsedFarmState, ctx: HydrationContext) -> HydratedFarmView:
    """Hydrate one farm; depends only on ``state`` and ``ctx``.

    Raises :class:`FarmHydrationError` when the farm's LP token cannot be
    resolved, since no amount or price can be derived without it.
    """

    descriptor = state.descriptor
    lp = await _resolve(ctx.get_lp_token, descriptor.pool_id)
    if lp is None:
        raise FarmHydrationError(descriptor.id, f"unknown lp token for pool {descriptor.pool_id}")
    if state.lp_mint and state.lp_mint != lp.mint:
        raise FarmHydrationError(descriptor.id, f"lp mint mismatch {state.lp_mint} != {lp.mint}")

    lp_price = _price(ctx.lp_prices, lp.mint)
    if lp_price is None:
        lp_price = _price(ctx.prices, lp.mint)
    staked = TokenAmount(mint=lp.mint, raw=state.staked_lp_amount, decimals=lp.decimals)
    tvl = staked.amount * lp_price if lp_price is not None else None

    rewards: List[HydratedRewardInfo] = []
    for index, schedule in enumerate(state.rewards):
        token = await _resolve(ctx.get_token, schedule.mint) if schedule.mint else None
        rewards.append(_hydrate_reward(state, index, schedule, token, tvl, ctx))

    reward_aprs = [reward.apr for reward in rewards]
    fees = ctx.aprs.get(descriptor.pool_id)
    fee_24h = fees.apr24h if fees is not None else None
    fee_7d = fees.apr7d if fees is not None else None
    fee_30d = fees.apr30d if fees is not None else None

    is_upcoming = descriptor.upcoming or any(r.is_upcoming for r in rewards)

    user_deposited: Optional[TokenAmount] = None
    user_deposited_usd: Optional[float] = None
    if state.ledger is not None:
        user_deposited = TokenAmount(mint=lp.mint, raw=state.ledger.deposited, decimals=lp.decimals)
        if lp_price is not None:
            user_deposited_usd = user_deposited.amount * lp_price

    return HydratedFarmView(
        id=descriptor.id,
        pool_id=descriptor.pool_id,
        version=state.version,
        name=await _farm_name(state, lp, ctx),
        category=descriptor.category,
        lp_token=lp,
        lp_price=lp_price,
        staked=staked,
        tvl=tvl,
        rewards=tuple(rewards),
        fee_apr_24h=fee_24h,
        fee_apr_7d=fee_7d,
        fee_apr_30d=fee_30d,
        total_apr_24h=_sum_with(fee_24h, reward_aprs),
        total_apr_7d=_sum_with(fee_7d, reward_aprs),
        total_apr_30d=_sum_with(fee_30d, reward_aprs),
        user_deposited=user_deposited,
        user_deposited_usd=user_deposited_usd,
        is_upcoming=is_upcoming,
        is_closed=not is_upcoming and all(r.is_ended for r in rewards),
        is_staked=bool(state.ledger and state.ledger.deposited > 0),
        is_fusion=descriptor.category == "fusion",
    )


class Hydrator:
    """Hydrate a batch of farms with bounded concurrency, preserving order."""

    def __init__(self, concurrency: int = DEFAULT_CONCURRENCY) -> None:
        self.concurrency = max(1, int(concurrency))

    async def hydrate(
        self,
        states: Sequence[ParsedFarmState],
        context: HydrationContext,
    ) -> List[HydratedFarmView]:
        if not states:
            return []
        views = await bounded_map(
            states,
            lambda state: hydrate_farm_info(state, context),
            limit=self.concurrency,
            label="hydrate farm info",
        )
        if len(views) < len(states):
            logger.info("Hydrated %d/%d farms", len(views), len(states))
        return views


__all__ = ["Hydrator", "chain_datetime", "hydrate_farm_info"]
