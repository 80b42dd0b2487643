from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable, Mapping, Optional, Tuple, Union

SECONDS_PER_YEAR = 60 * 60 * 24 * 365


@dataclass(frozen=True, slots=True)
class FarmDescriptor:
    """Static catalog entry describing a farm."""

    id: str
    pool_id: str
    reward_mints: Tuple[str, ...]
    upcoming: bool = False
    version: int = 3
    program_id: Optional[str] = None
    lp_mint: Optional[str] = None
    symbol: Optional[str] = None
    category: Optional[str] = None
    creator: Optional[str] = None


@dataclass(frozen=True, slots=True)
class RewardSchedule:
    """Decoded reward emission settings for one reward slot of a farm.

    v3/v5 farms emit ``per_slot_reward`` per slot; v6 farms emit
    ``per_second_reward`` between ``open_time`` and ``end_time`` (unix
    seconds) while ``reward_state`` is non-zero, capped at ``total_reward``
    minus ``total_emissioned``.
    """

    mint: Optional[str]
    vault: str
    total_reward: int
    acc_reward_per_share: int
    per_slot_reward: int = 0
    per_second_reward: int = 0
    open_time: Optional[int] = None
    end_time: Optional[int] = None
    last_update_time: Optional[int] = None
    reward_state: Optional[int] = None
    total_emissioned: Optional[int] = None


@dataclass(frozen=True, slots=True)
class UserLedger:
    """Staking position of an identity in a farm."""

    address: str
    owner: str
    deposited: int
    reward_debts: Tuple[int, ...]


@dataclass(frozen=True, slots=True)
class ParsedFarmState:
    """Chain-verified state of one farm, decoded from its accounts.

    ``observed_slot`` is the slot the farm account was read at, when the node
    reported one; ``reward_multiplier`` scales ``acc_reward_per_share``.
    """

    descriptor: FarmDescriptor
    version: int
    state: int
    lp_vault: str
    staked_lp_amount: int
    rewards: Tuple[RewardSchedule, ...]
    last_slot: Optional[int] = None
    lp_mint: Optional[str] = None
    ledger: Optional[UserLedger] = None
    reward_multiplier: Optional[int] = None
    observed_slot: Optional[int] = None

    @property
    def id(self) -> str:
        return self.descriptor.id


@dataclass(frozen=True, slots=True)
class ParseReport:
    """Outcome of one chain-state parser run."""

    states: Tuple[ParsedFarmState, ...]
    failures: Mapping[str, str] = field(default_factory=dict)


@dataclass(frozen=True, slots=True)
class AprBreakdown:
    apr24h: Optional[float] = None
    apr7d: Optional[float] = None
    apr30d: Optional[float] = None


@dataclass(frozen=True, slots=True)
class TokenInfo:
    mint: str
    decimals: int
    symbol: Optional[str] = None
    name: Optional[str] = None


@dataclass(frozen=True, slots=True)
class LpTokenInfo:
    mint: str
    decimals: int
    base_mint: Optional[str] = None
    quote_mint: Optional[str] = None
    symbol: Optional[str] = None


@dataclass(frozen=True, slots=True)
class LiquidityInfo:
    """Liquidity-pool descriptor as published by the pool catalog."""

    id: str
    lp_mint: str
    base_mint: str
    quote_mint: str
    lp_decimals: Optional[int] = None
    version: Optional[int] = None


@dataclass(frozen=True, slots=True)
class BlockTimeEstimate:
    slot_rate: float
    endpoint: Optional[str]
    sampled_at: float
    fallback: bool = False


@dataclass(frozen=True, slots=True)
class TokenAmount:
    """Raw integer token amount paired with its mint decimals."""

    mint: str
    raw: int
    decimals: int

    @property
    def amount(self) -> float:
        return self.raw / (10 ** self.decimals)


TokenResolver = Callable[[str], Union[Optional[TokenInfo], Awaitable[Optional[TokenInfo]]]]
LpTokenResolver = Callable[[str], Union[Optional[LpTokenInfo], Awaitable[Optional[LpTokenInfo]]]]


@dataclass(frozen=True, slots=True)
class HydrationContext:
    """Immutable snapshot of every side input a hydration run reads."""

    get_token: TokenResolver
    get_lp_token: LpTokenResolver
    prices: Mapping[str, float]
    lp_prices: Mapping[str, float]
    liquidity: Mapping[str, LiquidityInfo]
    aprs: Mapping[str, AprBreakdown]
    block_time: BlockTimeEstimate
    chain_now: datetime
    chain_time_offset: float = 0.0


@dataclass(frozen=True, slots=True)
class HydratedRewardInfo:
    token: Optional[TokenInfo]
    mint: Optional[str]
    per_year: Optional[float]
    apr: Optional[float]
    pending: Optional[TokenAmount] = None
    pending_usd: Optional[float] = None
    open_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    seconds_remaining: Optional[float] = None
    is_running: bool = True
    is_ended: bool = False
    is_upcoming: bool = False


@dataclass(frozen=True, slots=True)
class HydratedFarmView:
    """Display-ready farm record."""

    id: str
    pool_id: str
    version: int
    name: str
    category: Optional[str]
    lp_token: LpTokenInfo
    lp_price: Optional[float]
    staked: TokenAmount
    tvl: Optional[float]
    rewards: Tuple[HydratedRewardInfo, ...]
    fee_apr_24h: Optional[float]
    fee_apr_7d: Optional[float]
    fee_apr_30d: Optional[float]
    total_apr_24h: Optional[float]
    total_apr_7d: Optional[float]
    total_apr_30d: Optional[float]
    user_deposited: Optional[TokenAmount] = None
    user_deposited_usd: Optional[float] = None
    is_upcoming: bool = False
    is_closed: bool = False
    is_staked: bool = False
    is_fusion: bool = False


__all__ = [
    "AprBreakdown",
    "BlockTimeEstimate",
    "FarmDescriptor",
    "HydratedFarmView",
    "HydratedRewardInfo",
    "HydrationContext",
    "LiquidityInfo",
    "LpTokenInfo",
    "LpTokenResolver",
    "ParseReport",
    "ParsedFarmState",
    "RewardSchedule",
    "SECONDS_PER_YEAR",
    "TokenAmount",
    "TokenInfo",
    "TokenResolver",
    "UserLedger",
]
