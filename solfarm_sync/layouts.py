"""Byte layouts of Raydium farm, ledger and SPL token accounts.

Only the fields hydration needs are decoded. Offsets follow the on-chain
account structs of the v3, v5 and v6 farm programs.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Sequence, Tuple

from solders.pubkey import Pubkey

from .exceptions import AccountDecodeError
from .types import RewardSchedule, UserLedger

FARM_PROGRAM_IDS: dict[int, str] = {
    3: "EhhTKczWMGQt46ynNeRX1WfeagwwJd7ufHvCDjRxjo5Q",
    5: "9KEPoZmtHUrBbhWN1v1KWLMkkvwY6WLtAVUCPRtRjP4z",
    6: "FarmqiPv5eAj3j1GMdMCMUGXqPUvmquZtMy86QH6rzhG",
}

# Ledger PDA seed per program version; v3/v5 share the staker-info seed.
LEDGER_SEEDS: dict[int, bytes] = {
    3: b"staker_info_v2_associated_seed",
    5: b"staker_info_v2_associated_seed",
    6: b"farmer_info_associated_seed",
}

# Fixed-point scale of ``acc_reward_per_share`` per program version. v6 farms
# store their own ``rewardMultiplier``; 10**15 is used when it reads as zero.
REWARD_MULTIPLIERS: dict[int, int] = {3: 10**9, 5: 10**15, 6: 10**15}

FARM_V3_SIZE = 120
FARM_V5_SIZE = 224
FARM_V6_REWARD_SLOTS = 5
FARM_V6_REWARD_SIZE = 304
FARM_V6_REWARDS_OFFSET = 128
FARM_V6_SIZE = FARM_V6_REWARDS_OFFSET + FARM_V6_REWARD_SLOTS * FARM_V6_REWARD_SIZE + 32

LEDGER_HEADER_SIZE = 80


@dataclass(frozen=True, slots=True)
class FarmAccount:
    version: int
    state: int
    lp_vault: str
    rewards: Tuple[RewardSchedule, ...]
    last_slot: Optional[int] = None
    lp_mint: Optional[str] = None
    reward_multiplier: int = 10**15


def _u64(raw: bytes, offset: int) -> int:
    return int.from_bytes(raw[offset : offset + 8], "little", signed=False)


def _u128(raw: bytes, offset: int) -> int:
    return int.from_bytes(raw[offset : offset + 16], "little", signed=False)


def _pubkey(raw: bytes, offset: int) -> str:
    return str(Pubkey.from_bytes(raw[offset : offset + 32]))


def _require(raw: bytes, size: int, address: str, what: str) -> None:
    if len(raw) < size:
        raise AccountDecodeError(address, f"{what} account too short ({len(raw)} < {size} bytes)")


def _mint_at(reward_mints: Sequence[str], index: int) -> Optional[str]:
    return reward_mints[index] if index < len(reward_mints) else None


def decode_farm_v3(raw: bytes, address: str, reward_mints: Sequence[str] = ()) -> FarmAccount:
    _require(raw, FARM_V3_SIZE, address, "v3 farm")
    reward = RewardSchedule(
        mint=_mint_at(reward_mints, 0),
        vault=_pubkey(raw, 48),
        total_reward=_u64(raw, 80),
        acc_reward_per_share=_u128(raw, 88),
        per_slot_reward=_u64(raw, 112),
    )
    return FarmAccount(
        version=3,
        state=_u64(raw, 0),
        lp_vault=_pubkey(raw, 16),
        rewards=(reward,),
        last_slot=_u64(raw, 104),
        reward_multiplier=REWARD_MULTIPLIERS[3],
    )


def decode_farm_v5(raw: bytes, address: str, reward_mints: Sequence[str] = ()) -> FarmAccount:
    _require(raw, FARM_V5_SIZE, address, "v5 farm")
    reward_a = RewardSchedule(
        mint=_mint_at(reward_mints, 0),
        vault=_pubkey(raw, 48),
        total_reward=_u64(raw, 80),
        acc_reward_per_share=_u128(raw, 88),
        per_slot_reward=_u64(raw, 104),
    )
    reward_b = RewardSchedule(
        mint=_mint_at(reward_mints, 1),
        vault=_pubkey(raw, 113),
        total_reward=_u64(raw, 152),
        acc_reward_per_share=_u128(raw, 160),
        per_slot_reward=_u64(raw, 176),
    )
    return FarmAccount(
        version=5,
        state=_u64(raw, 0),
        lp_vault=_pubkey(raw, 16),
        rewards=(reward_a, reward_b),
        last_slot=_u64(raw, 184),
        reward_multiplier=REWARD_MULTIPLIERS[5],
    )


def decode_farm_v6(raw: bytes, address: str, reward_mints: Sequence[str] = ()) -> FarmAccount:
    _require(raw, FARM_V6_SIZE, address, "v6 farm")
    valid = _u64(raw, 16)
    if valid > FARM_V6_REWARD_SLOTS:
        raise AccountDecodeError(address, f"invalid reward count {valid}")
    rewards = []
    for idx in range(valid):
        base = FARM_V6_REWARDS_OFFSET + idx * FARM_V6_REWARD_SIZE
        rewards.append(
            RewardSchedule(
                mint=_pubkey(raw, base + 112),
                reward_state=_u64(raw, base),
                vault=_pubkey(raw, base + 80),
                total_reward=_u64(raw, base + 32),
                total_emissioned=_u64(raw, base + 40),
                acc_reward_per_share=_u128(raw, base + 64),
                per_second_reward=_u64(raw, base + 56),
                open_time=_u64(raw, base + 8),
                end_time=_u64(raw, base + 16),
                last_update_time=_u64(raw, base + 24),
            )
        )
    return FarmAccount(
        version=6,
        state=_u64(raw, 0),
        lp_vault=_pubkey(raw, 96),
        rewards=tuple(rewards),
        lp_mint=_pubkey(raw, 64),
        reward_multiplier=_u128(raw, 24) or REWARD_MULTIPLIERS[6],
    )


_FARM_DECODERS = {3: decode_farm_v3, 5: decode_farm_v5, 6: decode_farm_v6}


def decode_farm(version: int, raw: bytes, address: str, reward_mints: Sequence[str] = ()) -> FarmAccount:
    decoder = _FARM_DECODERS.get(version)
    if decoder is None:
        raise AccountDecodeError(address, f"unsupported farm version {version}")
    return decoder(raw, address, reward_mints)


def ledger_reward_slots(version: int) -> int:
    return {3: 1, 5: 2}.get(version, FARM_V6_REWARD_SLOTS)


def decode_ledger(version: int, raw: bytes, address: str) -> UserLedger:
    slots = ledger_reward_slots(version)
    _require(raw, LEDGER_HEADER_SIZE + 16 * slots, address, f"v{version} ledger")
    return UserLedger(
        address=address,
        owner=_pubkey(raw, 40),
        deposited=_u64(raw, 72),
        reward_debts=tuple(_u128(raw, LEDGER_HEADER_SIZE + 16 * i) for i in range(slots)),
    )


def decode_token_amount(raw: bytes, address: str) -> int:
    """Return the ``amount`` field of an SPL token account."""

    _require(raw, 72, address, "token")
    return _u64(raw, 64)


def farm_program_id(version: int, override: str | None = None) -> Pubkey:
    if override:
        return Pubkey.from_string(override)
    try:
        return Pubkey.from_string(FARM_PROGRAM_IDS[version])
    except KeyError:
        raise ValueError(f"no program id for farm version {version}") from None


def ledger_address(farm_id: str, owner: str, version: int, program_id: str | None = None) -> str:
    """Program-derived address of ``owner``'s staking ledger in ``farm_id``."""

    program = farm_program_id(version, program_id)
    seed = LEDGER_SEEDS.get(version)
    if seed is None:
        raise ValueError(f"no ledger seed for farm version {version}")
    pda, _bump = Pubkey.find_program_address(
        [bytes(Pubkey.from_string(farm_id)), bytes(Pubkey.from_string(owner)), seed],
        program,
    )
    return str(pda)


__all__ = [
    "FARM_PROGRAM_IDS",
    "FarmAccount",
    "LEDGER_SEEDS",
    "REWARD_MULTIPLIERS",
    "decode_farm",
    "decode_farm_v3",
    "decode_farm_v5",
    "decode_farm_v6",
    "decode_ledger",
    "decode_token_amount",
    "farm_program_id",
    "ledger_address",
    "ledger_reward_slots",
]
