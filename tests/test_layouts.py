import pytest
from solders.pubkey import Pubkey

from fakes import farm_v3_bytes, farm_v5_bytes, farm_v6_bytes, ledger_bytes, token_account_bytes
from solfarm_sync import layouts
from solfarm_sync.exceptions import AccountDecodeError


def test_decode_v3_farm():
    lp_vault, reward_vault = Pubkey.new_unique(), Pubkey.new_unique()
    raw = farm_v3_bytes(lp_vault, reward_vault, per_slot=500, acc=7 * 10**9, total=10**12, last_slot=99)
    farm = layouts.decode_farm(3, raw, "farm", ("RAYmint",))
    assert farm.version == 3
    assert farm.lp_vault == str(lp_vault)
    assert farm.last_slot == 99
    (reward,) = farm.rewards
    assert reward.mint == "RAYmint"
    assert reward.vault == str(reward_vault)
    assert reward.per_slot_reward == 500
    assert reward.acc_reward_per_share == 7 * 10**9
    assert reward.total_reward == 10**12


def test_decode_v5_farm_has_two_rewards():
    keys = [Pubkey.new_unique() for _ in range(3)]
    raw = farm_v5_bytes(*keys, per_slot=(10, 20), acc=(1, 2**100), last_slot=5)
    farm = layouts.decode_farm(5, raw, "farm", ("A", "B"))
    assert [r.mint for r in farm.rewards] == ["A", "B"]
    assert [r.per_slot_reward for r in farm.rewards] == [10, 20]
    assert farm.rewards[1].acc_reward_per_share == 2**100
    assert farm.rewards[1].vault == str(keys[2])
    assert farm.last_slot == 5


def test_decode_v6_farm_reads_only_valid_rewards():
    lp_mint, lp_vault = Pubkey.new_unique(), Pubkey.new_unique()
    mint, vault = Pubkey.new_unique(), Pubkey.new_unique()
    raw = farm_v6_bytes(
        lp_mint,
        lp_vault,
        [{"mint": mint, "vault": vault, "open": 100, "end": 200, "per_second": 3, "acc": 42}],
    )
    farm = layouts.decode_farm(6, raw, "farm")
    assert farm.lp_mint == str(lp_mint)
    assert farm.lp_vault == str(lp_vault)
    (reward,) = farm.rewards
    assert reward.mint == str(mint)
    assert (reward.open_time, reward.end_time) == (100, 200)
    assert reward.per_second_reward == 3
    assert reward.acc_reward_per_share == 42


def test_short_account_is_rejected():
    with pytest.raises(AccountDecodeError) as info:
        layouts.decode_farm(3, b"\x00" * 10, "farmX")
    assert info.value.address == "farmX"


def test_unknown_version_is_rejected():
    with pytest.raises(AccountDecodeError):
        layouts.decode_farm(4, b"\x00" * 400, "farmX")


def test_v6_invalid_reward_count():
    raw = bytearray(farm_v6_bytes(Pubkey.new_unique(), Pubkey.new_unique(), []))
    raw[16:24] = (9).to_bytes(8, "little")
    with pytest.raises(AccountDecodeError):
        layouts.decode_farm_v6(bytes(raw), "farmX")


def test_token_amount_and_ledger():
    owner = Pubkey.new_unique()
    assert layouts.decode_token_amount(token_account_bytes(Pubkey.new_unique(), owner, 1234), "v") == 1234
    ledger = layouts.decode_ledger(5, ledger_bytes(Pubkey.new_unique(), owner, 77, debts=(1, 2)), "ledger")
    assert ledger.owner == str(owner)
    assert ledger.deposited == 77
    assert ledger.reward_debts == (1, 2)


def test_ledger_address_is_deterministic_and_version_specific():
    farm, owner = str(Pubkey.new_unique()), str(Pubkey.new_unique())
    first = layouts.ledger_address(farm, owner, 3)
    assert first == layouts.ledger_address(farm, owner, 3)
    assert first != layouts.ledger_address(farm, owner, 6)
    Pubkey.from_string(first)


def test_farm_program_id_unknown_version():
    with pytest.raises(ValueError):
        layouts.farm_program_id(9)


def test_v6_ledger_uses_farmer_info_seed():
    farm, owner = Pubkey.new_unique(), Pubkey.new_unique()
    program = Pubkey.from_string(layouts.FARM_PROGRAM_IDS[6])
    expected, _ = Pubkey.find_program_address([bytes(farm), bytes(owner), b"farmer_info_associated_seed"], program)
    staker_seed, _ = Pubkey.find_program_address([bytes(farm), bytes(owner), b"staker_info_v2_associated_seed"], program)
    address = layouts.ledger_address(str(farm), str(owner), 6)
    assert address == str(expected)
    assert address != str(staker_seed)


def test_v3_ledger_uses_staker_info_seed():
    farm, owner = Pubkey.new_unique(), Pubkey.new_unique()
    program = Pubkey.from_string(layouts.FARM_PROGRAM_IDS[3])
    expected, _ = Pubkey.find_program_address([bytes(farm), bytes(owner), b"staker_info_v2_associated_seed"], program)
    assert layouts.ledger_address(str(farm), str(owner), 3) == str(expected)


def test_decode_v6_reads_multiplier_and_emission_state():
    mint, vault = Pubkey.new_unique(), Pubkey.new_unique()
    raw = farm_v6_bytes(
        Pubkey.new_unique(),
        Pubkey.new_unique(),
        [{"mint": mint, "vault": vault, "state": 1, "updated": 150, "total": 900, "emissioned": 300}],
        multiplier=10**12,
    )
    farm = layouts.decode_farm(6, raw, "farm")
    assert farm.reward_multiplier == 10**12
    (reward,) = farm.rewards
    assert reward.reward_state == 1
    assert reward.last_update_time == 150
    assert reward.total_emissioned == 300


def test_multiplier_defaults_per_version():
    keys = [Pubkey.new_unique() for _ in range(3)]
    assert layouts.decode_farm(3, farm_v3_bytes(*keys[:2]), "farm").reward_multiplier == 10**9
    assert layouts.decode_farm(5, farm_v5_bytes(*keys), "farm").reward_multiplier == 10**15
    unset = farm_v6_bytes(keys[0], keys[1], [])
    assert layouts.decode_farm(6, unset, "farm").reward_multiplier == 10**15
