import asyncio

import aiohttp
import pytest

from fakes import FakeSession
from solfarm_sync.exceptions import CatalogFetchError
from solfarm_sync.providers import raydium_farms

CATALOG = {
    "official": [
        {"id": "F1", "lpMint": "LP1", "ammId": "AMM1", "rewardMints": ["RAY"], "version": 3, "symbol": "RAY-USDC"},
        {"id": "F2", "lpMint": "LP2", "rewardInfos": [{"rewardMint": "RAY"}, {"rewardMint": "SRM"}], "version": 5},
    ],
    "fusion": [
        {"id": "F3", "lpMint": "LP3", "poolId": "AMM3", "rewardMint": "ABC", "upcoming": True, "version": 6},
        {"id": "F1", "lpMint": "LP1", "ammId": "AMM1", "version": 3},
    ],
    "ecosystem": [
        {"lpMint": "LP4"},
        {"id": "F5", "lpMint": "LP5", "version": 4},
    ],
}


def test_parse_catalog_flattens_groups_in_order():
    descriptors = raydium_farms.parse_catalog(CATALOG)
    assert [d.id for d in descriptors] == ["F1", "F2", "F3"]
    f1, f2, f3 = descriptors
    assert f1.pool_id == "AMM1" and f1.category == "raydium" and f1.symbol == "RAY-USDC"
    assert f2.pool_id == "LP2"
    assert f2.reward_mints == ("RAY", "SRM")
    assert f3.upcoming is True and f3.category == "fusion" and f3.version == 6
    assert f3.reward_mints == ("ABC",)


def test_parse_catalog_accepts_flat_list_and_data_key():
    entry = {"id": "F9", "lpMint": "LP9"}
    assert [d.id for d in raydium_farms.parse_catalog([entry])] == ["F9"]
    assert [d.id for d in raydium_farms.parse_catalog({"data": [entry]})] == ["F9"]


def test_parse_catalog_rejects_unknown_shape():
    with pytest.raises(CatalogFetchError):
        raydium_farms.parse_catalog({"nothing": 1})
    with pytest.raises(CatalogFetchError):
        raydium_farms.parse_catalog("garbage")


def test_fetch_farm_descriptors_uses_session():
    session = FakeSession(CATALOG)
    descriptors = asyncio.run(
        raydium_farms.fetch_farm_descriptors("https://api.raydium.io/farms.json", session=session)
    )
    assert len(descriptors) == 3
    assert session.calls[0]["url"] == "https://api.raydium.io/farms.json"


def test_transport_errors_become_catalog_errors():
    session = FakeSession(aiohttp.ClientError("offline"))
    with pytest.raises(CatalogFetchError):
        asyncio.run(
            raydium_farms.fetch_farm_descriptors("http://catalog.test", session=session, attempts=1, backoff=0)
        )
