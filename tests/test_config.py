import pytest

from solfarm_sync.config import DEFAULT_FARM_CATALOG_URL, FarmSyncSettings, load_settings


def test_defaults():
    settings = load_settings(env={})
    assert str(settings.farm_catalog_url) == DEFAULT_FARM_CATALOG_URL
    assert settings.rpc_endpoint is None
    assert settings.commitment == "confirmed"
    assert settings.hydrate_concurrency == 8
    assert settings.block_time_fallback == 2.0
    assert settings.performance_sample_limit == 100


def test_environment_and_overrides():
    env = {
        "SOLANA_RPC_URL": "https://rpc.example.com",
        "FARM_HYDRATE_CONCURRENCY": "3",
        "FARM_COMMITMENT": " Finalized ",
        "BLOCK_TIME_CACHE_TTL": "",
    }
    settings = load_settings(env=env, hydrate_concurrency=5, rpc_url=None)
    assert settings.rpc_endpoint.startswith("https://rpc.example.com")
    assert settings.hydrate_concurrency == 5
    assert settings.commitment == "finalized"
    assert settings.block_time_ttl == 60.0


@pytest.mark.parametrize(
    "env",
    [
        {"FARM_HYDRATE_CONCURRENCY": "0"},
        {"FARM_RPC_BATCH_SIZE": "101"},
        {"FARM_COMMITMENT": "eventual"},
        {"FARM_HTTP_TIMEOUT": "soon"},
    ],
)
def test_invalid_values_raise_value_error(env):
    with pytest.raises(ValueError):
        load_settings(env=env)


def test_settings_are_frozen():
    settings = FarmSyncSettings()
    with pytest.raises(Exception):
        settings.hydrate_concurrency = 2
