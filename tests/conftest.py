import pytest

from solfarm_sync import block_time, http
from solfarm_sync.logging_utils import reset_warn_once_cache


@pytest.fixture
def anyio_backend():
    return "asyncio"


# host semaphores are bound to the loop that created them
@pytest.fixture(autouse=True)
def _reset_globals():
    http.reset_host_controllers()
    http._SESSIONS.clear()
    block_time._DEFAULT_ESTIMATOR = None
    reset_warn_once_cache()
    yield
    http.reset_host_controllers()
    block_time._DEFAULT_ESTIMATOR = None
