import pytest
from pulse_query.env import (
	ENV_PULSE_QUERY_ENV,
	ENV_PULSE_QUERY_FETCH_ON_CREATE,
	ENV_PULSE_QUERY_LOG_LEVEL,
)
from pulse_query.reactive import BATCH, GlobalBatch


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch: pytest.MonkeyPatch):  # pyright: ignore[reportUnusedFunction]
	for name in (
		ENV_PULSE_QUERY_ENV,
		ENV_PULSE_QUERY_FETCH_ON_CREATE,
		ENV_PULSE_QUERY_LOG_LEVEL,
	):
		monkeypatch.delenv(name, raising=False)


@pytest.fixture(autouse=True)
def _fresh_batch():  # pyright: ignore[reportUnusedFunction]
	"""Each test gets its own global batch, bound to its own event loop."""
	token = BATCH.set(GlobalBatch())
	yield
	BATCH.reset(token)
