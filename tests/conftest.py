import pytest

from imposter_guard.constants import DEFAULT_WATCHED_IDENTITIES
from imposter_guard.moderation.registry import compile_registry
from imposter_guard.observability import ObservabilityManager
from imposter_guard.services.stats import RuntimeStats


@pytest.fixture
def registry():
    return compile_registry(DEFAULT_WATCHED_IDENTITIES)


@pytest.fixture
def observability():
    return ObservabilityManager(RuntimeStats())
