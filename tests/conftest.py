"""Global test fixtures and utilities for journal-insights tests"""
import pytest
import random

from journal_insights.cache.redis_client import InMemoryKeyValueStore
from journal_insights.db.document_store import InMemoryDocumentStore
from journal_insights.db.entry_store import InMemoryBiometricProvider, InMemoryEntryStore
from journal_insights.services.container import ServiceContainer, reset_container
from journal_insights.services.insight_rotation import InsightRotation
from journal_insights.services.orchestrator import InsightOrchestrator
from tests.helpers import NOW, TEST_USER, make_workout_history


# ============================================================================
# Clock & User Fixtures
# ============================================================================

@pytest.fixture
def now():
    """Fixed clock used across tests"""
    return NOW


@pytest.fixture
def test_user_id():
    """Standard test user ID"""
    return TEST_USER


@pytest.fixture
def workout_entries():
    """20 daily entries, 8 of them workouts at high mood"""
    return make_workout_history()


# ============================================================================
# Store Fixtures
# ============================================================================

@pytest.fixture
def document_store():
    """Empty in-memory document store"""
    return InMemoryDocumentStore()


@pytest.fixture
def key_value_store():
    """Empty in-memory key/value store (rotation state)"""
    return InMemoryKeyValueStore()


# ============================================================================
# Service Fixtures
# ============================================================================

@pytest.fixture
def seeded_rng():
    """Deterministic RNG for rotation scoring"""
    return random.Random(42)


@pytest.fixture
def rotation(key_value_store, seeded_rng):
    return InsightRotation(key_value_store, rng=seeded_rng)


@pytest.fixture
def orchestrator_factory(document_store, rotation):
    """Build an orchestrator over the given entries; no wearable unless biometric_days is given"""
    def _build(entries=None, biometric_days=None, synthesis=None, documents=None, **options):
        return InsightOrchestrator(
            entry_store=InMemoryEntryStore(entries or []),
            documents=documents or document_store,
            rotation=rotation,
            biometrics=InMemoryBiometricProvider(biometric_days, today=NOW.date()) if biometric_days is not None else None,
            synthesis=synthesis,
            **options,
        )
    return _build


@pytest.fixture
def service_container(document_store, key_value_store):
    """Container over in-memory stores; dropped from the global slot after the test"""
    container = ServiceContainer(
        entry_store=InMemoryEntryStore(make_workout_history()),
        documents=document_store,
        key_value=key_value_store,
        biometrics=InMemoryBiometricProvider(today=NOW.date()),
    )
    yield container
    reset_container()
