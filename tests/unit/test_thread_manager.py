"""
Unit tests for thread_manager module

Tests similarity helpers, trajectory classification, lineage and entry
association.
"""

from datetime import timedelta
from typing import Dict, List
from unittest.mock import AsyncMock

import pytest

from journal_insights.exceptions import EmbeddingError, ValidationError
from journal_insights.models.thread import Thread, ThreadProposal
from journal_insights.services.thread_manager import (
    EmbeddingPort,
    ThreadManager,
    calculate_trajectory,
    cosine_similarity,
    extract_somatic_signals,
    find_similar_thread,
    name_similarity,
)
from tests.helpers import NOW, TEST_USER

LONG_TEXT = "Spent most of the afternoon on applications and a long call with a recruiter."


class StubEmbeddings(EmbeddingPort):
    """Fixed vectors per name; unknown names get a unit vector on the last axis"""

    def __init__(self, vectors: Dict[str, List[float]]):
        self.vectors = vectors

    async def embed(self, text: str) -> List[float]:
        return self.vectors.get(text, [0.0, 0.0, 1.0])


class TestSimilarityHelpers:
    """Tests for name and vector similarity"""

    def test_name_similarity(self):
        assert name_similarity("Job Search", "job search!") == 1.0
        assert name_similarity("kitten", "sitting") == pytest.approx(1 - 3 / 7)
        assert name_similarity("", "") == 1.0

    def test_cosine_similarity(self):
        assert cosine_similarity([1, 0], [1, 0]) == pytest.approx(1.0)
        assert cosine_similarity([1, 0], [0, 1]) == pytest.approx(0.0)
        assert cosine_similarity([1, 0], [1, 0, 0]) == 0.0
        assert cosine_similarity([0, 0], [1, 0]) == 0.0

    def test_somatic_signals(self):
        signals = extract_somatic_signals("Shoulders tight and I'm exhausted, couldn't sleep")
        assert signals == ["tension", "fatigue", "sleep_disturbance"]
        assert extract_somatic_signals("") == []

    def test_semantic_match_picks_closest_thread(self):
        close = Thread(id="t1", display_name="Job hunt", root_thread_id="t1", embedding=[0.8, 0.6, 0.0], created_at=NOW, last_updated=NOW)
        closest = Thread(id="t2", display_name="Career change", root_thread_id="t2", embedding=[1.0, 0.1, 0.0], created_at=NOW, last_updated=NOW)

        match = find_similar_thread("New role search", [close, closest], embedding=[1.0, 0.0, 0.0])

        assert match.thread.id == "t2"
        assert match.match_type == "semantic"
        assert match.similarity == pytest.approx(1 / 1.01 ** 0.5)


class TestTrajectory:
    """Tests for calculate_trajectory()"""

    def test_declining(self):
        assert calculate_trajectory([0.8, 0.8, 0.8, 0.2, 0.2, 0.2]) == "declining"

    def test_improving(self):
        assert calculate_trajectory([0.2, 0.2, 0.2, 0.8, 0.8, 0.8]) == "improving"

    def test_volatile(self):
        assert calculate_trajectory([0.5, 0.5, 0.5, 0.1, 0.9, 0.1]) == "volatile"

    def test_short_history_is_stable(self):
        assert calculate_trajectory([0.1, 0.9]) == "stable"
        assert calculate_trajectory([0.1, 0.5, 0.9]) == "stable"


class TestLineage:
    """Tests for thread evolution and lineage walks"""

    async def test_evolve_links_predecessor(self, document_store):
        manager = ThreadManager(document_store)
        root = await manager.create_thread(TEST_USER, "Job Search", "career", now=NOW)
        successor = await manager.evolve_thread(
            TEST_USER, root.id, "New Role Onboarding", now=NOW + timedelta(days=30)
        )

        stored_root = await manager.get_thread(TEST_USER, root.id)
        assert stored_root.status == "evolved"
        assert stored_root.successor_id == successor.id
        assert successor.root_thread_id == root.id
        assert successor.category == "career"

        assert [t.id for t in await manager.get_lineage(TEST_USER, successor.id)] == [root.id, successor.id]
        assert [t.id for t in await manager.get_descendants(TEST_USER, root.id)] == [root.id, successor.id]

    async def test_cannot_evolve_twice(self, document_store):
        manager = ThreadManager(document_store)
        root = await manager.create_thread(TEST_USER, "Job Search", "career", now=NOW)
        await manager.evolve_thread(TEST_USER, root.id, "Offer Negotiation", now=NOW)

        with pytest.raises(ValidationError):
            await manager.evolve_thread(TEST_USER, root.id, "Something Else", now=NOW)

    async def test_cannot_evolve_resolved(self, document_store):
        manager = ThreadManager(document_store)
        root = await manager.create_thread(TEST_USER, "Knee Injury", "health", now=NOW)
        await manager.resolve_thread(TEST_USER, root.id, "Healed", now=NOW)

        with pytest.raises(ValidationError):
            await manager.evolve_thread(TEST_USER, root.id, "Marathon Training", now=NOW)

    async def test_cannot_append_to_resolved(self, document_store):
        manager = ThreadManager(document_store)
        root = await manager.create_thread(TEST_USER, "Knee Injury", "health", now=NOW)
        await manager.resolve_thread(TEST_USER, root.id, now=NOW)

        with pytest.raises(ValidationError):
            await manager.append_to_thread(TEST_USER, root.id, entry_id="e1", sentiment=0.4)

    async def test_unknown_category_falls_back_to_growth(self, document_store):
        thread = await ThreadManager(document_store).create_thread(TEST_USER, "Misc", "nonsense", now=NOW)
        assert thread.category == "growth"

    async def test_active_threads_bounded(self, document_store):
        manager = ThreadManager(document_store)
        for i in range(12):
            await manager.create_thread(TEST_USER, f"Thread {i}", now=NOW + timedelta(minutes=i))

        active = await manager.get_active_threads(TEST_USER)
        assert len(active) == 10
        assert active[0].display_name == "Thread 11"


class TestThreadAssociation:
    """Tests for identify_thread_association()"""

    async def test_short_text_rejected(self, document_store):
        result = await ThreadManager(document_store).identify_thread_association(TEST_USER, "e1", "Too short")
        assert result.success is False

    async def test_fallback_without_proposal(self, document_store):
        manager = ThreadManager(document_store)
        text = "Woke up exhausted again with a tight neck, the whole day felt like wading through mud."

        result = await manager.identify_thread_association(TEST_USER, "e1", text)

        assert result.action == "fallback"
        assert result.confidence == 0.3
        assert set(result.somatic_signals) == {"tension", "fatigue", "sleep_disturbance"}
        assert await manager.get_threads(TEST_USER) == []

    async def test_continue_appends(self, document_store):
        manager = ThreadManager(document_store)
        thread = await manager.create_thread(TEST_USER, "Job Search", "career", sentiment=0.5, entry_id="e0", now=NOW)

        proposal = ThreadProposal(action="continue", existing_thread_name="job search", sentiment=0.3)
        result = await manager.identify_thread_association(TEST_USER, "e1", LONG_TEXT, proposal=proposal, now=NOW)

        assert result.action == "appended"
        assert result.thread_id == thread.id
        stored = await manager.get_thread(TEST_USER, thread.id)
        assert stored.entry_count == 2
        assert stored.sentiment_history == [0.5, 0.3]
        assert stored.sentiment_baseline == pytest.approx(0.4)

    async def test_new_with_existing_name_deduplicates(self, document_store):
        manager = ThreadManager(document_store)
        thread = await manager.create_thread(TEST_USER, "Job Search", "career", now=NOW)

        proposal = ThreadProposal(action="new", proposed_name="Job Search!", category="career")
        result = await manager.identify_thread_association(TEST_USER, "e1", LONG_TEXT, proposal=proposal, now=NOW)

        assert result.action == "deduplicated"
        assert result.thread_id == thread.id
        assert len(await manager.get_threads(TEST_USER)) == 1

    async def test_semantic_match_and_evolution_candidates(self, document_store):
        embeddings = StubEmbeddings({
            "Job Search": [1.0, 0.0, 0.0],
            "Hunting For Work": [0.9, 0.1, 0.0],
            "Career Change": [0.6, 0.8, 0.0],
        })
        manager = ThreadManager(document_store, embeddings)
        original = await manager.create_thread(TEST_USER, "Job Search", "career", now=NOW)

        semantic = await manager.identify_thread_association(
            TEST_USER, "e1", LONG_TEXT,
            proposal=ThreadProposal(action="new", proposed_name="Hunting For Work", category="career"),
            now=NOW,
        )
        assert semantic.action == "deduplicated"
        assert semantic.thread_id == original.id

        created = await manager.identify_thread_association(
            TEST_USER, "e2", LONG_TEXT,
            proposal=ThreadProposal(action="new", proposed_name="Career Change", category="career"),
            now=NOW + timedelta(minutes=1),
        )
        assert created.action == "created"
        assert created.evolution_candidates == [original.id]

    async def test_metamorphosis(self, document_store):
        manager = ThreadManager(document_store)
        original = await manager.create_thread(TEST_USER, "Job Search", "career", now=NOW)

        proposal = ThreadProposal(
            action="metamorphosis", proposed_name="First Month At New Job",
            predecessor_name="Job Search", category="career", evolution_type="continuation",
        )
        result = await manager.identify_thread_association(
            TEST_USER, "e1", LONG_TEXT, proposal=proposal, now=NOW + timedelta(days=1)
        )

        assert result.action == "metamorphosis"
        assert result.predecessor_id == original.id
        assert (await manager.get_thread(TEST_USER, original.id)).status == "evolved"

    async def test_embedding_failure_uses_name_matching(self, document_store):
        embeddings = AsyncMock(spec=EmbeddingPort)
        embeddings.embed.side_effect = EmbeddingError(message="service down")
        manager = ThreadManager(document_store, embeddings)
        thread = await manager.create_thread(TEST_USER, "Job Search", "career", now=NOW)

        assert thread.embedding is None
        result = await manager.identify_thread_association(
            TEST_USER, "e1", LONG_TEXT,
            proposal=ThreadProposal(action="new", proposed_name="job search", category="career"),
            now=NOW,
        )
        assert result.action == "deduplicated"


def test_find_similar_thread_without_threads():
    assert find_similar_thread("Anything", []) is None
