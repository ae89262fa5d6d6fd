"""
Thread Manager

Tracks long-running storylines ("threads") across journal entries,
including metamorphosis of one thread into a successor.

Matching precedence for a proposed thread name:
1. Embedding cosine similarity >= 0.75 against an active thread (semantic)
2. Normalized-name similarity >= 0.95 (exact)
3. Same-category threads in [0.50, 0.75) are evolution candidates only,
   returned to the caller and never merged automatically

Threads for a user live in one "threads" document. Lineage is kept as
id edges (root/predecessor/successor) inside a ThreadArena.
"""

import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence

import httpx
import numpy as np
from openai import AsyncOpenAI

from journal_insights.config import EMBEDDING_MODEL, OPENAI_API_KEY
from journal_insights.db.document_store import THREADS, DocumentStore
from journal_insights.exceptions import EmbeddingError, ValidationError
from journal_insights.models.entry import clamp_unit
from journal_insights.models.thread import (
    THREAD_CATEGORIES,
    ArcPoint,
    Thread,
    ThreadAssociation,
    ThreadProposal,
)
from journal_insights.resilience.circuit_breaker import EMBEDDING_BREAKER, with_circuit_breaker
from journal_insights.resilience.retry import with_retry

logger = logging.getLogger(__name__)

SEMANTIC_SIMILARITY_THRESHOLD = 0.75
NAME_SIMILARITY_THRESHOLD = 0.95
EVOLUTION_SIMILARITY_THRESHOLD = 0.50
MIN_CONTENT_LENGTH = 50
MAX_ACTIVE_THREADS = 10
MAX_SENTIMENT_HISTORY = 10
FALLBACK_CONFIDENCE = 0.3
VOLATILITY_THRESHOLD = 0.04  # variance, i.e. 0.2 std-dev
TRAJECTORY_DELTA = 0.1


# ================================================================
# Somatic signals
# ================================================================

SOMATIC_SIGNALS: Dict[str, tuple[str, ...]] = {
    "pain": ("pain", "hurt", "sore", "ache", "aching", "sharp", "throbbing", "stabbing"),
    "tension": ("tense", "tight", "tension", "clenched", "stiff", "gripping", "locked up"),
    "fatigue": (
        "tired", "exhausted", "drained", "fatigued", "wiped", "no energy", "low energy",
        "sluggish", "lethargic", "groggy", "sleepy", "drowsy"
    ),
    "respiratory": (
        "breath", "breathing", "cough", "congested", "stuffy", "runny nose", "sinus",
        "chest tight", "hard to breathe"
    ),
    "digestive": (
        "stomach", "nausea", "nauseous", "bloated", "bloating", "indigestion",
        "heartburn", "appetite"
    ),
    "cognitive": (
        "brain fog", "foggy", "can't focus", "distracted", "scattered", "fuzzy",
        "hard to think", "concentration", "focus issues"
    ),
    "sleep_disturbance": (
        "couldn't sleep", "insomnia", "woke up", "restless", "tossing and turning",
        "racing thoughts", "nightmares", "sleep issues"
    ),
    "cardiovascular": (
        "heart racing", "pounding", "palpitations", "pulse", "heart rate", "dizzy",
        "lightheaded"
    ),
}


def extract_somatic_signals(text: str) -> List[str]:
    """Somatic signal ids whose triggers appear in the text, in catalog order"""
    if not text:
        return []
    lowered = text.lower()
    return [
        signal_id for signal_id, triggers in SOMATIC_SIGNALS.items()
        if any(trigger in lowered for trigger in triggers)
    ]


# ================================================================
# Similarity & trajectory
# ================================================================

def normalize_thread_name(name: str) -> str:
    name = re.sub(r"[^a-z0-9\s]", "", (name or "").lower())
    return re.sub(r"\s+", " ", name).strip()


def _levenshtein(a: str, b: str) -> int:
    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            cost = 0 if ca == cb else 1
            current.append(min(previous[j] + 1, current[j - 1] + 1, previous[j - 1] + cost))
        previous = current
    return previous[-1]


def name_similarity(name1: str, name2: str) -> float:
    """1 - edit distance / longer length, over normalized names"""
    n1 = normalize_thread_name(name1)
    n2 = normalize_thread_name(name2)
    longest = max(len(n1), len(n2))
    if longest == 0:
        return 1.0
    return 1 - _levenshtein(n1, n2) / longest


def cosine_similarity(a: Sequence[float], b: Sequence[float]) -> float:
    va = np.asarray(a, dtype=float)
    vb = np.asarray(b, dtype=float)
    if va.shape != vb.shape or va.size == 0:
        return 0.0
    denominator = np.linalg.norm(va) * np.linalg.norm(vb)
    if denominator == 0:
        return 0.0
    return float(np.dot(va, vb) / denominator)


def calculate_trajectory(history: Sequence[float]) -> str:
    """
    Classify a sentiment history.

    volatile when the last 3 values vary by more than 0.04, otherwise
    improving/declining when their mean moved more than 0.1 from the
    3 before them, otherwise stable.
    """
    if len(history) < 3:
        return "stable"

    recent = list(history[-3:])
    earlier = list(history[-6:-3])
    if not earlier:
        return "stable"

    recent_avg = sum(recent) / len(recent)
    earlier_avg = sum(earlier) / len(earlier)
    delta = recent_avg - earlier_avg
    variance = sum((v - recent_avg) ** 2 for v in recent) / len(recent)

    if variance > VOLATILITY_THRESHOLD:
        return "volatile"
    if delta > TRAJECTORY_DELTA:
        return "improving"
    if delta < -TRAJECTORY_DELTA:
        return "declining"
    return "stable"


@dataclass
class ThreadMatch:
    thread: Thread
    match_type: str  # semantic, exact
    similarity: float


@dataclass
class EvolutionCandidate:
    thread: Thread
    similarity: float


def find_similar_thread(
    proposed_name: str,
    threads: Sequence[Thread],
    embedding: Optional[Sequence[float]] = None
) -> Optional[ThreadMatch]:
    """Continuation match for a proposed name, or None"""
    if not threads:
        return None

    if embedding is not None:
        best: Optional[ThreadMatch] = None
        for thread in threads:
            if thread.embedding:
                similarity = cosine_similarity(embedding, thread.embedding)
                if similarity >= SEMANTIC_SIMILARITY_THRESHOLD and (best is None or similarity > best.similarity):
                    best = ThreadMatch(thread, "semantic", similarity)
        if best is not None:
            logger.info(
                f"[ThreadManager] Semantic match: '{proposed_name}' -> "
                f"'{best.thread.display_name}' ({best.similarity:.1%})"
            )
            return best

    for thread in threads:
        similarity = name_similarity(proposed_name, thread.display_name)
        if similarity >= NAME_SIMILARITY_THRESHOLD:
            logger.info(f"[ThreadManager] Name match: '{proposed_name}' -> '{thread.display_name}'")
            return ThreadMatch(thread, "exact", similarity)

    return None


def find_evolution_candidates(
    proposed_name: str,
    category: str,
    threads: Sequence[Thread],
    embedding: Optional[Sequence[float]] = None
) -> List[EvolutionCandidate]:
    """Same-category threads similar enough to have evolved into the proposal, most similar first"""
    if embedding is None:
        return []

    candidates = []
    for thread in threads:
        if thread.category != category or not thread.embedding:
            continue
        similarity = cosine_similarity(embedding, thread.embedding)
        if EVOLUTION_SIMILARITY_THRESHOLD <= similarity < SEMANTIC_SIMILARITY_THRESHOLD:
            candidates.append(EvolutionCandidate(thread, similarity))

    candidates.sort(key=lambda c: c.similarity, reverse=True)
    return candidates


# ================================================================
# Lineage arena
# ================================================================

class ThreadArena:
    """All of a user's threads keyed by id; lineage walks are id lookups"""

    def __init__(self, threads: Optional[Sequence[Thread]] = None):
        self.threads: Dict[str, Thread] = {t.id: t for t in (threads or [])}

    @classmethod
    def from_document(cls, raw: Optional[dict]) -> "ThreadArena":
        items = (raw or {}).get("threads") or {}
        return cls([Thread.model_validate(item) for item in items.values()])

    def to_document(self) -> dict:
        return {"threads": {tid: t.model_dump(mode="json") for tid, t in self.threads.items()}}

    def get(self, thread_id: Optional[str]) -> Optional[Thread]:
        return self.threads.get(thread_id) if thread_id else None

    def add(self, thread: Thread) -> None:
        self.threads[thread.id] = thread

    def active(self) -> List[Thread]:
        return [t for t in self.threads.values() if t.status == "active"]

    def find_by_name(self, name: str, statuses: Sequence[str] = ("active", "evolved", "resolved")) -> Optional[Thread]:
        target = normalize_thread_name(name)
        for thread in sorted(self.threads.values(), key=lambda t: t.last_updated, reverse=True):
            if thread.status in statuses and normalize_thread_name(thread.display_name) == target:
                return thread
        return None

    def check_can_evolve(self, predecessor_id: str) -> Thread:
        """
        Raises:
            ValidationError: predecessor missing, not active, or already evolved
        """
        predecessor = self.get(predecessor_id)
        if predecessor is None:
            raise ValidationError(
                message=f"Thread {predecessor_id} not found",
                field="predecessor_id",
                value=predecessor_id
            )
        if predecessor.status != "active" or predecessor.successor_id is not None:
            raise ValidationError(
                message=f"Thread {predecessor_id} cannot evolve from status {predecessor.status}",
                field="status",
                value=predecessor.status
            )
        return predecessor

    def link(self, predecessor_id: str, successor_id: str, now: datetime) -> None:
        """Record an evolution edge; successor_id is set exactly once"""
        predecessor = self.check_can_evolve(predecessor_id)
        predecessor.successor_id = successor_id
        predecessor.status = "evolved"
        predecessor.last_updated = now

    def lineage(self, thread_id: str) -> List[Thread]:
        """Root first, ending at the given thread"""
        thread = self.get(thread_id)
        if thread is None:
            return []
        chain = [thread]
        seen = {thread.id}
        current = self.get(thread.predecessor_id)
        while current is not None and current.id not in seen:
            chain.insert(0, current)
            seen.add(current.id)
            current = self.get(current.predecessor_id)
        return chain

    def descendants(self, thread_id: str) -> List[Thread]:
        """The given thread followed by each successor in turn"""
        thread = self.get(thread_id)
        if thread is None:
            return []
        chain = [thread]
        seen = {thread.id}
        current = self.get(thread.successor_id)
        while current is not None and current.id not in seen:
            chain.append(current)
            seen.add(current.id)
            current = self.get(current.successor_id)
        return chain


# ================================================================
# Embeddings
# ================================================================

class EmbeddingPort(ABC):
    """Text embedding capability used for semantic thread matching"""

    @abstractmethod
    async def embed(self, text: str) -> List[float]:
        """Raises EmbeddingError on failure"""


class OpenAIEmbeddingAdapter(EmbeddingPort):
    def __init__(self, api_key: str = OPENAI_API_KEY, model: str = EMBEDDING_MODEL):
        self.model = model
        self.client = AsyncOpenAI(
            api_key=api_key,
            timeout=httpx.Timeout(15.0, connect=5.0)
        )

    @with_circuit_breaker(EMBEDDING_BREAKER)
    @with_retry()
    async def _create_embedding(self, text: str) -> List[float]:
        response = await self.client.embeddings.create(model=self.model, input=text)
        return list(response.data[0].embedding)

    async def embed(self, text: str) -> List[float]:
        try:
            return await self._create_embedding(text)
        except Exception as e:
            raise EmbeddingError(
                message=f"Embedding request failed: {type(e).__name__}: {e}",
                operation="embed_thread_name",
                cause=e
            )


# ================================================================
# Manager
# ================================================================

def _slug(name: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", name.lower()).strip("-")[:30] or "thread"


class ThreadManager:
    """Creates, updates and links threads in the per-user threads document"""

    def __init__(self, store: DocumentStore, embeddings: Optional[EmbeddingPort] = None):
        self.store = store
        self.embeddings = embeddings

    async def load_arena(self, user_id: str) -> ThreadArena:
        return ThreadArena.from_document(await self.store.get(user_id, THREADS))

    async def save_arena(self, user_id: str, arena: ThreadArena) -> None:
        await self.store.merge(user_id, THREADS, arena.to_document())

    async def _embed(self, text: str) -> Optional[List[float]]:
        if self.embeddings is None:
            return None
        try:
            return await self.embeddings.embed(text)
        except EmbeddingError as e:
            logger.warning(f"[ThreadManager] Embedding unavailable, using name matching: {e.message}")
            return None

    async def get_threads(self, user_id: str) -> List[Thread]:
        return list((await self.load_arena(user_id)).threads.values())

    async def get_active_threads(self, user_id: str) -> List[Thread]:
        """Up to 10 active threads, most recently updated first"""
        arena = await self.load_arena(user_id)
        return _most_recent_active(arena)

    async def get_thread(self, user_id: str, thread_id: str) -> Optional[Thread]:
        return (await self.load_arena(user_id)).get(thread_id)

    async def get_lineage(self, user_id: str, thread_id: str) -> List[Thread]:
        return (await self.load_arena(user_id)).lineage(thread_id)

    async def get_descendants(self, user_id: str, thread_id: str) -> List[Thread]:
        return (await self.load_arena(user_id)).descendants(thread_id)

    async def _new_thread(
        self,
        arena: ThreadArena,
        display_name: str,
        category: str,
        sentiment: Optional[float],
        entry_id: Optional[str],
        somatic_signals: Sequence[str],
        now: datetime,
        predecessor: Optional[Thread] = None,
        evolution_type: Optional[str] = None,
        evolution_context: Optional[str] = None,
        embedding: Optional[List[float]] = None
    ) -> Thread:
        if predecessor is not None:
            arena.check_can_evolve(predecessor.id)

        thread_id = f"{_slug(display_name)}-{int(now.timestamp() * 1000)}"
        suffix = 1
        while thread_id in arena.threads:
            suffix += 1
            thread_id = f"{_slug(display_name)}-{int(now.timestamp() * 1000)}-{suffix}"

        sentiment = clamp_unit(sentiment)
        signals = [s for s in dict.fromkeys(somatic_signals) if s in SOMATIC_SIGNALS]

        thread = Thread(
            id=thread_id,
            display_name=display_name,
            category=category if category in THREAD_CATEGORIES else "growth",
            root_thread_id=(predecessor.root_thread_id or predecessor.id) if predecessor else thread_id,
            predecessor_id=predecessor.id if predecessor else None,
            evolution_type=evolution_type,
            evolution_context=evolution_context,
            sentiment_baseline=sentiment if sentiment is not None else 0.5,
            sentiment_history=[sentiment] if sentiment is not None else [],
            emotional_arc=[ArcPoint(
                date=now,
                sentiment=sentiment if sentiment is not None else 0.5,
                event="Thread created",
                entry_id=entry_id
            )],
            somatic_signals=signals,
            somatic_frequency={s: 1 for s in signals},
            entry_ids=[entry_id] if entry_id else [],
            entry_count=1 if entry_id else 0,
            embedding=embedding if embedding is not None else await self._embed(display_name),
            created_at=now,
            last_updated=now,
            last_entry_at=now if entry_id else None,
        )

        if predecessor is not None:
            arena.link(predecessor.id, thread.id, now)
        arena.add(thread)
        logger.info(f"[ThreadManager] Created thread: {display_name} ({thread_id})")
        return thread

    async def create_thread(
        self,
        user_id: str,
        display_name: str,
        category: str = "growth",
        sentiment: Optional[float] = None,
        entry_id: Optional[str] = None,
        somatic_signals: Sequence[str] = (),
        now: Optional[datetime] = None
    ) -> Thread:
        now = now or datetime.now(timezone.utc)
        arena = await self.load_arena(user_id)
        thread = await self._new_thread(arena, display_name, category, sentiment, entry_id, somatic_signals, now)
        await self.save_arena(user_id, arena)
        return thread

    async def evolve_thread(
        self,
        user_id: str,
        predecessor_id: str,
        display_name: str,
        category: Optional[str] = None,
        sentiment: Optional[float] = None,
        entry_id: Optional[str] = None,
        evolution_type: str = "pivot",
        evolution_context: Optional[str] = None,
        somatic_signals: Sequence[str] = (),
        now: Optional[datetime] = None
    ) -> Thread:
        """
        Metamorphosis: spawn a successor and mark the predecessor evolved.

        Raises:
            ValidationError: predecessor missing, resolved, or already evolved
        """
        now = now or datetime.now(timezone.utc)
        arena = await self.load_arena(user_id)
        predecessor = arena.get(predecessor_id)
        if predecessor is None:
            raise ValidationError(
                message=f"Thread {predecessor_id} not found",
                field="predecessor_id",
                value=predecessor_id
            )

        thread = await self._new_thread(
            arena, display_name, category or predecessor.category, sentiment, entry_id,
            somatic_signals, now, predecessor=predecessor,
            evolution_type=evolution_type, evolution_context=evolution_context
        )
        await self.save_arena(user_id, arena)
        return thread

    def _append(
        self,
        thread: Thread,
        entry_id: Optional[str],
        sentiment: Optional[float],
        somatic_signals: Sequence[str],
        event: Optional[str],
        now: datetime
    ) -> Thread:
        sentiment = clamp_unit(sentiment)
        if sentiment is not None:
            thread.sentiment_history = (thread.sentiment_history + [sentiment])[-MAX_SENTIMENT_HISTORY:]
            thread.emotional_arc.append(ArcPoint(
                date=now, sentiment=sentiment, event=event or "Entry added", entry_id=entry_id
            ))

        if thread.sentiment_history:
            thread.sentiment_baseline = sum(thread.sentiment_history) / len(thread.sentiment_history)
        thread.trajectory = calculate_trajectory(thread.sentiment_history)

        for signal in somatic_signals:
            if signal not in thread.somatic_signals:
                thread.somatic_signals.append(signal)
            thread.somatic_frequency[signal] = thread.somatic_frequency.get(signal, 0) + 1

        if entry_id and entry_id not in thread.entry_ids:
            thread.entry_ids.append(entry_id)
            thread.entry_count += 1
        thread.last_updated = now
        thread.last_entry_at = now
        return thread

    async def append_to_thread(
        self,
        user_id: str,
        thread_id: str,
        entry_id: Optional[str] = None,
        sentiment: Optional[float] = None,
        somatic_signals: Sequence[str] = (),
        event: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> Thread:
        """
        Raises:
            ValidationError: thread missing or no longer active
        """
        now = now or datetime.now(timezone.utc)
        arena = await self.load_arena(user_id)
        thread = arena.get(thread_id)
        if thread is None:
            raise ValidationError(message=f"Thread {thread_id} not found", field="thread_id", value=thread_id)
        if thread.status != "active":
            raise ValidationError(
                message=f"Cannot append to {thread.status} thread {thread_id}",
                field="status",
                value=thread.status
            )

        self._append(thread, entry_id, sentiment, somatic_signals, event, now)
        await self.save_arena(user_id, arena)
        logger.info(f"[ThreadManager] Appended to thread: {thread.display_name}")
        return thread

    async def resolve_thread(
        self,
        user_id: str,
        thread_id: str,
        resolution: Optional[str] = None,
        now: Optional[datetime] = None
    ) -> Thread:
        now = now or datetime.now(timezone.utc)
        arena = await self.load_arena(user_id)
        thread = arena.get(thread_id)
        if thread is None:
            raise ValidationError(message=f"Thread {thread_id} not found", field="thread_id", value=thread_id)
        if thread.status == "evolved":
            raise ValidationError(
                message=f"Thread {thread_id} has already evolved",
                field="status",
                value=thread.status
            )

        thread.status = "resolved"
        thread.resolution = resolution
        thread.resolved_at = now
        thread.last_updated = now
        await self.save_arena(user_id, arena)
        logger.info(f"[ThreadManager] Resolved thread: {thread_id}")
        return thread

    async def identify_thread_association(
        self,
        user_id: str,
        entry_id: str,
        text: str,
        sentiment: Optional[float] = None,
        proposal: Optional[ThreadProposal] = None,
        now: Optional[datetime] = None
    ) -> ThreadAssociation:
        """
        Attach an entry to a thread.

        Args:
            proposal: Classification from the external classifier. Without
                one only somatic heuristics run and no thread is touched.

        Returns:
            ThreadAssociation; success=False for missing ids or short text
        """
        if not user_id or not text or len(text) < MIN_CONTENT_LENGTH:
            return ThreadAssociation(success=False, error="Invalid input")

        if proposal is None:
            return ThreadAssociation(
                success=True,
                action="fallback",
                somatic_signals=extract_somatic_signals(text),
                confidence=FALLBACK_CONFIDENCE,
            )

        now = now or datetime.now(timezone.utc)
        arena = await self.load_arena(user_id)
        active = _most_recent_active(arena)
        final_sentiment = sentiment if sentiment is not None else proposal.sentiment
        if final_sentiment is None:
            final_sentiment = 0.5
        signals = proposal.somatic_signals or extract_somatic_signals(text)

        def appended(thread: Thread, action: str) -> ThreadAssociation:
            self._append(thread, entry_id, final_sentiment, signals, proposal.arc_event, now)
            return ThreadAssociation(
                success=True, action=action, thread_id=thread.id, thread_name=thread.display_name,
                somatic_signals=signals, confidence=proposal.confidence
            )

        if proposal.action == "continue" and proposal.existing_thread_name:
            target = normalize_thread_name(proposal.existing_thread_name)
            matched = next((t for t in active if normalize_thread_name(t.display_name) == target), None)
            if matched is not None:
                result = appended(matched, "appended")
                await self.save_arena(user_id, arena)
                return result

        proposed_name = proposal.proposed_name or proposal.existing_thread_name or "Unnamed Thread"

        if proposal.action == "metamorphosis":
            predecessor = None
            if proposal.predecessor_name:
                predecessor = arena.find_by_name(proposal.predecessor_name, statuses=("active",))
            thread = await self._new_thread(
                arena, proposed_name, proposal.category, final_sentiment, entry_id, signals, now,
                predecessor=predecessor,
                evolution_type=proposal.evolution_type or "pivot",
                evolution_context=proposal.evolution_context
            )
            await self.save_arena(user_id, arena)
            return ThreadAssociation(
                success=True, action="metamorphosis", thread_id=thread.id, thread_name=thread.display_name,
                predecessor_id=predecessor.id if predecessor else None,
                somatic_signals=signals, confidence=proposal.confidence
            )

        embedding = await self._embed(proposed_name)
        match = find_similar_thread(proposed_name, active, embedding)
        if match is not None:
            result = appended(match.thread, "deduplicated")
            await self.save_arena(user_id, arena)
            return result

        candidates = find_evolution_candidates(proposed_name, proposal.category, active, embedding)
        thread = await self._new_thread(
            arena, proposed_name, proposal.category, final_sentiment, entry_id, signals, now,
            embedding=embedding
        )
        await self.save_arena(user_id, arena)
        return ThreadAssociation(
            success=True, action="created", thread_id=thread.id, thread_name=thread.display_name,
            somatic_signals=signals, confidence=proposal.confidence,
            evolution_candidates=[c.thread.id for c in candidates]
        )


def _most_recent_active(arena: ThreadArena) -> List[Thread]:
    active = sorted(arena.active(), key=lambda t: t.last_updated, reverse=True)
    return active[:MAX_ACTIVE_THREADS]
