"""
Service Container - Dependency Injection Container

Wires storage adapters and external collaborators into the orchestrator.
Uses lazy loading to only instantiate services when first accessed.
"""

from dataclasses import dataclass, field
from typing import Optional
import logging

from journal_insights.cache.redis_client import KeyValueStore
from journal_insights.db.document_store import DocumentStore
from journal_insights.db.entry_store import BiometricProvider, EntryStore

logger = logging.getLogger(__name__)


@dataclass
class ServiceContainer:
    """
    Dependency injection container for the insight engine.

    Storage adapters are injected; the orchestrator and its collaborators
    are lazy-loaded on first access.
    """

    # Infrastructure dependencies (injected)
    entry_store: EntryStore
    documents: DocumentStore
    key_value: KeyValueStore
    biometrics: Optional[BiometricProvider] = None
    openai_api_key: Optional[str] = None

    # Services (lazy-loaded via properties)
    _rotation: Optional[object] = field(default=None, init=False, repr=False)
    _synthesis: Optional[object] = field(default=None, init=False, repr=False)
    _embeddings: Optional[object] = field(default=None, init=False, repr=False)
    _orchestrator: Optional[object] = field(default=None, init=False, repr=False)

    @property
    def rotation(self):
        """Get InsightRotation instance (lazy-loaded)"""
        if self._rotation is None:
            from journal_insights.services.insight_rotation import InsightRotation
            self._rotation = InsightRotation(self.key_value)
            logger.debug("InsightRotation instantiated")
        return self._rotation

    @property
    def synthesis(self):
        """OpenAI synthesis adapter, or None without an API key"""
        if self._synthesis is None and self.openai_api_key:
            from journal_insights.services.synthesis import OpenAISynthesisAdapter
            self._synthesis = OpenAISynthesisAdapter(api_key=self.openai_api_key)
            logger.debug("OpenAISynthesisAdapter instantiated")
        return self._synthesis

    @property
    def embeddings(self):
        """OpenAI embedding adapter, or None without an API key"""
        if self._embeddings is None and self.openai_api_key:
            from journal_insights.services.thread_manager import OpenAIEmbeddingAdapter
            self._embeddings = OpenAIEmbeddingAdapter(api_key=self.openai_api_key)
            logger.debug("OpenAIEmbeddingAdapter instantiated")
        return self._embeddings

    @property
    def orchestrator(self):
        """Get InsightOrchestrator instance (lazy-loaded)"""
        if self._orchestrator is None:
            from journal_insights.services.orchestrator import InsightOrchestrator
            self._orchestrator = InsightOrchestrator(
                entry_store=self.entry_store,
                documents=self.documents,
                rotation=self.rotation,
                biometrics=self.biometrics,
                synthesis=self.synthesis,
                embeddings=self.embeddings,
            )
            logger.debug("InsightOrchestrator instantiated")
        return self._orchestrator


# Global container instance (initialized by the API lifespan)
_container: Optional[ServiceContainer] = None


def get_container() -> ServiceContainer:
    """
    Get the global service container.

    Raises:
        RuntimeError: If container not initialized (call init_container first)
    """
    if _container is None:
        raise RuntimeError(
            "Service container not initialized. "
            "Call init_container() during startup before using services."
        )
    return _container


def init_container(
    entry_store: EntryStore,
    documents: DocumentStore,
    key_value: KeyValueStore,
    biometrics: Optional[BiometricProvider] = None,
    openai_api_key: Optional[str] = None
) -> ServiceContainer:
    """
    Initialize the global service container.

    Should be called once during startup after infrastructure setup.
    """
    global _container

    _container = ServiceContainer(
        entry_store=entry_store,
        documents=documents,
        key_value=key_value,
        biometrics=biometrics,
        openai_api_key=openai_api_key,
    )

    logger.info("Service container initialized")
    return _container


def reset_container() -> None:
    """Drop the global container (shutdown and tests)"""
    global _container
    _container = None


def set_container(container: ServiceContainer) -> ServiceContainer:
    """Install a pre-built container (tests and embedded use)"""
    global _container
    _container = container
    return _container
