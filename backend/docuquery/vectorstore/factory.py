"""
Vector Index Factory

Selects the backend (pinecone | memory) from settings. The rest of the app
only calls get_vector_index(), never the concrete classes.
"""

from __future__ import annotations

from functools import lru_cache

from docuquery.core.config import settings
from docuquery.vectorstore.base import VectorIndexBase


@lru_cache(maxsize=1)
def get_vector_index() -> VectorIndexBase:
    """Process-wide vector index for the configured backend."""
    backend = settings.vector_store_backend.lower()

    if backend == "pinecone":
        from docuquery.vectorstore.pinecone_store import PineconeVectorIndex
        return PineconeVectorIndex()

    if backend == "memory":
        from docuquery.vectorstore.memory_store import InMemoryVectorIndex
        return InMemoryVectorIndex()

    raise ValueError(
        f"Unknown vector store backend: '{backend}'. "
        f"Valid options: 'pinecone', 'memory'"
    )
