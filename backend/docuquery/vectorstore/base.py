"""
Vector Index — Abstract Base

Every backend (Pinecone, in-memory) implements this interface; the rest of
the application only speaks this protocol.

Owner isolation contract (enforced by ALL implementations):
  - Every record carries metadata["user_id"]; upserts reject records
    without one.
  - Every query is scoped to one owner and, optionally, a document-id set.

Query result contract (enforced here, in rank_results, for all backends):
  - never more than top_k results
  - never a result with score < min_score
  - never a result from a document outside the requested set
  - ordered by score descending; ties keep original chunk order
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Iterable, Sequence

DEFAULT_TOP_K     = 5
DEFAULT_MIN_SCORE = 0.3

REQUIRED_METADATA = ("user_id", "document_id", "chunk_index", "text")


# ---------------------------------------------------------------------------
# Shared data types
# ---------------------------------------------------------------------------

@dataclass
class VectorRecord:
    """A single embedding record to upsert."""
    id:       str              # deterministic: "<document_id>#<hash>", listable by prefix
    vector:   list[float]
    metadata: dict             # must contain REQUIRED_METADATA


@dataclass
class QueryResult:
    """One ranked chunk returned from a similarity search."""
    id:       str
    score:    float
    metadata: dict
    text:     str = field(default="")

    def __post_init__(self) -> None:
        if not self.text and "text" in self.metadata:
            self.text = self.metadata["text"]

    @property
    def document_id(self) -> str:
        return str(self.metadata.get("document_id", ""))

    @property
    def chunk_index(self) -> int:
        return int(self.metadata.get("chunk_index", 0))

    def as_source(self) -> dict:
        """Citation payload stored on assistant messages."""
        return {"text": self.text, "score": self.score, "metadata": self.metadata}


@dataclass(frozen=True)
class QueryFilter:
    """Owner scope plus an optional document-id allow-list."""
    user_id:      str
    document_ids: tuple[str, ...] = ()

    @classmethod
    def build(cls, user_id: object, document_ids: Iterable[object] | None = None) -> "QueryFilter":
        return cls(
            user_id=str(user_id),
            document_ids=tuple(sorted({str(d) for d in document_ids or ()})),
        )

    def matches(self, metadata: dict) -> bool:
        if str(metadata.get("user_id")) != self.user_id:
            return False
        if self.document_ids and str(metadata.get("document_id")) not in self.document_ids:
            return False
        return True


def validate_record(record: VectorRecord) -> None:
    missing = [k for k in REQUIRED_METADATA if k not in record.metadata]
    if missing:
        raise ValueError(f"Vector record {record.id} missing metadata fields: {missing}")


def rank_results(
    results:   Sequence[QueryResult],
    flt:       QueryFilter,
    top_k:     int,
    min_score: float,
) -> list[QueryResult]:
    """Apply the result contract to raw backend matches."""
    kept = [r for r in results if r.score >= min_score and flt.matches(r.metadata)]
    # sorted() is stable: equal (score, chunk_index) keep the backend's order
    kept = sorted(kept, key=lambda r: (-r.score, r.chunk_index))
    return kept[:max(top_k, 0)]


# ---------------------------------------------------------------------------
# Abstract interface
# ---------------------------------------------------------------------------

class VectorIndexBase(ABC):

    @abstractmethod
    async def upsert(self, records: list[VectorRecord], batch_size: int = 100) -> int:
        """Insert or update records. Returns the number upserted."""

    @abstractmethod
    async def query(
        self,
        vector:    list[float],
        flt:       QueryFilter,
        top_k:     int = DEFAULT_TOP_K,
        min_score: float = DEFAULT_MIN_SCORE,
    ) -> list[QueryResult]:
        """Nearest-neighbour search scoped by `flt`, ranked by rank_results."""

    @abstractmethod
    async def delete_by_document(self, user_id: str, document_id: str) -> None:
        """Delete every chunk belonging to a document."""
