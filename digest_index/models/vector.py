"""
Vector data model.
Plain dataclasses passed between the embedding, validation and index layers.
"""
from dataclasses import dataclass, field, fields
from typing import Any, Dict, List, Optional

Metadata = Dict[str, Any]


@dataclass
class Vector:
    """An embedding plus its identifier and metadata."""
    id: str
    values: List[float]
    metadata: Metadata = field(default_factory=dict)

    @property
    def dimension(self) -> int:
        return len(self.values)

    def to_payload(self) -> Dict[str, Any]:
        """Wire shape for an upsert request."""
        payload: Dict[str, Any] = {"id": self.id, "values": [float(v) for v in self.values]}
        if self.metadata:
            payload["metadata"] = dict(self.metadata)
        return payload

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "Vector":
        return cls(
            id=str(payload["id"]),
            values=list(payload.get("values") or []),
            metadata=dict(payload.get("metadata") or {}),
        )


@dataclass
class QueryMatch:
    """One ranked match, in the order the index returned it."""
    id: str
    score: float
    values: Optional[List[float]] = None
    metadata: Optional[Metadata] = None


@dataclass
class QueryResult:
    """Matches returned for a single query."""
    matches: List[QueryMatch]
    namespace: str

    def __len__(self) -> int:
        return len(self.matches)

    @property
    def ids(self) -> List[str]:
        return [m.id for m in self.matches]


@dataclass
class BatchOutcome:
    """Outcome of a single upsert batch; batches succeed or fail independently."""
    batch_index: int
    size: int
    success: bool
    upserted_count: int = 0
    error: Optional[str] = None
    error_type: Optional[str] = None
    duration_ms: float = 0.0
    exception: Optional[BaseException] = field(default=None, repr=False, compare=False)

    def to_dict(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self) if f.name != "exception"}


@dataclass
class UpsertResult:
    """Per-batch report for an upsert of many vectors."""
    namespace: str
    batches: List[BatchOutcome] = field(default_factory=list)

    @property
    def upserted_count(self) -> int:
        return sum(b.upserted_count for b in self.batches if b.success)

    @property
    def failed_count(self) -> int:
        return sum(b.size for b in self.batches if not b.success)

    @property
    def succeeded(self) -> bool:
        return all(b.success for b in self.batches)

    @property
    def failed_batches(self) -> List[BatchOutcome]:
        return [b for b in self.batches if not b.success]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "namespace": self.namespace,
            "upserted_count": self.upserted_count,
            "failed_count": self.failed_count,
            "batches": [b.to_dict() for b in self.batches],
        }


@dataclass
class IndexingResult:
    """Result of processing one content unit into the index."""
    vector_count: int
    processing_time_ms: float
    upsert: UpsertResult
    vector_ids: List[str] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.upsert.succeeded
