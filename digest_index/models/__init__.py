"""Data models passed between services."""

from .vector import (
    Vector,
    QueryMatch,
    QueryResult,
    BatchOutcome,
    UpsertResult,
    IndexingResult
)

__all__ = [
    "Vector",
    "QueryMatch",
    "QueryResult",
    "BatchOutcome",
    "UpsertResult",
    "IndexingResult"
]
