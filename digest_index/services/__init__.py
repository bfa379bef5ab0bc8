"""Services layer for the indexing client."""

from .chunking import ContentChunker, chunker
from .validation import MetadataSchema, MetadataValidator
from .publishers import PublisherNormalizer, publisher_normalizer
from .metrics import MetricsCollector
from .embeddings import EmbeddingGenerator
from .vector_store import IndexBackend, PineconeIndexBackend, VectorStoreClient
from .health import HealthMonitor
from .indexing import ContentIndexer

__all__ = [
    "ContentChunker",
    "chunker",
    "MetadataSchema",
    "MetadataValidator",
    "PublisherNormalizer",
    "publisher_normalizer",
    "MetricsCollector",
    "EmbeddingGenerator",
    "IndexBackend",
    "PineconeIndexBackend",
    "VectorStoreClient",
    "HealthMonitor",
    "ContentIndexer"
]
