"""
Content indexing pipeline.

The entry point used by upstream collaborators:

    process_and_index: chunk -> embed -> validate -> upsert
    search:            embed query -> query
"""
import time
from typing import Any, Dict, List, Mapping, Optional

from digest_index.core.common import BaseService, with_service_logging
from digest_index.core.config import config
from digest_index.core.exceptions import ValidationError
from digest_index.core.logging import get_utc_timestamp, set_correlation_id
from digest_index.models.vector import IndexingResult, QueryResult, Vector
from digest_index.services.chunking import ContentChunker
from digest_index.services.embeddings import EmbeddingGenerator
from digest_index.services.health import HealthMonitor
from digest_index.services.metrics import MetricsCollector
from digest_index.services.publishers import PublisherNormalizer, publisher_normalizer
from digest_index.services.vector_store import PineconeIndexBackend, VectorStoreClient, day_epoch_seconds

DEFAULT_CONTENT_TYPE = "daily_digest"
METADATA_VERSION = "1.0"


class ContentIndexer(BaseService):
    """Wires chunking, embeddings, validation, the index and its observers."""

    def __init__(
        self,
        store: VectorStoreClient,
        embeddings: EmbeddingGenerator,
        chunker: Optional[ContentChunker] = None,
        normalizer: Optional[PublisherNormalizer] = None,
        health: Optional[HealthMonitor] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        super().__init__("indexing")
        self.store = store
        self.embeddings = embeddings
        self.chunker = chunker or ContentChunker()
        self.normalizer = normalizer or publisher_normalizer
        self.metrics = metrics or store.metrics
        self.health = health or HealthMonitor(
            probe=lambda: store.get_index_stats(policy=self.config.health_retry_policy),
            embedding_probe=embeddings.check_connectivity,
        )

    @classmethod
    def build_default(cls) -> "ContentIndexer":
        """Build every component from settings, sharing one metrics collector."""
        config.settings.validate_critical_startup_config()

        metrics = MetricsCollector()
        store = VectorStoreClient(PineconeIndexBackend(), metrics=metrics)
        embeddings = EmbeddingGenerator(metrics=metrics)
        return cls(store, embeddings, metrics=metrics)

    def _vector_metadata(self, metadata: Mapping[str, Any], publisher: str) -> Dict[str, Any]:
        base = dict(metadata)
        base["publisher"] = publisher
        base["content_type"] = metadata.get("content_type") or DEFAULT_CONTENT_TYPE
        return base

    async def process_content(self, content: str, metadata: Mapping[str, Any]) -> List[Vector]:
        """
        Turn one content unit into vectors, one per chunk, in chunk order.

        Vector ids are ``{publisher}-{date}-chunk-{index}`` so re-indexing the
        same digest overwrites its previous vectors. ``timestamp`` is set to
        midnight UTC of ``date`` for the date-range searches.

        Raises:
            ValidationError: empty content, missing publisher or non-ISO date, metadata
                that fails the schema (checked before any embedding call)
        """
        if not isinstance(content, str) or not content.strip():
            raise ValidationError("Content must be a non-empty string", field="content")
        for name in ("publisher", "date"):
            if not metadata.get(name):
                raise ValidationError(f"Metadata field '{name}' is required", field=name)

        publisher = self.normalizer.normalize(str(metadata["publisher"]))
        digest_date = str(metadata["date"])
        base = self._vector_metadata(metadata, publisher)
        base["timestamp"] = day_epoch_seconds(digest_date)

        chunks = self.chunker.chunk_content(f"{publisher}-{digest_date}", content)
        created_at = get_utc_timestamp()

        vector_metadata = []
        for chunk in chunks:
            chunk_metadata = dict(base)
            chunk_metadata.update({
                "section": f"chunk_{chunk.index}",
                "content_length": chunk.length,
                "chunk_index": chunk.index,
                "total_chunks": chunk.total_chunks,
                "created_at": created_at,
                "version": METADATA_VERSION,
            })
            vector_metadata.append(chunk_metadata)

        # Fail on bad metadata before paying for embeddings
        if self.store.validator.schema.validate_metadata:
            self.store.validator.validate(vector_metadata[0])

        embeddings = await self.embeddings.embed([chunk.text for chunk in chunks])

        vectors = [
            Vector(id=f"{chunk.parent_id}-chunk-{chunk.index}", values=embedding, metadata=chunk_metadata)
            for chunk, embedding, chunk_metadata in zip(chunks, embeddings, vector_metadata)
        ]
        self.logger.info(
            "content_processed",
            publisher=publisher,
            date=digest_date,
            chunks=len(chunks),
            content_length=len(content)
        )
        return vectors

    async def process_and_index(
        self,
        content: str,
        metadata: Mapping[str, Any],
        namespace: Optional[str] = None,
    ) -> IndexingResult:
        """Chunk, embed, validate and upsert one content unit."""
        set_correlation_id()
        start = time.perf_counter()

        try:
            vectors = await self.process_content(content, metadata)
            upsert = await self.store.upsert(vectors, namespace)
        except Exception as e:
            self.metrics.record_error("process_and_index", e, (time.perf_counter() - start) * 1000)
            self.logger.error(
                "content_indexing_failed",
                publisher=metadata.get("publisher"),
                date=metadata.get("date"),
                error=str(e),
                error_type=type(e).__name__
            )
            raise

        processing_time_ms = (time.perf_counter() - start) * 1000
        self.metrics.record("process_and_index", processing_time_ms, len(vectors))

        result = IndexingResult(
            vector_count=len(vectors),
            processing_time_ms=processing_time_ms,
            upsert=upsert,
            vector_ids=[vector.id for vector in vectors],
        )
        log = self.logger.info if result.succeeded else self.logger.error
        log(
            "content_indexed",
            publisher=vectors[0].metadata["publisher"],
            vector_count=result.vector_count,
            upserted=upsert.upserted_count,
            failed=upsert.failed_count,
            processing_time_ms=round(processing_time_ms, 2)
        )
        return result

    @with_service_logging("search")
    async def search(
        self,
        query_text: str,
        filters: Optional[Dict[str, Any]] = None,
        top_k: Optional[int] = None,
        namespace: Optional[str] = None,
    ) -> QueryResult:
        """Embed the query text and return the index's ranked matches."""
        if not isinstance(query_text, str) or not query_text.strip():
            raise ValidationError("Query text must be a non-empty string", field="query_text")

        vector = await self.embeddings.embed_query(query_text)
        return await self.store.query(vector, top_k=top_k, namespace=namespace, filter=filters)

    async def start(self, ensure_index: bool = False) -> None:
        """Start the health and metrics loops; optionally bootstrap the index first."""
        if ensure_index:
            bootstrap = getattr(self.store.backend, "ensure_index", None)
            if bootstrap is not None:
                await bootstrap()

        self.metrics.attach_health_source(self.health)
        self.health.start()
        self.metrics.start_reporting()
        self.logger.info("content_indexer_started")

    async def shutdown(self) -> None:
        await self.health.stop()
        await self.metrics.stop_reporting()
        self.logger.info("content_indexer_stopped")
