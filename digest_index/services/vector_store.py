"""
Vector store service.
Upserts, queries, deletes and fetches vectors against an external index.

The client validates every vector before any network call, splits large
upserts into batches dispatched under a concurrency cap, and sends every call
through the shared RetryExecutor. Batches succeed or fail independently; a
failed batch never rolls back its siblings.
"""
import asyncio
import time
from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta, timezone
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Mapping, Optional, Sequence, Union

from pinecone import Pinecone, ServerlessSpec

from digest_index.core.common import BaseService, get_service_logger, split_into_batches
from digest_index.core.exceptions import (
    AuthenticationError,
    BaseAppException,
    ConfigurationError,
    ValidationError,
    VectorStoreError,
    with_error_handling,
)
from digest_index.core.logging import get_utc_datetime
from digest_index.core.retry import RetryExecutor, RetryPolicy
from digest_index.models.vector import (
    BatchOutcome,
    QueryMatch,
    QueryResult,
    UpsertResult,
    Vector,
)
from digest_index.services.metrics import MetricsCollector
from digest_index.services.publishers import PublisherNormalizer, publisher_normalizer
from digest_index.services.validation import MetadataValidator, default_validator

INDEX_READY_POLL_SECONDS = 5.0
INDEX_READY_TIMEOUT_SECONDS = 300.0

# Errors surfaced to the caller as-is instead of being wrapped as VectorStoreError
PASSTHROUGH_ERRORS = (ValidationError, AuthenticationError, ConfigurationError)

Filter = Dict[str, Any]


def day_epoch_seconds(day: Union[str, date]) -> int:
    """
    Epoch seconds of midnight UTC on ``day``.

    Pinecone range operators only accept numbers, so date ranges filter on
    this value (stored as the ``timestamp`` metadata field), not on ``date``.

    Raises:
        ValidationError: ``day`` is not an ISO date
    """
    if isinstance(day, datetime):
        day = day.date()
    elif not isinstance(day, date):
        try:
            day = date.fromisoformat(str(day)[:10])
        except ValueError:
            raise ValidationError(f"Not an ISO date: {day}", field="date", value=day)
    return int(datetime(day.year, day.month, day.day, tzinfo=timezone.utc).timestamp())


def _safe_get(obj: Any, key: str, default: Any = None) -> Any:
    """Support both dict-style and attribute-style access."""
    if isinstance(obj, Mapping):
        return obj.get(key, default)
    return getattr(obj, key, default)


def _as_dict(obj: Any) -> Dict[str, Any]:
    if obj is None:
        return {}
    if isinstance(obj, Mapping):
        return dict(obj)
    to_dict = getattr(obj, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    return dict(vars(obj))


class IndexBackend(ABC):
    """Abstract interface for the external vector index."""

    @abstractmethod
    async def upsert(self, vectors: List[Dict[str, Any]], namespace: str) -> int:
        """Insert-or-update vectors; returns the number upserted."""

    @abstractmethod
    async def query(
        self,
        vector: List[float],
        top_k: int,
        namespace: str,
        filter: Optional[Filter] = None,
        include_metadata: bool = True,
        include_values: bool = False,
    ) -> Dict[str, Any]:
        """Return ``{"matches": [{id, score, values, metadata}], "namespace"}`` in index order."""

    @abstractmethod
    async def delete(self, ids: List[str], namespace: str) -> None:
        """Delete vectors by id."""

    @abstractmethod
    async def fetch(self, ids: List[str], namespace: str) -> Dict[str, Dict[str, Any]]:
        """Return ``{id: {id, values, metadata}}`` for the ids that exist."""

    @abstractmethod
    async def describe_index_stats(self) -> Dict[str, Any]:
        """Lightweight stats call, also used as the health probe."""


class PineconeIndexBackend(IndexBackend):
    """Pinecone-backed index. All SDK calls run on a worker thread."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        index_name: Optional[str] = None,
        dimension: Optional[int] = None,
        metric: Optional[str] = None,
        cloud: Optional[str] = None,
        region: Optional[str] = None,
        client: Any = None,
    ):
        from digest_index.core.config import config

        index_config = config.index_config
        self.api_key = api_key or index_config["api_key"]
        self.index_name = index_name or index_config["name"]
        self.dimension = dimension or index_config["dimension"]
        self.metric = metric or index_config["metric"]
        self.cloud = cloud or index_config["cloud"]
        self.region = region or index_config["environment"]

        self._client = client
        self._index = None
        self.logger = get_service_logger("pinecone_backend")

    @property
    def client(self) -> Pinecone:
        if self._client is None:
            if not self.api_key:
                raise ConfigurationError("PINECONE_API_KEY is required", field="PINECONE_API_KEY")
            self._client = Pinecone(api_key=self.api_key)
        return self._client

    @property
    def index(self):
        if self._index is None:
            self._index = self.client.Index(self.index_name)
        return self._index

    @staticmethod
    async def _run_in_thread(func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        return await asyncio.to_thread(func, *args, **kwargs)

    @with_error_handling("ensure_index", reraise_if=(BaseAppException,))
    async def ensure_index(self, sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep) -> Dict[str, Any]:
        """
        Create the index if it is missing, wait until it is ready, and verify
        the dimension and metric of an existing one.

        Returns:
            Description of the index
        """
        names = await self._run_in_thread(lambda: list(self.client.list_indexes().names()))

        if self.index_name not in names:
            self.logger.info(
                "index_creating",
                index_name=self.index_name,
                dimension=self.dimension,
                metric=self.metric
            )
            await self._run_in_thread(
                self.client.create_index,
                name=self.index_name,
                dimension=self.dimension,
                metric=self.metric,
                spec=ServerlessSpec(cloud=self.cloud, region=self.region),
            )
            description = await self._wait_until_ready(sleep)
            self.logger.info("index_created", index_name=self.index_name)
        else:
            description = await self._run_in_thread(self.client.describe_index, self.index_name)
            self._verify_configuration(description)

        return {
            "name": self.index_name,
            "dimension": _safe_get(description, "dimension"),
            "metric": _safe_get(description, "metric"),
            "ready": bool(_safe_get(_safe_get(description, "status"), "ready", False)),
        }

    async def _wait_until_ready(self, sleep: Callable[[float], Awaitable[Any]]):
        waited = 0.0
        while waited < INDEX_READY_TIMEOUT_SECONDS:
            description = await self._run_in_thread(self.client.describe_index, self.index_name)
            if _safe_get(_safe_get(description, "status"), "ready", False):
                return description
            await sleep(INDEX_READY_POLL_SECONDS)
            waited += INDEX_READY_POLL_SECONDS

        raise VectorStoreError(
            f"Index {self.index_name} not ready after {INDEX_READY_TIMEOUT_SECONDS:.0f}s",
            "ensure_index"
        )

    def _verify_configuration(self, description: Any) -> None:
        actual_dimension = _safe_get(description, "dimension")
        actual_metric = _safe_get(description, "metric")
        if actual_dimension is not None and actual_dimension != self.dimension:
            self.logger.warning(
                "index_dimension_mismatch",
                index_name=self.index_name,
                expected=self.dimension,
                actual=actual_dimension
            )
        if actual_metric is not None and actual_metric != self.metric:
            self.logger.warning(
                "index_metric_mismatch",
                index_name=self.index_name,
                expected=self.metric,
                actual=actual_metric
            )

    async def upsert(self, vectors: List[Dict[str, Any]], namespace: str) -> int:
        response = await self._run_in_thread(self.index.upsert, vectors=vectors, namespace=namespace)
        upserted = _safe_get(response, "upserted_count")
        return int(upserted) if upserted is not None else len(vectors)

    async def query(
        self,
        vector: List[float],
        top_k: int,
        namespace: str,
        filter: Optional[Filter] = None,
        include_metadata: bool = True,
        include_values: bool = False,
    ) -> Dict[str, Any]:
        kwargs: Dict[str, Any] = {
            "vector": vector,
            "top_k": top_k,
            "namespace": namespace,
            "include_metadata": include_metadata,
            "include_values": include_values,
        }
        if filter:
            kwargs["filter"] = filter
        response = await self._run_in_thread(self.index.query, **kwargs)

        matches = []
        for match in _safe_get(response, "matches", None) or []:
            matches.append({
                "id": _safe_get(match, "id"),
                "score": _safe_get(match, "score"),
                "values": list(_safe_get(match, "values", None) or []) or None,
                "metadata": dict(_safe_get(match, "metadata", None) or {}) or None,
            })
        return {"matches": matches, "namespace": _safe_get(response, "namespace", namespace)}

    async def delete(self, ids: List[str], namespace: str) -> None:
        await self._run_in_thread(self.index.delete, ids=ids, namespace=namespace)

    async def fetch(self, ids: List[str], namespace: str) -> Dict[str, Dict[str, Any]]:
        response = await self._run_in_thread(self.index.fetch, ids=ids, namespace=namespace)
        vectors = _safe_get(response, "vectors", None) or {}
        return {
            vector_id: {
                "id": _safe_get(record, "id", vector_id),
                "values": list(_safe_get(record, "values", None) or []),
                "metadata": dict(_safe_get(record, "metadata", None) or {}),
            }
            for vector_id, record in vectors.items()
        }

    async def describe_index_stats(self) -> Dict[str, Any]:
        stats = await self._run_in_thread(self.index.describe_index_stats)
        return _as_dict(stats)


class VectorStoreClient(BaseService):
    """
    Validated, batched, retried access to one vector index.

    The client itself holds configuration only; mutable shared state lives in
    the injected MetricsCollector.
    """

    def __init__(
        self,
        backend: IndexBackend,
        validator: Optional[MetadataValidator] = None,
        retry: Optional[RetryExecutor] = None,
        metrics: Optional[MetricsCollector] = None,
        normalizer: Optional[PublisherNormalizer] = None,
        max_batch_size: Optional[int] = None,
        max_concurrent_batches: Optional[int] = None,
        namespace: Optional[str] = None,
    ):
        super().__init__("vector_store")
        batch_config = self.config.batch_config

        self.backend = backend
        self.validator = validator or default_validator()
        self.retry = retry or RetryExecutor(self.config.retry_policy, service="pinecone")
        self.metrics = metrics or MetricsCollector()
        self.normalizer = normalizer or publisher_normalizer
        self.max_batch_size = max_batch_size or batch_config["max_batch_size"]
        self.max_concurrent_batches = max_concurrent_batches or batch_config["max_concurrent_batches"]
        self.namespace = namespace or self.config.query_defaults["namespace"]

        if self.max_batch_size < 1 or self.max_concurrent_batches < 1:
            raise ConfigurationError("Batch size and batch concurrency must be >= 1")

    async def _run(
        self,
        operation: str,
        call: Callable[[], Awaitable[Any]],
        count: Callable[[Any], int] = lambda _: 1,
        policy: Optional[RetryPolicy] = None,
    ) -> Any:
        """Run one retried index call, recording its metric or its error."""
        start = time.perf_counter()
        try:
            result = await self.retry.execute(call, operation_name=operation, policy=policy)
        except Exception as e:
            self.metrics.record_error(operation, e, (time.perf_counter() - start) * 1000)
            if isinstance(e, PASSTHROUGH_ERRORS):
                raise
            raise VectorStoreError(f"{operation} failed: {e}", operation, e) from e

        self.metrics.record(operation, (time.perf_counter() - start) * 1000, count(result))
        return result

    def _validate(self, operation: str, check: Callable[[], Any]) -> None:
        try:
            check()
        except ValidationError as e:
            self.metrics.record_error(operation, e)
            self.logger.warning(
                f"{operation}_validation_failed",
                error=str(e),
                error_code=e.error_code
            )
            raise

    @staticmethod
    def _validate_ids(ids: Sequence[str]) -> List[str]:
        ids = list(ids)
        for vector_id in ids:
            if not isinstance(vector_id, str) or not vector_id.strip():
                raise ValidationError("Vector ids must be non-empty strings", field="ids", value=vector_id)
        return ids

    # ------------------------------------------------------------------ #
    # Upsert
    # ------------------------------------------------------------------ #

    async def _upsert_batch(
        self,
        batch_index: int,
        batch: List[Vector],
        namespace: str,
        semaphore: asyncio.Semaphore,
    ) -> BatchOutcome:
        payloads = [vector.to_payload() for vector in batch]

        async with semaphore:
            start = time.perf_counter()
            try:
                upserted = await self.retry.execute(
                    lambda: self.backend.upsert(payloads, namespace),
                    operation_name="batch_upsert",
                )
            except Exception as e:
                duration_ms = (time.perf_counter() - start) * 1000
                self.metrics.record_error("batch_upsert", e, duration_ms)
                self.logger.error(
                    "batch_upsert_failed",
                    batch_index=batch_index,
                    size=len(batch),
                    namespace=namespace,
                    error=str(e),
                    error_type=type(e).__name__
                )
                return BatchOutcome(
                    batch_index=batch_index,
                    size=len(batch),
                    success=False,
                    error=str(e),
                    error_type=type(e).__name__,
                    duration_ms=duration_ms,
                    exception=e,
                )

        duration_ms = (time.perf_counter() - start) * 1000
        self.metrics.record("batch_upsert", duration_ms, len(batch))
        self.logger.debug(
            "batch_upserted",
            batch_index=batch_index,
            size=len(batch),
            duration_ms=round(duration_ms, 2)
        )
        return BatchOutcome(
            batch_index=batch_index,
            size=len(batch),
            success=True,
            upserted_count=upserted if isinstance(upserted, int) else len(batch),
            duration_ms=duration_ms,
        )

    async def upsert(self, vectors: Iterable[Vector], namespace: Optional[str] = None) -> UpsertResult:
        """
        Validate and upsert vectors, splitting them into batches.

        Every vector is validated before any network call. Batches run with at
        most ``max_concurrent_batches`` in flight and each batch is retried on
        its own, so the upsert is at-least-once per batch rather than atomic.

        Returns:
            UpsertResult with one BatchOutcome per batch

        Raises:
            ValidationError: any vector failed validation (nothing was sent)
            AuthenticationError, ConfigurationError, ValidationError: a batch was
                rejected for a reason no retry can fix (sibling batches may
                already be committed)
        """
        vectors = list(vectors)
        namespace = namespace or self.namespace
        if not vectors:
            return UpsertResult(namespace=namespace)

        self._validate("upsert", lambda: self.validator.validate_vectors(vectors))

        batches = split_into_batches(vectors, self.max_batch_size)
        semaphore = asyncio.Semaphore(self.max_concurrent_batches)
        start = time.perf_counter()

        outcomes = await asyncio.gather(*(
            self._upsert_batch(batch_index, batch, namespace, semaphore)
            for batch_index, batch in enumerate(batches)
        ))
        result = UpsertResult(namespace=namespace, batches=list(outcomes))
        duration_ms = (time.perf_counter() - start) * 1000

        self.metrics.record("upsert", duration_ms, result.upserted_count)
        if result.failed_batches:
            first = result.failed_batches[0]
            self.metrics.record_error(
                "upsert",
                VectorStoreError(first.error or "batch upsert failed", "upsert"),
                duration_ms
            )
            self.logger.error(
                "vectors_upsert_partial_failure",
                namespace=namespace,
                upserted=result.upserted_count,
                failed=result.failed_count,
                failed_batches=[b.batch_index for b in result.failed_batches]
            )
            for outcome in result.failed_batches:
                if isinstance(outcome.exception, PASSTHROUGH_ERRORS):
                    raise outcome.exception
        else:
            self.logger.info(
                "vectors_upserted",
                namespace=namespace,
                count=result.upserted_count,
                batches=len(batches),
                duration_ms=round(duration_ms, 2)
            )
        return result

    # ------------------------------------------------------------------ #
    # Query / delete / fetch
    # ------------------------------------------------------------------ #

    async def query(
        self,
        vector: Sequence[float],
        top_k: Optional[int] = None,
        namespace: Optional[str] = None,
        filter: Optional[Filter] = None,
        include_metadata: Optional[bool] = None,
        include_values: Optional[bool] = None,
    ) -> QueryResult:
        """Similarity query. Matches come back in the index's own order."""
        defaults = self.config.query_defaults
        top_k = top_k or defaults["top_k"]
        namespace = namespace or self.namespace
        include_metadata = defaults["include_metadata"] if include_metadata is None else include_metadata
        include_values = defaults["include_values"] if include_values is None else include_values

        values = [float(v) for v in vector]
        if self.validator.schema.validate_dimensions:
            self._validate("query", lambda: self.validator.validate_dimensions(values))

        response = await self._run(
            "query",
            lambda: self.backend.query(
                values,
                top_k=top_k,
                namespace=namespace,
                filter=filter,
                include_metadata=include_metadata,
                include_values=include_values,
            ),
            count=lambda r: max(len(r.get("matches") or []), 1),
        )

        matches = [
            QueryMatch(
                id=match["id"],
                score=match.get("score"),
                values=match.get("values"),
                metadata=match.get("metadata"),
            )
            for match in response.get("matches") or []
        ]
        self.logger.info(
            "vectors_queried",
            namespace=namespace,
            top_k=top_k,
            matches=len(matches),
            filtered=bool(filter)
        )
        return QueryResult(matches=matches, namespace=namespace)

    async def delete(self, ids: Sequence[str], namespace: Optional[str] = None) -> int:
        """Delete vectors by id. Returns the number of ids sent."""
        namespace = namespace or self.namespace
        ids = list(ids)
        if not ids:
            return 0
        self._validate("delete", lambda: self._validate_ids(ids))

        await self._run("delete", lambda: self.backend.delete(ids, namespace), count=lambda _: len(ids))
        self.logger.info("vectors_deleted", namespace=namespace, count=len(ids))
        return len(ids)

    async def fetch(self, ids: Sequence[str], namespace: Optional[str] = None) -> Dict[str, Vector]:
        """Fetch vectors by id; ids that do not exist are absent from the result."""
        namespace = namespace or self.namespace
        ids = list(ids)
        if not ids:
            return {}
        self._validate("fetch", lambda: self._validate_ids(ids))

        records = await self._run(
            "fetch",
            lambda: self.backend.fetch(ids, namespace),
            count=lambda r: max(len(r), 1),
        )
        vectors = {vector_id: Vector.from_payload(record) for vector_id, record in records.items()}
        self.logger.debug("vectors_fetched", namespace=namespace, requested=len(ids), found=len(vectors))
        return vectors

    async def get_index_stats(self, policy: Optional[RetryPolicy] = None) -> Dict[str, Any]:
        return await self._run("describe_index_stats", self.backend.describe_index_stats, policy=policy)

    # ------------------------------------------------------------------ #
    # Filter helpers
    # ------------------------------------------------------------------ #

    async def search_by_publisher(
        self,
        vector: Sequence[float],
        publisher: str,
        filter: Optional[Filter] = None,
        **kwargs: Any,
    ) -> QueryResult:
        """Query restricted to one publisher, resolved through the alias table."""
        canonical = self.normalizer.normalize(publisher)
        merged: Filter = {"publisher": {"$eq": canonical}}
        merged.update(filter or {})
        return await self.query(vector, filter=merged, **kwargs)

    async def search_by_date_range(
        self,
        vector: Sequence[float],
        start_date: Union[str, date],
        end_date: Union[str, date],
        filter: Optional[Filter] = None,
        **kwargs: Any,
    ) -> QueryResult:
        """Query restricted to ``start_date <= date <= end_date``, whole days, UTC."""
        start = day_epoch_seconds(start_date)
        end = day_epoch_seconds(end_date)
        if start > end:
            raise ValidationError(
                f"Start date {start_date} is after end date {end_date}",
                field="start_date",
                value=start_date
            )
        merged: Filter = {"timestamp": {"$gte": start, "$lte": end}}
        merged.update(filter or {})
        return await self.query(vector, filter=merged, **kwargs)

    async def search_recent(self, vector: Sequence[float], days: int = 7, **kwargs: Any) -> QueryResult:
        """Query restricted to the last ``days`` days, UTC."""
        if days < 0:
            raise ValidationError("days must be >= 0", field="days", value=days)
        today = get_utc_datetime().date()
        return await self.search_by_date_range(vector, today - timedelta(days=days), today, **kwargs)
