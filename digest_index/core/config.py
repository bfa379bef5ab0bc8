"""
Core configuration module with environment variable validation.
Follows fail-fast principle - validates all config at startup.
"""
from typing import Optional, List, Dict, Any
from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field, validator, ValidationError
import sys


VALID_METRICS = ("cosine", "euclidean", "dotproduct")

# Declared metadata schema: field name -> expected type name
VECTOR_METADATA_SCHEMA: Dict[str, str] = {
    # Required fields
    "publisher": "string",
    "date": "string",
    "content_type": "string",
    "source": "string",

    # Optional fields
    "section": "string",
    "timestamp": "number",
    "content_length": "number",
    "confidence_score": "number",
    "summary": "string",
    "keywords": "array",
    "sentiment": "string",
    "category": "string",
    "priority": "number",
    "chunk_index": "number",
    "total_chunks": "number",

    # System fields
    "created_at": "string",
    "updated_at": "string",
    "version": "string",
    "processed_by": "string",
}

NAMESPACES: Dict[str, str] = {
    "daily_digests": "daily-digests",
    "publisher_profiles": "publisher-profiles",
    "content_summaries": "content-summaries",
    "test_data": "test-data",
}

INDEXED_METADATA_FIELDS = ["publisher", "date", "content_type", "source", "section", "timestamp"]


class Settings(BaseSettings):
    """Application settings with validation."""

    # Application settings
    APP_NAME: str = Field(default="Publisher Digest Index", description="Application name")
    APP_VERSION: str = Field(default="1.0.0", description="Application version")
    DEBUG: bool = Field(default=False, description="Debug mode")
    API_PREFIX: str = Field(default="", description="Prefix for the operational API routes")

    # Vector index settings
    PINECONE_API_KEY: Optional[str] = Field(default=None, description="Pinecone API key")
    PINECONE_ENVIRONMENT: str = Field(default="us-east-1", description="Pinecone region / environment")
    PINECONE_CLOUD: str = Field(default="aws", description="Cloud used for serverless indexes")
    PINECONE_INDEX_NAME: str = Field(default="mulabot-csm", min_length=1, max_length=45, description="Index name")
    EMBEDDING_DIMENSION: int = Field(default=1536, ge=1, le=20000, description="Vector dimension")
    SIMILARITY_METRIC: str = Field(default="cosine", description="Similarity metric (cosine, euclidean, dotproduct)")
    DEFAULT_NAMESPACE: str = Field(default=NAMESPACES["daily_digests"], description="Default namespace")

    # Batch settings
    MAX_BATCH_SIZE: int = Field(default=100, ge=1, description="Maximum vectors per upsert batch")
    MAX_CONCURRENT_BATCHES: int = Field(default=5, ge=1, description="Maximum batches in flight")

    # Retry settings
    RETRY_MAX_ATTEMPTS: int = Field(default=3, ge=1, description="Attempts per network operation")
    RETRY_INITIAL_DELAY_MS: float = Field(default=1000.0, ge=0, description="Delay before the first retry")
    RETRY_BACKOFF_MULTIPLIER: float = Field(default=2.0, ge=1.0, description="Exponential backoff multiplier")
    RETRY_MAX_DELAY_MS: float = Field(default=30000.0, ge=0, description="Ceiling for the retry delay")
    OPERATION_TIMEOUT_MS: float = Field(default=60000.0, gt=0, description="Per-attempt timeout")

    # Health check settings
    HEALTH_CHECK_INTERVAL_MS: float = Field(default=300000.0, ge=0, description="Probe interval, 0 disables")
    HEALTH_CHECK_TIMEOUT_MS: float = Field(default=10000.0, gt=0, description="Probe timeout")
    HEALTHY_THRESHOLD: int = Field(default=2, ge=1, description="Successes before healthy")
    UNHEALTHY_THRESHOLD: int = Field(default=3, ge=1, description="Failures before unhealthy")

    # Metrics settings
    ENABLE_METRICS: bool = Field(default=True, description="Record operation metrics")
    METRICS_INTERVAL_MS: float = Field(default=60000.0, ge=0, description="Metrics summary interval, 0 disables")
    SLOW_QUERY_THRESHOLD_MS: float = Field(default=5000.0, ge=0, description="Slow operation threshold")

    # Validation settings
    ENFORCE_SCHEMA: bool = Field(default=True, description="Check metadata against the schema")
    ALLOW_EXTRA_FIELDS: bool = Field(default=False, description="Permit metadata keys outside the schema")
    VALIDATE_VECTOR_DIMENSIONS: bool = Field(default=True, description="Check vector dimensions")
    VALIDATE_METADATA: bool = Field(default=True, description="Validate metadata on upsert")
    REQUIRED_METADATA_FIELDS: List[str] = Field(
        default=["publisher", "date", "content_type", "source"],
        description="Metadata fields every vector must carry"
    )

    # Query defaults
    QUERY_TOP_K: int = Field(default=10, ge=1, le=10000, description="Default number of matches")
    QUERY_INCLUDE_METADATA: bool = Field(default=True, description="Include metadata in matches")
    QUERY_INCLUDE_VALUES: bool = Field(default=False, description="Include vector values in matches")

    # Content processing settings
    MAX_CHUNK_SIZE: int = Field(default=8000, ge=1, description="Maximum characters per chunk")

    # Embedding settings
    OPENAI_API_KEY: Optional[str] = Field(default=None, description="OpenAI API key")
    OPENAI_ORG_ID: Optional[str] = Field(default=None, description="OpenAI organization")
    EMBEDDING_MODEL: str = Field(default="text-embedding-3-small", description="OpenAI embedding model")

    # Logging settings
    LOG_LEVEL: str = Field(default="INFO", description="Logging level")
    LOG_FORMAT: str = Field(default="json", description="Log format (json, text)")

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
        extra="forbid",  # Fail on unknown entries in the env file
        validate_default=True,
        use_enum_values=True
    )

    @validator("SIMILARITY_METRIC")
    def validate_metric(cls, v):
        """Ensure the metric is one the index supports."""
        if v not in VALID_METRICS:
            raise ValueError(f"Invalid metric: must be one of {', '.join(VALID_METRICS)}")
        return v

    @validator("RETRY_MAX_DELAY_MS")
    def validate_max_delay(cls, v, values):
        """Ensure the delay ceiling is not below the initial delay."""
        initial = values.get("RETRY_INITIAL_DELAY_MS", 1000.0)
        if v < initial:
            raise ValueError(f"Max retry delay ({v}) must be >= initial delay ({initial})")
        return v

    @validator("REQUIRED_METADATA_FIELDS")
    def validate_required_fields(cls, v):
        """Required fields must be declared in the metadata schema."""
        unknown = [name for name in v if name not in VECTOR_METADATA_SCHEMA]
        if unknown:
            raise ValueError(f"Required fields not declared in schema: {unknown}")
        return v

    @validator("LOG_LEVEL")
    def validate_log_level(cls, v):
        if v.upper() not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ValueError(f"Invalid log level: {v}")
        return v.upper()

    def validate_index_credentials(self) -> Dict[str, Any]:
        """
        Centralized credential check for the vector index.
        Used by startup validation and health reporting.
        """
        has_key = bool(self.PINECONE_API_KEY)
        return {
            "status": "healthy" if has_key else "unhealthy",
            "index_name": self.PINECONE_INDEX_NAME,
            "api_key_configured": has_key,
            "message": "Pinecone is configured" if has_key else "Pinecone API key not configured"
        }

    def validate_critical_startup_config(self) -> None:
        """
        Validates credentials needed to talk to real services.
        Raises ConfigurationError if validation fails.
        """
        from digest_index.core.exceptions import ConfigurationError

        if not self.PINECONE_API_KEY:
            raise ConfigurationError("PINECONE_API_KEY is required", field="PINECONE_API_KEY")
        if not self.OPENAI_API_KEY:
            raise ConfigurationError("OPENAI_API_KEY is required", field="OPENAI_API_KEY")


def load_settings() -> Settings:
    """
    Load and validate settings.
    Fails fast if configuration is invalid.
    """
    try:
        settings = Settings()
        return settings
    except ValidationError as e:
        print("Configuration Error - Invalid settings detected:")
        for error in e.errors():
            field = " -> ".join(str(x) for x in error["loc"])
            msg = error["msg"]
            print(f"  - {field}: {msg}")
        print("\nPlease check your .env file and environment variables")
        sys.exit(1)


class ConfigAccessor:
    """
    Centralized configuration accessor.
    Groups settings into the typed views each component consumes.
    """

    def __init__(self, settings_instance: Settings):
        self._settings = settings_instance

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def index_config(self) -> Dict[str, Any]:
        """Get vector index configuration."""
        return {
            "api_key": self._settings.PINECONE_API_KEY,
            "environment": self._settings.PINECONE_ENVIRONMENT,
            "cloud": self._settings.PINECONE_CLOUD,
            "name": self._settings.PINECONE_INDEX_NAME,
            "dimension": self._settings.EMBEDDING_DIMENSION,
            "metric": self._settings.SIMILARITY_METRIC,
            "default_namespace": self._settings.DEFAULT_NAMESPACE,
            "indexed_fields": list(INDEXED_METADATA_FIELDS),
        }

    @property
    def batch_config(self) -> Dict[str, Any]:
        """Get batch upsert configuration."""
        return {
            "max_batch_size": self._settings.MAX_BATCH_SIZE,
            "max_concurrent_batches": self._settings.MAX_CONCURRENT_BATCHES,
        }

    @property
    def query_defaults(self) -> Dict[str, Any]:
        """Get default query options."""
        return {
            "top_k": self._settings.QUERY_TOP_K,
            "include_metadata": self._settings.QUERY_INCLUDE_METADATA,
            "include_values": self._settings.QUERY_INCLUDE_VALUES,
            "namespace": self._settings.DEFAULT_NAMESPACE,
        }

    @property
    def retry_policy(self):
        """Get the retry policy shared by every network call."""
        from digest_index.core.retry import RetryPolicy

        return RetryPolicy(
            max_retries=self._settings.RETRY_MAX_ATTEMPTS,
            initial_delay_ms=self._settings.RETRY_INITIAL_DELAY_MS,
            backoff_multiplier=self._settings.RETRY_BACKOFF_MULTIPLIER,
            max_delay_ms=self._settings.RETRY_MAX_DELAY_MS,
            timeout_ms=self._settings.OPERATION_TIMEOUT_MS,
        )

    @property
    def health_retry_policy(self):
        """Single-attempt policy for health probes, bounded by the probe timeout."""
        from digest_index.core.retry import RetryPolicy

        return RetryPolicy(
            max_retries=1,
            initial_delay_ms=0,
            max_delay_ms=0,
            timeout_ms=self._settings.HEALTH_CHECK_TIMEOUT_MS,
        )

    @property
    def health_config(self) -> Dict[str, Any]:
        """Get health monitor configuration."""
        return {
            "interval_ms": self._settings.HEALTH_CHECK_INTERVAL_MS,
            "timeout_ms": self._settings.HEALTH_CHECK_TIMEOUT_MS,
            "healthy_threshold": self._settings.HEALTHY_THRESHOLD,
            "unhealthy_threshold": self._settings.UNHEALTHY_THRESHOLD,
        }

    @property
    def metrics_config(self) -> Dict[str, Any]:
        """Get metrics collector configuration."""
        return {
            "enabled": self._settings.ENABLE_METRICS,
            "interval_ms": self._settings.METRICS_INTERVAL_MS,
            "slow_query_threshold_ms": self._settings.SLOW_QUERY_THRESHOLD_MS,
        }

    @property
    def metadata_schema(self):
        """Get the metadata schema enforced on every vector."""
        from digest_index.services.validation import MetadataSchema

        return MetadataSchema(
            fields=dict(VECTOR_METADATA_SCHEMA),
            required_fields=tuple(self._settings.REQUIRED_METADATA_FIELDS),
            enforce_schema=self._settings.ENFORCE_SCHEMA,
            allow_extra_fields=self._settings.ALLOW_EXTRA_FIELDS,
            validate_metadata=self._settings.VALIDATE_METADATA,
            validate_dimensions=self._settings.VALIDATE_VECTOR_DIMENSIONS,
            dimension=self._settings.EMBEDDING_DIMENSION,
        )

    @property
    def embedding_config(self) -> Dict[str, Any]:
        """Get embedding API configuration."""
        return {
            "api_key": self._settings.OPENAI_API_KEY,
            "organization": self._settings.OPENAI_ORG_ID,
            "model": self._settings.EMBEDDING_MODEL,
            "dimension": self._settings.EMBEDDING_DIMENSION,
            "timeout_ms": self._settings.OPERATION_TIMEOUT_MS,
        }

    def is_debug_mode(self) -> bool:
        """Check if debug mode is enabled."""
        return self._settings.DEBUG


# Create a singleton instance
settings = load_settings()

# Create configuration accessor
config = ConfigAccessor(settings)
