"""
Metadata and dimension validation.

Every vector is checked here before any network call. Validation is pure:
inputs are never mutated and failures raise a ValidationError subclass.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Mapping, Optional, Sequence, Tuple, Union

import numpy as np

from digest_index.core.common import get_service_logger
from digest_index.core.exceptions import (
    DimensionMismatchError,
    InvalidVectorError,
    MissingRequiredFieldError,
    SchemaError,
    UnexpectedFieldError,
)
from digest_index.models.vector import Vector

logger = get_service_logger("validation")


@dataclass(frozen=True)
class MetadataSchema:
    """
    Typed schema for vector metadata.

    Attributes:
        fields: Declared field names mapped to their type name
        required_fields: Fields that must be present on every vector
        enforce_schema: When False, metadata is not checked at all
        allow_extra_fields: When False, keys outside ``fields`` are rejected
        validate_metadata: When False, vectors skip metadata checks
        validate_dimensions: When False, vectors skip dimension checks
        dimension: Expected vector length
    """
    fields: Dict[str, str] = field(default_factory=dict)
    required_fields: Tuple[str, ...] = ("publisher", "date", "content_type", "source")
    enforce_schema: bool = True
    allow_extra_fields: bool = False
    validate_metadata: bool = True
    validate_dimensions: bool = True
    dimension: int = 1536

    def __post_init__(self):
        if self.dimension < 1:
            raise ValueError("dimension must be >= 1")
        undeclared = [name for name in self.required_fields if self.fields and name not in self.fields]
        if undeclared:
            raise ValueError(f"Required fields not declared in schema: {undeclared}")

    @property
    def allowed_fields(self) -> frozenset:
        return frozenset(self.fields) | frozenset(self.required_fields)


def _is_missing(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str) and not value.strip():
        return True
    return False


class MetadataValidator:
    """Enforces the metadata schema and the dimension contract."""

    def __init__(self, schema: MetadataSchema):
        self.schema = schema

    @property
    def dimension(self) -> int:
        return self.schema.dimension

    def validate(self, metadata: Mapping[str, Any]) -> None:
        """
        Check metadata against the schema.

        Raises:
            MissingRequiredFieldError: a required field is absent or empty
            UnexpectedFieldError: an undeclared key is present and extra
                fields are not allowed
        """
        if not self.schema.enforce_schema:
            return
        if not isinstance(metadata, Mapping):
            raise SchemaError("Metadata must be a mapping", field="metadata", value=type(metadata).__name__)

        for name in self.schema.required_fields:
            if _is_missing(metadata.get(name)):
                raise MissingRequiredFieldError(name)

        if not self.schema.allow_extra_fields:
            allowed = self.schema.allowed_fields
            for name in metadata:
                if name not in allowed:
                    raise UnexpectedFieldError(name)

    def validate_dimensions(self, vector: Union[Vector, Sequence[float]]) -> None:
        """Raise DimensionMismatchError unless the vector has the configured length."""
        values = vector.values if isinstance(vector, Vector) else vector
        actual = len(values)
        if actual != self.schema.dimension:
            vector_id = vector.id if isinstance(vector, Vector) else None
            raise DimensionMismatchError(self.schema.dimension, actual, vector_id=vector_id)

    def validate_values(self, vector: Vector) -> None:
        """Reject vectors holding NaN, infinities or non-numeric values."""
        try:
            array = np.asarray(vector.values, dtype=np.float64)
        except (TypeError, ValueError):
            raise InvalidVectorError(f"Vector {vector.id} has non-numeric values", vector_id=vector.id)
        if array.ndim != 1:
            raise InvalidVectorError(f"Vector {vector.id} values must be one-dimensional", vector_id=vector.id)
        if not np.all(np.isfinite(array)):
            raise InvalidVectorError(f"Vector {vector.id} has non-finite values", vector_id=vector.id)

    def validate_vector(self, vector: Vector) -> None:
        """Full check of one vector: id, values, dimension and metadata."""
        if not isinstance(vector, Vector):
            raise InvalidVectorError(f"Expected a Vector, got {type(vector).__name__}")
        if not vector.id or not str(vector.id).strip():
            raise InvalidVectorError("Vector must have an id")
        if vector.values is None or isinstance(vector.values, (str, bytes)):
            raise InvalidVectorError(f"Vector {vector.id} must have a values array", vector_id=vector.id)

        if self.schema.validate_dimensions:
            self.validate_dimensions(vector)
        self.validate_values(vector)

        if self.schema.validate_metadata and vector.metadata:
            self.validate(vector.metadata)

    def validate_vectors(self, vectors: Iterable[Vector]) -> int:
        """Validate every vector, failing on the first invalid one. Returns the count."""
        count = 0
        for vector in vectors:
            self.validate_vector(vector)
            count += 1
        logger.debug("vectors_validated", count=count, dimension=self.schema.dimension)
        return count


def default_validator(schema: Optional[MetadataSchema] = None) -> MetadataValidator:
    """Build a validator from the configured schema."""
    if schema is None:
        from digest_index.core.config import config

        schema = config.metadata_schema
    return MetadataValidator(schema)
