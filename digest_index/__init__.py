"""Publisher digest content indexing and vector retrieval client."""

__version__ = "1.0.0"
