"""
Common utilities module.
Consolidates the service base class and logging patterns shared by every component.
"""
import asyncio
from functools import wraps
from typing import List, Sequence, TypeVar

from digest_index.core.config import config
from digest_index.core.logging import get_logger

__all__ = [
    'BaseService', 'with_service_logging', 'get_service_logger',
    'truncate_text', 'split_into_batches',
]

T = TypeVar("T")


def get_service_logger(service_name: str):
    """Get a logger for a service with consistent naming."""
    return get_logger(f"digest_index.services.{service_name}")


def truncate_text(text: str, max_length: int = 100, suffix: str = "...") -> str:
    """Truncate text to specified length with suffix."""
    if len(text) <= max_length:
        return text
    return text[:max_length - len(suffix)] + suffix


def split_into_batches(items: Sequence[T], size: int) -> List[List[T]]:
    """Split a sequence into consecutive batches of at most ``size`` items."""
    if size < 1:
        raise ValueError("Batch size must be >= 1")
    return [list(items[i:i + size]) for i in range(0, len(items), size)]


class BaseService:
    """
    Base service class with common initialization patterns.
    Every component gets a named logger and the shared config accessor.
    """

    def __init__(self, service_name: str):
        self.service_name = service_name
        self.logger = get_service_logger(service_name)
        self.config = config


def with_service_logging(operation: str):
    """
    Decorator to add consistent service operation logging.
    Eliminates repeated logging patterns.
    """
    def decorator(func):
        @wraps(func)
        async def async_wrapper(self, *args, **kwargs):
            logger = getattr(self, 'logger', get_logger(__name__))
            service_name = getattr(self, 'service_name', 'unknown')

            logger.debug(f"{service_name}_{operation}_started")

            try:
                result = await func(self, *args, **kwargs)
                logger.debug(f"{service_name}_{operation}_completed")
                return result
            except Exception as e:
                logger.error(
                    f"{service_name}_{operation}_failed",
                    error=str(e),
                    error_type=type(e).__name__,
                )
                raise

        @wraps(func)
        def sync_wrapper(self, *args, **kwargs):
            logger = getattr(self, 'logger', get_logger(__name__))
            service_name = getattr(self, 'service_name', 'unknown')

            logger.debug(f"{service_name}_{operation}_started")

            try:
                result = func(self, *args, **kwargs)
                logger.debug(f"{service_name}_{operation}_completed")
                return result
            except Exception as e:
                logger.error(
                    f"{service_name}_{operation}_failed",
                    error=str(e),
                    error_type=type(e).__name__,
                )
                raise

        return async_wrapper if asyncio.iscoroutinefunction(func) else sync_wrapper
    return decorator
