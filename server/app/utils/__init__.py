"""Utility modules for the automotive service API."""

from .retry import RetryError, with_retry

__all__ = [
    "RetryError",
    "with_retry",
]
