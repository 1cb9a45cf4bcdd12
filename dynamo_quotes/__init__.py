from .errors import (
    ConflictError,
    NotFoundError,
    QuoteStoreError,
    StorageUnavailableError,
    ValidationError,
)
from .quotes import build_quote
from .repository import QuoteRepository

__all__ = [
    'ConflictError',
    'NotFoundError',
    'QuoteRepository',
    'QuoteStoreError',
    'StorageUnavailableError',
    'ValidationError',
    'build_quote',
]
