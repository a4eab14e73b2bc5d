"""
- Models: Data structures (ZipValues, FetchResult, BatchFailure, ...)
- Base classes: Abstract interfaces
- Storage: Key/value backends for the cache
- Cache: Expiring, versioned cache of per-ZIP payloads
- Throttling: Rate limiting for API calls
- Retry: Exponential backoff controller
- Transport: Census data API client
- Service: Cache-first batched fetch orchestration
"""

from .models import (
    ValueSource,
    AttemptOutcome,
    CredentialStatus,
    ZipValues,
    CacheEntry,
    CacheStats,
    FetchAttempt,
    BatchFailure,
    FetchResult,
    CredentialCheck,
    ServiceStats,
    ErrorLogEntry,
    variables_hash,
)

from .base import (
    KeyValueBackend,
    RateLimiter,
    Transport,
)

from .storage import (
    InMemoryKeyValueBackend,
    DuckDBKeyValueBackend,
)

from .cache import CacheStore

from .throttling import (
    SlidingWindowRateLimiter,
    NoOpRateLimiter,
)

from .retry import RetryController

from .transport import CensusTransport

from .service import (
    FetchService,
    build_fetch_service,
    parse_table,
)

__all__ = [
    # Models
    "ValueSource",
    "AttemptOutcome",
    "CredentialStatus",
    "ZipValues",
    "CacheEntry",
    "CacheStats",
    "FetchAttempt",
    "BatchFailure",
    "FetchResult",
    "CredentialCheck",
    "ServiceStats",
    "ErrorLogEntry",
    "variables_hash",
    # Base classes
    "KeyValueBackend",
    "RateLimiter",
    "Transport",
    # Storage
    "InMemoryKeyValueBackend",
    "DuckDBKeyValueBackend",
    # Cache
    "CacheStore",
    # Throttling
    "SlidingWindowRateLimiter",
    "NoOpRateLimiter",
    # Retry
    "RetryController",
    # Transport
    "CensusTransport",
    # Service
    "FetchService",
    "build_fetch_service",
    "parse_table",
]
