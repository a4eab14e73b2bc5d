from typing import Any, Optional, Sequence

from pydantic import ValidationError


class ZipInsightsError(Exception):
    """Base class for every error raised by zip_insights."""


class DataValidationError(ZipInsightsError):
    def __init__(self, source: str, errors: list[dict[str, Any]], original: ValidationError | None = None):
        self.source = source
        self.errors = errors
        self.original = original
        msg = f"Validation failed for {len(errors)} records from source '{source}'"

        super().__init__(msg)

    def summary(self, limit: int = 5) -> str:
        """Human-readable summary of the first few validation issues."""
        lines = []
        for err in self.errors[:limit]:
            loc = ".".join(str(p) for p in err.get("loc", []))
            lines.append(f"- {loc}: {err.get('msg')} ({err.get('type')})")
        if len(self.errors) > limit:
            lines.append(f"... ({len(self.errors) - limit} more)")
        return "\n".join(lines)


class QueryValidationError(ZipInsightsError, ValueError):
    """Malformed index query (negative radius, inverted bounding box, ...)."""


class RequestValidationError(ZipInsightsError, ValueError):
    """Malformed fetch request (no ZIPs, no variables). Never retried."""


class FetchError(ZipInsightsError):
    """A call to the remote data provider failed."""

    retryable: bool = False

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class TransientNetworkError(FetchError):
    """Timeout, connection failure or 5xx response."""

    retryable = True


class ProviderRateLimitError(TransientNetworkError):
    """Provider answered 429."""


class CredentialError(FetchError):
    """Provider rejected the API key (401/403)."""


class ProviderRequestError(FetchError):
    """Provider rejected the request itself (unknown variable, bad geography)."""


class RetryExhaustedError(ZipInsightsError):
    def __init__(self, attempts: int, last_error: BaseException):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"Gave up after {attempts} attempts: {last_error}")


class CacheError(ZipInsightsError):
    pass


class StorageQuotaExceeded(CacheError):
    """The key/value backend has no room for the write."""


def is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, FetchError):
        return exc.retryable
    return not isinstance(exc, (RequestValidationError, QueryValidationError, DataValidationError))


def error_type(exc: BaseException) -> str:
    """Short label used in batch failure reports."""
    labels: Sequence[tuple[type, str]] = (
        (ProviderRateLimitError, "rate_limited"),
        (TransientNetworkError, "transient"),
        (CredentialError, "credential"),
        (ProviderRequestError, "request"),
    )
    for cls, label in labels:
        if isinstance(exc, cls):
            return label
    return "exception"
