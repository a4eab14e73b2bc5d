"""
FetchService: cache-first, batched, rate-limited retrieval of ACS
variables per ZIP.

Per call: check the cache for every ZIP, split the misses into batches,
dispatch the batches concurrently (each retried on its own through the
shared rate limiter), write fresh rows back to the cache and merge
everything into one FetchResult. A failed batch never sinks the others.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import deque
from typing import Any, Iterable, Optional, Sequence

from ..settings import Settings
from ..utils.errors import (
    CacheError,
    FetchError,
    RequestValidationError,
    RetryExhaustedError,
    TransientNetworkError,
    error_type,
)
from .base import RateLimiter, Transport
from .cache import CacheStore
from .models import (
    AttemptOutcome,
    BatchFailure,
    CacheEntry,
    CacheStats,
    CredentialCheck,
    CredentialStatus,
    ErrorLogEntry,
    FetchAttempt,
    FetchResult,
    ServiceStats,
    ValueSource,
    ZipValues,
    utc_now_iso,
)
from .retry import RetryController
from .storage import DuckDBKeyValueBackend
from .throttling import SlidingWindowRateLimiter
from .transport import ZCTA_GEOGRAPHY, CensusTransport

logger = logging.getLogger(__name__)


def chunk(items: Sequence[str], size: int) -> list[list[str]]:
    return [list(items[i:i + size]) for i in range(0, len(items), size)]


def parse_value(value: Any) -> Any:
    """Census cells arrive as strings; numbers become floats, blanks None."""
    if value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value)
    text = str(value).strip()
    if not text:
        return None
    try:
        return float(text)
    except ValueError:
        return text


def parse_table(
    table: list[list[Any]],
    variables: Sequence[str],
    requested: Sequence[str],
) -> tuple[dict[str, tuple[dict[str, Any], Optional[str]]], list[str]]:
    """
    Split a provider table into per-ZIP values.

    Returns:
        ({zip: (values, NAME)}, [requested ZIPs without a row])
    """
    if not table:
        return {}, list(requested)

    header = [str(h) for h in table[0]]
    if ZCTA_GEOGRAPHY not in header:
        raise TransientNetworkError(f"Response header has no '{ZCTA_GEOGRAPHY}' column: {header}")
    zip_index = header.index(ZCTA_GEOGRAPHY)
    name_index = header.index("NAME") if "NAME" in header else None
    columns = {v: header.index(v) for v in variables if v in header}

    wanted = set(requested)
    found: dict[str, tuple[dict[str, Any], Optional[str]]] = {}
    for row in table[1:]:
        if len(row) <= zip_index:
            continue
        zip_code = str(row[zip_index])
        if zip_code not in wanted or zip_code in found:
            continue
        values = {v: parse_value(row[i]) if i < len(row) else None for v, i in columns.items()}
        name = row[name_index] if name_index is not None and name_index < len(row) else None
        found[zip_code] = (values, name)

    missing = [z for z in requested if z not in found]
    return found, missing


class FetchService:
    """
    Fetch ACS variables for ZIPs with caching, batching, rate limiting
    and retries.

    The cache store, rate limiter and transport are injected; build one
    from settings with build_fetch_service().
    """

    MAX_ERROR_LOG = 100

    def __init__(
        self,
        cache: CacheStore,
        rate_limiter: RateLimiter,
        transport: Transport,
        retry: Optional[RetryController] = None,
        batch_size: int = 10,
        sweep_on_start: bool = True,
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self.cache = cache
        self.rate_limiter = rate_limiter
        self.transport = transport
        self.retry = retry if retry is not None else RetryController()
        self.batch_size = batch_size

        self._stats = ServiceStats()
        self._errors: deque[ErrorLogEntry] = deque(maxlen=self.MAX_ERROR_LOG)

        if sweep_on_start:
            self.cache.sweep()

        logger.info(
            f"Initialized FetchService: dataset={transport.dataset}, year={transport.year}, "
            f"batch_size={batch_size}, max_attempts={self.retry.max_attempts}"
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def fetch_variables(
        self,
        zips: Iterable[str],
        variables: Iterable[str] | str,
        *,
        batch_size: Optional[int] = None,
        use_cache: bool = True,
    ) -> FetchResult:
        """
        Fetch `variables` for every ZIP in `zips`.

        Args:
            zips: ZIP codes (padded to 5 characters, duplicates dropped)
            variables: ACS variable names, e.g. ["B01003_001E"]
            batch_size: Override the service batch size for this call
            use_cache: Skip the cache lookup (fresh rows are still written back)

        Returns:
            FetchResult with values, missing ZIPs and failed batches

        Raises:
            RequestValidationError: no ZIPs or no variables
        """
        start = time.perf_counter()
        zip_list = self._normalize_zips(zips)
        var_list = self._normalize_variables(variables)
        size = self.batch_size if batch_size is None else batch_size
        if size < 1:
            raise RequestValidationError("batch_size must be >= 1")

        result = FetchResult(requested=len(zip_list))

        pending: list[str] = []
        for zip_code in zip_list:
            entry = self._read_cache(zip_code, var_list) if use_cache else None
            if entry is not None:
                result.values[zip_code] = ZipValues(
                    zip=zip_code,
                    data=entry.data,
                    metadata=entry.metadata,
                    source=ValueSource.CACHE,
                )
                self._stats.cache_hits += 1
            else:
                pending.append(zip_code)
                self._stats.cache_misses += 1
        result.cached = len(result.values)

        batches = chunk(pending, size)
        if batches:
            logger.debug(f"Fetching {len(pending)} ZIPs in {len(batches)} batches")
            outcomes = await asyncio.gather(*(self._fetch_batch(batch, var_list) for batch in batches))

            for outcome in outcomes:
                if isinstance(outcome, BatchFailure):
                    result.failures.append(outcome)
                    continue
                fetched, missing = outcome
                for values in fetched:
                    result.values[values.zip] = values
                    self._write_back(values, var_list)
                result.fetched += len(fetched)
                result.missing.extend(missing)

        if result.missing:
            logger.warning(f"API did not return data for ZIPs: {result.missing}")

        result.duration_s = time.perf_counter() - start
        return result

    async def fetch_single(self, zip_code: str, variables: Iterable[str] | str) -> Optional[ZipValues]:
        result = await self.fetch_variables([zip_code], variables)
        return next(iter(result.values.values()), None)

    async def validate_credential(self) -> CredentialCheck:
        """Send one probe request and classify the answer."""
        await self.rate_limiter.admit()
        try:
            status = await self.transport.probe()
        except FetchError as e:
            return CredentialCheck(CredentialStatus.ERROR, f"Network error: {e}")

        if status == 200:
            return CredentialCheck(CredentialStatus.VALID, "API key is valid", status)
        if status in (401, 403):
            return CredentialCheck(CredentialStatus.INVALID, "Invalid API key", status)
        if status == 429:
            return CredentialCheck(CredentialStatus.RATE_LIMITED, "Rate limited", status)
        return CredentialCheck(CredentialStatus.ERROR, f"API error: {status}", status)

    def clear_cache(self) -> int:
        return self.cache.clear()

    def cache_stats(self) -> CacheStats:
        return self.cache.stats()

    def stats(self) -> ServiceStats:
        return ServiceStats(**vars(self._stats))

    def reset_stats(self) -> None:
        self._stats = ServiceStats()

    def error_log(self, limit: int = 20) -> list[ErrorLogEntry]:
        return list(self._errors)[-limit:]

    def clear_error_log(self) -> None:
        self._errors.clear()

    def close(self) -> None:
        self.transport.close()
        self.cache.backend.close()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _normalize_zips(zips: Iterable[str]) -> list[str]:
        if isinstance(zips, str):
            zips = [zips]
        cleaned = [str(z).strip().rjust(5, "0") for z in zips if z is not None and str(z).strip()]
        if not cleaned:
            raise RequestValidationError("No ZIP codes provided")
        return list(dict.fromkeys(cleaned))

    @staticmethod
    def _normalize_variables(variables: Iterable[str] | str) -> list[str]:
        if isinstance(variables, str):
            variables = [variables]
        cleaned = sorted({v.strip() for v in variables if v and v.strip()})
        if not cleaned:
            raise RequestValidationError("No variables specified")
        return cleaned

    async def _fetch_batch(
        self,
        batch: list[str],
        variables: list[str],
    ) -> tuple[list[ZipValues], list[str]] | BatchFailure:
        attempts: list[FetchAttempt] = []

        async def operation(attempt: int) -> tuple[list[ZipValues], list[str]]:
            started = time.perf_counter()
            self._stats.total_requests += 1
            try:
                table = await self.transport.fetch(batch, variables)
                found, missing = parse_table(table, variables, batch)
            except Exception as e:
                elapsed = time.perf_counter() - started
                self._stats.failed_requests += 1
                self._stats.total_time_s += elapsed
                attempts.append(FetchAttempt(
                    zips=tuple(batch),
                    variables=tuple(variables),
                    attempt=attempt,
                    outcome=AttemptOutcome.FAILED,
                    error=str(e)[:500],
                    duration_s=elapsed,
                ))
                raise

            elapsed = time.perf_counter() - started
            self._stats.successful_requests += 1
            self._stats.total_time_s += elapsed
            attempts.append(FetchAttempt(
                zips=tuple(batch),
                variables=tuple(variables),
                attempt=attempt,
                outcome=AttemptOutcome.OK,
                duration_s=elapsed,
            ))

            fetched_at = utc_now_iso()
            fetched = [
                ZipValues(
                    zip=zip_code,
                    data=values,
                    metadata={
                        "fetched_at": fetched_at,
                        "name": name,
                        "source": ValueSource.API.value,
                        "dataset": self.transport.dataset,
                        "year": self.transport.year,
                    },
                    source=ValueSource.API,
                )
                for zip_code, (values, name) in found.items()
            ]
            return fetched, missing

        try:
            return await self.retry.run(operation, rate_limiter=self.rate_limiter)
        except RetryExhaustedError as e:
            return self._failure(batch, e.last_error, attempts, f"Max retries exceeded for batch {batch[0]}..")
        except FetchError as e:
            return self._failure(batch, e, attempts, f"Batch {batch[0]}.. failed without retry")

    def _failure(
        self,
        batch: list[str],
        error: BaseException,
        attempts: list[FetchAttempt],
        message: str,
    ) -> BatchFailure:
        self._log_error(message, error)
        return BatchFailure(
            zips=tuple(batch),
            error=str(error)[:500],
            error_type=error_type(error),
            attempts=list(attempts),
        )

    def _read_cache(self, zip_code: str, variables: list[str]) -> Optional[CacheEntry]:
        try:
            return self.cache.get(self.cache.make_key(zip_code, variables))
        except CacheError as e:
            self._log_error(f"Cache read failed for {zip_code}", e)
            return None

    def _write_back(self, values: ZipValues, variables: list[str]) -> None:
        try:
            self.cache.put(self.cache.make_key(values.zip, variables), values.data, values.metadata)
        except CacheError as e:
            self._log_error(f"Cache write failed for {values.zip}", e)

    def _log_error(self, message: str, error: BaseException) -> None:
        logger.error(f"{message}: {error}")
        self._errors.append(ErrorLogEntry(timestamp=utc_now_iso(), message=message, error=str(error)))


def build_fetch_service(settings: Settings) -> FetchService:
    """Wire a FetchService from settings: DuckDB cache, sliding-window limiter, Census transport."""
    backend = DuckDBKeyValueBackend(settings.cache_path)
    cache = CacheStore(
        backend,
        version=settings.cache_version,
        ttl_s=settings.cache_ttl_days * 24 * 60 * 60,
        evict_count=settings.cache_evict_count,
        max_size_bytes=settings.cache_max_bytes,
    )
    limiter = SlidingWindowRateLimiter(
        max_requests=settings.requests_per_minute,
        slack_s=settings.rate_limit_slack_s,
    )
    retry = RetryController(
        max_attempts=settings.max_retries,
        base_delay_s=settings.retry_base_delay_s,
        max_delay_s=settings.retry_max_delay_s,
        rate_limiter=limiter,
        rate_limit_cooldown_s=settings.rate_limit_cooldown_s,
    )
    transport = CensusTransport(
        api_key=settings.census_api_key,
        base_url=settings.census_base_url,
        year=settings.census_year,
        dataset=settings.census_dataset,
        timeout_s=settings.request_timeout_s,
    )
    return FetchService(cache, limiter, transport, retry=retry, batch_size=settings.batch_size)
