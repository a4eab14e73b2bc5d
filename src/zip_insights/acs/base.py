"""
Abstract base classes for the ACS fetch system.

These define the interfaces that all concrete implementations must follow.
"""

from abc import ABC, abstractmethod
from typing import List, Optional, Sequence


class KeyValueBackend(ABC):
    """
    Abstract base for durable key/value persistence.

    Backends store opaque strings. A backend with a capacity limit raises
    StorageQuotaExceeded from set() when the write does not fit.
    """

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        """Return the stored value or None."""
        pass

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        """Insert or overwrite a value."""
        pass

    @abstractmethod
    def delete(self, key: str) -> None:
        """Remove a key. Missing keys are ignored."""
        pass

    @abstractmethod
    def keys(self, prefix: str = "") -> List[str]:
        """List keys starting with `prefix`."""
        pass

    def namespace_bytes(self, prefix: str = "") -> int:
        """
        Total len(key) + len(value) over keys starting with `prefix`.

        Backends that can aggregate without reading every value should
        override this.
        """
        total = 0
        for key in self.keys(prefix):
            value = self.get(key)
            if value is not None:
                total += len(key) + len(value)
        return total

    def close(self) -> None:
        """Close connections/cleanup resources."""
        pass


class RateLimiter(ABC):
    """
    Abstract base for rate limiters.

    admit() suspends the calling coroutine until one more request may be
    sent without breaking the limit.
    """

    @abstractmethod
    async def admit(self) -> None:
        """Wait until it's safe to make another request, then record it."""
        pass


class Transport(ABC):
    """
    Abstract base for the remote data provider.

    fetch() returns the provider's table: a header row followed by one row
    per matched ZIP. Unmatched ZIPs are simply absent.
    """

    dataset: str
    year: str

    @abstractmethod
    async def fetch(self, zips: Sequence[str], variables: Sequence[str]) -> List[List[str]]:
        """
        Request `variables` for `zips`.

        Raises:
            TransientNetworkError, CredentialError, ProviderRequestError
        """
        pass

    @abstractmethod
    async def probe(self) -> int:
        """Issue one lightweight request and return its HTTP status."""
        pass

    def close(self) -> None:
        """Release network resources."""
        pass
