"""
Census data API transport.

Wraps the ACS endpoint (https://api.census.gov/data/<year>/<dataset>) and
maps HTTP failures onto the fetch error taxonomy. Requests are blocking,
so each call runs in a worker thread to keep the event loop free.
"""

import asyncio
import logging
from typing import Any, List, Optional, Sequence

import requests

from ..utils.errors import (
    CredentialError,
    ProviderRateLimitError,
    ProviderRequestError,
    TransientNetworkError,
)
from .base import Transport

logger = logging.getLogger(__name__)

ZCTA_GEOGRAPHY = "zip code tabulation area"
PROBE_ZIP = "10001"
PROBE_VARIABLE = "B01003_001E"


class CensusTransport(Transport):
    """
    Census ACS API client implementing the Transport interface.
    """

    def __init__(
        self,
        api_key: Optional[str],
        base_url: str = "https://api.census.gov/data",
        year: str = "2022",
        dataset: str = "acs/acs5",
        timeout_s: float = 30.0,
        session: Optional[requests.Session] = None,
    ):
        """
        Initialize the transport.

        Args:
            api_key: Census API key (requests without one are heavily throttled)
            base_url: Base URL for the data API
            year: Survey year, e.g. "2022"
            dataset: Dataset path, e.g. "acs/acs5"
            timeout_s: HTTP request timeout in seconds
            session: Optional requests session (connection pooling, tests)
        """
        self.api_key = api_key
        self.base_url = base_url
        self.year = str(year)
        self.dataset = dataset
        self.timeout_s = timeout_s
        self.session = session or requests.Session()

        logger.info(f"Initialized CensusTransport: {self.endpoint}, timeout={timeout_s}s")

    @property
    def endpoint(self) -> str:
        return f"{self.base_url.rstrip('/')}/{self.year}/{self.dataset.strip('/')}"

    def _params(self, zips: Sequence[str], get: str) -> dict[str, str]:
        params = {
            "get": get,
            "for": f"{ZCTA_GEOGRAPHY}:{','.join(zips)}",
        }
        if self.api_key:
            params["key"] = self.api_key
        return params

    def _get(self, params: dict[str, str]) -> requests.Response:
        logger.debug(f"GET {self.endpoint} for={params.get('for')}")
        try:
            return self.session.get(
                self.endpoint,
                params=params,
                timeout=self.timeout_s,
                headers={"Accept": "application/json", "Cache-Control": "no-cache"},
            )
        except requests.exceptions.Timeout as e:
            raise TransientNetworkError(f"Request timed out after {self.timeout_s}s: {e}") from e
        except requests.exceptions.RequestException as e:
            raise TransientNetworkError(f"Request failed: {e}") from e

    @staticmethod
    def _raise_for_status(response: requests.Response) -> None:
        status = response.status_code
        if status < 400:
            return
        body = (response.text or "")[:500]
        if status in (401, 403):
            raise CredentialError(f"HTTP {status}: {body}", status_code=status)
        if status == 429:
            raise ProviderRateLimitError(f"HTTP 429: {body}", status_code=status)
        if status >= 500:
            raise TransientNetworkError(f"HTTP {status}: {body}", status_code=status)
        raise ProviderRequestError(f"HTTP {status}: {body}", status_code=status)

    @staticmethod
    def _parse_table(response: requests.Response) -> List[List[Any]]:
        # 204: none of the requested ZCTAs matched
        if response.status_code == 204 or not (response.text or "").strip():
            return []
        try:
            table = response.json()
        except ValueError as e:
            text = (response.text or "")[:500]
            if "invalid key" in text.lower():
                raise CredentialError(f"Invalid API key: {text}", status_code=response.status_code) from e
            raise TransientNetworkError(f"Unreadable response body: {text}", status_code=response.status_code) from e
        if not isinstance(table, list) or not all(isinstance(row, list) for row in table):
            raise TransientNetworkError("Invalid API response format", status_code=response.status_code)
        return table

    def _fetch_sync(self, zips: Sequence[str], variables: Sequence[str]) -> List[List[Any]]:
        response = self._get(self._params(zips, ",".join(["NAME", *variables])))
        self._raise_for_status(response)
        return self._parse_table(response)

    async def fetch(self, zips: Sequence[str], variables: Sequence[str]) -> List[List[Any]]:
        return await asyncio.to_thread(self._fetch_sync, list(zips), list(variables))

    def _probe_sync(self) -> int:
        response = self._get(self._params([PROBE_ZIP], PROBE_VARIABLE))
        return response.status_code

    async def probe(self) -> int:
        return await asyncio.to_thread(self._probe_sync)

    def close(self) -> None:
        self.session.close()
