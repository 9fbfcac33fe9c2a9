"""External price observation sources."""

import logging
from typing import Protocol

import httpx
from pydantic import ValidationError

from .config import SourceConfig
from .models import RawObservation

logger = logging.getLogger(__name__)


class ExternalFetchFailure(Exception):
    """Raised when a store's prices cannot be retrieved."""

    def __init__(self, store_id: str, detail: str):
        self.store_id = store_id
        self.detail = detail
        super().__init__(f"Fetch from store '{store_id}' failed: {detail}")


class ObservationSource(Protocol):
    """Anything that can report current prices for items at a store."""

    async def fetch_observations(
        self, store_id: str, item_ids: list[str]
    ) -> list[RawObservation]: ...


class HttpObservationSource:
    """Store price API client.

    Calls ``GET {base_url}/stores/{store_id}/prices?item_ids=a,b`` which
    returns a JSON list of ``{"item_id", "price", "observed_at"}`` objects.
    Prices are passed through unvalidated; ingestion decides what is usable.
    """

    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout
        self._transport = transport
        self._http_client: httpx.AsyncClient | None = None

    @classmethod
    def from_config(cls, source: SourceConfig, timeout: float = 10.0) -> "HttpObservationSource":
        if not source.base_url:
            raise ValueError("source.base_url is not configured")
        return cls(source.base_url, api_key=source.api_key, timeout=timeout)

    async def _get_http_client(self) -> httpx.AsyncClient:
        if self._http_client is None or self._http_client.is_closed:
            headers = {"Accept": "application/json"}
            if self.api_key:
                headers["Authorization"] = f"Bearer {self.api_key}"
            self._http_client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                headers=headers,
                transport=self._transport,
            )
        return self._http_client

    async def close(self) -> None:
        if self._http_client and not self._http_client.is_closed:
            await self._http_client.aclose()

    async def fetch_observations(
        self, store_id: str, item_ids: list[str]
    ) -> list[RawObservation]:
        """Fetch current prices for items at one store.

        Raises:
            ExternalFetchFailure: On transport errors, non-2xx responses or
                a payload that is not a list of price records.
        """
        http = await self._get_http_client()
        try:
            response = await http.get(
                f"/stores/{store_id}/prices", params={"item_ids": ",".join(item_ids)}
            )
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPStatusError as e:
            raise ExternalFetchFailure(store_id, f"HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise ExternalFetchFailure(store_id, str(e) or type(e).__name__) from e
        except ValueError as e:
            raise ExternalFetchFailure(store_id, f"invalid JSON: {e}") from e

        if not isinstance(payload, list):
            raise ExternalFetchFailure(store_id, "expected a list of price records")

        wanted = set(item_ids)
        observations = []
        for record in payload:
            if not isinstance(record, dict):
                raise ExternalFetchFailure(store_id, f"malformed price record: {record!r}")
            try:
                observation = RawObservation(store_id=store_id, **record)
            except (TypeError, ValidationError) as e:
                raise ExternalFetchFailure(store_id, f"malformed price record: {record!r}") from e
            if observation.item_id not in wanted:
                logger.debug("Ignoring unrequested item %s from store %s", observation.item_id, store_id)
                continue
            observations.append(observation)

        logger.debug("Fetched %d prices from store %s", len(observations), store_id)
        return observations
