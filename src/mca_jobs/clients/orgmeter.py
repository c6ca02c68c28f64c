"""Async HTTP client for the OrgMeter API."""

import asyncio
from collections.abc import Callable
from types import TracebackType
from typing import Any, Protocol

import aiohttp

from mca_jobs.config import Settings
from mca_jobs.core.constants import ORGMETER_ENDPOINTS
from mca_jobs.core.logging import get_logger
from mca_jobs.jobs.errors import ExternalSourceError

logger = get_logger(__name__)


class ExternalSource(Protocol):
    """What the job stack needs from an external data source."""

    async def test_connection(self) -> bool: ...

    async def get_total_count(self, entity_type: str) -> int: ...

    async def fetch_all_entities(self, entity_type: str) -> list[dict[str, Any]]: ...

    async def fetch_entity_by_id(self, entity_type: str, entity_id: str) -> dict[str, Any]: ...

    def get_api_info(self) -> dict[str, Any]: ...

    async def aclose(self) -> None: ...


def _extract_items(data: Any) -> list[dict[str, Any]]:
    if isinstance(data, list):
        return data
    if isinstance(data, dict) and isinstance(data.get("data"), list):
        return data["data"]
    return []


class OrgMeterClient:
    """Client for the OrgMeter REST API.

    Pages are 1-based and an empty page marks the end of a collection. The
    API key is sent verbatim in the ``Authorization`` header.
    """

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://app.orgmeter.com/api/main/v1",
        timeout: float = 30.0,
        request_delay: float = 0.1,
        max_count_pages: int = 1000,
        session: aiohttp.ClientSession | None = None,
    ):
        """Initialize the client.

        Args:
            api_key: OrgMeter API key of the funder.
            base_url: API root, without trailing slash.
            timeout: Total timeout per request in seconds.
            request_delay: Pause between consecutive page requests.
            max_count_pages: Upper bound on pages walked when counting.
            session: Optional externally managed session (not closed by us).
        """
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.request_delay = request_delay
        self.max_count_pages = max_count_pages
        self._session = session
        self._owns_session = session is None

    @classmethod
    def from_settings(cls, settings: Settings, api_key: str) -> "OrgMeterClient":
        return cls(
            api_key=api_key,
            base_url=settings.orgmeter_api_url,
            timeout=settings.orgmeter_timeout_seconds,
            request_delay=settings.orgmeter_request_delay_seconds,
            max_count_pages=settings.orgmeter_max_count_pages,
        )

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                headers={
                    "Content-Type": "application/json",
                    "Accept": "application/json",
                },
                timeout=aiohttp.ClientTimeout(total=self.timeout),
            )
            self._owns_session = True
        return self._session

    async def aclose(self) -> None:
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()

    async def __aenter__(self) -> "OrgMeterClient":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.aclose()

    # ==================== Raw requests ====================

    async def fetch_data(self, endpoint: str, params: dict[str, Any] | None = None) -> Any:
        """GET an endpoint and return the decoded JSON body.

        Raises:
            ExternalSourceError: On transport errors or non-2xx responses.
        """
        url = f"{self.base_url}/{endpoint.lstrip('/')}"
        session = self._get_session()
        headers = {"Authorization": self.api_key}
        logger.debug(f"OrgMeter API request: GET {url} params={params}")
        try:
            async with session.get(url, params=params, headers=headers) as response:
                if response.status >= 400:
                    text = await response.text()
                    raise ExternalSourceError(
                        f"Failed to fetch data from /{endpoint.lstrip('/')}: "
                        f"HTTP {response.status} {text[:200]}",
                        status=response.status,
                    )
                return await response.json(content_type=None)
        except (aiohttp.ClientError, TimeoutError) as e:
            raise ExternalSourceError(
                f"Failed to fetch data from /{endpoint.lstrip('/')}: {e}"
            ) from e

    # ==================== Entity access ====================

    @staticmethod
    def endpoint_for(entity_type: str) -> str:
        return ORGMETER_ENDPOINTS.get(entity_type, entity_type)

    async def fetch_entity_page(self, entity_type: str, page: int = 1) -> list[dict[str, Any]]:
        data = await self.fetch_data(f"/{self.endpoint_for(entity_type)}", {"page": page})
        return _extract_items(data)

    async def fetch_all_entities(
        self, entity_type: str, start_page: int = 1, limit: int | None = None
    ) -> list[dict[str, Any]]:
        """Walk pages until an empty one, optionally stopping after ``limit`` items."""
        entities: list[dict[str, Any]] = []
        page = start_page
        while True:
            items = await self.fetch_entity_page(entity_type, page)
            if not items:
                break
            if limit is not None:
                remaining = limit - len(entities)
                if remaining <= 0:
                    break
                items = items[:remaining]
            entities.extend(items)
            page += 1
            await asyncio.sleep(self.request_delay)

        logger.info(
            f"Fetched {len(entities)} {entity_type} record(s) from {page - start_page} page(s)"
        )
        return entities

    async def fetch_entity_by_id(self, entity_type: str, entity_id: str) -> dict[str, Any]:
        data = await self.fetch_data(f"/{self.endpoint_for(entity_type)}/{entity_id}")
        if isinstance(data, dict) and isinstance(data.get("data"), dict):
            return data["data"]
        return data

    async def get_total_count(self, entity_type: str) -> int:
        """Count entities using pagination metadata, or by walking pages.

        Errors propagate so a job whose count cannot be determined fails
        instead of running against a zero total.
        """
        first = await self.fetch_data(f"/{self.endpoint_for(entity_type)}", {"page": 1})
        if isinstance(first, dict):
            for key in ("total", "count"):
                if first.get(key):
                    return int(first[key])

        total = 0
        page = 1
        items = _extract_items(first)
        while items:
            total += len(items)
            page += 1
            if page > self.max_count_pages:
                logger.warning(f"Stopped counting {entity_type} at page {page} for safety")
                break
            await asyncio.sleep(self.request_delay)
            items = await self.fetch_entity_page(entity_type, page)

        logger.info(f"Total count for {entity_type}: {total}")
        return total

    async def test_connection(self) -> bool:
        """Return True if the API answers with this key."""
        try:
            await self.fetch_data("/lender", {"page": 1})
            logger.info("OrgMeter API connection successful")
            return True
        except ExternalSourceError as e:
            logger.warning(f"OrgMeter API connection failed: {e.message}")
            return False

    def get_api_info(self) -> dict[str, Any]:
        return {
            "base_url": self.base_url,
            "has_api_key": bool(self.api_key),
            "timeout": self.timeout,
        }


ExternalSourceFactory = Callable[[str], ExternalSource]


def orgmeter_client_factory(settings: Settings) -> ExternalSourceFactory:
    """Build a factory creating a fresh OrgMeter client per API key."""

    def factory(api_key: str) -> ExternalSource:
        return OrgMeterClient.from_settings(settings, api_key)

    return factory
