"""
Async HTTP client for the analytics REST endpoints.

Tables, summaries and daily series are refetched after a job completes or
when the user changes filters. Responses feed PaginationWindow and the
series aggregator directly.
"""
from dataclasses import dataclass
from datetime import date
from typing import Any, Dict, List, Optional, Union

import httpx
from pydantic import ValidationError as PydanticValidationError

from storesync.config import config
from storesync.exceptions import APIError, PayloadError
from storesync.observability import Timer, get_correlation_id, get_logger
from storesync.pagination import PaginationWindow
from storesync.schemas import DailyMetricsRow, TablePageResponse
from storesync.series import RawSeriesPoint
from storesync.validators import (
    validate_date_range,
    validate_page,
    validate_page_size,
    validate_partition_key,
    validate_sort_order,
)

logger = get_logger(__name__)

DateLike = Union[date, str]


def _iso(value: Optional[DateLike]) -> Optional[str]:
    if value is None or isinstance(value, str):
        return value
    return value.isoformat()


@dataclass(frozen=True)
class TableQuery:
    """Filters and paging for a table endpoint."""

    page: int = 1
    page_size: int = 25
    sort_by: Optional[str] = None
    sort_order: Optional[str] = None
    start_date: Optional[DateLike] = None
    end_date: Optional[DateLike] = None
    store_id: Optional[str] = None
    search: Optional[str] = None

    def to_params(self) -> Dict[str, Any]:
        """Query string parameters in the backend's camelCase names."""
        params: Dict[str, Any] = {
            "page": validate_page(self.page),
            "pageSize": validate_page_size(self.page_size),
        }
        if self.sort_by:
            params["sortBy"] = self.sort_by
        sort_order = validate_sort_order(self.sort_order)
        if sort_order:
            params["sortOrder"] = sort_order
        if self.start_date:
            params["startDate"] = _iso(self.start_date)
        if self.end_date:
            params["endDate"] = _iso(self.end_date)
        if self.store_id:
            params["storeId"] = validate_partition_key(self.store_id)
        if self.search and self.search.strip():
            params["search"] = self.search.strip()
        return params


@dataclass(frozen=True)
class TablePage:
    """Rows of one table page plus its pagination window."""

    rows: List[Dict[str, Any]]
    window: PaginationWindow


class AnalyticsAPIClient:
    """
    Async HTTP client for the analytics API.

    Usage:
        async with AnalyticsAPIClient() as api:
            page = await api.fetch_table("/cost-of-goods", TableQuery(page=2))
            points = await api.fetch_daily_series(start, end, store_id="buycosari")
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        token: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or config.api.base_url).rstrip("/")
        token = token if token is not None else config.api.token
        self.headers = {"Accept": "application/json"}
        if token:
            self.headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=self.headers,
            timeout=timeout or config.api.request_timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "AnalyticsAPIClient":
        return self

    async def __aexit__(self, *args) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    async def get_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        """
        GET a path and decode the JSON body.

        Raises:
            APIError: On transport failure or a non-2xx response
        """
        headers = {}
        correlation_id = get_correlation_id()
        if correlation_id:
            headers["X-Correlation-ID"] = correlation_id

        try:
            with Timer(f"GET {path}", logger):
                response = await self._client.get(path, params=params, headers=headers)
        except httpx.HTTPError as e:
            raise APIError(f"Request to {path} failed", str(e)) from e

        logger.debug(f"GET {path} -> {response.status_code}")

        if response.status_code >= 400:
            raise APIError(
                f"GET {path} returned {response.status_code}",
                response.text[:200],
                status_code=response.status_code,
            )

        try:
            return response.json()
        except ValueError as e:
            raise APIError(f"GET {path} returned invalid JSON", str(e), response.status_code) from e

    async def fetch_table(self, path: str, query: Optional[TableQuery] = None) -> TablePage:
        """
        Fetch one page of a table endpoint.

        Args:
            path: Endpoint path, e.g. "/cost-of-goods"
            query: Paging and filter options

        Returns:
            TablePage with rows and a PaginationWindow
        """
        query = query or TableQuery(page_size=config.api.default_page_size)
        body = await self.get_json(path, query.to_params())

        try:
            page = TablePageResponse.model_validate(body)
        except PydanticValidationError as e:
            raise PayloadError(f"Unexpected table response from {path}", str(e)) from e

        return TablePage(
            rows=page.data,
            window=PaginationWindow.from_response(page.pagination, page_size=query.page_size),
        )

    async def fetch_summary(
        self,
        start_date: DateLike,
        end_date: DateLike,
        store_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Fetch summary aggregates for a date range."""
        body = await self.get_json(
            "/analytics/summary",
            self._range_params(start_date, end_date, store_id),
        )
        return body if isinstance(body, dict) else {}

    async def fetch_daily_series(
        self,
        start_date: DateLike,
        end_date: DateLike,
        store_id: Optional[str] = None,
    ) -> List[RawSeriesPoint]:
        """
        Fetch per-day metrics for a date range.

        Returns:
            Points in the order returned by the backend
        """
        body = await self.get_json(
            "/analytics/daily",
            self._range_params(start_date, end_date, store_id),
        )
        rows = body.get("data", []) if isinstance(body, dict) else body
        if not isinstance(rows, list):
            raise PayloadError("Daily series is not a list", type(rows).__name__)

        try:
            validated = [DailyMetricsRow.model_validate(row) for row in rows]
        except PydanticValidationError as e:
            raise PayloadError("Unexpected daily series row", str(e)) from e

        return [RawSeriesPoint.from_row(row.model_dump()) for row in validated]

    def _range_params(
        self,
        start_date: DateLike,
        end_date: DateLike,
        store_id: Optional[str],
    ) -> Dict[str, Any]:
        start, end = validate_date_range(start_date, end_date)
        params = {"startDate": start.isoformat(), "endDate": end.isoformat()}
        store_id = store_id or config.default_store_id
        if store_id:
            params["storeId"] = validate_partition_key(store_id)
        return params
