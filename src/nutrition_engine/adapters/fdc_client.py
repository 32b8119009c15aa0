"""USDA FoodData Central API client."""

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol

import httpx

from nutrition_engine.errors import UpstreamError, UpstreamTimeoutError

DEFAULT_DATA_TYPES: tuple[str, ...] = ("Foundation", "SR Legacy")


class FdcClient(Protocol):
    """Interface for FoodData Central API interactions."""

    async def search_foods(
        self,
        query: str,
        page_size: int = 10,
        data_types: Sequence[str] = DEFAULT_DATA_TYPES,
    ) -> dict[str, object]:
        """Search foods by query and return raw API data."""


@dataclass
class HttpxFdcClient(FdcClient):
    """HTTPX-backed FDC client."""

    api_key: str
    base_url: str
    http_client: httpx.AsyncClient
    timeout_seconds: float = 15

    @classmethod
    def create(
        cls, api_key: str, base_url: str, timeout_seconds: float = 15
    ) -> "HttpxFdcClient":
        """Create an FDC client with a managed httpx session."""
        return cls(
            api_key=api_key,
            base_url=base_url,
            http_client=httpx.AsyncClient(),
            timeout_seconds=timeout_seconds,
        )

    async def search_foods(
        self,
        query: str,
        page_size: int = 10,
        data_types: Sequence[str] = DEFAULT_DATA_TYPES,
    ) -> dict[str, object]:
        """Search foods by query."""
        url = f"{self.base_url}/foods/search"
        body: dict[str, object] = {"query": query, "pageSize": page_size}
        if data_types:
            body["dataType"] = list(data_types)
        try:
            response = await self.http_client.post(
                url,
                params={"api_key": self.api_key},
                json=body,
                timeout=self.timeout_seconds,
            )
            response.raise_for_status()
        except httpx.TimeoutException as exc:
            raise UpstreamTimeoutError("USDA request timed out") from exc
        except httpx.HTTPStatusError as exc:
            raise UpstreamError(
                f"USDA API error ({exc.response.status_code})",
                upstream_status=exc.response.status_code,
            ) from exc
        except httpx.HTTPError as exc:
            raise UpstreamError("Failed to reach USDA API", code="USDA_ERROR") from exc
        try:
            payload = response.json()
        except ValueError as exc:
            raise UpstreamError(
                "USDA returned invalid JSON", code="USDA_ERROR"
            ) from exc
        if not isinstance(payload, dict):
            raise UpstreamError(
                "USDA returned an unexpected payload", code="USDA_ERROR"
            )
        return payload

    async def close(self) -> None:
        """Close the underlying HTTP session."""
        await self.http_client.aclose()
