"""Authoritative nutrient database lookups backed by USDA FDC."""

import asyncio
import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from nutrition_engine.adapters.fdc_client import DEFAULT_DATA_TYPES, FdcClient
from nutrition_engine.domain.nutrition import Candidate, NutritionSource
from nutrition_engine.errors import UpstreamError, UpstreamTimeoutError
from nutrition_engine.services.nutrient_mapper import rank_candidates

_logger = logging.getLogger(__name__)

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable


@dataclass
class FoodDatabaseService:
    """Searches FDC and maps hits into ranked candidates."""

    fdc_client: FdcClient
    data_types: tuple[str, ...] = DEFAULT_DATA_TYPES
    debug: bool = False
    retry_attempts: int = 1
    retry_delay_seconds: float = 0.3

    async def search_candidates(
        self,
        query: str,
        serving_grams: float,
        *,
        source: NutritionSource = NutritionSource.AUTHORITATIVE_DIRECT,
        limit: int = 5,
        page_size: int | None = None,
    ) -> list[Candidate]:
        """Search FDC and return candidates scaled to the serving."""
        payload = await self._call_with_retry(
            lambda: self.fdc_client.search_foods(
                query, page_size=page_size or limit, data_types=self.data_types
            ),
            action="search",
        )
        foods = payload.get("foods") or []
        if not isinstance(foods, list):
            foods = []
        candidates = rank_candidates(
            (food for food in foods if isinstance(food, dict)),
            serving_grams,
            source,
            limit=limit,
        )
        if self.debug:
            _logger.info(
                "Nutrition search FDC: query=%s hits=%s candidates=%s",
                query,
                len(foods),
                len(candidates),
            )
        return candidates

    async def _call_with_retry(
        self, func: "Callable[[], Awaitable[dict[str, object]]]", *, action: str
    ) -> dict[str, object]:
        """Call an async function with a short retry on server-side failures."""
        attempt = 0
        while True:
            try:
                return await func()
            except UpstreamError as exc:
                attempt += 1
                _logger.warning(
                    "Nutrition %s failed (attempt %s/%s, status=%s): %s",
                    action,
                    attempt,
                    self.retry_attempts + 1,
                    _status_code_from_exception(exc),
                    exc,
                )
                if attempt > self.retry_attempts or not _is_retryable(exc):
                    raise
                await asyncio.sleep(self.retry_delay_seconds)


def _is_retryable(exc: UpstreamError) -> bool:
    if isinstance(exc, UpstreamTimeoutError):
        return False
    status = exc.upstream_status
    return status is None or status >= 500  # noqa: PLR2004


def _status_code_from_exception(exc: UpstreamError) -> str:
    """Extract the upstream HTTP status code, if available."""
    if isinstance(exc.upstream_status, int):
        return str(exc.upstream_status)
    return "n/a"
