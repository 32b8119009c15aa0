"""Shared test fixtures."""

import asyncio
import json
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

import pytest

from nutrition_engine.adapters.fdc_client import DEFAULT_DATA_TYPES, FdcClient
from nutrition_engine.config import Settings
from nutrition_engine.containers import AppContainer
from nutrition_engine.services.cache import InFlightRequests, InMemoryCache
from nutrition_engine.services.cascade import ResolutionCascade
from nutrition_engine.services.estimator import (
    CORRECTION_SYSTEM_PROMPT,
    ESTIMATE_SYSTEM_PROMPT,
    PARSE_FOOD_SYSTEM_PROMPT,
    REWRITE_SYSTEM_PROMPT,
    CompletionClient,
    GenerativeEstimator,
)
from nutrition_engine.services.food_database import FoodDatabaseService
from nutrition_engine.services.photo import PhotoPipeline
from nutrition_engine.services.rate_limit import FixedWindowRateLimiter
from nutrition_engine.services.vision import DECOMPOSE_SYSTEM_PROMPT, VisionService


def fdc_food(
    fdc_id: int,
    description: str,
    per_100g: dict[int, float],
    data_type: str = "SR Legacy",
) -> dict[str, object]:
    """Build an FDC search hit with per-100g nutrient values."""
    return {
        "fdcId": fdc_id,
        "description": description,
        "dataType": data_type,
        "foodNutrients": [
            {"nutrientId": nutrient_id, "value": value}
            for nutrient_id, value in per_100g.items()
        ],
    }


RICE = fdc_food(
    168878,
    "Rice, white, long-grain, regular, enriched, cooked",
    {1008: 130, 1003: 2.7, 1005: 28, 1004: 0.3},
)
CHICKEN = fdc_food(
    171477,
    "Chicken, broilers or fryers, breast, meat only, cooked, roasted",
    {1008: 165, 1003: 31, 1005: 0, 1004: 3.6, 1093: 74},
)
BROCCOLI = fdc_food(
    170379,
    "Broccoli, raw",
    {1008: 34, 1003: 2.8, 1005: 6.6, 1004: 0.4, 1079: 2.6},
    data_type="Foundation",
)


def nutrition_json(
    calories: float, protein: float, carbs: float, fat: float, **extra: object
) -> str:
    """Render an estimator nutrition reply."""
    return json.dumps(
        {"calories": calories, "protein": protein, "carbs": carbs, "fat": fat, **extra}
    )


def completion_kind(messages: Sequence[dict[str, object]]) -> str:
    """Classify a completion request by its prompt."""
    content = messages[0]["content"]
    if isinstance(content, list):
        return "identify"
    kinds = {
        REWRITE_SYSTEM_PROMPT: "rewrite",
        ESTIMATE_SYSTEM_PROMPT: "estimate",
        CORRECTION_SYSTEM_PROMPT: "correct",
        PARSE_FOOD_SYSTEM_PROMPT: "parse",
        DECOMPOSE_SYSTEM_PROMPT: "decompose",
    }
    return kinds.get(content, "unknown")  # type: ignore[arg-type]


Reply = str | Exception | Callable[[Sequence[dict[str, object]]], str]


@dataclass
class FakeCompletionClient(CompletionClient):
    """Scripted completion client keyed by prompt kind.

    A reply is a string, an exception to raise, or a callable receiving the
    messages. A list of replies is consumed in order.
    """

    replies: dict[str, Reply | list[Reply]] = field(default_factory=dict)
    calls: list[tuple[str, list[dict[str, object]], dict[str, float]]] = field(
        default_factory=list
    )

    async def complete(
        self,
        *,
        messages: list[dict[str, object]],
        temperature: float,
        max_tokens: int,
        timeout_seconds: float,
    ) -> str:
        kind = completion_kind(messages)
        self.calls.append(
            (
                kind,
                messages,
                {
                    "temperature": temperature,
                    "max_tokens": max_tokens,
                    "timeout_seconds": timeout_seconds,
                },
            )
        )
        scripted = self.replies.get(kind)
        if scripted is None:
            raise AssertionError(f"unexpected {kind} completion")
        reply = scripted.pop(0) if isinstance(scripted, list) else scripted
        if isinstance(reply, Exception):
            raise reply
        if callable(reply):
            return reply(messages)
        return reply

    def kinds(self) -> list[str]:
        return [kind for kind, _, _ in self.calls]


@dataclass
class FakeFdcClient(FdcClient):
    """Fake FDC client with in-memory search results keyed by query."""

    results: dict[str, list[dict[str, object]]] = field(default_factory=dict)
    errors: dict[str, list[Exception]] = field(default_factory=dict)
    delay_seconds: float = 0
    calls: list[str] = field(default_factory=list)

    async def search_foods(
        self,
        query: str,
        page_size: int = 10,
        data_types: Sequence[str] = DEFAULT_DATA_TYPES,
    ) -> dict[str, object]:
        self.calls.append(query)
        if self.delay_seconds:
            await asyncio.sleep(self.delay_seconds)
        pending = self.errors.get(query.lower())
        if pending:
            raise pending.pop(0)
        return {"foods": self.results.get(query.lower(), [])[:page_size]}


@dataclass
class FakeClock:
    """Controllable clock for TTL and window tests."""

    now: datetime = field(default_factory=lambda: datetime(2026, 1, 1, tzinfo=UTC))

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


def make_cascade(
    fdc_client: FakeFdcClient | None,
    completion_client: FakeCompletionClient | None,
    clock: FakeClock | None = None,
) -> ResolutionCascade:
    return ResolutionCascade.create(
        database=(
            FoodDatabaseService(fdc_client=fdc_client, retry_delay_seconds=0)
            if fdc_client is not None
            else None
        ),
        estimator=(
            GenerativeEstimator(client=completion_client)
            if completion_client is not None
            else None
        ),
        cache=InMemoryCache(clock=clock or FakeClock()),
        in_flight=InFlightRequests(),
    )


def make_container(
    settings: Settings,
    fdc_client: FakeFdcClient | None,
    completion_client: FakeCompletionClient | None,
    clock: FakeClock | None = None,
) -> AppContainer:
    """Wire an application container around fakes."""
    resolved_clock = clock or FakeClock()
    food_database = (
        FoodDatabaseService(fdc_client=fdc_client, retry_delay_seconds=0)
        if fdc_client is not None
        else None
    )
    estimator = (
        GenerativeEstimator(client=completion_client)
        if completion_client is not None
        else None
    )
    vision_service = (
        VisionService(client=completion_client)
        if completion_client is not None
        else None
    )
    cascade = ResolutionCascade.create(
        database=food_database,
        estimator=estimator,
        cache=InMemoryCache(clock=resolved_clock),
        in_flight=InFlightRequests(),
        realism_policy=settings.realism_policy(),
        cache_ttl_seconds=settings.cache_ttl_seconds,
    )

    async def close_resources() -> None:
        return None

    return AppContainer(
        settings=settings,
        food_database=food_database,
        estimator=estimator,
        vision_service=vision_service,
        cascade=cascade,
        photo_pipeline=(
            PhotoPipeline(
                vision=vision_service,
                cascade=cascade,
                outlier_detector=settings.outlier_detector(),
            )
            if vision_service is not None
            else None
        ),
        rate_limiter=FixedWindowRateLimiter(
            policies=settings.rate_limit_policies(), clock=resolved_clock
        ),
        started_at=resolved_clock(),
        close_resources=close_resources,
    )


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        fdc_api_key="fdc-key",
        estimator_api_key="estimator-key",
    )


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fdc_client() -> FakeFdcClient:
    return FakeFdcClient(
        results={
            "rice": [RICE],
            "chicken breast": [CHICKEN],
            "broccoli": [BROCCOLI],
        }
    )


@pytest.fixture
def completion_client() -> FakeCompletionClient:
    return FakeCompletionClient()


@pytest.fixture
def container(
    settings: Settings,
    fdc_client: FakeFdcClient,
    completion_client: FakeCompletionClient,
    clock: FakeClock,
) -> AppContainer:
    return make_container(settings, fdc_client, completion_client, clock)
