"""Dependency container wiring for the application."""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime

from nutrition_engine.adapters.fdc_client import HttpxFdcClient
from nutrition_engine.adapters.openai_completion_client import OpenAICompletionClient
from nutrition_engine.config import Settings
from nutrition_engine.services.cache import InFlightRequests, InMemoryCache, utc_now
from nutrition_engine.services.cascade import ResolutionCascade
from nutrition_engine.services.estimator import GenerativeEstimator
from nutrition_engine.services.food_database import FoodDatabaseService
from nutrition_engine.services.photo import PhotoPipeline
from nutrition_engine.services.rate_limit import FixedWindowRateLimiter
from nutrition_engine.services.vision import VisionService

_logger = logging.getLogger(__name__)


@dataclass
class AppContainer:
    """Holds application-wide dependencies."""

    settings: Settings
    food_database: FoodDatabaseService | None
    estimator: GenerativeEstimator | None
    vision_service: VisionService | None
    cascade: ResolutionCascade
    photo_pipeline: PhotoPipeline | None
    rate_limiter: FixedWindowRateLimiter
    started_at: datetime
    close_resources: Callable[[], Awaitable[None]]


def build_container(settings: Settings | None = None) -> AppContainer:
    """Create the default dependency container.

    Upstream clients are only built for the keys that are configured; the
    cascade reports a configuration error at request time when neither is.
    """
    resolved_settings = settings or Settings()
    closers: list[Callable[[], Awaitable[None]]] = []

    food_database: FoodDatabaseService | None = None
    if resolved_settings.fdc_api_key:
        fdc_client = HttpxFdcClient.create(
            api_key=resolved_settings.fdc_api_key,
            base_url=resolved_settings.fdc_base_url,
            timeout_seconds=resolved_settings.fdc_timeout_seconds,
        )
        closers.append(fdc_client.close)
        food_database = FoodDatabaseService(
            fdc_client=fdc_client, debug=resolved_settings.debug_nutrition
        )
    else:
        _logger.warning("FDC_API_KEY is not set; database lookups are disabled")

    estimator: GenerativeEstimator | None = None
    vision_service: VisionService | None = None
    if resolved_settings.estimator_api_key:
        completion_client = OpenAICompletionClient.create(
            api_key=resolved_settings.estimator_api_key,
            model=resolved_settings.estimator_model,
            base_url=resolved_settings.estimator_base_url,
        )
        closers.append(completion_client.close)
        estimator = GenerativeEstimator(
            client=completion_client,
            estimate_timeout_seconds=resolved_settings.estimate_timeout_seconds,
            rewrite_timeout_seconds=resolved_settings.rewrite_timeout_seconds,
            parse_timeout_seconds=resolved_settings.parse_timeout_seconds,
            debug=resolved_settings.debug_nutrition,
        )
        vision_service = VisionService(
            client=completion_client,
            timeout_seconds=resolved_settings.vision_timeout_seconds,
            decomposition_timeout_seconds=resolved_settings.estimate_timeout_seconds,
        )
    else:
        _logger.warning("ESTIMATOR_API_KEY is not set; AI estimation is disabled")

    realism_policy = resolved_settings.realism_policy()
    cascade = ResolutionCascade.create(
        database=food_database,
        estimator=estimator,
        cache=InMemoryCache(),
        in_flight=InFlightRequests(),
        realism_policy=realism_policy,
        cache_ttl_seconds=resolved_settings.cache_ttl_seconds,
    )
    photo_pipeline = (
        PhotoPipeline(
            vision=vision_service,
            cascade=cascade,
            realism_policy=realism_policy,
            outlier_detector=resolved_settings.outlier_detector(),
        )
        if vision_service is not None
        else None
    )

    async def close_resources() -> None:
        for close in closers:
            await close()

    return AppContainer(
        settings=resolved_settings,
        food_database=food_database,
        estimator=estimator,
        vision_service=vision_service,
        cascade=cascade,
        photo_pipeline=photo_pipeline,
        rate_limiter=FixedWindowRateLimiter(
            policies=resolved_settings.rate_limit_policies()
        ),
        started_at=utc_now(),
        close_resources=close_resources,
    )
