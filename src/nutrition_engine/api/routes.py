"""Nutrition resolution endpoints."""

from __future__ import annotations

import base64
import binascii
import re
import time
from collections.abc import Callable
from typing import TYPE_CHECKING

from fastapi import APIRouter, Depends, Request

from nutrition_engine.api.models import (
    AuthoritativeSearchRequest,
    EstimateNutritionRequest,
    IdentifyFoodPhotoRequest,
    ParseFoodRequest,
)
from nutrition_engine.api.payloads import (
    candidates_payload,
    item_payload,
    meal_outlier_payload,
    nutrition_payload,
    resolution_payload,
)
from nutrition_engine.domain.nutrition import NutritionSource
from nutrition_engine.errors import (
    ConfigError,
    InputError,
    RateLimitedError,
    RealismError,
)
from nutrition_engine.services.estimator import MAX_SEARCH_TERM_LENGTH
from nutrition_engine.services.photo import UnrealisticPhotoError
from nutrition_engine.services.rate_limit import EndpointClass
from nutrition_engine.services.serving import (
    parse_description,
    parse_serving,
    serving_to_grams,
)

if TYPE_CHECKING:
    from nutrition_engine.containers import AppContainer

router = APIRouter(tags=["nutrition"])

_DATA_URL_PREFIX = re.compile(r"^data:[\w/.+-]+;base64,", re.IGNORECASE)


def client_identity(request: Request) -> str:
    """First X-Forwarded-For hop, then the peer address."""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop
    if request.client and request.client.host:
        return request.client.host
    return "unknown"


def rate_limited(endpoint_class: EndpointClass) -> Callable[[Request], None]:
    """Build a dependency that counts the request against a budget."""

    def check_rate_limit(request: Request) -> None:
        container: AppContainer = request.app.state.container
        decision = container.rate_limiter.check(
            client_identity(request), endpoint_class
        )
        request.state.rate_limit_remaining = decision.remaining
        if not decision.allowed:
            raise RateLimitedError(retry_after=decision.retry_after or 1)

    return check_rate_limit


@router.post(
    "/estimate-nutrition",
    dependencies=[Depends(rate_limited(EndpointClass.TEXT_ESTIMATION))],
)
async def estimate_nutrition(
    body: EstimateNutritionRequest, request: Request
) -> dict[str, object]:
    """Resolve nutrition for a free-text food description."""
    started = time.perf_counter()
    container: AppContainer = request.app.state.container
    description = _require_description(
        body.food_description, container.settings.max_description_length
    )
    resolution = await container.cascade.resolve(description)
    payload = resolution_payload(resolution)
    payload["responseTime"] = _elapsed_ms(started)
    if not resolution.realism_validated:
        raise RealismError(
            "Nutrition values appear unrealistic. Try a more specific description.",
            issues=resolution.validation.issues,
            details=payload,
        )
    return payload


@router.post(
    "/parse-food",
    dependencies=[Depends(rate_limited(EndpointClass.FOOD_PARSING))],
)
async def parse_food(body: ParseFoodRequest, request: Request) -> dict[str, object]:
    """Turn a description into a database search query and serving weight."""
    container: AppContainer = request.app.state.container
    description = _require_description(body.food_description, max_length=None)
    if container.estimator is None:
        return _deterministic_parse(description, body.quantity, body.unit)
    parsed = await container.estimator.parse_food(description, body.quantity, body.unit)
    return {
        "searchQuery": parsed.search_query,
        "servingSizeGrams": parsed.serving_size_grams,
        "alternateQueries": list(parsed.alternate_queries),
        "preferBranded": parsed.prefer_branded,
    }


@router.post(
    "/identify-food-photo",
    dependencies=[Depends(rate_limited(EndpointClass.PHOTO_IDENTIFICATION))],
)
async def identify_food_photo(
    body: IdentifyFoodPhotoRequest, request: Request
) -> dict[str, object]:
    """Identify foods in a photo and resolve nutrition for each."""
    started = time.perf_counter()
    container: AppContainer = request.app.state.container
    if not body.image:
        raise InputError("Image data is required (base64 JPEG)")
    image_bytes = _decode_image(body.image, container.settings.max_image_bytes)
    if container.photo_pipeline is None:
        raise ConfigError("Server configuration error")

    try:
        analysis = await container.photo_pipeline.analyze(image_bytes)
    except UnrealisticPhotoError as exc:
        raise RealismError(
            exc.message,
            issues=exc.issues,
            details={
                "foods": [item_payload(item) for item in exc.analysis.resolved_items],
                "totalIdentified": exc.analysis.total_identified,
                "responseTime": _elapsed_ms(started),
            },
        ) from exc

    if not analysis.items:
        return {
            "foods": [],
            "message": analysis.message,
            "totalIdentified": 0,
            "responseTime": _elapsed_ms(started),
        }
    payload: dict[str, object] = {
        "foods": [item_payload(item) for item in analysis.resolved_items],
        "totalIdentified": analysis.total_identified,
        "responseTime": _elapsed_ms(started),
    }
    if analysis.failed_items:
        payload["failedFoods"] = [item_payload(item) for item in analysis.failed_items]
    if analysis.meal_outliers is not None:
        payload["mealOutlierDetection"] = meal_outlier_payload(analysis.meal_outliers)
    return payload


@router.post(
    "/search-authoritative-db",
    dependencies=[Depends(rate_limited(EndpointClass.TEXT_ESTIMATION))],
)
async def search_authoritative_db(
    body: AuthoritativeSearchRequest, request: Request
) -> dict[str, object]:
    """Search the nutrient database with server-held credentials."""
    started = time.perf_counter()
    container: AppContainer = request.app.state.container
    query = (body.query or "").strip()
    if not query:
        raise InputError("Search query is required")
    if container.food_database is None:
        raise ConfigError("Nutrient database is not configured")

    serving_grams = parse_serving(body.serving_description)
    candidates = await container.food_database.search_candidates(
        query, serving_grams, page_size=body.page_size
    )
    if not candidates:
        return {
            "found": False,
            "query": query,
            "candidates": [],
            "message": "No database results found",
            "source": NutritionSource.AUTHORITATIVE_DIRECT.value,
            "responseTime": _elapsed_ms(started),
        }
    best = candidates[0]
    return {
        "found": True,
        "query": query,
        "servingGrams": serving_grams,
        "nutrition": nutrition_payload(best.nutrition),
        "authoritativeFood": {
            "fdcId": best.external_id,
            "description": best.description,
            "dataType": best.data_type,
        },
        "candidates": candidates_payload(candidates),
        "source": NutritionSource.AUTHORITATIVE_DIRECT.value,
        "responseTime": _elapsed_ms(started),
    }


def _require_description(value: str | None, max_length: int | None) -> str:
    if value is None:
        raise InputError("Food description is required")
    description = value.strip()
    if not description:
        raise InputError("Food description cannot be empty", code="EMPTY_INPUT")
    if max_length is not None and len(description) > max_length:
        raise InputError(
            f"Food description too long (max {max_length} characters)",
            code="INPUT_TOO_LONG",
        )
    return description


def _deterministic_parse(
    description: str, quantity: float | str | None, unit: str | None
) -> dict[str, object]:
    parsed = parse_description(description)
    if quantity is not None and str(quantity).strip():
        serving_grams = parse_serving(f"{quantity} {unit or ''}".strip())
    elif unit:
        serving_grams = serving_to_grams(None, unit)
    else:
        serving_grams = parsed.serving_grams
    return {
        "searchQuery": parsed.food_name[:MAX_SEARCH_TERM_LENGTH] or description,
        "servingSizeGrams": serving_grams,
        "alternateQueries": [],
        "preferBranded": False,
    }


def _decode_image(raw: str, max_bytes: int) -> bytes:
    data = _DATA_URL_PREFIX.sub("", raw.strip(), count=1)
    # Reject early on encoded size: base64 inflates by 4/3.
    if len(data) > (max_bytes * 4) // 3 + 4:
        raise _image_too_large(max_bytes)
    try:
        image_bytes = base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise InputError("Invalid image data", code="INVALID_IMAGE") from exc
    if not image_bytes:
        raise InputError("Invalid image data", code="INVALID_IMAGE")
    if len(image_bytes) > max_bytes:
        raise _image_too_large(max_bytes)
    return image_bytes


def _elapsed_ms(started: float) -> int:
    return round((time.perf_counter() - started) * 1000)


def _image_too_large(max_bytes: int) -> InputError:
    return InputError(
        f"Image too large (max {max_bytes // (1024 * 1024)}MB)",
        code="IMAGE_TOO_LARGE",
    )
