"""Photo pipeline: identify items, resolve each, decompose composite dishes."""

import asyncio
import logging
import re
import secrets
import time
from dataclasses import dataclass, field, replace

from nutrition_engine.domain.nutrition import (
    Candidate,
    NutritionRecord,
    NutritionSource,
    Provenance,
    Resolution,
    ValidationResult,
)
from nutrition_engine.domain.vision import IdentifiedFoodItem
from nutrition_engine.errors import NutritionEngineError, RealismError
from nutrition_engine.services.cascade import ResolutionCascade
from nutrition_engine.services.nutrient_mapper import sum_records
from nutrition_engine.services.outliers import (
    MealOutlierReport,
    OutlierDetector,
    OutlierReport,
)
from nutrition_engine.services.realism import (
    DEFAULT_POLICY,
    RealismPolicy,
    validate_realism,
)
from nutrition_engine.services.serving import parse_serving
from nutrition_engine.services.vision import MAX_IDENTIFIED_FOODS, VisionService

_logger = logging.getLogger(__name__)

FAILED_SOURCE = "failed"
NO_DATA_ISSUE = "No nutrition data available"
NO_FOOD_MESSAGE = "No food detected in the image. Try taking a clearer photo."
ALL_UNREALISTIC_MESSAGE = (
    "Nutrition values appear unrealistic for all detected foods. "
    "Please retake the photo with better lighting or angle."
)

_ID_UNSAFE = re.compile(r"[^a-z0-9]+")


@dataclass(frozen=True)
class ItemResult:
    """Outcome for one detected item or one ingredient of a composite dish."""

    id: str
    name: str
    serving: str
    serving_grams: float
    resolution: Resolution | None
    ingredients: tuple["ItemResult", ...] | None = None
    ingredient_nutrition: NutritionRecord | None = None
    ingredient_validation: ValidationResult | None = None
    outliers: OutlierReport | None = None

    @property
    def nutrition(self) -> NutritionRecord | None:
        return self.resolution.record if self.resolution else None

    @property
    def source(self) -> str:
        if self.resolution is None:
            return FAILED_SOURCE
        return self.resolution.record.source.value

    @property
    def validation(self) -> ValidationResult:
        if self.resolution is None:
            return ValidationResult(issues=(NO_DATA_ISSUE,))
        return self.resolution.validation

    @property
    def candidates(self) -> tuple[Candidate, ...]:
        return self.resolution.candidates if self.resolution else ()


@dataclass(frozen=True)
class PhotoAnalysis:
    """Items found in one photo, in identification order."""

    items: tuple[ItemResult, ...]
    total_identified: int
    message: str | None = None
    meal_outliers: MealOutlierReport | None = None

    @property
    def resolved_items(self) -> list[ItemResult]:
        return [item for item in self.items if item.nutrition is not None]

    @property
    def failed_items(self) -> list[ItemResult]:
        return [item for item in self.items if item.nutrition is None]


class UnrealisticPhotoError(RealismError):
    """Every item with nutrition failed realism validation."""

    def __init__(self, analysis: PhotoAnalysis) -> None:
        issues = [
            f"{item.name}: {issue}"
            for item in analysis.resolved_items
            for issue in item.validation.issues
        ]
        super().__init__(ALL_UNREALISTIC_MESSAGE, issues=issues)
        self.analysis = analysis


@dataclass
class PhotoPipeline:
    """Fans the resolution cascade out over the items in a photo."""

    vision: VisionService
    cascade: ResolutionCascade
    realism_policy: RealismPolicy = DEFAULT_POLICY
    max_items: int = MAX_IDENTIFIED_FOODS
    outlier_detector: OutlierDetector | None = field(default_factory=OutlierDetector)

    async def analyze(self, image_bytes: bytes) -> PhotoAnalysis:
        """Identify and resolve every food item in an image.

        Raises UnrealisticPhotoError when at least one item carries nutrition
        and all such items failed realism after their correction attempt.
        """
        identification = await self.vision.identify(image_bytes)
        if not identification.foods:
            _logger.info("No food detected in photo")
            return PhotoAnalysis(
                items=(),
                total_identified=0,
                message=identification.error or NO_FOOD_MESSAGE,
            )

        foods = identification.foods[: self.max_items]
        outcomes = await asyncio.gather(
            *(self._process_food(food) for food in foods), return_exceptions=True
        )
        items: list[ItemResult] = []
        for food, outcome in zip(foods, outcomes, strict=True):
            if isinstance(outcome, BaseException):
                _logger.error(
                    "Photo item %r failed: %r", food.name, outcome, exc_info=outcome
                )
                items.append(_failed_item(food))
            else:
                items.append(outcome)

        analysis = PhotoAnalysis(
            items=tuple(items), total_identified=len(identification.foods)
        )
        resolved = analysis.resolved_items
        if resolved and all(not item.validation.valid for item in resolved):
            _logger.error(
                "All %s photo items failed realism validation", len(resolved)
            )
            raise UnrealisticPhotoError(analysis)
        if self.outlier_detector is not None and resolved:
            meal = self.outlier_detector.inspect_meal(
                item.nutrition for item in resolved if item.nutrition is not None
            )
            analysis = replace(analysis, meal_outliers=meal)
        _logger.info(
            "Photo identified %s foods (%s failed, %s decomposed)",
            len(resolved),
            len(analysis.failed_items),
            sum(1 for item in resolved if item.ingredients),
        )
        return analysis

    async def _process_food(self, food: IdentifiedFoodItem) -> ItemResult:
        if not food.is_complex:
            return self._check_outliers(await self._resolve_item(food))

        result, ingredients = await asyncio.gather(
            self._resolve_item(food), self._decompose(food)
        )
        result = self._check_outliers(result)
        if not ingredients:
            return result
        ingredient_results = await asyncio.gather(
            *(self._resolve_item(ingredient) for ingredient in ingredients)
        )
        records = [item.nutrition for item in ingredient_results if item.nutrition]
        if not records:
            return replace(result, ingredients=tuple(ingredient_results))
        total = sum_records(records, _aggregate_provenance(food, records))
        return replace(
            result,
            ingredients=tuple(ingredient_results),
            ingredient_nutrition=total,
            ingredient_validation=validate_realism(total, self.realism_policy),
        )

    async def _resolve_item(self, food: IdentifiedFoodItem) -> ItemResult:
        try:
            resolution = await self.cascade.resolve_item(
                food.name, food.estimated_serving
            )
        except NutritionEngineError as exc:
            _logger.warning("No nutrition for %r: %s", food.name, exc)
            return _failed_item(food)
        except Exception:
            _logger.exception("Unexpected error resolving %r", food.name)
            return _failed_item(food)
        return ItemResult(
            id=_item_id(food.name),
            name=food.name,
            serving=food.estimated_serving,
            serving_grams=resolution.query.serving_grams,
            resolution=resolution,
        )

    def _check_outliers(self, item: ItemResult) -> ItemResult:
        """Attach outlier findings and apply any auto-corrections."""
        if self.outlier_detector is None or item.resolution is None:
            return item
        report = self.outlier_detector.inspect_food(item.resolution.record, item.name)
        resolution = item.resolution
        if report.total_corrected:
            _logger.info(
                "Auto-corrected %s nutrients for %r", report.total_corrected, item.name
            )
            resolution = replace(resolution, record=report.record)
        return replace(item, resolution=resolution, outliers=report)

    async def _decompose(self, food: IdentifiedFoodItem) -> list[IdentifiedFoodItem]:
        try:
            return await self.vision.decompose(food.name, food.estimated_serving)
        except NutritionEngineError as exc:
            _logger.warning("Decomposition failed for %r: %s", food.name, exc)
        except Exception:
            _logger.exception("Unexpected decomposition error for %r", food.name)
        return []


def _failed_item(food: IdentifiedFoodItem) -> ItemResult:
    # parse_serving never raises, so a failure here cannot sink the photo.
    return ItemResult(
        id=_item_id(food.name),
        name=food.name,
        serving=food.estimated_serving,
        serving_grams=parse_serving(food.estimated_serving),
        resolution=None,
    )


def _item_id(name: str) -> str:
    slug = _ID_UNSAFE.sub("_", name.lower()).strip("_") or "food"
    return f"{slug}_{time.time_ns() // 1_000_000}_{secrets.token_hex(2)}"


def _aggregate_provenance(
    food: IdentifiedFoodItem, records: list[NutritionRecord]
) -> Provenance:
    # Summed ingredients are only authoritative if every part was.
    if all(record.source.is_authoritative for record in records):
        source = NutritionSource.AUTHORITATIVE_DIRECT
    else:
        source = NutritionSource.GENERATIVE_ESTIMATE
    return Provenance(source=source, source_description=f"{food.name} (ingredients)")
