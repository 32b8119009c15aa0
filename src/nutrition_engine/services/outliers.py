"""Outlier detection for single servings and whole meals.

Realism validation rejects values that cannot be right. This layer looks at
values that are merely unusual: nutrients several times above what a typical
serving carries, nutrient combinations that contradict each other, and meals
whose totals exceed twice the daily reference intake. Obvious data errors are
clamped; borderline ones are reported as advisories.
"""

import logging
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass, field, replace
from enum import StrEnum

from nutrition_engine.domain.nutrition import NutritionRecord
from nutrition_engine.services.nutrient_mapper import NUTRIENT_SPECS, round_nutrient
from nutrition_engine.services.realism import DEFAULT_POLICY, RealismPolicy

_logger = logging.getLogger(__name__)

# Tighter than the realism serving limits; values above get a second look.
TYPICAL_SERVING_MAX: dict[str, float] = {
    "calories": 1200,
    "protein_g": 80,
    "carbs_g": 200,
    "fat_g": 80,
    "fiber_g": 30,
    "sodium_mg": 3000,
    "sugar_g": 100,
    "cholesterol_mg": 800,
    "vitamin_a_mcg": 5000,
    "vitamin_c_mg": 500,
    "vitamin_d_mcg": 50,
    "vitamin_e_mg": 30,
    "vitamin_k_mcg": 600,
    "vitamin_b1_mg": 5,
    "vitamin_b2_mg": 5,
    "vitamin_b3_mg": 40,
    "vitamin_b6_mg": 10,
    "vitamin_b12_mcg": 100,
    "folate_mcg": 800,
    "calcium_mg": 1500,
    "iron_mg": 25,
    "magnesium_mg": 400,
    "zinc_mg": 30,
    "potassium_mg": 2000,
}

# Adult daily reference intakes.
DAILY_REFERENCE_INTAKE: dict[str, float] = {
    "calories": 2000,
    "protein_g": 50,
    "carbs_g": 275,
    "fat_g": 78,
    "fiber_g": 28,
    "sodium_mg": 2300,
    "sugar_g": 50,
    "cholesterol_mg": 300,
    "vitamin_a_mcg": 900,
    "vitamin_c_mg": 90,
    "vitamin_d_mcg": 20,
    "vitamin_e_mg": 15,
    "vitamin_k_mcg": 120,
    "vitamin_b1_mg": 1.2,
    "vitamin_b2_mg": 1.3,
    "vitamin_b3_mg": 16,
    "vitamin_b6_mg": 1.7,
    "vitamin_b12_mcg": 2.4,
    "folate_mcg": 400,
    "calcium_mg": 1000,
    "iron_mg": 18,
    "magnesium_mg": 420,
    "zinc_mg": 11,
    "potassium_mg": 4700,
}

AUTO_CORRECT_RATIO = 5
WARNING_RATIO = 3
INFO_RATIO = 2
MEAL_DRI_THRESHOLD = 2.0

WIRE_NAMES = {spec.field: spec.wire_name for spec in NUTRIENT_SPECS}

NutrientValues = dict[str, float | None]


class OutlierSeverity(StrEnum):
    AUTO_CORRECT = "auto_correct"
    WARNING = "warning"
    INFO = "info"


@dataclass(frozen=True)
class FlaggedNutrient:
    nutrient: str
    value: float
    typical_max: float
    severity: OutlierSeverity
    ratio: float
    message: str


@dataclass(frozen=True)
class CrossNutrientIssue:
    name: str
    message: str
    severity: OutlierSeverity


@dataclass(frozen=True)
class AutoCorrection:
    original: float | None
    corrected_to: float
    reason: str


@dataclass(frozen=True)
class OutlierReport:
    """Findings for one serving, plus the record with corrections applied."""

    record: NutritionRecord
    flagged: tuple[FlaggedNutrient, ...] = ()
    cross_nutrient_issues: tuple[CrossNutrientIssue, ...] = ()
    corrections: Mapping[str, AutoCorrection] = field(default_factory=dict)

    @property
    def detected(self) -> bool:
        return bool(self.flagged or self.cross_nutrient_issues)

    @property
    def surfaced_flags(self) -> list[FlaggedNutrient]:
        """Flags worth showing to a user; info-level ones are only logged."""
        return [
            flag for flag in self.flagged if flag.severity is not OutlierSeverity.INFO
        ]

    @property
    def total_flagged(self) -> int:
        return len(self.flagged)

    @property
    def total_corrected(self) -> int:
        return len(self.corrections)


@dataclass(frozen=True)
class MealFlag:
    nutrient: str
    total: float
    daily_reference: float
    percent_dri: int
    message: str


@dataclass(frozen=True)
class MealOutlierReport:
    """Meal totals and the nutrients whose total exceeds the meal threshold."""

    totals: Mapping[str, float] = field(default_factory=dict)
    flagged: tuple[MealFlag, ...] = ()

    @property
    def has_aggregate_outliers(self) -> bool:
        return bool(self.flagged)

    @property
    def summary(self) -> str:
        if not self.flagged:
            return ""
        nutrients = ", ".join(WIRE_NAMES[flag.nutrient] for flag in self.flagged)
        return (
            f"This meal's {nutrients} content is unusually high. "
            "Values have been checked for accuracy."
        )


@dataclass(frozen=True)
class NutrientRelationship:
    """A consistency rule between related nutrients."""

    name: str
    message: str
    severity: OutlierSeverity
    check: Callable[[NutrientValues], bool]
    correct: Callable[[NutrientValues], NutrientValues] | None = None


def _above(values: NutrientValues, key: str, threshold: float) -> bool:
    value = values.get(key)
    return value is not None and value > threshold


def _below(values: NutrientValues, key: str, threshold: float) -> bool:
    value = values.get(key)
    return value is not None and value < threshold


def _negligible(values: NutrientValues, key: str, threshold: float) -> bool:
    value = values.get(key)
    return value is None or value < threshold


def _exceeds_carbs(values: NutrientValues, key: str) -> bool:
    carbs = values.get("carbs_g")
    return carbs is not None and _above(values, key, carbs * 1.1)


def _calories_from_macros(values: NutrientValues) -> NutrientValues:
    derived = (
        (values.get("protein_g") or 0) * 4
        + (values.get("carbs_g") or 0) * 4
        + (values.get("fat_g") or 0) * 9
    )
    return {"calories": round_nutrient(derived, 0)}


def _capped_by_carbs(key: str) -> Callable[[NutrientValues], NutrientValues]:
    def correct(values: NutrientValues) -> NutrientValues:
        return {key: round_nutrient(values.get("carbs_g") or 0, 1)}

    return correct


NUTRIENT_RELATIONSHIPS: tuple[NutrientRelationship, ...] = (
    NutrientRelationship(
        name="High protein but zero calories",
        message="Protein is high but calories are near zero; likely a data error",
        severity=OutlierSeverity.AUTO_CORRECT,
        check=lambda n: _above(n, "protein_g", 20) and _below(n, "calories", 10),
        correct=_calories_from_macros,
    ),
    NutrientRelationship(
        name="High fat but zero calories",
        message="Fat is high but calories are near zero; likely a data error",
        severity=OutlierSeverity.AUTO_CORRECT,
        check=lambda n: _above(n, "fat_g", 10) and _below(n, "calories", 10),
        correct=_calories_from_macros,
    ),
    NutrientRelationship(
        name="Extreme vitamin A without other fat-soluble vitamins",
        message=(
            "Extremely high Vitamin A with negligible other fat-soluble "
            "vitamins; unusual combination"
        ),
        severity=OutlierSeverity.WARNING,
        check=lambda n: (
            _above(n, "vitamin_a_mcg", 3000)
            and _negligible(n, "vitamin_d_mcg", 1)
            and _negligible(n, "vitamin_e_mg", 0.5)
            and _negligible(n, "vitamin_k_mcg", 5)
        ),
    ),
    NutrientRelationship(
        name="High iron without protein",
        message="Very high iron with virtually no protein; unusual for most foods",
        severity=OutlierSeverity.WARNING,
        check=lambda n: _above(n, "iron_mg", 15) and _below(n, "protein_g", 2),
    ),
    NutrientRelationship(
        name="Sugar exceeds total carbs",
        message=(
            "Sugar exceeds total carbohydrates; sugar should be a subset of carbs"
        ),
        severity=OutlierSeverity.AUTO_CORRECT,
        check=lambda n: _exceeds_carbs(n, "sugar_g"),
        correct=_capped_by_carbs("sugar_g"),
    ),
    NutrientRelationship(
        name="Fiber exceeds total carbs",
        message=(
            "Fiber exceeds total carbohydrates; fiber should be a subset of carbs"
        ),
        severity=OutlierSeverity.AUTO_CORRECT,
        check=lambda n: _exceeds_carbs(n, "fiber_g"),
        correct=_capped_by_carbs("fiber_g"),
    ),
)


def absolute_limits(policy: RealismPolicy = DEFAULT_POLICY) -> dict[str, float]:
    """Per-serving hard maximums, calories included."""
    return {"calories": policy.max_calories, **policy.serving_limits}


@dataclass(frozen=True)
class OutlierDetector:
    """Flags unusual nutrient values and clamps the obvious errors."""

    auto_correct: bool = True
    limits: Mapping[str, float] = field(default_factory=absolute_limits)
    meal_threshold: float = MEAL_DRI_THRESHOLD

    @classmethod
    def from_policy(
        cls, policy: RealismPolicy, *, auto_correct: bool = True
    ) -> "OutlierDetector":
        return cls(auto_correct=auto_correct, limits=absolute_limits(policy))

    def classify(
        self, nutrient: str, value: float
    ) -> tuple[OutlierSeverity | None, float]:
        """Severity and ratio of a value against the typical serving maximum."""
        typical = TYPICAL_SERVING_MAX.get(nutrient)
        if not typical:
            return None, 0.0
        ratio = value / typical
        if ratio > AUTO_CORRECT_RATIO:
            return OutlierSeverity.AUTO_CORRECT, ratio
        if ratio > WARNING_RATIO:
            return OutlierSeverity.WARNING, ratio
        if ratio > INFO_RATIO:
            return OutlierSeverity.INFO, ratio
        limit = self.limits.get(nutrient)
        if limit and value > limit:
            return OutlierSeverity.AUTO_CORRECT, value / limit
        return None, ratio

    def corrected_value(self, nutrient: str, value: float) -> float:
        """Clamp to the typical maximum, or to the hard limit when closer."""
        typical = TYPICAL_SERVING_MAX.get(nutrient)
        if not typical:
            return value
        if value > typical * AUTO_CORRECT_RATIO:
            return typical
        limit = self.limits.get(nutrient)
        if limit and value > limit:
            return limit
        return value

    def inspect_food(self, record: NutritionRecord, name: str) -> OutlierReport:
        """Check one serving; corrections are applied to the returned record."""
        values: NutrientValues = {
            spec.field: getattr(record, spec.field) for spec in NUTRIENT_SPECS
        }
        flagged: list[FlaggedNutrient] = []
        corrections: dict[str, AutoCorrection] = {}

        for nutrient, typical in TYPICAL_SERVING_MAX.items():
            value = values.get(nutrient)
            if value is None or value <= 0:
                continue
            severity, ratio = self.classify(nutrient, value)
            if severity is None:
                continue
            flagged.append(
                FlaggedNutrient(
                    nutrient=nutrient,
                    value=value,
                    typical_max=typical,
                    severity=severity,
                    ratio=round_nutrient(ratio, 1),
                    message=(
                        f"{WIRE_NAMES[nutrient]} = {_amount(value)} is "
                        f"{ratio:.1f}x the typical maximum ({_amount(typical)})"
                    ),
                )
            )
            if severity is OutlierSeverity.AUTO_CORRECT and self.auto_correct:
                corrected = self.corrected_value(nutrient, value)
                corrections[nutrient] = AutoCorrection(
                    original=value,
                    corrected_to=corrected,
                    reason=(
                        f"Value {_amount(value)} exceeded {ratio:.1f}x typical "
                        f"maximum; clamped to {_amount(corrected)}"
                    ),
                )
                values[nutrient] = corrected

        issues: list[CrossNutrientIssue] = []
        for relationship in NUTRIENT_RELATIONSHIPS:
            if not relationship.check(values):
                continue
            issues.append(
                CrossNutrientIssue(
                    name=relationship.name,
                    message=relationship.message,
                    severity=relationship.severity,
                )
            )
            if relationship.correct is None or not self.auto_correct:
                continue
            for nutrient, corrected in relationship.correct(values).items():
                if corrected is None or values.get(nutrient) == corrected:
                    continue
                corrections[nutrient] = AutoCorrection(
                    original=values.get(nutrient),
                    corrected_to=corrected,
                    reason=relationship.message,
                )
                values[nutrient] = corrected

        report = OutlierReport(
            record=replace(
                record,
                **{nutrient: values[nutrient] for nutrient in corrections},
            ),
            flagged=tuple(flagged),
            cross_nutrient_issues=tuple(issues),
            corrections=corrections,
        )
        if report.detected:
            _logger.info(
                "Outliers for %r: %s flagged, %s cross-nutrient, %s corrected",
                name,
                report.total_flagged,
                len(issues),
                report.total_corrected,
            )
        return report

    def inspect_meal(self, records: Iterable[NutritionRecord]) -> MealOutlierReport:
        """Sum a meal and flag totals above the daily reference threshold."""
        totals: dict[str, float] = {}
        for record in records:
            for nutrient in DAILY_REFERENCE_INTAKE:
                value = getattr(record, nutrient)
                if value is not None:
                    totals[nutrient] = totals.get(nutrient, 0) + value

        flagged: list[MealFlag] = []
        for nutrient, total in totals.items():
            reference = DAILY_REFERENCE_INTAKE[nutrient]
            if total <= 0:
                continue
            share = total / reference
            if share <= self.meal_threshold:
                continue
            percent = round_nutrient(share * 100, 0)
            flagged.append(
                MealFlag(
                    nutrient=nutrient,
                    total=round_nutrient(total, 1),
                    daily_reference=reference,
                    percent_dri=percent,
                    message=(
                        f"{WIRE_NAMES[nutrient]} total "
                        f"({_amount(round_nutrient(total, 0))}) is {percent}% "
                        "of daily reference intake in a single meal"
                    ),
                )
            )

        report = MealOutlierReport(totals=totals, flagged=tuple(flagged))
        if report.has_aggregate_outliers:
            _logger.info(
                "Meal totals above %s%% of daily reference: %s",
                round(self.meal_threshold * 100),
                ", ".join(WIRE_NAMES[flag.nutrient] for flag in flagged),
            )
        return report


def _amount(value: float) -> str:
    """Render 30000.0 as "30000" and 2.5 as "2.5"."""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)
