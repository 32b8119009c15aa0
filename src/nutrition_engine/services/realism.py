"""Plausibility checks for nutrition records."""

import math
from collections.abc import Mapping
from dataclasses import dataclass, field

from nutrition_engine.domain.nutrition import NutritionRecord, ValidationResult
from nutrition_engine.services.nutrient_mapper import NUTRIENT_SPECS

# Upper bounds for a single serving of any food.
SERVING_LIMITS: dict[str, float] = {
    "protein_g": 200,
    "carbs_g": 500,
    "fat_g": 250,
    "fiber_g": 80,
    "sodium_mg": 8000,
    "sugar_g": 300,
    "cholesterol_mg": 2000,
    "vitamin_a_mcg": 15000,
    "vitamin_c_mg": 3000,
    "vitamin_d_mcg": 250,
    "vitamin_e_mg": 200,
    "vitamin_k_mcg": 1500,
    "vitamin_b1_mg": 15,
    "vitamin_b2_mg": 15,
    "vitamin_b3_mg": 100,
    "vitamin_b6_mg": 25,
    "vitamin_b12_mcg": 500,
    "folate_mcg": 2000,
    "calcium_mg": 3000,
    "iron_mg": 50,
    "magnesium_mg": 800,
    "zinc_mg": 80,
    "potassium_mg": 5000,
}

_WIRE_NAMES = {spec.field: spec.wire_name for spec in NUTRIENT_SPECS}


@dataclass(frozen=True)
class RealismPolicy:
    """Tunable plausibility thresholds."""

    min_calories: float = 1
    max_calories: float = 3000
    calorie_tolerance: float = 0.4
    zero_macro_calorie_threshold: float = 10
    serving_limits: Mapping[str, float] = field(
        default_factory=lambda: dict(SERVING_LIMITS)
    )


DEFAULT_POLICY = RealismPolicy()


def validate_realism(
    record: NutritionRecord, policy: RealismPolicy = DEFAULT_POLICY
) -> ValidationResult:
    """Check a record against every rule and collect all failures."""
    issues: list[str] = []

    calories = record.calories
    if calories is None or not _is_number(calories):
        issues.append("Missing calorie value")
        calories = 0
    elif calories < policy.min_calories:
        issues.append(f"Calories too low ({calories} kcal) for a real food serving")
    elif calories > policy.max_calories:
        issues.append(
            f"Calories unrealistically high ({calories} kcal) for a single serving"
        )

    protein = record.protein_g or 0
    carbs = record.carbs_g or 0
    fat = record.fat_g or 0
    derived = protein * 4 + carbs * 4 + fat * 9
    if calories > 0 and derived > 0:
        ratio = abs(derived - calories) / calories
        if ratio > policy.calorie_tolerance:
            issues.append(
                f"Macro-calorie mismatch: macros suggest {round(derived)} kcal "
                f"but reported {calories} kcal ({round(ratio * 100)}% off)"
            )

    for field_name, maximum in policy.serving_limits.items():
        value = getattr(record, field_name, None)
        if value is None:
            continue
        label = _WIRE_NAMES.get(field_name, field_name)
        if not _is_number(value):
            issues.append(f"{label} is not a number")
            continue
        if value < 0:
            issues.append(f"{label} below minimum ({value} < 0)")
        if value > maximum:
            issues.append(f"{label} exceeds maximum ({value} > {maximum})")

    if (
        calories > policy.zero_macro_calorie_threshold
        and protein == 0
        and carbs == 0
        and fat == 0
    ):
        issues.append("Calories reported but all macros are zero")

    return ValidationResult(issues=tuple(issues))


def build_correction_prompt(
    description: str, issues: tuple[str, ...] | list[str]
) -> str:
    """Describe violated rules so a corrective estimate can address them."""
    numbered = "\n".join(f"{index}. {issue}" for index, issue in enumerate(issues, 1))
    return (
        f'Your previous nutrition estimate for "{description}" had the following '
        f"problems:\n{numbered}\n\n"
        "Please provide CORRECTED nutrition values that are realistic and "
        "consistent. Ensure: calories ≈ protein*4 + carbs*4 + fat*9, all values "
        "are within normal food ranges, and micronutrients are plausible for "
        "this food.\nRespond with corrected JSON only."
    )


def _is_number(value: object) -> bool:
    return isinstance(value, int | float) and not math.isnan(value)
