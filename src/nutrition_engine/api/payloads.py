"""JSON renderings of resolutions, candidates and photo items."""

from nutrition_engine.domain.nutrition import (
    Candidate,
    NutritionRecord,
    Resolution,
    ValidationResult,
)
from nutrition_engine.services.nutrient_mapper import record_to_values, round_nutrient
from nutrition_engine.services.outliers import (
    WIRE_NAMES,
    MealOutlierReport,
    OutlierReport,
)
from nutrition_engine.services.photo import ItemResult


def nutrition_payload(record: NutritionRecord | None) -> dict[str, float | None] | None:
    if record is None:
        return None
    return record_to_values(record)


def validation_payload(validation: ValidationResult) -> dict[str, object]:
    return {"valid": validation.valid, "issues": list(validation.issues)}


def candidate_payload(candidate: Candidate, rank: int) -> dict[str, object]:
    return {
        "fdcId": candidate.external_id,
        "description": candidate.description,
        "dataType": candidate.data_type,
        "rank": rank,
        "nutrition": nutrition_payload(candidate.nutrition),
    }


def candidates_payload(
    candidates: tuple[Candidate, ...] | list[Candidate],
) -> list[dict[str, object]]:
    return [
        candidate_payload(candidate, rank)
        for rank, candidate in enumerate(candidates, start=1)
    ]


def resolution_payload(resolution: Resolution) -> dict[str, object]:
    """Render a text-path resolution (without timing)."""
    provenance = resolution.record.provenance
    payload: dict[str, object] = {
        "nutrition": nutrition_payload(resolution.record),
        "source": provenance.source.value,
    }
    if provenance.source_id is not None:
        payload["sourceId"] = provenance.source_id
    if provenance.source_description is not None:
        payload["sourceDescription"] = provenance.source_description
    payload.update(
        {
            "realismValidated": resolution.realism_validated,
            "realismIssues": list(resolution.validation.issues),
            "correctionAttempted": resolution.correction_attempted,
            "cached": resolution.cached,
        }
    )
    return payload


def item_payload(item: ItemResult) -> dict[str, object]:
    """Render one photo item, recursing into its ingredients."""
    record = item.nutrition
    payload: dict[str, object] = {
        "id": item.id,
        "name": item.name,
        "serving": item.serving,
        "servingGrams": item.serving_grams,
        "nutrition": nutrition_payload(record),
        "source": item.source,
        "sourceDescription": (
            record.provenance.source_description if record is not None else None
        ),
        "candidates": candidates_payload(item.candidates),
        "realismValidation": validation_payload(item.validation),
        "outlierDetection": (
            outlier_payload(item.outliers) if item.outliers is not None else None
        ),
        "ingredients": (
            [item_payload(ingredient) for ingredient in item.ingredients]
            if item.ingredients
            else None
        ),
    }
    if item.ingredient_nutrition is not None:
        payload["ingredientNutrition"] = nutrition_payload(item.ingredient_nutrition)
    if item.ingredient_validation is not None:
        payload["ingredientValidation"] = validation_payload(item.ingredient_validation)
    return payload


def outlier_payload(report: OutlierReport) -> dict[str, object]:
    """Render per-item outlier findings; info-level flags are left out."""
    return {
        "detected": report.detected,
        "flaggedNutrients": [
            {
                "nutrient": WIRE_NAMES[flag.nutrient],
                "value": flag.value,
                "typicalMax": flag.typical_max,
                "severity": flag.severity.value,
                "ratio": flag.ratio,
                "message": flag.message,
            }
            for flag in report.surfaced_flags
        ],
        "crossNutrientIssues": [
            {
                "name": issue.name,
                "message": issue.message,
                "severity": issue.severity.value,
            }
            for issue in report.cross_nutrient_issues
        ],
        "autoCorrections": {
            WIRE_NAMES[nutrient]: {
                "original": correction.original,
                "correctedTo": correction.corrected_to,
                "reason": correction.reason,
            }
            for nutrient, correction in report.corrections.items()
        },
        "correctedNutrition": nutrition_payload(report.record),
        "totalFlagged": report.total_flagged,
        "totalCorrected": report.total_corrected,
    }


def meal_outlier_payload(report: MealOutlierReport) -> dict[str, object]:
    return {
        "hasAggregateOutliers": report.has_aggregate_outliers,
        "mealTotals": {
            WIRE_NAMES[nutrient]: round_nutrient(total, 1)
            for nutrient, total in report.totals.items()
        },
        "flaggedTotals": [
            {
                "nutrient": WIRE_NAMES[flag.nutrient],
                "total": flag.total,
                "dailyReference": flag.daily_reference,
                "percentDRI": flag.percent_dri,
                "message": flag.message,
            }
            for flag in report.flagged
        ],
        "summary": report.summary,
    }
