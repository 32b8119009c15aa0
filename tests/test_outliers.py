"""Tests for per-serving and per-meal outlier detection."""

from nutrition_engine.domain.nutrition import (
    NutritionRecord,
    NutritionSource,
    Provenance,
)
from nutrition_engine.services.outliers import OutlierDetector, OutlierSeverity
from nutrition_engine.services.realism import RealismPolicy

PROVENANCE = Provenance(source=NutritionSource.GENERATIVE_ESTIMATE)


def _record(
    calories: float, protein: float, carbs: float, fat: float, **micros: float
) -> NutritionRecord:
    return NutritionRecord(
        calories=calories,
        protein_g=protein,
        carbs_g=carbs,
        fat_g=fat,
        provenance=PROVENANCE,
        **micros,
    )


def test_ordinary_serving_has_no_outliers() -> None:
    record = _record(312, 6.5, 67.2, 0.7, sodium_mg=2, iron_mg=2.9)

    report = OutlierDetector().inspect_food(record, "rice")

    assert not report.detected
    assert report.total_flagged == 0
    assert report.corrections == {}
    assert report.record == record


def test_value_far_above_typical_is_clamped() -> None:
    record = _record(95, 0.5, 25, 0.3, vitamin_c_mg=3000)

    report = OutlierDetector().inspect_food(record, "orange")

    (flag,) = report.flagged
    assert flag.nutrient == "vitamin_c_mg"
    assert flag.severity is OutlierSeverity.AUTO_CORRECT
    assert flag.ratio == 6.0
    assert flag.message == "vitaminC = 3000 is 6.0x the typical maximum (500)"
    correction = report.corrections["vitamin_c_mg"]
    assert correction.original == 3000
    assert correction.corrected_to == 500
    assert correction.reason == (
        "Value 3000 exceeded 6.0x typical maximum; clamped to 500"
    )
    assert report.record.vitamin_c_mg == 500
    assert report.record.calories == 95
    assert report.record.provenance == PROVENANCE


def test_warning_and_info_bands_are_flagged_without_correction() -> None:
    record = _record(400, 10, 60, 12, sodium_mg=10000, iron_mg=60)

    report = OutlierDetector().inspect_food(record, "ramen")

    severities = {flag.nutrient: flag.severity for flag in report.flagged}
    assert severities == {
        "sodium_mg": OutlierSeverity.WARNING,
        "iron_mg": OutlierSeverity.INFO,
    }
    assert [flag.nutrient for flag in report.surfaced_flags] == ["sodium_mg"]
    assert report.total_flagged == 2
    assert report.total_corrected == 0
    assert report.record == record


def test_auto_correct_can_be_switched_off() -> None:
    record = _record(95, 0.5, 25, 0.3, vitamin_c_mg=3000)

    report = OutlierDetector(auto_correct=False).inspect_food(record, "orange")

    assert report.detected
    assert report.flagged[0].severity is OutlierSeverity.AUTO_CORRECT
    assert report.corrections == {}
    assert report.record.vitamin_c_mg == 3000


def test_hard_limit_below_typical_band_is_clamped() -> None:
    detector = OutlierDetector.from_policy(RealismPolicy(max_calories=1000))

    report = detector.inspect_food(_record(1100, 50, 100, 50), "pizza")

    (flag,) = report.flagged
    assert flag.nutrient == "calories"
    assert flag.severity is OutlierSeverity.AUTO_CORRECT
    assert flag.ratio == 1.1
    assert report.record.calories == 1000


def test_calories_rebuilt_from_macros_when_near_zero() -> None:
    record = _record(5, 30, 0, 2)

    report = OutlierDetector().inspect_food(record, "chicken")

    (issue,) = report.cross_nutrient_issues
    assert issue.name == "High protein but zero calories"
    assert issue.severity is OutlierSeverity.AUTO_CORRECT
    correction = report.corrections["calories"]
    assert correction.original == 5
    assert correction.corrected_to == 138
    assert correction.reason == issue.message
    assert report.record.calories == 138


def test_sugar_and_fiber_are_capped_by_carbs() -> None:
    record = _record(120, 1, 20, 0.5, sugar_g=30, fiber_g=25)

    report = OutlierDetector().inspect_food(record, "dates")

    assert [issue.name for issue in report.cross_nutrient_issues] == [
        "Sugar exceeds total carbs",
        "Fiber exceeds total carbs",
    ]
    assert report.record.sugar_g == 20
    assert report.record.fiber_g == 20
    assert report.total_corrected == 2


def test_vitamin_a_without_companions_is_a_warning_only() -> None:
    record = _record(40, 1, 9, 0.2, vitamin_a_mcg=4000)

    report = OutlierDetector().inspect_food(record, "carrot juice")

    assert report.flagged == ()
    (issue,) = report.cross_nutrient_issues
    assert issue.severity is OutlierSeverity.WARNING
    assert report.detected
    assert report.corrections == {}


def test_vitamin_a_with_companions_is_fine() -> None:
    record = _record(
        200, 5, 10, 15, vitamin_a_mcg=4000, vitamin_d_mcg=2, vitamin_k_mcg=10
    )

    report = OutlierDetector().inspect_food(record, "liver pate")

    assert report.cross_nutrient_issues == ()


def test_iron_without_protein_is_a_warning() -> None:
    report = OutlierDetector().inspect_food(
        _record(110, 1, 24, 1, iron_mg=18), "fortified cereal"
    )

    (issue,) = report.cross_nutrient_issues
    assert issue.name == "High iron without protein"
    assert report.record.iron_mg == 18


def test_meal_totals_above_twice_daily_reference_are_flagged() -> None:
    records = [_record(2500, 20, 50, 10), _record(2000, 20, 50, 10)]

    report = OutlierDetector().inspect_meal(records)

    assert report.has_aggregate_outliers
    assert report.totals == {
        "calories": 4500,
        "protein_g": 40,
        "carbs_g": 100,
        "fat_g": 20,
    }
    (flag,) = report.flagged
    assert flag.nutrient == "calories"
    assert flag.total == 4500
    assert flag.daily_reference == 2000
    assert flag.percent_dri == 225
    assert flag.message == (
        "calories total (4500) is 225% of daily reference intake in a single meal"
    )
    assert report.summary == (
        "This meal's calories content is unusually high. "
        "Values have been checked for accuracy."
    )


def test_ordinary_meal_has_no_aggregate_outliers() -> None:
    report = OutlierDetector().inspect_meal([_record(312, 6.5, 67.2, 0.7)])

    assert not report.has_aggregate_outliers
    assert report.flagged == ()
    assert report.summary == ""


def test_empty_meal() -> None:
    report = OutlierDetector().inspect_meal([])

    assert report.totals == {}
    assert not report.has_aggregate_outliers
