"""Tests for nutrient mapping and candidate ranking."""

from nutrition_engine.domain.nutrition import NutritionSource, Provenance
from nutrition_engine.services.nutrient_mapper import (
    fdc_nutrient_values,
    map_nutrients,
    rank_candidates,
    record_from_values,
    record_to_values,
    round_nutrient,
    sum_records,
)
from tests.conftest import RICE, fdc_food

PROVENANCE = Provenance(source=NutritionSource.AUTHORITATIVE_DIRECT, source_id="1")


def test_map_nutrients_scales_rice_to_480g() -> None:
    record = map_nutrients(
        [(1008, 130), (1003, 2.7), (1005, 28), (1004, 0.3)], 480, PROVENANCE
    )

    assert record.calories == 624
    assert record.protein_g == 13.0
    assert record.carbs_g == 134.4
    assert record.fat_g == 1.4
    assert record.fiber_g is None
    assert record.provenance == PROVENANCE


def test_map_nutrients_at_100g_returns_values_unchanged() -> None:
    nutrients = [
        (1008, 250),
        (1003, 12.5),
        (1005, 30.1),
        (1004, 8.2),
        (1093, 410),
        (1089, 2.35),
        (1162, 4.1),
    ]

    record = map_nutrients(nutrients, 100, PROVENANCE)

    assert record.calories == 250
    assert record.protein_g == 12.5
    assert record.carbs_g == 30.1
    assert record.fat_g == 8.2
    assert record.sodium_mg == 410
    assert record.iron_mg == 2.35
    assert record.vitamin_c_mg == 4.1


def test_map_nutrients_scaling_is_linear() -> None:
    nutrients = [(1008, 100), (1003, 10), (1005, 10), (1004, 2)]

    single = map_nutrients(nutrients, 100, PROVENANCE)
    double = map_nutrients(nutrients, 200, PROVENANCE)

    assert double.calories == single.calories * 2
    assert double.protein_g == single.protein_g * 2
    assert double.fat_g == single.fat_g * 2


def test_map_nutrients_energy_and_sugar_fallbacks() -> None:
    record = map_nutrients(
        [(2047, 52), (1003, 0.3), (1005, 14), (1004, 0.2), (1063, 10.4)],
        100,
        PROVENANCE,
    )

    assert record.calories == 52
    assert record.sugar_g == 10.4


def test_map_nutrients_ignores_unknown_and_invalid_values() -> None:
    record = map_nutrients(
        [(1008, 100), (9999, 5), (1079, -1), (1093, float("nan"))], 100, PROVENANCE
    )

    assert record.calories == 100
    assert record.protein_g == 0
    assert record.fiber_g is None
    assert record.sodium_mg is None


def test_round_nutrient_is_half_up() -> None:
    assert round_nutrient(2.5, 0) == 3
    assert round_nutrient(0.25, 1) == 0.3
    assert round_nutrient(1.005, 2) == 1.01


def test_round_nutrient_passes_through_huge_values() -> None:
    assert round_nutrient(1e30, 0) == 1e30
    assert round_nutrient(1.5e29, 1) == 1.5e29
    assert round_nutrient(float("inf"), 0) == float("inf")


def test_fdc_nutrient_values_reads_both_payload_shapes() -> None:
    search_hit = {"foodNutrients": [{"nutrientId": 1008, "value": 89}]}
    detail = {"foodNutrients": [{"nutrient": {"id": 1003}, "amount": 1.1}]}

    assert fdc_nutrient_values(search_hit) == [(1008, 89)]
    assert fdc_nutrient_values(detail) == [(1003, 1.1)]


def test_rank_candidates_orders_by_data_type_then_response_order() -> None:
    foods = [
        fdc_food(1, "Branded rice", {1008: 120}, data_type="Branded"),
        fdc_food(2, "Survey rice", {1008: 125}, data_type="Survey (FNDDS)"),
        fdc_food(3, "Legacy rice A", {1008: 130}, data_type="SR Legacy"),
        fdc_food(4, "Foundation rice", {1008: 128}, data_type="Foundation"),
        fdc_food(5, "Legacy rice B", {1008: 131}, data_type="SR Legacy"),
        fdc_food(6, "Mystery rice", {1008: 110}, data_type="Other"),
    ]

    candidates = rank_candidates(foods, 100, NutritionSource.AUTHORITATIVE_DIRECT)

    assert [c.external_id for c in candidates] == ["4", "3", "5", "2", "1"]
    assert candidates[0].data_type_rank == 0
    assert candidates[0].nutrition.provenance.source_id == "4"
    assert candidates[0].nutrition.provenance.source_description == "Foundation rice"


def test_rank_candidates_drops_zero_calorie_hits() -> None:
    foods = [
        fdc_food(1, "Water", {1008: 0}),
        fdc_food(2, "Salt", {1093: 38758}),
        RICE,
    ]

    candidates = rank_candidates(
        foods, 100, NutritionSource.AUTHORITATIVE_AI_ASSISTED, limit=5
    )

    assert len(candidates) == 1
    assert candidates[0].nutrition.source is NutritionSource.AUTHORITATIVE_AI_ASSISTED


def test_record_from_values_accepts_wire_names() -> None:
    provenance = Provenance(source=NutritionSource.GENERATIVE_ESTIMATE)

    record = record_from_values(
        {"calories": 210.4, "protein": 5, "carbs": 40, "fat": 3, "vitaminC": "x"},
        provenance,
    )

    assert record.calories == 210
    assert record.vitamin_c_mg is None
    assert record_to_values(record)["protein"] == 5


def test_sum_records_adds_known_values_only() -> None:
    provenance = Provenance(source=NutritionSource.GENERATIVE_ESTIMATE)
    first = record_from_values(
        {"calories": 100, "protein": 2, "carbs": 20, "fat": 1, "fiber": 1.5},
        provenance,
    )
    second = record_from_values(
        {"calories": 50, "protein": 1.5, "carbs": 0, "fat": 4}, provenance
    )

    total = sum_records([first, second], provenance)

    assert total.calories == 150
    assert total.protein_g == 3.5
    assert total.fat_g == 5
    assert total.fiber_g == 1.5
    assert total.sodium_mg is None
