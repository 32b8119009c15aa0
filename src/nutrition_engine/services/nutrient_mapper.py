"""Mapping of source nutrient data into canonical nutrition records."""

import math
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

from nutrition_engine.domain.nutrition import (
    Candidate,
    NutritionRecord,
    NutritionSource,
    Provenance,
)

_EXACT_INTEGER_LIMIT = 2.0**53


@dataclass(frozen=True)
class NutrientSpec:
    """How one canonical nutrient is named, sourced and rounded."""

    field: str
    wire_name: str
    fdc_ids: tuple[int, ...]
    decimals: int


MACRO_SPECS: tuple[NutrientSpec, ...] = (
    NutrientSpec("calories", "calories", (1008, 2047, 2048), 0),
    NutrientSpec("protein_g", "protein", (1003,), 1),
    NutrientSpec("carbs_g", "carbs", (1005,), 1),
    NutrientSpec("fat_g", "fat", (1004,), 1),
)

MICRO_SPECS: tuple[NutrientSpec, ...] = (
    NutrientSpec("fiber_g", "fiber", (1079,), 1),
    NutrientSpec("sodium_mg", "sodium", (1093,), 0),
    NutrientSpec("sugar_g", "sugar", (2000, 1063), 1),
    NutrientSpec("cholesterol_mg", "cholesterol", (1253,), 0),
    NutrientSpec("vitamin_a_mcg", "vitaminA", (1106,), 0),
    NutrientSpec("vitamin_c_mg", "vitaminC", (1162,), 1),
    NutrientSpec("vitamin_d_mcg", "vitaminD", (1114,), 1),
    NutrientSpec("vitamin_e_mg", "vitaminE", (1109,), 2),
    NutrientSpec("vitamin_k_mcg", "vitaminK", (1185,), 1),
    NutrientSpec("vitamin_b1_mg", "vitaminB1", (1165,), 2),
    NutrientSpec("vitamin_b2_mg", "vitaminB2", (1166,), 2),
    NutrientSpec("vitamin_b3_mg", "vitaminB3", (1167,), 1),
    NutrientSpec("vitamin_b6_mg", "vitaminB6", (1175,), 2),
    NutrientSpec("vitamin_b12_mcg", "vitaminB12", (1178,), 2),
    NutrientSpec("folate_mcg", "folate", (1177,), 0),
    NutrientSpec("calcium_mg", "calcium", (1087,), 0),
    NutrientSpec("iron_mg", "iron", (1089,), 2),
    NutrientSpec("magnesium_mg", "magnesium", (1090,), 0),
    NutrientSpec("zinc_mg", "zinc", (1095,), 2),
    NutrientSpec("potassium_mg", "potassium", (1092,), 0),
)

NUTRIENT_SPECS: tuple[NutrientSpec, ...] = MACRO_SPECS + MICRO_SPECS

# Most complete, curated data categories first.
DATA_TYPE_RANKS: dict[str, int] = {
    "foundation": 0,
    "sr legacy": 1,
    "survey (fndds)": 2,
    "experimental": 3,
    "branded": 4,
}
_UNKNOWN_DATA_TYPE_RANK = 5


def map_nutrients(
    nutrients: Iterable[tuple[int, float]],
    serving_grams: float,
    provenance: Provenance,
) -> NutritionRecord:
    """Scale per-100g nutrient values to a serving and build a record."""
    per_100g: dict[int, float] = {}
    for nutrient_id, value in nutrients:
        amount = _as_amount(value)
        if amount is None:
            continue
        per_100g.setdefault(nutrient_id, amount)

    scale = serving_grams / 100
    values: dict[str, float | None] = {}
    for spec in NUTRIENT_SPECS:
        amount = next(
            (per_100g[fdc_id] for fdc_id in spec.fdc_ids if fdc_id in per_100g),
            None,
        )
        values[spec.field] = None if amount is None else amount * scale
    return _build_record(values, provenance)


def record_from_values(
    values: Mapping[str, object], provenance: Provenance
) -> NutritionRecord:
    """Build a record from already-scaled values keyed by wire or field name."""
    resolved: dict[str, float | None] = {}
    for spec in NUTRIENT_SPECS:
        raw = values.get(spec.wire_name, values.get(spec.field))
        resolved[spec.field] = _as_amount(raw)
    return _build_record(resolved, provenance)


def sum_records(
    records: Iterable[NutritionRecord], provenance: Provenance
) -> NutritionRecord:
    """Aggregate several records into one total."""
    totals: dict[str, float | None] = {spec.field: None for spec in NUTRIENT_SPECS}
    for record in records:
        for spec in NUTRIENT_SPECS:
            value = getattr(record, spec.field)
            if value is None:
                continue
            current = totals[spec.field]
            totals[spec.field] = value if current is None else current + value
    return _build_record(totals, provenance)


def record_to_values(record: NutritionRecord) -> dict[str, float | None]:
    """Expose record nutrients keyed by wire name."""
    return {spec.wire_name: getattr(record, spec.field) for spec in NUTRIENT_SPECS}


def fdc_nutrient_values(food: Mapping[str, object]) -> list[tuple[int, float]]:
    """Extract (nutrient id, amount per 100g) pairs from an FDC food payload."""
    pairs: list[tuple[int, float]] = []
    food_nutrients = food.get("foodNutrients") or []
    if not isinstance(food_nutrients, list):
        return pairs
    for nutrient in food_nutrients:
        if not isinstance(nutrient, dict):
            continue
        nutrient_info = nutrient.get("nutrient") or {}
        nutrient_id = nutrient.get("nutrientId") or nutrient_info.get("id")
        amount = nutrient.get("value")
        if amount is None:
            amount = nutrient.get("amount")
        if nutrient_id is None or amount is None:
            continue
        try:
            pairs.append((int(nutrient_id), float(amount)))
        except (TypeError, ValueError):
            continue
    return pairs


def data_type_rank(data_type: str | None) -> int:
    """Rank FDC data categories; lower is more complete and curated."""
    if not data_type:
        return _UNKNOWN_DATA_TYPE_RANK
    return DATA_TYPE_RANKS.get(data_type.strip().lower(), _UNKNOWN_DATA_TYPE_RANK)


def rank_candidates(
    foods: Iterable[Mapping[str, object]],
    serving_grams: float,
    source: NutritionSource,
    limit: int = 5,
) -> list[Candidate]:
    """Map FDC search hits to candidates ordered by data type rank.

    Hits without positive calories at the requested serving are dropped.
    `sorted` is stable, so response order breaks ties.
    """
    candidates: list[Candidate] = []
    for food in foods:
        fdc_id = food.get("fdcId")
        description = str(food.get("description") or "")
        data_type = food.get("dataType")
        data_type_str = str(data_type) if data_type is not None else None
        provenance = Provenance(
            source=source,
            source_id=str(fdc_id) if fdc_id is not None else None,
            source_description=description or None,
        )
        nutrition = map_nutrients(
            fdc_nutrient_values(food), serving_grams, provenance
        )
        if nutrition.calories <= 0:
            continue
        candidates.append(
            Candidate(
                external_id=str(fdc_id) if fdc_id is not None else "",
                description=description,
                data_type=data_type_str,
                data_type_rank=data_type_rank(data_type_str),
                nutrition=nutrition,
            )
        )
    candidates.sort(key=lambda candidate: candidate.data_type_rank)
    return candidates[:limit]


def round_nutrient(value: float, decimals: int) -> float:
    """Round half-up to a fixed number of decimals."""
    if not math.isfinite(value) or abs(value) >= _EXACT_INTEGER_LIMIT:
        # Floats this large carry no fractional digits.
        return value
    quantum = Decimal(1).scaleb(-decimals)
    rounded = Decimal(str(value)).quantize(quantum, rounding=ROUND_HALF_UP)
    if decimals == 0:
        return int(rounded)
    return float(rounded)


def _build_record(
    values: Mapping[str, float | None], provenance: Provenance
) -> NutritionRecord:
    rounded: dict[str, float | None] = {}
    for spec in NUTRIENT_SPECS:
        value = values.get(spec.field)
        rounded[spec.field] = (
            None if value is None else round_nutrient(value, spec.decimals)
        )
    for spec in MACRO_SPECS:
        if rounded[spec.field] is None:
            rounded[spec.field] = 0
    return NutritionRecord(provenance=provenance, **rounded)


def _as_amount(value: object) -> float | None:
    """Coerce to a finite non-negative float, or None."""
    if value is None or isinstance(value, bool):
        return None
    try:
        amount = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(amount) or math.isinf(amount) or amount < 0:
        return None
    return amount
