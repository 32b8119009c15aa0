"""Nutrition domain models."""

from dataclasses import dataclass, field
from enum import StrEnum


class NutritionSource(StrEnum):
    """Where a nutrition record came from."""

    AUTHORITATIVE_DIRECT = "usda"
    AUTHORITATIVE_AI_ASSISTED = "usda_ai_assisted"
    GENERATIVE_ESTIMATE = "ai_estimate"
    GENERATIVE_CORRECTED = "ai_estimate_corrected"

    @property
    def is_authoritative(self) -> bool:
        return self in {
            NutritionSource.AUTHORITATIVE_DIRECT,
            NutritionSource.AUTHORITATIVE_AI_ASSISTED,
        }


@dataclass(frozen=True)
class Provenance:
    """Source tag attached to every nutrition record."""

    source: NutritionSource
    source_id: str | None = None
    source_description: str | None = None


@dataclass(frozen=True)
class NutritionRecord:
    """Canonical nutrient bundle for one serving."""

    calories: float
    protein_g: float
    carbs_g: float
    fat_g: float
    provenance: Provenance
    fiber_g: float | None = None
    sodium_mg: float | None = None
    sugar_g: float | None = None
    cholesterol_mg: float | None = None
    vitamin_a_mcg: float | None = None
    vitamin_c_mg: float | None = None
    vitamin_d_mcg: float | None = None
    vitamin_e_mg: float | None = None
    vitamin_k_mcg: float | None = None
    vitamin_b1_mg: float | None = None
    vitamin_b2_mg: float | None = None
    vitamin_b3_mg: float | None = None
    vitamin_b6_mg: float | None = None
    vitamin_b12_mcg: float | None = None
    folate_mcg: float | None = None
    calcium_mg: float | None = None
    iron_mg: float | None = None
    magnesium_mg: float | None = None
    zinc_mg: float | None = None
    potassium_mg: float | None = None

    @property
    def source(self) -> NutritionSource:
        return self.provenance.source


@dataclass(frozen=True)
class FoodQuery:
    """Parsed request for a single food item."""

    raw_description: str
    food_name: str
    quantity: float | None
    unit: str | None
    serving_grams: float

    def __post_init__(self) -> None:
        if not self.serving_grams > 0:
            raise ValueError(f"serving_grams must be positive: {self.serving_grams}")


@dataclass(frozen=True)
class Candidate:
    """Ranked authoritative-database match."""

    external_id: str
    description: str
    data_type: str | None
    data_type_rank: int
    nutrition: NutritionRecord


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of realism validation."""

    issues: tuple[str, ...] = ()

    @property
    def valid(self) -> bool:
        return not self.issues


@dataclass(frozen=True)
class Resolution:
    """Terminal outcome of the resolution cascade for one query."""

    query: FoodQuery
    record: NutritionRecord
    validation: ValidationResult
    candidates: tuple[Candidate, ...] = field(default_factory=tuple)
    correction_attempted: bool = False
    cached: bool = False

    @property
    def realism_validated(self) -> bool:
        return self.validation.valid
