"""Generative estimator prompts and response parsing."""

import json
import logging
import re
from dataclasses import dataclass
from typing import Protocol

from pydantic import AliasChoices, BaseModel, Field, ValidationError

from nutrition_engine.domain.nutrition import (
    NutritionRecord,
    NutritionSource,
    Provenance,
)
from nutrition_engine.errors import UpstreamParseError
from nutrition_engine.services.nutrient_mapper import record_from_values
from nutrition_engine.services.realism import build_correction_prompt

_logger = logging.getLogger(__name__)

_JSON_OBJECT = re.compile(r"\{[\s\S]*\}")

_NUTRIENT_FIELDS_PROMPT = (
    "- calories (total kcal), protein (grams), carbs (grams), fat (grams)\n"
    "- fiber (grams), sodium (milligrams), sugar (grams), cholesterol (milligrams)\n"
    "- vitaminA (mcg RAE), vitaminC (mg), vitaminD (mcg), vitaminE (mg), "
    "vitaminK (mcg)\n"
    "- vitaminB1 (mg), vitaminB2 (mg), vitaminB3 (mg), vitaminB6 (mg), "
    "vitaminB12 (mcg)\n"
    "- folate (mcg DFE), calcium (mg), iron (mg), magnesium (mg), zinc (mg), "
    "potassium (mg)\n"
)

ESTIMATE_SYSTEM_PROMPT = (
    "You are a nutrition expert. When given a food description, provide "
    "comprehensive nutritional information for the whole described serving.\n"
    "Always respond with a valid JSON object containing:\n"
    f"{_NUTRIENT_FIELDS_PROMPT}"
    "Use realistic USDA estimates within normal food ranges (a single serving "
    "is at most 3000 kcal). Use null for nutrients you cannot estimate. "
    "Format as JSON only."
)

CORRECTION_SYSTEM_PROMPT = (
    "You are a nutrition expert. Provide CORRECTED comprehensive nutritional "
    "information.\nRespond with a valid JSON object containing:\n"
    f"{_NUTRIENT_FIELDS_PROMPT}"
    "Ensure calories ≈ protein*4 + carbs*4 + fat*9. All values must be within "
    "normal food ranges. JSON only."
)

REWRITE_SYSTEM_PROMPT = (
    "Given a food description, return a simple common food name for USDA "
    "database search. Return ONLY the search term (1-4 words). Examples: "
    "'grilled chicken breast' -> 'chicken breast cooked', "
    "'Big Mac' -> 'hamburger double patty'"
)

PARSE_FOOD_SYSTEM_PROMPT = """\
You are a USDA nutrition database expert. Convert food descriptions into \
optimized USDA FoodData Central search queries.

Respond ONLY with a valid JSON object, no prose and no markdown:
{
  "searchQuery": "primary USDA search query (2-5 words, USDA naming format)",
  "servingSizeGrams": <total weight in grams for the given quantity/unit>,
  "alternateQueries": ["backup query 1", "backup query 2"],
  "preferBranded": <true if this is clearly a packaged/branded food>
}

USDA naming conventions:
- Use comma-separated descriptors: "Chicken, breast, cooked, grilled"
- For generic foods: "Apple, raw" not "fresh apple"
- Omit quantity/serving info from searchQuery

Serving size estimation (grams):
- 1 cup cooked rice ≈ 186g, 1 cup raw leafy greens ≈ 30g
- 1 oz = 28.35g, 1 tbsp oil ≈ 14g, 1 medium apple ≈ 182g
- If unit is "g" already, use that directly multiplied by quantity"""

MAX_SEARCH_TERM_LENGTH = 100


class CompletionClient(Protocol):
    """Interface for generative text and vision completions."""

    async def complete(
        self,
        *,
        messages: list[dict[str, object]],
        temperature: float,
        max_tokens: int,
        timeout_seconds: float,
    ) -> str:
        """Return the raw text of the model's reply."""


class _GeneratedMacros(BaseModel):
    calories: float = Field(ge=0, validation_alias=AliasChoices("calories", "cal"))
    protein: float | None = Field(default=None, ge=0)
    carbs: float | None = Field(
        default=None, ge=0, validation_alias=AliasChoices("carbs", "carbohydrates")
    )
    fat: float | None = Field(default=None, ge=0)


class _ParsedFoodPayload(BaseModel):
    search_query: str | None = Field(default=None, validation_alias="searchQuery")
    serving_size_grams: object = Field(
        default=None, validation_alias="servingSizeGrams"
    )
    alternate_queries: object = Field(default=None, validation_alias="alternateQueries")
    prefer_branded: object = Field(default=False, validation_alias="preferBranded")


@dataclass(frozen=True)
class ParsedFoodQuery:
    """Database-friendly rendering of a free-text food description."""

    search_query: str
    serving_size_grams: float
    alternate_queries: tuple[str, ...] = ()
    prefer_branded: bool = False


@dataclass
class GenerativeEstimator:
    """Prompts the generative estimator and validates what comes back."""

    client: CompletionClient
    estimate_timeout_seconds: float = 30
    rewrite_timeout_seconds: float = 15
    parse_timeout_seconds: float = 15
    debug: bool = False

    async def suggest_search_term(self, description: str) -> str:
        """Rewrite a description into database terminology."""
        content = await self._complete(
            [
                {"role": "system", "content": REWRITE_SYSTEM_PROMPT},
                {"role": "user", "content": description},
            ],
            temperature=0.1,
            max_tokens=50,
            timeout_seconds=self.rewrite_timeout_seconds,
        )
        return content.strip().strip("\"'").strip()

    async def estimate(self, description: str) -> NutritionRecord:
        """Ask for a direct nutrition estimate of a described serving."""
        content = await self._complete(
            [
                {"role": "system", "content": ESTIMATE_SYSTEM_PROMPT},
                {
                    "role": "user",
                    "content": f"Nutritional content of: {description}? JSON format.",
                },
            ],
            temperature=0.2,
            max_tokens=500,
            timeout_seconds=self.estimate_timeout_seconds,
        )
        return parse_nutrition(
            content, Provenance(source=NutritionSource.GENERATIVE_ESTIMATE)
        )

    async def correct(
        self, description: str, issues: tuple[str, ...] | list[str]
    ) -> NutritionRecord:
        """Re-estimate with the violated realism rules as feedback."""
        content = await self._complete(
            [
                {"role": "system", "content": CORRECTION_SYSTEM_PROMPT},
                {
                    "role": "user",
                    "content": build_correction_prompt(description, issues),
                },
            ],
            temperature=0.1,
            max_tokens=500,
            timeout_seconds=self.estimate_timeout_seconds,
        )
        return parse_nutrition(
            content, Provenance(source=NutritionSource.GENERATIVE_CORRECTED)
        )

    async def parse_food(
        self, description: str, quantity: object, unit: str | None
    ) -> ParsedFoodQuery:
        """Structure a description into a search query and serving weight."""
        content = await self._complete(
            [
                {"role": "system", "content": PARSE_FOOD_SYSTEM_PROMPT},
                {
                    "role": "user",
                    "content": (
                        f'Food: "{description}" | Quantity: '
                        f"{quantity if quantity is not None else 1} | "
                        f"Unit: {unit or 'serving'}"
                    ),
                },
            ],
            temperature=0.1,
            max_tokens=250,
            timeout_seconds=self.parse_timeout_seconds,
        )
        try:
            payload = _ParsedFoodPayload.model_validate(extract_json_object(content))
        except ValidationError as exc:
            raise UpstreamParseError("Invalid JSON from AI") from exc
        return ParsedFoodQuery(
            search_query=(payload.search_query or description).strip()[
                :MAX_SEARCH_TERM_LENGTH
            ]
            or description,
            serving_size_grams=_positive_or_default(payload.serving_size_grams),
            alternate_queries=_string_list(payload.alternate_queries, limit=3),
            prefer_branded=bool(payload.prefer_branded),
        )

    async def _complete(
        self,
        messages: list[dict[str, object]],
        *,
        temperature: float,
        max_tokens: int,
        timeout_seconds: float,
    ) -> str:
        content = await self.client.complete(
            messages=messages,
            temperature=temperature,
            max_tokens=max_tokens,
            timeout_seconds=timeout_seconds,
        )
        if self.debug:
            _logger.info("Estimator reply (%s chars): %s", len(content), content[:200])
        return content


def extract_json_object(content: str) -> dict[str, object]:
    """Pull the first JSON object out of a model reply."""
    match = _JSON_OBJECT.search(content)
    if not match:
        raise UpstreamParseError("Could not parse AI response")
    try:
        parsed = json.loads(match.group(0))
    except json.JSONDecodeError as exc:
        raise UpstreamParseError("Invalid JSON from AI") from exc
    if not isinstance(parsed, dict):
        raise UpstreamParseError("Unexpected AI response structure")
    return parsed


def parse_nutrition(content: str, provenance: Provenance) -> NutritionRecord:
    """Parse a generative nutrition reply into a canonical record."""
    payload = extract_json_object(content)
    try:
        macros = _GeneratedMacros.model_validate(payload)
    except ValidationError as exc:
        raise UpstreamParseError(
            "Invalid nutrition values", code="INVALID_VALUES"
        ) from exc
    values: dict[str, object] = dict(payload)
    values.update(
        {
            "calories": macros.calories,
            "protein": macros.protein,
            "carbs": macros.carbs,
            "fat": macros.fat,
        }
    )
    return record_from_values(values, provenance)


def _positive_or_default(value: object, default: float = 100.0) -> float:
    try:
        number = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return default
    if number != number or number <= 0 or number == float("inf"):
        return default
    return number


def _string_list(value: object, limit: int) -> tuple[str, ...]:
    if not isinstance(value, list):
        return ()
    return tuple(str(item) for item in value[:limit])
