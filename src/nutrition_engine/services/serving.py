"""Serving-size parsing from free text."""

import math
import re
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal

DEFAULT_SERVING_GRAMS = 100.0
MAX_SERVING_GRAMS = 100_000.0

UNIT_GRAMS: dict[str, float] = {
    "g": 1,
    "gram": 1,
    "grams": 1,
    "oz": 28.35,
    "ounce": 28.35,
    "ounces": 28.35,
    "cup": 240,
    "cups": 240,
    "tbsp": 15,
    "tablespoon": 15,
    "tablespoons": 15,
    "tsp": 5,
    "teaspoon": 5,
    "teaspoons": 5,
    "lb": 453.6,
    "lbs": 453.6,
    "pound": 453.6,
    "pounds": 453.6,
    "kg": 1000,
    "kilogram": 1000,
    "kilograms": 1000,
    "ml": 1,
    "milliliter": 1,
    "milliliters": 1,
    "l": 1000,
    "liter": 1000,
    "liters": 1000,
    "slice": 30,
    "slices": 30,
    "piece": 100,
    "pieces": 100,
    "serving": 150,
    "servings": 150,
    "medium": 150,
    "large": 200,
    "small": 100,
}

_QUANTITY = r"(\d+(?:\.\d+)?(?:/\d+(?:\.\d+)?)?|\.\d+)"
_UNITS = "|".join(
    sorted((re.escape(unit) for unit in UNIT_GRAMS), key=len, reverse=True)
)
_DESCRIPTION_PATTERN = re.compile(
    rf"^{_QUANTITY}\s*({_UNITS})\.?\s+(?:of\s+)?(.+)$", re.IGNORECASE
)
_SERVING_PATTERN = re.compile(rf"^{_QUANTITY}\s*(.*)$")


@dataclass(frozen=True)
class ParsedServing:
    """Food name with a normalized serving weight."""

    food_name: str
    quantity: float | None
    unit: str | None
    serving_grams: float


def parse_description(text: str) -> ParsedServing:
    """Split an optional "<qty> <unit> [of]" prefix from a food description."""
    cleaned = " ".join(text.split())
    match = _DESCRIPTION_PATTERN.match(cleaned)
    if not match:
        return ParsedServing(
            food_name=cleaned,
            quantity=None,
            unit=None,
            serving_grams=DEFAULT_SERVING_GRAMS,
        )
    quantity = _parse_quantity(match.group(1))
    unit = match.group(2).lower()
    return ParsedServing(
        food_name=match.group(3).strip(),
        quantity=quantity,
        unit=unit,
        serving_grams=serving_to_grams(quantity, unit),
    )


def parse_serving(text: str | None) -> float:
    """Convert a serving string like "6 oz" or "150g" to grams."""
    if not text:
        return DEFAULT_SERVING_GRAMS
    match = _SERVING_PATTERN.match(text.strip().lower())
    if not match:
        return DEFAULT_SERVING_GRAMS
    unit = match.group(2).strip()
    # "2 cups cooked" still resolves to cups
    unit = unit.split(" ", 1)[0] if unit else unit
    return serving_to_grams(_parse_quantity(match.group(1)), unit or None)


def serving_to_grams(quantity: float | None, unit: str | None) -> float:
    """Convert an explicit quantity and unit pair to grams; never fails."""
    if quantity is None:
        quantity = 1.0
    factor = UNIT_GRAMS.get((unit or "").strip().lower().rstrip("."))
    if factor is None:
        factor = DEFAULT_SERVING_GRAMS
    grams = quantity * factor
    # Absurd quantities are treated like unparseable ones.
    if not math.isfinite(grams) or abs(grams) > MAX_SERVING_GRAMS:
        return DEFAULT_SERVING_GRAMS
    grams = _round_grams(grams)
    if grams <= 0:
        return DEFAULT_SERVING_GRAMS
    return grams


def _parse_quantity(raw: str) -> float | None:
    """Parse decimals and simple fractions."""
    try:
        if "/" in raw:
            numerator, denominator = raw.split("/", 1)
            return float(numerator) / float(denominator)
        return float(raw)
    except (ValueError, ZeroDivisionError):
        return None


def _round_grams(value: float) -> float:
    rounded = Decimal(str(value)).quantize(Decimal("0.1"), rounding=ROUND_HALF_UP)
    return float(rounded)
