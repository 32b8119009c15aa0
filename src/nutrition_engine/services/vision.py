"""Photo identification and dish decomposition using the estimator."""

import base64
import logging
from dataclasses import dataclass

from pydantic import ValidationError

from nutrition_engine.domain.vision import (
    DishDecomposition,
    FoodIdentification,
    IdentifiedFoodItem,
)
from nutrition_engine.errors import UpstreamParseError
from nutrition_engine.services.estimator import CompletionClient, extract_json_object

_logger = logging.getLogger(__name__)

MAX_IDENTIFIED_FOODS = 25
MAX_INGREDIENTS = 8

IDENTIFY_PROMPT = (
    "You are a food identification expert. Analyze this food photo and identify "
    "EVERY distinct food item visible.\n\n"
    "For each food item, provide:\n"
    '- "name": A clear, common food name suitable for searching a nutrition '
    'database (e.g., "grilled chicken breast", "white rice", "pasta carbonara")\n'
    '- "estimatedServing": The estimated serving size with a unit (e.g., "6 oz", '
    '"1 cup", "150g", "2 slices")\n'
    '- "isComplex": true if this is a mixed/composite dish with multiple '
    "ingredients (e.g., salad, stir fry, sandwich), false if it's a simple "
    "single food\n\n"
    "Respond ONLY with a valid JSON object:\n"
    '{"foods": [{"name": "food name", "estimatedServing": "amount unit", '
    '"isComplex": false}, ...]}\n\n'
    'If no food is visible in the image, respond with: {"foods": [], '
    '"error": "No food detected in image"}\n'
    f"Be specific with food names. Identify ALL distinct items, up to "
    f"{MAX_IDENTIFIED_FOODS} foods."
)

DECOMPOSE_SYSTEM_PROMPT = (
    "You are a food decomposition expert. Given a dish/meal name and serving "
    "size, break it down into its individual ingredient components with "
    "estimated quantities.\n\n"
    "Respond ONLY with a valid JSON object:\n"
    '{"isComplex": true/false, "ingredients": [{"name": "ingredient name '
    '(USDA-searchable)", "estimatedServing": "amount unit"}, ...]}\n\n'
    "Set isComplex to false if this is already a simple, single ingredient "
    '(e.g., "apple", "chicken breast", "white rice").\n'
    "Set isComplex to true for mixed dishes (e.g., \"pasta carbonara\", "
    '"chicken stir fry", "Caesar salad").\n\n'
    f"For complex dishes, list 2-{MAX_INGREDIENTS} main ingredients with "
    "realistic quantities that add up to the total serving.\n"
    "Use common USDA-searchable names for each ingredient."
)


@dataclass
class VisionService:
    """Service that prepares vision prompts and validates results."""

    client: CompletionClient
    timeout_seconds: float = 25
    decomposition_timeout_seconds: float = 30
    max_ingredients: int = MAX_INGREDIENTS

    async def identify(self, image_bytes: bytes) -> FoodIdentification:
        """Identify food items in an image via the configured client."""
        content = await self.client.complete(
            messages=[
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": IDENTIFY_PROMPT},
                        {
                            "type": "image_url",
                            "image_url": {"url": _to_data_url(image_bytes)},
                        },
                    ],
                }
            ],
            temperature=0.2,
            max_tokens=1500,
            timeout_seconds=self.timeout_seconds,
        )
        payload = extract_json_object(content)
        foods = payload.get("foods")
        if not isinstance(foods, list):
            foods = []
        items: list[IdentifiedFoodItem] = []
        for raw in foods:
            try:
                items.append(IdentifiedFoodItem.model_validate(raw))
            except ValidationError:
                _logger.warning("Dropping unreadable vision item: %r", raw)
        error = payload.get("error")
        return FoodIdentification(
            foods=items,
            error=error if isinstance(error, str) else None,
        )

    async def decompose(self, name: str, serving: str) -> list[IdentifiedFoodItem]:
        """Split a composite dish into ingredients; empty for simple foods."""
        content = await self.client.complete(
            messages=[
                {"role": "system", "content": DECOMPOSE_SYSTEM_PROMPT},
                {"role": "user", "content": f"Decompose: {serving} of {name}"},
            ],
            temperature=0.2,
            max_tokens=600,
            timeout_seconds=self.decomposition_timeout_seconds,
        )
        try:
            decomposition = DishDecomposition.model_validate(
                extract_json_object(content)
            )
        except ValidationError as exc:
            raise UpstreamParseError("Invalid decomposition from AI") from exc
        if not decomposition.is_complex:
            return []
        return decomposition.ingredients[: self.max_ingredients]


def _to_data_url(image_bytes: bytes) -> str:
    """Convert bytes to a base64 data URL for image input."""
    mime_type = _detect_mime_type(image_bytes)
    encoded = base64.b64encode(image_bytes).decode("utf-8")
    return f"data:{mime_type};base64,{encoded}"


def _detect_mime_type(image_bytes: bytes) -> str:
    """Infer a basic image MIME type from file signatures."""
    if image_bytes.startswith(b"\xff\xd8\xff"):
        return "image/jpeg"
    if image_bytes.startswith(b"\x89PNG\r\n\x1a\n"):
        return "image/png"
    if image_bytes[:4] == b"RIFF" and image_bytes[8:12] == b"WEBP":
        return "image/webp"
    if image_bytes[:6] in (b"GIF87a", b"GIF89a"):
        return "image/gif"
    return "image/jpeg"
