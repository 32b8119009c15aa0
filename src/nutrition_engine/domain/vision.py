"""Models for vision identification and dish decomposition results."""

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator


class IdentifiedFoodItem(BaseModel):
    """Single food item detected in a photo or listed as a dish ingredient."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    name: str = Field(min_length=1)
    estimated_serving: str = Field(
        default="1 serving",
        validation_alias=AliasChoices("estimatedServing", "estimated_serving"),
    )
    is_complex: bool = Field(
        default=False,
        validation_alias=AliasChoices("isComplex", "is_complex"),
    )

    @field_validator("name")
    @classmethod
    def _strip_name(cls, value: str) -> str:
        stripped = value.strip()
        if not stripped:
            raise ValueError("name must not be blank")
        return stripped

    @field_validator("estimated_serving", mode="before")
    @classmethod
    def _default_serving(cls, value: object) -> object:
        if value is None or (isinstance(value, str) and not value.strip()):
            return "1 serving"
        return value


class FoodIdentification(BaseModel):
    """Structured output of photo identification."""

    foods: list[IdentifiedFoodItem] = Field(default_factory=list)
    error: str | None = None


class DishDecomposition(BaseModel):
    """Structured output of composite dish decomposition."""

    is_complex: bool = Field(
        default=False,
        validation_alias=AliasChoices("isComplex", "is_complex"),
    )
    ingredients: list[IdentifiedFoodItem] = Field(default_factory=list)
