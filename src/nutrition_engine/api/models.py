"""Request bodies accepted by the HTTP API."""

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class _RequestModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")


class EstimateNutritionRequest(_RequestModel):
    food_description: str | None = Field(
        default=None,
        validation_alias=AliasChoices("foodDescription", "food_description"),
    )


class ParseFoodRequest(_RequestModel):
    food_description: str | None = Field(
        default=None,
        validation_alias=AliasChoices("foodDescription", "food_description"),
    )
    quantity: float | str | None = None
    unit: str | None = None


class IdentifyFoodPhotoRequest(_RequestModel):
    image: str | None = None


class AuthoritativeSearchRequest(_RequestModel):
    query: str | None = None
    serving_description: str | None = Field(
        default=None,
        validation_alias=AliasChoices("servingDescription", "serving_description"),
    )
    page_size: int = Field(
        default=10,
        ge=1,
        le=25,
        validation_alias=AliasChoices("pageSize", "page_size"),
    )
