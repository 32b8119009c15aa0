"""Application configuration."""

import os

from pydantic_settings import BaseSettings, SettingsConfigDict

from nutrition_engine.services.outliers import OutlierDetector
from nutrition_engine.services.rate_limit import EndpointClass, RateLimitPolicy
from nutrition_engine.services.realism import RealismPolicy

_ENVIRONMENT = os.getenv("ENVIRONMENT", "local")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    fdc_api_key: str | None = None
    fdc_base_url: str = "https://api.nal.usda.gov/fdc/v1"
    estimator_api_key: str | None = None
    estimator_base_url: str = "https://ai.hackclub.com/proxy/v1"
    estimator_model: str = "google/gemini-2.5-flash"
    cors_allowed_origins: str = "http://localhost:3000,http://127.0.0.1:3000"

    rate_limit_text_estimation_max: int = 30
    rate_limit_text_estimation_window_seconds: int = 15 * 60
    rate_limit_food_parsing_max: int = 60
    rate_limit_food_parsing_window_seconds: int = 15 * 60
    rate_limit_photo_identification_max: int = 20
    rate_limit_photo_identification_window_seconds: int = 15 * 60
    rate_limit_coaching_max: int = 20
    rate_limit_coaching_window_seconds: int = 15 * 60

    cache_ttl_seconds: int = 24 * 60 * 60
    realism_max_calories: float = 3000
    realism_calorie_tolerance: float = 0.4
    outlier_detection_enabled: bool = True
    outlier_auto_correct: bool = True

    fdc_timeout_seconds: float = 15
    estimate_timeout_seconds: float = 30
    rewrite_timeout_seconds: float = 15
    parse_timeout_seconds: float = 15
    vision_timeout_seconds: float = 25

    max_description_length: int = 200
    max_image_bytes: int = 3 * 1024 * 1024
    debug_nutrition: bool = False
    environment: str = _ENVIRONMENT

    model_config = SettingsConfigDict(
        env_file=(f".env.{_ENVIRONMENT}", ".env"),
        extra="ignore",
    )

    def rate_limit_policies(self) -> dict[EndpointClass, RateLimitPolicy]:
        """Build per-class request budgets from the flat settings."""
        return {
            endpoint_class: RateLimitPolicy(
                max_requests=getattr(self, f"rate_limit_{endpoint_class.value}_max"),
                window_seconds=getattr(
                    self, f"rate_limit_{endpoint_class.value}_window_seconds"
                ),
            )
            for endpoint_class in EndpointClass
        }

    def realism_policy(self) -> RealismPolicy:
        return RealismPolicy(
            max_calories=self.realism_max_calories,
            calorie_tolerance=self.realism_calorie_tolerance,
        )

    def outlier_detector(self) -> OutlierDetector | None:
        """None when outlier detection is switched off."""
        if not self.outlier_detection_enabled:
            return None
        return OutlierDetector.from_policy(
            self.realism_policy(), auto_correct=self.outlier_auto_correct
        )


def parse_allowed_origins(raw: str | None) -> list[str]:
    """Parse allowed CORS origins from env."""
    if raw is None:
        return []
    cleaned = raw.strip()
    if cleaned == "*":
        return ["*"]
    origins: list[str] = []
    for chunk in cleaned.split(","):
        value = chunk.strip().rstrip("/")
        if value and value not in origins:
            origins.append(value)
    return origins
