"""Tests for container wiring."""

import asyncio

import pytest

from nutrition_engine.config import Settings
from nutrition_engine.containers import build_container
from nutrition_engine.errors import ConfigError


def test_build_container_creates_services(settings: Settings) -> None:
    container = build_container(settings)

    assert container.food_database is not None
    assert container.estimator is not None
    assert container.vision_service is not None
    assert container.photo_pipeline is not None
    assert container.cascade.configured
    asyncio.run(container.close_resources())


def test_build_container_without_keys_disables_upstreams() -> None:
    container = build_container(
        Settings(_env_file=None, fdc_api_key=None, estimator_api_key=None)
    )

    assert container.food_database is None
    assert container.estimator is None
    assert container.photo_pipeline is None
    assert not container.cascade.configured
    with pytest.raises(ConfigError):
        asyncio.run(container.cascade.resolve("rice"))
    asyncio.run(container.close_resources())


def test_build_container_applies_realism_settings() -> None:
    container = build_container(
        Settings(_env_file=None, realism_max_calories=1500)
    )

    assert container.cascade.realism_policy.max_calories == 1500


def test_build_container_wires_outlier_settings() -> None:
    enabled = build_container(
        Settings(
            _env_file=None,
            fdc_api_key=None,
            estimator_api_key="estimator-key",
            realism_max_calories=1500,
            outlier_auto_correct=False,
        )
    )
    disabled = build_container(
        Settings(
            _env_file=None,
            fdc_api_key=None,
            estimator_api_key="estimator-key",
            outlier_detection_enabled=False,
        )
    )

    assert enabled.photo_pipeline is not None
    detector = enabled.photo_pipeline.outlier_detector
    assert detector is not None
    assert detector.auto_correct is False
    assert detector.limits["calories"] == 1500
    assert disabled.photo_pipeline is not None
    assert disabled.photo_pipeline.outlier_detector is None
    asyncio.run(enabled.close_resources())
    asyncio.run(disabled.close_resources())
