"""Tests for estimator prompting and response parsing."""

import asyncio

import pytest

from nutrition_engine.domain.nutrition import NutritionSource, Provenance
from nutrition_engine.errors import UpstreamParseError
from nutrition_engine.services.estimator import (
    GenerativeEstimator,
    extract_json_object,
    parse_nutrition,
)
from tests.conftest import FakeCompletionClient, nutrition_json


def test_extract_json_object_ignores_surrounding_prose() -> None:
    content = 'Sure! ```json\n{"calories": 95, "protein": 0.5}\n``` Enjoy.'

    assert extract_json_object(content) == {"calories": 95, "protein": 0.5}


def test_extract_json_object_without_object_raises() -> None:
    with pytest.raises(UpstreamParseError) as exc_info:
        extract_json_object("I cannot help with that.")

    assert exc_info.value.code == "PARSE_ERROR"


def test_parse_nutrition_rejects_negative_macros() -> None:
    with pytest.raises(UpstreamParseError) as exc_info:
        parse_nutrition(
            nutrition_json(-5, 1, 1, 1),
            Provenance(source=NutritionSource.GENERATIVE_ESTIMATE),
        )

    assert exc_info.value.code == "INVALID_VALUES"


def test_parse_nutrition_keeps_micronutrients() -> None:
    record = parse_nutrition(
        nutrition_json(105, 1.3, 27, 0.4, potassium=422, vitaminC="n/a"),
        Provenance(source=NutritionSource.GENERATIVE_ESTIMATE),
    )

    assert record.calories == 105
    assert record.potassium_mg == 422
    assert record.vitamin_c_mg is None
    assert record.source is NutritionSource.GENERATIVE_ESTIMATE


def test_estimate_uses_bounded_completion() -> None:
    client = FakeCompletionClient(
        replies={"estimate": nutrition_json(105, 1.3, 27, 0.4)}
    )
    estimator = GenerativeEstimator(client=client)

    record = asyncio.run(estimator.estimate("1 medium banana"))

    kind, messages, options = client.calls[0]
    assert kind == "estimate"
    assert "1 medium banana" in str(messages[1]["content"])
    assert options == {"temperature": 0.2, "max_tokens": 500, "timeout_seconds": 30}
    assert record.calories == 105


def test_correct_sends_issues_and_marks_provenance() -> None:
    client = FakeCompletionClient(
        replies={"correct": nutrition_json(206, 4.3, 45, 0.4)}
    )
    estimator = GenerativeEstimator(client=client)

    record = asyncio.run(
        estimator.correct("1 cup rice", ["Macro-calorie mismatch: way off"])
    )

    _, messages, options = client.calls[0]
    assert "1. Macro-calorie mismatch: way off" in str(messages[1]["content"])
    assert options["temperature"] == 0.1
    assert record.source is NutritionSource.GENERATIVE_CORRECTED


def test_suggest_search_term_strips_quotes() -> None:
    client = FakeCompletionClient(replies={"rewrite": ' "chicken breast cooked"\n'})
    estimator = GenerativeEstimator(client=client)

    term = asyncio.run(estimator.suggest_search_term("grilled chicken"))

    assert term == "chicken breast cooked"
    assert client.calls[0][2]["max_tokens"] == 50


def test_parse_food_sanitizes_output() -> None:
    client = FakeCompletionClient(
        replies={
            "parse": (
                '{"searchQuery": "' + "x" * 150 + '", "servingSizeGrams": -3, '
                '"alternateQueries": ["a", "b", "c", "d"], "preferBranded": true}'
            )
        }
    )
    estimator = GenerativeEstimator(client=client)

    parsed = asyncio.run(estimator.parse_food("mystery", 2, "cups"))

    assert len(parsed.search_query) == 100
    assert parsed.serving_size_grams == 100
    assert parsed.alternate_queries == ("a", "b", "c")
    assert parsed.prefer_branded is True
    assert 'Food: "mystery" | Quantity: 2 | Unit: cups' in str(
        client.calls[0][1][1]["content"]
    )


def test_parse_food_falls_back_to_description() -> None:
    client = FakeCompletionClient(replies={"parse": '{"servingSizeGrams": 186}'})
    estimator = GenerativeEstimator(client=client)

    parsed = asyncio.run(estimator.parse_food("white rice", None, None))

    assert parsed.search_query == "white rice"
    assert parsed.serving_size_grams == 186
    assert parsed.alternate_queries == ()
