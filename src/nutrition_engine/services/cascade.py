"""Tiered nutrition resolution over the nutrient database and the estimator."""

import logging
from dataclasses import dataclass, replace
from typing import Protocol

from nutrition_engine.domain.nutrition import (
    Candidate,
    FoodQuery,
    NutritionRecord,
    NutritionSource,
    Resolution,
    ValidationResult,
)
from nutrition_engine.errors import (
    ConfigError,
    NoNutritionDataError,
    NutritionEngineError,
    UpstreamError,
    UpstreamParseError,
)
from nutrition_engine.services.cache import Cache, InFlightRequests
from nutrition_engine.services.estimator import (
    MAX_SEARCH_TERM_LENGTH,
    GenerativeEstimator,
)
from nutrition_engine.services.food_database import FoodDatabaseService
from nutrition_engine.services.realism import (
    DEFAULT_POLICY,
    RealismPolicy,
    validate_realism,
)
from nutrition_engine.services.serving import parse_description, parse_serving

_logger = logging.getLogger(__name__)

CACHE_TTL_SECONDS = 24 * 60 * 60


@dataclass(frozen=True)
class StrategyResult:
    """Record produced by one strategy, with the alternatives it saw."""

    record: NutritionRecord
    candidates: tuple[Candidate, ...] = ()


class ResolutionStrategy(Protocol):
    """One step of the cascade."""

    name: str

    async def attempt(self, query: FoodQuery) -> StrategyResult | None:
        """Return a result, None for "no match", or raise an upstream error."""


@dataclass
class AuthoritativeSearchStrategy:
    """Search the nutrient database with the parsed food name."""

    database: FoodDatabaseService
    candidate_limit: int = 5
    name: str = "authoritative_direct"

    async def attempt(self, query: FoodQuery) -> StrategyResult | None:
        candidates = await self.database.search_candidates(
            query.food_name,
            query.serving_grams,
            source=NutritionSource.AUTHORITATIVE_DIRECT,
            limit=self.candidate_limit,
        )
        if not candidates:
            return None
        return StrategyResult(
            record=candidates[0].nutrition, candidates=tuple(candidates)
        )


@dataclass
class AssistedSearchStrategy:
    """Let the estimator rewrite the query, then search the database again."""

    database: FoodDatabaseService
    estimator: GenerativeEstimator
    candidate_limit: int = 5
    name: str = "authoritative_ai_assisted"

    async def attempt(self, query: FoodQuery) -> StrategyResult | None:
        term = await self.estimator.suggest_search_term(query.raw_description)
        if (
            not term
            or len(term) >= MAX_SEARCH_TERM_LENGTH
            or term.lower() == query.food_name.lower()
        ):
            _logger.info(
                "Skipping assisted search for %r (term=%r)", query.food_name, term
            )
            return None
        _logger.info("Assisted search term for %r: %r", query.food_name, term)
        candidates = await self.database.search_candidates(
            term,
            query.serving_grams,
            source=NutritionSource.AUTHORITATIVE_AI_ASSISTED,
            limit=self.candidate_limit,
        )
        if not candidates:
            return None
        return StrategyResult(
            record=candidates[0].nutrition, candidates=tuple(candidates)
        )


@dataclass
class GenerativeEstimateStrategy:
    """Ask the estimator for the nutrition of the described serving."""

    estimator: GenerativeEstimator
    name: str = "generative_estimate"

    async def attempt(self, query: FoodQuery) -> StrategyResult | None:
        record = await self.estimator.estimate(query.raw_description)
        return StrategyResult(record=record)


@dataclass
class ResolutionCascade:
    """Resolves a single food item through ordered strategies.

    Strategies run in order until one yields a record with calories. The
    record then passes a realism gate that allows exactly one corrective
    re-estimate. Authoritative, realism-validated resolutions are cached;
    concurrent identical requests share one in-flight resolution.
    """

    strategies: list[ResolutionStrategy]
    estimator: GenerativeEstimator | None
    cache: Cache
    in_flight: InFlightRequests
    realism_policy: RealismPolicy = DEFAULT_POLICY
    cache_ttl_seconds: int = CACHE_TTL_SECONDS

    @classmethod
    def create(  # noqa: PLR0913
        cls,
        *,
        database: FoodDatabaseService | None,
        estimator: GenerativeEstimator | None,
        cache: Cache,
        in_flight: InFlightRequests,
        realism_policy: RealismPolicy = DEFAULT_POLICY,
        cache_ttl_seconds: int = CACHE_TTL_SECONDS,
        candidate_limit: int = 5,
    ) -> "ResolutionCascade":
        """Build the default database → assisted → generative cascade.

        Strategies whose upstream is not configured are left out.
        """
        strategies: list[ResolutionStrategy] = []
        if database is not None:
            strategies.append(
                AuthoritativeSearchStrategy(database, candidate_limit=candidate_limit)
            )
        if database is not None and estimator is not None:
            strategies.append(
                AssistedSearchStrategy(
                    database, estimator, candidate_limit=candidate_limit
                )
            )
        if estimator is not None:
            strategies.append(GenerativeEstimateStrategy(estimator))
        return cls(
            strategies=strategies,
            estimator=estimator,
            cache=cache,
            in_flight=in_flight,
            realism_policy=realism_policy,
            cache_ttl_seconds=cache_ttl_seconds,
        )

    @property
    def configured(self) -> bool:
        return bool(self.strategies)

    async def resolve(self, description: str) -> Resolution:
        """Resolve a free-text description such as "2 cups of rice"."""
        raw = " ".join(description.split())
        parsed = parse_description(raw)
        query = FoodQuery(
            raw_description=raw,
            food_name=parsed.food_name,
            quantity=parsed.quantity,
            unit=parsed.unit,
            serving_grams=parsed.serving_grams,
        )
        return await self._resolve_shared(f"text:{normalize_key(raw)}", query)

    async def resolve_item(self, name: str, serving: str) -> Resolution:
        """Resolve a named item with a serving string, e.g. from a photo."""
        food_name = " ".join(name.split())
        grams = parse_serving(serving)
        query = FoodQuery(
            raw_description=f"{serving} of {food_name}",
            food_name=food_name,
            quantity=None,
            unit=None,
            serving_grams=grams,
        )
        return await self._resolve_shared(
            f"item:{normalize_key(food_name)}:{grams:g}", query
        )

    async def _resolve_shared(self, key: str, query: FoodQuery) -> Resolution:
        if not self.configured:
            _logger.error("No nutrient database or estimator key configured")
            raise ConfigError("Server configuration error. Please contact support.")
        cached = self.cache.get(key)
        if isinstance(cached, Resolution):
            _logger.info("Nutrition cache hit: key=%s", key)
            return replace(cached, cached=True)
        return await self.in_flight.run(key, lambda: self._resolve_uncached(key, query))

    async def _resolve_uncached(self, key: str, query: FoodQuery) -> Resolution:
        result = await self._run_strategies(query)
        resolution = await self._apply_realism_gate(query, result)
        if resolution.record.source.is_authoritative and resolution.realism_validated:
            self.cache.set(key, resolution, ttl_seconds=self.cache_ttl_seconds)
        else:
            # Keep guesses out so the next identical query retries the database.
            self.cache.evict(key)
        return resolution

    async def _run_strategies(self, query: FoodQuery) -> StrategyResult:
        last_error: NutritionEngineError | None = None
        for strategy in self.strategies:
            try:
                result = await strategy.attempt(query)
            except (UpstreamError, UpstreamParseError) as exc:
                _logger.warning(
                    "Strategy %s failed for %r: %s", strategy.name, query.food_name, exc
                )
                last_error = exc
                continue
            last_error = None
            if result is not None and result.record.calories > 0:
                _logger.info(
                    "Resolved %r via %s (%s)",
                    query.food_name,
                    strategy.name,
                    result.record.provenance.source_description or "estimate",
                )
                return result
        if last_error is not None:
            raise last_error
        raise NoNutritionDataError("Could not estimate nutrition. Try rephrasing.")

    async def _apply_realism_gate(
        self, query: FoodQuery, result: StrategyResult
    ) -> Resolution:
        validation = validate_realism(result.record, self.realism_policy)
        if validation.valid or self.estimator is None:
            if not validation.valid:
                _logger.warning(
                    "Realism failed for %r with no estimator to correct: %s",
                    query.food_name,
                    "; ".join(validation.issues),
                )
            return Resolution(
                query=query,
                record=result.record,
                validation=validation,
                candidates=result.candidates,
            )

        _logger.warning(
            "Realism failed for %r: %s", query.food_name, "; ".join(validation.issues)
        )
        try:
            corrected = await self.estimator.correct(
                query.raw_description, validation.issues
            )
        except (UpstreamError, UpstreamParseError) as exc:
            _logger.warning("Correction failed for %r: %s", query.food_name, exc)
            return Resolution(
                query=query,
                record=result.record,
                validation=validation,
                candidates=result.candidates,
                correction_attempted=True,
            )

        corrected_validation = validate_realism(corrected, self.realism_policy)
        if corrected_validation.valid:
            _logger.info("Correction succeeded for %r", query.food_name)
            return Resolution(
                query=query,
                record=corrected,
                validation=corrected_validation,
                candidates=result.candidates,
                correction_attempted=True,
            )

        _logger.warning(
            "Correction also failed for %r: %s",
            query.food_name,
            "; ".join(corrected_validation.issues),
        )
        record, final_validation = _best_effort(
            (result.record, validation), (corrected, corrected_validation)
        )
        return Resolution(
            query=query,
            record=record,
            validation=final_validation,
            candidates=result.candidates,
            correction_attempted=True,
        )


def normalize_key(text: str) -> str:
    """Normalize a query for cache and in-flight lookups."""
    return " ".join(text.lower().split())


def _best_effort(
    original: tuple[NutritionRecord, ValidationResult],
    corrected: tuple[NutritionRecord, ValidationResult],
) -> tuple[NutritionRecord, ValidationResult]:
    """Prefer the record with fewer violations; ties keep the original."""
    if len(corrected[1].issues) < len(original[1].issues):
        return corrected
    return original
