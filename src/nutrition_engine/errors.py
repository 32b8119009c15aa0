"""Error taxonomy shared by services, adapters and the HTTP layer."""

from collections.abc import Mapping


class NutritionEngineError(Exception):
    """Base error carrying a stable machine-readable code and HTTP status."""

    status_code = 500
    code = "UNEXPECTED_ERROR"

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        status_code: int | None = None,
        details: Mapping[str, object] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code
        self.details: dict[str, object] = dict(details or {})

    def to_payload(self) -> dict[str, object]:
        """Render the error as a JSON-serializable body."""
        return {"error": self.message, "code": self.code, **self.details}


class InputError(NutritionEngineError):
    """Missing, empty or oversized client input."""

    status_code = 400
    code = "MISSING_INPUT"


class ConfigError(NutritionEngineError):
    """Server-side configuration is incomplete."""

    status_code = 500
    code = "SERVER_CONFIG_ERROR"


class UpstreamError(NutritionEngineError):
    """Non-2xx response or transport failure from an upstream service."""

    status_code = 502
    code = "UPSTREAM_ERROR"

    def __init__(
        self,
        message: str,
        *,
        upstream_status: int | None = None,
        code: str | None = None,
        details: Mapping[str, object] | None = None,
    ) -> None:
        status_code, default_code = _map_upstream_status(upstream_status)
        super().__init__(
            message,
            code=code or default_code,
            status_code=status_code,
            details=details,
        )
        self.upstream_status = upstream_status


class UpstreamTimeoutError(UpstreamError):
    """Upstream call exceeded its deadline."""

    def __init__(self, message: str = "Request timed out") -> None:
        super().__init__(message, code="TIMEOUT")
        self.status_code = 504


class UpstreamParseError(NutritionEngineError):
    """Upstream content could not be parsed into the expected structure."""

    status_code = 502
    code = "PARSE_ERROR"


class NoNutritionDataError(NutritionEngineError):
    """Every resolution strategy came back without usable nutrition."""

    status_code = 502
    code = "NO_DATA"


class RealismError(NutritionEngineError):
    """Nutrition resolved but stayed implausible after one correction."""

    status_code = 422
    code = "REALISM_VALIDATION_FAILED"

    def __init__(
        self,
        message: str,
        *,
        issues: list[str] | tuple[str, ...] = (),
        details: Mapping[str, object] | None = None,
    ) -> None:
        super().__init__(message, details=details)
        self.issues = list(issues)

    def to_payload(self) -> dict[str, object]:
        return {**super().to_payload(), "issues": self.issues}


class RateLimitedError(NutritionEngineError):
    """Client exceeded the request budget for an endpoint class."""

    status_code = 429
    code = "RATE_LIMITED"

    def __init__(self, retry_after: int, remaining: int = 0) -> None:
        super().__init__(
            "Too many requests. Please try again in a few minutes.",
            details={"retryAfter": retry_after},
        )
        self.retry_after = retry_after
        self.remaining = remaining


def _map_upstream_status(upstream_status: int | None) -> tuple[int, str]:
    """Translate an upstream HTTP status into our status and code."""
    if upstream_status == 429:  # noqa: PLR2004
        return 429, "API_RATE_LIMITED"
    if upstream_status == 401:  # noqa: PLR2004
        return 401, "AUTH_ERROR"
    return 502, "UPSTREAM_ERROR"
