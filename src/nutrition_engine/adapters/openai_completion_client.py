"""OpenAI-compatible chat completions client for the generative estimator."""

import asyncio
from dataclasses import dataclass

import openai
from openai import AsyncOpenAI

from nutrition_engine.errors import UpstreamError, UpstreamTimeoutError
from nutrition_engine.services.estimator import CompletionClient


@dataclass
class OpenAICompletionClient(CompletionClient):
    """Completion client backed by an OpenAI-compatible Chat Completions API."""

    client: AsyncOpenAI
    model: str

    @classmethod
    def create(
        cls, api_key: str, model: str, base_url: str | None = None
    ) -> "OpenAICompletionClient":
        """Create a completion client; retries are left to the cascade."""
        return cls(
            client=AsyncOpenAI(api_key=api_key, base_url=base_url, max_retries=0),
            model=model,
        )

    async def complete(
        self,
        *,
        messages: list[dict[str, object]],
        temperature: float,
        max_tokens: int,
        timeout_seconds: float,
    ) -> str:
        """Run one completion under a hard deadline and return the text."""
        try:
            async with asyncio.timeout(timeout_seconds):
                response = await self.client.chat.completions.create(
                    model=self.model,
                    messages=messages,  # type: ignore[arg-type]
                    temperature=temperature,
                    max_tokens=max_tokens,
                    timeout=timeout_seconds,
                )
        except (TimeoutError, openai.APITimeoutError) as exc:
            raise UpstreamTimeoutError("AI service timed out") from exc
        except openai.APIStatusError as exc:
            raise UpstreamError(
                f"AI service error ({exc.status_code})",
                upstream_status=exc.status_code,
            ) from exc
        except openai.APIConnectionError as exc:
            raise UpstreamError("Failed to reach AI service") from exc

        if not response.choices:
            raise UpstreamError("AI returned empty response", code="EMPTY_RESPONSE")
        content = response.choices[0].message.content
        if not content:
            raise UpstreamError("AI returned empty response", code="EMPTY_RESPONSE")
        return content

    async def close(self) -> None:
        """Close the underlying HTTP session."""
        await self.client.close()
