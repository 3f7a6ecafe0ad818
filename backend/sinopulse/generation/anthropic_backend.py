"""AnthropicGenerationBackend: Claude-powered comparison generation.

Architecture:
- Direct anthropic.AsyncAnthropic messages.create call (no agent framework)
- asyncio.wait_for wraps the API call with settings.generation_timeout_seconds
- Markdown code fences are stripped before json.loads
- No retry here: a failure propagates to the caller as GenerationError and the
  user decides whether to try again
"""

import asyncio
import json

import anthropic
import structlog

from sinopulse.core.config import Settings
from sinopulse.core.exceptions import GenerationError, MalformedArtifactError
from sinopulse.generation.prompts import build_prompt

logger = structlog.get_logger(__name__)


def _strip_json_fences(content: str) -> str:
    """Remove markdown code fences wrapping JSON output."""
    content = content.strip()
    if content.startswith("```"):
        first_newline = content.find("\n")
        if first_newline != -1:
            content = content[first_newline + 1 :]
        if content.endswith("```"):
            content = content[:-3].rstrip()
    return content


class AnthropicGenerationBackend:
    """GenerationBackend backed by the Anthropic Messages API."""

    def __init__(
        self,
        api_key: str,
        model: str,
        timeout_seconds: float = 120.0,
        max_tokens: int = 16000,
        client: anthropic.AsyncAnthropic | None = None,
    ) -> None:
        self._model = model
        self._timeout_seconds = timeout_seconds
        self._max_tokens = max_tokens
        self._client = client or anthropic.AsyncAnthropic(api_key=api_key)

    @classmethod
    def from_settings(cls, settings: Settings) -> "AnthropicGenerationBackend":
        return cls(
            api_key=settings.anthropic_api_key,
            model=settings.generation_model,
            timeout_seconds=settings.generation_timeout_seconds,
            max_tokens=settings.generation_max_tokens,
        )

    async def generate(self, request_text: str, locale: str) -> dict:
        system, messages = build_prompt(request_text, locale)
        logger.info("generation_started", model=self._model, locale=locale, request=request_text[:80])

        try:
            response = await asyncio.wait_for(
                self._client.messages.create(
                    model=self._model,
                    max_tokens=self._max_tokens,
                    system=system,
                    messages=messages,
                ),
                timeout=self._timeout_seconds,
            )
        except asyncio.TimeoutError as exc:
            raise GenerationError(
                f"Generation timed out after {self._timeout_seconds:.0f}s",
                status_code=504,
                code="generation_timeout",
            ) from exc
        except anthropic.APIStatusError as exc:
            raise GenerationError(
                f"Generation backend returned {exc.status_code}",
                status_code=exc.status_code,
                code="backend_error",
            ) from exc
        except anthropic.APIError as exc:
            raise GenerationError(
                f"Generation backend unavailable: {type(exc).__name__}",
                code="backend_unavailable",
            ) from exc

        raw_text = "".join(getattr(block, "text", "") for block in response.content)
        if not raw_text.strip():
            raise GenerationError("Empty response from generation backend", code="empty_response")

        try:
            payload = json.loads(_strip_json_fences(raw_text))
        except ValueError as exc:
            raise MalformedArtifactError(f"Generation backend returned invalid JSON: {exc}") from exc
        if not isinstance(payload, dict):
            raise MalformedArtifactError(f"Generation backend returned {type(payload).__name__}, expected object")

        logger.info(
            "generation_completed",
            model=self._model,
            locale=locale,
            sample_count=len(payload.get("data") or []),
        )
        return payload
