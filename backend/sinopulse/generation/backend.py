"""GenerationBackend Protocol: the seam between the archive cache and the model.

The comparison service treats generation as an opaque call that returns a
decoded JSON document shaped like a ComparisonArtifact, or raises
GenerationError. Implementations:
- AnthropicGenerationBackend: production, Claude via the anthropic SDK
- GenerationFake: deterministic scenarios for tests and local development
"""

from typing import Protocol, runtime_checkable

from sinopulse.core.config import Settings


@runtime_checkable
class GenerationBackend(Protocol):
    """Produces a comparison document for a request."""

    async def generate(self, request_text: str, locale: str) -> dict:
        """Generate a comparison document.

        Args:
            request_text: Free-text metric, e.g. "GDP per capita"
            locale: Locale tag for titles and narrative ("en", "zh")

        Returns:
            Decoded JSON object (camelCase artifact fields)

        Raises:
            GenerationError: backend failed, timed out or refused
            MalformedArtifactError: backend answered with something that is not JSON
        """
        ...


def build_generation_backend(settings: Settings) -> GenerationBackend:
    """Select the backend named by settings.generation_backend."""
    if settings.generation_backend == "fake":
        from sinopulse.generation.fake import GenerationFake

        return GenerationFake()

    if settings.generation_backend == "anthropic":
        from sinopulse.generation.anthropic_backend import AnthropicGenerationBackend

        return AnthropicGenerationBackend.from_settings(settings)

    raise ValueError(f"Unknown generation backend: {settings.generation_backend}")
