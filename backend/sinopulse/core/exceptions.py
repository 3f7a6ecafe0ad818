class SinoPulseError(Exception):
    """Base exception for the SinoUS Pulse backend."""

    pass


class ArtifactNotFoundError(SinoPulseError):
    """Raised when a key does not exist in the artifact store."""

    def __init__(self, key: str):
        self.key = key
        super().__init__(f"Artifact not found: {key}")


class TransientStoreError(SinoPulseError):
    """Raised when the artifact store is unreachable or returns an unexpected failure."""

    def __init__(self, key: str, reason: str):
        self.key = key
        self.reason = reason
        super().__init__(f"Store operation failed for '{key}': {reason}")


class PermissionDeniedError(SinoPulseError):
    """Raised when generation is requested by a caller that may not generate."""

    pass


class MalformedArtifactError(SinoPulseError):
    """Raised when a generated or stored document fails artifact validation."""

    pass


class IndexCorruptError(SinoPulseError):
    """Raised when the library index document cannot be parsed."""

    pass


class GenerationError(SinoPulseError):
    """Raised when the generation backend fails to produce a document."""

    def __init__(self, message: str, status_code: int | None = None, code: str = "generation_failed"):
        self.status_code = status_code
        self.code = code
        super().__init__(message)
