"""Exception hierarchy for reeltrack."""


class PipelineError(Exception):
    """Base exception for all pipeline errors."""

    status_code = 500

    def extra(self) -> dict:
        return {}


class NotFound(PipelineError):
    """Video or transcript absent, or not owned by the requester."""

    status_code = 404


class AlreadyInProgress(PipelineError):
    """Stage is already processing for this video."""

    status_code = 409


class AlreadyCompleted(PipelineError):
    """Stage already completed with the same request."""

    status_code = 409


class NothingToProcess(PipelineError):
    """Both stages are already completed or running."""

    status_code = 409


class NoValidLanguages(PipelineError):
    """None of the requested languages is supported by the provider."""

    status_code = 400

    def __init__(self, message: str, supported: dict[str, str] | None = None):
        self.supported = supported or {}
        super().__init__(message)

    def extra(self) -> dict:
        return {"supported_languages": sorted(self.supported)}


class ProviderFailure(PipelineError):
    """External transcription or vision provider failed."""

    status_code = 502

    def __init__(self, message: str, provider: str | None = None):
        self.provider = provider
        super().__init__(message)


class VideoExists(PipelineError):
    """A video with this ID is already registered."""

    status_code = 409
