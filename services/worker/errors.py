from __future__ import annotations


class GenerationError(RuntimeError):
    """Base for every fatal condition raised while handling a content request."""

    code = "internal"

    def to_error(self) -> dict[str, str]:
        return {"code": self.code, "message": str(self)}


class ConfigurationError(GenerationError):
    code = "configuration"


class InputBuildError(ConfigurationError):
    code = "invalid_input"


class AdmissionDenied(GenerationError):
    code = "admission_denied"

    def __init__(self, message: str, *, limit: str) -> None:
        super().__init__(message)
        self.limit = limit


class ProviderError(GenerationError):
    code = "provider_error"

    def __init__(self, message: str, *, provider: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.provider = provider
        self.status_code = status_code


class TrainingServiceError(GenerationError):
    code = "training_error"


class DispatchFailed(GenerationError):
    """Every attempted generation task for a request failed."""

    code = "dispatch_failed"
