"""Error taxonomy for the generation pipeline.

Propagation policy:
    - `InvalidRequest` is a caller error and is raised straight to the caller.
    - `GenerationCancelled` is raised only when the caller set the run's
      cancel event.
    - `ImageSynthesisFailed` is recorded by the orchestrator and causes
      image-dependent providers to be skipped.
    - Every `ProviderError` is downgraded by the orchestrator to
      "try the next provider".
"""


class PipelineError(RuntimeError):
    """Base class for all pipeline errors."""


class InvalidRequest(PipelineError):
    """Request carries neither a prompt nor a source image."""


class GenerationCancelled(PipelineError):
    """Caller abandoned the run at a cancellation checkpoint."""


class ImageSynthesisFailed(PipelineError):
    """Text-to-image call errored or returned no binary payload."""


class ProviderError(PipelineError):
    """Provider-level failure. Never fatal to the pipeline."""

    def __init__(self, provider_id: str, message: str):
        super().__init__(f"{provider_id}: {message}")
        self.provider_id = provider_id
        self.reason = message


class ProviderUnavailable(ProviderError):
    """Missing credential or endpoint configuration."""


class ProviderRequestFailed(ProviderError):
    """Transport failure or non-success HTTP status."""


class TaskFailed(ProviderError):
    """Remote task explicitly reported failure."""


class TaskTimedOut(ProviderError):
    """Attempt budget exhausted without a terminal status."""


class NoModelReference(ProviderError):
    """Success response did not carry a model reference."""
