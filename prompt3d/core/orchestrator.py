"""Provider-fallback generation pipeline.

Architectural role:
    Turns one `GenerationRequest` into exactly one `GenerationResult` by trying
    the configured provider adapters in priority order and falling back to the
    procedural generator when every provider fails or is skipped.

Control-flow model:
    1. Validate the request (`InvalidRequest` when prompt and image are both
       missing).
    2. For each adapter in order:
       a. cancellation checkpoint;
       b. skip prompt-only adapters when there is no prompt and adapters
          whose credentials or endpoints are missing;
       c. emit "starting" progress;
       d. for image adapters, resolve the input image (synthesized at most
          once per run; a synthesis failure skips every image adapter);
       e. `submit_and_await` under the adapter's timeout budget;
       f. first success wins and returns immediately.
    3. Procedural fallback, which cannot fail.

Error handling strategy:
    Every `ProviderError` is logged and downgraded to "try the next provider".
    `ImageSynthesisFailed` is recorded on the run. Only `InvalidRequest` and
    caller-requested `GenerationCancelled` escape. Any other exception is a
    defect and is left to propagate.

Concurrency:
    Runs are strictly sequential internally. All per-run state (attempt
    history, resolved image, progress clamp) lives in a `_RunState` owned by a
    single call, so one orchestrator can serve concurrent requests.
"""

import logging
import threading
from typing import Callable

from prompt3d.core.errors import (
    GenerationCancelled,
    ImageSynthesisFailed,
    InvalidRequest,
    ProviderError,
    ProviderUnavailable,
    TaskTimedOut,
)
from prompt3d.core.types import (
    PROCEDURAL_PROVIDER_ID,
    AttemptStatus,
    GenerationProgress,
    GenerationRequest,
    GenerationResult,
    PipelineRun,
    ProviderAttempt,
    ProviderInput,
)
from prompt3d.fallback.procedural import ProceduralFallback
from prompt3d.image.source import ImageSource
from prompt3d.providers.base import INPUT_PROMPT, AttemptContext, ProviderAdapter
from prompt3d.providers.provider_config import load_pipeline_config
from prompt3d.providers.registry import build_adapters

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[GenerationProgress], None]

STARTING_PERCENT = 10
IMAGE_SYNTHESIS_PERCENT = 20


class _RunState:
    """Mutable bookkeeping for a single pipeline run."""

    def __init__(self, request: GenerationRequest, on_progress, cancel_event):
        self.request = request
        self.on_progress = on_progress
        self.cancel_event = cancel_event
        self.attempts: list[ProviderAttempt] = []
        self.current: ProviderAttempt | None = None
        self.image = request.source_image
        self.image_error: str | None = None
        self.image_tried = request.source_image is not None

    def emit(self, percent, message, provider_id=None):
        if self.on_progress is not None:
            self.on_progress(GenerationProgress(percent=percent, message=message, provider_id=provider_id))

    def checkpoint(self):
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise GenerationCancelled("Run cancelled before next provider")

    def start(self, provider_id):
        self.current = ProviderAttempt(provider_id=provider_id)

    def mark(self, status: AttemptStatus):
        if self.current is not None and not self.current.status.terminal:
            self.current = self.current.advance(status)

    def finish(self, status: AttemptStatus, error: str | None = None):
        self.current = self.current.advance(status, error)
        self.attempts.append(self.current)
        self.current = None

    def skip(self, provider_id, reason):
        self.start(provider_id)
        self.finish(AttemptStatus.FAILED, f"skipped: {reason}")


class PipelineOrchestrator:
    """Ordered provider attempts with an unconditional procedural fallback."""

    def __init__(
        self,
        adapters: list[ProviderAdapter] | None = None,
        image_source: ImageSource | None = None,
        fallback: ProceduralFallback | None = None,
        config=None,
    ):
        config = config or load_pipeline_config()
        self.adapters = list(adapters) if adapters is not None else build_adapters(config.provider_order)
        self.image_source = image_source or ImageSource()
        self.fallback = fallback or ProceduralFallback(config.fallback_model_base)

    def generate(
        self,
        request: GenerationRequest,
        on_progress: ProgressCallback | None = None,
        cancel_event: threading.Event | None = None,
    ) -> GenerationResult:
        """Return the first provider's result, or the procedural fallback.

        Raises:
            InvalidRequest: neither prompt nor image supplied.
            GenerationCancelled: `cancel_event` was set by the caller.
        """
        return self.run(request, on_progress=on_progress, cancel_event=cancel_event).result

    def run(
        self,
        request: GenerationRequest,
        on_progress: ProgressCallback | None = None,
        cancel_event: threading.Event | None = None,
    ) -> PipelineRun:
        """Like `generate`, but also return the attempt history."""
        if request is None or not request.is_valid:
            raise InvalidRequest("A text prompt or an image is required.")

        state = _RunState(request, on_progress, cancel_event)

        for adapter in self.adapters:
            state.checkpoint()
            result = self._try_provider(adapter, state)
            if result is not None:
                return self._finish(state, result)

        logger.info(
            "All %d providers failed or were skipped; using procedural fallback",
            len(self.adapters),
        )
        state.emit(100, "Using procedural generation...", PROCEDURAL_PROVIDER_ID)
        return self._finish(state, self.fallback.generate(request.prompt or ""))

    def _try_provider(self, adapter: ProviderAdapter, state: _RunState) -> GenerationResult | None:
        provider_id = adapter.provider_id

        if adapter.input_kind == INPUT_PROMPT and not state.request.has_prompt:
            state.skip(provider_id, "provider needs a text prompt")
            return None

        try:
            adapter.check_available()
        except ProviderUnavailable as err:
            state.skip(provider_id, err.reason)
            logger.debug("Skipping %s: %s", provider_id, err.reason)
            return None

        state.emit(STARTING_PERCENT, f"Trying {provider_id}...", provider_id)

        if adapter.requires_image and self._resolve_image(state) is None:
            state.skip(provider_id, state.image_error or "no input image")
            logger.warning("Skipping %s: no input image (%s)", provider_id, state.image_error)
            return None

        state.start(provider_id)
        context = AttemptContext(
            provider_id=provider_id,
            timeout_budget=adapter.timeout_seconds,
            report=lambda percent, message: state.emit(percent, message, provider_id),
            mark=state.mark,
            cancel_event=state.cancel_event,
        )
        inputs = ProviderInput(prompt=state.request.prompt, image=state.image)

        try:
            model_reference = adapter.submit_and_await(inputs, context)
        except TaskTimedOut as err:
            state.finish(AttemptStatus.TIMED_OUT, err.reason)
            logger.warning("Provider %s timed out: %s", provider_id, err.reason)
            return None
        except ProviderError as err:
            state.finish(AttemptStatus.FAILED, f"{type(err).__name__}: {err.reason}")
            logger.warning("Provider %s failed: %s: %s", provider_id, type(err).__name__, err.reason)
            return None

        state.finish(AttemptStatus.SUCCEEDED)
        logger.info("Provider %s produced %s", provider_id, model_reference)
        state.emit(100, "Model generated successfully!", provider_id)
        return GenerationResult(model_reference=model_reference, produced_by=provider_id)

    def _resolve_image(self, state: _RunState):
        if state.image is not None or state.image_tried:
            return state.image

        state.image_tried = True
        state.emit(IMAGE_SYNTHESIS_PERCENT, "Generating image from prompt...")
        try:
            state.image = self.image_source.resolve(state.request.prompt)
        except ImageSynthesisFailed as err:
            state.image_error = str(err)
            logger.warning("Image synthesis failed: %s", err)
        return state.image

    def _finish(self, state: _RunState, result: GenerationResult) -> PipelineRun:
        return PipelineRun(
            result=result,
            attempts=tuple(state.attempts),
            image_error=state.image_error,
        )
