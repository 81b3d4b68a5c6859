"""Submit-then-poll adapters for asynchronous 3D generation APIs.

Processing flow:
    1. Optionally upload the input image and obtain an opaque file token.
    2. Submit a generation task and read back its task id.
    3. Poll the status endpoint every `poll_interval` seconds until the task
       reports success/failure or `max_attempts` ticks have elapsed.
    4. Return the model reference carried by the successful task.

Progress:
    Each poll tick advances reported progress linearly between the adapter's
    `progress_range` bounds.

Failure handling:
    - Missing API key/endpoint -> `ProviderUnavailable`
    - Missing task id in submit response -> `ProviderRequestFailed`
    - Remote task failure -> `TaskFailed`
    - Tick ceiling or wall-clock budget exhausted -> `TaskTimedOut`
    - Success without a reference -> `NoModelReference`
    - HTTP 429 on a poll tick counts as a non-terminal tick.

Performance characteristics:
    Synchronous HTTP with blocking sleep-based polling. This is the only place
    the pipeline suspends repeatedly; cancellation is checked before each tick.
"""

import logging
import time
from abc import abstractmethod

import requests

from prompt3d.core.errors import (
    NoModelReference,
    ProviderRequestFailed,
    ProviderUnavailable,
    TaskFailed,
    TaskTimedOut,
)
from prompt3d.core.types import AttemptStatus, ProviderInput, ProviderTask, TaskStatus
from prompt3d.providers.base import (
    INPUT_IMAGE,
    INPUT_PROMPT,
    AttemptContext,
    ProviderAdapter,
    auth_headers,
)
from prompt3d.providers.extraction import at, dig, first_reference

logger = logging.getLogger(__name__)


class TaskPollingAdapter(ProviderAdapter):
    """Base for upload -> submit -> poll providers.

    Subclasses supply the wire details: `_upload` (optional), `_submit_payload`,
    `_task_id` and `_parse_task`.
    """

    kind = "poll"
    auth_scheme = "Bearer"

    def __init__(
        self,
        provider_id: str,
        input_kind: str,
        url: str,
        status_url: str,
        api_key: str | None,
        poll_interval: float = 5,
        max_attempts: int = 60,
        progress_range: tuple = (20, 95),
        timeout_seconds: float = 330,
        session_factory=requests.Session,
        sleep=time.sleep,
        auth_scheme: str | None = None,
    ):
        super().__init__(provider_id, input_kind, timeout_seconds)
        if auth_scheme:
            self.auth_scheme = auth_scheme
        self.url = url
        self.status_url = status_url
        self.api_key = api_key
        self.poll_interval = poll_interval
        self.max_attempts = max_attempts
        self.progress_low, self.progress_high = progress_range
        self._session_factory = session_factory
        self._sleep = sleep

    def check_available(self) -> None:
        if not self.api_key:
            raise ProviderUnavailable(self.provider_id, "API key not configured")
        if not self.url or not self.status_url:
            raise ProviderUnavailable(self.provider_id, "endpoint not configured")

    @property
    def headers(self) -> dict:
        return auth_headers(self.api_key, self.auth_scheme)

    def _upload(self, session, inputs: ProviderInput, context: AttemptContext):
        """Upload the input and return a file token, or `None` when not needed."""
        return None

    @abstractmethod
    def _submit_payload(self, inputs: ProviderInput, file_token) -> dict:
        ...

    @abstractmethod
    def _task_id(self, payload) -> str | None:
        ...

    @abstractmethod
    def _parse_task(self, task_id: str, payload) -> ProviderTask:
        ...

    def _generate(self, inputs: ProviderInput, context: AttemptContext) -> str:
        session = self._session_factory()
        try:
            file_token = self._upload(session, inputs, context)

            response = session.post(
                self.url,
                json=self._submit_payload(inputs, file_token),
                headers=self.headers,
                timeout=context.http_timeout(),
            )
            response.raise_for_status()
            task_id = self._task_id(response.json())
            if not task_id:
                raise ProviderRequestFailed(self.provider_id, "no task id returned")

            context.mark(AttemptStatus.SUBMITTED)
            context.report(self.progress_low, f"Task {task_id} submitted to {self.provider_id}")
            logger.debug("%s task %s submitted", self.provider_id, task_id)

            return self._await_task(session, task_id, context)
        finally:
            session.close()

    def _await_task(self, session, task_id: str, context: AttemptContext) -> str:
        span = self.progress_high - self.progress_low

        for attempt in range(self.max_attempts):
            context.checkpoint()
            if context.expired():
                raise TaskTimedOut(
                    self.provider_id,
                    f"budget of {context.timeout_budget:g}s exhausted after {attempt} polls",
                )

            self._sleep(self.poll_interval)
            if attempt == 0:
                context.mark(AttemptStatus.POLLING)

            response = session.get(
                f"{self.status_url}{task_id}",
                headers=self.headers,
                timeout=context.http_timeout(),
            )
            percent = self.progress_low + span * (attempt + 1) / self.max_attempts

            if response.status_code == 429:
                logger.debug("%s rate limited while polling %s", self.provider_id, task_id)
                context.report(percent, "Rate limited, waiting...")
                continue

            response.raise_for_status()
            task = self._parse_task(task_id, response.json())
            context.report(percent, "Generating...")

            if task.external_status is TaskStatus.SUCCESS:
                if not task.result:
                    raise NoModelReference(self.provider_id, f"task {task_id} succeeded without a model")
                return task.result

            if task.external_status is TaskStatus.FAILED:
                raise TaskFailed(self.provider_id, task.error or f"task {task_id} failed")

        raise TaskTimedOut(
            self.provider_id, f"no terminal status after {self.max_attempts} polls"
        )


class Tripo3DAdapter(TaskPollingAdapter):
    """Tripo3D OpenAPI: image upload -> `image_to_model` task -> poll."""

    _FAILED = {"failed", "cancelled", "banned", "expired", "unknown"}
    _RESULT_STRATEGIES = (
        at("data", "output", "pbr_model"),
        at("data", "output", "model"),
        at("data", "result", "pbr_model", "url"),
        at("data", "result", "model", "url"),
    )

    def __init__(self, provider_id, url, status_url, upload_url, api_key, **kwargs):
        super().__init__(provider_id, INPUT_IMAGE, url, status_url, api_key, **kwargs)
        self.upload_url = upload_url

    def check_available(self) -> None:
        super().check_available()
        if not self.upload_url:
            raise ProviderUnavailable(self.provider_id, "upload endpoint not configured")

    def _upload(self, session, inputs, context):
        image_bytes = inputs.image.read_bytes(session, timeout=context.http_timeout())
        response = session.post(
            self.upload_url,
            files={"file": (f"input.{inputs.image.extension}", image_bytes, inputs.image.media_type)},
            headers=self.headers,
            timeout=context.http_timeout(),
        )
        response.raise_for_status()
        token = dig(response.json(), "data", "image_token")
        if not token:
            raise ProviderRequestFailed(self.provider_id, "upload returned no image token")
        return token

    def _submit_payload(self, inputs, file_token):
        return {
            "type": "image_to_model",
            "file": {"type": inputs.image.extension, "file_token": file_token},
        }

    def _task_id(self, payload):
        return dig(payload, "data", "task_id")

    def _parse_task(self, task_id, payload):
        status = str(dig(payload, "data", "status") or "").lower()
        if status == "success":
            return ProviderTask(
                task_id=task_id,
                external_status=TaskStatus.SUCCESS,
                result=first_reference(payload, self._RESULT_STRATEGIES),
            )
        if status in self._FAILED:
            return ProviderTask(
                task_id=task_id,
                external_status=TaskStatus.FAILED,
                error=f"task {task_id} {status}",
            )
        return ProviderTask(task_id=task_id)


class ReplicateAdapter(TaskPollingAdapter):
    """Replicate predictions API (Shap-E): prompt prediction -> poll."""

    auth_scheme = "Token"
    _FAILED = {"failed", "canceled"}

    def __init__(self, provider_id, url, status_url, api_key, version,
                 guidance_scale=15.0, num_inference_steps=64, **kwargs):
        super().__init__(provider_id, INPUT_PROMPT, url, status_url, api_key, **kwargs)
        self.version = version
        self.guidance_scale = guidance_scale
        self.num_inference_steps = num_inference_steps

    def _submit_payload(self, inputs, file_token):
        return {
            "version": self.version,
            "input": {
                "prompt": inputs.prompt,
                "guidance_scale": self.guidance_scale,
                "num_inference_steps": self.num_inference_steps,
            },
        }

    def _task_id(self, payload):
        return dig(payload, "id")

    def _parse_task(self, task_id, payload):
        status = str(dig(payload, "status") or "").lower()
        if status == "succeeded":
            output = dig(payload, "output")
            if isinstance(output, list):
                output = output[0] if output else None
            return ProviderTask(
                task_id=task_id,
                external_status=TaskStatus.SUCCESS,
                result=output if isinstance(output, str) and output else None,
            )
        if status in self._FAILED:
            return ProviderTask(
                task_id=task_id,
                external_status=TaskStatus.FAILED,
                error=str(dig(payload, "error") or f"prediction {task_id} {status}"),
            )
        return ProviderTask(task_id=task_id)
