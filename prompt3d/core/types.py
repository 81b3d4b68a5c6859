"""Data contracts shared by the orchestrator, adapters and API layers.

Architectural role:
    Defines the request, attempt, progress and result records that flow through
    one pipeline run. Everything here is structural; behavior lives in
    `core.orchestrator` and the provider adapters.

Lifecycle:
    - One `GenerationRequest` yields exactly one `GenerationResult`.
    - `ProviderAttempt` records are frozen; a run appends the terminal copy of
      each attempt to its history and never persists it.
    - `ProviderTask` is owned by the polling adapter and discarded once a
      terminal status is observed.
"""

from __future__ import annotations

import base64
import binascii
import time
from dataclasses import dataclass, field, replace
from enum import Enum
from urllib.parse import unquote_to_bytes

import requests

PROCEDURAL_PROVIDER_ID = "procedural"

# Media subtypes whose usual file extension differs from the subtype.
_EXTENSIONS = {"jpeg": "jpg", "svg+xml": "svg"}


class AttemptStatus(str, Enum):
    PENDING = "pending"
    SUBMITTED = "submitted"
    POLLING = "polling"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"

    @property
    def terminal(self) -> bool:
        return self in (AttemptStatus.SUCCEEDED, AttemptStatus.FAILED, AttemptStatus.TIMED_OUT)


class TaskStatus(str, Enum):
    PROCESSING = "processing"
    SUCCESS = "success"
    FAILED = "failed"


@dataclass(frozen=True)
class ImageReference:
    """Input image either held inline or addressed by URL.

    Exactly one of `data` / `url` is set. `url` may be an http(s) URL or a
    `data:` URL.
    """

    data: bytes | None = None
    url: str | None = None
    media_type: str = "image/png"

    def __post_init__(self):
        if (self.data is None) == (self.url is None):
            raise ValueError("ImageReference needs exactly one of data or url")

    @classmethod
    def from_url(cls, url: str) -> "ImageReference":
        return cls(url=url)

    @classmethod
    def from_bytes(cls, data: bytes, media_type: str = "image/png") -> "ImageReference":
        return cls(data=data, media_type=media_type)

    def read_bytes(self, http=None, timeout: float = 30) -> bytes:
        """Return the raw image bytes.

        Inline data is returned as-is, `data:` URLs are decoded locally and
        http(s) URLs are downloaded through `http` (a `requests.Session`-like
        object, defaulting to the `requests` module).
        """
        if self.data is not None:
            return self.data

        if self.url.startswith("data:"):
            header, _, encoded = self.url.partition(",")
            try:
                if header.endswith(";base64"):
                    return base64.b64decode(encoded, validate=True)
            except binascii.Error as err:
                raise ValueError(f"Malformed data URL: {err}") from err
            return unquote_to_bytes(encoded)

        response = (http or requests).get(self.url, timeout=timeout)
        response.raise_for_status()
        return response.content

    @property
    def extension(self) -> str:
        """File extension for `media_type` (`image/jpeg` -> `jpg`)."""
        subtype = self.media_type.split(";")[0].split("/")[-1].strip().lower()
        return _EXTENSIONS.get(subtype, subtype or "png")

    def to_data_url(self, http=None, timeout: float = 30) -> str:
        if self.url is not None and self.url.startswith("data:"):
            return self.url
        encoded = base64.b64encode(self.read_bytes(http, timeout=timeout)).decode("ascii")
        return f"data:{self.media_type};base64,{encoded}"


@dataclass(frozen=True)
class GenerationRequest:
    """Caller input. At least one of `prompt` / `source_image` must be present."""

    prompt: str | None = None
    source_image: ImageReference | None = None

    @property
    def has_prompt(self) -> bool:
        return bool(self.prompt and self.prompt.strip())

    @property
    def is_valid(self) -> bool:
        return self.has_prompt or self.source_image is not None


@dataclass(frozen=True)
class ProviderInput:
    """What one adapter receives: the prompt and, when resolved, the image."""

    prompt: str | None = None
    image: ImageReference | None = None


@dataclass(frozen=True)
class GenerationProgress:
    percent: float
    message: str
    provider_id: str | None = None


@dataclass(frozen=True)
class GenerationResult:
    model_reference: str
    produced_by: str

    @property
    def is_procedural(self) -> bool:
        return self.produced_by == PROCEDURAL_PROVIDER_ID


@dataclass(frozen=True)
class ProviderAttempt:
    provider_id: str
    started_at: float = field(default_factory=time.time)
    status: AttemptStatus = AttemptStatus.PENDING
    last_error: str | None = None

    def advance(self, status: AttemptStatus, error: str | None = None) -> "ProviderAttempt":
        if self.status.terminal:
            raise ValueError(f"Attempt for {self.provider_id} is already {self.status.value}")
        return replace(self, status=status, last_error=error if error is not None else self.last_error)


@dataclass(frozen=True)
class ProviderTask:
    task_id: str
    external_status: TaskStatus = TaskStatus.PROCESSING
    result: str | None = None
    error: str | None = None


@dataclass(frozen=True)
class PipelineRun:
    """Outcome of one orchestrator run with its diagnostic history."""

    result: GenerationResult
    attempts: tuple[ProviderAttempt, ...] = ()
    image_error: str | None = None
