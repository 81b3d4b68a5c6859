"""Adapter contract shared by every generation provider.

Architectural role:
    `ProviderAdapter` is the single seam the orchestrator talks to. Concrete
    variants (`sync_inference`, `task_polling`, `session_predict`) implement
    `_generate` over their own wire protocol; the base class converts every
    transport-level exception into the provider error taxonomy so the
    orchestrator can treat all providers identically.

Attempt context:
    `AttemptContext` is created by the orchestrator per attempt. It carries the
    timeout budget and deadline, the progress reporter (clamped so percent never
    decreases within one attempt), the attempt status marker and the
    cancellation checkpoint.
"""

import threading
import time
from abc import ABC, abstractmethod
from typing import Callable

import httpx
import requests

from prompt3d.core.errors import (
    GenerationCancelled,
    NoModelReference,
    ProviderError,
    ProviderRequestFailed,
    ProviderUnavailable,
    TaskTimedOut,
)
from prompt3d.core.types import AttemptStatus, ProviderInput


INPUT_IMAGE = "image"
INPUT_PROMPT = "prompt"


class AttemptContext:
    """Per-attempt budget, progress and cancellation handle."""

    def __init__(
        self,
        provider_id: str,
        timeout_budget: float,
        report: Callable[[float, str], None] | None = None,
        mark: Callable[[AttemptStatus], None] | None = None,
        cancel_event: threading.Event | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.provider_id = provider_id
        self.timeout_budget = timeout_budget
        self.deadline = clock() + timeout_budget
        self._report = report
        self._mark = mark
        self._cancel_event = cancel_event
        self._clock = clock
        self._last_percent = 0.0

    def remaining(self) -> float:
        return max(0.0, self.deadline - self._clock())

    def expired(self) -> bool:
        return self._clock() >= self.deadline

    def http_timeout(self) -> float:
        """Remaining budget as a transport timeout; `TaskTimedOut` once spent."""
        remaining = self.remaining()
        if remaining <= 0:
            raise TaskTimedOut(self.provider_id, f"budget of {self.timeout_budget:g}s exhausted")
        return remaining

    def report(self, percent: float, message: str) -> None:
        percent = min(100.0, max(self._last_percent, float(percent)))
        self._last_percent = percent
        if self._report is not None:
            self._report(percent, message)

    def mark(self, status: AttemptStatus) -> None:
        if self._mark is not None:
            self._mark(status)

    def checkpoint(self) -> None:
        if self._cancel_event is not None and self._cancel_event.is_set():
            raise GenerationCancelled(f"Run cancelled during {self.provider_id}")


class ProviderAdapter(ABC):
    """Uniform `submit_and_await` contract over one provider's protocol.

    Subclasses set `input_kind` and implement `_generate`. `check_available`
    should raise `ProviderUnavailable` before any network traffic when the
    provider cannot possibly succeed (missing credential or endpoint).
    """

    kind = "base"

    def __init__(self, provider_id: str, input_kind: str, timeout_seconds: float):
        self.provider_id = provider_id
        self.input_kind = input_kind
        self.timeout_seconds = timeout_seconds

    @property
    def requires_image(self) -> bool:
        return self.input_kind == INPUT_IMAGE

    def check_available(self) -> None:
        """Raise `ProviderUnavailable` when the provider is not configured."""

    def submit_and_await(self, inputs: ProviderInput, context: AttemptContext) -> str:
        """Run the provider protocol to completion and return a model reference.

        Raises:
            ProviderError: any provider-level failure, including transport
                errors and malformed responses.
            GenerationCancelled: the run was cancelled at a checkpoint.
        """
        self.check_available()

        if self.requires_image and inputs.image is None:
            raise ProviderUnavailable(self.provider_id, "no input image available")
        if self.input_kind == INPUT_PROMPT and not (inputs.prompt and inputs.prompt.strip()):
            raise ProviderUnavailable(self.provider_id, "no prompt available")

        try:
            return self._generate(inputs, context)
        except (ProviderError, GenerationCancelled):
            raise
        except (requests.Timeout, httpx.TimeoutException) as err:
            raise TaskTimedOut(self.provider_id, f"transport timeout: {err}") from err
        except requests.HTTPError as err:
            status = err.response.status_code if err.response is not None else None
            raise ProviderRequestFailed(self.provider_id, f"HTTP error ({status})") from err
        except httpx.HTTPStatusError as err:
            raise ProviderRequestFailed(
                self.provider_id, f"HTTP error ({err.response.status_code})"
            ) from err
        except requests.JSONDecodeError as err:
            # requests' decode error is also a RequestException.
            raise NoModelReference(self.provider_id, f"malformed response: {err}") from err
        except (requests.RequestException, httpx.HTTPError) as err:
            raise ProviderRequestFailed(self.provider_id, f"request failed: {err}") from err
        except ValueError as err:
            raise NoModelReference(self.provider_id, f"malformed response: {err}") from err

    @abstractmethod
    def _generate(self, inputs: ProviderInput, context: AttemptContext) -> str:
        ...


def auth_headers(api_key, scheme="Bearer"):
    """Build the Authorization header dict, empty when no key is configured."""
    if not api_key:
        return {}
    return {"Authorization": f"{scheme} {api_key}"}
