"""Session-protocol adapter for Gradio-style Spaces.

Processing flow:
    1. Open an `httpx.Client` scoped to the Space base URL with a fresh
       session hash.
    2. Issue one predict call for `api_name` with the adapter's named
       parameters, serialized in declaration order.
    3. Extract the model reference through `PREDICT_STRATEGIES`
       (`path` before `url` before a bare string).
    4. Resolve a server-side file path against the Space's file route.

Failure handling:
    - Missing API key/endpoint -> `ProviderUnavailable`
    - `{"error": ...}` payload -> `TaskFailed`
    - No reference in payload -> `NoModelReference`
    - Transport/status errors are converted by the base class.

Resources:
    The client is used as a context manager, so the connection pool is closed
    on success, failure and timeout alike.
"""

import logging
import uuid

import httpx

from prompt3d.core.errors import NoModelReference, ProviderUnavailable, TaskFailed
from prompt3d.core.types import AttemptStatus, ProviderInput
from prompt3d.providers.base import INPUT_IMAGE, AttemptContext, ProviderAdapter, auth_headers
from prompt3d.providers.extraction import PREDICT_STRATEGIES, first_reference

logger = logging.getLogger(__name__)


class SessionPredictAdapter(ProviderAdapter):
    """One predict call over a provider-scoped HTTP session."""

    kind = "session"

    def __init__(
        self,
        provider_id: str,
        url: str,
        api_key: str | None,
        api_name: str = "/predict",
        parameters: dict | None = None,
        timeout_seconds: float = 180,
        strategies=PREDICT_STRATEGIES,
        transport: httpx.BaseTransport | None = None,
    ):
        super().__init__(provider_id, INPUT_IMAGE, timeout_seconds)
        self.url = url.rstrip("/") if url else url
        self.api_key = api_key
        self.api_name = api_name if api_name.startswith("/") else f"/{api_name}"
        self.parameters = dict(parameters or {})
        self.strategies = strategies
        self._transport = transport

    def check_available(self) -> None:
        if not self.api_key:
            raise ProviderUnavailable(self.provider_id, "API key not configured")
        if not self.url:
            raise ProviderUnavailable(self.provider_id, "endpoint not configured")

    def build_parameters(self, inputs: ProviderInput, timeout: float = 30) -> dict:
        """Named predict parameters; the image is sent as a Gradio file payload.

        A remote input image is downloaded within `timeout` seconds.
        """
        params = {
            "caption": inputs.prompt or None,
            "image": {
                "url": inputs.image.to_data_url(timeout=timeout),
                "orig_name": f"input.{inputs.image.extension}",
                "meta": {"_type": "gradio.FileData"},
            },
        }
        params.update(self.parameters)
        return params

    def _generate(self, inputs: ProviderInput, context: AttemptContext) -> str:
        session_hash = uuid.uuid4().hex[:11]
        params = self.build_parameters(inputs, timeout=context.http_timeout())

        context.report(40, f"Opening {self.provider_id} session...")
        with httpx.Client(
            base_url=self.url,
            headers=auth_headers(self.api_key),
            timeout=context.http_timeout(),
            transport=self._transport,
        ) as client:
            context.checkpoint()
            context.mark(AttemptStatus.SUBMITTED)
            context.report(50, f"Running {self.api_name} on {self.provider_id}...")

            response = client.post(
                f"/run{self.api_name}",
                json={"data": list(params.values()), "session_hash": session_hash},
            )
            response.raise_for_status()
            payload = response.json()

        context.report(90, "Finalizing model...")

        if isinstance(payload, dict) and payload.get("error"):
            raise TaskFailed(self.provider_id, str(payload["error"]))

        model_reference = first_reference(payload, self.strategies)
        if not model_reference:
            raise NoModelReference(self.provider_id, "no model path or url in predict result")

        return self.resolve_file(model_reference)

    def resolve_file(self, reference: str) -> str:
        """Turn a server-side file path into a URL served by the Space."""
        if reference.startswith(("http://", "https://", "data:")):
            return reference
        return f"{self.url}/file={reference}"
