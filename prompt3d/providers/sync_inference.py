"""Synchronous image-to-3D adapter (single blocking multipart call).

Processing flow:
    1. Resolve credential; missing key -> `ProviderUnavailable`.
    2. Read the input image bytes (inline, `data:` URL or download).
    3. POST a multipart form with the image under the provider's field name
       plus fixed form options.
    4. Extract the model reference from the JSON response.

Timeout:
    The whole call gets the attempt's remaining budget as the HTTP timeout.

Error handling strategy:
    - Non-success HTTP status -> `raise_for_status()`, converted by the base
      class into `ProviderRequestFailed`.
    - Response without a reference -> `NoModelReference`.

Resources:
    A fresh `requests.Session` per call, closed on every exit path.
"""

import logging

import requests

from prompt3d.core.errors import NoModelReference, ProviderUnavailable
from prompt3d.core.types import AttemptStatus, ProviderInput
from prompt3d.providers.base import INPUT_IMAGE, AttemptContext, ProviderAdapter, auth_headers
from prompt3d.providers.extraction import SYNC_PREDICT_STRATEGIES, first_reference

logger = logging.getLogger(__name__)


class SyncInferenceAdapter(ProviderAdapter):
    """Upload an image and receive the model reference in the same response."""

    kind = "sync"

    def __init__(
        self,
        provider_id: str,
        url: str,
        api_key: str | None,
        image_field: str = "image",
        form: dict | None = None,
        timeout_seconds: float = 120,
        strategies=SYNC_PREDICT_STRATEGIES,
        session_factory=requests.Session,
    ):
        super().__init__(provider_id, INPUT_IMAGE, timeout_seconds)
        self.url = url
        self.api_key = api_key
        self.image_field = image_field
        self.form = dict(form or {})
        self.strategies = strategies
        self._session_factory = session_factory

    def check_available(self) -> None:
        if not self.api_key:
            raise ProviderUnavailable(self.provider_id, "API key not configured")
        if not self.url:
            raise ProviderUnavailable(self.provider_id, "endpoint not configured")

    def _generate(self, inputs: ProviderInput, context: AttemptContext) -> str:
        session = self._session_factory()
        try:
            image_bytes = inputs.image.read_bytes(session, timeout=context.http_timeout())

            context.report(50, f"Converting image to 3D model with {self.provider_id}...")
            context.mark(AttemptStatus.SUBMITTED)
            response = session.post(
                self.url,
                headers=auth_headers(self.api_key),
                files={self.image_field: (f"input.{inputs.image.extension}", image_bytes, inputs.image.media_type)},
                data=self.form,
                timeout=context.http_timeout(),
            )
            response.raise_for_status()
            payload = response.json()
        finally:
            session.close()

        context.report(90, "Processing 3D model...")

        model_reference = first_reference(payload, self.strategies)
        if not model_reference:
            raise NoModelReference(self.provider_id, "no model URL in response")

        logger.debug("%s returned model reference %s", self.provider_id, model_reference)
        return model_reference
