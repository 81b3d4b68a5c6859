"""Text-to-image HTTP client.

Processing flow:
    1. Resolve active text-to-image provider config from
       `providers.provider_config`.
    2. Load API key from configured key file / environment.
    3. Submit the prompt (with the provider's render-style suffix).
    4. Return the binary image payload or raise on failure.

Error handling strategy:
    - Unknown provider / missing key -> `ImageSynthesisFailed`
    - Transport errors and non-200 responses -> `ImageSynthesisFailed`
    - Empty or non-image body -> `ImageSynthesisFailed`

Determinism:
    Request assembly is deterministic for fixed inputs/configuration. The
    returned image is provider dependent.
"""

import logging

import requests

from prompt3d.core.errors import ImageSynthesisFailed
from prompt3d.core.types import ImageReference
from prompt3d.providers.provider_config import IMAGE_PROVIDER, IMAGE_PROVIDERS, load_key

logger = logging.getLogger(__name__)


class TextToImageClient:
    """Single-call text-to-image client returning an inline `ImageReference`."""

    def __init__(self, provider=IMAGE_PROVIDER, api_key=None, http=None):
        provider_config = IMAGE_PROVIDERS.get(provider)
        if not provider_config:
            raise ValueError(f"Unknown image provider: {provider}")

        self.provider = provider
        self.url = provider_config["url"]
        self.prompt_suffix = provider_config.get("prompt_suffix", "")
        self.timeout = provider_config.get("timeout_seconds", 60)
        self.api_key = api_key if api_key is not None else load_key(provider_config.get("key_file"))
        self.http = http or requests

    def generate(self, prompt: str) -> ImageReference:
        """Synthesize one image for `prompt`.

        Raises:
            ImageSynthesisFailed: on missing credential, transport error,
                non-200 status or empty/non-image payload.
        """
        if not self.api_key:
            raise ImageSynthesisFailed(f"Image API key not configured for {self.provider}")

        try:
            response = self.http.post(
                self.url,
                json={"inputs": f"{prompt}{self.prompt_suffix}"},
                headers={
                    "Authorization": f"Bearer {self.api_key}",
                    "Content-Type": "application/json",
                    "Accept": "image/png",
                },
                timeout=self.timeout,
            )
        except requests.RequestException as err:
            raise ImageSynthesisFailed(f"Image request failed: {err}") from err

        if response.status_code != 200:
            raise ImageSynthesisFailed(
                f"Image request failed with status {response.status_code}"
            )

        content_type = response.headers.get("Content-Type", "image/png").split(";")[0].strip()
        if not response.content or not content_type.startswith("image/"):
            raise ImageSynthesisFailed(
                f"Image provider returned no binary payload (content type {content_type})"
            )

        logger.debug("Synthesized %d byte image via %s", len(response.content), self.provider)
        return ImageReference.from_bytes(response.content, media_type=content_type)
