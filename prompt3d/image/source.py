"""Input-image resolution for image-dependent providers.

A caller-supplied image is returned unchanged without any network call.
Otherwise the configured text-to-image client is called exactly once; retry and
fallback decisions belong to the orchestrator.
"""

from prompt3d.core.errors import ImageSynthesisFailed
from prompt3d.core.types import ImageReference
from prompt3d.image.client import TextToImageClient


class ImageSource:

    def __init__(self, client=None):
        self._client = client

    @property
    def client(self):
        if self._client is None:
            self._client = TextToImageClient()
        return self._client

    def resolve(self, prompt: str | None, supplied: ImageReference | None = None) -> ImageReference:
        """Return `supplied` as-is, or synthesize an image from `prompt`.

        Raises:
            ImageSynthesisFailed: no prompt to synthesize from, or the
                text-to-image call failed.
        """
        if supplied is not None:
            return supplied

        if not prompt or not prompt.strip():
            raise ImageSynthesisFailed("No prompt available for image synthesis")

        image = self.client.generate(prompt.strip())
        if image is None or (image.data is not None and not image.data):
            raise ImageSynthesisFailed("Image provider returned no binary payload")
        return image
