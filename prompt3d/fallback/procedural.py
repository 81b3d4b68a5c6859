"""Procedural keyword-to-shape fallback.

Decision model:
    - Rule-based only, no network or filesystem access.
    - Rows are checked in table order; the first row with any keyword contained
      in the lower-cased prompt wins.
    - No match (including empty or missing prompts) yields the default shape.

Determinism:
    Pure function of `(prompt, base)`.
"""

from prompt3d.core.types import PROCEDURAL_PROVIDER_ID, GenerationResult
from prompt3d.providers.provider_config import DEFAULT_FALLBACK_MODEL_BASE

DEFAULT_SHAPE = "cube"

SHAPE_TABLE = (
    (("cube", "box"), "cube"),
    (("sphere", "ball", "globe"), "sphere"),
    (("cylinder", "tube", "can"), "cylinder"),
    (("cone", "pyramid"), "cone"),
    (("torus", "donut", "ring"), "torus"),
)


def match_shape(prompt) -> str:
    lower = (prompt or "").lower()
    for keywords, shape in SHAPE_TABLE:
        if any(keyword in lower for keyword in keywords):
            return shape
    return DEFAULT_SHAPE


class ProceduralFallback:
    """Last-resort generator; `generate` cannot fail."""

    def __init__(self, base: str = DEFAULT_FALLBACK_MODEL_BASE):
        self.base = base.rstrip("/")

    def model_reference(self, shape: str) -> str:
        return f"{self.base}/{shape}.glb"

    def generate(self, prompt) -> GenerationResult:
        return GenerationResult(
            model_reference=self.model_reference(match_shape(prompt)),
            produced_by=PROCEDURAL_PROVIDER_ID,
        )
