"""Provider/runtime configuration for the generation pipeline.

Architectural role:
    Centralizes endpoint, credential and policy settings consumed by
    `providers.registry` (adapter construction), `image.client` (text-to-image)
    and `core.orchestrator` (priority order, fallback base path).

Resolution model:
    - Endpoint maps and policy defaults are module-level dicts.
    - `load_dotenv()` runs at import so `.env` values are visible to
      `os.getenv`.
    - `load_provider_settings` / `load_pipeline_config` read environment
      overrides at call time, so tests and long-running servers can change
      them without re-importing.

Environment overrides (per provider id, upper-cased):
    - `<ID>_URL`, `<ID>_STATUS_URL`, `<ID>_UPLOAD_URL`
    - `<ID>_ENABLED` ("0"/"false"/"no"/"off" disables)
    - `<ID>_TIMEOUT_SECONDS`
    - `<ID>_POLL_INTERVAL_SECONDS`, `<ID>_POLL_MAX_ATTEMPTS`
    - `PROVIDER_ORDER` (comma separated ids), `FALLBACK_MODEL_BASE`

Failure behavior:
    Missing key material is represented as `None`; adapters turn it into
    `ProviderUnavailable`. Unparseable numeric overrides raise `ValueError`.
"""

import os
from dataclasses import dataclass, field

from dotenv import load_dotenv

load_dotenv()


# Default provider priority. Earlier entries are preferred.
DEFAULT_PROVIDER_ORDER = (
    "stable_fast_3d",
    "hunyuan3d",
    "tripo3d",
    "hunyuan3d_2",
    "replicate_shap_e",
)

DEFAULT_FALLBACK_MODEL_BASE = "/models/fallback"

# Image-to-3D and text-to-3D endpoint map.
PROVIDERS = {

    "stable_fast_3d": {
        "kind": "sync",
        "input": "image",
        "url": "https://hf.space/embed/stabilityai/stable-fast-3d/api/predict",
        "key_file": "config/huggingface.key",
        "image_field": "image",
        "form": {"foreground_ratio": "0.85", "texture_resolution": "1024"},
        "timeout_seconds": 120,
    },

    "hunyuan3d": {
        "kind": "sync",
        "input": "image",
        "url": "https://hf.space/embed/Tencent/Hunyuan3D-1/api/predict",
        "key_file": "config/huggingface.key",
        "image_field": "input_image",
        "form": {},
        "timeout_seconds": 150,
    },

    "tripo3d": {
        "kind": "poll",
        "input": "image",
        "url": "https://api.tripo3d.ai/v2/openapi/task",
        "upload_url": "https://api.tripo3d.ai/v2/openapi/upload",
        "status_url": "https://api.tripo3d.ai/v2/openapi/task/",
        "key_file": "config/tripo3d.key",
        "auth_scheme": "Bearer",
        "poll_interval_seconds": 5,
        "poll_max_attempts": 60,
        "progress_range": (20, 95),
        "timeout_seconds": 330,
    },

    "hunyuan3d_2": {
        "kind": "session",
        "input": "image",
        "url": "https://tencent-hunyuan3d-2.hf.space",
        "key_file": "config/huggingface.key",
        "api_name": "/shape_generation",
        "parameters": {
            "steps": 30,
            "guidance_scale": 5.0,
            "seed": 1234,
            "octree_resolution": 256,
            "check_box_rembg": True,
        },
        "timeout_seconds": 180,
    },

    "replicate_shap_e": {
        "kind": "poll",
        "input": "prompt",
        "url": "https://api.replicate.com/v1/predictions",
        "status_url": "https://api.replicate.com/v1/predictions/",
        "key_file": "config/replicate.key",
        "auth_scheme": "Token",
        "version": "cccb3f7308c0a2b6e8c6f4e3e3e3e3e3e3e3e3e3",
        "poll_interval_seconds": 2,
        "poll_max_attempts": 60,
        "progress_range": (30, 90),
        "timeout_seconds": 150,
    },

}

# Text-to-image settings consumed by `image.client`.
IMAGE_PROVIDER = "huggingface"

IMAGE_PROVIDERS = {

    "huggingface": {
        "url": "https://api-inference.huggingface.co/models/stabilityai/stable-diffusion-2-1",
        "key_file": "config/huggingface.key",
        "prompt_suffix": ", 3D render, white background, product photography, high quality",
        "timeout_seconds": 60,
    },

}

_FALSE_VALUES = {"0", "false", "no", "off"}


def load_key(path):
    """Load API key from environment override or key file.

    Resolution order:
        1. Environment variable inferred from file stem (for example
           `config/huggingface.key` -> `HUGGINGFACE_API_KEY`).
        2. Raw file contents at `path`.

    Edge cases:
        - `None` path returns `None`.
        - Missing file returns `None`.
        - Whitespace-only key material returns `None`.
    """
    if not path:
        return None
    key_name = os.path.splitext(os.path.basename(path))[0].upper() + "_API_KEY"
    env_value = os.getenv(key_name)
    if env_value and env_value.strip():
        return env_value.strip()
    if not os.path.exists(path):
        return None
    with open(path, "r") as f:
        return f.read().strip() or None


@dataclass(frozen=True)
class ProviderSettings:
    """Resolved settings for one provider adapter."""

    provider_id: str
    kind: str
    input: str
    url: str
    key_file: str | None = None
    enabled: bool = True
    timeout_seconds: float = 120.0
    poll_interval_seconds: float = 5.0
    poll_max_attempts: int = 60
    status_url: str | None = None
    upload_url: str | None = None
    options: dict = field(default_factory=dict)

    @property
    def api_key(self):
        return load_key(self.key_file)


@dataclass(frozen=True)
class PipelineConfig:
    """Pipeline-wide policy: provider priority and fallback location."""

    provider_order: tuple = DEFAULT_PROVIDER_ORDER
    fallback_model_base: str = DEFAULT_FALLBACK_MODEL_BASE


def _env(provider_id, suffix, environ):
    return environ.get(f"{provider_id.upper()}_{suffix}")


def load_provider_settings(provider_id, environ=None):
    """Resolve settings for `provider_id` from defaults plus env overrides.

    Raises:
        KeyError: `provider_id` is not in `PROVIDERS`.
    """
    environ = os.environ if environ is None else environ
    defaults = PROVIDERS[provider_id]

    enabled_raw = _env(provider_id, "ENABLED", environ)
    enabled = True if enabled_raw is None else enabled_raw.strip().lower() not in _FALSE_VALUES

    def number(suffix, key, cast, fallback):
        raw = _env(provider_id, suffix, environ)
        if raw is not None and raw.strip():
            return cast(raw)
        return cast(defaults.get(key, fallback))

    reserved = {
        "kind", "input", "url", "key_file", "timeout_seconds",
        "poll_interval_seconds", "poll_max_attempts", "status_url", "upload_url",
    }

    return ProviderSettings(
        provider_id=provider_id,
        kind=defaults["kind"],
        input=defaults["input"],
        url=_env(provider_id, "URL", environ) or defaults["url"],
        key_file=defaults.get("key_file"),
        enabled=enabled,
        timeout_seconds=number("TIMEOUT_SECONDS", "timeout_seconds", float, 120),
        poll_interval_seconds=number("POLL_INTERVAL_SECONDS", "poll_interval_seconds", float, 5),
        poll_max_attempts=number("POLL_MAX_ATTEMPTS", "poll_max_attempts", int, 60),
        status_url=_env(provider_id, "STATUS_URL", environ) or defaults.get("status_url"),
        upload_url=_env(provider_id, "UPLOAD_URL", environ) or defaults.get("upload_url"),
        options={k: v for k, v in defaults.items() if k not in reserved},
    )


def load_pipeline_config(environ=None):
    """Resolve pipeline policy from `PROVIDER_ORDER` / `FALLBACK_MODEL_BASE`.

    Unknown ids in `PROVIDER_ORDER` are kept; the registry rejects them when
    building adapters so misconfiguration is loud.
    """
    environ = os.environ if environ is None else environ

    raw_order = environ.get("PROVIDER_ORDER", "")
    order = tuple(p.strip() for p in raw_order.split(",") if p.strip())

    return PipelineConfig(
        provider_order=order or DEFAULT_PROVIDER_ORDER,
        fallback_model_base=environ.get("FALLBACK_MODEL_BASE", DEFAULT_FALLBACK_MODEL_BASE).rstrip("/"),
    )
