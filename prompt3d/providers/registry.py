"""Build the ordered adapter list from provider configuration.

The priority order is policy, not code: it comes from `PROVIDER_ORDER` (or
`DEFAULT_PROVIDER_ORDER`). Disabled providers are left out of the list and
logged; unknown ids raise `KeyError` so a typo in the order is loud.
"""

import logging

from prompt3d.providers.provider_config import load_pipeline_config, load_provider_settings
from prompt3d.providers.session_predict import SessionPredictAdapter
from prompt3d.providers.sync_inference import SyncInferenceAdapter
from prompt3d.providers.task_polling import ReplicateAdapter, Tripo3DAdapter

logger = logging.getLogger(__name__)


def _sync(settings, api_key):
    return SyncInferenceAdapter(
        provider_id=settings.provider_id,
        url=settings.url,
        api_key=api_key,
        image_field=settings.options.get("image_field", "image"),
        form=settings.options.get("form"),
        timeout_seconds=settings.timeout_seconds,
    )


def _poll_kwargs(settings):
    return {
        "poll_interval": settings.poll_interval_seconds,
        "max_attempts": settings.poll_max_attempts,
        "progress_range": tuple(settings.options.get("progress_range", (20, 95))),
        "timeout_seconds": settings.timeout_seconds,
        "auth_scheme": settings.options.get("auth_scheme"),
    }


def _tripo3d(settings, api_key):
    return Tripo3DAdapter(
        provider_id=settings.provider_id,
        url=settings.url,
        status_url=settings.status_url,
        upload_url=settings.upload_url,
        api_key=api_key,
        **_poll_kwargs(settings),
    )


def _replicate(settings, api_key):
    return ReplicateAdapter(
        provider_id=settings.provider_id,
        url=settings.url,
        status_url=settings.status_url,
        api_key=api_key,
        version=settings.options["version"],
        **_poll_kwargs(settings),
    )


def _session(settings, api_key):
    return SessionPredictAdapter(
        provider_id=settings.provider_id,
        url=settings.url,
        api_key=api_key,
        api_name=settings.options.get("api_name", "/predict"),
        parameters=settings.options.get("parameters"),
        timeout_seconds=settings.timeout_seconds,
    )


# Provider id -> adapter builder.
BUILDERS = {
    "stable_fast_3d": _sync,
    "hunyuan3d": _sync,
    "tripo3d": _tripo3d,
    "hunyuan3d_2": _session,
    "replicate_shap_e": _replicate,
}


def build_adapters(order=None, environ=None):
    """Return enabled adapters in priority order.

    Args:
        order: Provider ids in priority order; defaults to the configured order.
        environ: Mapping used for overrides (defaults to `os.environ`).

    Raises:
        KeyError: an id in `order` has no registered builder.
    """
    if order is None:
        order = load_pipeline_config(environ).provider_order

    adapters = []
    for provider_id in order:
        if provider_id not in BUILDERS:
            raise KeyError(f"Unknown provider in order: {provider_id}")

        settings = load_provider_settings(provider_id, environ)
        if not settings.enabled:
            logger.info("Provider %s disabled by configuration", provider_id)
            continue

        adapters.append(BUILDERS[provider_id](settings, settings.api_key))

    return adapters


def describe_providers(order=None, environ=None):
    """Describe every configured provider, enabled or not, for `GET /providers`."""
    if order is None:
        order = load_pipeline_config(environ).provider_order

    described = []
    for provider_id in order:
        settings = load_provider_settings(provider_id, environ)
        described.append({
            "id": provider_id,
            "kind": settings.kind,
            "input": settings.input,
            "enabled": settings.enabled,
            "configured": bool(settings.api_key),
        })
    return described
