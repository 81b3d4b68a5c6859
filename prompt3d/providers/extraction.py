"""Ordered extraction of a model reference from provider JSON payloads.

Providers disagree on where the model reference lives (`data[0].path`,
`data[0].url`, a bare `data[0]` string, `output.model`, ...). Each strategy
below takes the decoded payload and returns the reference or `None`;
`first_reference` runs a strategy tuple in order and the first present value
wins.
"""

from typing import Any, Callable, Iterable

Strategy = Callable[[Any], "str | None"]


def _non_empty_str(value):
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def dig(payload, *keys):
    """Walk nested dict keys / list indexes, returning `None` on any miss."""
    current = payload
    for key in keys:
        if isinstance(key, int):
            if not isinstance(current, list) or not -len(current) <= key < len(current):
                return None
            current = current[key]
        else:
            if not isinstance(current, dict):
                return None
            current = current.get(key)
        if current is None:
            return None
    return current


def at(*keys) -> Strategy:
    """Strategy returning the non-empty string found at `keys`."""
    def strategy(payload):
        return _non_empty_str(dig(payload, *keys))
    strategy.__name__ = "at_" + "_".join(str(k) for k in keys)
    return strategy


def first_reference(payload: Any, strategies: Iterable[Strategy]) -> str | None:
    for strategy in strategies:
        value = strategy(payload)
        if value is not None:
            return value
    return None


# Gradio-style payloads: `{"data": [{"path": ..., "url": ...}]}` or `{"data": ["..."]}`.
PREDICT_STRATEGIES = (
    at("data", 0, "path"),
    at("data", 0, "url"),
    at("data", 0),
)

# Legacy `/api/predict` responses: the reference is the url field or the bare entry.
SYNC_PREDICT_STRATEGIES = (
    at("data", 0, "url"),
    at("data", 0),
)
