"""Shared fakes for adapter and orchestrator tests."""

import requests
import pytest

from prompt3d.core.errors import ProviderUnavailable
from prompt3d.core.types import ImageReference
from prompt3d.providers.base import INPUT_IMAGE, AttemptContext, ProviderAdapter


class FakeResponse:
    """Minimal stand-in for `requests.Response`."""

    def __init__(self, status_code=200, json_data=None, content=b"", headers=None):
        self.status_code = status_code
        self._json = json_data
        self.content = content
        self.headers = headers or {}

    @property
    def text(self):
        return str(self._json) if self._json is not None else self.content.decode("utf-8", "ignore")

    def json(self):
        if self._json is None:
            raise requests.JSONDecodeError("Expecting value", self.text, 0)
        return self._json

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error", response=self)


class FakeSession:
    """Records calls and replays scripted responses.

    `post` / `get` may be lists (consumed in order) or callables taking the URL.
    """

    def __init__(self, post=(), get=()):
        self._post = post if callable(post) else list(post)
        self._get = get if callable(get) else list(get)
        self.posts = []
        self.gets = []
        self.closed = False

    def _next(self, source, url):
        if callable(source):
            return source(url)
        item = source.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    def post(self, url, **kwargs):
        self.posts.append((url, kwargs))
        return self._next(self._post, url)

    def get(self, url, **kwargs):
        self.gets.append((url, kwargs))
        return self._next(self._get, url)

    def close(self):
        self.closed = True


class ScriptedAdapter(ProviderAdapter):
    """Adapter whose outcome is fixed up front.

    `outcome` is either a model reference string or an exception instance to
    raise from the protocol step.
    """

    kind = "scripted"

    def __init__(self, provider_id, outcome, input_kind=INPUT_IMAGE, available=True,
                 timeout_seconds=5, on_call=None):
        super().__init__(provider_id, input_kind, timeout_seconds)
        self.outcome = outcome
        self.available = available
        self.on_call = on_call
        self.calls = 0
        self.inputs = []

    def check_available(self):
        if not self.available:
            raise ProviderUnavailable(self.provider_id, "API key not configured")

    def _generate(self, inputs, context):
        self.calls += 1
        self.inputs.append(inputs)
        if self.on_call is not None:
            self.on_call()
        context.report(50, "working")
        if isinstance(self.outcome, Exception):
            raise self.outcome
        context.report(90, "almost")
        return self.outcome


class Recorder:
    """Collects progress reports and status marks from an `AttemptContext`."""

    def __init__(self):
        self.reports = []
        self.marks = []

    def report(self, percent, message):
        self.reports.append((percent, message))

    def mark(self, status):
        self.marks.append(status)

    @property
    def percents(self):
        return [percent for percent, _ in self.reports]


@pytest.fixture
def recorder():
    return Recorder()


@pytest.fixture
def make_context(recorder):
    def factory(provider_id="test", timeout_budget=60, cancel_event=None, clock=None):
        kwargs = {}
        if clock is not None:
            kwargs["clock"] = clock
        return AttemptContext(
            provider_id=provider_id,
            timeout_budget=timeout_budget,
            report=recorder.report,
            mark=recorder.mark,
            cancel_event=cancel_event,
            **kwargs,
        )
    return factory


@pytest.fixture
def png_image():
    return ImageReference.from_bytes(b"\x89PNG fake image bytes")
