"""Tests for the session-protocol adapter, driven through `httpx.MockTransport`."""

import json
import threading

import httpx
import pytest

from prompt3d.core.errors import (
    GenerationCancelled,
    NoModelReference,
    ProviderRequestFailed,
    ProviderUnavailable,
    TaskFailed,
    TaskTimedOut,
)
from prompt3d.core.types import AttemptStatus, ImageReference, ProviderInput
from prompt3d.providers.session_predict import SessionPredictAdapter
from tests.conftest import FakeResponse


class RecordingTransport(httpx.MockTransport):
    """Mock transport that remembers requests and whether it was closed."""

    def __init__(self, handler):
        self.requests = []
        self.closed = False

        def recording(request):
            self.requests.append(request)
            return handler(request)

        super().__init__(recording)

    def close(self):
        self.closed = True
        super().close()


def adapter(transport, api_key="hf-key", url="https://space.test/", parameters=None):
    return SessionPredictAdapter(
        provider_id="hunyuan3d_2",
        url=url,
        api_key=api_key,
        api_name="shape_generation",
        parameters=parameters if parameters is not None else {"steps": 30, "seed": 1234},
        transport=transport,
    )


def reply(payload, status_code=200):
    return lambda request: httpx.Response(status_code, json=payload)


def test_predict_call_and_path_resolution(make_context, recorder, png_image):
    transport = RecordingTransport(reply({"data": [{"path": "/tmp/gradio/mesh.glb", "url": None}]}))

    result = adapter(transport).submit_and_await(
        ProviderInput(prompt="a chair", image=png_image), make_context()
    )

    assert result == "https://space.test/file=/tmp/gradio/mesh.glb"

    request = transport.requests[0]
    assert request.method == "POST"
    assert str(request.url) == "https://space.test/run/shape_generation"
    assert request.headers["Authorization"] == "Bearer hf-key"

    body = json.loads(request.content)
    assert len(body["session_hash"]) == 11
    caption, image, steps, seed = body["data"]
    assert caption == "a chair"
    assert image["url"].startswith("data:image/png;base64,")
    assert (steps, seed) == (30, 1234)

    assert recorder.percents == [40, 50, 90]
    assert recorder.marks == [AttemptStatus.SUBMITTED]
    assert transport.closed


def test_path_is_preferred_over_url(make_context, png_image):
    transport = RecordingTransport(reply({
        "data": [{"path": "out/mesh.glb", "url": "https://cdn.test/mesh.glb"}],
    }))

    result = adapter(transport).submit_and_await(ProviderInput(image=png_image), make_context())

    assert result == "https://space.test/file=out/mesh.glb"


def test_absolute_url_is_returned_unchanged(make_context, png_image):
    transport = RecordingTransport(reply({"data": ["https://cdn.test/mesh.glb"]}))

    result = adapter(transport).submit_and_await(ProviderInput(image=png_image), make_context())

    assert result == "https://cdn.test/mesh.glb"


def test_error_payload_is_task_failure(make_context, png_image):
    transport = RecordingTransport(reply({"error": "GPU quota exceeded"}))

    with pytest.raises(TaskFailed, match="GPU quota"):
        adapter(transport).submit_and_await(ProviderInput(image=png_image), make_context())
    assert transport.closed


def test_empty_result_has_no_reference(make_context, png_image):
    transport = RecordingTransport(reply({"data": [None]}))

    with pytest.raises(NoModelReference):
        adapter(transport).submit_and_await(ProviderInput(image=png_image), make_context())


def test_http_status_error(make_context, png_image):
    transport = RecordingTransport(reply({"detail": "not found"}, status_code=404))

    with pytest.raises(ProviderRequestFailed, match="404"):
        adapter(transport).submit_and_await(ProviderInput(image=png_image), make_context())
    assert transport.closed


def test_transport_timeout(make_context, png_image):
    def handler(request):
        raise httpx.ReadTimeout("slow space", request=request)

    transport = RecordingTransport(handler)

    with pytest.raises(TaskTimedOut):
        adapter(transport).submit_and_await(ProviderInput(image=png_image), make_context())
    assert transport.closed


def test_cancelled_before_predict(make_context, png_image):
    cancel_event = threading.Event()
    cancel_event.set()
    transport = RecordingTransport(reply({"data": ["x.glb"]}))

    with pytest.raises(GenerationCancelled):
        adapter(transport).submit_and_await(
            ProviderInput(image=png_image), make_context(cancel_event=cancel_event)
        )
    assert transport.requests == []
    assert transport.closed


def test_missing_key_is_unavailable(make_context, png_image):
    transport = RecordingTransport(reply({}))

    with pytest.raises(ProviderUnavailable):
        adapter(transport, api_key=None).submit_and_await(ProviderInput(image=png_image), make_context())
    assert transport.requests == []


def test_configured_parameters_override_defaults(png_image):
    params = adapter(None, parameters={"caption": "fixed"}).build_parameters(
        ProviderInput(prompt="a chair", image=png_image)
    )

    assert params["caption"] == "fixed"
    assert list(params)[:2] == ["caption", "image"]


def test_remote_image_download_uses_attempt_budget(monkeypatch, make_context):
    downloads = []

    def fake_get(url, **kwargs):
        downloads.append((url, kwargs))
        return FakeResponse(200, content=b"jpeg-bytes")

    monkeypatch.setattr("prompt3d.core.types.requests.get", fake_get)
    transport = RecordingTransport(reply({"data": ["https://cdn.test/mesh.glb"]}))
    image = ImageReference(url="https://images.test/chair.jpg", media_type="image/jpeg")

    adapter(transport).submit_and_await(ProviderInput(image=image), make_context(timeout_budget=7))

    url, kwargs = downloads[0]
    assert url == "https://images.test/chair.jpg"
    assert 0 < kwargs["timeout"] <= 7

    _, payload_image, *_ = json.loads(transport.requests[0].content)["data"]
    assert payload_image["orig_name"] == "input.jpg"
    assert payload_image["url"].startswith("data:image/jpeg;base64,")
