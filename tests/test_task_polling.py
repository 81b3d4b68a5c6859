"""Tests for the submit-then-poll adapters."""

import itertools
import threading

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
from prompt3d.providers.task_polling import ReplicateAdapter, Tripo3DAdapter
from tests.conftest import FakeResponse, FakeSession


def replicate(session, api_key="r8-key", max_attempts=60, sleeps=None):
    return ReplicateAdapter(
        provider_id="replicate_shap_e",
        url="https://replicate.test/v1/predictions",
        status_url="https://replicate.test/v1/predictions/",
        api_key=api_key,
        version="abc123",
        poll_interval=2,
        max_attempts=max_attempts,
        progress_range=(30, 90),
        timeout_seconds=600,
        session_factory=lambda: session,
        sleep=(sleeps.append if sleeps is not None else (lambda _: None)),
    )


def tripo(session, api_key="tripo-key"):
    return Tripo3DAdapter(
        provider_id="tripo3d",
        url="https://tripo.test/v2/openapi/task",
        status_url="https://tripo.test/v2/openapi/task/",
        upload_url="https://tripo.test/v2/openapi/upload",
        api_key=api_key,
        poll_interval=5,
        max_attempts=60,
        progress_range=(20, 95),
        session_factory=lambda: session,
        sleep=lambda _: None,
    )


def prediction(status, **extra):
    return FakeResponse(200, json_data={"id": "p1", "status": status, **extra})


PROMPT = ProviderInput(prompt="a red chair")


class TestReplicate:

    def test_processing_then_success(self, make_context, recorder):
        sleeps = []
        session = FakeSession(
            post=[FakeResponse(201, json_data={"id": "p1", "status": "starting"})],
            get=[
                prediction("starting"),
                prediction("processing"),
                prediction("processing"),
                prediction("succeeded", output="https://cdn.test/chair.glb"),
            ],
        )

        result = replicate(session, sleeps=sleeps).submit_and_await(PROMPT, make_context())

        assert result == "https://cdn.test/chair.glb"
        assert sleeps == [2, 2, 2, 2]
        assert len(session.gets) == 4
        assert session.gets[0][0] == "https://replicate.test/v1/predictions/p1"
        assert session.closed

        tick_percents = recorder.percents[1:]
        assert len(tick_percents) == 4
        assert all(a < b for a, b in zip(tick_percents, tick_percents[1:]))
        assert recorder.percents[0] == 30
        assert recorder.marks == [AttemptStatus.SUBMITTED, AttemptStatus.POLLING]

    def test_submit_payload_and_auth(self, make_context):
        session = FakeSession(
            post=[FakeResponse(201, json_data={"id": "p1"})],
            get=[prediction("succeeded", output=["https://cdn.test/a.glb", "https://cdn.test/b.glb"])],
        )

        result = replicate(session).submit_and_await(PROMPT, make_context())

        url, kwargs = session.posts[0]
        assert url == "https://replicate.test/v1/predictions"
        assert kwargs["json"]["version"] == "abc123"
        assert kwargs["json"]["input"]["prompt"] == "a red chair"
        assert kwargs["headers"]["Authorization"] == "Token r8-key"
        assert result == "https://cdn.test/a.glb"

    def test_never_terminal_times_out_after_ceiling(self, make_context):
        session = FakeSession(
            post=[FakeResponse(201, json_data={"id": "p1"})],
            get=lambda url: prediction("processing"),
        )

        with pytest.raises(TaskTimedOut, match="5 polls"):
            replicate(session, max_attempts=5).submit_and_await(PROMPT, make_context())

        assert len(session.gets) == 5
        assert session.closed

    def test_remote_failure(self, make_context):
        session = FakeSession(
            post=[FakeResponse(201, json_data={"id": "p1"})],
            get=[prediction("processing"), prediction("failed", error="NSFW content detected")],
        )

        with pytest.raises(TaskFailed, match="NSFW"):
            replicate(session).submit_and_await(PROMPT, make_context())
        assert session.closed

    def test_rate_limited_tick_is_not_terminal(self, make_context):
        session = FakeSession(
            post=[FakeResponse(201, json_data={"id": "p1"})],
            get=[FakeResponse(429), prediction("succeeded", output="https://cdn.test/x.glb")],
        )

        assert replicate(session).submit_and_await(PROMPT, make_context()) == "https://cdn.test/x.glb"

    def test_success_without_output(self, make_context):
        session = FakeSession(
            post=[FakeResponse(201, json_data={"id": "p1"})],
            get=[prediction("succeeded", output=None)],
        )

        with pytest.raises(NoModelReference):
            replicate(session).submit_and_await(PROMPT, make_context())

    def test_missing_task_id(self, make_context):
        session = FakeSession(post=[FakeResponse(201, json_data={"detail": "bad version"})])

        with pytest.raises(ProviderRequestFailed, match="task id"):
            replicate(session).submit_and_await(PROMPT, make_context())

    def test_submit_http_error(self, make_context):
        session = FakeSession(post=[FakeResponse(401, json_data={"detail": "unauthorized"})])

        with pytest.raises(ProviderRequestFailed, match="401"):
            replicate(session).submit_and_await(PROMPT, make_context())
        assert session.closed

    def test_missing_key_is_unavailable(self, make_context):
        session = FakeSession()

        with pytest.raises(ProviderUnavailable):
            replicate(session, api_key=None).submit_and_await(PROMPT, make_context())
        assert session.posts == []

    def test_missing_prompt_is_unavailable(self, make_context):
        with pytest.raises(ProviderUnavailable, match="prompt"):
            replicate(FakeSession()).submit_and_await(ProviderInput(prompt="  "), make_context())

    def test_cancelled_before_first_tick(self, make_context):
        cancel_event = threading.Event()
        cancel_event.set()
        session = FakeSession(post=[FakeResponse(201, json_data={"id": "p1"})])

        with pytest.raises(GenerationCancelled):
            replicate(session).submit_and_await(PROMPT, make_context(cancel_event=cancel_event))

        assert session.gets == []
        assert session.closed

    def test_wall_clock_budget_exhausted(self, make_context):
        clock = itertools.chain([0.0, 1.0], itertools.repeat(50.0))
        session = FakeSession(
            post=[FakeResponse(201, json_data={"id": "p1"})],
            get=lambda url: prediction("processing"),
        )
        context = make_context(timeout_budget=10, clock=lambda: next(clock))

        with pytest.raises(TaskTimedOut, match="budget"):
            replicate(session).submit_and_await(PROMPT, context)
        assert session.gets == []


class TestTripo3D:

    def test_upload_submit_poll(self, make_context, png_image):
        session = FakeSession(
            post=[
                FakeResponse(200, json_data={"code": 0, "data": {"image_token": "tok-1"}}),
                FakeResponse(200, json_data={"code": 0, "data": {"task_id": "t-9"}}),
            ],
            get=[
                FakeResponse(200, json_data={"code": 0, "data": {"status": "queued"}}),
                FakeResponse(200, json_data={"code": 0, "data": {"status": "running"}}),
                FakeResponse(200, json_data={
                    "code": 0,
                    "data": {
                        "status": "success",
                        "output": {"model": "https://tripo.test/m.glb", "pbr_model": "https://tripo.test/pbr.glb"},
                    },
                }),
            ],
        )

        result = tripo(session).submit_and_await(ProviderInput(image=png_image), make_context())

        assert result == "https://tripo.test/pbr.glb"

        upload_url, upload_kwargs = session.posts[0]
        assert upload_url == "https://tripo.test/v2/openapi/upload"
        assert upload_kwargs["files"]["file"][1] == png_image.data

        task_url, task_kwargs = session.posts[1]
        assert task_url == "https://tripo.test/v2/openapi/task"
        assert task_kwargs["json"] == {
            "type": "image_to_model",
            "file": {"type": "png", "file_token": "tok-1"},
        }
        assert task_kwargs["headers"]["Authorization"] == "Bearer tripo-key"
        assert session.gets[-1][0] == "https://tripo.test/v2/openapi/task/t-9"
        assert session.closed

    def test_upload_without_token(self, make_context, png_image):
        session = FakeSession(post=[FakeResponse(200, json_data={"code": 2002, "message": "bad file"})])

        with pytest.raises(ProviderRequestFailed, match="image token"):
            tripo(session).submit_and_await(ProviderInput(image=png_image), make_context())
        assert session.closed

    @pytest.mark.parametrize("status", ["failed", "cancelled", "banned", "expired"])
    def test_terminal_failures(self, make_context, png_image, status):
        session = FakeSession(
            post=[
                FakeResponse(200, json_data={"data": {"image_token": "tok"}}),
                FakeResponse(200, json_data={"data": {"task_id": "t"}}),
            ],
            get=[FakeResponse(200, json_data={"data": {"status": status}})],
        )

        with pytest.raises(TaskFailed, match=status):
            tripo(session).submit_and_await(ProviderInput(image=png_image), make_context())

    def test_requires_image(self, make_context):
        with pytest.raises(ProviderUnavailable, match="image"):
            tripo(FakeSession()).submit_and_await(ProviderInput(prompt="x"), make_context())

    def test_file_type_follows_media_type(self, make_context):
        image = ImageReference.from_bytes(b"jpeg-bytes", media_type="image/jpeg")
        session = FakeSession(
            post=[
                FakeResponse(200, json_data={"data": {"image_token": "tok"}}),
                FakeResponse(200, json_data={"data": {"task_id": "t"}}),
            ],
            get=[FakeResponse(200, json_data={"data": {"status": "success", "output": {"model": "m.glb"}}})],
        )

        tripo(session).submit_and_await(ProviderInput(image=image), make_context())

        filename, _, media_type = session.posts[0][1]["files"]["file"]
        assert (filename, media_type) == ("input.jpg", "image/jpeg")
        assert session.posts[1][1]["json"]["file"]["type"] == "jpg"
