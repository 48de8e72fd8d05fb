# tests/test_render.py

import sys
import os

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import render
from assets import ShotAsset
from errors import ErrorKind, RenderFailedError, RenderTimeoutError, UpstreamError
from render import HttpRenderBackend, RenderDispatcher, RenderHandle, RenderProgress
from schemas import RenderParams
from timeline import synthesize

PARAMS = RenderParams(fps=30)


@pytest.fixture
def shot_assets(scenario):
    return {
        shot.shot_id: ShotAsset(shot.shot_id, image_src=f"https://cdn/{shot.shot_id}.png",
                                audio_src=f"https://cdn/{shot.shot_id}.mp3", audio_bytes=16000, audio_seconds=2.0)
        for shot in scenario.shots
    }


@pytest.fixture
def plan(scenario, shot_assets):
    return synthesize(scenario, {k: v.audio_seconds for k, v in shot_assets.items()}, PARAMS,
                      {k: v.to_plan_assets() for k, v in shot_assets.items()})


def make_dispatcher(backend, no_sleep_retry, **kwargs):
    sleeps = []
    dispatcher = RenderDispatcher(backend, poll_interval=1.5, retry=no_sleep_retry, sleep=sleeps.append, **kwargs)
    return dispatcher, sleeps


def test_dispatch_polls_until_output(plan, scenario, shot_assets, fake_classes, no_sleep_retry):
    backend = fake_classes["render"](polls=[
        RenderProgress(progress=0.2),
        RenderProgress(progress=0.6),
        RenderProgress(progress=1.0, done=True, output_url="https://cdn/out.mp4"),
    ])
    dispatcher, sleeps = make_dispatcher(backend, no_sleep_retry)
    seen = []

    url = dispatcher.dispatch(plan, scenario, shot_assets, PARAMS, on_progress=seen.append)

    assert url == "https://cdn/out.mp4"
    assert seen == [0.2, 0.6, 1.0]
    assert sleeps == [1.5, 1.5]
    assert len(backend.requests) == 1


def test_request_carries_plan_assets_and_options(plan, scenario, shot_assets, fake_classes, no_sleep_retry):
    backend = fake_classes["render"]()
    dispatcher, _ = make_dispatcher(backend, no_sleep_retry, concurrency=0, frames_per_lambda=40, privacy="public")

    dispatcher.dispatch(plan, scenario, shot_assets, PARAMS)

    request = backend.requests[0]
    assert request["frames_per_lambda"] == 40
    assert "concurrency" not in request
    assert request["max_retries"] == 1
    assert request["privacy"] == "public"
    props = request["input_props"]
    assert props["fps"] == 30
    assert props["assets_by_shot_id"]["s2"] == {"image_src": "https://cdn/s2.png", "audio_src": "https://cdn/s2.mp3"}
    assert props["render_plan"]["duration_in_frames"] == plan.duration_in_frames
    assert props["script"]["shots"][0]["duration_seconds"] == plan.shots[0].duration_seconds


def test_configured_concurrency_replaces_frames_per_lambda(plan, scenario, shot_assets, fake_classes, no_sleep_retry):
    backend = fake_classes["render"]()
    dispatcher, _ = make_dispatcher(backend, no_sleep_retry, concurrency=4)

    dispatcher.dispatch(plan, scenario, shot_assets, PARAMS)

    assert backend.requests[0]["concurrency"] == 4
    assert "frames_per_lambda" not in backend.requests[0]


def test_concurrency_limit_resubmits_once_with_concurrency_one(plan, scenario, shot_assets, fake_classes,
                                                               no_sleep_retry):
    backend = fake_classes["render"](submit_errors=[UpstreamError("Rate Exceeded.", kind=ErrorKind.CONCURRENCY_LIMIT)])
    dispatcher, _ = make_dispatcher(backend, no_sleep_retry, concurrency=8)

    assert dispatcher.dispatch(plan, scenario, shot_assets, PARAMS) == "https://cdn.example/out.mp4"
    assert [r["concurrency"] for r in backend.requests] == [8, 1]


def test_second_concurrency_limit_is_terminal(plan, scenario, shot_assets, fake_classes, no_sleep_retry):
    busy = UpstreamError("concurrency limit reached", kind=ErrorKind.CONCURRENCY_LIMIT)
    backend = fake_classes["render"](submit_errors=[busy, busy])
    dispatcher, _ = make_dispatcher(backend, no_sleep_retry)

    with pytest.raises(UpstreamError, match="concurrency limit"):
        dispatcher.dispatch(plan, scenario, shot_assets, PARAMS)

    assert len(backend.requests) == 2


def test_other_submit_errors_are_not_resubmitted(plan, scenario, shot_assets, fake_classes, no_sleep_retry):
    backend = fake_classes["render"](submit_errors=[UpstreamError("403 forbidden", kind=ErrorKind.FATAL)])
    dispatcher, _ = make_dispatcher(backend, no_sleep_retry)

    with pytest.raises(UpstreamError, match="403"):
        dispatcher.dispatch(plan, scenario, shot_assets, PARAMS)

    assert len(backend.requests) == 1


def test_fatal_render_error_uses_backend_message(plan, scenario, shot_assets, fake_classes, no_sleep_retry):
    backend = fake_classes["render"](polls=[
        RenderProgress(progress=0.3),
        RenderProgress(progress=0.4, fatal=True, error="Lambda ran out of memory"),
    ])
    dispatcher, _ = make_dispatcher(backend, no_sleep_retry)

    with pytest.raises(RenderFailedError, match="Lambda ran out of memory"):
        dispatcher.dispatch(plan, scenario, shot_assets, PARAMS)


def test_done_without_output_is_a_failure(plan, scenario, shot_assets, fake_classes, no_sleep_retry):
    backend = fake_classes["render"](polls=[RenderProgress(progress=1.0, done=True)])
    dispatcher, _ = make_dispatcher(backend, no_sleep_retry)

    with pytest.raises(RenderFailedError, match="output URL missing"):
        dispatcher.dispatch(plan, scenario, shot_assets, PARAMS)


def test_render_deadline(plan, scenario, shot_assets, fake_classes, no_sleep_retry):
    backend = fake_classes["render"](polls=[RenderProgress(progress=0.1)])
    now = {"t": 0.0}

    def sleep(seconds):
        now["t"] += seconds

    dispatcher = RenderDispatcher(backend, poll_interval=1.0, max_seconds=3.0, retry=no_sleep_retry,
                                  sleep=sleep, clock=lambda: now["t"])

    with pytest.raises(RenderTimeoutError):
        dispatcher.dispatch(plan, scenario, shot_assets, PARAMS)
    assert now["t"] == 3.0


def test_transient_poll_failure_is_retried(plan, scenario, shot_assets, fake_classes, no_sleep_retry):
    backend = fake_classes["render"]()
    real_poll = backend.poll
    failures = [UpstreamError("502", kind=ErrorKind.TRANSIENT)]

    def poll(handle):
        if failures:
            raise failures.pop(0)
        return real_poll(handle)

    backend.poll = poll
    dispatcher, _ = make_dispatcher(backend, no_sleep_retry)

    assert dispatcher.dispatch(plan, scenario, shot_assets, PARAMS) == "https://cdn.example/out.mp4"
    assert no_sleep_retry.sleeps == [1.0]


# --- HTTP backend ---


def test_http_backend_submit_and_poll(monkeypatch, fake_response):
    calls = []

    def fake_post(url, json, headers, timeout):
        calls.append((url, headers))
        return fake_response(200, {"render_id": "abc", "bucket_name": "renders-eu"})

    def fake_get(url, params, headers, timeout):
        calls.append((url, params))
        return fake_response(200, {"overall_progress": 0.42, "done": False, "fatal_error_encountered": False,
                                   "errors": []})

    monkeypatch.setattr(render.requests, "post", fake_post)
    monkeypatch.setattr(render.requests, "get", fake_get)
    backend = HttpRenderBackend(base_url="https://render.example/", token="secret")

    handle = backend.submit({"composition": "LifeReels"})
    progress = backend.poll(handle)

    assert handle == RenderHandle("abc", "renders-eu")
    assert calls[0] == ("https://render.example/renders",
                        {"Content-Type": "application/json", "Authorization": "Bearer secret"})
    assert calls[1] == ("https://render.example/renders/abc", {"bucket_name": "renders-eu"})
    assert progress == RenderProgress(progress=0.42)


def test_http_backend_reports_fatal_errors(monkeypatch, fake_response):
    body = {"overall_progress": 0.5, "done": False, "fatal_error_encountered": True,
            "errors": [{"message": "Chromium crashed"}, {"message": "later"}]}
    monkeypatch.setattr(render.requests, "get", lambda url, **kwargs: fake_response(200, body))

    progress = HttpRenderBackend(base_url="https://render.example").poll(RenderHandle("abc"))

    assert progress.fatal
    assert progress.error == "Chromium crashed"


@pytest.mark.parametrize("status, text, kind", [
    (429, "Rate Exceeded.", ErrorKind.CONCURRENCY_LIMIT),
    (503, "AWS Concurrency limit reached", ErrorKind.CONCURRENCY_LIMIT),
    (429, "slow down", ErrorKind.RATE_LIMIT),
    (500, "boom", ErrorKind.TRANSIENT),
    (400, "bad props", ErrorKind.FATAL),
])
def test_http_backend_classifies_submit_errors(monkeypatch, fake_response, status, text, kind):
    monkeypatch.setattr(render.requests, "post", lambda url, **kwargs: fake_response(status, text=text))

    with pytest.raises(UpstreamError) as excinfo:
        HttpRenderBackend(base_url="https://render.example").submit({})

    assert excinfo.value.kind == kind
    assert excinfo.value.status_code == status
