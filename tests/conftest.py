# tests/conftest.py

import json
import os
import sys
import threading

import pytest

# Add the parent directory to the Python path so we can import from it
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from render import RenderHandle, RenderProgress  # noqa: E402
from schemas import Scenario  # noqa: E402
from task_pool import RetryPolicy  # noqa: E402

LABELS = ["calm", "warm", "hopeful", "tired", "grateful", "joyful", "lonely", "playful"]


def _shot(i, label, pause_before=150, pause_after=150, transition="cut", **extra):
    shot = {
        "shot_id": f"s{i}",
        "subtitle": f"자막 {i}",
        "narration": f"오늘의 장면 {i}",
        "image_prompt": f"quiet street scene number {i}",
        "transition": transition,
        "narration_direction": {
            "label": label,
            "intensity": 0.5,
            "delivery": {
                "speaking_rate": 1.0,
                "energy": 0.5,
                "pause_ms_before": pause_before,
                "pause_ms_after": pause_after,
            },
            "tts_instruction": f"Read line {i} gently.",
        },
    }
    shot.update(extra)
    return shot


@pytest.fixture
def make_payload():
    """Factory for scenario payloads; ``shots`` overrides per-shot fields by index."""
    def build(count=5, labels=None, **shot_kwargs):
        labels = labels or LABELS
        return {
            "schema_version": "reels_script_v2",
            "language": "ko",
            "title": "비 오는 화요일",
            "tone": "warm, reflective",
            "shots": [_shot(i + 1, labels[i % len(labels)], **shot_kwargs) for i in range(count)],
        }
    return build


@pytest.fixture
def scenario_payload(make_payload):
    return make_payload()


@pytest.fixture
def scenario(scenario_payload):
    return Scenario.model_validate(scenario_payload)


@pytest.fixture
def scenario_json(scenario_payload):
    return json.dumps(scenario_payload, ensure_ascii=False)


@pytest.fixture
def no_sleep_retry():
    sleeps = []
    policy = RetryPolicy(max_retries=2, base_delay=1.0, rate_limit_base_delay=4.0,
                         sleep=sleeps.append, rand=lambda low, high: 0.0)
    policy.sleeps = sleeps
    return policy


class FakeImageGenerator:
    def __init__(self, fail_for=None, error=None):
        self.prompts = []
        self.fail_for = fail_for
        self.error = error
        self._lock = threading.Lock()

    def generate_image(self, prompt):
        with self._lock:
            self.prompts.append(prompt)
        if self.fail_for and self.fail_for in prompt and self.error:
            raise self.error
        return b"\x89PNG fake image", "image/png"


class FakeSpeechGenerator:
    """Returns one second of 128 kbit/s audio per call unless told to fail."""

    def __init__(self, failures=None):
        self.calls = []
        # text fragment -> list of exceptions raised on successive calls
        self.failures = failures or {}
        self._lock = threading.Lock()

    def generate_speech(self, text, voice_settings, voice_id=None):
        with self._lock:
            self.calls.append((text, voice_settings))
            for fragment, errors in self.failures.items():
                if fragment in text and errors:
                    raise errors.pop(0)
        return b"\x00" * 16000


class MemoryBlobStore:
    def __init__(self):
        self.blobs = {}
        self._lock = threading.Lock()

    def put(self, path, data, content_type):
        with self._lock:
            self.blobs[path] = (data, content_type)
        return f"mem://{path}"


class FakeRenderBackend:
    def __init__(self, polls=None, submit_errors=None):
        self.requests = []
        self.polls = list(polls or [RenderProgress(progress=1.0, done=True, output_url="https://cdn.example/out.mp4")])
        self.submit_errors = list(submit_errors or [])

    def submit(self, request):
        self.requests.append(request)
        if self.submit_errors:
            raise self.submit_errors.pop(0)
        return RenderHandle(render_id="render-1", bucket_name="bucket-1")

    def poll(self, handle):
        if len(self.polls) > 1:
            return self.polls.pop(0)
        return self.polls[0]


@pytest.fixture
def image_generator():
    return FakeImageGenerator()


@pytest.fixture
def speech_generator():
    return FakeSpeechGenerator()


@pytest.fixture
def blob_store():
    return MemoryBlobStore()


@pytest.fixture
def fake_classes():
    """Access to the fake classes for tests that need custom instances."""
    return {
        "image": FakeImageGenerator,
        "speech": FakeSpeechGenerator,
        "blob": MemoryBlobStore,
        "render": FakeRenderBackend,
    }


class FakeResponse:
    def __init__(self, status_code=200, json_data=None, text=None, content=b"", headers=None):
        self.status_code = status_code
        self._json = json_data
        self.text = text if text is not None else (json.dumps(json_data) if json_data is not None else "")
        self.content = content
        self.headers = headers or {}

    @property
    def ok(self):
        return self.status_code < 400

    def json(self):
        if self._json is None:
            raise ValueError("no json")
        return self._json


@pytest.fixture
def fake_response():
    return FakeResponse
