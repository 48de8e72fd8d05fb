"""
Render dispatch: submit the assembled timeline to the render backend and
follow it to completion.
"""

import logging
import time
from dataclasses import dataclass
from typing import Callable, Dict, Optional

import requests

from config import (
    RENDER_API_TOKEN,
    RENDER_API_URL,
    RENDER_COMPOSITION,
    RENDER_CONCURRENCY,
    RENDER_FRAMES_PER_LAMBDA,
    RENDER_MAX_RETRIES,
    RENDER_MAX_SECONDS,
    RENDER_POLL_SECONDS,
    RENDER_PRIVACY,
    RENDER_REQUEST_TIMEOUT,
)
from errors import (
    ErrorKind,
    RenderFailedError,
    RenderTimeoutError,
    UpstreamError,
    error_from_exception,
    error_from_response,
    is_concurrency_limit,
)
from schemas import RenderParams, RenderPlan, Scenario
from task_pool import RetryPolicy, call_with_retry


@dataclass
class RenderHandle:
    render_id: str
    bucket_name: str = ""


@dataclass
class RenderProgress:
    progress: float
    done: bool = False
    fatal: bool = False
    error: Optional[str] = None
    output_url: Optional[str] = None


class HttpRenderBackend:
    """JSON client for the render service (``/renders`` resource)."""

    def __init__(self, base_url: str = RENDER_API_URL, token: str = RENDER_API_TOKEN,
                 timeout: float = RENDER_REQUEST_TIMEOUT):
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def submit(self, request: dict) -> RenderHandle:
        try:
            response = requests.post(f"{self.base_url}/renders", json=request, headers=self._headers(),
                                     timeout=self.timeout)
        except requests.RequestException as e:
            raise error_from_exception("Render submit", e) from e
        if not response.ok:
            if is_concurrency_limit(response.text):
                raise UpstreamError(
                    f"Render submit rejected: {response.status_code} {response.text[:300]}",
                    kind=ErrorKind.CONCURRENCY_LIMIT,
                    status_code=response.status_code,
                )
            raise error_from_response("Render submit", response)
        data = response.json()
        if not data.get("render_id"):
            raise UpstreamError("Render submit response missing render_id.", kind=ErrorKind.FATAL)
        return RenderHandle(render_id=data["render_id"], bucket_name=data.get("bucket_name", ""))

    def poll(self, handle: RenderHandle) -> RenderProgress:
        try:
            response = requests.get(
                f"{self.base_url}/renders/{handle.render_id}",
                params={"bucket_name": handle.bucket_name} if handle.bucket_name else None,
                headers=self._headers(),
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise error_from_exception("Render progress", e) from e
        if not response.ok:
            raise error_from_response("Render progress", response)
        data = response.json()
        errors = data.get("errors") or []
        return RenderProgress(
            progress=float(data.get("overall_progress") or 0.0),
            done=bool(data.get("done")),
            fatal=bool(data.get("fatal_error_encountered")),
            error=(errors[0] or {}).get("message") if errors else None,
            output_url=data.get("output_file"),
        )


class RenderDispatcher:
    def __init__(
        self,
        backend,
        poll_interval: float = RENDER_POLL_SECONDS,
        max_seconds: float = RENDER_MAX_SECONDS,
        concurrency: int = RENDER_CONCURRENCY,
        frames_per_lambda: int = RENDER_FRAMES_PER_LAMBDA,
        max_retries: int = RENDER_MAX_RETRIES,
        privacy: str = RENDER_PRIVACY,
        composition: str = RENDER_COMPOSITION,
        retry: Optional[RetryPolicy] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.backend = backend
        self.poll_interval = poll_interval
        self.max_seconds = max_seconds
        self.concurrency = concurrency
        self.frames_per_lambda = frames_per_lambda
        self.max_retries = max_retries
        self.privacy = privacy
        self.composition = composition
        self.retry = retry or RetryPolicy(sleep=sleep)
        self.sleep = sleep
        self.clock = clock

    def build_request(self, plan: RenderPlan, scenario: Scenario, assets, params: RenderParams,
                      force_concurrency: Optional[int] = None) -> dict:
        script = scenario.model_dump(mode="json", exclude_none=True)
        durations = {shot.shot_id: shot.duration_seconds for shot in plan.shots}
        for shot in script["shots"]:
            shot["duration_seconds"] = durations.get(shot["shot_id"], shot.get("duration_seconds"))

        request = {
            "composition": self.composition,
            "codec": "h264",
            "image_format": "jpeg",
            "max_retries": self.max_retries,
            "privacy": self.privacy,
            "input_props": {
                "script": script,
                "fps": plan.fps,
                "assets_by_shot_id": {shot_id: asset.to_plan_assets().model_dump() for shot_id, asset in assets.items()},
                "render_params": params.model_dump(mode="json", exclude_none=True),
                "render_plan": plan.model_dump(mode="json", exclude_none=True),
            },
        }
        if force_concurrency:
            request["concurrency"] = force_concurrency
        elif self.concurrency > 0:
            request["concurrency"] = self.concurrency
        else:
            request["frames_per_lambda"] = self.frames_per_lambda
        return request

    def _submit(self, plan, scenario, assets, params) -> RenderHandle:
        try:
            return self.backend.submit(self.build_request(plan, scenario, assets, params))
        except UpstreamError as e:
            if e.kind != ErrorKind.CONCURRENCY_LIMIT:
                raise
            logging.warning(f"⚠️ Render rejected by concurrency limit, resubmitting with concurrency=1: {e}")
            return self.backend.submit(self.build_request(plan, scenario, assets, params, force_concurrency=1))

    def dispatch(self, plan: RenderPlan, scenario: Scenario, assets, params: RenderParams,
                 on_progress: Optional[Callable[[float], None]] = None) -> str:
        """Render and block until the backend reports an output URL."""
        handle = self._submit(plan, scenario, assets, params)
        logging.info(f"🎬 Render {handle.render_id} accepted ({plan.duration_in_frames} frames @ {plan.fps}fps)")
        deadline = self.clock() + self.max_seconds if self.max_seconds > 0 else None

        while True:
            progress = call_with_retry(lambda: self.backend.poll(handle), self.retry, "render progress")
            if progress.fatal:
                raise RenderFailedError(progress.error or "Render failed.")
            if on_progress:
                on_progress(min(1.0, max(0.0, progress.progress)))
            if progress.done:
                if not progress.output_url:
                    raise RenderFailedError("Render done but output URL missing.")
                logging.info(f"✅ Render {handle.render_id} finished: {progress.output_url}")
                return progress.output_url
            if deadline is not None and self.clock() >= deadline:
                raise RenderTimeoutError(f"Render {handle.render_id} did not finish within {self.max_seconds:g}s.")
            self.sleep(self.poll_interval)
