"""
Polling client for the pipeline HTTP API.

Status polls can arrive out of order (retries, load balancers), so the
client drops snapshots that would move the job backwards before handing
them to the caller.
"""

import time
from typing import Callable, Optional

import requests

from config import PUBLIC_BASE_URL, RENDER_POLL_SECONDS
from errors import error_from_exception, error_from_response
from schemas import STATUS_RANK, JobRecord, JobResponse

PROGRESS_EPSILON = 0.03


def is_regressive_update(previous: JobRecord, update: JobRecord) -> bool:
    """True when ``update`` is a stale snapshot relative to ``previous``.

    Terminal updates are always accepted.
    """
    if update.terminal:
        return False
    previous_rank, rank = STATUS_RANK[previous.status], STATUS_RANK[update.status]
    if rank < previous_rank:
        return True
    return rank == previous_rank and update.progress + PROGRESS_EPSILON < previous.progress


class PipelineClient:
    def __init__(self, base_url: str = PUBLIC_BASE_URL, timeout: float = 30, session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    def _call(self, method: str, path: str, **kwargs) -> dict:
        service = f"Pipeline {method} {path}"
        try:
            response = self.session.request(method, f"{self.base_url}{path}", timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            raise error_from_exception(service, e) from e
        if not response.ok:
            raise error_from_response(service, response)
        return response.json()

    def start(self, diary_text: str) -> JobResponse:
        return JobResponse.model_validate(self._call("POST", "/pipeline/start", json={"diary_text": diary_text}))

    def status(self, job_id: str) -> JobRecord:
        return JobRecord.model_validate(self._call("GET", f"/pipeline/status/{job_id}"))

    def wait(
        self,
        job_id: str,
        interval: float = RENDER_POLL_SECONDS,
        on_update: Optional[Callable[[JobRecord], None]] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> JobRecord:
        """Poll until the job is terminal; ``on_update`` only sees forward-moving snapshots."""
        latest = None
        while True:
            record = self.status(job_id)
            if latest is None or not is_regressive_update(latest, record):
                latest = record
                if on_update:
                    on_update(record)
            if latest.terminal:
                return latest
            sleep(interval)
