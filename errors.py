"""
Typed errors shared by every pipeline stage.

Upstream failures are classified into an ``ErrorKind`` once, where the
HTTP call is made, so retry and degradation policies can dispatch on the
kind instead of inspecting message text.
"""

import enum
import re
from typing import List, Optional

import requests


class ErrorKind(str, enum.Enum):
    RATE_LIMIT = "rate_limit"
    TRANSIENT = "transient"
    TRANSPORT = "transport"
    CONCURRENCY_LIMIT = "concurrency_limit"
    VALIDATION = "validation"
    FATAL = "fatal"


RETRYABLE_KINDS = frozenset({ErrorKind.RATE_LIMIT, ErrorKind.TRANSIENT, ErrorKind.TRANSPORT})
TRANSIENT_STATUSES = frozenset({408, 409, 425, 500, 502, 503, 504})
_CONCURRENCY_PATTERN = re.compile(r"rate exceeded|concurrency limit", re.IGNORECASE)


class PipelineError(Exception):
    """Base class for errors raised by pipeline stages."""


class ConfigurationError(PipelineError):
    pass


class UpstreamError(PipelineError):
    """A call to an external capability failed."""

    def __init__(self, message: str, kind: ErrorKind = ErrorKind.FATAL, status_code: Optional[int] = None):
        super().__init__(message)
        self.kind = kind
        self.status_code = status_code

    @property
    def retryable(self) -> bool:
        return self.kind in RETRYABLE_KINDS


class ScenarioInvalidError(PipelineError):
    """The scenario generator never produced a valid scenario."""

    def __init__(self, errors: List[str]):
        self.errors = list(errors)
        super().__init__(f"Invalid scenario payload after retries: {' | '.join(self.errors)}")


class RenderFailedError(PipelineError):
    pass


class RenderTimeoutError(RenderFailedError):
    pass


def classify_status(status_code: int) -> ErrorKind:
    if status_code == 429:
        return ErrorKind.RATE_LIMIT
    if status_code in TRANSIENT_STATUSES:
        return ErrorKind.TRANSIENT
    return ErrorKind.FATAL


def is_concurrency_limit(body: str) -> bool:
    return bool(_CONCURRENCY_PATTERN.search(body or ""))


def error_from_response(service: str, response: requests.Response) -> UpstreamError:
    """Build a classified error from a non-2xx response."""
    body = response.text or ""
    return UpstreamError(
        f"{service} failed: {response.status_code} {body[:500]}".strip(),
        kind=classify_status(response.status_code),
        status_code=response.status_code,
    )


def error_from_exception(service: str, exc: requests.RequestException) -> UpstreamError:
    """Transport faults (timeouts, resets, DNS) are retryable; anything else is not."""
    if isinstance(exc, (requests.Timeout, requests.ConnectionError)):
        return UpstreamError(f"{service} transport error: {exc}", kind=ErrorKind.TRANSPORT)
    return UpstreamError(f"{service} request error: {exc}", kind=ErrorKind.FATAL)
