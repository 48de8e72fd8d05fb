"""
Bounded task pool with per-task retry and exponential backoff.

``run_bounded`` keeps at most ``max_concurrency`` tasks in flight; the rest
wait in submission order. Each task is retried on retryable upstream
errors only, and the first task to exhaust its retries fails the whole
run so a partial result set never reaches the caller.
"""

import logging
import random
import time
from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Optional, TypeVar

from errors import ErrorKind, UpstreamError

T = TypeVar("T")
R = TypeVar("R")


@dataclass
class RetryPolicy:
    """Retry bounds and backoff timing for upstream calls."""
    max_retries: int = 2
    base_delay: float = 1.0
    rate_limit_base_delay: float = 4.0
    max_delay: float = 30.0
    sleep: Callable[[float], None] = field(default=time.sleep, repr=False)
    rand: Callable[[float, float], float] = field(default=random.uniform, repr=False)

    def delay_for(self, attempt: int, kind: ErrorKind) -> float:
        """Delay before retry number ``attempt`` (0-indexed): base * 2^attempt + jitter."""
        base = self.rate_limit_base_delay if kind == ErrorKind.RATE_LIMIT else self.base_delay
        delay = base * (2 ** attempt) + self.rand(0.0, base / 2)
        return min(delay, self.max_delay)


def call_with_retry(fn: Callable[[], R], policy: Optional[RetryPolicy] = None, label: str = "task") -> R:
    policy = policy or RetryPolicy()
    attempt = 0
    while True:
        try:
            return fn()
        except UpstreamError as e:
            if not e.retryable or attempt >= policy.max_retries:
                if e.retryable:
                    logging.error(f"❌ {label} failed after {attempt + 1} attempts: {e}")
                raise
            delay = policy.delay_for(attempt, e.kind)
            logging.warning(
                f"🔁 {label} attempt {attempt + 1}/{policy.max_retries + 1} failed ({e.kind.value}): {e}. "
                f"Retrying in {delay:.2f}s..."
            )
            policy.sleep(delay)
            attempt += 1


def run_bounded(
    items: Iterable[T],
    max_concurrency: int,
    task_fn: Callable[[T], R],
    on_complete: Optional[Callable[[T, R], None]] = None,
    retry: Optional[RetryPolicy] = None,
    label: Callable[[T], str] = str,
) -> List[R]:
    """Run ``task_fn`` over ``items`` with bounded concurrency and per-task retry.

    Results come back in input order. ``on_complete`` is invoked on the
    calling thread after each successful item.
    """
    items = list(items)
    if not items:
        return []
    retry = retry or RetryPolicy()
    results: List[Optional[R]] = [None] * len(items)

    executor = ThreadPoolExecutor(max_workers=max(1, max_concurrency))
    try:
        futures = {
            executor.submit(call_with_retry, (lambda item=item: task_fn(item)), retry, label(item)): index
            for index, item in enumerate(items)
        }
        pending = set(futures)
        while pending:
            done, pending = wait(pending, return_when=FIRST_COMPLETED)
            for fut in done:
                index = futures[fut]
                results[index] = fut.result()
                if on_complete:
                    on_complete(items[index], results[index])
    finally:
        # A failed item leaves the rest queued; drop them and let in-flight calls finish.
        executor.shutdown(wait=True, cancel_futures=True)
    return results
