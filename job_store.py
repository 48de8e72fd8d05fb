"""
Job stores.

A store hands out ``JobRecord`` snapshots and applies updates atomically:
``update(job_id, fn)`` reads the current record, calls ``fn`` on a copy and
persists the returned record, all under one lock or row lock. ``fn``
returning ``None`` means "leave the record as it is".
"""

import secrets
import threading
import time
from typing import Callable, Dict, Optional

from database import SessionLocal
from models import Job
from schemas import JobRecord

Updater = Callable[[JobRecord], Optional[JobRecord]]


def new_job_id() -> str:
    return secrets.token_hex(8)


def now_ms() -> int:
    return int(time.time() * 1000)


class InMemoryJobStore:
    def __init__(self):
        self._jobs: Dict[str, JobRecord] = {}
        self._lock = threading.Lock()

    def create(self) -> JobRecord:
        with self._lock:
            job_id = new_job_id()
            while job_id in self._jobs:
                job_id = new_job_id()
            record = JobRecord(id=job_id, created_at=now_ms())
            self._jobs[job_id] = record
            return record.model_copy()

    def get(self, job_id: str) -> Optional[JobRecord]:
        with self._lock:
            record = self._jobs.get(job_id)
            return record.model_copy() if record else None

    def update(self, job_id: str, fn: Updater) -> Optional[JobRecord]:
        with self._lock:
            current = self._jobs.get(job_id)
            if current is None:
                return None
            updated = fn(current.model_copy())
            if updated is not None:
                self._jobs[job_id] = updated
            return self._jobs[job_id].model_copy()


class SqlJobStore:
    """Jobs persisted in the ``jobs`` table."""

    def __init__(self, session_factory=SessionLocal):
        self.session_factory = session_factory

    def create(self) -> JobRecord:
        record = JobRecord(id=new_job_id(), created_at=now_ms())
        with self.session_factory() as db:
            db.add(Job(**record.model_dump(mode="json")))
            db.commit()
        return record

    def get(self, job_id: str) -> Optional[JobRecord]:
        with self.session_factory() as db:
            job = db.get(Job, job_id)
            return JobRecord.model_validate(job) if job else None

    def update(self, job_id: str, fn: Updater) -> Optional[JobRecord]:
        with self.session_factory() as db:
            job = db.query(Job).filter(Job.id == job_id).with_for_update().first()
            if job is None:
                return None
            current = JobRecord.model_validate(job)
            updated = fn(current.model_copy())
            if updated is None:
                db.rollback()
                return current
            for key, value in updated.model_dump(mode="json", exclude={"id", "created_at"}).items():
                setattr(job, key, value)
            db.commit()
            return updated
