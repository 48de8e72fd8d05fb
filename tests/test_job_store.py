# tests/test_job_store.py

import sys
import os
import threading
import time

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

import database
from database import Base
from job_store import InMemoryJobStore, SqlJobStore, new_job_id
from models import Job
from routers.pipeline import get_job_store
from schemas import JobStatus
from supervisor import apply_update


@pytest.fixture
def session_factory():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def sql_store(session_factory):
    return SqlJobStore(session_factory)


@pytest.fixture(params=["memory", "sql"])
def store(request):
    if request.param == "memory":
        return InMemoryJobStore()
    return request.getfixturevalue("sql_store")


def test_new_job_ids_are_16_hex_chars():
    job_id = new_job_id()

    assert len(job_id) == 16
    int(job_id, 16)
    assert job_id != new_job_id()


def test_create_returns_a_queued_record(store):
    before = int(time.time() * 1000)

    record = store.create()

    assert record.status == JobStatus.QUEUED
    assert record.progress == 0.0
    assert record.message == "Queued"
    assert before <= record.created_at <= int(time.time() * 1000)
    assert store.get(record.id) == record


def test_unknown_job_is_none(store):
    assert store.get("missing") is None
    assert store.update("missing", lambda r: r) is None


def test_update_persists_changes(store):
    record = store.create()

    updated = store.update(record.id, lambda r: apply_update(r, status=JobStatus.GENERATING_IMAGES, progress=0.3,
                                                            total_shots=5, completed_shots=2, message="Images"))

    assert updated.status == JobStatus.GENERATING_IMAGES
    assert store.get(record.id) == updated
    assert store.get(record.id).completed_shots == 2
    assert store.get(record.id).created_at == record.created_at


def test_rejected_update_leaves_record_alone(store):
    record = store.create()
    store.update(record.id, lambda r: apply_update(r, status=JobStatus.DONE, output_url="https://cdn/a.mp4"))

    result = store.update(record.id, lambda r: apply_update(r, status=JobStatus.ERROR, error="late"))

    assert result.status == JobStatus.DONE
    assert store.get(record.id).error is None
    assert store.get(record.id).progress == 1.0


def test_sql_rows_hold_plain_status_strings(sql_store):
    record = sql_store.create()
    sql_store.update(record.id, lambda r: apply_update(r, status=JobStatus.RENDERING_VIDEO, progress=0.8))

    with sql_store.session_factory() as db:
        row = db.get(Job, record.id)
        assert row.status == "rendering_video"
        assert row.progress == pytest.approx(0.8)


def test_memory_updates_are_atomic():
    store = InMemoryJobStore()
    record = store.create()

    def bump():
        for _ in range(200):
            store.update(record.id, lambda r: r.model_copy(update={"completed_shots": (r.completed_shots or 0) + 1}))

    threads = [threading.Thread(target=bump) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert store.get(record.id).completed_shots == 800


def test_request_store_writes_through_the_get_db_session(session_factory, monkeypatch):
    monkeypatch.setattr(database, "SessionLocal", session_factory)
    dependency = database.get_db()
    db = next(dependency)

    store = get_job_store(db)
    record = store.create()
    store.update(record.id, lambda r: apply_update(r, status=JobStatus.GENERATING_IMAGES, progress=0.4))
    dependency.close()

    saved = SqlJobStore(session_factory).get(record.id)
    assert saved.status == JobStatus.GENERATING_IMAGES
    assert saved.progress == 0.4
