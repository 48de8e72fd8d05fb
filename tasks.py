# tasks.py

from celery import Celery
import logging

from assets import AssetCoordinator
from config import CELERY_BROKER_URL, CELERY_RESULT_BACKEND
from job_store import SqlJobStore
from render import HttpRenderBackend, RenderDispatcher
from schemas import JobStatus
from services import ElevenLabsSpeechGenerator, OpenAIImageGenerator, build_text_generator
from storage import build_blob_store
from supervisor import JobSupervisor, apply_update, default_retry_policy

celery = Celery('tasks', broker=CELERY_BROKER_URL, backend=CELERY_RESULT_BACKEND)
logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")


def build_supervisor(store) -> JobSupervisor:
    """Wire the production clients from config. Raises ConfigurationError on missing secrets."""
    retry = default_retry_policy()
    coordinator = AssetCoordinator(OpenAIImageGenerator(), ElevenLabsSpeechGenerator(), build_blob_store(), retry=retry)
    dispatcher = RenderDispatcher(HttpRenderBackend(), retry=retry)
    return JobSupervisor(store, build_text_generator(), coordinator, dispatcher, retry=retry)


@celery.task
def run_pipeline_task(job_id: str, diary_text: str):
    """
    Background task that drives one job to a terminal state in the jobs table.
    """
    store = SqlJobStore()
    logging.info(f"📝 Worker received job {job_id}")
    try:
        supervisor = build_supervisor(store)
    except Exception as e:
        logging.error(f"❌ Worker could not start job {job_id}. Error: {e}")
        store.update(job_id, lambda r: apply_update(r, status=JobStatus.ERROR, message="Failed", error=str(e)))
        return
    record = supervisor.run(job_id, diary_text)
    return record.status.value if record else None
