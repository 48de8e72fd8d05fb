"""
Job supervisor: drives one job from diary text to a rendered reel.

queued -> generating_scenario -> generating_images -> generating_narration
-> rendering_video -> done | error

Every change to the job record goes through ``JobSupervisor._update``,
which applies ``apply_update`` atomically inside the store. Stage
failures are caught once, in ``run``, and become the terminal ``error``
status carrying the exception's message.
"""

import logging
from typing import Callable, Dict, Optional

from assets import IMAGE, NARRATION, AssetProgress, ShotAsset
from config import (
    ASSET_STAGE_MODE,
    DEFAULT_MAX_DURATION_SECONDS,
    DEFAULT_MIN_DURATION_SECONDS,
    DEFAULT_PADDING_MS,
    ENDING_CARD_SECONDS,
    NARRATION_GAP_MS,
    OPENING_CARD_SECONDS,
    RENDER_BGM_SRC,
    RENDER_FPS,
    SCENARIO_MAX_ATTEMPTS,
    UPSTREAM_BASE_DELAY,
    UPSTREAM_MAX_RETRIES,
    UPSTREAM_RATE_LIMIT_DELAY,
    build_scenario_prompt,
    build_scenario_repair_prompt,
)
from errors import ScenarioInvalidError
from schemas import STATUS_RANK, JobRecord, JobStatus, RenderParams, Scenario
from task_pool import RetryPolicy, call_with_retry
from timeline import synthesize
from validators import validate_scenario

# Progress budget
SCENARIO_PROGRESS = 0.06
ASSETS_START, ASSETS_END = 0.12, 0.70
IMAGES_START, IMAGES_END = 0.12, 0.40
NARRATION_START, NARRATION_END = 0.42, 0.70
RENDER_START, RENDER_SPAN = 0.80, 0.18


def default_render_params() -> RenderParams:
    return RenderParams(
        fps=RENDER_FPS,
        narration_gap_ms=NARRATION_GAP_MS,
        opening_card_seconds=OPENING_CARD_SECONDS,
        ending_card_seconds=ENDING_CARD_SECONDS,
        default_min_duration_seconds=DEFAULT_MIN_DURATION_SECONDS,
        default_max_duration_seconds=DEFAULT_MAX_DURATION_SECONDS,
        default_padding_ms=DEFAULT_PADDING_MS,
        bgm_src=RENDER_BGM_SRC or None,
    )


def default_retry_policy() -> RetryPolicy:
    return RetryPolicy(
        max_retries=UPSTREAM_MAX_RETRIES,
        base_delay=UPSTREAM_BASE_DELAY,
        rate_limit_base_delay=UPSTREAM_RATE_LIMIT_DELAY,
    )


def apply_update(record: JobRecord, status: Optional[JobStatus] = None, progress: Optional[float] = None,
                 **fields) -> Optional[JobRecord]:
    """Return ``record`` with the changes applied, or None to leave it untouched.

    Terminal records never change. Status only moves forward and progress
    never decreases; ``done`` always lands on exactly 1.0.
    """
    if record.terminal:
        return None
    changes = dict(fields)
    if status is not None:
        if STATUS_RANK[status] < STATUS_RANK[record.status]:
            logging.warning(f"⚠️ Ignoring backwards transition {record.status.value} -> {status.value} for job {record.id}")
            return None
        changes["status"] = status
    if status == JobStatus.DONE:
        changes["progress"] = 1.0
    elif progress is not None:
        changes["progress"] = max(record.progress, min(1.0, max(0.0, progress)))
    return record.model_copy(update=changes)


class JobSupervisor:
    def __init__(
        self,
        store,
        text_generator,
        coordinator,
        dispatcher,
        render_params: Optional[RenderParams] = None,
        stage_mode: str = ASSET_STAGE_MODE,
        max_scenario_attempts: int = SCENARIO_MAX_ATTEMPTS,
        target_total_seconds: Optional[float] = None,
        retry: Optional[RetryPolicy] = None,
    ):
        self.store = store
        self.text_generator = text_generator
        self.coordinator = coordinator
        self.dispatcher = dispatcher
        self.render_params = render_params or default_render_params()
        self.stage_mode = stage_mode
        self.max_scenario_attempts = max_scenario_attempts
        self.target_total_seconds = target_total_seconds
        self.retry = retry or default_retry_policy()

    def _update(self, job_id: str, **changes) -> Optional[JobRecord]:
        return self.store.update(job_id, lambda record: apply_update(record, **changes))

    def run(self, job_id: str, diary_text: str) -> Optional[JobRecord]:
        """Run every stage for ``job_id``; always leaves the job terminal."""
        logging.info(f"📝 Supervisor picked up job {job_id} ({len(diary_text)} chars of diary text)")
        try:
            scenario = self._generate_scenario(job_id, diary_text)
            assets = self._generate_assets(job_id, scenario)
            output_url = self._render(job_id, scenario, assets)
            self._update(job_id, status=JobStatus.DONE, message="Done", output_url=output_url)
            logging.info(f"✅ Job {job_id} finished. Video at: {output_url}")
        except Exception as e:
            logging.exception(f"❌ Job {job_id} failed: {e}")
            self._update(job_id, status=JobStatus.ERROR, message="Failed", error=str(e) or type(e).__name__)
        return self.store.get(job_id)

    # --- Stages ---

    def _generate_scenario(self, job_id: str, diary_text: str) -> Scenario:
        if not diary_text.strip():
            raise ValueError("diary_text is empty.")
        self._update(job_id, status=JobStatus.GENERATING_SCENARIO, progress=SCENARIO_PROGRESS,
                     message="Generating scenario")

        prompt = build_scenario_prompt(diary_text)
        errors = []
        for attempt in range(1, self.max_scenario_attempts + 1):
            raw = call_with_retry(lambda: self.text_generator.generate_text(prompt), self.retry, "scenario text")
            result = validate_scenario(raw, self.target_total_seconds)
            if result.ok:
                logging.info(f"🧾 Scenario '{result.scenario.title}' accepted on attempt {attempt}")
                self._update(job_id, total_shots=len(result.scenario.shots), completed_shots=0,
                             message=f"Scenario ready ({len(result.scenario.shots)} shots)")
                return result.scenario
            errors = result.errors
            logging.warning(f"⚠️ Scenario attempt {attempt}/{self.max_scenario_attempts} rejected: {' | '.join(errors)}")
            prompt = build_scenario_repair_prompt(diary_text, raw, errors)
        raise ScenarioInvalidError(errors)

    def _asset_progress(self, job_id: str, status: JobStatus, start: float, end: float,
                        verb: str) -> Callable[[AssetProgress], None]:
        def report(progress: AssetProgress):
            self._update(
                job_id,
                status=status,
                progress=start + progress.fraction * (end - start),
                completed_shots=progress.completed_shots,
                message=f"{verb} ({progress.finished_steps}/{progress.total_steps})",
            )
        return report

    def _generate_assets(self, job_id: str, scenario: Scenario) -> Dict[str, ShotAsset]:
        if self.stage_mode == "split":
            self._update(job_id, status=JobStatus.GENERATING_IMAGES, progress=IMAGES_START, message="Generating images")
            assets = self.coordinator.generate_assets(
                scenario, job_id, kinds=(IMAGE,),
                on_progress=self._asset_progress(job_id, JobStatus.GENERATING_IMAGES, IMAGES_START, IMAGES_END,
                                                 "Generating images"),
            )
            # Shots are not complete until their narration exists too.
            self._update(job_id, status=JobStatus.GENERATING_NARRATION, progress=NARRATION_START,
                         message="Generating narration", completed_shots=0)
            return self.coordinator.generate_assets(
                scenario, job_id, kinds=(NARRATION,), existing=assets,
                on_progress=self._asset_progress(job_id, JobStatus.GENERATING_NARRATION, NARRATION_START,
                                                 NARRATION_END, "Generating narration"),
            )

        self._update(job_id, status=JobStatus.GENERATING_IMAGES, progress=ASSETS_START,
                     message="Generating images and narration")
        return self.coordinator.generate_assets(
            scenario, job_id, kinds=(IMAGE, NARRATION),
            on_progress=self._asset_progress(job_id, JobStatus.GENERATING_IMAGES, ASSETS_START, ASSETS_END,
                                             "Generating images and narration"),
        )

    def _render(self, job_id: str, scenario: Scenario, assets: Dict[str, ShotAsset]) -> str:
        plan = synthesize(
            scenario,
            {shot_id: asset.audio_seconds for shot_id, asset in assets.items()},
            self.render_params,
            {shot_id: asset.to_plan_assets() for shot_id, asset in assets.items()},
        )
        self._update(job_id, status=JobStatus.RENDERING_VIDEO, progress=RENDER_START, message="Rendering video")

        def report(fraction: float):
            self._update(job_id, status=JobStatus.RENDERING_VIDEO, progress=RENDER_START + fraction * RENDER_SPAN,
                         message=f"Rendering video ({round(fraction * 100)}%)")

        return self.dispatcher.dispatch(plan, scenario, assets, self.render_params, on_progress=report)


def submit_job(store, diary_text: str, launcher: Callable[[str, str], None]) -> JobRecord:
    """Create a queued job and hand it to ``launcher``; returns without waiting."""
    if not diary_text or not diary_text.strip():
        raise ValueError("diary_text is required.")
    record = store.create()
    try:
        launcher(record.id, diary_text)
    except Exception as e:
        store.update(record.id, lambda r: apply_update(r, status=JobStatus.ERROR, message="Failed",
                                                       error=f"Failed to start job: {e}"))
        raise
    logging.info(f"✨ Job {record.id} queued ({len(diary_text)} chars)")
    return record
