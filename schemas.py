"""
Pydantic models for data validation in the Diary Reels pipeline.

Covers the scenario produced by the text generator, the render plan handed
to the render backend, the job record and the HTTP request/response bodies.
"""

import enum
from typing import Annotated, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, StringConstraints, field_validator

from config import EMOTION_LABELS, TRANSITIONS

NonEmptyStr = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]
EmotionLabel = Literal[EMOTION_LABELS]
Transition = Literal[TRANSITIONS]
PauseMs = Annotated[int, Field(ge=0, le=1500)]


# --- Scenario ---


class _ScenarioModel(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


class Delivery(_ScenarioModel):
    speaking_rate: float = Field(ge=0.5, le=2.0)
    energy: float = Field(ge=0, le=1)
    pause_ms_before: PauseMs
    pause_ms_after: PauseMs
    emphasis_words: Optional[List[NonEmptyStr]] = Field(default=None, max_length=6)


class NarrationDirection(_ScenarioModel):
    label: EmotionLabel
    intensity: float = Field(ge=0, le=1)
    arc_hint: Optional[NonEmptyStr] = None
    delivery: Delivery
    tts_instruction: NonEmptyStr


class TimingHints(_ScenarioModel):
    min_duration_seconds: Optional[float] = Field(default=None, gt=0)
    max_duration_seconds: Optional[float] = Field(default=None, gt=0)
    padding_ms: Optional[PauseMs] = None


class Shot(_ScenarioModel):
    shot_id: NonEmptyStr
    duration_seconds: Optional[float] = Field(default=None, ge=1, le=6)
    visual_description: Optional[str] = None
    subtitle: NonEmptyStr
    narration: NonEmptyStr
    image_prompt: NonEmptyStr
    transition: Transition
    narration_direction: NarrationDirection
    timing_hints: Optional[TimingHints] = None

    @field_validator("transition", mode="before")
    @classmethod
    def _normalize_transition(cls, value):
        # Generators mix "zoom-in" and "zoom_in".
        if isinstance(value, str):
            return value.strip().lower().replace("-", "_")
        return value


class NarrationDefaults(_ScenarioModel):
    label: Optional[EmotionLabel] = None
    intensity: Optional[float] = Field(default=None, ge=0, le=1)
    delivery: Optional[Dict[str, float]] = None
    tts_instruction: Optional[NonEmptyStr] = None


class Scenario(_ScenarioModel):
    """A validated creative plan. Immutable; build a new one to change it."""

    schema_version: Literal["reels_script_v1", "reels_script_v2"] = "reels_script_v2"
    language: Annotated[str, StringConstraints(strip_whitespace=True, min_length=2)]
    title: NonEmptyStr
    tone: NonEmptyStr
    total_duration_seconds: Optional[float] = None
    narration_defaults: Optional[NarrationDefaults] = None
    shots: List[Shot] = Field(min_length=1, max_length=8)


# --- Render plan ---


class RenderParams(BaseModel):
    """Global timeline parameters plus style fields forwarded to the renderer."""

    fps: int = Field(default=30, gt=0)
    narration_gap_ms: int = Field(default=220, ge=0)
    opening_card: bool = True
    ending_card: bool = True
    opening_card_seconds: float = 1.4
    ending_card_seconds: float = 1.2
    fallback_duration_seconds: float = 3.0
    default_min_duration_seconds: Optional[float] = None
    default_max_duration_seconds: Optional[float] = None
    default_padding_ms: Optional[int] = None

    layout_preset: str = "frame_matte"
    subtitle_preset: str = "soft_box"
    show_title: bool = True
    bgm_src: Optional[str] = None
    bgm_volume: float = 0.24
    bgm_duck_volume: float = 0.12
    bgm_duck_attack_frames: int = 8
    bgm_duck_release_frames: int = 10


class PlanAssets(BaseModel):
    image_src: str = ""
    audio_src: str = ""


class CardSpan(BaseModel):
    start_frame: int = 0
    duration_in_frames: int


class PlanShot(BaseModel):
    shot_id: str
    start_frame: int
    duration_in_frames: int
    duration_seconds: float
    audio_start_frames: int
    audio_duration_frames: int
    pause_after_frames: int
    padding_frames: int
    overlap_in_frames: int
    overlap_out_frames: int
    end_fade_out_frames: int
    transition_out: str
    assets: PlanAssets


class RenderPlan(BaseModel):
    fps: int
    duration_in_frames: int
    opening: Optional[CardSpan] = None
    ending: Optional[CardSpan] = None
    shots: List[PlanShot]


# --- Jobs ---


class JobStatus(str, enum.Enum):
    QUEUED = "queued"
    GENERATING_SCENARIO = "generating_scenario"
    GENERATING_IMAGES = "generating_images"
    GENERATING_NARRATION = "generating_narration"
    RENDERING_VIDEO = "rendering_video"
    DONE = "done"
    ERROR = "error"


STATUS_RANK = {status: rank for rank, status in enumerate(JobStatus)}
TERMINAL_STATUSES = frozenset({JobStatus.DONE, JobStatus.ERROR})


class JobRecord(BaseModel):
    """Job as stored and as returned by the status endpoint."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    created_at: int
    status: JobStatus = JobStatus.QUEUED
    progress: float = 0.0
    message: str = "Queued"
    error: Optional[str] = None
    total_shots: Optional[int] = None
    completed_shots: Optional[int] = None
    output_url: Optional[str] = None

    @property
    def terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES


class PipelineStartRequest(BaseModel):
    """Request model for starting a reel generation job."""
    diary_text: str


class JobResponse(BaseModel):
    """Response when submitting a background generation job."""
    job_id: str
    status: JobStatus
