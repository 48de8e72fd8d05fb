"""
Timeline synthesis: turn a scenario plus measured narration lengths into a
frame-accurate render plan.

The function here is pure. It never touches the network or the disk, and
it never mutates its inputs, so the same inputs always give the same plan.

Per shot the narration sits inside the shot like this::

    |<- audio_start ->|<--- audio --->|<- pause_after ->|<- padding ->|...|
    0                                                     required  duration

Shots overlap their successor by a transition-dependent number of frames.
Overlaps can pull the next shot's narration too close to the previous
one, so a fixed-point pass pushes narration starts forward until every
adjacent pair keeps at least ``narration_gap_ms`` of silence.
"""

import math
from dataclasses import dataclass
from typing import List, Mapping, Optional

from schemas import CardSpan, PlanAssets, PlanShot, RenderParams, RenderPlan, Scenario, Shot

TRANSITION_OVERLAP_SECONDS = {"cut": 0.0, "fade": 0.35, "crossfade": 0.4}
DEFAULT_OVERLAP_SECONDS = 0.35
MAX_DESIRED_OVERLAP_SECONDS = 0.7
MAX_OVERLAP_SECONDS = 0.9
MAX_GAP_PASSES = 4


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def ms_to_frames(ms: float, fps: int) -> int:
    return max(0, _round_half_up(ms / 1000 * fps))


def seconds_to_frames(seconds: float, fps: int) -> int:
    return max(1, _round_half_up(seconds * fps))


def transition_overlap_frames(transition: Optional[str], fps: int) -> int:
    """Desired visual overlap for a transition out of a shot."""
    name = (transition or "cut").lower()
    seconds = TRANSITION_OVERLAP_SECONDS.get(name, DEFAULT_OVERLAP_SECONDS)
    return min(max(_round_half_up(fps * seconds), 0), _round_half_up(fps * MAX_DESIRED_OVERLAP_SECONDS))


@dataclass
class _ShotTiming:
    shot_id: str
    transition: str
    assets: PlanAssets
    audio_start: int
    audio_frames: int
    pause_after: int
    padding: int
    min_frames: int
    max_frames: Optional[int]
    duration: int

    @property
    def required(self) -> int:
        """Frames from shot start to the end of narration, its trailing pause and padding."""
        return self.audio_start + self.audio_frames + self.pause_after + self.padding

    def fit_audio(self):
        self.duration = max(self.duration, self.required, self.min_frames)


def _hint(shot: Shot, name: str, default):
    hints = shot.timing_hints
    value = getattr(hints, name) if hints is not None else None
    return default if value is None else value


def _initial_timing(shot: Shot, audio_seconds: float, params: RenderParams, assets: PlanAssets) -> _ShotTiming:
    fps = params.fps
    delivery = shot.narration_direction.delivery
    min_seconds = _hint(shot, "min_duration_seconds", params.default_min_duration_seconds)
    max_seconds = _hint(shot, "max_duration_seconds", params.default_max_duration_seconds)
    padding_ms = _hint(shot, "padding_ms", params.default_padding_ms) or 0

    timing = _ShotTiming(
        shot_id=shot.shot_id,
        transition=shot.transition,
        assets=assets,
        audio_start=ms_to_frames(delivery.pause_ms_before, fps),
        audio_frames=seconds_to_frames(audio_seconds, fps) if audio_seconds > 0 else 0,
        pause_after=ms_to_frames(delivery.pause_ms_after, fps),
        padding=ms_to_frames(padding_ms, fps),
        min_frames=seconds_to_frames(min_seconds, fps) if min_seconds else 1,
        max_frames=seconds_to_frames(max_seconds, fps) if max_seconds else None,
        duration=0,
    )

    required = timing.required
    duration = max(required, timing.min_frames)
    # The max hint only applies when it leaves room for the whole narration.
    if timing.max_frames is not None and timing.max_frames >= required:
        duration = min(max(duration, timing.min_frames), timing.max_frames)

    if audio_seconds <= 0:
        fallback = shot.duration_seconds or min_seconds or params.fallback_duration_seconds
        duration = max(seconds_to_frames(fallback, fps), required)

    timing.duration = duration
    return timing


def _overlaps(timings: List[_ShotTiming], fps: int):
    overlap_out = [0] * len(timings)
    end_fade_out = [0] * len(timings)
    cap = _round_half_up(fps * MAX_OVERLAP_SECONDS)
    for i, timing in enumerate(timings):
        desired = transition_overlap_frames(timing.transition, fps)
        if i == len(timings) - 1:
            if timing.transition == "fade":
                end_fade_out[i] = desired
            continue
        max_allowed = max(0, min(timing.duration - 1, timings[i + 1].duration - 1, cap))
        overlap_out[i] = min(desired, max_allowed)
    return overlap_out, end_fade_out


def _start_frames(timings: List[_ShotTiming], overlap_out: List[int]) -> List[int]:
    starts = []
    cursor = 0
    for timing, overlap in zip(timings, overlap_out):
        starts.append(cursor)
        cursor += timing.duration - overlap
    return starts


def _enforce_narration_gap(timings: List[_ShotTiming], overlap_out: List[int], gap_frames: int):
    """Push narration starts forward until every pair keeps ``gap_frames`` of silence.

    Pushing one shot lengthens it, which moves every later shot, so passes
    repeat until nothing changes or ``MAX_GAP_PASSES`` is reached.
    """
    for _ in range(MAX_GAP_PASSES):
        changed = False
        prev_start = 0
        for i in range(1, len(timings)):
            prev, cur = timings[i - 1], timings[i]
            start = prev_start + prev.duration - overlap_out[i - 1]
            min_audio_start = prev_start + prev.required + gap_frames
            audio_start = start + cur.audio_start
            if audio_start < min_audio_start:
                cur.audio_start += min_audio_start - audio_start
                cur.fit_audio()
                changed = True
            prev_start = start
        if not changed:
            break


def synthesize(
    scenario: Scenario,
    audio_seconds: Mapping[str, float],
    params: Optional[RenderParams] = None,
    assets: Optional[Mapping[str, PlanAssets]] = None,
) -> RenderPlan:
    """Compute the render plan for ``scenario``.

    ``audio_seconds`` maps shot ids to measured narration length; missing
    or non-positive values mean "unmeasured" and the shot falls back to its
    declared duration. ``assets`` maps shot ids to resolved asset refs.
    """
    params = params or RenderParams()
    assets = assets or {}
    fps = params.fps

    timings = [
        _initial_timing(
            shot,
            float(audio_seconds.get(shot.shot_id) or 0.0),
            params,
            assets.get(shot.shot_id) or PlanAssets(),
        )
        for shot in scenario.shots
    ]
    overlap_out, end_fade_out = _overlaps(timings, fps)
    _enforce_narration_gap(timings, overlap_out, ms_to_frames(params.narration_gap_ms, fps))

    opening_frames = seconds_to_frames(params.opening_card_seconds, fps) if params.opening_card else 0
    ending_frames = seconds_to_frames(params.ending_card_seconds, fps) if params.ending_card else 0

    starts = _start_frames(timings, overlap_out)
    plan_shots = [
        PlanShot(
            shot_id=timing.shot_id,
            start_frame=start + opening_frames,
            duration_in_frames=timing.duration,
            duration_seconds=timing.duration / fps,
            audio_start_frames=timing.audio_start,
            audio_duration_frames=timing.audio_frames,
            pause_after_frames=timing.pause_after,
            padding_frames=timing.padding,
            overlap_in_frames=overlap_out[i - 1] if i > 0 else 0,
            overlap_out_frames=overlap_out[i],
            end_fade_out_frames=end_fade_out[i],
            transition_out=timing.transition,
            assets=timing.assets,
        )
        for i, (timing, start) in enumerate(zip(timings, starts))
    ]

    if plan_shots:
        content_end = plan_shots[-1].start_frame + plan_shots[-1].duration_in_frames
    else:
        content_end = opening_frames
    total = max(1, content_end + ending_frames)

    return RenderPlan(
        fps=fps,
        duration_in_frames=total,
        opening=CardSpan(start_frame=0, duration_in_frames=opening_frames) if opening_frames else None,
        ending=CardSpan(start_frame=total - ending_frames, duration_in_frames=ending_frames) if ending_frames else None,
        shots=plan_shots,
    )

