"""
Asset generation: one image and one narration clip per shot.

Every (shot, kind) pair is a separate task in the bounded pool so a failed
narration retries without regenerating its image. Results are merged on
the calling thread, which also owns all progress bookkeeping.
"""

import logging
import mimetypes
import tempfile
from dataclasses import dataclass, replace
from typing import Callable, Dict, Iterable, Optional

import ffmpeg

from config import ASSET_CONCURRENCY, NARRATION_BITRATE
from schemas import PlanAssets, Scenario, Shot
from services import build_image_prompt, build_narration_text, build_voice_settings
from task_pool import RetryPolicy, run_bounded

IMAGE = "image"
NARRATION = "narration"


@dataclass
class ShotAsset:
    shot_id: str
    image_src: str = ""
    audio_src: str = ""
    audio_bytes: int = 0
    audio_seconds: float = 0.0

    def to_plan_assets(self) -> PlanAssets:
        return PlanAssets(image_src=self.image_src, audio_src=self.audio_src)


@dataclass
class AssetProgress:
    finished_steps: int
    total_steps: int
    completed_shots: int
    total_shots: int
    label: str

    @property
    def fraction(self) -> float:
        return self.finished_steps / self.total_steps if self.total_steps else 1.0


def measure_audio_seconds(data: bytes, bitrate: int = NARRATION_BITRATE) -> float:
    """Narration length in seconds, probed with ffprobe when available.

    Falls back to a constant-bitrate estimate from the byte length.
    """
    if not data:
        return 0.0
    with tempfile.NamedTemporaryFile(suffix=".mp3") as tmp:
        tmp.write(data)
        tmp.flush()
        try:
            duration = float(ffmpeg.probe(tmp.name).get("format", {}).get("duration") or 0)
            if duration > 0:
                return duration
        except (ffmpeg.Error, FileNotFoundError, ValueError) as e:
            logging.warning(f"⚠️ Could not probe narration clip ({type(e).__name__}); estimating from size")
    return len(data) * 8 / bitrate


class AssetCoordinator:
    """Generates and stores every shot's image and narration for one job."""

    def __init__(self, image_generator, speech_generator, blob_store, concurrency: int = ASSET_CONCURRENCY,
                 retry: Optional[RetryPolicy] = None, probe: Callable[[bytes], float] = measure_audio_seconds):
        self.image_generator = image_generator
        self.speech_generator = speech_generator
        self.blob_store = blob_store
        self.concurrency = concurrency
        self.retry = retry or RetryPolicy()
        self.probe = probe

    def _generate_image(self, job_id: str, index: int, shot: Shot) -> dict:
        data, content_type = self.image_generator.generate_image(build_image_prompt(shot))
        extension = mimetypes.guess_extension(content_type.split(";")[0].strip()) or ".png"
        url = self.blob_store.put(f"jobs/{job_id}/s_{index + 1}{extension}", data, content_type)
        return {"image_src": url}

    def _generate_narration(self, job_id: str, index: int, shot: Shot) -> dict:
        audio = self.speech_generator.generate_speech(
            build_narration_text(shot), build_voice_settings(shot.narration_direction)
        )
        url = self.blob_store.put(f"jobs/{job_id}/Narr_S_{index + 1}.mp3", audio, "audio/mpeg")
        return {"audio_src": url, "audio_bytes": len(audio), "audio_seconds": self.probe(audio)}

    def generate_assets(
        self,
        scenario: Scenario,
        job_id: str,
        kinds: Iterable[str] = (IMAGE, NARRATION),
        on_progress: Optional[Callable[[AssetProgress], None]] = None,
        existing: Optional[Dict[str, ShotAsset]] = None,
    ) -> Dict[str, ShotAsset]:
        """Generate ``kinds`` for every shot; any exhausted task fails the whole call."""
        kinds = tuple(kinds)
        shots = scenario.shots
        assets = {
            shot.shot_id: replace(existing[shot.shot_id]) if existing and shot.shot_id in existing else ShotAsset(shot.shot_id)
            for shot in shots
        }
        items = [(index, shot, kind) for index, shot in enumerate(shots) for kind in kinds]
        remaining = {shot.shot_id: len(kinds) for shot in shots}
        counters = {"finished": 0, "shots": 0}

        def task(item):
            index, shot, kind = item
            if kind == IMAGE:
                return self._generate_image(job_id, index, shot)
            return self._generate_narration(job_id, index, shot)

        def on_complete(item, fields):
            index, shot, kind = item
            asset = assets[shot.shot_id]
            for name, value in fields.items():
                setattr(asset, name, value)
            counters["finished"] += 1
            remaining[shot.shot_id] -= 1
            if remaining[shot.shot_id] == 0:
                counters["shots"] += 1
            if on_progress:
                on_progress(AssetProgress(
                    finished_steps=counters["finished"],
                    total_steps=len(items),
                    completed_shots=counters["shots"],
                    total_shots=len(shots),
                    label=f"{kind} {index + 1}/{len(shots)}",
                ))

        logging.info(f"🎨 Generating {', '.join(kinds)} for {len(shots)} shots (job {job_id})")
        run_bounded(
            items,
            self.concurrency,
            task,
            on_complete=on_complete,
            retry=self.retry,
            label=lambda item: f"{item[2]} for shot {item[1].shot_id}",
        )
        return assets
