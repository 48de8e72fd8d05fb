"""
Service classes for the Diary Reels pipeline.

Thin clients for the external generation capabilities (scenario text,
images, narration audio) plus the pure helpers that shape their inputs.
Every HTTP failure leaves this module as a classified ``UpstreamError``.
"""

import base64
import logging
from typing import Dict, Optional, Tuple

import requests

from config import (
    ELEVENLABS_API_KEY,
    ELEVENLABS_API_URL,
    ELEVENLABS_MODEL_ID,
    ELEVENLABS_VOICE_ID,
    IMAGE_REQUEST_TIMEOUT,
    IMAGE_STYLE_PROMPT,
    OLLAMA_API_URL,
    OLLAMA_MODEL,
    OPENAI_API_KEY,
    OPENAI_API_URL,
    OPENAI_IMAGE_MODEL,
    OPENAI_IMAGE_SIZE,
    OPENAI_MODEL,
    SCENARIO_LANGUAGE,
    SPEECH_REQUEST_TIMEOUT,
    TEXT_BACKEND,
    TEXT_REQUEST_TIMEOUT,
)
from errors import ConfigurationError, ErrorKind, UpstreamError, error_from_exception, error_from_response
from schemas import NarrationDirection, Shot

SYSTEM_PROMPT = "You generate ONLY JSON for short-form video scenarios. No explanations or markdown."


def _request(service: str, method: str, url: str, timeout: float, **kwargs) -> requests.Response:
    """Perform one HTTP call and classify any failure at this boundary."""
    try:
        response = requests.request(method, url, timeout=timeout, **kwargs)
    except requests.RequestException as e:
        raise error_from_exception(service, e) from e
    if not response.ok:
        raise error_from_response(service, response)
    return response


def _json(service: str, response: requests.Response) -> dict:
    try:
        data = response.json()
    except ValueError as e:
        raise UpstreamError(f"{service} returned a non-JSON body.", kind=ErrorKind.FATAL) from e
    if not isinstance(data, dict):
        raise UpstreamError(f"{service} returned an unexpected payload.", kind=ErrorKind.FATAL)
    return data


def _clamp(value: float, low: float, high: float) -> float:
    return min(high, max(low, value))


# --- Scenario text ---


class OllamaTextGenerator:
    """Scenario generation through a local Ollama chat model."""

    def __init__(self, api_url: str = OLLAMA_API_URL, model: str = OLLAMA_MODEL, timeout: float = TEXT_REQUEST_TIMEOUT):
        self.api_url = api_url
        self.model = model
        self.timeout = timeout

    def generate_text(self, prompt: str) -> str:
        logging.info(f"📝 Sending scenario prompt to {self.model} ({len(prompt)} chars)")
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            "stream": False,
            "format": "json",
            "options": {"temperature": 0.4, "top_p": 0.95},
        }
        response = _request("Ollama chat", "POST", self.api_url, self.timeout, json=payload)
        content = _json("Ollama chat", response).get("message", {}).get("content", "")
        if not content.strip():
            raise UpstreamError("Ollama chat returned empty output.", kind=ErrorKind.FATAL)
        return content


class OpenAITextGenerator:
    """Scenario generation through the OpenAI Responses API."""

    def __init__(self, api_key: str = OPENAI_API_KEY, model: str = OPENAI_MODEL, api_url: str = OPENAI_API_URL,
                 timeout: float = TEXT_REQUEST_TIMEOUT):
        if not api_key:
            raise ConfigurationError("Missing env: OPENAI_API_KEY")
        self.api_key = api_key
        self.model = model
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout

    def generate_text(self, prompt: str) -> str:
        logging.info(f"📝 Sending scenario prompt to {self.model} ({len(prompt)} chars)")
        response = _request(
            "OpenAI responses",
            "POST",
            f"{self.api_url}/responses",
            self.timeout,
            headers={"Authorization": f"Bearer {self.api_key}"},
            json={"model": self.model, "input": [{"role": "user", "content": [{"type": "input_text", "text": prompt}]}]},
        )
        data = _json("OpenAI responses", response)
        text = (data.get("output_text") or "").strip()
        if text:
            return text
        chunks = [
            (content.get("text") or "").strip()
            for item in data.get("output") or []
            for content in item.get("content") or []
            if content.get("type") == "output_text"
        ]
        text = "\n".join(c for c in chunks if c).strip()
        if not text:
            raise UpstreamError("OpenAI responses returned empty output.", kind=ErrorKind.FATAL)
        return text


def build_text_generator(backend: str = TEXT_BACKEND):
    if backend == "openai":
        return OpenAITextGenerator()
    if backend == "ollama":
        return OllamaTextGenerator()
    raise ConfigurationError(f"Unknown TEXT_BACKEND: {backend}")


# --- Images ---


def build_image_prompt(shot: Shot) -> str:
    scene = (shot.image_prompt or "").strip() or (shot.visual_description or "").strip()
    return f"{IMAGE_STYLE_PROMPT}\nScene: {scene}"


class OpenAIImageGenerator:
    def __init__(self, api_key: str = OPENAI_API_KEY, model: str = OPENAI_IMAGE_MODEL, api_url: str = OPENAI_API_URL,
                 size: str = OPENAI_IMAGE_SIZE, timeout: float = IMAGE_REQUEST_TIMEOUT):
        if not api_key:
            raise ConfigurationError("Missing env: OPENAI_API_KEY")
        self.api_key = api_key
        self.model = model
        self.api_url = api_url.rstrip("/")
        self.size = size
        self.timeout = timeout

    def generate_image(self, prompt: str) -> Tuple[bytes, str]:
        """Return (image bytes, content type)."""
        response = _request(
            "OpenAI image",
            "POST",
            f"{self.api_url}/images/generations",
            self.timeout,
            headers={"Authorization": f"Bearer {self.api_key}"},
            json={"model": self.model, "prompt": prompt, "size": self.size, "quality": "low"},
        )
        items = _json("OpenAI image", response).get("data") or []
        if not items:
            raise UpstreamError("Image payload empty.", kind=ErrorKind.FATAL)
        item = items[0]
        if item.get("b64_json"):
            return base64.b64decode(item["b64_json"]), "image/png"
        if item.get("url"):
            download = _request("Image download", "GET", item["url"], self.timeout)
            return download.content, download.headers.get("content-type", "image/png")
        raise UpstreamError("Image payload missing b64_json/url.", kind=ErrorKind.FATAL)


# --- Narration ---

SLOW_TOKENS = ("느리", "천천히", "slow", "slower")
CALM_TOKENS = ("편안", "차분", "조용", "잔잔", "calm", "comfortable", "soft")
CLEAR_TOKENS = ("또렷", "명확", "clear")
ENERGETIC_TOKENS = ("활기", "밝게", "에너지", "energetic", "bright")


def build_voice_settings(direction: NarrationDirection) -> Dict[str, float]:
    """Map a shot's narration direction onto ElevenLabs voice settings.

    More expressive delivery (0.7 * intensity + 0.3 * energy) lowers
    stability and similarity and raises style. Keywords in the free-text
    instruction nudge the values by fixed amounts.
    """
    intensity = _clamp(direction.intensity, 0, 1)
    energy = _clamp(direction.delivery.energy, 0, 1)
    expressiveness = _clamp(intensity * 0.7 + energy * 0.3, 0, 1)

    stability = 0.85 - expressiveness * 0.55
    similarity_boost = 0.9 - expressiveness * 0.15
    style = expressiveness
    speed = _clamp(direction.delivery.speaking_rate, 0.5, 2.0)

    instruction = direction.tts_instruction.lower()

    def has_any(tokens):
        return any(t in instruction for t in tokens)

    if has_any(SLOW_TOKENS):
        speed *= 0.9
    if has_any(CALM_TOKENS):
        stability += 0.12
        style -= 0.12
    if has_any(CLEAR_TOKENS):
        similarity_boost += 0.05
        stability += 0.05
    if has_any(ENERGETIC_TOKENS):
        style += 0.15
        stability -= 0.08
        speed *= 1.05

    return {
        "stability": _clamp(stability, 0, 1),
        "similarity_boost": _clamp(similarity_boost, 0, 1),
        "style": _clamp(style, 0, 1),
        "use_speaker_boost": True,
        "speed": _clamp(speed, 0.7, 1.3),
    }


def build_narration_text(shot: Shot) -> str:
    # The TTS engine reads text verbatim, so pauses become punctuation.
    delivery = shot.narration_direction.delivery
    before = "... " if delivery.pause_ms_before >= 600 else ", " if delivery.pause_ms_before >= 200 else ""
    after = " ..." if delivery.pause_ms_after >= 600 else "," if delivery.pause_ms_after >= 200 else ""
    return f"{before}{shot.narration.strip()}{after}".strip()


class ElevenLabsSpeechGenerator:
    def __init__(self, api_key: str = ELEVENLABS_API_KEY, voice_id: str = ELEVENLABS_VOICE_ID,
                 model_id: str = ELEVENLABS_MODEL_ID, api_url: str = ELEVENLABS_API_URL,
                 language_code: str = SCENARIO_LANGUAGE, timeout: float = SPEECH_REQUEST_TIMEOUT):
        if not api_key:
            raise ConfigurationError("Missing env: ELEVENLABS_API_KEY")
        if not voice_id:
            raise ConfigurationError("Missing env: ELEVENLABS_VOICE_ID")
        self.api_key = api_key
        self.voice_id = voice_id
        self.model_id = model_id
        self.api_url = api_url.rstrip("/")
        self.language_code = language_code
        self.timeout = timeout

    def generate_speech(self, text: str, voice_settings: Dict[str, float], voice_id: Optional[str] = None) -> bytes:
        voice = voice_id or self.voice_id
        response = _request(
            "ElevenLabs",
            "POST",
            f"{self.api_url}/text-to-speech/{requests.utils.quote(voice, safe='')}",
            self.timeout,
            params={"output_format": "mp3_44100_128"},
            headers={"xi-api-key": self.api_key, "Accept": "audio/mpeg"},
            json={
                "text": text,
                "model_id": self.model_id,
                "language_code": self.language_code,
                "voice_settings": voice_settings,
            },
        )
        if not response.content:
            raise UpstreamError("ElevenLabs returned empty audio.", kind=ErrorKind.FATAL)
        return response.content
