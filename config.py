"""
Configuration file for the Diary Reels generation pipeline.
Contains all global constants and prompt engineering templates.
"""

import os


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "").strip()
    try:
        value = int(raw)
    except ValueError:
        return default
    return value if value > 0 else default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    try:
        return float(raw)
    except ValueError:
        return default


# --- Constants ---
PROJECT_ROOT = os.getcwd()
MEDIA_DIR = os.getenv("MEDIA_DIR", os.path.join(PROJECT_ROOT, "media"))
PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL", "http://127.0.0.1:8000").rstrip("/")

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./pipeline_jobs.db")
CELERY_BROKER_URL = os.getenv("CELERY_BROKER_URL", "redis://localhost:6379/0")
CELERY_RESULT_BACKEND = os.getenv("CELERY_RESULT_BACKEND", "redis://localhost:6379/0")

# Scenario generation
TEXT_BACKEND = os.getenv("TEXT_BACKEND", "ollama").lower()  # ollama | openai
OLLAMA_API_URL = os.getenv("OLLAMA_API_URL", "http://localhost:11434/api/chat")
OLLAMA_MODEL = os.getenv("OLLAMA_MODEL", "llama3.1:8b")
OPENAI_API_URL = os.getenv("OPENAI_API_URL", "https://api.openai.com/v1")
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "")
OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4.1-mini")
OPENAI_IMAGE_MODEL = os.getenv("OPENAI_IMAGE_MODEL", "gpt-image-1.5")
OPENAI_IMAGE_SIZE = os.getenv("OPENAI_IMAGE_SIZE", "1024x1536")
SCENARIO_LANGUAGE = os.getenv("SCENARIO_LANGUAGE", "ko")
SCENARIO_SHOT_COUNT = 5
SCENARIO_MAX_ATTEMPTS = 3

# Narration
ELEVENLABS_API_URL = os.getenv("ELEVENLABS_API_URL", "https://api.elevenlabs.io/v1")
ELEVENLABS_API_KEY = os.getenv("ELEVENLABS_API_KEY", "")
ELEVENLABS_VOICE_ID = os.getenv("ELEVENLABS_VOICE_ID", "")
ELEVENLABS_MODEL_ID = os.getenv("ELEVENLABS_MODEL_ID", "eleven_flash_v2_5")
NARRATION_BITRATE = 128000  # mp3_44100_128

# Blob storage
BLOB_STORE = os.getenv("BLOB_STORE", "local").lower()  # local | s3
S3_BUCKET_NAME = os.getenv("S3_BUCKET_NAME", "")
S3_REGION = os.getenv("S3_REGION", "us-east-1")
S3_PUBLIC_BASE_URL = os.getenv("S3_PUBLIC_BASE_URL", "").rstrip("/")
S3_KEY_PREFIX = os.getenv("S3_KEY_PREFIX", "assets")

# Rendering
RENDER_API_URL = os.getenv("RENDER_API_URL", "http://localhost:3100")
RENDER_API_TOKEN = os.getenv("RENDER_API_TOKEN", "")
RENDER_COMPOSITION = os.getenv("RENDER_COMPOSITION", "LifeReels")
RENDER_CONCURRENCY = _env_int("RENDER_CONCURRENCY", 0)
RENDER_FRAMES_PER_LAMBDA = _env_int("RENDER_FRAMES_PER_LAMBDA", 40)
RENDER_MAX_RETRIES = _env_int("RENDER_MAX_RETRIES", 1)
RENDER_PRIVACY = "private" if os.getenv("RENDER_PRIVACY", "public").lower() == "private" else "public"
RENDER_POLL_SECONDS = _env_int("RENDER_PROGRESS_POLL_MS", 1500) / 1000.0
RENDER_MAX_SECONDS = _env_float("RENDER_MAX_SECONDS", 1800.0)
RENDER_REQUEST_TIMEOUT = 180
RENDER_BGM_SRC = os.getenv("RENDER_BGM_SRC", "")

# Pipeline tuning
ASSET_CONCURRENCY = _env_int("ASSET_CONCURRENCY", 3)
ASSET_STAGE_MODE = "split" if os.getenv("ASSET_STAGE_MODE", "combined").lower() == "split" else "combined"
UPSTREAM_MAX_RETRIES = 2
UPSTREAM_BASE_DELAY = 1.2
UPSTREAM_RATE_LIMIT_DELAY = 4.0
TEXT_REQUEST_TIMEOUT = 120
IMAGE_REQUEST_TIMEOUT = 180
SPEECH_REQUEST_TIMEOUT = 120

RENDER_FPS = 30
NARRATION_GAP_MS = _env_int("NARRATION_GAP_MS", 220)
OPENING_CARD_SECONDS = 1.6
ENDING_CARD_SECONDS = 1.3
DEFAULT_MIN_DURATION_SECONDS = 2.2
DEFAULT_MAX_DURATION_SECONDS = 6.0
DEFAULT_PADDING_MS = 150

EMOTION_LABELS = (
    "calm",
    "warm",
    "anxious",
    "relieved",
    "grateful",
    "joyful",
    "lonely",
    "bittersweet",
    "hopeful",
    "tired",
    "playful",
    "determined",
)

TRANSITIONS = ("cut", "fade", "crossfade", "zoom_in", "zoom_out", "slide_left", "slide_right")

# --- Prompt Engineering Section ---

IMAGE_STYLE_PROMPT = """Warm cinematic still image, Korean daily life mood, no people.
No text, no signage, no labels, no logo."""

SCENARIO_SCHEMA_HINT = """{
  "schema_version": "reels_script_v2",
  "language": "ko",
  "title": "string",
  "tone": "string",
  "shots": [
    {
      "shot_id": "s1",
      "visual_description": "string",
      "subtitle": "string",
      "narration": "string",
      "image_prompt": "string",
      "transition": "cut|fade|crossfade|zoom_in|zoom_out|slide_left|slide_right",
      "narration_direction": {
        "label": "calm|warm|anxious|relieved|grateful|joyful|lonely|bittersweet|hopeful|tired|playful|determined",
        "intensity": 0.0,
        "arc_hint": "optional subtle arc hint",
        "delivery": {
          "speaking_rate": 1.0,
          "energy": 0.5,
          "pause_ms_before": 150,
          "pause_ms_after": 150,
          "emphasis_words": ["optional"]
        },
        "tts_instruction": "natural language direction for TTS"
      },
      "timing_hints": {"min_duration_seconds": 2.2, "max_duration_seconds": 6, "padding_ms": 150}
    }
  ]
}"""

SCENARIO_RULES = """- language: {language}
- Use {shot_count} shots
- Preserve privacy and avoid sensitive personal details
- narration_direction.label should reflect emotional arc (use at least 2 distinct labels across shots)
- Every shot must have a distinct tts_instruction text (no duplicates across shots)
- pause_ms_before and pause_ms_after are integers between 0 and 1500
- Do not output fields outside schema"""


def build_scenario_prompt(diary_text: str) -> str:
    """First-attempt prompt for the scenario generator."""
    rules = SCENARIO_RULES.format(language=SCENARIO_LANGUAGE, shot_count=SCENARIO_SHOT_COUNT)
    return "\n".join([
        "You are a strict JSON generator for a short-form video scenario.",
        "Return ONLY a valid JSON object. No markdown. No comments.",
        "Schema version must be reels_script_v2.",
        "",
        "Output schema:",
        SCENARIO_SCHEMA_HINT,
        "",
        "Rules:",
        rules,
        "",
        "Diary:",
        diary_text.strip(),
    ])


def build_scenario_repair_prompt(diary_text: str, previous_output: str, errors) -> str:
    """Repair prompt: feed the previous invalid output and its violations back."""
    rules = SCENARIO_RULES.format(language=SCENARIO_LANGUAGE, shot_count=SCENARIO_SHOT_COUNT)
    return "\n".join([
        "Your previous JSON did not pass validation. Rewrite it as valid reels_script_v2 JSON only.",
        "Return ONLY a valid JSON object. No markdown. No comments.",
        "",
        "Validation errors to fix:",
        "\n".join(f"- {e}" for e in errors),
        "",
        "Hard constraints:",
        rules,
        "",
        "Diary:",
        diary_text.strip(),
        "",
        "Previous invalid JSON:",
        previous_output.strip(),
    ])
