"""Environment configuration for the English tutor backend."""

import os

from dotenv import load_dotenv

load_dotenv()


def _flag(name: str, default: str = "0") -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


# OpenAI
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY", "").strip()
OPENAI_BASE_URL = os.getenv("OPENAI_BASE_URL", "").strip()
CHAT_MODEL = os.getenv("TUTOR_CHAT_MODEL", "gpt-4o").strip()
TRANSCRIBE_MODEL = os.getenv("TUTOR_TRANSCRIBE_MODEL", "whisper-1").strip()
TRANSCRIBE_LANGUAGE = os.getenv("TUTOR_TRANSCRIBE_LANGUAGE", "en").strip() or "en"
TTS_MODEL = os.getenv("TUTOR_TTS_MODEL", "tts-1").strip()
TTS_VOICE = os.getenv("TUTOR_TTS_VOICE", "nova").strip()
MAX_AUDIO_BYTES = int(os.getenv("TUTOR_MAX_AUDIO_BYTES", str(25 * 1024 * 1024)))

# Unsplash
UNSPLASH_ACCESS_KEY = os.getenv("UNSPLASH_ACCESS_KEY", "").strip()
UNSPLASH_API_BASE_URL = os.getenv("UNSPLASH_API_BASE_URL", "https://api.unsplash.com").rstrip("/")

# Supabase
SUPABASE_URL = os.getenv("SUPABASE_URL", "").strip()
SUPABASE_KEY = os.getenv("SUPABASE_SERVICE_ROLE_KEY", "").strip()
ORIGINAL_AUDIO_BUCKET = os.getenv("TUTOR_ORIGINAL_AUDIO_BUCKET", "original-audios")
CORRECTED_AUDIO_BUCKET = os.getenv("TUTOR_CORRECTED_AUDIO_BUCKET", "corrected-audios")
PRACTICE_TABLE = os.getenv("TUTOR_PRACTICE_TABLE", "practice_items")

# Auth
REQUIRE_AUTH = _flag("TUTOR_REQUIRE_AUTH")
SUPABASE_JWT_SECRET = os.getenv("SUPABASE_JWT_SECRET", "").strip()

LOG_LEVEL = os.getenv("TUTOR_LOG_LEVEL", "INFO").upper()
