"""
Practice history persistence
----------------------------
Supabase storage buckets hold the learner and tutor audio clips; the
practice table holds one row per analysed utterance.
"""

from __future__ import annotations

import base64
import binascii
import logging
import uuid

from supabase import create_client

import settings

logger = logging.getLogger("english_tutor.storage")


class StorageError(Exception):
    pass


# -----------------------------
# Supabase client
# -----------------------------

_supabase = None


def get_supabase():
    global _supabase
    if _supabase is None:
        if not settings.SUPABASE_URL or not settings.SUPABASE_KEY:
            raise StorageError("SUPABASE_URL or SUPABASE_SERVICE_ROLE_KEY is not set")
        _supabase = create_client(settings.SUPABASE_URL, settings.SUPABASE_KEY)
    return _supabase


# -----------------------------
# Audio uploads
# -----------------------------

AUDIO_EXTENSIONS = {"audio/webm": "webm", "audio/mpeg": "mp3"}


def upload_audio(audio_base64: str, bucket: str, content_type: str = "audio/webm") -> str:
    """Store a base64 clip under a fresh name and return its public URL."""
    try:
        contents = base64.b64decode(audio_base64, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise StorageError(f"Storage Upload Error: {exc}") from exc

    path = f"{uuid.uuid4()}.{AUDIO_EXTENSIONS.get(content_type, 'bin')}"
    bucket_api = get_supabase().storage.from_(bucket)
    try:
        bucket_api.upload(path, contents, {"content-type": content_type, "upsert": "false"})
    except Exception as exc:
        raise StorageError(f"Storage Upload Error: {exc}") from exc

    logger.debug("uploaded %s (%d bytes) to %s", path, len(contents), bucket)
    return bucket_api.get_public_url(path)


# -----------------------------
# Practice history
# -----------------------------


def save_analysis(
    *,
    original_phrase: str,
    corrected_phrase: str,
    feedback: str,
    original_audio_base64: str,
    corrected_audio_base64: str,
    practice_type: str,
) -> list:
    try:
        original_audio_url = upload_audio(
            original_audio_base64, settings.ORIGINAL_AUDIO_BUCKET, "audio/webm"
        )
        # image exercises have no synthesized audio
        corrected_audio_url = None
        if corrected_audio_base64:
            corrected_audio_url = upload_audio(
                corrected_audio_base64, settings.CORRECTED_AUDIO_BUCKET, "audio/mpeg"
            )

        res = (
            get_supabase()
            .table(settings.PRACTICE_TABLE)
            .insert(
                {
                    "original_phrase": original_phrase,
                    "corrected_phrase": corrected_phrase,
                    "feedback": feedback,
                    "original_audio_url": original_audio_url,
                    "corrected_audio_url": corrected_audio_url,
                    "practice_type": practice_type,
                }
            )
            .execute()
        )
    except Exception as exc:
        raise StorageError(f"Failed to save analysis: {exc}") from exc

    return res.data or []


def fetch_history(limit: int = 100) -> list:
    try:
        res = (
            get_supabase()
            .table(settings.PRACTICE_TABLE)
            .select("*")
            .order("created_at", desc=True)
            .limit(limit)
            .execute()
        )
    except StorageError:
        raise
    except Exception as exc:
        raise StorageError(str(exc)) from exc
    return res.data or []
