"""
OpenAI-backed tutor operations
------------------------------
Speech-to-text, prompt building, reply validation and text-to-speech for the
practice exercises. Everything here is blocking; the HTTP layer runs these
calls in the worker thread pool.
"""

from __future__ import annotations

import base64
import binascii
import json
import logging
from functools import lru_cache
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, ValidationError

import settings

logger = logging.getLogger("english_tutor.openai")

NO_RESPONSE_MESSAGE = "AI did not return a response. Please try again."
UNPARSEABLE_MESSAGE = "We had trouble understanding the AI's response. Please try again."
NOTHING_HEARD_MESSAGE = "We didn't hear anything. Please try speaking clearly."

PRONUNCIATION_PHRASE_PROMPT = (
    "Provide a single, simple, and common English sentence for pronunciation practice, "
    "suitable for an A2-B1 level learner. Just the sentence, no quotes."
)

VOCABULARY_WORD_PROMPT = (
    "You are an English teacher. Provide a single, useful English vocabulary word suitable "
    "for an intermediate learner (B1 CEFR level) and its simple definition.\n"
    "The word should be common enough to be valuable in everyday conversation.\n"
    'Respond ONLY in a valid JSON object with two keys: "word" and "definition".\n'
    'Example: {"word": "achieve", "definition": "to succeed in finishing something or reaching an aim"}'
)

IMAGE_DESCRIPTION_PROMPT = (
    "You are an expert English teacher. Your task is to:\n"
    "1. Generate a detailed description of the provided image (2-3 sentences)\n"
    "2. Provide 3 vocabulary words related to the image with simple definitions\n\n"
    "Respond ONLY with valid JSON in this exact format:\n"
    "{\n"
    '  "description": "Your detailed description here",\n'
    '  "vocabulary": [\n'
    '    {"word": "word1", "definition": "simple definition"},\n'
    '    {"word": "word2", "definition": "simple definition"},\n'
    '    {"word": "word3", "definition": "simple definition"}\n'
    "  ]\n"
    "}"
)


class TutorError(Exception):
    """A failure whose message can be shown to the learner as-is."""

    def __init__(self, message: str, status_code: int = 500) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class VocabularyItem(BaseModel):
    word: str = Field(min_length=1)
    definition: str = Field(min_length=1)


class ImageDescription(BaseModel):
    description: str = Field(min_length=1)
    vocabulary: List[VocabularyItem]


@lru_cache(maxsize=1)
def _get_openai_client():  # type: ignore[return-any]
    if not settings.OPENAI_API_KEY:
        raise RuntimeError("OPENAI_API_KEY is not set")
    from openai import OpenAI

    client_kwargs = {"api_key": settings.OPENAI_API_KEY}
    if settings.OPENAI_BASE_URL:
        client_kwargs["base_url"] = settings.OPENAI_BASE_URL
    return OpenAI(**client_kwargs)


# -----------------------------
# Audio in / audio out
# -----------------------------


def decode_audio(audio_base64: Optional[str]) -> bytes:
    if not audio_base64:
        raise TutorError("Audio not provided.", status_code=400)
    try:
        audio = base64.b64decode(audio_base64, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise TutorError("Audio could not be decoded.", status_code=400) from exc
    if not audio:
        raise TutorError("Audio not provided.", status_code=400)
    if len(audio) > settings.MAX_AUDIO_BYTES:
        raise TutorError("Audio clip is too long.", status_code=400)
    return audio


def transcribe(audio: bytes) -> str:
    """Return the trimmed transcript of a webm clip; an empty transcript is a 400."""
    client = _get_openai_client()
    response = client.audio.transcriptions.create(  # type: ignore[attr-defined]
        file=("audio.webm", audio, "audio/webm"),
        model=settings.TRANSCRIBE_MODEL,
        language=settings.TRANSCRIBE_LANGUAGE,
    )
    text = response if isinstance(response, str) else getattr(response, "text", "")
    transcript = (text or "").strip()
    logger.debug("transcript_sample=%s", transcript[:160])
    if not transcript:
        raise TutorError(NOTHING_HEARD_MESSAGE, status_code=400)
    return transcript


def synthesize(text: str) -> str:
    """Speak ``text`` with the tutor voice and return the mp3 as base64."""
    client = _get_openai_client()
    response = client.audio.speech.create(  # type: ignore[attr-defined]
        model=settings.TTS_MODEL,
        voice=settings.TTS_VOICE,
        input=text,
        response_format="mp3",
    )
    return base64.b64encode(response.content).decode("ascii")


# -----------------------------
# Chat completions
# -----------------------------


def _chat_completion(messages: List[Dict[str, Any]], *, json_mode: bool) -> str:
    client = _get_openai_client()
    request_kwargs: Dict[str, Any] = {"model": settings.CHAT_MODEL, "messages": messages}
    if json_mode:
        request_kwargs["response_format"] = {"type": "json_object"}
    completion = client.chat.completions.create(**request_kwargs)  # type: ignore[attr-defined]

    if not completion.choices:
        raise TutorError(NO_RESPONSE_MESSAGE)

    raw = getattr(completion.choices[0].message, "content", None)
    if isinstance(raw, list):
        raw = "".join(getattr(part, "text", "") or "" for part in raw)
    raw = (raw or "").strip()
    if not raw:
        raise TutorError(NO_RESPONSE_MESSAGE)
    return raw


def _parse_json_object(raw: str) -> Dict[str, Any]:
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as exc:
        logger.error("AI response parsing failed: %s Content: %s", exc, raw)
        raise TutorError(UNPARSEABLE_MESSAGE) from exc
    if not isinstance(data, dict):
        logger.error("AI response is not a JSON object. Content: %s", raw)
        raise TutorError(UNPARSEABLE_MESSAGE)
    return data


def pronunciation_phrase() -> str:
    return _chat_completion(
        [{"role": "system", "content": PRONUNCIATION_PHRASE_PROMPT}],
        json_mode=False,
    )


def vocabulary_word() -> VocabularyItem:
    raw = _chat_completion(
        [{"role": "system", "content": VOCABULARY_WORD_PROMPT}],
        json_mode=True,
    )
    data = _parse_json_object(raw)
    try:
        return VocabularyItem.model_validate(data)
    except ValidationError as exc:
        logger.error("AI vocabulary word invalid: %s Content: %s", exc, raw)
        raise TutorError(UNPARSEABLE_MESSAGE) from exc


def describe_image(image_url: str) -> ImageDescription:
    raw = _chat_completion(
        [
            {"role": "system", "content": IMAGE_DESCRIPTION_PROMPT},
            {"role": "user", "content": [{"type": "image_url", "image_url": {"url": image_url}}]},
        ],
        json_mode=True,
    )
    data = _parse_json_object(raw)
    try:
        return ImageDescription.model_validate(data)
    except ValidationError as exc:
        logger.error("AI image description invalid: %s Content: %s", exc, raw)
        raise TutorError(UNPARSEABLE_MESSAGE) from exc


def correction_prompt(practice_type: Optional[str], user_phrase: str, target: Optional[str]) -> str:
    if practice_type == "pronunciation":
        return (
            f'You are an expert English pronunciation coach. The user was trying to say: "{target}". '
            f'Their attempt was: "{user_phrase}". Analyze their attempt. '
            'Respond ONLY with a valid JSON object with a single key: "feedback".'
        )
    if practice_type == "vocabulary":
        return (
            f'The user was given the word "{target}" and said: "{user_phrase}". '
            "Is this a correct use of the word? Provide feedback on grammar and context. "
            'Respond in a JSON object with keys "correctedPhrase" and "feedback".'
        )
    return (
        f'Analyze this user\'s phrase: "{user_phrase}". Correct grammatical errors and provide '
        'helpful feedback. Respond in a JSON object with keys "correctedPhrase" and "feedback".'
    )


def correct_phrase(practice_type: Optional[str], user_phrase: str, target: Optional[str]) -> Dict[str, str]:
    """Grade an utterance and return ``correctedPhrase``/``feedback``.

    Pronunciation replies carry feedback only, so the target phrase stands in
    for the corrected phrase whenever the model leaves it out.
    """
    prompt = correction_prompt(practice_type, user_phrase, target)
    data = _parse_json_object(_chat_completion([{"role": "system", "content": prompt}], json_mode=True))

    corrected = data.get("correctedPhrase") or target
    corrected = "" if corrected is None else str(corrected)
    if not corrected.strip():
        raise TutorError("The AI returned an empty corrected phrase.")

    feedback = data.get("feedback")
    if feedback is None:
        feedback = ""
    elif not isinstance(feedback, str):
        feedback = json.dumps(feedback, ensure_ascii=False)
    return {
        "correctedPhrase": corrected,
        "feedback": feedback,
    }
