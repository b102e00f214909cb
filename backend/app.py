"""
english-tutor backend (FastAPI)
-------------------------------
Speaking-practice backend for the English tutor web client.

Endpoints
- GET  /health            → quick health check
- POST /english-tutor     → single dispatch endpoint: practice phrase, vocabulary word,
                            random image, or analysis of a recorded clip
- POST /practice-items    → persist an analysed clip (audio uploads + history row)
- GET  /practice-items    → practice history, newest first

Every failure is returned as ``{"error": "<message>"}``.

Run
- pip install -e .
- cd backend && uvicorn app:app --reload --port 8000
"""

from __future__ import annotations

import json
import logging
import time
from typing import Any, Dict, List, Optional

import jwt
from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.concurrency import run_in_threadpool
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, ValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException

import settings
import storage
import tutor
from images import fetch_random_image
from storage import StorageError
from tutor import TutorError

app = FastAPI(title="English Tutor", version="0.1.0")
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


root_logger = logging.getLogger("english_tutor")
if not root_logger.handlers:
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter("%(levelname)s %(name)s: %(message)s"))
    root_logger.addHandler(handler)
root_logger.setLevel(getattr(logging, settings.LOG_LEVEL, logging.INFO))

logger = logging.getLogger("english_tutor.app")


class TutorRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    get_pronunciation_phrase: Any = None
    get_vocabulary_word: Any = None
    get_image: Any = None
    audioBase64: Optional[str] = None
    type: Optional[str] = None
    targetData: Any = None
    imageUrl: Optional[str] = None


class SaveAnalysisRequest(BaseModel):
    original_phrase: str
    corrected_phrase: str
    feedback: Optional[str] = ""
    original_audio_base64: str
    corrected_audio_base64: str = ""
    practice_type: str


# -----------------------------
# Error envelope
# -----------------------------


def _error(message: str, status_code: int) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


@app.exception_handler(TutorError)
async def _tutor_error(request: Request, exc: TutorError) -> JSONResponse:
    return _error(exc.message, exc.status_code)


@app.exception_handler(StorageError)
async def _storage_error(request: Request, exc: StorageError) -> JSONResponse:
    logger.error("Storage failure on %s: %s", request.url.path, exc)
    return _error(str(exc), 500)


@app.exception_handler(StarletteHTTPException)
async def _http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    logger.warning("HTTP %s on %s: %s", exc.status_code, request.url.path, exc.detail)
    return _error(str(exc.detail), exc.status_code)


@app.exception_handler(RequestValidationError)
async def _validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    if errors:
        first = errors[0]
        field = ".".join(str(part) for part in first.get("loc", ()) if part != "body")
        message = f"Invalid request: {field or 'body'}: {first.get('msg', 'invalid value')}"
    else:
        message = "Invalid request."
    logger.warning("Rejected request on %s: %s", request.url.path, message)
    return _error(message, 400)


@app.exception_handler(Exception)
async def _unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s: %s", request.url.path, exc)
    return _error(str(exc) or "Internal server error.", 500)


# -----------------------------
# Auth
# -----------------------------


async def require_session(authorization: str = Header(None)) -> Dict[str, Any] | None:
    """Verify the bearer token when auth is enforced; anonymous otherwise."""

    if not settings.REQUIRE_AUTH or not settings.SUPABASE_JWT_SECRET:
        return None

    if not authorization or not authorization.lower().startswith("bearer "):
        raise HTTPException(status_code=401, detail="missing_auth")

    token = authorization.split(" ", 1)[1].strip()

    try:
        payload = jwt.decode(
            token,
            settings.SUPABASE_JWT_SECRET,
            algorithms=["HS256"],
            options={"verify_aud": False},
        )
    except jwt.InvalidTokenError as exc:
        raise HTTPException(status_code=401, detail="invalid_auth_token") from exc

    return {"user_id": payload.get("sub"), "role": payload.get("role")}


def _who(session: Dict[str, Any] | None) -> str:
    if not session:
        return "anon"
    return session.get("user_id") or session.get("role") or "anon"


# -----------------------------
# Routes
# -----------------------------


@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.on_event("startup")
async def _announce_backend() -> None:
    details = {
        "chat_model": settings.CHAT_MODEL,
        "transcribe_model": settings.TRANSCRIBE_MODEL,
        "language": settings.TRANSCRIBE_LANGUAGE,
        "tts": f"{settings.TTS_MODEL}/{settings.TTS_VOICE}",
        "auth": settings.REQUIRE_AUTH and bool(settings.SUPABASE_JWT_SECRET),
    }
    logger.info("Backend startup configuration: %s", details)


@app.post("/english-tutor")
async def english_tutor(
    request: Request,
    session: Dict[str, Any] | None = Depends(require_session),
):
    try:
        body = await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError) as exc:
        logger.warning("Unparseable tutor request body: %s", exc)
        raise TutorError("Request body must be a JSON object.", status_code=400) from exc
    if not isinstance(body, dict):
        logger.warning("Tutor request body is a %s, not an object", type(body).__name__)
        raise TutorError("Request body must be a JSON object.", status_code=400)

    try:
        payload = TutorRequest.model_validate(body)
    except ValidationError as exc:
        first = exc.errors()[0]
        field = ".".join(str(part) for part in first.get("loc", ()))
        logger.warning("Invalid tutor request field %s: %s", field, first.get("msg"))
        raise TutorError(f"Invalid request: {field}: {first.get('msg')}", status_code=400) from exc

    try:
        return await _dispatch(payload, _who(session))
    except TutorError as exc:
        logger.warning("Tutor request failed (%s): %s", exc.status_code, exc.message)
        raise
    except Exception as exc:
        logger.exception("Error in tutor endpoint: %s", exc)
        raise TutorError(str(exc) or "Internal server error.") from exc


async def _dispatch(payload: TutorRequest, who: str) -> Dict[str, Any]:
    if payload.get_pronunciation_phrase:
        phrase = await run_in_threadpool(tutor.pronunciation_phrase)
        return {"phrase": phrase}

    if payload.get_vocabulary_word:
        item = await run_in_threadpool(tutor.vocabulary_word)
        return item.model_dump()

    if payload.get_image:
        return await fetch_random_image()

    return await _analyze_speech(payload, who)


async def _analyze_speech(payload: TutorRequest, who: str) -> Dict[str, Any]:
    t0 = time.time()
    audio = tutor.decode_audio(payload.audioBase64)
    target = None if payload.targetData is None else str(payload.targetData)

    if payload.type == "image" and not payload.imageUrl:
        raise TutorError("Image URL not provided for image description task.", status_code=400)

    user_phrase = await run_in_threadpool(tutor.transcribe, audio)

    if payload.type == "image":
        described = await run_in_threadpool(tutor.describe_image, payload.imageUrl)
        result: Dict[str, Any] = {"originalPhrase": user_phrase, **described.model_dump()}
    else:
        graded = await run_in_threadpool(tutor.correct_phrase, payload.type, user_phrase, target)
        audio_b64 = await run_in_threadpool(tutor.synthesize, graded["correctedPhrase"])
        result = {
            "originalPhrase": user_phrase,
            "correctedPhrase": graded["correctedPhrase"],
            "feedback": graded["feedback"],
            "correctedAudioBase64": audio_b64,
        }

    logger.info(
        "type=%s user=%s audio_bytes=%d elapsed=%.3fs",
        payload.type or "conversation",
        who,
        len(audio),
        time.time() - t0,
    )
    return result


@app.post("/practice-items", status_code=201)
async def save_practice_item(
    item: SaveAnalysisRequest,
    session: Dict[str, Any] | None = Depends(require_session),
) -> List[Dict[str, Any]]:
    fields = item.model_dump()
    fields["feedback"] = fields["feedback"] or ""
    rows = await run_in_threadpool(lambda: storage.save_analysis(**fields))
    logger.info("saved practice item type=%s user=%s", item.practice_type, _who(session))
    return rows


@app.get("/practice-items")
async def practice_history(
    limit: int = Query(100, ge=1, le=500),
    session: Dict[str, Any] | None = Depends(require_session),
) -> List[Dict[str, Any]]:
    return await run_in_threadpool(storage.fetch_history, limit)
