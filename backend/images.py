"""Random practice images from Unsplash."""

from __future__ import annotations

import logging
from typing import Dict, Optional

import httpx

import settings
from tutor import TutorError

logger = logging.getLogger("english_tutor.images")


async def fetch_random_image(client: Optional[httpx.AsyncClient] = None) -> Dict[str, str]:
    """Return ``url``/``photographer``/``link`` for a random landscape photo."""
    if not settings.UNSPLASH_ACCESS_KEY:
        raise TutorError("Unsplash API key is not configured.")

    url = f"{settings.UNSPLASH_API_BASE_URL}/photos/random"
    params = {"orientation": "landscape", "client_id": settings.UNSPLASH_ACCESS_KEY}

    try:
        if client is None:
            async with httpx.AsyncClient(timeout=10.0) as owned:
                response = await owned.get(url, params=params)
        else:
            response = await client.get(url, params=params)
    except httpx.HTTPError as exc:
        logger.error("Unsplash request failed: %s", exc)
        raise TutorError("Unsplash API is unreachable.") from exc

    if response.is_error:
        raise TutorError(f"Unsplash API error: {response.reason_phrase}")

    try:
        data = response.json()
        return {
            "url": data["urls"]["regular"],
            "photographer": data["user"]["name"],
            "link": data["links"]["html"],
        }
    except (ValueError, KeyError, TypeError) as exc:
        logger.error("Unsplash payload missing fields: %s", exc)
        raise TutorError("Unsplash returned an unexpected payload.") from exc
