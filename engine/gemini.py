"""Client for the Gemini image-generation endpoint."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable

import httpx

from config import (
    GEMINI_IMAGE_ENDPOINT,
    GENERATION_INITIAL_DELAY,
    GENERATION_MAX_ATTEMPTS,
    GENERATION_TIMEOUT_SECONDS,
)
from engine.errors import GenerationError

logger = logging.getLogger(__name__)


def _extract_image(data: dict) -> str:
    """Pull the first inline image out of a generateContent response."""
    if not isinstance(data, dict):
        raise GenerationError("Unexpected response shape from Gemini API.")
    candidates = data.get("candidates")
    candidate = candidates[0] if isinstance(candidates, list) and candidates else None
    content = candidate.get("content") if isinstance(candidate, dict) else None
    parts = content.get("parts") if isinstance(content, dict) else None
    for part in parts if isinstance(parts, list) else []:
        inline = part.get("inlineData") if isinstance(part, dict) else None
        if isinstance(inline, dict) and isinstance(inline.get("data"), str) and inline["data"]:
            return inline["data"]
    raise GenerationError("No image data received from Gemini API.")


def _error_message(response: httpx.Response) -> str:
    """The provider's own error message, if the body carries one."""
    try:
        body = response.json()
    except ValueError:
        return f"Gemini API error (status {response.status_code})"
    error = body.get("error") if isinstance(body, dict) else None
    message = error.get("message") if isinstance(error, dict) else None
    if isinstance(message, str) and message:
        return message
    return f"Gemini API error (status {response.status_code})"


async def generate_composite_image(
    api_key: str,
    prompt: str,
    goal_image_base64: str,
    goal_image_mime_type: str = "image/jpeg",
    *,
    max_attempts: int = GENERATION_MAX_ATTEMPTS,
    initial_delay: float = GENERATION_INITIAL_DELAY,
    endpoint: str = GEMINI_IMAGE_ENDPOINT,
    client: httpx.AsyncClient | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> str:
    """Ask the provider to render the instruction against the goal image.

    Failed attempts (non-2xx or transport errors) are retried with
    exponential backoff: ``initial_delay``, then double that, and so on.

    Args:
        api_key: Provider credential.
        prompt: Composited instruction text.
        goal_image_base64: Reference image, base64 without a data-URL prefix.
        goal_image_mime_type: MIME type of the reference image.
        max_attempts: Total number of requests before giving up.
        initial_delay: Seconds to wait after the first failure.
        endpoint: generateContent URL.
        client: Optional shared client (tests pass one with a mock transport).
        sleep: Backoff sleep, injectable for tests.

    Returns:
        The generated image as base64.

    Raises:
        GenerationError: On exhaustion (with the provider's message verbatim
            when it sent one) or when a success carries no image.
    """
    payload = {
        "contents": [
            {
                "parts": [
                    {"text": prompt},
                    {"inlineData": {"mimeType": goal_image_mime_type, "data": goal_image_base64}},
                ],
            },
        ],
        "generationConfig": {"responseModalities": ["IMAGE"]},
    }

    owns_client = client is None
    client = client or httpx.AsyncClient(timeout=GENERATION_TIMEOUT_SECONDS)
    last_response: httpx.Response | None = None
    last_error: httpx.HTTPError | None = None
    delay = initial_delay

    try:
        for attempt in range(1, max_attempts + 1):
            try:
                response = await client.post(endpoint, headers={"x-goog-api-key": api_key}, json=payload)
            except httpx.HTTPError as exc:
                last_error = exc
                logger.warning(
                    "Gemini request failed (attempt %d/%d): %s", attempt, max_attempts, exc,
                )
            else:
                if response.is_success:
                    try:
                        data = response.json()
                    except ValueError as exc:
                        raise GenerationError("Invalid JSON payload from Gemini API.") from exc
                    return _extract_image(data)
                last_response = response
                logger.warning(
                    "Gemini returned status %d (attempt %d/%d)",
                    response.status_code, attempt, max_attempts,
                )

            if attempt < max_attempts:
                await sleep(delay)
                delay *= 2
    finally:
        if owns_client:
            await client.aclose()

    if last_response is not None:
        raise GenerationError(_error_message(last_response))
    if last_error is not None:
        raise GenerationError(f"Could not reach Gemini API: {last_error}")
    raise GenerationError("No response received from Gemini API.")
