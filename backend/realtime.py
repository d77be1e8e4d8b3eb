import logging

import httpx
import websockets

from config import (
    OPENAI_API_KEY,
    REALTIME_MODEL,
    REALTIME_URL,
    TRANSCRIPTION_MODEL,
    TURN_DETECTION_PREFIX_MS,
    TURN_DETECTION_SILENCE_MS,
    TURN_DETECTION_THRESHOLD,
    VOICE,
)
from prompts import compose_system_prompt, greeting_instructions
from session import RestaurantContext
from tools import TOOL_SCHEMAS

logger = logging.getLogger("ivr.openai")


async def connect_realtime():
    """Open the realtime WebSocket. The caller owns and closes the connection."""
    if not OPENAI_API_KEY:
        raise RuntimeError("Missing the OpenAI API key. Please set it in the .env file.")
    return await websockets.connect(
        f"{REALTIME_URL}?model={REALTIME_MODEL}",
        additional_headers={
            "Authorization": f"Bearer {OPENAI_API_KEY}",
            "OpenAI-Beta": "realtime=v1",
        },
        max_size=None,
    )


# ── Client events ──────────────────────────────────────────────────────────────
def session_update(restaurant: RestaurantContext) -> dict:
    return {
        "type": "session.update",
        "session": {
            "modalities": ["text", "audio"],
            "instructions": compose_system_prompt(restaurant),
            "voice": restaurant.voice or VOICE,
            "input_audio_format": "pcm16",
            "output_audio_format": "pcm16",
            "input_audio_transcription": {"model": TRANSCRIPTION_MODEL},
            "turn_detection": {
                "type": "server_vad",
                "threshold": TURN_DETECTION_THRESHOLD,
                "prefix_padding_ms": TURN_DETECTION_PREFIX_MS,
                "silence_duration_ms": TURN_DETECTION_SILENCE_MS,
            },
            "tools": TOOL_SCHEMAS,
        },
    }


def greeting_response(restaurant: RestaurantContext) -> dict:
    return {
        "type": "response.create",
        "response": {
            "modalities": ["text", "audio"],
            "instructions": greeting_instructions(restaurant),
        },
    }


def audio_append(audio_b64: str) -> dict:
    return {"type": "input_audio_buffer.append", "audio": audio_b64}


def function_output(call_id: str, output: str) -> dict:
    return {
        "type": "conversation.item.create",
        "item": {
            "type": "function_call_output",
            "call_id": call_id,
            "output": output,
        },
    }


RESPONSE_CREATE = {"type": "response.create"}
RESPONSE_CANCEL = {"type": "response.cancel"}


# ── Connectivity probe ─────────────────────────────────────────────────────────
def extract_openai_error(body, fallback_text: str = "") -> str:
    if isinstance(body, dict):
        error_obj = body.get("error")
        if isinstance(error_obj, dict):
            msg = error_obj.get("message")
            if msg:
                return str(msg)
    return fallback_text[:300] if fallback_text else "Unknown OpenAI error"


async def check_openai_connectivity() -> tuple[bool, str]:
    if not OPENAI_API_KEY:
        return False, "OPENAI_API_KEY not set"
    url = "https://api.openai.com/v1/models"
    headers = {"Authorization": f"Bearer {OPENAI_API_KEY}"}
    try:
        async with httpx.AsyncClient(timeout=15) as client:
            r = await client.get(url, headers=headers)
    except httpx.HTTPError as e:
        return False, str(e) or e.__class__.__name__
    try:
        body = r.json()
    except ValueError:
        body = None
    if r.status_code >= 400:
        return False, f"HTTP {r.status_code}: {extract_openai_error(body, r.text)}"
    return True, "API reachable"
