"""
G.711 μ-law and 3x resampling between the Twilio leg (8 kHz μ-law) and the
OpenAI realtime leg (24 kHz PCM16 little-endian).

All functions are stateless. Resampling is linear interpolation / plain
decimation applied to each frame on its own, with no carry-over between
frames.
"""
import base64
import binascii

import numpy as np

BIAS = 0x84
CLIP = 32635


class AudioFrameError(ValueError):
    """Raised for payloads that cannot be decoded into audio."""


def _build_decode_table() -> np.ndarray:
    table = np.zeros(256, dtype=np.int16)
    for i in range(256):
        mu = ~i & 0xFF
        sign = -1 if mu & 0x80 else 1
        mu &= 0x7F
        exponent = (mu >> 4) & 0x07
        mantissa = mu & 0x0F
        sample = (((mantissa << 1) + 33) << (exponent + 2)) - BIAS
        table[i] = sign * sample
    return table


def _build_segment_table() -> np.ndarray:
    # Segment (exponent) for (biased_magnitude >> 7) & 0xFF: 0,0,1,1,2,2,2,2,3 x8,...
    table = np.zeros(256, dtype=np.int32)
    for i in range(1, 256):
        table[i] = i.bit_length() - 1
    return table


MULAW_DECODE_TABLE = _build_decode_table()
MULAW_SEGMENT_TABLE = _build_segment_table()


# ── Scalar codec ───────────────────────────────────────────────────────────────
def decode_mulaw(value: int) -> int:
    return int(MULAW_DECODE_TABLE[value & 0xFF])


def encode_mulaw(sample: int) -> int:
    return int(pcm_to_mulaw(np.array([sample], dtype=np.int32))[0])


# ── Buffer codec ───────────────────────────────────────────────────────────────
def mulaw_to_pcm(mulaw: bytes) -> np.ndarray:
    """μ-law bytes -> int16 samples."""
    return MULAW_DECODE_TABLE[np.frombuffer(mulaw, dtype=np.uint8)]


def pcm_to_mulaw(samples: np.ndarray) -> np.ndarray:
    """int16 samples -> uint8 μ-law codes."""
    pcm = np.asarray(samples, dtype=np.int32)
    sign = (pcm >> 8) & 0x80
    magnitude = np.where(sign != 0, -pcm, pcm) + BIAS
    magnitude = np.minimum(magnitude, CLIP)
    exponent = MULAW_SEGMENT_TABLE[(magnitude >> 7) & 0xFF]
    mantissa = (magnitude >> (exponent + 3)) & 0x0F
    return (~(sign | (exponent << 4) | mantissa) & 0xFF).astype(np.uint8)


# ── Resampling ─────────────────────────────────────────────────────────────────
def upsample3x(samples: np.ndarray) -> np.ndarray:
    pcm = np.asarray(samples, dtype=np.int32)
    n = len(pcm)
    out = np.empty(n * 3, dtype=np.int16)
    if n == 0:
        return out
    s0 = pcm[:-1]
    delta = pcm[1:] - s0
    out[0:(n - 1) * 3:3] = s0
    # delta / 3 is never a half-integer, so rint matches round-half-up
    out[1:(n - 1) * 3:3] = np.rint(s0 + delta / 3)
    out[2:(n - 1) * 3:3] = np.rint(s0 + 2 * delta / 3)
    out[(n - 1) * 3:] = pcm[-1]
    return out


def downsample3x(samples: np.ndarray) -> np.ndarray:
    pcm = np.asarray(samples, dtype=np.int16)
    return pcm[: (len(pcm) // 3) * 3 : 3].copy()


# ── Wire pipelines ─────────────────────────────────────────────────────────────
def _b64decode(payload: str) -> bytes:
    if not isinstance(payload, str):
        raise AudioFrameError(f"audio payload must be a base64 string, got {type(payload).__name__}")
    try:
        return base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise AudioFrameError(f"invalid base64 audio payload: {e}") from e


def telephony_to_ai(payload: str) -> str:
    """base64 μ-law 8 kHz -> base64 PCM16 24 kHz (Twilio -> OpenAI)."""
    pcm8k = mulaw_to_pcm(_b64decode(payload))
    pcm24k = upsample3x(pcm8k)
    return base64.b64encode(pcm24k.astype("<i2").tobytes()).decode("ascii")


def ai_to_telephony(payload: str) -> str:
    """base64 PCM16 24 kHz -> base64 μ-law 8 kHz (OpenAI -> Twilio)."""
    raw = _b64decode(payload)
    raw = raw[: len(raw) & ~1]
    pcm24k = np.frombuffer(raw, dtype="<i2")
    pcm8k = downsample3x(pcm24k)
    return base64.b64encode(pcm_to_mulaw(pcm8k).tobytes()).decode("ascii")
