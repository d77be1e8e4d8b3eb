import os
from dotenv import load_dotenv
from sqlalchemy.engine import URL, make_url
load_dotenv()


def _env_bool(name: str, default: bool) -> bool:
    val = os.getenv(name)
    if val is None:
        return default
    return val.strip().lower() in {"1", "true", "yes", "on"}


# ── Server ─────────────────────────────────────────────────────────────────────
PORT = int(os.getenv("PORT", 8080))
LOG_LEVEL = (os.getenv("LOG_LEVEL") or "INFO").strip().upper()

# ── OpenAI realtime ────────────────────────────────────────────────────────────
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
REALTIME_URL = os.getenv("REALTIME_URL", "wss://api.openai.com/v1/realtime")
REALTIME_MODEL = os.getenv("REALTIME_MODEL", "gpt-4o-realtime-preview-2024-12-17")
REALTIME_LOG_EVERY_EVENT = _env_bool("REALTIME_LOG_EVERY_EVENT", False)
VOICE = os.getenv("VOICE", "alloy")
TRANSCRIPTION_MODEL = os.getenv("TRANSCRIPTION_MODEL", "whisper-1")

# VAD tuning
TURN_DETECTION_THRESHOLD = float(os.getenv("TURN_DETECTION_THRESHOLD", 0.5))
TURN_DETECTION_PREFIX_MS = int(os.getenv("TURN_DETECTION_PREFIX_MS", 300))
TURN_DETECTION_SILENCE_MS = int(os.getenv("TURN_DETECTION_SILENCE_MS", 600))

# ── Twilio ─────────────────────────────────────────────────────────────────────
TWILIO_PHONE_NUMBER = os.getenv("TWILIO_PHONE_NUMBER", "")

# Per-call queue bounds
CALL_INBOX_SIZE = int(os.getenv("CALL_INBOX_SIZE", 512))
LEG_QUEUE_SIZE = int(os.getenv("LEG_QUEUE_SIZE", 256))

# ── Database ───────────────────────────────────────────────────────────────────
DB_NAME = os.getenv("DB_NAME", "ivr_ai")
DB_USER = os.getenv("DB_USER", "root")
DB_PASS = os.getenv("DB_PASS", "")
DB_HOST = os.getenv("DB_HOST", "localhost")
DB_PORT = os.getenv("DB_PORT", "3306")

DB_PORT_INT = int(DB_PORT)

ROOT_DATABASE_URL = URL.create(
    "mysql+pymysql",
    username=DB_USER,
    password=DB_PASS,
    host=DB_HOST,
    port=DB_PORT_INT,
)

_database_url = os.getenv("DATABASE_URL")
DATABASE_URL = make_url(_database_url) if _database_url else URL.create(
    "mysql+pymysql",
    username=DB_USER,
    password=DB_PASS,
    host=DB_HOST,
    port=DB_PORT_INT,
    database=DB_NAME,
)
