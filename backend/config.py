import logging
import os

from dotenv import load_dotenv

load_dotenv()


def _env_flag(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, default))
    except (TypeError, ValueError):
        return default


def _env_float(name: str, default: float) -> float:
    try:
        return float(os.getenv(name, default))
    except (TypeError, ValueError):
        return default


def _env_seconds_list(name: str, default: tuple[float, ...]) -> tuple[float, ...]:
    value = os.getenv(name)
    if not value:
        return default
    try:
        parsed = tuple(float(part) for part in value.split(",") if part.strip())
    except ValueError:
        return default
    return parsed or default


# ── Storage / API ────────────────────────────────────────
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./gennie.db")
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000")

# ── Audio ────────────────────────────────────────────────
SAMPLE_RATE = _env_int("SAMPLE_RATE", 16000)
CAPTURE_BUFFER_SIZE = _env_int("CAPTURE_BUFFER_SIZE", 4096)

# ── Voice agent ──────────────────────────────────────────
AGENT_URL = os.getenv("AGENT_URL", "wss://agent.deepgram.com/v1/agent/converse")
DEEPGRAM_API_KEY = os.getenv("DEEPGRAM_API_KEY", "")
AGENT_LANGUAGE = os.getenv("AGENT_LANGUAGE", "en")
AGENT_LISTEN_MODEL = os.getenv("AGENT_LISTEN_MODEL", "nova-2")
AGENT_THINK_PROVIDER = os.getenv("AGENT_THINK_PROVIDER", "open_ai")
AGENT_THINK_MODEL = os.getenv("AGENT_THINK_MODEL", "gpt-4o-mini")
AGENT_SPEAK_MODEL = os.getenv("AGENT_SPEAK_MODEL", "aura-asteria-en")
AGENT_KEEPALIVE_SECONDS = _env_float("AGENT_KEEPALIVE_SECONDS", 5.0)
AGENT_GOODBYE_SECONDS = _env_float("AGENT_GOODBYE_SECONDS", 5.0)

BACKEND_URL = os.getenv("BACKEND_URL", "http://localhost:8000")
BACKEND_TIMEOUT = _env_float("BACKEND_TIMEOUT", 10.0)

# ── Scoring / extraction ─────────────────────────────────
GEMINI_API_KEY = os.getenv("GEMINI_API_KEY")
SCORING_MODEL = os.getenv("SCORING_MODEL", "gemini-2.5-flash-lite")
EXTRACTION_MODEL = os.getenv("EXTRACTION_MODEL", "gemini-2.5-flash-lite")

# ── Analysis job ─────────────────────────────────────────
ANALYSIS_WORKERS = _env_int("ANALYSIS_WORKERS", 2)
ANALYSIS_TRIES = _env_int("ANALYSIS_TRIES", 3)
ANALYSIS_BACKOFF = _env_seconds_list("ANALYSIS_BACKOFF", (30.0, 60.0, 120.0))
ANALYSIS_TIMEOUT = _env_float("ANALYSIS_TIMEOUT", 300.0)
ANALYSIS_MAX_EXCEPTIONS = _env_int("ANALYSIS_MAX_EXCEPTIONS", 2)
MIN_CANDIDATE_LINES = _env_int("MIN_CANDIDATE_LINES", 3)
MIN_TRANSCRIPT_CHARS = _env_int("MIN_TRANSCRIPT_CHARS", 500)

# ── Recovery ─────────────────────────────────────────────
STUCK_ANALYSIS_MINUTES = _env_int("STUCK_ANALYSIS_MINUTES", 10)
ENABLE_RECOVERY_SWEEP = _env_flag("ENABLE_RECOVERY_SWEEP", False)
RECOVERY_SWEEP_INTERVAL = _env_float("RECOVERY_SWEEP_INTERVAL", 300.0)

# ── Context search ───────────────────────────────────────
ENABLE_EMBEDDING_SEARCH = _env_flag("ENABLE_EMBEDDING_SEARCH", False)
EMBEDDING_MODEL = os.getenv("EMBEDDING_MODEL", "all-MiniLM-L6-v2")


def setup_logging(level: str | None = None) -> None:
    logging.basicConfig(
        level=(level or os.getenv("LOG_LEVEL", "INFO")).upper(),
        format="%(asctime)s [%(levelname)s] %(name)s – %(message)s",
    )
