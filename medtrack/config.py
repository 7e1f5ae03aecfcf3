"""
Centralised configuration constants read from the environment.
"""

import os

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def _env_list(name: str) -> list:
    value = os.getenv(name, "")
    return [item.strip() for item in value.split(",") if item.strip()]


# ── Tokens ───────────────────────────────────────────────────────────
DEFAULT_JWT_SECRET = "medtrack-dev-secret-key-change-in-production-0000"
JWT_SECRET = os.getenv("JWT_SECRET", DEFAULT_JWT_SECRET)
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_TTL_SECONDS = int(os.getenv("JWT_TTL_SECONDS", "7200"))  # 2 hours

# ── Passwords ────────────────────────────────────────────────────────
BCRYPT_ROUNDS = int(os.getenv("BCRYPT_ROUNDS", "12"))

# ── Database ─────────────────────────────────────────────────────────
DB_URL = os.getenv("DB_URL", "postgresql://localhost:5432/medtrack")
DB_USER = os.getenv("DB_USER")
DB_PASSWORD = os.getenv("DB_PASSWORD")
DB_ECHO = _env_bool("DB_ECHO")

# ── CORS ─────────────────────────────────────────────────────────────
PRODUCTION_ORIGIN = os.getenv("PRODUCTION_ORIGIN", "https://medtrack.netlify.app")
ALLOWED_ORIGINS = _env_list("ALLOWED_ORIGINS") or [PRODUCTION_ORIGIN]
ALLOWED_ORIGIN_REGEX = (
    r"^(https?://localhost(:\d+)?"
    r"|https://[A-Za-z0-9-]+\.netlify\.app"
    r"|https://[A-Za-z0-9-]+\.vercel\.app)$"
)
ALLOWED_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"]

# ── Domain defaults ──────────────────────────────────────────────────
DEFAULT_COUNTRY = os.getenv("DEFAULT_COUNTRY", "India")
MAX_BULK_LOCATIONS = 50
RECENT_VISITS_DAYS = 7
RECENT_VISITS_LIMIT = 10
DASHBOARD_TOP_PRODUCTS = 5
NOTES_PREVIEW_CHARS = 50

# ── Logging ──────────────────────────────────────────────────────────
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# ── Seeding ──────────────────────────────────────────────────────────
SEED_PASSWORD = os.getenv("SEED_PASSWORD", "medtrack123")
