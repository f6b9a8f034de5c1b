import os

from dotenv import load_dotenv

load_dotenv()


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./brackets.db")
SQL_ECHO = os.getenv("SQL_ECHO", "false").lower() in ("true", "1", "yes")
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# A generation lock older than this is treated as abandoned (crashed worker)
GENERATION_LOCK_TTL_SECONDS = _env_int("GENERATION_LOCK_TTL_SECONDS", 300)

# Upper bound on waiting for another result/resolution on the same bracket
RESOLUTION_LOCK_TIMEOUT_SECONDS = _env_int("RESOLUTION_LOCK_TIMEOUT_SECONDS", 10)

CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "").split(",") if o.strip()]
