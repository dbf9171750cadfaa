"""
Runtime configuration for College Orbit.

All settings come from environment variables (a local .env file is loaded
by main.py before anything imports this module).
"""

import os


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


# Database
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./college_orbit.db")
SLOW_QUERY_THRESHOLD_MS = _int_env("SLOW_QUERY_THRESHOLD_MS", 100)

# Auth
JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "").strip()
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRE_MINUTES = _int_env("ACCESS_TOKEN_EXPIRE_MINUTES", 60 * 24 * 30)

# Shared secret presented by the external cron caller
CRON_SECRET = os.getenv("CRON_SECRET", "").strip()

# Observability
SENTRY_DSN = os.getenv("SENTRY_DSN")
ENVIRONMENT = os.getenv("ENVIRONMENT", "development")

# CORS - extra origins for preview deploys, comma separated
CORS_ALLOWED_ORIGINS = os.getenv("CORS_ALLOWED_ORIGINS", "")

# Cache
REDIS_URL = os.getenv("REDIS_URL")
LEADERBOARD_CACHE_TTL_SECONDS = _int_env("LEADERBOARD_CACHE_TTL_SECONDS", 60)

# Recurrence engine
RECURRENCE_WINDOW_DAYS = _int_env("RECURRENCE_WINDOW_DAYS", 180)
RECURRENCE_REFRESH_MINUTES = _int_env("RECURRENCE_REFRESH_MINUTES", 60)
# Upper bound on rows one generation run may write; later runs continue from there
RECURRENCE_MAX_INSTANCES_PER_RUN = _int_env("RECURRENCE_MAX_INSTANCES_PER_RUN", 1000)
