import os
from pathlib import Path

from dotenv import load_dotenv

load_dotenv(Path(__file__).parent / ".env")

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./shortlinks.db")

REDIS_HOST = os.getenv("REDIS_HOST", "localhost")
REDIS_PORT = int(os.getenv("REDIS_PORT", "6379"))

BASE_URL = os.getenv("BASE_URL", "http://localhost:8000").rstrip("/")

SHORT_CODE_LENGTH = int(os.getenv("SHORT_CODE_LENGTH", "6"))
# Ceiling for length growth when the code space at a given length is crowded
SHORT_CODE_MAX_LENGTH = int(os.getenv("SHORT_CODE_MAX_LENGTH", "16"))

REDIRECT_STATUS_CODE = int(os.getenv("REDIRECT_STATUS_CODE", "301"))

GEOIP_URL = os.getenv("GEOIP_URL", "http://ip-api.com/json/{ip}?fields=countryCode")
GEOIP_TIMEOUT = float(os.getenv("GEOIP_TIMEOUT", "1.0"))
# Only successful lookups are cached
GEOIP_CACHE_TTL = int(os.getenv("GEOIP_CACHE_TTL", "86400"))

STATS_CACHE_TTL = int(os.getenv("STATS_CACHE_TTL", "300"))

FRAUD_WINDOW_MINUTES = int(os.getenv("FRAUD_WINDOW_MINUTES", "5"))
FRAUD_MAX_CLICKS = int(os.getenv("FRAUD_MAX_CLICKS", "50"))

RETENTION_DAYS = int(os.getenv("RETENTION_DAYS", "365"))
# 0 disables the in-process sweeper; run app.tasks from cron instead
SWEEP_INTERVAL_SECONDS = int(os.getenv("SWEEP_INTERVAL_SECONDS", "0"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
