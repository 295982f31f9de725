# auction_pipeline/config.py
"""Environment-driven settings.

Values are read once at import time from the process environment (and a local
`.env` file when present). Components take these as defaults and accept
per-call overrides.
"""
import os
from dotenv import load_dotenv

load_dotenv()

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", 8000))

# database
DATABASE_URL = os.getenv("DATABASE_URL") or os.getenv("POSTGRES_URL") or "sqlite:///./auction_sales.db"
DB_POOL_SIZE = int(os.getenv("DB_POOL_SIZE", 5))
DB_MAX_OVERFLOW = int(os.getenv("DB_MAX_OVERFLOW", 10))

# upstream auction API
UPSTREAM_BASE_URL = os.getenv("UPSTREAM_BASE_URL", "https://api.apicar.store/api/history-cars")
UPSTREAM_API_KEY = os.getenv("UPSTREAM_API_KEY", "")
UPSTREAM_TIMEOUT_SECONDS = float(os.getenv("UPSTREAM_TIMEOUT_SECONDS", 30))
UPSTREAM_MAX_RETRIES = int(os.getenv("UPSTREAM_MAX_RETRIES", 1))
# must match the upstream API's maximum page size
PAGE_SIZE = 25

# collection
COLLECTION_ENABLED = os.getenv("COLLECTION_ENABLED", "0") == "1"
COLLECTION_INTERVAL_MINUTES = int(os.getenv("COLLECTION_INTERVAL_MINUTES", 30))
COLLECTION_DAYS_BACK = int(os.getenv("COLLECTION_DAYS_BACK", 150))
COLLECTION_STALE_HOURS = int(os.getenv("COLLECTION_STALE_HOURS", 24))
COLLECTION_YEAR_FROM = int(os.getenv("COLLECTION_YEAR_FROM", 2012))
MAX_MODELS_PER_MAKE = int(os.getenv("MAX_MODELS_PER_MAKE", 50))
MAX_PAGES_PER_MODEL = int(os.getenv("MAX_PAGES_PER_MODEL", 50))
PAGE_DELAY_SECONDS = float(os.getenv("PAGE_DELAY_SECONDS", 1.0))
MODEL_DELAY_SECONDS = float(os.getenv("MODEL_DELAY_SECONDS", 0.5))
SITE_DELAY_SECONDS = float(os.getenv("SITE_DELAY_SECONDS", 0.5))

# cache / freshness
FRESHNESS_TTL_MINUTES = int(os.getenv("FRESHNESS_TTL_MINUTES", 60))

# analysis
ANALYSIS_MEMORY_THRESHOLD = float(os.getenv("ANALYSIS_MEMORY_THRESHOLD", 0.85))
ANALYSIS_MEMORY_BUDGET_MB = int(os.getenv("ANALYSIS_MEMORY_BUDGET_MB", 0))
