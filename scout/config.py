"""
Centralized configuration — env vars and service constants.
"""
import os


# ── Logging ──────────────────────────────────────────────────────────────────
LOG_LEVEL = os.getenv('LOG_LEVEL', 'INFO')
LOG_FORMAT = os.getenv('LOG_FORMAT', 'text')

# ── Redis ─────────────────────────────────────────────────────────────────────
REDIS_URL = os.getenv('REDIS_URL', 'redis://localhost:6379/0')

# ── PostgreSQL ────────────────────────────────────────────────────────────────
DATABASE_URL = os.getenv('DATABASE_URL', 'sqlite:///local.db')

# ── Exa Websets ───────────────────────────────────────────────────────────────
EXA_API_KEY = os.getenv('EXA_API_KEY')
EXA_API_BASE = os.getenv('EXA_API_BASE', 'https://api.exa.ai')
EXA_TIMEOUT = int(os.getenv('EXA_TIMEOUT', '30'))
EXA_WEBHOOK_SECRET = os.getenv('EXA_WEBHOOK_SECRET')

# Public callback URL registered on new websets (None = polling only)
WEBHOOK_URL = os.getenv('WEBHOOK_URL')

# ── Feed snapshot ─────────────────────────────────────────────────────────────
FEED_SCAN_LIMIT = int(os.getenv('FEED_SCAN_LIMIT', '5000'))

# ── Enrichment costs ──────────────────────────────────────────────────────────
# Optional YAML file overriding per-field default costs
FIELD_COSTS_PATH = os.getenv('FIELD_COSTS_PATH')

# ── Factory reset ─────────────────────────────────────────────────────────────
RESET_SCAN_LIMIT = 50000
RESET_DELETE_BATCH = 50
RESET_SESSION_BATCH = 10
RESET_SETTLE_SECONDS = 0.5
RESET_MAX_ITERATIONS = 100

# ── Items pagination ─────────────────────────────────────────────────────────
ITEMS_PAGE_SIZE = 100

# ── RQ ────────────────────────────────────────────────────────────────────────
JOB_TIMEOUT = 600
