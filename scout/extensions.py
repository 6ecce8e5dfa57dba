"""
Shared client instances — Redis, the document store, the Exa client.

Lazily initialized on first access so importing this module is always safe
(even when env vars are missing during tests).
"""
import logging

import redis

from scout.config import REDIS_URL, EXA_API_KEY, EXA_WEBHOOK_SECRET, WEBHOOK_URL

logger = logging.getLogger('scout.extensions')

# ── Redis ─────────────────────────────────────────────────────────────────────
redis_client = redis.from_url(REDIS_URL, decode_responses=True)

# ── Engine ────────────────────────────────────────────────────────────────────
_engine = None


def get_engine():
    """Build (once) the engine around the configured database, Redis and Exa client."""
    global _engine
    if _engine is None:
        from scout import database
        from scout.pipeline.engine import build_engine
        from scout.services.exa import ExaClient
        from scout.services.store import DocumentStore

        if not EXA_API_KEY:
            logger.warning("EXA_API_KEY not set — Exa calls return mock data")
        if not EXA_WEBHOOK_SECRET:
            logger.warning("EXA_WEBHOOK_SECRET not set — webhook signatures are not checked")

        store = DocumentStore(database.get_session, publisher=redis_client)
        _engine = build_engine(store, ExaClient(), webhook_secret=EXA_WEBHOOK_SECRET, webhook_url=WEBHOOK_URL)
    return _engine


def set_engine(engine):
    """Replace the shared engine (tests, scripts)."""
    global _engine
    _engine = engine
