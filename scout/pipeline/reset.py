"""
Maintenance — factory reset and bulk item deletion.

Deletes go out in fixed-size batches. The store may lag behind its own
writes, so each pass waits a settle delay before re-scanning, and stops when
the store is empty, when a pass makes no progress, or at the iteration cap.
"""
import logging
import time
from dataclasses import dataclass, asdict
from typing import Callable, Dict, Iterable, List, Optional, Sequence

from scout.config import (
    RESET_DELETE_BATCH, RESET_MAX_ITERATIONS, RESET_SCAN_LIMIT,
    RESET_SESSION_BATCH, RESET_SETTLE_SECONDS,
)
from scout.pipeline.sync import ITEM_DOC_TYPE

logger = logging.getLogger('pipeline.reset')


@dataclass
class ResetResult:
    sessions_deleted: int = 0
    sessions_failed: int = 0
    documents_deleted: int = 0
    documents_failed: int = 0
    iterations: int = 0
    remaining: int = 0
    stuck: bool = False

    def to_dict(self) -> Dict:
        return asdict(self)


def _batches(seq: Sequence, size: int) -> Iterable[Sequence]:
    for start in range(0, len(seq), size):
        yield seq[start:start + size]


def delete_leadset_items(store, leadset_id: str, run_ids: Optional[Iterable[str]] = None) -> Dict[str, int]:
    """Delete a leadset's items (optionally only those first seen by `run_ids`)."""
    items = store.find(ITEM_DOC_TYPE, leadsetId=leadset_id)
    if run_ids is not None:
        wanted = set(run_ids)
        items = [i for i in items if i.get('runId') in wanted]

    deleted = failed = 0
    for batch in _batches(items, RESET_DELETE_BATCH):
        for item in batch:
            try:
                store.delete(ITEM_DOC_TYPE, item['itemId'])
                deleted += 1
            except Exception as e:
                failed += 1
                logger.warning("Item %s not deleted: %s", item.get('itemId'), e)

    logger.info("Leadset %s: deleted %d/%d items (%d failed)", leadset_id, deleted, len(items), failed)
    return {'total': len(items), 'deleted': deleted, 'failed': failed}


def _session_ids(store) -> List[str]:
    ids = set()
    for doc_type in ('runs', 'leadsets'):
        for _, _, data in store.scan(doc_type=doc_type):
            if data.get('providerSessionId'):
                ids.add(data['providerSessionId'])
    return sorted(ids)


def factory_reset(store, provider, feed=None,
                  sleep: Callable[[float], None] = time.sleep,
                  settle_seconds: float = RESET_SETTLE_SECONDS,
                  max_iterations: int = RESET_MAX_ITERATIONS,
                  scan_limit: int = RESET_SCAN_LIMIT,
                  batch_size: int = RESET_DELETE_BATCH,
                  session_batch_size: int = RESET_SESSION_BATCH) -> ResetResult:
    """Delete every provider session, then every document."""
    result = ResetResult()

    sessions = _session_ids(store)
    for batch in _batches(sessions, session_batch_size):
        for session_id in batch:
            try:
                provider.delete_session(session_id)
                result.sessions_deleted += 1
            except Exception as e:
                result.sessions_failed += 1
                logger.warning("Session %s not deleted: %s", session_id, e)
    logger.info("Reset: %d sessions deleted, %d failed", result.sessions_deleted, result.sessions_failed)

    remaining = store.scan(limit=scan_limit)
    while remaining and result.iterations < max_iterations:
        result.iterations += 1
        before = len(remaining)
        keys_before = {(doc_type, doc_id) for doc_type, doc_id, _ in remaining}
        deleted_before = result.documents_deleted

        for batch in _batches(remaining, batch_size):
            for doc_type, doc_id, _ in batch:
                try:
                    store.delete(doc_type, doc_id)
                    result.documents_deleted += 1
                except Exception as e:
                    result.documents_failed += 1
                    logger.warning("Document %s/%s not deleted: %s", doc_type, doc_id, e)

        sleep(settle_seconds)
        remaining = store.scan(limit=scan_limit)
        logger.info("Reset pass %d: %d → %d documents", result.iterations, before, len(remaining))
        # A capped scan can return the same count while still making progress
        if result.documents_deleted == deleted_before or \
                {(doc_type, doc_id) for doc_type, doc_id, _ in remaining} == keys_before:
            result.stuck = True
            logger.warning("Reset made no progress with %d documents left", len(remaining))
            break

    result.remaining = len(remaining)
    if result.iterations >= max_iterations and remaining:
        logger.warning("Reset hit iteration cap with %d documents left", len(remaining))

    if feed is not None:
        feed.refresh(collections=('leadsets', 'runs', 'items', 'enrichments'))
    return result
