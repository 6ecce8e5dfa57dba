"""
Leadset feed — the denormalized snapshot the read client listens to.

build_feed() is pure: the same documents always give the same payload, so
the snapshot carries no timestamps. The change moment lives on docStatus,
whose version is bumped after every rebuild.
"""
import logging
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Optional, Tuple

from scout.config import FEED_SCAN_LIMIT

logger = logging.getLogger('pipeline.feed')

FEED_DOC_TYPE = 'leadsetFeed'
FEED_DOC_ID = 'global'
STATUS_DOC_TYPE = 'docStatus'
STATUS_DOC_ID = 'status'
SETTINGS_DOC_TYPE = 'settings'

DEFAULT_SETTINGS = {'cost': {'perContact': 2}}


def latest_run(runs: List[Dict]) -> Optional[Dict]:
    if not runs:
        return None
    # createdAt descending; id breaks ties so the choice never depends on scan order
    return max(runs, key=lambda r: (r.get('createdAt') or '', r.get('id') or ''))


def build_feed(docs: Iterable[Tuple[str, str, Dict]]) -> Dict:
    """Assemble the feed payload from (doc_type, doc_id, data) tuples."""
    leadsets, runs, items = [], [], []
    settings = None
    for doc_type, doc_id, data in docs:
        if doc_type == 'leadsets':
            leadsets.append(data)
        elif doc_type == 'runs':
            runs.append(data)
        elif doc_type == 'items':
            items.append(data)
        elif doc_type == SETTINGS_DOC_TYPE and settings is None:
            settings = data

    leadsets.sort(key=lambda l: str(l.get('id') or ''))

    runs_by_leadset: Dict[str, List[Dict]] = {}
    for run in runs:
        runs_by_leadset.setdefault(run.get('leadsetId'), []).append(run)

    items_by_leadset: Dict[str, List[Dict]] = {}
    for item in items:
        items_by_leadset.setdefault(item.get('leadsetId'), []).append(item)

    details = {}
    for leadset in leadsets:
        leadset_items = sorted(
            items_by_leadset.get(leadset.get('id'), []),
            key=lambda i: (i.get('createdAt') or '', i.get('itemId') or ''),
        )
        details[leadset.get('id')] = {
            'leadset': leadset,
            'run': latest_run(runs_by_leadset.get(leadset.get('id'), [])),
            'items': leadset_items,
        }

    return {
        'doc_type': FEED_DOC_TYPE,
        'id': FEED_DOC_ID,
        'leadsets': leadsets,
        'leadsetDetails': details,
        'settings': settings,
        'counts': {
            'leadsets': len(leadsets),
            'runs': len(runs),
            'items': len(items),
        },
    }


class FeedAggregator:
    """Rebuilds the snapshot and bumps the change version."""

    def __init__(self, store, scan_limit: int = FEED_SCAN_LIMIT):
        self.store = store
        self.scan_limit = scan_limit

    def rebuild(self, preloaded: Optional[List[Tuple[str, str, Dict]]] = None,
                collections: Iterable[str] = ('leadsets', 'runs', 'items'), **metadata) -> Dict:
        docs = preloaded if preloaded is not None else self.store.scan(limit=self.scan_limit)
        payload = build_feed(docs)
        self.store.put(FEED_DOC_TYPE, FEED_DOC_ID, payload)
        self.bump_version(collections, **metadata)

        statuses = ', '.join(f"{l.get('id')}:{l.get('status') or 'unknown'}" for l in payload['leadsets'])
        logger.info("Feed rebuilt (%d leadsets, %d runs, %d items) [%s]",
                    payload['counts']['leadsets'], payload['counts']['runs'],
                    payload['counts']['items'], statuses)
        return payload

    def refresh(self, **kwargs) -> Optional[Dict]:
        """Rebuild after a mutation that already succeeded; failures are logged only."""
        try:
            return self.rebuild(**kwargs)
        except Exception as e:
            logger.error("Feed rebuild failed: %s", e, exc_info=True)
            return None

    def bump_version(self, collections: Iterable[str] = (), **metadata) -> int:
        version = self.store.increment(STATUS_DOC_TYPE, STATUS_DOC_ID, 'version', 1)
        patch = {
            'lastChange': datetime.now(timezone.utc).isoformat(),
            'updated': {c: True for c in collections},
        }
        patch.update(metadata)
        self.store.update(STATUS_DOC_TYPE, STATUS_DOC_ID, patch)
        return version

    def read(self) -> Dict:
        """Current snapshot, building one if none exists yet."""
        feed = self.store.get(FEED_DOC_TYPE, FEED_DOC_ID)
        if feed is None:
            feed = self.rebuild()
        return feed

    def settings(self) -> Dict:
        return self.store.get(SETTINGS_DOC_TYPE, 'settings') or dict(DEFAULT_SETTINGS)
