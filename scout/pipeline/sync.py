"""
Item synchronization — provider items → local `items` documents.

Every write is a keyed merge: the same provider item applied twice, or
applied by the poll path and the webhook path in either order, ends as one
document holding the union of what both knew.
"""
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional
from urllib.parse import urlparse

from scout.config import ITEMS_PAGE_SIZE
from scout.models.status import ItemEnrichmentStatus
from scout.pipeline.inference import InferenceContext, resolve_item
from scout.pipeline.values import NOT_FOUND, is_real_value

logger = logging.getLogger('pipeline.sync')

ITEM_DOC_TYPE = 'items'
SNIPPET_MAX = 500

# Top-level fields refreshed from the provider on every merge
_DESCRIPTIVE_FIELDS = ('entityType', 'entity', 'snippet', 'sourceUrl', 'score', 'evaluations')
# Fields that keep their first-seen value
_STICKY_FIELDS = ('runId', 'leadsetId', 'createdAt')


@dataclass
class SyncResult:
    """Outcome of one paginated sync pass."""
    total: int = 0
    created: int = 0
    updated: int = 0
    unchanged: int = 0
    failed: int = 0
    item_ids: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict:
        return {
            'total': self.total,
            'saved': self.created + self.updated + self.unchanged,
            'created': self.created,
            'updated': self.updated,
            'failed': self.failed,
        }


# ── Normalization ─────────────────────────────────────────────────────────────

def _domain_from_url(url: str) -> str:
    try:
        host = urlparse(url).hostname or ''
    except ValueError:
        return ''
    return host[4:] if host.startswith('www.') else host


def _score(evaluations: List[Dict]) -> int:
    if not evaluations:
        return 0
    satisfied = sum(1 for e in evaluations if e.get('satisfied') in ('yes', True))
    return round(100 * satisfied / len(evaluations))


def _entity_type(props: Dict) -> str:
    if props.get('person'):
        return 'person'
    if props.get('company'):
        return 'company'
    declared = str(props.get('type') or '').lower()
    return declared if declared in ('company', 'person') else 'company'


def _snippet(props: Dict) -> str:
    description = props.get('description')
    if isinstance(description, str) and description.strip():
        return description.strip()
    content = props.get('content')
    if isinstance(content, str):
        return re.sub(r'\s+', ' ', content[:SNIPPET_MAX]).strip()
    return ''


def normalize_item(raw: Dict, run_id: str, leadset_id: str,
                   context: Optional[InferenceContext] = None) -> Dict:
    """Shape one provider item into the local item document."""
    props = raw.get('properties') or {}
    company = props.get('company') or {}
    person = props.get('person') or {}

    source_url = props.get('url') or raw.get('url') or ''
    domain = props.get('domain') or company.get('domain') or _domain_from_url(source_url)
    evaluations = raw.get('evaluations') or []

    resolution = resolve_item(raw.get('enrichments') or [], context, item_id=raw.get('id', ''))
    enrichment = {'status': ItemEnrichmentStatus.DONE.value if resolution.values else ItemEnrichmentStatus.NONE.value}
    enrichment.update(resolution.values)

    return {
        'itemId': raw['id'],
        'runId': run_id,
        'leadsetId': leadset_id,
        'entityType': _entity_type(props),
        'entity': {
            'name': company.get('name') or person.get('name') or props.get('title') or '',
            'domain': domain,
        },
        'snippet': _snippet(props),
        'sourceUrl': source_url,
        'score': _score(evaluations),
        'evaluations': evaluations,
        'enrichment': enrichment,
        'createdAt': raw.get('createdAt') or datetime.now(timezone.utc).isoformat(),
    }


# ── Merge ─────────────────────────────────────────────────────────────────────

def _status_rank(value) -> int:
    try:
        return ItemEnrichmentStatus(value).rank
    except ValueError:
        return 0


def merge_enrichment(current: Optional[Dict], incoming: Optional[Dict]) -> Dict:
    """
    Field-by-field enrichment merge.

    Status only moves forward. None never clears a value, and NOT_FOUND never
    replaces a real one.
    """
    merged = dict(current or {})
    incoming = incoming or {}

    status = incoming.get('status')
    if status and _status_rank(status) >= _status_rank(merged.get('status')):
        merged['status'] = status
    merged.setdefault('status', ItemEnrichmentStatus.NONE.value)

    for key, value in incoming.items():
        if key == 'status' or value is None:
            continue
        if value == NOT_FOUND and is_real_value(merged.get(key)):
            continue
        merged[key] = value
    return merged


def merge_item(existing: Optional[Dict], incoming: Dict) -> Dict:
    if existing is None:
        return dict(incoming)
    merged = dict(existing)
    for key in _DESCRIPTIVE_FIELDS:
        value = incoming.get(key)
        if value not in (None, '', [], {}):
            merged[key] = value
    for key in _STICKY_FIELDS:
        if not merged.get(key):
            merged[key] = incoming.get(key)
    merged['enrichment'] = merge_enrichment(existing.get('enrichment'), incoming.get('enrichment'))
    return merged


# ── Queries ───────────────────────────────────────────────────────────────────

def load_inference_context(store, session_id: Optional[str]) -> InferenceContext:
    """Bindings and requested keys of every enrichment job on a session."""
    bindings: Dict[str, str] = {}
    requested = set()
    if session_id:
        for job in store.find('enrichments', providerSessionId=session_id):
            requested.update(job.get('fields') or [])
            for req in job.get('requests') or []:
                if req.get('providerRequestId') and req.get('field'):
                    bindings[req['providerRequestId']] = req['field']
    return InferenceContext(bindings=bindings, requested=frozenset(requested) if requested else None)


def session_run_ids(store, leadset_id: str, session_id: Optional[str]) -> List[str]:
    if not session_id:
        return []
    return [r['id'] for r in store.find('runs', leadsetId=leadset_id, providerSessionId=session_id)]


def session_items(store, leadset_id: str, session_id: Optional[str]) -> List[Dict]:
    """Items of a leadset whose first-seen run belongs to `session_id`."""
    run_ids = set(session_run_ids(store, leadset_id, session_id))
    return [i for i in store.find(ITEM_DOC_TYPE, leadsetId=leadset_id) if i.get('runId') in run_ids]


def count_run_items(store, leadset_id: str, session_id: Optional[str]) -> Dict[str, int]:
    """Full-scan counters: the source of truth for found / enriched."""
    items = session_items(store, leadset_id, session_id)
    enriched = sum(1 for i in items if (i.get('enrichment') or {}).get('status') == ItemEnrichmentStatus.DONE.value)
    return {'found': len(items), 'enriched': enriched}


# ── Synchronizer ──────────────────────────────────────────────────────────────

class ItemSynchronizer:
    """Fetches a session's items page by page and merges them into the store."""

    def __init__(self, store, provider, page_size: int = ITEMS_PAGE_SIZE):
        self.store = store
        self.provider = provider
        self.page_size = page_size

    def upsert(self, item: Dict) -> str:
        """Merge one normalized item. Returns 'created', 'updated' or 'unchanged'."""
        before, after = self.store.upsert(ITEM_DOC_TYPE, item['itemId'], lambda current: merge_item(current, item))
        if before is None:
            return 'created'
        return 'updated' if after != before else 'unchanged'

    def apply_raw(self, raw: Dict, run_id: str, leadset_id: str,
                  context: Optional[InferenceContext] = None,
                  enrichment_status: Optional[str] = None) -> str:
        item = normalize_item(raw, run_id, leadset_id, context)
        if enrichment_status:
            item['enrichment']['status'] = enrichment_status
        return self.upsert(item)

    def sync(self, session_id: str, run_id: str, leadset_id: str,
             context: Optional[InferenceContext] = None,
             enrichment_status: Optional[str] = None) -> SyncResult:
        """
        Pull every item of a session. Provider errors propagate; per-item
        failures are counted and the pass continues.
        """
        if context is None:
            context = load_inference_context(self.store, session_id)
        result = SyncResult()
        cursor = None

        while True:
            page = self.provider.list_items(session_id, cursor=cursor, limit=self.page_size)
            for raw in page.get('data') or []:
                result.total += 1
                try:
                    outcome = self.apply_raw(raw, run_id, leadset_id, context, enrichment_status)
                except Exception as e:
                    result.failed += 1
                    logger.error("Item %s failed to save: %s", raw.get('id'), e, exc_info=True)
                    continue
                setattr(result, outcome, getattr(result, outcome) + 1)
                result.item_ids.append(raw['id'])

            cursor = page.get('nextCursor')
            if not page.get('hasMore') or not cursor:
                break

        logger.info("Session %s synced: %d items (%d new, %d updated, %d failed)",
                    session_id, result.total, result.created, result.updated, result.failed)
        return result
