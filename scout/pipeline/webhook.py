"""
Webhook ingestion — the provider's push path.

The HTTP route verifies the signature and enqueues the payload; handle()
runs in the RQ worker and applies the same keyed merges as the poll path, so
duplicate or out-of-order deliveries converge on the same documents.
"""
import hashlib
import hmac
import logging
from typing import Dict, List, Optional

from scout.models.enrichment_job import EnrichmentJob
from scout.models.status import LeadsetStatus, RunStatus
from scout.pipeline.feed import latest_run
from scout.pipeline.state import set_leadset_status, set_run_status
from scout.pipeline.sync import load_inference_context

logger = logging.getLogger('pipeline.webhook')

SIGNATURE_HEADER = 'x-exa-signature'

ITEMS_CREATED = ('webset.items.created', 'webset.item.created')
SESSION_IDLE = ('webset.idle',)
ENRICHMENT_COMPLETED = ('webset.enrichment.completed', 'webset.item.enriched')


def verify_signature(raw_body: bytes, signature: Optional[str], secret: Optional[str]) -> bool:
    """HMAC-SHA256 hex digest of the raw body. No secret configured → accept."""
    if not secret:
        return True
    if not signature:
        return False
    if signature.startswith('sha256='):
        signature = signature[len('sha256='):]
    digest = hmac.new(secret.encode('utf-8'), raw_body, hashlib.sha256).hexdigest()
    # compare_digest rejects non-ASCII str; header values arrive as latin-1
    return hmac.compare_digest(digest.encode('ascii'), signature.strip().lower().encode('utf-8', 'replace'))


def _session_id(event_type: str, data: Dict) -> Optional[str]:
    if data.get('websetId'):
        return data['websetId']
    if isinstance(data.get('webset'), dict):
        return data['webset'].get('id')
    if data.get('object') == 'webset' or event_type in SESSION_IDLE:
        return data.get('id')
    return None


def _items(event_type: str, data: Dict) -> List[Dict]:
    if isinstance(data.get('items'), list):
        return [i for i in data['items'] if isinstance(i, dict) and i.get('id')]
    # Single-item events carry the item itself as data
    if data.get('object') == 'webset_item' and data.get('id'):
        return [data]
    return []


class WebhookIngestor:

    def __init__(self, store, synchronizer, orchestrator, feed):
        self.store = store
        self.synchronizer = synchronizer
        self.orchestrator = orchestrator
        self.feed = feed

    def _run_for_session(self, session_id: Optional[str]) -> Optional[Dict]:
        if not session_id:
            return None
        return latest_run(self.store.find('runs', providerSessionId=session_id))

    def handle(self, payload: Dict) -> Dict:
        if not isinstance(payload, dict):
            logger.warning("Dropping webhook payload of type %s", type(payload).__name__)
            return {'type': None, 'handled': False, 'reason': 'malformed'}
        event_type = payload.get('type')
        data = payload.get('data') or {}
        if not isinstance(data, dict):
            logger.warning("Dropping %s webhook with non-object data", event_type)
            return {'type': event_type, 'handled': False, 'reason': 'malformed'}
        session_id = _session_id(event_type, data)

        if event_type not in ITEMS_CREATED + SESSION_IDLE + ENRICHMENT_COMPLETED:
            logger.info("Ignoring webhook event %s", event_type)
            return {'type': event_type, 'handled': False, 'reason': 'unsupported'}

        run = self._run_for_session(session_id)
        if run is None:
            logger.warning("No run found for session %s (%s); dropping", session_id, event_type)
            return {'type': event_type, 'handled': False, 'reason': 'no_run'}

        if event_type in ITEMS_CREATED:
            body = self._items_created(run, data)
        elif event_type in SESSION_IDLE:
            body = self._session_idle(run)
        else:
            body = self._enrichment_completed(run, data)

        body.update({'type': event_type, 'handled': True, 'runId': run['id']})
        return body

    def _apply_items(self, run: Dict, items: List[Dict]) -> Dict[str, int]:
        context = load_inference_context(self.store, run.get('providerSessionId'))
        outcomes = {'created': 0, 'updated': 0, 'unchanged': 0, 'failed': 0}
        for raw in items:
            try:
                outcome = self.synchronizer.apply_raw(raw, run['id'], run['leadsetId'], context)
            except Exception as e:
                outcomes['failed'] += 1
                logger.error("Webhook item %s failed to save: %s", raw.get('id'), e, exc_info=True)
                continue
            outcomes[outcome] += 1
        return outcomes

    def _items_created(self, run: Dict, data: Dict) -> Dict:
        outcomes = self._apply_items(run, _items('webset.items.created', data))
        # Only brand-new items move the counter; the next full scan corrects drift
        if outcomes['created']:
            self.store.increment('runs', run['id'], 'counters.found', outcomes['created'])
        if outcomes['created'] or outcomes['updated']:
            self.feed.refresh(collections=('items', 'runs'), leadsetId=run['leadsetId'], runId=run['id'])
        logger.info("Webhook: %d new / %d updated items on run %s",
                    outcomes['created'], outcomes['updated'], run['id'])
        return outcomes

    def _session_idle(self, run: Dict) -> Dict:
        updated = None
        if run.get('status') == RunStatus.RUNNING.value:
            updated = set_run_status(self.store, run['id'], RunStatus.COMPLETED, strict=False)
            leadset = self.store.get('leadsets', run['leadsetId']) or {}
            if leadset.get('lastRunId') in (None, run['id']):
                set_leadset_status(self.store, run['leadsetId'], LeadsetStatus.IDLE)
            self.feed.refresh(collections=('runs', 'leadsets'), leadsetId=run['leadsetId'], runId=run['id'])
            logger.info("Webhook: session %s idle, run %s completed", run.get('providerSessionId'), run['id'])
        return {'completed': updated is not None}

    def _enrichment_completed(self, run: Dict, data: Dict) -> Dict:
        outcomes = self._apply_items(run, _items('webset.enrichment.completed', data))
        changed = outcomes['created'] + outcomes['updated']
        if changed:
            self.store.increment('runs', run['id'], 'counters.enriched', changed)
            self.feed.refresh(collections=('items', 'runs'), leadsetId=run['leadsetId'], runId=run['id'])

        enrichment_id = data.get('enrichmentId')
        if not enrichment_id and data.get('object') == 'webset_enrichment':
            enrichment_id = data.get('id')
        job_id = self._job_for(run, enrichment_id)
        job_status = None
        if job_id:
            try:
                job_status = self.orchestrator.check_enrichment(job_id)['status']
            except Exception as e:
                logger.error("Webhook: resolution pass for job %s failed: %s", job_id, e, exc_info=True)
        outcomes.update({'jobId': job_id, 'jobStatus': job_status})
        return outcomes

    def _job_for(self, run: Dict, enrichment_id: Optional[str]) -> Optional[str]:
        jobs = self.store.find('enrichments', providerSessionId=run.get('providerSessionId'))
        if enrichment_id:
            for job in jobs:
                if EnrichmentJob.from_dict(job).field_for_request(enrichment_id):
                    return job['id']
        open_jobs = [j for j in jobs if j.get('status') == 'pending']
        if open_jobs:
            return max(open_jobs, key=lambda j: (j.get('createdAt') or '', j.get('id') or ''))['id']
        return None
