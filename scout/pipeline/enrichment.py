"""
Enrichment orchestration — provider enrichment requests and the resolution pass.

request_enrichment() creates one provider enrichment per field and records
which provider id belongs to which field. check_enrichment() is polled by the
client (and triggered by the enrichment-completed webhook); once every
provider request has settled it claims the job, reconciles all items, and
closes out the run.
"""
import logging
from typing import Dict, List, Optional

from scout.errors import InvalidFieldsError, NoExistingSessionError, NotFoundError
from scout.models.enrichment_job import DOC_TYPE as JOB_DOC_TYPE, EnrichmentJob
from scout.models.run import Run
from scout.models.status import (
    EnrichmentJobStatus, ItemEnrichmentStatus, LeadsetStatus, RunStatus,
    RUN_TRANSITIONS, check_transition,
)
from scout.pipeline.fields import (
    ENRICHMENT_FIELDS, allowed_fields_for_leadset, estimate_cost, resolve_fields, unknown_fields,
)
from scout.pipeline.inference import InferenceContext
from scout.pipeline.state import set_leadset_status, set_run_counters, set_run_status
from scout.pipeline.sync import ITEM_DOC_TYPE, count_run_items, session_items

logger = logging.getLogger('pipeline.enrichment')

# Provider enrichment states that will not change any more
_SETTLED = frozenset({'completed', 'failed', 'canceled'})


class _AlreadyClaimed(Exception):
    pass


class EnrichmentOrchestrator:

    def __init__(self, store, provider, synchronizer, feed):
        self.store = store
        self.provider = provider
        self.synchronizer = synchronizer
        self.feed = feed

    # ── Request ─────────────────────────────────────────────────────────────

    def request_enrichment(self, leadset_id: str, run_id: str,
                           requested_fields: Optional[List[str]] = None) -> Dict:
        invalid = unknown_fields(requested_fields or [])
        if invalid:
            raise InvalidFieldsError(invalid)

        leadset = self.store.get('leadsets', leadset_id)
        if leadset is None:
            raise NotFoundError('Leadset', leadset_id)
        run_doc = self.store.get('runs', run_id)
        if run_doc is None or run_doc.get('leadsetId') != leadset_id:
            raise NotFoundError('Run', run_id)

        run = Run.from_dict(run_doc)
        session_id = run.provider_session_id or leadset.get('providerSessionId')
        if not session_id:
            raise NoExistingSessionError(leadset_id)
        check_transition('Run', RUN_TRANSITIONS, run.status, RunStatus.ENRICHING)

        fields = resolve_fields(requested_fields, allowed_fields_for_leadset(leadset))
        items = session_items(self.store, leadset_id, session_id)

        job = EnrichmentJob(run_id=run.id, leadset_id=leadset_id,
                            provider_session_id=session_id, fields=fields)
        for key in fields:
            spec = ENRICHMENT_FIELDS[key]
            created = self.provider.create_enrichment(
                session_id,
                description=spec.description,
                format=spec.format,
                options=[dict(o) for o in spec.options] or None,
                field_tag=key,
            )
            job.add_request(key, created.get('id'), spec.format)
            logger.info("Enrichment for %s requested on %s: %s", key, session_id, created.get('id'))

        job.estimated_cost = estimate_cost(fields, len(items))
        self.store.create(JOB_DOC_TYPE, job.id, job.to_dict())

        marked = self._mark_items_enriching(items)
        set_run_status(self.store, run.id, RunStatus.ENRICHING, lastEnrichmentId=job.id)
        set_leadset_status(self.store, leadset_id, LeadsetStatus.ENRICHING)
        self.feed.refresh(collections=('runs', 'items', 'leadsets', 'enrichments'),
                          leadsetId=leadset_id, runId=run.id)

        logger.info("Job %s: %d fields on %d items (est. cost %.2f)",
                    job.id, len(fields), marked, job.estimated_cost)
        return {
            'job': job.to_dict(),
            'fields': fields,
            'itemCount': len(items),
            'estimatedCost': job.estimated_cost,
        }

    def _mark_items_enriching(self, items: List[Dict]) -> int:
        def mark(current):
            if current is None:
                raise KeyError('item vanished')
            enrichment = dict(current.get('enrichment') or {})
            enrichment['status'] = ItemEnrichmentStatus.ENRICHING.value
            current['enrichment'] = enrichment
            return current

        marked = 0
        for item in items:
            try:
                self.store.upsert(ITEM_DOC_TYPE, item['itemId'], mark)
                marked += 1
            except Exception as e:
                logger.warning("Item %s not marked enriching: %s", item.get('itemId'), e)
        return marked

    # ── Resolution pass ─────────────────────────────────────────────────────

    def check_enrichment(self, job_id: str, leadset_id: Optional[str] = None) -> Dict:
        """
        Poll a job. Returns its status plus the per-request provider states.

        Completed jobs short-circuit. A job another worker is reconciling
        reads as pending.
        """
        doc = self.store.get(JOB_DOC_TYPE, job_id)
        if doc is None or (leadset_id is not None and doc.get('leadsetId') != leadset_id):
            raise NotFoundError('Enrichment job', job_id)
        job = EnrichmentJob.from_dict(doc)

        if job.status in (EnrichmentJobStatus.COMPLETED, EnrichmentJobStatus.FAILED):
            return self._status_body(job, job.status.value)
        if job.status == EnrichmentJobStatus.PROCESSING:
            return self._status_body(job, EnrichmentJobStatus.PENDING.value)

        statuses = self._provider_statuses(job)
        job.request_statuses = statuses
        if not all(s in _SETTLED for s in statuses.values()):
            self.store.update(JOB_DOC_TYPE, job.id, {'requestStatuses': statuses})
            return self._status_body(job, EnrichmentJobStatus.PENDING.value)

        try:
            self._claim(job.id, statuses)
        except _AlreadyClaimed:
            return self._status_body(job, EnrichmentJobStatus.PENDING.value)

        try:
            return self._reconcile(job, statuses)
        except Exception:
            logger.error("Job %s reconciliation failed; back to pending", job.id, exc_info=True)
            self.store.update(JOB_DOC_TYPE, job.id, {'status': EnrichmentJobStatus.PENDING.value})
            raise

    def _provider_statuses(self, job: EnrichmentJob) -> Dict[str, str]:
        statuses = {}
        for req in job.requests:
            request_id = req.get('providerRequestId')
            try:
                remote = self.provider.get_enrichment(job.provider_session_id, request_id)
                statuses[request_id] = remote.get('status') or 'pending'
            except Exception as e:
                logger.warning("Enrichment %s status unavailable: %s", request_id, e)
                statuses[request_id] = 'pending'
        return statuses

    def _claim(self, job_id: str, statuses: Dict[str, str]):
        def claim(current):
            if current is None or current.get('status') != EnrichmentJobStatus.PENDING.value:
                raise _AlreadyClaimed()
            current['status'] = EnrichmentJobStatus.PROCESSING.value
            current['requestStatuses'] = statuses
            return current

        self.store.upsert(JOB_DOC_TYPE, job_id, claim)

    def _reconcile(self, job: EnrichmentJob, statuses: Dict[str, str]) -> Dict:
        job.status = EnrichmentJobStatus.PROCESSING
        context = InferenceContext(
            bindings={r['providerRequestId']: r['field'] for r in job.requests if r.get('providerRequestId')},
            requested=frozenset(job.fields),
        )
        result = self.synchronizer.sync(
            job.provider_session_id, job.run_id, job.leadset_id,
            context=context, enrichment_status=ItemEnrichmentStatus.DONE.value,
        )

        all_failed = bool(statuses) and all(s == 'failed' for s in statuses.values())
        job.transition(EnrichmentJobStatus.FAILED if all_failed else EnrichmentJobStatus.COMPLETED)
        job.enriched_count = result.total - result.failed
        self.store.put(JOB_DOC_TYPE, job.id, job.to_dict())

        counts = count_run_items(self.store, job.leadset_id, job.provider_session_id)
        set_run_counters(self.store, job.run_id, **counts)
        still_open = self._open_jobs(job.run_id, exclude=job.id)
        if still_open:
            logger.info("Job %s done; run %s stays enriching for %s",
                        job.id, job.run_id, ', '.join(still_open))
        else:
            set_run_status(self.store, job.run_id, RunStatus.COMPLETED, strict=False)
            leadset = self.store.get('leadsets', job.leadset_id) or {}
            if leadset.get('lastRunId') in (None, job.run_id):
                set_leadset_status(self.store, job.leadset_id, LeadsetStatus.IDLE)
        self.feed.refresh(collections=('runs', 'items', 'leadsets', 'enrichments'),
                          leadsetId=job.leadset_id, runId=job.run_id)

        logger.info("Job %s %s: %d items reconciled, %d enriched on run",
                    job.id, job.status.value, job.enriched_count, counts['enriched'])
        return self._status_body(job, job.status.value)

    def _open_jobs(self, run_id: str, exclude: str) -> List[str]:
        open_states = (EnrichmentJobStatus.PENDING.value, EnrichmentJobStatus.PROCESSING.value)
        return sorted(
            doc['id'] for doc in self.store.find(JOB_DOC_TYPE, runId=run_id)
            if doc.get('id') != exclude and doc.get('status') in open_states
        )

    @staticmethod
    def _status_body(job: EnrichmentJob, status: str) -> Dict:
        return {
            'jobId': job.id,
            'status': status,
            'fields': list(job.fields),
            'requests': dict(job.request_statuses),
            'enrichedCount': job.enriched_count,
        }
