"""
Run controller — per-leadset run state machine.

  idle → running → {completed | failed | canceled}
  completed → enriching → completed (loop on re-enrichment)

Owns run creation (new / extend / replace), cancellation, and the poll path
that pulls provider items and settles run status. Every mutation ends with a
feed rebuild.
"""
import logging
import time
from typing import Dict, List, Optional

from scout.errors import NoExistingSessionError, NotFoundError, RunConflictError
from scout.models.run import DOC_TYPE as RUN_DOC_TYPE, Run
from scout.models.status import LeadsetStatus, RunMode, RunStatus
from scout.pipeline.feed import latest_run
from scout.pipeline.reset import delete_leadset_items
from scout.pipeline.state import set_leadset_status, set_run_counters, set_run_status
from scout.pipeline.sync import count_run_items, session_items, session_run_ids

logger = logging.getLogger('pipeline.manager')

DEFAULT_RUN_COUNT = 10


def build_search_query(leadset: Dict) -> str:
    """Concatenate the leadset's facets in a fixed order."""
    segment = leadset.get('segment') or {}
    signals = (leadset.get('intent') or {}).get('signals') or []
    tribe = segment.get('tribe') or []

    parts = []
    if leadset.get('description'):
        parts.append(leadset['description'])
    if segment.get('segment_archetype'):
        parts.append(segment['segment_archetype'])
    if segment.get('geo_region'):
        parts.append(f"in {segment['geo_region']}")
    if segment.get('firmographic_company_size'):
        parts.append(f"{segment['firmographic_company_size']} size")
    if tribe:
        parts.append(f"focusing on {', '.join(tribe)}")
    if signals:
        parts.append(f"showing intent for {', '.join(signals)}")

    return '. '.join(parts) or leadset.get('name') or 'companies'


def build_criteria(leadset: Dict) -> List[Dict]:
    signals = (leadset.get('intent') or {}).get('signals') or []
    return [{'description': f"Shows intent or interest in {signal}"} for signal in signals]


def _sorted_items(items: List[Dict]) -> List[Dict]:
    return sorted(items, key=lambda i: (i.get('createdAt') or '', i.get('itemId') or ''))


class RunController:

    def __init__(self, store, provider, synchronizer, feed, webhook_url: Optional[str] = None):
        self.store = store
        self.provider = provider
        self.synchronizer = synchronizer
        self.feed = feed
        self.webhook_url = webhook_url

    # ── Lookups ─────────────────────────────────────────────────────────────

    def _leadset(self, leadset_id: str) -> Dict:
        leadset = self.store.get('leadsets', leadset_id)
        if leadset is None:
            raise NotFoundError('Leadset', leadset_id)
        return leadset

    def _run(self, leadset_id: str, run_id: str) -> Dict:
        run = self.store.get(RUN_DOC_TYPE, run_id)
        if run is None or run.get('leadsetId') != leadset_id:
            raise NotFoundError('Run', run_id)
        return run

    def runs_for(self, leadset_id: str) -> List[Dict]:
        return self.store.find(RUN_DOC_TYPE, leadsetId=leadset_id)

    def _release_leadset(self, leadset_id: str, run_id: str):
        """Leadset back to idle, unless a newer run has taken it over."""
        leadset = self.store.get('leadsets', leadset_id) or {}
        if leadset.get('lastRunId') in (None, run_id):
            set_leadset_status(self.store, leadset_id, LeadsetStatus.IDLE)

    # ── Start ───────────────────────────────────────────────────────────────

    def start_run(self, leadset_id: str, mode: str = RunMode.NEW, count: int = DEFAULT_RUN_COUNT,
                  force: bool = False) -> Dict:
        mode = RunMode(mode)
        leadset = self._leadset(leadset_id)
        requested_count = int(count or DEFAULT_RUN_COUNT)
        if requested_count < 1:
            raise ValueError('count must be positive')

        runs = self.runs_for(leadset_id)
        latest = latest_run(runs)
        existing_session = (latest or {}).get('providerSessionId') or leadset.get('providerSessionId')
        active = [r for r in runs if RunStatus(r.get('status') or 'running').is_active]

        if mode == RunMode.NEW and not force and (existing_session or active):
            item_count = len(session_items(self.store, leadset_id, existing_session))
            raise RunConflictError(existing_session, (latest or {}).get('id'), item_count)
        if mode == RunMode.EXTEND and not existing_session:
            raise NoExistingSessionError(leadset_id)

        if mode == RunMode.REPLACE and existing_session:
            self._discard_session(leadset_id, existing_session)
            # Runs on the discarded session are dead even if the new session fails
            self._supersede(active, mode)
            active = []

        query = build_search_query(leadset)
        criteria = build_criteria(leadset)
        search_id = None
        try:
            if mode == RunMode.EXTEND:
                search = self.provider.append_search(existing_session, query, requested_count, criteria)
                session_id = existing_session
                search_id = search.get('id')
            else:
                session = self.provider.create_session(
                    query, requested_count, 'company', criteria,
                    correlation_id=f"{leadset_id}_{int(time.time() * 1000)}",
                    callback_url=self.webhook_url,
                )
                session_id = session['id']
        except Exception:
            logger.error("Leadset %s: provider rejected %s run", leadset_id, mode.value, exc_info=True)
            set_leadset_status(self.store, leadset_id, LeadsetStatus.FAILED)
            self.feed.refresh(collections=('leadsets',), leadsetId=leadset_id)
            raise

        self._supersede(active, mode)

        run = Run(
            leadset_id=leadset_id,
            provider_session_id=session_id,
            mode=mode,
            requested_count=requested_count,
            search_query=query,
            search_id=search_id,
        )
        self.store.create(RUN_DOC_TYPE, run.id, run.to_dict())
        self.store.update('leadsets', leadset_id, {'providerSessionId': session_id, 'lastRunId': run.id})
        set_leadset_status(self.store, leadset_id, LeadsetStatus.RUNNING)
        self.feed.refresh(collections=('leadsets', 'runs'), leadsetId=leadset_id, runId=run.id)

        logger.info("Started run %s (mode=%s, count=%d) for leadset %s on session %s%s",
                    run.id, mode.value, requested_count, leadset_id, session_id,
                    f", search {search_id}" if search_id else '')
        return run.to_dict()

    def _supersede(self, runs: List[Dict], mode: RunMode):
        for previous in runs:
            set_run_status(self.store, previous['id'], RunStatus.CANCELED, strict=False)
            logger.info("Run %s superseded by a new %s run", previous['id'], mode.value)

    def _discard_session(self, leadset_id: str, session_id: str):
        try:
            self.provider.delete_session(session_id)
        except Exception as e:
            logger.warning("Could not delete session %s: %s", session_id, e)
        stats = delete_leadset_items(self.store, leadset_id, session_run_ids(self.store, leadset_id, session_id))
        logger.info("Replace: removed %d items of session %s", stats['deleted'], session_id)

    # ── Cancel ──────────────────────────────────────────────────────────────

    def cancel_run(self, leadset_id: str, run_id: str) -> Dict:
        """
        Cancel a run. Provider-side cancellation is best effort; the local
        status flips regardless.
        """
        run = Run.from_dict(self._run(leadset_id, run_id))
        if not run.is_active:
            logger.info("Run %s already %s; cancel ignored", run_id, run.status.value)
            return run.to_dict()

        try:
            if run.mode == RunMode.EXTEND and run.search_id:
                self.provider.cancel_search(run.provider_session_id, run.search_id)
            elif run.provider_session_id:
                self.provider.cancel_session(run.provider_session_id)
        except Exception as e:
            logger.warning("Provider cancel for run %s failed: %s", run_id, e)

        updated = set_run_status(self.store, run_id, RunStatus.CANCELED)
        self._release_leadset(leadset_id, run_id)
        self.feed.refresh(collections=('leadsets', 'runs'), leadsetId=leadset_id, runId=run_id)
        return updated

    # ── Poll ────────────────────────────────────────────────────────────────

    def refresh(self, leadset_id: str, run_id: str) -> Dict:
        """Poll path: pull provider items, recount, settle status. Errors propagate."""
        run = self._run(leadset_id, run_id)
        session_id = run.get('providerSessionId')
        if not session_id:
            raise NoExistingSessionError(leadset_id)

        session = self.provider.get_session(session_id)
        result = self.synchronizer.sync(session_id, run_id, leadset_id)
        counts = count_run_items(self.store, leadset_id, session_id)

        changed = bool(result.created or result.updated)
        if (run.get('counters') or {}).get('found') != counts['found'] or \
                (run.get('counters') or {}).get('enriched') != counts['enriched']:
            run = set_run_counters(self.store, run_id, **counts)
            changed = True

        if session.get('status') == 'idle' and run.get('status') == RunStatus.RUNNING.value:
            run = set_run_status(self.store, run_id, RunStatus.COMPLETED, strict=False) or run
            self._release_leadset(leadset_id, run_id)
            changed = True

        if changed:
            self.feed.refresh(collections=('runs', 'items', 'leadsets'), leadsetId=leadset_id, runId=run_id)

        return {
            'id': session_id,
            'status': session.get('status'),
            'run': run,
            'counters': counts,
            'items': _sorted_items(session_items(self.store, leadset_id, session_id)),
        }

    # ── Reads ───────────────────────────────────────────────────────────────

    def leadset_detail(self, leadset_id: str) -> Dict:
        """Leadset, its latest run and that run's items; a running run is synced first."""
        self._leadset(leadset_id)
        run = latest_run(self.runs_for(leadset_id))

        if run and run.get('status') == RunStatus.RUNNING.value:
            try:
                self.refresh(leadset_id, run['id'])
            except Exception as e:
                logger.warning("Auto-sync of run %s failed: %s", run['id'], e)
            run = self.store.get(RUN_DOC_TYPE, run['id'])

        items = session_items(self.store, leadset_id, run.get('providerSessionId')) if run else []
        return {
            'leadset': self.store.get('leadsets', leadset_id),
            'run': run,
            'items': _sorted_items(items),
        }

    def run_status(self, leadset_id: str) -> Dict:
        leadset = self._leadset(leadset_id)
        run = latest_run(self.runs_for(leadset_id))
        session_id = (run or {}).get('providerSessionId') or leadset.get('providerSessionId')
        return {
            'hasExistingRun': run is not None,
            'run': run,
            'itemCount': len(session_items(self.store, leadset_id, session_id)),
            'sessionId': session_id,
        }

    # ── Manual sync / cleanup ───────────────────────────────────────────────

    def sync_items(self, leadset_id: str, session_id: Optional[str] = None) -> Dict:
        """
        Pull a session's items on demand. With an explicit session id not yet
        tied to a run, a completed extend run is recorded for it.
        """
        self._leadset(leadset_id)
        if session_id:
            bound = [r for r in self.runs_for(leadset_id) if r.get('providerSessionId') == session_id]
            run = latest_run(bound)
            if run is None:
                new_run = Run(leadset_id=leadset_id, provider_session_id=session_id,
                              mode=RunMode.EXTEND, status=RunStatus.COMPLETED)
                self.store.create(RUN_DOC_TYPE, new_run.id, new_run.to_dict())
                self.store.update('leadsets', leadset_id, {'providerSessionId': session_id, 'lastRunId': new_run.id})
                run = new_run.to_dict()
        else:
            run = latest_run(self.runs_for(leadset_id))
            if run is None or not run.get('providerSessionId'):
                raise NoExistingSessionError(leadset_id)
            session_id = run['providerSessionId']

        result = self.synchronizer.sync(session_id, run['id'], leadset_id)
        counts = count_run_items(self.store, leadset_id, session_id)
        set_run_counters(self.store, run['id'], **counts)
        self.feed.refresh(collections=('runs', 'items'), leadsetId=leadset_id, runId=run['id'])

        body = {'runId': run['id'], 'sessionId': session_id}
        body.update(result.to_dict())
        return body

    def clear_items(self, leadset_id: str) -> Dict:
        self._leadset(leadset_id)
        stats = delete_leadset_items(self.store, leadset_id)
        for run in self.runs_for(leadset_id):
            set_run_counters(self.store, run['id'], **count_run_items(self.store, leadset_id, run.get('providerSessionId')))
        self.feed.refresh(collections=('items', 'runs'), leadsetId=leadset_id)
        return stats
