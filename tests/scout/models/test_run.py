"""Tests for the Run and EnrichmentJob document models."""
import pytest

from scout.errors import InvalidTransitionError
from scout.models.enrichment_job import EnrichmentJob
from scout.models.run import Run
from scout.models.status import EnrichmentJobStatus, RunMode, RunStatus


class TestRun:
    """Run construction, transitions, serialization."""

    def test_defaults(self):
        run = Run(leadset_id='ls_1')
        assert run.id.startswith('run_')
        assert run.status == RunStatus.RUNNING
        assert run.mode == RunMode.NEW
        assert run.counters == {'found': 0, 'enriched': 0, 'selected': 0, 'analyzed': 0}
        assert run.is_active

    def test_cancel_stamps_canceled_at(self):
        run = Run(leadset_id='ls_1')
        assert run.transition(RunStatus.CANCELED) is True
        assert run.canceled_at is not None
        assert not run.is_active

    def test_same_state_is_noop(self):
        run = Run(leadset_id='ls_1')
        assert run.transition('running') is False

    def test_canceled_is_terminal(self):
        run = Run(leadset_id='ls_1', status='canceled')
        with pytest.raises(InvalidTransitionError):
            run.transition(RunStatus.COMPLETED)

    def test_dict_uses_camel_case(self):
        run = Run(leadset_id='ls_1', provider_session_id='ws_1', mode='extend',
                  requested_count=20, search_id='search_1')
        data = run.to_dict()
        assert data['leadsetId'] == 'ls_1'
        assert data['providerSessionId'] == 'ws_1'
        assert data['mode'] == 'extend'
        assert data['requestedCount'] == 20
        assert data['searchId'] == 'search_1'

    def test_from_dict_tolerates_partial_counters(self):
        run = Run.from_dict({'id': 'run_x', 'leadsetId': 'ls_1', 'status': 'completed',
                             'counters': {'found': '4'}})
        assert run.status == RunStatus.COMPLETED
        assert run.counters['found'] == 4
        assert run.counters['enriched'] == 0


class TestEnrichmentJob:
    """Job request bindings and lifecycle."""

    def test_request_binding_lookup(self):
        job = EnrichmentJob(run_id='run_1', leadset_id='ls_1', provider_session_id='ws_1',
                            fields=['email', 'phone'])
        job.add_request('email', 'enr_a', 'email')
        job.add_request('phone', 'enr_b', 'phone')
        assert job.field_for_request('enr_b') == 'phone'
        assert job.field_for_request('enr_zzz') is None

    def test_completion_stamps_time(self):
        job = EnrichmentJob(run_id='run_1', leadset_id='ls_1', provider_session_id='ws_1', fields=[])
        job.transition(EnrichmentJobStatus.PROCESSING)
        job.transition(EnrichmentJobStatus.COMPLETED)
        assert job.completed_at is not None

    def test_pending_cannot_skip_processing(self):
        job = EnrichmentJob(run_id='run_1', leadset_id='ls_1', provider_session_id='ws_1', fields=[])
        with pytest.raises(InvalidTransitionError):
            job.transition(EnrichmentJobStatus.COMPLETED)

    def test_round_trip_keeps_requests(self):
        job = EnrichmentJob(run_id='run_1', leadset_id='ls_1', provider_session_id='ws_1', fields=['email'])
        job.add_request('email', 'enr_a', 'email')
        job.estimated_cost = 12.5
        restored = EnrichmentJob.from_dict(job.to_dict())
        assert restored.requests == job.requests
        assert restored.estimated_cost == 12.5
        assert restored.status == EnrichmentJobStatus.PENDING
