"""Tests for scout.pipeline.manager — run creation, conflicts, cancellation, polling."""
import pytest

from scout.errors import NoExistingSessionError, NotFoundError, RunConflictError
from scout.pipeline.manager import build_criteria, build_search_query


class TestSearchQuery:
    """Leadset facets → provider query."""

    def test_full_leadset(self, make_leadset):
        leadset = make_leadset()
        assert build_search_query(leadset) == (
            'Organic spice exporters. Exporter. in India. Mid-market size. '
            'focusing on organic, fair trade. showing intent for new distributors, EU expansion'
        )

    def test_falls_back_to_name(self):
        assert build_search_query({'name': 'Tea shops'}) == 'Tea shops'
        assert build_search_query({}) == 'companies'

    def test_criteria_from_signals(self):
        leadset = {'intent': {'signals': ['hiring']}}
        assert build_criteria(leadset) == [{'description': 'Shows intent or interest in hiring'}]
        assert build_criteria({}) == []


class TestStartRun:

    def test_new_run(self, engine, fake_exa, make_leadset):
        make_leadset()
        run = engine.runs.start_run('ls_1', mode='new', count=5)

        assert run['status'] == 'running'
        assert run['providerSessionId'] == 'ws_1'
        assert run['requestedCount'] == 5
        call = fake_exa.called('create_session')[0]
        assert call[1][1] == 5
        assert call[2]['callback_url'] == 'https://hooks.test/exa'
        assert call[2]['correlation_id'].startswith('ls_1_')

        leadset = engine.store.get('leadsets', 'ls_1')
        assert leadset['status'] == 'running'
        assert leadset['providerSessionId'] == 'ws_1'
        assert leadset['lastRunId'] == run['id']
        assert engine.store.get('docStatus', 'status')['version'] >= 1

    def test_unknown_leadset(self, engine):
        with pytest.raises(NotFoundError):
            engine.runs.start_run('ls_missing')

    def test_bad_mode(self, engine, make_leadset):
        make_leadset()
        with pytest.raises(ValueError):
            engine.runs.start_run('ls_1', mode='merge')

    def test_bad_count(self, engine, make_leadset):
        make_leadset()
        with pytest.raises(ValueError):
            engine.runs.start_run('ls_1', count=-3)

    def test_conflict_reports_existing_session(self, engine, fake_exa, exa_item, started_run):
        fake_exa.items['ws_1'] = [exa_item('item_1'), exa_item('item_2')]
        engine.runs.refresh('ls_1', started_run['id'])

        with pytest.raises(RunConflictError) as exc:
            engine.runs.start_run('ls_1', mode='new')
        body = exc.value.to_dict()
        assert body['code'] == 'EXISTING_SESSION'
        assert body['existingSessionId'] == 'ws_1'
        assert body['existingRunId'] == started_run['id']
        assert body['itemCount'] == 2
        assert len(fake_exa.called('create_session')) == 1

    def test_conflict_from_leadset_session_only(self, engine, make_leadset):
        make_leadset(providerSessionId='ws_legacy')
        with pytest.raises(RunConflictError):
            engine.runs.start_run('ls_1')

    def test_force_cancels_previous(self, engine, started_run):
        run = engine.runs.start_run('ls_1', mode='new', force=True)
        assert engine.store.get('runs', started_run['id'])['status'] == 'canceled'
        assert engine.store.get('leadsets', 'ls_1')['lastRunId'] == run['id']
        assert run['providerSessionId'] != started_run['providerSessionId']

    def test_extend_appends_search(self, engine, fake_exa, started_run):
        run = engine.runs.start_run('ls_1', mode='extend', count=3)
        assert run['providerSessionId'] == 'ws_1'
        assert run['mode'] == 'extend'
        assert run['searchId'].startswith('search_')
        assert fake_exa.called('append_search')[0][1][0] == 'ws_1'
        assert len(fake_exa.called('create_session')) == 1

    def test_extend_without_session(self, engine, make_leadset):
        make_leadset()
        with pytest.raises(NoExistingSessionError):
            engine.runs.start_run('ls_1', mode='extend')

    def test_replace_discards_old_session_and_items(self, engine, fake_exa, exa_item, started_run):
        fake_exa.items['ws_1'] = [exa_item('item_1')]
        engine.runs.refresh('ls_1', started_run['id'])

        run = engine.runs.start_run('ls_1', mode='replace')
        assert fake_exa.called('delete_session')[0][1][0] == 'ws_1'
        assert engine.store.get('items', 'item_1') is None
        assert run['providerSessionId'] != 'ws_1'

    def test_failed_replace_cancels_runs_on_discarded_session(self, engine, fake_exa, started_run):
        fake_exa.fail_on.add('create_session')
        with pytest.raises(Exception):
            engine.runs.start_run('ls_1', mode='replace')

        assert fake_exa.called('delete_session')[0][1][0] == 'ws_1'
        assert engine.store.get('runs', started_run['id'])['status'] == 'canceled'
        assert engine.store.get('leadsets', 'ls_1')['status'] == 'failed'

        engine.runs.leadset_detail('ls_1')
        assert fake_exa.called('list_items') == []

    def test_provider_failure_marks_leadset_failed(self, engine, fake_exa, make_leadset):
        make_leadset()
        fake_exa.fail_on.add('create_session')
        with pytest.raises(Exception):
            engine.runs.start_run('ls_1')
        assert engine.store.get('leadsets', 'ls_1')['status'] == 'failed'
        assert engine.runs.runs_for('ls_1') == []


class TestCancelRun:

    def test_cancel(self, engine, fake_exa, started_run):
        run = engine.runs.cancel_run('ls_1', started_run['id'])
        assert run['status'] == 'canceled'
        assert run['canceledAt']
        assert fake_exa.called('cancel_session')[0][1][0] == 'ws_1'
        assert engine.store.get('leadsets', 'ls_1')['status'] == 'idle'

    def test_cancel_extend_cancels_search_only(self, engine, fake_exa, started_run):
        engine.store.update('runs', started_run['id'], {'status': 'completed'})
        run = engine.runs.start_run('ls_1', mode='extend')
        engine.runs.cancel_run('ls_1', run['id'])
        assert fake_exa.called('cancel_search')[0][1] == ('ws_1', run['searchId'])
        assert fake_exa.called('cancel_session') == []

    def test_provider_cancel_failure_still_cancels(self, engine, fake_exa, started_run):
        fake_exa.fail_on.add('cancel_session')
        assert engine.runs.cancel_run('ls_1', started_run['id'])['status'] == 'canceled'

    def test_cancel_is_idempotent(self, engine, fake_exa, started_run):
        engine.runs.cancel_run('ls_1', started_run['id'])
        again = engine.runs.cancel_run('ls_1', started_run['id'])
        assert again['status'] == 'canceled'
        assert len(fake_exa.called('cancel_session')) == 1

    def test_canceled_run_never_completes(self, engine, fake_exa, started_run):
        engine.runs.cancel_run('ls_1', started_run['id'])
        fake_exa.session_status['ws_1'] = 'idle'
        body = engine.runs.refresh('ls_1', started_run['id'])
        assert body['run']['status'] == 'canceled'


class TestRefresh:
    """Poll path."""

    def test_syncs_items_and_counters(self, engine, fake_exa, exa_item, started_run):
        fake_exa.items['ws_1'] = [exa_item('item_2', created_at='2026-10-02T00:00:00Z'),
                                  exa_item('item_1', created_at='2026-10-01T00:00:00Z')]
        body = engine.runs.refresh('ls_1', started_run['id'])

        assert body['id'] == 'ws_1'
        assert body['status'] == 'running'
        assert body['counters'] == {'found': 2, 'enriched': 0}
        assert [i['itemId'] for i in body['items']] == ['item_1', 'item_2']
        assert engine.store.get('runs', started_run['id'])['counters']['found'] == 2

    def test_idle_session_completes_run(self, engine, fake_exa, started_run):
        fake_exa.session_status['ws_1'] = 'idle'
        body = engine.runs.refresh('ls_1', started_run['id'])
        assert body['run']['status'] == 'completed'
        assert engine.store.get('leadsets', 'ls_1')['status'] == 'idle'

    def test_unchanged_poll_does_not_bump_feed(self, engine, fake_exa, exa_item, started_run):
        fake_exa.items['ws_1'] = [exa_item('item_1')]
        engine.runs.refresh('ls_1', started_run['id'])
        version = engine.store.get('docStatus', 'status')['version']

        engine.runs.refresh('ls_1', started_run['id'])
        assert engine.store.get('docStatus', 'status')['version'] == version

    def test_provider_error_propagates(self, engine, fake_exa, started_run):
        fake_exa.fail_on.add('get_session')
        with pytest.raises(Exception):
            engine.runs.refresh('ls_1', started_run['id'])

    def test_wrong_leadset(self, engine, make_leadset, started_run):
        make_leadset('ls_2')
        with pytest.raises(NotFoundError):
            engine.runs.refresh('ls_2', started_run['id'])


class TestReads:

    def test_detail_auto_syncs_running_run(self, engine, fake_exa, exa_item, started_run):
        fake_exa.items['ws_1'] = [exa_item('item_1')]
        detail = engine.runs.leadset_detail('ls_1')
        assert detail['run']['id'] == started_run['id']
        assert [i['itemId'] for i in detail['items']] == ['item_1']

    def test_detail_survives_provider_errors(self, engine, fake_exa, started_run):
        fake_exa.fail_on.add('get_session')
        detail = engine.runs.leadset_detail('ls_1')
        assert detail['run']['status'] == 'running'
        assert detail['items'] == []

    def test_detail_without_runs(self, engine, make_leadset):
        make_leadset()
        assert engine.runs.leadset_detail('ls_1')['run'] is None

    def test_run_status(self, engine, make_leadset, started_run):
        status = engine.runs.run_status('ls_1')
        assert status['hasExistingRun'] is True
        assert status['sessionId'] == 'ws_1'
        assert status['itemCount'] == 0


class TestSyncItems:

    def test_sync_latest_run(self, engine, fake_exa, exa_item, started_run):
        fake_exa.items['ws_1'] = [exa_item('item_1'), exa_item('item_2')]
        body = engine.runs.sync_items('ls_1')
        assert body['runId'] == started_run['id']
        assert (body['total'], body['saved'], body['created']) == (2, 2, 2)

    def test_unbound_session_records_run(self, engine, fake_exa, exa_item, make_leadset):
        make_leadset()
        fake_exa.items['ws_other'] = [exa_item('item_9')]
        body = engine.runs.sync_items('ls_1', 'ws_other')

        run = engine.store.get('runs', body['runId'])
        assert run['status'] == 'completed'
        assert run['mode'] == 'extend'
        assert run['counters']['found'] == 1
        assert engine.store.get('leadsets', 'ls_1')['providerSessionId'] == 'ws_other'

    def test_no_session(self, engine, make_leadset):
        make_leadset()
        with pytest.raises(NoExistingSessionError):
            engine.runs.sync_items('ls_1')

    def test_clear_items_resets_counters(self, engine, fake_exa, exa_item, started_run):
        fake_exa.items['ws_1'] = [exa_item('item_1')]
        engine.runs.refresh('ls_1', started_run['id'])

        stats = engine.runs.clear_items('ls_1')
        assert stats['deleted'] == 1
        assert engine.store.get('runs', started_run['id'])['counters']['found'] == 0
