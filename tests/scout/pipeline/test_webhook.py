"""Tests for scout.pipeline.webhook — signature check and push-path ingestion."""
import hashlib
import hmac

import pytest

from scout.pipeline.webhook import verify_signature


def _sign(body: bytes, secret: str) -> str:
    return hmac.new(secret.encode(), body, hashlib.sha256).hexdigest()


def _item(exa_item, item_id, session_id='ws_1', **kwargs):
    raw = exa_item(item_id, **kwargs)
    raw['websetId'] = session_id
    return raw


class TestVerifySignature:

    def test_valid(self):
        body = b'{"type":"webset.idle"}'
        assert verify_signature(body, _sign(body, 's3cret'), 's3cret')

    def test_prefixed_and_uppercase(self):
        body = b'{}'
        assert verify_signature(body, 'sha256=' + _sign(body, 'k').upper(), 'k')

    def test_tampered_body(self):
        assert not verify_signature(b'{"a":2}', _sign(b'{"a":1}', 'k'), 'k')

    def test_missing_signature(self):
        assert not verify_signature(b'{}', None, 'k')

    def test_no_secret_configured_accepts(self):
        assert verify_signature(b'{}', None, None)

    def test_non_ascii_signature_rejected(self):
        assert not verify_signature(b'{}', 'café', 'k')
        assert not verify_signature(b'{}', 'sha256=' + 'é' * 64, 'k')


class TestItemsCreated:
    """Push path for new items."""

    def test_creates_items_and_bumps_counter(self, engine, exa_item, started_run):
        payload = {'type': 'webset.items.created',
                   'data': {'websetId': 'ws_1', 'items': [_item(exa_item, 'item_1'), _item(exa_item, 'item_2')]}}
        result = engine.webhooks.handle(payload)

        assert result['handled'] is True
        assert result['runId'] == started_run['id']
        assert result['created'] == 2
        assert engine.store.get('runs', started_run['id'])['counters']['found'] == 2
        assert engine.store.get('items', 'item_1')['runId'] == started_run['id']

    def test_duplicate_delivery_counts_once(self, engine, exa_item, started_run):
        payload = {'type': 'webset.item.created', 'data': _item(exa_item, 'item_1')}
        engine.webhooks.handle(payload)
        second = engine.webhooks.handle(payload)

        assert second['created'] == 0
        assert second['unchanged'] == 1
        assert engine.store.get('runs', started_run['id'])['counters']['found'] == 1

    def test_poll_and_push_converge(self, engine, fake_exa, exa_item, started_run):
        enriched = [{'status': 'completed', 'format': 'email', 'result': ['ops@acme.com']}]
        # item_1: push then poll; item_2: poll then push
        fake_exa.items['ws_1'] = [_item(exa_item, 'item_1'), _item(exa_item, 'item_2', enrichments=enriched)]
        engine.webhooks.handle({'type': 'webset.item.created',
                                'data': _item(exa_item, 'item_1', enrichments=enriched)})
        engine.runs.refresh('ls_1', started_run['id'])
        engine.webhooks.handle({'type': 'webset.item.created', 'data': _item(exa_item, 'item_2')})

        first = engine.store.get('items', 'item_1')
        second = engine.store.get('items', 'item_2')
        first.pop('itemId')
        second.pop('itemId')
        assert first == second
        assert first['enrichment'] == {'status': 'done', 'email': 'ops@acme.com'}
        assert engine.store.get('runs', started_run['id'])['counters']['found'] == 2


class TestSessionIdle:

    def test_completes_running_run(self, engine, started_run):
        result = engine.webhooks.handle({'type': 'webset.idle', 'data': {'id': 'ws_1', 'object': 'webset'}})
        assert result['completed'] is True
        assert engine.store.get('runs', started_run['id'])['status'] == 'completed'
        assert engine.store.get('leadsets', 'ls_1')['status'] == 'idle'

    def test_leaves_canceled_run_alone(self, engine, started_run):
        engine.runs.cancel_run('ls_1', started_run['id'])
        result = engine.webhooks.handle({'type': 'webset.idle', 'data': {'id': 'ws_1', 'object': 'webset'}})
        assert result['completed'] is False
        assert engine.store.get('runs', started_run['id'])['status'] == 'canceled'


class TestEnrichmentCompleted:

    def test_triggers_resolution_pass(self, engine, fake_exa, exa_item, started_run):
        fake_exa.items['ws_1'] = [_item(exa_item, 'item_1')]
        fake_exa.session_status['ws_1'] = 'idle'
        engine.runs.refresh('ls_1', started_run['id'])
        body = engine.orchestrator.request_enrichment('ls_1', started_run['id'], ['leadType'])
        request_id = body['job']['requests'][0]['providerRequestId']

        fake_exa.enrichment_status[request_id] = 'completed'
        fake_exa.items['ws_1'] = [_item(exa_item, 'item_1', enrichments=[
            {'enrichmentId': request_id, 'status': 'completed', 'format': 'text', 'result': ['Distributor']},
        ])]
        result = engine.webhooks.handle({'type': 'webset.enrichment.completed',
                                         'data': {'id': request_id, 'object': 'webset_enrichment',
                                                  'websetId': 'ws_1', 'status': 'completed'}})

        assert result['jobId'] == body['job']['id']
        assert result['jobStatus'] == 'completed'
        assert engine.store.get('items', 'item_1')['enrichment']['leadType'] == 'Distributor'
        assert engine.store.get('runs', started_run['id'])['status'] == 'completed'

    def test_no_job_is_fine(self, engine, exa_item, started_run):
        result = engine.webhooks.handle({'type': 'webset.item.enriched', 'data': _item(exa_item, 'item_1')})
        assert result['handled'] is True
        assert result['jobId'] is None


class TestDropped:

    def test_unsupported_event(self, engine, started_run):
        result = engine.webhooks.handle({'type': 'webset.search.created', 'data': {'websetId': 'ws_1'}})
        assert result == {'type': 'webset.search.created', 'handled': False, 'reason': 'unsupported'}

    def test_unknown_session(self, engine, started_run):
        result = engine.webhooks.handle({'type': 'webset.idle', 'data': {'id': 'ws_other', 'object': 'webset'}})
        assert result['reason'] == 'no_run'

    @pytest.mark.parametrize('payload', [None, {}, {'type': 'webset.idle'}])
    def test_malformed(self, engine, payload):
        assert engine.webhooks.handle(payload)['handled'] is False

    @pytest.mark.parametrize('payload', [
        ['webset.idle'],
        {'type': 'webset.idle', 'data': ['x']},
        {'type': 'webset.items.created', 'data': 'ws_1'},
    ])
    def test_non_object_shapes_dropped(self, engine, started_run, payload):
        result = engine.webhooks.handle(payload)
        assert result['handled'] is False
        assert result['reason'] == 'malformed'
        assert engine.store.get('runs', started_run['id'])['status'] == 'running'
