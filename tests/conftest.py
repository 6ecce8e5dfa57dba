"""Shared test fixtures."""
import pytest
from unittest.mock import MagicMock
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from scout.database import Base
from scout.services.exa import ExaAPIError
from scout.services.store import DocumentStore


class FakeExa:
    """In-memory stand-in for ExaClient. Records every call in `calls`."""

    def __init__(self, page_size=None):
        self.page_size = page_size
        self.calls = []
        self.items = {}              # session id → list of raw items
        self.session_status = {}     # session id → provider status
        self.enrichment_status = {}  # enrichment id → provider status
        self.fail_on = set()         # method names that raise
        self._n = 0

    def _next(self, prefix):
        self._n += 1
        return f"{prefix}_{self._n}"

    def _record(self, name, *args, **kwargs):
        self.calls.append((name, args, kwargs))
        if name in self.fail_on:
            raise ExaAPIError(500, f"{name} failed")

    def called(self, name):
        return [c for c in self.calls if c[0] == name]

    def create_session(self, query, count=50, entity_type='company', criteria=None,
                       correlation_id=None, callback_url=None):
        self._record('create_session', query, count, entity_type, criteria,
                     correlation_id=correlation_id, callback_url=callback_url)
        session_id = self._next('ws')
        self.items.setdefault(session_id, [])
        self.session_status[session_id] = 'running'
        return {'id': session_id, 'status': 'running'}

    def append_search(self, session_id, query, count=50, criteria=None, entity_type='company'):
        self._record('append_search', session_id, query, count, criteria)
        return {'id': self._next('search'), 'status': 'running', 'websetId': session_id}

    def get_session(self, session_id):
        self._record('get_session', session_id)
        return {'id': session_id, 'status': self.session_status.get(session_id, 'running')}

    def list_items(self, session_id, cursor=None, limit=100):
        self._record('list_items', session_id, cursor=cursor, limit=limit)
        items = self.items.get(session_id, [])
        size = self.page_size or limit
        start = int(cursor or 0)
        page = items[start:start + size]
        has_more = start + size < len(items)
        return {'data': page, 'hasMore': has_more, 'nextCursor': str(start + size) if has_more else None}

    def cancel_session(self, session_id):
        self._record('cancel_session', session_id)
        self.session_status[session_id] = 'canceled'
        return {'id': session_id, 'status': 'canceled'}

    def cancel_search(self, session_id, search_id):
        self._record('cancel_search', session_id, search_id)
        return {'id': search_id, 'status': 'canceled'}

    def delete_session(self, session_id):
        self._record('delete_session', session_id)
        self.items.pop(session_id, None)
        return {'id': session_id, 'deleted': True}

    def create_enrichment(self, session_id, description, format='text', options=None, field_tag=None):
        self._record('create_enrichment', session_id, description, format,
                     options=options, field_tag=field_tag)
        enrichment_id = self._next('enr')
        self.enrichment_status[enrichment_id] = 'pending'
        return {'id': enrichment_id, 'status': 'pending'}

    def get_enrichment(self, session_id, enrichment_id):
        self._record('get_enrichment', session_id, enrichment_id)
        return {'id': enrichment_id, 'status': self.enrichment_status.get(enrichment_id, 'pending')}


@pytest.fixture
def db_engine():
    """In-memory SQLite engine with schema created."""
    engine = create_engine(
        'sqlite:///:memory:',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )
    import scout.models.document
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def store(db_engine):
    """Real DocumentStore on the in-memory engine, no change publisher."""
    return DocumentStore(sessionmaker(bind=db_engine))


@pytest.fixture
def mock_redis():
    """Mock Redis client used as the store's change publisher."""
    mock = MagicMock()
    mock.publish.return_value = 1
    return mock


@pytest.fixture
def fake_exa():
    return FakeExa()


@pytest.fixture
def engine(store, fake_exa):
    from scout.pipeline.engine import build_engine
    return build_engine(store, fake_exa, webhook_secret=None, webhook_url='https://hooks.test/exa')


@pytest.fixture
def app(engine):
    """Flask test app wired to the test engine."""
    from scout import create_app
    from scout.extensions import set_engine
    app = create_app()
    app.config['TESTING'] = True
    set_engine(engine)
    yield app
    set_engine(None)


@pytest.fixture
def client(app):
    """Flask test client."""
    with app.test_client() as c:
        yield c


@pytest.fixture
def make_leadset(store):
    """Factory fixture — stores a leadset document and returns it."""
    def _make(leadset_id='ls_1', **overrides):
        doc = {
            'id': leadset_id,
            'name': 'Spice exporters',
            'description': 'Organic spice exporters',
            'segment': {
                'segment_archetype': 'Exporter',
                'geo_region': 'India',
                'firmographic_company_size': 'Mid-market',
                'tribe': ['organic', 'fair trade'],
            },
            'intent': {'signals': ['new distributors', 'EU expansion']},
            'status': 'idle',
            'providerSessionId': None,
            'enrichment_fields': [],
        }
        doc.update(overrides)
        store.create('leadsets', leadset_id, doc)
        return doc
    return _make


@pytest.fixture
def exa_item():
    """Factory fixture — raw Websets item payloads."""
    def _make(item_id, name='Acme Spices', url='https://www.acme-spices.com/about',
              enrichments=None, evaluations=None, created_at='2026-10-01T10:00:00Z', **props):
        properties = {
            'type': 'company',
            'url': url,
            'description': f'{name} exports spices',
            'company': {'name': name},
        }
        properties.update(props)
        return {
            'id': item_id,
            'object': 'webset_item',
            'properties': properties,
            'evaluations': evaluations if evaluations is not None else [
                {'criterion': 'a', 'satisfied': 'yes'},
                {'criterion': 'b', 'satisfied': 'no'},
            ],
            'enrichments': enrichments or [],
            'createdAt': created_at,
        }
    return _make


@pytest.fixture
def started_run(engine, make_leadset):
    """A leadset with one running run on session ws_1."""
    make_leadset()
    return engine.runs.start_run('ls_1', mode='new', count=5)
