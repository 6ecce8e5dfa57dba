"""
Exa Websets API client — sessions (websets), searches, items, enrichments.

Without an API key every call returns a deterministic mock payload so the
service can run locally end to end.
"""
import logging
import time
from typing import Dict, List, Optional

import requests

from scout.config import EXA_API_KEY, EXA_API_BASE, EXA_TIMEOUT, WEBHOOK_URL

logger = logging.getLogger('services.exa')

WEBHOOK_EVENTS = ['webset.idle', 'webset.items.created', 'webset.enrichment.completed']


class ExaAPIError(Exception):
    """Non-2xx response from the Websets API."""

    def __init__(self, status: int, body: str):
        super().__init__(f"Exa API error ({status}): {body}")
        self.status = status
        self.body = body


class ExaClient:
    """
    Thin wrapper over the Websets REST endpoints.

    Timeout policy lives here: every request uses `timeout` seconds and
    failures surface as ExaAPIError or requests exceptions.
    """

    def __init__(self, api_key: Optional[str] = EXA_API_KEY, base_url: str = EXA_API_BASE,
                 timeout: int = EXA_TIMEOUT, webhook_url: Optional[str] = WEBHOOK_URL,
                 http=None):
        self.api_key = api_key
        self.base_url = base_url.rstrip('/')
        self.timeout = timeout
        self.webhook_url = webhook_url
        self.http = http or requests.Session()

    @property
    def is_mock(self) -> bool:
        return not self.api_key

    # ── Sessions ────────────────────────────────────────────────────────────

    def create_session(self, query: str, count: int = 50, entity_type: str = 'company',
                       criteria: List[Dict] = None, correlation_id: str = None,
                       callback_url: str = None) -> Dict:
        criteria = criteria or []
        if self.is_mock:
            logger.info("No API key configured — returning mock webset")
            return {
                'id': f"mock_webset_{_stamp()}",
                'object': 'webset',
                'status': 'running',
                'externalId': correlation_id,
                'search': {'query': query, 'count': count, 'entity': entity_type},
                'counters': {'items': 0, 'enrichments': 0},
            }

        payload = {
            'externalId': correlation_id,
            'search': {
                'query': query,
                'count': count,
                'entity': {'type': entity_type},
            },
        }
        if criteria:
            payload['search']['criteria'] = criteria
        url = callback_url or self.webhook_url
        if url:
            payload['webhook'] = {'url': url, 'events': WEBHOOK_EVENTS}

        webset = self._request('POST', '/websets', json=payload)
        logger.info("Webset created: %s status=%s", webset.get('id'), webset.get('status'))
        return webset

    def append_search(self, session_id: str, query: str, count: int = 50,
                      criteria: List[Dict] = None, entity_type: str = 'company') -> Dict:
        criteria = criteria or []
        if self.is_mock:
            logger.info("No API key configured — returning mock webset search")
            return {
                'id': f"mock_search_{_stamp()}",
                'object': 'webset_search',
                'status': 'running',
                'websetId': session_id,
                'query': query,
                'count': count,
            }

        payload = {
            'query': query,
            'count': count,
            'behavior': 'append',
        }
        if entity_type:
            payload['entity'] = {'type': entity_type}
        if criteria:
            payload['criteria'] = criteria
        return self._request('POST', f'/websets/{session_id}/searches', json=payload)

    def get_session(self, session_id: str) -> Dict:
        if self.is_mock:
            return {'id': session_id, 'status': 'idle', 'counters': {'items': 0}}
        return self._request('GET', f'/websets/{session_id}')

    def cancel_session(self, session_id: str) -> Dict:
        if self.is_mock:
            return {'id': session_id, 'status': 'canceled'}
        return self._request('POST', f'/websets/{session_id}/cancel')

    def cancel_search(self, session_id: str, search_id: str) -> Dict:
        if self.is_mock:
            return {'id': search_id, 'status': 'canceled'}
        return self._request('POST', f'/websets/{session_id}/searches/{search_id}/cancel')

    def delete_session(self, session_id: str) -> Dict:
        """Delete a webset. A 404 means it is already gone and counts as success."""
        if self.is_mock:
            return {'id': session_id, 'deleted': True}
        try:
            self._request('DELETE', f'/websets/{session_id}')
        except ExaAPIError as e:
            if e.status == 404:
                logger.info("Webset %s already deleted", session_id)
                return {'id': session_id, 'deleted': True, 'notFound': True}
            raise
        return {'id': session_id, 'deleted': True}

    # ── Items ───────────────────────────────────────────────────────────────

    def list_items(self, session_id: str, cursor: Optional[str] = None, limit: int = 100) -> Dict:
        if self.is_mock:
            return {'data': [], 'hasMore': False, 'nextCursor': None}
        params = {'limit': limit}
        if cursor:
            params['cursor'] = cursor
        return self._request('GET', f'/websets/{session_id}/items', params=params)

    def get_item(self, session_id: str, item_id: str) -> Optional[Dict]:
        if self.is_mock:
            return None
        try:
            return self._request('GET', f'/websets/{session_id}/items/{item_id}')
        except ExaAPIError as e:
            if e.status == 404:
                return None
            raise

    # ── Enrichments ─────────────────────────────────────────────────────────

    def create_enrichment(self, session_id: str, description: str, format: str = 'text',
                          options: List[Dict] = None, field_tag: str = None) -> Dict:
        if self.is_mock:
            return {
                'id': f"mock_enrichment_{_stamp()}",
                'object': 'webset_enrichment',
                'status': 'pending',
                'websetId': session_id,
                'description': description,
                'format': format,
            }

        payload = {
            'description': description or 'Extract information for this lead',
            'format': format,
        }
        if field_tag:
            payload['metadata'] = {'field': field_tag}
        if format == 'options' and options:
            payload['options'] = options
        return self._request('POST', f'/websets/{session_id}/enrichments', json=payload)

    def get_enrichment(self, session_id: str, enrichment_id: str) -> Dict:
        if self.is_mock:
            return {'id': enrichment_id, 'status': 'completed', 'websetId': session_id}
        return self._request('GET', f'/websets/{session_id}/enrichments/{enrichment_id}')

    # ── Transport ───────────────────────────────────────────────────────────

    def _request(self, method: str, path: str, **kwargs) -> Dict:
        url = f"{self.base_url}/websets/v0{path}"
        headers = {
            'Content-Type': 'application/json',
            'x-api-key': self.api_key,
        }
        logger.debug("%s %s", method, url)
        response = self.http.request(method, url, headers=headers, timeout=self.timeout, **kwargs)
        if response.status_code >= 400:
            logger.error("%s %s failed: %d %s", method, path, response.status_code, response.text[:500])
            raise ExaAPIError(response.status_code, response.text)
        if not response.content:
            return {}
        return response.json()


def _stamp() -> int:
    return int(time.time() * 1000)
