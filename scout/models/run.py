"""
Run model — one discovery execution of a leadset against a provider session.

Stored as a `runs` document. Attribute names are snake_case; the stored
document uses the camelCase keys the feed client reads.
"""
import uuid
from datetime import datetime, timezone
from typing import Dict, Optional

from scout.models.status import RunMode, RunStatus, RUN_TRANSITIONS, check_transition


DOC_TYPE = 'runs'


def utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


class Run:
    """
    Run state.

    counters.found / counters.enriched are recomputed from full item scans;
    webhook increments only nudge them between scans.
    """

    def __init__(
        self,
        leadset_id: str,
        id: str = None,
        provider_session_id: Optional[str] = None,
        mode: RunMode = RunMode.NEW,
        status: RunStatus = RunStatus.RUNNING,
        requested_count: int = 0,
        search_query: str = '',
        search_id: Optional[str] = None,
        created_at: str = None,
    ):
        self.id = id or f"run_{uuid.uuid4().hex[:12]}"
        self.leadset_id = leadset_id
        self.provider_session_id = provider_session_id
        self.mode = RunMode(mode)
        self.status = RunStatus(status)
        self.requested_count = requested_count
        self.search_query = search_query
        self.search_id = search_id
        self.created_at = created_at or utcnow()
        self.canceled_at: Optional[str] = None
        self.counters = {'found': 0, 'enriched': 0, 'selected': 0, 'analyzed': 0}

    @property
    def is_active(self) -> bool:
        return self.status.is_active

    def transition(self, target: RunStatus) -> bool:
        """Move to `target`. Returns False when already there."""
        target = RunStatus(target)
        check_transition('Run', RUN_TRANSITIONS, self.status, target)
        if self.status == target:
            return False
        self.status = target
        if target == RunStatus.CANCELED:
            self.canceled_at = utcnow()
        return True

    def to_dict(self) -> Dict:
        return {
            'id': self.id,
            'leadsetId': self.leadset_id,
            'providerSessionId': self.provider_session_id,
            'mode': self.mode.value,
            'status': self.status.value,
            'counters': dict(self.counters),
            'requestedCount': self.requested_count,
            'searchQuery': self.search_query,
            'searchId': self.search_id,
            'createdAt': self.created_at,
            'canceledAt': self.canceled_at,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> 'Run':
        run = cls(
            leadset_id=data.get('leadsetId'),
            id=data.get('id'),
            provider_session_id=data.get('providerSessionId'),
            mode=data.get('mode') or RunMode.NEW,
            status=data.get('status') or RunStatus.RUNNING,
            requested_count=data.get('requestedCount') or 0,
            search_query=data.get('searchQuery') or '',
            search_id=data.get('searchId'),
            created_at=data.get('createdAt'),
        )
        run.canceled_at = data.get('canceledAt')
        counters = data.get('counters') or {}
        for key in run.counters:
            run.counters[key] = int(counters.get(key) or 0)
        return run
