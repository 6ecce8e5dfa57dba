"""
EnrichmentJob model — one batch enrichment request for a run's session.

`requests` binds each field key to the provider enrichment id that was
created for it, so results can be attributed without guessing.
"""
import uuid
from typing import Dict, List, Optional

from scout.models.run import utcnow
from scout.models.status import EnrichmentJobStatus, JOB_TRANSITIONS, check_transition


DOC_TYPE = 'enrichments'


class EnrichmentJob:

    def __init__(
        self,
        run_id: str,
        leadset_id: str,
        provider_session_id: str,
        fields: List[str],
        id: str = None,
        status: EnrichmentJobStatus = EnrichmentJobStatus.PENDING,
        requests: List[Dict] = None,
        created_at: str = None,
    ):
        self.id = id or f"enr_{uuid.uuid4().hex[:12]}"
        self.run_id = run_id
        self.leadset_id = leadset_id
        self.provider_session_id = provider_session_id
        self.fields = list(fields)
        self.status = EnrichmentJobStatus(status)
        self.requests = list(requests or [])
        self.created_at = created_at or utcnow()
        self.completed_at: Optional[str] = None
        self.enriched_count = 0
        self.estimated_cost = 0.0
        self.request_statuses: Dict[str, str] = {}

    def add_request(self, field: str, provider_request_id: str, format: str):
        self.requests.append({
            'field': field,
            'providerRequestId': provider_request_id,
            'format': format,
        })

    def field_for_request(self, provider_request_id: str) -> Optional[str]:
        for req in self.requests:
            if req.get('providerRequestId') == provider_request_id:
                return req.get('field')
        return None

    def transition(self, target: EnrichmentJobStatus) -> bool:
        target = EnrichmentJobStatus(target)
        check_transition('EnrichmentJob', JOB_TRANSITIONS, self.status, target)
        if self.status == target:
            return False
        self.status = target
        if target in (EnrichmentJobStatus.COMPLETED, EnrichmentJobStatus.FAILED):
            self.completed_at = utcnow()
        return True

    def to_dict(self) -> Dict:
        return {
            'id': self.id,
            'runId': self.run_id,
            'leadsetId': self.leadset_id,
            'providerSessionId': self.provider_session_id,
            'fields': list(self.fields),
            'requests': [dict(r) for r in self.requests],
            'status': self.status.value,
            'enrichedCount': self.enriched_count,
            'estimatedCost': self.estimated_cost,
            'requestStatuses': dict(self.request_statuses),
            'createdAt': self.created_at,
            'completedAt': self.completed_at,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> 'EnrichmentJob':
        job = cls(
            run_id=data.get('runId'),
            leadset_id=data.get('leadsetId'),
            provider_session_id=data.get('providerSessionId'),
            fields=data.get('fields') or [],
            id=data.get('id'),
            status=data.get('status') or EnrichmentJobStatus.PENDING,
            requests=data.get('requests') or [],
            created_at=data.get('createdAt'),
        )
        job.completed_at = data.get('completedAt')
        job.enriched_count = int(data.get('enrichedCount') or 0)
        job.estimated_cost = float(data.get('estimatedCost') or 0.0)
        job.request_statuses = dict(data.get('requestStatuses') or {})
        return job
