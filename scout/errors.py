"""
Service exceptions.

Every error raised out of the engine derives from ScoutError and carries the
HTTP status the routes answer with plus a JSON body via to_dict().
"""
from typing import Dict, List, Optional


class ScoutError(Exception):
    status_code = 500
    code = 'INTERNAL_ERROR'

    def __init__(self, message: str = ''):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> Dict:
        return {'error': self.message, 'code': self.code}


class NotFoundError(ScoutError):
    """Leadset, run or enrichment job missing."""
    status_code = 404
    code = 'NOT_FOUND'

    def __init__(self, kind: str, key: str):
        super().__init__(f"{kind} not found: {key}")
        self.kind = kind
        self.key = key


class RunConflictError(ScoutError):
    """A new run was requested while a session already exists and force was not set."""
    status_code = 409
    code = 'EXISTING_SESSION'

    def __init__(self, existing_session_id: Optional[str], existing_run_id: Optional[str], item_count: int):
        super().__init__('Leadset already has an active session. Choose extend or replace, or pass force.')
        self.existing_session_id = existing_session_id
        self.existing_run_id = existing_run_id
        self.item_count = item_count

    def to_dict(self) -> Dict:
        body = super().to_dict()
        body.update({
            'existingSessionId': self.existing_session_id,
            'existingRunId': self.existing_run_id,
            'itemCount': self.item_count,
        })
        return body


class NoExistingSessionError(ScoutError):
    status_code = 400
    code = 'NO_EXISTING_SESSION'

    def __init__(self, leadset_id: str):
        super().__init__(f"No existing session for leadset {leadset_id}")
        self.leadset_id = leadset_id


class InvalidFieldsError(ScoutError):
    status_code = 400
    code = 'INVALID_FIELDS'

    def __init__(self, invalid_fields: List[str]):
        super().__init__(f"Unknown enrichment fields: {', '.join(map(str, invalid_fields))}")
        self.invalid_fields = list(invalid_fields)

    def to_dict(self) -> Dict:
        body = super().to_dict()
        body['invalidFields'] = self.invalid_fields
        return body


class InvalidTransitionError(ScoutError):
    status_code = 409
    code = 'INVALID_TRANSITION'

    def __init__(self, entity: str, current: str, target: str):
        super().__init__(f"{entity} cannot move from {current} to {target}")
        self.entity = entity
        self.current = current
        self.target = target


class InvalidSignatureError(ScoutError):
    status_code = 401
    code = 'INVALID_SIGNATURE'

    def __init__(self):
        super().__init__('Invalid signature')
