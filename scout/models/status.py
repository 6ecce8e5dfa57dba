"""
Closed status variants and their legal transitions.

Statuses are stored as plain strings in documents; these enums are the only
place that decides which moves are allowed.
"""
from enum import Enum
from typing import Dict, FrozenSet

from scout.errors import InvalidTransitionError


class LeadsetStatus(str, Enum):
    IDLE = 'idle'
    RUNNING = 'running'
    ENRICHING = 'enriching'
    FAILED = 'failed'


class RunStatus(str, Enum):
    RUNNING = 'running'
    ENRICHING = 'enriching'
    CANCELED = 'canceled'
    COMPLETED = 'completed'
    FAILED = 'failed'

    @property
    def is_active(self) -> bool:
        return self in (RunStatus.RUNNING, RunStatus.ENRICHING)


class RunMode(str, Enum):
    NEW = 'new'
    EXTEND = 'extend'
    REPLACE = 'replace'


class EnrichmentJobStatus(str, Enum):
    PENDING = 'pending'
    PROCESSING = 'processing'
    COMPLETED = 'completed'
    FAILED = 'failed'


class ItemEnrichmentStatus(str, Enum):
    NONE = 'none'
    ENRICHING = 'enriching'
    DONE = 'done'

    @property
    def rank(self) -> int:
        return _ITEM_RANK[self]


_ITEM_RANK = {
    ItemEnrichmentStatus.NONE: 0,
    ItemEnrichmentStatus.ENRICHING: 1,
    ItemEnrichmentStatus.DONE: 2,
}


LEADSET_TRANSITIONS: Dict[LeadsetStatus, FrozenSet[LeadsetStatus]] = {
    LeadsetStatus.IDLE: frozenset({LeadsetStatus.RUNNING, LeadsetStatus.ENRICHING, LeadsetStatus.FAILED}),
    LeadsetStatus.RUNNING: frozenset({LeadsetStatus.IDLE, LeadsetStatus.FAILED, LeadsetStatus.ENRICHING}),
    LeadsetStatus.ENRICHING: frozenset({LeadsetStatus.IDLE, LeadsetStatus.FAILED, LeadsetStatus.RUNNING}),
    LeadsetStatus.FAILED: frozenset({LeadsetStatus.RUNNING, LeadsetStatus.IDLE}),
}

RUN_TRANSITIONS: Dict[RunStatus, FrozenSet[RunStatus]] = {
    RunStatus.RUNNING: frozenset({RunStatus.COMPLETED, RunStatus.FAILED, RunStatus.CANCELED, RunStatus.ENRICHING}),
    RunStatus.COMPLETED: frozenset({RunStatus.ENRICHING}),
    RunStatus.ENRICHING: frozenset({RunStatus.COMPLETED, RunStatus.FAILED, RunStatus.CANCELED}),
    RunStatus.CANCELED: frozenset(),
    RunStatus.FAILED: frozenset(),
}

JOB_TRANSITIONS: Dict[EnrichmentJobStatus, FrozenSet[EnrichmentJobStatus]] = {
    EnrichmentJobStatus.PENDING: frozenset({EnrichmentJobStatus.PROCESSING}),
    EnrichmentJobStatus.PROCESSING: frozenset({
        EnrichmentJobStatus.COMPLETED, EnrichmentJobStatus.FAILED, EnrichmentJobStatus.PENDING,
    }),
    EnrichmentJobStatus.COMPLETED: frozenset(),
    EnrichmentJobStatus.FAILED: frozenset(),
}


def can_transition(table: Dict, current, target) -> bool:
    """Same-state moves are always allowed (idempotent re-writes)."""
    current = type(target)(current)
    return current == target or target in table[current]


def check_transition(entity: str, table: Dict, current, target) -> None:
    if not can_transition(table, current, target):
        raise InvalidTransitionError(entity, str(getattr(current, 'value', current)), target.value)


def coerce_leadset_status(value) -> LeadsetStatus:
    """Unknown or missing leadset statuses read as idle."""
    try:
        return LeadsetStatus(value)
    except ValueError:
        return LeadsetStatus.IDLE
