"""
Status writes for runs and leadsets.

Each write is a locked read-merge-write that checks the transition table
against the stored status, so a stale caller cannot move a canceled run back
to completed.
"""
import logging
from typing import Dict, Optional

from scout.errors import InvalidTransitionError, NotFoundError
from scout.models.run import Run
from scout.models.status import (
    LeadsetStatus, RunStatus, LEADSET_TRANSITIONS, can_transition, coerce_leadset_status,
)

logger = logging.getLogger('pipeline.state')


def set_run_status(store, run_id: str, target: RunStatus, strict: bool = True, **fields) -> Optional[Dict]:
    """
    Move a run to `target` and merge extra top-level `fields`.

    With strict=False an illegal move is logged and None is returned.
    """
    target = RunStatus(target)

    def merge(current):
        if current is None:
            raise NotFoundError('Run', run_id)
        run = Run.from_dict(current)
        run.transition(target)
        current['status'] = run.status.value
        current['canceledAt'] = run.canceled_at
        current.update(fields)
        return current

    try:
        _, after = store.upsert('runs', run_id, merge)
    except InvalidTransitionError as e:
        if strict:
            raise
        logger.info("Run %s: %s", run_id, e)
        return None
    return after


def set_run_counters(store, run_id: str, **counts) -> Optional[Dict]:
    def merge(current):
        if current is None:
            raise NotFoundError('Run', run_id)
        counters = dict(current.get('counters') or {})
        counters.update(counts)
        current['counters'] = counters
        return current

    _, after = store.upsert('runs', run_id, merge)
    return after


def set_leadset_status(store, leadset_id: str, target: LeadsetStatus, strict: bool = False,
                       **fields) -> Optional[Dict]:
    """Leadset status mirrors its run; illegal moves are skipped unless strict."""
    target = LeadsetStatus(target)

    def merge(current):
        if current is None:
            raise NotFoundError('Leadset', leadset_id)
        status = coerce_leadset_status(current.get('status'))
        if not can_transition(LEADSET_TRANSITIONS, status, target):
            raise InvalidTransitionError('Leadset', status.value, target.value)
        current['status'] = target.value
        current.update(fields)
        return current

    try:
        _, after = store.upsert('leadsets', leadset_id, merge)
    except InvalidTransitionError as e:
        if strict:
            raise
        logger.info("Leadset %s: %s", leadset_id, e)
        return None
    return after
