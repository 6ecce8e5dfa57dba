"""
Leadset routes — runs, polling, enrichment, feed, maintenance.

Engine errors (ScoutError) are rendered by the app-level error handler.
"""
import logging

from flask import Blueprint, jsonify, request

from scout.extensions import get_engine
from scout.pipeline.fields import ENRICHMENT_FIELDS, LEADSET_FIELD_MAP, get_cost

logger = logging.getLogger('routes.leadsets')

bp = Blueprint('leadsets', __name__)


def _body() -> dict:
    return request.get_json(silent=True) or {}


def _flag(value) -> bool:
    if isinstance(value, str):
        return value.lower() in ('1', 'true', 'yes')
    return bool(value)


@bp.route('/leadsets')
def list_leadsets():
    leadsets = get_engine().store.find('leadsets')
    return jsonify(sorted(leadsets, key=lambda l: str(l.get('id') or '')))


@bp.route('/leadsets/<leadset_id>/detail')
def leadset_detail(leadset_id):
    return jsonify(get_engine().runs.leadset_detail(leadset_id))


@bp.route('/leadsets/<leadset_id>/run-status')
def run_status(leadset_id):
    return jsonify(get_engine().runs.run_status(leadset_id))


@bp.route('/leadsets/<leadset_id>/run', methods=['POST'])
def start_run(leadset_id):
    body = _body()
    try:
        run = get_engine().runs.start_run(
            leadset_id,
            mode=body.get('mode', 'new'),
            count=body.get('count', 10),
            force=_flag(body.get('force', False)),
        )
    except (TypeError, ValueError) as e:
        return jsonify({'error': str(e)}), 400
    return jsonify(run), 201


@bp.route('/leadsets/<leadset_id>/runs/<run_id>/webset')
def poll_run(leadset_id, run_id):
    return jsonify(get_engine().runs.refresh(leadset_id, run_id))


@bp.route('/leadsets/<leadset_id>/runs/<run_id>/cancel', methods=['POST'])
def cancel_run(leadset_id, run_id):
    return jsonify(get_engine().runs.cancel_run(leadset_id, run_id))


@bp.route('/leadsets/<leadset_id>/runs/<run_id>/enrich', methods=['POST'])
def enrich_run(leadset_id, run_id):
    fields = _body().get('fields')
    if fields is not None and not isinstance(fields, list):
        return jsonify({'error': 'fields must be a list'}), 400
    result = get_engine().orchestrator.request_enrichment(leadset_id, run_id, fields)
    return jsonify(result), 202


@bp.route('/leadsets/<leadset_id>/enrichment/<job_id>')
def enrichment_status(leadset_id, job_id):
    return jsonify(get_engine().orchestrator.check_enrichment(job_id, leadset_id=leadset_id))


@bp.route('/leadsets/<leadset_id>/sync-items', methods=['POST'])
def sync_items(leadset_id):
    session_id = _body().get('sessionId')
    return jsonify(get_engine().runs.sync_items(leadset_id, session_id))


@bp.route('/leadsets/<leadset_id>/items', methods=['DELETE'])
def delete_items(leadset_id):
    return jsonify(get_engine().runs.clear_items(leadset_id))


@bp.route('/enrichment-fields')
def enrichment_fields():
    """Field catalogue with labels, formats and current costs."""
    by_key = {}
    for name, key in LEADSET_FIELD_MAP.items():
        by_key.setdefault(key, []).append(name)
    return jsonify([
        {
            'key': spec.key,
            'label': spec.label,
            'format': spec.format,
            'cost': get_cost(spec.key),
            'leadsetNames': by_key.get(spec.key, []),
        }
        for spec in ENRICHMENT_FIELDS.values()
    ])


@bp.route('/leadset-feed')
def leadset_feed():
    return jsonify(get_engine().feed.read())


@bp.route('/settings')
def settings():
    return jsonify(get_engine().feed.settings())


@bp.route('/admin/reset', methods=['DELETE'])
def factory_reset():
    result = get_engine().reset()
    logger.warning("Factory reset: %s", result.to_dict())
    return jsonify(result.to_dict())
