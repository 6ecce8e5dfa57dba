"""
Webhook route — Exa Websets push events.

The signature is checked against the raw body before anything is parsed.
Accepted events are acknowledged at once and handled by an RQ worker.
"""
import logging

from flask import Blueprint, jsonify, request

from scout.config import JOB_TIMEOUT
from scout.errors import InvalidSignatureError
from scout.extensions import get_engine
from scout.pipeline.webhook import SIGNATURE_HEADER, verify_signature

logger = logging.getLogger('routes.webhook')

bp = Blueprint('webhook', __name__)


@bp.route('/webhooks/exa', methods=['POST'])
def exa_webhook():
    raw_body = request.get_data(cache=True)
    signature = request.headers.get(SIGNATURE_HEADER)
    if not verify_signature(raw_body, signature, get_engine().webhook_secret):
        logger.warning("Rejected webhook with invalid signature")
        raise InvalidSignatureError()

    payload = request.get_json(silent=True) or {}
    if not isinstance(payload, dict):
        logger.warning("Dropping webhook with a non-object body (%s)", type(payload).__name__)
        return jsonify({'received': True})
    logger.info("Webhook received: %s", payload.get('type'))

    try:
        from scout.tasks import get_queue, process_webhook_event
        get_queue().enqueue(process_webhook_event, payload, job_timeout=JOB_TIMEOUT)
    except Exception as e:
        logger.error("Could not enqueue webhook %s: %s", payload.get('type'), e, exc_info=True)

    return jsonify({'received': True})
