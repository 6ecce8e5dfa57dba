"""
RQ jobs — run in the worker process (`rq worker`).

Webhook payloads are acknowledged by the web process and handled here.
"""
import logging

from scout.extensions import get_engine, redis_client

logger = logging.getLogger('scout.tasks')

_queue = None


def get_queue():
    global _queue
    if _queue is None:
        from rq import Queue
        _queue = Queue(connection=redis_client)
    return _queue


def process_webhook_event(payload: dict) -> dict:
    result = get_engine().webhooks.handle(payload)
    logger.info("Webhook %s processed: %s", payload.get('type'), result)
    return result

