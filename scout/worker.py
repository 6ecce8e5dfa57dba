"""
RQ worker entry point: `python -m scout.worker` or the `scout-worker` script.
"""
from rq import Worker

from scout.extensions import redis_client
from scout.logging_config import configure_logging
from scout.tasks import get_queue


def main():
    configure_logging()
    Worker([get_queue()], connection=redis_client).work()


if __name__ == '__main__':
    main()
