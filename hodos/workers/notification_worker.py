# Run this with: rq worker -u redis://localhost:6379 notifications
# or: python -m hodos.workers.notification_worker
import logging

from redis import Redis
from rq import Worker, Queue

from hodos.core.config import settings
from hodos.core.logging import configure_logging

configure_logging(settings.ENV)
logger = logging.getLogger("hodos")


def main() -> None:
    conn = Redis.from_url(settings.REDIS_URL)
    queue = Queue(settings.NOTIFICATIONS_QUEUE, connection=conn)
    worker = Worker([queue], connection=conn)
    logger.info(f"Starting RQ worker on queue '{settings.NOTIFICATIONS_QUEUE}'.")
    worker.work()


if __name__ == "__main__":
    main()
