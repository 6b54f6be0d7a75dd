import signal
import threading

from infrastructure.configuration import settings
from infrastructure.logging import configure_logging, get_module_logger
from jobs import scheduled_tasks
from modules.delivery import get_delivery_service

logger = get_module_logger()


def main():
    """Run the retry scheduler until SIGINT/SIGTERM."""
    configure_logging()
    logger.info(
        "application_startup",
        backend=settings.delivery.backend,
        sandbox_mode=settings.delivery.sandbox_mode,
        git_sha=settings.GIT_SHA,
    )
    service = get_delivery_service()

    scheduled_tasks.init(service)
    stop_run_continuously = scheduled_tasks.run_continuously(
        interval=settings.retry.poll_interval_seconds
    )

    stopped = threading.Event()

    def shutdown(signum, frame):
        logger.info("application_shutdown", signal=signum)
        stop_run_continuously.set()
        stopped.set()

    signal.signal(signal.SIGINT, shutdown)
    signal.signal(signal.SIGTERM, shutdown)
    stopped.wait()


if __name__ == "__main__":
    main()
