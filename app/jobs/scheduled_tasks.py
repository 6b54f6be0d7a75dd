import threading
import time

import schedule

from infrastructure.configuration import settings
from infrastructure.logging import clear_delivery_context, get_module_logger

logger = get_module_logger()


def safe_run(job):
    def wrapper(*args, **kwargs):
        try:
            job(*args, **kwargs)
        except Exception as e:
            logger.error(
                "safe_run_error",
                function=job.__name__,
                module=job.__module__,
                error=str(e),
            )
        finally:
            clear_delivery_context()

    return wrapper


def init(service):
    logger.info("scheduled_tasks_initialized")

    if settings.retry.enabled:
        schedule.every(settings.retry.poll_interval_seconds).seconds.do(
            safe_run(process_retries), service=service
        )
    schedule.every(5).minutes.do(safe_run(scheduler_heartbeat))
    schedule.every(5).minutes.do(safe_run(integration_healthchecks), service=service)


def process_retries(service):
    stats = service.process_retries()
    if stats.get("processed") or stats.get("skipped"):
        logger.info("retry_tick_complete", **stats)


def scheduler_heartbeat():
    logger.info("scheduler_heartbeat", time=time.ctime())


def integration_healthchecks(service):
    for channel, result in service.health_check().items():
        if result.is_success:
            logger.info("integration_healthy", channel=channel)
        else:
            logger.error("integration_unhealthy", channel=channel, error=result.message)


def run_continuously(interval=1):
    """Continuously run, while executing pending jobs at each
    elapsed time interval.
    @return cease_continuous_run: threading. Event which can
    be set to cease continuous run. Please note that it is
    *intended behavior that run_continuously() does not run
    missed jobs*. For example, if the retry poll is registered
    every second and the continuous run interval is one minute,
    the poll runs once per minute, not sixty times.
    """
    cease_continuous_run = threading.Event()

    class ScheduleThread(threading.Thread):
        @classmethod
        def run(cls):
            while not cease_continuous_run.is_set():
                schedule.run_pending()
                time.sleep(interval)

    continuous_thread = ScheduleThread(daemon=True)
    continuous_thread.start()
    return cease_continuous_run
