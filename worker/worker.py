import os
from celery import Celery

from docseal import config
from docseal.janitor import sweep
from docseal.logger import get_logger, setup_logger

REDIS_URL = os.environ.get("REDIS_URL", config.REDIS_URL)
QUEUE = os.environ.get("WORKER_QUEUE", config.WORKER_QUEUE)
SWEEP_INTERVAL_SECONDS = int(os.environ.get("SWEEP_INTERVAL_SECONDS", "900"))

setup_logger(config.LOG_LEVEL, config.LOG_FILE)
log = get_logger("docseal.worker")

cel = Celery("docseal", broker=REDIS_URL, backend=REDIS_URL)
cel.conf.beat_schedule = {
    "sweep-temp-files": {
        "task": "sweep_temp_files",
        "schedule": float(SWEEP_INTERVAL_SECONDS),
        "options": {"queue": QUEUE},
    },
}

@cel.task(name="sweep_temp_files", queue=QUEUE)
def sweep_temp_files(max_age: int = None):
    removed = sweep(max_age=max_age)
    log.info("Temp sweep finished: {} file(s) removed", removed)
    return {"removed": removed}
