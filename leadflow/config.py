import os

from leadflow.core.models import TaskType
from leadflow.core.task_queue import QueueConfig

API_KEY = os.getenv("LEADFLOW_API_KEY", "leadflow-secret-key")

DATABASE_PATH = os.getenv("LEADFLOW_DB_PATH", "leadflow.db")
DATABASE_URL = os.getenv("LEADFLOW_DATABASE_URL", f"sqlite:///{DATABASE_PATH}")

HOST = os.getenv("LEADFLOW_HOST", "127.0.0.1")
PORT = int(os.getenv("LEADFLOW_PORT", "8000"))

START_WORKERS = os.getenv("LEADFLOW_START_WORKERS", "true").lower() in ("1", "true", "yes")

# How often due triggers and suspended runs are checked, in seconds.
TRIGGER_INTERVAL = float(os.getenv("LEADFLOW_TRIGGER_INTERVAL", "60.0"))

# Delay nodes up to this many seconds are awaited in place; longer ones
# suspend the run and resume it from the trigger loop.
MAX_INLINE_DELAY = float(os.getenv("LEADFLOW_MAX_INLINE_DELAY", "5.0"))

# (max_concurrent, processing_interval, max_retries) per task type.
# Email is polled fastest, scraper fan-out is capped lowest.
_QUEUE_DEFAULTS = {
    TaskType.WORKFLOW: (5, 2.0, 3),
    TaskType.SCRAPER: (2, 3.0, 3),
    TaskType.EMAIL: (5, 1.0, 3),
    TaskType.SOCIAL: (5, 2.0, 3),
}


def _env_int(name: str, default: int | None) -> int | None:
    value = os.getenv(name)
    if value is None or value == "":
        return default
    return int(value)


def queue_configs():
    """Build the per-type queue configuration from the environment.

    Every value can be overridden with LEADFLOW_<TYPE>_<SETTING>, e.g.
    LEADFLOW_SCRAPER_MAX_CONCURRENT=4.
    """
    configs = {}
    for task_type, (concurrent, interval, retries) in _QUEUE_DEFAULTS.items():
        prefix = f"LEADFLOW_{task_type.value.upper()}_"
        configs[task_type] = QueueConfig(
            max_concurrent=_env_int(prefix + "MAX_CONCURRENT", concurrent),
            processing_interval=float(
                os.getenv(prefix + "INTERVAL", str(interval))
            ),
            max_retries=_env_int(prefix + "MAX_RETRIES", retries),
            retry_backoff=float(os.getenv(prefix + "RETRY_BACKOFF", "0")),
            max_queue_depth=_env_int(prefix + "MAX_QUEUE_DEPTH", None),
        )
    return configs
