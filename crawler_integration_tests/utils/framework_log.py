import functools
import logging
import pathlib as pl
import time

from crawler_integration_tests.utils import temptools

FRAMEWORK_LOG_NAME = "framework.log"


class _UTCFormatter(logging.Formatter):
    converter = time.gmtime  # type: ignore[assignment]


def get_framework_log_path() -> pl.Path:
    return temptools.get_pytest_worker_tmp() / FRAMEWORK_LOG_NAME


@functools.cache
def framework_logger() -> logging.Logger:
    """Get logger for the per-worker `framework.log` file.

    Records how the cluster was obtained (explicit endpoint, reused local node, container
    started by the framework) and what happened to the container at the end of the run.
    """
    handler = logging.FileHandler(get_framework_log_path())
    handler.setFormatter(_UTCFormatter("%(asctime)s %(levelname)s %(message)s"))

    logger = logging.getLogger("crawler_integration_tests.framework")
    logger.setLevel(logging.INFO)
    logger.addHandler(handler)
    return logger
