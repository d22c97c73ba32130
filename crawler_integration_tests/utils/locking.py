"""File locks shared by pytest-xdist workers."""

import contextlib
import logging
import typing as tp

import filelock

from crawler_integration_tests.utils import configuration

logging.getLogger("filelock").setLevel(logging.WARNING)


def lock_if_xdist(lock_file: str) -> tp.ContextManager:
    """Return lock on `lock_file` when running with multiple workers.

    A single process has nobody to wait for, and an empty `lock_file` means the caller
    has no shared state to guard. A no-op context manager is returned in both cases.
    """
    if not (configuration.IS_XDIST and lock_file):
        return contextlib.nullcontext()
    return filelock.FileLock(lock_file)
