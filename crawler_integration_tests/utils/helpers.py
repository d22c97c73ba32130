import argparse
import contextlib
import datetime
import logging
import pathlib as pl
import re
import signal
import threading
import typing as tp

LOGGER = logging.getLogger(__name__)

_UNSAFE_CHARS_RE = re.compile("[^a-zA-Z0-9_-]+")


@contextlib.contextmanager
def ignore_interrupt() -> tp.Iterator[None]:
    """Don't let Ctrl+C interrupt the wrapped code, e.g. stopping of a container.

    Signal handlers can be set only in the main thread, elsewhere this is a no-op.
    """
    if threading.current_thread() is not threading.main_thread():
        yield
        return

    orig_handler = signal.signal(signal.SIGINT, signal.SIG_IGN)
    try:
        yield
    finally:
        signal.signal(signal.SIGINT, orig_handler)


def get_timestamp() -> str:
    """Return UTC timestamp usable in file names."""
    return datetime.datetime.now(tz=datetime.timezone.utc).strftime("%Y%m%d-%H%M%S-%f")


def sanitize_name(s: str) -> str:
    """Replace characters that are not safe in file and index names.

    >>> sanitize_name("test_foo[a b/c]")
    'test_foo_a_b_c_'
    """
    return _UNSAFE_CHARS_RE.sub("_", s.strip())


def check_dir_arg(dir_path: str) -> pl.Path | None:
    """Check that the dir passed as command line option exists."""
    if not dir_path:
        return None
    abs_path = pl.Path(dir_path).expanduser().resolve()
    if not abs_path.is_dir():
        msg = f"directory '{dir_path}' doesn't exist"
        raise argparse.ArgumentTypeError(msg)
    return abs_path
