"""Collecting of staged resources and logs of the test run."""

import logging
import pathlib as pl
import shutil

from _pytest.config import Config

from crawler_integration_tests.utils import helpers

LOGGER = logging.getLogger(__name__)

ARTIFACTS_BASE_DIR_ARG = "--artifacts-base-dir"


def copy_artifacts(*, pytest_tmp_dir: pl.Path, pytest_config: Config) -> pl.Path | None:
    """Copy the run-scoped root to the artifacts dir, if one was requested.

    The root holds workspaces of all tests, the metadata dir and per-worker framework logs,
    i.e. everything needed to find out why a test didn't see the documents it expected.
    """
    artifacts_base_dir: pl.Path | None = pytest_config.getoption(ARTIFACTS_BASE_DIR_ARG)
    if not artifacts_base_dir:
        return None

    run_root = pytest_tmp_dir.resolve()
    if not run_root.is_dir():
        LOGGER.warning(f"Nothing to collect, '{run_root}' doesn't exist.")
        return None

    destdir = pl.Path(artifacts_base_dir) / f"{run_root.name}-{helpers.get_timestamp()}"
    shutil.copytree(
        run_root,
        destdir,
        symlinks=True,
        ignore_dangling_symlinks=True,
        ignore=shutil.ignore_patterns("*.lock"),
    )
    LOGGER.info(f"Artifacts of the test run copied to '{destdir}'.")
    return destdir
