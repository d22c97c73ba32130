"""Temporary directories of the pytest run."""

import dataclasses
import pathlib as pl

from _pytest.tmpdir import TempPathFactory

from crawler_integration_tests.utils import configuration


@dataclasses.dataclass(frozen=True)
class PytestTempDirs:
    """Worker temp dir and the run-scoped root.

    With multiple workers, each worker has its own base temp dir inside the root. Staged
    workspaces, the metadata dir and status files shared by workers live in the root.
    """

    worker_tmp: pl.Path
    root_tmp: pl.Path

    @classmethod
    def from_factory(cls, tmp_path_factory: TempPathFactory) -> "PytestTempDirs":
        worker_tmp = pl.Path(tmp_path_factory.getbasetemp())
        root_tmp = worker_tmp.parent if configuration.IS_XDIST else worker_tmp
        return cls(worker_tmp=worker_tmp, root_tmp=root_tmp)


_temp_dirs: PytestTempDirs | None = None


def init(tmp_path_factory: TempPathFactory) -> PytestTempDirs:
    """Record temp dirs of the run. Called from `conftest.py`, where the factory is available."""
    global _temp_dirs  # noqa: PLW0603
    _temp_dirs = PytestTempDirs.from_factory(tmp_path_factory)
    return _temp_dirs


def _get_temp_dirs() -> PytestTempDirs:
    if _temp_dirs is None:
        msg = "Pytest temp dirs are not initialized."
        raise RuntimeError(msg)
    return _temp_dirs


def get_pytest_worker_tmp() -> pl.Path:
    return _get_temp_dirs().worker_tmp


def get_pytest_root_tmp() -> pl.Path:
    return _get_temp_dirs().root_tmp
