"""Staging of test fixtures into the run-scoped temp dir.

Every test gets its own copy of the files it works with. Even if the files are duplicated for
multiple tests, tests can't interfere with each other that way. The run-scoped root is
reclaimed by pytest, there's no cleanup between tests.
"""

import dataclasses
import datetime
import logging
import pathlib as pl
import shutil
import zipfile

from crawler_integration_tests.cluster_management import common

LOGGER = logging.getLogger(__name__)

COMMON_FIXTURE = "common"
RESOURCES_DIRNAME = "resources"
METADATA_DIRNAME = ".crawler"
DOCUMENTS_DIRNAME = "documents"

DATA_DIR = pl.Path(__file__).parent.parent / "data"
SAMPLES_DIR = DATA_DIR / "samples"
DEFAULTS_DIR = DATA_DIR / "defaults"
DOCUMENTS_DIR = DATA_DIR / DOCUMENTS_DIRNAME


@dataclasses.dataclass(frozen=True)
class Workspace:
    """Directory with a private copy of fixtures for a single test."""

    test_name: str
    path: pl.Path
    source: pl.Path

    @property
    def used_fallback(self) -> bool:
        return self.source.name == COMMON_FIXTURE and self.test_name != COMMON_FIXTURE


def _copy_tree(src: pl.Path, dst: pl.Path) -> None:
    # Concurrent tests may stage into the same dir, so create it only if it's missing
    dst.mkdir(parents=True, exist_ok=True)
    shutil.copytree(src, dst, dirs_exist_ok=True)


class ResourceStager:
    """Copy fixture trees into the run-scoped root."""

    def __init__(self, run_root: pl.Path, samples_dir: pl.Path = SAMPLES_DIR) -> None:
        self.run_root = run_root
        self.samples_dir = samples_dir

    @property
    def resources_dir(self) -> pl.Path:
        return self.run_root / RESOURCES_DIRNAME

    @property
    def metadata_dir(self) -> pl.Path:
        return self.run_root / METADATA_DIRNAME

    def get_fixture_dir(self, test_name: str) -> pl.Path:
        """Return fixture dir for the test, fall back to the common fixtures."""
        named_dir = self.samples_dir / test_name
        if named_dir.is_dir():
            return named_dir

        common_dir = self.samples_dir / COMMON_FIXTURE
        if common_dir.is_dir():
            return common_dir

        msg = f"Neither '{named_dir}' nor '{common_dir}' fixture dir exists."
        raise common.FixtureNotFoundError(msg)

    def stage(self, test_name: str) -> Workspace:
        """Copy fixtures for the test into its own workspace."""
        LOGGER.info(f"  --> Launching test [{test_name}]")
        source = self.get_fixture_dir(test_name)
        workspace_dir = self.resources_dir / test_name

        LOGGER.debug(f"  --> Copying test resources from [{source}]")
        _copy_tree(src=source, dst=workspace_dir)
        LOGGER.debug(f"  --> Test resources ready in [{workspace_dir}]")

        return Workspace(test_name=test_name, path=workspace_dir, source=source)

    def stage_metadata(self, defaults_dir: pl.Path = DEFAULTS_DIR) -> pl.Path:
        """Populate the metadata dir with default resource files."""
        if not defaults_dir.is_dir():
            msg = f"Default resources dir '{defaults_dir}' doesn't exist."
            raise common.FixtureNotFoundError(msg)

        _copy_tree(src=defaults_dir, dst=self.metadata_dir)
        LOGGER.debug(f"  --> Test metadata dir ready in [{self.metadata_dir}]")
        return self.metadata_dir

    def stage_documents(self, source: pl.Path = DOCUMENTS_DIR) -> pl.Path:
        """Make the shared test documents available in the resources dir.

        The documents are either in a directory, or packed in a zip archive.
        """
        target = self.resources_dir / DOCUMENTS_DIRNAME

        if source.is_dir():
            LOGGER.info(f"-> Copying test documents from [{source}] to [{target}]")
            _copy_tree(src=source, dst=target)
        elif source.is_file() and zipfile.is_zipfile(source):
            LOGGER.info(f"-> Unzipping test documents from [{source}] to [{target}]")
            target.mkdir(parents=True, exist_ok=True)
            with zipfile.ZipFile(source) as zip_fp:
                zip_fp.extractall(target)
        else:
            msg = f"Test documents '{source}' are neither a directory nor a zip archive."
            raise common.FixtureNotFoundError(msg)

        return target


def _get_mtime(path: pl.Path) -> str:
    mtime = path.stat().st_mtime
    return datetime.datetime.fromtimestamp(mtime, tz=datetime.timezone.utc).isoformat()


def dir_listing(path: pl.Path) -> list[str]:
    """Return listing of the dir tree with modification times."""
    lines = []
    for file in sorted(path.rglob("*")):
        try:
            if file.is_dir():
                lines.append(f" * in dir [{file.relative_to(path)}] [{_get_mtime(file)}]")
            else:
                lines.append(f"   - [{file.name}] [{_get_mtime(file)}]")
        except OSError:
            # The file may have been removed by the crawler in the meantime
            continue
    return lines


def log_dir_content(path: pl.Path | None, level: int = logging.DEBUG) -> None:
    """Log content of the dir, useful when a test didn't see what it expected."""
    if path is None:
        return
    if not path.is_dir():
        LOGGER.error(f"can not read content of [{path}]")
        return
    for line in dir_listing(path):
        LOGGER.log(level, line)
