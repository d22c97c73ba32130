"""Fixtures of the integration test suite.

Integration tests run against a cluster reachable on localhost:9200 by default. When nothing is
listening there, a cluster is started in a Docker container. All existing data in the cluster
might be removed by the tests.

To run the tests against a different cluster, set `TESTS_CLUSTER_HOST`, `TESTS_CLUSTER_PORT` and
`TESTS_CLUSTER_SCHEME` (defaults to http), or `TESTS_CLUSTER_CLOUD_ID`. No container is started
when the cluster is configured explicitly. Credentials are set with `TESTS_CLUSTER_USER` and
`TESTS_CLUSTER_PASS`.
"""

import logging
import typing as tp

import pytest
from _pytest.fixtures import FixtureRequest
from _pytest.main import Session
from _pytest.reports import TestReport
from _pytest.tmpdir import TempPathFactory

from crawler_integration_tests.cluster_management import common
from crawler_integration_tests.cluster_management import container
from crawler_integration_tests.cluster_management import endpoint
from crawler_integration_tests.cluster_management import lifecycle
from crawler_integration_tests.cluster_management import provisioner
from crawler_integration_tests.utils import artifacts
from crawler_integration_tests.utils import cluster_client
from crawler_integration_tests.utils import configuration
from crawler_integration_tests.utils import framework_log
from crawler_integration_tests.utils import helpers
from crawler_integration_tests.utils import locking
from crawler_integration_tests.utils import pytest_utils
from crawler_integration_tests.utils import search_utils
from crawler_integration_tests.utils import staging
from crawler_integration_tests.utils import temptools

LOGGER = logging.getLogger(__name__)
INTERRUPTED_NAME = ".session_interrupted"

phase_report_key = pytest.StashKey[dict[str, TestReport]]()
deselected_key = pytest.StashKey[int]()


def pytest_addoption(parser: tp.Any) -> None:
    parser.addoption(
        artifacts.ARTIFACTS_BASE_DIR_ARG,
        action="store",
        type=helpers.check_dir_arg,
        default="",
        help="Path to directory for storing artifacts",
    )


def pytest_deselected(items: list) -> None:
    if not items:
        return
    config = items[0].config
    config.stash[deselected_key] = config.stash.get(deselected_key, 0) + len(items)


@pytest.hookimpl(wrapper=True, tryfirst=True)
def pytest_runtest_makereport(item: pytest.Item, call: tp.Any) -> tp.Generator[None, tp.Any, tp.Any]:
    """Make the report of each test phase available to fixtures."""
    rep = yield
    item.stash.setdefault(phase_report_key, {})[rep.when] = rep
    return rep


@pytest.hookimpl(tryfirst=True)
def pytest_keyboard_interrupt() -> None:
    """Create a status file indicating that the test run was interrupted."""
    try:
        pytest_root_tmp = temptools.get_pytest_root_tmp()
    except RuntimeError:
        return
    (pytest_root_tmp / INTERRUPTED_NAME).touch()


def _is_full_run(session: Session) -> bool:
    """Check that the whole suite was run, not just a selection of tests."""
    if session.shouldstop or session.shouldfail:
        return False
    if session.config.getoption("keyword") or session.config.getoption("markexpr"):
        return False
    return not session.config.stash.get(deselected_key, 0)


@pytest.fixture(scope="session")
def init_pytest_temp_dirs(tmp_path_factory: TempPathFactory) -> None:
    """Init temp dirs of the run."""
    temptools.init(tmp_path_factory=tmp_path_factory)


@pytest.fixture(scope="session")
def suite_lifecycle(
    init_pytest_temp_dirs: None, worker_id: str, request: FixtureRequest
) -> tp.Generator[lifecycle.SuiteLifecycle, None, None]:
    """Return the lifecycle of the test run, tear it down at the end of the session."""
    pytest_root_tmp = temptools.get_pytest_root_tmp()
    cluster_lock = f"{pytest_root_tmp}/{common.CLUSTER_LOCK}"
    running_session_file = pytest_root_tmp / f"{common.RUNNING_SESSION_GLOB}_{worker_id}"
    settings = configuration.ClusterSettings.from_config()
    flog = framework_log.framework_logger()

    with locking.lock_if_xdist(cluster_lock):
        # Remove dangling files from previous interrupted test run
        (pytest_root_tmp / INTERRUPTED_NAME).unlink(missing_ok=True)
        # Create file indicating that testing session on this worker is running
        running_session_file.touch()

    cluster_provisioner = provisioner.ClusterProvisioner(
        local_endpoint=endpoint.local_default_endpoint(settings),
        container_factory=container.get_container_factory(
            settings.es_image, reaper=container.use_reaper(settings.container_teardown)
        ),
        es_version=settings.es_version,
        lock_file=cluster_lock,
        state_file=pytest_root_tmp / common.CLUSTER_STATE_FILE,
        start_timeout=settings.container_start_timeout,
        log_func=flog.info,
    )
    suite = lifecycle.SuiteLifecycle(
        settings=settings,
        stager=staging.ResourceStager(run_root=pytest_root_tmp),
        provisioner=cluster_provisioner,
        resources_lock=f"{pytest_root_tmp}/{common.RESOURCES_LOCK}",
        log_func=flog.info,
    )

    yield suite

    with locking.lock_if_xdist(cluster_lock):
        # Remove file indicating that testing session on this worker is running
        running_session_file.unlink(missing_ok=True)
        last_worker = not list(pytest_root_tmp.glob(f"{common.RUNNING_SESSION_GLOB}_*"))
        interrupted = (pytest_root_tmp / INTERRUPTED_NAME).exists()

        with helpers.ignore_interrupt():
            suite.teardown(
                full_run=not interrupted and _is_full_run(request.session),
                last_worker=last_worker,
            )

        if last_worker and not interrupted:
            artifacts.copy_artifacts(pytest_tmp_dir=pytest_root_tmp, pytest_config=request.config)


@pytest.fixture(scope="session")
def run_context(suite_lifecycle: lifecycle.SuiteLifecycle) -> lifecycle.RunContext:
    """Return the run-scoped environment: cluster, REST client and staged resources."""
    return suite_lifecycle.setup()


@pytest.fixture
def cluster(run_context: lifecycle.RunContext) -> provisioner.ClusterHandle:
    return run_context.cluster


@pytest.fixture
def workspace(
    suite_lifecycle: lifecycle.SuiteLifecycle,
    run_context: lifecycle.RunContext,
    request: FixtureRequest,
) -> tp.Generator[staging.Workspace, None, None]:
    """Return private copy of fixtures for the test, dump its content if the test fails."""
    test_workspace = suite_lifecycle.begin_test(request.node.originalname)

    yield test_workspace

    reports = request.node.stash.get(phase_report_key, {})
    call_report = reports.get("call")
    suite_lifecycle.end_test(
        test_workspace, failed=call_report is not None and call_report.failed
    )


@pytest.fixture
def crawler_name(request: FixtureRequest) -> str:
    return search_utils.get_crawler_name(pytest_utils.PytestTest.from_item(request.node))


@pytest.fixture
def clean_index(
    cluster: provisioner.ClusterHandle, crawler_name: str
) -> tp.Generator[str, None, None]:
    """Return name of an index that doesn't exist yet, remove it after the test."""
    client: cluster_client.ClusterClient = cluster.client
    client.delete_index(crawler_name)
    yield crawler_name
    client.delete_index(crawler_name)
