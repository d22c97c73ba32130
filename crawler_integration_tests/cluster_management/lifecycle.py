"""Setup and teardown of the test run.

The run goes through the states in this order, there are no cycles:

`INIT -> RESOURCES_STAGED -> CLUSTER_READY -> REST_CLIENT_READY -> RUNNING -> TORN_DOWN`

Every setup step makes sure the previous ones were done, and does nothing when the run is already
in or past its state. Only the per-test steps (`begin_test`, `end_test`) repeat.
"""

import dataclasses
import enum
import logging
import pathlib as pl
import threading
import typing as tp

import allure

from crawler_integration_tests.cluster_management import container as container_mod
from crawler_integration_tests.cluster_management import endpoint as endpoint_mod
from crawler_integration_tests.cluster_management import provisioner as provisioner_mod
from crawler_integration_tests.utils import configuration
from crawler_integration_tests.utils import locking
from crawler_integration_tests.utils import rest_client
from crawler_integration_tests.utils import staging
from crawler_integration_tests.utils import versions

LOGGER = logging.getLogger(__name__)


class SuiteState(enum.IntEnum):
    INIT = 0
    RESOURCES_STAGED = 1
    CLUSTER_READY = 2
    REST_CLIENT_READY = 3
    RUNNING = 4
    TORN_DOWN = 5


class ContainerTeardown(enum.StrEnum):
    """What to do with the container started by the framework when the run is over."""

    # Keep the container running, so it can be reused by the next run
    NEVER = "never"
    ALWAYS = "always"
    # Stop the container only when the whole test suite was run
    FULL_RUN = "full_run"


@dataclasses.dataclass(frozen=True)
class RunContext:
    """Everything a test needs from the run-scoped environment."""

    settings: configuration.ClusterSettings
    cluster: provisioner_mod.ClusterHandle
    rest: rest_client.RestClient
    run_root: pl.Path
    metadata_dir: pl.Path
    documents_dir: pl.Path

    @property
    def profile(self) -> versions.BehaviorProfile:
        return self.cluster.profile


class SuiteLifecycle:
    """Orchestrate setup of the run-scoped environment, per-test staging and teardown."""

    def __init__(
        self,
        *,
        settings: configuration.ClusterSettings,
        stager: staging.ResourceStager,
        provisioner: provisioner_mod.ClusterProvisioner,
        rest_client_factory: tp.Callable[[str], rest_client.RestClient] = rest_client.RestClient,
        defaults_dir: pl.Path = staging.DEFAULTS_DIR,
        documents_source: pl.Path = staging.DOCUMENTS_DIR,
        resources_lock: str = "",
        stop_container_func: tp.Callable[[str], None] = container_mod.stop_container_by_id,
        log_func: tp.Callable[[str], None] = LOGGER.info,
    ) -> None:
        self.settings = settings
        self.stager = stager
        self.provisioner = provisioner
        self.rest_client_factory = rest_client_factory
        self.defaults_dir = defaults_dir
        self.documents_source = documents_source
        self.resources_lock = resources_lock
        self.stop_container_func = stop_container_func
        self.log = log_func
        self.teardown_policy = ContainerTeardown(settings.container_teardown)

        self._lock = threading.RLock()
        self._state = SuiteState.INIT
        self._metadata_dir: pl.Path | None = None
        self._documents_dir: pl.Path | None = None
        self._cluster: provisioner_mod.ClusterHandle | None = None
        self._rest: rest_client.RestClient | None = None

    @property
    def state(self) -> SuiteState:
        return self._state

    @property
    def cluster(self) -> provisioner_mod.ClusterHandle | None:
        return self._cluster

    def _check_not_torn_down(self) -> None:
        if self._state == SuiteState.TORN_DOWN:
            msg = "The test run was already torn down."
            raise RuntimeError(msg)

    def stage_resources(self) -> None:
        """Populate the metadata dir and the shared test documents."""
        with self._lock:
            self._check_not_torn_down()
            if self._state >= SuiteState.RESOURCES_STAGED:
                return

            with locking.lock_if_xdist(self.resources_lock):
                self._metadata_dir = self.stager.stage_metadata(defaults_dir=self.defaults_dir)
                self._documents_dir = self.stager.stage_documents(source=self.documents_source)
            LOGGER.debug(f"  --> Test resources ready in [{self.stager.resources_dir}]")
            self._state = SuiteState.RESOURCES_STAGED

    def start_cluster(self) -> provisioner_mod.ClusterHandle:
        """Resolve the endpoint and get a live cluster."""
        with self._lock:
            self.stage_resources()
            if self._cluster is not None:
                return self._cluster

            endpoint = endpoint_mod.resolve(self.settings)
            self.log(
                f"cluster endpoint: {endpoint.redacted() if endpoint else 'undetermined'}"
            )
            self._cluster = self.provisioner.acquire(
                endpoint, endpoint_mod.get_credentials(self.settings)
            )
            self._state = SuiteState.CLUSTER_READY
            return self._cluster

    def start_rest_client(self) -> rest_client.RestClient:
        with self._lock:
            self.start_cluster()
            if self._rest is not None:
                return self._rest

            self._rest = self.rest_client_factory(rest_client.rest_url(self.settings.rest_port))
            self._state = SuiteState.REST_CLIENT_READY
            return self._rest

    @property
    def context(self) -> RunContext:
        if (
            self._state < SuiteState.REST_CLIENT_READY
            or self._cluster is None
            or self._rest is None
            or self._metadata_dir is None
            or self._documents_dir is None
        ):
            msg = f"The test run is not set up, current state is {self._state.name}."
            raise RuntimeError(msg)

        return RunContext(
            settings=self.settings,
            cluster=self._cluster,
            rest=self._rest,
            run_root=self.stager.run_root,
            metadata_dir=self._metadata_dir,
            documents_dir=self._documents_dir,
        )

    def setup(self) -> RunContext:
        """Do all the setup steps. Tear down what was set up when any of them fails."""
        try:
            self.start_rest_client()
        except Exception:
            self.log("setup of the test run failed")
            self.teardown()
            raise
        return self.context

    def begin_test(self, test_name: str) -> staging.Workspace:
        """Stage fixtures for a test that is about to run."""
        with self._lock:
            self._check_not_torn_down()
            if self._state < SuiteState.REST_CLIENT_READY:
                msg = f"The test run is not set up, current state is {self._state.name}."
                raise RuntimeError(msg)
            self._state = SuiteState.RUNNING

        return self.stager.stage(test_name)

    def end_test(self, workspace: staging.Workspace, *, failed: bool) -> None:
        """Dump the content of the workspace of a failed test."""
        if not failed:
            staging.log_dir_content(workspace.path, logging.DEBUG)
            return

        listing = staging.dir_listing(workspace.path) if workspace.path.is_dir() else []
        LOGGER.warning(f"Test [{workspace.test_name}] failed, content of [{workspace.path}]:")
        for line in listing:
            LOGGER.warning(line)
        allure.attach(
            "\n".join(listing),
            name=f"workspace {workspace.test_name}",
            attachment_type=allure.attachment_type.TEXT,
        )

    def _stop_container(self, cluster: provisioner_mod.ClusterHandle) -> None:
        if cluster.container is not None:
            self.log(f"stopping container '{cluster.container_id}'")
            cluster.container.stop()
        elif cluster.container_id:
            self.log(f"stopping container '{cluster.container_id}' started by another worker")
            self.stop_container_func(cluster.container_id)

    def _apply_teardown_policy(self, *, full_run: bool, last_worker: bool) -> None:
        cluster = self._cluster
        if cluster is None or not cluster.container_id:
            return

        stop = self.teardown_policy == ContainerTeardown.ALWAYS or (
            self.teardown_policy == ContainerTeardown.FULL_RUN and full_run
        )
        if not stop:
            self.log(
                f"keeping container '{cluster.container_id}' running "
                f"(policy '{self.teardown_policy}', full run: {full_run})"
            )
            return
        if not last_worker:
            self.log("other workers are still running, not stopping the container")
            return

        try:
            self._stop_container(cluster)
        except Exception:
            LOGGER.exception(f"Failed to stop container '{cluster.container_id}'.")

    def teardown(self, *, full_run: bool = False, last_worker: bool = True) -> None:
        """Close the clients and apply the container teardown policy.

        Safe to call repeatedly, and in any state. Failures are logged, they must not hide
        the outcome of the tests.
        """
        with self._lock:
            if self._state == SuiteState.TORN_DOWN:
                return

            LOGGER.info("Stopping integration tests against the cluster.")
            if self._rest is not None:
                try:
                    self._rest.close()
                except Exception:
                    LOGGER.exception("Failed to close the REST client.")

            if self._cluster is not None:
                try:
                    self._cluster.close()
                    LOGGER.info("Cluster client stopped.")
                except Exception:
                    LOGGER.exception("Failed to close the cluster client.")

            self._apply_teardown_policy(full_run=full_run, last_worker=last_worker)

            if self._metadata_dir is not None:
                LOGGER.debug(f"ls -l {self._metadata_dir}")
                staging.log_dir_content(self._metadata_dir, logging.DEBUG)

            self._state = SuiteState.TORN_DOWN
