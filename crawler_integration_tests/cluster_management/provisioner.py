"""Obtaining a live cluster for the test run.

The cluster is either an already running one (configured explicitly, or found on localhost), or
an ephemeral one started in a Docker container. Tests don't need to care which path was taken,
they get a `ClusterHandle` either way.

When running with multiple pytest workers, the first worker that gets the cluster lock does the
probing and provisioning, and records the outcome in a state file in the shared temp dir. Other
workers reuse the recorded cluster.
"""

import dataclasses
import json
import logging
import pathlib as pl
import typing as tp

import requests

from crawler_integration_tests.cluster_management import common
from crawler_integration_tests.cluster_management import container as container_mod
from crawler_integration_tests.cluster_management import endpoint as endpoint_mod
from crawler_integration_tests.utils import cluster_client
from crawler_integration_tests.utils import convergence
from crawler_integration_tests.utils import locking
from crawler_integration_tests.utils import versions

LOGGER = logging.getLogger(__name__)

ClientFactory = tp.Callable[[endpoint_mod.Endpoint], cluster_client.ClusterClient]


@dataclasses.dataclass(frozen=True)
class ClusterHandle:
    """Live connection to the cluster, shared by all tests of the run."""

    endpoint: endpoint_mod.Endpoint
    client: cluster_client.ClusterClient
    profile: versions.BehaviorProfile
    container: container_mod.Container | None = None
    container_id: str = ""

    @property
    def started_here(self) -> bool:
        """Check if the container was started by this process."""
        return self.container is not None

    def info(self) -> cluster_client.ClusterInfo:
        return self.client.info()

    def search(self, index: str, query: dict | None = None) -> cluster_client.SearchResult:
        return self.client.search(
            index=index, query=query, track_total_hits=self.profile.track_total_hits
        )

    def close(self) -> None:
        self.client.close()


@dataclasses.dataclass(frozen=True)
class _ClusterState:
    """Cluster recorded by a pytest worker for reuse by other workers."""

    host: str
    port: int
    scheme: str
    container_id: str = ""

    @classmethod
    def load(cls, state_file: pl.Path) -> "_ClusterState | None":
        if not state_file.exists():
            return None
        with open(state_file, encoding="utf-8") as in_fp:
            return cls(**json.load(in_fp))

    def save(self, state_file: pl.Path) -> None:
        with open(state_file, "w", encoding="utf-8") as out_fp:
            json.dump(dataclasses.asdict(self), out_fp, indent=4)


class ClusterProvisioner:
    """Decide between reusing a running cluster and starting a container."""

    def __init__(
        self,
        *,
        local_endpoint: endpoint_mod.Endpoint,
        container_factory: container_mod.ContainerFactory,
        es_version: str,
        client_factory: ClientFactory = cluster_client.ClusterClient,
        lock_file: str = "",
        state_file: pl.Path | None = None,
        start_timeout: float = 120,
        poll_interval: float = 1,
        clock: convergence.Clock = convergence.SYSTEM_CLOCK,
        log_func: tp.Callable[[str], None] = LOGGER.info,
    ) -> None:
        self.local_endpoint = local_endpoint
        self.container_factory = container_factory
        self.es_version = es_version
        self.client_factory = client_factory
        self.lock_file = lock_file
        self.state_file = state_file
        self.start_timeout = start_timeout
        self.poll_interval = poll_interval
        self.clock = clock
        self.log = log_func

    def _connect_explicit(
        self, endpoint: endpoint_mod.Endpoint
    ) -> cluster_client.ClusterClient:
        """Connect to explicitly configured cluster. It is never replaced by a container."""
        client = self.client_factory(endpoint)
        try:
            client.info()
        except requests.ConnectionError as exc:
            client.close()
            msg = f"Configured cluster '{endpoint.redacted()}' is not reachable: {exc}"
            raise common.ConfigurationError(msg) from exc
        except Exception:
            client.close()
            raise
        return client

    def _local_cluster_running(self, endpoint: endpoint_mod.Endpoint) -> bool:
        """Probe for a cluster on localhost.

        Return `False` only when nothing is listening. Any other failure is fatal, so unrelated
        problems are not hidden behind a freshly started container.
        """
        probe_client = self.client_factory(endpoint)
        try:
            probe_client.info()
        except (requests.ConnectionError, ConnectionRefusedError) as exc:
            if cluster_client.is_connection_refused(exc):
                return False
            msg = f"Probing local cluster '{endpoint.redacted()}' failed: {exc}"
            raise common.ProvisioningError(msg) from exc
        except Exception as exc:
            msg = f"Probing local cluster '{endpoint.redacted()}' failed: {exc}"
            raise common.ProvisioningError(msg) from exc
        finally:
            probe_client.close()
        return True

    def _wait_for_cluster(self, client: cluster_client.ClusterClient) -> None:
        outcome = convergence.await_value(
            client.info,
            predicate=lambda __: True,
            timeout=self.start_timeout,
            poll_interval=self.poll_interval,
            clock=self.clock,
        )
        if not outcome.succeeded:
            msg = (
                f"Cluster in container didn't become reachable on '{client.endpoint.redacted()}' "
                f"within {self.start_timeout} seconds."
            )
            raise common.ProvisioningError(msg)

    def _start_container(
        self, credentials: endpoint_mod.Credentials
    ) -> tuple[container_mod.Container, endpoint_mod.Endpoint]:
        container = self.container_factory(self.es_version, credentials)
        self.log(f"starting container with cluster version {self.es_version}")
        try:
            container.start()
        except Exception as exc:
            self.log(f"failed to start container: {exc}")
            msg = f"Failed to start cluster container (version {self.es_version}): {exc}"
            raise common.ProvisioningError(msg) from exc

        try:
            container_endpoint = endpoint_mod.Endpoint(
                host=container.get_host(),
                port=container.get_first_mapped_port(),
                scheme=endpoint_mod.Scheme.HTTP,
                username=credentials.username,
                password=credentials.password,
            )
        except Exception as exc:
            self.log(f"stopping container '{container.container_id}' with unknown address: {exc}")
            container.stop()
            msg = f"Failed to get address of cluster container: {exc}"
            raise common.ProvisioningError(msg) from exc

        self.log(f"container '{container.container_id}' listening on {container_endpoint.url}")
        return container, container_endpoint

    def _provision(
        self, credentials: endpoint_mod.Credentials
    ) -> tuple[cluster_client.ClusterClient, container_mod.Container]:
        container, container_endpoint = self._start_container(credentials=credentials)
        client = self.client_factory(container_endpoint)
        try:
            self._wait_for_cluster(client)
        except Exception:
            client.close()
            self.log(f"stopping unreachable container '{container.container_id}'")
            container.stop()
            raise
        return client, container

    def _acquire_undetermined(
        self, credentials: endpoint_mod.Credentials
    ) -> tuple[cluster_client.ClusterClient, container_mod.Container | None, str]:
        with locking.lock_if_xdist(self.lock_file):
            state = _ClusterState.load(self.state_file) if self.state_file else None
            if state:
                self.log(f"reusing cluster recorded by another worker on {state.host}:{state.port}")
                shared_endpoint = endpoint_mod.Endpoint(
                    host=state.host,
                    port=state.port,
                    scheme=endpoint_mod.Scheme.parse(state.scheme),
                ).with_credentials(credentials)
                return self._connect_explicit(shared_endpoint), None, state.container_id

            local_endpoint = self.local_endpoint.with_credentials(credentials)
            if self._local_cluster_running(local_endpoint):
                LOGGER.debug("A node is already running locally, no need to start a container.")
                self.log(f"reusing local cluster on {local_endpoint.url}")
                client = self._connect_explicit(local_endpoint)
                container: container_mod.Container | None = None
                container_id = ""
            else:
                LOGGER.debug("No local node running, starting a container.")
                client, container = self._provision(credentials=credentials)
                container_id = container.container_id

            if self.state_file:
                _ClusterState(
                    host=client.endpoint.host,
                    port=client.endpoint.port,
                    scheme=str(client.endpoint.scheme),
                    container_id=container_id,
                ).save(self.state_file)

        return client, container, container_id

    def acquire(
        self,
        endpoint: endpoint_mod.Endpoint | None,
        credentials: endpoint_mod.Credentials | None = None,
    ) -> ClusterHandle:
        """Return handle to a live cluster.

        Args:
            endpoint: A resolved endpoint, or `None` when it couldn't be determined from
                the settings.
            credentials: Credentials for the cluster, override the ones in the endpoint.
        """
        container: container_mod.Container | None = None
        container_id = ""

        if endpoint is not None:
            final_endpoint = endpoint.with_credentials(credentials)
            client = self._connect_explicit(final_endpoint)
        else:
            credentials = credentials or self.local_endpoint.credentials
            if credentials is None:
                msg = "Credentials are needed for provisioning the cluster."
                raise common.ConfigurationError(msg)
            client, container, container_id = self._acquire_undetermined(credentials=credentials)

        try:
            info = client.info()
            profile = versions.negotiate(info)
        except Exception:
            client.close()
            if container is not None:
                container.stop()
            raise

        LOGGER.info(
            f"Running integration tests against cluster '{client.endpoint.redacted()}' "
            f"version {info.version}."
        )
        return ClusterHandle(
            endpoint=client.endpoint,
            client=client,
            profile=profile,
            container=container,
            container_id=container_id,
        )
