import json
import pathlib as pl

import pytest
import requests

from crawler_integration_tests.cluster_management import common
from crawler_integration_tests.cluster_management import endpoint
from crawler_integration_tests.cluster_management import provisioner
from crawler_integration_tests.utils import convergence
from fakes import CONTAINER_HOST
from fakes import CONTAINER_PORT
from fakes import FakeWorld

CREDENTIALS = endpoint.Credentials(username="elastic", password="changeme")


def _explicit(host: str = "es.example.com", port: int = 9200) -> endpoint.Endpoint:
    return endpoint.Endpoint(host=host, port=port, scheme=endpoint.Scheme.HTTP)


def test_explicit_reachable(world: FakeWorld, cluster_provisioner: provisioner.ClusterProvisioner):
    world.clusters[("es.example.com", 9200)] = "8.17.0"

    handle = cluster_provisioner.acquire(_explicit(), CREDENTIALS)

    assert world.container_starts == 0
    assert ("localhost", 9200) not in world.info_calls
    assert not handle.started_here
    assert not handle.container_id
    assert handle.profile.major == 8
    assert handle.endpoint.username == "elastic"
    assert handle.info().version == "8.17.0"


def test_explicit_unreachable(
    world: FakeWorld, cluster_provisioner: provisioner.ClusterProvisioner
):
    with pytest.raises(common.ConfigurationError):
        cluster_provisioner.acquire(_explicit(host="127.0.0.1", port=9400), CREDENTIALS)

    assert world.container_starts == 0
    assert all(c.closed for c in world.clients)


def test_local_running(world: FakeWorld, cluster_provisioner: provisioner.ClusterProvisioner):
    world.clusters[("localhost", 9200)] = "7.17.3"

    handle = cluster_provisioner.acquire(None, CREDENTIALS)

    assert world.container_starts == 0
    assert handle.endpoint.host == "localhost"
    assert handle.profile.default_type_name == "_doc"


def test_local_refused_starts_container(
    world: FakeWorld,
    cluster_provisioner: provisioner.ClusterProvisioner,
    tmp_path: pl.Path,
):
    handle = cluster_provisioner.acquire(None, CREDENTIALS)

    assert world.container_starts == 1
    assert handle.started_here
    assert handle.container_id == "fake-container-id"
    assert (handle.endpoint.host, handle.endpoint.port) == (CONTAINER_HOST, CONTAINER_PORT)
    assert handle.info().version == "8.17.0"

    # The probe client is closed, the client of the container is kept open
    probe_client = world.clients[0]
    assert probe_client.endpoint.host == "localhost"
    assert probe_client.closed
    assert not handle.client.closed

    with open(tmp_path / ".cluster_state.json", encoding="utf-8") as in_fp:
        state = json.load(in_fp)
    assert state["container_id"] == "fake-container-id"
    assert state["port"] == CONTAINER_PORT


def test_container_slow_boot(
    world: FakeWorld,
    cluster_provisioner: provisioner.ClusterProvisioner,
    fake_clock: convergence.FakeClock,
):
    world.boot_delay[(CONTAINER_HOST, CONTAINER_PORT)] = 3

    handle = cluster_provisioner.acquire(None, CREDENTIALS)

    assert handle.started_here
    assert fake_clock.sleeps == [1, 1, 1]


def test_container_never_reachable(
    world: FakeWorld,
    cluster_provisioner: provisioner.ClusterProvisioner,
    fake_clock: convergence.FakeClock,
    tmp_path: pl.Path,
):
    world.container_boots = False

    with pytest.raises(common.ProvisioningError):
        cluster_provisioner.acquire(None, CREDENTIALS)

    assert fake_clock.now >= 5
    assert world.containers[0].stop_calls == 1
    assert all(c.closed for c in world.clients)
    assert not (tmp_path / ".cluster_state.json").exists()


def test_container_start_failure(
    world: FakeWorld, cluster_provisioner: provisioner.ClusterProvisioner
):
    world.container_error = RuntimeError("Cannot connect to the Docker daemon")

    with pytest.raises(common.ProvisioningError, match="Docker daemon"):
        cluster_provisioner.acquire(None, CREDENTIALS)


def test_container_without_address_is_stopped(
    world: FakeWorld, cluster_provisioner: provisioner.ClusterProvisioner, tmp_path: pl.Path
):
    world.port_error = KeyError("9200/tcp")

    with pytest.raises(common.ProvisioningError, match="address"):
        cluster_provisioner.acquire(None, CREDENTIALS)

    assert world.container_starts == 1
    assert world.containers[0].stop_calls == 1
    assert not (tmp_path / ".cluster_state.json").exists()


@pytest.mark.parametrize(
    "error",
    (
        requests.ConnectionError("Name or service not known"),
        requests.HTTPError("401 Client Error: Unauthorized"),
    ),
)
def test_probe_unexpected_error(
    error: Exception, world: FakeWorld, cluster_provisioner: provisioner.ClusterProvisioner
):
    world.errors[("localhost", 9200)] = error

    with pytest.raises(common.ProvisioningError):
        cluster_provisioner.acquire(None, CREDENTIALS)

    assert world.container_starts == 0
    assert world.clients[0].closed


def test_reuse_recorded_cluster(
    world: FakeWorld,
    cluster_provisioner: provisioner.ClusterProvisioner,
    local_endpoint: endpoint.Endpoint,
    tmp_path: pl.Path,
):
    cluster_provisioner.acquire(None, CREDENTIALS)

    other_worker = provisioner.ClusterProvisioner(
        local_endpoint=local_endpoint,
        container_factory=world.container_factory,
        es_version="8.17.0",
        client_factory=world.client_factory,
        lock_file=str(tmp_path / ".cluster.lock"),
        state_file=tmp_path / ".cluster_state.json",
    )
    handle = other_worker.acquire(None, CREDENTIALS)

    assert world.container_starts == 1
    assert not handle.started_here
    assert handle.container_id == "fake-container-id"
    with open(tmp_path / ".cluster_state.json", encoding="utf-8") as in_fp:
        assert json.load(in_fp)["container_id"] == "fake-container-id"


def test_unsupported_version(
    world: FakeWorld, cluster_provisioner: provisioner.ClusterProvisioner
):
    world.clusters[("localhost", 9200)] = "5.6.16"

    with pytest.raises(common.ConfigurationError, match="not supported"):
        cluster_provisioner.acquire(None, CREDENTIALS)

    assert all(c.closed for c in world.clients)


def test_missing_credentials(world: FakeWorld, tmp_path: pl.Path):
    cluster_provisioner = provisioner.ClusterProvisioner(
        local_endpoint=_explicit(host="localhost"),
        container_factory=world.container_factory,
        es_version="8.17.0",
        client_factory=world.client_factory,
        lock_file=str(tmp_path / ".cluster.lock"),
    )

    with pytest.raises(common.ConfigurationError):
        cluster_provisioner.acquire(None)

    assert world.container_starts == 0
