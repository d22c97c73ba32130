import pathlib as pl

import pytest

from crawler_integration_tests.cluster_management import endpoint as endpoint_mod
from crawler_integration_tests.cluster_management import provisioner
from crawler_integration_tests.utils import convergence
from fakes import FakeWorld


@pytest.fixture
def world() -> FakeWorld:
    return FakeWorld()


@pytest.fixture
def fake_clock() -> convergence.FakeClock:
    return convergence.FakeClock()


@pytest.fixture
def local_endpoint() -> endpoint_mod.Endpoint:
    return endpoint_mod.Endpoint(
        host="localhost",
        port=9200,
        scheme=endpoint_mod.Scheme.HTTP,
        username="elastic",
        password="changeme",
    )


@pytest.fixture
def cluster_provisioner(
    world: FakeWorld,
    fake_clock: convergence.FakeClock,
    local_endpoint: endpoint_mod.Endpoint,
    tmp_path: pl.Path,
) -> provisioner.ClusterProvisioner:
    return provisioner.ClusterProvisioner(
        local_endpoint=local_endpoint,
        container_factory=world.container_factory,
        es_version="8.17.0",
        client_factory=world.client_factory,
        lock_file=str(tmp_path / ".cluster.lock"),
        state_file=tmp_path / ".cluster_state.json",
        start_timeout=5,
        poll_interval=1,
        clock=fake_clock,
    )
