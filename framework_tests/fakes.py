"""Fake cluster, containers and clients for testing the framework without Docker."""

import typing as tp

import requests

from crawler_integration_tests.cluster_management import endpoint as endpoint_mod
from crawler_integration_tests.utils import cluster_client

CONTAINER_HOST = "127.0.0.1"
CONTAINER_PORT = 49153


def refused_error() -> requests.ConnectionError:
    return requests.ConnectionError(ConnectionRefusedError(111, "Connection refused"))


class FakeClusterClient:
    def __init__(self, world: "FakeWorld", endpoint: endpoint_mod.Endpoint) -> None:
        self.world = world
        self.endpoint = endpoint
        self.closed = False
        self.documents: dict[str, list[dict]] = {}

    @property
    def key(self) -> tuple[str, int]:
        return (self.endpoint.host, self.endpoint.port)

    def info(self) -> cluster_client.ClusterInfo:
        self.world.info_calls.append(self.key)
        if self.key in self.world.errors:
            raise self.world.errors[self.key]
        if self.world.boot_delay.get(self.key, 0) > 0:
            self.world.boot_delay[self.key] -= 1
            raise refused_error()
        if self.key not in self.world.clusters:
            raise refused_error()
        return cluster_client.ClusterInfo(
            version=self.world.clusters[self.key], cluster_name="fake", raw={}
        )

    def close(self) -> None:
        self.closed = True


class FakeContainer:
    def __init__(self, world: "FakeWorld", version: str) -> None:
        self.world = world
        self.version = version
        self.started = False
        self.stop_calls = 0

    @property
    def container_id(self) -> str:
        return "fake-container-id" if self.started else ""

    def start(self) -> None:
        self.world.container_starts += 1
        if self.world.container_error:
            raise self.world.container_error
        self.started = True
        if self.world.container_boots:
            self.world.clusters[(CONTAINER_HOST, CONTAINER_PORT)] = self.version

    def get_host(self) -> str:
        return CONTAINER_HOST

    def get_first_mapped_port(self) -> int:
        if self.world.port_error:
            raise self.world.port_error
        return CONTAINER_PORT

    def stop(self) -> None:
        self.stop_calls += 1
        self.world.clusters.pop((CONTAINER_HOST, CONTAINER_PORT), None)


class FakeWorld:
    """Clusters reachable by the fake clients, keyed by host and port."""

    def __init__(self) -> None:
        self.clusters: dict[tuple[str, int], str] = {}
        self.errors: dict[tuple[str, int], Exception] = {}
        self.boot_delay: dict[tuple[str, int], int] = {}
        self.info_calls: list[tuple[str, int]] = []
        self.clients: list[FakeClusterClient] = []
        self.containers: list[FakeContainer] = []
        self.container_starts = 0
        self.container_error: Exception | None = None
        self.port_error: Exception | None = None
        self.container_boots = True

    def client_factory(self, endpoint: endpoint_mod.Endpoint) -> tp.Any:
        client = FakeClusterClient(world=self, endpoint=endpoint)
        self.clients.append(client)
        return client

    def container_factory(self, version: str, credentials: endpoint_mod.Credentials) -> tp.Any:
        container = FakeContainer(world=self, version=version)
        self.containers.append(container)
        return container


class FakeRestClient:
    def __init__(self, base_url: str) -> None:
        self.base_url = base_url
        self.close_calls = 0

    def close(self) -> None:
        self.close_calls += 1


