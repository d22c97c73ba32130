"""Ephemeral cluster running in a Docker container."""

import contextlib
import logging
import typing as tp

import docker
import docker.errors
from testcontainers.core.config import testcontainers_config
from testcontainers.core.container import DockerContainer

from crawler_integration_tests.cluster_management import endpoint as endpoint_mod
from crawler_integration_tests.utils import configuration

LOGGER = logging.getLogger(__name__)

# Suppress messages from docker client
logging.getLogger("docker").setLevel(logging.WARNING)
logging.getLogger("urllib3").setLevel(logging.WARNING)

ES_PORT = 9200


class Container(tp.Protocol):
    """What the provisioner needs from a container."""

    @property
    def container_id(self) -> str: ...

    def start(self) -> None: ...

    def get_host(self) -> str: ...

    def get_first_mapped_port(self) -> int: ...

    def stop(self) -> None: ...


ContainerFactory = tp.Callable[[str, endpoint_mod.Credentials], Container]


def use_reaper(teardown: str) -> bool:
    """Check if the container may be left to the testcontainers reaper.

    The reaper removes the container when the process that started it exits. That is only
    right when a single process runs the tests and the container is to be stopped anyway.
    Otherwise the teardown policy alone decides.
    """
    return not configuration.IS_XDIST and teardown == "always"


@contextlib.contextmanager
def _reaper_disabled() -> tp.Iterator[None]:
    orig_value = testcontainers_config.ryuk_disabled
    testcontainers_config.ryuk_disabled = True
    try:
        yield
    finally:
        testcontainers_config.ryuk_disabled = orig_value


class ElasticsearchContainer:
    """Single-node cluster with security enabled and plain HTTP."""

    def __init__(
        self,
        image: str,
        version: str,
        credentials: endpoint_mod.Credentials,
        *,
        reaper: bool = False,
    ) -> None:
        self.image_name = f"{image}:{version}"
        self.credentials = credentials
        self.reaper = reaper
        self._container = (
            DockerContainer(self.image_name)
            .with_exposed_ports(ES_PORT)
            .with_env("discovery.type", "single-node")
            .with_env("xpack.security.enabled", "true")
            .with_env("xpack.security.http.ssl.enabled", "false")
            .with_env("ES_JAVA_OPTS", "-Xms512m -Xmx512m")
            .with_env("ELASTIC_PASSWORD", credentials.password)
        )
        self._started = False

    @property
    def container_id(self) -> str:
        if not self._started:
            return ""
        return str(self._container.get_wrapped_container().id)

    def start(self) -> None:
        if self._started:
            return
        LOGGER.info(f"Starting container from image '{self.image_name}' (reaper: {self.reaper}).")
        if self.reaper:
            self._container.start()
        else:
            with _reaper_disabled():
                self._container.start()
        self._started = True

    def get_host(self) -> str:
        return str(self._container.get_container_host_ip())

    def get_first_mapped_port(self) -> int:
        return int(self._container.get_exposed_port(ES_PORT))

    def stop(self) -> None:
        if not self._started:
            return
        self._started = False
        LOGGER.info(f"Stopping container from image '{self.image_name}'.")
        self._container.stop()


def get_container_factory(image: str, *, reaper: bool = False) -> ContainerFactory:
    """Return factory of containers running the given image."""

    def _factory(version: str, credentials: endpoint_mod.Credentials) -> Container:
        return ElasticsearchContainer(
            image=image, version=version, credentials=credentials, reaper=reaper
        )

    return _factory


def stop_container_by_id(container_id: str) -> None:
    """Stop container that was started by a different pytest worker."""
    client = docker.from_env()
    try:
        client.containers.get(container_id).stop()
    except docker.errors.NotFound:
        LOGGER.warning(f"Container '{container_id}' doesn't exist anymore.")
    finally:
        client.close()
