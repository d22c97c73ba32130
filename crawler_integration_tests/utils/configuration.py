"""Cluster and test environment configuration."""

import dataclasses
import os
import pathlib as pl

LAUNCH_PATH = pl.Path.cwd()

IS_XDIST = bool(os.environ.get("PYTEST_XDIST_TESTRUNUID"))

DEFAULT_CLUSTER_PORT = 9200
DEFAULT_USERNAME = "elastic"
DEFAULT_PASSWORD = "changeme"
DEFAULT_REST_PORT = 8080
DEFAULT_ES_VERSION = "8.17.0"

# Connection to an existing cluster. When neither the host nor the cloud id is set, the framework
# looks for a cluster on localhost and starts a Docker container if nothing is listening there.
CLUSTER_HOST = os.environ.get("TESTS_CLUSTER_HOST") or ""
CLUSTER_PORT = int(os.environ.get("TESTS_CLUSTER_PORT") or DEFAULT_CLUSTER_PORT)
CLUSTER_SCHEME = os.environ.get("TESTS_CLUSTER_SCHEME") or "http"
CLUSTER_CLOUD_ID = os.environ.get("TESTS_CLUSTER_CLOUD_ID") or ""
CLUSTER_USER = os.environ.get("TESTS_CLUSTER_USER") or DEFAULT_USERNAME
CLUSTER_PASS = os.environ.get("TESTS_CLUSTER_PASS") or DEFAULT_PASSWORD

# Docker image used when the cluster needs to be provisioned
ES_IMAGE = os.environ.get("TESTS_ES_IMAGE") or "docker.elastic.co/elasticsearch/elasticsearch"
ES_VERSION = os.environ.get("TESTS_ES_VERSION") or DEFAULT_ES_VERSION
CONTAINER_START_TIMEOUT = float(os.environ.get("TESTS_CONTAINER_START_TIMEOUT") or 120)

# What to do with a container started by the framework once the test run is over
CONTAINER_TEARDOWN = os.environ.get("TESTS_CONTAINER_TEARDOWN") or "never"
if CONTAINER_TEARDOWN not in ("never", "always", "full_run"):
    msg = f"Invalid TESTS_CONTAINER_TEARDOWN: {CONTAINER_TEARDOWN}"
    raise RuntimeError(msg)

REST_PORT = int(os.environ.get("TESTS_REST_PORT") or DEFAULT_REST_PORT)

# Default time to wait for documents to show up in the cluster
COUNT_TIMEOUT = float(os.environ.get("TESTS_COUNT_TIMEOUT") or 20)


@dataclasses.dataclass(frozen=True)
class ClusterSettings:
    """Settings needed to find or provision the cluster."""

    host: str = ""
    port: int = DEFAULT_CLUSTER_PORT
    scheme: str = "http"
    cloud_id: str = ""
    username: str = DEFAULT_USERNAME
    password: str = DEFAULT_PASSWORD
    es_image: str = "docker.elastic.co/elasticsearch/elasticsearch"
    es_version: str = DEFAULT_ES_VERSION
    container_teardown: str = "never"
    container_start_timeout: float = 120
    rest_port: int = DEFAULT_REST_PORT

    @classmethod
    def from_config(cls) -> "ClusterSettings":
        """Return settings based on the environment this module was loaded in."""
        return cls(
            host=CLUSTER_HOST,
            port=CLUSTER_PORT,
            scheme=CLUSTER_SCHEME,
            cloud_id=CLUSTER_CLOUD_ID,
            username=CLUSTER_USER,
            password=CLUSTER_PASS,
            es_image=ES_IMAGE,
            es_version=ES_VERSION,
            container_teardown=CONTAINER_TEARDOWN,
            container_start_timeout=CONTAINER_START_TIMEOUT,
            rest_port=REST_PORT,
        )
