"""Resolving cluster settings into a concrete endpoint.

Precedence of the settings, highest first:

1. cloud id - decoded into host, port and scheme; explicit host, port and scheme are ignored
2. explicit host - used together with the explicit port and scheme
3. nothing set - the endpoint is undetermined (`None`), the provisioner will look for a local
   cluster and start a container when there's none
"""

import base64
import binascii
import dataclasses
import enum
import logging

from crawler_integration_tests.cluster_management import common
from crawler_integration_tests.utils import configuration

LOGGER = logging.getLogger(__name__)

LOCAL_HOST = "localhost"
CLOUD_PORT = 443


class Scheme(enum.StrEnum):
    HTTP = "http"
    HTTPS = "https"

    @classmethod
    def parse(cls, value: str) -> "Scheme":
        try:
            return cls(value.strip().lower())
        except ValueError as exc:
            msg = f"Invalid cluster scheme '{value}', expected 'http' or 'https'."
            raise common.ConfigurationError(msg) from exc


@dataclasses.dataclass(frozen=True)
class Credentials:
    username: str
    password: str


@dataclasses.dataclass(frozen=True)
class Endpoint:
    host: str
    port: int
    scheme: Scheme
    username: str | None = None
    password: str | None = dataclasses.field(default=None, repr=False)

    def __post_init__(self) -> None:
        if not self.host:
            msg = "Cluster host must not be empty."
            raise common.ConfigurationError(msg)
        if not 0 < self.port <= 65535:
            msg = f"Invalid cluster port {self.port}, must be in range 1-65535."
            raise common.ConfigurationError(msg)
        if not isinstance(self.scheme, Scheme):
            msg = f"Cluster scheme must be set, got '{self.scheme}'."
            raise common.ConfigurationError(msg)

    @property
    def url(self) -> str:
        return f"{self.scheme}://{self.host}:{self.port}"

    @property
    def credentials(self) -> Credentials | None:
        if self.username is None:
            return None
        return Credentials(username=self.username, password=self.password or "")

    def with_credentials(self, credentials: Credentials | None) -> "Endpoint":
        """Return copy of the endpoint with the given credentials."""
        if credentials is None:
            return self
        return dataclasses.replace(
            self, username=credentials.username, password=credentials.password
        )

    def redacted(self) -> str:
        """Return printable form of the endpoint, without the password."""
        user = f"{self.username}@" if self.username else ""
        return f"{self.scheme}://{user}{self.host}:{self.port}"


def _split_port(host: str, default: int) -> tuple[str, int]:
    if ":" not in host:
        return host, default

    host, port_str = host.rsplit(":", maxsplit=1)
    try:
        return host, int(port_str)
    except ValueError as exc:
        msg = f"Invalid port '{port_str}' in cloud id."
        raise common.ConfigurationError(msg) from exc


def decode_cloud_id(cloud_id: str) -> Endpoint:
    """Decode cloud id into cluster endpoint.

    The cloud id has the form `<name>:<base64 data>`, where the name part is optional and the
    data is `<domain>[:<port>]$<elasticsearch uuid>[$<kibana uuid>]`. The cluster is reachable
    over HTTPS on `<elasticsearch uuid>.<domain>`, port 443 unless the data says otherwise.
    """
    encoded = cloud_id.strip().split(":", maxsplit=1)[-1]
    if not encoded:
        msg = f"Cloud id '{cloud_id}' has no data."
        raise common.ConfigurationError(msg)

    try:
        decoded = base64.b64decode(encoded, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError) as exc:
        msg = f"Cloud id '{cloud_id}' is not valid base64 encoded data."
        raise common.ConfigurationError(msg) from exc

    parts = decoded.split("$")
    if len(parts) < 2 or not all(parts[:2]):
        msg = f"Cloud id '{cloud_id}' doesn't contain domain and cluster id."
        raise common.ConfigurationError(msg)

    domain, port = _split_port(host=parts[0], default=CLOUD_PORT)
    es_uuid, port = _split_port(host=parts[1], default=port)
    if not (domain and es_uuid):
        msg = f"Cloud id '{cloud_id}' doesn't contain domain and cluster id."
        raise common.ConfigurationError(msg)

    return Endpoint(host=f"{es_uuid}.{domain}", port=port, scheme=Scheme.HTTPS)


def get_credentials(settings: configuration.ClusterSettings) -> Credentials:
    return Credentials(username=settings.username, password=settings.password)


def resolve(settings: configuration.ClusterSettings) -> Endpoint | None:
    """Resolve cluster settings into an endpoint.

    Return `None` when the endpoint can't be determined from the settings.
    """
    credentials = get_credentials(settings)

    if settings.cloud_id:
        if settings.host:
            LOGGER.warning(
                f"Both cloud id and cluster host '{settings.host}' are set, using the cloud id."
            )
        endpoint = decode_cloud_id(settings.cloud_id)
        LOGGER.debug(f"Using cloud id '{settings.cloud_id}'.")
        return endpoint.with_credentials(credentials)

    if settings.host:
        return Endpoint(
            host=settings.host,
            port=settings.port,
            scheme=Scheme.parse(settings.scheme),
            username=credentials.username,
            password=credentials.password,
        )

    return None


def local_default_endpoint(settings: configuration.ClusterSettings) -> Endpoint:
    """Return the endpoint where a locally running cluster is expected."""
    return Endpoint(
        host=LOCAL_HOST,
        port=settings.port,
        scheme=Scheme.parse(settings.scheme),
        username=settings.username,
        password=settings.password,
    )
