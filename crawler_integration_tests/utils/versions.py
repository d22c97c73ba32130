"""Behavior of the framework that depends on the version of the connected cluster."""

import dataclasses
import typing as tp

from packaging import version

from crawler_integration_tests.cluster_management import common

if tp.TYPE_CHECKING:
    from crawler_integration_tests.utils import cluster_client


@dataclasses.dataclass(frozen=True)
class BehaviorProfile:
    """How to talk to the connected cluster.

    Negotiated once per test run, right after the connection to the cluster is established.
    """

    version: version.Version
    default_type_name: str
    track_total_hits: bool

    @property
    def major(self) -> int:
        return self.version.major

    def supports(self, min_version: str) -> bool:
        """Check that the cluster version is at least `min_version`."""
        return self.version >= version.parse(min_version)


def parse_version(version_str: str) -> version.Version:
    # Snapshot builds report e.g. "8.18.0-SNAPSHOT"
    base_str = version_str.split("-", maxsplit=1)[0]
    try:
        return version.parse(base_str)
    except version.InvalidVersion as exc:
        msg = f"Unable to parse cluster version '{version_str}'."
        raise common.ConfigurationError(msg) from exc


def negotiate(info: "cluster_client.ClusterInfo") -> BehaviorProfile:
    """Return behavior profile matching the cluster described by `info`."""
    cluster_version = parse_version(info.version)
    if cluster_version.major < 6:
        msg = f"Cluster version {cluster_version} is not supported, 6.0.0 or newer is required."
        raise common.ConfigurationError(msg)

    # Mapping types were removed in 7.0, "_doc" is the only (implicit) type since then
    default_type_name = "doc" if cluster_version.major < 7 else "_doc"

    return BehaviorProfile(
        version=cluster_version,
        default_type_name=default_type_name,
        track_total_hits=cluster_version.major >= 7,
    )
