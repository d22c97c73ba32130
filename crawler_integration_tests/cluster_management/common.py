CLUSTER_LOCK = ".cluster.lock"
RESOURCES_LOCK = ".resources.lock"
CLUSTER_STATE_FILE = ".cluster_state.json"
RUNNING_SESSION_GLOB = ".running_session"


class ConfigurationError(Exception):
    """The cluster settings are malformed or point to a cluster that can't be used."""


class ProvisioningError(Exception):
    """The cluster could not be found locally nor started in a container."""


class FixtureNotFoundError(Exception):
    """Neither the test specific nor the common fixture directory exists."""
