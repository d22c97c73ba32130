"""Assertions on documents indexed in the cluster."""

import logging
import pathlib as pl
import typing as tp

import allure
import pytest

from crawler_integration_tests.utils import cluster_client
from crawler_integration_tests.utils import configuration
from crawler_integration_tests.utils import convergence
from crawler_integration_tests.utils import helpers
from crawler_integration_tests.utils import pytest_utils
from crawler_integration_tests.utils import staging
from crawler_integration_tests.utils import versions

if tp.TYPE_CHECKING:
    from crawler_integration_tests.cluster_management import provisioner

LOGGER = logging.getLogger(__name__)

CRAWLER_PREFIX = "crawler_"


def get_crawler_name(test: pytest_utils.PytestTest | None = None) -> str:
    """Return name of the crawler (and of its index) for the test.

    The name is derived from the test class (or test module) and the test function, so every
    test works with its own index.
    """
    test = test or pytest_utils.get_current_test()
    if not test:
        msg = "No pytest test is running."
        raise RuntimeError(msg)

    name = f"{CRAWLER_PREFIX}{test.owner}_{test.test_function}".split(" ", maxsplit=1)[0]
    return helpers.sanitize_name(name).lower()


def skip_unless_version(profile: versions.BehaviorProfile, min_version: str) -> None:
    """Skip the test when the cluster is older than `min_version`."""
    if not profile.supports(min_version):
        pytest.skip(f"cluster version {profile.version} is older than {min_version}")


def wait_for_hits(
    cluster: "provisioner.ClusterHandle",
    index: str,
    expected: int | None = None,
    *,
    query: dict | None = None,
    path: pl.Path | None = None,
    timeout: float = configuration.COUNT_TIMEOUT,
    poll_interval: float = 0.5,
    clock: convergence.Clock = convergence.SYSTEM_CLOCK,
) -> cluster_client.SearchResult | None:
    """Check that the index has the expected number of documents, or at least one.

    Args:
        cluster: A handle to the cluster.
        index: A name of the index to search.
        expected: An expected number of hits. `None` means at least one.
        query: A query to run (default: match all).
        path: A dir the crawler scans. Its content is logged, more verbosely on failure.
        timeout: A time (seconds) to wait before declaring failure.
        poll_interval: A time (seconds) between searches.
        clock: A source of time, replaceable in tests.

    Returns:
        cluster_client.SearchResult | None: The last search result, for further checks.
    """
    last_result: list[cluster_client.SearchResult] = []

    def _sample() -> int:
        result = cluster.search(index=index, query=query)
        last_result[:] = [result]
        LOGGER.debug(f"got so far [{result.total_hits}] hits on expected [{expected}]")
        return result.total_hits

    LOGGER.info(
        f"  ---> Waiting up to {timeout}s for {'some' if expected is None else expected} "
        f"documents in [{index}]"
    )
    with allure.step(f"Wait for {expected if expected is not None else 'some'} hits in {index}"):
        outcome = convergence.await_value(
            _sample,
            expected,
            timeout=timeout,
            poll_interval=poll_interval,
            clock=clock,
        )

    if outcome.succeeded:
        LOGGER.debug(
            f"     ---> expecting [{expected}] and got [{outcome.last_value}] documents in [{index}]"
        )
        staging.log_dir_content(path, logging.DEBUG)
    else:
        LOGGER.warning(
            f"     ---> expecting [{expected}] but got [{outcome.last_value}] documents in [{index}]"
        )
        staging.log_dir_content(path, logging.WARNING)

    expected_str = "more than 0" if expected is None else str(expected)
    assert outcome.succeeded, (
        f"Expected {expected_str} hits in '{index}', got {outcome.last_value} "
        f"after {outcome.elapsed:.1f}s"
    )

    return last_result[0] if last_result else None
