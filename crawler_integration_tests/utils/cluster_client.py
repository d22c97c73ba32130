"""Minimal HTTP client for the search cluster."""

import dataclasses
import logging
import threading
import typing as tp

import requests

from crawler_integration_tests.cluster_management import endpoint as endpoint_mod

LOGGER = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10


@dataclasses.dataclass(frozen=True)
class ClusterInfo:
    version: str
    cluster_name: str
    raw: dict = dataclasses.field(repr=False)


@dataclasses.dataclass(frozen=True)
class SearchResult:
    total_hits: int
    raw: dict = dataclasses.field(repr=False)


def is_connection_refused(exc: BaseException) -> bool:
    """Check if the exception was caused by nothing listening on the remote port."""
    seen: set[int] = set()
    to_check: list[tp.Any] = [exc]

    while to_check:
        err = to_check.pop()
        if err is None or id(err) in seen:
            continue
        seen.add(id(err))

        if isinstance(err, ConnectionRefusedError):
            return True
        if isinstance(err, BaseException):
            if "Connection refused" in str(err):
                return True
            to_check.extend((err.__cause__, err.__context__, getattr(err, "reason", None)))
            to_check.extend(a for a in err.args if isinstance(a, BaseException))

    return False


def get_total_hits(response: dict) -> int:
    """Return number of hits from search response.

    The total is an integer in 6.x and an object like `{"value": 1, "relation": "eq"}` in 7+.
    """
    total = response["hits"]["total"]
    if isinstance(total, dict):
        return int(total["value"])
    return int(total)


class ClusterClient:
    """Client for the cluster REST API.

    Safe to share between threads: the underlying `requests.Session` keeps a pool of connections.
    """

    def __init__(
        self,
        endpoint: endpoint_mod.Endpoint,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        session: requests.Session | None = None,
    ) -> None:
        self.endpoint = endpoint
        self.timeout = timeout
        self.session = session or requests.Session()
        if endpoint.username is not None:
            self.session.auth = (endpoint.username, endpoint.password or "")
        self._close_lock = threading.Lock()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def _request(self, method: str, path: str, **kwargs: tp.Any) -> requests.Response:
        url = f"{self.endpoint.url}/{path.lstrip('/')}"
        response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        response.raise_for_status()
        return response

    def info(self) -> ClusterInfo:
        """Return basic info about the cluster. Serves as a liveness probe."""
        raw = self._request("GET", "/").json()
        return ClusterInfo(
            version=raw["version"]["number"], cluster_name=raw.get("cluster_name", ""), raw=raw
        )

    def search(
        self, index: str, query: dict | None = None, *, track_total_hits: bool = False
    ) -> SearchResult:
        params = {"track_total_hits": "true"} if track_total_hits else None
        raw = self._request(
            "POST", f"/{index}/_search", json=query or {"query": {"match_all": {}}}, params=params
        ).json()
        LOGGER.debug(f"Search response from '{index}': {raw}")
        return SearchResult(total_hits=get_total_hits(raw), raw=raw)

    def refresh(self, index: str | None = None) -> None:
        path = f"/{index}/_refresh" if index else "/_refresh"
        self._request("POST", path)

    def index_document(self, index: str, document: dict, doc_id: str | None = None) -> str:
        """Index a document and return its id."""
        if doc_id:
            raw = self._request("PUT", f"/{index}/_doc/{doc_id}", json=document).json()
        else:
            raw = self._request("POST", f"/{index}/_doc", json=document).json()
        return str(raw["_id"])

    def delete_index(self, index: str) -> None:
        try:
            self._request("DELETE", f"/{index}")
        except requests.HTTPError as exc:
            if exc.response is None or exc.response.status_code != 404:
                raise

    def close(self) -> None:
        """Close the client. Calling it repeatedly is a no-op."""
        with self._close_lock:
            if self._closed:
                return
            self._closed = True
        self.session.close()
