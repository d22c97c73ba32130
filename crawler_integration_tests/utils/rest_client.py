"""Client for the crawler REST service under test."""

import contextlib
import logging
import pathlib as pl
import threading
import typing as tp

import requests

LOGGER = logging.getLogger(__name__)

REST_PATH = "fscrawler"


def rest_url(port: int, host: str = "127.0.0.1") -> str:
    return f"http://{host}:{port}/{REST_PATH}"


class RestClient:
    """Path based GET and multipart POST calls to the REST service."""

    def __init__(self, base_url: str, *, timeout: float = 30) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = requests.Session()
        self._close_lock = threading.Lock()
        self._closed = False

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}" if path else self.base_url

    def get(self, path: str = "", params: dict | None = None) -> tp.Any:
        response = self.session.get(self._url(path), params=params, timeout=self.timeout)
        LOGGER.debug(f"Rest response: {response.text}")
        response.raise_for_status()
        return response.json()

    def upload(
        self, path: str, files: dict[str, pl.Path], params: dict | None = None
    ) -> tp.Any:
        """Upload files as `multipart/form-data`, return the JSON response."""
        with contextlib.ExitStack() as stack:
            opened = {
                name: (fpath.name, stack.enter_context(open(fpath, "rb")))
                for name, fpath in files.items()
            }
            response = self.session.post(
                self._url(path),
                files=opened,
                params=params,
                headers={"Accept": "application/json"},
                timeout=self.timeout,
            )
        LOGGER.debug(f"Rest response: {response.text}")
        response.raise_for_status()
        return response.json()

    def close(self) -> None:
        """Close the client. Calling it repeatedly is a no-op."""
        with self._close_lock:
            if self._closed:
                return
            self._closed = True
        self.session.close()
