from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, Optional
from urllib.parse import quote as urlquote, urlencode, urljoin, urlparse

import requests

logger = logging.getLogger(__name__)

API_PATH = "api/v4/"


class ApiError(RuntimeError):
    """Raised when a GitLab API call fails or returns an unusable body."""


def normalize_base_url(base: str) -> str:
    """
    Validate `base` and make sure its path ends with '/'.

    Relative resolution drops the last path segment of a base without a
    trailing slash, so 'https://host/gitlab' must become 'https://host/gitlab/'.
    """
    base = (base or "").strip()
    if not base:
        raise ValueError("base URL missing")
    try:
        p = urlparse(base)
    except ValueError as e:
        raise ValueError(f"bad base URL: {base!r}: {e}") from e
    if p.scheme not in ("http", "https") or not p.netloc:
        raise ValueError(f"bad base URL: {base!r} (expected http(s)://host[/path])")
    path = p.path if p.path.endswith("/") else p.path + "/"
    return p._replace(path=path, params="", query="", fragment="").geturl()


def api_root(base: str) -> str:
    return urljoin(normalize_base_url(base), API_PATH)


def quote_segment(value: Any) -> str:
    """Percent-encode a single path segment, including any '/'."""
    return urlquote(str(value), safe="")


class GitLabClient:
    """
    Minimal read-only client for the GitLab v4 REST API.

    One instance holds the API root and the private token for a whole run;
    every request carries the same PRIVATE-TOKEN header.

    Paths are resolved relative to the API root, e.g.
        client.url("projects", {"page": 2})
          -> https://gitlab.example.com/api/v4/projects?page=2
    """

    def __init__(self, root: str, token: str, timeout: float = 60) -> None:
        if not root.endswith("/"):
            root += "/"
        self.root = root
        self._token = token
        self.timeout = timeout

    def headers(self) -> Dict[str, str]:
        return {"PRIVATE-TOKEN": self._token}

    def url(self, path: str, params: Optional[Dict[str, Any]] = None) -> str:
        url = urljoin(self.root, path)
        if params:
            url = f"{url}?{urlencode(params)}"
        return url

    def get_json(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        url = self.url(path, params)
        with self._get(url) as r:
            try:
                return r.json()
            except ValueError as e:
                raise ApiError(f"GET {url} returned invalid JSON: {e}") from e

    @contextmanager
    def stream(self, path: str) -> Iterator[requests.Response]:
        """Yield the live response for `path`; it is closed when the block exits."""
        url = self.url(path)
        with self._get(url, stream=True) as r:
            try:
                yield r
            except requests.RequestException as e:
                # raised while the caller reads the body, e.g. a reset connection
                raise ApiError(f"GET {url} failed: {e}") from e

    def _get(self, url: str, stream: bool = False) -> requests.Response:
        logger.debug("GET %s", url)
        try:
            r = requests.get(
                url,
                headers=self.headers(),
                stream=stream,
                allow_redirects=True,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise ApiError(f"GET {url} failed: {e}") from e
        try:
            r.raise_for_status()
        except requests.RequestException as e:
            r.close()
            raise ApiError(f"GET {url} failed: {e}") from e
        return r
