import io
import json
from typing import Dict, List, Optional

import pytest
import requests

API = "https://gitlab.example.com/api/v4/"


class FakeResponse:
    """Just enough of requests.Response for the client: status, json, streaming, close."""

    def __init__(self, *, status_code=200, body=b"", json_data=None, fail_after: Optional[int] = None):
        if json_data is not None:
            body = json.dumps(json_data).encode("utf-8")
        self.status_code = status_code
        self.body = body
        self.fail_after = fail_after
        self.closed = False

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    def close(self):
        self.closed = True

    def raise_for_status(self):
        if not (200 <= self.status_code < 300):
            raise requests.HTTPError(f"{self.status_code} Client Error", response=self)

    def json(self):
        return json.loads(self.body.decode("utf-8"))

    def iter_content(self, chunk_size=8192):
        stream = io.BytesIO(self.body)
        sent = 0
        while True:
            if self.fail_after is not None and sent >= self.fail_after:
                raise requests.ConnectionError("connection reset mid-stream")
            chunk = stream.read(chunk_size)
            if not chunk:
                break
            sent += len(chunk)
            yield chunk


class RequestsRouter:
    """
    Replacement for requests.get keyed by the full URL (query string included).
    Unknown URLs answer 404; every call is recorded.
    """

    def __init__(self):
        self.routes: Dict[str, object] = {}
        self.calls: List[dict] = []
        self.responses: List[FakeResponse] = []

    def add(self, url: str, *, json_data=None, body=b"", status_code=200, fail_after=None):
        self.routes[url] = lambda: FakeResponse(
            status_code=status_code, body=body, json_data=json_data, fail_after=fail_after
        )

    def add_error(self, url: str, exc: Exception):
        def _raise():
            raise exc
        self.routes[url] = _raise

    @property
    def urls(self) -> List[str]:
        return [c["url"] for c in self.calls]

    def get(self, url, *, headers=None, params=None, stream=False, allow_redirects=True, timeout=None):
        self.calls.append({
            "url": url,
            "headers": dict(headers or {}),
            "stream": stream,
            "timeout": timeout,
        })
        factory = self.routes.get(url)
        resp = factory() if factory else FakeResponse(status_code=404, json_data={"message": "404 Not Found"})
        self.responses.append(resp)
        return resp

    def add_pipeline(self, *, project_id, branch_enc, sha, pipeline_id, jobs, artifacts=None):
        """Register branch -> commit -> pipeline jobs, plus artifact bodies keyed by job id."""
        base = f"{API}projects/{project_id}/"
        self.add(f"{base}repository/branches/{branch_enc}", json_data={"name": branch_enc, "commit": {"id": sha}})
        self.add(f"{base}repository/commits/{sha}", json_data={"id": sha, "last_pipeline": {"id": pipeline_id}})
        self.add(f"{base}pipelines/{pipeline_id}/jobs", json_data=jobs)
        for job_id, data in (artifacts or {}).items():
            self.add(f"{base}jobs/{job_id}/artifacts", body=data)

    def add_projects(self, pages):
        """pages: list of project lists for page 1..n; page n+1 answers []."""
        for i, projects in enumerate(pages, start=1):
            self.add(f"{API}projects?page={i}", json_data=projects)
        self.add(f"{API}projects?page={len(pages) + 1}", json_data=[])


@pytest.fixture()
def router(monkeypatch):
    r = RequestsRouter()
    monkeypatch.setattr(requests, "get", r.get)
    return r


@pytest.fixture()
def api():
    return API
