from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, List, Optional

from pipefetch.providers.gitlab_api import ApiError, GitLabClient, quote_segment
from pipefetch.utils.filesystem import artifact_filename, ensure_dir

logger = logging.getLogger(__name__)

DEFAULT_MAX_PAGES = 1000
CHUNK_SIZE = 128 * 1024


class ProjectNotFoundError(LookupError):
    """Raised when no project with the requested namespaced path exists."""


@dataclass(frozen=True)
class Job:
    id: int
    stage: str
    artifacts: List[Any] = field(default_factory=list)
    name: Optional[str] = None

    @property
    def has_artifacts(self) -> bool:
        return len(self.artifacts) > 0

    @classmethod
    def from_api(cls, data: dict) -> "Job":
        try:
            return cls(
                id=int(data["id"]),
                stage=data["stage"],
                artifacts=list(data.get("artifacts") or []),
                name=data.get("name"),
            )
        except (AttributeError, KeyError, TypeError, ValueError) as e:
            raise ApiError(f"Unexpected job payload: {data!r}") from e


def select_jobs(jobs: Iterable[Job], stage: str) -> List[Job]:
    """Jobs of `stage` that produced artifacts, in API order."""
    return [job for job in jobs if job.stage == stage and job.has_artifacts]


class PipelineArtifactsFetcher:
    """
    Download the artifacts of a pipeline stage for the tip of one or more branches.

    Resolution per branch (GitLab v4 API, relative to the client's API root):
        projects/<id>/repository/branches/<branch>   -> commit.id
        projects/<id>/repository/commits/<sha>       -> last_pipeline.id
        projects/<id>/pipelines/<pipeline>/jobs      -> [{id, stage, artifacts}]
        projects/<id>/jobs/<job>/artifacts           -> zip archive

    The project id itself is found by paging through `projects?page=<n>` until
    `path_with_namespace` matches.

    Every failure propagates to the caller; nothing is retried or skipped.
    """

    def __init__(self, client: GitLabClient, max_pages: int = DEFAULT_MAX_PAGES) -> None:
        if max_pages < 1:
            raise ValueError("max_pages must be at least 1")
        self.client = client
        self.max_pages = max_pages

    # ---- Project Locator ------------------------------------------------
    def locate_project(self, project_path: str) -> int:
        previous_ids: Optional[List[Any]] = None
        for page in range(1, self.max_pages + 1):
            projects = self.client.get_json("projects", {"page": page})
            if not isinstance(projects, list):
                raise ApiError(f"Expected a list of projects on page {page}, got {type(projects).__name__}")
            logger.debug("Projects page %d: %d entries", page, len(projects))
            if not projects:
                break

            for project in projects:
                if not isinstance(project, dict):
                    raise ApiError(f"Unexpected project entry on page {page}: {project!r}")
                if project.get("path_with_namespace") == project_path:
                    project_id = _project_id(project)
                    logger.info(f"Found project '{project_path}' (id {project_id}) on page {page}")
                    return project_id

            # A server that keeps echoing the last page would never return an empty one
            ids = [p.get("id") for p in projects]
            if ids == previous_ids:
                logger.warning(f"Projects page {page} repeats page {page - 1}; stopping pagination")
                break
            previous_ids = ids
        else:
            logger.warning(f"Stopped searching for '{project_path}' after {self.max_pages} pages")

        raise ProjectNotFoundError(f"no such project: {project_path}")

    # ---- Branch-to-Jobs Resolver ---------------------------------------
    def resolve_jobs(self, project_id: int, branch: str) -> List[Job]:
        project = f"projects/{project_id}"

        branch_data = self.client.get_json(f"{project}/repository/branches/{quote_segment(branch)}")
        sha = _lookup(branch_data, "commit", "id")
        logger.debug(f"Branch '{branch}' is at commit {sha}")

        commit_data = self.client.get_json(f"{project}/repository/commits/{quote_segment(sha)}")
        if isinstance(commit_data, dict) and commit_data.get("last_pipeline") is None:
            logger.warning(f"Commit {sha} on branch '{branch}' has no pipeline")
            return []
        pipeline_id = _lookup(commit_data, "last_pipeline", "id")
        logger.info(f"Branch '{branch}': commit {sha}, pipeline {pipeline_id}")

        jobs = self.client.get_json(f"{project}/pipelines/{quote_segment(pipeline_id)}/jobs")
        if not isinstance(jobs, list):
            raise ApiError(f"Expected a list of jobs for pipeline {pipeline_id}")
        return [Job.from_api(j) for j in jobs]

    # ---- Job Selector & Downloader -------------------------------------
    def download_job(self, project_id: int, branch: str, job: Job, dest: Path) -> Path:
        target = Path(dest) / artifact_filename(branch, job.id)
        with self.client.stream(f"projects/{project_id}/jobs/{job.id}/artifacts") as r:
            with open(target, "wb") as f:
                for chunk in r.iter_content(chunk_size=CHUNK_SIZE):
                    if chunk:
                        f.write(chunk)
        logger.info(f"Saved artifacts of job {job.id} ({job.stage}) to {target}")
        return target

    def select_and_download(
        self,
        project_id: int,
        branch: str,
        jobs: Iterable[Job],
        stage: str,
        dest: Path,
    ) -> List[Path]:
        selected = select_jobs(jobs, stage)
        if not selected:
            logger.info(f"Branch '{branch}': no jobs with artifacts in stage '{stage}'")
            return []
        ensure_dir(dest)
        return [self.download_job(project_id, branch, job, dest) for job in selected]

    def fetch_branch(self, project_id: int, branch: str, stage: str, dest: Path) -> List[Path]:
        jobs = self.resolve_jobs(project_id, branch)
        return self.select_and_download(project_id, branch, jobs, stage, dest)


def _lookup(data: Any, outer: str, inner: str) -> Any:
    """data[outer][inner], raising ApiError on a malformed payload."""
    try:
        value = data[outer][inner]
    except (KeyError, TypeError) as e:
        raise ApiError(f"Response is missing '{outer}.{inner}': {data!r}") from e
    if value is None:
        raise ApiError(f"Response has an empty '{outer}.{inner}'")
    return value


def _project_id(project: dict) -> int:
    try:
        return int(project["id"])
    except (KeyError, TypeError, ValueError) as e:
        raise ApiError(f"Project entry has no usable id: {project!r}") from e
