from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional
import logging

from pipefetch.fetchers.pipeline_artifacts import DEFAULT_MAX_PAGES, PipelineArtifactsFetcher
from pipefetch.providers.gitlab_api import GitLabClient, api_root, normalize_base_url

logger = logging.getLogger(__name__)


class FetchError(Exception):
    """Raised when resolving or downloading artifacts fails."""


class UsageError(ValueError):
    """Raised when required input is missing or malformed."""


@dataclass
class RunConfig:
    base_url: str
    project: str
    stage: str
    branches: List[str] = field(default_factory=list)
    token: Optional[str] = None
    dest: str = "."
    max_pages: int = DEFAULT_MAX_PAGES
    timeout: float = 60


def validate(config: RunConfig) -> None:
    """Check every required input; nothing here touches the network."""
    if not config.base_url:
        raise UsageError("base URL missing")
    try:
        normalize_base_url(config.base_url)
    except ValueError as e:
        raise UsageError(str(e)) from e
    if not config.project:
        raise UsageError("project missing")
    if not config.stage:
        raise UsageError("stage missing")
    if not config.branches:
        raise UsageError("branches missing")
    for branch in config.branches:
        if not branch:
            raise UsageError(f"bad branch: {branch!r}")
    if not config.token:
        raise UsageError("token missing")
    if config.max_pages < 1:
        raise UsageError("max pages must be at least 1")


def fetch(config: RunConfig) -> List[Path]:
    """
    Download the artifacts of `config.stage` for the latest pipeline of each branch.

    Branches are processed one at a time in the order given. The first failure
    aborts the whole run; later branches are never attempted.

    Returns:
        Paths of the written archives, in download order.
    """
    validate(config)

    client = GitLabClient(api_root(config.base_url), config.token, timeout=config.timeout)
    fetcher = PipelineArtifactsFetcher(client, max_pages=config.max_pages)
    dest_path = Path(config.dest or ".").resolve()
    logger.debug(f"API root: {client.root}")

    try:
        project_id = fetcher.locate_project(config.project)
        results: List[Path] = []
        for branch in config.branches:
            paths = fetcher.fetch_branch(project_id, branch, config.stage, dest_path)
            logger.info(f"Branch '{branch}': {len(paths)} archive(s) downloaded")
            results.extend(paths)
        return results
    except Exception as e:
        logger.error("Fetch failed: %s", e)
        raise FetchError(str(e)) from e
