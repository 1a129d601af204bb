import logging
import sys
from pathlib import Path
from urllib.parse import quote as urlquote

# Sub-delimiters that may stay literal inside a path segment
FILENAME_SAFE = "$&+,:;=@"


def setup_logging(verbosity: int = 0):
    """Configure global logging on stderr: WARNING, INFO with -v, DEBUG with -vv."""
    if verbosity >= 2:
        level = logging.DEBUG
    elif verbosity == 1:
        level = logging.INFO
    else:
        level = logging.WARNING
    logging.basicConfig(
        level=level,
        stream=sys.stderr,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def ensure_dir(path: str):
    """Create directory if it doesn’t exist."""
    Path(path).mkdir(parents=True, exist_ok=True)


def artifact_filename(branch: str, job_id: int) -> str:
    """
    '<escaped branch>-<job id>.zip', unique per (branch, job).

    The branch is escaped as a path segment: '/', '?', '#', spaces and
    non-ASCII are percent-encoded, while '+', ':', '@', '=' and friends stay.
    """
    return f"{urlquote(branch, safe=FILENAME_SAFE)}-{job_id}.zip"
