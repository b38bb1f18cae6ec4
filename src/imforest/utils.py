"""General Utilities
====================

Small helpers shared across the training pipeline.

Contents
--------
Classes
^^^^^^^
* :class:`Timer` – Wall-clock stopwatch used to time the training pass.

Functions
^^^^^^^^^
* :func:`get_git_commit_hash` – Retrieve the current git commit hash if available.
* :func:`format_bytes_mb` – Render a byte count in mebibytes.
"""

from __future__ import annotations

import subprocess
import time
from pathlib import Path
from typing import Optional, Union

BYTES_PER_MB = 1024 * 1024


def format_bytes_mb(n_bytes: float) -> str:
    """Return ``n_bytes`` formatted as ``"<value> MB"`` with one decimal."""
    return f"{n_bytes / BYTES_PER_MB:.1f} MB"


class Timer:
    """Stopwatch started on construction.

    Examples
    --------
    >>> timer = Timer()
    >>> _ = sum(range(10))
    >>> timer.stop()
    >>> timer.seconds >= 0
    True
    """

    def __init__(self) -> None:
        self._start = time.perf_counter()
        self._stop: Optional[float] = None

    def stop(self) -> None:
        self._stop = time.perf_counter()

    @property
    def seconds(self) -> float:
        end = self._stop if self._stop is not None else time.perf_counter()
        return end - self._start

    def format(self, precision: int = 2) -> str:
        return f"{self.seconds:.{precision}f} s"


def get_git_commit_hash(repo_path: Union[str, Path, None] = None) -> Optional[str]:
    """Return the active git commit hash if the repository is available.

    Parameters
    ----------
    repo_path : str or pathlib.Path, optional
        Directory inside the git repository. Defaults to current working directory.

    Returns
    -------
    str or None
        The commit hash, or ``None`` when git is missing or the path is not
        within a repository.
    """
    try:
        completed = subprocess.run(
            ["git", "rev-parse", "HEAD"],
            cwd=str(repo_path) if repo_path is not None else None,
            check=True,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
        )
    except (OSError, subprocess.CalledProcessError):
        return None
    commit = completed.stdout.strip()
    return commit or None


__all__ = ["Timer", "format_bytes_mb", "get_git_commit_hash", "BYTES_PER_MB"]
