"""Per-phase wall-clock timings for tree training."""

from __future__ import annotations

import logging
import time
from collections import defaultdict
from contextlib import contextmanager
from typing import Iterator

logger = logging.getLogger(__name__)


class Profiler:
    """Accumulate durations of named phases.

    A disabled profiler records nothing, so call sites may wrap phases
    unconditionally.

    Examples
    --------
    >>> profiler = Profiler(enabled=True)
    >>> with profiler.section("sampling"):
    ...     _ = sum(range(10))
    >>> "sampling" in profiler.timings
    True
    """

    def __init__(self, enabled: bool = False) -> None:
        self.enabled = enabled
        self._timings: defaultdict[str, float] = defaultdict(float)

    @contextmanager
    def section(self, name: str) -> Iterator[None]:
        if not self.enabled:
            yield
            return
        start = time.perf_counter()
        try:
            yield
        finally:
            self._timings[name] += time.perf_counter() - start

    @property
    def timings(self) -> dict[str, float]:
        return dict(self._timings)

    def log(self, label: str) -> None:
        if not self.enabled:
            return
        for name, seconds in sorted(self._timings.items()):
            logger.info("%s: %-20s %.3f s", label, name, seconds)


__all__ = ["Profiler"]
