"""Progress state with throttled rendering."""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Callable

    from assetsync.models.sync import ProgressUpdate

logger = logging.getLogger(__name__)


@dataclass
class ProgressState:
    current: int = 0
    total: int = 0
    name: str = ""
    step: str = ""
    type: str = "Asset"

    @property
    def percent(self) -> float:
        if not self.total:
            return 0.0
        return round(self.current / self.total * 100, 1)


def log_progress(state: ProgressState) -> None:
    """Default renderer: one INFO line per refresh."""
    logger.info(
        "%s: %d/%d %s(s) (%.1f%%) %s",
        state.step or "Progress",
        state.current,
        state.total,
        state.type.lower(),
        state.percent,
        state.name,
    )


class ThrottledProgress:
    """Progress sink that merges incremental updates and renders at most once per interval.

    Calls never block on rendering beyond the renderer itself; updates
    arriving between refreshes only update the held state.
    """

    def __init__(
        self,
        render: Callable[[ProgressState], None] = log_progress,
        *,
        interval: float = 1.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.state = ProgressState()
        self._render = render
        self._interval = interval
        self._clock = clock
        self._last_refresh: float | None = None

    def __call__(self, update: ProgressUpdate) -> None:
        if update.total is not None:
            self.state.total = update.total
        if update.name is not None:
            self.state.name = update.name
        if update.current is not None:
            self.state.current = update.current
        if update.step is not None:
            self.state.step = update.step
        if update.type is not None:
            self.state.type = update.type

        now = self._clock()
        if self._last_refresh is None or now - self._last_refresh >= self._interval:
            self._last_refresh = now
            try:
                self._render(self.state)
            except Exception:
                logger.exception("Progress renderer failed")
