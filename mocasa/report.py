from __future__ import annotations
import logging
import time
from typing import Callable

from mocasa.param_meta_stats import Summary
from mocasa.utils import format_duration

logger = logging.getLogger(__name__)

SECS_BETWEEN_OPTIONAL_REPORTS = 10.0


class Reporter:
    """Logs training progress: timings for the round and in total, plus the convergence table."""

    def __init__(self, clock: Callable[[], float] = time.monotonic,
                 secs_between_reports: float = SECS_BETWEEN_OPTIONAL_REPORTS) -> None:
        self.clock = clock
        self.secs_between_reports = secs_between_reports
        now = clock()
        self.start_time = now
        self.start_time_round = now
        self.time_last_report = now

    def reset_round_timer(self) -> None:
        self.start_time_round = self.clock()

    def maybe_report(self, summary: Summary, i_round: int, i_iteration: int, n_steps: int) -> bool:
        if self.clock() - self.time_last_report >= self.secs_between_reports:
            self.report(summary, i_round, i_iteration, n_steps)
            return True
        return False

    def report(self, summary: Summary, i_round: int, i_iteration: int, n_steps: int) -> None:
        now = self.clock()
        secs_round = now - self.start_time_round
        steps_per_sec = n_steps / secs_round if secs_round > 0 else float("inf")
        logger.info(
            "Round %d, iteration %d: %d steps in %s (%.1f steps per second and thread), total time %s",
            i_round, i_iteration, n_steps, format_duration(secs_round), steps_per_sec,
            format_duration(now - self.start_time),
        )
        logger.info("%s", summary)
        self.time_last_report = now
