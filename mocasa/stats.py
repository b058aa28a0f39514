from __future__ import annotations
import math
from typing import List, Optional

N_PER_SNAPSHOT_INITIAL = 10
MAX_SNAPSHOTS_DEFAULT = 16


class Tally:
    """Welford accumulator for count, mean and sum of squared deviations."""

    __slots__ = ("n", "mean_", "m2")

    def __init__(self, n: int = 0, mean: float = 0.0, m2: float = 0.0) -> None:
        self.n = n
        self.mean_ = mean
        self.m2 = m2

    def add(self, x: float) -> None:
        self.n += 1
        delta = x - self.mean_
        self.mean_ += delta / self.n
        self.m2 += delta * (x - self.mean_)

    def mean(self) -> float:
        return self.mean_ if self.n > 0 else math.nan

    def variance(self) -> float:
        # Population variance.
        return self.m2 / self.n if self.n > 0 else math.nan

    def std_dev(self) -> float:
        return math.sqrt(self.variance())

    def minus(self, prefix: "Tally") -> "Tally":
        """Tally of the values seen after `prefix`, given that `self` covers both."""
        n_rest = self.n - prefix.n
        if n_rest < 0:
            raise ValueError(f"Cannot remove {prefix.n} values from a tally of {self.n}.")
        if n_rest == 0:
            return Tally()
        mean_rest = (self.n * self.mean_ - prefix.n * prefix.mean_) / n_rest
        delta = mean_rest - prefix.mean_
        m2_rest = self.m2 - prefix.m2 - delta * delta * prefix.n * n_rest / self.n
        return Tally(n_rest, mean_rest, max(m2_rest, 0.0))

    def copy(self) -> "Tally":
        return Tally(self.n, self.mean_, self.m2)

    def __repr__(self) -> str:
        return f"Tally(n={self.n}, mean={self.mean_}, m2={self.m2})"


class WootzStats:
    """Mean and variance of a stream whose early values may be unrepresentative.

    Keeps periodic snapshots of the running tally. Once there are more than
    `max_snapshots`, either the oldest window is dropped (when it looks like
    burn-in: every later window sits closer to the overall mean than it does)
    or adjacent windows are merged by discarding every other snapshot and
    doubling the snapshot period. The retained windows drive `autocity()`,
    a batch-means estimate of how strongly the stream is autocorrelated.
    """

    def __init__(self, x0: float, x1: float, max_snapshots: int = MAX_SNAPSHOTS_DEFAULT) -> None:
        if max_snapshots < 3:
            raise ValueError("max_snapshots must be at least 3")
        self.tally = Tally()
        self.tally.add(x0)
        self.tally.add(x1)
        self.snapshots: List[Tally] = []
        self.n_per_snapshot = N_PER_SNAPSHOT_INITIAL
        self.max_snapshots = max_snapshots
        self.burnedness = 0
        self.n_dropped = 0

    def n(self) -> int:
        return self.tally.n

    def mean(self) -> float:
        return self.tally.mean()

    def variance(self) -> float:
        return self.tally.variance()

    def std_dev(self) -> float:
        return self.tally.std_dev()

    def add(self, x: float) -> None:
        self.tally.add(x)
        n_last = self.snapshots[-1].n if self.snapshots else 0
        if self.tally.n - n_last >= self.n_per_snapshot:
            self.snapshots.append(self.tally.copy())
            if len(self.snapshots) > self.max_snapshots:
                if self.should_truncate():
                    self._truncate()
                else:
                    self._fold()

    def windows(self) -> List[Tally]:
        """Sub-tallies between consecutive snapshots, oldest first."""
        windows = []
        previous = None
        for snapshot in self.snapshots:
            windows.append(snapshot.copy() if previous is None else snapshot.minus(previous))
            previous = snapshot
        return windows

    def should_truncate(self) -> bool:
        windows = self.windows()
        if len(windows) < 2:
            return False
        mean = self.tally.mean()
        first_distance = abs(windows[0].mean() - mean)
        return all(abs(window.mean() - mean) < first_distance for window in windows[1:])

    def _truncate(self) -> None:
        first = self.snapshots.pop(0)
        self.tally = self.tally.minus(first)
        self.snapshots = [snapshot.minus(first) for snapshot in self.snapshots]
        self.burnedness += 1
        self.n_dropped += first.n

    def _fold(self) -> None:
        self.snapshots = self.snapshots[1::2]
        self.n_per_snapshot *= 2

    def autocity(self) -> Optional[float]:
        if len(self.snapshots) < 3:
            return None
        variance = self.tally.variance()
        mean = self.tally.mean()
        windows = self.windows()
        if variance <= 0.0:
            return 0.0
        total = 0.0
        for window in windows:
            dev = window.mean() - mean
            total += window.n * dev * dev / variance
        return total / len(windows)

    def __repr__(self) -> str:
        return (f"WootzStats(n={self.n()}, mean={self.mean()}, snapshots={len(self.snapshots)}, "
                f"n_per_snapshot={self.n_per_snapshot}, burnedness={self.burnedness})")
