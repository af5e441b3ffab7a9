"""Smoothed bar levels for the recording indicator."""

from __future__ import annotations

from typing import Optional

import numpy as np


class VisualizerFeed:
    def __init__(
        self,
        bars: int = 8,
        smoothing: float = 0.7,
        jitter: float = 10.0,
        rng: Optional[np.random.Generator] = None,
    ) -> None:
        self.bars = bars
        self.smoothing = smoothing
        self.jitter = jitter
        self._rng = rng or np.random.default_rng()
        self._levels = np.zeros(bars)

    @property
    def levels(self) -> list[float]:
        return [float(v) for v in self._levels]

    def update(self, level: float) -> list[float]:
        offsets = self._rng.uniform(-self.jitter, self.jitter, size=self.bars) if self.jitter else 0.0
        targets = np.minimum(100.0, level + offsets)
        blended = self._levels * self.smoothing + targets * (1.0 - self.smoothing)
        self._levels = np.clip(blended, 0.0, 100.0)
        return self.levels

    def reset(self) -> list[float]:
        self._levels = np.zeros(self.bars)
        return self.levels
