"""Instanced marker transforms.

Keeps a preallocated stack of 4x4 instance matrices plus an active count, the
same shape a GPU instanced mesh consumes. Only the first `count` instances are
live; stale matrices past `count` are masked, never cleared.
"""

from __future__ import annotations

import numpy as np


class MarkerBuffer:
    """Fixed-capacity buffer of per-instance transforms."""

    def __init__(self, capacity: int) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be > 0")
        self.capacity = int(capacity)
        self.matrices = np.tile(np.eye(4, dtype=np.float64), (self.capacity, 1, 1))
        self.count = 0
        self.version = 0

    def write(self, positions: np.ndarray, scale: float) -> None:
        """Compose translation + uniform scale (identity rotation) for the first N
        slots from (N, 3) positions and set `count = N`."""

        positions = np.asarray(positions, dtype=np.float64).reshape(-1, 3)
        n = positions.shape[0]
        if n > self.capacity:
            raise ValueError(f"{n} markers exceed buffer capacity {self.capacity}")
        block = self.matrices[:n]
        block[:, :3, :3] = np.eye(3) * scale
        block[:, :3, 3] = positions
        block[:, 3, :] = (0.0, 0.0, 0.0, 1.0)
        self.set_count(n)

    def set_count(self, count: int) -> None:
        self.count = max(0, min(int(count), self.capacity))
        self.version += 1

    def positions(self) -> np.ndarray:
        """Return a copy of the active translations, shape (count, 3)."""

        return self.matrices[: self.count, :3, 3].copy()

    def scale_at(self, index: int) -> float:
        return float(self.matrices[index, 0, 0])
