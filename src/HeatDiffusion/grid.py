"""Grid state: temperature matrix, fixed-cell mask and read-only snapshots.

Arrays are stored row-major with shape ``(height, width)`` and indexed
``[y, x]``. Public accessors take ``(x, y)``.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Optional

import numpy as np

from .datastructures import GlobalParams
from .errors import ConfigurationError, NeighborCountError


def neighbor_counts(height: int, width: int) -> np.ndarray:
    """Number of in-bounds 4-neighbours of every cell.

    2 at a corner, 3 on an edge, 4 in the interior.

    Raises
    ------
    NeighborCountError
        If any cell has no neighbours (only possible on a 1x1 grid).
    """
    counts = np.full((height, width), 4, dtype=np.float64)
    counts[0, :] -= 1
    counts[-1, :] -= 1
    counts[:, 0] -= 1
    counts[:, -1] -= 1
    if np.any(counts <= 0):
        raise NeighborCountError(
            f"Grid {width}x{height} has cells without neighbours"
        )
    return counts


def _check_bounds(x: int, y: int, width: int, height: int):
    if not (0 <= x < width and 0 <= y < height):
        raise IndexError(f"Cell ({x}, {y}) outside {width}x{height} grid")


@dataclass(frozen=True)
class GridSnapshot:
    """Immutable view of one iteration, read by rendering collaborators."""

    temperatures: np.ndarray
    fixed: np.ndarray
    iteration: int = 0

    @property
    def width(self) -> int:
        return self.temperatures.shape[1]

    @property
    def height(self) -> int:
        return self.temperatures.shape[0]

    def read(self, x: int, y: int) -> float:
        _check_bounds(x, y, self.width, self.height)
        return float(self.temperatures[y, x])

    def is_fixed(self, x: int, y: int) -> bool:
        _check_bounds(x, y, self.width, self.height)
        return bool(self.fixed[y, x])

    def clamped(self, palette_max: int) -> np.ndarray:
        """Temperatures clamped to ``[0, palette_max)`` as palette indices."""
        idx = np.floor(self.temperatures).astype(np.int64)
        return np.clip(idx, 0, palette_max - 1)


@dataclass
class GridState:
    """Temperature matrix and fixed-cell mask for one run.

    Created once per run. Solvers never edit it cell by cell; they return a
    new state via :meth:`evolve` after a full-buffer swap.
    """

    temperatures: np.ndarray
    fixed: np.ndarray
    heat_points: Optional[int] = None
    _run_lock: threading.Lock = field(
        default_factory=threading.Lock, init=False, repr=False, compare=False
    )

    def __post_init__(self):
        # Integer input would truncate every neighbour mean
        self.temperatures = np.asarray(self.temperatures, dtype=np.float64)
        self.fixed = np.asarray(self.fixed, dtype=bool)
        if self.temperatures.shape != self.fixed.shape:
            raise ConfigurationError(
                f"Shape mismatch: temperatures {self.temperatures.shape}, "
                f"fixed {self.fixed.shape}"
            )
        if self.temperatures.ndim != 2:
            raise ConfigurationError("Grid must be two-dimensional")
        height, width = self.temperatures.shape
        if width < 2 or height < 2:
            raise ConfigurationError(f"Grid must be at least 2x2, got {width}x{height}")

    @classmethod
    def initialize(
        cls,
        width: int,
        height: int,
        heat_points: int,
        seed: int,
        source_temperature: float = 100.0,
    ) -> "GridState":
        """Allocate a zero grid and pin ``heat_points`` random heat sources.

        Coordinates are drawn x first, then y, from a seeded generator.
        Duplicate coordinates are kept; setting a source twice is a no-op.
        """
        if width < 2 or height < 2:
            raise ConfigurationError(f"Grid must be at least 2x2, got {width}x{height}")
        if heat_points < 0:
            raise ConfigurationError(f"heat_points must be >= 0, got {heat_points}")

        temperatures = np.zeros((height, width), dtype=np.float64)
        fixed = np.zeros((height, width), dtype=bool)

        rng = np.random.default_rng(seed)
        for _ in range(heat_points):
            x = int(rng.integers(width))
            y = int(rng.integers(height))
            temperatures[y, x] = source_temperature
            fixed[y, x] = True

        return cls(temperatures, fixed, heat_points)

    @classmethod
    def from_params(cls, params: GlobalParams) -> "GridState":
        return cls.initialize(
            params.width,
            params.height,
            params.heat_points,
            params.seed,
            params.source_temperature,
        )

    @property
    def width(self) -> int:
        return self.temperatures.shape[1]

    @property
    def height(self) -> int:
        return self.temperatures.shape[0]

    @property
    def source_count(self) -> int:
        """Distinct fixed cells (may be below the configured heat_points)."""
        return int(np.count_nonzero(self.fixed))

    def read(self, x: int, y: int) -> float:
        _check_bounds(x, y, self.width, self.height)
        return float(self.temperatures[y, x])

    def is_fixed(self, x: int, y: int) -> bool:
        _check_bounds(x, y, self.width, self.height)
        return bool(self.fixed[y, x])

    def snapshot(self, iteration: int = 0) -> GridSnapshot:
        temps = self.temperatures.copy()
        fixed = self.fixed.copy()
        temps.flags.writeable = False
        fixed.flags.writeable = False
        return GridSnapshot(temps, fixed, iteration)

    def evolve(self, temperatures: np.ndarray) -> "GridState":
        """New state with updated temperatures and the same fixed mask."""
        return GridState(temperatures, self.fixed, self.heat_points)

    # Run guard: only one solver may work on a state at a time
    def try_claim(self) -> bool:
        return self._run_lock.acquire(blocking=False)

    def release(self):
        self._run_lock.release()

    @property
    def computation_running(self) -> bool:
        return self._run_lock.locked()
