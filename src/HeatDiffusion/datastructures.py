"""Data structures for solver configuration and results.

Architecture: 2x2 matrix of Params vs Metrics × Global vs Local

                 Params (input/config)         Metrics (output/results)
                 ─────────────────────         ────────────────────────
Global           GlobalParams                  GlobalMetrics
(same across     width, height, threshold,     wall_time, converged,
ranks / agg)     heat_points, n_ranks...       iterations...

Local            LocalPartition                LocalMetrics
(per-rank)       rank, start_row, end_row,     compute_times[],
                 neighbors...                  halo_times[]...
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from typing import Dict, List, Optional

import numpy as np

from .errors import ConfigurationError

SOLVERS = ("sequential", "parallel", "distributed")


# ============================================================================
# Global (identical across ranks, or aggregated on rank 0)
# ============================================================================


@dataclass
class GlobalParams:
    """Run configuration - validated on creation, logged to MLflow as params.

    Immutable configuration set before the run. Identical across all ranks.
    """

    # Required
    width: int
    height: int

    # Heat sources
    heat_points: int = 10
    seed: int = 89211208
    source_temperature: float = 100.0

    # Solver
    solver: str = "sequential"  # "sequential" | "parallel" | "distributed"
    threshold: float = 0.25
    max_iter: Optional[int] = 100000
    leaf_size: int = 20
    parallel: bool = False

    # Parallelization
    n_ranks: int = 1
    max_workers: Optional[int] = None

    # Numba
    use_numba: bool = False

    # Experiment tracking
    experiment_name: str = "default"

    # Auto-detected at runtime (not from config)
    environment: str = field(init=False)

    def __post_init__(self):
        """Validate and compute derived values after initialization."""
        if self.width < 2 or self.height < 2:
            raise ConfigurationError(
                f"Grid must be at least 2x2, got {self.width}x{self.height}"
            )
        if self.heat_points < 0:
            raise ConfigurationError(
                f"heat_points must be >= 0, got {self.heat_points}"
            )
        if not self.threshold > 0:
            raise ConfigurationError(f"threshold must be > 0, got {self.threshold}")
        if self.leaf_size < 1:
            raise ConfigurationError(f"leaf_size must be >= 1, got {self.leaf_size}")
        if self.n_ranks < 1:
            raise ConfigurationError(f"n_ranks must be >= 1, got {self.n_ranks}")
        if self.max_iter is not None and self.max_iter < 1:
            raise ConfigurationError(f"max_iter must be >= 1, got {self.max_iter}")
        if self.solver not in SOLVERS:
            raise ConfigurationError(
                f"Unknown solver: {self.solver}. Use one of {', '.join(SOLVERS)}."
            )
        if self.solver == "distributed" and self.max_iter is None:
            raise ConfigurationError("max_iter is required for the distributed solver")
        # The legacy 'parallel' toggle selects the fork/join solver
        if self.parallel and self.solver == "sequential":
            self.solver = "parallel"
        self.parallel = self.solver == "parallel"
        self.environment = (
            "hpc"
            if os.environ.get("LSB_JOBID") or os.environ.get("SLURM_JOB_ID")
            else "local"
        )

    def to_mlflow(self) -> dict:
        """Convert to MLflow-compatible params dict (bools as int, no None)."""
        return {
            k: (int(v) if isinstance(v, bool) else v)
            for k, v in self.__dict__.items()
            if v is not None
        }


@dataclass
class GlobalMetrics:
    """Aggregated results - logged to MLflow as metrics.

    Final results computed/aggregated on rank 0.
    """

    converged: bool = False
    iterations: int = 0
    final_max_change: Optional[float] = None
    wall_time: Optional[float] = None

    # Timing breakdown (sum across all iterations)
    total_compute_time: Optional[float] = None
    total_halo_time: Optional[float] = None

    # Performance
    cell_updates_per_s: Optional[float] = None

    def to_mlflow(self) -> dict:
        """Convert to MLflow-compatible dict (no None, bools as int)."""
        return {
            k: (int(v) if isinstance(v, bool) else v)
            for k, v in self.__dict__.items()
            if v is not None
        }


# ============================================================================
# Local (per-rank)
# ============================================================================


@dataclass
class LocalPartition:
    """Contiguous row range ``[start_row, end_row)`` owned by one worker."""

    rank: int
    start_row: int
    end_row: int
    width: int
    neighbors: Dict[str, Optional[int]] = field(default_factory=dict)

    @property
    def n_rows(self) -> int:
        return self.end_row - self.start_row

    @property
    def local_shape(self):
        return (self.n_rows, self.width)

    @property
    def halo_shape(self):
        """Owned rows plus one halo row above and below."""
        return (self.n_rows + 2, self.width)

    @property
    def n_neighbors(self) -> int:
        return sum(1 for n in self.neighbors.values() if n is not None)


@dataclass
class LocalMetrics:
    """Per-rank timeseries - accumulated during solve, logged post-solve."""

    compute_times: List[float] = field(default_factory=list)
    halo_times: List[float] = field(default_factory=list)

    # Convergence tracking
    max_change_history: List[float] = field(default_factory=list)
    local_stable_history: List[bool] = field(default_factory=list)

    def clear(self):
        """Clear all timeseries data."""
        self.compute_times.clear()
        self.halo_times.clear()
        self.max_change_history.clear()
        self.local_stable_history.clear()


@dataclass
class LocalPartitionResult:
    """What a distributed worker returns: its partition and final values."""

    partition: LocalPartition
    temperatures: np.ndarray
    fixed: np.ndarray
    iterations: int
    converged: bool
