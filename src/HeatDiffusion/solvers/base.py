"""Base classes for solvers."""

import logging
import time
import warnings
from abc import ABC, abstractmethod
from dataclasses import asdict
from typing import Iterator, Optional, Tuple

import numpy as np
import pandas as pd

from ..convergence import ConvergenceDetector
from ..datastructures import GlobalMetrics, GlobalParams, LocalMetrics
from ..grid import GridSnapshot, GridState, neighbor_counts
from ..kernels import make_kernel, pad
from ..reporting import progress_line

log = logging.getLogger(__name__)


class BaseSolver(ABC):
    """Abstract base for all heat diffusion solvers.

    Provides common infrastructure for kernel selection, results tracking,
    timing and I/O.
    """

    name = "base"

    def __init__(
        self,
        kernel=None,
        use_numba: bool = False,
        max_iter: Optional[int] = None,
        config: Optional[GlobalParams] = None,
    ):
        self.kernel = kernel if kernel is not None else make_kernel(use_numba)
        self.max_iter = max_iter
        self.config = config

        # Metrics containers (match datastructures.py naming)
        self.metrics = GlobalMetrics()
        self.timeseries = LocalMetrics()

    @abstractmethod
    def run(self, *args, **kwargs):
        """Execute the solver."""

    def warmup(self, warmup_size: int = 10):
        """Warmup kernel (trigger Numba JIT if used)."""
        self.kernel.warmup(warmup_size=warmup_size)

    def _get_time(self) -> float:
        """Get current time. Override for MPI timing."""
        return time.perf_counter()

    def _is_root(self) -> bool:
        """True if this rank should report metrics. Override for MPI."""
        return True

    def _reset(self):
        """Reset metrics and timeseries."""
        self.metrics = GlobalMetrics()
        self.timeseries.clear()

    def _finalize(self, wall_time: float, iterations: int, converged: bool, n_cells: int):
        """Finalize metrics after solve."""
        self.metrics.iterations = iterations
        self.metrics.converged = converged
        self.metrics.wall_time = wall_time
        self.metrics.total_compute_time = sum(self.timeseries.compute_times)
        if self.timeseries.halo_times:
            self.metrics.total_halo_time = sum(self.timeseries.halo_times)
        if self.timeseries.max_change_history:
            self.metrics.final_max_change = self.timeseries.max_change_history[-1]
        if iterations > 0 and wall_time > 0:
            self.metrics.cell_updates_per_s = n_cells * iterations / wall_time

    def save_hdf5(self, path: str) -> None:
        """Save config, results, and timeseries to HDF5 (root only)."""
        if not self._is_root():
            return

        row = {**(self.config.to_mlflow() if self.config else {}), **asdict(self.metrics)}
        row["solver_class"] = self.name
        df_results = pd.DataFrame([row])

        # Convert string columns to avoid PyTables pickle warning
        for col in df_results.select_dtypes(include=["object"]).columns:
            df_results[col] = df_results[col].astype(str)

        with warnings.catch_warnings():
            warnings.simplefilter("ignore", pd.errors.PerformanceWarning)
            df_results.to_hdf(path, key="results", mode="w", format="table")

            ts_data = {k: v for k, v in asdict(self.timeseries).items() if v}
            if ts_data:
                max_len = max(len(v) for v in ts_data.values())
                # Pad shorter lists with NaN
                for k, v in ts_data.items():
                    ts_data[k] = [float(x) for x in v] + [float("nan")] * (max_len - len(v))
                pd.DataFrame(ts_data).to_hdf(path, key="timeseries", mode="a", format="table")


class RelaxationSolver(BaseSolver):
    """Shared-memory relaxation loop with double buffering.

    Subclasses implement :meth:`_sweep`, which fills ``new`` from the
    read-only previous buffer and returns the iteration's stability flag.
    """

    @abstractmethod
    def _sweep(self, padded, old, new, fixed, counts, detector) -> bool:
        """Compute one iteration into ``new``; return True if stable."""

    def _setup(self, grid: GridState):
        """Hook run once before the first sweep."""

    def _teardown(self):
        """Hook run once after the last sweep."""

    def _sweeps(self, grid: GridState, detector: ConvergenceDetector):
        """Yield ``(buffer, iteration, stable)`` after every swap."""
        counts = neighbor_counts(grid.height, grid.width)
        fixed = grid.fixed
        old = grid.temperatures.copy()
        new = np.empty_like(old)
        padded = np.zeros((grid.height + 2, grid.width + 2), dtype=old.dtype)

        self._setup(grid)
        try:
            iteration = 0
            while self.max_iter is None or iteration < self.max_iter:
                t0 = self._get_time()
                pad(old, padded)
                stable = self._sweep(padded, old, new, fixed, counts, detector)
                self.timeseries.compute_times.append(self._get_time() - t0)
                self.timeseries.max_change_history.append(detector.max_change(new, old))

                iteration += 1
                old, new = new, old
                log.info(progress_line(0, iteration))
                yield old, iteration, stable
                if stable:
                    break
        finally:
            self._teardown()

    def iterate(self, grid: GridState, threshold: float) -> Iterator[GridSnapshot]:
        """Yield a read-only snapshot after every iteration.

        Yields nothing if another run already holds ``grid``.
        """
        detector = ConvergenceDetector(threshold)
        if not grid.try_claim():
            log.warning("Computation already running on this grid; ignoring request")
            return
        try:
            self._reset()
            for buffer, iteration, _ in self._sweeps(grid, detector):
                yield grid.evolve(buffer).snapshot(iteration)
        finally:
            grid.release()

    def run(self, grid: GridState, threshold: float) -> Optional[Tuple[GridState, int]]:
        """Relax ``grid`` until stable (or ``max_iter``).

        Returns
        -------
        tuple or None
            ``(final_grid, iterations)``, or None if a run is already in
            progress on ``grid``.
        """
        detector = ConvergenceDetector(threshold)
        if not grid.try_claim():
            log.warning("Computation already running on this grid; ignoring request")
            return None

        try:
            self._reset()
            buffer, iterations, stable = grid.temperatures, 0, False
            t_start = self._get_time()
            for buffer, iterations, stable in self._sweeps(grid, detector):
                pass
            wall_time = self._get_time() - t_start
        finally:
            grid.release()

        self._finalize(wall_time, iterations, stable, grid.width * grid.height)
        log.info(
            f"{self.name}: {iterations} iterations, converged={stable}, "
            f"time={wall_time:.3f}s"
        )
        return grid.evolve(buffer.copy()), iterations
