"""Distributed row-partitioned solver (SPMD, collective communication)."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Optional

import numpy as np

from ..convergence import ConvergenceDetector
from ..datastructures import LocalPartitionResult
from ..errors import CommunicationError, ConfigurationError
from ..grid import GridState
from ..mpi.communicators import Communicator
from ..mpi.grid import DistributedGrid
from ..reporting import progress_line
from .base import BaseSolver

log = logging.getLogger(__name__)


class WorkerState(Enum):
    """Per-worker lifecycle within one distributed run."""

    BOOTSTRAPPED = "bootstrapped"
    EXCHANGING = "exchanging"
    COMPUTING = "computing"
    REDUCING = "reducing"
    TERMINATED = "terminated"


class DistributedSolver(BaseSolver):
    """Row-partitioned relaxation across cooperating workers.

    Every worker calls :meth:`run` with the same threshold and cap. Per
    iteration each worker exchanges halo rows with its neighbours, sweeps its
    own rows, then joins a logical-AND reduction of the local stability
    flags. No worker stops on its own flag alone.

    Parameters
    ----------
    comm : Communicator
        Collective communicator (simulated ranks or MPI).
    root : int
        Rank that owns the canonical grid (default: 0).
    **kwargs
        Forwarded to :class:`BaseSolver` (kernel, use_numba, config).
    """

    name = "distributed"

    def __init__(self, comm: Communicator, root: int = 0, **kwargs):
        super().__init__(**kwargs)
        self.comm = comm
        self.rank = comm.rank
        self.size = comm.size
        self.root = root

        self.state: Optional[WorkerState] = None
        self.grid: Optional[DistributedGrid] = None
        self.global_grid: Optional[GridState] = None

    def _is_root(self) -> bool:
        return self.rank == self.root

    def _get_time(self) -> float:
        return self.comm.get_time()

    def run(
        self,
        grid: Optional[GridState],
        threshold: float,
        max_iterations: int,
    ) -> Optional[LocalPartitionResult]:
        """Relax the distributed grid; collective over all workers.

        Parameters
        ----------
        grid : GridState or None
            Initial grid on the root; ignored (pass None) on other workers.
        threshold : float
            Per-cell stability threshold.
        max_iterations : int
            Unconditional stop after this many iterations.

        Returns
        -------
        LocalPartitionResult or None
            This worker's final partition. The root additionally sets
            :attr:`global_grid`. None on every worker if the root's grid is
            already being computed.
        """
        detector = ConvergenceDetector(threshold)
        if max_iterations is None or max_iterations < 1:
            raise ConfigurationError(f"max_iterations must be >= 1, got {max_iterations}")

        claimed = False
        if self._is_root():
            if grid is None:
                raise ConfigurationError("Root worker needs the initial grid")
            claimed = grid.try_claim()
            if not claimed:
                log.warning("Computation already running on this grid; ignoring request")

        try:
            return self._run(grid, claimed, detector, max_iterations)
        except CommunicationError as e:
            log.error(f"Rank {self.rank}: aborting distributed run: {e}")
            raise
        finally:
            if claimed:
                grid.release()

    def _run(self, grid, claimed, detector, max_iterations):
        self._reset()
        self.global_grid = None

        # Root broadcasts dimensions; None tells everyone to stand down
        dims = None
        if self._is_root() and claimed:
            dims = (grid.width, grid.height, grid.heat_points)
        dims = self.comm.bcast(dims, root=self.root)
        if dims is None:
            return None
        width, height, heat_points = dims

        self.grid = DistributedGrid(width, height, self.comm, root=self.root)
        u_old, fixed = self.grid.scatter(grid if self._is_root() else None)
        u_new = self.grid.allocate()
        counts = self.grid.counts
        n_rows = self.grid.partition.n_rows
        padded = np.zeros((n_rows + 2, width + 2), dtype=u_old.dtype)
        self.state = WorkerState.BOOTSTRAPPED

        if self._is_root():
            log.info(
                f"Distributed run: {width}x{height}, {heat_points} heat points, "
                f"{self.size} workers"
            )

        iteration, stable = 0, False
        t_start = self._get_time()
        while iteration < max_iterations:
            self.state = WorkerState.EXCHANGING
            t0 = self._get_time()
            self.grid.sync_halos(u_old)
            self.timeseries.halo_times.append(self._get_time() - t0)

            self.state = WorkerState.COMPUTING
            t0 = self._get_time()
            padded[:, 1:-1] = u_old
            old, new = u_old[1:-1], u_new[1:-1]
            self.kernel.step(padded, old, new, fixed, counts, (0, n_rows, 0, width))
            local_stable = detector.region_is_stable(new, old)
            self.timeseries.compute_times.append(self._get_time() - t0)
            self.timeseries.max_change_history.append(detector.max_change(new, old))
            self.timeseries.local_stable_history.append(local_stable)

            self.state = WorkerState.REDUCING
            stable = self.comm.allreduce_and(local_stable)

            u_old, u_new = u_new, u_old
            iteration += 1
            log.info(progress_line(self.rank, iteration))
            if stable:
                break

        self.state = WorkerState.TERMINATED
        wall_time = self._get_time() - t_start

        interior = u_old[1:-1].copy()
        full = self.grid.gather(interior)
        if self._is_root():
            self.global_grid = grid.evolve(full)

        self._finalize(wall_time, iteration, stable, n_rows * width)
        return LocalPartitionResult(
            partition=self.grid.partition,
            temperatures=interior,
            fixed=fixed,
            iterations=iteration,
            converged=stable,
        )
