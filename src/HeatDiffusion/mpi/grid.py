"""Distributed grid abstraction for the row-partitioned solver.

This module provides a DistributedGrid class that encapsulates:
- Row decomposition of the global grid across workers
- Scatter of the initial temperatures and fixed mask from the root
- Halo exchange of boundary rows before each sweep
- Gather of the final partitions back into the canonical grid

Solvers interact with this single interface rather than managing
communication details directly.
"""

from __future__ import annotations

from typing import Optional, Tuple

import numpy as np

from ..datastructures import LocalPartition
from ..grid import GridState, neighbor_counts
from .communicators import Communicator
from .decomposition import RowDecomposition
from .halo import RowHaloExchanger


class DistributedGrid:
    """One worker's view of a row-partitioned grid.

    Every worker builds this independently from the broadcast dimensions,
    so partitions and neighbour counts never need to be communicated.

    Parameters
    ----------
    width, height : int
        Global grid dimensions.
    comm : Communicator
        Collective communicator shared by all workers.
    root : int
        Rank owning the canonical full grid (default: 0).

    Example
    -------
    >>> grid = DistributedGrid(width=80, height=60, comm=comm)
    >>> u, fixed = grid.scatter(state if comm.rank == 0 else None)
    >>> grid.sync_halos(u)
    >>> full = grid.gather(u[1:-1])  # ndarray on root, None elsewhere
    """

    def __init__(self, width: int, height: int, comm: Communicator, root: int = 0):
        self.width = width
        self.height = height
        self.comm = comm
        self.rank = comm.rank
        self.size = comm.size
        self.root = root

        self.decomposition = RowDecomposition(height, width, self.size)
        self.partition: LocalPartition = self.decomposition.partition(self.rank)
        self.neighbors = self.partition.neighbors
        self.local_shape = self.partition.local_shape
        self.halo_shape = self.partition.halo_shape

        start, end = self.partition.start_row, self.partition.end_row
        self.counts = neighbor_counts(height, width)[start:end].copy()

        self._halo_exchanger = RowHaloExchanger()

    def allocate(self, dtype=np.float64) -> np.ndarray:
        """Allocate a local array with one halo row above and below."""
        return np.zeros(self.halo_shape, dtype=dtype)

    def scatter(self, grid: Optional[GridState]) -> Tuple[np.ndarray, np.ndarray]:
        """Distribute temperature and fixed-mask slices from the root.

        Returns the local halo array (owned rows filled) and the local fixed
        mask.
        """
        chunks = None
        if self.rank == self.root:
            chunks = [
                (
                    grid.temperatures[p.start_row : p.end_row],
                    grid.fixed[p.start_row : p.end_row],
                )
                for p in self.decomposition.partitions()
            ]
        temperatures, fixed = self.comm.scatter(chunks, root=self.root)

        u = self.allocate()
        u[1:-1] = temperatures
        return u, np.asarray(fixed, dtype=bool)

    def sync_halos(self, arr: np.ndarray):
        """Exchange boundary rows with both neighbours."""
        self._halo_exchanger.exchange(arr, self.comm, self.neighbors)

    def gather(self, interior: np.ndarray) -> Optional[np.ndarray]:
        """Assemble owned rows of every worker on the root."""
        parts = self.comm.gather(interior, root=self.root)
        if parts is None:
            return None
        return np.vstack(parts)
