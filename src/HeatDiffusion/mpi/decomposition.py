"""Row-based domain decomposition."""

from __future__ import annotations

from typing import List

from ..datastructures import LocalPartition
from ..errors import ConfigurationError


class RowDecomposition:
    """Splits grid rows into contiguous blocks, one per worker.

    ``rows_per_worker = height // size``; the last worker absorbs the
    remainder so every row is owned exactly once.

    Parameters
    ----------
    height : int
        Global number of rows.
    width : int
        Global number of columns (every partition spans all of them).
    size : int
        Number of workers.
    """

    def __init__(self, height: int, width: int, size: int):
        if size < 1:
            raise ConfigurationError(f"Need at least one worker, got {size}")
        if size > height:
            raise ConfigurationError(
                f"Cannot split {height} rows across {size} workers"
            )
        self.height = height
        self.width = width
        self.size = size
        self.rows_per_worker = height // size

    def partition(self, rank: int) -> LocalPartition:
        """Row range and neighbours of ``rank``."""
        if not 0 <= rank < self.size:
            raise ValueError(f"Rank {rank} outside 0..{self.size - 1}")
        start = rank * self.rows_per_worker
        end = self.height if rank == self.size - 1 else start + self.rows_per_worker
        neighbors = {
            "y_lower": rank - 1 if rank > 0 else None,
            "y_upper": rank + 1 if rank < self.size - 1 else None,
        }
        return LocalPartition(
            rank=rank, start_row=start, end_row=end, width=self.width, neighbors=neighbors
        )

    def partitions(self) -> List[LocalPartition]:
        return [self.partition(r) for r in range(self.size)]

    def row_counts(self) -> List[int]:
        return [p.n_rows for p in self.partitions()]
