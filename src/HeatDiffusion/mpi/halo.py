"""Halo exchange of boundary rows between adjacent partitions."""

from __future__ import annotations

import numpy as np

from ..errors import CommunicationError
from .communicators import Communicator


class RowHaloExchanger:
    """Exchange the first/last owned rows with the neighbouring workers.

    The local array has shape ``(n_rows + 2, width)``: row 0 and row -1 are
    halo rows, rows ``1..n_rows`` are owned. Halo rows facing the global
    boundary are zeroed (those neighbours are excluded from the average).
    """

    def exchange(self, arr: np.ndarray, comm: Communicator, neighbors: dict):
        lo = neighbors.get("y_lower")
        hi = neighbors.get("y_upper")

        try:
            # Send to upper, receive from lower
            recv = comm.sendrecv(arr[-2], hi, lo, tag=0)
            arr[0] = recv if lo is not None else 0.0

            # Send to lower, receive from upper
            recv = comm.sendrecv(arr[1], lo, hi, tag=1)
            arr[-1] = recv if hi is not None else 0.0
        except CommunicationError as e:
            raise CommunicationError("halo_exchange", str(e), rank=comm.rank) from e

    @staticmethod
    def halo_size_bytes(width: int, neighbors: dict, itemsize: int = 8) -> int:
        """Bytes sent plus received per exchange."""
        n = sum(1 for v in neighbors.values() if v is not None)
        return n * width * itemsize * 2
