"""Domain decomposition and communication.

This package provides:
- DistributedGrid: Unified interface for a row-partitioned grid
- RowDecomposition: Row splitting across workers
- RowHaloExchanger: Boundary row exchange between neighbours
- Communicator / SimulatedWorld: Collective operations (in-process ranks)

The mpi4py backend lives in ``HeatDiffusion.mpi.mpi_backend`` and is
imported explicitly where MPI is available.
"""

from .communicators import Communicator, SimulatedCommunicator, SimulatedWorld
from .decomposition import RowDecomposition
from .grid import DistributedGrid
from .halo import RowHaloExchanger
from ..datastructures import LocalPartition

__all__ = [
    "Communicator",
    "SimulatedCommunicator",
    "SimulatedWorld",
    "RowDecomposition",
    "DistributedGrid",
    "RowHaloExchanger",
    "LocalPartition",
]
