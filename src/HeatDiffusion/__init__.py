"""Heat diffusion package.

Steady-state heat relaxation on a 2D grid: every non-fixed cell is replaced
by the mean of its in-bounds neighbours until the grid stabilises. Supports
a sequential baseline, a shared-memory fork/join solver, and a distributed
row-partitioned solver with halo exchange.

Solvers
-------
Shared memory:
- SequentialSolver: Single-threaded baseline
- SharedMemoryParallelSolver: Recursive quadrant decomposition on threads

Distributed:
- DistributedSolver: Row decomposition over a Communicator
  (SimulatedWorld in-process, or mpi_backend.MPICommunicator)
"""

from .errors import (
    HeatDiffusionError,
    ConfigurationError,
    NeighborCountError,
    CommunicationError,
)
from .datastructures import (
    GlobalParams,
    GlobalMetrics,
    LocalPartition,
    LocalMetrics,
    LocalPartitionResult,
)
from .grid import GridState, GridSnapshot, neighbor_counts
from .convergence import ConvergenceDetector, STABILITY_ATOL
from .kernels import NumPyKernel, NumbaKernel, make_kernel
from .solvers import (
    SequentialSolver,
    SharedMemoryParallelSolver,
    QuadrantTask,
    DistributedSolver,
    WorkerState,
)
from .mpi import (
    Communicator,
    SimulatedWorld,
    DistributedGrid,
    RowDecomposition,
    RowHaloExchanger,
)
from .reporting import format_grid, progress_line, report_final
from .runner import run_solver

__all__ = [
    # Errors
    "HeatDiffusionError",
    "ConfigurationError",
    "NeighborCountError",
    "CommunicationError",
    # Data structures
    "GlobalParams",
    "GlobalMetrics",
    "LocalPartition",
    "LocalMetrics",
    "LocalPartitionResult",
    # Grid
    "GridState",
    "GridSnapshot",
    "neighbor_counts",
    "ConvergenceDetector",
    "STABILITY_ATOL",
    # Kernels
    "NumPyKernel",
    "NumbaKernel",
    "make_kernel",
    # Solvers
    "SequentialSolver",
    "SharedMemoryParallelSolver",
    "QuadrantTask",
    "DistributedSolver",
    "WorkerState",
    # Distributed
    "Communicator",
    "SimulatedWorld",
    "DistributedGrid",
    "RowDecomposition",
    "RowHaloExchanger",
    # Reporting
    "format_grid",
    "progress_line",
    "report_final",
    "run_solver",
    "create_solver",
]


def create_solver(params: GlobalParams, comm: Communicator = None):
    """Build the solver selected by ``params.solver``."""
    common = {"use_numba": params.use_numba, "config": params}
    if params.solver == "distributed":
        if comm is None:
            raise ConfigurationError("Distributed solver needs a communicator")
        return DistributedSolver(comm, **common)
    common["max_iter"] = params.max_iter
    if params.solver == "parallel":
        return SharedMemoryParallelSolver(
            leaf_size=params.leaf_size, max_workers=params.max_workers, **common
        )
    return SequentialSolver(**common)
