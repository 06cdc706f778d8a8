"""Heat diffusion solvers.

Shared memory:
- SequentialSolver: single-threaded baseline
- SharedMemoryParallelSolver: recursive quadrant fork/join on a thread pool

Distributed:
- DistributedSolver: row decomposition with halo exchange and collectives
"""

from .base import BaseSolver, RelaxationSolver
from .sequential import SequentialSolver
from .forkjoin import QuadrantTask, SharedMemoryParallelSolver
from .distributed import DistributedSolver, WorkerState

__all__ = [
    "BaseSolver",
    "RelaxationSolver",
    "SequentialSolver",
    "QuadrantTask",
    "SharedMemoryParallelSolver",
    "DistributedSolver",
    "WorkerState",
]
