"""Shared-memory fork/join solver using recursive quadrant decomposition."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

from ..convergence import ConvergenceDetector
from ..errors import ConfigurationError
from .base import RelaxationSolver

Region = Tuple[int, int, int, int]


@dataclass
class QuadrantTask:
    """Node of the divide-and-conquer task tree over ``[y0, y1) x [x0, x1)``.

    Leaves own disjoint cell blocks whose union is the root region.
    """

    y0: int
    y1: int
    x0: int
    x1: int
    children: List["QuadrantTask"] = field(default_factory=list)

    @classmethod
    def build(cls, y0: int, y1: int, x0: int, x1: int, leaf_size: int = 20) -> "QuadrantTask":
        """Split into four quadrants while the area exceeds ``leaf_size``."""
        task = cls(y0, y1, x0, x1)
        if task.area > leaf_size:
            mid_x = (x0 + x1) // 2
            mid_y = (y0 + y1) // 2
            for qy0, qy1, qx0, qx1 in (
                (y0, mid_y, x0, mid_x),
                (y0, mid_y, mid_x, x1),
                (mid_y, y1, x0, mid_x),
                (mid_y, y1, mid_x, x1),
            ):
                if qy1 > qy0 and qx1 > qx0:
                    task.children.append(cls.build(qy0, qy1, qx0, qx1, leaf_size))
        return task

    @property
    def region(self) -> Region:
        return (self.y0, self.y1, self.x0, self.x1)

    @property
    def area(self) -> int:
        return (self.y1 - self.y0) * (self.x1 - self.x0)

    @property
    def is_leaf(self) -> bool:
        return not self.children

    def leaves(self) -> List["QuadrantTask"]:
        if self.is_leaf:
            return [self]
        return [leaf for child in self.children for leaf in child.leaves()]

    def merge(self, leaf_flags: Dict[Region, bool]) -> bool:
        """Combine leaf stability flags bottom-up with logical AND."""
        if self.is_leaf:
            return leaf_flags[self.region]
        return ConvergenceDetector.combine([child.merge(leaf_flags) for child in self.children])

    def run_recursive(self, compute: Callable[["QuadrantTask"], bool]) -> bool:
        """Single-threaded fork/join: compute every leaf, AND the results."""
        if self.is_leaf:
            return compute(self)
        # No short-circuit: every leaf must write its block
        return ConvergenceDetector.combine(
            [child.run_recursive(compute) for child in self.children]
        )


class SharedMemoryParallelSolver(RelaxationSolver):
    """Fork/join relaxation over a thread pool.

    Every iteration runs all leaf tasks against the same read-only previous
    buffer. Each leaf writes only its own block of the next buffer, so no
    locking is needed. All leaves join before the buffers are swapped.

    Parameters
    ----------
    leaf_size : int
        Regions with area at or below this are computed directly (default: 20).
    max_workers : int, optional
        Thread pool size. ``1`` runs the task tree as a plain recursive call.
    **kwargs
        Forwarded to :class:`RelaxationSolver` (kernel, use_numba, max_iter).
    """

    name = "parallel"

    def __init__(self, leaf_size: int = 20, max_workers: Optional[int] = None, **kwargs):
        super().__init__(**kwargs)
        if leaf_size < 1:
            raise ConfigurationError(f"leaf_size must be >= 1, got {leaf_size}")
        self.leaf_size = leaf_size
        self.max_workers = max_workers
        self._tree: Optional[QuadrantTask] = None
        self._leaves: List[QuadrantTask] = []
        self._executor: Optional[ThreadPoolExecutor] = None

    def _setup(self, grid):
        self._tree = QuadrantTask.build(0, grid.height, 0, grid.width, self.leaf_size)
        self._leaves = self._tree.leaves()
        if self.max_workers != 1:
            self._executor = ThreadPoolExecutor(max_workers=self.max_workers)

    def _teardown(self):
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    def _sweep(self, padded, old, new, fixed, counts, detector) -> bool:
        def compute(task: QuadrantTask) -> bool:
            y0, y1, x0, x1 = task.region
            self.kernel.step(padded, old, new, fixed, counts, task.region)
            return detector.region_is_stable(new[y0:y1, x0:x1], old[y0:y1, x0:x1])

        if self._executor is None:
            return self._tree.run_recursive(compute)

        # Consuming map() joins every leaf: the iteration barrier
        results = self._executor.map(compute, self._leaves)
        leaf_flags = {leaf.region: flag for leaf, flag in zip(self._leaves, results)}
        return self._tree.merge(leaf_flags)
