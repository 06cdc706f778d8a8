"""Neighbour-averaging kernels.

Simple kernel implementations - convergence tracking is handled by the solver.

All kernels read from ``padded``, a copy of the previous buffer with a
one-cell zero border, so that ``padded[y + 1, x + 1] == old[y, x]``. Cells
beyond the domain contribute zero to the sum and are excluded from
``counts``. A region is ``(y0, y1, x0, x1)`` in unpadded coordinates.
"""

import numpy as np
from numba import njit


def pad(old: np.ndarray, out: np.ndarray = None) -> np.ndarray:
    """Copy ``old`` into a zero-bordered buffer of shape ``old.shape + 2``."""
    if out is None:
        out = np.zeros((old.shape[0] + 2, old.shape[1] + 2), dtype=old.dtype)
    out[1:-1, 1:-1] = old
    return out


@njit(nogil=True, cache=False)
def _average_step_numba(padded, old, new, fixed, counts, y0, y1, x0, x1):
    """Numba JIT implementation of one averaging sweep over a region."""
    for y in range(y0, y1):
        for x in range(x0, x1):
            if fixed[y, x]:
                new[y, x] = old[y, x]
            else:
                new[y, x] = (
                    padded[y, x + 1]
                    + padded[y + 2, x + 1]
                    + padded[y + 1, x]
                    + padded[y + 1, x + 2]
                ) / counts[y, x]


class NumPyKernel:
    """NumPy-based averaging kernel."""

    name = "numpy"

    def step(self, padded, old, new, fixed, counts, region):
        """Write the neighbour mean of ``region`` into ``new``."""
        y0, y1, x0, x1 = region
        total = (
            padded[y0:y1, x0 + 1 : x1 + 1]
            + padded[y0 + 2 : y1 + 2, x0 + 1 : x1 + 1]
            + padded[y0 + 1 : y1 + 1, x0:x1]
            + padded[y0 + 1 : y1 + 1, x0 + 2 : x1 + 2]
        )
        new[y0:y1, x0:x1] = np.where(
            fixed[y0:y1, x0:x1], old[y0:y1, x0:x1], total / counts[y0:y1, x0:x1]
        )

    def warmup(self, warmup_size: int = 10):
        """No-op for NumPy kernel."""
        pass


class NumbaKernel:
    """Numba JIT-compiled averaging kernel (releases the GIL)."""

    name = "numba"

    def step(self, padded, old, new, fixed, counts, region):
        """Write the neighbour mean of ``region`` into ``new``."""
        y0, y1, x0, x1 = region
        _average_step_numba(padded, old, new, fixed, counts, y0, y1, x0, x1)

    def warmup(self, warmup_size: int = 10):
        """Trigger JIT compilation with a small problem."""
        old = np.random.rand(warmup_size, warmup_size)
        new = np.zeros_like(old)
        fixed = np.zeros(old.shape, dtype=bool)
        counts = np.full(old.shape, 4.0)
        _average_step_numba(pad(old), old, new, fixed, counts, 0, warmup_size, 0, warmup_size)


def make_kernel(use_numba: bool = False):
    """Factory: Numba kernel if requested, NumPy otherwise."""
    return NumbaKernel() if use_numba else NumPyKernel()
