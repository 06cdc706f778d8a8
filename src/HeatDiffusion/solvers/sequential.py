"""Sequential relaxation solver."""

from .base import RelaxationSolver


class SequentialSolver(RelaxationSolver):
    """Single-threaded baseline.

    Each iteration sweeps the whole grid with one kernel call and checks
    stability over every cell.

    Parameters
    ----------
    kernel : NumPyKernel or NumbaKernel, optional
        Averaging kernel (default: chosen by ``use_numba``).
    use_numba : bool
        Use Numba JIT kernel (default: False).
    max_iter : int, optional
        Hard iteration cap. None (default) runs until stable.
    """

    name = "sequential"

    def _sweep(self, padded, old, new, fixed, counts, detector) -> bool:
        height, width = old.shape
        self.kernel.step(padded, old, new, fixed, counts, (0, height, 0, width))
        return detector.region_is_stable(new, old)
