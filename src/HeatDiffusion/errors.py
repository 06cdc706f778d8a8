"""Exceptions raised by the heat diffusion solvers."""


class HeatDiffusionError(Exception):
    """Base class for all solver errors."""


class ConfigurationError(HeatDiffusionError, ValueError):
    """Invalid run configuration, rejected before any solver starts."""


class NeighborCountError(HeatDiffusionError, ValueError):
    """A cell has no in-bounds neighbours to average over."""


class CommunicationError(HeatDiffusionError, RuntimeError):
    """A collective operation failed; the distributed run is aborted.

    Parameters
    ----------
    operation : str
        Name of the failed collective (``bcast``, ``scatter``, ``gather``,
        ``allreduce``, ``halo_exchange``).
    rank : int, optional
        Rank that observed the failure.
    """

    def __init__(self, operation: str, message: str = "", rank: int = None):
        self.operation = operation
        self.rank = rank
        where = f" on rank {rank}" if rank is not None else ""
        detail = f": {message}" if message else ""
        super().__init__(f"Collective '{operation}' failed{where}{detail}")
