"""Communicator backed by mpi4py.

Imported explicitly (not from the package ``__init__``) so that the rest of
the package works on machines without an MPI library.
"""

from __future__ import annotations

from contextlib import contextmanager

import numpy as np
from mpi4py import MPI

from ..errors import CommunicationError
from .communicators import Communicator


def _rank_or_null(rank):
    """Map a missing neighbour to MPI.PROC_NULL."""
    return rank if rank is not None else MPI.PROC_NULL


class MPICommunicator(Communicator):
    """Collectives over an MPI communicator (default: COMM_WORLD).

    Any MPI failure is re-raised as :class:`CommunicationError` naming the
    collective.
    """

    def __init__(self, comm: MPI.Comm = None):
        self.comm = comm if comm is not None else MPI.COMM_WORLD
        # Errors must come back as exceptions, not abort the process
        self.comm.Set_errhandler(MPI.ERRORS_RETURN)
        self.rank = self.comm.Get_rank()
        self.size = self.comm.Get_size()

    @contextmanager
    def _collective(self, operation: str):
        try:
            yield
        except MPI.Exception as e:
            raise CommunicationError(operation, e.Get_error_string(), rank=self.rank) from e

    def bcast(self, obj, root=0):
        with self._collective("bcast"):
            return self.comm.bcast(obj, root=root)

    def scatter(self, chunks, root=0):
        with self._collective("scatter"):
            return self.comm.scatter(chunks, root=root)

    def gather(self, obj, root=0):
        with self._collective("gather"):
            return self.comm.gather(obj, root=root)

    def allreduce_and(self, flag):
        with self._collective("allreduce"):
            return bool(self.comm.allreduce(bool(flag), op=MPI.LAND))

    def sendrecv(self, send, dest, source, tag=0):
        send = np.ascontiguousarray(send)
        recv = np.empty_like(send)
        with self._collective("sendrecv"):
            self.comm.Sendrecv(
                send, _rank_or_null(dest), tag, recv, _rank_or_null(source), tag
            )
        return recv if source is not None else None

    def barrier(self):
        with self._collective("barrier"):
            self.comm.Barrier()

    def get_time(self) -> float:
        """Get current time using MPI.Wtime()."""
        return MPI.Wtime()
