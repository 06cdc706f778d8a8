"""Collective communication for the distributed solver.

Solvers talk to a :class:`Communicator` with blocking, MPI-like collectives.
Two backends exist:

- :class:`SimulatedCommunicator`: in-process ranks running on threads,
  synchronised by a shared barrier. Deterministic, used for tests.
- :class:`~HeatDiffusion.mpi.mpi_backend.MPICommunicator`: mpi4py.

Every collective doubles as a barrier: no rank returns from it before all
ranks have entered it.
"""

from __future__ import annotations

import copy
import threading
import time
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Callable, List, Optional, Sequence

import numpy as np

from ..errors import CommunicationError


class Communicator(ABC):
    """Abstract base for collective communication between workers."""

    rank: int
    size: int

    @abstractmethod
    def bcast(self, obj: Any, root: int = 0) -> Any:
        """Broadcast ``obj`` from ``root`` to every rank."""

    @abstractmethod
    def scatter(self, chunks: Optional[Sequence[Any]], root: int = 0) -> Any:
        """Send ``chunks[r]`` from ``root`` to rank ``r``."""

    @abstractmethod
    def gather(self, obj: Any, root: int = 0) -> Optional[List[Any]]:
        """Collect one object per rank on ``root`` (None elsewhere)."""

    @abstractmethod
    def allreduce_and(self, flag: bool) -> bool:
        """Logical AND of ``flag`` across all ranks."""

    @abstractmethod
    def sendrecv(
        self,
        send: np.ndarray,
        dest: Optional[int],
        source: Optional[int],
        tag: int = 0,
    ) -> Optional[np.ndarray]:
        """Send ``send`` to ``dest`` and receive from ``source``.

        ``None`` means no partner (like ``MPI.PROC_NULL``); receiving from
        no partner returns None.
        """

    @abstractmethod
    def barrier(self):
        """Block until all ranks arrive."""

    def get_time(self) -> float:
        return time.perf_counter()


class SimulatedWorld:
    """A set of in-process ranks sharing one barrier and one mailbox.

    Parameters
    ----------
    size : int
        Number of simulated ranks.
    timeout : float
        Seconds a rank waits at a collective before the run is aborted.

    Example
    -------
    >>> world = SimulatedWorld(4)
    >>> results = world.run(lambda comm: comm.allreduce_and(comm.rank != 2))
    >>> results
    [False, False, False, False]
    """

    def __init__(self, size: int, timeout: float = 60.0):
        if size < 1:
            raise ValueError(f"World size must be >= 1, got {size}")
        self.size = size
        self._barrier = threading.Barrier(size, timeout=timeout)
        self._lock = threading.Lock()
        self._slots: List[Any] = [None] * size
        self._root_value: Any = None
        self._mailbox = {}
        self._error: Optional[BaseException] = None

    def communicators(self) -> List["SimulatedCommunicator"]:
        return [SimulatedCommunicator(self, rank) for rank in range(self.size)]

    def abort(self, error: Optional[BaseException] = None):
        """Break the barrier: every pending and future collective fails.

        The first ``error`` passed in is kept as the cause of the abort.
        """
        with self._lock:
            if self._error is None:
                self._error = error
        self._barrier.abort()

    @property
    def aborted(self) -> bool:
        return self._barrier.broken

    def run(self, target: Callable, *args, **kwargs) -> list:
        """Run ``target(comm, *args, **kwargs)`` on every rank concurrently.

        Returns the per-rank results in rank order. If any rank raises, the
        world is aborted so the other ranks fail fast, and the original
        error is re-raised.
        """

        def guarded(comm):
            try:
                return target(comm, *args, **kwargs)
            except BaseException as e:
                self.abort(e)
                raise

        with ThreadPoolExecutor(max_workers=self.size) as pool:
            futures = [pool.submit(guarded, comm) for comm in self.communicators()]

        errors = [f.exception() for f in futures if f.exception() is not None]
        if errors:
            # Ranks leaving a barrier as it breaks fail too; report the cause
            raise self._error if self._error is not None else errors[0]
        return [f.result() for f in futures]


class SimulatedCommunicator(Communicator):
    """One rank of a :class:`SimulatedWorld`.

    Payloads are deep-copied on delivery so ranks never share buffers.
    """

    def __init__(self, world: SimulatedWorld, rank: int):
        self.world = world
        self.rank = rank
        self.size = world.size

    def _sync(self, operation: str):
        try:
            self.world._barrier.wait()
        except threading.BrokenBarrierError as e:
            raise CommunicationError(operation, "run aborted", rank=self.rank) from e

    def _fail(self, operation: str, message: str):
        error = CommunicationError(operation, message, rank=self.rank)
        self.world.abort(error)
        raise error

    def bcast(self, obj, root=0):
        if self.rank == root:
            self.world._root_value = obj
        self._sync("bcast")
        value = copy.deepcopy(self.world._root_value)
        self._sync("bcast")
        return value

    def scatter(self, chunks, root=0):
        if self.rank == root:
            if chunks is None or len(chunks) != self.size:
                got = "None" if chunks is None else len(chunks)
                self._fail("scatter", f"expected {self.size} chunks, got {got}")
            self.world._root_value = chunks
        self._sync("scatter")
        value = copy.deepcopy(self.world._root_value[self.rank])
        self._sync("scatter")
        return value

    def gather(self, obj, root=0):
        self.world._slots[self.rank] = copy.deepcopy(obj)
        self._sync("gather")
        result = list(self.world._slots) if self.rank == root else None
        self._sync("gather")
        return result

    def allreduce_and(self, flag):
        self.world._slots[self.rank] = bool(flag)
        self._sync("allreduce")
        result = all(self.world._slots)
        self._sync("allreduce")
        return result

    def sendrecv(self, send, dest, source, tag=0):
        if dest is not None:
            with self.world._lock:
                self.world._mailbox[(self.rank, dest, tag)] = np.array(send, copy=True)
        self._sync("sendrecv")
        recv = None
        if source is not None:
            with self.world._lock:
                recv = self.world._mailbox.pop((source, self.rank, tag), None)
            if recv is None:
                self._fail("sendrecv", f"no message from rank {source} (tag {tag})")
        self._sync("sendrecv")
        return recv

    def barrier(self):
        self._sync("barrier")
