"""
The communication substrate of a run.

All processes execute the same program and meet only in the collective calls
of this module (plus those inside the linear-algebra backend). The context is
created by the top-level driver and handed to every phase explicitly.
"""

import contextlib
import logging
import typing

from mpi4py import MPI

from cdr_shell.errors import CommunicationError


logger = logging.getLogger(__name__)


class RunContext:
    """Owns a private duplicate of the communicator for the lifetime of a run.

    Use it as a context manager so that the duplicate is released on every
    process, or call `close` explicitly.
    """

    comm: MPI.Comm

    def __init__(self, comm: MPI.Comm | None = None):
        if comm is None:
            comm = MPI.COMM_WORLD
        self.comm = comm.Dup()
        self._closed = False
        logger.debug(f"Run context opened on rank {self.rank} of {self.size}.")

    @property
    def rank(self) -> int:
        return self.comm.Get_rank()

    @property
    def size(self) -> int:
        return self.comm.Get_size()

    @property
    def is_coordinator(self) -> bool:
        return self.rank == 0

    def close(self):
        if self._closed:
            return
        self.comm.Barrier()
        self.comm.Free()
        self._closed = True

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        # A failing process cannot wait in the barrier for the others.
        if exc_type is None:
            self.close()
        return False

    def barrier(self):
        self.comm.Barrier()

    def sum(self, value):
        return self.comm.allreduce(value, op=MPI.SUM)

    def max(self, value):
        return self.comm.allreduce(value, op=MPI.MAX)

    def allgather(self, value) -> list:
        return self.comm.allgather(value)

    def alltoall(self, payloads: typing.Sequence) -> list:
        """Send `payloads[r]` to rank r, receive one object from every rank."""
        if len(payloads) != self.size:
            raise CommunicationError(
                f"All-to-all needs one payload per process, got {len(payloads)} for {self.size}.")
        return self.comm.alltoall(list(payloads))

    def bcast(self, value, root: int = 0):
        return self.comm.bcast(value, root=root)

    def check_agreement(self, value, what: str):
        """Make sure that all processes computed the same value."""
        values = self.allgather(value)
        if any(v != values[0] for v in values):
            raise CommunicationError(f"Processes disagree on {what}: {values}")
        return values[0]


@contextlib.contextmanager
def abort_on_error(context: RunContext):
    """Terminate the whole job when any process fails.

    The other processes would otherwise block forever in their next collective.
    """
    try:
        yield context
    except Exception as err:
        logger.critical(f"Rank {context.rank} failed: {type(err).__name__}: {err}", exc_info=True)
        MPI.COMM_WORLD.Abort(1)
        raise
