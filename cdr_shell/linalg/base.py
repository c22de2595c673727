import abc
import typing
from dataclasses import dataclass

import numpy as np

from cdr_shell.numerics.distributed import DistributedMatrix, DistributedVector
from cdr_shell.runtime.context import RunContext


@dataclass
class SolverReport:
    """Outcome of one converged Krylov solve."""
    iterations: int
    residual: float


class LinearAlgebraBackend(abc.ABC):
    """
    Solves the distributed system A x = b with restarted GMRES.

    The preconditioner is set up once per operator and reused for every solve.
    Convergence is measured on the unpreconditioned residual against an
    absolute tolerance. A solve that exhausts its iteration budget raises
    `SolverDivergedError`.
    """

    name: str

    def __init__(self, context: RunContext, restart: int = 30):
        self.context = context
        self.restart = restart

    @abc.abstractmethod
    def create_preconditioner(self, matrix: DistributedMatrix) -> typing.Any:
        """Set up the preconditioner of a compressed matrix. Collective."""

    @abc.abstractmethod
    def solve(self, matrix: DistributedMatrix, rhs: DistributedVector, solution: np.ndarray,
              preconditioner: typing.Any, tolerance: float, max_iterations: int) -> SolverReport:
        """
        Solve for the owned entries of `solution`, updated in place. Collective.

        `solution` holds the initial guess on entry.
        """
