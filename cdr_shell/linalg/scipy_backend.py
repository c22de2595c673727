"""
Single-process backend on scipy.sparse: GMRES preconditioned with one
V-cycle of smoothed aggregation algebraic multigrid (pyamg).
"""

import logging
import math

import numpy as np
import pyamg
import scipy.sparse.linalg as spla

from cdr_shell.errors import ConfigurationError, SolverDivergedError
from cdr_shell.numerics.distributed import DistributedMatrix, DistributedVector
from cdr_shell.runtime.context import RunContext

from .base import LinearAlgebraBackend, SolverReport


logger = logging.getLogger(__name__)


class ScipyBackend(LinearAlgebraBackend):

    name = "scipy"

    def __init__(self, context: RunContext, restart: int = 30, max_coarse: int = 10):
        if context.size != 1:
            raise ConfigurationError(f"The SciPy backend runs on one process, not {context.size}.")
        super().__init__(context, restart)
        self.max_coarse = max_coarse

    def create_preconditioner(self, matrix: DistributedMatrix) -> spla.LinearOperator:
        block = matrix.local_block.tocsr()
        # the convection term makes the operator nonsymmetric
        hierarchy = pyamg.smoothed_aggregation_solver(block, symmetry="nonsymmetric", max_coarse=self.max_coarse)
        logger.debug(f"AMG hierarchy with {len(hierarchy.levels)} levels, "
                     f"operator complexity {hierarchy.operator_complexity():.2f}.")
        return hierarchy.aspreconditioner()

    def solve(self, matrix: DistributedMatrix, rhs: DistributedVector, solution: np.ndarray,
              preconditioner: spla.LinearOperator, tolerance: float, max_iterations: int) -> SolverReport:
        A = matrix.local_block
        b = rhs.values
        iterations = 0

        def count(_):
            nonlocal iterations
            iterations += 1

        # maxiter counts restart cycles
        [x, info] = spla.gmres(
            A, b, x0=solution.copy(), rtol=0.0, atol=tolerance, restart=self.restart,
            maxiter=max(1, math.ceil(max_iterations / self.restart)), M=preconditioner,
            callback=count, callback_type="pr_norm")
        residual = float(np.linalg.norm(b - A @ x))
        if info != 0 or residual > tolerance:
            raise SolverDivergedError(
                f"GMRES did not reach {tolerance:.3e} in {iterations} iterations, residual {residual:.3e}.",
                iterations, residual)
        solution[:] = x
        return SolverReport(iterations=iterations, residual=residual)
