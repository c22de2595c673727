"""
Distributed backend on petsc4py: GMRES with algebraic multigrid (GAMG).

The owned rows of the operator become the local rows of a parallel AIJ matrix.
Vectors wrap the owned NumPy arrays.
"""

import logging

import numpy as np
from petsc4py import PETSc

from cdr_shell.errors import SolverDivergedError
from cdr_shell.numerics.distributed import DistributedMatrix, DistributedVector
from cdr_shell.runtime.context import RunContext

from .base import LinearAlgebraBackend, SolverReport


logger = logging.getLogger(__name__)


class PetscBackend(LinearAlgebraBackend):

    name = "petsc"

    def __init__(self, context: RunContext, restart: int = 30):
        super().__init__(context, restart)

    def to_petsc(self, matrix: DistributedMatrix) -> PETSc.Mat:
        """Copy the owned rows into a PETSc matrix. Collective."""
        block = matrix.local_block
        [n_local, n_global] = [block.shape[0], matrix.dofs.n_dofs]
        A = PETSc.Mat().createAIJ(
            size=((n_local, n_global), (n_local, n_global)),
            csr=(block.indptr.astype(PETSc.IntType), block.indices.astype(PETSc.IntType),
                 block.data.astype(PETSc.ScalarType)),
            comm=self.context.comm,
        )
        A.assemble()
        return A

    def create_preconditioner(self, matrix: DistributedMatrix) -> PETSc.KSP:
        A = self.to_petsc(matrix)
        ksp = PETSc.KSP().create(comm=self.context.comm)
        ksp.setOperators(A)
        ksp.setType(PETSc.KSP.Type.GMRES)
        ksp.setGMRESRestart(self.restart)
        # right preconditioning keeps the unpreconditioned residual available to the convergence test
        ksp.setPCSide(PETSc.PC.Side.RIGHT)
        ksp.setNormType(PETSc.KSP.NormType.UNPRECONDITIONED)
        ksp.setInitialGuessNonzero(True)
        ksp.getPC().setType(PETSc.PC.Type.GAMG)
        ksp.setFromOptions()
        ksp.setUp()
        logger.debug(f"GAMG set up for a {A.getSize()} operator.")
        return ksp

    def _vector(self, array: np.ndarray, n_global: int) -> PETSc.Vec:
        return PETSc.Vec().createWithArray(array, size=(array.size, n_global), comm=self.context.comm)

    def solve(self, matrix: DistributedMatrix, rhs: DistributedVector, solution: np.ndarray,
              preconditioner: PETSc.KSP, tolerance: float, max_iterations: int) -> SolverReport:
        n_global = matrix.dofs.n_dofs
        ksp = preconditioner
        ksp.setTolerances(rtol=0.0, atol=tolerance, max_it=max_iterations)

        b = self._vector(np.ascontiguousarray(rhs.values, dtype=PETSc.ScalarType), n_global)
        owned = np.array(solution, dtype=PETSc.ScalarType)
        x = self._vector(owned, n_global)
        try:
            ksp.solve(b, x)
            reason = ksp.getConvergedReason()
            iterations = ksp.getIterationNumber()
            residual = ksp.getResidualNorm()
        finally:
            b.destroy()
            x.destroy()

        if reason <= 0:
            raise SolverDivergedError(
                f"PETSc GMRES did not converge (reason {reason}) in {iterations} iterations, "
                f"residual {residual:.3e}.", iterations, residual)
        solution[:] = owned
        return SolverReport(iterations=iterations, residual=residual)
