"""
The transient CDR problem on the shell: setup and time loop.

Every process runs the same sequence of phases

    INITIALIZING -> {ASSEMBLING -> SOLVING -> DISTRIBUTING -> ADVANCING -> [CHECKPOINTING]}* -> DONE

and meets the others in the collectives of mesh partitioning, assembly,
the linear solve and the ghost refresh.
"""

import logging
from dataclasses import dataclass
from enum import StrEnum

import numpy as np

from cdr_shell.config.schema import Parameters, SolverSettings
from cdr_shell.domain.dofs import DoFHandler, distribute_dofs
from cdr_shell.domain.fe import FE_Q
from cdr_shell.domain.mesh import Mesh, build_mesh
from cdr_shell.domain.quadrature import quadrature_for_degree
from cdr_shell.expressions import ConvectionField, ExpressionEvaluator, Forcing, SympyEvaluator
from cdr_shell.linalg import LinearAlgebraBackend, SolverReport, create_backend
from cdr_shell.numerics.assembly import assemble_operator, assemble_rhs
from cdr_shell.numerics.constraints import (
    AffineConstraints,
    interpolate_boundary_values,
    make_hanging_node_constraints,
)
from cdr_shell.numerics.distributed import DistributedMatrix, DistributedVector, GhostedVector
from cdr_shell.numerics.sparsity import distribute_sparsity_pattern, make_sparsity_pattern
from cdr_shell.runtime.context import RunContext
from cdr_shell.simulation.io import CheckpointWriter


logger = logging.getLogger(__name__)


class Phase(StrEnum):
    INITIALIZING = "initializing"
    ASSEMBLING = "assembling"
    SOLVING = "solving"
    DISTRIBUTING = "distributing"
    ADVANCING = "advancing"
    CHECKPOINTING = "checkpointing"
    DONE = "done"


@dataclass
class StepReport:
    index: int
    time: float
    iterations: int
    residual: float
    rhs_norm: float
    solution_norm: float


class CDRProblem:
    """
    Crank-Nicolson time stepping of the CDR equation with zero Dirichlet data.

    The operator and its preconditioner are built once in `setup_matrices`;
    each step assembles a new load vector, solves, applies the constraints and
    refreshes the ghost values of the solution.
    """

    mesh: Mesh
    dofs: DoFHandler
    constraints: AffineConstraints
    operator: DistributedMatrix
    rhs: DistributedVector
    solution: GhostedVector

    def __init__(self, context: RunContext, parameters: Parameters, solver_settings: SolverSettings | None = None,
                 evaluator: ExpressionEvaluator | None = None, backend: LinearAlgebraBackend | None = None,
                 checkpoint_writer: CheckpointWriter | None = None):
        self.context = context
        self.parameters = parameters
        self.solver_settings = solver_settings or SolverSettings()
        self.evaluator = evaluator if evaluator is not None else SympyEvaluator()
        self.backend = backend
        self.checkpoint_writer = checkpoint_writer

        self.fe = FE_Q(parameters.fe_order)
        self.quadrature = quadrature_for_degree(parameters.fe_order)
        self.convection = ConvectionField(parameters.convection_field, self.evaluator)
        self.forcing = Forcing(parameters.forcing, self.evaluator)
        self.time_step = parameters.time_step

        self.phase = Phase.INITIALIZING
        self.reports: list[StepReport] = []
        self.preconditioner = None

    def _enter(self, phase: Phase):
        self.phase = phase
        logger.debug(f"Phase: {phase}")

    def setup_geometry(self):
        p = self.parameters
        self.mesh = build_mesh(self.context, p.inner_radius, p.outer_radius, p.refinement_level, dim=p.dim)
        logger.info(f"Number of active cells: {self.mesh.nb_cells}")
        self.dofs = distribute_dofs(self.context, self.mesh, self.fe)
        largest = self.context.max(self.dofs.n_locally_owned)
        logger.info(f"At most {largest} of {self.dofs.n_dofs} DoFs are owned by one process")
        self.solution = GhostedVector(self.context, self.dofs)

    def setup_matrices(self):
        self.setup_system()
        self.setup_solver()

    def setup_system(self):
        """Constraints, sparsity and the compressed time-invariant operator."""
        self.constraints = AffineConstraints(self.dofs.locally_relevant)
        make_hanging_node_constraints(self.dofs, self.constraints)
        interpolate_boundary_values(self.dofs, self.constraints)
        self.constraints.close()

        pattern = make_sparsity_pattern(self.dofs, self.constraints)
        pattern = distribute_sparsity_pattern(self.context, self.dofs, pattern)
        self.rhs = DistributedVector(self.context, self.dofs)
        self.operator = DistributedMatrix(self.context, self.dofs, pattern)
        assemble_operator(self.dofs, self.quadrature, self.convection, self.parameters, self.time_step,
                          self.constraints, self.operator)
        self.operator.compress()

    def setup_solver(self):
        if self.backend is None:
            self.backend = create_backend(self.context, self.solver_settings)
        self.preconditioner = self.backend.create_preconditioner(self.operator)

    def assemble_load(self, time: float):
        """The compressed load of the step ending at `time`, from the current solution."""
        self.rhs.zero()
        assemble_rhs(self.dofs, self.quadrature, self.convection, self.forcing, time, self.parameters,
                     self.time_step, self.solution, self.constraints, self.rhs)
        self.rhs.compress()

    def solve(self, owned: np.ndarray) -> SolverReport:
        """Solve the current system into `owned`, which holds the initial guess."""
        rhs_norm = self.rhs.l2_norm()
        if self.context.check_agreement(rhs_norm == 0.0, "a vanishing load vector"):
            # the exact solution of a nonsingular system with zero load
            owned[:] = 0.0
            return SolverReport(iterations=0, residual=0.0)
        tolerance = self.solver_settings.tolerance_factor * rhs_norm
        return self.backend.solve(self.operator, self.rhs, owned, self.preconditioner, tolerance, self.dofs.n_dofs)

    def distribute_solution(self, owned: np.ndarray):
        """Impose the constraints on a fresh solution and refresh the ghosts."""
        self.solution.owned_values[:] = owned
        if self.constraints.has_masters:
            # hanging nodes read their masters, which may be ghosts
            self.solution.update_ghosts()
        self.constraints.distribute(self.solution)
        self.solution.update_ghosts()

    def time_iterate(self) -> list[StepReport]:
        p = self.parameters
        owned = np.zeros(self.dofs.n_locally_owned)

        for index in range(p.n_time_steps):
            time = p.start_time + (index + 1) * self.time_step

            self._enter(Phase.ASSEMBLING)
            self.assemble_load(time)

            self._enter(Phase.SOLVING)
            result = self.solve(owned)

            self._enter(Phase.DISTRIBUTING)
            self.distribute_solution(owned)
            owned[:] = self.solution.owned_values

            self._enter(Phase.ADVANCING)
            report = StepReport(
                index=index,
                time=time,
                iterations=result.iterations,
                residual=result.residual,
                rhs_norm=self.rhs.l2_norm(),
                solution_norm=self.solution.l2_norm(),
            )
            self.reports.append(report)
            logger.info(f"Step {index}: t={time:.4g}, {report.iterations} iterations, |u|={report.solution_norm:.4e}")

            if index % p.save_interval == 0 and self.checkpoint_writer is not None:
                self._enter(Phase.CHECKPOINTING)
                self.checkpoint_writer.write(self.context, self.dofs, self.solution, index)

        self._enter(Phase.DONE)
        return self.reports

    def run(self) -> list[StepReport]:
        self.setup_geometry()
        self.setup_matrices()
        return self.time_iterate()
