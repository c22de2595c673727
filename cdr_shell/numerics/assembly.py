"""
Discretization of the CDR equation with Crank-Nicolson in time.

    (1 + dt r/2) M u_new + dt/2 (D K + C) u_new
        = (1 - dt r/2) M u_old - dt/2 (D K + C) u_old + dt/2 (f(t_new) + f(t_old))

M, K and C are the mass, stiffness and convection matrices. The left-hand
operator only depends on dt and the coefficients, so it is assembled once.
"""

import numpy as np

from cdr_shell.config.schema import Parameters
from cdr_shell.domain.dofs import DoFHandler
from cdr_shell.domain.fe import FEValues
from cdr_shell.domain.quadrature import Quadrature
from cdr_shell.expressions import ConvectionField, Forcing
from cdr_shell.numerics.constraints import AffineConstraints
from cdr_shell.numerics.distributed import DistributedMatrix, DistributedVector, GhostedVector


cells_per_batch = 2048


def _owned_cell_batches(dofs: DoFHandler):
    owned = dofs.mesh.locally_owned_cells
    for start in range(0, owned.size, cells_per_batch):
        yield owned[start:start + cells_per_batch]


def local_matrices(fe_values: FEValues, convection_values: np.ndarray):
    """Mass, stiffness and convection matrices of a batch of cells, each (nb_cells, n, n)."""
    phi = fe_values.shape_value
    grad = fe_values.shape_grad
    JxW = fe_values.JxW
    mass = np.einsum("cq, qi, qj -> cij", JxW, phi, phi)
    stiffness = np.einsum("cq, cqid, cqjd -> cij", JxW, grad, grad)
    convection = np.einsum("cq, qi, cqd, cqjd -> cij", JxW, phi, convection_values, grad)
    return mass, stiffness, convection


def _operator_matrices(mass, stiffness, convection, parameters: Parameters, time_step: float):
    transport = parameters.diffusion_coefficient * stiffness + convection
    implicit = (1.0 + 0.5 * time_step * parameters.reaction_coefficient) * mass + 0.5 * time_step * transport
    explicit = (1.0 - 0.5 * time_step * parameters.reaction_coefficient) * mass - 0.5 * time_step * transport
    return implicit, explicit


def assemble_operator(dofs: DoFHandler, quadrature: Quadrature, convection: ConvectionField,
                      parameters: Parameters, time_step: float, constraints: AffineConstraints,
                      matrix: DistributedMatrix) -> DistributedMatrix:
    """
    Add the condensed left-hand operator of all owned cells to `matrix`.

    The caller compresses the matrix afterwards.
    """
    fe_values = FEValues(dofs.fe, quadrature)
    for cells in _owned_cell_batches(dofs):
        fe_values.reinit(dofs.mesh.cell_vertices(cells))
        [mass, stiffness, conv] = local_matrices(fe_values, convection.value(fe_values.quadrature_points))
        [implicit, _] = _operator_matrices(mass, stiffness, conv, parameters, time_step)
        [triplets, _] = constraints.condense(dofs.cell_dofs[cells], cell_matrices=implicit)
        matrix.add(*triplets)
    return matrix


def assemble_rhs(dofs: DoFHandler, quadrature: Quadrature, convection: ConvectionField, forcing: Forcing,
                 time: float, parameters: Parameters, time_step: float, previous_solution: GhostedVector,
                 constraints: AffineConstraints, rhs: DistributedVector) -> DistributedVector:
    """
    Add the condensed load vector for the step ending at `time` to `rhs`.

    `previous_solution` must carry up to date ghost values. The caller
    compresses the vector afterwards.
    """
    fe_values = FEValues(dofs.fe, quadrature)
    for cells in _owned_cell_batches(dofs):
        fe_values.reinit(dofs.mesh.cell_vertices(cells))
        points = fe_values.quadrature_points
        [mass, stiffness, conv] = local_matrices(fe_values, convection.value(points))
        [implicit, explicit] = _operator_matrices(mass, stiffness, conv, parameters, time_step)

        cell_dofs = dofs.cell_dofs[cells]
        u_old = previous_solution[cell_dofs.ravel()].reshape(cell_dofs.shape)
        if parameters.time_dependent_forcing:
            source = 0.5 * (forcing.value(points, time) + forcing.value(points, time - time_step))
        else:
            source = forcing.value(points, parameters.start_time)
        load = np.einsum("cij, cj -> ci", explicit, u_old)
        load += time_step * np.einsum("cq, qi, cq -> ci", fe_values.JxW, fe_values.shape_value, source)

        matrices = implicit if constraints.has_inhomogeneities else None
        [_, pairs] = constraints.condense(cell_dofs, cell_matrices=matrices, cell_vectors=load)
        rhs.add(*pairs)
    return rhs
