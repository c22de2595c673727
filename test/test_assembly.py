import numpy as np
import pytest

from cdr_shell.domain import FE_Q, FEValues, build_mesh, distribute_dofs, make_mesh, quadrature_for_degree
from cdr_shell.expressions import ConvectionField, Forcing, SympyEvaluator
from cdr_shell.numerics import (
    AffineConstraints,
    DistributedMatrix,
    DistributedVector,
    GhostedVector,
    assemble_operator,
    assemble_rhs,
    distribute_sparsity_pattern,
    interpolate_boundary_values,
    make_sparsity_pattern,
)
from cdr_shell.numerics.assembly import local_matrices

from utilities import make_parameters


def test_local_matrices():
    mesh = make_mesh(1.0, 2.0, 3)
    fe_values = FEValues(FE_Q(1), quadrature_for_degree(1)).reinit(mesh.cell_vertices())
    convection = ConvectionField("-y,x", SympyEvaluator()).value(fe_values.quadrature_points)
    [mass, stiffness, conv] = local_matrices(fe_values, convection)

    # the mass integrates to the area of the polygonal shell
    corners = mesh.cell_vertices()
    [x, y] = [corners[..., 0], corners[..., 1]]
    area = 0.5 * np.sum(x * np.roll(y, -1, axis=1) - np.roll(x, -1, axis=1) * y)
    assert mass.sum() == pytest.approx(area)
    assert area == pytest.approx(3 * np.pi, rel=1e-2)

    # constants are in the kernel of the differential operators
    assert np.allclose(stiffness.sum(axis=2), 0.0)
    assert np.allclose(conv.sum(axis=2), 0.0)
    assert np.allclose(stiffness, np.swapaxes(stiffness, 1, 2))


class Setup:

    def __init__(self, context, fe_order=2, forcing="exp(-2*t)*exp(-40*(x - 1.5)^6)*exp(-40*y^6)", **overrides):
        self.context = context
        self.parameters = make_parameters(fe_order=fe_order, forcing=forcing, **overrides)
        mesh = build_mesh(context, 1.0, 2.0, self.parameters.refinement_level)
        self.dofs = distribute_dofs(context, mesh, FE_Q(fe_order))
        self.quadrature = quadrature_for_degree(fe_order)
        evaluator = SympyEvaluator()
        self.convection = ConvectionField(self.parameters.convection_field, evaluator)
        self.forcing = Forcing(self.parameters.forcing, evaluator)
        self.constraints = AffineConstraints(self.dofs.locally_relevant)
        interpolate_boundary_values(self.dofs, self.constraints)
        self.constraints.close()

    def operator(self):
        pattern = distribute_sparsity_pattern(
            self.context, self.dofs, make_sparsity_pattern(self.dofs, self.constraints))
        matrix = DistributedMatrix(self.context, self.dofs, pattern)
        assemble_operator(self.dofs, self.quadrature, self.convection, self.parameters,
                          self.parameters.time_step, self.constraints, matrix)
        matrix.compress()
        return matrix

    def rhs(self, previous: GhostedVector, time: float):
        rhs = DistributedVector(self.context, self.dofs)
        assemble_rhs(self.dofs, self.quadrature, self.convection, self.forcing, time, self.parameters,
                     self.parameters.time_step, previous, self.constraints, rhs)
        rhs.compress()
        return rhs


def test_rhs_is_deterministic(world_context):
    setup = Setup(world_context)
    previous = GhostedVector(world_context, setup.dofs)
    owned = setup.dofs.support_points[setup.dofs.locally_owned]
    previous.assign(np.sin(owned[:, 0]) * np.cos(owned[:, 1]))

    first = setup.rhs(previous, 0.01)
    second = setup.rhs(previous, 0.01)
    assert np.array_equal(first.values, second.values)
    assert first.l2_norm() > 0


def test_time_independent_forcing_is_frozen(world_context):
    setup = Setup(world_context, time_dependent_forcing=False)
    previous = GhostedVector(world_context, setup.dofs)
    early = setup.rhs(previous, 0.01)
    late = setup.rhs(previous, 0.04)
    assert early.l2_norm() > 0
    assert np.array_equal(early.values, late.values)

    # the clock only enters when the forcing follows it
    setup = Setup(world_context, time_dependent_forcing=True)
    previous = GhostedVector(world_context, setup.dofs)
    change = setup.rhs(previous, 0.01).values - setup.rhs(previous, 0.04).values
    assert world_context.sum(float(change @ change)) > 0


def test_rhs_vanishes_without_data(world_context):
    setup = Setup(world_context, forcing="0")
    rhs = setup.rhs(GhostedVector(world_context, setup.dofs), 0.01)
    assert rhs.l2_norm() == 0.0


def test_rhs_is_zero_on_the_boundary(world_context):
    setup = Setup(world_context)
    rhs = setup.rhs(GhostedVector(world_context, setup.dofs), 0.01)
    boundary = setup.dofs.boundary_dofs[setup.dofs.is_owned(setup.dofs.boundary_dofs)]
    [begin, _] = setup.dofs.owned_range
    assert np.all(rhs.values[boundary - begin] == 0.0)


def test_operator_without_convection_is_symmetric(serial_context):
    setup = Setup(serial_context)
    setup.convection = ConvectionField("0, 0", SympyEvaluator())
    block = setup.operator().local_block
    assert abs(block - block.T).max() == pytest.approx(0.0, abs=1e-14)


def test_operator_rows(serial_context):
    setup = Setup(serial_context)
    block = setup.operator().local_block
    boundary = setup.dofs.boundary_dofs
    # constrained rows hold their diagonal only
    assert np.all(block[boundary].getnnz(axis=1) == 1)
    assert np.all(block.diagonal() > 0)
