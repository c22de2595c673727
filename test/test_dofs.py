import numpy as np
import pytest

from cdr_shell.domain import FE_Q, make_mesh, number_dofs, distribute_dofs


@pytest.mark.parametrize("degree, level, expected", [(1, 3, 80 * 9), (2, 1, 40 * 5), (3, 1, 60 * 7)])
def test_number_of_dofs(degree, level, expected):
    dofs = number_dofs(make_mesh(1.0, 2.0, level), FE_Q(degree))
    assert dofs.n_dofs == expected
    assert np.unique(dofs.cell_dofs).size == expected


@pytest.mark.parametrize("nb_processes", [1, 2, 3, 4, 7])
@pytest.mark.parametrize("degree", [1, 3])
def test_owned_dofs_partition_the_dofs(nb_processes, degree):
    handlers = [number_dofs(make_mesh(1.0, 2.0, 2, nb_processes, rank), FE_Q(degree))
                for rank in range(nb_processes)]
    n_dofs = handlers[0].n_dofs
    owned = [dofs.locally_owned for dofs in handlers]

    # disjoint, complete and contiguous in rank order
    assert np.array_equal(np.concatenate(owned), np.arange(n_dofs))
    for dofs in handlers:
        assert dofs.n_dofs == n_dofs
        assert np.array_equal(dofs.n_locally_owned_per_process, [o.size for o in owned])
        assert np.all(np.isin(dofs.locally_owned, dofs.locally_relevant))
        assert np.all(dofs.owner_of(dofs.ghost_dofs) < dofs.rank)


def test_shared_dofs_belong_to_the_lowest_rank():
    handlers = [number_dofs(make_mesh(1.0, 2.0, 1, 3, rank), FE_Q(2)) for rank in range(3)]
    mesh = handlers[0].mesh
    cell_dofs = handlers[0].cell_dofs
    for dof in range(handlers[0].n_dofs):
        lowest = mesh.cell_owner[np.any(cell_dofs == dof, axis=1)].min()
        assert handlers[0].owner_of(dof) == lowest


def test_numbering_agrees_between_cells(small_dofs):
    # a DOF has one support point, whichever cell it is seen from
    from cdr_shell.domain.fe import map_points
    points = map_points(small_dofs.mesh.cell_vertices(), small_dofs.fe.unit_support_points)
    assert np.allclose(points, small_dofs.support_points[small_dofs.cell_dofs])


def test_boundary_dofs(small_mesh, small_dofs):
    # vertices of linear elements lie exactly on the two circles
    linear = number_dofs(small_mesh, FE_Q(1))
    radii = np.linalg.norm(linear.support_points, axis=1)
    on_circle = np.isclose(radii, 1.0) | np.isclose(radii, 2.0)
    assert np.array_equal(np.flatnonzero(on_circle), linear.boundary_dofs)

    # two nodes per boundary edge for quadratic elements
    assert small_dofs.boundary_dofs.size == 2 * small_mesh.boundary_edges.size


def test_distribute_dofs(serial_context, small_mesh):
    dofs = distribute_dofs(serial_context, small_mesh, FE_Q(2))
    assert dofs.owned_range == (0, dofs.n_dofs)
    assert dofs.ghost_dofs.size == 0
    assert np.array_equal(dofs.locally_relevant, np.arange(dofs.n_dofs))
