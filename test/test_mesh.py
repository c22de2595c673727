import dataclasses

import numpy as np
import pytest

from cdr_shell.domain import hyper_shell, make_mesh, build_mesh, partition_cells
from cdr_shell.errors import ConfigurationError, UnsupportedDimensionError


def test_coarse_shell():
    [vertices, cells] = hyper_shell(1.0, 2.0)
    # ceil(pi * 3 / 1)
    assert cells.shape == (10, 4)
    radii = np.linalg.norm(vertices, axis=1)
    assert np.allclose(np.sort(radii), [1.0] * 10 + [2.0] * 10)


@pytest.mark.parametrize("level", [0, 1, 2, 3])
def test_refined_shell(level):
    mesh = make_mesh(1.0, 2.0, level)
    nb_around = 10 * 2**level
    assert mesh.nb_cells == 10 * 4**level
    assert mesh.nb_vertices == nb_around * (2**level + 1)
    assert mesh.boundary_edges.size == 2 * nb_around

    # new vertices stay on circles, boundary vertices on the boundary
    radii = np.linalg.norm(mesh.vertices, axis=1)
    layers = np.unique(np.round(radii, 12))
    assert layers.size == 2**level + 1
    assert np.allclose(layers, np.linspace(1.0, 2.0, 2**level + 1))


def test_cells_are_counter_clockwise():
    mesh = make_mesh(1.0, 2.0, 2)
    corners = mesh.cell_vertices()
    [a, b, c] = [corners[:, 1] - corners[:, 0], corners[:, 2] - corners[:, 0], corners[:, 3] - corners[:, 0]]
    cross_1 = a[:, 0] * b[:, 1] - a[:, 1] * b[:, 0]
    cross_2 = b[:, 0] * c[:, 1] - b[:, 1] * c[:, 0]
    assert np.all(cross_1 > 0)
    assert np.all(cross_2 > 0)


def test_mesh_is_immutable(small_mesh):
    with pytest.raises(dataclasses.FrozenInstanceError):
        small_mesh.rank = 1
    with pytest.raises(ValueError):
        small_mesh.vertices[0, 0] = 0.0


def test_partition_cells():
    assert partition_cells(10, 3).tolist() == [0, 0, 0, 1, 1, 1, 2, 2, 2, 2]
    assert np.all(partition_cells(160, 1) == 0)
    with pytest.raises(ConfigurationError):
        partition_cells(3, 4)


@pytest.mark.parametrize("nb_partitions", [2, 3, 4])
def test_owned_and_ghost_cells(nb_partitions):
    meshes = [make_mesh(1.0, 2.0, 1, nb_partitions, rank) for rank in range(nb_partitions)]
    owned = np.concatenate([mesh.locally_owned_cells for mesh in meshes])
    assert np.array_equal(np.sort(owned), np.arange(meshes[0].nb_cells))

    for mesh in meshes:
        ghosts = mesh.ghost_cells
        assert ghosts.size > 0
        assert np.all(mesh.cell_owner[ghosts] != mesh.rank)
        # every ghost shares a vertex with an owned cell
        owned_vertices = set(mesh.cells[mesh.locally_owned_cells].ravel().tolist())
        for cell in ghosts:
            assert owned_vertices & set(mesh.cells[cell].tolist())


def test_serial_mesh_has_no_ghosts(serial_context):
    mesh = build_mesh(serial_context, 1.0, 2.0, 1)
    assert mesh.ghost_cells.size == 0
    assert mesh.locally_owned_cells.size == mesh.nb_cells


def test_build_mesh_rejects_3d(serial_context):
    with pytest.raises(UnsupportedDimensionError):
        build_mesh(serial_context, 1.0, 2.0, 1, dim=3)
