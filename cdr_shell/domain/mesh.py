"""
The partitioned mesh of the annulus.

Every process holds the geometry of the whole (uniformly refined) mesh, but it
only computes on the cells it owns. The neighbouring cells it needs to read are
its ghost layer.
"""

import dataclasses as dc
import logging
import math

import numpy as np

from cdr_shell.errors import ConfigurationError, UnsupportedDimensionError
from cdr_shell.runtime.context import RunContext


logger = logging.getLogger(__name__)


class PolarManifold:
    """Curved geometry of a shell: new points interpolate radius and direction separately."""

    def __init__(self, center=(0.0, 0.0)):
        self.center = np.asarray(center, dtype=float)

    def get_intermediate_point(self, points: np.ndarray, weights: np.ndarray) -> np.ndarray:
        """
        Weighted average of `points` (shape (..., nb_pts, 2)) along the manifold.

        The radius is averaged linearly, the direction is the normalized weighted
        sum of the unit directions.
        """
        rel = points - self.center
        radii = np.linalg.norm(rel, axis=-1)
        directions = rel / radii[..., np.newaxis]
        radius = np.einsum("...p, p -> ...", radii, weights)
        direction = np.einsum("...pd, p -> ...d", directions, weights)
        direction /= np.linalg.norm(direction, axis=-1)[..., np.newaxis]
        return self.center + radius[..., np.newaxis] * direction


@dc.dataclass(frozen=True, eq=False)
class Mesh:
    """
    Quadrilateral cells, counter-clockwise, with their edges and the cell partition.

    - vertices: (nb_vertices, 2)
    - cells: (nb_cells, 4) vertex ids
    - edges: (nb_edges, 2) vertex ids, smaller id first
    - cell_edges: (nb_cells, 4) edge ids, edge k joins local vertices k and k+1
    - cell_owner: (nb_cells,) rank owning each cell
    """

    vertices: np.ndarray
    cells: np.ndarray
    edges: np.ndarray
    cell_edges: np.ndarray
    cell_owner: np.ndarray
    rank: int
    manifold: PolarManifold
    refinement_level: int

    @property
    def nb_cells(self):
        return self.cells.shape[0]

    @property
    def nb_vertices(self):
        return self.vertices.shape[0]

    @property
    def nb_edges(self):
        return self.edges.shape[0]

    @property
    def nb_partitions(self):
        return int(self.cell_owner.max()) + 1

    @property
    def boundary_edges(self) -> np.ndarray:
        """Edges with one adjacent cell. All of them carry boundary id 0."""
        counts = np.bincount(self.cell_edges.ravel(), minlength=self.nb_edges)
        return np.flatnonzero(counts == 1)

    @property
    def locally_owned_cells(self) -> np.ndarray:
        return np.flatnonzero(self.cell_owner == self.rank)

    @property
    def ghost_cells(self) -> np.ndarray:
        """Cells owned elsewhere that share at least one vertex with an owned cell."""
        owned = self.cell_owner == self.rank
        touched = np.zeros(self.nb_vertices, dtype=bool)
        touched[self.cells[owned].ravel()] = True
        adjacent = np.any(touched[self.cells], axis=1)
        return np.flatnonzero(adjacent & ~owned)

    def cell_vertices(self, cells: np.ndarray | None = None) -> np.ndarray:
        if cells is None:
            return self.vertices[self.cells]
        return self.vertices[self.cells[cells]]


def hyper_shell(inner_radius: float, outer_radius: float, nb_cells: int = 0):
    """
    Coarse annulus made of a single ring of quadrilaterals.

    Returns vertex coordinates and cells. With nb_cells=0 the number of cells is
    chosen such that they are roughly square.
    """
    if not 0 < inner_radius < outer_radius:
        raise ConfigurationError(f"Radii must satisfy 0 < inner < outer, got {inner_radius} and {outer_radius}.")
    if nb_cells == 0:
        nb_cells = math.ceil(math.pi * (outer_radius + inner_radius) / (outer_radius - inner_radius))
    angles = 2 * np.pi * np.arange(nb_cells) / nb_cells
    ring = np.stack([np.cos(angles), np.sin(angles)], axis=-1)
    vertices = np.concatenate([inner_radius * ring, outer_radius * ring])
    i = np.arange(nb_cells)
    j = (i + 1) % nb_cells
    # inner -> outer along the radius, then back at the next angle
    cells = np.stack([i, i + nb_cells, j + nb_cells, j], axis=-1)
    return vertices, cells


def _collect_edges(cells: np.ndarray):
    local = np.stack([cells, np.roll(cells, -1, axis=1)], axis=-1).reshape(-1, 2)
    [edges, inverse] = np.unique(np.sort(local, axis=1), axis=0, return_inverse=True)
    return edges, inverse.reshape(cells.shape)


def refine_global(vertices: np.ndarray, cells: np.ndarray, manifold: PolarManifold):
    """
    Split every cell into four children, placing new vertices on the manifold.

    Children of a cell are consecutive and ordered like the vertices of the
    parent, so repeated refinement yields a space-filling ordering.
    """
    [edges, cell_edges] = _collect_edges(cells)
    nb_vertices = vertices.shape[0]
    nb_edges = edges.shape[0]
    half = np.array([0.5, 0.5])
    quarter = np.full(4, 0.25)
    edge_midpoints = manifold.get_intermediate_point(vertices[edges], half)
    cell_centers = manifold.get_intermediate_point(vertices[cells], quarter)
    new_vertices = np.concatenate([vertices, edge_midpoints, cell_centers])

    m = nb_vertices + cell_edges
    c = nb_vertices + nb_edges + np.arange(cells.shape[0])
    [v0, v1, v2, v3] = cells.T
    [m01, m12, m23, m30] = m.T
    children = np.stack([
        np.stack([v0, m01, c, m30], axis=-1),
        np.stack([m01, v1, m12, c], axis=-1),
        np.stack([c, m12, v2, m23], axis=-1),
        np.stack([m30, c, m23, v3], axis=-1),
    ], axis=1)
    return new_vertices, children.reshape(-1, 4)


def partition_cells(nb_cells: int, nb_partitions: int) -> np.ndarray:
    """Cut the ordered cells into contiguous chunks of (almost) equal size."""
    if nb_cells < nb_partitions:
        raise ConfigurationError(f"Cannot distribute {nb_cells} cells over {nb_partitions} processes.")
    bounds = (np.arange(nb_partitions + 1) * nb_cells) // nb_partitions
    return np.repeat(np.arange(nb_partitions), np.diff(bounds))


def make_mesh(inner_radius: float, outer_radius: float, refinement_level: int, nb_partitions: int = 1,
              rank: int = 0) -> Mesh:
    """The refined shell, cut into `nb_partitions` parts, as seen from `rank`."""
    if refinement_level < 0:
        raise ConfigurationError(f"Refinement level must be non-negative, got {refinement_level}.")

    manifold = PolarManifold()
    [vertices, cells] = hyper_shell(inner_radius, outer_radius)
    # the whole shell is polar, so the manifold applies to every cell and face
    for _ in range(refinement_level):
        [vertices, cells] = refine_global(vertices, cells, manifold)
    [edges, cell_edges] = _collect_edges(cells)
    cell_owner = partition_cells(cells.shape[0], nb_partitions)

    for array in (vertices, cells, edges, cell_edges, cell_owner):
        array.flags.writeable = False
    return Mesh(vertices, cells, edges, cell_edges, cell_owner, rank, manifold, refinement_level)


def build_mesh(context: RunContext, inner_radius: float, outer_radius: float, refinement_level: int,
               dim: int = 2) -> Mesh:
    """Create, refine and partition the shell over all processes of the context."""
    if dim != 2:
        raise UnsupportedDimensionError(f"Only 2D shells are supported, got dim={dim}.")
    mesh = make_mesh(inner_radius, outer_radius, refinement_level, context.size, context.rank)
    logger.info(f"Mesh: {mesh.nb_cells} cells, {mesh.nb_vertices} vertices on {context.size} process(es).")
    logger.debug(f"Rank {context.rank} owns {mesh.locally_owned_cells.size} cells "
                 f"and sees {mesh.ghost_cells.size} ghost cells.")
    return mesh
