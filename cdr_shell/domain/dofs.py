"""
Global numbering of the degrees of freedom and its partition over the processes.

A DOF shared by cells of several processes belongs to the lowest of their
ranks. Each rank owns one contiguous range of global indices, ranks in
increasing order.
"""

import logging

import numpy as np

from cdr_shell.domain.fe import FE_Q, map_points
from cdr_shell.domain.mesh import Mesh
from cdr_shell.errors import CommunicationError
from cdr_shell.runtime.context import RunContext


logger = logging.getLogger(__name__)


class DoFHandler:
    """
    Numbering of the DOFs of one element type on one mesh.

    Attributes
    ----------
    cell_dofs : np.ndarray
        (nb_cells, dofs_per_cell) global indices in local DOF order.
    owned_offsets : np.ndarray
        (nb_processes + 1,) rank r owns [owned_offsets[r], owned_offsets[r+1]).
    support_points : np.ndarray
        (n_dofs, 2) location of the node of every DOF.
    """

    def __init__(self, mesh: Mesh, fe: FE_Q, cell_dofs: np.ndarray, owned_offsets: np.ndarray,
                 support_points: np.ndarray, boundary_dofs: np.ndarray):
        self.mesh = mesh
        self.fe = fe
        self.cell_dofs = cell_dofs
        self.owned_offsets = owned_offsets
        self.support_points = support_points
        self.boundary_dofs = boundary_dofs

        owned_cells = mesh.locally_owned_cells
        self.locally_relevant = np.unique(cell_dofs[owned_cells])
        self.ghost_dofs = np.setdiff1d(self.locally_relevant, self.locally_owned, assume_unique=True)

    @property
    def rank(self):
        return self.mesh.rank

    @property
    def n_dofs(self) -> int:
        return int(self.owned_offsets[-1])

    @property
    def owned_range(self) -> tuple[int, int]:
        return int(self.owned_offsets[self.rank]), int(self.owned_offsets[self.rank + 1])

    @property
    def n_locally_owned(self) -> int:
        [begin, end] = self.owned_range
        return end - begin

    @property
    def n_locally_owned_per_process(self) -> np.ndarray:
        return np.diff(self.owned_offsets)

    @property
    def locally_owned(self) -> np.ndarray:
        return np.arange(*self.owned_range)

    def owner_of(self, dofs: np.ndarray) -> np.ndarray:
        return np.searchsorted(self.owned_offsets, dofs, side="right") - 1

    def is_owned(self, dofs: np.ndarray) -> np.ndarray:
        [begin, end] = self.owned_range
        return (dofs >= begin) & (dofs < end)


def _entity_dofs(mesh: Mesh, fe: FE_Q) -> np.ndarray:
    """
    Provisional global indices: vertex DOFs, then edge DOFs, then cell interior DOFs.

    Interior nodes of an edge are counted from its smaller vertex id, so the two
    cells sharing the edge agree on them.
    """
    nb_cells = mesh.nb_cells
    per_edge = fe.dofs_per_edge
    per_interior = fe.dofs_per_interior
    edge_base = mesh.nb_vertices
    interior_base = edge_base + mesh.nb_edges * per_edge

    parts = [mesh.cells]
    if per_edge:
        for k in range(4):
            first = mesh.cells[:, k]
            second = mesh.cells[:, (k + 1) % 4]
            forward = first < second
            steps = np.arange(per_edge)
            along = np.where(forward[:, np.newaxis], steps, per_edge - 1 - steps)
            parts.append(edge_base + mesh.cell_edges[:, k, np.newaxis] * per_edge + along)
    if per_interior:
        parts.append(interior_base + np.arange(nb_cells)[:, np.newaxis] * per_interior + np.arange(per_interior))
    return np.concatenate(parts, axis=1)


def number_dofs(mesh: Mesh, fe: FE_Q) -> DoFHandler:
    """
    Number the DOFs rank by rank.

    The mesh is replicated, so every process derives the same numbering
    without communication.
    """
    raw = _entity_dofs(mesh, fe)
    nb_raw = mesh.nb_vertices + mesh.nb_edges * fe.dofs_per_edge + mesh.nb_cells * fe.dofs_per_interior

    # owner = lowest rank among the cells sharing the DOF
    owner = np.full(nb_raw, np.iinfo(np.int64).max, dtype=np.int64)
    np.minimum.at(owner, raw, np.broadcast_to(mesh.cell_owner[:, np.newaxis], raw.shape))

    order = np.lexsort((np.arange(nb_raw), owner))
    renumber = np.empty(nb_raw, dtype=np.int64)
    renumber[order] = np.arange(nb_raw)
    cell_dofs = renumber[raw]

    counts = np.bincount(owner, minlength=mesh.nb_partitions)
    owned_offsets = np.concatenate([[0], np.cumsum(counts)])

    support_points = np.empty((nb_raw, 2))
    support_points[cell_dofs] = map_points(mesh.cell_vertices(), fe.unit_support_points)

    boundary_edges = mesh.boundary_edges
    on_boundary = np.zeros(nb_raw, dtype=bool)
    [cells_with, local_edge] = np.nonzero(np.isin(mesh.cell_edges, boundary_edges))
    for [cell, k] in zip(cells_with, local_edge):
        on_boundary[cell_dofs[cell, _edge_local_dofs(fe, k)]] = True
    boundary_dofs = np.flatnonzero(on_boundary)

    return DoFHandler(mesh, fe, cell_dofs, owned_offsets, support_points, boundary_dofs)


def distribute_dofs(context: RunContext, mesh: Mesh, fe: FE_Q) -> DoFHandler:
    """Number the DOFs and agree on the owned counts with all processes. Collective."""
    dofs = number_dofs(mesh, fe)
    gathered = context.allgather(dofs.n_locally_owned)
    expected = dofs.n_locally_owned_per_process.tolist()
    if list(gathered) != expected:
        raise CommunicationError(f"Owned DOF counts {gathered} differ from the local numbering {expected}.")
    logger.info(f"Number of degrees of freedom: {dofs.n_dofs}")
    logger.debug(f"Rank {context.rank} owns {dofs.n_locally_owned} DOFs and reads {dofs.ghost_dofs.size} ghosts.")
    return dofs


def _edge_local_dofs(fe: FE_Q, k: int) -> np.ndarray:
    """Local indices of the DOFs on edge k, its two vertices included."""
    per_edge = fe.dofs_per_edge
    interior = 4 + k * per_edge + np.arange(per_edge)
    return np.concatenate([[k, (k + 1) % 4], interior]).astype(int)
