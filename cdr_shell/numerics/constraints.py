"""
Affine constraints on DOFs: u_i = sum_k a_ik u_k + g_i.

They cover the continuity of hanging nodes and Dirichlet boundary values, and
are eliminated from the linear system during assembly (condensation).
"""

import logging
import typing

import numpy as np

from cdr_shell.domain.dofs import DoFHandler


logger = logging.getLogger(__name__)


class ConstraintLine(typing.NamedTuple):
    entries: tuple[tuple[int, float], ...]
    inhomogeneity: float


class AffineConstraints:
    """
    A map from constrained DOF to its masters and inhomogeneity.

    Lines are added while the set is open; `close` resolves chains (a master
    that is itself constrained) and freezes the set. Condensation and
    `distribute` require a closed set.
    """

    def __init__(self, locally_relevant: np.ndarray | None = None):
        self._lines: dict[int, ConstraintLine] = {}
        self._closed = False
        self.locally_relevant = locally_relevant

    def __len__(self):
        return len(self._lines)

    def __contains__(self, dof: int):
        return int(dof) in self._lines

    @property
    def is_closed(self):
        return self._closed

    def lines(self) -> dict[int, ConstraintLine]:
        return dict(self._lines)

    def add_line(self, dof: int, entries: typing.Iterable[tuple[int, float]] = (), inhomogeneity: float = 0.0):
        if self._closed:
            raise RuntimeError("Cannot add constraints to a closed set.")
        dof = int(dof)
        # the first line for a DOF wins, as for Dirichlet values on shared vertices
        if dof in self._lines:
            return
        self._lines[dof] = ConstraintLine(tuple((int(m), float(a)) for [m, a] in entries), float(inhomogeneity))

    def close(self):
        """Resolve chains of constraints. Closing a closed set changes nothing."""
        if self._closed:
            return
        resolved: dict[int, ConstraintLine] = {}

        def resolve(dof: int, visiting: frozenset) -> ConstraintLine:
            if dof in resolved:
                return resolved[dof]
            if dof in visiting:
                raise ValueError(f"Cyclic constraint involving DOF {dof}.")
            line = self._lines[dof]
            masters: dict[int, float] = {}
            inhomogeneity = line.inhomogeneity
            for [master, coeff] in line.entries:
                if master in self._lines:
                    sub = resolve(master, visiting | {dof})
                    inhomogeneity += coeff * sub.inhomogeneity
                    for [m, a] in sub.entries:
                        masters[m] = masters.get(m, 0.0) + coeff * a
                else:
                    masters[master] = masters.get(master, 0.0) + coeff
            resolved[dof] = ConstraintLine(tuple(sorted(masters.items())), inhomogeneity)
            return resolved[dof]

        for dof in sorted(self._lines):
            resolve(dof, frozenset())
        self._lines = dict(sorted(resolved.items()))
        self._closed = True
        logger.debug(f"Closed {len(self._lines)} constraints.")

    def _require_closed(self):
        if not self._closed:
            raise RuntimeError("Constraints must be closed before use.")

    def is_constrained(self, dofs: np.ndarray) -> np.ndarray:
        dofs = np.asarray(dofs)
        keys = np.fromiter(self._lines.keys(), dtype=np.int64, count=len(self._lines))
        return np.isin(dofs, keys)

    def inhomogeneities(self, dofs: np.ndarray) -> np.ndarray:
        dofs = np.asarray(dofs)
        flat = np.array([self._lines[d].inhomogeneity if d in self._lines else 0.0 for d in dofs.ravel().tolist()])
        return flat.reshape(dofs.shape)

    @property
    def has_inhomogeneities(self) -> bool:
        return any(line.inhomogeneity != 0.0 for line in self._lines.values())

    @property
    def has_masters(self) -> bool:
        return any(line.entries for line in self._lines.values())

    def distribute(self, vector):
        """
        Set constrained entries of a ghosted vector from their masters.

        Only owned entries are written; the caller refreshes the ghosts afterwards.
        """
        self._require_closed()
        constrained = np.fromiter(self._lines.keys(), dtype=np.int64, count=len(self._lines))
        owned = constrained[vector.dofs.is_owned(constrained)]
        values = np.empty(owned.size)
        for [k, dof] in enumerate(owned.tolist()):
            line = self._lines[dof]
            values[k] = line.inhomogeneity + sum(coeff * vector[master] for [master, coeff] in line.entries)
        vector[owned] = values

    def condense(self, cell_dofs: np.ndarray, cell_matrices: np.ndarray | None = None,
                 cell_vectors: np.ndarray | None = None):
        """
        Eliminate constrained DOFs from cell contributions.

        Constrained rows and columns are moved onto their masters. A constrained
        DOF keeps a diagonal entry equal to the mean absolute diagonal of the
        cell matrix, and when the matrix is known its vector entry becomes
        diagonal times inhomogeneity, so the solve reproduces the prescribed value.
        Without a matrix, vector entries of constrained DOFs are dropped.

        Returns (rows, cols, values) matrix triplets and (indices, values) vector pairs.
        """
        self._require_closed()
        mask = self.is_constrained(cell_dofs)
        with_masters = np.zeros(cell_dofs.shape[0], dtype=bool)
        if self.has_masters:
            for [c, row] in enumerate(cell_dofs):
                with_masters[c] = any(self._lines[d].entries for d in row[mask[c]])

        matrix_triplets = None
        vector_pairs = None
        simple = ~with_masters
        if cell_matrices is not None:
            matrix_triplets = self._condense_simple_matrices(cell_dofs[simple], cell_matrices[simple], mask[simple])
        if cell_vectors is not None:
            vector_pairs = self._condense_simple_vectors(
                cell_dofs[simple], None if cell_matrices is None else cell_matrices[simple],
                cell_vectors[simple], mask[simple])

        for c in np.flatnonzero(with_masters):
            [mt, vp] = self._condense_general(
                cell_dofs[c], None if cell_matrices is None else cell_matrices[c],
                None if cell_vectors is None else cell_vectors[c], mask[c])
            if mt is not None:
                matrix_triplets = tuple(np.concatenate([a, b]) for [a, b] in zip(matrix_triplets, mt))
            if vp is not None:
                vector_pairs = tuple(np.concatenate([a, b]) for [a, b] in zip(vector_pairs, vp))
        return matrix_triplets, vector_pairs

    @staticmethod
    def _mean_diagonal(matrices: np.ndarray) -> np.ndarray:
        return np.mean(np.abs(np.diagonal(matrices, axis1=-2, axis2=-1)), axis=-1)

    def _condense_simple_matrices(self, cell_dofs, matrices, mask):
        n = cell_dofs.shape[1]
        values = matrices.copy()
        diag = np.broadcast_to(self._mean_diagonal(matrices)[:, np.newaxis], mask.shape)
        [c, i] = np.nonzero(mask)
        values[c, i, i] = diag[c, i]
        # drop couplings of constrained DOFs, except with themselves
        keep = ~(mask[:, :, np.newaxis] | mask[:, np.newaxis, :])
        keep[c, i, i] = True
        rows = np.repeat(cell_dofs, n, axis=1).reshape(keep.shape)
        cols = np.tile(cell_dofs, (1, n)).reshape(keep.shape)
        return rows[keep], cols[keep], values[keep]

    def _condense_simple_vectors(self, cell_dofs, matrices, vectors, mask):
        values = vectors.copy()
        if matrices is not None and self.has_inhomogeneities:
            g = np.where(mask, self.inhomogeneities(cell_dofs), 0.0)
            values -= np.einsum("cij, cj -> ci", matrices, g)
            diag = np.broadcast_to(self._mean_diagonal(matrices)[:, np.newaxis], mask.shape)
            values[mask] = diag[mask] * g[mask]
        else:
            values[mask] = 0.0
        return cell_dofs.ravel(), values.ravel()

    def _condense_general(self, dofs, matrix, vector, mask):
        # expansion: local DOF i contributes with weight C[k, i] to target k
        targets: list[int] = []
        position: dict[int, int] = {}
        weights: list[tuple[int, int, float]] = []
        for [i, dof] in enumerate(dofs):
            pairs = self._lines[dof].entries if mask[i] else ((int(dof), 1.0),)
            for [target, coeff] in pairs:
                if target not in position:
                    position[target] = len(targets)
                    targets.append(target)
                weights.append((position[target], i, coeff))
        C = np.zeros((len(targets), dofs.size))
        for [k, i, coeff] in weights:
            C[k, i] += coeff
        targets = np.array(targets, dtype=np.int64)
        g = np.where(mask, self.inhomogeneities(dofs), 0.0)
        constrained = dofs[mask]

        matrix_triplets = None
        vector_pairs = None
        if matrix is not None:
            condensed = C @ matrix @ C.T
            mean_diag = self._mean_diagonal(matrix)
            rows = np.concatenate([np.repeat(targets, targets.size), constrained])
            cols = np.concatenate([np.tile(targets, targets.size), constrained])
            values = np.concatenate([condensed.ravel(), np.full(constrained.size, mean_diag)])
            matrix_triplets = (rows, cols, values)
        if vector is not None:
            if matrix is not None:
                reduced = C @ (vector - matrix @ g)
                extra = self._mean_diagonal(matrix) * g[mask]
            else:
                reduced = C @ vector
                extra = np.zeros(constrained.size)
            vector_pairs = (np.concatenate([targets, constrained]), np.concatenate([reduced, extra]))
        return matrix_triplets, vector_pairs


def make_hanging_node_constraints(dofs: DoFHandler, constraints: AffineConstraints):
    """
    Continuity constraints where an edge is split on one side only.

    An edge (a, b) with a single adjacent cell whose end points are also joined
    through a vertex m by two shorter single-cell edges is the unsplit side of
    a refined face, and m hangs on it: u_m = (u_a + u_b) / 2. Uniformly refined
    meshes have none.
    """
    mesh = dofs.mesh
    counts = np.bincount(mesh.cell_edges.ravel(), minlength=mesh.nb_edges)
    single = mesh.edges[counts == 1]
    neighbours: dict[int, set[int]] = {}
    for [a, b] in single.tolist():
        neighbours.setdefault(a, set()).add(b)
        neighbours.setdefault(b, set()).add(a)

    def length(u, v):
        return np.linalg.norm(mesh.vertices[u] - mesh.vertices[v])

    nb_found = 0
    for [a, b] in single.tolist():
        for m in sorted(neighbours[a] & neighbours[b]):
            # the unsplit side is the longest edge of the triangle
            if not length(a, b) > max(length(a, m), length(m, b)):
                continue
            if dofs.fe.degree > 1:
                raise NotImplementedError("Hanging nodes are only supported for linear elements.")
            constraints.add_line(_vertex_dof(dofs, m), [(_vertex_dof(dofs, a), 0.5), (_vertex_dof(dofs, b), 0.5)])
            nb_found += 1
    logger.debug(f"Found {nb_found} hanging nodes.")


def _vertex_dof(dofs: DoFHandler, vertex: int) -> int:
    [cell, local] = np.argwhere(dofs.mesh.cells == vertex)[0]
    return int(dofs.cell_dofs[cell, local])


def interpolate_boundary_values(dofs: DoFHandler, constraints: AffineConstraints,
                                boundary_function: typing.Callable[[np.ndarray], np.ndarray] | None = None):
    """
    Dirichlet constraints on every boundary DOF relevant to this process.

    `boundary_function` maps points (n, 2) to values (n,); the default is zero.
    """
    boundary = np.intersect1d(dofs.boundary_dofs, dofs.locally_relevant, assume_unique=True)
    if boundary_function is None:
        values = np.zeros(boundary.size)
    else:
        values = np.asarray(boundary_function(dofs.support_points[boundary]), dtype=float)
    for [dof, value] in zip(boundary.tolist(), values.tolist()):
        constraints.add_line(dof, (), value)
    logger.debug(f"Constrained {boundary.size} boundary DOFs.")
