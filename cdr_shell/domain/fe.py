"""
Lagrange finite elements on quadrilaterals and their evaluation on physical cells.

The reference cell is the unit square with vertices numbered counter-clockwise:

    3 ---- 2
    |      |
    |      |
    0 ---- 1

Local degrees of freedom come in the order: vertices 0-3, interior nodes of the
edges (0->1, 1->2, 2->3, 3->0, each walked from its first vertex), then the
cell interior row by row.
"""

import numpy as np


def gauss_lobatto_points(degree: int) -> np.ndarray:
    """Support points in [0, 1]: the end points and the roots of P'_degree."""
    if degree == 1:
        return np.array([0.0, 1.0])
    interior = np.polynomial.legendre.Legendre.basis(degree).deriv().roots()
    return 0.5 * (np.concatenate([[-1.0], np.sort(interior.real), [1.0]]) + 1.0)


def lagrange_basis_1d(nodes: np.ndarray, x: np.ndarray):
    """Values and derivatives of the Lagrange polynomials on `nodes`, shape (nb_nodes, nb_x)."""
    x = np.asarray(x, dtype=float)
    nb_nodes = nodes.size
    values = np.ones((nb_nodes, x.size))
    derivatives = np.zeros((nb_nodes, x.size))
    for i in range(nb_nodes):
        others = [j for j in range(nb_nodes) if j != i]
        for j in others:
            values[i] *= (x - nodes[j]) / (nodes[i] - nodes[j])
        # product rule
        for k in others:
            term = np.full(x.size, 1.0 / (nodes[i] - nodes[k]))
            for j in others:
                if j != k:
                    term *= (x - nodes[j]) / (nodes[i] - nodes[j])
            derivatives[i] += term
    return values, derivatives


class FE_Q:
    """Continuous Lagrange element of the given degree on Gauss-Lobatto support points."""

    def __init__(self, degree: int):
        if degree < 1:
            raise ValueError(f"Element degree must be positive, got {degree}.")
        self.degree = degree
        self.nodes_1d = gauss_lobatto_points(degree)
        self.tensor_indices = self._local_dof_tensor_indices(degree)
        ref = self.nodes_1d[self.tensor_indices]
        self.unit_support_points = ref

    @property
    def dofs_per_vertex(self):
        return 1

    @property
    def dofs_per_edge(self):
        return self.degree - 1

    @property
    def dofs_per_interior(self):
        return (self.degree - 1) ** 2

    @property
    def dofs_per_cell(self):
        return (self.degree + 1) ** 2

    @staticmethod
    def _local_dof_tensor_indices(p: int) -> np.ndarray:
        idx = [(0, 0), (p, 0), (p, p), (0, p)]
        inner = range(1, p)
        idx += [(k, 0) for k in inner]
        idx += [(p, k) for k in inner]
        idx += [(p - k, p) for k in inner]
        idx += [(0, p - k) for k in inner]
        idx += [(i, j) for j in inner for i in inner]
        return np.array(idx, dtype=int)

    def shape_values(self, points: np.ndarray) -> np.ndarray:
        """Shape function values at reference points, shape (nb_points, dofs_per_cell)."""
        [vx, _] = lagrange_basis_1d(self.nodes_1d, points[:, 0])
        [vy, _] = lagrange_basis_1d(self.nodes_1d, points[:, 1])
        [ix, iy] = self.tensor_indices.T
        return (vx[ix] * vy[iy]).T

    def shape_gradients(self, points: np.ndarray) -> np.ndarray:
        """Reference gradients, shape (nb_points, dofs_per_cell, 2)."""
        [vx, dx] = lagrange_basis_1d(self.nodes_1d, points[:, 0])
        [vy, dy] = lagrange_basis_1d(self.nodes_1d, points[:, 1])
        [ix, iy] = self.tensor_indices.T
        return np.stack([(dx[ix] * vy[iy]).T, (vx[ix] * dy[iy]).T], axis=-1)


# bilinear geometry mapping, vertex order as in the reference cell
_q1 = FE_Q(1)


def map_points(cell_vertices: np.ndarray, points: np.ndarray) -> np.ndarray:
    """Reference points to physical points, shape (nb_cells, nb_points, 2)."""
    return np.einsum("qv, cvd -> cqd", _q1.shape_values(points), cell_vertices)


class FEValues:
    """
    Shape functions, their physical gradients and integration weights on a batch of cells.

    `reinit` evaluates everything for all given cells at once. Arrays are indexed
    by (cell, quadrature point, shape function[, component]).
    """

    def __init__(self, fe: FE_Q, quadrature):
        self.fe = fe
        self.quadrature = quadrature
        pts = quadrature.quad_pt_coords
        self.shape_value = fe.shape_values(pts)
        self._ref_gradients = fe.shape_gradients(pts)
        self._q1_values = _q1.shape_values(pts)
        self._q1_gradients = _q1.shape_gradients(pts)

    def reinit(self, cell_vertices: np.ndarray):
        self.quadrature_points = np.einsum("qv, cvd -> cqd", self._q1_values, cell_vertices)
        # jacobian[c, q, i, j] = d x_i / d xi_j
        jacobian = np.einsum("qvj, cvi -> cqij", self._q1_gradients, cell_vertices)
        det = np.linalg.det(jacobian)
        if np.any(det <= 0):
            raise ValueError("Degenerate or inverted cell in the mesh.")
        inverse = np.linalg.inv(jacobian)
        self.JxW = det * self.quadrature.quad_pt_weights
        # physical gradient = J^{-T} reference gradient
        self.shape_grad = np.einsum("cqji, qnj -> cqni", inverse, self._ref_gradients)
        return self
