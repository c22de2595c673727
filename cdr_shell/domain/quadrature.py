import numpy as np


class Quadrature:
    """Quadrature on the reference square [0, 1]^2 for numerical approximating an integral."""

    nb_quad_pts: int
    quad_pt_coords: np.ndarray
    quad_pt_weights: np.ndarray

    def __init__(self, quad_pt_coords: np.ndarray, quad_pt_weights: np.ndarray):
        assert quad_pt_coords.shape[0] == quad_pt_weights.size
        assert np.isclose(quad_pt_weights.sum(), 1.)
        self.quad_pt_coords = quad_pt_coords
        self.quad_pt_weights = quad_pt_weights

    @property
    def nb_quad_pts(self):
        return np.size(self.quad_pt_weights)


def gauss_quadrature(nb_pts_per_axis: int) -> Quadrature:
    """Tensor product Gauss-Legendre rule, exact for polynomials of degree 2n-1 per axis."""
    if nb_pts_per_axis < 1:
        raise ValueError(f"Need at least one point per axis, got {nb_pts_per_axis}.")
    [pts, wts] = np.polynomial.legendre.leggauss(nb_pts_per_axis)
    # map from [-1, 1] to [0, 1]
    pts = 0.5 * (pts + 1.0)
    wts = 0.5 * wts
    [x1, x2] = np.meshgrid(pts, pts, indexing="ij")
    coords = np.stack([x1.ravel(), x2.ravel()], axis=-1)
    weights = np.outer(wts, wts).ravel()
    return Quadrature(coords, weights)


def quadrature_for_degree(fe_degree: int) -> Quadrature:
    """The rule used for the CDR forms, enough points for products with the convection field."""
    return gauss_quadrature(3 * (2 + fe_degree) // 2)
