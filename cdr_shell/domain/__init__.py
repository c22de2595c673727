"""
Geometry and discretization of the shell: mesh, finite element, quadrature and DOFs.
"""

from .mesh import Mesh, PolarManifold, hyper_shell, refine_global, partition_cells, make_mesh, build_mesh
from .fe import FE_Q, FEValues
from .quadrature import Quadrature, gauss_quadrature, quadrature_for_degree
from .dofs import DoFHandler, number_dofs, distribute_dofs
