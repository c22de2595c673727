"""
Constraints, sparsity, distributed containers and the assembly of the CDR system.
"""

from .constraints import AffineConstraints, interpolate_boundary_values, make_hanging_node_constraints
from .sparsity import make_sparsity_pattern, distribute_sparsity_pattern
from .distributed import GhostExchange, GhostedVector, DistributedVector, DistributedMatrix
from .assembly import assemble_operator, assemble_rhs
