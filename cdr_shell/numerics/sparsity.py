"""
Coupling pattern of the system matrix.

Each process builds the pattern of the rows its cells touch, then hands the
rows it does not own to their owners so that every process knows the full
pattern of its own rows.
"""

import logging

import numpy as np
import scipy.sparse as sparse

from cdr_shell.domain.dofs import DoFHandler
from cdr_shell.numerics.constraints import AffineConstraints
from cdr_shell.runtime.context import RunContext


logger = logging.getLogger(__name__)


def make_sparsity_pattern(dofs: DoFHandler, constraints: AffineConstraints) -> tuple[np.ndarray, np.ndarray]:
    """
    (rows, cols) of all couplings created by the locally owned cells.

    Couplings to constrained DOFs are replaced by couplings to their masters,
    and each constrained DOF keeps its diagonal entry.
    """
    cell_dofs = dofs.cell_dofs[dofs.mesh.locally_owned_cells]
    mask = constraints.is_constrained(cell_dofs)
    n = cell_dofs.shape[1]

    # cells without master constraints couple their unconstrained DOFs directly
    free = np.where(mask, -1, cell_dofs)
    rows = np.repeat(free, n, axis=1).ravel()
    cols = np.tile(free, (1, n)).ravel()
    keep = (rows >= 0) & (cols >= 0)
    row_parts = [rows[keep], cell_dofs[mask]]
    col_parts = [cols[keep], cell_dofs[mask]]

    if constraints.has_masters:
        lines = constraints.lines()
        for [c, i] in zip(*np.nonzero(mask)):
            masters = [m for [m, _] in lines[int(cell_dofs[c, i])].entries]
            if not masters:
                continue
            expanded = set()
            for d in cell_dofs[c].tolist():
                if d in lines:
                    expanded.update(m for [m, _] in lines[d].entries)
                else:
                    expanded.add(d)
            expanded = np.array(sorted(expanded), dtype=np.int64)
            masters = np.array(masters, dtype=np.int64)
            row_parts += [np.repeat(masters, expanded.size), np.repeat(expanded, masters.size)]
            col_parts += [np.tile(expanded, masters.size), np.tile(masters, expanded.size)]

    return np.concatenate(row_parts), np.concatenate(col_parts)


def distribute_sparsity_pattern(context: RunContext, dofs: DoFHandler,
                                pattern: tuple[np.ndarray, np.ndarray]) -> sparse.csr_matrix:
    """
    Send rows owned elsewhere to their owners. Collective.

    Returns the pattern of the owned rows as a CSR matrix of ones with shape
    (n_locally_owned, n_dofs) and global column indices.
    """
    [rows, cols] = pattern
    owners = dofs.owner_of(rows)
    outgoing = [
        (rows[owners == r], cols[owners == r]) if r != context.rank else (rows[:0], cols[:0])
        for r in range(context.size)
    ]
    incoming = context.alltoall(outgoing)

    mine = owners == context.rank
    all_rows = np.concatenate([rows[mine]] + [r for [r, _] in incoming])
    all_cols = np.concatenate([cols[mine]] + [c for [_, c] in incoming])
    [begin, _] = dofs.owned_range
    ones = np.ones(all_rows.size, dtype=np.int8)
    pattern = sparse.coo_matrix((ones, (all_rows - begin, all_cols)), shape=(dofs.n_locally_owned, dofs.n_dofs))
    pattern = pattern.tocsr()
    pattern.sum_duplicates()
    pattern.data[:] = 1
    logger.debug(f"Rank {context.rank}: {pattern.nnz} nonzeros in {dofs.n_locally_owned} owned rows.")
    return pattern
