"""
Row-partitioned matrices and vectors.

Values are added locally, including to rows owned by other processes; `compress`
ships the foreign contributions to their owners and sums them there. Ghosted
vectors hold owned plus ghost values and refresh the ghosts on request.
"""

import logging

import numpy as np
import scipy.sparse as sparse

from cdr_shell.domain.dofs import DoFHandler
from cdr_shell.runtime.context import RunContext


logger = logging.getLogger(__name__)


def _split_by_owner(context: RunContext, dofs: DoFHandler, indices: np.ndarray, *columns: np.ndarray):
    owners = dofs.owner_of(indices)
    return [
        tuple(a[owners == r] for a in (indices, *columns)) if r != context.rank else None
        for r in range(context.size)
    ], owners == context.rank


class GhostExchange:
    """Communication plan refreshing the ghost values of a ghosted vector."""

    def __init__(self, context: RunContext, dofs: DoFHandler):
        self.context = context
        self.dofs = dofs
        ghosts = dofs.ghost_dofs
        owners = dofs.owner_of(ghosts)
        requests = [ghosts[owners == r] for r in range(context.size)]
        # ghosts are sorted and ownership ranges are ordered by rank, so the
        # concatenated replies come back in the order of `ghosts`
        self.send_indices = context.alltoall(requests)

    def exchange(self, owned_values: np.ndarray) -> np.ndarray:
        [begin, _] = self.dofs.owned_range
        replies = [owned_values[indices - begin] for indices in self.send_indices]
        received = self.context.alltoall(replies)
        return np.concatenate(received) if received else np.empty(0)


class GhostedVector:
    """
    Values of the locally relevant DOFs. Readable everywhere, written only by the owner.

    Indexing uses global DOF indices.
    """

    def __init__(self, context: RunContext, dofs: DoFHandler, exchange: GhostExchange | None = None):
        self.context = context
        self.dofs = dofs
        self.exchange = exchange if exchange is not None else GhostExchange(context, dofs)
        self.values = np.zeros(dofs.locally_relevant.size)
        [begin, end] = dofs.owned_range
        self._owned = slice(int(np.searchsorted(dofs.locally_relevant, begin)),
                            int(np.searchsorted(dofs.locally_relevant, end)))
        self._ghost_positions = np.searchsorted(dofs.locally_relevant, dofs.ghost_dofs)

    def local_positions(self, indices) -> np.ndarray:
        indices = np.asarray(indices)
        positions = np.searchsorted(self.dofs.locally_relevant, indices)
        if np.any(positions >= self.values.size) or np.any(self.dofs.locally_relevant[
                np.minimum(positions, self.values.size - 1)] != indices):
            raise IndexError("Access to a DOF that is not locally relevant.")
        return positions

    def __getitem__(self, indices):
        return self.values[self.local_positions(indices)]

    def __setitem__(self, indices, value):
        indices = np.asarray(indices)
        if not np.all(self.dofs.is_owned(indices)):
            raise IndexError("Only owned entries of a ghosted vector may be written.")
        self.values[self.local_positions(indices)] = value

    @property
    def owned_values(self) -> np.ndarray:
        return self.values[self._owned]

    def update_ghosts(self):
        """Collective."""
        self.values[self._ghost_positions] = self.exchange.exchange(self.owned_values)

    def assign(self, owned_values: np.ndarray):
        """Copy owned values in and refresh the ghosts. Collective."""
        self.values[self._owned] = owned_values
        self.update_ghosts()

    def l2_norm(self) -> float:
        owned = self.owned_values
        return float(np.sqrt(self.context.sum(float(owned @ owned))))


class DistributedVector:
    """Owned entries of a vector, with a stash for contributions to foreign entries."""

    def __init__(self, context: RunContext, dofs: DoFHandler):
        self.context = context
        self.dofs = dofs
        self.values = np.zeros(dofs.n_locally_owned)
        self._stash: list[tuple[np.ndarray, np.ndarray]] = []

    def add(self, indices: np.ndarray, values: np.ndarray):
        indices = np.asarray(indices).ravel()
        values = np.asarray(values, dtype=float).ravel()
        owned = self.dofs.is_owned(indices)
        [begin, _] = self.dofs.owned_range
        np.add.at(self.values, indices[owned] - begin, values[owned])
        if not np.all(owned):
            self._stash.append((indices[~owned], values[~owned]))

    def compress(self):
        """Sum the stashed contributions on their owners. Collective."""
        if self._stash:
            indices = np.concatenate([i for [i, _] in self._stash])
            values = np.concatenate([v for [_, v] in self._stash])
        else:
            indices = np.empty(0, dtype=np.int64)
            values = np.empty(0)
        [outgoing, _] = _split_by_owner(self.context, self.dofs, indices, values)
        incoming = self.context.alltoall(outgoing)
        [begin, _] = self.dofs.owned_range
        for payload in incoming:
            if payload is not None:
                [i, v] = payload
                np.add.at(self.values, i - begin, v)
        self._stash = []

    def zero(self):
        self.values[:] = 0.0
        self._stash = []

    def l2_norm(self) -> float:
        return float(np.sqrt(self.context.sum(float(self.values @ self.values))))


class DistributedMatrix:
    """
    Owned rows of a sparse matrix with global column indices.

    Entries are added as triplets. After `compress` the rows live in a CSR
    block of shape (n_locally_owned, n_dofs) with the structure of the sparsity
    pattern, and the values are frozen.
    """

    def __init__(self, context: RunContext, dofs: DoFHandler, pattern: sparse.csr_matrix):
        self.context = context
        self.dofs = dofs
        self.pattern = pattern
        self._stash: list[tuple[np.ndarray, np.ndarray, np.ndarray]] = []
        self.local_block: sparse.csr_matrix | None = None

    @property
    def is_compressed(self):
        return self.local_block is not None

    @property
    def shape(self):
        return (self.dofs.n_dofs, self.dofs.n_dofs)

    def add(self, rows: np.ndarray, cols: np.ndarray, values: np.ndarray):
        if self.is_compressed:
            raise RuntimeError("The matrix is compressed, its values are frozen.")
        self._stash.append((np.asarray(rows).ravel(), np.asarray(cols).ravel(),
                            np.asarray(values, dtype=float).ravel()))

    def compress(self):
        """Sum all contributions on the owners of their rows. Collective."""
        if self.is_compressed:
            raise RuntimeError("The matrix is already compressed.")
        if self._stash:
            [rows, cols, values] = (np.concatenate(parts) for parts in zip(*self._stash))
        else:
            [rows, cols, values] = (np.empty(0, dtype=np.int64), np.empty(0, dtype=np.int64), np.empty(0))
        [outgoing, mine] = _split_by_owner(self.context, self.dofs, rows, cols, values)
        incoming = self.context.alltoall(outgoing)
        received = [p for p in incoming if p is not None]
        rows = np.concatenate([rows[mine]] + [r for [r, _, _] in received])
        cols = np.concatenate([cols[mine]] + [c for [_, c, _] in received])
        values = np.concatenate([values[mine]] + [v for [_, _, v] in received])

        [begin, _] = self.dofs.owned_range
        shape = (self.dofs.n_locally_owned, self.dofs.n_dofs)
        # the pattern enters with explicit zeros, so the block keeps its full structure
        structure = self.pattern.tocoo()
        block = sparse.csr_matrix((
            np.concatenate([np.zeros(structure.nnz), values]),
            (np.concatenate([structure.row, rows - begin]), np.concatenate([structure.col, cols])),
        ), shape=shape)
        block.sum_duplicates()
        block.sort_indices()
        if block.nnz != self.pattern.nnz:
            raise ValueError(f"{block.nnz - self.pattern.nnz} assembled entries lie outside the sparsity pattern.")
        self.local_block = block
        self._stash = []
        logger.debug(f"Rank {self.context.rank}: compressed matrix with {block.nnz} stored entries.")

    def diagonal(self) -> np.ndarray:
        [begin, end] = self.dofs.owned_range
        return self.local_block[:, begin:end].diagonal()
