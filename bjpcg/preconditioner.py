"""
Host-side construction of the Block-Jacobi preconditioner.

The diagonal blocks of A are gathered into dense MAX_BLOCK x MAX_BLOCK
arrays, factored as A_bb = L U without pivoting (Doolittle, unit diagonal
on L), and packed one block after another, row-major, LU_STRIDE floats per
block. A zero pivot is not detected here: it turns into inf/nan that the
solver's finiteness check reports later.
"""
import logging
from dataclasses import dataclass
from typing import Tuple

import numpy as np
import torch

from .types import LU_STRIDE, MAX_BLOCK, BlockPartition, CSRMatrix

logger = logging.getLogger(__name__)


@dataclass
class BlockJacobiFactors:
    """
    Packed factors ready for upload.

    Parameters:
    - lu_blocks: [num_blocks * LU_STRIDE] float32, row-major per block
    - block_starts: [num_blocks + 1] int32
    - n: matrix dimension
    """

    lu_blocks: np.ndarray
    block_starts: np.ndarray
    n: int

    @property
    def num_blocks(self) -> int:
        return self.block_starts.shape[0] - 1

    def block(self, b: int) -> np.ndarray:
        """View of block b as a MAX_BLOCK x MAX_BLOCK array"""
        return self.lu_blocks[b * LU_STRIDE : (b + 1) * LU_STRIDE].reshape(
            MAX_BLOCK, MAX_BLOCK
        )

    def to_device(self, device) -> Tuple[torch.Tensor, torch.Tensor]:
        lu_blocks = torch.as_tensor(self.lu_blocks, dtype=torch.float32, device=device)
        block_starts = torch.as_tensor(
            self.block_starts, dtype=torch.int32, device=device
        )
        return lu_blocks, block_starts


def gather_diagonal_blocks(A: CSRMatrix, partition: BlockPartition) -> np.ndarray:
    """
    Copy the diagonal blocks of A into a dense [num_blocks, MAX_BLOCK, MAX_BLOCK] array.

    Entries of A outside every diagonal block are dropped. The unused tail
    of a short block is filled with the identity so it factors trivially.
    """
    starts = partition.block_starts
    sizes = partition.sizes()
    num_blocks = partition.num_blocks

    blocks = np.zeros((num_blocks, MAX_BLOCK, MAX_BLOCK), dtype=np.float64)
    tail = np.arange(MAX_BLOCK)[None, :] >= sizes[:, None]
    blocks[:, np.arange(MAX_BLOCK), np.arange(MAX_BLOCK)] = tail

    rows = np.repeat(np.arange(A.n), np.diff(A.row_ptr))
    block_of = np.repeat(np.arange(num_blocks), sizes)
    row_block = block_of[rows]
    col_block = block_of[A.col_indices]
    keep = row_block == col_block

    row_block = row_block[keep]
    local_row = rows[keep] - starts[row_block]
    local_col = A.col_indices[keep] - starts[row_block]
    # Duplicate entries add up, as in scipy
    np.add.at(blocks, (row_block, local_row, local_col), A.values[keep])
    return blocks


def lu_factor_blocks(blocks: np.ndarray) -> np.ndarray:
    """
    Unpivoted Doolittle LU of a stack of square blocks, computed row by row.

    For row i, L(i, j) for j < i is (A(i, j) - L(i, :j) U(:j, j)) / U(j, j),
    then U(i, j) for j >= i is A(i, j) - L(i, :i) U(:i, j). Factors are
    returned in one array: L below the diagonal, U on and above it.
    """
    lu = np.array(blocks, dtype=np.float64)
    size = lu.shape[-1]
    with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
        for i in range(size):
            for j in range(i):
                dot = np.einsum("bk,bk->b", lu[:, i, :j], lu[:, :j, j])
                lu[:, i, j] = (lu[:, i, j] - dot) / lu[:, j, j]
            for j in range(i, size):
                dot = np.einsum("bk,bk->b", lu[:, i, :i], lu[:, :i, j])
                lu[:, i, j] -= dot
    return lu


def lu_factor_unpivoted(block) -> np.ndarray:
    """Factor a single m x m block, m <= MAX_BLOCK"""
    block = np.asarray(block, dtype=np.float64)
    return lu_factor_blocks(block[None])[0]


def pack_lu_blocks(lu: np.ndarray) -> np.ndarray:
    """Flatten [num_blocks, MAX_BLOCK, MAX_BLOCK] factors into the device layout"""
    if lu.shape[1:] != (MAX_BLOCK, MAX_BLOCK):
        raise ValueError(
            f"expected blocks of shape {(MAX_BLOCK, MAX_BLOCK)}, got {lu.shape[1:]}"
        )
    return np.ascontiguousarray(lu, dtype=np.float32).reshape(-1)


def build_block_jacobi(A: CSRMatrix, partition: BlockPartition) -> BlockJacobiFactors:
    """
    Build the packed Block-Jacobi factors of A.

    Parameters:
    - A: validated CSR matrix
    - partition: validated block partition of A's rows

    Returns:
    - BlockJacobiFactors with lu_blocks of length num_blocks * LU_STRIDE
    """
    blocks = gather_diagonal_blocks(A, partition)
    lu = lu_factor_blocks(blocks)

    if logger.isEnabledFor(logging.DEBUG) and partition.num_blocks:
        pivots = np.abs(np.diagonal(lu, axis1=1, axis2=2))
        logger.debug(
            "factored %d diagonal blocks, smallest pivot %.3e",
            partition.num_blocks,
            float(np.nanmin(pivots)) if not np.all(np.isnan(pivots)) else float("nan"),
        )

    return BlockJacobiFactors(
        lu_blocks=pack_lu_blocks(lu),
        block_starts=np.ascontiguousarray(partition.block_starts, dtype=np.int32),
        n=A.n,
    )
