import warnings
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

import numpy as np
import torch
from scipy.sparse import csr_matrix

from .errors import DimensionMismatch

# Shared by the host-side packing and the Block-Jacobi kernel
MAX_BLOCK = 6
LU_STRIDE = MAX_BLOCK * MAX_BLOCK

# Group width of the elementwise and reduction kernels
GROUP_SIZE = 256


def _as_float32(name: str, array) -> np.ndarray:
    array = np.asarray(array)
    if array.dtype != np.float32:
        if array.dtype.kind == "f" and array.dtype.itemsize > 4:
            warnings.warn(f"{name} is {array.dtype}, casting down to float32")
        array = array.astype(np.float32)
    return np.ascontiguousarray(array)


@dataclass
class DeviceCSR:
    """CSR matrix whose arrays live on the execution device"""

    values: torch.Tensor
    col_indices: torch.Tensor
    row_ptr: torch.Tensor
    n: int

    @property
    def nnz(self) -> int:
        return self.values.shape[0]


@dataclass
class CSRMatrix:
    """
    Square sparse matrix in compressed-row-storage form, held on the host.

    Parameters:
    - values: [nnz] float32 nonzero values
    - col_indices: [nnz] int32 column of each value
    - row_ptr: [n+1] int32 offsets into values for each row
    - shape: (n, n)
    """

    values: np.ndarray
    col_indices: np.ndarray
    row_ptr: np.ndarray
    shape: Tuple[int, int]

    def __post_init__(self):
        self.values = _as_float32("values", self.values)
        self.col_indices = np.ascontiguousarray(self.col_indices, dtype=np.int32)
        self.row_ptr = np.ascontiguousarray(self.row_ptr, dtype=np.int32)
        self.shape = (int(self.shape[0]), int(self.shape[1]))

    @classmethod
    def from_scipy(cls, A: csr_matrix) -> "CSRMatrix":
        A = csr_matrix(A)
        return cls(A.data, A.indices, A.indptr, A.shape)

    @classmethod
    def from_dense(cls, A) -> "CSRMatrix":
        return cls.from_scipy(csr_matrix(np.asarray(A)))

    @property
    def n(self) -> int:
        return self.shape[0]

    @property
    def nnz(self) -> int:
        return self.values.shape[0]

    def validate(self):
        """Raise DimensionMismatch unless the arrays form a valid square CSR matrix"""
        n, m = self.shape
        if n != m:
            raise DimensionMismatch("matrix", self.shape, "(n, n)")
        if self.row_ptr.ndim != 1 or self.row_ptr.shape[0] != n + 1:
            raise DimensionMismatch("row_ptr", self.row_ptr.shape, f"[{n + 1}]")
        if self.values.ndim != 1 or self.col_indices.ndim != 1:
            raise DimensionMismatch("values", self.values.shape, "[nnz]")
        if self.values.shape[0] != self.col_indices.shape[0]:
            raise DimensionMismatch(
                "col_indices", self.col_indices.shape, f"[{self.values.shape[0]}]"
            )
        if self.row_ptr[0] != 0:
            raise DimensionMismatch("row_ptr[0]", int(self.row_ptr[0]), 0)
        if np.any(np.diff(self.row_ptr) < 0):
            raise DimensionMismatch("row_ptr", "decreasing", "non-decreasing")
        if self.row_ptr[-1] != self.nnz:
            raise DimensionMismatch("row_ptr[n]", int(self.row_ptr[-1]), self.nnz)
        if self.nnz and (self.col_indices.min() < 0 or self.col_indices.max() >= n):
            raise DimensionMismatch(
                "col_indices",
                (int(self.col_indices.min()), int(self.col_indices.max())),
                f"values in [0, {n})",
            )

    def to_device(self, device) -> DeviceCSR:
        return DeviceCSR(
            values=torch.as_tensor(self.values, dtype=torch.float32, device=device),
            col_indices=torch.as_tensor(
                self.col_indices, dtype=torch.int32, device=device
            ),
            row_ptr=torch.as_tensor(self.row_ptr, dtype=torch.int32, device=device),
            n=self.n,
        )


@dataclass
class BlockPartition:
    """Boundaries of the diagonal blocks, length num_blocks + 1"""

    block_starts: np.ndarray

    def __post_init__(self):
        self.block_starts = np.ascontiguousarray(self.block_starts, dtype=np.int64)

    @classmethod
    def from_block_size(cls, n: int, block_size: int = MAX_BLOCK) -> "BlockPartition":
        if not 1 <= block_size <= MAX_BLOCK:
            raise ValueError(f"block_size must be in [1, {MAX_BLOCK}], got {block_size}")
        starts = list(range(0, n, block_size)) + [n]
        return cls(np.asarray(starts))

    @property
    def num_blocks(self) -> int:
        return max(self.block_starts.shape[0] - 1, 0)

    def sizes(self) -> np.ndarray:
        return np.diff(self.block_starts)

    def validate(self, n: int):
        starts = self.block_starts
        if starts.ndim != 1 or starts.shape[0] < 1:
            raise DimensionMismatch("block_starts", starts.shape, "[num_blocks+1]")
        if starts[0] != 0:
            raise DimensionMismatch("block_starts[0]", int(starts[0]), 0)
        if starts[-1] != n:
            raise DimensionMismatch("block_starts[-1]", int(starts[-1]), n)
        sizes = self.sizes()
        if np.any(sizes <= 0):
            raise DimensionMismatch(
                "block_starts", "not strictly increasing", "strictly increasing"
            )
        if np.any(sizes > MAX_BLOCK):
            raise DimensionMismatch(
                "block size", int(sizes.max()), f"at most {MAX_BLOCK}"
            )


@dataclass(frozen=True)
class SolverConfig:
    """
    Stopping policy of a solve.

    Iteration stops once the residual norm drops to
    max(abs_tol, rel_tol * initial_residual_norm), or after max_iterations.
    check_finite turns non-finite scalars into SingularBlockError instead of
    returning a poisoned iterate.
    """

    max_iterations: int = 1000
    abs_tol: float = 1e-6
    rel_tol: float = 0.0
    check_finite: bool = True

    def __post_init__(self):
        if self.max_iterations < 0:
            raise ValueError(f"max_iterations must be >= 0, got {self.max_iterations}")
        if self.abs_tol < 0 or self.rel_tol < 0:
            raise ValueError(
                f"tolerances must be >= 0, got abs_tol={self.abs_tol} rel_tol={self.rel_tol}"
            )

    def threshold(self, initial_residual_norm: float) -> float:
        return max(self.abs_tol, self.rel_tol * initial_residual_norm)


@dataclass
class SolveResult:
    x: torch.Tensor
    iterations: int
    residual_norm: float
    converged: bool
    initial_residual_norm: float = 0.0
    residual_history: List[float] = field(default_factory=list)


def as_partition(
    n: int,
    block_starts: Optional[Sequence[int]] = None,
    block_size: int = MAX_BLOCK,
) -> BlockPartition:
    if block_starts is not None:
        return BlockPartition(np.asarray(block_starts))
    return BlockPartition.from_block_size(n, block_size)
