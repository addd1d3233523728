"""
bjpcg: Block-Jacobi preconditioned conjugate gradient on the GPU

Sparse SPD systems A x = b are solved with Triton kernels for the
per-iteration work (CSR SpMV, multi-pass dot products, AXPY/scale,
Block-Jacobi apply over packed LU factors) driven from a host loop that
reads back only the scalars it branches on.

Usage
-----
>>> import numpy as np
>>> import scipy.sparse as sp
>>> from bjpcg import solve_pcg
>>> A = sp.diags([-1, 2, -1], [-1, 0, 1], shape=(4, 4), format="csr", dtype=np.float32)
>>> result = solve_pcg(A, np.array([1, 0, 0, 1], np.float32), block_size=2)
>>> result.converged, result.iterations
(True, 2)
"""

from .backends import (
    BACKENDS,
    BackendType,
    TorchBackend,
    TritonBackend,
    select_backend,
)
from .device import default_device, device_info, read_scalar
from .errors import (
    BreakdownError,
    DeviceError,
    DimensionMismatch,
    SingularBlockError,
    SolverError,
)
from .preconditioner import (
    BlockJacobiFactors,
    build_block_jacobi,
    gather_diagonal_blocks,
    lu_factor_blocks,
    lu_factor_unpivoted,
    pack_lu_blocks,
)
from .reduction import (
    ReductionPass,
    ReductionWorkspace,
    dot,
    reduce_sum,
    reduction_lengths,
)
from .solver import PCGSolver, solve_pcg
from .types import (
    GROUP_SIZE,
    LU_STRIDE,
    MAX_BLOCK,
    BlockPartition,
    CSRMatrix,
    DeviceCSR,
    SolverConfig,
    SolveResult,
)

__version__ = "0.1.0"

__all__ = [
    # Solve
    "PCGSolver",
    "solve_pcg",
    # Data model
    "CSRMatrix",
    "DeviceCSR",
    "BlockPartition",
    "SolverConfig",
    "SolveResult",
    "GROUP_SIZE",
    "LU_STRIDE",
    "MAX_BLOCK",
    # Preconditioner
    "BlockJacobiFactors",
    "build_block_jacobi",
    "gather_diagonal_blocks",
    "lu_factor_blocks",
    "lu_factor_unpivoted",
    "pack_lu_blocks",
    # Reduction
    "ReductionPass",
    "ReductionWorkspace",
    "dot",
    "reduce_sum",
    "reduction_lengths",
    # Backends and device
    "BACKENDS",
    "BackendType",
    "TorchBackend",
    "TritonBackend",
    "select_backend",
    "default_device",
    "device_info",
    "read_scalar",
    # Errors
    "SolverError",
    "DimensionMismatch",
    "BreakdownError",
    "SingularBlockError",
    "DeviceError",
    "__version__",
]
