from .block_jacobi import block_jacobi_apply
from .reduction import dot_partials, reduce_pass
from .spmv import spmv_csr
from .vector import axpy, scale, xpby

__all__ = [
    "axpy",
    "block_jacobi_apply",
    "dot_partials",
    "reduce_pass",
    "scale",
    "spmv_csr",
    "xpby",
]
