from typing import Optional

import torch
import triton
import triton.language as tl

from ..types import DeviceCSR

# Nonzeros loaded per step when walking a row
ROW_CHUNK = 32


@triton.jit
def _spmv_csr_kernel(values, col_indices, row_ptr, x, y, BLOCK_SIZE: tl.constexpr):
    """y[row] = sum(values[k] * x[col_indices[k]]) over the nonzeros of row"""
    row = tl.program_id(axis=0)

    start = tl.load(row_ptr + row)
    end = tl.load(row_ptr + row + 1)

    acc = tl.zeros([BLOCK_SIZE], dtype=tl.float32)
    for k in range(start, end, BLOCK_SIZE):
        offsets = k + tl.arange(0, BLOCK_SIZE)
        mask = offsets < end
        cols = tl.load(col_indices + offsets, mask=mask, other=0)
        vals = tl.load(values + offsets, mask=mask, other=0.0)
        acc += vals * tl.load(x + cols, mask=mask, other=0.0)

    # Empty rows store 0
    tl.store(y + row, tl.sum(acc, axis=0))


def spmv_csr(
    A: DeviceCSR, x: torch.Tensor, out: Optional[torch.Tensor] = None
) -> torch.Tensor:
    """
    Sparse matrix-vector product y = A x, one program per row.

    Parameters:
    - A: CSR matrix on the device
    - x: [n] input vector
    - out: [n] output vector, allocated when omitted; must not alias x

    Returns:
    - out
    """
    if out is None:
        out = torch.empty(A.n, dtype=torch.float32, device=x.device)
    if A.n == 0:
        return out
    if A.nnz == 0:
        return out.zero_()

    _spmv_csr_kernel[(A.n,)](
        A.values, A.col_indices, A.row_ptr, x, out, BLOCK_SIZE=ROW_CHUNK
    )
    return out
