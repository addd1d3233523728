"""
Execution backends for the PCG primitives.

Backends:
- 'triton': Triton kernels (CUDA only), one launch per primitive
- 'torch': PyTorch tensor ops (CPU & CUDA), same pass structure and
  buffer contract as the kernels, used on devices Triton cannot target

Every backend exposes the same calls; buffers are owned by the caller and
results are written in place.
"""
from typing import Dict, Literal, Optional, Type

import torch
import triton

from . import kernels
from .types import GROUP_SIZE, MAX_BLOCK, DeviceCSR

BackendType = Literal["triton", "torch", "auto"]


class TritonBackend:
    name = "triton"

    def __init__(self, group_size: int = GROUP_SIZE):
        self.group_size = group_size

    def spmv(self, A: DeviceCSR, x: torch.Tensor, out: torch.Tensor) -> torch.Tensor:
        return kernels.spmv_csr(A, x, out)

    def dot_partials(self, a, b, partial, n: int) -> int:
        return kernels.dot_partials(a, b, partial, n, self.group_size)

    def reduce(self, src, dst, n: int) -> int:
        return kernels.reduce_pass(src, dst, n, self.group_size)

    def axpy(self, y, alpha: float, x):
        return kernels.axpy(y, alpha, x)

    def scale(self, x, beta: float):
        return kernels.scale(x, beta)

    def xpby(self, z, beta: float, p):
        return kernels.xpby(z, beta, p)

    def block_jacobi(self, lu_blocks, block_starts, r, z):
        return kernels.block_jacobi_apply(lu_blocks, block_starts, r, z)


class TorchBackend:
    name = "torch"

    def __init__(self, group_size: int = GROUP_SIZE):
        self.group_size = group_size

    def spmv(self, A: DeviceCSR, x: torch.Tensor, out: torch.Tensor) -> torch.Tensor:
        counts = (A.row_ptr[1:] - A.row_ptr[:-1]).long()
        rows = torch.repeat_interleave(
            torch.arange(A.n, device=x.device), counts, output_size=A.nnz
        )
        out.zero_()
        out.index_add_(0, rows, A.values * x[A.col_indices.long()])
        return out

    def _group_sum(self, values: torch.Tensor, dst: torch.Tensor, n: int) -> int:
        groups = triton.cdiv(n, self.group_size)
        group_ids = torch.arange(n, device=values.device) // self.group_size
        out = dst[:groups]
        out.zero_()
        out.index_add_(0, group_ids, values)
        return groups

    def dot_partials(self, a, b, partial, n: int) -> int:
        return self._group_sum(a[:n] * b[:n], partial, n)

    def reduce(self, src, dst, n: int) -> int:
        return self._group_sum(src[:n], dst, n)

    def axpy(self, y, alpha: float, x):
        return y.add_(x, alpha=float(alpha))

    def scale(self, x, beta: float):
        return x.mul_(float(beta))

    def xpby(self, z, beta: float, p):
        return p.mul_(float(beta)).add_(z)

    def block_jacobi(self, lu_blocks, block_starts, r, z):
        n = r.numel()
        num_blocks = block_starts.numel() - 1
        if num_blocks <= 0 or n == 0:
            return z
        starts = block_starts.long()
        sizes = torch.clamp(starts[1:] - starts[:-1], max=MAX_BLOCK)
        sizes = torch.where(starts[:-1] < n, sizes, torch.zeros_like(sizes))

        zero = torch.zeros((), dtype=r.dtype, device=r.device)
        one = torch.ones((), dtype=r.dtype, device=r.device)
        idx = torch.arange(MAX_BLOCK, device=r.device)[None, :]
        positions = starts[:-1, None] + idx
        live = (idx < sizes[:, None]) & (positions < n)
        positions = torch.where(live, positions, torch.zeros_like(positions))

        lu = lu_blocks.view(num_blocks, MAX_BLOCK, MAX_BLOCK)
        rhs = torch.where(live, r[positions], zero)

        # Forward substitution, L y = r
        y = torch.zeros_like(rhs)
        for i in range(MAX_BLOCK):
            lower = torch.where(live & (idx < i), lu[:, i, :], zero)
            y_i = rhs[:, i] - (lower * y).sum(dim=1)
            y[:, i] = torch.where(sizes > i, y_i, y[:, i])

        # Back substitution, U x = y
        x = torch.zeros_like(rhs)
        for i in reversed(range(MAX_BLOCK)):
            upper = torch.where(live & (idx > i), lu[:, i, :], zero)
            u_ii = torch.where(sizes > i, lu[:, i, i], one)
            x_i = (y[:, i] - (upper * x).sum(dim=1)) / u_ii
            x[:, i] = torch.where(sizes > i, x_i, x[:, i])

        z[positions[live]] = x[live]
        return z


BACKENDS: Dict[str, Type] = {
    "triton": TritonBackend,
    "torch": TorchBackend,
}


def select_backend(device, backend: Optional[BackendType] = None):
    """
    Pick the backend for a device.

    'auto' (or None) uses Triton for CUDA devices and PyTorch ops elsewhere.
    """
    if backend is None or backend == "auto":
        backend = "triton" if torch.device(device).type == "cuda" else "torch"
    if backend not in BACKENDS:
        raise ValueError(f"backend must be one of {sorted(BACKENDS)}, got {backend!r}")
    return BACKENDS[backend]()
