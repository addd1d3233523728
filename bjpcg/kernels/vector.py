import torch
import triton
import triton.language as tl

from ..types import GROUP_SIZE


@triton.jit
def _axpy_kernel(x, y, alpha, n, BLOCK_SIZE: tl.constexpr):
    """y += alpha * x"""
    pid = tl.program_id(axis=0)
    offsets = pid * BLOCK_SIZE + tl.arange(0, BLOCK_SIZE)
    mask = offsets < n

    x_block = tl.load(x + offsets, mask=mask)
    y_block = tl.load(y + offsets, mask=mask)
    tl.store(y + offsets, y_block + alpha * x_block, mask=mask)


@triton.jit
def _scale_kernel(x, beta, n, BLOCK_SIZE: tl.constexpr):
    """x *= beta"""
    pid = tl.program_id(axis=0)
    offsets = pid * BLOCK_SIZE + tl.arange(0, BLOCK_SIZE)
    mask = offsets < n

    x_block = tl.load(x + offsets, mask=mask)
    tl.store(x + offsets, beta * x_block, mask=mask)


@triton.jit
def _xpby_kernel(z, p, beta, n, BLOCK_SIZE: tl.constexpr):
    """p = z + beta * p, each lane only touches its own index"""
    pid = tl.program_id(axis=0)
    offsets = pid * BLOCK_SIZE + tl.arange(0, BLOCK_SIZE)
    mask = offsets < n

    z_block = tl.load(z + offsets, mask=mask)
    p_block = tl.load(p + offsets, mask=mask)
    tl.store(p + offsets, z_block + beta * p_block, mask=mask)


def _grid(n: int):
    return (triton.cdiv(n, GROUP_SIZE),)


def axpy(y: torch.Tensor, alpha: float, x: torch.Tensor) -> torch.Tensor:
    n = y.numel()
    if n:
        _axpy_kernel[_grid(n)](x, y, float(alpha), n, BLOCK_SIZE=GROUP_SIZE)
    return y


def scale(x: torch.Tensor, beta: float) -> torch.Tensor:
    n = x.numel()
    if n:
        _scale_kernel[_grid(n)](x, float(beta), n, BLOCK_SIZE=GROUP_SIZE)
    return x


def xpby(z: torch.Tensor, beta: float, p: torch.Tensor) -> torch.Tensor:
    n = p.numel()
    if n:
        _xpby_kernel[_grid(n)](z, p, float(beta), n, BLOCK_SIZE=GROUP_SIZE)
    return p
