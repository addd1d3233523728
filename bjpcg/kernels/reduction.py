import torch
import triton
import triton.language as tl

from ..types import GROUP_SIZE


@triton.jit
def _dot_partials_kernel(a, b, partial, n, BLOCK_SIZE: tl.constexpr):
    """First pass of a dot product: one partial sum of a*b per program"""
    pid = tl.program_id(axis=0)
    offsets = pid * BLOCK_SIZE + tl.arange(0, BLOCK_SIZE)
    mask = offsets < n

    # Lanes past the end contribute zero
    a_block = tl.load(a + offsets, mask=mask, other=0.0)
    b_block = tl.load(b + offsets, mask=mask, other=0.0)

    tl.store(partial + pid, tl.sum(a_block * b_block, axis=0))


@triton.jit
def _reduce_kernel(src, dst, n, BLOCK_SIZE: tl.constexpr):
    """Sum BLOCK_SIZE consecutive values of src into dst[pid]"""
    pid = tl.program_id(axis=0)
    offsets = pid * BLOCK_SIZE + tl.arange(0, BLOCK_SIZE)
    mask = offsets < n

    block = tl.load(src + offsets, mask=mask, other=0.0)

    tl.store(dst + pid, tl.sum(block, axis=0))


def dot_partials(
    a: torch.Tensor,
    b: torch.Tensor,
    partial: torch.Tensor,
    n: int,
    group_size: int = GROUP_SIZE,
) -> int:
    """
    Launch the first pass of a dot product.

    Parameters:
    - a, b: input vectors, at least n long
    - partial: output, at least cdiv(n, group_size) long
    - n: number of elements to reduce

    Returns:
    - Number of partial sums written
    """
    groups = triton.cdiv(n, group_size)
    _dot_partials_kernel[(groups,)](a, b, partial, n, BLOCK_SIZE=group_size)
    return groups


def reduce_pass(
    src: torch.Tensor,
    dst: torch.Tensor,
    n: int,
    group_size: int = GROUP_SIZE,
) -> int:
    """Launch one pass of the sum chain, returns the output length"""
    groups = triton.cdiv(n, group_size)
    _reduce_kernel[(groups,)](src, dst, n, BLOCK_SIZE=group_size)
    return groups
