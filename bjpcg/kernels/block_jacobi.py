import torch
import triton
import triton.language as tl

from ..types import MAX_BLOCK


@triton.jit
def _block_jacobi_kernel(
    lu_blocks,
    block_starts,
    r,
    z,
    n,
    num_blocks,
    MAX_BLOCK: tl.constexpr,
    PADDED: tl.constexpr,
):
    """
    z = M^{-1} r for one diagonal block.

    Each block owns a MAX_BLOCK x MAX_BLOCK row-major region of lu_blocks:
    strict lower triangle holds L (unit diagonal not stored), diagonal and
    upper triangle hold U. A short block only reads its leading m x m corner.
    """
    block = tl.program_id(axis=0)
    if block < num_blocks:
        offset = tl.load(block_starts + block)
        nxt = tl.load(block_starts + block + 1)

        # Malformed ranges get m <= 0 and store nothing
        m = tl.minimum(nxt - offset, MAX_BLOCK)
        m = tl.where(offset < n, m, 0)

        idx = tl.arange(0, PADDED)
        live = (idx < m) & (offset + idx < n)
        base = lu_blocks + block * (MAX_BLOCK * MAX_BLOCK)

        r_block = tl.load(r + offset + idx, mask=live, other=0.0)

        # Forward substitution, L y = r
        y = tl.zeros([PADDED], dtype=tl.float32)
        for i in tl.static_range(MAX_BLOCK):
            l_row = tl.load(base + i * MAX_BLOCK + idx, mask=(idx < i) & live, other=0.0)
            r_i = tl.sum(tl.where(idx == i, r_block, 0.0), axis=0)
            y_i = r_i - tl.sum(l_row * y, axis=0)
            y = tl.where((idx == i) & (m > i), y_i, y)

        # Back substitution, U x = y
        x = tl.zeros([PADDED], dtype=tl.float32)
        for k in tl.static_range(MAX_BLOCK):
            i = MAX_BLOCK - 1 - k
            u_row = tl.load(
                base + i * MAX_BLOCK + idx, mask=(idx > i) & live, other=0.0
            )
            u_ii = tl.load(base + i * MAX_BLOCK + i, mask=m > i, other=1.0)
            y_i = tl.sum(tl.where(idx == i, y, 0.0), axis=0)
            x_i = (y_i - tl.sum(u_row * x, axis=0)) / u_ii
            x = tl.where((idx == i) & (m > i), x_i, x)

        tl.store(z + offset + idx, x, mask=live)


def block_jacobi_apply(
    lu_blocks: torch.Tensor,
    block_starts: torch.Tensor,
    r: torch.Tensor,
    z: torch.Tensor,
) -> torch.Tensor:
    """
    Apply the Block-Jacobi preconditioner, one program per block.

    Parameters:
    - lu_blocks: [num_blocks * MAX_BLOCK**2] packed LU factors
    - block_starts: [num_blocks + 1] int32 block boundaries
    - r: [n] residual
    - z: [n] output, must not alias r

    Returns:
    - z
    """
    n = r.numel()
    num_blocks = block_starts.numel() - 1
    if num_blocks <= 0 or n == 0:
        return z

    _block_jacobi_kernel[(num_blocks,)](
        lu_blocks,
        block_starts,
        r,
        z,
        n,
        num_blocks,
        MAX_BLOCK=MAX_BLOCK,
        PADDED=triton.next_power_of_2(MAX_BLOCK),
    )
    return z
