import numpy as np
import pytest
import scipy.sparse as sp
import torch

from bjpcg import (
    MAX_BLOCK,
    BlockPartition,
    CSRMatrix,
    build_block_jacobi,
    select_backend,
)


def _csr_on(target, A):
    device, backend = target
    return CSRMatrix.from_scipy(A).to_device(device), select_backend(device, backend)


@pytest.mark.parametrize("n", [1, 7, 300])
def test_spmv_identity(target, n):
    device, _ = target
    A, backend = _csr_on(target, sp.identity(n, format="csr", dtype=np.float32))
    x = torch.randn(n, device=device)
    y = torch.empty_like(x)

    backend.spmv(A, x, y)

    torch.testing.assert_close(y, x)


def test_spmv_zero_matrix(target):
    device, _ = target
    n = 10
    A, backend = _csr_on(target, sp.csr_matrix((n, n), dtype=np.float32))
    x = torch.randn(n, device=device)
    y = torch.full((n,), 7.0, device=device)

    backend.spmv(A, x, y)

    assert torch.all(y == 0)


@pytest.mark.parametrize("n", [5, 64, 513])
def test_spmv_random_matches_dense(target, n):
    device, _ = target
    rng = np.random.default_rng(n)
    dense = sp.random(n, n, density=0.1, random_state=rng, dtype=np.float32).toarray()
    # A full row exercises several chunks per row
    dense[0, :] = rng.random(n)
    A_scipy = sp.csr_matrix(dense)
    A, backend = _csr_on(target, A_scipy)
    x_host = rng.standard_normal(n).astype(np.float32)
    y = torch.empty(n, device=device)

    backend.spmv(A, torch.tensor(x_host, device=device), y)

    expected = A_scipy.toarray().astype(np.float64) @ x_host.astype(np.float64)
    np.testing.assert_allclose(y.cpu().numpy(), expected, rtol=1e-4, atol=1e-4)


@pytest.mark.parametrize("alpha", [0.0, 1.0, -2.5])
def test_axpy(target, alpha):
    device, backend = target
    backend = select_backend(device, backend)
    x = torch.randn(1000, device=device)
    y = torch.randn(1000, device=device)
    expected = y + alpha * x

    backend.axpy(y, alpha, x)

    torch.testing.assert_close(y, expected)


def test_axpy_zero_alpha_is_noop(target):
    device, backend = target
    backend = select_backend(device, backend)
    x = torch.randn(257, device=device)
    y = torch.randn(257, device=device)
    before = y.clone()

    backend.axpy(y, 0.0, x)

    assert torch.equal(y, before)


@pytest.mark.parametrize("beta", [0.0, 1.0, 0.3])
def test_scale_and_xpby(target, beta):
    device, backend = target
    backend = select_backend(device, backend)
    x = torch.randn(513, device=device)
    z = torch.randn(513, device=device)

    scaled = backend.scale(x.clone(), beta)
    p = backend.xpby(z, beta, x.clone())

    torch.testing.assert_close(scaled, beta * x)
    torch.testing.assert_close(p, z + beta * x)


def _packed(blocks):
    """Pack m x m factor arrays into the device layout, NaN in unused cells"""
    lu = np.full((len(blocks), MAX_BLOCK, MAX_BLOCK), np.nan, dtype=np.float32)
    for b, block in enumerate(blocks):
        m = block.shape[0]
        lu[b, :m, :m] = block
    return lu.reshape(-1)


def _apply(target, lu_blocks, block_starts, r, z=None):
    device, backend = target
    backend = select_backend(device, backend)
    r = torch.tensor(r, dtype=torch.float32, device=device)
    if z is None:
        z = torch.zeros_like(r)
    else:
        z = torch.tensor(z, dtype=torch.float32, device=device)
    backend.block_jacobi(
        torch.tensor(lu_blocks, device=device),
        torch.tensor(block_starts, dtype=torch.int32, device=device),
        r,
        z,
    )
    return z.cpu().numpy()


def test_block_jacobi_identity_factors(target):
    # L = I, U = I: strict lower triangle zero, diagonal one
    blocks = [np.eye(MAX_BLOCK, dtype=np.float32)] * 2
    r = np.arange(12, dtype=np.float32) + 1

    z = _apply(target, _packed(blocks), [0, 6, 12], r)

    np.testing.assert_array_equal(z, r)


def test_block_jacobi_hand_factored_2x2(target):
    # [[4, 2], [2, 3]] = [[1, 0], [0.5, 1]] @ [[4, 2], [0, 2]]
    lu = np.array([[4.0, 2.0], [0.5, 2.0]], dtype=np.float32)

    z = _apply(target, _packed([lu]), [0, 2], [6.0, 5.0])

    np.testing.assert_allclose(z, [1.0, 1.0], rtol=1e-6)


@pytest.mark.parametrize("m", [1, 2, 3, 4, 5])
def test_block_jacobi_ragged_last_block(target, make_spd, m):
    n = MAX_BLOCK + m
    A_scipy = make_spd(n, density=0.5, seed=m)
    partition = BlockPartition([0, MAX_BLOCK, n])
    factors = build_block_jacobi(CSRMatrix.from_scipy(A_scipy), partition)
    # Poison the unused tail of the short block
    tail = factors.block(1)
    tail[m:, :] = np.nan
    tail[:, m:] = np.nan
    r = np.random.default_rng(m).standard_normal(n).astype(np.float32)

    z = _apply(target, factors.lu_blocks, factors.block_starts, r)

    dense = A_scipy.toarray().astype(np.float64)
    expected = np.concatenate(
        [
            np.linalg.solve(dense[:MAX_BLOCK, :MAX_BLOCK], r[:MAX_BLOCK]),
            np.linalg.solve(dense[MAX_BLOCK:, MAX_BLOCK:], r[MAX_BLOCK:]),
        ]
    )
    np.testing.assert_allclose(z, expected, rtol=1e-4, atol=1e-5)


@pytest.mark.parametrize(
    ["block_starts", "expected"],
    [
        ([0, 2, 2], [1.0, 2.0, -1.0, -1.0]),
        ([0, 2, 1], [1.0, 2.0, -1.0, -1.0]),
        ([0, 2, 4, 6], [1.0, 2.0, 3.0, 4.0]),
    ],
    ids=["empty", "decreasing", "past-end"],
)
def test_block_jacobi_skips_malformed_ranges(target, block_starts, expected):
    blocks = [np.eye(MAX_BLOCK, dtype=np.float32)] * (len(block_starts) - 1)
    r = np.array([1.0, 2.0, 3.0, 4.0], dtype=np.float32)
    z0 = np.full(4, -1.0, dtype=np.float32)

    z = _apply(target, _packed(blocks), block_starts, r, z0)

    np.testing.assert_array_equal(z, expected)


@pytest.mark.skipif(not torch.cuda.is_available(), reason="CUDA not available")
def test_triton_launchers_match_torch_backend(make_spd):
    from bjpcg import kernels

    n = 1000
    A_scipy = make_spd(n, density=0.01)
    A = CSRMatrix.from_scipy(A_scipy)
    partition = BlockPartition.from_block_size(n, 4)
    lu_blocks, block_starts = build_block_jacobi(A, partition).to_device("cuda")
    A_cuda = A.to_device("cuda")
    reference = select_backend("cuda", "torch")
    r = torch.randn(n, device="cuda")

    y = kernels.spmv_csr(A_cuda, r)
    z = kernels.block_jacobi_apply(lu_blocks, block_starts, r, torch.zeros_like(r))

    torch.testing.assert_close(y, reference.spmv(A_cuda, r, torch.empty_like(r)))
    torch.testing.assert_close(
        z,
        reference.block_jacobi(lu_blocks, block_starts, r, torch.zeros_like(r)),
        rtol=1e-5,
        atol=1e-5,
    )
