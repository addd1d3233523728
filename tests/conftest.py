import numpy as np
import pytest
import scipy.sparse as sp
import torch

# (device, backend) pairs; the Triton kernels need CUDA
TARGETS = [("cpu", "torch")]
if torch.cuda.is_available():
    TARGETS += [("cuda", "triton"), ("cuda", "torch")]


@pytest.fixture(params=TARGETS, ids=lambda t: f"{t[0]}-{t[1]}")
def target(request):
    return request.param


@pytest.fixture
def tridiagonal():
    return sp.csr_matrix(
        np.array(
            [
                [2, -1, 0, 0],
                [-1, 2, -1, 0],
                [0, -1, 2, -1],
                [0, 0, -1, 2],
            ],
            dtype=np.float32,
        )
    )


def random_spd(n, density=0.2, seed=0):
    """Sparse, symmetric, strictly diagonally dominant float32 matrix"""
    rng = np.random.default_rng(seed)
    B = sp.random(n, n, density=density, random_state=rng, dtype=np.float64)
    B = B + B.T
    diag = np.asarray(abs(B).sum(axis=1)).ravel() + 1.0
    A = B + sp.diags(diag)
    return sp.csr_matrix(A, dtype=np.float32)


@pytest.fixture
def make_spd():
    return random_spd
