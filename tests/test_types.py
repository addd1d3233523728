import numpy as np
import pytest

from bjpcg import MAX_BLOCK, BlockPartition, CSRMatrix, DimensionMismatch, SolverConfig


def test_csr_from_scipy(tridiagonal):
    A = CSRMatrix.from_scipy(tridiagonal)
    A.validate()

    assert A.n == 4
    assert A.nnz == 10
    assert A.values.dtype == np.float32
    assert A.col_indices.dtype == np.int32
    np.testing.assert_array_equal(A.row_ptr, [0, 2, 5, 8, 10])


def test_csr_float64_warns():
    with pytest.warns(UserWarning, match="float32"):
        CSRMatrix.from_dense(np.eye(3))


@pytest.mark.parametrize(
    ["values", "col_indices", "row_ptr", "shape"],
    [
        ([1.0, 1.0], [0, 1], [0, 1, 2], (2, 3)),  # not square
        ([1.0, 1.0], [0, 1], [0, 2], (2, 2)),  # row_ptr too short
        ([1.0, 1.0], [0, 1], [1, 1, 2], (2, 2)),  # row_ptr[0] != 0
        ([1.0, 1.0], [0, 1], [0, 2, 1], (2, 2)),  # decreasing
        ([1.0, 1.0], [0, 1], [0, 1, 1], (2, 2)),  # row_ptr[n] != nnz
        ([1.0, 1.0], [0], [0, 1, 2], (2, 2)),  # values and columns disagree
        ([1.0, 1.0], [0, 2], [0, 1, 2], (2, 2)),  # column out of range
    ],
)
def test_csr_validate_rejects(values, col_indices, row_ptr, shape):
    A = CSRMatrix(np.array(values, dtype=np.float32), col_indices, row_ptr, shape)
    with pytest.raises(DimensionMismatch):
        A.validate()


def test_partition_from_block_size():
    partition = BlockPartition.from_block_size(14, 6)

    np.testing.assert_array_equal(partition.block_starts, [0, 6, 12, 14])
    assert partition.num_blocks == 3
    np.testing.assert_array_equal(partition.sizes(), [6, 6, 2])
    partition.validate(14)


@pytest.mark.parametrize("block_size", [0, MAX_BLOCK + 1])
def test_partition_block_size_bounds(block_size):
    with pytest.raises(ValueError):
        BlockPartition.from_block_size(10, block_size)


@pytest.mark.parametrize(
    ["block_starts", "n"],
    [
        ([1, 2, 4], 4),  # does not start at 0
        ([0, 2, 3], 4),  # does not end at n
        ([0, 3, 2, 4], 4),  # not monotonic
        ([0, 2, 2, 4], 4),  # empty block
        ([0, 7, 8], 8),  # block larger than MAX_BLOCK
    ],
)
def test_partition_validate_rejects(block_starts, n):
    with pytest.raises(DimensionMismatch):
        BlockPartition(block_starts).validate(n)


def test_solver_config_threshold():
    config = SolverConfig(abs_tol=1e-6, rel_tol=1e-3)
    assert config.threshold(10.0) == pytest.approx(1e-2)
    assert config.threshold(1e-5) == pytest.approx(1e-6)


@pytest.mark.parametrize(
    "kwargs", [{"max_iterations": -1}, {"abs_tol": -1.0}, {"rel_tol": -0.5}]
)
def test_solver_config_rejects(kwargs):
    with pytest.raises(ValueError):
        SolverConfig(**kwargs)
