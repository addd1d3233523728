import logging
import math
import warnings
from typing import Optional, Sequence, Union

import numpy as np
import scipy.sparse as sp
import torch

from .backends import BackendType, select_backend
from .device import default_device, device_guard, read_scalar, read_scalars
from .errors import BreakdownError, DimensionMismatch, SingularBlockError
from .preconditioner import build_block_jacobi
from .reduction import ReductionWorkspace
from .types import (
    MAX_BLOCK,
    BlockPartition,
    CSRMatrix,
    SolverConfig,
    SolveResult,
    as_partition,
)

logger = logging.getLogger(__name__)

MatrixLike = Union[CSRMatrix, sp.spmatrix, np.ndarray, torch.Tensor]


def as_csr(A: MatrixLike) -> CSRMatrix:
    if isinstance(A, CSRMatrix):
        return A
    if sp.issparse(A):
        return CSRMatrix.from_scipy(A)
    if isinstance(A, torch.Tensor):
        A = A.detach().cpu().numpy()
    return CSRMatrix.from_dense(A)


class PCGSolver:
    """
    Block-Jacobi preconditioned conjugate gradient for SPD systems.

    Setup validates A and the partition, factors the diagonal blocks on the
    host and allocates every device buffer once. Each call to solve() reuses
    those buffers, so a solver serves one solve at a time.

    Parameters:
    - A: square SPD matrix (CSRMatrix, scipy sparse or dense array)
    - partition: diagonal block boundaries, blocks of MAX_BLOCK rows by default
    - config: stopping policy
    - device: torch device, CUDA when available by default
    - backend: 'triton', 'torch' or 'auto'
    """

    def __init__(
        self,
        A: MatrixLike,
        partition: Optional[BlockPartition] = None,
        config: Optional[SolverConfig] = None,
        device=None,
        backend: Optional[BackendType] = None,
    ):
        A = as_csr(A)
        A.validate()
        if partition is None:
            partition = BlockPartition.from_block_size(A.n, MAX_BLOCK)
        partition.validate(A.n)

        self.A = A
        self.partition = partition
        self.config = config if config is not None else SolverConfig()
        self.device = torch.device(device) if device is not None else default_device()
        self.backend = select_backend(self.device, backend)
        self.factors = build_block_jacobi(A, partition)

        logger.debug(
            "PCG setup: n=%d nnz=%d blocks=%d backend=%s device=%s",
            A.n,
            A.nnz,
            partition.num_blocks,
            self.backend.name,
            self.device,
        )

        with device_guard("setup"):
            self._A = A.to_device(self.device)
            self._lu_blocks, self._block_starts = self.factors.to_device(self.device)
            self._x, self._r, self._p, self._z, self._q = (
                torch.zeros(A.n, dtype=torch.float32, device=self.device)
                for _ in range(5)
            )
            self._scalars = torch.zeros(2, dtype=torch.float32, device=self.device)
            self._workspace = (
                ReductionWorkspace(A.n, self.device, self.backend) if A.n else None
            )

    @property
    def n(self) -> int:
        return self.A.n

    def _vector(self, name: str, v) -> torch.Tensor:
        if isinstance(v, torch.Tensor):
            if v.dtype == torch.float64:
                warnings.warn(f"{name} is float64, casting down to float32")
            shape = tuple(v.shape)
        else:
            v = np.asarray(v)
            if v.dtype == np.float64:
                warnings.warn(f"{name} is float64, casting down to float32")
            shape = v.shape
        if shape != (self.n,):
            raise DimensionMismatch(name, shape, f"[{self.n}]")
        return torch.as_tensor(v, dtype=torch.float32, device=self.device)

    def _check(self, value: float, name: str, iteration: int, residual_norm: float):
        if self.config.check_finite and not math.isfinite(value):
            raise SingularBlockError(name, iteration, residual_norm)
        if value == 0.0:
            raise BreakdownError(name, iteration, residual_norm)

    def _precondition(self):
        self.backend.block_jacobi(self._lu_blocks, self._block_starts, self._r, self._z)

    def solve(self, b, x0=None) -> SolveResult:
        """
        Solve A x = b starting from x0 (zeros by default).

        Parameters:
        - b: [n] right-hand side
        - x0: [n] initial guess

        Returns:
        - SolveResult; converged=False with iterations=max_iterations when
          the iteration cap is reached first
        """
        b = self._vector("b", b)
        x0 = self._vector("x0", x0) if x0 is not None else None
        config = self.config

        if self.n == 0:
            return SolveResult(
                x=torch.zeros(0, dtype=torch.float32, device=self.device),
                iterations=0,
                residual_norm=0.0,
                converged=True,
                initial_residual_norm=0.0,
                residual_history=[0.0],
            )

        backend = self.backend
        workspace = self._workspace
        A = self._A
        x, r, p, z, q = self._x, self._r, self._p, self._z, self._q
        scalars = self._scalars

        # r = b - A x0, z = M^-1 r, p = z
        with device_guard("initialization", 0):
            if x0 is None:
                x.zero_()
            else:
                x.copy_(x0)
            backend.spmv(A, x, q)
            r.copy_(b)
            backend.axpy(r, -1.0, q)
            scalars[0:1].copy_(workspace.dot(r, r))
            self._precondition()
            p.copy_(z)
            scalars[1:2].copy_(workspace.dot(r, z))
        rr, rho = read_scalars(scalars, "initialization", 0)

        initial = math.sqrt(rr)
        residual = initial
        history = [initial]
        threshold = config.threshold(initial)
        if config.check_finite and not math.isfinite(initial):
            raise SingularBlockError("residual norm", 0, initial)

        converged = residual <= threshold
        iterations = 0
        if not converged and config.max_iterations > 0:
            self._check(rho, "rho", 0, residual)

        while not converged and iterations < config.max_iterations:
            iteration = iterations + 1

            with device_guard("search direction", iteration):
                backend.spmv(A, p, q)
                pq = workspace.dot(p, q)
            pq = read_scalar(pq, "p.q", iteration)
            self._check(pq, "p.q", iteration, residual)
            alpha = rho / pq

            # x and r are disjoint, the two updates need no wait between them
            with device_guard("update", iteration):
                backend.axpy(x, alpha, p)
                backend.axpy(r, -alpha, q)
                rr = workspace.dot(r, r)
            rr = read_scalar(rr, "r.r", iteration)

            iterations = iteration
            residual = math.sqrt(rr)
            history.append(residual)
            logger.debug("iteration %d: residual norm %.6e", iteration, residual)

            if config.check_finite and not math.isfinite(residual):
                raise SingularBlockError("residual norm", iteration, residual)
            if residual <= threshold:
                converged = True
                break

            with device_guard("preconditioner", iteration):
                self._precondition()
                rho_new = workspace.dot(r, z)
            rho_new = read_scalar(rho_new, "rho", iteration)
            self._check(rho_new, "rho", iteration, residual)
            beta = rho_new / rho
            with device_guard("direction update", iteration):
                backend.xpby(z, beta, p)
            rho = rho_new

        if config.check_finite:
            with device_guard("finiteness check", iterations):
                finite = bool(torch.isfinite(x).all().item())
            if not finite:
                raise SingularBlockError("x", iterations, residual)

        if converged:
            logger.info(
                "PCG converged in %d iterations, residual norm %.6e",
                iterations,
                residual,
            )
        else:
            logger.info(
                "PCG stopped at the iteration cap (%d), residual norm %.6e",
                iterations,
                residual,
            )

        return SolveResult(
            x=x.clone(),
            iterations=iterations,
            residual_norm=residual,
            converged=converged,
            initial_residual_norm=initial,
            residual_history=history,
        )


def solve_pcg(
    A: MatrixLike,
    b,
    x_init=None,
    max_iterations: int = 1000,
    tolerance: float = 1e-6,
    rel_tol: float = 0.0,
    block_size: int = MAX_BLOCK,
    block_starts: Optional[Sequence[int]] = None,
    device=None,
    backend: Optional[BackendType] = None,
) -> SolveResult:
    """
    Solve Ax = b using Block-Jacobi preconditioned conjugate gradient

    Parameters:
    - A: Sparse matrix in scipy.sparse.csr_matrix format (or CSRMatrix / dense)
    - b: Right-hand side vector
    - x_init: Initial guess (optional)
    - max_iterations: Maximum CG iterations
    - tolerance: Absolute convergence tolerance on the residual norm
    - rel_tol: Tolerance relative to the initial residual norm
    - block_size: Rows per diagonal block, ignored when block_starts is given
    - block_starts: Explicit block boundaries (optional)
    - device: Torch device (optional)
    - backend: 'triton', 'torch' or 'auto'

    Returns:
    - SolveResult with the solution, iteration count and final residual norm
    """
    A = as_csr(A)
    solver = PCGSolver(
        A,
        partition=as_partition(A.n, block_starts, block_size),
        config=SolverConfig(
            max_iterations=max_iterations, abs_tol=tolerance, rel_tol=rel_tol
        ),
        device=device,
        backend=backend,
    )
    return solver.solve(b, x_init)
