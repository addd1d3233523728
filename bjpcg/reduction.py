"""
Multi-pass sum reduction.

A reduction of length n runs as a chain of passes. The first pass consumes
the inputs (a*b for a dot product, x alone for a plain sum) and writes
cdiv(n, G) partial sums; each following pass reduces the previous output by
another factor of G until a single value is left. The host computes the pass
lengths up front and issues the passes in order, alternating between two
scratch buffers so no pass reads the buffer it writes.
"""
from typing import Iterator, List, NamedTuple, Optional, Tuple

import torch
import triton

from .backends import select_backend
from .device import read_scalar
from .errors import DimensionMismatch
from .types import GROUP_SIZE


class ReductionPass(NamedTuple):
    input_len: int
    src: Tuple[torch.Tensor, ...]
    dst: torch.Tensor


def reduction_lengths(n: int, group_size: int = GROUP_SIZE) -> List[int]:
    """
    Lengths seen along the reduction chain, [n, cdiv(n, G), ..., 1].

    n == 0 has no passes and returns [0].
    """
    if n < 0:
        raise ValueError(f"n must be >= 0, got {n}")
    lengths = [n]
    while n > 0:
        n = triton.cdiv(n, group_size)
        lengths.append(n)
        if n == 1:
            break
    return lengths


class ReductionWorkspace:
    """
    Scratch buffers for reducing vectors of a fixed length n >= 1.

    Allocated once and reused by every dot product of a solve.
    """

    def __init__(self, n: int, device, backend, group_size: int = GROUP_SIZE):
        if n < 1:
            raise ValueError(f"reduction length must be >= 1, got {n}")
        self.n = n
        self.backend = backend
        self.group_size = group_size
        self.lengths = reduction_lengths(n, group_size)

        first = triton.cdiv(n, group_size)
        second = max(triton.cdiv(first, group_size), 1)
        self.scratch = (
            torch.zeros(first, dtype=torch.float32, device=device),
            torch.zeros(second, dtype=torch.float32, device=device),
        )

    def passes(self, inputs: Tuple[torch.Tensor, ...]) -> Iterator[ReductionPass]:
        """Pass descriptors for one reduction; a fresh call starts over"""
        src = inputs
        for k, length in enumerate(self.lengths[:-1]):
            dst = self.scratch[k % 2]
            yield ReductionPass(length, src, dst)
            src = (dst,)

    def _run(self, inputs: Tuple[torch.Tensor, ...]) -> torch.Tensor:
        result = None
        for step in self.passes(inputs):
            if len(step.src) == 2:
                self.backend.dot_partials(step.src[0], step.src[1], step.dst, step.input_len)
            else:
                self.backend.reduce(step.src[0], step.dst, step.input_len)
            result = step.dst
        return result[:1]

    def dot(self, a: torch.Tensor, b: torch.Tensor) -> torch.Tensor:
        """Issue the passes for a . b, returns the one-element result slot"""
        return self._run((a, b))

    def sum(self, x: torch.Tensor) -> torch.Tensor:
        return self._run((x,))


def dot(a: torch.Tensor, b: torch.Tensor, backend: Optional[str] = None) -> float:
    """
    Dot product of two float32 device vectors.

    Returns 0.0 for empty vectors without launching anything.
    """
    if a.numel() != b.numel():
        raise DimensionMismatch("b", tuple(b.shape), tuple(a.shape))
    n = a.numel()
    if n == 0:
        return 0.0
    workspace = ReductionWorkspace(n, a.device, select_backend(a.device, backend))
    return read_scalar(workspace.dot(a, b), "dot")


def reduce_sum(x: torch.Tensor, backend: Optional[str] = None) -> float:
    n = x.numel()
    if n == 0:
        return 0.0
    workspace = ReductionWorkspace(n, x.device, select_backend(x.device, backend))
    return read_scalar(workspace.sum(x), "sum")
