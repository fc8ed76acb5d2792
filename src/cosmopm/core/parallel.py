"""Parallel context: the process group that owns the grid decomposition.

The context is constructed once and passed explicitly to every lattice.
It fixes the number of ranks (contiguous slabs of the grid along the first
axis) and performs the collective reductions used by the diagnostics.
Reductions must be associative and commutative: partials are combined in
whatever order the transport delivers them.
"""

from __future__ import annotations

import functools
import logging
import operator
from collections.abc import Callable, Sequence
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class ParallelContext:
    """Static process group over a slab decomposition of the grid.

    Args:
        n_ranks: Number of ranks (slabs), fixed for the life of the context.
        fft_workers: Threads handed to ``scipy.fft`` for each transform.
    """

    def __init__(self, n_ranks: int = 1, fft_workers: int = 1) -> None:
        if n_ranks < 1:
            raise ValueError(f"n_ranks must be >= 1, got {n_ranks}")
        if fft_workers < 1:
            raise ValueError(f"fft_workers must be >= 1, got {fft_workers}")
        self.n_ranks = int(n_ranks)
        self.fft_workers = int(fft_workers)
        logger.debug(
            "ParallelContext: %d rank(s), %d FFT worker(s)", self.n_ranks, self.fft_workers
        )

    def slabs(self, n: int) -> list[slice]:
        """Split an axis of length ``n`` into one contiguous slice per rank.

        The first ``n % n_ranks`` slabs are one cell thicker than the rest.
        """
        if self.n_ranks > n:
            raise ValueError(f"cannot split {n} cells over {self.n_ranks} ranks")
        base, extra = divmod(n, self.n_ranks)
        out = []
        start = 0
        for rank in range(self.n_ranks):
            stop = start + base + (1 if rank < extra else 0)
            out.append(slice(start, stop))
            start = stop
        return out

    def allreduce(self, partials: Sequence[T], op: Callable[[T, T], T]) -> T:
        """Combine one partial per rank with an associative, commutative ``op``."""
        if len(partials) == 0:
            raise ValueError("allreduce needs at least one partial")
        return functools.reduce(op, partials)

    def allreduce_sum(self, partials: Sequence[Any]) -> Any:
        return self.allreduce(partials, operator.add)

    def __repr__(self) -> str:
        return f"ParallelContext(n_ranks={self.n_ranks}, fft_workers={self.fft_workers})"
