"""Isotropic power spectrum of a scalar mode-space field.

Modes are binned by their rounded radial mode number ``|n|``. Storage of
a real-to-complex transform holds only half of the Hermitian-symmetric
modes, so every stored mode away from the origin stands in for itself and
its hidden conjugate partner and is counted twice.
"""

from __future__ import annotations

import logging

import numpy as np

from cosmopm.core.lattice import MODE, Field
from cosmopm.core.parallel import ParallelContext

logger = logging.getLogger(__name__)

Partial = tuple[np.ndarray, np.ndarray]


def pair_sum(x: Partial, y: Partial) -> Partial:
    """Elementwise sum of two ``(counts, sums)`` partials."""
    return x[0] + y[0], x[1] + y[1]


def _folded(n: np.ndarray, size: int, k_nyquist: int) -> np.ndarray:
    """Fold storage coordinates above the Nyquist index onto ``size - n``."""
    return np.where(n <= k_nyquist, n, size - n)


def _slab_partial(
    values: np.ndarray,
    nx: np.ndarray,
    ny: np.ndarray,
    nz: np.ndarray,
    size: int,
    n_bins: int,
) -> Partial:
    k_nyquist = n_bins - 1
    mode2 = (
        _folded(nx, size, k_nyquist) ** 2
        + _folded(ny, size, k_nyquist) ** 2
        + _folded(nz, size, k_nyquist) ** 2
    )
    mode2 = np.broadcast_to(mode2, values.shape)
    index = np.floor(np.sqrt(mode2) + 0.5).astype(np.int64)

    keep = index < n_bins
    weight = np.where(mode2 > 0, 2.0, 1.0)[keep]
    power = (values.real**2 + values.imag**2)[keep]
    index = index[keep]

    counts = np.bincount(index, weights=weight, minlength=n_bins)
    sums = np.bincount(index, weights=weight * power, minlength=n_bins)
    return counts, sums


def power_spectrum(
    field_ft: Field | np.ndarray,
    context: ParallelContext | None = None,
) -> np.ndarray:
    """Bin-averaged ``|F(k)|^2 / N^3`` of a scalar mode-space field.

    Args:
        field_ft: Scalar mode-space ``Field``, or a raw complex array of
            shape ``(N, N, N//2+1)`` (or ``(1, N, N, N//2+1)``).
        context: Process group for the cross-slab reduction. Defaults to
            the field's own context, or a single rank for raw arrays.

    Returns:
        Array of length ``(N-1)//2 + 1`` indexed by radial mode number.
        Bins without modes are 0.
    """
    if isinstance(field_ft, Field):
        field_ft.require_domain(MODE, "power spectrum input")
        if field_ft.components > 1:
            raise ValueError(
                f"power spectrum needs a scalar field; '{field_ft.name}' has "
                f"{field_ft.components} components"
            )
        data = field_ft.data[0]
        if context is None:
            context = field_ft.lattice.context
    else:
        data = np.asarray(field_ft)
        if data.ndim == 4:
            if data.shape[0] != 1:
                raise ValueError(
                    f"power spectrum needs a scalar field; got {data.shape[0]} components"
                )
            data = data[0]
        if context is None:
            context = ParallelContext()

    if data.ndim != 3 or data.shape[0] != data.shape[1] or data.shape[2] != data.shape[0] // 2 + 1:
        raise ValueError(f"expected mode-space array of shape (N, N, N//2+1), got {data.shape}")

    size = data.shape[0]
    n_bins = (size - 1) // 2 + 1
    nx = np.arange(size)[:, None, None]
    ny = np.arange(size)[None, :, None]
    nz = np.arange(size // 2 + 1)[None, None, :]

    partials = [
        _slab_partial(data[s], nx[s], ny, nz, size, n_bins)
        for s in context.slabs(size)
    ]
    counts, sums = context.allreduce(partials, pair_sum)

    average = np.zeros(n_bins)
    filled = counts > 0
    average[filled] = sums[filled] / counts[filled]
    average /= float(size) ** 3
    logger.debug("Power spectrum: N=%d, %d bins, %d empty", size, n_bins, n_bins - int(filled.sum()))
    return average
