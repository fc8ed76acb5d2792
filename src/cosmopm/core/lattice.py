"""Lattice, field and transform-plan substrate.

Grid storage for the particle-mesh engine. Every field is bound to exactly
one lattice: a position-space lattice of ``N^3`` cells carrying a periodic
ghost halo, or the derived mode-space lattice holding the real-to-complex
transform of the same logical field.

Position-space arrays have shape ``(ncomp, N+2g, N+2g, N+2g)`` where axis 0
is the component and ``g`` is the ghost width. Mode-space arrays have shape
``(ncomp, N, N, N//2+1)`` (``scipy.fft.rfftn`` storage, no halo).

Rank-2 fields are stored with symmetric compression by default, in the
component order ``xx, xy, xz, yy, yz, zz``.
"""

from __future__ import annotations

import logging

import numpy as np
import scipy.fft as sfft

from cosmopm.constants import GHOST_WIDTH
from cosmopm.core.parallel import ParallelContext

logger = logging.getLogger(__name__)

# (i, j) -> component index for symmetric rank-2 storage
SYMMETRIC_INDEX = ((0, 1, 2), (1, 3, 4), (2, 4, 5))

POSITION = "position"
MODE = "mode"


def _along(axis: int, sl: slice) -> tuple[slice, ...]:
    """Index tuple selecting ``sl`` along ``axis`` of a 4-D field array."""
    idx = [slice(None)] * 4
    idx[axis] = sl
    return tuple(idx)


class Lattice:
    """Uniform periodic 3-D lattice with side ``size`` and a ghost halo.

    Args:
        size: Number of cells per side N.
        ghost: Ghost-cell width on each side (position space only).
        context: Process group owning the decomposition; a single-rank
            context is created when omitted.
        kind: ``"position"`` or ``"mode"``. Mode-space lattices are obtained
            from :meth:`transform_lattice` rather than built directly.
    """

    def __init__(
        self,
        size: int,
        ghost: int = GHOST_WIDTH,
        context: ParallelContext | None = None,
        kind: str = POSITION,
    ) -> None:
        if kind not in (POSITION, MODE):
            raise ValueError(f"lattice kind must be 'position' or 'mode', got '{kind}'")
        if kind == POSITION and size < 2 * ghost:
            raise ValueError(f"lattice size {size} is smaller than twice the ghost width {ghost}")
        if kind == MODE and ghost != 0:
            raise ValueError("mode-space lattices carry no ghost cells")

        self.size = int(size)
        self.ghost = int(ghost)
        self.kind = kind
        self.context = context if context is not None else ParallelContext()
        self._transform: Lattice | None = None

    @property
    def dx(self) -> float:
        """Grid spacing in box units."""
        return 1.0 / self.size

    @property
    def shape(self) -> tuple[int, int, int]:
        """Interior (global) array shape."""
        n = self.size
        if self.kind == MODE:
            return (n, n, n // 2 + 1)
        return (n, n, n)

    @property
    def padded_shape(self) -> tuple[int, int, int]:
        g2 = 2 * self.ghost
        return tuple(s + g2 for s in self.shape)

    @property
    def n_cells(self) -> int:
        return self.size**3

    def transform_lattice(self) -> Lattice:
        """Return the mode-space lattice paired with this position lattice."""
        if self.kind == MODE:
            raise ValueError("a mode-space lattice has no transform lattice")
        if self._transform is None:
            self._transform = Lattice(self.size, ghost=0, context=self.context, kind=MODE)
        return self._transform

    def mode_numbers(self, signed: bool = True) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
        """Integer wavenumber coordinates of the mode lattice, broadcastable.

        Args:
            signed: If True, return signed wavenumbers (``-N/2 .. N/2-1`` on
                the full axes). If False, return raw storage coordinates
                ``0 .. N-1`` (``0 .. N/2`` on the halved axis).

        Returns:
            Arrays of shape ``(N,1,1)``, ``(1,N,1)``, ``(1,1,N//2+1)``.
        """
        if self.kind != MODE:
            raise ValueError("mode_numbers is only defined on a mode-space lattice")
        n = self.size
        if signed:
            full = np.rint(sfft.fftfreq(n, d=1.0 / n)).astype(np.int64)
        else:
            full = np.arange(n, dtype=np.int64)
        half = np.arange(n // 2 + 1, dtype=np.int64)
        return full[:, None, None], full[None, :, None], half[None, None, :]

    def __repr__(self) -> str:
        return f"Lattice(size={self.size}, ghost={self.ghost}, kind='{self.kind}')"


class Field:
    """Scalar, vector or rank-2 tensor field bound to one lattice.

    Args:
        lattice: Lattice the field lives on (position or mode space).
        rank: Tensor rank: 0 (scalar), 1 (3-vector) or 2 (3x3 tensor).
        symmetric: Store rank-2 fields with symmetric compression (6 components).
        name: Label used in error messages and logs.
    """

    def __init__(
        self,
        lattice: Lattice,
        rank: int = 0,
        symmetric: bool = True,
        name: str = "",
    ) -> None:
        if rank == 0:
            ncomp = 1
        elif rank == 1:
            ncomp = 3
        elif rank == 2:
            ncomp = 6 if symmetric else 9
        else:
            raise ValueError(f"field rank must be 0, 1 or 2, got {rank}")

        self.lattice = lattice
        self.rank = rank
        self.symmetric = symmetric and rank == 2
        self.name = name
        self.components = ncomp

        dtype = np.complex128 if lattice.kind == MODE else np.float64
        self.data = np.zeros((ncomp,) + lattice.padded_shape, dtype=dtype)
        self._halo_clean = True

    # --- Views ---

    @property
    def interior(self) -> np.ndarray:
        """View of all components without ghost cells, shape ``(ncomp, *shape)``."""
        g = self.lattice.ghost
        if g == 0:
            return self.data
        return self.data[:, g:-g, g:-g, g:-g]

    def component(self, i: int = 0, j: int | None = None) -> np.ndarray:
        """Interior view of a single component.

        For rank-2 fields pass both tensor indices; symmetric storage maps
        ``(i, j)`` and ``(j, i)`` to the same component.
        """
        if j is None:
            idx = i
        elif self.rank != 2:
            raise ValueError(f"field '{self.name}' has rank {self.rank}; tensor index given")
        elif self.symmetric:
            idx = SYMMETRIC_INDEX[i][j]
        else:
            idx = 3 * i + j
        return self.interior[idx]

    @property
    def domain(self) -> str:
        return self.lattice.kind

    # --- Mutation ---

    def fill(self, value: float = 0.0) -> None:
        """Set every cell, halo included."""
        self.data[...] = value
        self._halo_clean = True

    def copy_from(self, other: Field) -> None:
        if other.data.shape != self.data.shape:
            raise ValueError(
                f"cannot copy field '{other.name}' {other.data.shape} "
                f"into '{self.name}' {self.data.shape}"
            )
        self.data[...] = other.data
        self._halo_clean = other._halo_clean

    def mark_dirty(self) -> None:
        """Record that interior cells were written and the halo is stale."""
        self._halo_clean = False

    # --- Halo management ---

    def update_halo(self) -> None:
        """Refresh ghost cells from their periodic interior partners."""
        g = self.lattice.ghost
        if g > 0:
            n = self.lattice.size
            d = self.data
            # Axis by axis over the full extent so edge and corner ghosts fill too
            for axis in (1, 2, 3):
                d[_along(axis, slice(0, g))] = d[_along(axis, slice(n, n + g))]
                d[_along(axis, slice(n + g, n + 2 * g))] = d[_along(axis, slice(g, 2 * g))]
        self._halo_clean = True

    def fold_halo(self) -> None:
        """Add ghost-cell accumulations into their owners and zero the halo.

        Deposits may write into ghost cells; this returns those contributions
        to the periodic owner cells. The halo is stale afterwards.
        """
        g = self.lattice.ghost
        if g > 0:
            n = self.lattice.size
            d = self.data
            for axis in (1, 2, 3):
                d[_along(axis, slice(n, n + g))] += d[_along(axis, slice(0, g))]
                d[_along(axis, slice(g, 2 * g))] += d[_along(axis, slice(n + g, n + 2 * g))]
                d[_along(axis, slice(0, g))] = 0.0
                d[_along(axis, slice(n + g, n + 2 * g))] = 0.0
        self._halo_clean = False

    @property
    def halo_clean(self) -> bool:
        return self._halo_clean

    def require_halo(self) -> None:
        """Fail if the field is read by a stencil while its halo is stale."""
        if not self._halo_clean:
            raise RuntimeError(
                f"field '{self.name}' was written without a halo refresh; "
                "call update_halo() before stencil reads"
            )

    # --- Validation ---

    def require_components(self, n: int, what: str = "field") -> None:
        if self.components != n:
            raise ValueError(
                f"{what} '{self.name}' must have {n} component(s), has {self.components}"
            )

    def require_domain(self, kind: str, what: str = "field") -> None:
        if self.lattice.kind != kind:
            raise ValueError(
                f"{what} '{self.name}' must live in {kind} space, lives in {self.lattice.kind} space"
            )

    def __repr__(self) -> str:
        return (
            f"Field(name='{self.name}', rank={self.rank}, components={self.components}, "
            f"domain='{self.lattice.kind}', N={self.lattice.size})"
        )


class TransformPlan:
    """Reusable forward/backward transform between a bound field pair.

    The forward transform is unnormalised; the backward transform carries
    the ``1/N^3`` normalisation so that a round trip is the identity.

    Args:
        real_field: Position-space field.
        mode_field: Mode-space field on ``real_field.lattice.transform_lattice()``.
    """

    def __init__(self, real_field: Field, mode_field: Field) -> None:
        real_field.require_domain(POSITION, "transform source")
        mode_field.require_domain(MODE, "transform target")
        if mode_field.lattice is not real_field.lattice.transform_lattice():
            raise ValueError(
                f"field '{mode_field.name}' is not on the transform lattice of '{real_field.name}'"
            )
        if real_field.components != mode_field.components:
            raise ValueError(
                f"component mismatch in transform plan: '{real_field.name}' has "
                f"{real_field.components}, '{mode_field.name}' has {mode_field.components}"
            )
        self.real = real_field
        self.mode = mode_field
        self._real_shape = real_field.data.shape
        self._mode_shape = mode_field.data.shape
        logger.debug(
            "TransformPlan '%s' <-> '%s': %d component(s), N=%d",
            real_field.name, mode_field.name, real_field.components, real_field.lattice.size,
        )

    def _check_buffers(self) -> None:
        if self.real.data.shape != self._real_shape or self.mode.data.shape != self._mode_shape:
            raise ValueError(
                f"buffer shape mismatch in transform '{self.real.name}' <-> '{self.mode.name}': "
                f"{self.real.data.shape} / {self.mode.data.shape}"
            )

    def forward(self) -> None:
        """Position space -> mode space."""
        self._check_buffers()
        workers = self.real.lattice.context.fft_workers
        src = self.real.interior
        for c in range(self.real.components):
            self.mode.data[c] = sfft.rfftn(src[c], workers=workers)

    def backward(self) -> None:
        """Mode space -> position space. Leaves the real field's halo stale."""
        self._check_buffers()
        workers = self.real.lattice.context.fft_workers
        dst = self.real.interior
        shape = self.real.lattice.shape
        for c in range(self.real.components):
            dst[c] = sfft.irfftn(self.mode.data[c], s=shape, workers=workers)
        self.real.mark_dirty()
