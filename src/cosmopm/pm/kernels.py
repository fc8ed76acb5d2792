"""Numba-accelerated cloud-in-cell (CIC) kernels.

All kernels work on ghost-padded position-space arrays of shape
``(ncomp, N+2g, N+2g, N+2g)``. A particle at box position ``x`` sits in
cell ``c = floor(x*N)`` with fractional offset ``f = x*N - c`` and couples
to the 8 vertices ``c .. c+1`` with trilinear weights. The upper vertex of
the last cell lands in the ghost layer; deposits are folded back by
``Field.fold_halo`` and gathers read the refreshed halo.

Deposit and gather share ``_locate`` and the same weights, so a particle
feels no force from its own deposit through the kernel.
"""

from __future__ import annotations

import numpy as np
from numba import njit


@njit(cache=True)
def _locate(x: float, y: float, z: float, n: int) -> tuple[int, int, int, float, float, float]:
    """Containing cell and fractional offsets of a position in box units."""
    xn = x * n
    yn = y * n
    zn = z * n

    ix = int(np.floor(xn))
    iy = int(np.floor(yn))
    iz = int(np.floor(zn))

    fx = xn - ix
    fy = yn - iy
    fz = zn - iz

    # Periodic: x == 1.0 belongs to cell 0
    ix = ix % n
    iy = iy % n
    iz = iz % n

    return ix, iy, iz, fx, fy, fz


@njit(cache=True)
def _deposit_T00_kernel(
    positions: np.ndarray,
    momenta: np.ndarray,
    masses: np.ndarray,
    phi: np.ndarray,
    out: np.ndarray,
    n: int,
    g: int,
    a: float,
) -> None:
    """Energy density T00, first order in phi.

    Each particle deposits ``m / (dx^3 a) * (e + F * phi)`` with
    ``e = sqrt(a^2 + q^2)`` and ``F = 3 e + q^2 / e``, where ``phi`` is read
    at the receiving vertex.

    Parameters
    ----------
    positions : ndarray, shape (N, 3)
    momenta : ndarray, shape (N, 3)
    masses : ndarray, shape (N,)
    phi : ndarray, shape (1, n+2g, n+2g, n+2g)
        Potential with a refreshed halo.
    out : ndarray, shape (1, n+2g, n+2g, n+2g)
        Accumulation target, updated in place.
    n, g : int
        Lattice size and ghost width.
    a : float
        Scale factor.
    """
    inv_vol = float(n) * n * n

    for p in range(positions.shape[0]):
        ix, iy, iz, fx, fy, fz = _locate(positions[p, 0], positions[p, 1], positions[p, 2], n)

        q2 = momenta[p, 0] ** 2 + momenta[p, 1] ** 2 + momenta[p, 2] ** 2
        e = np.sqrt(a * a + q2)
        f = 3.0 * e + q2 / e
        m = masses[p] * inv_vol / a

        for di in range(2):
            wx = fx if di == 1 else 1.0 - fx
            for dj in range(2):
                wy = fy if dj == 1 else 1.0 - fy
                for dk in range(2):
                    wz = fz if dk == 1 else 1.0 - fz
                    i = ix + g + di
                    j = iy + g + dj
                    k = iz + g + dk
                    out[0, i, j, k] += m * wx * wy * wz * (e + f * phi[0, i, j, k])


@njit(cache=True)
def _deposit_T0i_kernel(
    positions: np.ndarray,
    momenta: np.ndarray,
    masses: np.ndarray,
    phi: np.ndarray,
    out: np.ndarray,
    n: int,
    g: int,
) -> None:
    """Momentum density ``T0i = m q_i (1 + 4 phi) / dx^3``.

    Parameters
    ----------
    out : ndarray, shape (3, n+2g, n+2g, n+2g)
    """
    inv_vol = float(n) * n * n

    for p in range(positions.shape[0]):
        ix, iy, iz, fx, fy, fz = _locate(positions[p, 0], positions[p, 1], positions[p, 2], n)
        m = masses[p] * inv_vol

        for di in range(2):
            wx = fx if di == 1 else 1.0 - fx
            for dj in range(2):
                wy = fy if dj == 1 else 1.0 - fy
                for dk in range(2):
                    wz = fz if dk == 1 else 1.0 - fz
                    i = ix + g + di
                    j = iy + g + dj
                    k = iz + g + dk
                    w = m * wx * wy * wz * (1.0 + 4.0 * phi[0, i, j, k])
                    for c in range(3):
                        out[c, i, j, k] += w * momenta[p, c]


@njit(cache=True)
def _deposit_Tij_kernel(
    positions: np.ndarray,
    momenta: np.ndarray,
    masses: np.ndarray,
    phi: np.ndarray,
    out: np.ndarray,
    n: int,
    g: int,
    a: float,
) -> None:
    """Spatial stress ``Tij = m q_i q_j / (e dx^3) * (1 + (4 + a^2/e^2) phi)``.

    Parameters
    ----------
    out : ndarray, shape (6, n+2g, n+2g, n+2g)
        Symmetric storage ``xx, xy, xz, yy, yz, zz``.
    """
    inv_vol = float(n) * n * n

    for p in range(positions.shape[0]):
        ix, iy, iz, fx, fy, fz = _locate(positions[p, 0], positions[p, 1], positions[p, 2], n)

        qx = momenta[p, 0]
        qy = momenta[p, 1]
        qz = momenta[p, 2]
        e = np.sqrt(a * a + qx * qx + qy * qy + qz * qz)
        f = 4.0 + a * a / (e * e)
        m = masses[p] * inv_vol / e

        for di in range(2):
            wx = fx if di == 1 else 1.0 - fx
            for dj in range(2):
                wy = fy if dj == 1 else 1.0 - fy
                for dk in range(2):
                    wz = fz if dk == 1 else 1.0 - fz
                    i = ix + g + di
                    j = iy + g + dj
                    k = iz + g + dk
                    w = m * wx * wy * wz * (1.0 + f * phi[0, i, j, k])
                    out[0, i, j, k] += w * qx * qx
                    out[1, i, j, k] += w * qx * qy
                    out[2, i, j, k] += w * qx * qz
                    out[3, i, j, k] += w * qy * qy
                    out[4, i, j, k] += w * qy * qz
                    out[5, i, j, k] += w * qz * qz


@njit(cache=True)
def _deposit_mass_kernel(
    positions: np.ndarray,
    masses: np.ndarray,
    out: np.ndarray,
    n: int,
    g: int,
) -> None:
    """Plain mass density ``m / dx^3`` (Newtonian source)."""
    inv_vol = float(n) * n * n

    for p in range(positions.shape[0]):
        ix, iy, iz, fx, fy, fz = _locate(positions[p, 0], positions[p, 1], positions[p, 2], n)
        m = masses[p] * inv_vol

        for di in range(2):
            wx = fx if di == 1 else 1.0 - fx
            for dj in range(2):
                wy = fy if dj == 1 else 1.0 - fy
                for dk in range(2):
                    wz = fz if dk == 1 else 1.0 - fz
                    out[0, ix + g + di, iy + g + dj, iz + g + dk] += m * wx * wy * wz


@njit(cache=True)
def _interpolate_scalar_kernel(
    field: np.ndarray,
    positions: np.ndarray,
    n: int,
    g: int,
) -> np.ndarray:
    """Inverse CIC: gather a scalar grid field at particle positions.

    Parameters
    ----------
    field : ndarray, shape (1, n+2g, n+2g, n+2g)
        Field with a refreshed halo.
    positions : ndarray, shape (N, 3)

    Returns
    -------
    values : ndarray, shape (N,)
    """
    n_p = positions.shape[0]
    values = np.empty(n_p, dtype=np.float64)

    for p in range(n_p):
        ix, iy, iz, fx, fy, fz = _locate(positions[p, 0], positions[p, 1], positions[p, 2], n)

        val = 0.0
        for di in range(2):
            wx = fx if di == 1 else 1.0 - fx
            for dj in range(2):
                wy = fy if dj == 1 else 1.0 - fy
                for dk in range(2):
                    wz = fz if dk == 1 else 1.0 - fz
                    val += wx * wy * wz * field[0, ix + g + di, iy + g + dj, iz + g + dk]
        values[p] = val

    return values
