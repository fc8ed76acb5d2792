"""Mode-space field solvers and position-space source builders.

Wavenumbers are the lattice wavenumbers of the 2nd-order finite-difference
Laplacian in cell units, ``k_i = 2 sin(pi n_i / N)`` for signed integer
mode numbers ``n_i``, so ``k^2 = sum_i k_i^2`` is positive everywhere except
the DC mode. Sources built by the ``prepare_*`` functions carry a factor
``dx^2`` so that the solves below need no further grid-spacing factors.

The mode-space entry points special-case k = 0 and never divide by zero.
Component-count mismatches are configuration errors and raise
``ValueError`` before any array is written.
"""

from __future__ import annotations

from collections.abc import Callable

import numpy as np

from cosmopm.core.lattice import MODE, POSITION, SYMMETRIC_INDEX, Field, Lattice

# 4th-order centred first-derivative weights for the +-1 and +-2 neighbours
GRAD_C1 = 2.0 / 3.0
GRAD_C2 = -1.0 / 12.0


# =====================================================================
# Wavenumbers
# =====================================================================

def lattice_wavenumbers(lattice: Lattice) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Per-axis lattice wavenumbers ``2 sin(pi n / N)``, broadcastable."""
    nx, ny, nz = lattice.mode_numbers(signed=True)
    n = lattice.size
    return (
        2.0 * np.sin(np.pi * nx / n),
        2.0 * np.sin(np.pi * ny / n),
        2.0 * np.sin(np.pi * nz / n),
    )


def lattice_k2(lattice: Lattice) -> np.ndarray:
    """Squared lattice wavenumber on the full mode-space grid."""
    kx, ky, kz = lattice_wavenumbers(lattice)
    return kx * kx + ky * ky + kz * kz


def _check(field: Field, ncomp: int, domain: str, what: str) -> None:
    field.require_domain(domain, what)
    field.require_components(ncomp, what)


def _same_lattice(*fields: Field) -> None:
    first = fields[0]
    for f in fields[1:]:
        if f.lattice is not first.lattice:
            raise ValueError(f"fields '{first.name}' and '{f.name}' live on different lattices")


# =====================================================================
# Source construction (position space)
# =====================================================================

def prepare_phi_source(
    phi: Field,
    chi: Field,
    T00: Field,
    Omega: float,
    out: Field,
    coeff: float,
    coeff2: float,
    coeff3: float,
    nonlinear: bool = False,
) -> None:
    """Composite source of the semi-implicit phi equation.

    ``out = coeff2 * (T00 - Omega) + (coeff3 - coeff) * phi - coeff3 * chi``

    Args:
        phi: Previous-step potential (the implicit term).
        chi: Previous-step anisotropic-stress potential.
        T00: Energy density.
        Omega: Background density subtracted from T00.
        out: Scalar target; may not alias ``phi``.
        coeff: Friction coefficient ``3 Hc dx^2 / dt``.
        coeff2: Coupling coefficient ``4 pi G dx^2 / a``.
        coeff3: Mass-like coefficient ``3 Hc^2 dx^2``.
        nonlinear: Multiply the matter term by ``(1 - 4 phi)``.
    """
    for f, what in ((phi, "potential"), (chi, "chi"), (T00, "energy density"), (out, "source")):
        _check(f, 1, POSITION, what)
    _same_lattice(phi, chi, T00, out)
    if out is phi:
        raise ValueError("phi source may not be built in place over phi")

    p = phi.interior[0]
    matter = coeff2 * (T00.interior[0] - Omega)
    if nonlinear:
        matter = matter * (1.0 - 4.0 * p)
    out.interior[0] = matter + (coeff3 - coeff) * p - coeff3 * chi.interior[0]
    out.mark_dirty()


def prepare_stress_source(
    phi: Field,
    Tij: Field,
    out: Field,
    coeff: float,
    nonlinear: bool = False,
) -> None:
    """Anisotropic-stress source ``out_ij = coeff * Tij_ij``.

    With ``nonlinear`` the second-order term ``2 d_i phi d_j phi`` (centred
    differences, cell units) is added, which needs a refreshed phi halo.
    Otherwise ``phi`` is only shape-checked.
    """
    _check(phi, 1, POSITION, "potential")
    _check(Tij, 6, POSITION, "stress")
    _check(out, 6, POSITION, "stress source")
    _same_lattice(phi, Tij, out)

    src = Tij.interior
    dst = out.interior
    dst[...] = coeff * src

    if nonlinear:
        phi.require_halo()
        grad = [_centred_difference(phi, axis) for axis in range(3)]
        for i in range(3):
            for j in range(i, 3):
                dst[SYMMETRIC_INDEX[i][j]] += 2.0 * grad[i] * grad[j]
    out.mark_dirty()


def _shifted(field: Field, axis: int, shift: int) -> np.ndarray:
    """Interior-sized view of component 0 displaced by ``shift`` cells along ``axis``."""
    g = field.lattice.ghost
    n = field.lattice.size
    if abs(shift) > g:
        raise ValueError(f"stencil reach {abs(shift)} exceeds ghost width {g}")
    idx = [slice(g, g + n)] * 3
    idx[axis] = slice(g + shift, g + shift + n)
    return field.data[0][tuple(idx)]


def _centred_difference(phi: Field, axis: int) -> np.ndarray:
    return 0.5 * (_shifted(phi, axis, 1) - _shifted(phi, axis, -1))


# =====================================================================
# Mode-space solves
# =====================================================================

def solve_modified_poisson(source_ft: Field, pot_ft: Field, modif: float = 0.0) -> None:
    """Solve ``-(k^2 + modif) pot = source`` mode by mode.

    With ``modif = 0`` this is the Poisson equation. The DC mode gets
    ``-source / modif``, or zero when ``modif`` vanishes.
    """
    _check(source_ft, 1, MODE, "source")
    _check(pot_ft, 1, MODE, "potential")
    _same_lattice(source_ft, pot_ft)

    k2 = lattice_k2(source_ft.lattice)
    k2[0, 0, 0] = 1.0
    src = source_ft.data[0]
    pot = -src / (k2 + modif)
    pot[0, 0, 0] = -src[0, 0, 0] / modif if modif != 0.0 else 0.0
    pot_ft.data[0] = pot


def project_scalar(Sij_ft: Field, chi_ft: Field) -> None:
    """Scalar (longitudinal) part of a symmetric tensor source.

    ``chi = -(3/2) (k_i k_j / k^2 - delta_ij / 3) S_ij / k^2``; pure-trace
    sources give zero. The DC mode is zero.
    """
    _check(Sij_ft, 6, MODE, "stress source")
    _check(chi_ft, 1, MODE, "chi")
    _same_lattice(Sij_ft, chi_ft)

    kx, ky, kz = lattice_wavenumbers(Sij_ft.lattice)
    kx2, ky2, kz2 = kx * kx, ky * ky, kz * kz
    k2 = kx2 + ky2 + kz2
    k2[0, 0, 0] = 1.0

    S = Sij_ft.data
    num = (
        (ky2 + kz2 - 2.0 * kx2) * S[0]
        + (kx2 + kz2 - 2.0 * ky2) * S[3]
        + (kx2 + ky2 - 2.0 * kz2) * S[5]
        - 6.0 * kx * ky * S[1]
        - 6.0 * kx * kz * S[2]
        - 6.0 * ky * kz * S[4]
    )
    chi = num / (2.0 * k2 * k2)
    chi[0, 0, 0] = 0.0
    chi_ft.data[0] = chi


def project_vector(Si_ft: Field, Bi_ft: Field, coeff: float = 1.0, modif: float = 0.0) -> None:
    """Transverse (divergence-free) part of a vector source.

    ``B_i = coeff (delta_ij - k_i k_j / k^2) S_j / (k^2 + modif)``; inputs
    parallel to k give zero. The DC mode is zero.
    """
    _check(Si_ft, 3, MODE, "momentum source")
    _check(Bi_ft, 3, MODE, "vector potential")
    _same_lattice(Si_ft, Bi_ft)

    k = lattice_wavenumbers(Si_ft.lattice)
    k2 = k[0] * k[0] + k[1] * k[1] + k[2] * k[2]
    k2[0, 0, 0] = 1.0

    S = Si_ft.data
    kdotS = (k[0] * S[0] + k[1] * S[1] + k[2] * S[2]) / k2
    scale = coeff / (k2 + modif)
    for c in range(3):
        Bi_ft.data[c] = (S[c] - k[c] * kdotS) * scale
        Bi_ft.data[c, 0, 0, 0] = 0.0


# =====================================================================
# Position-space stencils and filters
# =====================================================================

def fourth_order_gradient(phi: Field, axis: int, out: Field) -> None:
    """4th-order centred derivative of ``phi`` along ``axis`` into ``out``.

    ``out = (2/3 (phi[x+1] - phi[x-1]) - 1/12 (phi[x+2] - phi[x-2])) / dx``,
    followed by a halo refresh of ``out``. ``phi`` is not modified.
    """
    _check(phi, 1, POSITION, "potential")
    _check(out, 1, POSITION, "gradient")
    _same_lattice(phi, out)
    if axis not in (0, 1, 2):
        raise ValueError(f"axis must be 0, 1 or 2, got {axis}")
    phi.require_halo()

    inv_dx = float(phi.lattice.size)
    out.interior[0] = inv_dx * (
        GRAD_C1 * (_shifted(phi, axis, 1) - _shifted(phi, axis, -1))
        + GRAD_C2 * (_shifted(phi, axis, 2) - _shifted(phi, axis, -2))
    )
    out.update_halo()


def apply_filter_kspace(field_ft: Field, func: Callable[..., np.ndarray]) -> None:
    """Multiply every mode by ``func(n_x, n_y, n_z)`` (signed mode numbers)."""
    field_ft.require_domain(MODE, "filtered field")
    nx, ny, nz = field_ft.lattice.mode_numbers(signed=True)
    factor = np.broadcast_to(func(nx, ny, nz), field_ft.lattice.shape)
    field_ft.data *= factor[None]


def apply_filter_rspace(field: Field, func: Callable[..., np.ndarray]) -> None:
    """Multiply every cell by ``func(i, j, k)`` (cell coordinates), then refresh the halo."""
    field.require_domain(POSITION, "filtered field")
    n = field.lattice.size
    i = np.arange(n)[:, None, None]
    j = np.arange(n)[None, :, None]
    k = np.arange(n)[None, None, :]
    factor = np.broadcast_to(func(i, j, k), field.lattice.shape)
    field.interior[...] *= factor[None]
    field.update_halo()
