"""Stress-energy projector: particles -> position-space source fields.

Every projection follows the same four stages, in this order:

1. reset:   zero the target field, halo included (deposits are additive);
2. deposit: CIC-weight each particle onto its 8 surrounding vertices;
3. fold:    return ghost-layer deposits to their periodic owner cells;
4. halo:    refresh the ghost cells for later stencil reads.

The relativistic deposits are first order in the metric perturbation and
read the current ``phi`` at each vertex, so ``phi`` must hold the previous
step's solution with a refreshed halo.
"""

from __future__ import annotations

import logging

import numpy as np

from cosmopm.core.lattice import POSITION, Field
from cosmopm.particles import ParticleEnsemble
from cosmopm.pm.kernels import (
    _deposit_mass_kernel,
    _deposit_T0i_kernel,
    _deposit_T00_kernel,
    _deposit_Tij_kernel,
)

logger = logging.getLogger(__name__)


def _particle_arrays(particles: ParticleEnsemble) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    particles.validate()
    return (
        np.ascontiguousarray(particles.positions, dtype=np.float64),
        np.ascontiguousarray(particles.momenta, dtype=np.float64),
        np.ascontiguousarray(particles.masses, dtype=np.float64),
    )


def _check_target(field: Field, ncomp: int, what: str, phi: Field | None = None) -> None:
    field.require_domain(POSITION, what)
    field.require_components(ncomp, what)
    if phi is not None:
        phi.require_domain(POSITION, "potential")
        phi.require_components(1, "potential")
        if phi.lattice is not field.lattice:
            raise ValueError(f"potential '{phi.name}' and source '{field.name}' use different lattices")
        phi.require_halo()


def _finish(field: Field) -> None:
    field.fold_halo()
    field.update_halo()


def project_T00(particles: ParticleEnsemble, T00: Field, a: float, phi: Field) -> None:
    """Project the energy density onto ``T00``.

    Args:
        particles: Particle ensemble (read only).
        T00: Scalar position-space target.
        a: Scale factor.
        phi: Current potential (previous step's solution, clean halo).
    """
    _check_target(T00, 1, "energy density", phi)
    pos, mom, mass = _particle_arrays(particles)
    lat = T00.lattice

    T00.fill(0.0)
    _deposit_T00_kernel(pos, mom, mass, phi.data, T00.data, lat.size, lat.ghost, float(a))
    _finish(T00)


def project_T0i(particles: ParticleEnsemble, T0i: Field, phi: Field) -> None:
    """Project the momentum density onto the vector field ``T0i``."""
    _check_target(T0i, 3, "momentum density", phi)
    pos, mom, mass = _particle_arrays(particles)
    lat = T0i.lattice

    T0i.fill(0.0)
    _deposit_T0i_kernel(pos, mom, mass, phi.data, T0i.data, lat.size, lat.ghost)
    _finish(T0i)


def project_Tij(particles: ParticleEnsemble, Tij: Field, a: float, phi: Field) -> None:
    """Project the spatial stress onto the symmetric tensor field ``Tij``."""
    _check_target(Tij, 6, "stress", phi)
    pos, mom, mass = _particle_arrays(particles)
    lat = Tij.lattice

    Tij.fill(0.0)
    _deposit_Tij_kernel(pos, mom, mass, phi.data, Tij.data, lat.size, lat.ghost, float(a))
    _finish(Tij)


def project_mass(particles: ParticleEnsemble, rho: Field) -> None:
    """Project the plain mass density onto ``rho`` (Newtonian source)."""
    _check_target(rho, 1, "mass density")
    pos, _, mass = _particle_arrays(particles)
    lat = rho.lattice

    rho.fill(0.0)
    _deposit_mass_kernel(pos, mass, rho.data, lat.size, lat.ghost)
    _finish(rho)


def sample(
    particles: ParticleEnsemble,
    a: float,
    phi: Field,
    T00: Field,
    T0i: Field,
    Tij: Field,
) -> None:
    """Project the full stress-energy tensor of ``particles``.

    All shapes are checked before any field is touched.
    """
    if a <= 0.0:
        raise ValueError(f"scale factor must be positive, got {a}")
    _check_target(T00, 1, "energy density", phi)
    _check_target(T0i, 3, "momentum density", phi)
    _check_target(Tij, 6, "stress", phi)

    project_T00(particles, T00, a, phi)
    project_T0i(particles, T0i, phi)
    project_Tij(particles, Tij, a, phi)
    logger.debug("Sampled %d particle(s) at a=%.6e", particles.n_particles(), a)
