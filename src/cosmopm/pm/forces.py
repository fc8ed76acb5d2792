"""Force interpolator: potential gradient -> particle accelerations.

A gather: the potential is differentiated with the 4th-order stencil into a
transient scalar field, one axis at a time, and the gradient is read at
each particle with the same CIC kernel the projector deposits with. No
field owned by the caller is written.
"""

from __future__ import annotations

import numpy as np

from cosmopm.core.lattice import POSITION, Field
from cosmopm.particles import ParticleEnsemble
from cosmopm.pm.kernels import _interpolate_scalar_kernel
from cosmopm.pm.solvers import fourth_order_gradient


def interpolate_to_particles(field: Field, positions: np.ndarray) -> np.ndarray:
    """Gather a scalar field at ``positions`` with inverse CIC.

    Args:
        field: Scalar position-space field with a refreshed halo.
        positions: Positions in box units, shape (N, 3).

    Returns:
        Values at the particles, shape (N,).
    """
    field.require_domain(POSITION, "interpolated field")
    field.require_components(1, "interpolated field")
    field.require_halo()
    pos = np.ascontiguousarray(positions, dtype=np.float64)
    if pos.ndim != 2 or pos.shape[1] != 3:
        raise ValueError(f"positions must have shape (N, 3), got {pos.shape}")
    lat = field.lattice
    return _interpolate_scalar_kernel(field.data, pos, lat.size, lat.ghost)


def compute_forces(phi: Field, particles: ParticleEnsemble, scratch: Field | None = None) -> None:
    """Write ``-grad(phi)`` at each particle into ``particles.accelerations``.

    Args:
        phi: Scalar potential with a refreshed halo (read only).
        particles: Ensemble whose accelerations are overwritten.
        scratch: Optional scalar field reused for the gradient; a transient
            one is allocated otherwise. Must not be ``phi``.
    """
    phi.require_domain(POSITION, "potential")
    phi.require_components(1, "potential")
    particles.validate()
    if scratch is None:
        scratch = Field(phi.lattice, rank=0, name="grad_phi")
    elif scratch is phi:
        raise ValueError("gradient scratch field may not alias the potential")

    if particles.n_particles() == 0:
        return

    for axis in range(3):
        fourth_order_gradient(phi, axis, scratch)
        particles.accelerations[:, axis] = -interpolate_to_particles(scratch, particles.positions)
