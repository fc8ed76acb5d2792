"""Particle ensemble container.

Particles live in box units (positions in ``[0, 1)``, periodic) and carry
their canonical momentum normalised by the rest mass, ``q = p / m``. The
field engine reads positions, momenta and masses, and writes accelerations;
moving particles between cells is the job of the driver.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

import numpy as np

logger = logging.getLogger(__name__)


@dataclass
class ParticleEnsemble:
    """Container for a set of massive particles.

    Attributes
    ----------
    ids : ndarray, shape (N,)
        Particle identities.
    positions : ndarray, shape (N, 3)
        Positions in box units, in ``[0, 1)``.
    momenta : ndarray, shape (N, 3)
        Canonical momentum per unit rest mass.
    accelerations : ndarray, shape (N, 3)
        Accelerations written by the force interpolator.
    masses : ndarray, shape (N,)
        Mass weights.
    species : ndarray, shape (N,)
        Integer species tag.
    """

    ids: np.ndarray
    positions: np.ndarray
    momenta: np.ndarray
    accelerations: np.ndarray
    masses: np.ndarray
    species: np.ndarray

    @classmethod
    def empty(cls) -> ParticleEnsemble:
        return cls(
            ids=np.zeros(0, dtype=np.int64),
            positions=np.zeros((0, 3)),
            momenta=np.zeros((0, 3)),
            accelerations=np.zeros((0, 3)),
            masses=np.zeros(0),
            species=np.zeros(0, dtype=np.int64),
        )

    @classmethod
    def from_arrays(
        cls,
        positions: np.ndarray,
        momenta: np.ndarray | None = None,
        masses: np.ndarray | float = 1.0,
        species: np.ndarray | int = 0,
    ) -> ParticleEnsemble:
        """Build an ensemble from raw arrays.

        Args:
            positions: Positions in box units, shape (N, 3). Wrapped into
                ``[0, 1)``.
            momenta: Momenta per unit mass, shape (N, 3); zero if omitted.
            masses: Per-particle masses, shape (N,), or one value for all.
            species: Per-particle species tags, or one tag for all.

        Returns:
            New ensemble owning copies of the arrays.
        """
        pos = np.array(positions, dtype=np.float64, ndmin=2)
        if pos.ndim != 2 or pos.shape[1] != 3:
            raise ValueError(f"positions must have shape (N, 3), got {pos.shape}")
        n = pos.shape[0]

        if momenta is None:
            mom = np.zeros((n, 3))
        else:
            mom = np.array(momenta, dtype=np.float64, ndmin=2)
            if mom.shape != (n, 3):
                raise ValueError(f"momenta must have shape ({n}, 3), got {mom.shape}")

        m = np.broadcast_to(np.asarray(masses, dtype=np.float64), (n,)).copy()
        sp = np.broadcast_to(np.asarray(species, dtype=np.int64), (n,)).copy()

        ens = cls(
            ids=np.arange(n, dtype=np.int64),
            positions=pos,
            momenta=mom,
            accelerations=np.zeros((n, 3)),
            masses=m,
            species=sp,
        )
        ens.wrap()
        return ens

    @classmethod
    def uniform(cls, n_per_dim: int, total_mass: float = 1.0) -> ParticleEnsemble:
        """Particles at rest on a regular lattice of ``n_per_dim^3`` sites.

        Sites sit at the centres of a ``n_per_dim^3`` partition of the box,
        each carrying ``total_mass / n_per_dim^3``.
        """
        if n_per_dim < 1:
            raise ValueError(f"n_per_dim must be >= 1, got {n_per_dim}")
        q = (np.arange(n_per_dim) + 0.5) / n_per_dim
        X, Y, Z = np.meshgrid(q, q, q, indexing="ij")
        pos = np.stack([X.ravel(), Y.ravel(), Z.ravel()], axis=1)
        n = pos.shape[0]
        return cls.from_arrays(pos, masses=total_mass / n)

    # --- Queries ---

    def n_particles(self) -> int:
        """Return the number of particles."""
        return int(self.positions.shape[0])

    def total_mass(self) -> float:
        return float(np.sum(self.masses))

    def cells(self, size: int) -> np.ndarray:
        """Containing cell index of every particle, shape (N, 3)."""
        return np.floor(self.positions * size).astype(np.int64) % size

    def by_cell(self, size: int) -> dict[tuple[int, int, int], np.ndarray]:
        """Map each occupied cell to the indices of the particles it holds."""
        cells = self.cells(size)
        out: dict[tuple[int, int, int], list[int]] = {}
        for idx, c in enumerate(cells):
            out.setdefault((int(c[0]), int(c[1]), int(c[2])), []).append(idx)
        return {k: np.asarray(v, dtype=np.int64) for k, v in out.items()}

    # --- Mutation ---

    def wrap(self) -> None:
        """Fold positions back into the periodic box ``[0, 1)``."""
        outside = np.any((self.positions < 0.0) | (self.positions >= 1.0), axis=1)
        n_out = int(np.count_nonzero(outside))
        if n_out:
            logger.warning("Wrapping %d particle(s) back into the periodic box", n_out)
            self.positions %= 1.0
            # x % 1.0 can round up to exactly 1.0 for tiny negative x
            self.positions[self.positions >= 1.0] = 0.0

    def validate(self) -> None:
        """Check array shapes are mutually consistent."""
        n = self.positions.shape[0]
        for name, arr, shape in (
            ("positions", self.positions, (n, 3)),
            ("momenta", self.momenta, (n, 3)),
            ("accelerations", self.accelerations, (n, 3)),
            ("masses", self.masses, (n,)),
        ):
            if arr.shape != shape:
                raise ValueError(f"particle {name} must have shape {shape}, got {arr.shape}")
