"""Newtonian particle-mesh engine.

Deposits the plain mass density into ``T00`` and solves

    laplacian(phi) = 4 pi G / a * (rho - rho_mean)

with the same lattice Laplacian, transforms and force interpolator as the
relativistic engine. ``chi`` and ``Bi`` exist so that both engines expose
the same field set, and stay zero.
"""

from __future__ import annotations

import logging

from cosmopm.core.bases import GravitySolverBase
from cosmopm.core.lattice import Field, Lattice, TransformPlan
from cosmopm.core.parallel import ParallelContext
from cosmopm.particles import ParticleEnsemble
from cosmopm.pm import solvers
from cosmopm.pm.forces import compute_forces
from cosmopm.pm.projection import project_mass

logger = logging.getLogger(__name__)


class NewtonianPM(GravitySolverBase):
    """Newtonian PM solver on an ``N^3`` periodic lattice.

    Args:
        size: Grid cells per side N.
        context: Process group; a single-rank context is created when omitted.
    """

    def __init__(self, size: int, context: ParallelContext | None = None) -> None:
        self.lattice = Lattice(size, context=context)
        self.lattice_ft = self.lattice.transform_lattice()

        lat, latFT = self.lattice, self.lattice_ft

        self.phi = Field(lat, 0, name="phi")
        self.chi = Field(lat, 0, name="chi")
        self.Bi = Field(lat, 1, name="Bi")
        self.T00 = Field(lat, 0, name="rho")

        self.phi_FT = Field(latFT, 0, name="phi_FT")
        self.T00_FT = Field(latFT, 0, name="rho_FT")

        self._source = Field(lat, 0, name="rho_source")
        self._grad = Field(lat, 0, name="grad_phi")

        self.plan_phi = TransformPlan(self.phi, self.phi_FT)
        self.plan_T00 = TransformPlan(self.T00, self.T00_FT)
        self.plan_source = TransformPlan(self._source, self.T00_FT)

        logger.info("NewtonianPM: N=%d, %d rank(s)", size, self.lattice.context.n_ranks)

    @property
    def dx(self) -> float:
        return self.lattice.dx

    def sample(self, particles: ParticleEnsemble, a: float) -> None:
        """Project the mass density onto ``T00``."""
        if a <= 0.0:
            raise ValueError(f"scale factor must be positive, got {a}")
        project_mass(particles, self.T00)
        logger.debug("Sampled %d particle(s) (mass only)", particles.n_particles())

    def compute_potential(
        self,
        a: float,
        Hc: float,
        fourpiG: float,
        dt: float,
        Omega: float,
    ) -> None:
        """Poisson solve for phi; ``Hc``, ``dt`` and ``Omega`` are unused."""
        if a <= 0.0:
            raise ValueError(f"scale factor must be positive, got {a}")
        dx = self.dx
        rho_mean = self.mean_T00()
        self._source.interior[0] = (fourpiG * dx * dx / a) * (self.T00.interior[0] - rho_mean)
        self._source.mark_dirty()

        self.plan_source.forward()
        solvers.solve_modified_poisson(self.T00_FT, self.phi_FT)
        self.plan_phi.backward()
        self.phi.update_halo()

    def compute_forces(self, particles: ParticleEnsemble) -> None:
        """Write ``-grad(phi)`` at each particle into its acceleration."""
        compute_forces(self.phi, particles, scratch=self._grad)

    def fields(self) -> dict[str, Field]:
        return {"phi": self.phi, "chi": self.chi, "Bi": self.Bi, "T00": self.T00}
