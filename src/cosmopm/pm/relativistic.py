"""Relativistic particle-mesh engine.

Owns the metric perturbations ``phi`` (scalar), ``chi`` (anisotropic-stress
scalar) and ``Bi`` (frame-dragging vector), their sources ``T00``, ``T0i``
and ``Tij``, the mode-space partner of each, and one transform plan per pair.
Everything is allocated once, zero-initialised, and reused every step.

Per step the driver calls, in this order:

1. ``sample(particles, a)``, which needs ``phi`` from the previous step;
2. ``compute_potential(a, Hc, fourpiG, dt, Omega)``: phi, then chi, then Bi;
3. ``compute_forces(particles)``.

``phi`` is both the implicit input of its own solve and its output: the
composite source reads the old value before the backward transform
overwrites it.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

import numpy as np

from cosmopm.core.bases import GravitySolverBase
from cosmopm.core.lattice import Field, Lattice, TransformPlan
from cosmopm.core.parallel import ParallelContext
from cosmopm.particles import ParticleEnsemble
from cosmopm.pm import solvers
from cosmopm.pm.forces import compute_forces
from cosmopm.pm.projection import sample

logger = logging.getLogger(__name__)


class RelativisticPM(GravitySolverBase):
    """Weak-field relativistic PM solver on an ``N^3`` periodic lattice.

    Args:
        size: Grid cells per side N.
        context: Process group; a single-rank context is created when omitted.
        nonlinear: Include second-order phi terms in the phi and chi sources.
    """

    def __init__(
        self,
        size: int,
        context: ParallelContext | None = None,
        nonlinear: bool = False,
    ) -> None:
        self.lattice = Lattice(size, context=context)
        self.lattice_ft = self.lattice.transform_lattice()
        self.nonlinear = nonlinear

        lat, latFT = self.lattice, self.lattice_ft

        # Metric perturbations
        self.phi = Field(lat, 0, name="phi")
        self.chi = Field(lat, 0, name="chi")
        self.Bi = Field(lat, 1, name="Bi")

        # Sources
        self.T00 = Field(lat, 0, name="T00")
        self.T0i = Field(lat, 1, name="T0i")
        self.Tij = Field(lat, 2, symmetric=True, name="Tij")

        # Mode space
        self.phi_FT = Field(latFT, 0, name="phi_FT")
        self.chi_FT = Field(latFT, 0, name="chi_FT")
        self.Bi_FT = Field(latFT, 1, name="Bi_FT")
        self.T00_FT = Field(latFT, 0, name="T00_FT")
        self.T0i_FT = Field(latFT, 1, name="T0i_FT")
        self.Tij_FT = Field(latFT, 2, symmetric=True, name="Tij_FT")

        # Scratch targets for the composite sources
        self._phi_source = Field(lat, 0, name="phi_source")
        self._chi_source = Field(lat, 2, symmetric=True, name="chi_source")
        self._grad = Field(lat, 0, name="grad_phi")

        self.plan_phi = TransformPlan(self.phi, self.phi_FT)
        self.plan_chi = TransformPlan(self.chi, self.chi_FT)
        self.plan_Bi = TransformPlan(self.Bi, self.Bi_FT)
        self.plan_T00 = TransformPlan(self.T00, self.T00_FT)
        self.plan_T0i = TransformPlan(self.T0i, self.T0i_FT)
        self.plan_Tij = TransformPlan(self.Tij, self.Tij_FT)
        # The composite sources share the source mode-space buffers
        self.plan_phi_source = TransformPlan(self._phi_source, self.T00_FT)
        self.plan_chi_source = TransformPlan(self._chi_source, self.Tij_FT)

        logger.info(
            "RelativisticPM: N=%d, %d rank(s), nonlinear=%s",
            size, self.lattice.context.n_ranks, nonlinear,
        )

    @property
    def dx(self) -> float:
        return self.lattice.dx

    # -----------------------------------------------------------------
    # Projection
    # -----------------------------------------------------------------

    def sample(self, particles: ParticleEnsemble, a: float) -> None:
        """Project particle stress-energy onto T00, T0i and Tij."""
        sample(particles, a, self.phi, self.T00, self.T0i, self.Tij)

    # -----------------------------------------------------------------
    # Field equations
    # -----------------------------------------------------------------

    def compute_phi(self, a: float, Hc: float, fourpiG: float, dt: float, Omega: float) -> None:
        """Semi-implicit solve of the modified Poisson equation for phi."""
        _check_background(a, dt)
        dx = self.dx
        coeff = 3.0 * Hc * dx * dx / dt
        coeff2 = fourpiG * dx * dx / a
        coeff3 = 3.0 * Hc * Hc * dx * dx

        solvers.prepare_phi_source(
            self.phi, self.chi, self.T00, Omega, self._phi_source,
            coeff, coeff2, coeff3, nonlinear=self.nonlinear,
        )
        self.plan_phi_source.forward()
        solvers.solve_modified_poisson(self.T00_FT, self.phi_FT, modif=coeff)
        self.plan_phi.backward()
        self.phi.update_halo()
        logger.debug("phi solved: coeff=%.3e coeff2=%.3e coeff3=%.3e", coeff, coeff2, coeff3)

    def compute_chi(self, f: float = 1.0) -> None:
        """Algebraic solve for the anisotropic-stress potential chi."""
        if self.nonlinear:
            solvers.prepare_stress_source(
                self.phi, self.Tij, self._chi_source, 2.0 * f, nonlinear=True,
            )
            self.plan_chi_source.forward()
        else:
            # Linear source: scale in mode space, no scratch copy
            self.plan_Tij.forward()
            self.Tij_FT.data *= 2.0 * f
        solvers.project_scalar(self.Tij_FT, self.chi_FT)
        self.plan_chi.backward()
        self.chi.update_halo()

    def compute_Bi(self, f: float = 1.0) -> None:
        """Transverse projection of the momentum density for Bi."""
        self.plan_T0i.forward()
        solvers.project_vector(self.T0i_FT, self.Bi_FT, f)
        self.plan_Bi.backward()
        self.Bi.update_halo()

    def compute_potential(
        self,
        a: float,
        Hc: float,
        fourpiG: float,
        dt: float,
        Omega: float,
    ) -> None:
        """Solve for phi, then chi, then Bi from the current sources."""
        _check_background(a, dt)
        dx = self.dx
        self.compute_phi(a, Hc, fourpiG, dt, Omega)
        self.compute_chi(fourpiG * dx * dx / a)
        self.compute_Bi(fourpiG * dx * dx)

    # -----------------------------------------------------------------
    # Forces
    # -----------------------------------------------------------------

    def compute_forces(self, particles: ParticleEnsemble) -> None:
        """Write ``-grad(phi)`` at each particle into its acceleration."""
        compute_forces(self.phi, particles, scratch=self._grad)

    # -----------------------------------------------------------------
    # Filters and diagnostics
    # -----------------------------------------------------------------

    def apply_filter_kspace(self, func: Callable[..., np.ndarray]) -> None:
        """Multiply phi_FT mode by mode by ``func(n_x, n_y, n_z)``."""
        solvers.apply_filter_kspace(self.phi_FT, func)

    def apply_filter_rspace(self, func: Callable[..., np.ndarray]) -> None:
        """Multiply phi cell by cell by ``func(i, j, k)``."""
        solvers.apply_filter_rspace(self.phi, func)

    def fields(self) -> dict[str, Field]:
        return {
            "phi": self.phi,
            "chi": self.chi,
            "Bi": self.Bi,
            "T00": self.T00,
            "T0i": self.T0i,
            "Tij": self.Tij,
        }


def _check_background(a: float, dt: float) -> None:
    if a <= 0.0:
        raise ValueError(f"scale factor must be positive, got {a}")
    if dt <= 0.0:
        raise ValueError(f"time step must be positive, got {dt}")
