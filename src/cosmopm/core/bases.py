"""Core abstract base classes and shared data structures.

Defines the interface contracts the particle-mesh engines implement:
- ``BackgroundState`` — per-step background-cosmology parameters
- ``StepResult`` — summary of one engine step
- ``GravitySolverBase`` — strategy ABC for relativistic / Newtonian PM
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass

from cosmopm.core.lattice import Field, Lattice, TransformPlan
from cosmopm.diagnostics.statistics import field_mean
from cosmopm.particles import ParticleEnsemble


@dataclass
class BackgroundState:
    """Background quantities handed to the field solver each step.

    Attributes:
        a: Scale factor.
        Hc: Conformal Hubble rate (code units).
        fourpiG: Gravitational coupling 4*pi*G (code units).
        dt: Conformal time step (code units).
        Omega: Background density subtracted from T00.
    """

    a: float
    Hc: float
    fourpiG: float
    dt: float
    Omega: float = 0.0

    @property
    def z(self) -> float:
        return 1.0 / self.a - 1.0


@dataclass
class StepResult:
    """Result of a single engine step.

    Attributes:
        cycle: Cycle number of this step.
        a: Scale factor used for the step.
        z: Redshift.
        mean_T00: Grid average of the energy density source.
        phi_dc: Real part of the k=0 mode of phi.
        max_acceleration: Largest particle acceleration magnitude.
        n_particles: Number of particles sampled.
    """

    cycle: int = 0
    a: float = 1.0
    z: float = 0.0
    mean_T00: float = 0.0
    phi_dc: float = 0.0
    max_acceleration: float = 0.0
    n_particles: int = 0


class GravitySolverBase(ABC):
    """Abstract base for particle-mesh gravity strategies."""

    lattice: Lattice
    phi: Field
    phi_FT: Field
    T00: Field
    T00_FT: Field
    plan_phi: TransformPlan
    plan_T00: TransformPlan

    @abstractmethod
    def sample(self, particles: ParticleEnsemble, a: float) -> None:
        """Project particles onto the source fields.

        Args:
            particles: Particle ensemble (read only).
            a: Scale factor.
        """

    @abstractmethod
    def compute_potential(
        self,
        a: float,
        Hc: float,
        fourpiG: float,
        dt: float,
        Omega: float,
    ) -> None:
        """Solve the field equations for the potentials from the current sources."""

    @abstractmethod
    def compute_forces(self, particles: ParticleEnsemble) -> None:
        """Write accelerations to ``particles`` from the current potentials."""

    @abstractmethod
    def fields(self) -> dict[str, Field]:
        """Position-space fields by name, for diagnostics."""

    def mean_T00(self) -> float:
        """Grid average of the density source, reduced over all ranks."""
        return field_mean(self.T00)

    def phi_dc(self) -> float:
        """Real part of the k = 0 mode of phi as of the last solve."""
        return float(self.phi_FT.data[0, 0, 0, 0].real)

    def solve(self, background: BackgroundState) -> None:
        self.compute_potential(
            background.a, background.Hc, background.fourpiG, background.dt, background.Omega
        )
