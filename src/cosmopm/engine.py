"""PM engine: drives one gravity solve per cycle.

Wires together: config -> lattice pair -> gravity strategy -> diagnostics.
The background cosmology (scale factor, conformal Hubble rate) is integrated
by the caller and handed in every step as a ``BackgroundState``; particles
are moved by the caller using the accelerations written here.

The gravity strategy is picked once from ``config.gravity``:
- ``"gr"``        — ``RelativisticPM`` (phi, chi and Bi)
- ``"newtonian"`` — ``NewtonianPM`` (phi only)
"""

from __future__ import annotations

import logging
from collections import deque

import numpy as np

from cosmopm.config import SimulationConfig
from cosmopm.core.bases import BackgroundState, GravitySolverBase, StepResult
from cosmopm.core.parallel import ParallelContext
from cosmopm.diagnostics.power import power_spectrum
from cosmopm.diagnostics.statistics import field_extrema
from cosmopm.particles import ParticleEnsemble
from cosmopm.pm.newtonian import NewtonianPM
from cosmopm.pm.relativistic import RelativisticPM

logger = logging.getLogger(__name__)


class PMEngine:
    """Particle-mesh field engine.

    Each call to :meth:`step` runs the fixed per-cycle sequence
    1. sample the particle stress-energy onto the grid,
    2. solve the field equations,
    3. interpolate forces back to the particles,
    then records diagnostics at the configured intervals.

    Args:
        config: Validated run configuration.
        context: Process group; built from ``config.n_ranks`` and
            ``config.fft_workers`` when omitted.
    """

    def __init__(self, config: SimulationConfig, context: ParallelContext | None = None) -> None:
        self.config = config
        if context is None:
            context = ParallelContext(config.n_ranks, config.fft_workers)
        self.context = context

        self.gravity: GravitySolverBase
        if config.gravity == "gr":
            self.gravity = RelativisticPM(
                config.grid_size, context=context, nonlinear=config.phi_nonlinear
            )
        else:
            self.gravity = NewtonianPM(config.grid_size, context=context)

        self.cycle = 0
        self.spectra: dict[int, dict[str, np.ndarray]] = {}
        self.history: deque[StepResult] = deque(maxlen=config.diagnostics.history_length)

        logger.info(
            "PMEngine initialised: gravity=%s, N=%d, boxsize=%.1f Mpc/h, %d rank(s)",
            config.gravity, config.grid_size, config.boxsize, context.n_ranks,
        )

    # --- Background helpers ---

    def background(self, a: float, Hc: float, dt: float) -> BackgroundState:
        """Background state for scale factor ``a`` from the configured cosmology.

        The subtracted background density is the total matter density
        parameter, matching the normalisation of the deposited ``T00``.
        """
        return BackgroundState(
            a=a,
            Hc=Hc,
            fourpiG=self.config.fourpiG,
            dt=dt,
            Omega=self.config.cosmology.Omega_m,
        )

    def timestep(self, Hc: float) -> float:
        """Conformal step limited by the Courant factor and the Hubble time."""
        ts = self.config.timestep
        dt = ts.Cf * self.config.dx
        if Hc > 0.0:
            dt = min(dt, ts.steplimit / Hc)
        return dt

    # --- Stepping ---

    def step(self, particles: ParticleEnsemble, background: BackgroundState) -> StepResult:
        """Advance the field engine by one cycle.

        Args:
            particles: Ensemble to sample; its accelerations are overwritten.
            background: Background quantities for this cycle.

        Returns:
            StepResult summarising the cycle.
        """
        gravity = self.gravity
        gravity.sample(particles, background.a)
        gravity.solve(background)
        gravity.compute_forces(particles)

        if particles.n_particles() > 0:
            max_acc = float(np.max(np.linalg.norm(particles.accelerations, axis=1)))
        else:
            max_acc = 0.0

        result = StepResult(
            cycle=self.cycle,
            a=background.a,
            z=background.z,
            mean_T00=gravity.mean_T00(),
            phi_dc=gravity.phi_dc(),
            max_acceleration=max_acc,
            n_particles=particles.n_particles(),
        )
        self.history.append(result)

        diag = self.config.diagnostics
        if self.cycle % diag.info_interval == 0:
            phi_min, phi_max = field_extrema(gravity.phi)
            logger.info(
                "cycle %d: z=%.4f, <T00>=%.6e, phi in [%.3e, %.3e], max|acc|=%.3e",
                self.cycle, result.z, result.mean_T00, phi_min, phi_max, max_acc,
            )
        if diag.pk_interval > 0 and self.cycle % diag.pk_interval == 0:
            self.spectra[self.cycle] = self.power_spectra()
            while len(self.spectra) > diag.history_length:
                del self.spectra[next(iter(self.spectra))]

        self.cycle += 1
        return result

    # --- Diagnostics ---

    def power_spectra(self) -> dict[str, np.ndarray]:
        """Power spectra of the potential and of the density source.

        Transforms ``phi`` and ``T00`` into their mode-space partners; the
        source transform overwrites scratch data of the last solve only.
        """
        gravity = self.gravity
        gravity.plan_phi.forward()
        gravity.plan_T00.forward()
        return {
            "phi": power_spectrum(gravity.phi_FT, self.context),
            "T00": power_spectrum(gravity.T00_FT, self.context),
        }
