"""Pydantic v2 configuration system for particle-mesh runs.

Provides validated, typed configuration with submodels for the cosmology,
time stepping and diagnostics. Supports JSON I/O and cross-field validation.
"""

from __future__ import annotations

import json
from pathlib import Path

from pydantic import BaseModel, Field, model_validator

from cosmopm.constants import GHOST_WIDTH, four_pi_G


class CosmologyConfig(BaseModel):
    """Background cosmology parameters."""

    h: float = Field(0.67556, gt=0, description="Dimensionless Hubble parameter")
    Omega_cdm: float = Field(0.2638, ge=0, description="Cold dark matter density parameter")
    Omega_b: float = Field(0.0482, ge=0, description="Baryon density parameter")
    z_in: float = Field(100.0, ge=0, description="Initial redshift")

    @property
    def Omega_m(self) -> float:
        """Total matter density parameter."""
        return self.Omega_cdm + self.Omega_b


class TimestepConfig(BaseModel):
    """Conformal time-step limits."""

    Cf: float = Field(1.0, gt=0, description="Courant factor: dtau <= Cf * dx")
    steplimit: float = Field(
        0.1, gt=0,
        description="Maximum fraction of the conformal Hubble time per step",
    )


class DiagnosticsConfig(BaseModel):
    """Diagnostics cadence."""

    info_interval: int = Field(10, gt=0, description="Cycles between cycle summaries in the log")
    pk_interval: int = Field(
        0, ge=0,
        description="Cycles between power spectrum evaluations (0 = off)",
    )
    history_length: int = Field(
        1000, gt=0,
        description="Step summaries and power spectra kept in memory (oldest dropped first)",
    )


class SimulationConfig(BaseModel):
    """Top-level configuration of the particle-mesh field engine."""

    grid_size: int = Field(..., gt=0, description="Grid cells per side N")
    boxsize: float = Field(320.0, gt=0, description="Comoving box side [Mpc/h]")
    gravity: str = Field(
        "gr",
        description="Gravity theory: 'gr' (relativistic PM) or 'newtonian' (Newtonian PM)",
    )
    n_ranks: int = Field(1, ge=1, description="Number of slabs in the domain decomposition")
    fft_workers: int = Field(1, ge=1, description="Threads used by scipy.fft")
    phi_nonlinear: bool = Field(
        False,
        description="Include second-order phi terms in the phi and chi sources",
    )

    cosmology: CosmologyConfig = Field(default_factory=CosmologyConfig)
    timestep: TimestepConfig = Field(default_factory=TimestepConfig)
    diagnostics: DiagnosticsConfig = Field(default_factory=DiagnosticsConfig)

    @model_validator(mode="after")
    def validate_grid(self) -> SimulationConfig:
        if self.grid_size < 2 * GHOST_WIDTH:
            raise ValueError(
                f"grid_size must be at least {2 * GHOST_WIDTH} (twice the ghost width), "
                f"got {self.grid_size}"
            )
        if self.n_ranks > self.grid_size:
            raise ValueError(
                f"n_ranks ({self.n_ranks}) cannot exceed grid_size ({self.grid_size})"
            )
        return self

    @model_validator(mode="after")
    def validate_gravity(self) -> SimulationConfig:
        if self.gravity not in ("gr", "newtonian"):
            raise ValueError(f"gravity must be 'gr' or 'newtonian', got '{self.gravity}'")
        return self

    @property
    def dx(self) -> float:
        """Grid spacing in box units."""
        return 1.0 / self.grid_size

    @property
    def fourpiG(self) -> float:
        """4*pi*G in code units for the configured box."""
        return four_pi_G(self.boxsize)

    # --- I/O helpers ---

    @classmethod
    def from_file(cls, path: str | Path) -> SimulationConfig:
        """Load configuration from a JSON file."""
        path = Path(path)
        with path.open() as f:
            data = json.load(f)
        return cls(**data)

    def to_json(self, path: str | Path | None = None) -> str:
        """Serialize to JSON string, optionally writing to file."""
        out = self.model_dump_json(indent=2)
        if path is not None:
            Path(path).write_text(out)
        return out
