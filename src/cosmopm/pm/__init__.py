"""Particle-mesh gravity package.

Exports the two gravity strategies and the projection, solver and force
entry points they are built from.
"""

from cosmopm.pm.forces import compute_forces, interpolate_to_particles
from cosmopm.pm.newtonian import NewtonianPM
from cosmopm.pm.projection import project_mass, project_T0i, project_T00, project_Tij, sample
from cosmopm.pm.relativistic import RelativisticPM

__all__ = [
    "NewtonianPM",
    "RelativisticPM",
    "compute_forces",
    "interpolate_to_particles",
    "project_T00",
    "project_T0i",
    "project_Tij",
    "project_mass",
    "sample",
]
