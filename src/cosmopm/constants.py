"""Physical constants — single source of truth for the entire codebase.

All values sourced from ``scipy.constants`` (CODATA 2018).
Import from here instead of defining local constants.
"""

import scipy.constants as _sc

# Speed of light
C_SPEED_OF_LIGHT = _sc.c / 1e5            # In units of 100 km/s (H0 = 100 h km/s/Mpc)

# Lattice
GHOST_WIDTH = 2                           # Halo width required by the 4th-order stencil


def four_pi_G(boxsize: float) -> float:
    """Gravitational coupling 4*pi*G in code units.

    Code units measure lengths in box units and time in units of the box
    light-crossing time, with the Hubble rate in units of 100 h km/s/Mpc.
    Then ``4 pi G rho_crit = 1.5 H0^2`` gives ``4 pi G = 1.5 L^2 / c^2``.

    Args:
        boxsize: Comoving box side [Mpc/h].

    Returns:
        4*pi*G in code units.
    """
    return 1.5 * boxsize * boxsize / C_SPEED_OF_LIGHT / C_SPEED_OF_LIGHT
