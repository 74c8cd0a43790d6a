"""
Physical constants and astronomical units (SI).

CODATA values come from :mod:`scipy.constants`; solar units follow the
IAU nominal mass and the textbook radius / luminosity used in the
stellar-structure exercise.
"""

from __future__ import annotations

import numpy as np
from scipy import constants as _c

# ── CODATA ───────────────────────────────────────────────────────────
SIGMA_SB = _c.Stefan_Boltzmann     # W m⁻² K⁻⁴
K_B = _c.Boltzmann                 # J K⁻¹
C_LIGHT = _c.speed_of_light        # m s⁻¹
G_NEWTON = _c.gravitational_constant
E_CHARGE = _c.elementary_charge    # C
M_PROTON = _c.proton_mass          # kg
M_ELECTRON = _c.electron_mass      # kg
MU_0 = _c.mu_0                     # N A⁻²

# Radiation constant  a = 4σ/c  ≈ 7.566e-16 J m⁻³ K⁻⁴
A_RAD = 4.0 * SIGMA_SB / C_LIGHT

# ── Solar units ──────────────────────────────────────────────────────
M_SUN = 1.98847e30      # kg
R_SUN = 6.96e8          # m
L_SUN = 3.83e26         # W

# Mean mass per particle, fully ionised 75 % H / 25 % He (by mass)
MU_MASS_PRIMORDIAL = 9.91e-28   # kg


def solar_masses(n: float) -> float:
    """Mass of *n* suns in kg."""
    return n * M_SUN


def to_solar_radii(r):
    return np.asarray(r, dtype=float) / R_SUN


def to_solar_luminosity(L):
    return np.asarray(L, dtype=float) / L_SUN
