"""
Magnetic field-line geometry.

Axisymmetric multipoles
-----------------------
For the degree-n, order-0 potential the field line through (r₀, θ₀)
obeys  rⁿ ∝ |sin²θ · P_n′(cos θ)|, so

    r(θ) = ( |r₀ⁿ / h(θ₀)| · |h(θ)| )^(1/n),   h(θ) = sin²θ · P_n′(cos θ)

n = 1 is the dipole  r = r₀ sin²θ / sin²θ₀  (constant L-shell).

Numerical tracing
-----------------
Any field object with ``magnetic(x, t)`` can be traced by integrating
dx/ds = ±B/|B| until the line returns to the planet surface.
Lengths are in planet radii unless stated otherwise.
"""

from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np
from scipy.integrate import solve_ivp
from scipy.special import legendre

from astrosim.constants import MU_0

MULTIPOLE_NAMES = {1: "dipole", 2: "quadrupole", 3: "octupole", 4: "hexadecapole"}


# =====================================================================
#  Axisymmetric multipole field lines
# =====================================================================

def multipole_shape(n: int, theta) -> np.ndarray:
    """h(θ) = sin²θ · P_n′(cos θ)."""
    if n < 1:
        raise ValueError(f"multipole degree must be >= 1, got {n}")
    theta = np.asarray(theta, dtype=float)
    dPn = legendre(n).deriv()
    return np.sin(theta) ** 2 * dPn(np.cos(theta))


def field_line_radius(n: int, r0: float, theta0: float, theta) -> np.ndarray:
    """Radius of the degree-*n* field line through (r0, θ0) at colatitude θ."""
    h0 = multipole_shape(n, theta0)
    if abs(h0) < 1e-12:
        raise ValueError(f"θ0 = {theta0:.6g} lies on a null of the degree-{n} field-line shape")
    h = multipole_shape(n, theta)
    return (np.abs(r0 ** n / h0) * np.abs(h)) ** (1.0 / n)


def dipole(r0, theta0, theta):
    return field_line_radius(1, r0, theta0, theta)


def quadrupole(r0, theta0, theta):
    return field_line_radius(2, r0, theta0, theta)


def octupole(r0, theta0, theta):
    return field_line_radius(3, r0, theta0, theta)


def hexadecapole(r0, theta0, theta):
    return field_line_radius(4, r0, theta0, theta)


def field_line(
    n: int,
    theta0: float,
    *,
    r0: float = 1.0,
    n_points: int = 1000,
    planet_radius: float = 1.0,
) -> tuple[np.ndarray, np.ndarray]:
    """
    Sample a multipole field line in the meridian plane.

    θ runs from θ0 to π.  Points inside the planet are set to NaN so the
    line breaks where it re-enters the surface.

    Returns
    -------
    x, y : (n_points,); x = r sin θ (cylindrical radius), y = r cos θ (along the axis)
    """
    theta = np.linspace(theta0, np.pi, n_points)
    r = field_line_radius(n, r0, theta0, theta)
    x = r * np.sin(theta)
    y = r * np.cos(theta)
    inside = r < planet_radius * (1 - 1e-12)
    x[inside] = np.nan
    y[inside] = np.nan
    return x, y


def mirror_quadrants(x, y) -> list[tuple[np.ndarray, np.ndarray]]:
    """The four symmetric copies (±x, ±y) of a meridian-plane line."""
    x, y = np.asarray(x), np.asarray(y)
    return [(x, y), (x, -y), (-x, y), (-x, -y)]


# =====================================================================
#  Dipole field and numerical tracing
# =====================================================================

@dataclass(frozen=True)
class DipoleField:
    """Point dipole  B = μ0/4π · (3 r̂(m·r̂) − m) / r³."""
    moment: np.ndarray = field(default_factory=lambda: np.array([0.0, 0.0, -8.0e22]))  # A m²
    center: np.ndarray = field(default_factory=lambda: np.zeros(3))

    def __post_init__(self):
        object.__setattr__(self, "moment", np.asarray(self.moment, dtype=float))
        object.__setattr__(self, "center", np.asarray(self.center, dtype=float))

    def magnetic(self, x, t=0.0) -> np.ndarray:
        r = np.asarray(x, dtype=float) - self.center
        rn = np.linalg.norm(r, axis=-1, keepdims=True)
        m_dot_r = (r * self.moment).sum(axis=-1, keepdims=True)
        return MU_0 / (4 * np.pi) * (3 * r * m_dot_r / rn ** 5 - self.moment / rn ** 3)

    def electric(self, x, t=0.0) -> np.ndarray:
        return np.zeros_like(np.asarray(x, dtype=float))


def dipole_l_shell(x) -> np.ndarray:
    """McIlwain-style L = r / sin²θ for an axis-aligned dipole at the origin."""
    x = np.asarray(x, dtype=float)
    rho2 = x[..., 0] ** 2 + x[..., 1] ** 2
    r = np.linalg.norm(x, axis=-1)
    return r ** 3 / rho2


def trace_field_line(
    field,
    start,
    *,
    direction: int = 1,
    s_max: float = 100.0,
    stop_radius: float = 1.0,
    max_step: float = 0.05,
    rtol: float = 1e-9,
    atol: float = 1e-12,
) -> tuple[np.ndarray, np.ndarray]:
    """
    Follow a field line from *start* by integrating dx/ds = direction · B/|B|.

    Integration stops at arc length *s_max* or when the line reaches
    ``|x − center| = stop_radius``.

    Returns
    -------
    s : (n,) arc length
    x : (n, 3) points on the line
    """
    if direction not in (1, -1):
        raise ValueError(f"direction must be +1 or -1, got {direction}")
    start = np.asarray(start, dtype=float)
    center = np.asarray(getattr(field, "center", np.zeros(3)), dtype=float)
    if np.linalg.norm(start - center) < stop_radius:
        raise ValueError("start point lies inside the stopping sphere")

    def rhs(_s, x):
        B = field.magnetic(x, 0.0)
        return direction * B / np.linalg.norm(B)

    def surface(_s, x):
        return np.linalg.norm(x - center) - stop_radius
    surface.terminal = True
    surface.direction = -1

    # on a terminal event solve_ivp ends the dense output at the event point
    sol = solve_ivp(rhs, [0.0, s_max], start, events=surface,
                    max_step=max_step, rtol=rtol, atol=atol)
    return sol.t, sol.y.T
