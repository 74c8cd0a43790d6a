"""
Equations of stellar structure for a non-rotating star in hydrostatic
equilibrium, in the mass coordinate M_r:

    dr/dM = 1 / (4π r² ρ)              dT/dM = -3 κ L / (64 π² a c T³ r⁴)
    dP/dM = -G M / (4π r⁴)             dL/dM = ε

with SI coefficients for a primordial (75 % H, 25 % He, fully ionised)
Population-III star.  Boundary conditions: r = L = 0 at the centre,
P = 0 at M_r = M_*.  The unknown central temperature and pressure are
found by shooting from the centre.

Shooting outwards from a trial core ends in one of two ways.  Either the
temperature collapses to zero while gas pressure remains (the core was
too dense), or the gas pressure thins out before the temperature does and
the envelope swells into a tenuous, nearly isothermal halo that carries
the remaining mass at P ≈ 0.  A real star sits on the boundary between
the two, where P, T and ρ vanish together at its surface.

All physics functions take torch tensors (or floats) and broadcast, so a
whole batch of trial cores can be integrated at once.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, replace
from typing import NamedTuple

import numpy as np
import torch

from astrosim.constants import (
    A_RAD, C_LIGHT, G_NEWTON, K_B, M_SUN, MU_MASS_PRIMORDIAL,
    to_solar_luminosity, to_solar_radii,
)
from astrosim.integrators import rk4_step
from astrosim.shooting import ShootingError, bisect_shot

_PI = math.pi

# interior points per multisection round when shooting for P_c
_N_INNER = 31

# trial stars for the surface-mass search run out to this multiple of M_*
_MASS_HEADROOM = 2


@dataclass(frozen=True)
class StarParameters:
    """Composition coefficients and integration grid for one star."""
    mass: float = 100.0 * M_SUN            # M_* [kg]
    mu_mass: float = MU_MASS_PRIMORDIAL    # mean particle mass [kg]
    kappa_es: float = 0.035                # electron scattering [m² kg⁻¹]
    kappa_ff: float = 6.44e18              # Kramers coefficient
    eps_pp: float = 0.136                  # [W kg⁻¹]
    eps_ratio: float = 3.49e12             # second-channel / first-channel
    n_steps: int = 100                     # grid intervals from 0 to M_*
    start_fraction: float = 1e-8           # central series out to this fraction of M_*
    max_change: float = 0.1                # largest |Δ ln| of r, T, P, ρ per RK4 substep
    min_step_fraction: float = 1e-10       # substeps below this fraction of M_* end a trial
    max_substeps: int = 20000              # per grid interval

    def __post_init__(self):
        if self.mass <= 0:
            raise ValueError(f"mass must be positive, got {self.mass}")
        if self.n_steps < 2:
            raise ValueError(f"n_steps must be at least 2, got {self.n_steps}")
        if not 0 < self.start_fraction < 1.0 / self.n_steps:
            raise ValueError(
                f"start_fraction must lie inside the first grid interval, got {self.start_fraction}"
            )
        if self.max_change <= 0 or self.min_step_fraction <= 0:
            raise ValueError("max_change and min_step_fraction must be positive")


DEFAULT_STAR = StarParameters()


class StellarProfile(NamedTuple):
    """Structure of one (or a batch of) trial star(s) on the mass grid.

    Samples after ``surface_index`` are NaN: the trial stopped at
    ``surface_mass``, inside the following interval.
    """
    mass: np.ndarray           # (n+1,)            M_r [kg]
    radius: np.ndarray         # (..., n+1)        r [m]
    temperature: np.ndarray    # (..., n+1)        T [K]
    pressure: np.ndarray       # (..., n+1)        P [Pa]
    luminosity: np.ndarray     # (..., n+1)        L_r [W]
    density: np.ndarray        # (..., n+1)        ρ [kg m⁻³]
    surface_index: np.ndarray  # (...,)  last physical grid index
    surface_mass: np.ndarray   # (...,)  M_r where the trial stopped (M_* if it got there)
    reached_surface: np.ndarray  # (...,) bool


class CoreSolution(NamedTuple):
    """Output of :func:`solve_core_pressure` / :func:`solve_structure`."""
    central_temperature: float   # K
    central_pressure: float      # Pa
    radius: float                # m
    luminosity: float            # W
    profile: StellarProfile
    residual: float              # surface residual (a) or mass mismatch (b)
    converged: bool


def _t(x) -> torch.Tensor:
    return torch.as_tensor(x, dtype=torch.float64)


# =====================================================================
#  Microphysics
# =====================================================================

def radiation_pressure(T):
    """P_rad = a T⁴ / 3."""
    return A_RAD * _t(T) ** 4 / 3.0


def density(P, T, params: StarParameters = DEFAULT_STAR):
    """ρ = μ (P − aT⁴/3) / (k_B T), gas pressure only."""
    P, T = _t(P), _t(T)
    return params.mu_mass * (P - radiation_pressure(T)) / (K_B * T)


def opacity(rho, T, params: StarParameters = DEFAULT_STAR):
    """κ = 0.035 + 6.44e18 ρ T^-3.5   [m² kg⁻¹]."""
    rho, T = _t(rho), _t(T)
    return params.kappa_es + params.kappa_ff * rho * T ** -3.5


def specific_power(rho, T, params: StarParameters = DEFAULT_STAR):
    """
    Nuclear energy generation rate per unit mass ε(ρ, T)  [W kg⁻¹].

    ε = 0.136 (ε̃₀ + 3.49e12 ε̃₁),  T₆ = T / 10⁶ K
        ε̃₀ = ρ T₆^(-2/3) exp(-33.80 T₆^(-1/3))
        ε̃₁ = ρ² T₆^(-3) exp(-4403 / T₆)
    """
    rho, T = _t(rho), _t(T)
    T6 = T / 1e6
    e0 = rho * T6 ** (-2.0 / 3.0) * torch.exp(-33.80 * T6 ** (-1.0 / 3.0))
    e1 = rho ** 2 * T6 ** -3 * torch.exp(-4403.0 / T6)
    return params.eps_pp * (e0 + params.eps_ratio * e1)


# =====================================================================
#  Structure equations
# =====================================================================

def structure_rhs(m, y: torch.Tensor, params: StarParameters = DEFAULT_STAR) -> torch.Tensor:
    """d(r, T, P, L)/dM_r for state(s) ``y[..., 4]``."""
    r, T, P, L = y.unbind(-1)
    rho = density(P, T, params)
    kappa = opacity(rho, T, params)

    dr = 1.0 / (4 * _PI * r ** 2 * rho)
    dT = -3.0 / (64 * _PI ** 2 * A_RAD * C_LIGHT) * kappa * L / (T ** 3 * r ** 4)
    dP = -G_NEWTON * m / (4 * _PI * r ** 4)
    dL = specific_power(rho, T, params)
    return torch.stack([dr, dT, dP, dL], dim=-1)


def central_state(T_c, P_c, m, params: StarParameters = DEFAULT_STAR) -> torch.Tensor:
    """
    Series expansion of the structure about the centre.

        r ≈ (3 m / 4πρ_c)^(1/3)
        P ≈ P_c − (3G/8π) (4πρ_c/3)^(4/3) m^(2/3)
        T⁴ ≈ T_c⁴ − (1/2ac) (3/4π)^(2/3) κ_c ε_c ρ_c^(4/3) m^(2/3)
        L ≈ ε_c m

    Returns the state (r, T, P, L) at mass *m*, stepping off the r = 0
    singularity of the equations.
    """
    T_c, P_c, m = _t(T_c), _t(P_c), _t(m)
    rho_c = density(P_c, T_c, params)
    eps_c = specific_power(rho_c, T_c, params)
    kappa_c = opacity(rho_c, T_c, params)
    m23 = m ** (2.0 / 3.0)

    r = (3.0 * m / (4 * _PI * rho_c)) ** (1.0 / 3.0)
    P = P_c - 3 * G_NEWTON / (8 * _PI) * (4 * _PI * rho_c / 3) ** (4.0 / 3.0) * m23
    T4 = T_c ** 4 - (3 / (4 * _PI)) ** (2.0 / 3.0) / (2 * A_RAD * C_LIGHT) \
        * kappa_c * eps_c * rho_c ** (4.0 / 3.0) * m23
    T = T4 ** 0.25
    L = eps_c * m
    return torch.stack(torch.broadcast_tensors(r, T, P, L), dim=-1)


def _physical(y: torch.Tensor, params: StarParameters) -> torch.Tensor:
    r, T, P, _ = y.unbind(-1)
    rho = density(P, T, params)
    return (torch.isfinite(y).all(dim=-1) & (r > 0) & (T > 0) & (P > 0)
            & torch.isfinite(rho) & (rho > 0))


def _resolved(y: torch.Tensor, y_new: torch.Tensor, params: StarParameters) -> torch.Tensor:
    """True where none of ln r, ln T, ln P, ln ρ moved by more than ``max_change``."""
    r0, T0, P0, _ = y.unbind(-1)
    r1, T1, P1, _ = y_new.unbind(-1)
    ratios = torch.stack([
        r1 / r0, T1 / T0, P1 / P0,
        density(P1, T1, params) / density(P0, T0, params),
    ], dim=-1)
    return (ratios.log().abs() <= params.max_change).all(dim=-1)


def integrate_structure(T_c, P_c, params: StarParameters = DEFAULT_STAR) -> StellarProfile:
    """
    Integrate outwards from the centre with RK4.

    The profile is sampled on ``params.n_steps`` uniform intervals between
    M_r = 0 and M_*.  Between grid points every trial takes its own RK4
    substeps: a substep is halved when it would leave the physical region
    (r, T, P, ρ > 0) or change ln r, ln T, ln P or ln ρ by more than
    ``params.max_change``, and grows again after a success.  Once a
    trial's substep drops below ``params.min_step_fraction · M_*`` it has
    hit T → 0 or ρ → 0; it stops there and ``surface_mass`` records where.

    The first ``params.start_fraction`` of the mass is bridged by
    :func:`central_state`.  *T_c* and *P_c* broadcast, giving a batch of
    trial stars.
    """
    T_c, P_c = torch.broadcast_tensors(_t(T_c), _t(P_c))
    n, M = params.n_steps, params.mass
    grid = torch.linspace(0.0, M, n + 1, dtype=torch.float64)
    h_min = params.min_step_fraction * M
    nan = torch.tensor(float("nan"), dtype=torch.float64)

    zero = torch.zeros_like(T_c)
    states = [torch.stack([zero, T_c, P_c, zero], dim=-1)]

    m = torch.full_like(T_c, params.start_fraction * M)
    y = central_state(T_c, P_c, m, params)
    alive = _physical(y, params)
    surface_mass = torch.where(alive, torch.full_like(T_c, M), zero)
    h = m.clone()
    last = torch.zeros_like(T_c, dtype=torch.long)

    rhs = lambda mm, yy: structure_rhs(mm, yy, params)
    for i in range(n):
        target = grid[i + 1]
        for _ in range(params.max_substeps):
            active = alive & (m < target)
            if not active.any():
                break
            hit = h >= target - m
            step = torch.where(hit, target - m, h)
            y_new = rk4_step(rhs, m, y, step)
            ok = active & _physical(y_new, params) & _resolved(y, y_new, params)

            y = torch.where(ok.unsqueeze(-1), y_new, y)
            m = torch.where(ok, torch.where(hit, target, m + step), m)
            h = torch.where(ok, torch.where(hit, h, 1.5 * h),
                            torch.where(active, 0.5 * step, h))
            ended = active & ~ok & (h < h_min)
            surface_mass = torch.where(ended, m, surface_mass)
            alive = alive & ~ended
        else:
            stuck = alive & (m < target)
            surface_mass = torch.where(stuck, m, surface_mass)
            alive = alive & ~stuck

        last = torch.where(alive, torch.full_like(last, i + 1), last)
        states.append(torch.where(alive.unsqueeze(-1), y, nan))

    traj = torch.stack(states).movedim(0, -2)        # (..., n+1, 4)
    r, T, P, L = traj.unbind(-1)
    rho = density(P, T, params)
    return StellarProfile(
        mass=grid.numpy(),
        radius=r.numpy(),
        temperature=T.numpy(),
        pressure=P.numpy(),
        luminosity=L.numpy(),
        density=rho.numpy(),
        surface_index=last.numpy(),
        surface_mass=surface_mass.numpy(),
        reached_surface=(last == n).numpy(),
    )


def surface_residual(profile: StellarProfile, params: StarParameters = DEFAULT_STAR):
    """
    Signed miss of the surface condition P(M_*) = 0.

    ``P(M_*)/P_c`` (≥ 0) when the trial reaches M_*; otherwise
    ``M_stop/M_* − 1`` (< 0) for a trial that stopped at M_stop.  Zero
    means the pressure falls to zero at M_* without going negative.
    """
    P = profile.pressure
    with np.errstate(invalid="ignore", divide="ignore"):
        reached = P[..., -1] / P[..., 0]
    shortfall = np.asarray(profile.surface_mass) / params.mass - 1.0
    return np.where(profile.reached_surface, reached, shortfall)


def _surface_values(profile: StellarProfile):
    idx = np.asarray(profile.surface_index)
    r = np.take_along_axis(profile.radius, idx[..., None], axis=-1)[..., 0]
    L = np.take_along_axis(profile.luminosity, idx[..., None], axis=-1)[..., 0]
    return float(r), float(L)


def _truncate(profile: StellarProfile, n: int, mass: float) -> StellarProfile:
    """The first *n* intervals of a profile, as a star of total mass *mass*."""
    idx = np.minimum(profile.surface_index, n)
    return StellarProfile(
        mass=profile.mass[: n + 1],
        radius=profile.radius[..., : n + 1],
        temperature=profile.temperature[..., : n + 1],
        pressure=profile.pressure[..., : n + 1],
        luminosity=profile.luminosity[..., : n + 1],
        density=profile.density[..., : n + 1],
        surface_index=idx,
        surface_mass=np.minimum(profile.surface_mass, mass),
        reached_surface=idx == n,
    )


# =====================================================================
#  Shooting
# =====================================================================

def _default_candidates(T_c: float) -> np.ndarray:
    """log₁₀ P_c from just above the central radiation pressure to 10⁸ times it."""
    P_rad = float(radiation_pressure(T_c))
    return np.log10(P_rad * (1.0 + np.logspace(-3, 8, 111)))


def _shoot_core_pressure(T_c: float, params: StarParameters, candidates, xtol: float):
    def residual(log_Pc):
        profile = integrate_structure(T_c, 10.0 ** _t(log_Pc), params)
        return surface_residual(profile, params)

    try:
        return bisect_shot(residual, candidates, xtol=xtol, rtol=0.0, side="positive",
                           vectorized=True, n_inner=_N_INNER)
    except ShootingError as exc:
        raise ShootingError(f"T_c = {T_c:.4g} K: {exc}") from exc


def solve_core_pressure(
    T_c: float,
    params: StarParameters = DEFAULT_STAR,
    *,
    candidates=None,
    xtol: float = 1e-10,
    tol: float = 1e-4,
    verbose: bool = False,
) -> CoreSolution:
    """
    Find P_c for a fixed central temperature so that P → 0⁺ at the surface.

    Trial cores are scanned on a log grid of P_c above the central
    radiation pressure (gas pressure must be positive).  Among the sign
    changes of :func:`surface_residual` the one whose non-negative end is
    smallest is narrowed down in log₁₀ P_c by batched multisection, and
    the non-negative end of the final bracket is returned.

    The solution is ``converged`` only if that trial reaches M_* with
    ``0 ≤ P(M_*)/P_c ≤ tol``.

    Parameters
    ----------
    T_c        : central temperature [K]
    candidates : log₁₀ P_c values to scan (default: P_rad,c · (1 + 10^[-3, 8]))
    xtol       : bracket width in log₁₀ P_c
    tol        : largest accepted P(M_*)/P_c
    """
    if T_c <= 0:
        raise ValueError(f"central temperature must be positive, got {T_c}")
    if candidates is None:
        candidates = _default_candidates(T_c)

    shot = _shoot_core_pressure(T_c, params, candidates, xtol)
    P_c = 10.0 ** float(shot.params[0])
    profile = integrate_structure(T_c, P_c, params)
    residual = float(surface_residual(profile, params))
    converged = shot.converged and bool(profile.reached_surface) and 0.0 <= residual <= tol

    R, L = _surface_values(profile)
    if verbose:
        print(f"  T_c {T_c:.4e} K │ P_c {P_c:.4e} Pa │ P(M*)/P_c {residual:+.3e}"
              f" │ {shot.message}")
    return CoreSolution(float(T_c), P_c, R, L, profile, residual, converged)


def _surface_core(T_c: float, params: StarParameters, *, xtol: float, tol: float):
    """
    The complete star with central temperature *T_c*.

    Trials run out to ``_MASS_HEADROOM · M_*``.  The star lies on the
    boundary between cores whose temperature collapses and cores whose
    envelope thins into a halo; the collapsing end of that bracket stops
    at the stellar surface.

    Returns
    -------
    (m_s, P_c, profile)
        Surface mass, central pressure and the profile on the extended
        grid.  When no boundary falls inside the extended range m_s is
        the extended mass and P_c, profile are None.
    """
    wide = replace(
        params,
        mass=_MASS_HEADROOM * params.mass,
        n_steps=_MASS_HEADROOM * params.n_steps,
        start_fraction=params.start_fraction / _MASS_HEADROOM,
        min_step_fraction=params.min_step_fraction / _MASS_HEADROOM,
    )
    candidates = _default_candidates(T_c)
    try:
        shot = _shoot_core_pressure(T_c, wide, candidates, xtol)
    except ShootingError:
        scan = surface_residual(integrate_structure(T_c, 10.0 ** _t(candidates), wide), wide)
        if np.all(scan >= 0):
            return wide.mass, None, None
        raise

    if shot.residual[0] > tol:
        # every boundary found is a collapse right at the extended mass
        return wide.mass, None, None

    (a, fa), (b, fb) = shot.bracket
    log_Pc = a if fa <= 0 else b
    P_c = 10.0 ** log_Pc
    profile = integrate_structure(T_c, P_c, wide)
    return float(profile.surface_mass), P_c, profile


def structure_residual(log_T_c, params: StarParameters = DEFAULT_STAR, *,
                       xtol: float = 1e-10, tol: float = 1e-4) -> float:
    """
    Mass mismatch ``m_s/M_* − 1`` of the complete star with central
    temperature 10^log_T_c, where m_s is where P, T and ρ vanish together.
    """
    m_s, _, _ = _surface_core(10.0 ** float(log_T_c), params, xtol=xtol, tol=tol)
    return m_s / params.mass - 1.0


def solve_structure(
    params: StarParameters = DEFAULT_STAR,
    *,
    T_c_bracket: tuple[float, float] = (1e7, 3e8),
    xtol: float = 1e-5,
    pc_xtol: float = 1e-10,
    tol: float = 1e-3,
    verbose: bool = False,
) -> CoreSolution:
    """
    Shoot for both T_c and P_c with surface conditions P = T = 0 at M_*.

    For every trial T_c the inner shot on P_c locates the complete star
    with that central temperature and its surface mass m_s; bisection in
    log₁₀ T_c then drives ``m_s/M_* − 1`` to zero from above, so the
    returned star still reaches M_*.

    The solution is ``converged`` when the bracket closed, the star
    reaches M_*, ``|m_s/M_* − 1| ≤ tol`` and ``P(M_*)/P_c ≤ tol``.

    Parameters
    ----------
    T_c_bracket : (low, high) central temperatures [K] whose stars are
                  lighter and heavier than M_*
    xtol        : bracket width in log₁₀ T_c
    pc_xtol     : bracket width of the inner shots in log₁₀ P_c
    """
    lo, hi = T_c_bracket
    if not 0 < lo < hi:
        raise ValueError(f"T_c_bracket must satisfy 0 < low < high, got {T_c_bracket}")

    cores = {}

    def mismatch(log_Tc):
        log_Tc = float(log_Tc)
        m_s, P_c, profile = _surface_core(10.0 ** log_Tc, params, xtol=pc_xtol, tol=tol)
        cores[log_Tc] = (P_c, profile)
        value = m_s / params.mass - 1.0
        if verbose:
            print(f"  T_c {10.0 ** log_Tc:.4e} K │ M_s/M_* − 1 {value:+.3e}")
        return value

    try:
        shot = bisect_shot(mismatch, np.log10([lo, hi]), xtol=xtol, rtol=0.0, side="positive")
    except ShootingError as exc:
        raise ShootingError(
            f"surface mass does not cross M_* for T_c in [{lo:.3g}, {hi:.3g}] K: {exc}"
        ) from exc

    log_Tc = float(shot.params[0])
    P_c, wide_profile = cores[log_Tc]
    if wide_profile is None:
        raise ShootingError(f"no stellar surface found at T_c = {10.0 ** log_Tc:.4g} K")

    profile = _truncate(wide_profile, params.n_steps, params.mass)
    mass_mismatch = float(shot.residual[0])
    pressure_ratio = float(surface_residual(profile, params))
    converged = (shot.converged and bool(profile.reached_surface)
                 and abs(mass_mismatch) <= tol and 0.0 <= pressure_ratio <= tol)

    R, L = _surface_values(profile)
    return CoreSolution(10.0 ** log_Tc, P_c, R, L, profile, mass_mismatch, converged)


def stellar_summary(solution: CoreSolution) -> dict[str, float]:
    """Core values plus radius and luminosity in solar units."""
    return {
        "central_temperature_K": solution.central_temperature,
        "central_pressure_Pa": solution.central_pressure,
        "radius_Rsun": float(to_solar_radii(solution.radius)),
        "luminosity_Lsun": float(to_solar_luminosity(solution.luminosity)),
        "reached_surface": bool(solution.profile.reached_surface),
        "residual": solution.residual,
        "converged": solution.converged,
    }
