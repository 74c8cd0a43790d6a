from __future__ import annotations

import numpy as np
import pytest
import torch

from astrosim.constants import A_RAD, K_B, M_SUN, MU_MASS_PRIMORDIAL, R_SUN, L_SUN
from astrosim.shooting import ShootingError
from astrosim.stellar import (
    CoreSolution, StarParameters, StellarProfile, central_state, density,
    integrate_structure, opacity, radiation_pressure, solve_core_pressure,
    solve_structure, specific_power, stellar_summary, structure_residual, structure_rhs,
    surface_residual,
)

PARAMS = StarParameters()


# ── Microphysics ─────────────────────────────────────────────────────

def test_radiation_constant():
    assert A_RAD == pytest.approx(7.5657e-16, rel=1e-4)


def test_density_vanishes_at_pure_radiation_pressure():
    T = 1e7
    P_rad = float(radiation_pressure(T))
    assert float(density(2 * P_rad, T)) > 0
    assert float(density(P_rad, T)) == pytest.approx(0.0, abs=1e-12)
    assert float(density(0.5 * P_rad, T)) < 0


def test_density_is_ideal_gas_when_radiation_is_negligible():
    T, P = 1e4, 1e5
    assert float(density(P, T)) == pytest.approx(MU_MASS_PRIMORDIAL * P / (K_B * T), rel=1e-9)


def test_opacity_limits():
    # electron scattering floor at very high temperature
    assert float(opacity(1.0, 1e12)) == pytest.approx(0.035, rel=1e-6)
    expected = 0.035 + 6.44e18 * 1e3 * 1e7 ** -3.5
    assert float(opacity(1e3, 1e7)) == pytest.approx(expected, rel=1e-12)


def test_specific_power_positive_and_rising_with_temperature():
    T = torch.tensor([5e6, 1e7, 2e7, 4e7], dtype=torch.float64)
    eps = specific_power(1e4, T)
    assert torch.all(eps > 0)
    assert torch.all(eps[1:] > eps[:-1])


def test_specific_power_scales_linearly_with_density_at_low_temperature():
    # the ρ² channel is negligible at T₆ = 5
    ratio = float(specific_power(2e3, 5e6) / specific_power(1e3, 5e6))
    assert ratio == pytest.approx(2.0, rel=1e-6)


# ── Structure equations ──────────────────────────────────────────────

def test_structure_rhs_signs():
    y = torch.tensor([1e7, 1.5e7, 2e16, 1e24], dtype=torch.float64)
    dr, dT, dP, dL = structure_rhs(torch.tensor(1e28, dtype=torch.float64), y)
    assert dr > 0
    assert dT < 0
    assert dP < 0
    assert dL > 0


def test_central_state_series():
    T_c, P_c = 2e7, 1e16
    m = torch.tensor([1e26, 8e26], dtype=torch.float64)
    y = central_state(T_c, P_c, m)
    r, T, P, L = y.unbind(-1)
    assert float(r[1] / r[0]) == pytest.approx(2.0, rel=1e-12)
    rho_c = density(P_c, T_c)
    eps_c = specific_power(rho_c, T_c)
    torch.testing.assert_close(L, eps_c * m)
    assert torch.all(P < P_c)
    assert torch.all(T < T_c)


def test_profile_shapes_and_grid():
    params = StarParameters(n_steps=20)
    profile = integrate_structure(3e7, 1e15, params)
    assert profile.mass.shape == (21,)
    assert profile.radius.shape == (21,)
    assert profile.mass[0] == 0.0
    assert profile.mass[-1] == pytest.approx(params.mass)
    assert profile.radius[0] == 0.0
    assert profile.luminosity[0] == 0.0

    batch = integrate_structure(3e7, np.array([1e15, 1e16, 1e17]), params)
    assert batch.pressure.shape == (3, 21)
    assert batch.surface_index.shape == (3,)


def test_overdense_core_fails_before_the_surface():
    # huge central pressure: the pressure gradient exhausts P in the first step
    profile = integrate_structure(1e8, 1e30, PARAMS)
    assert not profile.reached_surface
    assert int(profile.surface_index) == 0
    assert np.all(np.isnan(profile.pressure[1:]))
    assert float(surface_residual(profile)) == pytest.approx(-1.0, abs=1e-3)


def test_failed_trial_residual_follows_the_stopping_mass():
    params = StarParameters(n_steps=20)
    profile = integrate_structure(3e7, np.array([1e24, 1e26, 1e30]), params)
    failed = ~profile.reached_surface
    assert failed.any()
    stop = profile.surface_mass[failed]
    idx = profile.surface_index[failed]
    # the trial stops inside the interval after its last grid point
    assert np.all(stop >= profile.mass[idx])
    assert np.all(stop <= profile.mass[np.minimum(idx + 1, params.n_steps)])
    np.testing.assert_allclose(surface_residual(profile, params)[failed], stop / params.mass - 1.0)


def test_core_below_radiation_pressure_is_unphysical():
    T_c = 3e7
    profile = integrate_structure(T_c, 0.5 * float(radiation_pressure(T_c)))
    assert int(profile.surface_index) == 0
    assert float(surface_residual(profile)) < 0


def test_surface_residual_for_reached_surface():
    n = 4
    mass = np.linspace(0.0, PARAMS.mass, n + 1)
    P = np.array([10.0, 8.0, 5.0, 2.0, 0.5])
    ones = np.ones(n + 1)
    profile = StellarProfile(mass, ones, ones, P, ones, ones, np.array(n),
                             np.array(PARAMS.mass), np.array(True))
    assert float(surface_residual(profile)) == pytest.approx(0.05)

    failed = profile._replace(surface_index=np.array(2), surface_mass=np.array(0.5 * PARAMS.mass),
                              reached_surface=np.array(False))
    assert float(surface_residual(failed)) == pytest.approx(-0.5)


# ── Shooting ─────────────────────────────────────────────────────────

def test_solve_core_pressure_without_sign_change_raises():
    with pytest.raises(ShootingError):
        solve_core_pressure(1e8, PARAMS, candidates=np.linspace(29.0, 30.0, 3))


def test_invalid_inputs():
    with pytest.raises(ValueError):
        solve_core_pressure(-1.0)
    with pytest.raises(ValueError):
        StarParameters(mass=0.0)
    with pytest.raises(ValueError):
        StarParameters(n_steps=1)


def test_stellar_summary_in_solar_units():
    profile = integrate_structure(3e7, 1e15, StarParameters(n_steps=4))
    solution = CoreSolution(3e7, 1e15, 2 * R_SUN, 5 * L_SUN, profile, 1e-6, True)
    summary = stellar_summary(solution)
    assert summary["radius_Rsun"] == pytest.approx(2.0)
    assert summary["luminosity_Lsun"] == pytest.approx(5.0)
    assert summary["central_temperature_K"] == 3e7
    assert summary["residual"] == 1e-6
    assert summary["converged"]


def test_default_star_is_100_solar_masses():
    assert PARAMS.mass == pytest.approx(100 * M_SUN)
    assert PARAMS.n_steps == 100


def test_start_fraction_must_lie_in_the_first_interval():
    with pytest.raises(ValueError):
        StarParameters(n_steps=10, start_fraction=0.2)
    with pytest.raises(ValueError):
        StarParameters(max_change=0.0)


# ── Converged solves ─────────────────────────────────────────────────

def test_solve_core_pressure_reaches_the_surface():
    solution = solve_core_pressure(1.6e7, PARAMS)
    profile = solution.profile

    assert solution.converged
    assert bool(profile.reached_surface)
    assert 0.0 <= solution.residual <= 1e-4
    assert profile.pressure[-1] / profile.pressure[0] <= 1e-4
    assert np.all(np.diff(profile.pressure) < 0)
    assert np.isfinite(solution.radius) and solution.radius > 0
    assert np.isfinite(solution.luminosity) and solution.luminosity > 0
    assert 1e-3 < solution.luminosity / L_SUN < 1e3

    # a slightly denser core collapses before M_*
    denser = integrate_structure(1.6e7, solution.central_pressure * 1.01, PARAMS)
    assert not denser.reached_surface
    assert float(surface_residual(denser)) < 0


@pytest.mark.slow
def test_structure_residual_is_negative_for_a_cool_core():
    sun = StarParameters(mass=M_SUN)
    assert structure_residual(np.log10(8e6), sun, xtol=1e-8) < 0


@pytest.mark.slow
def test_solve_structure_for_a_solar_mass_star():
    sun = StarParameters(mass=M_SUN)
    solution = solve_structure(sun, T_c_bracket=(8e6, 5e7), xtol=1e-4, pc_xtol=1e-8, tol=1e-2)
    profile = solution.profile

    assert solution.converged
    assert bool(profile.reached_surface)
    assert abs(solution.residual) <= 1e-2
    assert profile.pressure[-1] / profile.pressure[0] <= 1e-2
    assert 8e6 < solution.central_temperature < 5e7
    assert 0.1 < solution.radius / R_SUN < 10
    assert 1e-2 < solution.luminosity / L_SUN < 1e2


def test_solve_structure_rejects_bad_bracket():
    with pytest.raises(ValueError):
        solve_structure(PARAMS, T_c_bracket=(3e7, 1e7))
