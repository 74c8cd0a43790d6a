from __future__ import annotations

import math

import numpy as np
import pytest
import torch

from astrosim.shooting import (
    ShootingError, bisect_shot, bracket_sign_change, shoot, shoot_bvp,
)

F64 = torch.float64
ZERO = torch.zeros((), dtype=F64)


def harmonic(_t, y):
    return torch.stack([y[..., 1], -y[..., 0]], dim=-1)


@pytest.mark.parametrize("method", ["newton", "hybr", "lm"])
def test_harmonic_bvp_recovers_initial_slope(method):
    # y'' = -y,  y(0) = 0,  y(π/2) = 1   ⇒   y'(0) = 1
    t = np.linspace(0.0, math.pi / 2, 101)
    result = shoot_bvp(
        harmonic, t,
        make_initial=lambda p: torch.stack([ZERO, p[0]]),
        boundary=lambda y0, y1, p: (y1[0] - 1.0).reshape(1),
        guess=[0.3],
        method=method,
    )
    assert result.converged
    assert result.params[0] == pytest.approx(1.0, abs=1e-6)
    assert result.y.shape == (101, 2)
    np.testing.assert_allclose(result.y[:, 0], np.sin(t), atol=1e-6)


def test_two_unknowns_with_inner_and_outer_conditions():
    t = np.linspace(0.0, math.pi / 2, 51)
    result = shoot_bvp(
        harmonic, t,
        make_initial=lambda p: p.clone(),
        boundary=lambda y0, y1, p: torch.stack([y0[0], y1[0] - 2.0]),
        guess=[0.5, 0.5],
    )
    assert result.converged
    np.testing.assert_allclose(result.params, [0.0, 2.0], atol=1e-6)


def test_nonlinear_bratu_problem():
    # y'' + e^y = 0,  y(0) = y(1) = 0;  lower branch has y'(0) ≈ 0.54935
    rhs = lambda _t, y: torch.stack([y[..., 1], -torch.exp(y[..., 0])], dim=-1)
    result = shoot_bvp(
        rhs, np.linspace(0.0, 1.0, 201),
        make_initial=lambda p: torch.stack([ZERO, p[0]]),
        boundary=lambda y0, y1, p: y1[:1],
        guess=[0.5],
    )
    assert result.converged
    assert result.params[0] == pytest.approx(0.54935, abs=1e-3)


def test_least_squares_with_bounds():
    result = shoot(lambda p: p ** 2 - 4.0, [1.0], method="lsq", bounds=([0.0], [10.0]))
    assert result.converged
    assert result.params[0] == pytest.approx(2.0, abs=1e-6)


def test_unsolvable_residual_raises_when_requested():
    with pytest.raises(ShootingError):
        shoot(lambda p: p ** 2 + 1.0, [1.0], raise_on_failure=True)
    result = shoot(lambda p: p ** 2 + 1.0, [1.0])
    assert not result.converged


def test_unknown_method_rejected():
    with pytest.raises(ValueError):
        shoot(lambda p: p, [0.0], method="secant")


def test_bisect_shot_finds_root():
    result = bisect_shot(lambda x: x ** 2 - 2.0, np.linspace(0.0, 3.0, 4))
    assert result.converged
    assert result.params[0] == pytest.approx(math.sqrt(2.0), abs=1e-10)


def test_bisect_shot_keeps_requested_side():
    pos = bisect_shot(lambda x: x - 1.0, [0.0, 3.0], xtol=1e-6, rtol=0.0, side="positive")
    neg = bisect_shot(lambda x: x - 1.0, [0.0, 3.0], xtol=1e-6, rtol=0.0, side="negative")
    assert pos.params[0] >= 1.0 and pos.residual[0] >= 0
    assert neg.params[0] <= 1.0 and neg.residual[0] <= 0


def test_bisect_shot_vectorized():
    fn = lambda xs: np.cos(xs)
    result = bisect_shot(fn, np.linspace(0.0, 3.0, 7), vectorized=True)
    assert result.params[0] == pytest.approx(math.pi / 2, abs=1e-9)


def test_bracket_without_sign_change():
    with pytest.raises(ShootingError):
        bracket_sign_change(lambda x: x ** 2 + 1.0, np.linspace(-1, 1, 5))
    with pytest.raises(ValueError):
        bracket_sign_change(lambda x: x, [1.0])


def test_multisection_narrows_by_interior_count_per_round():
    fn = lambda xs: xs ** 2 - 2.0
    result = bisect_shot(fn, [0.0, 3.0], xtol=1e-12, rtol=0.0, vectorized=True, n_inner=9)
    assert result.converged
    assert result.params[0] == pytest.approx(math.sqrt(2.0), abs=1e-11)
    # width 3 shrinks tenfold per round
    assert result.message.endswith("after 13 rounds")
    (a, fa), (b, fb) = result.bracket
    assert a <= math.sqrt(2.0) <= b
    assert fa * fb <= 0


def test_side_selects_the_root_over_a_jump():
    # jumps from +1 to -1 at x = 1, genuine root at x = 2
    fn = lambda x: 1.0 if x < 1.0 else x - 2.0
    candidates = [0.0, 1.5, 2.2, 3.0]

    a, b, fa, fb = bracket_sign_change(fn, candidates, side="positive")
    assert (a, b) == (1.5, 2.2)
    assert bracket_sign_change(fn, candidates)[:2] == (0.0, 1.5)

    result = bisect_shot(fn, candidates, xtol=1e-10, rtol=0.0, side="positive")
    assert result.params[0] == pytest.approx(2.0, abs=1e-9)
    assert 0.0 <= result.residual[0] <= 1e-9


def test_invalid_side_and_inner_count():
    with pytest.raises(ValueError):
        bracket_sign_change(lambda x: x, [-1.0, 1.0], side="up")
    with pytest.raises(ValueError):
        bisect_shot(lambda x: x, [-1.0, 1.0], n_inner=0)
