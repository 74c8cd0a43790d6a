"""
Shooting method for two-point boundary-value problems.

Guess the unknown initial conditions, integrate forward, and adjust the
guess until the terminal boundary conditions are met.  Three families of
solver are provided:

- ``newton``           damped Newton, Jacobian via torch autograd through
                       the RK4 integration
- ``hybr`` / ``lm``    :func:`scipy.optimize.root`
- ``lsq``              :func:`scipy.optimize.least_squares` (bounds,
                       non-square residuals)

plus a sign-bracketing bisection for scalar shots where the residual is
only piecewise smooth.
"""

from __future__ import annotations

from typing import NamedTuple

import numpy as np
import torch
from scipy.optimize import least_squares, root

from astrosim.integrators import integrate_rk4

_METHODS = ("newton", "hybr", "lm", "lsq")


class ShootingError(RuntimeError):
    """Raised when a shot cannot be bracketed or the solver fails."""


class ShootingResult(NamedTuple):
    """Output of :func:`shoot`, :func:`shoot_bvp` and :func:`bisect_shot`."""
    params: np.ndarray        # converged unknown initial conditions
    residual: np.ndarray      # boundary residual at ``params``
    converged: bool
    n_evals: int              # residual evaluations
    message: str
    t: np.ndarray | None = None   # integration grid (BVP shots only)
    y: np.ndarray | None = None   # trajectory on ``t``
    bracket: tuple | None = None  # final ((a, fa), (b, fb)) of a bracketing shot


def _tensor(x) -> torch.Tensor:
    return torch.as_tensor(np.asarray(x, dtype=np.float64), dtype=torch.float64)


# ── Root solve on a residual function ────────────────────────────────

def _newton(residual_fn, p0, *, tol, max_iter, max_halvings, verbose):
    p = _tensor(p0).reshape(-1)
    n_evals = 0
    r = residual_fn(p)
    n_evals += 1
    norm = r.norm().item()

    for it in range(1, max_iter + 1):
        if norm < tol:
            return p, r, True, n_evals, f"residual below tolerance after {it - 1} iterations"

        J = torch.autograd.functional.jacobian(residual_fn, p)
        n_evals += 1
        J = J.reshape(r.numel(), p.numel())
        step = torch.linalg.lstsq(J, -r.reshape(-1, 1)).solution.reshape(-1)

        lam = 1.0
        for _ in range(max_halvings):
            trial = p + lam * step
            r_trial = residual_fn(trial)
            n_evals += 1
            n_trial = r_trial.norm().item()
            if np.isfinite(n_trial) and n_trial < norm:
                break
            lam *= 0.5
        else:
            return p, r, False, n_evals, "line search failed to reduce the residual"

        p, r, norm = trial.detach(), r_trial.detach(), n_trial
        if verbose:
            print(f"  Iter {it:3d} │ |r| {norm:.3e} │ λ {lam:.3g}")

    converged = norm < tol
    msg = "converged" if converged else f"no convergence after {max_iter} iterations"
    return p, r, converged, n_evals, msg


def shoot(
    residual_fn,
    guess,
    *,
    method: str = "newton",
    tol: float = 1e-10,
    max_iter: int = 50,
    bounds=None,
    verbose: bool = False,
    raise_on_failure: bool = False,
) -> ShootingResult:
    """
    Solve ``residual_fn(params) = 0`` for the unknown initial conditions.

    Parameters
    ----------
    residual_fn : callable
        Maps a float64 tensor of parameters to a residual tensor.  For
        ``method="newton"`` it must be differentiable with torch autograd.
    guess : array-like
        Initial guess for the parameters.
    method : {"newton", "hybr", "lm", "lsq"}
    tol : float
        Residual-norm tolerance (Newton) or solver tolerance (scipy).
    bounds : (lower, upper), optional
        Only used by ``"lsq"``.
    raise_on_failure : bool
        Raise :class:`ShootingError` instead of returning ``converged=False``.

    Returns
    -------
    ShootingResult
    """
    if method not in _METHODS:
        raise ValueError(f"Unknown shooting method {method!r}. Choose from: {list(_METHODS)}")

    if method == "newton":
        p, r, converged, n_evals, msg = _newton(
            residual_fn, guess, tol=tol, max_iter=max_iter,
            max_halvings=30, verbose=verbose,
        )
        result = ShootingResult(
            p.detach().numpy(), r.detach().numpy(), converged, n_evals, msg,
        )
    else:
        n_calls = 0

        def fun(x):
            nonlocal n_calls
            n_calls += 1
            with torch.no_grad():
                return residual_fn(_tensor(x)).numpy()

        x0 = np.atleast_1d(np.asarray(guess, dtype=np.float64))
        if method == "lsq":
            lo, hi = bounds if bounds is not None else (-np.inf, np.inf)
            sol = least_squares(fun, x0, bounds=(lo, hi), xtol=tol, ftol=tol,
                                gtol=tol, max_nfev=max_iter * (x0.size + 1),
                                verbose=2 if verbose else 0)
            res = sol.fun
        else:
            sol = root(fun, x0, method=method, tol=tol)
            res = sol.fun
        result = ShootingResult(
            np.asarray(sol.x), np.asarray(res), bool(sol.success), n_calls, str(sol.message),
        )

    if raise_on_failure and not result.converged:
        raise ShootingError(f"Shooting ({method}) failed: {result.message}")
    return result


# ── Two-point BVP ────────────────────────────────────────────────────

def shoot_bvp(rhs, t, make_initial, boundary, guess, **kwargs) -> ShootingResult:
    """
    Classic shooting for  y' = rhs(t, y)  on the grid *t*.

    Parameters
    ----------
    rhs          : callable (t, y) → dy/dt  (torch tensors)
    t            : 1-D grid; RK4 takes one step per interval
    make_initial : callable params → y(t[0])
    boundary     : callable (y_start, y_end, params) → residual tensor
    guess        : initial parameter guess
    **kwargs     : forwarded to :func:`shoot`

    Returns
    -------
    ShootingResult with ``t`` and ``y`` (len(t), *y.shape) filled in.
    """
    t = _tensor(t)

    def residual_fn(p):
        y0 = make_initial(p)
        y_end = integrate_rk4(rhs, y0, t)[-1]
        return boundary(y0, y_end, p)

    result = shoot(residual_fn, guess, **kwargs)
    with torch.no_grad():
        traj = integrate_rk4(rhs, make_initial(_tensor(result.params)), t)
    return result._replace(t=t.numpy(), y=traj.numpy())


# ── Scalar bracketing ────────────────────────────────────────────────

def bracket_sign_change(fn, candidates, *, vectorized: bool = False, side: str | None = None):
    """
    Return an adjacent pair of *candidates* where ``fn`` changes sign.

    With ``side=None`` the first sign change is returned.  With
    ``side="positive"`` (``"negative"``) the pair whose non-negative
    (non-positive) end lies closest to zero is returned instead, which
    picks the genuine root when the residual also jumps across zero.

    Returns
    -------
    (a, b, fa, fb)
    """
    if side not in ("positive", "negative", None):
        raise ValueError(f"side must be 'positive', 'negative' or None, got {side!r}")
    xs = np.asarray(candidates, dtype=np.float64)
    if xs.ndim != 1 or xs.size < 2:
        raise ValueError("candidates must be a 1-D sequence of at least two values")
    fs = np.asarray(fn(xs), dtype=np.float64) if vectorized else np.array([fn(x) for x in xs])

    pairs = [i for i in range(len(xs) - 1)
             if np.isfinite(fs[i]) and np.isfinite(fs[i + 1]) and fs[i] * fs[i + 1] <= 0]
    if not pairs:
        raise ShootingError(
            f"No sign change of the residual over {len(xs)} candidates "
            f"in [{xs[0]:.6g}, {xs[-1]:.6g}]"
        )

    i = pairs[0]
    if side is not None:
        sign = 1.0 if side == "positive" else -1.0

        def miss(k):
            return min(v for v in (sign * fs[k], sign * fs[k + 1]) if v >= 0)
        i = min(pairs, key=miss)
    return xs[i], xs[i + 1], float(fs[i]), float(fs[i + 1])


def bisect_shot(
    fn,
    candidates,
    *,
    xtol: float = 1e-12,
    rtol: float = 1e-12,
    max_iter: int = 200,
    side: str | None = None,
    vectorized: bool = False,
    n_inner: int = 1,
) -> ShootingResult:
    """
    Bracket a sign change of a scalar residual and refine it by bisection.

    Bisection only needs the sign of the residual, so it copes with shots
    that fail part-way (and report a penalty) on one side of the root.

    Parameters
    ----------
    side : {"positive", "negative", None}
        Which end of the final bracket to return.  ``None`` returns the
        midpoint.  Also selects among several sign changes, see
        :func:`bracket_sign_change`.
    n_inner : int
        Interior points evaluated per round.  With a vectorized *fn* each
        round is a single batched call that shrinks the bracket by a
        factor ``n_inner + 1``.

    The final bracket is returned in ``ShootingResult.bracket`` as
    ``((a, fa), (b, fb))``.
    """
    if n_inner < 1:
        raise ValueError(f"n_inner must be >= 1, got {n_inner}")

    def evaluate(xs):
        if vectorized:
            return np.asarray(fn(xs), dtype=np.float64)
        return np.array([fn(x) for x in xs], dtype=np.float64)

    a, b, fa, fb = bracket_sign_change(fn, candidates, vectorized=vectorized, side=side)
    n_evals = len(np.asarray(candidates))

    it = 0
    while abs(b - a) > xtol + rtol * max(abs(a), abs(b)) and it < max_iter:
        xs = np.linspace(a, b, n_inner + 2)
        fs = np.concatenate([[fa], evaluate(xs[1:-1]), [fb]])
        n_evals += n_inner
        it += 1

        zero = np.flatnonzero(fs[1:-1] == 0)
        if zero.size:
            a = b = xs[zero[0] + 1]
            fa = fb = 0.0
            break
        # first interior point whose sign differs from fa
        k = next(j for j in range(1, len(xs))
                 if not (np.isfinite(fs[j]) and fs[j] * fa > 0))
        a, fa, b, fb = xs[k - 1], fs[k - 1], xs[k], fs[k]

    if side == "positive":
        x, fx = (a, fa) if fa >= 0 else (b, fb)
    elif side == "negative":
        x, fx = (a, fa) if fa <= 0 else (b, fb)
    else:
        x = 0.5 * (a + b)
        fx = float(evaluate(np.array([x]))[0])
        n_evals += 1

    converged = abs(b - a) <= xtol + rtol * max(abs(a), abs(b))
    msg = f"bracket width {abs(b - a):.3e} after {it} rounds"
    return ShootingResult(np.array([x]), np.array([fx]), converged, n_evals, msg,
                          bracket=((float(a), float(fa)), (float(b), float(fb))))
