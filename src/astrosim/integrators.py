"""
Fixed-step integrators on torch tensors.

- RK4              (classic 4th order, differentiable through autograd)
- Boris pusher     (charged-particle leapfrog; exact |v| in pure B)
- Euler–Maruyama   (diagonal-noise Itô SDEs, batched ensembles)

All integrators accept arbitrary leading batch dimensions.
"""

from __future__ import annotations

import torch
from tqdm.auto import tqdm


# ── RK4 ─────────────────────────────────────────────────────────────

def rk4_step(f, t, y: torch.Tensor, dt) -> torch.Tensor:
    """
    One step of the classic 4th-order Runge–Kutta method for y' = f(t, y).

    *dt* may be a tensor with one entry per batch member, shaped like
    ``y[..., 0]``; each member then advances by its own step (and *t*
    should be batched the same way).
    """
    h = dt
    if torch.is_tensor(dt) and dt.dim() > 0 and dt.dim() == y.dim() - 1:
        h = dt.unsqueeze(-1)
    k1 = f(t, y)
    k2 = f(t + 0.5 * dt, y + 0.5 * h * k1)
    k3 = f(t + 0.5 * dt, y + 0.5 * h * k2)
    k4 = f(t + dt, y + h * k3)
    return y + (h / 6.0) * (k1 + 2 * k2 + 2 * k3 + k4)


def integrate_rk4(f, y0: torch.Tensor, t: torch.Tensor) -> torch.Tensor:
    """
    Integrate *f* over the grid *t* using RK4.

    The grid may be non-uniform; each step uses ``t[i+1] - t[i]``.
    No in-place updates are made, so gradients flow back to *y0*.

    Returns
    -------
    traj : tensor of shape (len(t), *y0.shape)
    """
    traj = [y0]
    y = y0
    for i in range(len(t) - 1):
        y = rk4_step(f, t[i], y, t[i + 1] - t[i])
        traj.append(y)
    return torch.stack(traj)


# ── Boris pusher ─────────────────────────────────────────────────────

def boris_kick(v: torch.Tensor, dt: float, q_over_m: float,
               E: torch.Tensor, B: torch.Tensor,
               a_ext: torch.Tensor | None = None) -> torch.Tensor:
    """
    Velocity update of the Boris scheme.

    Half electric (and external) kick, rotation about B, half kick.
    """
    accel = q_over_m * E
    if a_ext is not None:
        accel = accel + a_ext
    v_minus = v + 0.5 * dt * accel
    tv = 0.5 * dt * q_over_m * B
    s = 2.0 * tv / (1.0 + (tv * tv).sum(dim=-1, keepdim=True))
    v_prime = v_minus + torch.linalg.cross(v_minus, tv, dim=-1)
    v_plus = v_minus + torch.linalg.cross(v_prime, s, dim=-1)
    return v_plus + 0.5 * dt * accel


def boris_step(x: torch.Tensor, v: torch.Tensor, dt: float, q_over_m: float,
               E: torch.Tensor, B: torch.Tensor,
               a_ext: torch.Tensor | None = None) -> tuple[torch.Tensor, torch.Tensor]:
    """One Boris step: kick with fields at *x*, then drift."""
    v_new = boris_kick(v, dt, q_over_m, E, B, a_ext)
    return x + dt * v_new, v_new


def integrate_boris(x0: torch.Tensor, v0: torch.Tensor, dt: float,
                    n_steps: int, q_over_m: float, electric, magnetic,
                    external=None) -> tuple[torch.Tensor, torch.Tensor]:
    """
    Push particles with the Boris scheme.

    Parameters
    ----------
    x0, v0   : (..., 3) initial positions and velocities at t = 0
    electric : callable (x, t) → (..., 3)
    magnetic : callable (x, t) → (..., 3)
    external : callable (x, v, t) → (..., 3) acceleration, optional

    Returns
    -------
    xs, vs : tensors of shape (n_steps+1, ..., 3)

    Velocities are staggered internally (leapfrog) and reported at the
    position times as the mean of the neighbouring half-step values.
    """
    if n_steps <= 0:
        raise ValueError(f"n_steps must be positive, got {n_steps}")

    def _kick(x, v, t, h):
        a = external(x, v, t) if external is not None else None
        return boris_kick(v, h, q_over_m, electric(x, t), magnetic(x, t), a)

    # v at t = -dt/2
    x = x0.clone()
    v = _kick(x, v0, 0.0, -0.5 * dt)
    xs, v_half = [x0.clone()], [v]
    for i in range(n_steps):
        t = i * dt
        a = external(x, v, t) if external is not None else None
        x, v = boris_step(x, v, dt, q_over_m, electric(x, t), magnetic(x, t), a)
        xs.append(x.clone())
        v_half.append(v)
    v_half.append(_kick(x, v, n_steps * dt, dt))

    vh = torch.stack(v_half)
    vs = 0.5 * (vh[:-1] + vh[1:])
    vs[0] = v0
    return torch.stack(xs), vs


# ── Euler–Maruyama ───────────────────────────────────────────────────

def euler_maruyama_step(f, g, t, y: torch.Tensor, dt: float,
                        dW: torch.Tensor) -> torch.Tensor:
    """One Euler–Maruyama step of  dy = f dt + g ∘ dW  (diagonal noise)."""
    return y + f(t, y) * dt + g(t, y) * dW


def integrate_sde(
    f,
    g,
    y0: torch.Tensor,
    dt: float,
    n_steps: int,
    *,
    t0: float = 0.0,
    generator: torch.Generator | None = None,
    project=None,
    progress: bool = False,
) -> torch.Tensor:
    """
    Integrate a diagonal-noise Itô SDE with Euler–Maruyama.

    Parameters
    ----------
    f, g      : callables (t, y) → tensor shaped like y (drift, noise amplitude)
    y0        : (..., d) initial state(s)
    generator : torch.Generator for reproducible Wiener increments
    project   : callable y → y applied after every step (e.g. reflection)
    progress  : show a tqdm progress bar

    Returns
    -------
    traj : tensor of shape (n_steps+1, *y0.shape)
    """
    if n_steps <= 0:
        raise ValueError(f"n_steps must be positive, got {n_steps}")

    sqrt_dt = dt ** 0.5
    y = y0.clone()
    traj = [y.clone()]
    for i in tqdm(range(n_steps), desc="Integrating SDE", leave=False,
                  disable=not progress):
        dW = sqrt_dt * torch.randn(y.shape, generator=generator,
                                   dtype=y.dtype, device=y.device)
        y = euler_maruyama_step(f, g, t0 + i * dt, y, dt, dW)
        if project is not None:
            y = project(y)
        traj.append(y.clone())
    return torch.stack(traj)
