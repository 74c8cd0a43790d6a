"""
Stochastic integration of the focused transport equation.

    ∂f/∂t = ∇·κ⊥·∇f − (vμ b̂ + V + V_d)·∇f + ∂/∂μ D_μμ ∂f/∂μ − (dμ/dt) ∂f/∂μ − (dp/dt) ∂f/∂p

is recast as Itô SDEs for pseudo-particles u = (x, y, z, μ, p):

    dx = √(2κ⊥) dW + (∇κ⊥ + vμ b̂ + V + V_d) dt
    dμ = √(2 max(D_μμ, 0)) dW + (∂D_μμ/∂μ + dμ/dt) dt
    dp = (dp/dt) dt

κ⊥ is taken as a multiple of the identity tensor, so √(2κ⊥) acts as a
scalar on each spatial component.  It is either given directly or built
from a field-line random walk coefficient D_FLRW as κ⊥ = (v/2) D_FLRW,
whose gradient is (v/2) ∇D_FLRW at fixed momentum.  Pitch-angle scattering is isotropic,
D_μμ = ν(1 − μ²)/2, and adiabatic focusing gives dμ/dt = v(1 − μ²)/(2L).
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Callable

import torch

from astrosim.constants import C_LIGHT, M_PROTON
from astrosim.integrators import integrate_sde

_DTYPE = torch.float64


def _vector_field(value, x: torch.Tensor) -> torch.Tensor:
    """Evaluate a constant 3-vector or a callable x → (N, 3) at positions x."""
    if callable(value):
        return torch.as_tensor(value(x), dtype=_DTYPE)
    return torch.as_tensor(value, dtype=_DTYPE).expand_as(x)


@dataclass
class FocusedTransport:
    """
    Coefficients of the focused transport SDE.

    Vector-valued entries may be constants or callables of the positions
    ``x`` (N, 3); ``kappa_perp`` may be a float or a callable x → (N,).
    """
    kappa_perp: float | Callable = 0.0                  # m² s⁻¹
    grad_kappa_perp: Callable | None = None             # x → (N, 3)
    b_hat: tuple | Callable = (0.0, 0.0, 1.0)           # field direction
    flow: tuple | Callable = (0.0, 0.0, 0.0)            # V, plasma flow
    drift: tuple | Callable = (0.0, 0.0, 0.0)           # V_d, guiding-center drift
    scattering_rate: float = 0.0                        # ν [s⁻¹]
    focusing_length: float = math.inf                   # L [m]
    flrw_diffusion: float | Callable | None = None      # D_FLRW [m], κ⊥ = v D_FLRW / 2
    grad_flrw_diffusion: Callable | None = None         # x → (N, 3)
    momentum_rate: Callable | None = None               # (t, u) → (N,)
    particle_mass: float = M_PROTON

    def __post_init__(self):
        if self.scattering_rate < 0:
            raise ValueError(f"scattering_rate must be non-negative, got {self.scattering_rate}")
        if self.focusing_length <= 0:
            raise ValueError(f"focusing_length must be positive, got {self.focusing_length}")
        if self.flrw_diffusion is not None and (
                callable(self.kappa_perp) or self.kappa_perp != 0 or self.grad_kappa_perp is not None):
            raise ValueError("give either kappa_perp or flrw_diffusion, not both")

    @classmethod
    def from_flrw(cls, flrw_diffusion, grad_flrw_diffusion=None, **kwargs) -> "FocusedTransport":
        """Model whose κ⊥ = (v/2) D_FLRW follows the field-line random walk."""
        return cls(flrw_diffusion=flrw_diffusion, grad_flrw_diffusion=grad_flrw_diffusion, **kwargs)

    # ── coefficients ─────────────────────────────────────────────────

    def speed(self, p: torch.Tensor) -> torch.Tensor:
        """Relativistic speed v = pc / √(p² + m²c²)."""
        mc = self.particle_mass * C_LIGHT
        return p * C_LIGHT / torch.sqrt(p ** 2 + mc ** 2)

    def kappa(self, x: torch.Tensor, p: torch.Tensor | None = None) -> torch.Tensor:
        """κ⊥ at positions *x*; needs the momenta *p* when built from D_FLRW."""
        if self.flrw_diffusion is not None:
            if p is None:
                raise ValueError("kappa from flrw_diffusion needs the particle momentum")
            D = self.flrw_diffusion
            D = torch.as_tensor(D(x), dtype=_DTYPE) if callable(D) else torch.tensor(float(D), dtype=_DTYPE)
            return 0.5 * self.speed(p) * D
        if callable(self.kappa_perp):
            return torch.as_tensor(self.kappa_perp(x), dtype=_DTYPE)
        return torch.full(x.shape[:-1], float(self.kappa_perp), dtype=_DTYPE)

    def pitch_diffusion(self, mu: torch.Tensor) -> torch.Tensor:
        """D_μμ = ν (1 − μ²) / 2."""
        return 0.5 * self.scattering_rate * (1 - mu ** 2)

    # ── SDE terms ────────────────────────────────────────────────────

    def drift_term(self, t, u: torch.Tensor) -> torch.Tensor:
        x, mu, p = u[..., :3], u[..., 3], u[..., 4]
        v = self.speed(p)

        b = _vector_field(self.b_hat, x)
        b = b / b.norm(dim=-1, keepdim=True)
        dx = (v * mu).unsqueeze(-1) * b + _vector_field(self.flow, x) + _vector_field(self.drift, x)
        if self.grad_kappa_perp is not None:
            dx = dx + _vector_field(self.grad_kappa_perp, x)
        if self.grad_flrw_diffusion is not None:
            dx = dx + 0.5 * v.unsqueeze(-1) * _vector_field(self.grad_flrw_diffusion, x)

        dmu = -self.scattering_rate * mu                  # ∂D_μμ/∂μ
        if math.isfinite(self.focusing_length):
            dmu = dmu + v * (1 - mu ** 2) / (2 * self.focusing_length)

        if self.momentum_rate is not None:
            dp = torch.as_tensor(self.momentum_rate(t, u), dtype=_DTYPE)
        else:
            dp = torch.zeros_like(p)
        return torch.cat([dx, dmu.unsqueeze(-1), dp.unsqueeze(-1)], dim=-1)

    def diffusion_term(self, t, u: torch.Tensor) -> torch.Tensor:
        x, mu, p = u[..., :3], u[..., 3], u[..., 4]
        sx = torch.sqrt(2 * self.kappa(x, p)).unsqueeze(-1).expand_as(x)
        smu = torch.sqrt(2 * self.pitch_diffusion(mu).clamp(min=0.0))
        return torch.cat([sx, smu.unsqueeze(-1), torch.zeros_like(mu).unsqueeze(-1)], dim=-1)


# =====================================================================
#  Ensembles
# =====================================================================

def reflect_pitch(u: torch.Tensor) -> torch.Tensor:
    """Reflect pitch cosines that left [-1, 1] back into the interval."""
    u = u.clone()
    mu = u[..., 3]
    mu = torch.where(mu > 1, 2 - mu, mu)
    mu = torch.where(mu < -1, -2 - mu, mu)
    u[..., 3] = mu.clamp(-1.0, 1.0)
    return u


def initial_ensemble(
    n: int,
    *,
    x0=(0.0, 0.0, 0.0),
    mu: float | None = None,
    p0: float = 0.0,
    seed: int | None = None,
) -> torch.Tensor:
    """
    *n* pseudo-particles at x0 with momentum p0.

    Pitch cosines are all *mu*, or isotropic (uniform in [-1, 1]) when
    *mu* is None.
    """
    if n <= 0:
        raise ValueError(f"ensemble size must be positive, got {n}")
    if mu is not None and not -1.0 <= mu <= 1.0:
        raise ValueError(f"pitch cosine must lie in [-1, 1], got {mu}")
    g = torch.Generator().manual_seed(seed) if seed is not None else None

    u = torch.zeros(n, 5, dtype=_DTYPE)
    u[:, :3] = torch.as_tensor(x0, dtype=_DTYPE)
    if mu is None:
        u[:, 3] = 2 * torch.rand(n, generator=g, dtype=_DTYPE) - 1
    else:
        u[:, 3] = mu
    u[:, 4] = p0
    return u


def simulate(
    model: FocusedTransport,
    u0: torch.Tensor,
    dt: float,
    n_steps: int,
    *,
    seed: int | None = None,
    progress: bool = False,
) -> torch.Tensor:
    """
    Integrate an ensemble with Euler–Maruyama and pitch-angle reflection.

    Returns
    -------
    traj : (n_steps+1, N, 5)
    """
    g = torch.Generator().manual_seed(seed) if seed is not None else None
    return integrate_sde(
        model.drift_term, model.diffusion_term, u0.to(_DTYPE), dt, n_steps,
        generator=g, project=reflect_pitch, progress=progress,
    )
