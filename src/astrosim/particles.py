"""
Motion of a single charged particle.

General force law:   m dv/dt = qE + q v×B + F_ext

Closed-form orbits are given for uniform fields with B = B ẑ and
constant E and F_ext: gyration about a guiding center that drifts with

    v_D = F×B / (qB²) + E×B / B²

and accelerates along ẑ at (qE_∥ + F_∥)/m.  Numerical orbits (solve_ivp
and the Boris pusher) work with any field object exposing
``electric(x, t)`` and ``magnetic(x, t)`` (and optionally
``external(x, v, t)``, a force in N).
"""

from __future__ import annotations

from dataclasses import dataclass, field

import numpy as np
import torch
from scipy.integrate import solve_ivp

from astrosim.constants import E_CHARGE, M_ELECTRON, M_PROTON
from astrosim.integrators import integrate_boris


# =====================================================================
#  Particles and fields
# =====================================================================

@dataclass(frozen=True)
class Particle:
    charge: float     # C
    mass: float       # kg

    def __post_init__(self):
        if self.mass <= 0:
            raise ValueError(f"mass must be positive, got {self.mass}")

    @property
    def q_over_m(self) -> float:
        return self.charge / self.mass


PROTON = Particle(E_CHARGE, M_PROTON)
ANTIPROTON = Particle(-E_CHARGE, M_PROTON)
ELECTRON = Particle(-E_CHARGE, M_ELECTRON)
POSITRON = Particle(E_CHARGE, M_ELECTRON)

SPECIES = {
    "proton": PROTON,
    "antiproton": ANTIPROTON,
    "electron": ELECTRON,
    "positron": POSITRON,
}


def _vec3(v) -> np.ndarray:
    a = np.asarray(v, dtype=float)
    if a.shape != (3,):
        raise ValueError(f"expected a 3-vector, got shape {a.shape}")
    return a


@dataclass(frozen=True)
class UniformFields:
    """B = B ẑ, constant E [V/m] and external force F [N]."""
    B: float
    E: np.ndarray = field(default_factory=lambda: np.zeros(3))
    force: np.ndarray = field(default_factory=lambda: np.zeros(3))

    def __post_init__(self):
        if self.B == 0:
            raise ValueError("uniform field strength B must be non-zero")
        object.__setattr__(self, "E", _vec3(self.E))
        object.__setattr__(self, "force", _vec3(self.force))

    def electric(self, x, t=0.0):
        x = np.asarray(x, dtype=float)
        return np.broadcast_to(self.E, x.shape).copy()

    def magnetic(self, x, t=0.0):
        x = np.asarray(x, dtype=float)
        return np.broadcast_to(np.array([0.0, 0.0, self.B]), x.shape).copy()

    def external(self, x, v, t=0.0):
        x = np.asarray(x, dtype=float)
        return np.broadcast_to(self.force, x.shape).copy()


# =====================================================================
#  Gyration basics
# =====================================================================

def gyrofrequency(q: float, m: float, B: float) -> float:
    """Signed cyclotron frequency ω_c = qB/m  [rad/s]."""
    return q * B / m


def larmor_radius(v_perp: float, omega_c: float) -> float:
    """r_L = v_⟂ / |ω_c|."""
    return abs(v_perp) / abs(omega_c)


def initial_velocity(v_perp: float, v_parallel: float, gamma0: float) -> np.ndarray:
    """Velocity with perpendicular speed v_⟂ at phase angle γ₀ (radians) in the xy-plane."""
    return np.array([v_perp * np.cos(gamma0), v_perp * np.sin(gamma0), v_parallel])


class GyroOrbit:
    """
    Exact orbit in uniform fields B ẑ, E and F_ext.

    x(t) = R_C(t) + ξ(t):  the guiding center R_C drifts at v_D across B
    and accelerates along B; ξ rotates at ω_c with |ξ| = r_L.
    The orbit satisfies x(0) = x0 and v(0) = v0.
    """

    def __init__(self, particle: Particle, fields: UniformFields, x0, v0):
        self.particle = particle
        self.fields = fields
        self.x0 = _vec3(x0)
        self.v0 = _vec3(v0)

        q, m, B = particle.charge, particle.mass, fields.B
        E, F = fields.E, fields.force
        self.omega_c = gyrofrequency(q, m, B)
        self.drift_velocity = np.array([
            F[1] / (q * B) + E[1] / B,
            -F[0] / (q * B) - E[0] / B,
            0.0,
        ])
        self.parallel_acceleration = (q * E[2] + F[2]) / m

        # gyration velocity in the drifting frame
        self.u0 = np.array([self.v0[0] - self.drift_velocity[0],
                            self.v0[1] - self.drift_velocity[1]])

    # ── scalars ──────────────────────────────────────────────────────

    @property
    def v_perp(self) -> float:
        return float(np.hypot(*self.u0))

    @property
    def v_parallel(self) -> float:
        return float(self.v0[2])

    @property
    def phase(self) -> float:
        """γ₀: angle of the initial gyration velocity in the xy-plane."""
        return float(np.arctan2(self.u0[1], self.u0[0]))

    @property
    def larmor_radius(self) -> float:
        return larmor_radius(self.v_perp, self.omega_c)

    @property
    def period(self) -> float:
        return 2 * np.pi / abs(self.omega_c)

    # ── time series ──────────────────────────────────────────────────

    def _u(self, t):
        wt = self.omega_c * t
        c, s = np.cos(wt), np.sin(wt)
        ux0, uy0 = self.u0
        return ux0 * c + uy0 * s, -ux0 * s + uy0 * c

    def gyration(self, t) -> np.ndarray:
        """ξ(t) = x − R_C, shape (len(t), 3); |ξ| = r_L."""
        t = np.atleast_1d(np.asarray(t, dtype=float))
        ux, uy = self._u(t)
        w = self.omega_c
        return np.stack([-uy / w, ux / w, np.zeros_like(t)], axis=-1)

    def guiding_center(self, t) -> np.ndarray:
        """R_C(t), shape (len(t), 3)."""
        t = np.atleast_1d(np.asarray(t, dtype=float))
        w = self.omega_c
        ux0, uy0 = self.u0
        X0 = self.x0 + np.array([uy0 / w, -ux0 / w, 0.0])
        along = np.stack([np.zeros_like(t), np.zeros_like(t),
                          self.v0[2] * t + 0.5 * self.parallel_acceleration * t ** 2], axis=-1)
        return X0 + np.outer(t, self.drift_velocity) + along

    def position(self, t) -> np.ndarray:
        """x(t), shape (len(t), 3)."""
        return self.guiding_center(t) + self.gyration(t)

    def velocity(self, t) -> np.ndarray:
        """v(t) = u + v_D + v_∥ ẑ, shape (len(t), 3)."""
        t = np.atleast_1d(np.asarray(t, dtype=float))
        ux, uy = self._u(t)
        vz = self.v0[2] + self.parallel_acceleration * t
        return np.stack([ux, uy, vz], axis=-1) + self.drift_velocity * np.array([1.0, 1.0, 0.0])


# =====================================================================
#  Numerical orbits
# =====================================================================

def lorentz_rhs(particle: Particle, fields):
    """Return f(t, y) for y = (x, v) under the full force law."""
    q, m = particle.charge, particle.mass
    external = getattr(fields, "external", None)

    def f(t, y):
        x, v = y[:3], y[3:]
        force = q * (fields.electric(x, t) + np.cross(v, fields.magnetic(x, t)))
        if external is not None:
            force = force + external(x, v, t)
        return np.concatenate([v, force / m])

    return f


def integrate_orbit(
    particle: Particle,
    fields,
    x0,
    v0,
    t_eval,
    rtol: float = 1e-10,
    atol: float = 1e-12,
    **ivp_kw,
) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Reference orbit with :func:`scipy.integrate.solve_ivp` (DOP853).

    Returns
    -------
    t : (n,)
    x : (n, 3)
    v : (n, 3)
    """
    t_eval = np.asarray(t_eval, dtype=float)
    y0 = np.concatenate([_vec3(x0), _vec3(v0)])
    ivp_kw.setdefault("method", "DOP853")
    sol = solve_ivp(
        lorentz_rhs(particle, fields), [t_eval[0], t_eval[-1]], y0,
        t_eval=t_eval, rtol=rtol, atol=atol, **ivp_kw,
    )
    if not sol.success:
        raise RuntimeError(f"orbit integration failed: {sol.message}")
    return sol.t, sol.y[:3].T, sol.y[3:].T


def boris_orbit(particle: Particle, fields, x0, v0, dt: float,
                n_steps: int) -> tuple[np.ndarray, np.ndarray, np.ndarray]:
    """
    Orbit(s) with the Boris pusher.

    *x0*, *v0* may be (3,) or (N, 3) for a batch of particles.

    Returns
    -------
    t : (n_steps+1,)
    x : (n_steps+1, ..., 3)
    v : (n_steps+1, ..., 3)
    """
    x0 = torch.as_tensor(np.asarray(x0, dtype=float), dtype=torch.float64)
    v0 = torch.as_tensor(np.asarray(v0, dtype=float), dtype=torch.float64)
    m = particle.mass

    def _wrap(fn):
        return lambda x, t: torch.as_tensor(fn(x.numpy(), t), dtype=torch.float64)

    external = None
    if getattr(fields, "external", None) is not None:
        ext = fields.external
        external = lambda x, v, t: torch.as_tensor(ext(x.numpy(), v.numpy(), t) / m,
                                                   dtype=torch.float64)

    with torch.no_grad():
        xs, vs = integrate_boris(
            x0, v0, dt, n_steps, particle.q_over_m,
            _wrap(fields.electric), _wrap(fields.magnetic), external,
        )
    t = dt * np.arange(n_steps + 1)
    return t, xs.numpy(), vs.numpy()


# =====================================================================
#  Trajectory helpers
# =====================================================================

def project_xy(points) -> np.ndarray:
    """Project 3-D points onto the xy-plane (zero the last component)."""
    p = np.array(points, dtype=float, copy=True)
    p[..., 2] = 0.0
    return p


def bounds(points) -> list[tuple[float, float]]:
    """Per-axis (min, max) of a point cloud of shape (..., d), ignoring NaN."""
    p = np.asarray(points, dtype=float)
    flat = p.reshape(-1, p.shape[-1])
    return [(float(np.nanmin(flat[:, i])), float(np.nanmax(flat[:, i])))
            for i in range(flat.shape[1])]
