"""
astrosim - stellar structure, charged particles and field lines
================================================================

Numerical recipes from astrophysics and space-plasma teaching notebooks:
a shooting-method solver for the equations of stellar structure,
charged-particle orbits, magnetic field-line tracing and stochastic
focused transport of pseudo-particle ensembles.
"""

from astrosim.integrators import (
    rk4_step, integrate_rk4, boris_kick, boris_step, integrate_boris,
    euler_maruyama_step, integrate_sde,
)
from astrosim.shooting import ShootingError, ShootingResult, shoot, shoot_bvp, bisect_shot
from astrosim.stellar import (
    StarParameters, StellarProfile, CoreSolution, density, opacity, specific_power,
    structure_rhs, central_state, integrate_structure, surface_residual, solve_core_pressure,
    structure_residual, solve_structure, stellar_summary,
)
from astrosim.particles import (
    Particle, UniformFields, GyroOrbit, PROTON, ELECTRON,
    gyrofrequency, larmor_radius, integrate_orbit, boris_orbit,
)
from astrosim.fieldlines import DipoleField, field_line, field_line_radius, trace_field_line
from astrosim.transport import FocusedTransport, initial_ensemble, simulate

__all__ = [
    "rk4_step", "integrate_rk4", "boris_kick", "boris_step", "integrate_boris",
    "euler_maruyama_step", "integrate_sde",
    "ShootingError", "ShootingResult", "shoot", "shoot_bvp", "bisect_shot",
    "StarParameters", "StellarProfile", "CoreSolution", "density", "opacity",
    "specific_power", "structure_rhs", "central_state", "integrate_structure",
    "surface_residual", "solve_core_pressure", "structure_residual", "solve_structure",
    "stellar_summary",
    "Particle", "UniformFields", "GyroOrbit", "PROTON", "ELECTRON",
    "gyrofrequency", "larmor_radius", "integrate_orbit", "boris_orbit",
    "DipoleField", "field_line", "field_line_radius", "trace_field_line",
    "FocusedTransport", "initial_ensemble", "simulate",
]
