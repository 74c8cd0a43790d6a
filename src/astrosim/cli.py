"""
Command-line front end.

    astrosim stellar   --mass 100 --tc 3e7
    astrosim stellar   --mass 1 --solve-temperature
    astrosim gyro      --species proton --B 3e-9 --v-perp 1 --v-par 1
    astrosim fieldline --degree 2 --theta0 30
"""

from __future__ import annotations

import argparse
import sys

import numpy as np

from astrosim.constants import solar_masses
from astrosim.fieldlines import MULTIPOLE_NAMES, field_line
from astrosim.particles import SPECIES, GyroOrbit, UniformFields, initial_velocity
from astrosim.shooting import ShootingError
from astrosim.stellar import StarParameters, solve_core_pressure, solve_structure, stellar_summary


def _cmd_stellar(args) -> int:
    params = StarParameters(mass=solar_masses(args.mass), n_steps=args.steps)
    print(f"Stellar structure │ M = {args.mass:g} M☉ │ {args.steps} RK4 steps")
    try:
        if args.solve_temperature:
            solution = solve_structure(params, T_c_bracket=(args.tc_low, args.tc_high),
                                       verbose=args.verbose)
        else:
            solution = solve_core_pressure(args.tc, params, verbose=args.verbose)
    except (ShootingError, ValueError) as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1

    summary = stellar_summary(solution)
    print(f"  T_c = {summary['central_temperature_K']:.3e} K")
    print(f"  P_c = {summary['central_pressure_Pa']:.3e} Pa")
    print(f"  R   = {summary['radius_Rsun']:.3g} R☉")
    print(f"  L   = {summary['luminosity_Lsun']:.3g} L☉")
    if not summary["reached_surface"]:
        print("  (integration stopped before M_*; values are at the last physical point)")
    if not solution.converged:
        print(f"warning: shooting did not converge (residual {solution.residual:+.3e})",
              file=sys.stderr)
        return 1
    return 0


def _cmd_gyro(args) -> int:
    particle = SPECIES[args.species]
    v0 = initial_velocity(args.v_perp, args.v_par, np.deg2rad(args.phase))
    try:
        fields = UniformFields(B=args.B, E=args.E, force=args.force)
        orbit = GyroOrbit(particle, fields, np.zeros(3), v0)
    except ValueError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1

    print(f"{args.species} in B = {args.B:g} T")
    print(f"  ω_c      = {orbit.omega_c:.4e} rad/s")
    print(f"  period   = {orbit.period:.4e} s")
    print(f"  r_L      = {orbit.larmor_radius:.4e} m")
    print(f"  v_D      = ({orbit.drift_velocity[0]:.3e}, {orbit.drift_velocity[1]:.3e}, 0) m/s")
    print(f"  a_∥      = {orbit.parallel_acceleration:.3e} m/s²")
    return 0


def _cmd_fieldline(args) -> int:
    theta0 = np.deg2rad(args.theta0)
    try:
        x, y = field_line(args.degree, theta0, r0=args.r0, n_points=args.points)
    except ValueError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return 1

    r = np.hypot(x, y)
    finite = np.flatnonzero(np.isfinite(r))
    # the line leaves the planet at θ0 and ends at the first gap (re-entry)
    gaps = np.flatnonzero(np.diff(finite) > 1)
    end = finite[gaps[0]] if gaps.size else finite[-1]
    theta = np.arctan2(x, y)
    apex = int(np.nanargmax(r[: end + 1]))

    name = MULTIPOLE_NAMES.get(args.degree, f"degree-{args.degree}")
    print(f"{name} field line from θ0 = {args.theta0:g}°")
    print(f"  apex      r = {r[apex]:.4g} at θ = {np.rad2deg(theta[apex]):.4g}°")
    print(f"  footpoint θ = {np.rad2deg(theta[end]):.4g}° (r = {r[end]:.4g})")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="astrosim", description=__doc__,
                                     formatter_class=argparse.RawDescriptionHelpFormatter)
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("stellar", help="shoot for the core of a star")
    p.add_argument("--mass", type=float, default=100.0, help="stellar mass [M☉]")
    p.add_argument("--tc", type=float, default=3.0e7, help="central temperature [K]")
    p.add_argument("--steps", type=int, default=100, help="RK4 steps from centre to surface")
    p.add_argument("--solve-temperature", action="store_true",
                   help="also solve for T_c (surface P = T = 0)")
    p.add_argument("--tc-low", type=float, default=1.0e7, help="low end of the T_c bracket [K]")
    p.add_argument("--tc-high", type=float, default=3.0e8, help="high end of the T_c bracket [K]")
    p.add_argument("-v", "--verbose", action="store_true")
    p.set_defaults(func=_cmd_stellar)

    p = sub.add_parser("gyro", help="gyromotion in uniform fields")
    p.add_argument("--species", choices=sorted(SPECIES), default="proton")
    p.add_argument("--B", type=float, default=3.0e-9, help="field strength along z [T]")
    p.add_argument("--E", type=float, nargs=3, default=[0.0, 0.0, 0.0], help="electric field [V/m]")
    p.add_argument("--force", type=float, nargs=3, default=[0.0, 0.0, 0.0], help="external force [N]")
    p.add_argument("--v-perp", type=float, default=1.0, help="perpendicular speed [m/s]")
    p.add_argument("--v-par", type=float, default=1.0, help="parallel speed [m/s]")
    p.add_argument("--phase", type=float, default=0.0, help="velocity phase angle [deg]")
    p.set_defaults(func=_cmd_gyro)

    p = sub.add_parser("fieldline", help="axisymmetric multipole field line")
    p.add_argument("--degree", type=int, default=1, help="multipole degree n (1 = dipole)")
    p.add_argument("--theta0", type=float, default=30.0, help="footpoint colatitude [deg]")
    p.add_argument("--r0", type=float, default=1.0, help="footpoint radius [planet radii]")
    p.add_argument("--points", type=int, default=1000)
    p.set_defaults(func=_cmd_fieldline)
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    raise SystemExit(main())
