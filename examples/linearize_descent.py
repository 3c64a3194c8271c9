# /// script
# requires-python = ">=3.11"
# dependencies = ["typer>=0.9.0", "descentjax"]
#
# [tool.uv.sources]
# descentjax = { path = ".." }
# ///
"""Linearize a straight-line powered-descent reference trajectory.

Builds a reference trajectory that decelerates a vehicle from a given
altitude and descent speed to rest at the origin, then linearizes every
segment with both the variational and the forward-mode RK4 engines and
compares the resulting Jacobians and run times.

Requires descentjax to be installed (``uv pip install -e .`` from the repo root).

Usage:
    uv run examples/linearize_descent.py [OPTIONS]

Examples:
    # Default 20-node trajectory
    uv run examples/linearize_descent.py

    # Finer discretization, RK4 engine only
    uv run examples/linearize_descent.py --num-nodes 50 --skip-variational
"""

import logging
import time
from typing import Annotated

import jax.numpy as jnp
import typer

from descentjax import (
    ConstantCoefficientAerodynamics,
    Linearizer,
    TrajectoryPoint,
    VehicleParams,
    set_dtype,
)

set_dtype(jnp.float64)  # Must be before any JIT compilation


def _reference_trajectory(num_nodes, altitude, speed, flight_time, mass, alpha, g0):
    """Constant-deceleration descent along the first (vertical) axis."""
    decel = speed / flight_time
    thrust = mass * (g0 + decel)
    q = jnp.array([jnp.cos(jnp.pi / 4), 0.0, jnp.sin(jnp.pi / 4), 0.0])  # body z up

    points = []
    for k in range(num_nodes + 1):
        t = flight_time * k / num_nodes
        height = altitude - speed * t + 0.5 * decel * t**2
        vel = -speed + decel * t
        m = mass - alpha * thrust * t
        state = jnp.concatenate([
            jnp.array([m, height, 0.0, 0.0, vel, 0.0, 0.0]),
            q,
            jnp.zeros(3),
        ])
        control = jnp.array([0.0, 0.0, thrust, 0.0, 0.0])
        points.append(TrajectoryPoint(state, control))
    return points


def main(
    num_nodes: Annotated[int, typer.Option(help="Number of trajectory segments")] = 20,
    altitude: Annotated[float, typer.Option(help="Initial altitude [m]")] = 500.0,
    speed: Annotated[float, typer.Option(help="Initial descent speed [m/s]")] = 60.0,
    flight_time: Annotated[float, typer.Option(help="Time of flight [s]")] = 15.0,
    mass: Annotated[float, typer.Option(help="Initial mass [kg]")] = 2000.0,
    skip_variational: Annotated[
        bool, typer.Option(help="Only run the forward-mode RK4 engine")
    ] = False,
    verbose: Annotated[bool, typer.Option(help="Enable debug logging")] = False,
) -> None:
    """Linearize a powered-descent reference trajectory."""
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO)

    alpha, g0 = 1.0 / (300.0 * 9.81), 9.81
    params = VehicleParams.from_principal(
        alpha, g0, 2.0e3, 2.0e4, 2.0e4,
        r_T_B=[-2.0, 0.0, 0.0],
        r_F_B=[2.0, 0.0, 0.0],
        aero=ConstantCoefficientAerodynamics(rho=1.2, area=3.0, cd=0.6, cl=0.3, cm=0.05),
    )
    points = _reference_trajectory(num_nodes, altitude, speed, flight_time, mass, alpha, g0)
    print(f"Reference trajectory: {num_nodes} segments over {flight_time:.1f} s")

    # sigma is the total flight time on a unit horizon
    engines = ["rk4"] if skip_variational else ["rk4", "variational"]
    results = {}
    for method in engines:
        print(f"\n── {method} engine ──")
        lin = Linearizer(params, 1.0 / num_nodes, method=method)
        if not lin.compiled.validate(points[0].state, points[0].control):
            print("  WARNING: compiled dynamics failed validation")

        for label in ("first call (compile)", "second call"):
            t0 = time.perf_counter()
            res = lin.linearize(points, flight_time)
            res[-1].jacobian.block_until_ready()
            print(f"  {label}: {time.perf_counter() - t0:.3f}s")
        results[method] = res

        defects = jnp.stack([
            r.state - p.state for r, p in zip(res, points[1:])
        ])
        print(f"  Max position defect vs reference: {float(jnp.max(jnp.abs(defects[:, 1:4]))):.3e} m")

    if len(results) == 2:
        diffs = [
            float(jnp.max(jnp.abs(a.jacobian - b.jacobian)) / jnp.max(jnp.abs(b.jacobian)))
            for a, b in zip(results["variational"], results["rk4"])
        ]
        print(f"\nMax relative Jacobian difference between engines: {max(diffs):.3e}")


if __name__ == "__main__":
    typer.run(main)
