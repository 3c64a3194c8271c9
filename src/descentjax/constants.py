"""Layout constants for the vehicle state, controls and augmented input.

State vector (14 elements)::

    [m, rx, ry, rz, vx, vy, vz, qw, qx, qy, qz, wx, wy, wz]

Control vector (5 elements)::

    [Tx, Ty, Tz, d1, d2]

where ``T`` is the thrust in the body frame and ``d1``, ``d2`` are the two
lateral aerodynamic-surface deflection magnitudes.

Augmented segment input (25 elements)::

    [state (14), start control (5), end control (5), sigma (1)]

The augmented input is the domain of every segment Jacobian produced by
:mod:`descentjax.sensitivity`.
"""

N_STATE = 14
N_CONTROL = 5
N_THRUST = 3
N_AUGMENTED = N_STATE + 2 * N_CONTROL + 1

# State
MASS_IDX = 0
POS_IDX = slice(1, 4)
VEL_IDX = slice(4, 7)
QUAT_IDX = slice(7, 11)
OMEGA_IDX = slice(11, 14)

# Control
THRUST_IDX = slice(0, 3)
LATERAL_IDX = slice(3, 5)

# Augmented input
AUG_STATE_IDX = slice(0, N_STATE)
AUG_UK_IDX = slice(N_STATE, N_STATE + N_CONTROL)
AUG_UP_IDX = slice(N_STATE + N_CONTROL, N_STATE + 2 * N_CONTROL)
AUG_SIGMA_IDX = N_STATE + 2 * N_CONTROL

# Fixed-step propagator
DEFAULT_RK4_SUBSTEPS = 40
