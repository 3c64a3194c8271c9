"""Dormand-Prince 5(4) adaptive solver.

Implements the Dormand-Prince embedded Runge-Kutta pair with a 5th-order
solution for propagation and a 4th-order solution for error estimation.

Unlike a single adaptive step, :func:`dp54_solve` integrates over the
whole interval ``[0, t_final]`` inside one ``jax.lax.while_loop``, so an
entire segment compiles to a single XLA computation. The final step is
truncated to land exactly on ``t_final``. The loop terminates with a
:class:`~descentjax.integrators.SolverStatus` code instead of raising,
since exceptions cannot cross a traced boundary; callers check the status
on the host.

Compatible with ``jax.jit`` and forward-mode differentiation. Not
compatible with reverse-mode ``jax.grad`` due to the ``lax.while_loop``.

Butcher tableau:

- Nodes (c): [0, 1/5, 3/10, 4/5, 8/9, 1, 1]
- 5th-order weights (b_high): [35/384, 0, 500/1113, 125/192, -2187/6784, 11/84, 0]
- 4th-order weights (b_low): [5179/57600, 0, 7571/16695, 393/640, -92097/339200,
  187/2100, 1/40]
"""

from __future__ import annotations

from collections.abc import Callable

import jax
import jax.numpy as jnp
from jax import Array
from jax.typing import ArrayLike

from descentjax.config import get_dtype
from descentjax.integrators._adaptive import compute_error_norm, compute_next_step_size
from descentjax.integrators._types import AdaptiveConfig, SolveResult, SolverStatus

_C = (0.0, 1.0 / 5.0, 3.0 / 10.0, 4.0 / 5.0, 8.0 / 9.0, 1.0, 1.0)

_A1 = (1.0 / 5.0,)
_A2 = (3.0 / 40.0, 9.0 / 40.0)
_A3 = (44.0 / 45.0, -56.0 / 15.0, 32.0 / 9.0)
_A4 = (19372.0 / 6561.0, -25360.0 / 2187.0, 64448.0 / 6561.0, -212.0 / 729.0)
_A5 = (9017.0 / 3168.0, -355.0 / 33.0, 46732.0 / 5247.0, 49.0 / 176.0, -5103.0 / 18656.0)

# 5th-order weights double as the last coupling row (FSAL)
_B_HIGH = (35.0 / 384.0, 0.0, 500.0 / 1113.0, 125.0 / 192.0, -2187.0 / 6784.0, 11.0 / 84.0, 0.0)

_B_LOW = (
    5179.0 / 57600.0,
    0.0,
    7571.0 / 16695.0,
    393.0 / 640.0,
    -92097.0 / 339200.0,
    187.0 / 2100.0,
    1.0 / 40.0,
)

_ERROR_ORDER = 4.0

# Plain ints for use inside traced code
_RUNNING = int(SolverStatus.RUNNING)
_SUCCESS = int(SolverStatus.SUCCESS)
_MAX_STEPS = int(SolverStatus.MAX_STEPS)
_STEP_UNDERFLOW = int(SolverStatus.STEP_UNDERFLOW)
_NONFINITE = int(SolverStatus.NONFINITE)

RHS = Callable[[Array, Array, object], Array]


def dp54_attempt(
    rhs: RHS,
    t: ArrayLike,
    y: ArrayLike,
    h: ArrayLike,
    args=None,
) -> tuple[Array, Array]:
    """Trial DP54 step of size *h* from ``(t, y)``.

    Args:
        rhs: Right-hand side ``rhs(t, y, args) -> dy/dt``.
        t: Current time.
        y: Current state vector.
        h: Step size.
        args: Extra arguments passed through to *rhs*.

    Returns:
        tuple: ``(y_high, error_vec)``, the 5th-order solution and the
        difference between the 5th- and 4th-order solutions.
    """
    k0 = rhs(t, y, args)
    k1 = rhs(t + _C[1] * h, y + h * _A1[0] * k0, args)
    k2 = rhs(t + _C[2] * h, y + h * (_A2[0] * k0 + _A2[1] * k1), args)
    k3 = rhs(t + _C[3] * h, y + h * (_A3[0] * k0 + _A3[1] * k1 + _A3[2] * k2), args)
    k4 = rhs(
        t + _C[4] * h,
        y + h * (_A4[0] * k0 + _A4[1] * k1 + _A4[2] * k2 + _A4[3] * k3),
        args,
    )
    k5 = rhs(
        t + _C[5] * h,
        y + h * (_A5[0] * k0 + _A5[1] * k1 + _A5[2] * k2 + _A5[3] * k3 + _A5[4] * k4),
        args,
    )

    y_high = y + h * (
        _B_HIGH[0] * k0
        + _B_HIGH[2] * k2
        + _B_HIGH[3] * k3
        + _B_HIGH[4] * k4
        + _B_HIGH[5] * k5
    )
    k6 = rhs(t + _C[6] * h, y_high, args)

    y_low = y + h * (
        _B_LOW[0] * k0
        + _B_LOW[2] * k2
        + _B_LOW[3] * k3
        + _B_LOW[4] * k4
        + _B_LOW[5] * k5
        + _B_LOW[6] * k6
    )
    return y_high, y_high - y_low


def dp54_solve(
    rhs: RHS,
    y0: ArrayLike,
    args=None,
    config: AdaptiveConfig | None = None,
    t_final: float = 1.0,
    h0: ArrayLike | None = None,
) -> SolveResult:
    """Integrate ``dy/dt = rhs(t, y, args)`` from ``t = 0`` to *t_final*.

    Args:
        rhs: Right-hand side ``rhs(t, y, args) -> dy/dt``.
        y0: Initial state vector.
        args: Extra arguments passed through to *rhs* (any pytree).
        config: Step-size control settings. Uses default
            :class:`AdaptiveConfig` if ``None``.
        t_final: End of the integration interval (positive).
        h0: Initial step-size guess. Defaults to ``config.initial_step``.

    Returns:
        SolveResult: Final state and time, step counters, suggested next
        step and termination status. ``status == SolverStatus.SUCCESS``
        exactly when ``time == t_final`` was reached.

    Examples:
        ```python
        import jax.numpy as jnp
        from descentjax.integrators import dp54_solve
        def decay(t, y, k):
            return -k * y
        result = dp54_solve(decay, jnp.array([1.0]), 2.0)
        result.state  # ~[exp(-2)]
        ```
    """
    config = (AdaptiveConfig() if config is None else config).resolved()

    dtype = get_dtype()
    y0 = jnp.asarray(y0, dtype=dtype)
    t_final = jnp.asarray(t_final, dtype=dtype)
    h0 = config.initial_step if h0 is None else h0
    h0 = jnp.clip(jnp.asarray(h0, dtype=dtype), config.min_step, config.max_step)

    running = jnp.asarray(_RUNNING, dtype=jnp.int32)

    def cond_fn(carry):
        return carry[-1] == _RUNNING

    def body_fn(carry):
        t, y, h, n_steps, n_rejected, _status = carry

        remaining = t_final - t
        last = h >= remaining
        h_try = jnp.where(last, remaining, h)

        y_new, error_vec = dp54_attempt(rhs, t, y, h_try, args)
        error = compute_error_norm(error_vec, y_new, y, config.abs_tol, config.rel_tol)

        finite = jnp.isfinite(error)
        accepted = finite & (error <= 1.0)

        t_next = jnp.where(accepted, jnp.where(last, t_final, t + h_try), t)
        y_next = jnp.where(accepted, y_new, y)
        h_next = compute_next_step_size(error, h_try, _ERROR_ORDER, config)
        n_steps = n_steps + accepted.astype(jnp.int32)
        n_rejected = n_rejected + (~accepted).astype(jnp.int32)

        status = jnp.where(
            ~finite,
            _NONFINITE,
            jnp.where(
                accepted & last,
                _SUCCESS,
                jnp.where(
                    ~accepted & (h_try <= config.min_step),
                    _STEP_UNDERFLOW,
                    jnp.where(
                        n_steps + n_rejected >= config.max_steps,
                        _MAX_STEPS,
                        _RUNNING,
                    ),
                ),
            ),
        ).astype(jnp.int32)

        return (t_next, y_next, h_next, n_steps, n_rejected, status)

    init_carry = (
        jnp.asarray(0.0, dtype=dtype),
        y0,
        h0,
        jnp.asarray(0, dtype=jnp.int32),
        jnp.asarray(0, dtype=jnp.int32),
        running,
    )

    t, y, h, n_steps, n_rejected, status = jax.lax.while_loop(cond_fn, body_fn, init_carry)

    return SolveResult(
        state=y,
        time=t,
        dt_next=h,
        n_steps=n_steps,
        n_rejected=n_rejected,
        status=status,
    )


def make_dp54_solver(rhs: RHS, config: AdaptiveConfig | None = None):
    """Compile :func:`dp54_solve` for a fixed right-hand side and config.

    Args:
        rhs: Right-hand side ``rhs(t, y, args) -> dy/dt`` over ``[0, 1]``.
        config: Step-size control settings, baked into the compiled solver.

    Returns:
        A jitted ``solve(y0, args, h0) -> SolveResult``.
    """
    config = (AdaptiveConfig() if config is None else config).resolved()

    def solve(y0, args, h0):
        return dp54_solve(rhs, y0, args, config=config, h0=h0)

    return jax.jit(solve)
