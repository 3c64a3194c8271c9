"""Type definitions for the segment integrators.

- :class:`AdaptiveConfig`: step-size control settings for the adaptive
  Dormand-Prince solver.
- :class:`SolverStatus`: integer codes reported by a compiled solve.
- :class:`SolveResult`: output of one adaptive solve.
- :class:`IntegrationError`: raised on the host when a solve fails.

The named tuples are pytrees, so they pass through ``jax.jit`` and
``jax.lax`` control flow unchanged.
"""

from __future__ import annotations

import enum
from typing import NamedTuple

from jax import Array

from descentjax.config import default_adaptive_tolerance


class SolverStatus(enum.IntEnum):
    """Termination codes of an adaptive solve.

    Values are plain integers so they can be carried through
    ``jax.lax.while_loop``.

    Attributes:
        RUNNING: Solve still in progress (never returned).
        SUCCESS: Final time reached.
        MAX_STEPS: Step budget exhausted before the final time.
        STEP_UNDERFLOW: A step at the minimum step size was rejected.
        NONFINITE: The error estimate or state became NaN or infinite.
    """

    RUNNING = -1
    SUCCESS = 0
    MAX_STEPS = 1
    STEP_UNDERFLOW = 2
    NONFINITE = 3


class AdaptiveConfig(NamedTuple):
    """Configuration for adaptive step-size control.

    Step sizes are in normalized segment time, so a full segment spans
    ``[0, 1]`` regardless of its physical duration.

    Attributes:
        abs_tol: Absolute error tolerance per component. ``None`` selects
            :func:`~descentjax.config.default_adaptive_tolerance`.
        rel_tol: Relative error tolerance per component. ``None`` selects
            :func:`~descentjax.config.default_adaptive_tolerance`.
        safety_factor: Multiplicative safety factor applied to step-size
            predictions.
        min_scale_factor: Minimum allowed ratio ``h_next / h``.
        max_scale_factor: Maximum allowed ratio ``h_next / h``.
        min_step: Smallest step the controller may take. A rejected step of
            this size ends the solve with ``STEP_UNDERFLOW``.
        max_step: Largest step the controller may take.
        initial_step: Step-size guess at the start of every solve.
        max_steps: Budget of step attempts (accepted and rejected).
    """

    abs_tol: float | None = None
    rel_tol: float | None = None
    safety_factor: float = 0.9
    min_scale_factor: float = 0.2
    max_scale_factor: float = 10.0
    min_step: float = 1e-12
    max_step: float = 1.0
    initial_step: float = 1e-2
    max_steps: int = 100_000

    def resolved(self) -> AdaptiveConfig:
        """Return a copy with unset tolerances filled from the active dtype."""
        tol = default_adaptive_tolerance()
        return self._replace(
            abs_tol=tol if self.abs_tol is None else self.abs_tol,
            rel_tol=tol if self.rel_tol is None else self.rel_tol,
        )


class SolveResult(NamedTuple):
    """Result of an adaptive solve over one segment.

    Attributes:
        state: Integrated vector at the final time reached.
        time: Final time reached (``1.0`` on success).
        dt_next: Step size the controller would try next.
        n_steps: Number of accepted steps.
        n_rejected: Number of rejected steps.
        status: :class:`SolverStatus` code.
    """

    state: Array
    time: Array
    dt_next: Array
    n_steps: Array
    n_rejected: Array
    status: Array


class IntegrationError(RuntimeError):
    """An adaptive solve ended without reaching the final time.

    Attributes:
        status: The :class:`SolverStatus` reported by the solver.
        segment_index: Index of the failing segment in a batch, if known.
        time: Normalized time reached when the solve stopped.
        state: Integrated vector at that time.
        n_steps: Accepted steps taken.
    """

    def __init__(
        self,
        status: SolverStatus,
        *,
        segment_index: int | None = None,
        time: float | None = None,
        state: Array | None = None,
        n_steps: int | None = None,
    ):
        self.status = SolverStatus(status)
        self.segment_index = segment_index
        self.time = time
        self.state = state
        self.n_steps = n_steps

        where = "" if segment_index is None else f" in segment {segment_index}"
        super().__init__(
            f"adaptive integration failed{where}: {self.status.name} "
            f"at t={time} after {n_steps} steps"
        )
