"""Reusable solver caches for the linearization engines.

Compiling a propagator is far more expensive than running it, so each
engine keeps its compiled functions in a cache that is created once and
passed into every call. A cache holds one entry per :class:`NumericKind`:

- ``PLAIN`` -- propagation of the state alone.
- ``TANGENT`` -- propagation of the state together with its sensitivity.

Entries are allocated lazily on first use and reinitialized in place for
every subsequent segment. A cache is not reentrant: it may serve one
propagation at a time, enforced by :meth:`acquire`.
"""

from __future__ import annotations

import abc
import contextlib
import enum
import logging
from collections.abc import Iterator

from jax import Array

from descentjax.constants import DEFAULT_RK4_SUBSTEPS, N_STATE
from descentjax.dynamics import DerivativeFn, make_state_derivative
from descentjax.integrators import AdaptiveConfig, IntegrationError, SolveResult, SolverStatus
from descentjax.params import VehicleParams
from descentjax.sensitivity.forward_mode import make_forward_propagators, seed_basis
from descentjax.sensitivity.variational import (
    make_adaptive_propagator,
    make_variational_propagator,
)

logger = logging.getLogger(__name__)


class NumericKind(enum.Enum):
    """Numeric representation a cache entry propagates.

    Attributes:
        PLAIN: Plain floating-point values.
        TANGENT: Values carrying first-order derivative information.
    """

    PLAIN = "plain"
    TANGENT = "tangent"


class AdaptiveSolverHandle:
    """A compiled adaptive solve plus its per-segment integration state.

    Call :meth:`reinit` with the segment's initial conditions, then
    :meth:`solve`. The integration time, step-size guess and step counters
    are reset on every :meth:`reinit`.

    Attributes:
        kind: The numeric kind this handle propagates.
        config: Step-size control settings compiled into the solver.
        t: Normalized time reached by the last solve.
        dt: Step-size guess for the next solve.
        n_steps: Accepted steps of the last solve.
        n_rejected: Rejected steps of the last solve.
        n_solves: Solves performed over the handle's lifetime.
    """

    def __init__(self, kind: NumericKind, solve, config: AdaptiveConfig):
        self.kind = kind
        self.config = config
        self._solve = solve
        self._y0 = None
        self._args = None
        self.t = 0.0
        self.dt = config.initial_step
        self.n_steps = 0
        self.n_rejected = 0
        self.n_solves = 0

    def reinit(self, y0: Array, args) -> None:
        """Load new initial conditions and reset the integration state."""
        self._y0 = y0
        self._args = args
        self.t = 0.0
        self.dt = self.config.initial_step
        self.n_steps = 0
        self.n_rejected = 0
        logger.debug("Reinitialized %s adaptive solver", self.kind.value)

    def solve(self, segment_index: int | None = None) -> SolveResult:
        """Integrate the loaded segment from ``t = 0`` to ``t = 1``.

        Args:
            segment_index: Position of the segment in its batch, reported in
                errors.

        Returns:
            SolveResult: The successful solve.

        Raises:
            RuntimeError: If :meth:`reinit` was not called since the last
                solve.
            IntegrationError: If the solver did not reach the final time.
        """
        if self._y0 is None:
            raise RuntimeError("reinit() must be called before solve()")

        result = self._solve(self._y0, self._args, self.dt)
        self._y0 = None
        self._args = None

        self.t = float(result.time)
        self.dt = float(result.dt_next)
        self.n_steps = int(result.n_steps)
        self.n_rejected = int(result.n_rejected)
        self.n_solves += 1

        status = SolverStatus(int(result.status))
        if status != SolverStatus.SUCCESS:
            raise IntegrationError(
                status,
                segment_index=segment_index,
                time=self.t,
                state=result.state[:N_STATE],
                n_steps=self.n_steps,
            )
        return result


class ForwardModeEntry:
    """A compiled fixed-step propagator for one numeric kind.

    ``PLAIN`` entries map an augmented input to the end state; ``TANGENT``
    entries return ``(state, jacobian)`` using a seed basis allocated once
    with the entry.

    Attributes:
        kind: The numeric kind this entry propagates.
        seeds: Tangent seed basis, ``None`` for ``PLAIN`` entries.
        n_calls: Number of propagations performed.
    """

    def __init__(self, kind: NumericKind, fn, seeds: Array | None = None):
        self.kind = kind
        self.seeds = seeds
        self.n_calls = 0
        self._fn = fn

    def __call__(self, inp: Array):
        self.n_calls += 1
        if self.kind is NumericKind.TANGENT:
            return self._fn(inp, self.seeds)
        return self._fn(inp)


class _KindCache(abc.ABC):
    """Shared entry bookkeeping and exclusive-use guard."""

    def __init__(self, params: VehicleParams, dt: float, derivative: DerivativeFn | None):
        if dt <= 0:
            raise ValueError(f"dt must be positive, got {dt}")
        self.params = params
        self.dt = float(dt)
        self.derivative = make_state_derivative(params) if derivative is None else derivative
        self._entries: dict = {}
        self._in_use = False

    @abc.abstractmethod
    def _allocate(self, kind: NumericKind):
        """Build the entry for *kind*."""

    def entry(self, kind: NumericKind):
        """Return the entry for *kind*, allocating it on first use."""
        kind = NumericKind(kind)
        cached = self._entries.get(kind)
        if cached is None:
            cached = self._allocate(kind)
            self._entries[kind] = cached
            logger.debug(
                "Allocated %s entry in %s (dt=%g)", kind.value, type(self).__name__, self.dt
            )
        return cached

    def has_entry(self, kind: NumericKind) -> bool:
        """Whether the entry for *kind* has been allocated."""
        return NumericKind(kind) in self._entries

    def matches(self, params: VehicleParams, dt: float) -> bool:
        """Whether the cache was built for *params* and *dt*."""
        return params is self.params and float(dt) == self.dt

    @property
    def in_use(self) -> bool:
        """Whether a propagation currently holds the cache."""
        return self._in_use

    @contextlib.contextmanager
    def acquire(self) -> Iterator:
        """Claim the cache for one propagation.

        Raises:
            RuntimeError: If the cache is already claimed.
        """
        if self._in_use:
            raise RuntimeError(
                f"{type(self).__name__} is already in use; a cache serves one propagation at a time"
            )
        self._in_use = True
        try:
            yield self
        finally:
            self._in_use = False


class IntegratorCache(_KindCache):
    """Adaptive-solver cache for the variational engine.

    Args:
        params: Vehicle parameters.
        dt: Nominal segment duration [s].
        config: Step-size control settings. Unset tolerances default to the
            tight dtype-dependent values of
            :func:`~descentjax.config.default_adaptive_tolerance`.
        derivative: Optional replacement for the state derivative.

    Examples:
        ```python
        cache = IntegratorCache(params, dt=0.1)
        linearize_dynamics(points, 1.0, 0.1, params, cache=cache)
        linearize_dynamics(other_points, 1.0, 0.1, params, cache=cache)  # reuses compiled solvers
        ```
    """

    def __init__(
        self,
        params: VehicleParams,
        dt: float,
        config: AdaptiveConfig | None = None,
        derivative: DerivativeFn | None = None,
    ):
        super().__init__(params, dt, derivative)
        self.config = (AdaptiveConfig() if config is None else config).resolved()

    def _allocate(self, kind: NumericKind) -> AdaptiveSolverHandle:
        if kind is NumericKind.PLAIN:
            solve = make_adaptive_propagator(self.dt, self.derivative, self.config)
        else:
            solve = make_variational_propagator(self.dt, self.derivative, self.config)
        return AdaptiveSolverHandle(kind, solve, self.config)


class JacobianCache(_KindCache):
    """Compiled fixed-step propagators for the forward-mode engine.

    Args:
        params: Vehicle parameters.
        dt: Nominal segment duration [s].
        substeps: RK4 substeps per segment.
        derivative: Optional replacement for the state derivative.
    """

    def __init__(
        self,
        params: VehicleParams,
        dt: float,
        substeps: int = DEFAULT_RK4_SUBSTEPS,
        derivative: DerivativeFn | None = None,
    ):
        if int(substeps) != substeps or substeps < 1:
            raise ValueError(f"substeps must be a positive integer, got {substeps}")
        super().__init__(params, dt, derivative)
        self.substeps = int(substeps)
        self._propagators = None

    def _allocate(self, kind: NumericKind) -> ForwardModeEntry:
        if self._propagators is None:
            self._propagators = make_forward_propagators(
                self.params, self.dt, self.substeps, self.derivative
            )
        plain, tangent = self._propagators
        if kind is NumericKind.PLAIN:
            return ForwardModeEntry(kind, plain)
        return ForwardModeEntry(kind, tangent, seeds=seed_basis())
