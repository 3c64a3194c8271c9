"""Batch linearization of a reference trajectory.

A trajectory of ``K + 1`` anchor points defines ``K`` segments; segment
``k`` starts from ``points[k].state`` and interpolates between
``points[k].control`` and ``points[k + 1].control``. Every routine here
returns one :class:`LinearizationResult` per segment, with the Jacobian
taken over the augmented input ``[x0, uk, up, sigma]``.

Two engines are available:

- :func:`linearize_dynamics` -- adaptive Dormand-Prince integration of the
  variational equations (reference accuracy).
- :func:`linearize_dynamics_rk4` -- forward-mode differentiation of the
  fixed-step RK4 propagator (fast).

:class:`Linearizer` bundles compiled dynamics, a cache and the vehicle
parameters for repeated use by an outer optimization loop.
"""

from __future__ import annotations

import bisect
import logging
from collections.abc import Sequence

from jax import Array
from jax.typing import ArrayLike

from descentjax.compiled import CompiledDynamics, compile_dynamics
from descentjax.constants import DEFAULT_RK4_SUBSTEPS
from descentjax.dynamics import DerivativeFn, pack_augmented_input, unpack_augmented_input
from descentjax.integrators import AdaptiveConfig
from descentjax.params import VehicleParams
from descentjax.sensitivity._types import LinearizationResult, TrajectoryPoint
from descentjax.sensitivity.cache import (
    AdaptiveSolverHandle,
    ForwardModeEntry,
    IntegratorCache,
    JacobianCache,
    NumericKind,
)
from descentjax.sensitivity.variational import augment_state, split_augmented_state

logger = logging.getLogger(__name__)

METHODS = ("variational", "rk4")


def _segments(points: Sequence[TrajectoryPoint]) -> list[tuple[Array, Array, Array]]:
    points = [TrajectoryPoint(*p) for p in points]
    if len(points) < 2:
        raise ValueError(f"at least two trajectory points are required, got {len(points)}")
    return [
        (points[k].state, points[k].control, points[k + 1].control)
        for k in range(len(points) - 1)
    ]


def _check_cache_matches(cache, params, dt) -> None:
    if not cache.matches(params, dt):
        raise ValueError("cache was built for different vehicle parameters or segment duration")


def _check_cache_option(name: str, given, cached) -> None:
    if given is not None and given != cached:
        raise ValueError(f"{name}={given!r} conflicts with the supplied cache ({name}={cached!r})")


def _resolve_integrator_cache(cache, params, dt, config, derivative) -> IntegratorCache:
    if cache is None:
        return IntegratorCache(params, dt, config=config, derivative=derivative)
    if not isinstance(cache, IntegratorCache):
        raise TypeError(f"expected an IntegratorCache, got {type(cache).__name__}")
    _check_cache_matches(cache, params, dt)
    _check_cache_option("config", None if config is None else config.resolved(), cache.config)
    _check_cache_option("derivative", derivative, cache.derivative)
    return cache


def _resolve_jacobian_cache(cache, params, dt, substeps, derivative) -> JacobianCache:
    if cache is None:
        substeps = DEFAULT_RK4_SUBSTEPS if substeps is None else substeps
        return JacobianCache(params, dt, substeps=substeps, derivative=derivative)
    if not isinstance(cache, JacobianCache):
        raise TypeError(f"expected a JacobianCache, got {type(cache).__name__}")
    _check_cache_matches(cache, params, dt)
    _check_cache_option("substeps", substeps, cache.substeps)
    _check_cache_option("derivative", derivative, cache.derivative)
    return cache


def _variational_segment(
    handle: AdaptiveSolverHandle,
    inp: Array,
    segment_index: int | None,
) -> LinearizationResult:
    x0, uk, up, sigma = unpack_augmented_input(inp)
    handle.reinit(augment_state(x0), (uk, up, sigma))
    state, jacobian = split_augmented_state(handle.solve(segment_index).state)
    return LinearizationResult(state=state, jacobian=jacobian)


def _forward_segment(entry: ForwardModeEntry, inp: Array) -> LinearizationResult:
    state, jacobian = entry(inp)
    return LinearizationResult(state=state, jacobian=jacobian)


def linearize_dynamics(
    points: Sequence[TrajectoryPoint],
    sigma: float,
    dt: float,
    params: VehicleParams,
    cache: IntegratorCache | None = None,
    config: AdaptiveConfig | None = None,
    derivative: DerivativeFn | None = None,
) -> list[LinearizationResult]:
    """Linearize every segment with the variational engine.

    Args:
        points: ``K + 1`` trajectory anchors.
        sigma: Time-dilation factor applied to every segment.
        dt: Nominal segment duration [s].
        params: Vehicle parameters.
        cache: Reusable :class:`IntegratorCache` built for *params* and
            *dt*. A private cache is created when omitted.
        config: Step-size control for a newly created cache. Must equal
            the cache configuration when *cache* is given.
        derivative: Optional replacement for the state derivative. Must be
            the cache derivative when *cache* is given.

    Returns:
        list[LinearizationResult]: One result per segment.

    Raises:
        ValueError: On malformed points, a mismatched cache, or an
            argument that conflicts with *cache*.
        IntegrationError: If a segment's solve fails; carries the segment
            index.
        RuntimeError: If *cache* is already in use.

    Examples:
        ```python
        params = VehicleParams(alpha=1e-4, g0=9.81)
        points = [TrajectoryPoint(x0, u0), TrajectoryPoint(x1, u1)]
        (res,) = linearize_dynamics(points, 1.0, 0.5, params)
        res.jacobian.shape  # (14, 25)
        ```
    """
    segments = _segments(points)
    cache = _resolve_integrator_cache(cache, params, dt, config, derivative)
    logger.info("Linearizing %d segments with the variational engine", len(segments))

    with cache.acquire():
        handle = cache.entry(NumericKind.TANGENT)
        return [
            _variational_segment(handle, pack_augmented_input(x0, uk, up, sigma), k)
            for k, (x0, uk, up) in enumerate(segments)
        ]


def linearize_dynamics_rk4(
    points: Sequence[TrajectoryPoint],
    sigma: float,
    dt: float,
    params: VehicleParams,
    cache: JacobianCache | None = None,
    substeps: int | None = None,
    derivative: DerivativeFn | None = None,
) -> list[LinearizationResult]:
    """Linearize every segment with forward-mode AD over fixed-step RK4.

    Args:
        points: ``K + 1`` trajectory anchors.
        sigma: Time-dilation factor applied to every segment.
        dt: Nominal segment duration [s].
        params: Vehicle parameters.
        cache: Reusable :class:`JacobianCache` built for *params* and *dt*.
            A private cache is created when omitted.
        substeps: RK4 substeps per segment. Defaults to the cache value,
            or 40 for a newly created cache.
        derivative: Optional replacement for the state derivative. Must be
            the cache derivative when *cache* is given.

    Returns:
        list[LinearizationResult]: One result per segment.

    Raises:
        ValueError: On malformed points, a mismatched cache, or an
            argument that conflicts with *cache*.
        RuntimeError: If *cache* is already in use.
    """
    segments = _segments(points)
    cache = _resolve_jacobian_cache(cache, params, dt, substeps, derivative)
    logger.info("Linearizing %d segments with the forward-mode RK4 engine", len(segments))

    with cache.acquire():
        entry = cache.entry(NumericKind.TANGENT)
        return [
            _forward_segment(entry, pack_augmented_input(x0, uk, up, sigma))
            for x0, uk, up in segments
        ]


def predict_state(
    state: ArrayLike,
    uk: ArrayLike,
    up: ArrayLike,
    sigma: float,
    dt: float,
    params: VehicleParams,
    cache: IntegratorCache | None = None,
    config: AdaptiveConfig | None = None,
) -> Array:
    """Propagate one segment with the adaptive solver, without sensitivity.

    Args:
        state: Initial state, shape ``(14,)``.
        uk: Control at the start of the segment, shape ``(5,)``.
        up: Control at the end of the segment, shape ``(5,)``.
        sigma: Time-dilation factor.
        dt: Nominal segment duration [s].
        params: Vehicle parameters.
        cache: Reusable :class:`IntegratorCache`; its ``PLAIN`` entry is used.
        config: Step-size control for a newly created cache.

    Returns:
        jax.Array: State at the end of the segment.

    Raises:
        ValueError: On malformed inputs or a mismatched cache.
        IntegrationError: If the solve fails.
    """
    x0, uk, up, sigma = unpack_augmented_input(pack_augmented_input(state, uk, up, sigma))
    cache = _resolve_integrator_cache(cache, params, dt, config, None)

    with cache.acquire():
        handle = cache.entry(NumericKind.PLAIN)
        handle.reinit(x0, (uk, up, sigma))
        return handle.solve().state


def linearize_phases(
    points: Sequence[TrajectoryPoint],
    sigmas: Sequence[float],
    splits: Sequence[int],
    linearizer: Linearizer,
) -> list[LinearizationResult]:
    """Linearize a trajectory whose phases carry separate time dilations.

    Segment ``k`` uses ``sigmas[j]`` where ``j`` counts the entries of
    *splits* that are ``<= k``. With ``splits=(3,)``, segments 0-2 use
    ``sigmas[0]`` and the rest use ``sigmas[1]``.

    Args:
        points: ``K + 1`` trajectory anchors.
        sigmas: One time-dilation factor per phase.
        splits: Sorted index of the first segment of every phase after the
            first; ``len(splits) == len(sigmas) - 1``.
        linearizer: Engine, cache and parameters to use.

    Returns:
        list[LinearizationResult]: One result per segment.

    Raises:
        ValueError: If *sigmas* and *splits* are inconsistent.
    """
    sigmas = [float(s) for s in sigmas]
    splits = [int(s) for s in splits]
    if len(sigmas) != len(splits) + 1:
        raise ValueError(
            f"expected len(sigmas) == len(splits) + 1, got {len(sigmas)} and {len(splits)}"
        )
    if splits != sorted(splits):
        raise ValueError(f"splits must be sorted, got {splits}")

    segments = _segments(points)
    logger.info("Linearizing %d segments over %d phases", len(segments), len(sigmas))

    return linearizer.linearize_inputs([
        pack_augmented_input(x0, uk, up, sigmas[bisect.bisect_right(splits, k)])
        for k, (x0, uk, up) in enumerate(segments)
    ])


class Linearizer:
    """Compiled dynamics, cache and parameters for repeated linearization.

    Args:
        params: Vehicle parameters.
        base_dt: Nominal segment duration [s].
        method: ``"variational"`` (adaptive, reference accuracy) or
            ``"rk4"`` (forward-mode over fixed-step RK4).
        compiled: Compiled dynamics to propagate with. Built from *params*
            when omitted.
        config: Step-size control for the variational engine.
        substeps: RK4 substeps for the ``"rk4"`` engine.

    Examples:
        ```python
        lin = Linearizer.from_num_nodes(params, num_nodes=20, method="rk4")
        results = lin.linearize(points, sigma=30.0)
        x_next = lin.predict_state(x0, u0, u1, sigma=30.0)
        ```
    """

    def __init__(
        self,
        params: VehicleParams,
        base_dt: float,
        method: str = "variational",
        compiled: CompiledDynamics | None = None,
        config: AdaptiveConfig | None = None,
        substeps: int = DEFAULT_RK4_SUBSTEPS,
    ):
        if method not in METHODS:
            raise ValueError(f"method must be one of {METHODS}, got {method!r}")

        self.params = params
        self.base_dt = float(base_dt)
        self.method = method
        self.compiled = compile_dynamics(params) if compiled is None else compiled

        if method == "variational":
            self.cache = IntegratorCache(
                params, base_dt, config=config, derivative=self.compiled.derivative
            )
        else:
            self.cache = JacobianCache(
                params, base_dt, substeps=substeps, derivative=self.compiled.derivative
            )

    @classmethod
    def from_num_nodes(cls, params: VehicleParams, num_nodes: int, **kwargs) -> Linearizer:
        """Linearizer for a trajectory of *num_nodes* nodes on a unit horizon.

        The base segment duration is ``1 / (num_nodes + 1)``, so *sigma*
        plays the role of the total flight time.
        """
        if num_nodes < 1:
            raise ValueError(f"num_nodes must be positive, got {num_nodes}")
        return cls(params, 1.0 / (num_nodes + 1), **kwargs)

    def linearize_inputs(self, inputs: Sequence[Array]) -> list[LinearizationResult]:
        """Linearize a batch of packed augmented inputs, one per segment."""
        with self.cache.acquire():
            entry = self.cache.entry(NumericKind.TANGENT)
            if self.method == "variational":
                return [_variational_segment(entry, inp, k) for k, inp in enumerate(inputs)]
            return [_forward_segment(entry, inp) for inp in inputs]

    def linearize(
        self, points: Sequence[TrajectoryPoint], sigma: float
    ) -> list[LinearizationResult]:
        """Linearize every segment with a single time-dilation factor."""
        return linearize_phases(points, (sigma,), (), self)

    def linearize_phases(
        self,
        points: Sequence[TrajectoryPoint],
        sigmas: Sequence[float],
        splits: Sequence[int],
    ) -> list[LinearizationResult]:
        """See :func:`linearize_phases`."""
        return linearize_phases(points, sigmas, splits, self)

    def predict_state(
        self, state: ArrayLike, uk: ArrayLike, up: ArrayLike, sigma: float
    ) -> Array:
        """End state of one segment of duration ``sigma * base_dt``."""
        inp = pack_augmented_input(state, uk, up, sigma)
        with self.cache.acquire():
            entry = self.cache.entry(NumericKind.PLAIN)
            if self.method == "variational":
                x0, uk, up, sigma = unpack_augmented_input(inp)
                entry.reinit(x0, (uk, up, sigma))
                return entry.solve().state
            return entry(inp)


def initialize_linearizer(
    params: VehicleParams,
    base_dt: float,
    method: str = "variational",
    **kwargs,
) -> Linearizer:
    """Create a :class:`Linearizer`.

    Args:
        params: Vehicle parameters.
        base_dt: Nominal segment duration [s].
        method: ``"variational"`` or ``"rk4"``.
        **kwargs: Forwarded to :class:`Linearizer`.

    Returns:
        Linearizer: Ready for :meth:`Linearizer.linearize`.
    """
    return Linearizer(params, base_dt, method=method, **kwargs)
