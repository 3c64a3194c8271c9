"""Tests for the descentjax.sensitivity module.

Tests cover:
- The end-to-end powered-flight scenario on both engines
- Forward-mode Jacobian against central finite differences
- Agreement of the variational and forward-mode engines
- Cache reuse, lazy allocation and exclusive use
- Error reporting (failing segments, bad inputs, mismatched caches)
- Multi-phase linearization and the Linearizer bundle
"""

import jax.numpy as jnp
import pytest

from descentjax.aerodynamics import ConstantCoefficientAerodynamics
from descentjax.dynamics import make_state_derivative, pack_augmented_input
from descentjax.integrators import AdaptiveConfig, IntegrationError, SolverStatus, propagate_segment_rk4
from descentjax.params import VehicleParams
from descentjax.sensitivity import (
    IntegratorCache,
    JacobianCache,
    LinearizationResult,
    Linearizer,
    NumericKind,
    TrajectoryPoint,
    initialize_linearizer,
    linearize_dynamics,
    linearize_dynamics_rk4,
    linearize_phases,
    predict_state,
)
from descentjax.sensitivity.cache import _KindCache

_ALPHA = 1e-4
_G0 = 9.81
_LOOSE = AdaptiveConfig(abs_tol=1e-10, rel_tol=1e-10)


# ──────────────────────────────────────────────
# Helpers
# ──────────────────────────────────────────────

def _scenario_params():
    return VehicleParams.from_principal(_ALPHA, _G0, 1.0, 1.0, 1.0, r_T_B=[0.0, 0.0, -1.0])


def _scenario_points():
    x0 = jnp.array([1000.0, 0.0, 0.0, 0.0, 100.0, 0.0, 0.0, 1.0, 0.0, 0.0, 0.0, 0.0, 0.0, 0.0])
    u = jnp.array([0.0, 0.0, 5000.0, 0.0, 0.0])
    return [TrajectoryPoint(x0, u), TrajectoryPoint(x0, u)]


def _params(aero=None):
    return VehicleParams.from_principal(
        _ALPHA, _G0, 4000.0, 40000.0, 40000.0,
        r_T_B=[0.0, 0.0, -1.0], r_F_B=[0.5, 0.0, 0.0], aero=aero,
    )


def _state(pos, vel, quat, omega, mass=1000.0):
    q = jnp.asarray(quat)
    return jnp.concatenate([jnp.array([mass]), jnp.asarray(pos), jnp.asarray(vel), q / jnp.linalg.norm(q), jnp.asarray(omega)])


def _trajectory():
    return [
        TrajectoryPoint(
            _state([500.0, 20.0, -10.0], [-80.0, 5.0, -3.0], [0.99, 0.05, -0.1, 0.02], [0.01, -0.02, 0.03]),
            jnp.array([300.0, 50.0, 4800.0, 5.0, 0.1]),
        ),
        TrajectoryPoint(
            _state([420.0, 24.0, -13.0], [-75.0, 4.0, -2.5], [0.98, 0.06, -0.12, 0.03], [0.02, -0.01, 0.02], 999.5),
            jnp.array([250.0, -40.0, 5200.0, -2.0, 0.3]),
        ),
        TrajectoryPoint(
            _state([345.0, 28.0, -15.0], [-70.0, 3.0, -2.0], [0.97, 0.07, -0.13, 0.03], [0.01, 0.0, 0.01], 999.0),
            jnp.array([200.0, 0.0, 5500.0, 0.0, -0.2]),
        ),
    ]


def _segment_input(points, k, sigma):
    return pack_augmented_input(points[k].state, points[k].control, points[k + 1].control, sigma)


def _scale(a):
    return float(jnp.max(jnp.abs(a)))


# ──────────────────────────────────────────────
# End-to-end scenario
# ──────────────────────────────────────────────

class TestScenario:
    """1000 kg vehicle, 100 m/s along x, 5000 N body-z thrust, one 1 s segment."""

    def _check_state(self, x):
        assert jnp.allclose(x[0], 1000.0 - _ALPHA * 5000.0, rtol=1e-10)
        assert jnp.allclose(x[1], 100.0 - 0.5 * _G0, rtol=1e-8)
        assert jnp.allclose(x[2], 0.0, atol=1e-10)
        assert jnp.allclose(x[3], 2.5, rtol=1e-3)
        assert jnp.allclose(x[4], 100.0 - _G0, rtol=1e-10)
        assert jnp.allclose(x[6], 5000.0 / 1000.0, rtol=1e-3)
        assert jnp.allclose(x[7:11], jnp.array([1.0, 0.0, 0.0, 0.0]), atol=1e-12)
        assert jnp.allclose(x[11:14], 0.0, atol=1e-12)

    def _check_jacobian(self, J):
        assert J.shape == (14, 25)
        assert jnp.allclose(J[0, 0], 1.0)
        # dr/dv0 = t * I
        assert jnp.allclose(J[1:4, 4:7], jnp.eye(3), atol=1e-8)
        # dm/dsigma = -alpha * |T| * dt
        assert jnp.allclose(J[0, 24], -_ALPHA * 5000.0, rtol=1e-8)
        # thrust anchors split the mass sensitivity evenly
        assert jnp.allclose(J[0, 16], J[0, 21], rtol=1e-8)

    def test_forward_mode(self):
        (res,) = linearize_dynamics_rk4(_scenario_points(), 1.0, 1.0, _scenario_params())
        assert isinstance(res, LinearizationResult)
        self._check_state(res.state)
        self._check_jacobian(res.jacobian)

    def test_variational(self):
        (res,) = linearize_dynamics(_scenario_points(), 1.0, 1.0, _scenario_params())
        self._check_state(res.state)
        self._check_jacobian(res.jacobian)

    def test_predict_state(self):
        pts = _scenario_points()
        x = predict_state(pts[0].state, pts[0].control, pts[1].control, 1.0, 1.0, _scenario_params())
        self._check_state(x)


# ──────────────────────────────────────────────
# Forward-mode Jacobian vs finite differences
# ──────────────────────────────────────────────

class TestFiniteDifferences:
    def _setup(self):
        params = _params(aero=ConstantCoefficientAerodynamics(cd=0.3, cl=0.2, cm=0.05))
        points = _trajectory()
        inp = _segment_input(points, 0, 1.0)
        direction = jnp.zeros(25)
        direction = direction.at[7:11].set(jnp.array([0.3, -0.5, 0.2, 0.4]))
        direction = direction.at[11:14].set(jnp.array([0.5, -0.3, 0.2]))
        direction = direction.at[24].set(0.2)
        (res,) = linearize_dynamics_rk4(points[:2], 1.0, 1.0, params)
        return params, inp, direction, res.jacobian @ direction

    @staticmethod
    def _central(params, inp, direction, h):
        plus = propagate_segment_rk4(inp + h * direction, 1.0, params)
        minus = propagate_segment_rk4(inp - h * direction, 1.0, params)
        return (plus - minus) / (2.0 * h)

    def test_matches(self):
        params, inp, direction, jd = self._setup()
        fd = self._central(params, inp, direction, 1e-4)
        assert jnp.linalg.norm(fd - jd) < 1e-6 * jnp.linalg.norm(jd)

    def test_second_order_convergence(self):
        params, inp, direction, jd = self._setup()
        err_coarse = jnp.linalg.norm(self._central(params, inp, direction, 1e-2) - jd)
        err_fine = jnp.linalg.norm(self._central(params, inp, direction, 5e-3) - jd)
        ratio = float(err_coarse / err_fine)
        assert 3.0 < ratio < 5.0


# ──────────────────────────────────────────────
# Engine agreement
# ──────────────────────────────────────────────

class TestEngineAgreement:
    @pytest.mark.parametrize("aero", [None, ConstantCoefficientAerodynamics(cd=0.3, cl=0.2, cm=0.05)])
    def test_variational_matches_forward_mode(self, aero):
        params = _params(aero=aero)
        points = _trajectory()
        var = linearize_dynamics(points, 1.0, 1.0, params, config=_LOOSE)
        fwd = linearize_dynamics_rk4(points, 1.0, 1.0, params)

        assert len(var) == len(fwd) == 2
        for a, b in zip(var, fwd):
            assert jnp.allclose(a.state, b.state, rtol=1e-4)
            assert jnp.allclose(a.jacobian, b.jacobian, rtol=1e-4, atol=1e-6 * _scale(b.jacobian))

    def test_predict_matches_linearized_state(self):
        params = _params()
        points = _trajectory()
        (res, _) = linearize_dynamics(points, 1.0, 1.0, params, config=_LOOSE)
        x = predict_state(points[0].state, points[0].control, points[1].control, 1.0, 1.0, params, config=_LOOSE)
        assert jnp.allclose(x, res.state, rtol=1e-7, atol=1e-8)

    def test_zero_velocity_jacobian_finite(self):
        params = _params()
        x0 = _state([100.0, 0.0, 0.0], [0.0, 0.0, 0.0], [1.0, 0.0, 0.0, 0.0], [0.0, 0.0, 0.0])
        u = jnp.array([0.0, 0.0, 9810.0, 0.0, 0.0])
        points = [TrajectoryPoint(x0, u), TrajectoryPoint(x0, u)]
        (fwd,) = linearize_dynamics_rk4(points, 1.0, 0.1, params)
        (var,) = linearize_dynamics(points, 1.0, 0.1, params, config=_LOOSE)
        assert jnp.all(jnp.isfinite(fwd.jacobian))
        assert jnp.all(jnp.isfinite(var.jacobian))


# ──────────────────────────────────────────────
# Caches
# ──────────────────────────────────────────────

class TestIntegratorCache:
    def test_lazy_allocation(self):
        params = _params()
        cache = IntegratorCache(params, 1.0, config=_LOOSE)
        assert not cache.has_entry(NumericKind.PLAIN)
        assert not cache.has_entry(NumericKind.TANGENT)

        linearize_dynamics(_trajectory()[:2], 1.0, 1.0, params, cache=cache)
        assert cache.has_entry(NumericKind.TANGENT)
        assert not cache.has_entry(NumericKind.PLAIN)

        p = _trajectory()
        predict_state(p[0].state, p[0].control, p[1].control, 1.0, 1.0, params, cache=cache)
        assert cache.has_entry(NumericKind.PLAIN)

    def test_reuse_matches_fresh_caches(self):
        params = _params()
        points = _trajectory()
        cache = IntegratorCache(params, 1.0, config=_LOOSE)

        reused = [
            linearize_dynamics(points[k:k + 2], 1.0, 1.0, params, cache=cache)[0]
            for k in range(2)
        ]
        fresh = [
            linearize_dynamics(points[k:k + 2], 1.0, 1.0, params, cache=IntegratorCache(params, 1.0, config=_LOOSE))[0]
            for k in range(2)
        ]
        for a, b in zip(reused, fresh):
            assert jnp.allclose(a.state, b.state, rtol=1e-13, atol=1e-13)
            assert jnp.allclose(a.jacobian, b.jacobian, rtol=1e-13, atol=1e-13)

    def test_reinit_resets_integration_state(self):
        params = _params()
        cache = IntegratorCache(params, 1.0, config=_LOOSE)
        linearize_dynamics(_trajectory(), 1.0, 1.0, params, cache=cache)

        handle = cache.entry(NumericKind.TANGENT)
        assert handle.t == 1.0
        assert handle.n_solves == 2
        assert handle.n_steps > 0

        handle.reinit(jnp.zeros(14 + 14 * 25), (jnp.zeros(5), jnp.zeros(5), jnp.asarray(1.0)))
        assert handle.t == 0.0
        assert handle.dt == _LOOSE.initial_step
        assert handle.n_steps == 0
        assert handle.n_rejected == 0

    def test_entry_reused(self):
        params = _params()
        cache = IntegratorCache(params, 1.0, config=_LOOSE)
        linearize_dynamics(_trajectory()[:2], 1.0, 1.0, params, cache=cache)
        handle = cache.entry(NumericKind.TANGENT)
        linearize_dynamics(_trajectory()[1:], 1.0, 1.0, params, cache=cache)
        assert cache.entry(NumericKind.TANGENT) is handle
        assert handle.n_solves == 2

    def test_solve_requires_reinit(self):
        cache = IntegratorCache(_params(), 1.0)
        with pytest.raises(RuntimeError, match="reinit"):
            cache.entry(NumericKind.PLAIN).solve()

    def test_not_reentrant(self):
        params = _params()
        cache = IntegratorCache(params, 1.0)
        with cache.acquire():
            assert cache.in_use
            with pytest.raises(RuntimeError, match="already in use"):
                linearize_dynamics(_trajectory(), 1.0, 1.0, params, cache=cache)
        assert not cache.in_use

    def test_released_after_error(self):
        params = _params()
        cache = IntegratorCache(params, 1.0, config=AdaptiveConfig(max_steps=2))
        with pytest.raises(IntegrationError):
            linearize_dynamics(_trajectory(), 1.0, 1.0, params, cache=cache)
        assert not cache.in_use

    def test_mismatched_cache(self):
        params = _params()
        with pytest.raises(ValueError, match="different"):
            linearize_dynamics(_trajectory(), 1.0, 0.5, params, cache=IntegratorCache(params, 1.0))
        with pytest.raises(ValueError, match="different"):
            linearize_dynamics(_trajectory(), 1.0, 1.0, _params(), cache=IntegratorCache(params, 1.0))

    def test_wrong_cache_type(self):
        params = _params()
        with pytest.raises(TypeError, match="IntegratorCache"):
            linearize_dynamics(_trajectory(), 1.0, 1.0, params, cache=JacobianCache(params, 1.0))

    def test_nonpositive_dt(self):
        with pytest.raises(ValueError, match="dt"):
            IntegratorCache(_params(), 0.0)

    def test_conflicting_config(self):
        params = _params()
        cache = IntegratorCache(params, 1.0, config=_LOOSE)
        with pytest.raises(ValueError, match="config"):
            linearize_dynamics(_trajectory(), 1.0, 1.0, params, cache=cache, config=AdaptiveConfig(max_steps=2))
        assert not cache.has_entry(NumericKind.TANGENT)

    def test_matching_config_accepted(self):
        params = _params()
        cache = IntegratorCache(params, 1.0, config=_LOOSE)
        results = linearize_dynamics(_trajectory(), 1.0, 1.0, params, cache=cache, config=_LOOSE)
        assert len(results) == 2

    def test_conflicting_derivative(self):
        params = _params()
        cache = IntegratorCache(params, 1.0)
        with pytest.raises(ValueError, match="derivative"):
            linearize_dynamics(_trajectory(), 1.0, 1.0, params, cache=cache, derivative=make_state_derivative(params))

    def test_allocate_is_abstract(self):
        class _NoAllocate(_KindCache):
            pass

        with pytest.raises(TypeError, match="_allocate"):
            _NoAllocate(_params(), 1.0, None)


class TestJacobianCache:
    def test_seed_basis_allocated_once(self):
        params = _params()
        cache = JacobianCache(params, 1.0)
        linearize_dynamics_rk4(_trajectory(), 1.0, 1.0, params, cache=cache)
        entry = cache.entry(NumericKind.TANGENT)
        seeds = entry.seeds
        assert seeds.shape == (25, 25)
        assert jnp.array_equal(seeds, jnp.eye(25))
        assert entry.n_calls == 2

        linearize_dynamics_rk4(_trajectory(), 1.0, 1.0, params, cache=cache)
        assert cache.entry(NumericKind.TANGENT).seeds is seeds
        assert entry.n_calls == 4

    def test_reuse_matches_fresh_caches(self):
        params = _params()
        points = _trajectory()
        cache = JacobianCache(params, 1.0)
        reused = linearize_dynamics_rk4(points, 1.0, 1.0, params, cache=cache)
        fresh = [linearize_dynamics_rk4(points[k:k + 2], 1.0, 1.0, params)[0] for k in range(2)]
        for a, b in zip(reused, fresh):
            assert jnp.allclose(a.state, b.state, rtol=1e-13)
            assert jnp.allclose(a.jacobian, b.jacobian, rtol=1e-13, atol=1e-13)

    def test_plain_entry(self):
        params = _params()
        cache = JacobianCache(params, 1.0)
        inp = _segment_input(_trajectory(), 0, 1.0)
        entry = cache.entry(NumericKind.PLAIN)
        assert entry.seeds is None
        assert jnp.allclose(entry(inp), propagate_segment_rk4(inp, 1.0, params), rtol=1e-12)

    def test_substeps_respected(self):
        params = _params()
        points = _trajectory()[:2]
        (res,) = linearize_dynamics_rk4(points, 1.0, 1.0, params, substeps=3)
        expected = propagate_segment_rk4(_segment_input(points, 0, 1.0), 1.0, params, substeps=3)
        assert jnp.allclose(res.state, expected, rtol=1e-12)

    def test_invalid_substeps(self):
        with pytest.raises(ValueError, match="substeps"):
            JacobianCache(_params(), 1.0, substeps=0)

    def test_conflicting_substeps(self):
        params = _params()
        cache = JacobianCache(params, 1.0, substeps=10)
        with pytest.raises(ValueError, match="substeps"):
            linearize_dynamics_rk4(_trajectory(), 1.0, 1.0, params, cache=cache, substeps=40)
        assert not cache.has_entry(NumericKind.TANGENT)

    def test_substeps_default_to_cache(self):
        params = _params()
        points = _trajectory()[:2]
        cache = JacobianCache(params, 1.0, substeps=3)
        (res,) = linearize_dynamics_rk4(points, 1.0, 1.0, params, cache=cache)
        expected = propagate_segment_rk4(_segment_input(points, 0, 1.0), 1.0, params, substeps=3)
        assert jnp.allclose(res.state, expected, rtol=1e-12)

    def test_conflicting_derivative(self):
        params = _params()
        cache = JacobianCache(params, 1.0)
        with pytest.raises(ValueError, match="derivative"):
            linearize_dynamics_rk4(_trajectory(), 1.0, 1.0, params, cache=cache, derivative=make_state_derivative(params))


# ──────────────────────────────────────────────
# Errors
# ──────────────────────────────────────────────

class TestErrors:
    def test_failing_segment_reports_index(self):
        params = _params()
        points = _trajectory()
        points[1] = TrajectoryPoint(points[1].state.at[0].set(0.0), points[1].control)

        with pytest.raises(IntegrationError) as excinfo:
            linearize_dynamics(points, 1.0, 1.0, params, config=_LOOSE)

        err = excinfo.value
        assert err.segment_index == 1
        assert err.status == SolverStatus.NONFINITE
        assert err.state.shape == (14,)

    def test_step_budget_exhausted(self):
        params = _params()
        with pytest.raises(IntegrationError) as excinfo:
            linearize_dynamics(_trajectory(), 1.0, 1.0, params, config=AdaptiveConfig(max_steps=2))
        err = excinfo.value
        assert err.status == SolverStatus.MAX_STEPS
        assert err.segment_index == 0
        assert 0.0 <= err.time < 1.0

    def test_predict_state_failure(self):
        p = _trajectory()
        with pytest.raises(IntegrationError):
            predict_state(p[0].state, p[0].control, p[1].control, 1.0, 1.0, _params(), config=AdaptiveConfig(max_steps=1))

    def test_too_few_points(self):
        with pytest.raises(ValueError, match="two trajectory points"):
            linearize_dynamics_rk4(_trajectory()[:1], 1.0, 1.0, _params())

    def test_bad_state_dimension(self):
        points = _trajectory()
        points[0] = TrajectoryPoint(points[0].state[:13], points[0].control)
        with pytest.raises(ValueError, match="state"):
            linearize_dynamics_rk4(points, 1.0, 1.0, _params())

    def test_bad_control_dimension(self):
        points = _trajectory()
        points[1] = TrajectoryPoint(points[1].state, points[1].control[:3])
        with pytest.raises(ValueError, match="up"):
            linearize_dynamics(points, 1.0, 1.0, _params())


# ──────────────────────────────────────────────
# Phases and Linearizer
# ──────────────────────────────────────────────

class TestLinearizePhases:
    def _points(self):
        pts = _trajectory()
        return pts + [TrajectoryPoint(pts[2].state, pts[0].control)]

    def test_sigma_per_phase(self):
        params = _params()
        lin = Linearizer(params, 0.5, method="rk4")
        points = self._points()
        results = linearize_phases(points, (1.0, 2.0), (2,), lin)
        assert len(results) == 3

        for k, sigma in enumerate((1.0, 1.0, 2.0)):
            expected = propagate_segment_rk4(_segment_input(points, k, sigma), 0.5, params)
            assert jnp.allclose(results[k].state, expected, rtol=1e-10)

    def test_single_phase_matches_batch(self):
        params = _params()
        lin = Linearizer(params, 0.5, method="rk4")
        points = self._points()
        phased = linearize_phases(points, (1.5,), (), lin)
        batch = linearize_dynamics_rk4(points, 1.5, 0.5, params)
        for a, b in zip(phased, batch):
            assert jnp.allclose(a.jacobian, b.jacobian, rtol=1e-10, atol=1e-12)

    def test_mismatched_lengths(self):
        lin = Linearizer(_params(), 0.5, method="rk4")
        with pytest.raises(ValueError, match="len"):
            linearize_phases(self._points(), (1.0, 2.0), (), lin)

    def test_unsorted_splits(self):
        lin = Linearizer(_params(), 0.5, method="rk4")
        with pytest.raises(ValueError, match="sorted"):
            linearize_phases(self._points(), (1.0, 2.0, 3.0), (2, 1), lin)


class TestLinearizer:
    def test_from_num_nodes(self):
        lin = Linearizer.from_num_nodes(_params(), 9, method="rk4")
        assert lin.base_dt == pytest.approx(0.1)

    def test_invalid_method(self):
        with pytest.raises(ValueError, match="method"):
            Linearizer(_params(), 0.1, method="euler")

    def test_initialize_linearizer(self):
        lin = initialize_linearizer(_params(), 0.25, method="rk4", substeps=10)
        assert isinstance(lin, Linearizer)
        assert isinstance(lin.cache, JacobianCache)
        assert lin.cache.substeps == 10

    def test_rk4_linearize_matches_function(self):
        params = _params()
        lin = Linearizer(params, 1.0, method="rk4")
        a = lin.linearize(_trajectory(), 1.0)
        b = linearize_dynamics_rk4(_trajectory(), 1.0, 1.0, params)
        for ra, rb in zip(a, b):
            assert jnp.allclose(ra.state, rb.state, rtol=1e-10)
            assert jnp.allclose(ra.jacobian, rb.jacobian, rtol=1e-8, atol=1e-10 * _scale(rb.jacobian))

    def test_variational_linearize(self):
        params = _params()
        lin = Linearizer(params, 1.0, config=_LOOSE)
        assert isinstance(lin.cache, IntegratorCache)
        results = lin.linearize_phases(_trajectory(), (1.0,), ())
        expected = linearize_dynamics_rk4(_trajectory(), 1.0, 1.0, params)
        for a, b in zip(results, expected):
            assert jnp.allclose(a.jacobian, b.jacobian, rtol=1e-4, atol=1e-6 * _scale(b.jacobian))

    @pytest.mark.parametrize("method", ["variational", "rk4"])
    def test_predict_state(self, method):
        params = _params()
        lin = Linearizer(params, 0.5, method=method, config=_LOOSE)
        p = _trajectory()
        x = lin.predict_state(p[0].state, p[0].control, p[1].control, 2.0)
        expected = propagate_segment_rk4(_segment_input(p, 0, 2.0), 0.5, params)
        assert jnp.allclose(x, expected, rtol=1e-4)
