"""Tests for the descentjax.params module."""

import jax.numpy as jnp
import pytest

from descentjax.aerodynamics import ConstantCoefficientAerodynamics, ZeroAerodynamics
from descentjax.params import VehicleParams


class TestVehicleParams:
    def test_defaults(self):
        p = VehicleParams()
        assert jnp.allclose(p.J_B, jnp.eye(3))
        assert jnp.allclose(p.J_B_inv, jnp.eye(3))
        assert isinstance(p.aero, ZeroAerodynamics)

    def test_inverse_derived(self):
        J = jnp.array([[10.0, 1.0, 0.0], [1.0, 20.0, 0.0], [0.0, 0.0, 30.0]])
        p = VehicleParams(J_B=J)
        assert jnp.allclose(p.J_B @ p.J_B_inv, jnp.eye(3), atol=1e-12)

    def test_explicit_inverse_kept(self):
        p = VehicleParams(J_B=2.0 * jnp.eye(3), J_B_inv=0.5 * jnp.eye(3))
        assert jnp.allclose(p.J_B_inv, 0.5 * jnp.eye(3))

    def test_arms_converted(self):
        p = VehicleParams(r_T_B=[0.0, 0.0, -1.0])
        assert p.r_T_B.shape == (3,)
        assert p.r_T_B.dtype == jnp.float64

    def test_frozen(self):
        p = VehicleParams()
        with pytest.raises(AttributeError):
            p.g0 = 1.0

    def test_from_principal(self):
        aero = ConstantCoefficientAerodynamics()
        p = VehicleParams.from_principal(1e-4, 9.81, 10.0, 20.0, 30.0, r_T_B=[0.0, 0.0, -2.0], aero=aero)
        assert jnp.allclose(jnp.diag(p.J_B), jnp.array([10.0, 20.0, 30.0]))
        assert jnp.allclose(jnp.diag(p.J_B_inv), jnp.array([0.1, 0.05, 1.0 / 30.0]))
        assert p.aero is aero


class TestVehicleParamsValidation:
    def test_bad_inertia_shape(self):
        with pytest.raises(ValueError, match="J_B"):
            VehicleParams(J_B=jnp.eye(2))

    def test_bad_inverse_shape(self):
        with pytest.raises(ValueError, match="J_B_inv"):
            VehicleParams(J_B_inv=jnp.ones(3))

    def test_bad_arm_shape(self):
        with pytest.raises(ValueError, match="r_F_B"):
            VehicleParams(r_F_B=[1.0, 2.0])

    def test_nonpositive_sos(self):
        with pytest.raises(ValueError, match="sos"):
            VehicleParams(sos=0.0)

    def test_bad_aero_model(self):
        with pytest.raises(ValueError, match="AerodynamicModel"):
            VehicleParams(aero=object())
