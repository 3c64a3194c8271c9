import jax.numpy as jnp
import pytest

from descentjax.config import set_dtype


@pytest.fixture(autouse=True)
def _ensure_float64():
    """Set float64 precision before every test.

    The linearization engines integrate with tolerances near machine
    precision. With pytest-xdist (`pytest -n auto`), each worker process
    starts with the default float32, so this fixture makes every test run
    in double precision unless it overrides the dtype explicitly (e.g.
    test_config.py sets float32).
    """
    set_dtype(jnp.float64)
