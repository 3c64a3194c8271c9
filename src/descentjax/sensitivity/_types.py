"""Inputs and outputs of the segment linearization routines."""

from __future__ import annotations

from typing import NamedTuple

from jax import Array


class TrajectoryPoint(NamedTuple):
    """One anchor of a reference trajectory.

    Attributes:
        state: Vehicle state at the anchor, shape ``(14,)``.
        control: Control at the anchor, shape ``(5,)``.
    """

    state: Array
    control: Array


class LinearizationResult(NamedTuple):
    """Nominal end state of a segment and its sensitivity.

    Attributes:
        state: Propagated state at the end of the segment, shape ``(14,)``.
        jacobian: Derivative of ``state`` with respect to the augmented
            input ``[x0, uk, up, sigma]``, shape ``(14, 25)``.
    """

    state: Array
    jacobian: Array
