"""
descentjax is a six-degree-of-freedom powered-descent dynamics and linearization library implemented in JAX.
"""

from .config import set_dtype, get_dtype, default_adaptive_tolerance

from .constants import (
    N_STATE,
    N_CONTROL,
    N_AUGMENTED,
    MASS_IDX,
    POS_IDX,
    VEL_IDX,
    QUAT_IDX,
    OMEGA_IDX,
    THRUST_IDX,
    LATERAL_IDX,
    DEFAULT_RK4_SUBSTEPS,
)

from .kinematics import (
    direction_cosine_matrix,
    quaternion_rate_operator,
    quaternion_derivative,
)

from .aerodynamics import (
    AerodynamicModel,
    AeroCoefficients,
    ZeroAerodynamics,
    ConstantCoefficientAerodynamics,
    aero_coefficients,
    effective_cos_aoa,
)

from .params import VehicleParams

from .utils import normalize_state

from .dynamics import (
    state_derivative,
    make_state_derivative,
    interpolate_control,
    lateral_control_basis,
    velocity_alignment_constraint,
    pack_augmented_input,
    unpack_augmented_input,
    create_segment_dynamics,
    create_variational_dynamics,
)

from .integrators import (
    AdaptiveConfig,
    IntegrationError,
    SolverStatus,
    propagate_segment_rk4,
)

from .compiled import CompiledDynamics, compile_dynamics

from .sensitivity import (
    TrajectoryPoint,
    LinearizationResult,
    NumericKind,
    IntegratorCache,
    JacobianCache,
    Linearizer,
    initialize_linearizer,
    linearize_dynamics,
    linearize_dynamics_rk4,
    linearize_phases,
    predict_state,
)
