"""
Operator configuration.

This module defines the enumerations and configuration dataclasses that the
surrounding configuration layer fills in and hands to operators. Every field
has a documented default; a zero ``epsilon`` or ``iterations`` means "derive
from the dimension of the position vector" (see DEFAULT_* constants).

To add a new operator setting:
1. Add a field with its default to the relevant config dataclass
2. Validate it in __post_init__ (append to ``errors``)
3. Read it in the operator's constructor
"""

from dataclasses import dataclass
from enum import IntEnum
from typing import Optional, Sequence

from .error_handling import ConfigurationError


# Step size and trajectory length defaults: epsilon = C_eps * d^-0.25,
# steps = round(C_L * d^0.25)
HAMILTON_EPSILON_CONSTANT = 0.0625
HAMILTON_STEPS_CONSTANT = 16
LOOK_AHEAD_EPSILON_CONSTANT = 0.015625
LOOK_AHEAD_STEPS_CONSTANT = 8

DEFAULT_TARGET_ACCEPTANCE = 0.234
HAMILTON_TARGET_ACCEPTANCE = 0.65
FNPR_TARGET_ACCEPTANCE = 0.0234

DEFAULT_MAX_REFLECTIONS = 1000


# ============================================================================
# ENUMERATIONS
# ============================================================================

class ExchangeMode(IntEnum):
    """Which subtree exchange the ExchangeOperator performs."""
    NARROW = 0        # swap a node with its uncle
    WIDE = 1          # swap two arbitrary compatible subtrees
    INTERMEDIATE = 2  # swap with a partner chosen by inverse topological distance

    def __str__(self):
        return self.name.replace('_', ' ').title()


class CoercionMode(IntEnum):
    """How the schedule tunes an operator's coercable parameter."""
    COERCION_OFF = 0  # never tuned
    DEFAULT = 1       # Robbins-Monro toward the target acceptance
    WINDOWED = 2      # double / halve the parameter once per window of outcomes

    def __str__(self):
        return self.name.replace('_', ' ').title()


class OptimizationTransform(IntEnum):
    """Transform applied to an operator's usage count in Robbins-Monro coercion."""
    DEFAULT = 0  # n
    LOG = 1      # log(n)
    SQRT = 2     # sqrt(n)

    def __str__(self):
        return self.name.replace('_', ' ').title()


class MetricApproximation(IntEnum):
    """Curvature used to build the Riemannian metric."""
    NONE = 0                    # full Hessian of the negative log density
    DIAGONAL = 1                # diagonal of the Hessian
    OUTER_PRODUCT = 2           # g g^T of the gradient
    DIAGONAL_OUTER_PRODUCT = 3  # diag(g^2)

    def __str__(self):
        return self.name.replace('_', ' ').title()


def _check_weight(weight, errors):
    if not weight > 0:
        errors.append(f"weight must be > 0, got {weight}")


def _raise_if(errors, title):
    if errors:
        raise ConfigurationError(f"Invalid {title}:\n  " + "\n  ".join(errors))


# ============================================================================
# TREE OPERATOR CONFIGS
# ============================================================================

@dataclass(frozen=True)
class ExchangeConfig:
    """
    Configuration for ExchangeOperator.

    Fields:
        mode: NARROW, WIDE or INTERMEDIATE
        weight: Relative selection weight in the schedule
    """
    mode: ExchangeMode = ExchangeMode.NARROW
    weight: float = 1.0

    def __post_init__(self):
        errors = []
        _check_weight(self.weight, errors)
        if isinstance(self.mode, str):
            try:
                object.__setattr__(self, 'mode', ExchangeMode[self.mode.upper()])
            except KeyError:
                errors.append(f"unknown exchange mode '{self.mode}'")
        elif not isinstance(self.mode, ExchangeMode):
            try:
                object.__setattr__(self, 'mode', ExchangeMode(self.mode))
            except ValueError:
                errors.append(f"unknown exchange mode {self.mode!r}")
        _raise_if(errors, "exchange configuration")


@dataclass(frozen=True)
class FNPRConfig:
    """
    Configuration for the fixed-height prune-and-regraft operator.

    Fields:
        weight: Relative selection weight
        max_tries: Joint (node, attachment) draws before giving up
    """
    weight: float = 1.0
    max_tries: int = 1000

    def __post_init__(self):
        errors = []
        _check_weight(self.weight, errors)
        if self.max_tries < 1:
            errors.append(f"max_tries must be >= 1, got {self.max_tries}")
        _raise_if(errors, "FNPR configuration")


@dataclass(frozen=True)
class NNIConfig:
    """Configuration for the nearest-neighbour interchange operator."""
    weight: float = 1.0

    def __post_init__(self):
        errors = []
        _check_weight(self.weight, errors)
        _raise_if(errors, "NNI configuration")


@dataclass(frozen=True)
class WilsonBaldingConfig:
    """Configuration for the Wilson-Balding operator."""
    weight: float = 1.0

    def __post_init__(self):
        errors = []
        _check_weight(self.weight, errors)
        _raise_if(errors, "Wilson-Balding configuration")


@dataclass(frozen=True)
class TreeUniformConfig:
    """
    Configuration for the synchronized height resampling operator.

    Fields:
        count: Number of node heights resampled together (2 or 3)
        weight: Relative selection weight
    """
    count: int = 2
    weight: float = 1.0

    def __post_init__(self):
        errors = []
        _check_weight(self.weight, errors)
        if self.count not in (2, 3):
            errors.append(f"count must be 2 or 3, got {self.count}")
        _raise_if(errors, "tree-uniform configuration")


# ============================================================================
# HAMILTONIAN OPERATOR CONFIGS
# ============================================================================

def _check_hamiltonian_common(config, errors):
    _check_weight(config.weight, errors)
    if config.epsilon < 0:
        errors.append(f"epsilon must be >= 0 (0 selects the default), got {config.epsilon}")
    if config.iterations < 0:
        errors.append(f"iterations must be >= 0 (0 selects the default), got {config.iterations}")
    if config.max_reflections < 1:
        errors.append(f"max_reflections must be >= 1, got {config.max_reflections}")


@dataclass(frozen=True)
class HamiltonConfig:
    """
    Configuration for the basic leapfrog HamiltonUpdate.

    Fields:
        epsilon: Leapfrog step size (0 = 0.0625 * d^-0.25)
        iterations: Leapfrog steps L (0 = round(16 * d^0.25))
        mass: Diagonal mass vector of length d (None = ones)
        weight: Relative selection weight
        coercion_mode: WINDOWED doubles/halves epsilon every coercion_window outcomes
        coercion_window: Outcomes per tuning window
        target_acceptance: Acceptance rate the step size is tuned toward
        max_reflections: Bound on boundary reflections per coordinate update
    """
    epsilon: float = 0.0
    iterations: int = 0
    mass: Optional[Sequence[float]] = None
    weight: float = 1.0
    coercion_mode: CoercionMode = CoercionMode.WINDOWED
    coercion_window: int = 100
    target_acceptance: float = HAMILTON_TARGET_ACCEPTANCE
    max_reflections: int = DEFAULT_MAX_REFLECTIONS

    def __post_init__(self):
        errors = []
        _check_hamiltonian_common(self, errors)
        if self.coercion_window < 1:
            errors.append(f"coercion_window must be >= 1, got {self.coercion_window}")
        if not 0 < self.target_acceptance < 1:
            errors.append(f"target_acceptance must be in (0, 1), got {self.target_acceptance}")
        _raise_if(errors, "Hamilton configuration")


@dataclass(frozen=True)
class LookAheadConfig:
    """
    Configuration for the look-ahead (early rejection) Hamiltonian update.

    Fields:
        epsilon: Leapfrog step size (0 = 0.015625 * d^-0.25)
        iterations: Leapfrog steps per block M (0 = round(8 * d^0.25))
        alpha: Momentum retained after one unit of simulated time; sets
            beta = alpha^(1 / (epsilon * M))
        attempts: Extra blocks K the trajectory may be extended by
        mass: Diagonal mass vector (None = ones)
        weight: Relative selection weight
        max_reflections: Bound on boundary reflections per coordinate update
    """
    epsilon: float = 0.0
    iterations: int = 0
    alpha: float = 0.25
    attempts: int = 4
    mass: Optional[Sequence[float]] = None
    weight: float = 1.0
    max_reflections: int = DEFAULT_MAX_REFLECTIONS

    def __post_init__(self):
        errors = []
        _check_hamiltonian_common(self, errors)
        if not 0 < self.alpha < 1:
            errors.append(f"alpha must be in (0, 1), got {self.alpha}")
        if self.attempts < 0:
            errors.append(f"attempts must be >= 0, got {self.attempts}")
        _raise_if(errors, "look-ahead configuration")


@dataclass(frozen=True)
class RiemannianConfig:
    """
    Configuration for the Riemannian manifold Hamiltonian update.

    Fields:
        epsilon: Generalized leapfrog step size (0 = 0.0625 * d^-0.25)
        iterations: Generalized leapfrog steps (0 = round(16 * d^0.25))
        alpha: SoftAbs sharpness; eigenvalues map to lambda * coth(alpha * lambda)
        approximation: Curvature approximation used for the metric
        fixed_point_iterations: Maximum iterations of each implicit update
        fixed_point_tolerance: Convergence tolerance of the implicit updates
        weight: Relative selection weight
        coercion_mode: How epsilon is tuned (Robbins-Monro on log epsilon by default)
        target_acceptance: Acceptance rate epsilon is tuned toward
        max_reflections: Bound on boundary reflections per coordinate update
    """
    epsilon: float = 0.0
    iterations: int = 0
    alpha: float = 1.0
    approximation: MetricApproximation = MetricApproximation.NONE
    fixed_point_iterations: int = 6
    fixed_point_tolerance: float = 1e-10
    weight: float = 1.0
    coercion_mode: CoercionMode = CoercionMode.DEFAULT
    target_acceptance: float = HAMILTON_TARGET_ACCEPTANCE
    max_reflections: int = DEFAULT_MAX_REFLECTIONS

    def __post_init__(self):
        errors = []
        _check_hamiltonian_common(self, errors)
        if not self.alpha > 0:
            errors.append(f"alpha must be > 0, got {self.alpha}")
        if self.fixed_point_iterations < 1:
            errors.append(f"fixed_point_iterations must be >= 1, got {self.fixed_point_iterations}")
        if not self.fixed_point_tolerance > 0:
            errors.append(f"fixed_point_tolerance must be > 0, got {self.fixed_point_tolerance}")
        if not 0 < self.target_acceptance < 1:
            errors.append(f"target_acceptance must be in (0, 1), got {self.target_acceptance}")
        if not isinstance(self.approximation, MetricApproximation):
            try:
                object.__setattr__(self, 'approximation', MetricApproximation(self.approximation))
            except ValueError:
                errors.append(f"unknown metric approximation {self.approximation!r}")
        _raise_if(errors, "Riemannian configuration")


def default_epsilon(constant: float, dimension: int) -> float:
    """Step size constant * d^-0.25."""
    return constant * dimension ** -0.25


def default_steps(constant: int, dimension: int) -> int:
    """Trajectory length round(constant * d^0.25), at least 1."""
    return max(1, int(round(constant * dimension ** 0.25)))
