"""
Leapfrog integration and the basic Hamiltonian update.

Hamiltonian: H(q, p) = U(q) + K(p) with U = -log density. The integrator
works with the gradient of the log density directly:

    p <- p + (eps / 2) * grad log pi(q)
    repeat L times:
        q <- q + eps * dK/dp         (coordinate-wise, reflecting at bounds)
        p <- p + eps * grad log pi(q)   (skipped after the last position step)
    p <- p + (eps / 2) * grad log pi(q)

Bounds are hard walls: a coordinate that leaves [lower, upper] is mirrored
back and its momentum is negated. Coordinates are updated in order using the
bounds in force at that moment, so parameters whose bounds depend on other
coordinates (node heights) stay valid throughout.

Functions:
    move_positions: One reflecting position step over every coordinate
    leapfrog: Integrate a trajectory in place, returning the final momentum

Classes:
    HamiltonUpdate: Fresh Gaussian momentum, L leapfrog steps, windowed step size tuning
"""

from typing import Union

import numpy as np

from ..error_handling import ProposalFailed, is_failure
from ..parameters import as_parameter
from ..settings import (
    HamiltonConfig,
    HAMILTON_EPSILON_CONSTANT,
    HAMILTON_STEPS_CONSTANT,
    default_epsilon,
    default_steps,
)
from .common import AcceptanceLevels, Proposal, reflect
from .kinetic import DiagonalKinetic, KineticEnergy


def _log_density_gradient(x, potential) -> Union[np.ndarray, ProposalFailed]:
    gradient = np.asarray(potential.gradient(x), dtype=float)
    if not np.all(np.isfinite(gradient)):
        return ProposalFailed("non-finite gradient")
    return gradient


def move_positions(x, velocity: np.ndarray, momentum: np.ndarray, epsilon: float,
                   max_reflections: int) -> Union[np.ndarray, ProposalFailed]:
    """
    One position step q_i <- q_i + eps * velocity_i with reflection.

    Returns the momentum with reflected coordinates negated, or ProposalFailed
    when a coordinate needs more than ``max_reflections`` reflections.
    """
    momentum = momentum.copy()
    for i in range(x.get_dimension()):
        lower, upper = x.get_bounds_of(i)
        value, momentum[i], count = reflect(x.get_value(i) + epsilon * velocity[i],
                                            momentum[i], lower, upper, max_reflections)
        if count > max_reflections:
            return ProposalFailed(f"coordinate {i} exceeded {max_reflections} reflections")
        x.set_value(i, value)
    return momentum


def leapfrog(x, potential, momentum: np.ndarray, epsilon: float, steps: int,
             kinetic: KineticEnergy, max_reflections: int) -> Union[np.ndarray, ProposalFailed]:
    """
    Integrate Hamiltonian dynamics for ``steps`` leapfrog steps.

    Args:
        x: Parameter (or compound/tree-height view) holding the position; moved in place
        potential: Potential providing gradient(x) of the log density
        momentum: Initial momentum (not modified)
        epsilon: Step size
        steps: Number of position steps
        kinetic: Kinetic energy giving the velocity dK/dp
        max_reflections: Reflection bound per coordinate update

    Returns:
        Final momentum, or ProposalFailed if a gradient was not finite or a
        coordinate could not be reflected back into its bounds
    """
    p = np.array(momentum, dtype=float)
    half_epsilon = epsilon / 2

    gradient = _log_density_gradient(x, potential)
    if is_failure(gradient):
        return gradient
    p += half_epsilon * gradient

    for step in range(steps):
        p = move_positions(x, kinetic.velocity(p), p, epsilon, max_reflections)
        if is_failure(p):
            return p

        gradient = _log_density_gradient(x, potential)
        if is_failure(gradient):
            return gradient
        if step < steps - 1:
            p += epsilon * gradient

    p += half_epsilon * gradient
    return p


class HamiltonUpdate(Proposal):
    """
    Hamiltonian Monte Carlo update with a diagonal Gaussian momentum.

    The Hastings ratio returned is K(p0) - K(p1); the chain adds the change in
    log density, giving the usual test on -dH. The step size is coercable on
    the log scale and by default tuned in windows: every 100 outcomes it is
    doubled when the window acceptance exceeds 0.65 and halved when below.

    Args:
        x: Parameter, CompoundParameter, NodeHeightParameter, or a list of them
        potential: Potential of the target density
        config: HamiltonConfig
        kinetic: Optional KineticEnergy (default: DiagonalKinetic(config.mass))

    Raises:
        ConfigurationError: mass of the wrong length or with non-positive entries
    """
    acceptance_levels = AcceptanceLevels(minimum=0.3, maximum=1.0,
                                         minimum_good=0.5, maximum_good=0.8)

    def __init__(self, x, potential, config: HamiltonConfig = None,
                 kinetic: KineticEnergy = None):
        config = config or HamiltonConfig()
        super().__init__(config.weight)
        self.x = as_parameter(x)
        self.potential = potential
        self.dimension = self.x.get_dimension()
        self.kinetic = kinetic or DiagonalKinetic(config.mass, self.dimension)
        self.epsilon = config.epsilon or default_epsilon(HAMILTON_EPSILON_CONSTANT, self.dimension)
        self.steps = config.iterations or default_steps(HAMILTON_STEPS_CONSTANT, self.dimension)
        self.max_reflections = config.max_reflections
        self.coercion_mode = config.coercion_mode
        self.coercion_window = config.coercion_window
        self.target_acceptance = config.target_acceptance
        self.name = f"hamiltonUpdate({getattr(self.x, 'name', 'q')})"

        self.distance = 0.0
        self._sum_squared_jump = 0.0
        self._jump_count = 0

    def propose(self, rng: np.random.Generator) -> Union[float, ProposalFailed]:
        start = self.x.get_values()
        p0 = self.kinetic.sample(rng)

        p1 = leapfrog(self.x, self.potential, p0, self.epsilon, self.steps,
                      self.kinetic, self.max_reflections)
        if is_failure(p1):
            return self.fail(p1.reason)

        self.distance = float(np.sqrt(np.sum((self.x.get_values() - start) ** 2)))
        return self.kinetic.energy(p0) - self.kinetic.energy(p1)

    def accept(self) -> None:
        self._sum_squared_jump += self.distance ** 2
        self._jump_count += 1

    def reject(self) -> None:
        self._jump_count += 1

    @property
    def mean_squared_jump_distance(self) -> float:
        """Average squared distance moved per completed proposal (rejections count as 0)."""
        if self._jump_count == 0:
            return 0.0
        return self._sum_squared_jump / self._jump_count

    def get_coercable_parameter(self) -> float:
        return float(np.log(self.epsilon))

    def set_coercable_parameter(self, value: float) -> None:
        self.epsilon = float(np.exp(value))

    def get_raw_parameter(self) -> float:
        return self.epsilon
