"""
Kinetic energies for the Hamiltonian operators.

Momentum p is Gaussian with a diagonal covariance (the mass):

    p ~ N(0, diag(m)),   K(p) = sum(p_i^2 / (2 m_i)),   dq/dt = p / m

Classes:
    KineticEnergy: Interface used by leapfrog()
    DiagonalKinetic: Fixed diagonal mass
    OnlineDiagonalKinetic: Mass set to a running variance estimate
"""

from abc import ABC, abstractmethod
from typing import Optional, Sequence

import numpy as np

from ..error_handling import validate_mass


# Variances at or below this are treated as unknown
VARIANCE_FLOOR = 1e-10
FLOORED_VARIANCE = 1e-9


class KineticEnergy(ABC):
    """Gaussian momentum distribution with energy, velocity and sampling."""

    @abstractmethod
    def energy(self, p: np.ndarray) -> float:
        """K(p), the negative log density of p up to a constant."""

    @abstractmethod
    def velocity(self, p: np.ndarray) -> np.ndarray:
        """dK/dp, the rate of change of the position."""

    @abstractmethod
    def sample(self, rng: np.random.Generator) -> np.ndarray:
        """Fresh momentum draw."""

    @abstractmethod
    def scale(self) -> np.ndarray:
        """Per-coordinate standard deviation of the momentum (sqrt of the mass)."""


class DiagonalKinetic(KineticEnergy):
    """
    Fixed diagonal mass.

    Args:
        mass: Length-d vector of positive masses, or None for ones
        dimension: Required when mass is None

    Raises:
        ConfigurationError: wrong length or non-positive entries
    """

    def __init__(self, mass: Optional[Sequence[float]] = None, dimension: Optional[int] = None):
        if dimension is None:
            dimension = len(mass)
        self.mass = validate_mass(mass, dimension)

    def energy(self, p):
        return float(0.5 * np.sum(p * p / self.mass))

    def velocity(self, p):
        return p / self.mass

    def sample(self, rng):
        return rng.standard_normal(len(self.mass)) * self.scale()

    def scale(self):
        return np.sqrt(self.mass)


class OnlineDiagonalKinetic(DiagonalKinetic):
    """
    Diagonal mass tracking a running posterior variance estimate.

    The momentum covariance is the running variance itself. Variances at or
    below 1e-10 (too few samples yet) are floored to 1e-9. The mass is recomputed lazily after ``variance`` changes.

    Args:
        variance: Object with ``get_variance() -> ndarray`` and
            ``add_listener(callback)`` (an OnlineVariance delegate)
    """

    def __init__(self, variance):
        self.variance = variance
        self._dirty = True
        self.mass = None
        variance.add_listener(self._variance_changed)

    def _variance_changed(self, *args):
        self._dirty = True

    def _update(self):
        if self._dirty:
            var = np.array(self.variance.get_variance(), dtype=float)
            var[var <= VARIANCE_FLOOR] = FLOORED_VARIANCE
            self.mass = var
            self._dirty = False

    def energy(self, p):
        self._update()
        return super().energy(p)

    def velocity(self, p):
        self._update()
        return super().velocity(p)

    def sample(self, rng):
        self._update()
        return super().sample(rng)

    def scale(self):
        self._update()
        return super().scale()
