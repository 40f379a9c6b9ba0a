"""
Metropolis-Hastings acceptance criterion.

    log a = min(0, (new - old) * temperature + log HR)

A temperature below 1 flattens the target (heated chains); 0 accepts every
finite move whose Hastings ratio allows it.
"""

import numpy as np

from ..error_handling import ConfigurationError


class MCMCCriterion:
    """
    Acceptance test on log scores.

    Args:
        temperature: Multiplier on the score difference, finite and >= 0
    """

    def __init__(self, temperature: float = 1.0):
        if not np.isfinite(temperature) or temperature < 0:
            raise ConfigurationError(f"temperature must be finite and >= 0, got {temperature}")
        self.temperature = float(temperature)

    def log_acceptance(self, old_score: float, new_score: float, log_hastings: float) -> float:
        """Log acceptance probability; NaN anywhere gives -inf."""
        if new_score == -np.inf:
            return -np.inf
        with np.errstate(invalid='ignore'):
            value = (new_score - old_score) * self.temperature + log_hastings
        if np.isnan(value):
            return -np.inf
        return min(0.0, float(value))

    def accept(self, old_score: float, new_score: float, log_hastings: float,
               rng: np.random.Generator) -> bool:
        log_a = self.log_acceptance(old_score, new_score, log_hastings)
        if log_a == 0.0:
            return True
        return bool(np.log(rng.random()) < log_a)
