"""
Look-ahead Hamiltonian update with persistent momentum and early rejection.

The momentum v persists between calls and is only partially refreshed:

    v <- v * sqrt(1 - beta) + noise * sqrt(beta),   beta = alpha^(1 / (eps * M))

Each call draws one threshold r = log(U) and extends the trajectory one block
of M leapfrog steps at a time, up to K + 1 blocks, tracking the running bound

    logPi[k + 1] = max(logPi[k], min(0, H_k - H_0)),   H = log pi(x) - K(v)

As soon as logPi reaches r the current prefix is accepted; if all blocks run
without reaching it the move is rejected, the momentum restored and flipped.
The decision is made here, so the returned Hastings ratio is +inf (accept) or
-inf (reject).
"""

from typing import Union

import numpy as np

from ..error_handling import ProposalFailed, is_failure
from ..parameters import as_parameter
from ..settings import (
    LookAheadConfig,
    LOOK_AHEAD_EPSILON_CONSTANT,
    LOOK_AHEAD_STEPS_CONSTANT,
    default_epsilon,
    default_steps,
)
from .common import AcceptanceLevels, Proposal
from .hamiltonian import leapfrog
from .kinetic import DiagonalKinetic, KineticEnergy


class LookAheadHamiltonUpdate(Proposal):
    """
    Early-rejection Hamiltonian update.

    Args:
        x: Parameter, CompoundParameter, NodeHeightParameter, or a list of them
        potential: Potential of the target density
        config: LookAheadConfig
        kinetic: Optional KineticEnergy (default: DiagonalKinetic(config.mass))

    Raises:
        ConfigurationError: mass of the wrong length or with non-positive entries
    """
    acceptance_levels = AcceptanceLevels(minimum=0.3, maximum=1.0,
                                         minimum_good=0.5, maximum_good=0.8)

    def __init__(self, x, potential, config: LookAheadConfig = None,
                 kinetic: KineticEnergy = None):
        config = config or LookAheadConfig()
        super().__init__(config.weight)
        self.x = as_parameter(x)
        self.potential = potential
        self.dimension = self.x.get_dimension()
        self.kinetic = kinetic or DiagonalKinetic(config.mass, self.dimension)
        self.epsilon = config.epsilon or default_epsilon(LOOK_AHEAD_EPSILON_CONSTANT, self.dimension)
        self.steps = config.iterations or default_steps(LOOK_AHEAD_STEPS_CONSTANT, self.dimension)
        self.attempts = config.attempts
        self.beta = config.alpha ** (1.0 / (self.epsilon * self.steps))
        self.max_reflections = config.max_reflections
        self.name = f"lookAheadHamiltonUpdate({getattr(self.x, 'name', 'x')})"

        self.v = np.zeros(self.dimension)
        self.log_pi = np.full(self.attempts + 2, -np.inf)
        self.blocks_simulated = 0
        self._refreshed = False

    def refresh(self, rng: np.random.Generator) -> None:
        """Partial momentum refresh R()."""
        noise = self.kinetic.sample(rng)
        self.v = self.v * np.sqrt(1 - self.beta) + noise * np.sqrt(self.beta)
        self._refreshed = True

    def flip(self) -> None:
        """Momentum negation F()."""
        self.v = -self.v

    def hamiltonian(self) -> float:
        return self.potential.evaluate() - self.kinetic.energy(self.v)

    def propose(self, rng: np.random.Generator) -> Union[float, ProposalFailed]:
        if not self._refreshed:
            self.refresh(rng)

        stored_v = self.v.copy()
        h0 = self.hamiltonian()
        r = np.log(rng.random())

        log_pi = self.log_pi
        log_pi[0] = -np.inf
        k = 0
        while log_pi[k] < r and k <= self.attempts:
            v = leapfrog(self.x, self.potential, self.v, self.epsilon, self.steps,
                         self.kinetic, self.max_reflections)
            if is_failure(v):
                self.blocks_simulated = k + 1
                self.v = stored_v
                self.flip()
                self.refresh(rng)
                return self.fail(v.reason)
            self.v = v
            delta = self.hamiltonian() - h0
            if np.isnan(delta):
                delta = -np.inf
            log_pi[k + 1] = max(log_pi[k], min(0.0, delta))
            k += 1
        self.blocks_simulated = k

        if r <= log_pi[k]:
            accepted = np.inf
        else:
            accepted = -np.inf
            self.v = stored_v
            self.flip()

        self.refresh(rng)
        return accepted
