"""
MCMC run configuration.

MCMCOptions collects the chain-level settings; validate_mcmc_options() in
error_handling checks them before a run starts.
"""

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class MCMCOptions:
    """
    Options for one MCMC run.

    Fields:
        chain_length: Number of states to run
        full_evaluation_count: States during which every score is checked
            against a full re-evaluation of the potential
        min_operator_count_for_full_evaluation: An operator's proposals are
            still checked until it has been used this many times
        evaluation_test_threshold: Largest tolerated difference between the
            incremental and the fully re-evaluated score
        coercion: Whether operators are tuned during the run
        coercion_delay: States run without tuning before tuning starts
            (negative: chain_length // 100)
        temperature: Multiplier on the score difference (1 = the posterior)
        store_every: Record the score every this many states (0 = never)
        rng_seed: Seed of the single random generator (None = fresh entropy)
    """
    chain_length: int
    full_evaluation_count: int = 2000
    min_operator_count_for_full_evaluation: int = 1
    evaluation_test_threshold: float = 1e-6
    coercion: bool = True
    coercion_delay: int = 0
    temperature: float = 1.0
    store_every: int = 0
    rng_seed: Optional[int] = None

    def resolved_coercion_delay(self) -> int:
        if self.coercion_delay < 0:
            return self.chain_length // 100
        return self.coercion_delay
