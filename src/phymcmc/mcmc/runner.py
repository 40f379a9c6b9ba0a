"""
MCMC Runner - Main Entry Point.

MCMC wires a model, a potential and an operator schedule into a MarkovChain
and runs it in two phases: a coercion-delay phase without operator tuning,
after which the operator statistics are reset, then the main phase.
"""

import logging
import time
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

import numpy as np

from ..error_handling import validate_mcmc_options
from .chain import ChainDelegate, MarkovChain, ModelState
from .config import MCMCOptions
from .criterion import MCMCCriterion
from .schedule import OperatorSchedule

logger = logging.getLogger('phymcmc')


@dataclass
class MCMCResult:
    """
    Outcome of MCMC.run().

    Fields:
        states: Number of states completed
        final_score: Log posterior of the final state
        best_score: Highest log posterior visited
        score_trace: (state, score) pairs recorded every options.store_every states
        elapsed_seconds: Wall time of the run
        stopped: True if the run ended early through please_stop()
    """
    states: int
    final_score: float
    best_score: float
    score_trace: List[Tuple[int, float]] = field(default_factory=list)
    elapsed_seconds: float = 0.0
    stopped: bool = False


class MCMC:
    """
    One MCMC analysis.

    Args:
        model: ModelState of every tree and parameter the operators touch
        potential: Potential whose evaluate() is the log posterior
        schedule: OperatorSchedule
        options: MCMCOptions (validated here)
        criterion: Acceptance criterion (default: MCMCCriterion(options.temperature))
        delegates: ChainDelegate instances notified at setup, every state and finish

    Raises:
        ConfigurationError: invalid options

    Example:
        mcmc = MCMC(ModelState(trees=[tree]), potential, schedule,
                    MCMCOptions(chain_length=10000, rng_seed=1))
        result = mcmc.run()
        print_operator_analysis(schedule)
    """

    def __init__(self, model: ModelState, potential, schedule: OperatorSchedule,
                 options: MCMCOptions, criterion: Optional[MCMCCriterion] = None,
                 delegates: Sequence[ChainDelegate] = ()):
        validate_mcmc_options(options)
        self.options = options
        self.schedule = schedule
        self.rng = np.random.default_rng(options.rng_seed)
        self.chain = MarkovChain(
            model, potential, schedule,
            criterion=criterion or MCMCCriterion(options.temperature),
            rng=self.rng,
            full_evaluation_count=options.full_evaluation_count,
            min_operator_count_for_full_evaluation=options.min_operator_count_for_full_evaluation,
            evaluation_test_threshold=options.evaluation_test_threshold,
            delegates=delegates,
        )

    def please_stop(self) -> None:
        """Ask the running chain to stop before its next state."""
        self.chain.please_stop()

    def run(self) -> MCMCResult:
        options = self.options
        chain = self.chain
        delay = options.resolved_coercion_delay()
        use_coercion = options.coercion

        for delegate in chain.delegates:
            delegate.setup(chain)

        start = time.perf_counter()
        stopped = False

        if use_coercion and delay > 0:
            logger.info(f"Running {delay} states before operator tuning starts")
            chain.run_chain(delay, coercion=False, store_every=options.store_every)
            stopped = chain.is_stopped
            if not stopped:
                self.schedule.reset_stats()
                logger.info(f"Coercion delay of {delay} states finished; operator statistics reset")
            remaining = options.chain_length - delay
        else:
            remaining = options.chain_length

        if not stopped:
            chain.run_chain(remaining, coercion=use_coercion, coercion_delay=delay,
                            store_every=options.store_every)
            stopped = chain.is_stopped

        chain.terminate_chain()
        elapsed = time.perf_counter() - start
        logger.info(f"Chain finished at state {chain.current_length} in {elapsed:.2f}s "
                    f"(score {chain.current_score:.6g}, best {chain.best_score:.6g})")

        return MCMCResult(
            states=chain.current_length,
            final_score=chain.current_score,
            best_score=chain.best_score,
            score_trace=list(chain.score_trace),
            elapsed_seconds=elapsed,
            stopped=stopped,
        )
