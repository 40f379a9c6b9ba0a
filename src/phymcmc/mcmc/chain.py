"""
The Markov chain driver.

One chain, strictly sequential: each state stores the model, lets one
operator propose, scores the result and either keeps it or restores the
stored model. Operators that cannot make a move return ProposalFailed, which
counts as a rejection. A broken tree (InvalidTreeState) is a programming
error and stops the run.

For the first ``full_evaluation_count`` states (and until every operator has
been accepted and rejected ``min_operator_count_for_full_evaluation`` times)
every score is compared with a full re-evaluation of the potential after
``make_dirty()``, which catches stale caches in incremental likelihoods.

Classes:
    ModelState: The trees and parameters a chain mutates
    ChainDelegate: Hooks called at setup, every state and the end of a run
    MarkovChain: The driver
"""

import logging
from typing import List, Optional, Sequence, Tuple

import numpy as np

from ..error_handling import EvaluationError, InvalidTreeState, is_failure
from .criterion import MCMCCriterion
from .schedule import OperatorSchedule

logger = logging.getLogger('phymcmc')


class ModelState:
    """
    Everything a proposal may change: trees and (compound) parameters.

    store_state() snapshots all of them before a proposal; restore_state()
    puts them back after a rejection.
    """

    def __init__(self, trees: Sequence = (), parameters: Sequence = ()):
        self.trees = list(trees)
        self.parameters = list(parameters)

    def store_state(self) -> None:
        for tree in self.trees:
            tree.store_state()
        for parameter in self.parameters:
            parameter.store_values()

    def restore_state(self) -> None:
        for tree in self.trees:
            tree.restore_state()
        for parameter in self.parameters:
            parameter.restore_values()


class ChainDelegate:
    """Base class for objects that follow a chain (statistics, tuning)."""

    def setup(self, chain: 'MarkovChain') -> None:
        pass

    def current_state(self, state: int) -> None:
        pass

    def finish(self, length: int) -> None:
        pass


class MarkovChain:
    """
    Metropolis-Hastings driver over a model, a potential and an operator schedule.

    Args:
        model: ModelState holding every tree and parameter the operators touch
        potential: Potential whose evaluate() is the log posterior
        schedule: OperatorSchedule
        criterion: MCMCCriterion (default temperature 1)
        rng: numpy Generator; the only source of randomness
        full_evaluation_count: States checked against full re-evaluation
        min_operator_count_for_full_evaluation: Keep checking until every
            operator has this many accepts and rejects
        evaluation_test_threshold: Tolerated score mismatch
        delegates: ChainDelegate instances notified every state
    """

    def __init__(self, model: ModelState, potential, schedule: OperatorSchedule,
                 criterion: Optional[MCMCCriterion] = None,
                 rng: Optional[np.random.Generator] = None,
                 full_evaluation_count: int = 2000,
                 min_operator_count_for_full_evaluation: int = 1,
                 evaluation_test_threshold: float = 1e-6,
                 delegates: Sequence[ChainDelegate] = ()):
        self.model = model
        self.potential = potential
        self.schedule = schedule
        self.criterion = criterion or MCMCCriterion()
        self.rng = rng if rng is not None else np.random.default_rng()
        self.full_evaluation_count = full_evaluation_count
        self.min_operator_count_for_full_evaluation = min_operator_count_for_full_evaluation
        self.evaluation_test_threshold = evaluation_test_threshold
        self.delegates: List[ChainDelegate] = list(delegates)

        self.current_length = 0
        self.current_score = -np.inf
        self.initial_score = -np.inf
        self.best_score = -np.inf
        self.score_trace: List[Tuple[int, float]] = []
        self.is_stopped = False
        self._please_stop = False
        self._using_full_evaluation = full_evaluation_count > 0

    def add_delegate(self, delegate: ChainDelegate) -> None:
        self.delegates.append(delegate)

    def please_stop(self) -> None:
        """Ask the chain to stop before its next state."""
        self._please_stop = True

    def evaluate(self) -> float:
        """Score of the current model; NaN and +inf become -inf."""
        score = float(self.potential.evaluate())
        if np.isnan(score) or score == np.inf:
            return -np.inf
        return score

    def _initial_evaluation(self) -> None:
        self.potential.make_dirty()
        score = float(self.potential.evaluate())
        if not np.isfinite(score):
            if score == -np.inf:
                raise EvaluationError("The initial model is invalid: its log density is -inf")
            raise EvaluationError(f"The initial log density returned a numerical error ({score})")
        self.current_score = score
        if self.current_length == 0:
            self.initial_score = score
            self.best_score = score

    def _check_full_evaluation(self, expected: float, state: int, op, context: str) -> None:
        self.potential.make_dirty()
        full = self.evaluate()
        if expected == full:
            return
        if abs(full - expected) > self.evaluation_test_threshold:
            message = (f"State {state}: {context}.\n"
                       f"  Incremental evaluation: {expected}\n"
                       f"  Full evaluation: {full}\n"
                       f"  Operator: {op.name}")
            logger.error(message)
            raise EvaluationError(message)

    def run_chain(self, length: int, coercion: bool = True, coercion_delay: int = 0,
                  store_every: int = 0) -> int:
        """
        Run ``length`` more states.

        Args:
            length: Number of states to run
            coercion: Tune operators after the delay
            coercion_delay: Absolute state number from which tuning starts
            store_every: Append (state, score) to score_trace every this many states

        Returns:
            The chain length reached (less than requested when stopped)

        Raises:
            EvaluationError: initial score not finite, or an incremental score
                disagrees with a full re-evaluation
            InvalidTreeState: an operator left a tree invalid
        """
        self._initial_evaluation()
        self._please_stop = False
        self.is_stopped = False

        schedule = self.schedule
        state = self.current_length
        end = self.current_length + length
        logger.info(f"Chain starting at state {state} for {length} states "
                    f"(score {self.current_score:.6g})")

        while state < end:
            if self._please_stop:
                self.is_stopped = True
                logger.info(f"Chain stopped on request at state {state}")
                break

            for delegate in self.delegates:
                delegate.current_state(state)
            if store_every and state % store_every == 0:
                self.score_trace.append((state, self.current_score))

            index = schedule.next_operator_index(self.rng)
            op = schedule.get_operator(index)
            old_score = self.current_score

            self.model.store_state()
            try:
                result = op.propose(self.rng)
            except InvalidTreeState as err:
                raise InvalidTreeState(f"State {state}: operator {op.name} broke a tree: {err}") from err

            log_r = -np.inf
            if is_failure(result):
                logger.debug(f"State {state}: {op.name} failed ({result.reason})")
                self.model.restore_state()
                op.reject()
                schedule.record_failure(index)
            else:
                score = self.evaluate()
                if self._using_full_evaluation:
                    self._check_full_evaluation(score, state, op,
                                                "score was not correctly calculated after an operator move")
                if score > self.best_score:
                    self.best_score = score

                log_r = self.criterion.log_acceptance(old_score, score, result)
                accepted = self.criterion.accept(old_score, score, result, self.rng)
                if accepted:
                    op.accept()
                    self.current_score = score
                    schedule.record_outcome(index, True, score - old_score, op.changed_topology)
                else:
                    self.model.restore_state()
                    op.reject()
                    schedule.record_outcome(index, False)
                    if self._using_full_evaluation:
                        self._check_full_evaluation(old_score, state, op,
                                                    "state was not correctly restored after a rejection")

            if coercion and state >= coercion_delay:
                schedule.coerce(index, log_r)

            if (self._using_full_evaluation and state >= self.full_evaluation_count
                    and schedule.get_minimum_accept_and_reject_count()
                    >= self.min_operator_count_for_full_evaluation):
                self._using_full_evaluation = False
                logger.debug(f"State {state}: full evaluation checks finished")

            state += 1

        self.current_length = state
        return state

    def terminate_chain(self) -> None:
        """Notify delegates that the run is over."""
        for delegate in self.delegates:
            delegate.finish(self.current_length)
