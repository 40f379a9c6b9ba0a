"""
Operator schedule: selection, per-operator statistics and coercion.

Operators are picked with probability proportional to their weight (or in
weighted round-robin order when sequential). After every proposal the chain
records the outcome here and, when tuning is on, calls coerce():

    DEFAULT   Robbins-Monro on the coercable parameter:
              p <- p + (1 / (n + 1)) * (exp(log_r) - target),  n = transform(count)
    WINDOWED  every ``coercion_window`` outcomes the coercable (log-scale)
              parameter moves by +log 2 when the window acceptance exceeds the
              target and by -log 2 when it falls short
"""

from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np

from ..error_handling import ConfigurationError
from ..settings import CoercionMode, OptimizationTransform


@dataclass
class OperatorStats:
    """Running counts for one operator."""
    accepted: int = 0
    rejected: int = 0
    failed: int = 0
    transitions: int = 0
    sum_deviation: float = 0.0
    window_accepted: int = 0
    window_count: int = 0

    @property
    def count(self) -> int:
        return self.accepted + self.rejected

    @property
    def acceptance_probability(self) -> float:
        if self.count == 0:
            return 0.0
        return self.accepted / self.count

    def reset(self) -> None:
        self.accepted = 0
        self.rejected = 0
        self.failed = 0
        self.transitions = 0
        self.sum_deviation = 0.0
        self.window_accepted = 0
        self.window_count = 0


class OperatorSchedule:
    """
    Holds the operators of a chain and their statistics.

    Args:
        operators: Initial operators (their own ``weight`` is used)
        mode: 'weighted' (random, proportional to weight) or 'sequential'
        transform: How the operator count is transformed in Robbins-Monro coercion
    """

    def __init__(self, operators: Sequence = (), mode: str = 'weighted',
                 transform: OptimizationTransform = OptimizationTransform.DEFAULT):
        if mode not in ('weighted', 'sequential'):
            raise ConfigurationError(f"Invalid schedule mode '{mode}': expected 'weighted' or 'sequential'")
        self.mode = mode
        self.transform = OptimizationTransform(transform)
        self._operators: List = []
        self._stats: List[OperatorStats] = []
        self._weights: List[float] = []
        self._current = 0
        for op in operators:
            self.add_operator(op)

    def add_operator(self, op, weight: Optional[float] = None) -> int:
        """Add an operator and return its index."""
        weight = op.weight if weight is None else float(weight)
        if not weight > 0:
            raise ConfigurationError(f"Operator {op.name} must have a weight > 0, got {weight}")
        self._operators.append(op)
        self._weights.append(weight)
        self._stats.append(OperatorStats())
        return len(self._operators) - 1

    def get_operator(self, index: int):
        return self._operators[index]

    def get_operator_count(self) -> int:
        return len(self._operators)

    def get_weight(self, index: int) -> float:
        return self._weights[index]

    @property
    def total_weight(self) -> float:
        return float(sum(self._weights))

    def stats(self, index: int) -> OperatorStats:
        return self._stats[index]

    def reset_stats(self) -> None:
        for stats in self._stats:
            stats.reset()

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    def _weighted_index(self, q: float) -> int:
        index = 0
        weight = self._weights[0]
        while weight <= q and index < len(self._weights) - 1:
            index += 1
            weight += self._weights[index]
        return index

    def next_operator_index(self, rng: np.random.Generator) -> int:
        if not self._operators:
            raise ConfigurationError("Operator schedule is empty")
        if self.mode == 'sequential':
            index = self._weighted_index(self._current)
            self._current += 1
            if self._current >= self.total_weight:
                self._current = 0
            return index
        return self._weighted_index(rng.random() * self.total_weight)

    # ------------------------------------------------------------------
    # Outcomes
    # ------------------------------------------------------------------

    def record_outcome(self, index: int, accepted: bool, deviation: float = 0.0,
                       transitioned: bool = False) -> None:
        stats = self._stats[index]
        if accepted:
            stats.accepted += 1
            stats.window_accepted += 1
            stats.sum_deviation += deviation
            if transitioned:
                stats.transitions += 1
        else:
            stats.rejected += 1
        stats.window_count += 1

    def record_failure(self, index: int) -> None:
        """A ProposalFailed counts as a rejection and as a failure."""
        self.record_outcome(index, False)
        self._stats[index].failed += 1

    def get_minimum_accept_and_reject_count(self) -> int:
        """Smallest total count among operators whose accept or reject count is still below it."""
        minimum = np.iinfo(np.int64).max
        for stats in self._stats:
            if stats.accepted < minimum or stats.rejected < minimum:
                minimum = stats.count
        return int(minimum)

    # ------------------------------------------------------------------
    # Coercion
    # ------------------------------------------------------------------

    def optimization_count(self, count: int) -> float:
        if self.transform == OptimizationTransform.LOG:
            return float(np.log(count))
        if self.transform == OptimizationTransform.SQRT:
            return float(np.sqrt(count))
        return float(count)

    def coerce(self, index: int, log_r: float) -> None:
        """Tune operator ``index`` after an outcome with log acceptance ``log_r``."""
        op = self._operators[index]
        mode = op.coercion_mode
        if mode == CoercionMode.DEFAULT:
            self._robbins_monro(op, self._stats[index], log_r)
        elif mode == CoercionMode.WINDOWED:
            self._windowed(op, self._stats[index])

    def _robbins_monro(self, op, stats: OperatorStats, log_r: float) -> None:
        p = op.get_coercable_parameter()
        n = self.optimization_count(max(stats.count, 1))
        new_p = p + (1.0 / (n + 1.0)) * (np.exp(log_r) - op.target_acceptance)
        if np.isfinite(new_p):
            op.set_coercable_parameter(float(new_p))

    def _windowed(self, op, stats: OperatorStats) -> None:
        if stats.window_count < op.coercion_window:
            return
        rate = stats.window_accepted / stats.window_count
        if rate > op.target_acceptance:
            op.set_coercable_parameter(op.get_coercable_parameter() + np.log(2.0))
        elif rate < op.target_acceptance:
            op.set_coercable_parameter(op.get_coercable_parameter() - np.log(2.0))
        stats.window_accepted = 0
        stats.window_count = 0
