"""
Operator Schedule and Criterion Tests

Tests operator selection, statistics, coercion and the acceptance test:
- Weighted and sequential selection
- Outcome and failure bookkeeping
- Robbins-Monro and windowed coercion
- Metropolis-Hastings log acceptance with temperature

Run with: pytest tests/test_schedule.py -v
"""

from collections import Counter

import numpy as np
import pytest

from phymcmc.error_handling import ConfigurationError
from phymcmc.mcmc.criterion import MCMCCriterion
from phymcmc.mcmc.schedule import OperatorSchedule, OperatorStats
from phymcmc.proposals.common import Proposal
from phymcmc.settings import CoercionMode, OptimizationTransform


class _TunableOperator(Proposal):
    """Operator with a log-scale coercable parameter and no move."""

    def __init__(self, name='tunable', weight=1.0, mode=CoercionMode.DEFAULT,
                 target=0.234, window=100, value=0.0):
        super().__init__(weight)
        self.name = name
        self.coercion_mode = mode
        self.target_acceptance = target
        self.coercion_window = window
        self.value = value

    def propose(self, rng):
        return 0.0

    def get_coercable_parameter(self):
        return self.value

    def set_coercable_parameter(self, value):
        self.value = value


class _FixedOperator(Proposal):
    """Operator without a coercable parameter."""

    def __init__(self, name='fixed', weight=1.0):
        super().__init__(weight)
        self.name = name

    def propose(self, rng):
        return 0.0


# ============================================================================
# SELECTION
# ============================================================================

class TestSelection:
    """Test how the next operator is picked."""

    def test_weighted_frequencies(self, rng):
        schedule = OperatorSchedule([_FixedOperator('a', 1.0), _FixedOperator('b', 3.0)])
        n = 8000
        counts = Counter(schedule.next_operator_index(rng) for _ in range(n))
        assert counts[1] / n == pytest.approx(0.75, abs=0.03)

    def test_weight_override(self, rng):
        schedule = OperatorSchedule()
        schedule.add_operator(_FixedOperator('a'), weight=4.0)
        assert schedule.get_weight(0) == 4.0
        assert schedule.total_weight == 4.0

    def test_sequential_order(self, rng):
        """Sequential mode cycles through operators, each repeated by its weight."""
        schedule = OperatorSchedule([_FixedOperator('a', 1.0), _FixedOperator('b', 2.0)],
                                    mode='sequential')
        order = [schedule.next_operator_index(rng) for _ in range(6)]
        assert order == [0, 1, 1, 0, 1, 1]

    def test_empty_schedule(self, rng):
        with pytest.raises(ConfigurationError, match="empty"):
            OperatorSchedule().next_operator_index(rng)

    def test_invalid_mode(self):
        with pytest.raises(ConfigurationError, match="mode"):
            OperatorSchedule(mode='random')

    def test_non_positive_weight(self):
        with pytest.raises(ConfigurationError, match="weight"):
            OperatorSchedule().add_operator(_FixedOperator('a'), weight=0.0)


# ============================================================================
# STATISTICS
# ============================================================================

class TestStatistics:
    """Test per-operator outcome bookkeeping."""

    def test_outcomes(self):
        schedule = OperatorSchedule([_FixedOperator()])
        schedule.record_outcome(0, True, deviation=0.5, transitioned=True)
        schedule.record_outcome(0, True, deviation=-0.25)
        schedule.record_outcome(0, False)
        stats = schedule.stats(0)
        assert (stats.accepted, stats.rejected, stats.transitions) == (2, 1, 1)
        assert stats.sum_deviation == pytest.approx(0.25)
        assert stats.acceptance_probability == pytest.approx(2 / 3)

    def test_failure_counts_as_rejection(self):
        schedule = OperatorSchedule([_FixedOperator()])
        schedule.record_failure(0)
        stats = schedule.stats(0)
        assert (stats.accepted, stats.rejected, stats.failed) == (0, 1, 1)

    def test_reset(self):
        schedule = OperatorSchedule([_FixedOperator()])
        schedule.record_outcome(0, True)
        schedule.record_failure(0)
        schedule.reset_stats()
        assert schedule.stats(0) == OperatorStats()

    def test_unused_operator_probability(self):
        assert OperatorStats().acceptance_probability == 0.0

    def test_minimum_accept_and_reject_count(self):
        schedule = OperatorSchedule([_FixedOperator()])
        assert schedule.get_minimum_accept_and_reject_count() == 0
        for accepted in (True, True, False, False):
            schedule.record_outcome(0, accepted)
        assert schedule.get_minimum_accept_and_reject_count() == 4


# ============================================================================
# COERCION
# ============================================================================

class TestCoercion:
    """Test operator tuning."""

    def test_robbins_monro_direction(self):
        """Acceptance above target raises the parameter, below target lowers it."""
        op = _TunableOperator()
        schedule = OperatorSchedule([op])
        schedule.record_outcome(0, True)
        schedule.coerce(0, 0.0)
        assert op.value == pytest.approx(0.5 * (1 - 0.234))

        op.value = 0.0
        schedule.record_outcome(0, False)
        schedule.coerce(0, -np.inf)
        assert op.value == pytest.approx(-0.234 / 3)

    def test_robbins_monro_converges_to_target(self, rng):
        """Feeding outcomes whose acceptance falls with the parameter settles near the target."""
        op = _TunableOperator(target=0.3, value=0.5)
        schedule = OperatorSchedule([op])
        for _ in range(5000):
            probability = 1.0 / (1.0 + np.exp(op.value))
            accepted = rng.random() < probability
            schedule.record_outcome(0, accepted)
            schedule.coerce(0, np.log(probability))
        assert 1.0 / (1.0 + np.exp(op.value)) == pytest.approx(0.3, abs=0.05)

    def test_count_transform(self):
        assert OperatorSchedule(transform=OptimizationTransform.LOG).optimization_count(100) == pytest.approx(np.log(100))
        assert OperatorSchedule(transform=OptimizationTransform.SQRT).optimization_count(100) == pytest.approx(10.0)
        assert OperatorSchedule().optimization_count(100) == 100.0

    def test_windowed_doubling(self):
        """1000 outcomes at 90% acceptance double the step size ten times."""
        op = _TunableOperator(mode=CoercionMode.WINDOWED, target=0.65, window=100,
                              value=np.log(0.01))
        schedule = OperatorSchedule([op])
        for k in range(1000):
            schedule.record_outcome(0, k % 10 != 0)
            schedule.coerce(0, 0.0)
        assert np.exp(op.value) == pytest.approx(0.01 * 2 ** 10)
        assert schedule.stats(0).window_count == 0

    def test_windowed_halving(self):
        """1000 outcomes at 30% acceptance halve the step size ten times."""
        op = _TunableOperator(mode=CoercionMode.WINDOWED, target=0.65, window=100,
                              value=np.log(1.0))
        schedule = OperatorSchedule([op])
        for k in range(1000):
            schedule.record_outcome(0, k % 10 < 3)
            schedule.coerce(0, -1.0)
        assert np.exp(op.value) == pytest.approx(2.0 ** -10)

    def test_windowed_waits_for_full_window(self):
        op = _TunableOperator(mode=CoercionMode.WINDOWED, target=0.65, window=100)
        schedule = OperatorSchedule([op])
        for _ in range(99):
            schedule.record_outcome(0, True)
            schedule.coerce(0, 0.0)
        assert op.value == 0.0
        assert schedule.stats(0).window_count == 99

    def test_coercion_off(self):
        """Operators without coercion are never asked for a parameter."""
        schedule = OperatorSchedule([_FixedOperator()])
        schedule.record_outcome(0, True)
        schedule.coerce(0, 0.0)


# ============================================================================
# CRITERION
# ============================================================================

class TestCriterion:
    """Test the Metropolis-Hastings log acceptance."""

    def test_log_acceptance(self):
        criterion = MCMCCriterion()
        assert criterion.log_acceptance(0.0, -1.0, 0.5) == pytest.approx(-0.5)
        assert criterion.log_acceptance(0.0, 1.0, 0.5) == 0.0
        assert criterion.log_acceptance(0.0, -np.inf, np.inf) == -np.inf
        assert criterion.log_acceptance(0.0, np.nan, 0.0) == -np.inf

    def test_temperature(self):
        criterion = MCMCCriterion(temperature=0.5)
        assert criterion.log_acceptance(0.0, -2.0, 0.0) == pytest.approx(-1.0)
        assert MCMCCriterion(temperature=0.0).log_acceptance(0.0, -100.0, 0.0) == 0.0

    def test_invalid_temperature(self):
        with pytest.raises(ConfigurationError, match="temperature"):
            MCMCCriterion(temperature=-1.0)
        with pytest.raises(ConfigurationError, match="temperature"):
            MCMCCriterion(temperature=np.inf)

    def test_accept_frequency(self, rng):
        """A move with log acceptance log(0.25) is taken about a quarter of the time."""
        criterion = MCMCCriterion()
        n = 8000
        accepted = sum(criterion.accept(0.0, np.log(0.25), 0.0, rng) for _ in range(n))
        assert accepted / n == pytest.approx(0.25, abs=0.02)

    def test_uphill_always_accepted(self, rng):
        criterion = MCMCCriterion()
        assert all(criterion.accept(0.0, 1.0, 0.0, rng) for _ in range(100))
