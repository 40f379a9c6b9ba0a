"""
MCMC Diagnostics.

Run-time statistics for chains:
- OnlineVariance: Welford running variance of a parameter, as a chain delegate
- format_operator_analysis: Operator performance table as a string
- print_operator_analysis: Print the operator performance table
"""

from typing import Callable, List

import numpy as np

from .chain import ChainDelegate


class OnlineVariance(ChainDelegate):
    """
    Running per-coordinate variance of a parameter, updated every state.

    Listeners (for example OnlineDiagonalKinetic) are called after each update.

    Args:
        x: Parameter-like object with get_dimension() and get_value(i)
    """

    def __init__(self, x):
        self.x = x
        self.dimension = x.get_dimension()
        self.name = f"var({getattr(x, 'name', 'x')})"
        self.n = 0
        self.mean = np.zeros(self.dimension)
        self.m2 = np.zeros(self.dimension)
        self.variance = np.zeros(self.dimension)
        self._listeners: List[Callable] = []

    def add_listener(self, listener: Callable) -> None:
        self._listeners.append(listener)

    def get_variance(self) -> np.ndarray:
        return self.variance.copy()

    def update(self) -> None:
        self.n += 1
        values = np.array([self.x.get_value(i) for i in range(self.dimension)])
        delta = values - self.mean
        self.mean += delta / self.n
        self.m2 += delta * (values - self.mean)
        if self.n > 1:
            self.variance = self.m2 / (self.n - 1)
        for listener in self._listeners:
            listener(self)

    def setup(self, chain) -> None:
        self.n = 0
        self.mean[:] = 0.0
        self.m2[:] = 0.0
        self.variance = np.zeros(self.dimension)
        for listener in self._listeners:
            listener(self)

    def current_state(self, state: int) -> None:
        self.update()

    def finish(self, length: int) -> None:
        self.update()


def _tuning_value(op) -> str:
    try:
        return f"{op.get_raw_parameter():.4g}"
    except NotImplementedError:
        return ""


def format_operator_analysis(schedule) -> str:
    """
    Table of operator performance: tuning value, counts, acceptance probability
    and a diagnosis against the operator's acceptance levels.
    """
    rows = []
    for index in range(schedule.get_operator_count()):
        op = schedule.get_operator(index)
        stats = schedule.stats(index)
        probability = stats.acceptance_probability
        diagnosis = op.acceptance_levels.diagnose(probability) if stats.count else ''
        rows.append((op.name, _tuning_value(op), str(stats.accepted), str(stats.rejected),
                     str(stats.failed), str(stats.transitions), f"{probability:.4f}", diagnosis))

    header = ('Operator', 'Tuning', 'Accepted', 'Rejected', 'Failed', 'Transitions',
              'Pr(accept)', 'Diagnosis')
    widths = [max(len(header[col]), *(len(row[col]) for row in rows)) if rows else len(header[col])
              for col in range(len(header))]

    def line(cells):
        return '  '.join(cell.ljust(width) for cell, width in zip(cells, widths)).rstrip()

    lines = [line(header), line(['-' * width for width in widths])]
    lines.extend(line(row) for row in rows)
    return '\n'.join(lines)


def print_operator_analysis(schedule) -> None:
    """Print the operator performance table."""
    print(f"\n--- Operator Analysis ({schedule.get_operator_count()} operators) ---")
    print(format_operator_analysis(schedule))
    poor = [schedule.get_operator(i).name for i in range(schedule.get_operator_count())
            if schedule.stats(i).count
            and schedule.get_operator(i).acceptance_levels.diagnose(
                schedule.stats(i).acceptance_probability) in ('very low', 'very high')]
    if poor:
        print(f"  WARNING: {len(poor)} operator(s) have very low or very high acceptance")
        print(f"    Operators: {', '.join(poor)}")
