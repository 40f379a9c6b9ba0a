"""
MCMC Subpackage - The chain driver and its supporting pieces.

- config: MCMCOptions
- criterion: Metropolis-Hastings acceptance test
- schedule: Operator selection, statistics and coercion
- chain: ModelState, ChainDelegate and the MarkovChain driver
- diagnostics: OnlineVariance and the operator analysis table
- runner: MCMC entry point and MCMCResult
"""

from .config import MCMCOptions
from .criterion import MCMCCriterion
from .schedule import OperatorSchedule, OperatorStats
from .chain import ChainDelegate, MarkovChain, ModelState
from .diagnostics import OnlineVariance, format_operator_analysis, print_operator_analysis
from .runner import MCMC, MCMCResult

__all__ = [
    # Config
    'MCMCOptions',
    # Acceptance and scheduling
    'MCMCCriterion',
    'OperatorSchedule',
    'OperatorStats',
    # Chain
    'ChainDelegate',
    'MarkovChain',
    'ModelState',
    # Diagnostics
    'OnlineVariance',
    'format_operator_analysis',
    'print_operator_analysis',
    # Entry point
    'MCMC',
    'MCMCResult',
]
