"""
Error Taxonomy and Validation Utilities

This module defines the error types shared by the tree, proposal and chain
modules, and the validation functions that run before a chain starts.

Error types:
    ProposalFailed: Returned (never raised) by an operator that found no valid
        move. The chain counts it as a rejection and carries on.
    InvalidTreeState: A tree invariant was broken. Always fatal.
    ConfigurationError: Bad construction-time input (dimensions, masses,
        option values). The chain must not start.
    EvaluationError: The score of a state could not be trusted (non-finite
        starting score, or a full re-evaluation disagreeing with the chain).

Functions:
    is_failure: True if a proposal result is a ProposalFailed
    validate_mcmc_options: Check an MCMCOptions instance
    validate_mass: Check a diagonal mass vector against a dimension
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional, Sequence

import numpy as np

logger = logging.getLogger('phymcmc')


@dataclass(frozen=True)
class ProposalFailed:
    """
    Result returned by an operator when no valid move exists from the current state.

    Failing to find a move is routine (e.g. a wide exchange drawing an
    incompatible pair), so it travels as a value instead of an exception.

    Fields:
        reason: Short human-readable description
        operator: Name of the operator that failed (filled in by the operator)
    """
    reason: str
    operator: str = ''

    def __str__(self):
        if self.operator:
            return f"{self.operator}: {self.reason}"
        return self.reason


class InvalidTreeState(RuntimeError):
    """A tree no longer satisfies its structural or height invariants."""


class ConfigurationError(ValueError):
    """Invalid operator, schedule or chain configuration."""


class EvaluationError(RuntimeError):
    """The potential returned a score the chain cannot work with."""


def is_failure(result: Any) -> bool:
    """Return True if ``result`` is a ProposalFailed value."""
    return isinstance(result, ProposalFailed)


def validate_mass(mass: Optional[Sequence[float]], dimension: int) -> np.ndarray:
    """
    Validate a diagonal mass vector and return it as a float array.

    Args:
        mass: Per-coordinate masses, or None for unit masses
        dimension: Dimension of the position vector

    Returns:
        Array of shape (dimension,)

    Raises:
        ConfigurationError: If the length is wrong or any mass is not > 0
    """
    if mass is None:
        return np.ones(dimension)

    mass = np.asarray(mass, dtype=float)
    errors = []
    if mass.ndim != 1 or mass.shape[0] != dimension:
        errors.append(f"mass has length {mass.size}, expected {dimension}")
    elif not np.all(np.isfinite(mass)) or not np.all(mass > 0):
        errors.append("all masses must be finite and > 0")

    if errors:
        raise ConfigurationError("Invalid mass vector:\n  " + "\n  ".join(errors))
    return mass


def validate_mcmc_options(options) -> None:
    """
    Validates that MCMC options are sensible.

    Args:
        options: MCMCOptions instance

    Raises:
        ConfigurationError: If any option is invalid
    """
    errors = []

    if options.chain_length < 0:
        errors.append(f"chain_length must be >= 0, got {options.chain_length}")

    if options.full_evaluation_count < 0:
        errors.append(f"full_evaluation_count must be >= 0, got {options.full_evaluation_count}")

    if options.min_operator_count_for_full_evaluation < 0:
        errors.append("min_operator_count_for_full_evaluation must be >= 0")

    if not options.evaluation_test_threshold > 0:
        errors.append(f"evaluation_test_threshold must be > 0, got {options.evaluation_test_threshold}")

    if options.coercion_delay > options.chain_length:
        errors.append(
            f"coercion_delay ({options.coercion_delay}) cannot exceed "
            f"chain_length ({options.chain_length})"
        )

    temperature = options.temperature
    if not np.isfinite(temperature) or temperature < 0:
        errors.append(f"temperature must be finite and >= 0, got {temperature}")

    if options.store_every < 0:
        errors.append(f"store_every must be >= 0, got {options.store_every}")

    warnings = []
    if options.full_evaluation_count > options.chain_length > 0:
        warnings.append(
            f"full_evaluation_count ({options.full_evaluation_count}) exceeds chain_length "
            f"({options.chain_length}); every state will be re-evaluated in full"
        )
    if not options.coercion and options.coercion_delay > 0:
        warnings.append("coercion_delay has no effect while coercion is off")
    for warning in warnings:
        logger.warning(f"MCMC options: {warning}")

    if errors:
        raise ConfigurationError("Invalid MCMC options:\n  " + "\n  ".join(errors))
