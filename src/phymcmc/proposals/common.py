"""
Common pieces shared by all proposal operators.

Every operator implements ``propose(rng)`` and returns either the natural-log
Hastings ratio of the move it made, or a ProposalFailed value when no valid
move exists. Operators never accept or reject themselves; the chain does.

Classes:
    AcceptanceLevels: Thresholds used to diagnose an operator's acceptance rate
    Proposal: Base class of every operator
    TreeOperator: Base class of the tree rearrangement operators

Functions:
    get_other_child: Sibling of a child under its parent
    get_max_child_height: Height of a node's oldest child
    exchange_nodes: Swap two subtrees between their parents in one edit
    free_node_window: Height window a node's parent may occupy
    reflect: Fold a coordinate back into [lower, upper], flipping momentum
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Tuple, Union

import numpy as np

from ..error_handling import InvalidTreeState, ProposalFailed
from ..settings import CoercionMode, DEFAULT_TARGET_ACCEPTANCE


@dataclass(frozen=True)
class AcceptanceLevels:
    """Acceptance-rate thresholds for the operator analysis table."""
    minimum: float = 0.05
    maximum: float = 0.50
    minimum_good: float = 0.10
    maximum_good: float = 0.40

    def diagnose(self, probability: float) -> str:
        if probability < self.minimum:
            return 'very low'
        if probability < self.minimum_good:
            return 'low'
        if probability > self.maximum:
            return 'very high'
        if probability > self.maximum_good:
            return 'high'
        return 'good'


class Proposal(ABC):
    """
    Base class for MCMC operators.

    Subclasses implement propose(). Coercable operators also set
    ``coercion_mode`` and implement get/set_coercable_parameter; the schedule
    tunes that parameter toward ``target_acceptance``.
    """
    name = 'proposal'
    target_acceptance = DEFAULT_TARGET_ACCEPTANCE
    acceptance_levels = AcceptanceLevels()
    coercion_mode = CoercionMode.COERCION_OFF
    coercion_window = 100

    def __init__(self, weight: float = 1.0):
        self.weight = float(weight)

    def __str__(self):
        return self.name

    @abstractmethod
    def propose(self, rng: np.random.Generator) -> Union[float, ProposalFailed]:
        """Mutate the state and return the log Hastings ratio, or ProposalFailed."""

    def fail(self, reason: str) -> ProposalFailed:
        return ProposalFailed(reason, self.name)

    @property
    def changed_topology(self) -> bool:
        """Whether the last successful proposal changed the tree topology."""
        return False

    def accept(self) -> None:
        """Called by the chain after the proposal was accepted."""

    def reject(self) -> None:
        """Called by the chain after the proposal was rejected (state already restored)."""

    def get_coercable_parameter(self) -> float:
        raise NotImplementedError(f"{self.name} has no coercable parameter")

    def set_coercable_parameter(self, value: float) -> None:
        raise NotImplementedError(f"{self.name} has no coercable parameter")

    def get_raw_parameter(self) -> float:
        """The tuned quantity on its natural scale (e.g. epsilon, not log epsilon)."""
        raise NotImplementedError(f"{self.name} has no coercable parameter")


class TreeOperator(Proposal):
    """
    Base class for operators that rearrange a TreeState.

    The tip count is recorded at construction; a move that changes it raises
    InvalidTreeState, since that can only be a programming error.
    """

    def __init__(self, tree, weight: float = 1.0):
        super().__init__(weight)
        self.tree = tree
        self.tip_count = tree.get_external_node_count()
        self.last_move = None

    @property
    def changed_topology(self) -> bool:
        return self.tree.last_edit_changed_topology

    def check_tip_count(self) -> None:
        count = self.tree.get_external_node_count()
        if count != self.tip_count:
            raise InvalidTreeState(
                f"{self.name} changed the tip count ({self.tip_count} -> {count})"
            )

    def random_node(self, rng: np.random.Generator):
        return self.tree.get_node(int(rng.integers(self.tree.get_node_count())))

    def random_node_below_root_child(self, rng: np.random.Generator):
        """Uniform node that is neither the root nor a child of the root (needs >= 3 tips)."""
        root = self.tree.get_root()
        while True:
            node = self.random_node(rng)
            if node is not root and node.parent is not root:
                return node


def get_other_child(tree, parent, child):
    """Return the child of ``parent`` that is not ``child``."""
    first = tree.get_child(parent, 0)
    if first is child:
        return tree.get_child(parent, 1)
    return first


def get_max_child_height(tree, node) -> float:
    """Height of the oldest child of ``node`` (-1 for a tip)."""
    height = -1.0
    for index in range(tree.get_child_count(node)):
        height = max(height, tree.get_node_height(tree.get_child(node, index)))
    return height


def exchange_nodes(tree, i, j, i_parent, j_parent) -> None:
    """Swap subtree i (under i_parent) with subtree j (under j_parent) in one edit."""
    with tree.edit():
        tree.remove_child(i_parent, i)
        tree.remove_child(j_parent, j)
        tree.add_child(j_parent, i)
        tree.add_child(i_parent, j)


def free_node_window(tree, node) -> Tuple[float, float]:
    """
    Interval the parent of ``node`` could be re-drawn in while keeping its
    place: from the older of ``node`` and its sibling up to the grandparent.
    """
    parent = tree.get_parent(node)
    sibling = get_other_child(tree, parent, node)
    lower = max(tree.get_node_height(node), tree.get_node_height(sibling))
    upper = tree.get_node_height(tree.get_parent(parent))
    return lower, upper


def reflect(value: float, momentum: float, lower: float, upper: float,
            max_reflections: int) -> Tuple[float, float, int]:
    """
    Fold a proposed coordinate back into [lower, upper].

    Each crossing of a bound mirrors the position about that bound and flips
    the sign of the momentum.

    Returns:
        (value, momentum, reflections). When more than ``max_reflections`` are
        needed the loop stops and the returned count exceeds the limit; the
        value is then meaningless and the caller must fail the proposal.
    """
    reflections = 0
    while value < lower or value > upper:
        if reflections >= max_reflections or not np.isfinite(value):
            return value, momentum, max_reflections + 1
        if value < lower:
            value = 2 * lower - value
        else:
            value = 2 * upper - value
        momentum = -momentum
        reflections += 1
    return value, momentum, reflections
