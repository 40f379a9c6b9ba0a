"""
Subtree exchange operators.

NARROW: pick a node i (not the root, not a child of the root) and swap it with
its uncle, provided the uncle is younger than i's parent. Symmetric.

WIDE: pick two distinct non-root nodes i, j and swap them if neither parent is
the other node, the parents differ, and each node is younger than the other's
parent. One attempt per call. Symmetric.

INTERMEDIATE: like WIDE, but j is drawn with probability proportional to
1 / (d(i, j) + 1), d being the number of edges between the nodes. Up to 100
attempts. Hastings ratio log(backward / forward) where each direction sums the
winning chances of the pair as seen from either end.
"""

from typing import List, Union

import numpy as np

from ..error_handling import ProposalFailed
from ..settings import ExchangeConfig, ExchangeMode
from .common import TreeOperator, exchange_nodes, get_other_child


INTERMEDIATE_MAX_TRIES = 100


class ExchangeOperator(TreeOperator):
    """
    Narrow, wide or intermediate subtree exchange.

    Args:
        tree: TreeState to operate on
        config: ExchangeConfig (mode and weight)
    """

    def __init__(self, tree, config: ExchangeConfig = None):
        config = config or ExchangeConfig()
        super().__init__(tree, config.weight)
        self.mode = config.mode
        self.name = f"{str(self.mode).lower()}Exchange({tree.name})"

    def propose(self, rng: np.random.Generator) -> Union[float, ProposalFailed]:
        if self.mode == ExchangeMode.NARROW:
            result = self.narrow(rng)
        elif self.mode == ExchangeMode.WIDE:
            result = self.wide(rng)
        else:
            result = self.intermediate(rng)
        if not isinstance(result, ProposalFailed):
            self.check_tip_count()
        return result

    def narrow(self, rng: np.random.Generator) -> Union[float, ProposalFailed]:
        tree = self.tree
        if tree.get_external_node_count() < 3:
            return self.fail("narrow exchange needs at least 3 tips")

        i = self.random_node_below_root_child(rng)
        i_parent = tree.get_parent(i)
        i_grandparent = tree.get_parent(i_parent)
        i_uncle = get_other_child(tree, i_grandparent, i_parent)

        if tree.get_node_height(i_uncle) >= tree.get_node_height(i_parent):
            return self.fail("uncle is not younger than parent")

        exchange_nodes(tree, i, i_uncle, i_parent, i_grandparent)
        self.last_move = (i, i_uncle)
        return 0.0

    def _random_non_root(self, rng):
        root = self.tree.get_root()
        node = root
        while node is root:
            node = self.random_node(rng)
        return node

    def _is_valid_pair(self, i, j) -> bool:
        tree = self.tree
        i_parent = tree.get_parent(i)
        j_parent = tree.get_parent(j)
        return (i_parent is not j_parent
                and i is not j_parent
                and j is not i_parent
                and tree.get_node_height(j) < tree.get_node_height(i_parent)
                and tree.get_node_height(i) < tree.get_node_height(j_parent))

    def wide(self, rng: np.random.Generator) -> Union[float, ProposalFailed]:
        tree = self.tree
        if tree.get_external_node_count() < 3:
            return self.fail("wide exchange needs at least 3 tips")

        root = tree.get_root()
        i = self._random_non_root(rng)
        j = i
        while j is i or j is root:
            j = self.random_node(rng)

        if not self._is_valid_pair(i, j):
            return self.fail("no valid wide exchange for the drawn pair")

        exchange_nodes(tree, i, j, tree.get_parent(i), tree.get_parent(j))
        self.last_move = (i, j)
        return 0.0

    def intermediate(self, rng: np.random.Generator) -> Union[float, ProposalFailed]:
        tree = self.tree
        root = tree.get_root()
        nodes = tree.get_nodes()

        for _ in range(INTERMEDIATE_MAX_TRIES):
            while True:
                i = self._random_non_root(rng)
                weights = self.winning_chances(nodes, i)
                j = nodes[int(rng.choice(len(nodes), p=weights))]
                if j is not i and j is not root:
                    break

            forward = weights[j.number] + self.winning_chances(nodes, j)[i.number]

            if self._is_valid_pair(i, j):
                exchange_nodes(tree, i, j, tree.get_parent(i), tree.get_parent(j))
                backward = (self.winning_chances(nodes, i)[j.number]
                            + self.winning_chances(nodes, j)[i.number])
                self.last_move = (i, j)
                return float(np.log(backward / forward))

        return self.fail(f"no valid intermediate exchange in {INTERMEDIATE_MAX_TRIES} tries")

    def winning_chances(self, nodes: List, source) -> np.ndarray:
        """Probability of drawing each node from ``source``: 1/(distance+1), normalized."""
        inverse = np.array([1.0 / (self.node_distance(source, node) + 1) for node in nodes])
        return inverse / inverse.sum()

    def node_distance(self, i, j) -> int:
        """Edges between i and j, found by repeatedly stepping the younger node to its parent."""
        tree = self.tree
        count = 0
        while i is not j:
            count += 1
            if (tree.get_node_height(i) < tree.get_node_height(j)
                    or tree.get_parent(j) is None):
                i = tree.get_parent(i)
            else:
                j = tree.get_parent(j)
        return count
