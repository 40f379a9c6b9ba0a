"""
Nearest-neighbour interchange with parent height resampling.

Like the narrow exchange, but the parent's height is first redrawn uniformly
between max(uncle, sibling) and the grandparent, which always makes the swap
legal. The reverse move draws from [max(i, sibling), grandparent], so

    log HR = log((h_gp - min_forward) / (h_gp - min_backward))
"""

from collections import namedtuple
from typing import Union

import numpy as np

from ..error_handling import ProposalFailed
from ..settings import NNIConfig
from .common import AcceptanceLevels, TreeOperator, free_node_window, get_other_child


NNIMove = namedtuple('NNIMove', ['node', 'parent', 'grandparent', 'uncle', 'sibling'])


class NNI(TreeOperator):
    """
    Nearest-neighbour interchange.

    Args:
        tree: TreeState to operate on
        config: NNIConfig
    """
    acceptance_levels = AcceptanceLevels(minimum=0.025, maximum=0.5,
                                         minimum_good=0.05, maximum_good=0.4)

    def __init__(self, tree, config: NNIConfig = None):
        config = config or NNIConfig()
        super().__init__(tree, config.weight)
        self.name = f"NNI({tree.name})"

    def propose(self, rng: np.random.Generator) -> Union[float, ProposalFailed]:
        tree = self.tree
        if tree.get_external_node_count() < 3:
            return self.fail("NNI needs at least 3 tips")

        i = self.random_node_below_root_child(rng)
        i_parent = tree.get_parent(i)
        i_grandparent = tree.get_parent(i_parent)
        i_uncle = get_other_child(tree, i_grandparent, i_parent)
        i_sibling = get_other_child(tree, i_parent, i)

        height_grandparent = tree.get_node_height(i_grandparent)
        height_sibling = tree.get_node_height(i_sibling)
        min_height_forward = max(tree.get_node_height(i_uncle), height_sibling)
        min_height_backward, _ = free_node_window(tree, i)
        forward_width = height_grandparent - min_height_forward
        backward_width = height_grandparent - min_height_backward
        if forward_width <= 0 or backward_width <= 0:
            return self.fail("zero-width height window")

        # open interval: the endpoints would put the parent on a neighbour's height
        u = 0.0
        while u == 0.0:
            u = rng.random()
        new_height = min_height_forward + u * forward_width
        log_hastings = float(np.log(forward_width / backward_width))

        with tree.edit():
            tree.set_node_height(i_parent, new_height)
            tree.remove_child(i_parent, i)
            tree.remove_child(i_grandparent, i_uncle)
            tree.add_child(i_grandparent, i)
            tree.add_child(i_parent, i_uncle)
            tree.push_tree_changed_event(i_grandparent)

        self.check_tip_count()
        self.last_move = NNIMove(i, i_parent, i_grandparent, i_uncle, i_sibling)
        return log_hastings
