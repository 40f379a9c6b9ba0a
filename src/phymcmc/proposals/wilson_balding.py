"""
Wilson-Balding subtree prune and regraft.

A non-root node i is detached together with its parent iP, iP's other child
takes iP's place, and iP is re-inserted on a random edge (k, j) that lies
above i, at a height drawn uniformly in [max(h(i), h(j)), h(k)]. Moves that
would touch the root fail. The Hastings ratio compares the new insertion
interval with the interval iP could have been drawn from originally:

    log HR = log(newRange / |oldRange|)
"""

from collections import namedtuple
from typing import Union

import numpy as np

from ..error_handling import ProposalFailed
from ..settings import WilsonBaldingConfig
from .common import AcceptanceLevels, TreeOperator, get_other_child


WilsonBaldingMove = namedtuple(
    'WilsonBaldingMove',
    ['node', 'parent', 'sibling', 'grandparent', 'target', 'target_parent'],
)


class WilsonBalding(TreeOperator):
    """
    Wilson-Balding random subtree prune and regraft.

    Args:
        tree: TreeState to operate on
        config: WilsonBaldingConfig
    """
    acceptance_levels = AcceptanceLevels(minimum=0.01, maximum=0.5,
                                         minimum_good=0.1, maximum_good=0.4)

    def __init__(self, tree, config: WilsonBaldingConfig = None):
        config = config or WilsonBaldingConfig()
        super().__init__(tree, config.weight)
        self.name = f"WilsonBalding({tree.name})"

    def propose(self, rng: np.random.Generator) -> Union[float, ProposalFailed]:
        tree = self.tree
        root = tree.get_root()

        i = root
        while i is root:
            i = self.random_node(rng)
        i_parent = tree.get_parent(i)
        height_i = tree.get_node_height(i)

        # the target edge (k, j) must lie above i
        j = self.random_node(rng)
        k = tree.get_parent(j)
        while (k is not None and tree.get_node_height(k) <= height_i) or j is i:
            j = self.random_node(rng)
            k = tree.get_parent(j)

        if j is root or i_parent is root:
            return self.fail("root changes not allowed")
        if k is i_parent or j is i_parent or k is i:
            return self.fail("target edge is adjacent to the moved subtree")

        sibling = get_other_child(tree, i_parent, i)
        grandparent = tree.get_parent(i_parent)

        new_min_age = max(height_i, tree.get_node_height(j))
        new_range = tree.get_node_height(k) - new_min_age
        new_age = new_min_age + rng.random() * new_range
        old_min_age = max(height_i, tree.get_node_height(sibling))
        old_range = tree.get_node_height(grandparent) - old_min_age
        if new_range <= 0 or old_range == 0:
            return self.fail("zero-width height window")
        log_hastings = float(np.log(new_range / abs(old_range)))

        with tree.edit():
            tree.remove_child(k, j)
            tree.remove_child(i_parent, sibling)
            tree.remove_child(grandparent, i_parent)

            tree.add_child(i_parent, j)
            tree.add_child(k, i_parent)
            tree.add_child(grandparent, sibling)

            tree.set_node_height(i_parent, new_age)

        self.check_tip_count()
        self.last_move = WilsonBaldingMove(i, i_parent, sibling, grandparent, j, k)
        return log_hastings
