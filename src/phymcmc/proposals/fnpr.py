"""
Fixed-node-height prune and regraft (FNPR).

Each attempt draws a node i (not the root, not a child of the root) and a
candidate edge (parent(c), c). The attempt is valid when c is younger than
i's parent, c's parent is older, and c is neither i's parent nor one of its
children. The move detaches i's parent (with i below it), joins i's sibling
to the grandparent, and splices i's parent into the candidate edge. Heights
never change, so the move is symmetric.
"""

from typing import Union

import numpy as np

from ..error_handling import ProposalFailed
from ..settings import FNPRConfig, FNPR_TARGET_ACCEPTANCE
from .common import AcceptanceLevels, TreeOperator, get_other_child


class FNPR(TreeOperator):
    """
    Subtree prune and regraft with fixed node heights.

    Args:
        tree: TreeState to operate on
        config: FNPRConfig (weight, max_tries)
    """
    target_acceptance = FNPR_TARGET_ACCEPTANCE
    acceptance_levels = AcceptanceLevels(minimum=0.005, maximum=0.04,
                                         minimum_good=0.01, maximum_good=0.03)

    def __init__(self, tree, config: FNPRConfig = None):
        config = config or FNPRConfig()
        super().__init__(tree, config.weight)
        self.max_tries = config.max_tries
        self.name = f"FNPR({tree.name})"

    def propose(self, rng: np.random.Generator) -> Union[float, ProposalFailed]:
        tree = self.tree
        if tree.get_external_node_count() < 3:
            return self.fail("FNPR needs at least 3 tips")
        root = tree.get_root()

        for _ in range(self.max_tries):
            i = self.random_node_below_root_child(rng)
            i_father = tree.get_parent(i)
            i_grandfather = tree.get_parent(i_father)
            i_brother = get_other_child(tree, i_father, i)
            height_father = tree.get_node_height(i_father)

            new_child = self.random_node(rng)
            if (new_child is root
                    or tree.get_node_height(new_child) >= height_father
                    or new_child is i_father
                    or tree.get_parent(new_child) is i_father
                    or tree.get_node_height(tree.get_parent(new_child)) <= height_father):
                continue

            new_grandfather = tree.get_parent(new_child)
            with tree.edit():
                tree.remove_child(i_father, i_brother)
                tree.remove_child(i_grandfather, i_father)
                tree.add_child(i_grandfather, i_brother)

                tree.remove_child(new_grandfather, new_child)
                tree.add_child(i_father, new_child)
                tree.add_child(new_grandfather, i_father)
                tree.push_tree_changed_event(i)

            self.check_tip_count()
            self.last_move = (i, new_child)
            return 0.0

        return self.fail(f"no valid reattachment point in {self.max_tries} tries")
