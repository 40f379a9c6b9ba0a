"""
Synchronized resampling of two or three adjacent node heights.

count=2: pick a non-root internal node i and redraw the heights of i and its
parent together, uniformly over the region allowed by the rest of the tree.
When the parent is the root only i is redrawn.

count=3: pick a non-root internal node i with two internal children and
redraw i and both children together. Nodes without two internal children
fall back to the two-node or one-node move.

All draws are uniform over the admissible region, so the move is symmetric
and the Hastings ratio is 0.
"""

from typing import Union

import numpy as np

from ..error_handling import ProposalFailed
from ..settings import TreeUniformConfig
from .common import TreeOperator, get_max_child_height, get_other_child


class TreeUniform(TreeOperator):
    """
    Resample 2 or 3 related node heights uniformly.

    Args:
        tree: TreeState to operate on
        config: TreeUniformConfig (count and weight)
    """

    def __init__(self, tree, config: TreeUniformConfig = None):
        config = config or TreeUniformConfig()
        super().__init__(tree, config.weight)
        self.count = config.count
        self.name = f"treeUniform({self.count},{tree.name})"

    def propose(self, rng: np.random.Generator) -> Union[float, ProposalFailed]:
        tree = self.tree
        if tree.get_internal_node_count() < 2:
            return self.fail("no internal node below the root")

        with tree.edit():
            if self.count == 2:
                self._move_two(rng)
            else:
                self._move_three(rng)

        self.check_tip_count()
        return 0.0

    def _random_internal_non_root(self, rng):
        tree = self.tree
        root = tree.get_root()
        internal_count = tree.get_internal_node_count()
        node = root
        while node is root:
            node = tree.get_internal_node(int(rng.integers(internal_count)))
        return node

    def _move_two(self, rng):
        i = self._random_internal_non_root(rng)
        self._resample_node_and_parent(i, rng)

    def _resample_node_and_parent(self, i, rng):
        tree = self.tree
        i_parent = tree.get_parent(i)
        if i_parent is tree.get_root():
            self._resample_node(i, rng)
            return

        height_min = get_max_child_height(tree, i)
        height_max = tree.get_node_height(tree.get_parent(i_parent))
        # lower bound for the parent
        limit = max(height_min, tree.get_node_height(get_other_child(tree, i_parent, i)))

        # areas of the two pieces of the admissible region, common factor dropped
        a0 = limit - height_min
        a1 = (height_max - limit) / 2
        threshold = a0 / (a0 + a1) if a0 + a1 > 0 else 0.0

        if rng.random() < threshold:
            low = rng.uniform(height_min, limit)
            high = rng.uniform(limit, height_max)
        else:
            low, high = sorted(rng.uniform(limit, height_max, size=2))

        tree.set_node_height(i_parent, high)
        tree.set_node_height(i, low)
        self.last_move = (i, i_parent)

    def _resample_node(self, i, rng):
        tree = self.tree
        height_max = tree.get_node_height(tree.get_parent(i))
        height_min = get_max_child_height(tree, i)
        tree.set_node_height(i, rng.uniform(height_min, height_max))
        self.last_move = (i,)

    def _move_three(self, rng):
        tree = self.tree
        i = self._random_internal_non_root(rng)
        child0 = tree.get_child(i, 0)
        child1 = tree.get_child(i, 1)
        external0 = tree.is_external(child0)
        external1 = tree.is_external(child1)

        if external0 or external1:
            if external0 != external1:
                self._resample_node_and_parent(child1 if external0 else child0, rng)
            else:
                self._resample_node(i, rng)
            return

        height_min0 = get_max_child_height(tree, child0)
        height_min1 = get_max_child_height(tree, child1)
        height_max = tree.get_node_height(tree.get_parent(i))

        upper_min = max(height_min0, height_min1)
        lower_min = min(height_min0, height_min1)

        # region volumes with the common factor (hMax - mx)^2 dropped
        a0 = abs(height_min0 - height_min1) / 2
        a1 = (height_max - upper_min) / 3
        threshold = a0 / (a0 + a1) if a0 + a1 > 0 else 0.0

        heights = rng.uniform(upper_min, height_max, size=3)
        younger = 0 if height_min0 < height_min1 else 1

        if rng.random() < threshold:
            # the child with the lower floor lands below the other floor
            heights[1 + younger] = rng.uniform(lower_min, upper_min)
            if heights[0] < heights[2 - younger]:
                heights[0], heights[2 - younger] = heights[2 - younger], heights[0]
        else:
            oldest = int(np.argmax(heights))
            heights[0], heights[oldest] = heights[oldest], heights[0]

        for node, height in zip((i, child0, child1), heights):
            tree.set_node_height(node, float(height))
        self.last_move = (i, child0, child1)
