"""
Tree State Tests

Tests the TreeState model the tree operators work on:
- Newick parsing, numbering and heights
- Edit transactions (commit, rollback, invalid edits)
- Store/restore snapshots and change notifications
- The NodeHeightParameter view

Run with: pytest tests/test_tree.py -v
"""

import numpy as np
import pytest

from phymcmc.error_handling import InvalidTreeState
from phymcmc.tree import NodeHeightParameter, TreeChangeKind, TreeState

from .conftest import TREE5_NEWICK, TREE5_TAXA, assert_tree_invariants


# ============================================================================
# CONSTRUCTION
# ============================================================================

class TestConstruction:
    """Test building trees from Newick strings and ladders."""

    def test_newick_numbering_and_heights(self, tree5):
        """Tips are numbered in order of appearance, internals post-order with the root last."""
        assert [tree5.get_node(i).taxon for i in range(5)] == TREE5_TAXA
        assert tree5.get_root() is tree5.get_node(8)
        heights = [tree5.get_node_height(tree5.get_node(i)) for i in range(9)]
        assert heights == [0.0, 0.0, 0.0, 0.0, 0.0, 1.0, 2.0, 3.0, 4.0]
        assert tree5.get_external_node_count() == 5
        assert tree5.get_internal_node_count() == 4

    def test_topology_string_is_canonical(self, tree5):
        """Child order does not change the canonical topology."""
        swapped = TreeState.from_newick("(E:4,(D:3,(C:2,(B:1,A:1):1):1):1);")
        assert tree5.topology_string() == "((((A,B),C),D),E)"
        assert swapped.topology_string() == tree5.topology_string()

    def test_newick_round_trip(self, tree5):
        """Writing and re-reading a tree keeps topology and heights."""
        again = TreeState.from_newick(tree5.to_newick())
        assert again.topology_string() == tree5.topology_string()
        assert sorted(n.height for n in again.get_nodes()) == sorted(n.height for n in tree5.get_nodes())

    def test_caterpillar(self, caterpillar4):
        """Ladder tree has the requested shape and heights."""
        assert caterpillar4.topology_string() == "(((A,B),C),D)"
        assert caterpillar4.get_node_height(caterpillar4.get_root()) == 3.0
        assert_tree_invariants(caterpillar4, ['A', 'B', 'C', 'D'])

    def test_caterpillar_wrong_height_count(self):
        """n taxa need n - 1 internal heights."""
        with pytest.raises(ValueError, match="internal heights"):
            TreeState.caterpillar(['A', 'B', 'C'], [1.0])

    def test_multifurcation_rejected(self):
        """Only bifurcating trees can be parsed."""
        with pytest.raises(ValueError, match="bifurcating"):
            TreeState.from_newick("(A:1,B:1,C:1);")

    def test_tip_without_label_rejected(self):
        """Every tip needs a taxon."""
        with pytest.raises(ValueError, match="without a label"):
            TreeState.from_newick("(A:1,:1);")

    def test_copy_is_independent(self, tree5):
        """Edits to a copy leave the original alone."""
        twin = tree5.copy(name='twin')
        node = twin.get_node(5)
        twin.set_node_height(node, 1.5)
        assert tree5.get_node_height(tree5.get_node(5)) == 1.0
        assert twin.name == 'twin'


# ============================================================================
# EDIT TRANSACTIONS
# ============================================================================

def _swap_a_and_c(tree):
    a, c = tree.get_node(0), tree.get_node(2)
    ab, abc = tree.get_node(5), tree.get_node(6)
    tree.remove_child(ab, a)
    tree.remove_child(abc, c)
    tree.add_child(ab, c)
    tree.add_child(abc, a)


class TestEditTransactions:
    """Test scoped edits, rollback and validation at commit."""

    def test_commit_applies_change(self, tree5):
        """A clean edit is kept and marks the topology as changed."""
        version = tree5.structure_version
        with tree5.edit():
            _swap_a_and_c(tree5)
        assert tree5.topology_string() == "((((B,C),A),D),E)"
        assert tree5.last_edit_changed_topology
        assert tree5.structure_version == version + 1
        assert not tree5.is_editing

    def test_height_only_edit_keeps_topology_flag_false(self, tree5):
        """Changing heights inside an edit is not a topology change."""
        with tree5.edit():
            tree5.set_node_height(tree5.get_node(5), 1.5)
        assert not tree5.last_edit_changed_topology
        assert tree5.get_node_height(tree5.get_node(5)) == 1.5

    def test_explicit_rollback(self, tree5):
        """rollback() restores the tree exactly and ends the edit."""
        before = tree5.to_newick()
        with tree5.edit() as edit:
            _swap_a_and_c(tree5)
            tree5.set_node_height(tree5.get_node(5), 1.7)
            edit.rollback()
        assert tree5.to_newick() == before
        assert not tree5.is_editing

    def test_exception_rolls_back(self, tree5):
        """An exception inside the edit restores the tree and propagates."""
        before = tree5.to_newick()
        with pytest.raises(RuntimeError, match="boom"):
            with tree5.edit():
                _swap_a_and_c(tree5)
                raise RuntimeError("boom")
        assert tree5.to_newick() == before
        assert not tree5.is_editing

    def test_invalid_edit_rolled_back_at_commit(self, tree5):
        """Leaving a node with one child fails validation and restores the tree."""
        before = tree5.to_newick()
        with pytest.raises(InvalidTreeState):
            with tree5.edit():
                tree5.remove_child(tree5.get_root(), tree5.get_node(4))
        assert tree5.to_newick() == before
        assert_tree_invariants(tree5, TREE5_TAXA)

    def test_height_violation_rolled_back(self, tree5):
        """A child older than its parent fails validation at commit."""
        with pytest.raises(InvalidTreeState, match="older than its parent"):
            with tree5.edit():
                tree5.set_node_height(tree5.get_node(5), 2.5)
        assert tree5.get_node_height(tree5.get_node(5)) == 1.0

    def test_structure_change_outside_edit(self, tree5):
        """remove_child and add_child require an open edit."""
        with pytest.raises(InvalidTreeState, match="outside an edit"):
            tree5.remove_child(tree5.get_node(5), tree5.get_node(0))

    def test_nested_edit_rejected(self, tree5):
        """Only one edit may be open at a time."""
        with tree5.edit():
            with pytest.raises(InvalidTreeState, match="already in progress"):
                tree5.begin_edit()

    def test_add_child_to_tip(self, tree5):
        """Tips cannot receive children."""
        with tree5.edit() as edit:
            tree5.remove_child(tree5.get_node(5), tree5.get_node(0))
            with pytest.raises(InvalidTreeState, match="tip"):
                tree5.add_child(tree5.get_node(1), tree5.get_node(0))
            edit.rollback()

    def test_add_child_with_parent(self, tree5):
        """A node must be detached before it is attached elsewhere."""
        with tree5.edit() as edit:
            with pytest.raises(InvalidTreeState, match="already has parent"):
                tree5.add_child(tree5.get_node(6), tree5.get_node(0))
            edit.rollback()

    def test_third_child_rejected(self, tree5):
        """Internal nodes hold at most two children."""
        with tree5.edit() as edit:
            tree5.remove_child(tree5.get_root(), tree5.get_node(4))
            with pytest.raises(InvalidTreeState, match="two children"):
                tree5.add_child(tree5.get_node(5), tree5.get_node(4))
            edit.rollback()

    def test_invalid_height_outside_edit(self, tree5):
        """Outside an edit, heights must be finite and non-negative."""
        with pytest.raises(InvalidTreeState, match="invalid height"):
            tree5.set_node_height(tree5.get_node(5), -1.0)
        with pytest.raises(InvalidTreeState, match="invalid height"):
            tree5.set_node_height(tree5.get_node(5), np.nan)


# ============================================================================
# SNAPSHOTS AND EVENTS
# ============================================================================

class TestSnapshotsAndEvents:
    """Test store/restore and change notification delivery."""

    def test_store_restore(self, tree5):
        """restore_state() returns to the last stored snapshot."""
        tree5.store_state()
        before = tree5.to_newick()
        with tree5.edit():
            _swap_a_and_c(tree5)
            tree5.set_node_height(tree5.get_node(5), 1.5)
        assert tree5.to_newick() != before
        tree5.restore_state()
        assert tree5.to_newick() == before
        assert_tree_invariants(tree5, TREE5_TAXA)

    def test_store_during_edit(self, tree5):
        """Snapshots cannot be taken or restored mid-edit."""
        with tree5.edit() as edit:
            with pytest.raises(InvalidTreeState):
                tree5.store_state()
            with pytest.raises(InvalidTreeState):
                tree5.restore_state()
            edit.rollback()

    def test_events_delivered_at_commit(self, tree5):
        """Listeners see queued events only after a successful commit."""
        events = []
        tree5.add_listener(events.append)
        with tree5.edit():
            _swap_a_and_c(tree5)
            assert events == []
        assert events
        assert all(event.kind == TreeChangeKind.STRUCTURE for event in events)

    def test_rollback_discards_events(self, tree5):
        """Events queued in a rolled back edit are never delivered."""
        events = []
        tree5.add_listener(events.append)
        with tree5.edit() as edit:
            _swap_a_and_c(tree5)
            edit.rollback()
        assert events == []

    def test_restore_fires_restored_event(self, tree5):
        """restore_state() notifies listeners with a whole-tree event."""
        events = []
        tree5.add_listener(events.append)
        version = tree5.structure_version
        tree5.store_state()
        tree5.restore_state()
        assert events[-1].kind == TreeChangeKind.RESTORED
        assert events[-1].node is None
        assert tree5.structure_version == version + 1

    def test_height_event_outside_edit(self, tree5):
        """Height changes outside an edit are delivered immediately."""
        events = []
        tree5.add_listener(events.append)
        node = tree5.get_node(5)
        tree5.set_node_height(node, 1.5)
        assert events[0].node is node
        assert events[0].kind == TreeChangeKind.HEIGHT


# ============================================================================
# NODE HEIGHT PARAMETER
# ============================================================================

class TestNodeHeightParameter:
    """Test the parameter view over internal node heights."""

    def test_preorder_values(self, tree5):
        """Coordinates run over internal nodes in pre-order, root first."""
        heights = NodeHeightParameter(tree5)
        assert heights.get_dimension() == 4
        np.testing.assert_array_equal(heights.get_values(), [4.0, 3.0, 2.0, 1.0])

    def test_live_bounds(self, tree5):
        """Bounds run from the oldest child to the parent (open above the root)."""
        heights = NodeHeightParameter(tree5)
        assert heights.get_bounds_of(0) == (3.0, np.inf)
        assert heights.get_bounds_of(3) == (0.0, 2.0)
        heights.set_value(2, 2.5)
        assert heights.get_bounds_of(3) == (0.0, 2.5)

    def test_out_of_bounds_rejected(self, tree5):
        """Setting a height outside its live bounds raises."""
        heights = NodeHeightParameter(tree5)
        with pytest.raises(ValueError, match="outside"):
            heights.set_value(3, 2.5)

    def test_set_values_validated_as_one_edit(self, tree5):
        """An inconsistent height vector is rejected and rolled back."""
        heights = NodeHeightParameter(tree5)
        with pytest.raises(InvalidTreeState):
            heights.set_values([4.0, 3.0, 1.0, 1.5])
        np.testing.assert_array_equal(heights.get_values(), [4.0, 3.0, 2.0, 1.0])

    def test_order_follows_topology_changes(self, tree5):
        """After a restructuring edit the pre-order is recomputed."""
        heights = NodeHeightParameter(tree5)
        heights.get_values()
        with tree5.edit():
            _swap_a_and_c(tree5)
        assert heights.get_dimension() == 4
        assert sorted(heights.get_values()) == [1.0, 2.0, 3.0, 4.0]

    def test_store_restore(self, tree5):
        """store_values/restore_values round-trip through the tree."""
        heights = NodeHeightParameter(tree5)
        heights.store_values()
        heights.set_value(3, 0.5)
        heights.restore_values()
        assert heights.get_value(3) == 1.0
