"""
Tree Operator Tests

Tests the tree rearrangement operators:
- Tip set, bifurcation and height order preserved by every move
- Exact topology frequencies of narrow exchange, wide exchange and FNPR
- Hastings ratios of NNI and Wilson-Balding re-derived from the move made
- Failure results for trees too small to move or with zero-length branches
- Operator acceptance verdicts

Run with: pytest tests/test_tree_operators.py -v
"""

import numpy as np
import pytest

from phymcmc.error_handling import ProposalFailed
from phymcmc.mcmc.chain import MarkovChain, ModelState
from phymcmc.mcmc.schedule import OperatorSchedule
from phymcmc.potential import FunctionPotential
from phymcmc.proposals import FNPR, NNI, ExchangeOperator, TreeUniform, WilsonBalding
from phymcmc.settings import ExchangeConfig, ExchangeMode, TreeUniformConfig
from phymcmc.tree import TreeState

from .conftest import (
    TREE5_TAXA,
    assert_tree_invariants,
    binomial_bounds,
    count_topologies,
)


BALANCED8 = "(((A:1,B:1):1,(C:1,D:1):1):1,((E:1,F:1):1,(G:1,H:1):1):1);"
BALANCED8_TAXA = ['A', 'B', 'C', 'D', 'E', 'F', 'G', 'H']


def _all_operators(tree):
    return [
        ExchangeOperator(tree, ExchangeConfig(mode='narrow')),
        ExchangeOperator(tree, ExchangeConfig(mode='wide')),
        ExchangeOperator(tree, ExchangeConfig(mode='intermediate')),
        FNPR(tree),
        NNI(tree),
        WilsonBalding(tree),
        TreeUniform(tree, TreeUniformConfig(count=2)),
        TreeUniform(tree, TreeUniformConfig(count=3)),
    ]


# ============================================================================
# STRUCTURAL INVARIANTS
# ============================================================================

class TestStructuralInvariants:
    """Every operator keeps the tree a valid bifurcating tree over the same tips."""

    @pytest.mark.parametrize('index', range(8))
    def test_random_walk_keeps_tree_valid(self, index, rng):
        """Accept every successful move for a few hundred steps."""
        tree = TreeState.from_newick(BALANCED8)
        op = _all_operators(tree)[index]
        successes = 0
        for _ in range(300):
            result = op.propose(rng)
            if not isinstance(result, ProposalFailed):
                successes += 1
                assert np.isfinite(result)
            assert_tree_invariants(tree, BALANCED8_TAXA)
        assert successes > 0

    def test_narrow_exchange_long_run_on_caterpillar(self, caterpillar4, rng):
        """Ten thousand narrow exchanges: every move is symmetric and leaves a valid tree."""
        op = ExchangeOperator(caterpillar4, ExchangeConfig(mode=ExchangeMode.NARROW))
        moves = 0
        for _ in range(10000):
            result = op.propose(rng)
            if not isinstance(result, ProposalFailed):
                assert result == 0.0
                moves += 1
            assert_tree_invariants(caterpillar4, ['A', 'B', 'C', 'D'])
        assert moves > 0

    def test_symmetric_moves_return_zero(self, tree5, rng):
        """Exchange, FNPR and tree-uniform moves are symmetric."""
        ops = [
            ExchangeOperator(tree5, ExchangeConfig(mode='narrow')),
            ExchangeOperator(tree5, ExchangeConfig(mode='wide')),
            FNPR(tree5),
            TreeUniform(tree5, TreeUniformConfig(count=2)),
        ]
        for op in ops:
            for _ in range(50):
                tree5.store_state()
                result = op.propose(rng)
                if not isinstance(result, ProposalFailed):
                    assert result == 0.0
                tree5.restore_state()

    def test_fnpr_marks_topology_change(self, tree5, rng):
        """A successful FNPR move always restructures the tree."""
        op = FNPR(tree5)
        result = op.propose(rng)
        assert result == 0.0
        assert op.changed_topology

    def test_tree_uniform_keeps_topology_and_root(self, rng):
        """Height resampling moves only non-root internal heights."""
        tree = TreeState.from_newick(BALANCED8)
        topology = tree.topology_string()
        root_height = tree.get_node_height(tree.get_root())
        for count in (2, 3):
            op = TreeUniform(tree, TreeUniformConfig(count=count))
            for _ in range(500):
                assert op.propose(rng) == 0.0
                assert not op.changed_topology
            assert tree.topology_string() == topology
            assert tree.get_node_height(tree.get_root()) == root_height
            assert all(tree.get_node_height(tree.get_node(i)) == 0.0 for i in range(8))
        assert_tree_invariants(tree, BALANCED8_TAXA)

    def test_operator_names(self, tree5):
        """Names identify the operator and the tree."""
        names = [op.name for op in _all_operators(tree5)]
        assert names == [
            'narrowExchange(tree5)',
            'wideExchange(tree5)',
            'intermediateExchange(tree5)',
            'FNPR(tree5)',
            'NNI(tree5)',
            'WilsonBalding(tree5)',
            'treeUniform(2,tree5)',
            'treeUniform(3,tree5)',
        ]


# ============================================================================
# TOPOLOGY FREQUENCIES
# ============================================================================

class TestTopologyFrequencies:
    """Exact proposal frequencies on ((((A:1,B:1):1,C:2):1,D:3):1,E:4)."""

    def test_narrow_exchange(self, tree5, rng):
        """Swapping B with its uncle C is one of six equally likely moves."""
        n = 6000
        counts = count_topologies(ExchangeOperator(tree5, ExchangeConfig(mode='narrow')), tree5, rng, n)
        low, high = binomial_bounds(1 / 6, n)
        assert low <= counts["((((A,C),B),D),E)"] <= high
        assert counts[None] == 0

    def test_wide_exchange(self, tree5, rng):
        """Swapping (A,B) with D is 2 of the 56 ordered pairs."""
        n = 28000
        counts = count_topologies(ExchangeOperator(tree5, ExchangeConfig(mode='wide')), tree5, rng, n)
        low, high = binomial_bounds(1 / 28, n)
        assert low <= counts["(((A,B),(C,D)),E)"] <= high
        assert counts[None] > 0

    def test_fnpr(self, tree5, rng):
        """Regrafting B onto E's edge is one of twelve valid moves."""
        n = 12000
        counts = count_topologies(FNPR(tree5), tree5, rng, n)
        low, high = binomial_bounds(1 / 12, n)
        assert low <= counts["(((A,C),D),(B,E))"] <= high
        assert counts[None] == 0
        assert len(counts) == 12

    def test_intermediate_exchange_ratio(self, tree5, rng):
        """log HR = log(backward / forward), each summing the pair's winning chances from both ends."""
        op = ExchangeOperator(tree5, ExchangeConfig(mode='intermediate'))
        nodes = tree5.get_nodes()
        ratios = []
        for _ in range(300):
            tree5.store_state()
            result = op.propose(rng)
            if isinstance(result, ProposalFailed):
                tree5.restore_state()
                continue
            i, j = op.last_move
            assert tree5.topology_string() != "((((A,B),C),D),E)"
            backward = op.winning_chances(nodes, i)[j.number] + op.winning_chances(nodes, j)[i.number]
            tree5.restore_state()
            forward = op.winning_chances(nodes, i)[j.number] + op.winning_chances(nodes, j)[i.number]
            assert result == pytest.approx(np.log(backward / forward))
            ratios.append(result)
        assert ratios
        assert any(abs(r) > 1e-9 for r in ratios)

    def test_winning_chances(self, tree5):
        """Chances fall with distance and sum to one."""
        op = ExchangeOperator(tree5, ExchangeConfig(mode='intermediate'))
        nodes = tree5.get_nodes()
        a, b, e = tree5.get_node(0), tree5.get_node(1), tree5.get_node(4)
        assert op.node_distance(a, b) == 2
        assert op.node_distance(a, e) == 5
        assert op.node_distance(a, a) == 0
        chances = op.winning_chances(nodes, a)
        assert chances.sum() == pytest.approx(1.0)
        assert chances[b.number] / chances[e.number] == pytest.approx(6 / 3)


# ============================================================================
# HASTINGS RATIOS
# ============================================================================

class TestHastingsRatios:
    """Hastings ratios recomputed from the move the operator reports."""

    def test_nni_ratio_and_reverse(self, rng):
        """log HR = log((gp - max(uncle, sib)) / (gp - max(i, sib))); the reverse move negates it."""
        tree = TreeState.from_newick(BALANCED8)
        op = NNI(tree)
        for _ in range(200):
            before = {node.number: node.height for node in tree.get_nodes()}
            tree.store_state()
            log_hr = op.propose(rng)
            move = op.last_move

            h_gp = before[move.grandparent.number]
            forward_min = max(before[move.uncle.number], before[move.sibling.number])
            backward_min = max(before[move.node.number], before[move.sibling.number])
            assert log_hr == pytest.approx(np.log((h_gp - forward_min) / (h_gp - backward_min)))

            # after the move the uncle sits under the parent and the node under the grandparent
            assert move.uncle.parent is move.parent
            assert move.node.parent is move.grandparent
            new_height = tree.get_node_height(move.parent)
            assert forward_min < new_height < h_gp

            # the reverse move picks the old uncle: its uncle is the old node
            reverse_forward = max(tree.get_node_height(move.node), tree.get_node_height(move.sibling))
            reverse_backward = max(tree.get_node_height(move.uncle), tree.get_node_height(move.sibling))
            reverse = np.log((h_gp - reverse_forward) / (h_gp - reverse_backward))
            assert log_hr + reverse == pytest.approx(0.0)
            tree.restore_state()

    def test_wilson_balding_ratio_and_reverse(self, rng):
        """log HR = log(new range / old range) over the insertion intervals."""
        tree = TreeState.from_newick(BALANCED8)
        op = WilsonBalding(tree)
        moves = 0
        for _ in range(400):
            before = {node.number: node.height for node in tree.get_nodes()}
            tree.store_state()
            log_hr = op.propose(rng)
            if isinstance(log_hr, ProposalFailed):
                tree.restore_state()
                continue
            moves += 1
            move = op.last_move
            h_i = before[move.node.number]
            new_range = before[move.target_parent.number] - max(h_i, before[move.target.number])
            old_range = before[move.grandparent.number] - max(h_i, before[move.sibling.number])
            assert log_hr == pytest.approx(np.log(new_range / old_range))

            # regrafted onto (target_parent, target); the sibling took the parent's place
            assert move.node.parent is move.parent
            assert move.target.parent is move.parent
            assert move.parent.parent is move.target_parent
            assert move.sibling.parent is move.grandparent
            height = tree.get_node_height(move.parent)
            assert max(h_i, before[move.target.number]) <= height <= before[move.target_parent.number]

            # reverse move swaps the roles of the two intervals
            reverse = np.log(old_range / new_range)
            assert log_hr + reverse == pytest.approx(0.0)
            assert_tree_invariants(tree, BALANCED8_TAXA)
            tree.restore_state()
        assert moves > 0


# ============================================================================
# FAILURES
# ============================================================================

class TestFailures:
    """Operators that cannot move return ProposalFailed and leave the tree alone."""

    @pytest.fixture
    def cherry(self):
        return TreeState.from_newick("(A:1,B:1);", name='cherry')

    @pytest.mark.parametrize('make', [
        lambda t: ExchangeOperator(t, ExchangeConfig(mode='narrow')),
        lambda t: ExchangeOperator(t, ExchangeConfig(mode='wide')),
        lambda t: FNPR(t),
        lambda t: NNI(t),
        lambda t: WilsonBalding(t),
        lambda t: TreeUniform(t),
    ])
    def test_two_tip_tree(self, cherry, rng, make):
        """No operator can rearrange a two-tip tree."""
        op = make(cherry)
        before = cherry.to_newick()
        result = op.propose(rng)
        assert isinstance(result, ProposalFailed)
        assert result.operator == op.name
        assert cherry.to_newick() == before

    def test_wilson_balding_root_change_fails(self, tree5, rng):
        """Moves involving the root fail instead of re-rooting."""
        op = WilsonBalding(tree5)
        reasons = set()
        for _ in range(300):
            tree5.store_state()
            result = op.propose(rng)
            if isinstance(result, ProposalFailed):
                reasons.add(result.reason)
            tree5.restore_state()
        assert "root changes not allowed" in reasons

    @pytest.mark.parametrize('newick, make', [
        ("(((A:0,B:0):0,C:0):1,D:1);", NNI),
        ("((((A:0,B:0):0,C:0):0,D:0):1,E:1);", WilsonBalding),
    ])
    def test_zero_length_branches(self, newick, make, rng):
        """A collapsed height window fails the move instead of dividing by zero."""
        tree = TreeState.from_newick(newick, name='flat')
        taxa = tree.get_taxa()
        op = make(tree)
        reasons = set()
        for _ in range(500):
            tree.store_state()
            result = op.propose(rng)
            if isinstance(result, ProposalFailed):
                reasons.add(result.reason)
            else:
                assert np.isfinite(result)
            assert_tree_invariants(tree, taxa)
            tree.restore_state()
        assert "zero-width height window" in reasons

    def test_zero_length_branches_in_chain(self, rng):
        """A chain over a tree with collapsed branches runs through the failed moves."""
        tree = TreeState.from_newick("(((A:0,B:0):0,C:0):1,D:1);", name='flat')
        schedule = OperatorSchedule([NNI(tree), WilsonBalding(tree)])
        chain = MarkovChain(ModelState(trees=[tree]), FunctionPotential(lambda: 0.0), schedule,
                            rng=rng, full_evaluation_count=0)
        assert chain.run_chain(300, coercion=False) == 300
        failed = sum(schedule.stats(i).failed for i in range(2))
        assert failed > 0
        assert_tree_invariants(tree, ['A', 'B', 'C', 'D'])


# ============================================================================
# ACCEPTANCE LEVELS
# ============================================================================

class TestAcceptanceLevels:
    """Operator-specific verdicts for the analysis table."""

    def test_fnpr_levels(self, tree5):
        levels = FNPR(tree5).acceptance_levels
        assert levels.diagnose(0.001) == 'very low'
        assert levels.diagnose(0.02) == 'good'
        assert levels.diagnose(0.035) == 'high'
        assert levels.diagnose(0.30) == 'very high'
