"""
Pytest configuration and shared fixtures for phymcmc tests.
"""

from collections import Counter

import pytest
import numpy as np

# phymcmc first: its jax_config must set the environment before JAX loads
from phymcmc.parameters import Parameter
from phymcmc.potential import JaxPotential
from phymcmc.tree import TreeState

import jax.numpy as jnp


# Five-tip caterpillar used for the topology frequency tests
TREE5_NEWICK = "((((A:1,B:1):1,C:2):1,D:3):1,E:4);"
TREE5_TAXA = ['A', 'B', 'C', 'D', 'E']


@pytest.fixture
def rng_seed():
    """Default RNG seed for reproducible tests."""
    return 42


@pytest.fixture
def rng(rng_seed):
    """Seeded numpy Generator."""
    return np.random.default_rng(rng_seed)


@pytest.fixture
def tree5():
    """((((A,B),C),D),E) with heights 1, 2, 3, 4 from the cherry upward."""
    return TreeState.from_newick(TREE5_NEWICK, name='tree5')


@pytest.fixture
def caterpillar4():
    """(((A,B),C),D) with internal heights 1, 2, 3."""
    return TreeState.caterpillar(['A', 'B', 'C', 'D'], [1.0, 2.0, 3.0], name='cat4')


def make_gaussian_potential(dim, variances=None, start=None, lower=-np.inf, upper=np.inf):
    """
    Independent Gaussian target N(0, diag(variances)) over a fresh Parameter.

    Returns:
        (parameter, potential)
    """
    if variances is None:
        variances = np.ones(dim)
    variances = jnp.asarray(variances, dtype=jnp.float64)
    if start is None:
        start = np.full(dim, 0.5)
    x = Parameter(start, lower=lower, upper=upper, name='x')
    potential = JaxPotential(lambda q: -0.5 * jnp.sum(q ** 2 / variances), x)
    return x, potential


def count_topologies(operator, tree, rng, n):
    """
    Propose ``n`` times from the same starting tree and count the resulting
    topologies. Failed proposals are counted under the key None.
    """
    counts = Counter()
    for _ in range(n):
        tree.store_state()
        result = operator.propose(rng)
        if isinstance(result, float):
            counts[tree.topology_string()] += 1
        else:
            counts[None] += 1
        tree.restore_state()
    return counts


def assert_tree_invariants(tree, taxa):
    """Tree is valid, bifurcating, height ordered and has exactly ``taxa`` as tips."""
    tree.check_tree_is_valid()
    assert sorted(tree.get_taxa()) == sorted(taxa)
    for node in tree.get_nodes():
        if not node.is_external:
            assert len(node.children) == 2
            for child in node.children:
                assert child.height <= node.height


def binomial_bounds(p, n, sd=4.0):
    """Range of counts within ``sd`` standard deviations of Binomial(n, p)."""
    mean = n * p
    spread = sd * np.sqrt(n * p * (1 - p))
    return mean - spread, mean + spread
