"""
Proposal operators for MCMC sampling.

Every operator implements ``propose(rng)`` and returns the natural-log
Hastings ratio of the move it made, or a ProposalFailed value when no valid
move exists. The chain stores the model state before calling propose() and
restores it on rejection, so operators mutate state freely.

Tree operators (rearrange a TreeState inside an edit transaction):
    ExchangeOperator: Narrow, wide and intermediate subtree exchange
    FNPR: Fixed-node-height prune and regraft
    NNI: Nearest-neighbour interchange with parent height resampling
    WilsonBalding: Random subtree prune and regraft
    TreeUniform: Joint uniform resampling of 2 or 3 node heights

Hamiltonian operators (move a bounded continuous parameter):
    HamiltonUpdate: Leapfrog with fresh Gaussian momentum
    LookAheadHamiltonUpdate: Persistent momentum with early rejection
    RiemannianManifoldHamiltonUpdate: SoftAbs metric with generalized leapfrog

To add a new operator:
1. Subclass Proposal (or TreeOperator) in a new file in this package
2. Add a config dataclass to settings.py if it takes options
3. Register a factory in registry.register_builtin_operators()
4. Export it from this __init__.py
"""

from .common import (
    AcceptanceLevels,
    Proposal,
    TreeOperator,
    exchange_nodes,
    free_node_window,
    get_max_child_height,
    get_other_child,
    reflect,
)
from .exchange import ExchangeOperator
from .fnpr import FNPR
from .nni import NNI
from .wilson_balding import WilsonBalding
from .tree_uniform import TreeUniform
from .kinetic import KineticEnergy, DiagonalKinetic, OnlineDiagonalKinetic
from .hamiltonian import HamiltonUpdate, leapfrog, move_positions
from .lookahead import LookAheadHamiltonUpdate
from .riemannian import RiemannianManifoldHamiltonUpdate, SoftAbsMetric, softabs

__all__ = [
    'AcceptanceLevels',
    'Proposal',
    'TreeOperator',
    'exchange_nodes',
    'free_node_window',
    'get_max_child_height',
    'get_other_child',
    'reflect',
    'ExchangeOperator',
    'FNPR',
    'NNI',
    'WilsonBalding',
    'TreeUniform',
    'KineticEnergy',
    'DiagonalKinetic',
    'OnlineDiagonalKinetic',
    'HamiltonUpdate',
    'leapfrog',
    'move_positions',
    'LookAheadHamiltonUpdate',
    'RiemannianManifoldHamiltonUpdate',
    'SoftAbsMetric',
    'softabs',
]
