"""
phymcmc - MCMC over phylogenetic trees and bounded continuous parameters

Public API:
    Model State:
        TreeState - Rooted binary tree with edit transactions and store/restore
        Node - Tree node (read-only outside TreeState)
        NodeHeightParameter - Parameter view over a tree's internal node heights
        Parameter - Bounded vector of floats
        CompoundParameter - Concatenation of several parameters
        Bounds - Lower/upper limits of a parameter

    Potentials:
        Potential - Base class (log density, numerical derivatives)
        FunctionPotential - Wraps a zero-argument callable
        JaxPotential - Log density written with jax.numpy, differentiated by JAX
        SumPotential - Sum of potentials

    Operators:
        ExchangeOperator, FNPR, NNI, WilsonBalding, TreeUniform - Tree moves
        HamiltonUpdate, LookAheadHamiltonUpdate,
        RiemannianManifoldHamiltonUpdate - Hamiltonian moves
        DiagonalKinetic, OnlineDiagonalKinetic - Momentum distributions

    Configuration:
        ExchangeConfig, FNPRConfig, NNIConfig, WilsonBaldingConfig,
        TreeUniformConfig, HamiltonConfig, LookAheadConfig, RiemannianConfig
        ExchangeMode, CoercionMode, OptimizationTransform, MetricApproximation
        MCMCOptions - Chain-level options

    Registration:
        register_operator - Register an operator factory
        create_operator - Build a registered operator by name
        list_operators - List registered operator names

    Running:
        MCMC - Validated two-phase run returning MCMCResult
        MarkovChain - The chain driver
        ModelState - Trees and parameters stored/restored around each proposal
        OperatorSchedule - Operator selection, statistics and coercion
        MCMCCriterion - Metropolis-Hastings test with a temperature
        OnlineVariance - Running variance chain delegate
        print_operator_analysis - Operator performance table

    Errors:
        ProposalFailed - Returned (never raised) by operators that cannot move
        InvalidTreeState, ConfigurationError, EvaluationError

Example:
    from phymcmc import (TreeState, ExchangeOperator, ExchangeConfig, FunctionPotential,
                         OperatorSchedule, ModelState, MCMC, MCMCOptions)

    tree = TreeState.from_newick('((A:1,B:1):1,(C:1.5,D:1.5):0.5);')
    schedule = OperatorSchedule([ExchangeOperator(tree, ExchangeConfig(mode='wide'))])
    result = MCMC(ModelState(trees=[tree]), FunctionPotential(lambda: 0.0), schedule,
                  MCMCOptions(chain_length=1000, rng_seed=1)).run()
"""
# CRITICAL: Import jax_config FIRST to set environment variables before JAX loads
from . import jax_config  # noqa: F401

from .error_handling import (
    ProposalFailed,
    InvalidTreeState,
    ConfigurationError,
    EvaluationError,
    is_failure,
    validate_mass,
    validate_mcmc_options,
)
from .settings import (
    ExchangeMode,
    CoercionMode,
    OptimizationTransform,
    MetricApproximation,
    ExchangeConfig,
    FNPRConfig,
    NNIConfig,
    WilsonBaldingConfig,
    TreeUniformConfig,
    HamiltonConfig,
    LookAheadConfig,
    RiemannianConfig,
)
from .parameters import Bounds, Parameter, CompoundParameter, as_parameter
from .tree import Node, TreeState, TreeChangeKind, TreeChangedEvent, NodeHeightParameter
from .potential import Potential, FunctionPotential, JaxPotential, SumPotential
from .proposals import (
    Proposal,
    TreeOperator,
    ExchangeOperator,
    FNPR,
    NNI,
    WilsonBalding,
    TreeUniform,
    KineticEnergy,
    DiagonalKinetic,
    OnlineDiagonalKinetic,
    HamiltonUpdate,
    LookAheadHamiltonUpdate,
    RiemannianManifoldHamiltonUpdate,
    leapfrog,
    reflect,
)
from .registry import (
    register_operator,
    get_operator_factory,
    create_operator,
    list_operators,
    clear_registry,
    register_builtin_operators,
)
from .mcmc import (
    MCMCOptions,
    MCMCCriterion,
    OperatorSchedule,
    OperatorStats,
    ChainDelegate,
    MarkovChain,
    ModelState,
    OnlineVariance,
    format_operator_analysis,
    print_operator_analysis,
    MCMC,
    MCMCResult,
)

register_builtin_operators()
