"""
Operator Registration System

This module provides a registry of operator factories, so a configuration
layer can build operators by name. The built-in operators are registered when
the package is imported.

Example usage:
    from phymcmc import create_operator, register_operator, ExchangeConfig

    narrow = create_operator('exchange', tree, ExchangeConfig(mode='narrow'))

    def my_factory(tree, config=None):
        return MyOperator(tree, config)

    register_operator('my_operator', my_factory)
"""

_REGISTRY = {}


def register_operator(name, factory):
    """
    Register an operator factory.

    Args:
        name: Unique operator identifier string (e.g., 'wilson_balding')
        factory: Callable returning a Proposal; receives the arguments given
            to create_operator()

    Raises:
        ValueError: If the name is already registered or factory is not callable
    """
    if name in _REGISTRY:
        raise ValueError(f"Operator '{name}' is already registered")
    if not callable(factory):
        raise ValueError(f"Factory for operator '{name}' is not callable")
    _REGISTRY[name] = factory


def get_operator_factory(name):
    """
    Get a registered operator factory by name.

    Raises:
        KeyError: If the operator is not registered
    """
    if name not in _REGISTRY:
        available = list(_REGISTRY.keys())
        raise KeyError(f"Unknown operator '{name}'. Available: {available}")
    return _REGISTRY[name]


def create_operator(name, *args, **kwargs):
    """Build an operator: ``get_operator_factory(name)(*args, **kwargs)``."""
    return get_operator_factory(name)(*args, **kwargs)


def list_operators():
    """
    List all registered operator names.

    Returns:
        List of registered operator name strings
    """
    return list(_REGISTRY.keys())


def clear_registry():
    """
    Clear all registered operators. Primarily for testing.
    """
    _REGISTRY.clear()


def register_builtin_operators():
    """Register the operators shipped with phymcmc (skipping names already present)."""
    from .proposals import (
        ExchangeOperator,
        FNPR,
        NNI,
        WilsonBalding,
        TreeUniform,
        HamiltonUpdate,
        LookAheadHamiltonUpdate,
        RiemannianManifoldHamiltonUpdate,
    )

    builtins = {
        'exchange': ExchangeOperator,
        'fnpr': FNPR,
        'nni': NNI,
        'wilson_balding': WilsonBalding,
        'tree_uniform': TreeUniform,
        'hamilton_update': HamiltonUpdate,
        'look_ahead_hamilton_update': LookAheadHamiltonUpdate,
        'riemannian_manifold_hamilton_update': RiemannianManifoldHamiltonUpdate,
    }
    for name, factory in builtins.items():
        if name not in _REGISTRY:
            register_operator(name, factory)
