"""
Potentials: the log density the chain samples from.

The chain only needs ``evaluate()``; gradient-based operators also call
``differentiate(parameter, index)`` (or the vector form ``gradient(x)``) and
the Riemannian operator calls ``curvature(x)``.

Sign convention: every method returns derivatives of the LOG DENSITY.
Hamiltonian operators negate them to get the potential energy U = -log p.

Classes:
    Potential: Base class with central-difference derivatives
    FunctionPotential: Wraps a zero-argument callable
    JaxPotential: Log density of a parameter vector, differentiated by JAX
    SumPotential: Sum of several potentials
"""

from abc import ABC, abstractmethod
from typing import Callable, Sequence

import numpy as np
import jax
import jax.numpy as jnp


# Relative step for central differences
_SQRT_EPS = np.sqrt(np.finfo(float).eps)


class Potential(ABC):
    """
    A scalar log density over the model state.

    Subclasses implement evaluate(); derivatives default to central
    differences of evaluate() with step sqrt(eps) * max(|value|, 1), clipped so
    the probe never leaves the coordinate's bounds.
    """

    @abstractmethod
    def evaluate(self) -> float:
        """Log density of the current state (may be -inf)."""

    def make_dirty(self) -> None:
        """Drop any cached intermediate results before a full re-evaluation."""

    def differentiate(self, parameter, index: int) -> float:
        """Partial derivative of the log density with respect to parameter[index]."""
        value = parameter.get_value(index)
        lower, upper = parameter.get_bounds_of(index)
        step = _SQRT_EPS * max(abs(value), 1.0)
        hi = min(value + step, upper)
        lo = max(value - step, lower)
        if hi <= lo:
            return 0.0
        try:
            parameter.set_value(index, hi)
            f_hi = self.evaluate()
            parameter.set_value(index, lo)
            f_lo = self.evaluate()
        finally:
            parameter.set_value(index, value)
        return (f_hi - f_lo) / (hi - lo)

    def gradient(self, x) -> np.ndarray:
        """Gradient of the log density over every coordinate of x."""
        return np.array([self.differentiate(*x.locate(i)) for i in range(x.get_dimension())])

    def curvature(self, x) -> np.ndarray:
        """Hessian of the log density over x (symmetrized central differences of the gradient)."""
        dim = x.get_dimension()
        hessian = np.zeros((dim, dim))
        for i in range(dim):
            value = x.get_value(i)
            lower, upper = x.get_bounds_of(i)
            step = _SQRT_EPS ** 0.5 * max(abs(value), 1.0)
            hi = min(value + step, upper)
            lo = max(value - step, lower)
            try:
                x.set_value(i, hi)
                g_hi = self.gradient(x)
                x.set_value(i, lo)
                g_lo = self.gradient(x)
            finally:
                x.set_value(i, value)
            hessian[i] = (g_hi - g_lo) / (hi - lo)
        return 0.5 * (hessian + hessian.T)

    def curvature_gradient(self, x) -> np.ndarray:
        """
        Derivatives of the Hessian of the log density: array T with
        T[k] = d(Hessian)/dx_k, shape (d, d, d).
        """
        dim = x.get_dimension()
        tensor = np.zeros((dim, dim, dim))
        for k in range(dim):
            value = x.get_value(k)
            lower, upper = x.get_bounds_of(k)
            step = _SQRT_EPS ** 0.5 * max(abs(value), 1.0)
            hi = min(value + step, upper)
            lo = max(value - step, lower)
            try:
                x.set_value(k, hi)
                h_hi = self.curvature(x)
                x.set_value(k, lo)
                h_lo = self.curvature(x)
            finally:
                x.set_value(k, value)
            tensor[k] = (h_hi - h_lo) / (hi - lo)
        return tensor


class FunctionPotential(Potential):
    """
    Potential backed by a zero-argument callable that reads the model state.

    Example:
        potential = FunctionPotential(lambda: yule_log_prior(tree, birth_rate))
    """

    def __init__(self, fn: Callable[[], float]):
        self.fn = fn

    def evaluate(self) -> float:
        return float(self.fn())


class JaxPotential(Potential):
    """
    Log density of a parameter's flat value vector, written with jax.numpy.

    Gradient, Hessian and third derivatives come from jax.grad, jax.hessian and
    jax.jacfwd(jax.hessian). Derivatives with respect to coordinates outside
    ``parameter`` are zero.

    Args:
        log_density: fn(values: jnp.ndarray) -> scalar
        parameter: Parameter or CompoundParameter supplying the values

    Example:
        x = Parameter([0.0, 0.0], name='x')
        potential = JaxPotential(lambda q: -0.5 * jnp.sum(q ** 2), x)
    """

    def __init__(self, log_density: Callable, parameter):
        self.log_density = log_density
        self.parameter = parameter
        self._value_fn = jax.jit(log_density)
        self._grad_fn = jax.jit(jax.grad(log_density))
        self._hessian_fn = jax.jit(jax.hessian(log_density))
        self._third_fn = jax.jit(jax.jacfwd(jax.hessian(log_density)))

    def _position(self):
        return jnp.asarray(self.parameter.get_values(), dtype=jnp.float64)

    def evaluate(self) -> float:
        return float(self._value_fn(self._position()))

    def _flat_index(self, parameter, index):
        for i in range(self.parameter.get_dimension()):
            owner, j = self.parameter.locate(i)
            if owner is parameter and j == index:
                return i
        return None

    def differentiate(self, parameter, index: int) -> float:
        flat = self._flat_index(parameter, index)
        if flat is None:
            return 0.0
        return float(self._grad_fn(self._position())[flat])

    def gradient(self, x) -> np.ndarray:
        if x is self.parameter:
            return np.asarray(self._grad_fn(self._position()), dtype=float)
        return super().gradient(x)

    def curvature(self, x) -> np.ndarray:
        if x is self.parameter:
            return np.asarray(self._hessian_fn(self._position()), dtype=float)
        return super().curvature(x)

    def curvature_gradient(self, x) -> np.ndarray:
        if x is self.parameter:
            # jacfwd puts the differentiated coordinate last: third[i, j, k] = d^3 f / dx_i dx_j dx_k
            third = np.asarray(self._third_fn(self._position()), dtype=float)
            return np.moveaxis(third, -1, 0)
        return super().curvature_gradient(x)


class SumPotential(Potential):
    """Sum of component potentials, e.g. a prior and a likelihood."""

    def __init__(self, potentials: Sequence[Potential]):
        self.potentials = list(potentials)

    def evaluate(self) -> float:
        total = 0.0
        for potential in self.potentials:
            total += potential.evaluate()
            if total == -np.inf:
                break
        return total

    def make_dirty(self) -> None:
        for potential in self.potentials:
            potential.make_dirty()

    def differentiate(self, parameter, index: int) -> float:
        return sum(p.differentiate(parameter, index) for p in self.potentials)

    def gradient(self, x) -> np.ndarray:
        return sum(p.gradient(x) for p in self.potentials)

    def curvature(self, x) -> np.ndarray:
        return sum(p.curvature(x) for p in self.potentials)

    def curvature_gradient(self, x) -> np.ndarray:
        return sum(p.curvature_gradient(x) for p in self.potentials)
