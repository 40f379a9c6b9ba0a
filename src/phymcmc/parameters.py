"""
Bounded continuous parameters.

A Parameter is an ordered, fixed-size vector of floats with per-coordinate
bounds. A CompoundParameter concatenates several parameters into one flat
vector so an operator can move heterogeneous model parameters together.

Invariant: every value lies in [lower, upper] (inclusive) after any mutation.

Public API:
    Bounds: Frozen lower/upper limit arrays
    Parameter: Mutable bounded vector with store/restore
    CompoundParameter: Concatenation view over several parameters
"""

from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Tuple, Union

import numpy as np

from .error_handling import ConfigurationError


@dataclass(frozen=True)
class Bounds:
    """
    Per-coordinate limits of a parameter.

    Fields:
        lower: Lower limits, shape (d,)
        upper: Upper limits, shape (d,)
    """
    lower: np.ndarray
    upper: np.ndarray

    def __post_init__(self):
        lower = np.atleast_1d(np.asarray(self.lower, dtype=float))
        upper = np.atleast_1d(np.asarray(self.upper, dtype=float))
        if lower.shape != upper.shape:
            raise ConfigurationError(
                f"Bounds lower {lower.shape} and upper {upper.shape} shapes differ"
            )
        if np.any(np.isnan(lower)) or np.any(np.isnan(upper)):
            raise ConfigurationError("Bounds cannot contain NaN")
        if np.any(lower > upper):
            raise ConfigurationError("Bounds require lower <= upper in every coordinate")
        object.__setattr__(self, 'lower', lower)
        object.__setattr__(self, 'upper', upper)

    @property
    def dimension(self) -> int:
        return self.lower.shape[0]

    def get_lower_limit(self, i: int) -> float:
        return float(self.lower[i])

    def get_upper_limit(self, i: int) -> float:
        return float(self.upper[i])

    def contains(self, values) -> bool:
        values = np.asarray(values, dtype=float)
        return bool(np.all(values >= self.lower) and np.all(values <= self.upper))


class Parameter:
    """
    Bounded vector of floats.

    Values can be stored and restored, which is how the chain undoes a rejected
    move. Listeners are called as ``listener(parameter, index)`` after every
    change (index is -1 for whole-vector changes).

    Example:
        rate = Parameter([1.0, 2.0], lower=0.0, name='rates')
        rate.set_value(0, 1.5)
    """

    def __init__(self, values: Sequence[float],
                 lower: Union[float, Sequence[float]] = -np.inf,
                 upper: Union[float, Sequence[float]] = np.inf,
                 name: str = 'parameter'):
        values = np.array(values, dtype=float, ndmin=1)
        if values.ndim != 1:
            raise ConfigurationError(f"Parameter '{name}' values must be one-dimensional")
        dim = values.shape[0]
        self.name = name
        self._bounds = Bounds(np.broadcast_to(np.asarray(lower, dtype=float), (dim,)),
                              np.broadcast_to(np.asarray(upper, dtype=float), (dim,)))
        if not self._bounds.contains(values):
            raise ConfigurationError(f"Parameter '{name}' initial values lie outside its bounds")
        self._values = values
        self._stored = values.copy()
        self._listeners: List[Callable] = []

    def __repr__(self):
        return f"Parameter(name={self.name!r}, values={self._values.tolist()})"

    def get_dimension(self) -> int:
        return self._values.shape[0]

    def get_value(self, i: int) -> float:
        return float(self._values[i])

    def get_values(self) -> np.ndarray:
        return self._values.copy()

    def set_value(self, i: int, value: float) -> None:
        lower, upper = self.get_bounds_of(i)
        if not lower <= value <= upper:
            raise ValueError(
                f"{self.name}[{i}] = {value} lies outside [{lower}, {upper}]"
            )
        self._values[i] = value
        self._fire(i)

    def set_values(self, values: Sequence[float]) -> None:
        values = np.asarray(values, dtype=float)
        if values.shape != self._values.shape:
            raise ValueError(
                f"{self.name}: expected {self._values.shape[0]} values, got {values.shape}"
            )
        if not self._bounds.contains(values):
            raise ValueError(f"{self.name}: values lie outside bounds")
        self._values[:] = values
        self._fire(-1)

    def get_bounds(self) -> Bounds:
        return self._bounds

    def get_bounds_of(self, i: int) -> Tuple[float, float]:
        return self._bounds.get_lower_limit(i), self._bounds.get_upper_limit(i)

    def locate(self, i: int) -> Tuple['Parameter', int]:
        """Return the (parameter, index) pair that owns flat coordinate i."""
        return self, i

    def store_values(self) -> None:
        self._stored = self._values.copy()

    def restore_values(self) -> None:
        self._values[:] = self._stored
        self._fire(-1)

    def add_listener(self, listener: Callable) -> None:
        self._listeners.append(listener)

    def _fire(self, index: int) -> None:
        for listener in self._listeners:
            listener(self, index)


class CompoundParameter:
    """
    Concatenation view over several parameters.

    Coordinate i of the compound is coordinate ``i - offset`` of the
    parameter whose block contains i. Bounds are read from the underlying
    parameter on every call, so parameters with state-dependent limits (such
    as node heights) stay correct while a trajectory is being simulated.
    """

    def __init__(self, parameters: Sequence, name: str = 'compound'):
        if len(parameters) == 0:
            raise ConfigurationError("CompoundParameter needs at least one parameter")
        self.name = name
        self.parameters = list(parameters)
        self._index = []
        for parameter in self.parameters:
            for j in range(parameter.get_dimension()):
                self._index.append((parameter, j))

    def __repr__(self):
        names = [p.name for p in self.parameters]
        return f"CompoundParameter(name={self.name!r}, parameters={names})"

    def get_dimension(self) -> int:
        return len(self._index)

    def locate(self, i: int):
        parameter, j = self._index[i]
        return parameter.locate(j)

    def get_value(self, i: int) -> float:
        parameter, j = self._index[i]
        return parameter.get_value(j)

    def get_values(self) -> np.ndarray:
        return np.array([self.get_value(i) for i in range(self.get_dimension())])

    def set_value(self, i: int, value: float) -> None:
        parameter, j = self._index[i]
        parameter.set_value(j, value)

    def set_values(self, values: Sequence[float]) -> None:
        values = np.asarray(values, dtype=float)
        if values.shape != (self.get_dimension(),):
            raise ValueError(
                f"{self.name}: expected {self.get_dimension()} values, got {values.shape}"
            )
        offset = 0
        for parameter in self.parameters:
            dim = parameter.get_dimension()
            parameter.set_values(values[offset:offset + dim])
            offset += dim

    def get_bounds_of(self, i: int) -> Tuple[float, float]:
        parameter, j = self._index[i]
        return parameter.get_bounds_of(j)

    def get_bounds(self) -> Bounds:
        limits = [self.get_bounds_of(i) for i in range(self.get_dimension())]
        return Bounds(np.array([lo for lo, _ in limits]), np.array([hi for _, hi in limits]))

    def store_values(self) -> None:
        for parameter in self.parameters:
            parameter.store_values()

    def restore_values(self) -> None:
        for parameter in self.parameters:
            parameter.restore_values()

    def add_listener(self, listener: Callable) -> None:
        for parameter in self.parameters:
            parameter.add_listener(listener)


def as_parameter(x: Union[Parameter, CompoundParameter, Sequence], name: Optional[str] = None):
    """Wrap a sequence of parameters in a CompoundParameter; pass single parameters through."""
    if isinstance(x, (list, tuple)):
        return CompoundParameter(x, name=name or 'x')
    return x
