"""
Named, bounded parameters with explicit aliasing.

Parameters are exchanged with callers by name, but inside a substitution
process every name is resolved once, at construction time, into a handle on
the component that owns it. Aliases are recorded in an :class:`AliasTable`
so that setting any member of an alias group sets the whole group.
"""

from dataclasses import dataclass
from typing import Iterable, Iterator, Mapping

import numpy as np

from .exceptions import DimensionError, ParameterError


@dataclass
class Parameter:
    """
    A named real-valued parameter.

    Attributes
    ----------
    name : str
        Parameter name
    value : float
        Current value
    lower, upper : float
        Inclusive bounds
    """

    name: str
    value: float
    lower: float = -np.inf
    upper: float = np.inf

    def __post_init__(self):
        self.value = float(self.value)
        self.check(self.value)

    def check(self, value: float) -> None:
        if not (self.lower <= value <= self.upper):
            raise ParameterError(
                f"Value {value} for parameter '{self.name}' is outside "
                f"[{self.lower}, {self.upper}]"
            )

    def set(self, value: float) -> bool:
        """Set the value; return True if it changed."""
        value = float(value)
        self.check(value)
        changed = value != self.value
        self.value = value
        return changed

    def renamed(self, name: str) -> "Parameter":
        return Parameter(name, self.value, self.lower, self.upper)


class ParameterList:
    """Ordered collection of parameters indexed by name."""

    def __init__(self, parameters: Iterable[Parameter] = ()):
        self._params: dict[str, Parameter] = {}
        for p in parameters:
            self.add(p)

    def add(self, parameter: Parameter) -> None:
        if parameter.name in self._params:
            raise ParameterError(f"Duplicate parameter '{parameter.name}'")
        self._params[parameter.name] = parameter

    def remove(self, name: str) -> Parameter:
        try:
            return self._params.pop(name)
        except KeyError:
            raise ParameterError(f"Unknown parameter '{name}'") from None

    def __contains__(self, name: str) -> bool:
        return name in self._params

    def __getitem__(self, name: str) -> Parameter:
        try:
            return self._params[name]
        except KeyError:
            raise ParameterError(f"Unknown parameter '{name}'") from None

    def __iter__(self) -> Iterator[Parameter]:
        return iter(self._params.values())

    def __len__(self) -> int:
        return len(self._params)

    def names(self) -> list[str]:
        return list(self._params)

    def get_value(self, name: str) -> float:
        return self[name].value

    def set_value(self, name: str, value: float) -> bool:
        return self[name].set(value)

    def values(self) -> dict[str, float]:
        return {name: p.value for name, p in self._params.items()}

    def match_values(self, values: Mapping[str, float]) -> list[str]:
        """
        Set every parameter of this list that appears in ``values``.

        Names unknown to this list are ignored.

        Returns
        -------
        list[str]
            Names whose value actually changed
        """
        changed = []
        for name, value in values.items():
            if name in self._params and self._params[name].set(value):
                changed.append(name)
        return changed

    def __repr__(self) -> str:
        inner = ", ".join(f"{n}={p.value:g}" for n, p in self._params.items())
        return f"ParameterList({inner})"


class AliasTable:
    """
    Groups of parameter names that always share the same value.

    The first name of a group is its representative; only representatives
    are independent parameters.
    """

    def __init__(self):
        self._representative: dict[str, str] = {}
        self._groups: dict[str, list[str]] = {}

    def alias(self, source: str, target: str) -> None:
        """Make ``target`` follow ``source``."""
        rep_source = self.representative(source)
        rep_target = self.representative(target)
        if rep_source == rep_target:
            return
        members = self._groups.pop(rep_target, [rep_target])
        group = self._groups.setdefault(rep_source, [rep_source])
        for name in members:
            self._representative[name] = rep_source
            group.append(name)

    def representative(self, name: str) -> str:
        return self._representative.get(name, name)

    def group(self, name: str) -> list[str]:
        rep = self.representative(name)
        return list(self._groups.get(rep, [rep]))

    def is_independent(self, name: str) -> bool:
        return self.representative(name) == name

    def __len__(self) -> int:
        return len(self._representative)


class Simplex:
    """
    Probability vector parametrized by stick-breaking fractions.

    For n probabilities there are n - 1 parameters ``theta1 .. theta(n-1)`` in
    (0, 1): ``p1 = theta1``, ``p2 = (1 - theta1) * theta2``, ... and the
    last probability takes the remaining mass.

    Parameters
    ----------
    probabilities : sequence of float
        Initial probabilities (must sum to 1)
    prefix : str
        Prefix of the parameter names
    """

    def __init__(self, probabilities, prefix: str = ""):
        probs = np.asarray(probabilities, dtype=float)
        if probs.ndim != 1 or len(probs) == 0:
            raise DimensionError("A simplex needs at least one probability")
        if np.any(probs < 0) or not np.isclose(probs.sum(), 1.0):
            raise DimensionError(f"Probabilities must be non-negative and sum to 1, got {probs}")
        self.prefix = prefix
        self.size = len(probs)
        self.parameters = ParameterList(
            Parameter(f"{prefix}theta{i + 1}", theta, 1e-12, 1.0 - 1e-12)
            for i, theta in enumerate(self._thetas(probs))
        )

    @staticmethod
    def _thetas(probs: np.ndarray) -> list[float]:
        thetas = []
        remaining = 1.0
        for p in probs[:-1]:
            theta = p / remaining if remaining > 0 else 0.5
            theta = float(np.clip(theta, 1e-12, 1.0 - 1e-12))
            thetas.append(theta)
            remaining -= p
        return thetas

    @property
    def probabilities(self) -> np.ndarray:
        probs = np.empty(self.size)
        remaining = 1.0
        for i, p in enumerate(self.parameters):
            probs[i] = remaining * p.value
            remaining -= probs[i]
        probs[-1] = remaining
        return probs

    def set_probabilities(self, probabilities) -> None:
        probs = np.asarray(probabilities, dtype=float)
        if probs.shape != (self.size,):
            raise DimensionError(f"Expected {self.size} probabilities, got {probs.shape}")
        for p, theta in zip(self.parameters, self._thetas(probs / probs.sum())):
            p.set(theta)

