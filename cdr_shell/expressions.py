"""
Evaluation of the symbolic coefficient and forcing expressions.

The solver never parses expressions itself. It talks to an `ExpressionEvaluator`,
so tests can substitute plain Python functions for the symbolic ones.
"""

import typing

import numpy as np
import sympy
from sympy.parsing.sympy_parser import parse_expr, standard_transformations, convert_xor

from cdr_shell.config.schema import split_convection_field


class ExpressionEvaluator(typing.Protocol):
    """Evaluates an expression for given values of its variables.

    Bindings may be scalars or arrays of a common shape; the result has the
    broadcast shape of the bindings.
    """

    def evaluate(self, expression: str, variable_bindings: dict[str, typing.Any]) -> np.ndarray: ...


class SympyEvaluator:
    """Parses expressions with SymPy and evaluates them through NumPy.

    The caret is read as power, as in the configuration files. Compiled
    expressions are cached per (expression, variable names).
    """

    transformations = standard_transformations + (convert_xor,)

    def __init__(self, constants: dict[str, float] | None = None):
        self.constants = {"pi": sympy.pi}
        if constants is not None:
            self.constants.update({name: sympy.Float(value) for [name, value] in constants.items()})
        self._compiled: dict[tuple[str, tuple[str, ...]], typing.Callable] = {}

    def compile(self, expression: str, variables: typing.Sequence[str]) -> typing.Callable:
        key = (expression, tuple(variables))
        if key not in self._compiled:
            symbols = [sympy.Symbol(name, real=True) for name in variables]
            local_dict = {**self.constants, **{str(s): s for s in symbols}}
            parsed = parse_expr(expression, local_dict=local_dict, transformations=self.transformations)
            free = {str(s) for s in parsed.free_symbols} - set(variables)
            if free:
                raise ValueError(f"Expression '{expression}' uses unknown symbols {sorted(free)}.")
            self._compiled[key] = sympy.lambdify(symbols, parsed, modules="numpy")
        return self._compiled[key]

    def evaluate(self, expression: str, variable_bindings: dict[str, typing.Any]) -> np.ndarray:
        func = self.compile(expression, tuple(variable_bindings))
        args = [np.asarray(value, dtype=float) for value in variable_bindings.values()]
        result = np.asarray(func(*args), dtype=float)
        # constant expressions come back as scalars
        return np.broadcast_to(result, np.broadcast_shapes(*(a.shape for a in args))).copy()


class ConvectionField:
    """The constant-in-time velocity field b(x, y)."""

    def __init__(self, text: str, evaluator: ExpressionEvaluator):
        self.components = split_convection_field(text)
        self.evaluator = evaluator

    def value(self, points: np.ndarray) -> np.ndarray:
        """Points of shape (..., 2) to velocities of shape (..., 2)."""
        bindings = {"x": points[..., 0], "y": points[..., 1]}
        return np.stack([self.evaluator.evaluate(c, bindings) for c in self.components], axis=-1)


class Forcing:
    """The source term f(x, y, t)."""

    def __init__(self, text: str, evaluator: ExpressionEvaluator):
        self.expression = text
        self.evaluator = evaluator

    def value(self, points: np.ndarray, time: float) -> np.ndarray:
        bindings = {"x": points[..., 0], "y": points[..., 1], "t": time}
        return self.evaluator.evaluate(self.expression, bindings)
