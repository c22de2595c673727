import numpy as np
import pytest

from cdr_shell.expressions import ConvectionField, Forcing, SympyEvaluator


def test_evaluate_with_caret_power():
    evaluator = SympyEvaluator()
    x = np.array([0.0, 1.0, 2.0])
    y = np.array([1.0, 1.0, 3.0])
    value = evaluator.evaluate("x^2 + 2*y", {"x": x, "y": y})
    assert np.allclose(value, x**2 + 2 * y)


def test_constant_expression_is_broadcast():
    evaluator = SympyEvaluator()
    points = np.zeros((4, 3))
    value = evaluator.evaluate("0", {"x": points, "y": points})
    assert value.shape == (4, 3)
    assert np.all(value == 0)


def test_named_constants():
    evaluator = SympyEvaluator(constants={"omega": 2.0})
    value = evaluator.evaluate("omega*pi", {"x": np.ones(2)})
    assert np.allclose(value, 2 * np.pi)


def test_unknown_symbol():
    evaluator = SympyEvaluator()
    with pytest.raises(ValueError, match="z"):
        evaluator.evaluate("x + z", {"x": 1.0, "y": 2.0})


def test_rotating_convection_field():
    field = ConvectionField("-y,x", SympyEvaluator())
    points = np.array([[[1.0, 2.0], [0.0, -1.0]]])
    velocity = field.value(points)
    assert velocity.shape == (1, 2, 2)
    assert np.allclose(velocity, [[[-2.0, 1.0], [1.0, 0.0]]])


def test_forcing_in_time():
    forcing = Forcing("exp(-2*t)*x", SympyEvaluator())
    points = np.array([[1.5, 0.0], [2.0, 1.0]])
    assert np.allclose(forcing.value(points, 0.0), [1.5, 2.0])
    assert np.allclose(forcing.value(points, 1.0), np.exp(-2.0) * np.array([1.5, 2.0]))


class PlainEvaluator:
    """Evaluates Python functions instead of symbolic expressions."""

    def __init__(self, functions):
        self.functions = functions

    def evaluate(self, expression, variable_bindings):
        return np.asarray(self.functions[expression](**variable_bindings), dtype=float)


def test_injected_evaluator():
    evaluator = PlainEvaluator({"bx": lambda x, y: np.zeros_like(x), "by": lambda x, y: x + y})
    field = ConvectionField("bx, by", evaluator)
    velocity = field.value(np.array([[1.0, 2.0]]))
    assert np.allclose(velocity, [[0.0, 3.0]])
