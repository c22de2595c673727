"""
Exceptions raised by the solver. None of them is recovered from inside the package.
"""


class CDRError(Exception):
    """Base class of all errors raised by cdr_shell."""


class ConfigurationError(CDRError, ValueError):
    """A run parameter is out of its admissible range."""


class UnsupportedDimensionError(ConfigurationError):
    """Only two spatial dimensions are implemented."""


class ConvectionFieldError(ConfigurationError):
    """The convection field must consist of exactly two comma separated expressions."""


class SolverDivergedError(CDRError, RuntimeError):
    """The Krylov solver did not reach the tolerance within its iteration budget."""

    def __init__(self, message: str, iterations: int, residual: float):
        super().__init__(message)
        self.iterations = iterations
        self.residual = residual


class CommunicationError(CDRError, RuntimeError):
    """Processes disagree on the outcome of a collective operation."""
