"""
Linear-algebra backends: conversion of the distributed operator, preconditioner
setup and the Krylov solve.
"""

import logging

from cdr_shell.config.schema import SolverSettings
from cdr_shell.errors import ConfigurationError
from cdr_shell.runtime.context import RunContext

from .base import LinearAlgebraBackend, SolverReport


logger = logging.getLogger(__name__)


def create_backend(context: RunContext, settings: SolverSettings | None = None) -> LinearAlgebraBackend:
    """Pick the backend named in the settings. "auto" is SciPy on one process, PETSc otherwise."""
    settings = settings or SolverSettings()
    name = settings.backend
    if name == "auto":
        name = "scipy" if context.size == 1 else "petsc"
    logger.debug(f"Linear-algebra backend: {name}")

    if name == "scipy":
        from .scipy_backend import ScipyBackend
        return ScipyBackend(context, restart=settings.restart)
    if name == "petsc":
        # petsc4py is an optional dependency, only needed for this backend
        from .petsc_backend import PetscBackend
        return PetscBackend(context, restart=settings.restart)
    raise ConfigurationError(f"Unknown linear-algebra backend: {name}")


__all__ = ["LinearAlgebraBackend", "SolverReport", "create_backend"]
