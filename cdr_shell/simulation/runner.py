"""
Black-box simulation execution.

Provides run_simulation() - config in, results out. The run directory holds
the checkpoints and the per-step history; only rank 0 writes the history.
"""

import logging
from dataclasses import asdict, fields

import numpy as np

from cdr_shell.config import Config, Parameters, SolverSettings, OutputSettings, save_config
from cdr_shell.expressions import ExpressionEvaluator
from cdr_shell.runtime.context import RunContext
from cdr_shell.runtime.dirs import RunDir
from cdr_shell.simulation.io import CheckpointWriter, HistoryIO
from cdr_shell.simulation.problem import CDRProblem, StepReport


logger = logging.getLogger(__name__)


def build_problem(context: RunContext, config: Config, run_dir: RunDir,
                  evaluator: ExpressionEvaluator | None = None) -> CDRProblem:
    """Translate the raw config sections into a ready to run problem."""
    parameters = Parameters.from_config(config)
    solver_settings = SolverSettings.from_config(config)
    output_settings = OutputSettings.from_config(config)
    writer = CheckpointWriter(run_dir.results_dir, prefix=output_settings.prefix,
                              patch_level=output_settings.patch_level)
    return CDRProblem(context, parameters, solver_settings=solver_settings, evaluator=evaluator,
                      checkpoint_writer=writer)


def save_history(reports: list[StepReport], io: HistoryIO):
    """Store every field of the step reports as one array."""
    io.save_trajectory({
        f.name: np.array([getattr(r, f.name) for r in reports]) for f in fields(StepReport)
    })


def run_simulation(context: RunContext, config: Config, run_dir: RunDir,
                   evaluator: ExpressionEvaluator | None = None) -> HistoryIO:
    """
    Run a single simulation from config. Collective.

    Parameters
    ----------
    context : RunContext
        Processes taking part in the run.
    config : Config
        Complete simulation configuration.
    run_dir : RunDir
        Run directory object with results_dir, parameters_dir, etc.
    evaluator : ExpressionEvaluator, optional
        Replaces the symbolic evaluation of the expressions.

    Returns
    -------
    HistoryIO
        IO object for accessing the per-step values.
    """
    problem = build_problem(context, config, run_dir, evaluator)
    if context.is_coordinator:
        save_config(problem.parameters.to_config(problem.solver_settings, OutputSettings.from_config(config)),
                    run_dir.parameters_dir / "config.toml")

    logger.info(f"Starting simulation on {context.size} processes with output to {run_dir.results_dir}")
    reports = problem.run()

    io = HistoryIO(run_dir.results_dir)
    if context.is_coordinator:
        save_history(reports, io)
        run_dir.update_metadata({
            "n_dofs": problem.dofs.n_dofs,
            "n_cells": problem.mesh.nb_cells,
            "checkpoints": problem.checkpoint_writer.written_steps,
            "last_step": asdict(reports[-1]),
        })
    context.barrier()
    return io
