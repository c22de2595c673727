"""
Rotating hump on a shell.

Usage:
    mpiexec -n 4 python examples/rotating_hump.py [config.toml]

Without a config file the embedded reference parameters are used. Results go
to results/rotating_hump/<run id>/ below the working directory.
"""

import logging
import os
import sys

from cdr_shell.config import OutputSettings, SolverSettings, default_parameters, load_config
from cdr_shell.runtime import RunContext, abort_on_error
from cdr_shell.runtime.dirs import register_run
from cdr_shell.runtime.logging import reset_logging, switch_log_file
from cdr_shell.simulation import run_simulation


logger = logging.getLogger(__name__)


def main():
    with RunContext() as context, abort_on_error(context):
        reset_logging(context.rank)

        if len(sys.argv) > 1:
            config_files = sys.argv[1:2]
            config = load_config(config_files[0])
        else:
            config_files = []
            config = default_parameters().to_config(SolverSettings(), OutputSettings(patch_level=3))

        # setup run directory
        case_name = os.path.splitext(os.path.basename(__file__))[0]
        run = register_run(context, case_name, __file__, *config_files)
        switch_log_file(run.log_file, context.rank)

        io = run_simulation(context, config, run)

        if context.is_coordinator:
            history = io.load_trajectory()
            logger.info(f"Finished {history['index'].size} steps, final |u| = {history['solution_norm'][-1]:.6e}")


if __name__ == "__main__":
    main()
