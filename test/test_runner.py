import json

import numpy as np

from cdr_shell.config import OutputSettings, SolverSettings, load_config
from cdr_shell.runtime.dirs import register_run
from cdr_shell.simulation import Term, run_simulation

from utilities import make_parameters


def test_run_simulation(serial_context, tmp_path):
    parameters = make_parameters(forcing="exp(-40*(x - 1.5)^6)*exp(-40*y^6)", time_dependent_forcing=False,
                                 n_time_steps=4, save_interval=2)
    config = parameters.to_config(SolverSettings(backend="scipy"), OutputSettings(prefix="hump"))
    run = register_run(serial_context, "runner", __file__, runtime_root=tmp_path, with_hash=False)

    io = run_simulation(serial_context, config, run)

    history = io.load_trajectory()
    assert history[Term.step_index].tolist() == [0, 1, 2, 3]
    assert np.allclose(history[Term.time], [0.0125, 0.025, 0.0375, 0.05])
    assert np.all(history[Term.solution_norm] > 0)

    assert (run.results_dir / "hump-0.pvtu").exists()
    assert (run.results_dir / "hump-2.0000.vtu").exists()
    assert not (run.results_dir / "hump-1.pvtu").exists()

    metadata = json.loads(run.metadata_file.read_text())
    assert metadata["checkpoints"] == [0, 2]
    assert metadata["last_step"]["index"] == 3

    saved = load_config(run.parameters_dir / "config.toml")
    assert saved.output["prefix"] == "hump"
    assert saved.time["n_time_steps"] == 4
