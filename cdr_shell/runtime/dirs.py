import os
import time
import subprocess
import json
import logging
from pathlib import Path

from cdr_shell.runtime.context import RunContext


logger = logging.getLogger(__name__)

repo_root = os.getenv("PYTHONPATH", os.getcwd())
results_dirname = "results"


def register_run(context: RunContext, base_dir_path, script_path, *param_paths, runtime_root=None,
                 with_hash: bool = True):
    """
    Each simulation run gets a dedicated folder to work with.
    ---
    base_dir_path: should be a relative path from runtime_root.

    Only the coordinating process touches the file system, the other processes
    receive the folder by broadcast. This is a collective call.
    """

    # default
    if runtime_root is None:
        runtime_root = os.path.join(repo_root, results_dirname)

    run_dir_path = None
    if context.is_coordinator:
        # get current time
        current_time = time.localtime()

        # use the timestamp as id
        run_id = time.strftime("%y%m%d-%H%M%S", current_time)

        # get the git hash
        git_hash = get_git_hash() if with_hash else None
        if git_hash:
            run_id += f"-{git_hash[:6]}"

        # create a dedicated folder for this simulation run
        run_dir_path = os.path.join(runtime_root, base_dir_path, run_id)
        run_dir = RunDir(run_dir_path)
        run_dir.setup_directory()

        # put in initial values
        for each_path in param_paths:
            run_dir.add_parameter_file(each_path)

        # collect metadata
        metadata = {
            "run_id": run_id,
            "time": time.strftime("%Y-%m-%dT%H:%M:%S", current_time),
            "script": str(os.path.abspath(script_path)),
            "nb_processes": context.size,
        }
        if len(param_paths):
            metadata.update({"parameters": [str(os.path.abspath(each_params)) for each_params in param_paths]})
        if git_hash:
            metadata.update({"git_hash": git_hash})
        run_dir.update_metadata(metadata)

    run_dir_path = context.bcast(run_dir_path)
    return RunDir(run_dir_path)


def retrieve_run(base_dir_path, run_id, runtime_root=None):
    """
    Retrieve the folder of the specified run.
    ---
    base_dir_path: should be a relative path from runtime_root.
    """

    # default
    if runtime_root is None:
        runtime_root = os.path.join(repo_root, results_dirname)

    # get the dedicated folder
    run_dir_path = os.path.join(runtime_root, base_dir_path, run_id)
    return RunDir(run_dir_path)


class RunDir:

    def __init__(self, path):
        self.path = Path(path)
        self.run_id = os.path.basename(self.path)

    def setup_directory(self):
        # create folders and files
        self.path.mkdir(parents=True, exist_ok=False)
        self.parameters_dir.mkdir()
        self.results_dir.mkdir()
        self.log_file.touch()
        with open(self.metadata_file, "w", encoding="utf-8") as fp:
            json.dump({}, fp)

    @property
    def parameters_dir(self):
        return self.path / "parameters"

    @property
    def results_dir(self):
        return self.path / "results"

    @property
    def log_file(self):
        return self.path / "log.txt"

    @property
    def metadata_file(self):
        return self.path / "METADATA.json"

    def add_parameter_file(self, file_path):
        target = self.parameters_dir / Path(file_path).name
        target.write_bytes(Path(file_path).read_bytes())

    def update_metadata(self, new_info):
        with open(self.metadata_file, "r", encoding="utf-8") as fp:
            metadata = json.load(fp)
        metadata.update(new_info)
        with open(self.metadata_file, "w", encoding="utf-8") as fp:
            json.dump(metadata, fp, indent=2, sort_keys=True)


def get_git_hash():
    try:
        return subprocess.check_output(
            ["git", "rev-parse", "HEAD"], stderr=subprocess.DEVNULL).decode("utf-8").strip()
    except (OSError, subprocess.CalledProcessError) as e:
        logger.debug(f"No git hash available: {e}")
        return None
