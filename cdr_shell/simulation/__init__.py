from .problem import CDRProblem, Phase, StepReport
from .io import CheckpointWriter, HistoryIO, NpyIO, Term, read_checkpoint, read_record
from .runner import build_problem, run_simulation, save_history
