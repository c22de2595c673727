"""
Output of a run: per-process VTU checkpoints with a PVTU record, and the
history of per-step values.
"""

import logging
import pathlib
import xml.etree.ElementTree as ET
from enum import StrEnum

import meshio
import numpy as np

from cdr_shell.domain.dofs import DoFHandler
from cdr_shell.domain.fe import map_points
from cdr_shell.numerics.distributed import GhostedVector
from cdr_shell.runtime.context import RunContext


logger = logging.getLogger(__name__)


def _patch(patch_level: int):
    """Points and sub-quads subdividing the unit cell into patch_level x patch_level pieces."""
    n = patch_level
    ticks = np.linspace(0.0, 1.0, n + 1)
    [x, y] = np.meshgrid(ticks, ticks, indexing="xy")
    points = np.stack([x.ravel(), y.ravel()], axis=-1)
    [i, j] = np.meshgrid(np.arange(n), np.arange(n), indexing="xy")
    first = (j * (n + 1) + i).ravel()
    quads = np.stack([first, first + 1, first + n + 2, first + n + 1], axis=-1)
    return points, quads


class CheckpointWriter:
    """
    Writes `<prefix>-<step>.<rank>.vtu` on every process and `<prefix>-<step>.pvtu`
    on rank 0.

    Each owned cell is written as its own patch of sub-quads, so the files of
    different processes never share points.
    """

    def __init__(self, output_dir, prefix: str = "solution", patch_level: int = 1):
        self.output_dir = pathlib.Path(output_dir)
        self.prefix = prefix
        self.patch_level = patch_level
        self.written_steps: list[int] = []

    def piece_name(self, step: int, rank: int) -> str:
        return f"{self.prefix}-{step}.{rank:04d}.vtu"

    def record_name(self, step: int) -> str:
        return f"{self.prefix}-{step}.pvtu"

    def write(self, context: RunContext, dofs: DoFHandler, solution: GhostedVector, step: int):
        """Write the checkpoint of one step. `solution` must have up to date ghosts."""
        mesh = dofs.mesh
        cells = mesh.locally_owned_cells
        [unit_points, unit_quads] = _patch(self.patch_level)
        nb_per_cell = unit_points.shape[0]

        points = map_points(mesh.cell_vertices(cells), unit_points).reshape(-1, 2)
        cell_dofs = dofs.cell_dofs[cells]
        u_cells = solution[cell_dofs.ravel()].reshape(cell_dofs.shape)
        u = (u_cells @ dofs.fe.shape_values(unit_points).T).ravel()
        quads = (np.arange(cells.size)[:, np.newaxis, np.newaxis] * nb_per_cell + unit_quads).reshape(-1, 4)

        checkpoint = meshio.Mesh(
            np.column_stack([points, np.zeros(points.shape[0])]),
            [("quad", quads)],
            point_data={"u": u},
            cell_data={"subdomain": [np.full(quads.shape[0], float(context.rank))]},
        )
        self.output_dir.mkdir(parents=True, exist_ok=True)
        meshio.write(self.output_dir / self.piece_name(step, context.rank), checkpoint)

        if context.is_coordinator:
            self.write_record(step, context.size)
        self.written_steps.append(step)
        logger.debug(f"Checkpoint of step {step} written to {self.output_dir}")

    def write_record(self, step: int, nb_processes: int):
        """The PVTU file that lists the pieces of all processes."""
        root = ET.Element("VTKFile", type="PUnstructuredGrid", version="0.1", byte_order="LittleEndian")
        grid = ET.SubElement(root, "PUnstructuredGrid", GhostLevel="0")
        point_data = ET.SubElement(grid, "PPointData", Scalars="u")
        ET.SubElement(point_data, "PDataArray", type="Float64", Name="u", NumberOfComponents="1")
        cell_data = ET.SubElement(grid, "PCellData", Scalars="subdomain")
        ET.SubElement(cell_data, "PDataArray", type="Float64", Name="subdomain", NumberOfComponents="1")
        points = ET.SubElement(grid, "PPoints")
        ET.SubElement(points, "PDataArray", type="Float64", NumberOfComponents="3")
        for rank in range(nb_processes):
            ET.SubElement(grid, "Piece", Source=self.piece_name(step, rank))
        tree = ET.ElementTree(root)
        ET.indent(tree)
        tree.write(self.output_dir / self.record_name(step), xml_declaration=True, encoding="utf-8")


def read_checkpoint(path) -> meshio.Mesh:
    """Load one per-process VTU file."""
    return meshio.read(path)


def read_record(path) -> list[pathlib.Path]:
    """Paths of the pieces listed in a PVTU file."""
    path = pathlib.Path(path)
    root = ET.parse(path).getroot()
    return [path.parent / piece.get("Source") for piece in root.iter("Piece")]


class NpyIO:

    root_path: pathlib.Path

    def __init__(self, root_path):
        self.root_path = pathlib.Path(root_path)

    @property
    def extension(self):
        return "npy"

    def load_value_array(self, name: str):
        try:
            return np.load(self.root_path / f"{name}.{self.extension}", allow_pickle=False)
        except FileNotFoundError:
            return np.array([])

    def save_value_array(self, name: str, array: np.ndarray):
        self.root_path.mkdir(parents=True, exist_ok=True)
        np.save(self.root_path / f"{name}.{self.extension}", array)


class Term(StrEnum):
    step_index = "index"
    time = "time"
    iterations = "iterations"
    residual = "residual"
    rhs_norm = "rhs_norm"
    solution_norm = "solution_norm"


class HistoryIO:
    """Per-step scalar values, one file per quantity holding all steps."""

    io: NpyIO

    def __init__(self, store_dir) -> None:
        self.io = NpyIO(store_dir)

    def save_trajectory(self, single_values: dict[str, np.ndarray]):
        for [name, traj] in single_values.items():
            self.io.save_value_array(name, np.asarray(traj))

    def load_trajectory(self, single_value_names: list[str] = list(Term)):
        return {name: self.io.load_value_array(name) for name in single_value_names}
