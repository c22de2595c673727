"""
Configuration schema.

The file format mirrors the phases of a run:
- domain: geometry of the shell and its discretization
- problem: coefficients and symbolic expressions of the CDR equation
- time: time range and checkpoint interval
- solver: linear-algebra backend settings
- output: checkpoint file settings

`Config` keeps every section as a raw dict, exactly as read from the file.
`Parameters` is the validated, immutable record that the solver consumes.
"""

from dataclasses import dataclass, field, fields
from typing import Any

from cdr_shell.errors import ConfigurationError, ConvectionFieldError, UnsupportedDimensionError


@dataclass
class Config:
    """
    Top-level configuration.

    All sections are raw dicts, semantic knowledge lives in `Parameters`.
    """
    domain: dict[str, Any]
    problem: dict[str, Any]
    time: dict[str, Any]
    solver: dict[str, Any] = field(default_factory=dict)
    output: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Parameters:
    """Physical and numerical parameters of one run."""

    inner_radius: float
    outer_radius: float
    diffusion_coefficient: float
    convection_field: str
    reaction_coefficient: float
    forcing: str
    time_dependent_forcing: bool
    fe_order: int
    refinement_level: int
    start_time: float
    stop_time: float
    n_time_steps: int
    save_interval: int
    dim: int = 2

    def __post_init__(self):
        if self.dim != 2:
            raise UnsupportedDimensionError(f"Only 2D shells are supported, got dim={self.dim}.")
        if not 0 < self.inner_radius < self.outer_radius:
            raise ConfigurationError(
                f"Radii must satisfy 0 < inner < outer, got {self.inner_radius} and {self.outer_radius}.")
        if self.diffusion_coefficient <= 0:
            raise ConfigurationError(f"Diffusion coefficient must be positive, got {self.diffusion_coefficient}.")
        if self.reaction_coefficient < 0:
            raise ConfigurationError(f"Reaction coefficient must be non-negative, got {self.reaction_coefficient}.")
        if self.fe_order < 1:
            raise ConfigurationError(f"Finite element order must be positive, got {self.fe_order}.")
        if self.refinement_level < 0:
            raise ConfigurationError(f"Refinement level must be non-negative, got {self.refinement_level}.")
        if not self.start_time < self.stop_time:
            raise ConfigurationError(f"Start time {self.start_time} must precede stop time {self.stop_time}.")
        if self.n_time_steps < 1:
            raise ConfigurationError(f"Number of time steps must be positive, got {self.n_time_steps}.")
        if self.save_interval < 1:
            raise ConfigurationError(f"Save interval must be positive, got {self.save_interval}.")
        # fail early on a malformed field
        split_convection_field(self.convection_field)

    @property
    def time_step(self) -> float:
        return (self.stop_time - self.start_time) / self.n_time_steps

    @classmethod
    def from_config(cls, config: Config) -> "Parameters":
        """Flatten the domain, problem and time sections."""
        data = {**config.domain, **config.problem, **config.time}
        names = {f.name for f in fields(cls)}
        unknown = set(data) - names
        if unknown:
            raise ConfigurationError(f"Unknown parameters: {sorted(unknown)}")
        try:
            return cls(**data)
        except TypeError as err:
            raise ConfigurationError(str(err)) from err

    def to_config(self, solver: "SolverSettings | None" = None, output: "OutputSettings | None" = None) -> Config:
        solver = solver or SolverSettings()
        output = output or OutputSettings()
        return Config(
            domain={
                "inner_radius": self.inner_radius,
                "outer_radius": self.outer_radius,
                "fe_order": self.fe_order,
                "refinement_level": self.refinement_level,
                "dim": self.dim,
            },
            problem={
                "diffusion_coefficient": self.diffusion_coefficient,
                "convection_field": self.convection_field,
                "reaction_coefficient": self.reaction_coefficient,
                "forcing": self.forcing,
                "time_dependent_forcing": self.time_dependent_forcing,
            },
            time={
                "start_time": self.start_time,
                "stop_time": self.stop_time,
                "n_time_steps": self.n_time_steps,
                "save_interval": self.save_interval,
            },
            solver={f.name: getattr(solver, f.name) for f in fields(solver)},
            output={f.name: getattr(output, f.name) for f in fields(output)},
        )


@dataclass(frozen=True)
class SolverSettings:
    """Settings of the preconditioned Krylov solve."""

    backend: str = "auto"
    tolerance_factor: float = 1e-6
    restart: int = 30

    def __post_init__(self):
        if self.backend not in ("auto", "scipy", "petsc"):
            raise ConfigurationError(f"Unknown linear-algebra backend: {self.backend}")
        if not 0 < self.tolerance_factor < 1:
            raise ConfigurationError(f"Tolerance factor must lie in (0, 1), got {self.tolerance_factor}.")
        if self.restart < 1:
            raise ConfigurationError(f"GMRES restart must be positive, got {self.restart}.")

    @classmethod
    def from_config(cls, config: Config) -> "SolverSettings":
        try:
            return cls(**config.solver)
        except TypeError as err:
            raise ConfigurationError(str(err)) from err


@dataclass(frozen=True)
class OutputSettings:
    """Naming and resolution of checkpoint files."""

    prefix: str = "solution"
    patch_level: int = 1

    def __post_init__(self):
        if not self.prefix:
            raise ConfigurationError("Checkpoint prefix must not be empty.")
        if self.patch_level < 1:
            raise ConfigurationError(f"Patch level must be positive, got {self.patch_level}.")

    @classmethod
    def from_config(cls, config: Config) -> "OutputSettings":
        try:
            return cls(**config.output)
        except TypeError as err:
            raise ConfigurationError(str(err)) from err


def default_parameters() -> Parameters:
    """A rotating field transporting a hump that decays in time."""
    return Parameters(
        inner_radius=1.0,
        outer_radius=2.0,
        diffusion_coefficient=1.0e-3,
        convection_field="-y,x",
        reaction_coefficient=1.0e-4,
        forcing="exp(-2*t)*exp(-40*(x - 1.5)^6)*exp(-40*y^6)",
        time_dependent_forcing=True,
        fe_order=3,
        refinement_level=2,
        start_time=0.0,
        stop_time=2.0,
        n_time_steps=200,
        save_interval=1,
    )


def split_convection_field(text: str) -> tuple[str, str]:
    """
    Split "bx, by" into its two component expressions.

    Commas nested in parentheses belong to function calls and do not separate
    components.
    """
    clauses = []
    depth = 0
    start = 0
    for [position, char] in enumerate(text):
        if char == "(":
            depth += 1
        elif char == ")":
            depth -= 1
        elif char == "," and depth == 0:
            clauses.append(text[start:position])
            start = position + 1
    clauses.append(text[start:])
    clauses = [clause.strip() for clause in clauses]
    if len(clauses) != 2 or not all(clauses):
        raise ConvectionFieldError(
            f"Convection field must consist of two comma separated expressions, got '{text}'.")
    return clauses[0], clauses[1]
