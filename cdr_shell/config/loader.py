"""
TOML configuration loading and saving.

Uses tomllib for reading and tomli_w for writing.
"""

import tomllib
from pathlib import Path
from typing import Any

import tomli_w

from .schema import Config


def load_config(path: str | Path) -> Config:
    """Load a TOML configuration file and return a Config object."""
    path = Path(path)
    with open(path, "rb") as f:
        data = tomllib.load(f)

    return Config(
        domain=data["domain"],
        problem=data["problem"],
        time=data["time"],
        solver=data.get("solver", {}),
        output=data.get("output", {}),
    )


def save_config(config: Config, path: str | Path) -> None:
    """Save a Config object to a TOML file."""
    path = Path(path)
    data: dict[str, Any] = {}

    if config.domain:
        data["domain"] = config.domain
    if config.problem:
        data["problem"] = config.problem
    if config.time:
        data["time"] = config.time
    if config.solver:
        data["solver"] = config.solver
    if config.output:
        data["output"] = config.output

    with open(path, "wb") as f:
        tomli_w.dump(data, f)
