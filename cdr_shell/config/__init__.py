"""
Configuration module for TOML-based run parameters.

Provides:
- Schema dataclasses for typed, validated parameters
- TOML loading and saving
- The embedded reference configuration
"""

from .schema import (
    Config,
    Parameters,
    SolverSettings,
    OutputSettings,
    default_parameters,
    split_convection_field,
)

from .loader import load_config, save_config

__all__ = [
    # Schema classes
    "Config",
    "Parameters",
    "SolverSettings",
    "OutputSettings",
    "default_parameters",
    "split_convection_field",
    # Loader functions
    "load_config",
    "save_config",
]
