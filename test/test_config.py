"""
Tests for TOML configuration loading and parameter validation.
"""

import os
import tempfile

import pytest

from cdr_shell.config import (
    Config,
    Parameters,
    SolverSettings,
    OutputSettings,
    default_parameters,
    load_config,
    save_config,
    split_convection_field,
)
from cdr_shell.errors import ConfigurationError, ConvectionFieldError, UnsupportedDimensionError

from utilities import make_parameters


@pytest.fixture
def sample_toml_content():
    return """
[domain]
inner_radius = 1.0
outer_radius = 2.0
fe_order = 2
refinement_level = 3

[problem]
diffusion_coefficient = 1e-3
convection_field = "-y,x"
reaction_coefficient = 1e-4
forcing = "exp(-2*t)*exp(-40*(x - 1.5)^6)*exp(-40*y^6)"
time_dependent_forcing = true

[time]
start_time = 0.0
stop_time = 2.0
n_time_steps = 200
save_interval = 10

[output]
patch_level = 3
"""


@pytest.fixture
def temp_toml_file(sample_toml_content):
    with tempfile.NamedTemporaryFile(mode="w", suffix=".toml", delete=False) as f:
        f.write(sample_toml_content)
        filepath = f.name
    yield filepath
    os.unlink(filepath)


def test_load_config(temp_toml_file):
    """Test loading a TOML config file."""
    config = load_config(temp_toml_file)

    assert isinstance(config, Config)
    assert config.domain["fe_order"] == 2
    assert config.solver == {}

    params = Parameters.from_config(config)
    assert params.refinement_level == 3
    assert params.save_interval == 10
    assert params.time_step == pytest.approx(0.01)
    assert params.time_dependent_forcing is True

    assert SolverSettings.from_config(config) == SolverSettings()
    assert OutputSettings.from_config(config).patch_level == 3


def test_save_and_reload_config(tmp_path):
    params = default_parameters()
    config = params.to_config(SolverSettings(backend="scipy"), OutputSettings(prefix="hump"))
    path = tmp_path / "config.toml"
    save_config(config, path)

    reloaded = load_config(path)
    assert Parameters.from_config(reloaded) == params
    assert SolverSettings.from_config(reloaded).backend == "scipy"
    assert OutputSettings.from_config(reloaded).prefix == "hump"


def test_default_parameters():
    params = default_parameters()
    assert (params.inner_radius, params.outer_radius) == (1.0, 2.0)
    assert (params.fe_order, params.refinement_level) == (3, 2)
    assert params.n_time_steps == 200
    assert params.time_step == pytest.approx(0.01)


def test_unknown_parameter_is_rejected(temp_toml_file):
    config = load_config(temp_toml_file)
    config.problem["viscosity"] = 1.0
    with pytest.raises(ConfigurationError, match="viscosity"):
        Parameters.from_config(config)


def test_missing_parameter_is_rejected(temp_toml_file):
    config = load_config(temp_toml_file)
    del config.time["n_time_steps"]
    with pytest.raises(ConfigurationError):
        Parameters.from_config(config)


@pytest.mark.parametrize("overrides", [
    {"inner_radius": 2.0, "outer_radius": 1.0},
    {"diffusion_coefficient": 0.0},
    {"reaction_coefficient": -1.0},
    {"fe_order": 0},
    {"refinement_level": -1},
    {"stop_time": 0.0},
    {"n_time_steps": 0},
    {"save_interval": 0},
])
def test_invalid_parameters(overrides):
    with pytest.raises(ConfigurationError):
        make_parameters(**overrides)


def test_only_two_dimensions():
    with pytest.raises(UnsupportedDimensionError):
        make_parameters(dim=3)


def test_invalid_solver_settings():
    with pytest.raises(ConfigurationError):
        SolverSettings(backend="trilinos")
    with pytest.raises(ConfigurationError):
        SolverSettings(restart=0)
    with pytest.raises(ConfigurationError):
        OutputSettings(patch_level=0)


def test_split_convection_field():
    assert split_convection_field("-y,x") == ("-y", "x")
    assert split_convection_field(" max(x, y) , atan2(y, x) ") == ("max(x, y)", "atan2(y, x)")


@pytest.mark.parametrize("text", ["x", "x,y,1", "x,", ",y", ""])
def test_malformed_convection_field(text):
    with pytest.raises(ConvectionFieldError):
        split_convection_field(text)
    with pytest.raises(ConvectionFieldError):
        make_parameters(convection_field=text)
