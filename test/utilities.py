from cdr_shell.config import Parameters


def make_parameters(**overrides) -> Parameters:
    """A short, coarse run of the rotating field."""
    values = dict(
        inner_radius=1.0,
        outer_radius=2.0,
        diffusion_coefficient=1.0e-3,
        convection_field="-y,x",
        reaction_coefficient=1.0e-4,
        forcing="0",
        time_dependent_forcing=True,
        fe_order=1,
        refinement_level=1,
        start_time=0.0,
        stop_time=0.05,
        n_time_steps=5,
        save_interval=1,
    )
    values.update(overrides)
    return Parameters(**values)
