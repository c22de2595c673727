"""
Transient convection-diffusion-reaction solver on a distributed 2D shell.
"""
