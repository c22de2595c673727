"""
Runtime support: the communication context, logging and run directories.
"""

from .context import RunContext, abort_on_error
