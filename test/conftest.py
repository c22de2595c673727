import pytest
from mpi4py import MPI

from cdr_shell.domain import FE_Q, make_mesh, number_dofs
from cdr_shell.runtime import RunContext


@pytest.fixture
def serial_context():
    with RunContext(MPI.COMM_SELF) as context:
        yield context


@pytest.fixture
def world_context():
    with RunContext(MPI.COMM_WORLD) as context:
        yield context


@pytest.fixture
def small_mesh():
    return make_mesh(1.0, 2.0, 1)


@pytest.fixture
def small_dofs(small_mesh):
    return number_dofs(small_mesh, FE_Q(2))
