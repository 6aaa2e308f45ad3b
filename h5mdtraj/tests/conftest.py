"""
Global pytest fixtures
"""

# Use this file if you need to share any fixtures
# across multiple modules
# More information at
# https://docs.pytest.org/en/stable/how-to/fixtures.html#scope-sharing-fixtures-across-classes-modules-packages-or-session

import pytest

from h5mdtraj import StoreContext


N_PARTICLES = 10


@pytest.fixture(params=[".h5md", ".zarrmd"])
def ext(request):
    """Every test using this fixture runs once per storage backend."""
    return request.param


@pytest.fixture()
def context():
    return StoreContext(
        n_particles=N_PARTICLES,
        box=(10.0, 10.0, 10.0),
        timeunit="ps",
        lengthunit="Angstrom",
        velocityunit="Angstrom/ps",
        forceunit="kJ/(mol*Angstrom)",
        energyunit="kJ/mol",
        author="John Doe",
    )


@pytest.fixture()
def outfile(tmpdir, ext):
    return str(tmpdir.join("trajectory" + ext))
