"""Particle factories and a threaded communicator for testing."""

import threading

import numpy as np

from h5mdtraj import LocalParticles
from h5mdtraj.utils import open_container


# Helper Functions
def make_particles(n_particles, seed=0, images=False, masses=False):
    """All particles of a synthetic system, ids ``0..n_particles-1``."""
    rng = np.random.default_rng(seed)
    return LocalParticles(
        ids=np.arange(n_particles),
        positions=rng.uniform(0, 10, size=(n_particles, 3)),
        velocities=rng.normal(size=(n_particles, 3)),
        forces=rng.normal(size=(n_particles, 3)),
        images=(
            rng.integers(-2, 3, size=(n_particles, 3)).astype(np.int32)
            if images
            else None
        ),
        masses=rng.uniform(1, 2, size=n_particles) if masses else None,
        species=np.arange(n_particles, dtype=np.int32) % 3,
    )


def split_particles(particles, owner, n_ranks=None):
    """Split `particles` by the rank in `owner` (one entry per particle)
    and shuffle each part, as a domain decomposition would. Ranks that
    own nothing get an empty part."""
    n_ranks = int(owner.max()) + 1 if n_ranks is None else n_ranks
    parts = []
    rng = np.random.default_rng(42)
    for rank in range(n_ranks):
        idx = np.flatnonzero(owner == rank)
        idx = idx[rng.permutation(idx.size)]
        parts.append(
            LocalParticles(
                ids=particles.ids[idx],
                **{
                    field: getattr(particles, field)[idx]
                    for field in (
                        "positions",
                        "velocities",
                        "forces",
                        "images",
                        "masses",
                        "species",
                    )
                    if particles.has(field)
                },
            )
        )
    return parts


def read_container(filename):
    return open_container(filename, "r")


class ThreadComm:
    """The part of the mpi4py communicator API used by h5mdtraj,
    with ranks running as threads of a :class:`ThreadWorld`."""

    def __init__(self, world, rank):
        self.world = world
        self.rank = rank

    def Get_rank(self):
        return self.rank

    def Get_size(self):
        return self.world.size

    def gather(self, obj, root=0):
        world = self.world
        world.slots[self.rank] = obj
        world.barrier.wait()
        result = list(world.slots) if self.rank == root else None
        world.barrier.wait()
        return result

    def bcast(self, obj, root=0):
        world = self.world
        if self.rank == root:
            world.slots[root] = obj
        world.barrier.wait()
        result = world.slots[root]
        world.barrier.wait()
        return result


class ThreadWorld:
    def __init__(self, size, timeout=30):
        self.size = size
        self.barrier = threading.Barrier(size, timeout=timeout)
        self.slots = [None] * size

    def run(self, func):
        """Call ``func(comm)`` on every rank. Returns the results and
        the raised exceptions, one entry per rank."""
        results = [None] * self.size
        errors = [None] * self.size

        def target(rank):
            try:
                results[rank] = func(ThreadComm(self, rank))
            except Exception as err:
                errors[rank] = err

        threads = [
            threading.Thread(target=target, args=(rank,))
            for rank in range(self.size)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()
        return results, errors
