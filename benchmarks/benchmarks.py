import os
import tempfile

import numpy as np

from h5mdtraj import LocalParticles, StoreContext, TrajectoryStore, WriteSelection


"""
To run, use:

    asv run -q -v -e <commit> > bm.log &
"""


class TrajectoryStoreWriteTime(object):
    """Benchmarks for appending frames to h5md and zarrmd containers."""

    params = (
        [".h5md", ".zarrmd"],
        [100, 10000],
        [WriteSelection.POSITION, WriteSelection.POSITION_VELOCITY_FORCE],
    )
    param_names = ["ext", "n_particles", "selection"]

    def setup(self, ext, n_particles, selection):
        self.tmpdir = tempfile.TemporaryDirectory()
        self.filename = os.path.join(self.tmpdir.name, "bench" + ext)
        rng = np.random.default_rng(0)
        self.particles = LocalParticles(
            ids=np.arange(n_particles),
            positions=rng.uniform(0, 10, size=(n_particles, 3)),
            velocities=rng.normal(size=(n_particles, 3)),
            forces=rng.normal(size=(n_particles, 3)),
            species=np.zeros(n_particles, dtype=np.int32),
        )
        self.context = StoreContext(n_particles=n_particles, box=(10, 10, 10))

    def teardown(self, ext, n_particles, selection):
        self.tmpdir.cleanup()

    def time_write_100_frames(self, ext, n_particles, selection):
        with TrajectoryStore(self.filename, self.context) as store:
            store.write_species(self.particles)
            for step in range(100):
                store.write_frame(selection, 0.01 * step, step, self.particles)
                store.write_energy(["total"], [float(step)], 0.01 * step, step)
