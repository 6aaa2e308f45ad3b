"""
h5mdtraj
An append-only H5MD trajectory store for particle simulations, written with h5py or Zarr
"""

from importlib.metadata import version
from .H5MD import StoreContext, TrajectoryStore, WriteSelection
from .assembler import FrameAssembler, LocalParticles, merge_contributions
from .exceptions import (
    FrameAppendError,
    SchemaMismatchError,
    TrajectoryLogicError,
)
from .schema import validate


__version__ = version("h5mdtraj")
