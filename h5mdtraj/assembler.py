"""
Frame assembly
==============

With domain decomposition every process owns a changing subset of the
particles. Before a frame is written the local subsets are gathered on
rank 0 and merged into a single record ordered by particle id, so that
row ``i`` of every dataset always refers to the same particle.

The gather is a collective: every rank has to call
:meth:`FrameAssembler.assemble` for every frame. A rank that does not
take part stalls the run, as with any MPI collective.

`comm` is an :mod:`mpi4py` communicator (anything providing ``gather``,
``bcast`` and ``Get_rank`` with the same semantics works). Without one
the assembler runs in single-process mode.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import numpy as np
from MDAnalysis.exceptions import NoDataError

from .exceptions import TrajectoryLogicError

logger = logging.getLogger(__name__)

#: per-particle shape of every field
FIELD_SHAPES = {
    "positions": (3,),
    "velocities": (3,),
    "forces": (3,),
    "images": (3,),
    "masses": (),
    "species": (),
}


@dataclass
class LocalParticles:
    """Particles owned by this process at the current step.

    Every array holds one row per entry of `ids`. Fields that are not
    tracked may be left as ``None``.
    """

    ids: np.ndarray
    positions: Optional[np.ndarray] = None
    velocities: Optional[np.ndarray] = None
    forces: Optional[np.ndarray] = None
    images: Optional[np.ndarray] = None
    masses: Optional[np.ndarray] = None
    species: Optional[np.ndarray] = None

    def __post_init__(self):
        self.ids = np.asarray(self.ids)
        if self.ids.size == 0:
            # a rank may own no particles at all
            self.ids = np.empty(0, dtype=np.int64)
        if self.ids.ndim != 1 or not np.issubdtype(
            self.ids.dtype, np.integer
        ):
            raise ValueError(
                "Particle ids must be a one-dimensional integer array"
            )
        n = len(self.ids)
        for field, shape in FIELD_SHAPES.items():
            data = getattr(self, field)
            if data is None:
                continue
            data = np.asarray(data)
            if data.size == 0 and n == 0:
                data = data.reshape((0, *shape))
            if data.shape != (n, *shape):
                raise ValueError(
                    f"'{field}' has shape {data.shape}, expected "
                    f"{(n, *shape)} for {n} local particles"
                )
            setattr(self, field, data)

    def has(self, field):
        return getattr(self, field) is not None

    def contribution(self, fields, optional=()):
        """Return the arrays of `fields` together with the ids.

        Fields listed in `optional` are added when present. A process
        owning no particles may leave any field unset.
        """
        contrib = {"ids": self.ids}
        for field in fields:
            if self.has(field):
                contrib[field] = getattr(self, field)
            elif len(self.ids):
                raise NoDataError(
                    f"Requested '{field}' but the local particles "
                    "do not carry it"
                )
        for field in optional:
            if self.has(field):
                contrib[field] = getattr(self, field)
        return contrib


def merge_contributions(contributions, fields, n_particles, optional=()):
    """Merge per-process contributions into one record ordered by id.

    Parameters
    ----------
    contributions : list of dict
        one dict per process, mapping ``"ids"`` and every entry of
        `fields` to arrays
    fields : sequence of str
        fields to merge
    n_particles : int
        number of particles in the whole simulation
    optional : sequence of str (optional)
        fields merged only when some process contributes them

    Returns
    -------
    dict
        ``"ids"`` sorted ascending and every merged field in the same
        order

    Raises
    ------
    TrajectoryLogicError
        when a process owning particles lacks a merged field, an id is
        owned twice or the total number of particles is not `n_particles`
    """
    merged = list(fields) + [
        f for f in optional if any(f in c for c in contributions)
    ]
    for rank, contrib in enumerate(contributions):
        missing = [f for f in merged if f not in contrib]
        if missing and len(contrib["ids"]):
            raise TrajectoryLogicError(
                f"Rank {rank} did not contribute {missing}"
            )

    ids = np.concatenate([np.asarray(c["ids"]) for c in contributions])
    order = np.argsort(ids, kind="stable")
    ids = ids[order]

    duplicated = ids[1:][ids[1:] == ids[:-1]]
    if duplicated.size:
        raise TrajectoryLogicError(
            f"Particles {np.unique(duplicated).tolist()} are owned by "
            "more than one process"
        )
    if ids.size != n_particles:
        raise TrajectoryLogicError(
            f"Frame holds {ids.size} particles, expected {n_particles}"
        )

    record = {"ids": ids}
    for field in merged:
        # processes without particles add no rows
        record[field] = np.concatenate(
            [c[field] for c in contributions if field in c]
        )[order]
    return record


class FrameAssembler:
    """Gathers the locally owned particles of every rank into one
    ordered record.

    Parameters
    ----------
    n_particles : int
        number of particles in the whole simulation
    comm : mpi4py.MPI.Comm (optional)
        communicator of the cooperating processes
    """

    def __init__(self, n_particles, comm=None):
        self.n_particles = n_particles
        self.comm = comm
        self.rank = 0 if comm is None else comm.Get_rank()
        self._ids = None

    @property
    def is_root(self):
        return self.rank == 0

    def assemble(self, local, fields, optional=()):
        """Collective: merge `fields` of every rank's `local` particles.

        Fields in `optional` are merged when any rank owning particles
        carries them. Returns the merged record on rank 0 and ``None``
        on the other ranks. A rank lacking a requested field raises
        :exc:`~MDAnalysis.exceptions.NoDataError` and a protocol
        violation :exc:`~h5mdtraj.exceptions.TrajectoryLogicError`, on
        every rank.
        """
        if self.comm is None:
            contributions = [local.contribution(fields, optional)]
        else:
            try:
                contrib = local.contribution(fields, optional)
            except NoDataError as err:
                # still join the gather so rank 0 can report it
                contrib = err
            contributions = self.comm.gather(contrib, root=0)

        record = None
        error = None
        if self.is_root:
            error = self._missing_data(contributions)
            if error is None:
                try:
                    record = merge_contributions(
                        contributions, fields, self.n_particles, optional
                    )
                    self._check_identity(record["ids"])
                except TrajectoryLogicError as err:
                    error = (TrajectoryLogicError, str(err))

        if self.comm is not None:
            error = self.comm.bcast(error, root=0)
        if error is not None:
            exc_type, message = error
            raise exc_type(message)
        return record

    @staticmethod
    def _missing_data(contributions):
        for rank, contrib in enumerate(contributions):
            if isinstance(contrib, NoDataError):
                return (NoDataError, f"Rank {rank}: {contrib}")
        return None

    def _check_identity(self, ids):
        if self._ids is None:
            self._ids = ids
        elif not np.array_equal(ids, self._ids):
            raise TrajectoryLogicError(
                "The set of particle ids changed between frames, which "
                "is not supported"
            )
