"""

Example: Writing a trajectory from a simulation loop
^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^

Describe the system once with a :class:`StoreContext` and hand the
locally owned particles to the store whenever a frame is due::

    import h5mdtraj
    from h5mdtraj import LocalParticles, StoreContext, WriteSelection

    context = StoreContext(
        n_particles=1000,
        box=(10.0, 10.0, 10.0),
        timeunit="ps",
        lengthunit="nm",
    )
    with h5mdtraj.TrajectoryStore(
        "trajectory.h5md", context, script=open(__file__).read()
    ) as store:
        store.write_species(particles)
        for step in range(n_steps):
            integrate()
            if step % 100 == 0:
                store.write_frame(
                    WriteSelection.POSITION_VELOCITY, sim_time, step, particles
                )
                store.write_energy(
                    ["kinetic", "total"], energies, sim_time, step
                )

The file is an ordinary `H5MD <https://nongnu.org/h5md/>`_ file. Opening
an existing file appends to it as long as it has the layout written by
this package; otherwise :exc:`~h5mdtraj.exceptions.SchemaMismatchError`
is raised and the file is left alone.

Example: Zarr stores and cloud storage
^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^^

Paths ending in ``.zarrmd`` are written as Zarr groups with the same
layout. These can live on any protocol supported by ``fsspec``; pass
credentials through ``storage_options``::

    store = h5mdtraj.TrajectoryStore(
        "s3://sample-bucket/trajectory.zarrmd",
        context,
        storage_options={"anon": False},
    )

HDF5 files can only be written to local disk.

Example: Domain decomposition
^^^^^^^^^^^^^^^^^^^^^^^^^^^^^

With an :mod:`mpi4py` communicator every rank passes only the particles
it owns. All write methods are then collectives that every rank must
call for the same frame; rank 0 merges the contributions by particle id
and is the only process touching the file::

    from mpi4py import MPI

    store = h5mdtraj.TrajectoryStore(
        "trajectory.h5md", context, comm=MPI.COMM_WORLD
    )
    store.write_frame(WriteSelection.POSITION, sim_time, step, local_particles)

Classes
^^^^^^^

.. autoclass:: StoreContext
   :members:
.. autoclass:: WriteSelection
   :members:
.. autoclass:: TrajectoryStore
   :members:
"""

import logging
import warnings
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import IntEnum
from importlib.metadata import version
from typing import Any, Optional, Tuple

import h5py
import numpy as np
from MDAnalysis.due import due, Doi
from MDAnalysis.exceptions import NoDataError

from .assembler import FrameAssembler
from .bootstrap import create_observable, initialize_container, load_trios
from .element import check_frame, store_frame
from .exceptions import (
    FrameAppendError,
    SchemaMismatchError,
    TrajectoryLogicError,
)
from .layout import (
    BOX_GROUP,
    ELEMENT_FIELDS,
    SPECIES_DATASET,
    translate_unit,
)
from .schema import find_schema_violations
from .utils import (
    close_container,
    container_exists,
    get_backend,
    open_container,
)

logger = logging.getLogger(__name__)

# errors raised on rank 0 that the other ranks re-raise as they are
_SHARED_ERRORS = (
    SchemaMismatchError,
    TrajectoryLogicError,
    NoDataError,
    ValueError,
)

# appended along with positions when the particles carry them
_POSITION_EXTRAS = ("image", "mass")


def _rebuild_error(exc_type, message):
    """Recreate an error raised on rank 0 on another rank."""
    if issubclass(exc_type, _SHARED_ERRORS):
        try:
            return exc_type(message)
        except TypeError:
            # constructor needs more than a message, i.e. UnicodeDecodeError
            logger.debug("cannot rebuild %s from its message", exc_type)
    return FrameAppendError(
        f"Rank 0 failed with {exc_type.__name__}: {message}"
    )


@dataclass(frozen=True)
class StoreContext:
    """Immutable description of the simulated system.

    Parameters
    ----------
    n_particles : int
        number of particles in the whole simulation, fixed for the run
    box : sequence of float
        edge lengths of the rectangular simulation box
    periodic : sequence of bool (optional)
        periodic boundary condition per axis [``(True, True, True)``]
    dtype : numpy.dtype (optional)
        dtype of positions, velocities, forces and masses [``float64``]
    timeunit, lengthunit, velocityunit, forceunit, energyunit : str (optional)
        units in MDAnalysis notation, written as H5MD ``unit`` attributes
    author : str (optional)
        Name of the author of the file
    author_email : str (optional)
        Email of the author of the file
    creator : str (optional)
        Software that wrote the file [``h5mdtraj``]
    creator_version : str (optional)
        Version of software that wrote the file

    Raises
    ------
    ValueError
        when ``n_particles`` is not positive, the box does not have three
        edges, a periodic edge is not positive or a unit is not
        recognized by MDAnalysis
    """

    n_particles: int
    box: Tuple[float, float, float]
    periodic: Tuple[bool, bool, bool] = (True, True, True)
    dtype: Any = np.float64
    timeunit: Optional[str] = None
    lengthunit: Optional[str] = None
    velocityunit: Optional[str] = None
    forceunit: Optional[str] = None
    energyunit: Optional[str] = None
    author: str = "N/A"
    author_email: Optional[str] = None
    creator: str = "h5mdtraj"
    creator_version: str = field(default_factory=lambda: version("h5mdtraj"))

    def __post_init__(self):
        if self.n_particles <= 0:
            raise ValueError("StoreContext: no particles in the simulation")
        box = tuple(float(edge) for edge in self.box)
        periodic = tuple(bool(p) for p in self.periodic)
        if len(box) != 3 or len(periodic) != 3:
            raise ValueError(
                "StoreContext: box and periodic must have three entries"
            )
        if any(p and edge <= 0 for p, edge in zip(periodic, box)):
            raise ValueError(
                f"StoreContext: periodic box edges must be positive, got {box}"
            )
        object.__setattr__(self, "box", box)
        object.__setattr__(self, "periodic", periodic)
        object.__setattr__(self, "dtype", np.dtype(self.dtype))
        for kind in ("time", "length", "velocity", "force", "energy"):
            translate_unit(kind, self.unit_for(kind))

    def unit_for(self, kind):
        return getattr(self, f"{kind}unit")


class WriteSelection(IntEnum):
    """Quantities written by :meth:`TrajectoryStore.write_frame`.

    Each digit of the code switches one quantity on, in the order
    position, velocity, force.
    """

    POSITION = 100
    POSITION_VELOCITY = 110
    POSITION_VELOCITY_FORCE = 111
    POSITION_FORCE = 101
    VELOCITY = 10
    VELOCITY_FORCE = 11
    FORCE = 1

    @classmethod
    def parse(cls, code):
        if isinstance(code, bool) or not isinstance(code, (int, np.integer)):
            raise ValueError(
                f"Undefined write selection {code!r}, codes are integers"
            )
        try:
            return cls(code)
        except ValueError:
            raise ValueError(
                f"Undefined write selection {code!r}. Allowed codes are "
                f"{[int(sel) for sel in cls]}"
            ) from None

    @property
    def elements(self):
        return tuple(
            elem
            for elem, digit in zip(
                ("position", "velocity", "force"), f"{int(self):03d}"
            )
            if digit == "1"
        )


class TrajectoryStore:
    """
    Append-only H5MD trajectory store.

    Parameters
    ----------
    filename : str
        path or URL of the container. ``.h5md``, ``.h5`` and ``.hdf5``
        are written with h5py, ``.zarrmd`` and ``.zarr`` with zarr.
    context : StoreContext
        particle count, box geometry, units and authorship
    script : str (optional)
        provenance text, i.e. the simulation script, stored once in a
        new container
    comm : mpi4py.MPI.Comm (optional)
        communicator of the cooperating processes. Without one the store
        runs in single-process mode.
    storage_options : dict (optional)
        options to pass to the storage backend via ``fsspec``

    Raises
    ------
    ValueError
        when the file extension or protocol is not supported
    SchemaMismatchError
        when `filename` exists but does not have the required layout
    OSError
        when the container cannot be created or opened
    """

    @due.dcite(
        Doi("10.1016/j.cpc.2014.01.018"),
        description="Specifications of the H5MD standard",
        path=__name__,
        version="1.1",
    )
    def __init__(
        self,
        filename,
        context,
        script="",
        comm=None,
        storage_options=None,
    ):
        self._file = None
        self._elements = dict()

        self.filename = filename
        self.context = context
        self.storage_options = storage_options
        self.comm = comm
        self.rank = 0 if comm is None else comm.Get_rank()
        self._assembler = FrameAssembler(context.n_particles, comm=comm)

        self._species_written = self._collective(self._open_file, script)

    @property
    def is_root(self):
        return self.rank == 0

    def _collective(self, func, *args):
        """Run `func` on rank 0 and share its result or failure with all
        ranks."""
        if self.comm is None:
            return func(*args)

        result = None
        failure = None
        if self.is_root:
            try:
                result = func(*args)
            except Exception as err:
                failure = err
        error = (
            None
            if failure is None
            else (type(failure), str(failure))
        )
        result, error = self.comm.bcast((result, error), root=0)
        if failure is not None:
            raise failure
        if error is not None:
            raise _rebuild_error(*error)
        return result

    def _open_file(self, script):
        """Create or reopen the container. Returns whether the species
        have been written already."""
        backend = get_backend(self.filename)

        if not container_exists(self.filename, self.storage_options):
            self._file = open_container(
                self.filename, "w-", storage_options=self.storage_options
            )
            self._elements = initialize_container(
                self._file, self.context, script
            )
            logger.info(
                "created H5MD container '%s' for %d particles",
                self.filename,
                self.context.n_particles,
            )
            return False

        if backend == "hdf5" and not h5py.is_hdf5(self.filename):
            raise SchemaMismatchError(
                f"{self.filename} is not an H5MD container"
            )
        try:
            root = open_container(
                self.filename, "r+", storage_options=self.storage_options
            )
        except ValueError as err:
            # zarr refuses a path that holds no group
            raise SchemaMismatchError(
                f"{self.filename} is not an H5MD container"
            ) from err

        problems = find_schema_violations(
            root, n_particles=self.context.n_particles
        )
        if problems:
            close_container(root)
            raise SchemaMismatchError(
                f"{self.filename} does not have a valid H5MD structure: "
                + "; ".join(problems)
            )

        self._file = root
        self._elements = load_trios(root)
        if not np.allclose(root[f"{BOX_GROUP}/edges"][:], self.context.box):
            warnings.warn(
                f"Box edges stored in {self.filename} differ from the "
                "context, the stored edges are kept."
            )
        logger.info(
            "reopened H5MD container '%s' with %d position frames",
            self.filename,
            self._elements["position"].n_frames,
        )
        return bool(root[SPECIES_DATASET].attrs.get("written", False))

    def write_frame(self, selection, time, step, particles):
        """Append one frame of the selected quantities.

        Every selected quantity gets an independent append, so the
        quantities may hold different numbers of frames. With positions
        selected, periodic images and masses are appended as well when
        the particles carry them. Under MPI a rank owning no particles may
        leave any field unset.

        Parameters
        ----------
        selection : WriteSelection or int
            which of position, velocity and force to write
        time : float
            current simulation time
        step : int
            current integration step
        particles : LocalParticles
            particles owned by this process

        Raises
        ------
        ValueError
            when `selection` is not a defined code, or `step` or `time`
            decrease
        NoDataError
            when a selected quantity is missing from `particles`
        TrajectoryLogicError
            when the merged particles do not cover every particle
            exactly once
        FrameAppendError
            when the storage backend fails during the append
        """
        selection = WriteSelection.parse(selection)
        elements = list(selection.elements)
        fields = [ELEMENT_FIELDS[elem] for elem in elements]
        optional = []
        if "position" in elements:
            optional = [ELEMENT_FIELDS[elem] for elem in _POSITION_EXTRAS]

        record = self._assembler.assemble(particles, fields, optional)
        self._collective(self._append_record, elements, record, time, step)

    def _append_record(self, elements, record, time, step):
        elements = elements + [
            elem
            for elem in _POSITION_EXTRAS
            if ELEMENT_FIELDS[elem] in record
        ]
        checked = [
            check_frame(
                self._elements[elem],
                record[ELEMENT_FIELDS[elem]],
                time,
                step,
                name=elem,
            )
            for elem in elements
        ]
        for elem, values in zip(elements, checked):
            store_frame(self._elements[elem], values, time, step, name=elem)

    def write_species(self, particles):
        """Write the species of every particle. Can only be done once.

        Raises
        ------
        TrajectoryLogicError
            when the species have already been written to this container
        NoDataError
            when `particles` has no species
        """
        if self._species_written:
            raise TrajectoryLogicError(
                f"Species have already been written to {self.filename}"
            )
        record = self._assembler.assemble(particles, ["species"])
        self._collective(self._write_species_record, record)
        self._species_written = True

    def _write_species_record(self, record):
        species = self._file[SPECIES_DATASET]
        species[:] = record["species"]
        species.attrs["written"] = True
        logger.debug("wrote species of %d particles", record["ids"].size)

    def write_energy(self, names, values, time, step):
        """Append one frame to each named scalar observable.

        Observables are created under ``parameters/observables/<name>``
        the first time their name is used.

        Parameters
        ----------
        names : sequence of str
            distinct observable names, i.e. ``["kinetic", "total"]``
        values : mapping or sequence of float
            values by name, or in the order of `names`
        time : float
            current simulation time
        step : int
            current integration step
        """
        names = list(names)
        if not names:
            raise ValueError("No observable names given")
        if len(set(names)) != len(names):
            raise ValueError(f"Observable names must be distinct: {names}")
        for name in names:
            if not isinstance(name, str) or not name or "/" in name:
                raise ValueError(f"Invalid observable name {name!r}")

        if isinstance(values, Mapping):
            missing = [name for name in names if name not in values]
            if missing:
                raise ValueError(f"No values given for observables {missing}")
            values = [values[name] for name in names]
        else:
            values = list(values)
            if len(values) != len(names):
                raise ValueError(
                    f"Got {len(values)} values for {len(names)} observables"
                )
        values = [float(v) for v in values]

        self._collective(self._append_observables, names, values, time, step)

    def _append_observables(self, names, values, time, step):
        keys = [f"observables/{name}" for name in names]
        for key, value in zip(keys, values):
            if key in self._elements:
                check_frame(self._elements[key], value, time, step, name=key)
        for name, key, value in zip(names, keys, values):
            if key not in self._elements:
                self._elements[key] = create_observable(
                    self._file, name, self.context
                )
            store_frame(self._elements[key], value, time, step, name=key)

    def _require_root(self):
        if not self.is_root:
            raise TrajectoryLogicError("Only rank 0 holds the container")
        if self._file is None:
            raise TrajectoryLogicError(f"{self.filename} is closed")

    def n_frames(self, name):
        """Number of frames written to element `name`, i.e. ``"position"``
        or ``"observables/kinetic"``. Rank 0 only."""
        self._require_root()
        return self._elements[name].n_frames

    @property
    def observables(self):
        """Names of the observables in the container. Rank 0 only."""
        self._require_root()
        return sorted(
            key.split("/", 1)[1]
            for key in self._elements
            if key.startswith("observables/")
        )

    @property
    def species_written(self):
        return self._species_written

    def close(self):
        if self._file is not None:
            if not self._species_written:
                warnings.warn(
                    f"Closing {self.filename} without species having been "
                    "written.",
                    RuntimeWarning,
                )
            close_container(self._file)
            self._file = None
            self._elements = dict()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.close()
