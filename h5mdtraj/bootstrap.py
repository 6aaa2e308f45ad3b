"""
Container creation
==================

:func:`initialize_container` lays out the complete H5MD tree in a new,
empty container. :func:`load_trios` collects the dataset handles of a
container that already passed :func:`~h5mdtraj.schema.find_schema_violations`.
"""

import logging

import numpy as np

from .element import DatasetTrio
from .layout import (
    BOX_GROUP,
    H5MD_VERSION,
    OBSERVABLES_GROUP,
    OBSERVABLE_DTYPE,
    PARTICLES_GROUP,
    SCRIPT_DATASET,
    SPECIES_DATASET,
    SPECIES_DTYPE,
    SPECIES_FILL,
    STEP_DTYPE,
    TIME_DEPENDENT_ELEMENTS,
    TIME_DTYPE,
    VMD_STRUCTURE_GROUP,
    FILES_GROUP,
    translate_unit,
)
from .utils import H5MDElement, frames_per_chunk, is_zarr

logger = logging.getLogger(__name__)


def _create_extensible(group, name, frame_shape, dtype):
    """Create a dataset with zero frames and an unbounded frame axis."""
    chunks = (frames_per_chunk(frame_shape, dtype), *frame_shape)
    shape = (0, *frame_shape)
    if is_zarr(group):
        # zarr arrays can always be resized
        return group.create_dataset(
            name, shape=shape, chunks=chunks, dtype=dtype
        )
    return group.create_dataset(
        name,
        shape=shape,
        maxshape=(None, *frame_shape),
        chunks=chunks,
        dtype=dtype,
    )


def create_trio(group, frame_shape, dtype, value_unit=None, time_unit=None):
    """Create the ``value``, ``time`` and ``step`` datasets of an
    element in `group`.

    Parameters
    ----------
    group : h5py.Group or zarr.Group
        element group, must not contain any of the three datasets yet
    frame_shape : tuple
        shape of the value of one frame, i.e. ``(n_particles, 3)``
    dtype : numpy.dtype
        dtype of the value dataset
    value_unit, time_unit : str (optional)
        H5MD unit strings stored in the ``unit`` attributes
    """
    value = _create_extensible(group, "value", tuple(frame_shape), dtype)
    time = _create_extensible(group, "time", (), TIME_DTYPE)
    step = _create_extensible(group, "step", (), STEP_DTYPE)
    if value_unit is not None:
        value.attrs["unit"] = value_unit
    if time_unit is not None:
        time.attrs["unit"] = time_unit
    logger.debug("created element '%s' with frame shape %s",
                 group.name, tuple(frame_shape))
    return DatasetTrio(value, time, step)


def _write_metadata(root, context):
    # fill in H5MD metadata from the context
    h5md = root.require_group("h5md")
    h5md.attrs["version"] = list(H5MD_VERSION)
    author = h5md.require_group("author")
    author.attrs["name"] = context.author
    if context.author_email is not None:
        author.attrs["email"] = context.author_email
    creator = h5md.require_group("creator")
    creator.attrs["name"] = context.creator
    creator.attrs["version"] = context.creator_version


def _write_box(root, context):
    box = root.require_group(BOX_GROUP)
    box.attrs["dimension"] = 3
    box.attrs["boundary"] = [
        "periodic" if periodic else "none" for periodic in context.periodic
    ]
    edges = box.create_dataset(
        "edges", data=np.asarray(context.box, dtype=context.dtype)
    )
    length_unit = translate_unit("length", context.lengthunit)
    if length_unit is not None:
        edges.attrs["unit"] = length_unit


def _write_script(root, script):
    files = root.require_group(FILES_GROUP)
    # fixed-size byte string, a scalar dataset
    data = np.array(script.encode("utf-8"), dtype=np.bytes_)
    files.create_dataset(SCRIPT_DATASET.rsplit("/", 1)[1], data=data)


def initialize_container(root, context, script=""):
    """Create every group and dataset of the fixed layout in `root`.

    Parameters
    ----------
    root : h5py.File or zarr.Group
        empty root group opened for writing
    context : StoreContext
        particle count, box geometry, units and authorship
    script : str
        provenance text stored once in ``parameters/files/script``

    Returns
    -------
    dict
        mapping of element name to :class:`~h5mdtraj.element.DatasetTrio`
    """
    _write_metadata(root, context)
    _write_box(root, context)

    time_unit = translate_unit("time", context.timeunit)
    particles = root.require_group(PARTICLES_GROUP)
    elements = dict()
    for elem, (per_particle, dtype, unit_kind) in TIME_DEPENDENT_ELEMENTS.items():
        value_unit = (
            translate_unit(unit_kind, context.unit_for(unit_kind))
            if unit_kind is not None
            else None
        )
        elements[elem] = create_trio(
            particles.require_group(elem),
            (context.n_particles, *per_particle),
            context.dtype if dtype is None else dtype,
            value_unit=value_unit,
            time_unit=time_unit,
        )

    species = particles.create_dataset(
        SPECIES_DATASET.rsplit("/", 1)[1],
        data=np.full(context.n_particles, SPECIES_FILL, dtype=SPECIES_DTYPE),
    )
    species.attrs["written"] = False

    root.require_group(VMD_STRUCTURE_GROUP)
    _write_script(root, script)
    return elements


def create_observable(root, name, context):
    """Create the trio of a scalar observable under
    ``parameters/observables/<name>``."""
    group = root.require_group(OBSERVABLES_GROUP).require_group(name)
    return create_trio(
        group,
        (),
        OBSERVABLE_DTYPE,
        value_unit=translate_unit("energy", context.energyunit),
        time_unit=translate_unit("time", context.timeunit),
    )


def load_trios(root):
    """Return the element table of an existing, validated container."""
    elements = dict()
    particles = root[PARTICLES_GROUP]
    for elem in TIME_DEPENDENT_ELEMENTS:
        h5md_elem = H5MDElement(particles[elem])
        elements[elem] = DatasetTrio(
            h5md_elem.value, h5md_elem.time, h5md_elem.step
        )

    if OBSERVABLES_GROUP in root:
        for obsv in root[OBSERVABLES_GROUP]:
            h5md_elem = H5MDElement(root[OBSERVABLES_GROUP][obsv])
            elements[f"observables/{obsv}"] = DatasetTrio(
                h5md_elem.value, h5md_elem.time, h5md_elem.step
            )
    return elements
