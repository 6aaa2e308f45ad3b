"""
Layout validation
=================

Checks whether a container already has the fixed H5MD layout written by
:mod:`h5mdtraj`. Nothing here modifies the container.

Use :func:`validate` before reopening a file for appending::

    import h5mdtraj

    if h5mdtraj.validate("run.h5md"):
        store = h5mdtraj.TrajectoryStore("run.h5md", context)
"""

import logging

from .layout import (
    BOX_GROUP,
    OBSERVABLES_GROUP,
    PARTICLES_GROUP,
    REQUIRED_DATASETS,
    REQUIRED_GROUPS,
    SPECIES_DATASET,
    TIME_DEPENDENT_ELEMENTS,
)
from .utils import (
    H5MDElement,
    close_container,
    decode_attr,
    is_array,
    is_group,
    open_container,
)

logger = logging.getLogger(__name__)


def _check_element(group, n_particles, per_particle):
    try:
        h5md_elem = H5MDElement(group)
    except ValueError as err:
        return [str(err)]

    if h5md_elem.is_time_independent() or not h5md_elem.has_time:
        return [f"Element {group.name} must have time and step datasets"]

    if n_particles is not None and per_particle is not None:
        expected = (n_particles, *per_particle)
        if tuple(h5md_elem.value.shape[1:]) != expected:
            return [
                f"Element {group.name} stores frames of shape "
                f"{tuple(h5md_elem.value.shape[1:])}, expected {expected}"
            ]
    return []


def find_schema_violations(root, n_particles=None):
    """List every way `root` diverges from the fixed layout.

    Parameters
    ----------
    root : h5py.File or zarr.Group
        open root group
    n_particles : int (optional)
        if given, particle-axis extents must equal it

    Returns
    -------
    list of str
        one message per problem, empty if the layout is complete
    """
    problems = []
    for path in REQUIRED_GROUPS:
        if path not in root or not is_group(root[path]):
            problems.append(f"Missing group '{path}'")
    for path in REQUIRED_DATASETS:
        if path not in root or not is_array(root[path]):
            problems.append(f"Missing dataset '{path}'")
    if problems:
        return problems

    box = root[BOX_GROUP]
    for attr in ("dimension", "boundary"):
        if attr not in box.attrs:
            problems.append(f"Box group is missing the '{attr}' attribute")
    if "boundary" in box.attrs:
        boundary = decode_attr(box.attrs["boundary"])
        if len(boundary) != 3 or any(
            b not in ("periodic", "none") for b in boundary
        ):
            problems.append(f"Invalid box boundary {boundary}")
    if root[f"{BOX_GROUP}/edges"].shape != (3,):
        problems.append("Box edges must hold 3 values")

    particles = root[PARTICLES_GROUP]
    for elem, (per_particle, _, _) in TIME_DEPENDENT_ELEMENTS.items():
        problems.extend(
            _check_element(particles[elem], n_particles, per_particle)
        )

    species = root[SPECIES_DATASET]
    if len(species.shape) != 1:
        problems.append("Species dataset must be one-dimensional")
    elif n_particles is not None and species.shape[0] != n_particles:
        problems.append(
            f"Species dataset holds {species.shape[0]} particles, "
            f"expected {n_particles}"
        )

    if OBSERVABLES_GROUP in root:
        for obsv in root[OBSERVABLES_GROUP]:
            problems.extend(
                _check_element(root[OBSERVABLES_GROUP][obsv], None, None)
            )

    return problems


def validate(filename, storage_options=None):
    """Return whether the container at `filename` has the full layout.

    A container that does not exist or cannot be read is not valid.
    """
    try:
        root = open_container(filename, "r", storage_options=storage_options)
    except (OSError, ValueError) as err:
        logger.debug("cannot open '%s' for validation: %s", filename, err)
        return False

    try:
        problems = find_schema_violations(root)
    finally:
        close_container(root)

    for problem in problems:
        logger.debug("'%s': %s", filename, problem)
    return not problems
