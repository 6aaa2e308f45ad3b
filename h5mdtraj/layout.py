"""
Fixed H5MD layout
=================

Every container written by :mod:`h5mdtraj` has the same tree::

    /h5md                                 version, author, creator
    /particles/atoms/box                  dimension, boundary, edges
    /particles/atoms/{mass,position,velocity,force,image}/{value,time,step}
    /particles/atoms/species
    /parameters/vmd_structure
    /parameters/files/script
    /parameters/observables/<name>/{value,time,step}

Only the observables are created on demand. See the
`H5MD documentation <https://nongnu.org/h5md/>`_ for the meaning of
the groups.
"""

import numpy as np
from MDAnalysis import units

#: currently written version of the file format
H5MD_VERSION = (1, 1)

PARTICLES_GROUP = "particles/atoms"
BOX_GROUP = f"{PARTICLES_GROUP}/box"
SPECIES_DATASET = f"{PARTICLES_GROUP}/species"
PARAMETERS_GROUP = "parameters"
VMD_STRUCTURE_GROUP = f"{PARAMETERS_GROUP}/vmd_structure"
FILES_GROUP = f"{PARAMETERS_GROUP}/files"
SCRIPT_DATASET = f"{FILES_GROUP}/script"
OBSERVABLES_GROUP = f"{PARAMETERS_GROUP}/observables"

#: species entries that have not been written yet
SPECIES_FILL = -1

#: name -> (per-particle shape, dtype or None for the context dtype,
#: unit kind or None)
TIME_DEPENDENT_ELEMENTS = {
    "mass": ((), None, None),
    "position": ((3,), None, "length"),
    "velocity": ((3,), None, "velocity"),
    "force": ((3,), None, "force"),
    "image": ((3,), np.int32, None),
}

#: attribute of :class:`~h5mdtraj.assembler.LocalParticles` that feeds
#: each element
ELEMENT_FIELDS = {
    "mass": "masses",
    "position": "positions",
    "velocity": "velocities",
    "force": "forces",
    "image": "images",
    "species": "species",
}

REQUIRED_GROUPS = [
    "h5md",
    "h5md/author",
    "h5md/creator",
    "particles",
    PARTICLES_GROUP,
    BOX_GROUP,
    PARAMETERS_GROUP,
    VMD_STRUCTURE_GROUP,
    FILES_GROUP,
] + [f"{PARTICLES_GROUP}/{elem}" for elem in TIME_DEPENDENT_ELEMENTS]

REQUIRED_DATASETS = [
    f"{BOX_GROUP}/edges",
    SPECIES_DATASET,
    SCRIPT_DATASET,
] + [
    f"{PARTICLES_GROUP}/{elem}/{dset}"
    for elem in TIME_DEPENDENT_ELEMENTS
    for dset in ("value", "time", "step")
]

TIME_DTYPE = np.float64
STEP_DTYPE = np.int64
SPECIES_DTYPE = np.int32
OBSERVABLE_DTYPE = np.float64

# MDAnalysis names its velocity unit type "speed"
_MDA_UNIT_TYPES = {
    "time": "time",
    "length": "length",
    "velocity": "speed",
    "force": "force",
    "energy": "energy",
}

# This dictionary is used to translate MDAnalysis units to H5MD units.
# (https://nongnu.org/h5md/modules/units.html)
_unit_translation_dict = {
    "time": {
        "ps": "ps",
        "fs": "fs",
        "ns": "ns",
        "second": "s",
        "sec": "s",
        "s": "s",
        "AKMA": "AKMA",
    },
    "length": {
        "Angstrom": "Angstrom",
        "angstrom": "Angstrom",
        "A": "Angstrom",
        "nm": "nm",
        "pm": "pm",
        "fm": "fm",
    },
    "velocity": {
        "Angstrom/ps": "Angstrom ps-1",
        "A/ps": "Angstrom ps-1",
        "Angstrom/fs": "Angstrom fs-1",
        "A/fs": "Angstrom fs-1",
        "Angstrom/AKMA": "Angstrom AKMA-1",
        "A/AKMA": "Angstrom AKMA-1",
        "nm/ps": "nm ps-1",
        "nm/ns": "nm ns-1",
        "pm/ps": "pm ps-1",
        "m/s": "m s-1",
    },
    "force": {
        "kJ/(mol*Angstrom)": "kJ mol-1 Angstrom-1",
        "kJ/(mol*nm)": "kJ mol-1 nm-1",
        "Newton": "Newton",
        "N": "N",
        "J/m": "J m-1",
        "kcal/(mol*Angstrom)": "kcal mol-1 Angstrom-1",
        "kcal/(mol*A)": "kcal mol-1 Angstrom-1",
    },
    "energy": {
        "kJ/mol": "kJ mol-1",
        "kcal/mol": "kcal mol-1",
        "J": "J",
        "eV": "eV",
    },
}


def translate_unit(kind, unit):
    """Translate an MDAnalysis unit name of type `kind` to H5MD notation.

    Returns ``None`` if `unit` is ``None``.

    Raises
    ------
    ValueError
        when MDAnalysis does not know `unit` as a unit of type `kind`
        or it has no H5MD spelling
    """
    if unit is None:
        return None
    allowed = _unit_translation_dict[kind]
    if (
        units.unit_types.get(unit) != _MDA_UNIT_TYPES[kind]
        or unit not in allowed
    ):
        raise ValueError(
            f"{unit} is not a {kind} unit recognized by"
            f" MDAnalysis. Allowed units are: {list(allowed.keys())}"
        )
    return allowed[unit]
