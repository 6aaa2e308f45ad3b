"""Exceptions raised by the trajectory store."""


class SchemaMismatchError(IOError):
    """An existing container does not have the required H5MD layout.

    The container is left untouched when this is raised.
    """


class TrajectoryLogicError(RuntimeError):
    """The caller broke a usage contract of the store.

    Examples are writing species twice, duplicate or missing particles
    in a collective frame write, or a particle set that changes between
    frames.
    """


class FrameAppendError(IOError):
    """A frame append failed after the container was modified.

    The value, time and step datasets of the element may no longer have
    the same length. This is fatal for the run.
    """
