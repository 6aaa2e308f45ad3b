"""
Frame appends
=============

An H5MD time-dependent element is a group holding three datasets that
share their leading axis: ``value``, ``time`` and ``step``. The store
keeps one :class:`DatasetTrio` per element and grows all three together
with :func:`append_frame`. To keep several elements consistent, run
:func:`check_frame` on each of them before storing any frame.
"""

import logging
from typing import NamedTuple, Any

import numpy as np

from .exceptions import FrameAppendError, TrajectoryLogicError

logger = logging.getLogger(__name__)


class DatasetTrio(NamedTuple):
    """The ``value``, ``time`` and ``step`` handles of one element."""

    value: Any
    time: Any
    step: Any

    @property
    def n_frames(self) -> int:
        return self.value.shape[0]

    @property
    def frame_shape(self) -> tuple:
        return tuple(self.value.shape[1:])

    def is_synchronized(self) -> bool:
        return (
            self.value.shape[0] == self.time.shape[0] == self.step.shape[0]
        )


def check_frame(trio, values, time, step, name=None):
    """Check that a frame holding `values` at `time` and `step` can be
    appended to `trio`, without modifying anything.

    Returns `values` as an array.

    Raises
    ------
    TrajectoryLogicError
        when the trio is already out of sync or `values` has the wrong
        shape
    ValueError
        when `step` or `time` is lower than the last written one
    """
    name = name if name is not None else trio.value.name
    if not trio.is_synchronized():
        raise TrajectoryLogicError(
            f"Element '{name}' has {trio.value.shape[0]} values, "
            f"{trio.time.shape[0]} times and {trio.step.shape[0]} steps"
        )

    values = np.asarray(values)
    if values.shape != trio.frame_shape:
        raise TrajectoryLogicError(
            f"Frame for element '{name}' has shape {values.shape}, "
            f"expected {trio.frame_shape}"
        )

    n = trio.n_frames
    if n > 0:
        # The H5MD standard dictates monotonic step and time
        if step < trio.step[n - 1]:
            raise ValueError(
                f"Step {step} of element '{name}' is lower than the "
                f"last written step {trio.step[n - 1]}"
            )
        if time < trio.time[n - 1]:
            raise ValueError(
                f"Time {time} of element '{name}' is lower than the "
                f"last written time {trio.time[n - 1]}"
            )
    return values


def store_frame(trio, values, time, step, name=None):
    """Resize the three datasets of `trio` by one frame and fill it.

    Does no checking, see :func:`check_frame`. A failure cannot be
    undone: it is raised as :exc:`~h5mdtraj.exceptions.FrameAppendError`
    and the three datasets may then disagree in length.
    """
    name = name if name is not None else trio.value.name
    n = trio.n_frames
    try:
        trio.value.resize((n + 1, *trio.frame_shape))
        trio.value[n] = values
        trio.time.resize((n + 1,))
        trio.time[n] = time
        trio.step.resize((n + 1,))
        trio.step[n] = step
    except (OSError, ValueError, TypeError, KeyError) as err:
        raise FrameAppendError(
            f"Appending frame {n} to element '{name}' failed, "
            "the trajectory may be inconsistent"
        ) from err

    logger.debug("appended frame %d (step %d) to '%s'", n, step, name)


def append_frame(trio, values, time, step, name=None):
    """Extend `trio` by one frame holding `values` at `time` and `step`.

    All checks run before anything is resized.

    Parameters
    ----------
    trio : DatasetTrio
        element to append to
    values : array_like
        data for one frame, shape ``trio.frame_shape``
    time : float
        simulation time of the frame
    step : int
        integration step of the frame
    name : str (optional)
        element name used in messages

    Raises
    ------
    TrajectoryLogicError
        when the trio is already out of sync or `values` has the wrong
        shape
    ValueError
        when `step` or `time` is lower than the last written one
    FrameAppendError
        when the storage backend fails while writing
    """
    values = check_frame(trio, values, time, step, name=name)
    store_frame(trio, values, time, step, name=name)
