import re
import pathlib
import warnings
from typing import Union

import fsspec
import h5py
import numpy as np
import zarr

H5MDTRAJ_NETWORK_PROTOCOLS = ["s3", "http", "https", "adl", "abfs", "az", "gcs"]
H5MDTRAJ_EXPERIMENTAL_PROTOCOLS = ["adl", "abfs", "az", "gcs"]

HDF5_EXTENSIONS = [".h5md", ".h5", ".hdf5"]
ZARR_EXTENSIONS = [".zarrmd", ".zarr"]

# Chunks hold whole frames and aim for this many bytes
CHUNK_TARGET_BYTES = 4194304
MAX_FRAMES_PER_CHUNK = 4096


class H5MDElement:
    """Convenience class for representing elements in an H5MD
    file.
    """

    def __init__(self, group):

        if "value" not in group:
            raise ValueError(
                f"H5MD element {group.name} must have a value array"
            )

        self._value = group["value"]

        self._is_time_independent = False
        self._has_time = False

        if "step" not in group:
            self._is_time_independent = True

            if "time" in group:
                raise ValueError(
                    f"{group.name} was determined to be time-independent since "
                    "it doesn't contain a step dataset. Therefore, it cannot "
                    "contain a time dataset"
                )

        else:
            self._step = group["step"]
            if self._step.shape == ():
                raise ValueError(
                    f"Element {group.name} uses a fixed step, only explicit "
                    "step datasets can be appended to"
                )

            if "time" in group:
                self._has_time = True
                self._time = group["time"]

                if self._time.shape != self._step.shape:
                    raise ValueError(
                        f"Time and step datasets must have the same shape for element {group.name}"
                    )

            if self._value.shape[:1] != self._step.shape:
                raise ValueError(
                    f"Value and step datasets must have the same number of "
                    f"frames for element {group.name}"
                )

    def is_time_independent(self):
        return self._is_time_independent

    @property
    def has_time(self):
        return self._has_time

    @property
    def step(self) -> Union[zarr.Array, h5py.Dataset]:
        if self.is_time_independent():
            raise ValueError("Element is time-independent")
        return self._step

    @property
    def time(self) -> Union[zarr.Array, h5py.Dataset]:
        if not self.has_time:
            raise ValueError("Element does not have a time dataset")
        return self._time

    @property
    def value(self):
        return self._value


def get_protocol(url: str) -> str:
    parts = re.split(r"(\:\:|\://)", url, maxsplit=1)
    if len(parts) > 1:
        return parts[0]
    return "file"


def get_extension(url: str) -> str:
    return pathlib.Path(url).suffix


def get_backend(url: str) -> str:
    """Return ``"hdf5"`` or ``"zarr"`` for the container at `url`."""
    protocol = get_protocol(url)
    if protocol not in H5MDTRAJ_NETWORK_PROTOCOLS and protocol != "file":
        raise ValueError(f"Unsupported protocol '{protocol}' for h5mdtraj.")

    ext = get_extension(url)
    if ext in HDF5_EXTENSIONS:
        if protocol != "file":
            raise ValueError(
                "Writing HDF5 files is only supported on local disk, "
                "use the zarrmd format for cloud storage"
            )
        return "hdf5"
    elif ext in ZARR_EXTENSIONS:
        if protocol in H5MDTRAJ_EXPERIMENTAL_PROTOCOLS:
            warnings.warn(
                f"h5mdtraj is using the experimental protocol '{protocol}' "
                "which may lead to unexpected behavior."
            )
        return "zarr"
    raise ValueError(f"Cannot create an H5MD container from file type {ext}")


def container_exists(url: str, storage_options=None) -> bool:
    so = dict() if storage_options is None else storage_options
    fs, path = fsspec.core.url_to_fs(url, **so)
    return fs.exists(path)


def open_container(url: str, mode: str, storage_options=None):
    """Open the root group of an HDF5 file or Zarr store.

    `mode` is one of ``"r"``, ``"r+"`` (existing, read/write) or
    ``"w-"`` (create, fail if it exists).
    """
    backend = get_backend(url)
    if backend == "hdf5":
        return h5py.File(url, mode)
    so = dict() if storage_options is None else storage_options
    return zarr.open_group(url, mode=mode, storage_options=so)


def close_container(root):
    if isinstance(root, h5py.File):
        root.close()
    else:
        root.store.close()


def is_zarr(node) -> bool:
    return isinstance(node, (zarr.Group, zarr.Array))


def is_array(node) -> bool:
    return isinstance(node, (zarr.Array, h5py.Dataset))


def is_group(node) -> bool:
    return isinstance(node, (zarr.Group, h5py.Group))


def frames_per_chunk(frame_shape, dtype) -> int:
    """Number of whole frames stored per chunk of an extensible dataset.

    At least one frame, even when a single frame is larger than the
    target chunk size.
    """
    bytes_per_frame = int(
        np.prod(frame_shape, dtype=np.int64) * np.dtype(dtype).itemsize
    )
    return min(
        max(1, CHUNK_TARGET_BYTES // max(1, bytes_per_frame)),
        MAX_FRAMES_PER_CHUNK,
    )


def decode_attr(value):
    """Normalize a string or list-of-strings attribute read back from
    either backend to ``str`` / ``list[str]``."""
    if isinstance(value, (bytes, np.bytes_)):
        return value.decode("utf-8")
    if isinstance(value, str):
        return value
    if isinstance(value, (list, tuple, np.ndarray)):
        return [decode_attr(v) for v in value]
    return value
