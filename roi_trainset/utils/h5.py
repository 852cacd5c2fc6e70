"""HDF5 helpers: atomic file replacement, chunked row datasets and JSON-safe attrs."""

from __future__ import annotations

import json
import os
import uuid
from contextlib import contextmanager
from typing import Any, Iterator, Mapping

import h5py
import numpy as np


def encode_attr(value: Any) -> Any:
    """HDF5 attrs only hold scalars/arrays; containers are stored as JSON text."""
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value)
    if value is None:
        return "None"
    return value


def set_attrs(obj: h5py.HLObject, attrs: Mapping[str, Any]) -> None:
    for name, value in attrs.items():
        obj.attrs[name] = encode_attr(value)


def write_rows(
    group: h5py.Group,
    name: str,
    rows: np.ndarray,
    *,
    chunk_rows: int = 65536,
    attrs: Mapping[str, Any] | None = None,
) -> h5py.Dataset:
    """Store ``rows`` as a dataset chunked along its first axis and resizable there."""
    rows = np.asarray(rows)
    chunk = (max(1, min(int(chunk_rows), rows.shape[0] or 1)),) + rows.shape[1:]
    dset = group.create_dataset(
        name,
        data=rows,
        maxshape=(None,) + rows.shape[1:],
        chunks=chunk,
    )
    if attrs:
        set_attrs(dset, attrs)
    return dset


@contextmanager
def atomic_h5(path: str | os.PathLike) -> Iterator[h5py.File]:
    """Write an HDF5 file through a hidden sibling temp file.

    The temp file replaces ``path`` only when the block exits cleanly; on error it
    is removed and any existing file at ``path`` is left untouched.
    """
    target = os.path.abspath(path)
    tmp = os.path.join(
        os.path.dirname(target) or ".", f".{os.path.basename(target)}.tmp.{uuid.uuid4().hex}"
    )
    handle = h5py.File(tmp, "w")
    try:
        yield handle
    except BaseException:
        handle.close()
        if os.path.exists(tmp):
            os.remove(tmp)
        raise
    handle.close()
    os.replace(tmp, target)
