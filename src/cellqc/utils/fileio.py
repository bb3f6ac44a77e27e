"""
Atomic file-write utilities.

Output is written to a temporary file in the destination directory and moved
into place with ``os.replace()``, so an interrupted run leaves either the old
file or the new one, never a truncated file.
"""

from __future__ import annotations

import json
import os
import tempfile
from typing import Any, Callable, IO

import numpy as np
import pandas as pd

__all__ = ['atomic_write_json', 'atomic_write_text', 'atomic_write_csv']


def _atomic_write(path: str | os.PathLike, write: Callable[[IO[str]], None]) -> None:
    path = str(path)
    dir_path = os.path.dirname(path) or "."
    tmp_path: str | None = None
    try:
        with tempfile.NamedTemporaryFile(
            mode="w", dir=dir_path, suffix=".tmp", delete=False, newline=""
        ) as tmp:
            tmp_path = tmp.name
            write(tmp)
        os.replace(tmp_path, path)
    except BaseException:
        if tmp_path is not None and os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise


def _json_default(obj: Any) -> Any:
    """Serialize numpy scalars/arrays that end up in provenance records."""
    if isinstance(obj, np.generic):
        return obj.item()
    if isinstance(obj, np.ndarray):
        return obj.tolist()
    if isinstance(obj, pd.Index):
        return obj.tolist()
    raise TypeError(f"Object of type {type(obj).__name__} is not JSON serializable")


def atomic_write_json(path: str | os.PathLike, data: Any, *, indent: int = 2) -> None:
    """Write *data* as JSON atomically via temp-file + rename.

    numpy scalars and arrays are converted to plain Python values.

    Parameters
    ----------
    path:
        Destination file path.
    data:
        JSON-serializable object.
    indent:
        JSON indentation (default 2).
    """
    _atomic_write(path, lambda fh: json.dump(data, fh, indent=indent, default=_json_default))


def atomic_write_text(path: str | os.PathLike, content: str) -> None:
    """Write *content* as text atomically via temp-file + rename."""
    _atomic_write(path, lambda fh: fh.write(content))


def atomic_write_csv(path: str | os.PathLike, frame: pd.DataFrame, **to_csv_kwargs: Any) -> None:
    """Write a DataFrame as CSV atomically via temp-file + rename."""
    _atomic_write(path, lambda fh: frame.to_csv(fh, **to_csv_kwargs))
