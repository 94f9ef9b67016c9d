"""JSON I/O for lookups, expressions and simulation results.

orjson-backed; numpy scalars and arrays are converted to native Python before
serialization so result payloads round-trip cleanly.
"""
from __future__ import annotations

from pathlib import Path
from typing import Any, cast

import numpy as np
import orjson


def load_json(path: Path) -> Any:
    """Load JSON from a file."""
    return orjson.loads(path.read_bytes())


def dumps_json(obj: Any, *, pretty: bool = True) -> bytes:
    """Serialize *obj* to JSON bytes with sorted keys."""
    opts = orjson.OPT_SORT_KEYS | orjson.OPT_NON_STR_KEYS
    if pretty:
        opts |= orjson.OPT_INDENT_2
    return orjson.dumps(convert_numpy(obj), option=opts)


def save_json(obj: Any, path: Path, *, pretty: bool = True) -> None:
    """Save an object as JSON, creating parent directories as needed."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(dumps_json(obj, pretty=pretty))


def convert_numpy(obj: Any) -> Any:
    """Recursively convert numpy types to native Python for JSON serialization."""
    if isinstance(obj, dict):
        obj_dict = cast(dict[Any, Any], obj)
        return {convert_numpy(k): convert_numpy(v) for k, v in obj_dict.items()}
    if isinstance(obj, list):
        return [convert_numpy(v) for v in cast(list[Any], obj)]
    if isinstance(obj, tuple):
        return [convert_numpy(v) for v in cast(tuple[Any, ...], obj)]
    if isinstance(obj, np.bool_):
        return bool(obj)
    if isinstance(obj, np.integer):
        return int(obj)
    if isinstance(obj, np.floating):
        return float(obj)
    if isinstance(obj, np.ndarray):
        return obj.tolist()
    return obj
