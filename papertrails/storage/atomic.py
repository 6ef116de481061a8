"""Atomic JSON file replacement."""

import json
import os
import tempfile
from pathlib import Path
from typing import Any, Union


def write_json_atomic(path: Union[str, Path], payload: Any, indent: int = 2) -> None:
    """Write ``payload`` as JSON to ``path`` through a temp file and ``os.replace``.

    Readers see either the previous file or the complete new one.
    """
    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)

    fd, tmp_path = tempfile.mkstemp(dir=target.parent, prefix=f".{target.name}.", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(payload, f, indent=indent, ensure_ascii=False)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, target)
    except BaseException:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise
