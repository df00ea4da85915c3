"""CLI I/O helpers for atomic output writing."""

from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Any


def report_path_for(out: Path) -> Path:
    """Return the JSON report path written beside ``out``."""

    return out.with_name(f"{out.stem}.report.json")


def load_json_object(path: Path, *, label: str) -> dict[str, Any]:
    raw = json.loads(path.read_text(encoding="utf-8"))
    if not isinstance(raw, dict):
        raise ValueError(f"{label} JSON must be an object")
    return raw


def write_text_atomic(path: Path, text: str) -> None:
    write_bytes_atomic(path, text.encode("utf-8"))


def write_bytes_atomic(path: Path, payload: bytes) -> None:
    """Write bytes through a temporary file + replace."""

    path.parent.mkdir(parents=True, exist_ok=True)

    fd, raw_tmp_path = tempfile.mkstemp(
        dir=path.parent,
        prefix=f"{path.name}.",
        suffix=".tmp",
    )
    os.close(fd)
    tmp_path = Path(raw_tmp_path)

    try:
        tmp_path.write_bytes(payload)
        tmp_path.replace(path)
    except Exception:
        if tmp_path.exists():
            tmp_path.unlink(missing_ok=True)
        raise


def write_report_atomic(path: Path, payload: dict[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with tempfile.NamedTemporaryFile(
        mode="w",
        encoding="utf-8",
        dir=path.parent,
        delete=False,
        prefix=f"{path.name}.",
        suffix=".tmp",
    ) as tmp:
        tmp_path = Path(tmp.name)
        json.dump(payload, tmp, ensure_ascii=False, sort_keys=True, indent=2)

    tmp_path.replace(path)


def write_error_report(
    path: Path, *, error_type: str, error_message: str, stage: str
) -> None:
    """Write a report that only carries the failure block."""

    write_report_atomic(
        path,
        {
            "error": {
                "error_type": error_type,
                "error_message": error_message,
                "stage": stage,
            }
        },
    )
