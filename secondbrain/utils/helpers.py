"""Small helpers shared by the store, the pipeline and the CLI."""
from __future__ import annotations

import os
import re
import time
from datetime import datetime
from pathlib import Path
from typing import Any

import orjson

_UNSAFE = re.compile(r"[^a-z0-9]")
_HYPHEN_RUNS = re.compile(r"-+")


def truncate_text(text: str, max_chars: int = 300) -> str:
    """Shorten text for log lines."""
    if len(text) <= max_chars:
        return text
    return text[:max_chars].rstrip() + "..."


def sanitize_filename(original_name: str) -> str:
    """
    Lowercase the stem, collapse unsafe characters into single hyphens and
    keep the original extension (lowercased).

        "My Notes (v2).PDF" -> "my-notes-v2.pdf"
    """
    path = Path(original_name)
    stem = _HYPHEN_RUNS.sub("-", _UNSAFE.sub("-", path.stem.lower())).strip("-")
    if not stem:
        stem = f"document-{int(time.time() * 1000)}"
    return stem + path.suffix.lower()


def format_bytes(size: float) -> str:
    if size < 1024:
        return f"{int(size)} Bytes"
    for unit in ("KB", "MB"):
        size /= 1024
        if size < 1024:
            return f"{size:.2f} {unit}"
    return f"{size / 1024:.2f} GB"


def format_datetime(dt: datetime) -> str:
    return f"{dt:%Y-%m-%d %H:%M} UTC"


def write_json(data: Any, path: str | Path, *, atomic: bool = False) -> None:
    """
    Dump data with orjson (datetimes and non-str keys included).

    With atomic=True the bytes go to a sibling .tmp file that is then renamed
    over the target, so readers never see a half-written file.
    """
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = orjson.dumps(data, option=orjson.OPT_INDENT_2 | orjson.OPT_NON_STR_KEYS)
    target = path.with_name(path.name + ".tmp") if atomic else path
    target.write_bytes(payload)
    if atomic:
        os.replace(target, path)


def read_json(path: str | Path) -> Any:
    return orjson.loads(Path(path).read_bytes())
