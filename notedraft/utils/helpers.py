"""Small filesystem, time and logging helpers shared across notedraft."""

from __future__ import annotations

import json
import os
import sys
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from loguru import logger

TRUE_VALUES = {"1", "true", "t", "yes", "y", "on"}
FALSE_VALUES = {"0", "false", "f", "no", "n", "off"}


def ensure_dir(path: Path) -> Path:
    """Create a directory (and parents) if missing and return it."""
    path.mkdir(parents=True, exist_ok=True)
    return path


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def utc_now_iso() -> str:
    """Current UTC time as an ISO-8601 string with millisecond precision."""
    return utc_now().isoformat(timespec="milliseconds")


def parse_bool(value: str | bool | None, default: bool = False) -> bool:
    """Parse booleans from env/CLI values."""
    if value is None:
        return default
    if isinstance(value, bool):
        return value

    lowered = value.strip().lower()
    if lowered in TRUE_VALUES:
        return True
    if lowered in FALSE_VALUES:
        return False
    raise ValueError(f"Invalid boolean value: {value}")


def atomic_write_json(path: Path, data: Any) -> None:
    """Write JSON to a temp file next to `path`, fsync it, then rename over `path`.

    A crash mid-write leaves either the old file or the new one, never a
    truncated mix of both.
    """
    ensure_dir(path.parent)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            json.dump(data, handle, ensure_ascii=False, indent=2)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except OSError:
            pass
        raise


def configure_logging(log_dir: Path, level: str = "INFO", explicit_log_file: str | None = None) -> Path:
    """Configure loguru outputs and return the trace log path."""
    if explicit_log_file:
        log_path = Path(explicit_log_file).expanduser().resolve()
    else:
        timestamp = datetime.now().strftime("%Y%m%d-%H%M%S")
        log_path = log_dir / f"notedraft-{timestamp}.log"

    ensure_dir(log_path.parent)
    logger.remove()
    logger.add(sys.stderr, level=level.upper())
    logger.add(log_path, level="DEBUG", encoding="utf-8", rotation="10 MB", retention=10)
    logger.debug("Logging initialized. log_file={}", log_path)
    return log_path
