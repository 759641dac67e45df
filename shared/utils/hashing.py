"""Hashing helpers for file change detection."""
from __future__ import annotations

import hashlib
from pathlib import Path
from typing import Optional

from shared.logging.logger import get_logger

log = get_logger("shared.utils.hashing")


def file_fingerprint(path: Path) -> Optional[str]:
    """Return a sha256 of the file contents, or ``None`` when it is missing.

    Read failures produce an error token instead of raising so that a file
    that becomes readable again is still detected as a change.
    """

    try:
        if not path.exists():
            return None
        return hashlib.sha256(path.read_bytes()).hexdigest()
    except OSError as exc:
        log.warning(f"Failed to hash path {path}: {exc}")
        return f"<error:{exc}>"
