"""
Namespace configuration store.

The namespace is the operator-chosen path segment that scopes which overlay
receives this page's highlights. It is persisted as {"ns": "<value>"} and
shared between the running engine and the namespace CLI; edits made by
either side are picked up by the file watcher.
"""

from __future__ import annotations

import asyncio
import json
import os
import tempfile
from pathlib import Path
from typing import Any, Callable, List, Optional

from shared.config.highlighter import DEFAULT_NAMESPACE
from shared.logging.logger import get_logger
from shared.utils.hashing import file_fingerprint

log = get_logger("shared.config.namespace")

NamespaceListener = Callable[[str], None]


class NamespaceStore:
    """
    File-backed namespace store.

    RULES:
    - Reads never raise: absence, corruption or blank values yield the default
    - Writes are atomic (temp file + replace)
    - Listeners fire only when the normalized value actually changes
    """

    def __init__(self, path: Path | str, default: str = DEFAULT_NAMESPACE):
        self.path = Path(path)
        self.default = (default or "").strip() or DEFAULT_NAMESPACE
        self._current: Optional[str] = None
        self._fingerprint: Optional[str] = None
        self._listeners: List[NamespaceListener] = []

    # ------------------------------------------------------------

    def normalize(self, value: Any) -> str:
        if value is None:
            return self.default
        return str(value).strip() or self.default

    # ------------------------------------------------------------

    def _read(self) -> str:
        if not self.path.exists():
            return self.default

        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except Exception as e:
            log.warning(f"Failed to read namespace from {self.path} ({e}); using default")
            return self.default

        if not isinstance(data, dict):
            log.warning(f"Namespace file {self.path} root is not an object; using default")
            return self.default

        return self.normalize(data.get("ns"))

    def _write_atomic(self, value: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)

        with tempfile.NamedTemporaryFile(
            "w", dir=self.path.parent, delete=False, encoding="utf-8"
        ) as tmp:
            tmp.write(json.dumps({"ns": value}, indent=2))
            tmp.flush()
            os.fsync(tmp.fileno())
            temp_path = Path(tmp.name)

        temp_path.replace(self.path)

    # ------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------

    def get(self) -> str:
        value = self._read()
        self._current = value
        self._fingerprint = file_fingerprint(self.path)
        return value

    def set(self, value: Any) -> bool:
        """
        Persist a namespace. Returns False when the write failed; the new value
        is still adopted in memory so the running engine keeps working.
        """
        normalized = self.normalize(value)
        ok = True

        try:
            self._write_atomic(normalized)
            self._fingerprint = file_fingerprint(self.path)
            log.info(f"Namespace saved → {normalized}")
        except OSError as e:
            log.error(f"Failed to persist namespace to {self.path}: {e}")
            ok = False

        self._adopt(normalized)
        return ok

    def on_change(self, callback: NamespaceListener) -> None:
        self._listeners.append(callback)

    # ------------------------------------------------------------

    def _adopt(self, value: str) -> None:
        previous = self._current
        self._current = value
        if previous is None or previous == value:
            return

        log.info(f"Namespace changed {previous} → {value}")
        for listener in list(self._listeners):
            try:
                listener(value)
            except Exception as e:
                log.warning(f"Namespace listener failed: {e}")

    def poll(self) -> bool:
        """Re-read the file if its contents changed. Returns True on a namespace change."""
        fingerprint = file_fingerprint(self.path)
        if fingerprint == self._fingerprint:
            return False

        self._fingerprint = fingerprint
        value = self._read()
        changed = self._current is not None and value != self._current
        self._adopt(value)
        return changed

    async def watch(self, stop_event: asyncio.Event, interval_seconds: float = 1.0) -> None:
        interval = max(0.1, float(interval_seconds or 1.0))
        log.info(f"Namespace watcher started for {self.path}")

        try:
            while not stop_event.is_set():
                try:
                    await asyncio.wait_for(stop_event.wait(), timeout=interval)
                except asyncio.TimeoutError:
                    pass

                if stop_event.is_set():
                    break

                self.poll()
        finally:
            log.info(f"Namespace watcher stopped for {self.path}")
