"""Ephemeral working artifacts with scoped acquire/release.

Concurrent pipeline runs share one temp directory. Names combine a
nanosecond timestamp with a random token so runs never collide, and every
artifact is removed by the context manager that created it.
"""

from __future__ import annotations

import secrets
import shutil
import time
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import structlog

log = structlog.get_logger(__name__)


class Workspace:
    def __init__(self, root: Path) -> None:
        self._root = Path(root)
        self._root.mkdir(parents=True, exist_ok=True)

    @property
    def root(self) -> Path:
        return self._root

    def unique_name(self, prefix: str, suffix: str = ".pdf") -> str:
        return f"{prefix}_{time.time_ns()}_{secrets.token_hex(6)}{suffix}"

    @contextmanager
    def scoped_artifact(
        self,
        prefix: str,
        data: bytes | None = None,
        suffix: str = ".pdf",
    ) -> Iterator[Path]:
        """Yield a unique path, optionally pre-filled with *data*.

        The file is deleted on every exit path, including exceptions.
        """
        path = self._root / self.unique_name(prefix, suffix)
        try:
            if data is not None:
                path.write_bytes(data)
            yield path
        finally:
            _remove_file(path)

    @contextmanager
    def scoped_directory(self, prefix: str) -> Iterator[Path]:
        path = self._root / self.unique_name(prefix, suffix="")
        path.mkdir(parents=True)
        try:
            yield path
        finally:
            shutil.rmtree(path, ignore_errors=True)


def _remove_file(path: Path) -> None:
    try:
        path.unlink(missing_ok=True)
    except OSError as exc:
        log.warning("temp_cleanup_failed", path=str(path), error=str(exc))
