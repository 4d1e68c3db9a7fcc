"""
Flat JSON file storage with atomic replacement.

Each collection lives in one human-readable file under DATA_PATH. Writes go
to a temporary file in the same directory and are renamed over the target,
so a crash mid-write leaves either the old or the new file, never a torn one.
"""
import asyncio
import json
import os
import tempfile
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable

from ppid_bot.core.logging import get_logger

logger = get_logger(__name__)


def _atomic_write_text(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(content)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


class JsonFileStore:
    """
    One JSON document on disk.

    - Missing file: ``default_factory()`` (not built yet, not an error).
    - Malformed file: logged, moved aside as ``<name>.corrupt-<ts>`` so the
      next write does not destroy it, then ``default_factory()``.
    """

    def __init__(self, path: Path | str, default_factory: Callable[[], Any] = list):
        self.path = Path(path)
        self._default_factory = default_factory
        self._lock = asyncio.Lock()

    @property
    def lock(self) -> asyncio.Lock:
        """Held by read-modify-write callers for the whole cycle."""
        return self._lock

    def _read_sync(self) -> Any:
        try:
            raw = self.path.read_bytes()
        except FileNotFoundError:
            return self._default_factory()

        try:
            text = raw.decode("utf-8-sig")
            if not text.strip():
                return self._default_factory()
            return json.loads(text)
        except (UnicodeDecodeError, json.JSONDecodeError) as exc:
            self._quarantine(exc)
            return self._default_factory()

    def _quarantine(self, exc: Exception) -> None:
        stamp = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S")
        backup = self.path.with_name(f"{self.path.name}.corrupt-{stamp}")
        try:
            os.replace(self.path, backup)
        except OSError:
            backup = None
        logger.error(
            "Malformed JSON store, falling back to empty default",
            extra_data={
                "path": str(self.path),
                "backup": str(backup) if backup else None,
                "error": str(exc),
            },
        )

    def _write_sync(self, data: Any) -> None:
        content = json.dumps(data, ensure_ascii=False, indent=2, default=str)
        _atomic_write_text(self.path, content)

    async def read(self) -> Any:
        return await asyncio.to_thread(self._read_sync)

    async def write(self, data: Any) -> None:
        await asyncio.to_thread(self._write_sync, data)

    def exists(self) -> bool:
        return self.path.exists()

    def mtime(self) -> float | None:
        try:
            return self.path.stat().st_mtime
        except FileNotFoundError:
            return None
