from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO

from ..errors import StorageError
from ..observability.logging import get_logger

_CHUNK_SIZE = 64 * 1024


@dataclass(slots=True)
class UploadTooLarge(StorageError):
    max_bytes: int = 0


def safe_file_stem(raw: str | None) -> str:
    safe = (raw or "unnamed").strip() or "unnamed"
    return re.sub(r"[^a-zA-Z0-9_.-]", "_", safe)[:80]


class LocalMediaStorage:
    """Media files on the local filesystem under `root` (served at /media)."""

    def __init__(self, root: str | Path):
        self.root = Path(root)
        self._log = get_logger("media_storage")

    def avatar_path(self, filename: str) -> Path:
        return self.root / "avatar" / filename

    def ensure_dir(self, path: Path) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageError(message="upload.fail", cause=e) from e

    def write_stream(self, stream: BinaryIO, dst: Path, *, max_bytes: int | None = None) -> int:
        """
        Stream `stream` into `dst`. The content lands in a `.part` file first and
        only replaces `dst` once fully written; a failed write leaves nothing behind.
        """
        self.ensure_dir(dst)
        part = dst.with_name(dst.name + ".part")
        written = 0
        try:
            with part.open("wb") as out:
                while True:
                    chunk = stream.read(_CHUNK_SIZE)
                    if not chunk:
                        break
                    written += len(chunk)
                    if max_bytes is not None and written > int(max_bytes):
                        raise UploadTooLarge(message="upload.tooLarge", max_bytes=int(max_bytes))
                    out.write(chunk)
            part.replace(dst)
        except UploadTooLarge:
            part.unlink(missing_ok=True)
            raise
        except Exception as e:  # noqa: BLE001
            part.unlink(missing_ok=True)
            self._log.error("media_write_failed", path=str(dst), error=str(e))
            raise StorageError(message="upload.fail", cause=e) from e
        return written
