"""On-disk storage for registration uploads."""
from __future__ import annotations

import logging
import os
import re
import secrets
import time
from pathlib import Path, PurePosixPath
from typing import BinaryIO, Iterable, Optional

from .errors import StorageFailure, UploadTooLarge

logger = logging.getLogger("rpl.uploads")

URL_PREFIX = "/uploads/"
CHUNK_SIZE = 64 * 1024

_UNSAFE_FIELD_CHARS = re.compile(r"[^A-Za-z0-9_-]")
_SAFE_EXTENSION = re.compile(r"^\.[A-Za-z0-9]{1,16}$")
_PARTIAL_PREFIX = ".incoming-"
_MAX_NAME_ATTEMPTS = 5


def _safe_field(field_name: str | None) -> str:
    cleaned = _UNSAFE_FIELD_CHARS.sub("", field_name or "")
    return cleaned or "file"


def _safe_extension(filename: str | None) -> str:
    suffix = PurePosixPath((filename or "").replace("\\", "/")).suffix
    return suffix if _SAFE_EXTENSION.match(suffix) else ""


def _basename(reference: str | None) -> Optional[str]:
    if not reference:
        return None
    name = PurePosixPath(reference.replace("\\", "/")).name
    if not name or name in {".", ".."} or name.startswith("."):
        return None
    return name


class UploadBinder:
    """Store uploaded files under collision-resistant names.

    Files are written to a hidden partial file first and only given their final
    name once the whole payload has been received within the size cap, so a
    stored name never points at a truncated upload.
    """

    def __init__(self, directory: Path, *, max_bytes: int = 20 * 1024 * 1024) -> None:
        if max_bytes <= 0:
            raise ValueError("Upload size limit must be positive")
        self._directory = directory
        self._max_bytes = max_bytes

    @property
    def directory(self) -> Path:
        return self._directory

    @property
    def max_bytes(self) -> int:
        return self._max_bytes

    def ensure_directory(self) -> None:
        self._directory.mkdir(parents=True, exist_ok=True)

    def bind(self, field_name: str, original_filename: str | None, source: BinaryIO) -> str:
        """Persist ``source`` and return its ``/uploads/<name>`` reference."""

        prefix = _safe_field(field_name)
        extension = _safe_extension(original_filename)

        try:
            self.ensure_directory()
            partial = self._directory / f"{_PARTIAL_PREFIX}{secrets.token_hex(8)}"
            try:
                self._receive(source, partial)
                name = self._commit(partial, prefix, extension)
            except BaseException:
                partial.unlink(missing_ok=True)
                raise
        except OSError as exc:
            logger.error("Failed to store upload for field %s: %s", field_name, exc)
            raise StorageFailure(str(exc), code="save_failed") from exc

        logger.info("Stored %s upload as %s", prefix, name)
        return URL_PREFIX + name

    def _receive(self, source: BinaryIO, partial: Path) -> None:
        received = 0
        with partial.open("xb") as handle:
            while True:
                chunk = source.read(CHUNK_SIZE)
                if not chunk:
                    break
                received += len(chunk)
                if received > self._max_bytes:
                    raise UploadTooLarge(
                        f"Upload exceeds the {self._max_bytes} byte limit"
                    )
                handle.write(chunk)

    def _commit(self, partial: Path, prefix: str, extension: str) -> str:
        for _ in range(_MAX_NAME_ATTEMPTS):
            name = f"{prefix}-{int(time.time() * 1000)}-{secrets.randbelow(1_000_000_000)}{extension}"
            target = self._directory / name
            try:
                # Reserve the name exclusively, then move the payload over it.
                fd = os.open(target, os.O_CREAT | os.O_EXCL | os.O_WRONLY, 0o644)
            except FileExistsError:
                continue
            os.close(fd)
            try:
                os.replace(partial, target)
            except OSError:
                target.unlink(missing_ok=True)
                raise
            return name
        raise FileExistsError(f"Could not allocate a unique name for {prefix} upload")

    def resolve(self, reference: str | None) -> Optional[Path]:
        """Return the stored file for ``reference`` if it exists.

        Only the basename of ``reference`` is honoured, so stored or requested
        values cannot point outside the upload directory.
        """

        name = _basename(reference)
        if name is None:
            return None
        candidate = self._directory / name
        return candidate if candidate.is_file() else None

    def remove(self, reference: str | None) -> bool:
        """Delete the file behind ``reference``; return whether one was removed."""

        name = _basename(reference)
        if name is None:
            return False
        try:
            (self._directory / name).unlink()
        except FileNotFoundError:
            return False
        return True

    def discard(self, references: Iterable[str]) -> None:
        """Best-effort removal of files that will never be referenced."""

        for reference in references:
            try:
                self.remove(reference)
            except OSError as exc:
                logger.warning("Could not discard orphaned upload %s: %s", reference, exc)


__all__ = ["CHUNK_SIZE", "URL_PREFIX", "UploadBinder"]
