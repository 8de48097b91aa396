import logging
import os
import posixpath
import tempfile
from pathlib import Path
from typing import BinaryIO

from filestore.errors import InvalidInput, NotFound, PayloadTooLarge, SecurityViolation, StorageIOFailure
from filestore.models import FileRecord
from filestore.repository import FileRepository

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024
MAX_FILENAME_BYTES = 255
DEFAULT_CONTENT_TYPE = "application/octet-stream"


def sanitize_filename(raw_filename: str | None) -> str:
    """Reduce a client-supplied filename to a single safe path segment.

    Backslashes are folded to ``/`` and the name is normalized, but a name
    is never rewritten into a different segment: anything that carried a
    separator or a ``..`` token, before or after normalization, is refused.
    """
    if raw_filename is None:
        raise InvalidInput("filename is required")
    raw = raw_filename.strip()
    if "\x00" in raw:
        raise InvalidInput("invalid filename")

    normalized = posixpath.normpath(raw.replace("\\", "/")) if raw else ""
    if normalized in ("", "."):
        raise InvalidInput("invalid filename")
    for candidate in (raw, normalized):
        if "/" in candidate or "\\" in candidate or ".." in candidate:
            raise InvalidInput("invalid filename")
    if len(normalized.encode("utf-8")) > MAX_FILENAME_BYTES:
        raise InvalidInput("filename too long")
    return normalized


class LocalOwnerStorage:
    """Per-owner sandboxed file storage backed by a local directory tree.

    Each owner gets ``<root>/user_<owner_id>``; files live directly inside it
    under their sanitized name. The metadata repository is authoritative for
    which files exist, the directory tree only holds their bytes.
    """

    def __init__(self, root_dir: str, repository: FileRepository, *, max_size_bytes: int | None = None):
        self.root = Path(root_dir)
        self.repository = repository
        self.max_size_bytes = max_size_bytes

    def init(self) -> None:
        self.root.mkdir(parents=True, exist_ok=True)

    def _owner_dir(self, owner_id: str) -> Path:
        root = self.root.resolve()
        owner_dir = (root / f"user_{owner_id}").resolve()
        if owner_dir.parent != root:
            raise SecurityViolation("invalid owner path")
        return owner_dir

    def _sandboxed_path(self, owner_dir: Path, filename: str) -> Path:
        # Re-checked on the canonical form so a symlink or a name that slipped
        # through sanitization cannot point outside the owner directory.
        target = (owner_dir / filename).resolve()
        if target.parent != owner_dir:
            raise SecurityViolation()
        return target

    def store_file(
        self,
        raw_filename: str | None,
        source: BinaryIO,
        content_type: str | None,
        owner_id: str,
    ) -> FileRecord:
        filename = sanitize_filename(raw_filename)
        owner_dir = self._owner_dir(owner_id)
        target = self._sandboxed_path(owner_dir, filename)

        first_chunk = source.read(CHUNK_SIZE)
        if not first_chunk:
            raise InvalidInput("failed to store empty file")

        try:
            owner_dir.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise StorageIOFailure() from exc

        size = self._write_atomically(target, first_chunk, source)
        record = self.repository.upsert_file(
            owner_id=owner_id,
            filename=filename,
            content_type=content_type or DEFAULT_CONTENT_TYPE,
            size=size,
        )
        logger.info(f"Stored {filename} ({size} bytes) for owner {owner_id} as {record.file_id}")
        return record

    def _write_atomically(self, target: Path, first_chunk: bytes, source: BinaryIO) -> int:
        try:
            fd, temp_name = tempfile.mkstemp(dir=target.parent, prefix=".upload-", suffix=".part")
        except OSError as exc:
            raise StorageIOFailure() from exc
        temp_path = Path(temp_name)
        total = 0
        try:
            with os.fdopen(fd, "wb") as out:
                chunk = first_chunk
                while chunk:
                    total += len(chunk)
                    if self.max_size_bytes is not None and total > self.max_size_bytes:
                        raise PayloadTooLarge()
                    out.write(chunk)
                    chunk = source.read(CHUNK_SIZE)
                out.flush()
                os.fsync(out.fileno())
            os.replace(temp_path, target)
        except OSError as exc:
            raise StorageIOFailure() from exc
        finally:
            # Gone already after a successful replace.
            temp_path.unlink(missing_ok=True)
        return total

    def list_files(self, owner_id: str) -> list[FileRecord]:
        return self.repository.list_files_for_owner(owner_id)

    def get_file(self, file_id: str) -> FileRecord:
        record = self.repository.get_file(file_id)
        if record is None:
            raise NotFound("file not found")
        return record

    def get_file_path(self, filename: str, owner_id: str) -> Path:
        """Recompute the sandboxed path of a stored file.

        No authorization happens here; callers check ownership first.
        """
        owner_dir = self._owner_dir(owner_id)
        return self._sandboxed_path(owner_dir, sanitize_filename(filename))

    def delete_file(self, file_id: str) -> None:
        record = self.get_file(file_id)
        # Not resolved: a symlink at this spot is removed itself, never its target.
        path = self._owner_dir(record.owner_id) / sanitize_filename(record.filename)
        try:
            path.unlink()
        except FileNotFoundError:
            logger.warning(f"File {path} for record {file_id} was already missing on disk")
        except OSError:
            logger.exception(f"Could not remove {path} for record {file_id}, dropping metadata anyway")

        if not self.repository.delete_file(file_id):
            raise NotFound("file not found")
        logger.info(f"Deleted file record {file_id} for owner {record.owner_id}")

    def total_usage(self, owner_id: str) -> int:
        return self.repository.total_size_for_owner(owner_id)

    def delete_all_for_owner(self, owner_id: str) -> list[Path]:
        """Remove an owner's directory tree and all of their file records.

        Deletion is best-effort per entry. Entries that could not be removed
        are returned; metadata is removed regardless.
        """
        owner_dir = self._owner_dir(owner_id)
        failures: list[Path] = []

        if owner_dir.is_dir():
            for dirpath, dirnames, filenames in os.walk(owner_dir, topdown=False):
                current = Path(dirpath)
                for name in filenames + dirnames:
                    self._remove_entry(current / name, failures)
            self._remove_entry(owner_dir, failures)

        removed = self.repository.delete_files_for_owner(owner_id)
        logger.info(
            f"Removed {removed} file records for owner {owner_id}; "
            f"{len(failures)} filesystem entries could not be deleted"
        )
        return failures

    @staticmethod
    def _remove_entry(path: Path, failures: list[Path]) -> None:
        try:
            if path.is_dir() and not path.is_symlink():
                path.rmdir()
            else:
                path.unlink()
        except OSError as exc:
            logger.warning(f"Failed to delete {path}: {exc}")
            failures.append(path)
