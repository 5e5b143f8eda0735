"""
file_registry.py — File Registry: ownership and location metadata for stored files.

Blobs go through the storage collaborator, encrypted with a per-file key.
Metadata transitions for one file (the delete, and the metadata read of every
fetch) are serialized by a per-file lock; blob I/O always happens outside it.
"""
import logging
import os
import threading
import uuid
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Callable, List

from sqlalchemy import or_
from sqlalchemy.orm import Session

import models
from encryption import DecryptionError, seal, unseal
from errors import Forbidden, NotFound, StorageUnavailable, ValidationError
from storage import StorageBackend

logger = logging.getLogger(__name__)

DEFAULT_MIME = "application/octet-stream"

# Extension → MIME type map (avoids python-magic cross-platform issues)
MIME_MAP = {
    "pdf":  "application/pdf",
    "png":  "image/png",
    "jpg":  "image/jpeg",
    "jpeg": "image/jpeg",
    "gif":  "image/gif",
    "webp": "image/webp",
    "txt":  "text/plain",
    "md":   "text/markdown",
    "csv":  "text/csv",
    "json": "application/json",
    "xml":  "application/xml",
    "zip":  "application/zip",
    "tar":  "application/x-tar",
    "gz":   "application/gzip",
    "mp4":  "video/mp4",
    "mp3":  "audio/mpeg",
    "docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "pptx": "application/vnd.openxmlformats-officedocument.presentationml.presentation",
}


def detect_mime(filename: str) -> str:
    """Detect MIME type from file extension."""
    if "." in filename:
        ext = filename.rsplit(".", 1)[-1].lower()
        return MIME_MAP.get(ext, DEFAULT_MIME)
    return DEFAULT_MIME


class KeyedLock:
    """One mutex per key, created on demand and dropped when nobody holds or waits on it."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks = {}  # key -> [lock, refcount]

    @contextmanager
    def hold(self, key):
        with self._guard:
            entry = self._locks.setdefault(key, [threading.Lock(), 0])
            entry[1] += 1
        entry[0].acquire()
        try:
            yield
        finally:
            entry[0].release()
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    del self._locks[key]

    def __len__(self):
        with self._guard:
            return len(self._locks)


DeletionListener = Callable[[Session, str], None]


@dataclass(frozen=True)
class FileContent:
    """Plaintext of a file plus the metadata a download response needs."""
    file_id: str
    filename: str
    content_type: str
    data: bytes


class FileRegistry:

    def __init__(self, storage: StorageBackend):
        self._storage = storage
        self._locks = KeyedLock()
        self._deletion_listeners: List[DeletionListener] = []

    def on_delete(self, listener: DeletionListener):
        """Register a callback run inside the delete transaction, under the file's lock."""
        self._deletion_listeners.append(listener)

    # ─── Writes ───────────────────────────────────────────────────────────────

    def store(self, db: Session, owner_id: int, name: str, data: bytes,
              content_type: str = None) -> models.File:
        name = os.path.basename((name or "").replace("\\", "/")).strip()
        if not name:
            raise ValidationError("A file name is required")
        if not content_type or content_type == DEFAULT_MIME:
            content_type = detect_mime(name)

        file_id = uuid.uuid4().hex
        ext = os.path.splitext(name)[1][:16]
        storage_key = f"{file_id}{ext}"

        sealed = seal(data)
        # raises StorageUnavailable; nothing has been recorded yet
        self._storage.put(storage_key, sealed.blob, content_type=content_type)

        record = models.File(
            id=file_id,
            owner_id=owner_id,
            filename=name,
            storage_key=storage_key,
            size=len(data),
            mime_type=content_type,
            checksum_sha256=sealed.checksum,
            encryption_key=sealed.key_b64,
        )
        db.add(record)
        try:
            db.commit()
        except Exception:
            db.rollback()
            logger.error(f"Metadata commit failed for {storage_key}; removing orphan blob")
            self._discard_blob(storage_key)
            raise
        db.refresh(record)
        logger.info(f"Stored file id={file_id} owner={owner_id} size={len(data)}")
        return record

    def delete(self, db: Session, owner_id: int, file_id: str) -> None:
        with self._locks.hold(file_id):
            record = self._owned(db, owner_id, file_id)
            storage_key = record.storage_key
            try:
                for listener in self._deletion_listeners:
                    listener(db, file_id)
                db.delete(record)
                db.commit()
            except Exception:
                db.rollback()
                raise
        logger.info(f"Deleted file id={file_id} owner={owner_id}")
        self._discard_blob(storage_key)

    # ─── Reads ────────────────────────────────────────────────────────────────

    def list(self, db: Session, owner_id: int) -> List[models.File]:
        return (
            db.query(models.File)
            .filter(models.File.owner_id == owner_id)
            .order_by(models.File.pk.asc())
            .all()
        )

    def get_owned(self, db: Session, owner_id: int, file_id: str) -> models.File:
        return self._owned(db, owner_id, file_id)

    def locked(self, file_id: str):
        """Hold the file's lock, for callers that write rows referencing it."""
        return self._locks.hold(file_id)

    def fetch(self, db: Session, owner_id: int, ref: str) -> FileContent:
        """Owner download. ref is the file id or its storage key."""
        record = (
            db.query(models.File)
            .filter(or_(models.File.id == ref, models.File.storage_key == ref))
            .first()
        )
        if record is None:
            raise NotFound(f"no file {ref}")
        return self._read(db, record.id, owner_id=owner_id)

    def fetch_by_anyone(self, db: Session, file_id: str) -> FileContent:
        """No ownership check: callers must have authorized the request already."""
        return self._read(db, file_id)

    # ─── Internals ────────────────────────────────────────────────────────────

    def _owned(self, db: Session, owner_id: int, file_id: str) -> models.File:
        record = db.query(models.File).filter(models.File.id == file_id).first()
        if record is None:
            raise NotFound(f"no file {file_id}")
        if record.owner_id != owner_id:
            logger.warning(f"User {owner_id} denied access to file {file_id}")
            raise Forbidden(f"file {file_id} not owned by {owner_id}")
        return record

    def _read(self, db: Session, file_id: str, owner_id: int = None) -> FileContent:
        with self._locks.hold(file_id):
            if owner_id is None:
                record = db.query(models.File).filter(models.File.id == file_id).first()
                if record is None:
                    raise NotFound(f"no file {file_id}")
            else:
                record = self._owned(db, owner_id, file_id)
            storage_key, key_b64, checksum = record.storage_key, record.encryption_key, record.checksum_sha256
            filename, content_type = record.filename, record.mime_type

        encrypted = self._storage.get(storage_key)
        if encrypted is None:
            # deleted between the metadata read and the blob read
            raise NotFound(f"blob {storage_key} missing")
        try:
            plaintext = unseal(encrypted, key_b64, checksum)
        except DecryptionError as e:
            logger.error(f"INTEGRITY CHECK FAILED for file {file_id}: {e}")
            raise StorageUnavailable(f"file {file_id} unreadable")
        return FileContent(file_id=file_id, filename=filename, content_type=content_type, data=plaintext)

    def _discard_blob(self, storage_key: str):
        try:
            self._storage.delete(storage_key)
        except StorageUnavailable:
            logger.error(f"Orphaned blob left in storage: {storage_key}")
