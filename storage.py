"""
storage.py — Blob storage collaborator for FileVault.

Two backends with the same contract: LocalDiskStorage and S3Storage (MinIO or
any S3-compatible store). Every call either completes within its deadline or
raises StorageUnavailable; nothing falls back silently on a write.
"""

import os
import logging
import tempfile
from concurrent.futures import ThreadPoolExecutor, TimeoutError as FutureTimeout

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError
from dotenv import load_dotenv

from errors import StorageUnavailable

load_dotenv()

logger = logging.getLogger(__name__)

MINIO_ENDPOINT = os.getenv("MINIO_ENDPOINT", "http://localhost:9000")
MINIO_ACCESS_KEY = os.getenv("MINIO_ROOT_USER", "admin")
MINIO_SECRET_KEY = os.getenv("MINIO_ROOT_PASSWORD", "StrongPassword123")
MINIO_BUCKET = os.getenv("MINIO_BUCKET", "filevault")
USE_MINIO = os.getenv("USE_MINIO", "false").lower() == "true"
MINIO_FALLBACK_TO_LOCAL = os.getenv("MINIO_FALLBACK_TO_LOCAL", "false").lower() == "true"

LOCAL_UPLOAD_DIR = os.getenv("UPLOAD_DIR", "uploads")
STORAGE_TIMEOUT_SECONDS = float(os.getenv("STORAGE_TIMEOUT_SECONDS", "10"))

_MISSING_CODES = ("NoSuchKey", "404", "NotFound")


class StorageBackend:
    backend_name = "abstract"

    def put(self, key: str, data: bytes, content_type: str = "application/octet-stream") -> None:
        raise NotImplementedError

    def get(self, key: str):
        """Return the stored bytes, or None when the key does not exist."""
        raise NotImplementedError

    def delete(self, key: str) -> None:
        raise NotImplementedError

    def exists(self, key: str) -> bool:
        raise NotImplementedError

    def get_health(self) -> dict:
        raise NotImplementedError

    def close(self) -> None:
        pass


# ─── Local disk ───────────────────────────────────────────────────────────────

class LocalDiskStorage(StorageBackend):
    backend_name = "LocalDisk"

    def __init__(self, base_dir: str = None, timeout: float = None, max_workers: int = 8):
        self._base_dir = os.path.realpath(base_dir or LOCAL_UPLOAD_DIR)
        self._timeout = STORAGE_TIMEOUT_SECONDS if timeout is None else timeout
        os.makedirs(self._base_dir, exist_ok=True)
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="storage")

    def _path(self, key: str) -> str:
        path = os.path.realpath(os.path.join(self._base_dir, key))
        if os.path.dirname(path) != self._base_dir:
            raise ValueError(f"Invalid storage key: {key!r}")
        return path

    def _run(self, op: str, key: str, fn, *args):
        future = self._executor.submit(fn, *args)
        try:
            return future.result(timeout=self._timeout)
        except FutureTimeout:
            future.cancel()
            logger.error(f"LocalDisk {op} timed out after {self._timeout}s for {key}")
            raise StorageUnavailable(f"{op} {key} timed out")
        except OSError as e:
            logger.error(f"LocalDisk {op} failed for {key}: {e}")
            raise StorageUnavailable(f"{op} {key} failed: {e}")

    @staticmethod
    def _write(path: str, data: bytes):
        # temp file + rename so a reader never sees a half-written blob
        fd, tmp = tempfile.mkstemp(dir=os.path.dirname(path), prefix=".upload-")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.replace(tmp, path)
        except BaseException:
            if os.path.exists(tmp):
                os.remove(tmp)
            raise

    @staticmethod
    def _read(path: str):
        try:
            with open(path, "rb") as f:
                return f.read()
        except FileNotFoundError:
            return None

    @staticmethod
    def _remove(path: str):
        try:
            os.remove(path)
        except FileNotFoundError:
            pass

    def put(self, key, data, content_type="application/octet-stream"):
        self._run("PUT", key, self._write, self._path(key), data)

    def get(self, key):
        return self._run("GET", key, self._read, self._path(key))

    def delete(self, key):
        self._run("DELETE", key, self._remove, self._path(key))

    def exists(self, key):
        return self._run("HEAD", key, os.path.exists, self._path(key))

    def get_health(self) -> dict:
        writable = os.access(self._base_dir, os.W_OK)
        return {"status": "healthy" if writable else "degraded", "backend": self.backend_name}

    def close(self):
        self._executor.shutdown(wait=False)


# ─── S3 / MinIO ───────────────────────────────────────────────────────────────

def _get_s3_client(endpoint: str, access_key: str, secret_key: str, timeout: float):
    return boto3.client(
        "s3",
        endpoint_url=endpoint,
        aws_access_key_id=access_key,
        aws_secret_access_key=secret_key,
        config=Config(
            signature_version="s3v4",
            connect_timeout=5,
            read_timeout=timeout,
            retries={"max_attempts": 3, "mode": "standard"},
        ),
        region_name="us-east-1",
    )


class S3Storage(StorageBackend):
    backend_name = "MinIO"

    def __init__(self, client=None, bucket: str = None, endpoint: str = None, ensure_bucket: bool = True):
        self._endpoint = endpoint or MINIO_ENDPOINT
        self._bucket = bucket or MINIO_BUCKET
        self._s3 = client or _get_s3_client(self._endpoint, MINIO_ACCESS_KEY, MINIO_SECRET_KEY,
                                            STORAGE_TIMEOUT_SECONDS)
        if ensure_bucket:
            self._ensure_bucket()

    def _ensure_bucket(self):
        try:
            self._s3.head_bucket(Bucket=self._bucket)
        except ClientError as e:
            if e.response["Error"]["Code"] in _MISSING_CODES:
                self._s3.create_bucket(Bucket=self._bucket)
                logger.info(f"Created MinIO bucket: {self._bucket}")
            else:
                raise

    def put(self, key, data, content_type="application/octet-stream"):
        try:
            self._s3.put_object(
                Bucket=self._bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
                Metadata={"encrypted": "AES-256-GCM"},
            )
        except (ClientError, BotoCoreError) as e:
            logger.error(f"MinIO PUT failed for {key}: {e}")
            raise StorageUnavailable(f"PUT {key} failed: {e}")

    def get(self, key):
        try:
            response = self._s3.get_object(Bucket=self._bucket, Key=key)
            return response["Body"].read()
        except ClientError as e:
            if e.response["Error"]["Code"] in _MISSING_CODES:
                return None
            logger.error(f"MinIO GET failed for {key}: {e}")
            raise StorageUnavailable(f"GET {key} failed: {e}")
        except BotoCoreError as e:
            logger.error(f"MinIO GET error for {key}: {e}")
            raise StorageUnavailable(f"GET {key} failed: {e}")

    def delete(self, key):
        try:
            self._s3.delete_object(Bucket=self._bucket, Key=key)
        except (ClientError, BotoCoreError) as e:
            logger.error(f"MinIO DELETE failed for {key}: {e}")
            raise StorageUnavailable(f"DELETE {key} failed: {e}")

    def exists(self, key):
        try:
            self._s3.head_object(Bucket=self._bucket, Key=key)
            return True
        except ClientError as e:
            if e.response["Error"]["Code"] in _MISSING_CODES:
                return False
            raise StorageUnavailable(f"HEAD {key} failed: {e}")
        except BotoCoreError as e:
            raise StorageUnavailable(f"HEAD {key} failed: {e}")

    def get_health(self) -> dict:
        try:
            self._s3.head_bucket(Bucket=self._bucket)
            return {"status": "healthy", "backend": self.backend_name, "endpoint": self._endpoint}
        except (ClientError, BotoCoreError) as e:
            return {"status": "degraded", "backend": self.backend_name, "error": str(e)}


def build_storage(use_minio: bool = None, upload_dir: str = None, fallback_to_local: bool = None) -> StorageBackend:
    """
    Pick the blob backend at startup. An unreachable MinIO is fatal unless
    MINIO_FALLBACK_TO_LOCAL is set, in which case local disk is used instead.
    """
    use_minio = USE_MINIO if use_minio is None else use_minio
    fallback_to_local = MINIO_FALLBACK_TO_LOCAL if fallback_to_local is None else fallback_to_local
    if use_minio:
        try:
            backend = S3Storage()
            logger.info(f"MinIO connected: {MINIO_ENDPOINT} / bucket={MINIO_BUCKET}")
            return backend
        except (ClientError, BotoCoreError) as e:
            if not fallback_to_local:
                logger.error(f"MinIO unavailable at {MINIO_ENDPOINT}: {e}")
                raise StorageUnavailable(f"MinIO unavailable: {e}")
            logger.warning(f"MinIO unavailable ({e}). MINIO_FALLBACK_TO_LOCAL is set, using local disk.")
    return LocalDiskStorage(base_dir=upload_dir)
