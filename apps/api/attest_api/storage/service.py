"""Artifact storage for proof evidence files and exported artifacts.

Two backends share one interface: a local filesystem root and MinIO
(S3-compatible). Locators are keys relative to the storage root, e.g.
``_global/proofs/subject-42/1700000000000-pdf``. Legacy rows may carry absolute
filesystem paths; the local backend reads those as-is.
"""

import logging
import os
import threading
from io import BytesIO
from pathlib import Path
from typing import Any, Callable, Iterator, Optional

import urllib3
from minio import Minio
from minio.error import S3Error
from urllib3.exceptions import HTTPError as TransportError

from attest_api.errors import ArtifactNotFoundError, StorageError, StorageTimeoutError
from attest_api.settings import get_settings

logger = logging.getLogger(__name__)


def call_with_timeout(fn: Callable[..., Any], *args, timeout: Optional[float] = None) -> Any:
    """Run a storage call on a daemon thread and wait at most ``timeout`` seconds.

    A call that overruns is abandoned and ``StorageTimeoutError`` is raised.
    The abandoned daemon thread does not block interpreter exit. Exceptions raised by ``fn`` are re-raised here.
    """
    outcome = {}
    done = threading.Event()

    def run():
        try:
            outcome["value"] = fn(*args)
        except Exception as e:
            outcome["error"] = e
        finally:
            done.set()

    threading.Thread(target=run, name="storage-io", daemon=True).start()
    if not done.wait(timeout):
        raise StorageTimeoutError(f"storage call timed out after {timeout}s")
    if "error" in outcome:
        raise outcome["error"]
    return outcome["value"]


class ArtifactStorage:
    """Interface for artifact storage backends."""

    type = "abstract"

    def read(self, locator: str) -> bytes:
        raise NotImplementedError

    def write(
        self, locator: str, data: bytes, content_type: str = "application/octet-stream"
    ) -> str:
        raise NotImplementedError

    def exists(self, locator: str) -> bool:
        raise NotImplementedError

    def delete(self, locator: str) -> None:
        raise NotImplementedError

    def available(self) -> bool:
        """True when the storage root (directory or bucket) exists."""
        raise NotImplementedError

    def walk(self, prefix: str = "") -> Iterator[str]:
        """Yield locators under ``prefix``. A missing root yields nothing."""
        raise NotImplementedError

    def describe(self) -> str:
        return self.type


class LocalStorage(ArtifactStorage):
    """Filesystem-backed artifact storage rooted at a directory."""

    type = "local"

    def __init__(self, root: str):
        self.root = Path(root).resolve()

    def _resolve(self, locator: str) -> Path:
        if not locator:
            raise ArtifactNotFoundError("Empty locator")
        candidate = Path(locator)
        if candidate.is_absolute():
            return candidate
        resolved = (self.root / candidate).resolve()
        if resolved != self.root and self.root not in resolved.parents:
            raise StorageError(f"Locator escapes storage root: {locator}")
        return resolved

    def read(self, locator: str) -> bytes:
        path = self._resolve(locator)
        try:
            return path.read_bytes()
        except FileNotFoundError:
            raise ArtifactNotFoundError(f"Artifact not found: {locator}")
        except IsADirectoryError:
            raise ArtifactNotFoundError(f"Artifact is a directory: {locator}")

    def write(
        self, locator: str, data: bytes, content_type: str = "application/octet-stream"
    ) -> str:
        path = self._resolve(locator)
        path.parent.mkdir(parents=True, exist_ok=True)
        tmp = path.with_name(f".{path.name}.tmp")
        tmp.write_bytes(data)
        os.replace(tmp, path)
        logger.debug(f"Wrote artifact: {locator} ({len(data)} bytes)")
        return locator

    def exists(self, locator: str) -> bool:
        try:
            return self._resolve(locator).is_file()
        except StorageError:
            return False

    def delete(self, locator: str) -> None:
        path = self._resolve(locator)
        try:
            path.unlink()
        except FileNotFoundError:
            raise ArtifactNotFoundError(f"Artifact not found: {locator}")

    def available(self) -> bool:
        return self.root.is_dir()

    def walk(self, prefix: str = "") -> Iterator[str]:
        base = self.root / prefix if prefix else self.root
        if not base.is_dir():
            return
        for dirpath, _dirnames, filenames in os.walk(base):
            for filename in sorted(filenames):
                if filename.startswith("."):
                    continue
                full = Path(dirpath) / filename
                yield full.relative_to(self.root).as_posix()

    def describe(self) -> str:
        return f"local ({self.root})"


class MinioStorage(ArtifactStorage):
    """MinIO (S3-compatible) artifact storage."""

    type = "s3"

    def __init__(
        self,
        endpoint: str,
        access_key: Optional[str],
        secret_key: Optional[str],
        bucket: str,
        secure: bool = False,
        client: Optional[Minio] = None,
        timeout: Optional[float] = None,
    ):
        self.bucket = bucket
        http_client = None
        if timeout is not None:
            http_client = urllib3.PoolManager(
                timeout=urllib3.Timeout(connect=timeout, read=timeout),
                retries=urllib3.Retry(total=2, backoff_factor=0.2, status_forcelist=[500, 502, 503, 504]),
            )
        self.client = client or Minio(
            endpoint,
            access_key=access_key,
            secret_key=secret_key,
            secure=secure,
            http_client=http_client,
        )

    def read(self, locator: str) -> bytes:
        if not locator:
            raise ArtifactNotFoundError("Empty locator")
        try:
            response = self.client.get_object(self.bucket, locator)
            try:
                return response.read()
            finally:
                response.close()
                response.release_conn()
        except S3Error as e:
            if e.code in ("NoSuchKey", "NoSuchBucket"):
                raise ArtifactNotFoundError(f"Object not found: {locator}")
            logger.error(f"Failed to retrieve object {locator}: {e}")
            raise StorageError(str(e)) from e
        except (TransportError, OSError) as e:
            logger.error(f"Storage unreachable reading {locator}: {e}")
            raise StorageError(str(e)) from e

    def write(
        self, locator: str, data: bytes, content_type: str = "application/octet-stream"
    ) -> str:
        try:
            if not self.client.bucket_exists(self.bucket):
                self.client.make_bucket(self.bucket)
                logger.info(f"Created bucket: {self.bucket}")
            self.client.put_object(
                self.bucket,
                locator,
                BytesIO(data),
                length=len(data),
                content_type=content_type,
            )
            logger.debug(f"Uploaded object: {locator} ({len(data)} bytes)")
            return locator
        except (S3Error, TransportError, OSError) as e:
            logger.error(f"Failed to upload object {locator}: {e}")
            raise StorageError(str(e)) from e

    def exists(self, locator: str) -> bool:
        """False only when the object is absent; transport failures raise."""
        if not locator:
            return False
        try:
            self.client.stat_object(self.bucket, locator)
            return True
        except S3Error as e:
            if e.code in ("NoSuchKey", "NoSuchBucket", "NoSuchObject"):
                return False
            raise StorageError(str(e)) from e
        except (TransportError, OSError) as e:
            raise StorageError(str(e)) from e

    def delete(self, locator: str) -> None:
        try:
            self.client.remove_object(self.bucket, locator)
        except S3Error as e:
            if e.code == "NoSuchKey":
                raise ArtifactNotFoundError(f"Object not found: {locator}")
            raise StorageError(str(e)) from e
        except (TransportError, OSError) as e:
            raise StorageError(str(e)) from e

    def available(self) -> bool:
        try:
            return self.client.bucket_exists(self.bucket)
        except (S3Error, TransportError, OSError) as e:
            logger.error(f"Failed to check bucket {self.bucket}: {e}")
            return False

    def walk(self, prefix: str = "") -> Iterator[str]:
        try:
            if not self.client.bucket_exists(self.bucket):
                return
            for obj in self.client.list_objects(self.bucket, prefix=prefix or None, recursive=True):
                if not obj.is_dir:
                    yield obj.object_name
        except (S3Error, TransportError, OSError) as e:
            logger.error(f"Failed to list objects under {prefix!r}: {e}")
            raise StorageError(str(e)) from e

    def describe(self) -> str:
        return f"s3 ({self.bucket})"


def create_storage(settings=None) -> ArtifactStorage:
    """Build the storage backend selected by settings."""
    settings = settings or get_settings()
    if settings.storage_provider == "s3":
        return MinioStorage(
            settings.minio_endpoint,
            settings.minio_access_key,
            settings.minio_secret_key,
            settings.minio_bucket,
            secure=settings.minio_use_ssl,
            timeout=settings.artifact_read_timeout_seconds,
        )
    return LocalStorage(settings.artifact_root)


# Global instance
_storage_service: Optional[ArtifactStorage] = None


def get_storage_service() -> ArtifactStorage:
    """Get or create storage service instance."""
    global _storage_service
    if _storage_service is None:
        _storage_service = create_storage()
    return _storage_service
