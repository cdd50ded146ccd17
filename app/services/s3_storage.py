"""Object storage for photo blobs: S3-compatible bucket, or local filesystem fallback.

Both stores expose the same four calls (`get`, `put`, `delete`, `delete_many`)
and raise `ObjectNotFound` / `StorageError` from `app.core.errors`.
"""
import logging
import os
from typing import Iterable, List, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from app.core.errors import ObjectNotFound, StorageError

logger = logging.getLogger(__name__)

# S3 DeleteObjects accepts at most 1000 keys per call
_DELETE_BATCH = 1000


class S3StorageService:
    """Handles photo blobs in an S3-compatible bucket (AWS S3 or Cloudflare R2)."""

    def __init__(
        self,
        bucket: str,
        endpoint_url: Optional[str] = None,
        region: str = "auto",
        access_key: Optional[str] = None,
        secret_key: Optional[str] = None,
        public_url: Optional[str] = None,
        timeout_seconds: float = 30.0,
        max_connections: int = 16,
    ):
        """
        Initialize S3 client.

        Args:
            bucket: bucket name
            endpoint_url: custom endpoint (R2 / MinIO); None for AWS
            region: region name ("auto" for R2)
            access_key: access key (optional; uses ambient credentials otherwise)
            secret_key: secret key (optional; uses ambient credentials otherwise)
            public_url: public base URL for the bucket, if it is exposed
            timeout_seconds: connect/read timeout applied to every call
            max_connections: connection pool size; should cover archive fetch concurrency
        """
        self.bucket = bucket
        self.endpoint_url = endpoint_url or None
        self.public_url = (public_url or "").rstrip("/") or (
            f"{self.endpoint_url.rstrip('/')}/{bucket}" if self.endpoint_url else ""
        )
        self.client = boto3.client(
            "s3",
            endpoint_url=self.endpoint_url,
            region_name=region or None,
            aws_access_key_id=access_key or None,
            aws_secret_access_key=secret_key or None,
            config=Config(
                signature_version="s3v4",
                connect_timeout=timeout_seconds,
                read_timeout=timeout_seconds,
                retries={"max_attempts": 2, "mode": "standard"},
                max_pool_connections=max(10, int(max_connections)),
            ),
        )
        logger.info(f"S3 storage initialized for bucket '{bucket}'")

    def get(self, key: str) -> bytes:
        """Fetch an object's bytes; raises ObjectNotFound if the key is absent."""
        try:
            response = self.client.get_object(Bucket=self.bucket, Key=key)
            body = response.get("Body")
            if body is None:
                raise ObjectNotFound(key)
            return body.read()
        except ClientError as e:
            code = str(e.response.get("Error", {}).get("Code", ""))
            if code in ("NoSuchKey", "404", "NotFound"):
                raise ObjectNotFound(key) from e
            logger.error(f"S3 get failed for {key}: {e}")
            raise StorageError(f"get failed for {key}: {code}") from e
        except BotoCoreError as e:
            logger.error(f"S3 get failed for {key}: {e}")
            raise StorageError(f"get failed for {key}") from e

    def put(self, key: str, data: bytes, content_type: str = "application/octet-stream") -> str:
        try:
            self.client.put_object(
                Bucket=self.bucket,
                Key=key,
                Body=data,
                ContentType=content_type,
            )
        except (ClientError, BotoCoreError) as e:
            logger.error(f"S3 upload failed for {key}: {e}")
            raise StorageError(f"put failed for {key}") from e
        logger.info(f"Uploaded to S3: s3://{self.bucket}/{key}")
        return key

    def delete(self, key: str) -> None:
        try:
            self.client.delete_object(Bucket=self.bucket, Key=key)
        except (ClientError, BotoCoreError) as e:
            logger.error(f"S3 delete failed for {key}: {e}")
            raise StorageError(f"delete failed for {key}") from e
        logger.info(f"Deleted from S3: s3://{self.bucket}/{key}")

    def delete_many(self, keys: Iterable[str]) -> None:
        keys = [k for k in keys if k]
        if not keys:
            return
        for start in range(0, len(keys), _DELETE_BATCH):
            chunk = keys[start : start + _DELETE_BATCH]
            try:
                response = self.client.delete_objects(
                    Bucket=self.bucket,
                    Delete={"Objects": [{"Key": k} for k in chunk], "Quiet": True},
                )
            except (ClientError, BotoCoreError) as e:
                logger.error(f"S3 batch delete failed ({len(chunk)} keys): {e}")
                raise StorageError("batch delete failed") from e
            errors = response.get("Errors") or []
            if errors:
                failed = [err.get("Key") for err in errors]
                logger.error(f"S3 batch delete left {len(failed)} keys: {failed[:10]}")
                raise StorageError(f"batch delete failed for {len(failed)} keys")
        logger.info(f"Deleted {len(keys)} objects from s3://{self.bucket}")

    def public_url_for(self, key: str) -> str:
        return f"{self.public_url}/{key}" if self.public_url else key


class LocalStorageService:
    """Filesystem-backed store used when no bucket is configured (dev and tests)."""

    def __init__(self, root: str = "storage", public_url: str = "/storage"):
        self.root = os.path.abspath(root)
        self.public_url = public_url.rstrip("/")
        os.makedirs(self.root, exist_ok=True)

    def _path(self, key: str) -> str:
        path = os.path.abspath(os.path.join(self.root, key))
        # Keys must stay inside the storage root
        if os.path.commonpath([self.root, path]) != self.root:
            raise StorageError(f"invalid key: {key}")
        return path

    def get(self, key: str) -> bytes:
        path = self._path(key)
        try:
            with open(path, "rb") as fh:
                return fh.read()
        except FileNotFoundError as e:
            raise ObjectNotFound(key) from e
        except OSError as e:
            raise StorageError(f"get failed for {key}") from e

    def put(self, key: str, data: bytes, content_type: str = "application/octet-stream") -> str:
        path = self._path(key)
        try:
            os.makedirs(os.path.dirname(path), exist_ok=True)
            with open(path, "wb") as fh:
                fh.write(data)
        except OSError as e:
            raise StorageError(f"put failed for {key}") from e
        logger.debug(f"Stored {key} under {self.root}")
        return key

    def delete(self, key: str) -> None:
        try:
            os.remove(self._path(key))
        except FileNotFoundError:
            # Missing blobs are already in the desired state
            pass
        except OSError as e:
            raise StorageError(f"delete failed for {key}") from e

    def delete_many(self, keys: Iterable[str]) -> None:
        failed: List[str] = []
        for key in keys:
            try:
                self.delete(key)
            except StorageError:
                failed.append(key)
        if failed:
            raise StorageError(f"batch delete failed for {len(failed)} keys")

    def public_url_for(self, key: str) -> str:
        return f"{self.public_url}/{key}"


def build_object_store(settings):
    """Create the configured store: S3 when a bucket is set, local filesystem otherwise."""
    if getattr(settings, "S3_BUCKET", ""):
        return S3StorageService(
            bucket=settings.S3_BUCKET,
            endpoint_url=settings.S3_ENDPOINT_URL,
            region=settings.S3_REGION,
            access_key=settings.S3_ACCESS_KEY_ID,
            secret_key=settings.S3_SECRET_ACCESS_KEY,
            public_url=settings.S3_PUBLIC_URL,
            timeout_seconds=float(settings.ARCHIVE_FETCH_TIMEOUT_SECONDS),
            max_connections=int(settings.ARCHIVE_FETCH_CONCURRENCY),
        )
    logger.info("S3_BUCKET not configured; using local filesystem")
    return LocalStorageService(root=settings.LOCAL_STORAGE_ROOT)
