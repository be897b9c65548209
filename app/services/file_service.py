"""Statement file storage: S3 keys, or ``local://`` keys served from a local directory."""

import time
from pathlib import Path

from botocore.exceptions import BotoCoreError, ClientError

from app.core.errors import StorageError
from app.core.utils import ensure_dir, get_logger

from .s3_file_service import S3FileService

LOCAL_PREFIX = "local://"

logger = get_logger("statement-pipeline.storage")


class FileService:
    """Service for statement file operations, S3 when configured and local disk otherwise."""

    def __init__(self, s3_service: S3FileService | None, local_root: str | Path = "uploads") -> None:
        """Initialize FileService with an optional S3FileService and a local fallback root."""
        self.s3 = s3_service
        self.local_root = Path(local_root)

    def _local_path(self, key: str) -> Path:
        relative = key[len(LOCAL_PREFIX) :].lstrip("/")
        path = (self.local_root / relative).resolve()
        if self.local_root.resolve() not in path.parents:
            msg = f"Storage key escapes the local root: {key}"
            raise StorageError(msg)
        return path

    def save_upload(self, file_name: str, data: bytes, content_type: str | None = None) -> str:
        """Store an uploaded statement and return its storage key."""
        safe_name = Path(file_name).name
        relative = f"bank-statements/{int(time.time() * 1000)}-{safe_name}"
        if self.s3 is not None:
            key = f"{self.s3.prefix}{relative}"
            self.s3.upload_fileobj(key, data, content_type)
            return key
        key = f"{LOCAL_PREFIX}{relative}"
        path = self._local_path(key)
        ensure_dir(path.parent)
        path.write_bytes(data)
        return key

    def download_file(self, key: str) -> bytes:
        """Read a statement file by storage key."""
        if key.startswith(LOCAL_PREFIX):
            path = self._local_path(key)
            logger.info(f"[Storage] Reading local file {path}")
            try:
                return path.read_bytes()
            except OSError as exc:
                msg = f"Failed to read local file {key}: {exc}"
                raise StorageError(msg) from exc
        if self.s3 is None:
            msg = f"No S3 storage configured for key {key}"
            raise StorageError(msg)
        logger.info(f"[Storage] Downloading from S3: {key}")
        try:
            return self.s3.download_fileobj(key)
        except (ClientError, BotoCoreError) as exc:
            msg = f"Failed to download file from storage: {exc}"
            raise StorageError(msg) from exc

    def download_url(self, key: str) -> str | None:
        """Signed URL for S3 keys; ``None`` for local keys."""
        if key.startswith(LOCAL_PREFIX) or self.s3 is None:
            return None
        return self.s3.presigned_url(key)
