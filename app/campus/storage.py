from __future__ import annotations

import os
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO

from app.campus.errors import NotFound, StorageIOError


class StorageError(StorageIOError):
    pass


class StorageKeyNotFound(NotFound):
    default_message = "Stored file not found."


class Storage:
    def put_bytes(self, key: str, data: bytes, *, content_type: str | None = None) -> None:
        raise NotImplementedError

    def open(self, key: str) -> BinaryIO:
        raise NotImplementedError

    def exists(self, key: str) -> bool:
        raise NotImplementedError

    def delete(self, key: str) -> None:
        """Remove a stored object. Deleting a missing key is not an error."""
        raise NotImplementedError

    def copy(self, src_key: str, dst_key: str) -> None:
        raise NotImplementedError


@dataclass(frozen=True)
class LocalStorage(Storage):
    root: Path

    def _path(self, key: str) -> Path:
        safe_key = key.lstrip("/").replace("\\", "/").replace("..", "")
        return self.root / safe_key

    def put_bytes(self, key: str, data: bytes, *, content_type: str | None = None) -> None:
        p = self._path(key)
        try:
            p.parent.mkdir(parents=True, exist_ok=True)
            p.write_bytes(data)
        except OSError as e:
            raise StorageError("Could not write file to storage.", error=str(e)) from e

    def open(self, key: str) -> BinaryIO:
        p = self._path(key)
        if not p.is_file():
            raise StorageKeyNotFound()
        try:
            return p.open("rb")
        except OSError as e:
            raise StorageError("Could not read file from storage.", error=str(e)) from e

    def exists(self, key: str) -> bool:
        return self._path(key).is_file()

    def delete(self, key: str) -> None:
        p = self._path(key)
        try:
            p.unlink(missing_ok=True)
        except OSError as e:
            raise StorageError("Could not delete file from storage.", error=str(e)) from e

    def copy(self, src_key: str, dst_key: str) -> None:
        src = self._path(src_key)
        if not src.is_file():
            raise StorageKeyNotFound()
        dst = self._path(dst_key)
        try:
            dst.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(src, dst)
        except OSError as e:
            raise StorageError("Could not copy file in storage.", error=str(e)) from e


@dataclass(frozen=True)
class S3Storage(Storage):
    endpoint: str
    region: str
    bucket: str
    access_key_id: str
    secret_access_key: str

    def _client(self):
        try:
            import boto3  # type: ignore
        except Exception as e:  # pragma: no cover
            raise StorageError("boto3 required for S3 storage. Install the 's3' extra.") from e
        return boto3.client(
            "s3",
            endpoint_url=f"https://{self.endpoint}" if self.endpoint else None,
            region_name=self.region or None,
            aws_access_key_id=self.access_key_id,
            aws_secret_access_key=self.secret_access_key,
        )

    def put_bytes(self, key: str, data: bytes, *, content_type: str | None = None) -> None:
        extra: dict[str, object] = {}
        if content_type:
            extra["ContentType"] = content_type
        try:
            self._client().put_object(Bucket=self.bucket, Key=key, Body=data, **extra)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError("Could not write file to storage.", error=str(e)) from e

    def open(self, key: str) -> BinaryIO:
        client = self._client()
        try:
            obj = client.get_object(Bucket=self.bucket, Key=key)
        except client.exceptions.NoSuchKey as e:
            raise StorageKeyNotFound() from e
        except Exception as e:
            raise StorageError("Could not read file from storage.", error=str(e)) from e
        return obj["Body"]  # type: ignore[return-value]

    def exists(self, key: str) -> bool:
        try:
            self._client().head_object(Bucket=self.bucket, Key=key)
            return True
        except Exception:
            return False

    def delete(self, key: str) -> None:
        # S3 DeleteObject is idempotent for missing keys.
        try:
            self._client().delete_object(Bucket=self.bucket, Key=key)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError("Could not delete file from storage.", error=str(e)) from e

    def copy(self, src_key: str, dst_key: str) -> None:
        if not self.exists(src_key):
            raise StorageKeyNotFound()
        try:
            self._client().copy_object(Bucket=self.bucket, Key=dst_key, CopySource={"Bucket": self.bucket, "Key": src_key})
        except Exception as e:
            raise StorageError("Could not copy file in storage.", error=str(e)) from e


def storage_from_config(config: dict) -> Storage:
    backend = (config.get("STORAGE_BACKEND") or "local").strip().lower()
    if backend == "s3":
        return S3Storage(
            endpoint=(config.get("S3_ENDPOINT") or "").strip(),
            region=(config.get("S3_REGION") or "nyc3").strip(),
            bucket=(config.get("S3_BUCKET") or "").strip(),
            access_key_id=(config.get("S3_ACCESS_KEY_ID") or "").strip(),
            secret_access_key=(config.get("S3_SECRET_ACCESS_KEY") or "").strip(),
        )
    # default local
    root = (config.get("STORAGE_LOCAL_ROOT") or "").strip()
    return LocalStorage(root=Path(root) if root else Path(os.getcwd()) / "storage")
