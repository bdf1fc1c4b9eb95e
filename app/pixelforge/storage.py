from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import BinaryIO
from urllib.parse import quote

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from app.pixelforge.errors import StorageDeleteError, StorageError, StorageUploadError

logger = logging.getLogger(__name__)


class StorageProvider(str, Enum):
    LOCAL = "local"
    S3 = "s3"


@dataclass(frozen=True)
class StoredObject:
    provider: StorageProvider
    path: str
    size: int
    file_id: str | None = None
    url: str | None = None


def _object_key(folder: str, logical_name: str) -> str:
    folder = (folder or "").strip().strip("/").replace("\\", "/")
    name = (logical_name or "").strip().lstrip("/").replace("\\", "/")
    return f"{folder}/{name}" if folder else name


class StorageBackend:
    provider: StorageProvider

    def put(
        self,
        data: bytes,
        logical_name: str,
        *,
        folder: str = "",
        tags: Sequence[str] = (),
        content_type: str | None = None,
    ) -> StoredObject:
        raise NotImplementedError

    def delete(self, path: str) -> None:
        raise NotImplementedError

    def direct_url(self, path: str | None) -> str | None:
        raise NotImplementedError


@dataclass(frozen=True)
class LocalStorage(StorageBackend):
    root: Path
    base_url: str = "/storage"
    provider: StorageProvider = StorageProvider.LOCAL

    def _path(self, key: str) -> Path:
        safe_key = key.lstrip("/").replace("\\", "/")
        root = self.root.resolve()
        p = (root / safe_key).resolve()
        if p != root and root not in p.parents:
            raise StorageError(f"Storage key escapes root: {key!r}")
        return p

    def put(
        self,
        data: bytes,
        logical_name: str,
        *,
        folder: str = "",
        tags: Sequence[str] = (),
        content_type: str | None = None,
    ) -> StoredObject:
        key = _object_key(folder, logical_name)
        try:
            p = self._path(key)
            p.parent.mkdir(parents=True, exist_ok=True)
            p.write_bytes(data)
        except (OSError, StorageError) as e:
            raise StorageUploadError(f"Failed to write {key!r} to local storage: {e}") from e
        return StoredObject(provider=self.provider, path=key, size=len(data))

    def delete(self, path: str) -> None:
        if not path:
            return
        try:
            self._path(path).unlink(missing_ok=True)
        except (OSError, StorageError) as e:
            raise StorageDeleteError(f"Failed to delete {path!r} from local storage: {e}") from e

    def direct_url(self, path: str | None) -> str | None:
        if not path or not path.strip():
            return None
        return f"{self.base_url.rstrip('/')}/{quote(path.strip().lstrip('/'))}"

    def open(self, path: str) -> BinaryIO:
        return self._path(path).open("rb")

    def exists(self, path: str) -> bool:
        try:
            return self._path(path).is_file()
        except StorageError:
            return False


@dataclass(frozen=True)
class S3Storage(StorageBackend):
    endpoint: str
    region: str
    bucket: str
    access_key_id: str
    secret_access_key: str
    public_url: str = ""
    timeout_seconds: int = 30
    provider: StorageProvider = StorageProvider.S3

    def _client(self):
        return boto3.client(
            "s3",
            endpoint_url=f"https://{self.endpoint}" if self.endpoint else None,
            region_name=self.region or None,
            aws_access_key_id=self.access_key_id,
            aws_secret_access_key=self.secret_access_key,
            config=Config(
                connect_timeout=self.timeout_seconds,
                read_timeout=self.timeout_seconds,
                retries={"max_attempts": 2},
            ),
        )

    def put(
        self,
        data: bytes,
        logical_name: str,
        *,
        folder: str = "",
        tags: Sequence[str] = (),
        content_type: str | None = None,
    ) -> StoredObject:
        key = _object_key(folder, logical_name)
        extra: dict[str, object] = {}
        if content_type:
            extra["ContentType"] = content_type
        if tags:
            extra["Metadata"] = {"tags": ",".join(tags)}
        try:
            resp = self._client().put_object(Bucket=self.bucket, Key=key, Body=data, **extra)
        except (BotoCoreError, ClientError) as e:
            raise StorageUploadError(f"Failed to upload {key!r} to bucket {self.bucket!r}: {e}") from e
        return StoredObject(
            provider=self.provider,
            path=key,
            size=len(data),
            file_id=(resp or {}).get("VersionId"),
            url=self.direct_url(key),
        )

    def delete(self, path: str) -> None:
        if not path:
            return
        try:
            # S3 answers 204 for keys that are already gone.
            self._client().delete_object(Bucket=self.bucket, Key=path)
        except (BotoCoreError, ClientError) as e:
            raise StorageDeleteError(f"Failed to delete {path!r} from bucket {self.bucket!r}: {e}") from e

    def direct_url(self, path: str | None) -> str | None:
        if not path or not path.strip():
            return None
        if self.public_url:
            base = self.public_url
        elif self.endpoint:
            base = f"https://{self.bucket}.{self.endpoint}"
        else:
            base = f"https://{self.bucket}.s3.{self.region}.amazonaws.com"
        return f"{base.rstrip('/')}/{quote(path.strip().lstrip('/'))}"

    def check_bucket(self) -> None:
        try:
            self._client().head_bucket(Bucket=self.bucket)
        except (BotoCoreError, ClientError) as e:
            raise StorageError(f"Bucket {self.bucket!r} not accessible: {e}") from e


def storage_for_provider(provider: str | StorageProvider, config: dict) -> StorageBackend:
    """
    Backend for one provider. Read paths must call this with the provider stored on the
    version, never with the configured default.
    """
    raw = provider.value if isinstance(provider, StorageProvider) else (provider or "")
    try:
        p = StorageProvider(raw.strip().lower())
    except ValueError:
        raise StorageError(f"Unknown storage provider: {provider!r}")

    if p is StorageProvider.S3:
        return S3Storage(
            endpoint=(config.get("S3_ENDPOINT") or "").strip(),
            region=(config.get("S3_REGION") or "nyc3").strip(),
            bucket=(config.get("S3_BUCKET") or "").strip(),
            access_key_id=(config.get("S3_ACCESS_KEY_ID") or "").strip(),
            secret_access_key=(config.get("S3_SECRET_ACCESS_KEY") or "").strip(),
            public_url=(config.get("S3_PUBLIC_URL") or "").strip(),
            timeout_seconds=int(config.get("STORAGE_TIMEOUT_SECONDS") or 30),
        )
    root = config.get("LOCAL_STORAGE_ROOT") or (Path.cwd() / "storage")
    return LocalStorage(root=Path(root), base_url=(config.get("LOCAL_STORAGE_URL") or "/storage").strip())


def storage_from_config(config: dict) -> StorageBackend:
    """Backend that receives new uploads."""
    backend = (config.get("STORAGE_BACKEND") or "local").strip().lower()
    return storage_for_provider(backend, config)
