from __future__ import annotations

import time
from threading import RLock
from typing import Any
from uuid import uuid4

from civicwatch.config import settings
from civicwatch.infra.supabase_client import get_supabase_client


class StorageError(RuntimeError):
    pass


class BlobStore:
    """Private object storage addressed by path."""

    def upload(self, path: str, data: bytes, content_type: str) -> str:
        raise NotImplementedError

    def remove(self, path: str) -> None:
        raise NotImplementedError

    def exists(self, path: str) -> bool:
        raise NotImplementedError

    def signed_url(self, path: str, expires_in: int) -> str:
        raise NotImplementedError


class InMemoryBlobStore(BlobStore):
    def __init__(self, bucket: str = "evidence-media") -> None:
        self.bucket = bucket
        self._lock = RLock()
        self._objects: dict[str, tuple[bytes, str]] = {}

    def upload(self, path: str, data: bytes, content_type: str) -> str:
        with self._lock:
            if path in self._objects:
                raise StorageError(f"Object already exists: {path}")
            self._objects[path] = (bytes(data), content_type)
        return path

    def remove(self, path: str) -> None:
        with self._lock:
            self._objects.pop(path, None)

    def exists(self, path: str) -> bool:
        with self._lock:
            return path in self._objects

    def signed_url(self, path: str, expires_in: int) -> str:
        if not self.exists(path):
            raise StorageError(f"Object not found: {path}")
        expires_at = int(time.time()) + int(expires_in)
        return f"memory://{self.bucket}/{path}?token={uuid4().hex}&expires={expires_at}"

    def paths(self) -> list[str]:
        with self._lock:
            return sorted(self._objects)


class SupabaseBlobStore(BlobStore):
    def __init__(self, client: Any, bucket: str) -> None:
        self.client = client
        self.bucket = bucket

    def _bucket(self) -> Any:
        return self.client.storage.from_(self.bucket)

    def upload(self, path: str, data: bytes, content_type: str) -> str:
        try:
            self._bucket().upload(
                path,
                data,
                {"content-type": content_type, "cache-control": "3600", "upsert": "false"},
            )
        except Exception as exc:
            raise StorageError(f"Upload failed for {path}: {exc}") from exc
        return path

    def remove(self, path: str) -> None:
        try:
            self._bucket().remove([path])
        except Exception as exc:
            raise StorageError(f"Remove failed for {path}: {exc}") from exc

    def exists(self, path: str) -> bool:
        folder, _, name = path.rpartition("/")
        try:
            entries = self._bucket().list(folder, {"search": name})
        except Exception as exc:
            raise StorageError(f"List failed for {folder}: {exc}") from exc
        return any(entry.get("name") == name for entry in entries or [])

    def signed_url(self, path: str, expires_in: int) -> str:
        try:
            res = self._bucket().create_signed_url(path, expires_in)
        except Exception as exc:
            raise StorageError(f"Signed URL failed for {path}: {exc}") from exc
        url = (res or {}).get("signedURL") or (res or {}).get("signedUrl") or (res or {}).get("signed_url")
        if not url:
            raise StorageError(f"Signed URL failed for {path}")
        return str(url)


def build_blob_store() -> tuple[BlobStore, bool, str | None]:
    client, err = get_supabase_client()
    if client is None:
        return InMemoryBlobStore(settings.evidence_bucket), False, f"{err}; using in-memory blob store."
    return SupabaseBlobStore(client, settings.evidence_bucket), True, None
