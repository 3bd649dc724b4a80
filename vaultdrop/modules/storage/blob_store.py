import asyncio
import io
import json
import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List, Optional

import aiofiles
import aiofiles.os
from b2sdk.v2 import InMemoryAccountInfo, B2Api
from b2sdk.v2.exception import B2ConnectionError, B2RequestTimeout, FileNotPresent, ServiceError

from vaultdrop.core.config import settings
from vaultdrop.core.errors import BlobStoreUnavailable, ConfigurationError, InvalidInput

logger = logging.getLogger(__name__)

class BlobStore:
    """
    Opaque key -> bytes store. Keys are slash separated ("products/<id>/chunks/...").
    """
    name = "abstract"

    async def set(self, key: str, data: bytes) -> None:
        raise NotImplementedError

    async def get(self, key: str) -> Optional[bytes]:
        raise NotImplementedError

    async def delete(self, key: str) -> None:
        raise NotImplementedError

    async def list(self, prefix: str) -> List[str]:
        raise NotImplementedError

    async def set_json(self, key: str, obj: Any) -> None:
        await self.set(key, json.dumps(obj, sort_keys=True).encode("utf-8"))

    async def get_json(self, key: str) -> Optional[Any]:
        data = await self.get(key)
        if data is None:
            return None
        return json.loads(data.decode("utf-8"))

class MemoryBlobStore(BlobStore):
    name = "memory"

    def __init__(self):
        self.blobs: Dict[str, bytes] = {}

    async def set(self, key: str, data: bytes) -> None:
        self.blobs[key] = bytes(data)

    async def get(self, key: str) -> Optional[bytes]:
        return self.blobs.get(key)

    async def delete(self, key: str) -> None:
        self.blobs.pop(key, None)

    async def list(self, prefix: str) -> List[str]:
        return sorted(k for k in self.blobs if k.startswith(prefix))

class LocalBlobStore(BlobStore):
    name = "local"

    def __init__(self, root: str):
        self.root = Path(root).resolve()

    def _path(self, key: str) -> Path:
        if not key or key.startswith("/") or "\\" in key:
            raise InvalidInput(f"Invalid blob key: {key!r}")
        path = (self.root / key).resolve()
        if path != self.root and self.root not in path.parents:
            raise InvalidInput(f"Invalid blob key: {key!r}")
        return path

    async def set(self, key: str, data: bytes) -> None:
        path = self._path(key)
        try:
            await aiofiles.os.makedirs(path.parent, exist_ok=True)
            # Write then rename so a reader never sees a half written chunk
            tmp_path = path.with_name(path.name + ".part")
            async with aiofiles.open(tmp_path, "wb") as f:
                await f.write(data)
            await aiofiles.os.replace(tmp_path, path)
        except OSError as e:
            raise BlobStoreUnavailable(f"Local write failed for {key}: {e}") from e

    async def get(self, key: str) -> Optional[bytes]:
        path = self._path(key)
        if not await aiofiles.os.path.exists(path):
            return None
        try:
            async with aiofiles.open(path, "rb") as f:
                return await f.read()
        except OSError as e:
            raise BlobStoreUnavailable(f"Local read failed for {key}: {e}") from e

    async def delete(self, key: str) -> None:
        path = self._path(key)
        try:
            await aiofiles.os.remove(path)
        except FileNotFoundError:
            pass

    async def list(self, prefix: str) -> List[str]:
        def _walk():
            keys = []
            for dirpath, _, filenames in os.walk(self.root):
                for filename in filenames:
                    if filename.endswith(".part"):
                        continue
                    rel = Path(dirpath, filename).relative_to(self.root).as_posix()
                    if rel.startswith(prefix):
                        keys.append(rel)
            return sorted(keys)
        return await asyncio.to_thread(_walk)

class B2BlobStore(BlobStore):
    """
    Backblaze B2 bucket. b2sdk is blocking, so every call runs in a worker thread.
    """
    name = "b2"

    def __init__(self, application_key_id: Optional[str], application_key: Optional[str], bucket_name: str):
        if not (application_key_id and application_key and bucket_name):
            raise ConfigurationError("B2 storage selected but B2 credentials are missing")
        self.bucket_name = bucket_name
        self.b2_api = B2Api(InMemoryAccountInfo())
        self.b2_api.authorize_account("production", application_key_id, application_key)
        self.bucket = self.b2_api.get_bucket_by_name(bucket_name)
        logger.info(f"[Storage] B2 bucket ready: {bucket_name}")

    async def _call(self, fn, *args, **kwargs):
        try:
            return await asyncio.to_thread(fn, *args, **kwargs)
        except (B2ConnectionError, B2RequestTimeout, ServiceError) as e:
            raise BlobStoreUnavailable(f"B2 call failed: {e}") from e

    async def set(self, key: str, data: bytes) -> None:
        await self._call(self.bucket.upload_bytes, data, key)

    async def get(self, key: str) -> Optional[bytes]:
        def _download():
            buffer = io.BytesIO()
            try:
                downloaded = self.bucket.download_file_by_name(key)
            except FileNotPresent:
                return None
            downloaded.save(buffer)
            return buffer.getvalue()

        return await self._call(_download)

    async def delete(self, key: str) -> None:
        def _delete():
            for version, _ in self.bucket.ls(key.rsplit("/", 1)[0], latest_only=False):
                if version.file_name == key:
                    self.bucket.delete_file_version(version.id_, version.file_name)

        await self._call(_delete)

    async def list(self, prefix: str) -> List[str]:
        def _list():
            folder = prefix.rsplit("/", 1)[0] if "/" in prefix else ""
            return sorted(
                version.file_name
                for version, _ in self.bucket.ls(folder, recursive=True)
                if version.file_name.startswith(prefix)
            )

        return await self._call(_list)

def build_blob_store(backend: str) -> BlobStore:
    if backend == "memory":
        return MemoryBlobStore()
    if backend == "local":
        return LocalBlobStore(settings.LOCAL_STORAGE_DIR)
    if backend == "b2":
        return B2BlobStore(
            settings.B2_APPLICATION_KEY_ID,
            settings.B2_APPLICATION_KEY,
            settings.B2_BUCKET_NAME,
        )
    raise ConfigurationError(f"Unknown STORAGE_BACKEND: {backend}")

@lru_cache()
def get_blob_store() -> BlobStore:
    store = build_blob_store(settings.STORAGE_BACKEND)
    logger.info(f"[Storage] Using {store.name} blob store")
    return store

def chunk_key(prefix: str, index: int) -> str:
    return f"{prefix}/chunk_{index:06d}"
