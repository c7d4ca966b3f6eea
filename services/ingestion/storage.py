from __future__ import annotations

import json
import logging
from pathlib import Path, PurePosixPath
from typing import Any, Dict, Optional, Protocol

from starlette.concurrency import run_in_threadpool

logger = logging.getLogger(__name__)


class StorageError(RuntimeError):
    """Storage-layer failure; retryable by the caller."""


class RecordNotFound(StorageError):
    """Merge update against a key that does not exist."""


class BlobStore(Protocol):
    async def put(self, path: str, data: bytes, *, content_type: Optional[str] = None) -> str: ...
    async def resolve(self, location: str) -> str: ...


class RecordStore(Protocol):
    async def write(self, collection: str, key: str, record: Dict[str, Any]) -> None: ...
    async def update(self, collection: str, key: str, fields: Dict[str, Any]) -> None: ...
    async def get(self, collection: str, key: str) -> Optional[Dict[str, Any]]: ...


def _safe_relpath(path: str) -> PurePosixPath:
    p = PurePosixPath(path)
    if not path or p.is_absolute() or any(part in ("", ".", "..") for part in p.parts):
        raise StorageError(f"invalid storage path: {path!r}")
    return p


def _safe_key(key: str) -> str:
    return str(key).replace("\\", "_").replace("/", "_")


class LocalBlobStore:
    """
    Blobs as plain files under `root_dir`. Locations are the caller-chosen
    relative paths; a path is never written twice.
    """

    def __init__(self, root_dir: str, public_base_url: Optional[str] = None) -> None:
        self.root = Path(root_dir)
        self.root.mkdir(parents=True, exist_ok=True)
        self.public_base_url = public_base_url.rstrip("/") if public_base_url else None

    def _put_sync(self, rel: PurePosixPath, data: bytes) -> None:
        p = self.root.joinpath(*rel.parts)
        p.parent.mkdir(parents=True, exist_ok=True)
        try:
            with p.open("xb") as f:
                f.write(data)
        except FileExistsError as e:
            raise StorageError(f"refusing to overwrite existing blob: {rel}") from e

    async def put(self, path: str, data: bytes, *, content_type: Optional[str] = None) -> str:
        rel = _safe_relpath(path)
        try:
            await run_in_threadpool(self._put_sync, rel, data)
        except OSError as e:
            raise StorageError(f"blob write failed for {rel}: {e}") from e
        logger.debug("stored blob %s (%d bytes, %s)", rel, len(data), content_type)
        return str(rel)

    async def resolve(self, location: str) -> str:
        rel = _safe_relpath(location)
        if self.public_base_url:
            return f"{self.public_base_url}/{rel}"
        p = self.root.joinpath(*rel.parts)
        if not p.exists():
            raise StorageError(f"unknown blob location: {location}")
        return p.resolve().as_uri()


class LocalRecordStore:
    """One JSON document per key: <root>/<collection>/<key>.json."""

    def __init__(self, root_dir: str) -> None:
        self.root = Path(root_dir)
        self.root.mkdir(parents=True, exist_ok=True)

    def _doc_path(self, collection: str, key: str) -> Path:
        return self.root / _safe_key(collection) / f"{_safe_key(key)}.json"

    def _write_atomic(self, out: Path, obj: Dict[str, Any]) -> None:
        out.parent.mkdir(parents=True, exist_ok=True)
        tmp = out.with_suffix(out.suffix + ".tmp")
        tmp.write_text(json.dumps(obj, indent=2), encoding="utf-8")
        tmp.replace(out)  # atomic on same filesystem

    def _read(self, out: Path) -> Optional[Dict[str, Any]]:
        if not out.exists():
            return None
        return json.loads(out.read_text(encoding="utf-8"))

    def _update_sync(self, out: Path, fields: Dict[str, Any]) -> None:
        current = self._read(out)
        if current is None:
            raise RecordNotFound(f"no document at {out.parent.name}/{out.stem}")
        self._write_atomic(out, {**current, **fields})

    async def write(self, collection: str, key: str, record: Dict[str, Any]) -> None:
        try:
            await run_in_threadpool(self._write_atomic, self._doc_path(collection, key), dict(record))
        except OSError as e:
            raise StorageError(f"record write failed for {collection}/{key}: {e}") from e

    async def update(self, collection: str, key: str, fields: Dict[str, Any]) -> None:
        try:
            await run_in_threadpool(self._update_sync, self._doc_path(collection, key), dict(fields))
        except OSError as e:
            raise StorageError(f"record update failed for {collection}/{key}: {e}") from e

    async def get(self, collection: str, key: str) -> Optional[Dict[str, Any]]:
        return await run_in_threadpool(self._read, self._doc_path(collection, key))
