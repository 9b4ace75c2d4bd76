"""
Content-addressed storage for oversized tool outputs.

When a KotaDB tool returns more text than the conversation budget allows, the
full payload is written here and the conversation keeps only an excerpt plus a
pointer. A blob's file name is the SHA-256 of its UTF-8 content, so concurrent
writers of identical content converge on the same file and different content
never collides. The cache is bounded by `evict_blobs`, which first drops files
past a maximum age and then trims the oldest survivors until the directory fits
a byte budget.
"""
from __future__ import annotations

import asyncio
import hashlib
import logging
import os
import time
import uuid
from dataclasses import dataclass
from pathlib import Path
from typing import List, Literal

LOGGER = logging.getLogger(__name__)

BlobExtension = Literal[".txt", ".json"]

_SECONDS_PER_DAY = 86_400


@dataclass(frozen=True, slots=True)
class BlobRecord:
    blob_id: str
    path: Path
    byte_length: int


@dataclass(frozen=True, slots=True)
class EvictionResult:
    removed_count: int = 0
    removed_bytes: int = 0


@dataclass(slots=True)
class _BlobFile:
    path: Path
    mtime: float
    size: int


def blob_id_for(content: str) -> str:
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def write_blob(directory: str | Path, content: str, ext: BlobExtension = ".txt") -> BlobRecord:
    """
    Persists ``content`` under its content hash.

    Args:
        directory: Blob cache directory; created when missing.
        content: Text to store.
        ext: File extension, ``.txt`` or ``.json``.

    Returns:
        A `BlobRecord` describing the stored file.
    """
    if ext not in (".txt", ".json"):
        raise ValueError(f"unsupported blob extension {ext!r}")
    encoded = content.encode("utf-8")
    blob_id = blob_id_for(content)
    base = Path(directory)
    base.mkdir(parents=True, exist_ok=True)
    path = base / f"{blob_id}{ext}"
    # Concurrent writers of the same blob must never observe a torn file.
    staging = base / f".{blob_id}.{uuid.uuid4().hex}.tmp"
    staging.write_bytes(encoded)
    os.replace(staging, path)
    return BlobRecord(blob_id=blob_id, path=path, byte_length=len(encoded))


async def awrite_blob(directory: str | Path, content: str, ext: BlobExtension = ".txt") -> BlobRecord:
    return await asyncio.to_thread(write_blob, directory, content, ext)


def _scan(directory: Path, names: List[str]) -> List[_BlobFile]:
    files: List[_BlobFile] = []
    for name in names:
        full_path = directory / name
        try:
            stat = full_path.stat()
        except OSError:
            continue
        if full_path.is_file():
            files.append(_BlobFile(path=full_path, mtime=stat.st_mtime, size=stat.st_size))
    return files


def _unlink(path: Path) -> bool:
    try:
        path.unlink()
    except OSError as exc:
        LOGGER.debug("Could not evict blob %s: %s", path, exc)
        return False
    return True


def evict_blobs(
    directory: str | Path,
    max_age_days: float,
    max_size_bytes: float,
    *,
    now: float | None = None,
) -> EvictionResult:
    """
    Bounds the blob cache by age first, then by total size.

    Files older than ``max_age_days`` are removed. The survivors are then sorted
    oldest-first and removed one at a time while their combined size exceeds
    ``max_size_bytes``. Files that cannot be unlinked are left in place.

    Returns:
        The number of files and bytes removed across both passes.
    """
    base = Path(directory)
    try:
        names = os.listdir(base)
    except FileNotFoundError:
        return EvictionResult()
    if not names:
        return EvictionResult()

    current = time.time() if now is None else now
    max_age_seconds = max_age_days * _SECONDS_PER_DAY

    removed_count = 0
    removed_bytes = 0
    survivors: List[_BlobFile] = []
    for blob in _scan(base, names):
        if current - blob.mtime > max_age_seconds and _unlink(blob.path):
            removed_count += 1
            removed_bytes += blob.size
        else:
            survivors.append(blob)

    survivors.sort(key=lambda blob: blob.mtime)
    total_size = sum(blob.size for blob in survivors)
    for blob in survivors:
        if total_size <= max_size_bytes:
            break
        if _unlink(blob.path):
            removed_count += 1
            removed_bytes += blob.size
            total_size -= blob.size

    if removed_count:
        LOGGER.info("Evicted %s blob(s) (%s bytes) from %s", removed_count, removed_bytes, base)
    return EvictionResult(removed_count=removed_count, removed_bytes=removed_bytes)


async def aevict_blobs(directory: str | Path, max_age_days: float, max_size_bytes: float) -> EvictionResult:
    return await asyncio.to_thread(evict_blobs, directory, max_age_days, max_size_bytes)
