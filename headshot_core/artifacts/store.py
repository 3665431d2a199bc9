"""
Artifact storage backends.

Both backends are content-addressed and time-bounded: `put` returns the
sha256 of the bytes, every blob carries its own expiry, and
`purge_expired` removes whatever is past it. Purging is idempotent, so a
blob that is already gone is simply skipped.
"""

from __future__ import annotations

import asyncio
import os
import uuid
from datetime import timedelta
from pathlib import Path
from typing import Protocol, runtime_checkable

from loguru import logger
from pydantic import ValidationError

from headshot_core.artifacts.models import Artifact, fingerprint, is_valid_ref
from headshot_core.runtime.clock import Clock, utcnow
from headshot_core.runtime.errors import (
    ArtifactExpiredError,
    ArtifactNotFoundError,
    StorageUnavailableError,
)


@runtime_checkable
class ArtifactStore(Protocol):
    """
    Abstract storage interface for source and result images.

    All backends must implement these methods to be usable by the
    dispatcher, the janitor and the job service.
    """

    async def put(self, data: bytes, mime_type: str, ttl: float) -> str:
        """
        Store a blob and return its reference.

        Args:
            data: The blob content.
            mime_type: MIME type recorded alongside the blob.
            ttl: Seconds from now until the blob may be purged.

        Returns:
            str: The content reference (sha256 hex digest).
        """
        ...

    async def get(self, ref: str) -> bytes:
        """Return the blob bytes; raises ArtifactNotFoundError or ArtifactExpiredError."""
        ...

    async def stat(self, ref: str) -> Artifact:
        """Return blob metadata without reading the content."""
        ...

    async def extend_ttl(self, ref: str, ttl: float) -> Artifact:
        """Push expiry out to now + ttl. Never shortens an existing expiry."""
        ...

    async def purge_expired(self) -> int:
        """Delete every blob past its expiry and return how many were removed."""
        ...


class InMemoryArtifactStore:
    """
    Dictionary-backed store for tests and single-process deployments.

    Note: Does not persist across restarts.
    """

    def __init__(self, clock: Clock = utcnow):
        self._clock = clock
        self._meta: dict[str, Artifact] = {}
        self._blobs: dict[str, bytes] = {}

    async def put(self, data: bytes, mime_type: str, ttl: float) -> str:
        now = self._clock()
        ref = fingerprint(data)
        expires_at = now + timedelta(seconds=ttl)

        existing = self._meta.get(ref)
        if existing is not None and existing.expires_at > expires_at:
            expires_at = existing.expires_at

        self._meta[ref] = Artifact(
            ref=ref,
            mime_type=mime_type,
            byte_size=len(data),
            created_at=existing.created_at if existing else now,
            expires_at=expires_at,
        )
        self._blobs[ref] = data
        logger.debug(f"Stored artifact {ref[:12]} ({len(data)} bytes, {mime_type})")
        return ref

    async def stat(self, ref: str) -> Artifact:
        meta = self._meta.get(ref)
        if meta is None:
            raise ArtifactNotFoundError(ref)
        if meta.is_expired(self._clock()):
            raise ArtifactExpiredError(ref)
        return meta

    async def get(self, ref: str) -> bytes:
        await self.stat(ref)
        return self._blobs[ref]

    async def extend_ttl(self, ref: str, ttl: float) -> Artifact:
        meta = await self.stat(ref)
        expires_at = self._clock() + timedelta(seconds=ttl)
        if expires_at > meta.expires_at:
            meta = meta.model_copy(update={"expires_at": expires_at})
            self._meta[ref] = meta
        return meta

    async def purge_expired(self) -> int:
        now = self._clock()
        expired = [ref for ref, meta in self._meta.items() if meta.is_expired(now)]
        for ref in expired:
            self._meta.pop(ref, None)
            self._blobs.pop(ref, None)
        if expired:
            logger.info(f"Purged {len(expired)} expired artifacts")
        return len(expired)

    def __len__(self) -> int:
        return len(self._meta)


class LocalArtifactStore:
    """
    File-system based store.

    Each blob is written to `<base>/<ref[:2]>/<ref>` with a JSON sidecar
    `<ref>.json` holding its metadata, so a separate process (such as the
    sweep script) sees the same state.

    Usage:
        store = LocalArtifactStore(base_path="/tmp/headshot-artifacts")
        ref = await store.put(content, "image/png", ttl=3600)
        content = await store.get(ref)
    """

    def __init__(self, base_path: str | Path = "tmp/artifacts", clock: Clock = utcnow):
        """
        Initialize local storage.

        Args:
            base_path: Root directory for all stored files.
            clock: Source of the current time.
        """
        self.base_path = Path(base_path)
        self.base_path.mkdir(parents=True, exist_ok=True)
        self._clock = clock
        logger.info(f"LocalArtifactStore initialized at {self.base_path}")

    def _blob_path(self, ref: str) -> Path:
        return self.base_path / ref[:2] / ref

    def _meta_path(self, ref: str) -> Path:
        return self.base_path / ref[:2] / f"{ref}.json"

    def _read_meta(self, ref: str) -> Artifact | None:
        if not is_valid_ref(ref):
            return None
        path = self._meta_path(ref)
        if not path.exists():
            return None
        return self._load_meta(path)

    def _load_meta(self, path: Path) -> Artifact | None:
        """Parse a sidecar; a corrupt one is logged and treated as missing."""
        try:
            return Artifact.model_validate_json(path.read_bytes())
        except FileNotFoundError:
            return None
        except ValidationError as e:
            logger.warning(f"Unreadable artifact metadata {path.name}: {e.error_count()} error(s)")
            return None

    def _write_meta(self, meta: Artifact) -> None:
        # Readers in other processes only ever see a complete sidecar
        path = self._meta_path(meta.ref)
        tmp_path = path.with_name(f"{path.name}.{uuid.uuid4().hex}.tmp")
        tmp_path.write_text(meta.model_dump_json(), encoding="utf-8")
        os.replace(tmp_path, path)

    def _put_sync(self, data: bytes, mime_type: str, ttl: float) -> str:
        now = self._clock()
        ref = fingerprint(data)
        expires_at = now + timedelta(seconds=ttl)
        existing = self._read_meta(ref)
        if existing is not None and existing.expires_at > expires_at:
            expires_at = existing.expires_at

        blob_path = self._blob_path(ref)
        blob_path.parent.mkdir(parents=True, exist_ok=True)
        if existing is None or not blob_path.exists():
            blob_path.write_bytes(data)
        self._write_meta(
            Artifact(
                ref=ref,
                mime_type=mime_type,
                byte_size=len(data),
                created_at=existing.created_at if existing else now,
                expires_at=expires_at,
            )
        )
        return ref

    def _stat_sync(self, ref: str) -> Artifact:
        meta = self._read_meta(ref)
        if meta is None:
            raise ArtifactNotFoundError(ref)
        if meta.is_expired(self._clock()):
            raise ArtifactExpiredError(ref)
        return meta

    def _get_sync(self, ref: str) -> bytes:
        self._stat_sync(ref)
        blob_path = self._blob_path(ref)
        if not blob_path.exists():
            raise ArtifactNotFoundError(ref)
        return blob_path.read_bytes()

    def _extend_sync(self, ref: str, ttl: float) -> Artifact:
        meta = self._stat_sync(ref)
        expires_at = self._clock() + timedelta(seconds=ttl)
        if expires_at > meta.expires_at:
            meta = meta.model_copy(update={"expires_at": expires_at})
            self._write_meta(meta)
        return meta

    def _purge_sync(self) -> int:
        now = self._clock()
        purged = 0
        for meta_path in self.base_path.glob("*/*.json"):
            if not meta_path.exists():
                continue
            meta = self._load_meta(meta_path)
            if meta is not None and not meta.is_expired(now):
                continue
            # Expired, or corrupt and therefore unservable
            ref = meta.ref if meta is not None else meta_path.name[: -len(".json")]
            if is_valid_ref(ref):
                self._blob_path(ref).unlink(missing_ok=True)
            meta_path.unlink(missing_ok=True)
            purged += 1
        if purged:
            logger.info(f"Purged {purged} expired artifacts from {self.base_path}")
        return purged

    async def _run(self, func, *args):
        try:
            return await asyncio.to_thread(func, *args)
        except OSError as e:
            logger.error(f"Artifact storage failure in {func.__name__}: {e}")
            raise StorageUnavailableError("Image storage is temporarily unavailable", cause=e) from e

    async def put(self, data: bytes, mime_type: str, ttl: float) -> str:
        ref = await self._run(self._put_sync, data, mime_type, ttl)
        logger.debug(f"Stored artifact {ref[:12]} ({len(data)} bytes, {mime_type})")
        return ref

    async def stat(self, ref: str) -> Artifact:
        return await self._run(self._stat_sync, ref)

    async def get(self, ref: str) -> bytes:
        return await self._run(self._get_sync, ref)

    async def extend_ttl(self, ref: str, ttl: float) -> Artifact:
        return await self._run(self._extend_sync, ref, ttl)

    async def purge_expired(self) -> int:
        return await self._run(self._purge_sync)
