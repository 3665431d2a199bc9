"""
Domain models for stored artifacts.

Artifacts are immutable blobs (uploaded source images and generated
results) addressed by the sha256 of their content. Jobs hold only the
reference string, never the bytes.
"""

from __future__ import annotations

import hashlib
from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


class ArtifactBackend(str, Enum):
    """Storage backends for artifacts."""
    MEMORY = "memory"
    LOCAL = "local"


class Artifact(BaseModel):
    """
    Metadata for one stored blob.

    The bytes themselves live only inside the ArtifactStore.
    """
    ref: str = Field(..., description="sha256 hex digest of the content")
    mime_type: str = Field(..., description="MIME type (e.g., image/png)")
    byte_size: int = Field(..., ge=0, description="Size in bytes")
    created_at: datetime = Field(..., description="Creation timestamp")
    expires_at: datetime = Field(..., description="Eligible for purge from this instant")

    def is_expired(self, now: datetime) -> bool:
        return now >= self.expires_at


_HEX_DIGITS = frozenset("0123456789abcdef")


def fingerprint(data: bytes) -> str:
    """Content address for a blob."""
    return hashlib.sha256(data).hexdigest()


def is_valid_ref(ref: str) -> bool:
    """True if `ref` has the shape of a sha256 hex digest."""
    return len(ref) == 64 and set(ref) <= _HEX_DIGITS
