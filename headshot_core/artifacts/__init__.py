"""
Time-bounded, content-addressed artifact storage.

Exports:
    - Artifact: Metadata model for a stored blob
    - ArtifactStore: Protocol implemented by every backend
    - InMemoryArtifactStore / LocalArtifactStore: Backends
"""

from headshot_core.artifacts.models import Artifact, ArtifactBackend, fingerprint
from headshot_core.artifacts.store import (
    ArtifactStore,
    InMemoryArtifactStore,
    LocalArtifactStore,
)

__all__ = [
    "Artifact",
    "ArtifactBackend",
    "ArtifactStore",
    "InMemoryArtifactStore",
    "LocalArtifactStore",
    "fingerprint",
]
