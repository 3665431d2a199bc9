"""
Transform provider contract.

The orchestration core knows nothing about how a provider talks to its
backend. It only awaits `transform` and receives either a success with the
generated image or a classified failure.
"""

from __future__ import annotations

from typing import Literal, Optional, Protocol, Union, runtime_checkable

from pydantic import BaseModel

from headshot_core.jobs.models import Style
from headshot_core.runtime.errors import ErrorKind


class TransformSuccess(BaseModel):
    """Generated image returned by a provider."""

    ok: Literal[True] = True
    data: bytes
    mime_type: str = "image/png"


class TransformFailure(BaseModel):
    """Classified provider failure."""

    ok: Literal[False] = False
    kind: ErrorKind
    message: str
    retry_after: Optional[float] = None


TransformResult = Union[TransformSuccess, TransformFailure]


@runtime_checkable
class TransformProvider(Protocol):
    """Interface for image-to-image transformation backends."""

    async def transform(
        self,
        source: bytes,
        mime_type: str,
        style: Style,
        timeout: float,
    ) -> TransformResult:
        """
        Transform a source image into the requested style.

        Args:
            source: Source image bytes.
            mime_type: MIME type of the source image.
            style: Requested portrait style.
            timeout: Seconds the provider may spend on the call.

        Returns:
            TransformSuccess or TransformFailure.
        """
        ...
