"""Local development provider that returns the source image unchanged."""

from __future__ import annotations

import asyncio

from headshot_core.jobs.models import Style
from headshot_core.providers.base import TransformResult, TransformSuccess


class EchoTransformProvider:
    """Stands in for a real provider when no PROVIDER_BASE_URL is configured."""

    def __init__(self, latency: float = 0.0):
        self.latency = latency

    async def transform(
        self,
        source: bytes,
        mime_type: str,
        style: Style,
        timeout: float,
    ) -> TransformResult:
        if self.latency:
            await asyncio.sleep(self.latency)
        return TransformSuccess(data=source, mime_type=mime_type)
