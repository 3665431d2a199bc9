"""
HTTP transform provider.

Talks to a generic REST image-to-image endpoint with a pooled httpx client
and converts every response or transport error into a classified
TransformResult. It never retries on its own; retries are decided by the
dispatcher's RetryPolicy.
"""

from __future__ import annotations

from typing import Any

import httpx
from loguru import logger

from headshot_core.jobs.models import Style
from headshot_core.providers.base import TransformFailure, TransformResult, TransformSuccess
from headshot_core.runtime.errors import ErrorKind


def _parse_retry_after(value: str | None) -> float | None:
    if not value:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        return None


class HttpTransformProvider:
    """Transform provider backed by an HTTP API.

    Example:
        provider = HttpTransformProvider("https://provider.example.com", api_key="...")
        async with provider:
            result = await provider.transform(data, "image/png", Style.CORPORATE_CLASSIC, 30.0)
    """

    def __init__(
        self,
        base_url: str,
        api_key: str = "",
        max_connections: int = 20,
        max_keepalive: int = 10,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the provider client.

        Args:
            base_url: Base URL of the provider API.
            api_key: Bearer token sent with every request, if non-empty.
            max_connections: Maximum total connections in pool.
            max_keepalive: Maximum keepalive connections.
            transport: Optional httpx transport (used by tests).
        """
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self._limits = httpx.Limits(
            max_connections=max_connections,
            max_keepalive_connections=max_keepalive,
            keepalive_expiry=30.0,
        )
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            headers = {"Authorization": f"Bearer {self.api_key}"} if self.api_key else {}
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers=headers,
                limits=self._limits,
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client and release connections."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "HttpTransformProvider":
        await self._get_client()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()

    async def transform(
        self,
        source: bytes,
        mime_type: str,
        style: Style,
        timeout: float,
    ) -> TransformResult:
        client = await self._get_client()

        try:
            response = await client.post(
                "/v1/transform",
                files={"image": ("source", source, mime_type)},
                data={"style": style.value},
                timeout=timeout,
            )
        except httpx.TimeoutException:
            return TransformFailure(
                kind=ErrorKind.PROVIDER_TIMEOUT,
                message=f"Provider did not answer within {timeout:.0f}s",
            )
        except httpx.TransportError as e:
            logger.warning(f"Provider transport error: {e}")
            return TransformFailure(
                kind=ErrorKind.PROVIDER_TRANSIENT,
                message="Could not reach the image provider",
            )

        return self._to_result(response)

    def _to_result(self, response: httpx.Response) -> TransformResult:
        status = response.status_code

        if status == 429:
            return TransformFailure(
                kind=ErrorKind.RATE_LIMITED,
                message="Image provider is busy",
                retry_after=_parse_retry_after(response.headers.get("Retry-After")),
            )

        if status >= 500:
            logger.warning(f"Provider returned {status}: {response.text[:200]}")
            return TransformFailure(
                kind=ErrorKind.PROVIDER_TRANSIENT,
                message=f"Image provider returned {status}",
            )

        if not response.is_success:
            logger.warning(f"Provider rejected request with {status}: {response.text[:200]}")
            return TransformFailure(
                kind=ErrorKind.PROVIDER_PERMANENT,
                message="The image could not be processed by the provider",
            )

        if not response.content:
            return TransformFailure(
                kind=ErrorKind.PROVIDER_TRANSIENT,
                message="Image provider returned an empty result",
            )

        content_type = response.headers.get("Content-Type", "image/png").split(";")[0].strip()
        return TransformSuccess(data=response.content, mime_type=content_type)
