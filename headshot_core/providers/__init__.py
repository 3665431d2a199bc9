from headshot_core.providers.base import (
    TransformFailure,
    TransformProvider,
    TransformResult,
    TransformSuccess,
)
from headshot_core.providers.echo import EchoTransformProvider
from headshot_core.providers.http import HttpTransformProvider

__all__ = [
    "EchoTransformProvider",
    "HttpTransformProvider",
    "TransformFailure",
    "TransformProvider",
    "TransformResult",
    "TransformSuccess",
]
