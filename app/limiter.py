"""
HTTP rate limiter using slowapi.

Requests are keyed by the X-Client-Id header so one client cannot flood
submissions from several addresses; anonymous requests fall back to the
remote address.
"""

from fastapi import Request
from slowapi import Limiter
from slowapi.util import get_remote_address

CLIENT_ID_HEADER = "X-Client-Id"


def client_key(request: Request) -> str:
    client_id = request.headers.get(CLIENT_ID_HEADER)
    if client_id:
        return f"client:{client_id}"
    return get_remote_address(request)


limiter = Limiter(key_func=client_key, storage_uri="memory://")
