"""Client address resolution."""
from __future__ import annotations

from starlette.requests import Request

UNKNOWN_ADDRESS = "unknown"


def get_client_address(request: Request, *, trust_forwarded: bool = True) -> str:
    """Return the originating address of ``request``.

    With ``trust_forwarded`` the first hop of ``X-Forwarded-For`` wins,
    then ``X-Real-IP``; otherwise the socket peer is used.
    """

    if trust_forwarded:
        forwarded_for = request.headers.get("X-Forwarded-For")
        if forwarded_for:
            first = forwarded_for.split(",")[0].strip()
            if first:
                return first
        real_ip = (request.headers.get("X-Real-IP") or "").strip()
        if real_ip:
            return real_ip
    if request.client and request.client.host:
        return request.client.host
    return UNKNOWN_ADDRESS
