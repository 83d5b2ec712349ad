"""Caller identity: the client network address.

Behind a reverse proxy the peer is the proxy itself, so forwarding headers
are honoured, but only when the peer is a loopback or private address.
A public peer could set them to anything.
"""

import ipaddress

from fastapi import Request

UNKNOWN = "unknown"


def _parse_ip(value: str) -> ipaddress.IPv4Address | ipaddress.IPv6Address | None:
    """Parse an address, tolerating `[v6]:port`, `v4:port` and whitespace."""
    value = value.strip()
    if not value:
        return None
    if value.startswith("["):
        value = value[1:].split("]", 1)[0]
    elif value.count(":") == 1:
        value = value.split(":", 1)[0]
    try:
        return ipaddress.ip_address(value)
    except ValueError:
        return None


def _is_internal(addr: ipaddress.IPv4Address | ipaddress.IPv6Address) -> bool:
    return addr.is_loopback or addr.is_private


def client_ip(peer: str | None, real_ip: str | None = None, forwarded_for: str | None = None) -> str:
    peer_addr = _parse_ip(peer or "")
    if peer_addr is None or _is_internal(peer_addr):
        if real_ip:
            addr = _parse_ip(real_ip)
            if addr is not None:
                return str(addr)
        if forwarded_for:
            addr = _parse_ip(forwarded_for.split(",", 1)[0])
            if addr is not None:
                return str(addr)
    if peer_addr is not None:
        return str(peer_addr)
    return peer or UNKNOWN


def resolve_client_ip(request: Request) -> str:
    peer = request.client.host if request.client else None
    return client_ip(
        peer,
        request.headers.get("x-real-ip"),
        request.headers.get("x-forwarded-for"),
    )
