"""Client address resolution behind reverse proxies.

X-Forwarded-For is only believed when the direct peer is a configured
trusted proxy. The header is then walked right to left, skipping further
trusted hops; the first untrusted entry is the client. Any other peer is
identified by its own socket address, whatever headers it sends.
"""

import ipaddress
from typing import Iterable

from starlette.requests import Request

FORWARDED_FOR_HEADER = "X-Forwarded-For"


def _parse_ip(value: str) -> ipaddress.IPv4Address | ipaddress.IPv6Address | None:
    try:
        return ipaddress.ip_address(value)
    except ValueError:
        return None


class ClientIpResolver:
    """Works out which client a request came from."""

    def __init__(self, trusted_proxies: Iterable[str] = ()):
        """
        Args:
            trusted_proxies: Proxy addresses or CIDR ranges, e.g. "10.0.0.0/8"

        Raises:
            ValueError: If an entry is not an address or network
        """
        self._trusted = [ipaddress.ip_network(proxy, strict=False) for proxy in trusted_proxies]

    def _is_trusted(self, host: str) -> bool:
        ip = _parse_ip(host)
        if ip is None:
            return False
        return any(ip in network for network in self._trusted)

    def resolve(self, request: Request) -> str | None:
        """Client address as reported by the socket or a trusted proxy. None if unknown."""
        peer = request.client.host if request.client and request.client.host else None
        if peer is None or not self._is_trusted(peer):
            return peer

        forwarded = request.headers.get(FORWARDED_FOR_HEADER)
        if not forwarded:
            return peer

        hops = [hop.strip() for hop in forwarded.split(",") if hop.strip()]
        for hop in reversed(hops):
            if not self._is_trusted(hop):
                return hop
        return hops[0] if hops else peer

    def resolve_ip(self, request: Request) -> str | None:
        """Like resolve(), but None unless the result is a valid IP (audit column is inet)."""
        host = self.resolve(request)
        if host is None or _parse_ip(host) is None:
            return None
        return host
