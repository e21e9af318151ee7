"""Rate limiting for the ErrandWork backend.

Keys requests by client IP. X-Forwarded-For is only honoured when the
direct peer is a trusted proxy, so callers cannot spoof their way around a
limit on money-moving endpoints.
"""

import ipaddress
import os
from typing import Optional

from slowapi import Limiter
from slowapi.util import get_remote_address

from .logging_config import get_logger

logger = get_logger("rate_limit")

# Override with TRUSTED_PROXY_CIDRS (comma-separated CIDRs)
_DEFAULT_TRUSTED_CIDRS = [
    "10.0.0.0/8",
    "172.16.0.0/12",
    "192.168.0.0/16",
    "127.0.0.0/8",
    "::1/128",
]

_trusted_networks: Optional[list] = None


def load_trusted_networks(raw: Optional[str] = None) -> list:
    """Parse trusted proxy CIDRs; invalid entries are logged and skipped."""
    if raw is None:
        raw = os.environ.get("TRUSTED_PROXY_CIDRS", "")
    cidrs = [s.strip() for s in raw.split(",") if s.strip()] or _DEFAULT_TRUSTED_CIDRS
    networks = []
    for cidr in cidrs:
        try:
            networks.append(ipaddress.ip_network(cidr, strict=False))
        except ValueError:
            logger.warning(f"Ignoring invalid trusted proxy CIDR | cidr={cidr}")
    return networks


def _is_trusted_proxy(ip_str: str) -> bool:
    global _trusted_networks
    if _trusted_networks is None:
        _trusted_networks = load_trusted_networks()
    try:
        addr = ipaddress.ip_address(ip_str)
    except ValueError:
        return False
    return any(addr in network for network in _trusted_networks)


def get_client_ip(request) -> str:
    """Resolve the client IP, using the leftmost forwarded address behind a trusted proxy."""
    direct_ip = get_remote_address(request)
    if _is_trusted_proxy(direct_ip):
        forwarded_for = request.headers.get("x-forwarded-for")
        if forwarded_for:
            client_ip = forwarded_for.split(",")[0].strip()
            if client_ip:
                return client_ip
    return direct_ip


limiter = Limiter(key_func=get_client_ip)
