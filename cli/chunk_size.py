"""Adaptive chunk size selection from host and network signals."""

import ipaddress
from dataclasses import dataclass
from typing import Optional

from common.constants import (
    CHUNK_SIZE_FAST,
    CHUNK_SIZE_MEDIUM,
    CHUNK_SIZE_SLOW,
    CHUNK_SIZE_ULTRA_FAST,
)

LOCAL_HOSTNAMES = ("localhost", "127.0.0.1")
PRIVATE_PREFIXES = ("192.168.", "10.", "172.")

CONNECTION_TYPE_SIZES = {
    "slow-2g": CHUNK_SIZE_SLOW,
    "2g": CHUNK_SIZE_SLOW,
    "3g": CHUNK_SIZE_MEDIUM,
    "4g": CHUNK_SIZE_FAST,
}


@dataclass(frozen=True)
class NetworkInfo:
    """Network signals known before an upload starts."""
    effective_type: Optional[str] = None
    downlink_mbps: Optional[float] = None


def is_local_host(host: str) -> bool:
    """
    Check whether host is a loopback or private-network address.

    Only literal names and addresses are inspected; no DNS lookup is made.
    """
    if not host:
        return False
    name = host.strip().lower().strip("[]")
    if name in LOCAL_HOSTNAMES or name.startswith(PRIVATE_PREFIXES):
        return True
    try:
        address = ipaddress.ip_address(name)
    except ValueError:
        return False
    return address.is_loopback or address.is_private


def select_chunk_size(host: str, network: Optional[NetworkInfo] = None) -> int:
    """
    Pick a chunk size for an upload to host.

    Decision order (first match wins):
        1. local host -> ULTRA_FAST
        2. downlink >= 100 -> ULTRA_FAST, >= 50 -> FAST, >= 10 -> MEDIUM
        3. connection type slow-2g/2g -> SLOW, 3g -> MEDIUM, 4g -> FAST
        4. FAST

    A downlink estimate below 10 Mbps caps the connection-type result at
    MEDIUM and yields SLOW when no type is known, so a faster downlink
    never gives a smaller chunk.

    Args:
        host: Server host name or IP address
        network: Optional network signals

    Returns:
        Chunk size in bytes
    """
    if is_local_host(host):
        return CHUNK_SIZE_ULTRA_FAST

    network = network or NetworkInfo()
    downlink = network.downlink_mbps
    effective_type = (network.effective_type or "").strip().lower()

    if downlink is not None:
        if downlink >= 100:
            return CHUNK_SIZE_ULTRA_FAST
        if downlink >= 50:
            return CHUNK_SIZE_FAST
        if downlink >= 10:
            return CHUNK_SIZE_MEDIUM
        if effective_type in CONNECTION_TYPE_SIZES:
            return min(CONNECTION_TYPE_SIZES[effective_type], CHUNK_SIZE_MEDIUM)
        return CHUNK_SIZE_SLOW

    if effective_type in CONNECTION_TYPE_SIZES:
        return CONNECTION_TYPE_SIZES[effective_type]

    return CHUNK_SIZE_FAST
