"""Neighbor table and interface address parsing.

iproute2 JSON output (``ip -j``) is preferred. When it is unavailable
(busybox ip, old iproute2) the plain text output is parsed without
assuming fixed column positions.
"""
from __future__ import annotations

import ipaddress
import json
import re
from dataclasses import dataclass
from typing import FrozenSet, List, Optional, Tuple

# Entries in these states point at a live (or recently live) host
VALID_NEIGHBOR_STATES: FrozenSet[str] = frozenset({"REACHABLE", "STALE", "DELAY"})

_KNOWN_STATES = frozenset({
    "PERMANENT", "NOARP", "REACHABLE", "STALE", "NONE",
    "INCOMPLETE", "DELAY", "PROBE", "FAILED",
})

_INET_RE = re.compile(r"\binet\s+(\d+\.\d+\.\d+\.\d+)/(\d+)(?:\s+brd\s+(\d+\.\d+\.\d+\.\d+))?")


@dataclass(frozen=True)
class NeighborEntry:
    """One neighbor (ARP) table entry."""
    address: str
    lladdr: Optional[str] = None
    states: Tuple[str, ...] = ()

    @property
    def is_valid(self) -> bool:
        """True if the entry is in a reachable, stale or delay state."""
        return any(s in VALID_NEIGHBOR_STATES for s in self.states)


def parse_neighbors_json(text: str) -> List[NeighborEntry]:
    """Parse ``ip -j neigh show`` output.

    Raises:
        ValueError: If the text is not the expected JSON document
    """
    data = json.loads(text) if text.strip() else []
    if not isinstance(data, list):
        raise ValueError("neighbor JSON is not a list")

    entries = []
    for item in data:
        if not isinstance(item, dict) or not item.get("dst"):
            continue
        states = item.get("state") or []
        if isinstance(states, str):
            states = [states]
        entries.append(NeighborEntry(
            address=str(item["dst"]),
            lladdr=item.get("lladdr"),
            states=tuple(str(s).upper() for s in states),
        ))
    return entries


def parse_neighbors_text(text: str) -> List[NeighborEntry]:
    """Parse ``ip neigh show`` text output.

    Example lines:
        169.254.42.17 lladdr 02:01:02:03:04:09 REACHABLE
        169.254.42.18 dev usb0 INCOMPLETE
    """
    entries = []
    for line in text.splitlines():
        parts = line.split()
        if not parts:
            continue
        try:
            ipaddress.ip_address(parts[0])
        except ValueError:
            continue

        lladdr = None
        if "lladdr" in parts:
            idx = parts.index("lladdr")
            if idx + 1 < len(parts):
                lladdr = parts[idx + 1].lower()

        states = tuple(p.upper() for p in parts[1:] if p.upper() in _KNOWN_STATES)
        entries.append(NeighborEntry(address=parts[0], lladdr=lladdr, states=states))
    return entries


def parse_broadcast_json(text: str) -> Optional[str]:
    """Extract the first IPv4 broadcast address from ``ip -j addr show``.

    Raises:
        ValueError: If the text is not valid JSON
    """
    data = json.loads(text) if text.strip() else []
    if not isinstance(data, list):
        raise ValueError("address JSON is not a list")

    for link in data:
        if not isinstance(link, dict):
            continue
        for info in link.get("addr_info") or []:
            if info.get("family") not in (None, "inet"):
                continue
            if info.get("broadcast"):
                return str(info["broadcast"])
            local = info.get("local")
            prefixlen = info.get("prefixlen")
            if local and prefixlen is not None:
                return _broadcast_for(str(local), int(prefixlen))
    return None


def parse_broadcast_text(text: str) -> Optional[str]:
    """Extract the first IPv4 broadcast address from ``ip addr show``."""
    match = _INET_RE.search(text)
    if not match:
        return None
    address, prefixlen, brd = match.groups()
    return brd or _broadcast_for(address, int(prefixlen))


def _broadcast_for(address: str, prefixlen: int) -> Optional[str]:
    try:
        iface = ipaddress.IPv4Interface(f"{address}/{prefixlen}")
    except ValueError:
        return None
    return str(iface.network.broadcast_address)
