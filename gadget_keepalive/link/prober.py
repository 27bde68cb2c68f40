"""Host discovery and reachability checks for tethered links.

The prober resolves the host's address on a USB link and decides whether
the host is reachable. A host that stopped answering pings but still has
a valid neighbor entry is treated as idle (asleep or negotiating) rather
than gone.
"""
from __future__ import annotations

import logging
import time
from typing import Callable, List, Optional

from ..models import InterfaceState, Reachability, UsbState
from .commands import Runner, run_command
from .neighbors import (
    NeighborEntry,
    parse_broadcast_json,
    parse_broadcast_text,
    parse_neighbors_json,
    parse_neighbors_text,
)

logger = logging.getLogger(__name__)
trace = logging.getLogger("gadget_keepalive.trace")

DEFAULT_PING_COUNT = 2
DEFAULT_PING_TIMEOUT = 1  # seconds, per probe
DEFAULT_NEIGHBOR_SETTLE = 1.0  # seconds to wait after a broadcast probe


class ConnectivityProber:
    """Resolves and probes the host on the far end of a USB link.

    Example:
        >>> prober = ConnectivityProber()
        >>> state = InterfaceState(name="usb0")
        >>> address = prober.get_host_address(state)
        >>> prober.verify_reachability(state, address, UsbState.CONFIGURED)
        <Reachability.REACHABLE: 'reachable'>
    """

    def __init__(self,
                 ping_count: int = DEFAULT_PING_COUNT,
                 ping_timeout: int = DEFAULT_PING_TIMEOUT,
                 subnet_prefix: str = "",
                 neighbor_settle: float = DEFAULT_NEIGHBOR_SETTLE,
                 runner: Runner = run_command,
                 sleep: Callable[[float], None] = time.sleep):
        """Initialize prober.

        Args:
            ping_count: Echo probes per reachability check
            ping_timeout: Seconds to wait for each echo reply
            subnet_prefix: Only consider host addresses starting with this
                prefix (empty accepts any)
            neighbor_settle: Seconds to wait after a broadcast probe
            runner: Command runner (see commands.run_command)
            sleep: Blocking sleep function
        """
        self._ping_count = ping_count
        self._ping_timeout = ping_timeout
        self._subnet_prefix = subnet_prefix
        self._neighbor_settle = neighbor_settle
        self._run = runner
        self._sleep = sleep

    # --- Host discovery ---

    def get_host_address(self,
                         state: InterfaceState,
                         cached_ip: Optional[str] = None) -> Optional[str]:
        """Find the host address on an interface.

        Order: the in-memory address, the persisted address, the neighbor
        table, then the neighbor table again after a broadcast probe.

        Args:
            state: Interface state (its last_host_ip is preferred)
            cached_ip: Persisted address from the state store

        Returns:
            Host address, or None if none could be found
        """
        for candidate in (state.last_host_ip, cached_ip):
            if candidate and self._in_subnet(candidate):
                return candidate
        return self.discover_host_address(state.name)

    def discover_host_address(self,
                              iface: str,
                              exclude: Optional[str] = None) -> Optional[str]:
        """Look up the host in the neighbor table, ignoring any cache.

        Args:
            iface: Interface to search
            exclude: Address to skip (a cached address that stopped answering)

        Returns:
            Host address, or None if none could be found
        """
        address = self._first_valid_neighbor(iface, exclude)
        if address:
            logger.info(f"Discovered host IP {address} on {iface}")
            return address

        trace.debug(f"probe iface={iface} neighbors=none action=broadcast")
        self.refresh_neighbor_table(iface)
        self._sleep(self._neighbor_settle)

        address = self._first_valid_neighbor(iface, exclude)
        if address:
            logger.info(f"Discovered host IP {address} on {iface} after neighbor refresh")
        return address

    def neighbors(self, iface: str) -> List[NeighborEntry]:
        """Query the IPv4 neighbor table of an interface."""
        result = self._run(["ip", "-j", "-4", "neigh", "show", "dev", iface])
        if result.ok:
            try:
                return parse_neighbors_json(result.stdout)
            except ValueError:
                trace.debug(f"probe iface={iface} neighbor_json=invalid")

        result = self._run(["ip", "-4", "neigh", "show", "dev", iface])
        if not result.ok:
            return []
        return parse_neighbors_text(result.stdout)

    def has_valid_neighbor(self, iface: str, address: str) -> bool:
        """Whether the neighbor table has a live entry for address."""
        return any(
            entry.address == address and entry.is_valid
            for entry in self.neighbors(iface)
        )

    def refresh_neighbor_table(self, iface: str) -> bool:
        """Send one broadcast echo on the interface's subnet.

        Best effort: an interface without an address yet is not an error.

        Returns:
            True if a probe was sent
        """
        broadcast = self._broadcast_address(iface)
        if broadcast is None:
            logger.debug(f"Could not determine broadcast address for {iface}")
            return False

        self._run(
            ["ping", "-c", "1", "-b", "-W", "1", "-I", iface, broadcast],
            timeout=self._ping_timeout + 2,
        )
        trace.debug(f"probe iface={iface} broadcast={broadcast}")
        return True

    # --- Reachability ---

    def ping(self, iface: str, address: str) -> bool:
        """Send up to ping_count echo probes, stopping at the first reply."""
        for _ in range(self._ping_count):
            result = self._run(
                ["ping", "-c", "1", "-W", str(self._ping_timeout), "-I", iface, address],
                timeout=self._ping_timeout + 2,
            )
            if result.ok:
                return True
        return False

    def verify_reachability(self,
                            state: InterfaceState,
                            address: str,
                            usb_state: UsbState) -> Reachability:
        """Decide whether the host at address is reachable.

        A ping reply is authoritative. Without one, a configured link whose
        neighbor entry is gone is a hard failure. A valid neighbor entry
        means the host is asleep or negotiating: the link is marked idle
        and reported reachable.

        Args:
            state: Interface state (is_idle is updated)
            address: Host address to probe
            usb_state: Current USB state of the link

        Returns:
            REACHABLE or UNREACHABLE
        """
        if self.ping(state.name, address):
            if state.is_idle:
                state.is_idle = False
                logger.info(f"Host {address} on {state.name} resumed responding")
            trace.debug(f"probe iface={state.name} host={address} ping=ok")
            return Reachability.REACHABLE

        neighbor_valid = self.has_valid_neighbor(state.name, address)
        trace.debug(
            f"probe iface={state.name} host={address} ping=fail "
            f"neighbor_valid={neighbor_valid} usb={usb_state.value}"
        )

        if usb_state is UsbState.CONFIGURED and not neighbor_valid:
            return Reachability.UNREACHABLE

        if neighbor_valid:
            if not state.is_idle:
                state.is_idle = True
                logger.info(
                    f"Host {address} on {state.name} not answering but still in "
                    f"neighbor table, treating link as idle"
                )
            return Reachability.REACHABLE

        return Reachability.UNREACHABLE

    # Internal methods

    def _in_subnet(self, address: str) -> bool:
        return not self._subnet_prefix or address.startswith(self._subnet_prefix)

    def _first_valid_neighbor(self, iface: str, exclude: Optional[str] = None) -> Optional[str]:
        for entry in self.neighbors(iface):
            if entry.address == exclude:
                continue
            if entry.is_valid and self._in_subnet(entry.address):
                return entry.address
        return None

    def _broadcast_address(self, iface: str) -> Optional[str]:
        result = self._run(["ip", "-j", "-4", "addr", "show", "dev", iface])
        if result.ok:
            try:
                return parse_broadcast_json(result.stdout)
            except ValueError:
                pass

        result = self._run(["ip", "-4", "addr", "show", "dev", iface])
        if not result.ok:
            return None
        return parse_broadcast_text(result.stdout)
