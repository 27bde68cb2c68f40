"""Data models for tethered link monitoring.

InterfaceState and PowerState are mutable records owned by the control loop.
PersistentRecord is the immutable, durable snapshot written to the state file.
"""
from __future__ import annotations

import ipaddress
from dataclasses import dataclass
from enum import Enum
from typing import Optional


class UsbState(Enum):
    """USB device controller state as exposed by the gadget subsystem."""
    NOT_ATTACHED = "not attached"
    SUSPENDED = "suspended"
    CONFIGURED = "configured"
    UNKNOWN = "unknown"

    @classmethod
    def from_sysfs(cls, value: str) -> UsbState:
        """Map a kernel UDC state string to a UsbState.

        Intermediate enumeration states (attached, powered, default,
        addressed) carry no information about the host and map to UNKNOWN.
        """
        value = value.strip().lower()
        for state in (cls.NOT_ATTACHED, cls.SUSPENDED, cls.CONFIGURED):
            if value == state.value:
                return state
        return cls.UNKNOWN


class ConnectionState(Enum):
    """Reachability of the tethered host, as persisted."""
    DISCONNECTED = "disconnected"
    WAITING = "waiting"
    CONNECTED = "connected"


class PowerEvent(Enum):
    """Host power transition derived from suspend signals."""
    NONE = "none"
    SLEEP = "sleep"
    WAKE = "wake"
    UNKNOWN = "unknown"


class FailureKind(Enum):
    """Which counter a failed check accumulates into."""
    NO_IP = "no_ip"
    NO_PING = "no_ping"
    NOT_ATTACHED = "not_attached"


class Reachability(Enum):
    REACHABLE = "reachable"
    UNREACHABLE = "unreachable"


@dataclass
class InterfaceState:
    """Live, in-memory state of one monitored interface.

    Attributes:
        name: Network interface name (e.g. 'usb0')
        usb_state: Last USB state observed for this link
        connection_state: Last connection classification
        is_idle: Host presumed asleep but its neighbor entry is still valid
        is_connected: Last known reachability (log/reset de-duplication only)
        fail_no_ip: Consecutive checks without a host address
        fail_no_ping: Consecutive checks where the host did not answer
        not_attached_count: Consecutive checks with the cable not attached
        last_host_ip: Most recent host address seen on this link
        suspended_logged: Suspend already reported for the current episode
        link_down_logged: Link down already reported for the current episode
    """
    name: str
    usb_state: UsbState = UsbState.UNKNOWN
    connection_state: ConnectionState = ConnectionState.DISCONNECTED
    is_idle: bool = False
    is_connected: bool = False
    fail_no_ip: int = 0
    fail_no_ping: int = 0
    not_attached_count: int = 0
    last_host_ip: Optional[str] = None
    suspended_logged: bool = False
    link_down_logged: bool = False

    def reset_counters(self) -> None:
        """Zero all failure counters."""
        self.fail_no_ip = 0
        self.fail_no_ping = 0
        self.not_attached_count = 0

    def clear_flags(self) -> None:
        """Forget idle/connected classification (e.g. after a wake)."""
        self.is_idle = False
        self.is_connected = False

    def counter_for(self, kind: FailureKind) -> int:
        """Return the counter a failure kind accumulates into."""
        if kind is FailureKind.NO_IP:
            return self.fail_no_ip
        if kind is FailureKind.NO_PING:
            return self.fail_no_ping
        return self.not_attached_count


@dataclass
class PowerState:
    """Global host power tracking.

    Signal values are 0, 1 or None (unknown). Mutated only by the
    power event detector. wake_from_reset marks a window armed by a
    gadget reset rather than by a host wake.
    """
    last_suspended_flag: Optional[int] = None
    last_dsts_bit: Optional[int] = None
    host_is_sleeping: bool = False
    wake_detected_at: Optional[float] = None
    wake_from_reset: bool = False


@dataclass(frozen=True)
class PersistentRecord:
    """Durable per-interface record.

    Attributes:
        interface: Interface name
        status: Last observed connection state
        host_ip: Last known host address, if any
        connected_once: Sticky flag, True once the link has ever worked
    """
    interface: str
    status: ConnectionState = ConnectionState.DISCONNECTED
    host_ip: Optional[str] = None
    connected_once: bool = False

    def to_line(self) -> str:
        """Serialize as 'interface:status:hostIp:connectedOnce'."""
        flag = "true" if self.connected_once else "false"
        return f"{self.interface}:{self.status.value}:{self.host_ip or ''}:{flag}"

    @classmethod
    def from_line(cls, line: str) -> PersistentRecord:
        """Parse one state file line.

        The host address may contain ':' (IPv6), so only the first two
        and the last field are positional. Lines written by older releases
        carry no connectedOnce flag; a line whose last field is not a flag
        is read that way, with everything after the status as the host.

        Raises:
            ValueError: If the line cannot be parsed
        """
        parts = line.strip().split(":")
        if len(parts) < 3 or not parts[0]:
            raise ValueError(f"Malformed state line: {line!r}")

        interface = parts[0]
        status = ConnectionState(parts[1])
        flag = parts[-1].lower()

        if len(parts) > 3 and flag in ("true", "false"):
            host_ip = ":".join(parts[2:-1])
            connected_once = flag == "true"
        else:
            host_ip = ":".join(parts[2:])
            if ":" in host_ip:
                ipaddress.ip_address(host_ip)
            connected_once = status is ConnectionState.CONNECTED

        return cls(
            interface=interface,
            status=status,
            host_ip=host_ip or None,
            connected_once=connected_once,
        )
