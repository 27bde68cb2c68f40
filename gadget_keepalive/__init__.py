"""USB gadget keep-alive - keeps tethered USB Ethernet links usable."""

from .config import Settings, load_settings
from .decision import ResetDecision, ResetDecisionEngine, ResetPolicy
from .models import (
    ConnectionState,
    FailureKind,
    InterfaceState,
    PersistentRecord,
    PowerEvent,
    PowerState,
    Reachability,
    UsbState,
)
from .monitor import KeepaliveMonitor, LoopMode
from .state_store import StateStore, read_record

__all__ = [
    "Settings",
    "load_settings",
    "ResetDecision",
    "ResetDecisionEngine",
    "ResetPolicy",
    "ConnectionState",
    "FailureKind",
    "InterfaceState",
    "PersistentRecord",
    "PowerEvent",
    "PowerState",
    "Reachability",
    "UsbState",
    "KeepaliveMonitor",
    "LoopMode",
    "StateStore",
    "read_record",
]
