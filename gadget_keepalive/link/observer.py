"""Pass-through observation of USB controller and link status.

Every read queries the kernel afresh. Missing or unreadable files are
normal (controller not probed yet, debugfs not mounted, another kernel
version) and degrade to an unknown value instead of raising.
"""
from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Optional

from ..models import UsbState

logger = logging.getLogger(__name__)

DEFAULT_UDC_CLASS_DIR = Path("/sys/class/udc")
DEFAULT_NET_CLASS_DIR = Path("/sys/class/net")
DEFAULT_DEBUG_REGISTER_PATH = "/sys/kernel/debug/usb/{udc}/regdump"

# Relative to /sys/class/udc/<udc>/device; location varies by kernel version
SUSPEND_FLAG_CANDIDATES = ("gadget.0/suspended", "gadget/suspended")

DSTS_RE = re.compile(r"^\s*DSTS\s*=\s*(0x[0-9a-fA-F]+)", re.MULTILINE)


def _read_text(path: Path) -> Optional[str]:
    try:
        return path.read_text(encoding="utf-8", errors="replace")
    except OSError:
        return None


def _parse_bit(text: Optional[str]) -> Optional[int]:
    if text is None:
        return None
    value = text.strip()
    if value in ("0", "1"):
        return int(value)
    return None


class LinkObserver:
    """Reads USB gadget state, suspend signals and interface link state.

    Example:
        >>> observer = LinkObserver()
        >>> observer.read_usb_state()
        <UsbState.CONFIGURED: 'configured'>
        >>> observer.read_suspend_flag()
        0
    """

    def __init__(self,
                 udc_class_dir: Path = DEFAULT_UDC_CLASS_DIR,
                 net_class_dir: Path = DEFAULT_NET_CLASS_DIR,
                 debug_register_path: str = DEFAULT_DEBUG_REGISTER_PATH,
                 dsts_suspend_bit: int = 0,
                 udc: Optional[str] = None):
        """Initialize observer.

        Args:
            udc_class_dir: Directory listing USB device controllers
            net_class_dir: Directory listing network interfaces
            debug_register_path: Register dump path, '{udc}' is substituted
            dsts_suspend_bit: Bit of the DSTS register reporting suspend
            udc: Controller name, or None to use the first one present
        """
        self._udc_class_dir = Path(udc_class_dir)
        self._net_class_dir = Path(net_class_dir)
        self._debug_register_path = debug_register_path
        self._dsts_mask = 1 << dsts_suspend_bit
        self._udc = udc

    def controller_name(self) -> Optional[str]:
        """Name of the USB device controller, or None if none is present."""
        if self._udc:
            return self._udc
        try:
            names = sorted(p.name for p in self._udc_class_dir.iterdir())
        except OSError:
            return None
        return names[0] if names else None

    def read_usb_state(self) -> UsbState:
        """Read the controller state (configured, suspended, not attached)."""
        udc = self.controller_name()
        if udc is None:
            return UsbState.UNKNOWN
        text = _read_text(self._udc_class_dir / udc / "state")
        if text is None:
            logger.debug(f"USB state unreadable for {udc}")
            return UsbState.UNKNOWN
        return UsbState.from_sysfs(text)

    def read_suspend_flag(self) -> Optional[int]:
        """Read the gadget 'suspended' attribute.

        Returns:
            0 or 1, or None if unavailable
        """
        udc = self.controller_name()
        if udc is None:
            return None
        device_dir = self._udc_class_dir / udc / "device"
        for candidate in SUSPEND_FLAG_CANDIDATES:
            value = _parse_bit(_read_text(device_dir / candidate))
            if value is not None:
                return value
        return None

    def read_debug_suspend_bit(self) -> Optional[int]:
        """Read the suspend bit of the controller's DSTS debug register.

        Returns:
            0 or 1, or None if the register dump is unavailable
        """
        udc = self.controller_name()
        if udc is None:
            return None
        path = Path(self._debug_register_path.format(udc=udc))
        text = _read_text(path)
        if text is None:
            return None
        match = DSTS_RE.search(text)
        if not match:
            return None
        try:
            value = int(match.group(1), 16)
        except ValueError:
            return None
        return 1 if value & self._dsts_mask else 0

    def read_operstate(self, iface: str) -> Optional[str]:
        """Read the operational state ('up', 'down', ...) of an interface."""
        text = _read_text(self._net_class_dir / iface / "operstate")
        return text.strip().lower() if text is not None else None
