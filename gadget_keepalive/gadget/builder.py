"""Gadget descriptor builders.

The lifecycle manager only needs something that can create and remove the
gadget's configfs tree. ConfigfsGadgetBuilder is the default: a composite
device exposing CDC-ECM (Linux, macOS, iOS) as interface usb0 and RNDIS
with Microsoft OS descriptors (Windows) as interface usb1.
"""
from __future__ import annotations

import hashlib
import logging
import os
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Tuple

from ..link.commands import Runner, run_command
from .errors import GadgetConfigError

logger = logging.getLogger(__name__)

DEFAULT_CPUINFO_PATH = Path("/proc/cpuinfo")
DEFAULT_MACHINE_ID_PATH = Path("/etc/machine-id")
STRINGS_LANG = "0x409"  # en-US


@dataclass(frozen=True)
class GadgetIdentity:
    """USB identity of the gadget.

    Attributes:
        vendor_id: idVendor (pid.codes)
        product_id: idProduct
        manufacturer: Manufacturer string
        product: Product string
        max_power: MaxPower in units of 2 mA (500 = 1 A)
        attributes: bmAttributes (0x80 = bus powered)
    """
    vendor_id: str = "0x1209"
    product_id: str = "0x2042"
    bcd_device: str = "0x0100"
    bcd_usb: str = "0x0200"
    manufacturer: str = "WLAN Pi"
    product: str = "WLAN Pi USB Ethernet"
    max_power: int = 500
    attributes: str = "0x80"


class GadgetBuilder(ABC):
    """Creates and discards the gadget descriptor tree."""

    @abstractmethod
    def configure(self) -> None:
        """Create the gadget configuration.

        Raises:
            GadgetConfigError: If the configuration cannot be created
        """
        pass

    @abstractmethod
    def teardown(self) -> None:
        """Remove the gadget configuration.

        Must be safe to call when nothing exists. The gadget must already
        be unbound.
        """
        pass


class ConfigfsGadgetBuilder(GadgetBuilder):
    """Builds the ECM + RNDIS composite gadget in configfs."""

    def __init__(self,
                 gadget_dir: Path,
                 identity: GadgetIdentity = GadgetIdentity(),
                 runner: Runner = run_command,
                 cpuinfo_path: Path = DEFAULT_CPUINFO_PATH,
                 machine_id_path: Path = DEFAULT_MACHINE_ID_PATH):
        self._dir = Path(gadget_dir)
        self._identity = identity
        self._run = runner
        self._cpuinfo_path = Path(cpuinfo_path)
        self._machine_id_path = Path(machine_id_path)

    @property
    def gadget_dir(self) -> Path:
        return self._dir

    def configure(self) -> None:
        if not self._dir.parent.exists():
            result = self._run(["modprobe", "libcomposite"])
            if not result.ok:
                raise GadgetConfigError(
                    f"Failed to load libcomposite: {result.stderr.strip()}"
                )
            if not self._dir.parent.exists():
                raise GadgetConfigError(
                    f"{self._dir.parent} missing, is configfs mounted?"
                )

        serial = self._read_serial()
        mac_device, mac_host = self._mac_addresses(serial)
        ident = self._identity

        try:
            self._dir.mkdir(parents=True, exist_ok=True)
            self._write("idVendor", ident.vendor_id)
            self._write("idProduct", ident.product_id)
            self._write("bcdDevice", ident.bcd_device)
            self._write("bcdUSB", ident.bcd_usb)

            self._write(f"strings/{STRINGS_LANG}/manufacturer", ident.manufacturer)
            self._write(f"strings/{STRINGS_LANG}/product", ident.product)
            self._write(f"strings/{STRINGS_LANG}/serialnumber", serial)

            self._create_config("c.1", "CDC ECM Configuration")
            self._create_config("c.2", "RNDIS Configuration")

            # CDC ECM -> usb0
            self._write("functions/ecm.usb0/host_addr", mac_host)
            self._write("functions/ecm.usb0/dev_addr", mac_device)
            self._link("functions/ecm.usb0", "configs/c.1/ecm.usb0")

            # RNDIS -> usb1
            self._write("functions/rndis.usb1/host_addr", mac_host)
            self._write("functions/rndis.usb1/dev_addr", mac_device)
            self._write("functions/rndis.usb1/os_desc/interface.rndis/compatible_id", "RNDIS")
            self._write("functions/rndis.usb1/os_desc/interface.rndis/sub_compatible_id", "5162001")
            self._link("functions/rndis.usb1", "configs/c.2/rndis.usb1")

            # Microsoft OS descriptors so Windows picks the RNDIS config
            self._write("os_desc/use", "1")
            self._write("os_desc/b_vendor_code", "0xcd")
            self._write("os_desc/qw_sign", "MSFT100")
            self._link("configs/c.2", "os_desc/c.2")
        except OSError as e:
            raise GadgetConfigError(f"Failed to build gadget in {self._dir}: {e}") from e

        logger.info(f"Gadget configured in {self._dir} (serial {serial})")

    def teardown(self) -> None:
        if not self._dir.exists():
            return

        logger.info(f"Removing gadget configuration {self._dir}")

        # configfs only allows removal bottom-up: links, then directories
        for parent in [self._dir / "os_desc"] + self._children("configs"):
            for entry in self._iter(parent):
                if entry.is_symlink():
                    self._remove(entry, unlink=True)

        for config in self._children("configs"):
            for lang in self._iter(config / "strings"):
                self._remove(lang)
            self._remove(config)
        for function in self._children("functions"):
            self._remove(function)
        for lang in self._children("strings"):
            self._remove(lang)
        self._remove(self._dir)

    # Internal methods

    def _create_config(self, name: str, description: str) -> None:
        self._write(f"configs/{name}/strings/{STRINGS_LANG}/configuration", description)
        self._write(f"configs/{name}/bmAttributes", self._identity.attributes)
        self._write(f"configs/{name}/MaxPower", str(self._identity.max_power))

    def _write(self, relative: str, value: str) -> None:
        path = self._dir / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(f"{value}\n")

    def _link(self, target: str, relative: str) -> None:
        link = self._dir / relative
        if link.is_symlink() or link.exists():
            return
        link.parent.mkdir(parents=True, exist_ok=True)
        os.symlink(str(self._dir / target), str(link))

    def _children(self, relative: str) -> list:
        return list(self._iter(self._dir / relative))

    @staticmethod
    def _iter(path: Path):
        try:
            return sorted(path.iterdir())
        except OSError:
            return []

    @staticmethod
    def _remove(path: Path, unlink: bool = False) -> None:
        try:
            if unlink:
                path.unlink()
            else:
                path.rmdir()
        except OSError as e:
            logger.debug(f"Could not remove {path}: {e}")

    def _read_serial(self) -> str:
        """Board serial number from /proc/cpuinfo, or a machine-id digest."""
        try:
            text = self._cpuinfo_path.read_text(encoding="utf-8", errors="replace")
        except OSError:
            text = ""
        match = re.search(r"^Serial\s*:\s*([0-9a-fA-F]+)\s*$", text, re.MULTILINE)
        if match:
            return match.group(1).lower()[-12:].rjust(12, "0")

        try:
            seed = self._machine_id_path.read_text(encoding="utf-8").strip()
        except OSError:
            seed = ""
        if not seed:
            logger.warning("No board serial or machine id, using a fixed serial")
            seed = "usb-gadget-keepalive"
        return hashlib.sha256(seed.encode("utf-8")).hexdigest()[:12]

    @staticmethod
    def _mac_addresses(serial: str) -> Tuple[str, str]:
        """Derive stable, locally administered MACs from the serial.

        Returns:
            (device MAC, host MAC)
        """
        digits = serial[-10:].rjust(10, "0")
        base = ":".join(digits[i:i + 2] for i in range(0, 10, 2))
        return f"02:{base}", f"12:{base}"

