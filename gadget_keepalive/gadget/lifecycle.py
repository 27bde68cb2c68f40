"""Gadget lifecycle: configure, bind, unbind and re-enumerate.

Runtime resets and boot setup run the same sequence:

    cleanup -> configure -> load controller driver -> wait for controller
            -> bind -> bring interfaces up

They differ only in how long they wait. A missing controller triggers at
most a bounded number of driver reloads; the caller decides when to try
again.
"""
from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import Callable, List, Optional, Sequence, Tuple

from ..link.commands import Runner, run_command
from ..link.observer import DEFAULT_UDC_CLASS_DIR, LinkObserver
from .builder import GadgetBuilder
from .driver import ControllerDriver
from .errors import BindError, ControllerNotFoundError, GadgetError

logger = logging.getLogger(__name__)

UNBIND_SETTLE = 1.0  # seconds


class GadgetLifecycleManager:
    """Drives the gadget through configure/bind/reset.

    Example:
        >>> manager = GadgetLifecycleManager(
        ...     gadget_dir=Path("/sys/kernel/config/usb_gadget/wlanpi"),
        ...     builder=ConfigfsGadgetBuilder(gadget_dir),
        ...     driver=ControllerDriver("dwc2"),
        ...     interfaces=["usb0", "usb1"],
        ... )
        >>> manager.initial_setup()
        True
    """

    def __init__(self,
                 gadget_dir: Path,
                 builder: GadgetBuilder,
                 driver: ControllerDriver,
                 interfaces: Sequence[str],
                 udc_class_dir: Path = DEFAULT_UDC_CLASS_DIR,
                 runtime_controller_wait: int = 5,
                 boot_controller_wait: int = 30,
                 controller_poll_interval: float = 1.0,
                 driver_reload_attempts: int = 2,
                 driver_reload_settle: float = 2.0,
                 runtime_link_settle: float = 2.0,
                 boot_link_settle: float = 5.0,
                 observer: Optional[LinkObserver] = None,
                 runner: Runner = run_command,
                 sleep: Callable[[float], None] = time.sleep,
                 clock: Callable[[], float] = time.monotonic):
        """Initialize lifecycle manager.

        Args:
            gadget_dir: configfs directory of the gadget
            builder: Creates/removes the descriptor tree
            driver: Controller kernel module loader
            interfaces: Network interfaces to bring up after binding
            udc_class_dir: Directory listing USB device controllers
                (ignored when observer is given)
            runtime_controller_wait: Controller polls during a reset
            boot_controller_wait: Controller polls during boot setup
            controller_poll_interval: Seconds between controller polls
            driver_reload_attempts: Driver reloads before giving up
            driver_reload_settle: Seconds to wait after a reload
            runtime_link_settle: Seconds for interfaces to appear (reset)
            boot_link_settle: Seconds for interfaces to appear (boot)
            observer: Source of controller names, built from udc_class_dir
                if None
            runner: Command runner
            sleep: Blocking sleep function
            clock: Monotonic time source for timing instrumentation
        """
        self._gadget_dir = Path(gadget_dir)
        self._builder = builder
        self._driver = driver
        self._interfaces = list(interfaces)
        self._observer = observer or LinkObserver(udc_class_dir=udc_class_dir)
        self._runtime_wait = runtime_controller_wait
        self._boot_wait = boot_controller_wait
        self._poll_interval = controller_poll_interval
        self._reload_attempts = driver_reload_attempts
        self._reload_settle = driver_reload_settle
        self._runtime_settle = runtime_link_settle
        self._boot_settle = boot_link_settle
        self._run = runner
        self._sleep = sleep
        self._clock = clock

    @property
    def udc_file(self) -> Path:
        return self._gadget_dir / "UDC"

    # --- Building blocks ---

    def controller_name(self) -> Optional[str]:
        """First available USB device controller, or None."""
        return self._observer.controller_name()

    def bound_controller(self) -> Optional[str]:
        """Controller the gadget is bound to, or None if unbound."""
        try:
            value = self.udc_file.read_text().strip()
        except OSError:
            return None
        return value or None

    def is_bound(self) -> bool:
        return self.bound_controller() is not None

    def cleanup(self) -> None:
        """Unbind if bound, then discard the gadget configuration.

        Safe to call when no gadget exists.
        """
        if self.is_bound():
            logger.info("Unbinding gadget from controller")
            try:
                self.udc_file.write_text("")
            except OSError as e:
                logger.warning(f"Failed to unbind gadget: {e}")
            self._sleep(UNBIND_SETTLE)
        self._builder.teardown()

    def configure(self) -> bool:
        """Create the gadget configuration.

        Returns:
            True on success, False if the builder failed
        """
        try:
            self._builder.configure()
        except GadgetError as e:
            logger.error(f"Gadget configuration failed: {e}")
            return False
        return True

    def wait_for_controller(self, max_ticks: int) -> Optional[str]:
        """Poll for a USB device controller.

        Args:
            max_ticks: Maximum number of polls

        Returns:
            Controller name, or None on timeout
        """
        for tick in range(max_ticks):
            name = self.controller_name()
            if name:
                return name
            if tick + 1 < max_ticks:
                logger.debug(f"Waiting for USB device controller ({tick + 1}/{max_ticks})")
                self._sleep(self._poll_interval)
        return None

    def bind(self, controller: Optional[str] = None) -> bool:
        """Attach the configured gadget to a controller.

        Args:
            controller: Controller name, or None for the first available

        Returns:
            True if bound. Failures are reported, not retried.
        """
        try:
            self._bind(controller)
        except GadgetError as e:
            logger.error(f"Failed to bind gadget: {e}")
            return False
        return True

    def bring_up_interfaces(self) -> List[str]:
        """Set monitored interfaces administratively up.

        Returns:
            Interfaces that were brought up
        """
        up = []
        for iface in self._interfaces:
            result = self._run(["ip", "link", "set", iface, "up"])
            if result.ok:
                logger.info(f"Brought {iface} up")
                up.append(iface)
            else:
                logger.warning(f"Failed to bring {iface} up or interface not found")
        return up

    # --- Sequences ---

    def reset(self) -> bool:
        """Re-enumerate the gadget at runtime.

        Returns:
            True if the gadget is bound again
        """
        logger.info("Resetting USB Ethernet gadget...")
        if not self._setup(self._runtime_wait, self._runtime_settle):
            logger.error("Gadget reset failed")
            return False
        logger.info("USB Ethernet gadget reset successfully")
        return True

    def initial_setup(self, timed: bool = False) -> bool:
        """Configure and bind the gadget at boot.

        Args:
            timed: Log how long each step took

        Returns:
            True if the gadget is bound
        """
        logger.info("Configuring USB Ethernet gadget...")
        timings: Optional[List[Tuple[str, float]]] = [] if timed else None
        try:
            ok = self._setup(self._boot_wait, self._boot_settle, timings)
        finally:
            if timings:
                summary = " ".join(f"{step}={secs:.2f}s" for step, secs in timings)
                logger.info(f"Setup timing: {summary}")
        if not ok:
            logger.error("Gadget setup failed")
            return False
        logger.info("USB Ethernet gadget configured successfully")
        return True

    # Internal methods

    def _setup(self,
               wait_ticks: int,
               link_settle: float,
               timings: Optional[List[Tuple[str, float]]] = None) -> bool:
        def mark(step: str, started: float) -> float:
            now = self._clock()
            if timings is not None:
                timings.append((step, now - started))
            return now

        t = self._clock()
        self.cleanup()
        t = mark("cleanup", t)

        if not self.configure():
            return False
        t = mark("configure", t)

        controller = self._await_controller(wait_ticks)
        if controller is None:
            return False
        t = mark("controller", t)

        if not self.bind(controller):
            return False
        t = mark("bind", t)

        self._sleep(link_settle)
        self.bring_up_interfaces()
        mark("interfaces", t)
        return True

    def _await_controller(self, wait_ticks: int) -> Optional[str]:
        """Load the driver and wait, reloading it a bounded number of times."""
        self._driver.load()
        controller = self.wait_for_controller(wait_ticks)
        attempts = 0
        while controller is None and attempts < self._reload_attempts:
            attempts += 1
            logger.warning(
                f"No USB device controller, reloading {self._driver.module} "
                f"(attempt {attempts}/{self._reload_attempts})"
            )
            self._driver.reload()
            self._sleep(self._reload_settle)
            controller = self.wait_for_controller(wait_ticks)
        if controller is None:
            logger.error(f"No USB device controller after {attempts} driver reload(s)")
        return controller

    def _bind(self, controller: Optional[str]) -> None:
        if controller is None:
            controller = self.controller_name()
        if controller is None:
            raise ControllerNotFoundError("No UDC device found")
        try:
            self.udc_file.write_text(controller)
        except OSError as e:
            raise BindError(f"Cannot write {self.udc_file}: {e}", controller=controller) from e
        logger.info(f"Bound gadget to UDC {controller}")
