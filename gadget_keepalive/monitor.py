"""Keep-alive control loop.

A single thread polls the USB controller, detects host sleep/wake, probes
each tethered host and resets the gadget when the decision engine asks
for it. All per-interface state is owned here; nothing else mutates it.
"""
from __future__ import annotations

import logging
import signal
import threading
from enum import Enum
from typing import Dict, Optional

from .config import Settings
from .decision import ResetDecisionEngine, ResetPolicy
from .gadget import ConfigfsGadgetBuilder, ControllerDriver, GadgetLifecycleManager
from .link import ConnectivityProber, LinkObserver, PowerEventDetector
from .models import (
    ConnectionState,
    FailureKind,
    InterfaceState,
    PowerState,
    Reachability,
    UsbState,
)
from .state_store import StateStore

logger = logging.getLogger(__name__)
trace = logging.getLogger("gadget_keepalive.trace")


class LoopMode(Enum):
    NOT_BOUND = "not_bound"
    NORMAL = "normal"


class KeepaliveMonitor:
    """Control loop keeping tethered USB Ethernet links usable.

    While NOT_BOUND the gadget setup is retried periodically. While NORMAL
    each tick runs sleep/wake detection, checks every interface and, if
    any interface asked for it and the host is awake, resets the gadget.

    Example:
        >>> monitor = KeepaliveMonitor.from_settings(Settings())
        >>> monitor.install_signal_handlers()
        >>> monitor.run()
    """

    def __init__(self,
                 settings: Settings,
                 observer: LinkObserver,
                 prober: ConnectivityProber,
                 lifecycle: GadgetLifecycleManager,
                 store: StateStore,
                 power_state: Optional[PowerState] = None,
                 detector: Optional[PowerEventDetector] = None,
                 engine: Optional[ResetDecisionEngine] = None):
        """Initialize monitor.

        Args:
            settings: Daemon settings (intervals, interfaces)
            observer: Link/power state observer
            prober: Connectivity prober
            lifecycle: Gadget lifecycle manager
            store: Persistent state store
            power_state: Shared power state, created if None
            detector: Power event detector, created if None
            engine: Reset decision engine, created if None
        """
        self._settings = settings
        self._observer = observer
        self._prober = prober
        self._lifecycle = lifecycle
        self._store = store

        self._power = power_state if power_state is not None else PowerState()
        self._detector = detector or PowerEventDetector(
            observer, self._power, refresh_neighbors=prober.refresh_neighbor_table
        )
        self._engine = engine or ResetDecisionEngine(
            ResetPolicy.from_settings(settings), self._power
        )

        self.mode = LoopMode.NOT_BOUND
        self._stop = threading.Event()

        self._states: Dict[str, InterfaceState] = {
            name: InterfaceState(name=name) for name in settings.interfaces
        }

    @classmethod
    def from_settings(cls, settings: Settings) -> KeepaliveMonitor:
        """Wire up the production components from settings."""
        observer = LinkObserver(
            udc_class_dir=settings.udc_class_dir,
            net_class_dir=settings.net_class_dir,
            debug_register_path=settings.debug_register_path,
            dsts_suspend_bit=settings.dsts_suspend_bit,
        )
        prober = ConnectivityProber(
            ping_count=settings.ping_count,
            ping_timeout=settings.ping_timeout,
            subnet_prefix=settings.subnet_prefix,
            neighbor_settle=settings.neighbor_settle,
        )
        lifecycle = GadgetLifecycleManager(
            gadget_dir=settings.gadget_dir,
            builder=ConfigfsGadgetBuilder(settings.gadget_dir),
            driver=ControllerDriver(settings.controller_driver),
            interfaces=settings.interfaces,
            udc_class_dir=settings.udc_class_dir,
            runtime_controller_wait=settings.runtime_controller_wait,
            boot_controller_wait=settings.boot_controller_wait,
            controller_poll_interval=settings.controller_poll_interval,
            driver_reload_attempts=settings.driver_reload_attempts,
            driver_reload_settle=settings.driver_reload_settle,
            runtime_link_settle=settings.runtime_link_settle,
            boot_link_settle=settings.boot_link_settle,
            observer=observer,
        )
        store = StateStore(settings.state_file)
        return cls(settings, observer, prober, lifecycle, store)

    @property
    def states(self) -> Dict[str, InterfaceState]:
        return self._states

    @property
    def power_state(self) -> PowerState:
        return self._power

    # --- Process control ---

    def install_signal_handlers(self) -> None:
        """Stop the loop on SIGTERM/SIGINT."""
        signal.signal(signal.SIGTERM, self._signal_handler)
        signal.signal(signal.SIGINT, self._signal_handler)

    def _signal_handler(self, signum, frame) -> None:
        logger.info(f"Received signal {signum}, stopping")
        self.stop()

    def stop(self) -> None:
        self._stop.set()

    @property
    def stopped(self) -> bool:
        return self._stop.is_set()

    def run(self) -> None:
        """Run until stopped. Never raises."""
        logger.info(
            f"Starting USB Ethernet keep-alive monitoring for "
            f"{', '.join(self._states)}"
        )
        logger.info(f"Reset policy: {self._engine.policy.summary()}")

        # Addresses from a previous run are rediscovered
        for state in self._states.values():
            state.last_host_ip = None
            self._persist(state, ConnectionState.DISCONNECTED)

        while not self._stop.is_set():
            try:
                delay = self.step()
            except Exception:
                logger.exception("Unexpected error in keep-alive loop")
                delay = self._settings.not_bound_retry_interval
            self._stop.wait(delay)

        logger.info("Keep-alive monitoring stopped")

    def step(self) -> float:
        """Run one iteration of the state machine.

        Returns:
            Seconds to sleep before the next iteration
        """
        if self.mode is LoopMode.NOT_BOUND:
            if self._lifecycle.initial_setup(timed=self._settings.boot_timing):
                self._enter_normal()
                return self._settings.short_interval
            logger.warning(
                f"Gadget not bound, retrying in {self._settings.not_bound_retry_interval}s"
            )
            return self._settings.not_bound_retry_interval
        return self.tick()

    # --- Normal mode ---

    def tick(self) -> float:
        """Check every interface once and reset the gadget if required.

        Returns:
            Seconds to sleep before the next tick
        """
        self._detector.handle(self._states)

        requested = [
            state.name for state in self._states.values()
            if self._check_interface(state)
        ]

        if requested:
            if self._power.host_is_sleeping:
                logger.info(
                    f"Reset requested by {', '.join(requested)} deferred, host is asleep"
                )
            else:
                self._perform_reset(requested)

        delay = self.next_interval()
        trace.debug(f"tick mode={self.mode.value} reset_requested={bool(requested)} next={delay}")
        return delay

    def next_interval(self) -> float:
        """Sleep duration derived from the current link states."""
        settings = self._settings
        states = self._states.values()
        if any(s.usb_state is UsbState.SUSPENDED for s in states):
            return settings.suspended_interval
        if any(s.connection_state is ConnectionState.CONNECTED for s in states):
            if self._engine.in_turbo_window():
                return settings.fast_interval
            return settings.normal_interval
        return settings.short_interval

    def _check_interface(self, state: InterfaceState) -> bool:
        """Update one interface and evaluate the decision engine.

        Returns:
            True if this interface requests a reset
        """
        usb = self._observer.read_usb_state()
        if usb is UsbState.UNKNOWN:
            trace.debug(f"iface={state.name} usb=unknown skipped")
            return False

        if usb is not state.usb_state:
            self._on_usb_transition(state, usb)

        connected_once = self._store.connected_once(state.name)

        if usb is UsbState.NOT_ATTACHED:
            state.not_attached_count += 1
            if state.is_connected:
                logger.info(f"Host detached from {state.name}")
                state.is_connected = False
            state.connection_state = ConnectionState.DISCONNECTED
            self._persist(state, ConnectionState.DISCONNECTED)
            return self._engine.should_reset(
                state, FailureKind.NOT_ATTACHED, connected_once, usb
            )

        if usb is UsbState.SUSPENDED:
            if not state.suspended_logged:
                logger.info(f"USB link for {state.name} suspended by host")
                state.suspended_logged = True
            return False

        return self._check_configured(state, usb, connected_once)

    def _check_configured(self,
                          state: InterfaceState,
                          usb: UsbState,
                          connected_once: bool) -> bool:
        if self._observer.read_operstate(state.name) == "down":
            if not state.link_down_logged:
                logger.warning(f"Interface {state.name} is down while USB is configured")
                state.link_down_logged = True
            return self._record_no_ip(state, usb, connected_once)
        state.link_down_logged = False

        record = self._store.get(state.name)
        address = self._prober.get_host_address(
            state, record.host_ip if record else None
        )
        if address is None:
            return self._record_no_ip(state, usb, connected_once)

        result = self._prober.verify_reachability(state, address, usb)
        if result is Reachability.UNREACHABLE:
            replacement = self._prober.discover_host_address(state.name, exclude=address)
            if replacement is not None:
                logger.info(f"Host on {state.name} no longer at {address}, trying {replacement}")
                address = replacement
                result = self._prober.verify_reachability(state, address, usb)
        state.last_host_ip = address

        if result is Reachability.REACHABLE:
            state.fail_no_ip = 0
            state.fail_no_ping = 0
            if not state.is_connected:
                logger.info(f"Interface {state.name} is up and connected to {address}")
                state.is_connected = True
            state.connection_state = ConnectionState.CONNECTED
            self._persist(state, ConnectionState.CONNECTED)
            return False

        state.fail_no_ping += 1
        if state.is_connected:
            logger.warning(f"No response from {address} on {state.name}")
            state.is_connected = False
        state.connection_state = ConnectionState.WAITING
        self._persist(state, ConnectionState.WAITING)
        return self._engine.should_reset(
            state, FailureKind.NO_PING, connected_once, usb
        )

    def _record_no_ip(self,
                      state: InterfaceState,
                      usb: UsbState,
                      connected_once: bool) -> bool:
        state.fail_no_ip += 1
        if state.is_connected:
            logger.warning(f"No valid host IP found on {state.name}")
            state.is_connected = False
        state.connection_state = ConnectionState.WAITING
        self._persist(state, ConnectionState.WAITING)
        return self._engine.should_reset(
            state, FailureKind.NO_IP, connected_once, usb
        )

    def _on_usb_transition(self, state: InterfaceState, usb: UsbState) -> None:
        previous = state.usb_state
        state.usb_state = usb
        if previous is UsbState.UNKNOWN:
            logger.info(f"USB state for {state.name}: {usb.value}")
        else:
            logger.info(f"USB state for {state.name}: {previous.value} -> {usb.value}")

        if previous is UsbState.SUSPENDED:
            state.suspended_logged = False

        # The detach count is itself the signal the not-attached path uses
        if usb is not UsbState.NOT_ATTACHED:
            state.reset_counters()

    def _perform_reset(self, requested) -> None:
        logger.warning(f"Resetting gadget, requested by {', '.join(requested)}")
        if not self._lifecycle.reset():
            logger.error("Gadget reset failed, falling back to setup retries")
            self.mode = LoopMode.NOT_BOUND
            return

        for state in self._states.values():
            state.reset_counters()
            state.clear_flags()
            state.usb_state = UsbState.UNKNOWN
            state.last_host_ip = None
            state.suspended_logged = False
            state.link_down_logged = False
            state.connection_state = ConnectionState.DISCONNECTED
            self._persist(state, ConnectionState.DISCONNECTED)

        # A fresh enumeration gets the same fast recovery window as a wake
        self._detector.rebaseline()
        self._detector.arm_wake_timer()

    def _enter_normal(self) -> None:
        self.mode = LoopMode.NORMAL
        self._detector.rebaseline()
        logger.info("Gadget bound, monitoring links")

    def _persist(self, state: InterfaceState, status: ConnectionState) -> None:
        self._store.update(state.name, status, state.last_host_ip)
