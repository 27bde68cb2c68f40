"""Host sleep/wake detection from USB suspend signals.

Two independent signals are watched: the gadget 'suspended' attribute and
the controller's DSTS suspend bit. Host operating systems differ in which
one they assert, so a transition on either is accepted.
"""
from __future__ import annotations

import logging
import time
from typing import Callable, Mapping, Optional

from ..models import InterfaceState, PowerEvent, PowerState
from .observer import LinkObserver

logger = logging.getLogger(__name__)
trace = logging.getLogger("gadget_keepalive.trace")


def determine_event(prev_suspend: Optional[int],
                    cur_suspend: Optional[int],
                    prev_dsts: Optional[int],
                    cur_dsts: Optional[int]) -> PowerEvent:
    """Classify a pair of signal samples.

    Wake wins over sleep. A transition is only seen between two known
    values; None (unknown) never produces one.

    Args:
        prev_suspend: Previous suspend flag (0, 1 or None)
        cur_suspend: Current suspend flag
        prev_dsts: Previous DSTS suspend bit
        cur_dsts: Current DSTS suspend bit

    Returns:
        The PowerEvent implied by the samples
    """
    if (prev_suspend == 1 and cur_suspend == 0) or (prev_dsts == 1 and cur_dsts == 0):
        return PowerEvent.WAKE
    if (prev_suspend == 0 and cur_suspend == 1) or (prev_dsts == 0 and cur_dsts == 1):
        return PowerEvent.SLEEP
    if cur_suspend is None and cur_dsts is None:
        return PowerEvent.UNKNOWN
    return PowerEvent.NONE


class PowerEventDetector:
    """Tracks host power state across polls.

    Handling is idempotent: a wake while awake or a sleep while asleep is
    ignored, so redundant signals never reset counters twice.
    """

    def __init__(self,
                 observer: LinkObserver,
                 power_state: PowerState,
                 refresh_neighbors: Optional[Callable[[str], object]] = None,
                 clock: Callable[[], float] = time.monotonic):
        """Initialize detector.

        Args:
            observer: Source of suspend signals
            power_state: Shared PowerState (mutated only here)
            refresh_neighbors: Called per interface after a wake to provoke
                neighbor discovery
            clock: Monotonic time source
        """
        self._observer = observer
        self._power = power_state
        self._refresh_neighbors = refresh_neighbors
        self._clock = clock

    @property
    def power_state(self) -> PowerState:
        return self._power

    def handle(self, interfaces: Mapping[str, InterfaceState]) -> PowerEvent:
        """Sample signals and apply any sleep/wake transition.

        Args:
            interfaces: Per-interface states to reset on a transition

        Returns:
            The event computed from the samples (even if ignored)
        """
        cur_suspend = self._observer.read_suspend_flag()
        cur_dsts = self._observer.read_debug_suspend_bit()

        event = determine_event(
            self._power.last_suspended_flag, cur_suspend,
            self._power.last_dsts_bit, cur_dsts,
        )

        # Always advance the baseline so an unchanged pair never re-triggers
        self._power.last_suspended_flag = cur_suspend
        self._power.last_dsts_bit = cur_dsts

        if event is PowerEvent.WAKE:
            self._on_wake(interfaces, cur_suspend, cur_dsts)
        elif event is PowerEvent.SLEEP:
            self._on_sleep(interfaces, cur_suspend, cur_dsts)

        trace.debug(
            f"power event={event.value} suspended={cur_suspend} dsts={cur_dsts} "
            f"sleeping={self._power.host_is_sleeping}"
        )
        return event

    def rebaseline(self) -> None:
        """Adopt the current signals as baseline without raising events."""
        self._power.last_suspended_flag = self._observer.read_suspend_flag()
        self._power.last_dsts_bit = self._observer.read_debug_suspend_bit()

    def arm_wake_timer(self) -> None:
        """Start a post-wake window now (used after a gadget reset)."""
        self._power.host_is_sleeping = False
        self._power.wake_detected_at = self._clock()
        self._power.wake_from_reset = True

    def _on_wake(self,
                 interfaces: Mapping[str, InterfaceState],
                 suspend: Optional[int],
                 dsts: Optional[int]) -> None:
        if not self._power.host_is_sleeping:
            trace.debug("power wake ignored, host already awake")
            return

        self._power.host_is_sleeping = False
        self._power.wake_detected_at = self._clock()
        self._power.wake_from_reset = False
        logger.info(f"Host wake detected (suspended={suspend}, dsts={dsts})")

        for state in interfaces.values():
            state.reset_counters()
            state.clear_flags()
            if self._refresh_neighbors is not None:
                self._refresh_neighbors(state.name)

    def _on_sleep(self,
                  interfaces: Mapping[str, InterfaceState],
                  suspend: Optional[int],
                  dsts: Optional[int]) -> None:
        if self._power.host_is_sleeping:
            trace.debug("power sleep ignored, host already asleep")
            return

        self._power.host_is_sleeping = True
        self._power.wake_detected_at = None
        self._power.wake_from_reset = False
        logger.info(f"Host sleep detected (suspended={suspend}, dsts={dsts})")

        for state in interfaces.values():
            state.reset_counters()
