"""Reset decision engine.

Decides whether a failing link warrants re-enumerating the gadget. The
policy is asymmetric:

- right after a host wake (or a reset) a previously working link is reset
  after a single failed check;
- a detached cable is tolerated for roughly the length of a laptop sleep gap;
- a link that worked before is reset after a few failed checks;
- a link that never worked is left alone while it negotiates
  (enumeration, DHCP).
"""
from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Optional, Union

from .models import FailureKind, InterfaceState, PowerState, UsbState

logger = logging.getLogger(__name__)
trace = logging.getLogger("gadget_keepalive.trace")


@dataclass(frozen=True)
class ResetPolicy:
    """Thresholds governing when a reset is allowed.

    Thresholds count consecutive failed checks; durations are seconds.
    """

    # Checks while detached before a reset (~50s at a 2s interval);
    # longer than observed host sleep/resume gaps
    not_attached_threshold: int = 25

    # Checks before resetting a link that has worked before (~6s)
    reconnect_threshold: int = 3

    # Checks before resetting during the post-wake window
    post_wake_fast_threshold: int = 1

    # No decision is taken this soon after a wake
    wake_grace_period: float = 1.0

    # Length of the post-wake fast recovery window
    turbo_window: float = 15.0

    @classmethod
    def from_settings(cls, settings) -> ResetPolicy:
        return cls(
            not_attached_threshold=settings.not_attached_threshold,
            reconnect_threshold=settings.reconnect_threshold,
            post_wake_fast_threshold=settings.post_wake_fast_threshold,
            wake_grace_period=settings.wake_grace_period,
            turbo_window=settings.turbo_window,
        )

    def summary(self) -> Dict[str, Union[int, float]]:
        """Effective policy values, for startup logging."""
        return {
            "not_attached_threshold": self.not_attached_threshold,
            "reconnect_threshold": self.reconnect_threshold,
            "post_wake_fast_threshold": self.post_wake_fast_threshold,
            "wake_grace_period": self.wake_grace_period,
            "turbo_window": self.turbo_window,
        }


class DecisionPath(Enum):
    """Branch of the decision tree that produced a decision."""
    POST_WAKE_GRACE = "post_wake_grace"
    POST_WAKE_TURBO = "post_wake_turbo"
    NOT_ATTACHED = "not_attached"
    RECONNECT = "reconnect"
    NEVER_CONNECTED = "never_connected"


@dataclass(frozen=True)
class ResetDecision:
    """Outcome of one evaluation, kept for auditing."""
    interface: str
    path: DecisionPath
    reset: bool
    failure_kind: FailureKind
    counter: int
    threshold: Optional[int] = None
    since_wake: Optional[float] = None

    def describe(self) -> str:
        parts = [
            f"iface={self.interface}",
            f"path={self.path.value}",
            f"kind={self.failure_kind.value}",
            f"counter={self.counter}",
        ]
        if self.threshold is not None:
            parts.append(f"threshold={self.threshold}")
        if self.since_wake is not None:
            parts.append(f"since_wake={self.since_wake:.1f}s")
        parts.append(f"reset={'yes' if self.reset else 'no'}")
        return " ".join(parts)


class ResetDecisionEngine:
    """Evaluates the reset decision tree for one interface at a time.

    Paths are tried in order and the first that applies decides:

    1. Post-wake turbo (wake timestamp set, link worked before, failure
       other than not-attached, and not a missing address in a window
       armed by a reset): defer during the grace period, then use the
       fast threshold until the turbo window ends.
    2. Not attached: compare the detach counter with the patient threshold.
    3. Previously connected: compare the failure counter with the
       reconnect threshold.
    4. Never connected: never reset.
    """

    def __init__(self,
                 policy: ResetPolicy,
                 power_state: PowerState,
                 clock: Callable[[], float] = time.monotonic):
        """Initialize engine.

        Args:
            policy: Reset thresholds
            power_state: Shared PowerState (read only)
            clock: Monotonic time source, same as the power detector's
        """
        self._policy = policy
        self._power = power_state
        self._clock = clock
        self.last_decision: Optional[ResetDecision] = None

    @property
    def policy(self) -> ResetPolicy:
        return self._policy

    def in_turbo_window(self) -> bool:
        """Whether a post-wake fast recovery window is currently open."""
        wake_at = self._power.wake_detected_at
        if wake_at is None:
            return False
        return (self._clock() - wake_at) < self._policy.turbo_window

    def should_reset(self,
                     state: InterfaceState,
                     failure_kind: FailureKind,
                     was_previously_connected: bool,
                     usb_state: UsbState) -> bool:
        """Decide whether this failure warrants a gadget reset."""
        return self.evaluate(state, failure_kind, was_previously_connected, usb_state).reset

    def evaluate(self,
                 state: InterfaceState,
                 failure_kind: FailureKind,
                 was_previously_connected: bool,
                 usb_state: UsbState) -> ResetDecision:
        """Walk the decision tree and record the result.

        Args:
            state: Interface state holding the failure counters
            failure_kind: Which failure this check observed
            was_previously_connected: Persisted connectedOnce flag
            usb_state: Current USB state of the link

        Returns:
            ResetDecision describing the path taken
        """
        decision = self._decide(state, failure_kind, was_previously_connected, usb_state)
        self.last_decision = decision
        trace.debug(f"decision {decision.describe()}")
        if decision.reset:
            logger.warning(f"Reset requested: {decision.describe()}")
        return decision

    def _decide(self,
                state: InterfaceState,
                failure_kind: FailureKind,
                was_previously_connected: bool,
                usb_state: UsbState) -> ResetDecision:
        policy = self._policy
        counter = state.counter_for(failure_kind)

        wake_at = self._power.wake_detected_at
        # Missing addresses are expected while the host renegotiates after a reset
        reset_renegotiating = (
            self._power.wake_from_reset and failure_kind is FailureKind.NO_IP
        )
        if (wake_at is not None
                and failure_kind is not FailureKind.NOT_ATTACHED
                and was_previously_connected
                and not reset_renegotiating):
            elapsed = self._clock() - wake_at
            if elapsed < policy.wake_grace_period:
                return ResetDecision(
                    interface=state.name,
                    path=DecisionPath.POST_WAKE_GRACE,
                    reset=False,
                    failure_kind=failure_kind,
                    counter=counter,
                    since_wake=elapsed,
                )
            if elapsed < policy.turbo_window:
                return ResetDecision(
                    interface=state.name,
                    path=DecisionPath.POST_WAKE_TURBO,
                    reset=counter >= policy.post_wake_fast_threshold,
                    failure_kind=failure_kind,
                    counter=counter,
                    threshold=policy.post_wake_fast_threshold,
                    since_wake=elapsed,
                )

        if usb_state is UsbState.NOT_ATTACHED:
            count = state.not_attached_count
            return ResetDecision(
                interface=state.name,
                path=DecisionPath.NOT_ATTACHED,
                reset=count >= policy.not_attached_threshold,
                failure_kind=failure_kind,
                counter=count,
                threshold=policy.not_attached_threshold,
            )

        if was_previously_connected:
            return ResetDecision(
                interface=state.name,
                path=DecisionPath.RECONNECT,
                reset=counter >= policy.reconnect_threshold,
                failure_kind=failure_kind,
                counter=counter,
                threshold=policy.reconnect_threshold,
            )

        return ResetDecision(
            interface=state.name,
            path=DecisionPath.NEVER_CONNECTED,
            reset=False,
            failure_kind=failure_kind,
            counter=counter,
        )
