"""Link layer: observation, power events and host probing.

This module provides:
- Kernel status reads for the USB controller and interfaces (LinkObserver)
- Sleep/wake detection from suspend signals (PowerEventDetector)
- Host discovery and reachability checks (ConnectivityProber)
"""

from .commands import CommandResult, run_command
from .neighbors import NeighborEntry, VALID_NEIGHBOR_STATES
from .observer import LinkObserver
from .power_events import PowerEventDetector, determine_event
from .prober import ConnectivityProber

__all__ = [
    # Observation
    'LinkObserver',

    # Power events
    'PowerEventDetector',
    'determine_event',

    # Probing
    'ConnectivityProber',
    'NeighborEntry',
    'VALID_NEIGHBOR_STATES',
    'CommandResult',
    'run_command',
]
