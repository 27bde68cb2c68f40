"""Gadget layer: descriptor tree, controller driver and lifecycle.

This module provides:
- configfs descriptor building (ConfigfsGadgetBuilder)
- controller kernel module handling (ControllerDriver)
- configure/bind/reset orchestration (GadgetLifecycleManager)
"""

from .builder import ConfigfsGadgetBuilder, GadgetBuilder, GadgetIdentity
from .driver import ControllerDriver
from .errors import BindError, ControllerNotFoundError, GadgetConfigError, GadgetError
from .lifecycle import GadgetLifecycleManager

__all__ = [
    # Builder
    'GadgetBuilder',
    'ConfigfsGadgetBuilder',
    'GadgetIdentity',

    # Lifecycle
    'ControllerDriver',
    'GadgetLifecycleManager',

    # Errors
    'GadgetError',
    'GadgetConfigError',
    'ControllerNotFoundError',
    'BindError',
]
