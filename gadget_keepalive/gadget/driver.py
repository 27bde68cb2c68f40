"""USB device controller kernel module handling."""
from __future__ import annotations

import logging

from ..link.commands import Runner, run_command

logger = logging.getLogger(__name__)

DEFAULT_CONTROLLER_DRIVER = "dwc2"


class ControllerDriver:
    """Loads and reloads the USB device controller driver via modprobe."""

    def __init__(self,
                 module: str = DEFAULT_CONTROLLER_DRIVER,
                 runner: Runner = run_command):
        self._module = module
        self._run = runner

    @property
    def module(self) -> str:
        return self._module

    def load(self) -> bool:
        """Make sure the controller driver is loaded.

        Returns:
            True if modprobe succeeded (also for an already loaded module)
        """
        result = self._run(["modprobe", self._module])
        if not result.ok:
            logger.warning(f"Failed to load {self._module}: {result.stderr.strip()}")
        return result.ok

    def reload(self) -> bool:
        """Unload and load the controller driver to re-probe the hardware."""
        logger.info(f"Reloading controller driver {self._module}")
        unload = self._run(["modprobe", "-r", self._module])
        if not unload.ok:
            logger.warning(f"Failed to unload {self._module}: {unload.stderr.strip()}")
        return self.load()
