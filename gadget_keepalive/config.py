"""
Configuration for the USB gadget keep-alive daemon.

We use pydantic-settings (Pydantic v2) to load settings from:
- environment variables prefixed with USB_KEEPALIVE_
- a local `.env` file in the working directory

Examples:

    USB_KEEPALIVE_INTERFACES=usb0
    USB_KEEPALIVE_RECONNECT_THRESHOLD=5
    USB_KEEPALIVE_DEBUG=1
"""
from __future__ import annotations

from pathlib import Path
from typing import Annotated, List, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class Settings(BaseSettings):
    """
    Daemon-wide settings.

    Intervals are in seconds, thresholds are in number of checks.
    """

    # Monitored links and files
    interfaces: Annotated[List[str], NoDecode] = Field(
        default_factory=lambda: ["usb0", "usb1"]
    )
    state_file: Path = Path("/var/run/usb-ethernet-gadget.state")
    log_file: Optional[Path] = Path("/var/log/usb-ethernet-gadget.log")

    # Kernel interfaces
    gadget_dir: Path = Path("/sys/kernel/config/usb_gadget/wlanpi")
    udc_class_dir: Path = Path("/sys/class/udc")
    net_class_dir: Path = Path("/sys/class/net")
    debug_register_path: str = "/sys/kernel/debug/usb/{udc}/regdump"
    dsts_suspend_bit: int = Field(default=0, ge=0, le=31)

    # Polling
    normal_interval: float = Field(default=2.0, gt=0)
    fast_interval: float = Field(default=1.0, gt=0)
    short_interval: float = Field(default=2.0, gt=0)
    suspended_interval: float = Field(default=1.0, gt=0)
    not_bound_retry_interval: float = Field(default=10.0, gt=0)

    # Probing
    ping_count: int = Field(default=2, ge=1)
    ping_timeout: int = Field(default=1, ge=1)
    neighbor_settle: float = Field(default=1.0, ge=0)
    subnet_prefix: str = ""

    # Reset policy
    not_attached_threshold: int = Field(default=25, ge=1)
    reconnect_threshold: int = Field(default=3, ge=1)
    post_wake_fast_threshold: int = Field(default=1, ge=1)
    turbo_window: float = Field(default=15.0, ge=0)
    wake_grace_period: float = Field(default=1.0, ge=0)

    # Gadget lifecycle
    controller_driver: str = "dwc2"
    runtime_controller_wait: int = Field(default=5, ge=1)
    boot_controller_wait: int = Field(default=30, ge=1)
    controller_poll_interval: float = Field(default=1.0, gt=0)
    driver_reload_attempts: int = Field(default=2, ge=0)
    driver_reload_settle: float = Field(default=2.0, ge=0)
    runtime_link_settle: float = Field(default=2.0, ge=0)
    boot_link_settle: float = Field(default=5.0, ge=0)
    boot_timing: bool = False

    debug: bool = False

    model_config = SettingsConfigDict(
        env_prefix="USB_KEEPALIVE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    @field_validator("interfaces", mode="before")
    @classmethod
    def parse_interfaces(cls, v):
        """
        Allow USB_KEEPALIVE_INTERFACES to be specified as:

        - "usb0"         -> ["usb0"]
        - "usb0,usb1"    -> ["usb0", "usb1"]
        - "usb0 usb1"    -> ["usb0", "usb1"]
        - ["usb0"]       -> ["usb0"]
        """
        if isinstance(v, str):
            v = [p for p in v.replace(",", " ").split() if p]
        if isinstance(v, (list, tuple)):
            names = [str(p).strip() for p in v if str(p).strip()]
            if not names:
                raise ValueError("at least one interface must be monitored")
            return names
        return v

    @field_validator("log_file", mode="before")
    @classmethod
    def empty_log_file_disables(cls, v):
        if v is None or (isinstance(v, str) and not v.strip()):
            return None
        return v


def load_settings(**overrides) -> Settings:
    """Build Settings from the environment, applying explicit overrides.

    Overrides with a value of None are ignored so CLI flags that were not
    given do not mask environment values.
    """
    values = {k: v for k, v in overrides.items() if v is not None}
    return Settings(**values)
