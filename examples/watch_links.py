#!/usr/bin/env python3
"""
Link Watch Script.

Read-only view of what the keep-alive daemon sees: USB controller state,
suspend signals, interface operstate and the persisted record for each
monitored interface. Safe to run next to the daemon; it never resets
or rebinds the gadget.
"""

import sys
import time
import logging
from pathlib import Path

# Add package to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from gadget_keepalive.config import load_settings
from gadget_keepalive.link import ConnectivityProber, LinkObserver
from gadget_keepalive.state_store import read_record

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(levelname)s - %(message)s'
)


def main():
    settings = load_settings()
    observer = LinkObserver(
        udc_class_dir=settings.udc_class_dir,
        net_class_dir=settings.net_class_dir,
        debug_register_path=settings.debug_register_path,
        dsts_suspend_bit=settings.dsts_suspend_bit,
    )
    prober = ConnectivityProber(subnet_prefix=settings.subnet_prefix)

    print(f"Controller: {observer.controller_name() or 'none'}")
    print(f"Watching {', '.join(settings.interfaces)} for 10 seconds (Ctrl+C to stop)...")

    try:
        for i in range(10):
            usb = observer.read_usb_state()
            print(f"\n[{i+1}/10] USB: {usb.value} | "
                  f"suspended: {observer.read_suspend_flag()} | "
                  f"DSTS: {observer.read_debug_suspend_bit()}")

            for name in settings.interfaces:
                record = read_record(settings.state_file, name)
                neighbors = [n.address for n in prober.neighbors(name) if n.is_valid]
                print(f"  {name}: operstate={observer.read_operstate(name) or '?'} "
                      f"neighbors={','.join(neighbors) or '-'} "
                      f"state={record.status.value if record else '?'} "
                      f"host={(record.host_ip if record else None) or '-'}")

            sys.stdout.flush()
            time.sleep(1)

    except KeyboardInterrupt:
        print("\nInterrupted by user")


if __name__ == "__main__":
    main()
