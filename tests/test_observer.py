"""Unit tests for LinkObserver against a fake sysfs tree."""

import tempfile
import unittest
from pathlib import Path

from gadget_keepalive.link.observer import LinkObserver
from gadget_keepalive.models import UsbState

UDC = "20980000.usb"


class TestLinkObserver(unittest.TestCase):
    """Test pass-through reads and degradation to unknown."""

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        root = Path(self._tmp.name)
        self.udc_dir = root / "class" / "udc"
        self.net_dir = root / "class" / "net"
        self.debug_dir = root / "debug"
        self.udc_dir.mkdir(parents=True)
        self.net_dir.mkdir(parents=True)
        self.observer = LinkObserver(
            udc_class_dir=self.udc_dir,
            net_class_dir=self.net_dir,
            debug_register_path=str(self.debug_dir / "{udc}" / "regdump"),
        )

    def tearDown(self):
        self._tmp.cleanup()

    def _write(self, path: Path, text: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text)

    def test_no_controller(self):
        """Everything is unknown without a controller."""
        self.assertIsNone(self.observer.controller_name())
        self.assertEqual(self.observer.read_usb_state(), UsbState.UNKNOWN)
        self.assertIsNone(self.observer.read_suspend_flag())
        self.assertIsNone(self.observer.read_debug_suspend_bit())

    def test_missing_class_dir(self):
        observer = LinkObserver(udc_class_dir=Path(self._tmp.name) / "nope")
        self.assertEqual(observer.read_usb_state(), UsbState.UNKNOWN)

    def test_read_usb_state(self):
        self._write(self.udc_dir / UDC / "state", "configured\n")
        self.assertEqual(self.observer.controller_name(), UDC)
        self.assertEqual(self.observer.read_usb_state(), UsbState.CONFIGURED)

        self._write(self.udc_dir / UDC / "state", "not attached\n")
        self.assertEqual(self.observer.read_usb_state(), UsbState.NOT_ATTACHED)

    def test_state_file_missing(self):
        (self.udc_dir / UDC).mkdir()
        self.assertEqual(self.observer.read_usb_state(), UsbState.UNKNOWN)

    def test_read_suspend_flag(self):
        self._write(self.udc_dir / UDC / "device" / "gadget" / "suspended", "1\n")
        self.assertEqual(self.observer.read_suspend_flag(), 1)

    def test_suspend_flag_prefers_gadget0(self):
        self._write(self.udc_dir / UDC / "device" / "gadget.0" / "suspended", "0\n")
        self._write(self.udc_dir / UDC / "device" / "gadget" / "suspended", "1\n")
        self.assertEqual(self.observer.read_suspend_flag(), 0)

    def test_suspend_flag_garbage(self):
        self._write(self.udc_dir / UDC / "device" / "gadget" / "suspended", "yes\n")
        self.assertIsNone(self.observer.read_suspend_flag())

    def test_read_debug_suspend_bit(self):
        (self.udc_dir / UDC).mkdir()
        regdump = "DCFG = 0x04200000\nDCTL = 0x00000000\nDSTS = 0x00ff0001\n"
        self._write(self.debug_dir / UDC / "regdump", regdump)
        self.assertEqual(self.observer.read_debug_suspend_bit(), 1)

        self._write(self.debug_dir / UDC / "regdump", regdump.replace("0x00ff0001", "0x00ff0002"))
        self.assertEqual(self.observer.read_debug_suspend_bit(), 0)

    def test_debug_register_without_dsts(self):
        (self.udc_dir / UDC).mkdir()
        self._write(self.debug_dir / UDC / "regdump", "DCFG = 0x04200000\n")
        self.assertIsNone(self.observer.read_debug_suspend_bit())

    def test_custom_dsts_bit(self):
        (self.udc_dir / UDC).mkdir()
        self._write(self.debug_dir / UDC / "regdump", "DSTS = 0x00000004\n")
        observer = LinkObserver(
            udc_class_dir=self.udc_dir,
            debug_register_path=str(self.debug_dir / "{udc}" / "regdump"),
            dsts_suspend_bit=2,
        )
        self.assertEqual(observer.read_debug_suspend_bit(), 1)

    def test_explicit_udc(self):
        observer = LinkObserver(udc_class_dir=self.udc_dir, udc="fe980000.usb")
        self.assertEqual(observer.controller_name(), "fe980000.usb")

    def test_read_operstate(self):
        self._write(self.net_dir / "usb0" / "operstate", "up\n")
        self.assertEqual(self.observer.read_operstate("usb0"), "up")
        self.assertIsNone(self.observer.read_operstate("usb1"))


if __name__ == '__main__':
    unittest.main()
