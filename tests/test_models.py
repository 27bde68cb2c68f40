"""Unit tests for link state data models.

Tests verify:
- Default values
- Counter helpers
- Kernel state mapping
- State file line serialization
"""
import unittest
from dataclasses import FrozenInstanceError

from gadget_keepalive.models import (
    ConnectionState,
    FailureKind,
    InterfaceState,
    PersistentRecord,
    PowerState,
    UsbState,
)


class TestUsbState(unittest.TestCase):
    """Tests for kernel UDC state mapping."""

    def test_known_states(self):
        self.assertEqual(UsbState.from_sysfs("configured\n"), UsbState.CONFIGURED)
        self.assertEqual(UsbState.from_sysfs("suspended"), UsbState.SUSPENDED)
        self.assertEqual(UsbState.from_sysfs("not attached"), UsbState.NOT_ATTACHED)

    def test_intermediate_states_are_unknown(self):
        """Enumeration states say nothing about the host."""
        for value in ("attached", "powered", "default", "addressed", ""):
            self.assertEqual(UsbState.from_sysfs(value), UsbState.UNKNOWN)


class TestInterfaceState(unittest.TestCase):
    """Tests for InterfaceState mutable record."""

    def test_creation_with_defaults(self):
        state = InterfaceState(name="usb0")
        self.assertEqual(state.name, "usb0")
        self.assertEqual(state.usb_state, UsbState.UNKNOWN)
        self.assertEqual(state.connection_state, ConnectionState.DISCONNECTED)
        self.assertFalse(state.is_idle)
        self.assertFalse(state.is_connected)
        self.assertEqual(state.fail_no_ip, 0)
        self.assertEqual(state.fail_no_ping, 0)
        self.assertEqual(state.not_attached_count, 0)
        self.assertIsNone(state.last_host_ip)

    def test_reset_counters(self):
        state = InterfaceState(name="usb0", fail_no_ip=4, fail_no_ping=2, not_attached_count=9)
        state.reset_counters()
        self.assertEqual((state.fail_no_ip, state.fail_no_ping, state.not_attached_count), (0, 0, 0))

    def test_clear_flags(self):
        state = InterfaceState(name="usb0", is_idle=True, is_connected=True)
        state.clear_flags()
        self.assertFalse(state.is_idle)
        self.assertFalse(state.is_connected)

    def test_counter_for(self):
        state = InterfaceState(name="usb0", fail_no_ip=1, fail_no_ping=2, not_attached_count=3)
        self.assertEqual(state.counter_for(FailureKind.NO_IP), 1)
        self.assertEqual(state.counter_for(FailureKind.NO_PING), 2)
        self.assertEqual(state.counter_for(FailureKind.NOT_ATTACHED), 3)


class TestPowerState(unittest.TestCase):

    def test_defaults(self):
        power = PowerState()
        self.assertIsNone(power.last_suspended_flag)
        self.assertIsNone(power.last_dsts_bit)
        self.assertFalse(power.host_is_sleeping)
        self.assertIsNone(power.wake_detected_at)
        self.assertFalse(power.wake_from_reset)


class TestPersistentRecord(unittest.TestCase):
    """Tests for state file line format."""

    def test_immutability(self):
        record = PersistentRecord(interface="usb0")
        with self.assertRaises(FrozenInstanceError):
            record.status = ConnectionState.CONNECTED

    def test_to_line(self):
        record = PersistentRecord(
            interface="usb0",
            status=ConnectionState.CONNECTED,
            host_ip="198.18.42.17",
            connected_once=True,
        )
        self.assertEqual(record.to_line(), "usb0:connected:198.18.42.17:true")

    def test_to_line_without_host(self):
        record = PersistentRecord(interface="usb1", status=ConnectionState.WAITING)
        self.assertEqual(record.to_line(), "usb1:waiting::false")

    def test_from_line(self):
        record = PersistentRecord.from_line("usb0:connected:198.18.42.17:true\n")
        self.assertEqual(record.interface, "usb0")
        self.assertEqual(record.status, ConnectionState.CONNECTED)
        self.assertEqual(record.host_ip, "198.18.42.17")
        self.assertTrue(record.connected_once)

    def test_from_line_ipv6_host(self):
        record = PersistentRecord.from_line("usb0:waiting:fe80::1:false")
        self.assertEqual(record.host_ip, "fe80::1")
        self.assertFalse(record.connected_once)

    def test_from_legacy_three_field_line(self):
        """Lines without the connectedOnce flag derive it from status."""
        record = PersistentRecord.from_line("usb0:connected:169.254.42.10")
        self.assertTrue(record.connected_once)
        record = PersistentRecord.from_line("usb1:disconnected:")
        self.assertFalse(record.connected_once)
        self.assertIsNone(record.host_ip)

    def test_from_legacy_line_ipv6_host(self):
        record = PersistentRecord.from_line("usb0:connected:fe80::1")
        self.assertEqual(record.host_ip, "fe80::1")
        self.assertTrue(record.connected_once)
        record = PersistentRecord.from_line("usb0:waiting:fe80::2:1")
        self.assertEqual(record.host_ip, "fe80::2:1")
        self.assertFalse(record.connected_once)

    def test_from_line_malformed(self):
        for line in ("", "usb0", "usb0:bogus:1.2.3.4:true", "usb0:connected:1.2.3.4:maybe", ":connected::true"):
            with self.assertRaises(ValueError):
                PersistentRecord.from_line(line)


if __name__ == '__main__':
    unittest.main()
