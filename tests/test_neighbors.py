"""Unit tests for iproute2 output parsing."""

import json
import unittest

from gadget_keepalive.link.neighbors import (
    NeighborEntry,
    parse_broadcast_json,
    parse_broadcast_text,
    parse_neighbors_json,
    parse_neighbors_text,
)


class TestNeighborParsing(unittest.TestCase):
    """Test neighbor table parsing in both output formats."""

    def test_json(self):
        text = json.dumps([
            {"dst": "169.254.42.17", "dev": "usb0", "lladdr": "12:01:02:03:04:05", "state": ["REACHABLE"]},
            {"dst": "169.254.42.18", "dev": "usb0", "state": ["FAILED"]},
            {"dev": "usb0", "state": ["STALE"]},
        ])
        entries = parse_neighbors_json(text)
        self.assertEqual(len(entries), 2)
        self.assertEqual(entries[0], NeighborEntry(
            address="169.254.42.17", lladdr="12:01:02:03:04:05", states=("REACHABLE",),
        ))
        self.assertTrue(entries[0].is_valid)
        self.assertFalse(entries[1].is_valid)

    def test_json_state_as_string(self):
        entries = parse_neighbors_json('[{"dst": "10.0.0.2", "state": "stale"}]')
        self.assertEqual(entries[0].states, ("STALE",))
        self.assertTrue(entries[0].is_valid)

    def test_json_empty_output(self):
        self.assertEqual(parse_neighbors_json(""), [])

    def test_json_invalid(self):
        with self.assertRaises(ValueError):
            parse_neighbors_json("169.254.42.17 lladdr 12:01:02:03:04:05 REACHABLE")
        with self.assertRaises(ValueError):
            parse_neighbors_json('{"dst": "10.0.0.2"}')

    def test_text(self):
        text = (
            "169.254.42.17 lladdr 12:01:02:03:04:05 REACHABLE\n"
            "169.254.42.18 INCOMPLETE\n"
            "169.254.42.19 dev usb0 lladdr 12:AA:BB:CC:DD:EE DELAY\n"
            "\n"
            "not-an-address FAILED\n"
        )
        entries = parse_neighbors_text(text)
        self.assertEqual([e.address for e in entries], ["169.254.42.17", "169.254.42.18", "169.254.42.19"])
        self.assertTrue(entries[0].is_valid)
        self.assertFalse(entries[1].is_valid)
        self.assertIsNone(entries[1].lladdr)
        self.assertEqual(entries[2].lladdr, "12:aa:bb:cc:dd:ee")
        self.assertTrue(entries[2].is_valid)

    def test_valid_states(self):
        for state in ("REACHABLE", "STALE", "DELAY"):
            self.assertTrue(NeighborEntry("10.0.0.2", states=(state,)).is_valid)
        for state in ("PROBE", "FAILED", "INCOMPLETE", "NOARP"):
            self.assertFalse(NeighborEntry("10.0.0.2", states=(state,)).is_valid)


class TestBroadcastParsing(unittest.TestCase):
    """Test broadcast address extraction."""

    def test_json_broadcast_field(self):
        text = json.dumps([{"ifname": "usb0", "addr_info": [
            {"family": "inet", "local": "169.254.42.1", "prefixlen": 24, "broadcast": "169.254.42.255"},
        ]}])
        self.assertEqual(parse_broadcast_json(text), "169.254.42.255")

    def test_json_computed_broadcast(self):
        text = json.dumps([{"ifname": "usb0", "addr_info": [
            {"family": "inet6", "local": "fe80::1", "prefixlen": 64},
            {"family": "inet", "local": "10.42.0.1", "prefixlen": 16},
        ]}])
        self.assertEqual(parse_broadcast_json(text), "10.42.255.255")

    def test_json_without_address(self):
        self.assertIsNone(parse_broadcast_json('[{"ifname": "usb0", "addr_info": []}]'))

    def test_text(self):
        text = (
            "4: usb0: <BROADCAST,MULTICAST,UP,LOWER_UP> mtu 1500 qdisc pfifo_fast state UP\n"
            "    inet 169.254.42.1/24 brd 169.254.42.255 scope link usb0\n"
        )
        self.assertEqual(parse_broadcast_text(text), "169.254.42.255")

    def test_text_without_brd(self):
        self.assertEqual(parse_broadcast_text("    inet 192.168.7.2/30 scope global usb1\n"), "192.168.7.3")

    def test_text_without_inet(self):
        self.assertIsNone(parse_broadcast_text("4: usb0: <NO-CARRIER> mtu 1500 state DOWN\n"))


if __name__ == '__main__':
    unittest.main()
