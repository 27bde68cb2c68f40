"""Unit tests for the persistent state store."""

import os
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from gadget_keepalive.models import ConnectionState, PersistentRecord
from gadget_keepalive.state_store import StateStore, parse_state_text, read_record


class TestStateStore(unittest.TestCase):
    """Test atomic per-interface persistence."""

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.path = Path(self._tmp.name) / "run" / "gadget.state"
        self.store = StateStore(self.path)

    def tearDown(self):
        self._tmp.cleanup()

    def test_empty_store(self):
        """Missing file means no records."""
        self.assertEqual(self.store.records(), {})
        self.assertIsNone(self.store.get("usb0"))
        self.assertFalse(self.store.connected_once("usb0"))
        self.assertFalse(self.path.exists())

    def test_round_trip(self):
        """Written record reads back with identical fields."""
        self.store.update("usb0", ConnectionState.CONNECTED, "198.18.42.17")
        self.assertEqual(self.path.read_text(), "usb0:connected:198.18.42.17:true\n")

        reloaded = StateStore(self.path)
        record = reloaded.get("usb0")
        self.assertEqual(record, PersistentRecord(
            interface="usb0",
            status=ConnectionState.CONNECTED,
            host_ip="198.18.42.17",
            connected_once=True,
        ))

    def test_update_leaves_other_interfaces_untouched(self):
        self.store.update("usb0", ConnectionState.CONNECTED, "198.18.42.17")
        self.store.update("usb1", ConnectionState.WAITING, None)
        self.store.update("usb0", ConnectionState.WAITING, "198.18.42.17")

        reloaded = StateStore(self.path)
        self.assertEqual(reloaded.get("usb1"), PersistentRecord(
            interface="usb1", status=ConnectionState.WAITING,
        ))
        self.assertEqual(reloaded.get("usb0").status, ConnectionState.WAITING)

    def test_connected_once_is_sticky(self):
        self.store.update("usb0", ConnectionState.CONNECTED, "198.18.42.17")
        self.store.update("usb0", ConnectionState.DISCONNECTED, None)
        self.assertTrue(self.store.connected_once("usb0"))
        self.assertTrue(StateStore(self.path).connected_once("usb0"))

    def test_never_connected(self):
        self.store.update("usb0", ConnectionState.WAITING, None)
        self.assertFalse(self.store.connected_once("usb0"))

    def test_unchanged_record_not_rewritten(self):
        self.store.update("usb0", ConnectionState.WAITING, None)
        with patch.object(self.store, "_write") as mock_write:
            self.store.update("usb0", ConnectionState.WAITING, None)
            mock_write.assert_not_called()

    def test_atomic_replace_leaves_no_temp_files(self):
        self.store.update("usb0", ConnectionState.CONNECTED, "198.18.42.17")
        self.store.update("usb1", ConnectionState.WAITING, None)
        self.assertEqual(os.listdir(self.path.parent), ["gadget.state"])

    def test_write_uses_rename(self):
        with patch("gadget_keepalive.state_store.os.replace", wraps=os.replace) as mock_replace:
            self.store.update("usb0", ConnectionState.WAITING, None)
        mock_replace.assert_called_once()
        self.assertEqual(Path(mock_replace.call_args[0][1]), self.path)

    def test_write_failure_keeps_memory_record(self):
        with patch("gadget_keepalive.state_store.os.replace", side_effect=OSError("read-only")):
            record = self.store.update("usb0", ConnectionState.CONNECTED, "198.18.42.17")
        self.assertEqual(self.store.get("usb0"), record)
        self.assertEqual(os.listdir(self.path.parent), [])

    def test_malformed_lines_skipped(self):
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(
            "usb0:connected:198.18.42.17:true\n"
            "garbage\n"
            "usb1:sideways::false\n"
        )
        store = StateStore(self.path)
        self.assertEqual(list(store.records()), ["usb0"])


class TestParseStateText(unittest.TestCase):

    def test_last_line_wins(self):
        records = parse_state_text("usb0:waiting::false\nusb0:connected:10.0.0.2:true\n")
        self.assertEqual(records["usb0"].status, ConnectionState.CONNECTED)

    def test_blank_lines_ignored(self):
        self.assertEqual(parse_state_text("\n\n"), {})


class TestReadRecord(unittest.TestCase):
    """Test the standalone diagnostics reader."""

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.path = Path(self._tmp.name) / "gadget.state"

    def tearDown(self):
        self._tmp.cleanup()

    def test_missing_file(self):
        self.assertIsNone(read_record(self.path, "usb0"))

    def test_prefix_match(self):
        self.path.write_text("usb10:connected:10.0.0.9:true\nusb1:waiting::false\n")
        record = read_record(self.path, "usb1")
        self.assertEqual(record.interface, "usb1")
        self.assertEqual(record.status, ConnectionState.WAITING)

    def test_missing_interface(self):
        self.path.write_text("usb0:waiting::false\n")
        self.assertIsNone(read_record(self.path, "usb1"))


if __name__ == '__main__':
    unittest.main()
