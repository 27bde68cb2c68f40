"""Persistent per-interface state.

The state file holds one line per interface in the form
``interface:status:hostIp:connectedOnce``. It is rewritten atomically
(write to a temporary file, then rename) on every status change so that
external readers never observe a half-written file.
"""
from __future__ import annotations

import logging
import os
import tempfile
from pathlib import Path
from typing import Dict, Optional

from .models import ConnectionState, PersistentRecord

logger = logging.getLogger(__name__)


def parse_state_text(text: str) -> Dict[str, PersistentRecord]:
    """Parse state file contents, skipping malformed lines.

    Args:
        text: Raw file contents

    Returns:
        Mapping of interface name to record (last line wins)
    """
    records: Dict[str, PersistentRecord] = {}
    for line in text.splitlines():
        if not line.strip():
            continue
        try:
            record = PersistentRecord.from_line(line)
        except ValueError as e:
            logger.warning(f"Ignoring state line: {e}")
            continue
        records[record.interface] = record
    return records


def read_record(path: Path, interface: str) -> Optional[PersistentRecord]:
    """Read a single interface record without going through a StateStore.

    Intended for diagnostics running alongside the daemon. A missing or
    concurrently replaced file yields None rather than an exception.
    """
    try:
        text = Path(path).read_text(encoding="utf-8")
    except OSError:
        return None

    prefix = f"{interface}:"
    for line in text.splitlines():
        if not line.startswith(prefix):
            continue
        try:
            return PersistentRecord.from_line(line)
        except ValueError:
            return None
    return None


class StateStore:
    """Durable store of PersistentRecords, one per interface.

    Records are cached in memory and the whole file is rewritten on each
    change. The store is owned by the control loop; there is no locking.
    """

    def __init__(self, path: Path):
        """Initialize store and load any existing records.

        Args:
            path: Location of the state file
        """
        self._path = Path(path)
        self._records: Dict[str, PersistentRecord] = {}
        self.load()

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> Dict[str, PersistentRecord]:
        """(Re)load records from disk.

        Returns:
            Copy of the loaded records
        """
        try:
            text = self._path.read_text(encoding="utf-8")
        except FileNotFoundError:
            text = ""
        except OSError as e:
            logger.error(f"Cannot read state file {self._path}: {e}")
            text = ""

        self._records = parse_state_text(text)
        return dict(self._records)

    def get(self, interface: str) -> Optional[PersistentRecord]:
        return self._records.get(interface)

    def records(self) -> Dict[str, PersistentRecord]:
        return dict(self._records)

    def connected_once(self, interface: str) -> bool:
        """Whether the interface has ever reached its host."""
        record = self._records.get(interface)
        return record.connected_once if record else False

    def update(self,
               interface: str,
               status: ConnectionState,
               host_ip: Optional[str] = None) -> PersistentRecord:
        """Record the latest status for an interface.

        connected_once is sticky: it becomes True when status is CONNECTED
        and never reverts. The file is only rewritten when the record
        actually changes.

        Args:
            interface: Interface name
            status: Observed connection state
            host_ip: Host address to store (None clears it)

        Returns:
            The record now stored for the interface
        """
        previous = self._records.get(interface)
        connected_once = (
            (previous is not None and previous.connected_once)
            or status is ConnectionState.CONNECTED
        )
        record = PersistentRecord(
            interface=interface,
            status=status,
            host_ip=host_ip or None,
            connected_once=connected_once,
        )

        if record == previous:
            return record

        self._records[interface] = record
        try:
            self._write()
        except OSError as e:
            # Keep the in-memory record; the next change retries the write.
            logger.error(f"Failed to write state file {self._path}: {e}")
        return record

    def _write(self) -> None:
        """Atomically replace the state file with the current records."""
        self._path.parent.mkdir(parents=True, exist_ok=True)
        content = "".join(
            f"{record.to_line()}\n" for record in self._records.values()
        )

        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{self._path.name}.", dir=str(self._path.parent)
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            os.chmod(tmp_name, 0o644)
            os.replace(tmp_name, self._path)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except OSError:
                pass
            raise
