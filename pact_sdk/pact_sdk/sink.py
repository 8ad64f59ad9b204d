"""
PactWriter - non-blocking persistence of captured pacts.

Saving a pact must never add latency to the proxied request. Snapshots are
queued and written by a background thread through a PactAdapter.

Pending snapshots are coalesced per pact id: if a pact is captured again
before its previous snapshot was written, only the latest snapshot is kept.
A single writer thread preserves write order per id, so an earlier capture
never overwrites a later one.

    capture -> submit(pact) -> pending[id] -> writer thread -> adapter.save_pact()
"""

import atexit
import logging
import threading
from collections import OrderedDict
from typing import Dict, Optional

from pact_sdk.adapter import PactAdapter
from pact_sdk.pact import Pact

logger = logging.getLogger(__name__)


class PactWriter:
    """
    Background writer for pact snapshots.

    Usage:
        writer = PactWriter(FilePactAdapter("./pacts"))
        writer.submit(pact)      # returns immediately
        writer.flush()           # blocks until everything is written
        writer.close()
    """

    def __init__(self, adapter: PactAdapter, flush_interval_ms: int = 200):
        self.adapter = adapter
        self.flush_interval_ms = flush_interval_ms
        self._pending: "OrderedDict[str, Pact]" = OrderedDict()
        self._writing = 0
        self._failed_count = 0
        self._lock = threading.Condition()
        self._stop_event = threading.Event()
        self._flush_event = threading.Event()

        self._thread = threading.Thread(
            target=self._write_loop,
            daemon=True,
            name="pact-writer",
        )
        self._thread.start()

        atexit.register(self.close)

    def submit(self, pact: Pact) -> None:
        """
        Queue a snapshot of pact for writing (non-blocking).

        The caller must not mutate pact afterwards.
        """
        with self._lock:
            if pact.id in self._pending:
                logger.debug(f"Coalescing pending write of pact {pact.id}")
                del self._pending[pact.id]
            self._pending[pact.id] = pact
        self._flush_event.set()

    def flush(self, timeout: Optional[float] = None) -> bool:
        """
        Block until all queued snapshots are written.

        Returns:
            False if timeout expired first
        """
        self._flush_event.set()
        with self._lock:
            return self._lock.wait_for(
                lambda: not self._pending and self._writing == 0,
                timeout=timeout,
            )

    def close(self) -> None:
        """Write remaining snapshots and stop the writer thread."""
        if self._stop_event.is_set():
            return
        self.flush(timeout=5.0)
        self._stop_event.set()
        self._flush_event.set()
        if self._thread.is_alive():
            self._thread.join(timeout=5.0)

    def _write_loop(self) -> None:
        interval = self.flush_interval_ms / 1000.0

        while not self._stop_event.is_set():
            self._flush_event.wait(timeout=interval)
            self._flush_event.clear()
            self._drain()

        self._drain()

    def _drain(self) -> None:
        while True:
            with self._lock:
                if not self._pending:
                    self._lock.notify_all()
                    return
                _, pact = self._pending.popitem(last=False)
                self._writing += 1

            try:
                self.adapter.save_pact(pact)
            except Exception as e:
                self._failed_count += 1
                logger.error(f"Failed to write pact {pact.id}: {e}")
            finally:
                with self._lock:
                    self._writing -= 1
                    self._lock.notify_all()

    @property
    def pending_count(self) -> int:
        """Number of snapshots waiting to be written."""
        with self._lock:
            return len(self._pending)

    @property
    def failed_count(self) -> int:
        """Number of writes that raised."""
        return self._failed_count

    def pending_ids(self) -> Dict[str, int]:
        """Pending pact ids with their record counts."""
        with self._lock:
            return {id: len(p.records) for id, p in self._pending.items()}
