"""
Recording-mode reconciliation: how a captured record merges into a pact.

    append   always add at the end
    new      add only if no record with the same method and url exists
    replace  overwrite the first record with the same method and url, or add
    refresh  clear the pact once at session start, then append

Hooks may mutate or veto records and pacts before they are persisted. A hook
vetoes by returning None.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Optional, Set, Union

from pact_sdk.modes import RecordingMode
from pact_sdk.pact import Pact
from pact_sdk.record import PactRecord

logger = logging.getLogger(__name__)


@dataclass
class PactHooks:
    """
    Interception hooks of a recording or mocking session.

    Attributes:
        save_record: (record) -> record or None to skip persisting it
        save_pact: (pact) -> pact or None to skip writing it
        mock_request: (request, record) -> record or None to skip mocking
        mock_not_found: (request) -> response dict or None for the default
        proxy_request: (request) -> response dict to short-circuit, or None
        proxy_response: (request, response) -> False to skip recording
    """
    save_record: Optional[Callable[[PactRecord], Optional[PactRecord]]] = None
    save_pact: Optional[Callable[[Pact], Optional[Pact]]] = None
    mock_request: Optional[Callable[[Any, PactRecord], Optional[PactRecord]]] = None
    mock_not_found: Optional[Callable[[Any], Any]] = None
    proxy_request: Optional[Callable[[Any], Any]] = None
    proxy_response: Optional[Callable[[Any, Any], Any]] = None


class RecordingReconciler:
    """
    Applies a recording mode to captured records.

    Usage:
        reconciler = RecordingReconciler("replace")
        reconciler.start_session(pact)
        record = reconciler.prepare_record(record)
        if record is not None:
            reconciler.reconcile(pact, record)
    """

    def __init__(
        self,
        mode: Union[RecordingMode, str, None] = RecordingMode.APPEND,
        hooks: Optional[PactHooks] = None,
    ):
        self.mode = RecordingMode.parse(mode) if mode is not None else RecordingMode.APPEND
        self.hooks = hooks or PactHooks()
        self._started: Set[str] = set()

    def start_session(self, pact: Pact) -> bool:
        """
        Prepare pact for a capture session.

        In refresh mode the pact is cleared, once per pact id.

        Returns:
            True if the pact was cleared
        """
        if self.mode != RecordingMode.REFRESH or pact.id in self._started:
            return False
        self._started.add(pact.id)
        logger.debug(f"Refreshing pact {pact.id}, removing {len(pact.records)} records")
        pact.clear_records()
        return True

    def reconcile(self, pact: Pact, record: PactRecord) -> bool:
        """
        Merge record into pact.

        Returns:
            True if the pact changed
        """
        if self.mode == RecordingMode.NEW:
            return pact.append_record(record, as_new=True)
        if self.mode == RecordingMode.REPLACE:
            return pact.replace_record(record)
        return pact.append_record(record)

    def prepare_record(self, record: PactRecord) -> Optional[PactRecord]:
        """Run the save_record hook. None means the record must not be saved."""
        if self.hooks.save_record is None:
            return record
        result = self.hooks.save_record(record)
        if result is None:
            logger.warning(f"Saving record {record.method} {record.url} skipped by hook")
        return result

    def prepare_pact(self, pact: Pact) -> Optional[Pact]:
        """Run the save_pact hook. None means the pact must not be written."""
        if self.hooks.save_pact is None:
            return pact
        result = self.hooks.save_pact(pact)
        if result is None:
            logger.warning(f"Saving pact {pact.id} skipped by hook")
        return result
