"""
Pact container: an ordered list of records for one identifier.

Records are looked up either sequentially with a session-scoped cursor
(next_record) or by the content of a live request
(next_record_matching_request). The cursor and lookup indexes are never
persisted and reset when records are cleared.
"""

import copy
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union
from urllib.parse import unquote

from pact_sdk.canonical import body_shape, fingerprint, parse_body, request_key
from pact_sdk.errors import PactIdError
from pact_sdk.record import PactRecord
from pact_sdk.url import normalize_url, strip_url_parameters

logger = logging.getLogger(__name__)

_INVALID_ID_CHARS = re.compile(r"[^a-z0-9_-]+")
_UNDERSCORES = re.compile(r"_{3,}")

# query parameters that vary between runs of the same request
DEFAULT_REQUEST_MATCHING: Dict[str, Any] = {
    "ignoreUrlParameters": ["dateFrom", "dateTo", "_", "nocache"],
}


def pact_id(value: Union[str, Iterable[str], None]) -> Optional[str]:
    """
    Normalize a value into a pact identifier.

    Lists (e.g. a test title path) are joined with "__". The result is
    lowercase, every run of characters other than a-z, 0-9, "_" and "-"
    becomes "_", and leading/trailing "_"/"-" are stripped.

    Returns:
        The identifier, or None if nothing is left after normalization

    Examples:
        >>> pact_id(["Inventory API", "creates device"])
        'inventory_api__creates_device'
    """
    if value is None:
        return None
    if isinstance(value, (list, tuple)):
        value = "__".join(str(v) for v in value if v is not None)
    text = _INVALID_ID_CHARS.sub("_", str(value).strip().lower())
    text = _UNDERSCORES.sub("__", text).strip("_-")
    return text or None


def validate_pact_id(value: Any) -> str:
    """
    Normalize value and raise if the result is empty.

    Raises:
        PactIdError: If value does not normalize to a valid identifier
    """
    result = pact_id(value)
    if result is None:
        raise PactIdError(value)
    return result


@dataclass
class PactInfo:
    """
    Metadata of a pact.

    Stored with camelCase keys. Unknown keys are kept in ``extra`` and
    written back unchanged.
    """
    id: Optional[str] = None
    producer: Any = None
    consumer: Any = None
    base_url: Optional[str] = None
    tenant: Optional[str] = None
    title: Optional[List[str]] = None
    description: Optional[str] = None
    tags: Optional[List[str]] = None
    recording_mode: Optional[str] = None
    strict_mocking: Optional[bool] = None
    strict_matching: Optional[bool] = None
    preprocessor: Optional[Dict[str, Any]] = None
    request_matching: Optional[Dict[str, Any]] = None
    version: Optional[Dict[str, Any]] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    _KEYS = {
        "id": "id",
        "producer": "producer",
        "consumer": "consumer",
        "baseUrl": "base_url",
        "tenant": "tenant",
        "title": "title",
        "description": "description",
        "tags": "tags",
        "recordingMode": "recording_mode",
        "strictMocking": "strict_mocking",
        "strictMatching": "strict_matching",
        "preprocessor": "preprocessor",
        "requestMatching": "request_matching",
        "version": "version",
    }

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {}
        for key, attr in self._KEYS.items():
            value = getattr(self, attr)
            if value is not None:
                result[key] = copy.deepcopy(value)
        for key, value in self.extra.items():
            result.setdefault(key, copy.deepcopy(value))
        return result

    @classmethod
    def from_dict(cls, data: Optional[Mapping[str, Any]]) -> "PactInfo":
        data = copy.deepcopy(dict(data or {}))
        kwargs = {}
        extra = {}
        for key, value in data.items():
            if key in cls._KEYS:
                kwargs[cls._KEYS[key]] = value
            else:
                extra[key] = value
        title = kwargs.get("title")
        if isinstance(title, str):
            kwargs["title"] = [title]
        return cls(extra=extra, **kwargs)


class Pact:
    """
    Ordered records of one pact id plus metadata.

    Usage:
        pact = Pact("my_test", records=[record1, record2])
        first = pact.next_record()
        tagged = pact.next_record("user-a")
        served = pact.next_record_matching_request(
            {"method": "GET", "url": "/inventory/managedObjects/1"}
        )
    """

    def __init__(
        self,
        id: Any,
        info: Union[PactInfo, Mapping[str, Any], None] = None,
        records: Optional[Iterable[Union[PactRecord, Mapping[str, Any]]]] = None,
    ):
        self.id = validate_pact_id(id)
        if info is None:
            info = PactInfo()
        elif not isinstance(info, PactInfo):
            info = PactInfo.from_dict(info)
        info.id = self.id
        self.info = info
        self.records: List[PactRecord] = [
            r if isinstance(r, PactRecord) else PactRecord.from_dict(r)
            for r in (records or [])
        ]
        self._cursor = 0
        self._request_indexes: Dict[str, int] = {}

    def __repr__(self) -> str:
        return f"Pact(id={self.id!r}, records={len(self.records)})"

    def __len__(self) -> int:
        return len(self.records)

    # =========================================================================
    # Sequential lookup
    # =========================================================================

    @property
    def cursor(self) -> int:
        """Index of the record returned by the next call to next_record()."""
        return self._cursor

    def reset_cursor(self) -> None:
        """Reset the cursor and the content lookup indexes."""
        self._cursor = 0
        self._request_indexes = {}

    def next_record(self, request_id: Optional[str] = None) -> Optional[PactRecord]:
        """
        Return the record at the cursor and advance.

        With request_id, records whose options.requestId differ are skipped.
        If no tagged record is left, the cursor ends past the last record.

        Returns:
            The record, or None if the pact is exhausted
        """
        while self._cursor < len(self.records):
            record = self.records[self._cursor]
            self._cursor += 1
            if request_id is None or record.request_id == request_id:
                return record
        return None

    def record_index(self, record: PactRecord) -> Optional[int]:
        """Index of record in this pact (by identity), or None."""
        for index, candidate in enumerate(self.records):
            if candidate is record:
                return index
        return None

    # =========================================================================
    # Content lookup
    # =========================================================================

    def get_records_matching_request(
        self,
        live_request: Any,
        base_url: Optional[str] = None,
        request_id: Optional[str] = None,
        request_matching: Optional[Mapping[str, Any]] = None,
    ) -> List[PactRecord]:
        """
        All records matching the method, url and body shape of live_request.

        If request_id is given, only records with that tag are considered.
        Query parameters listed in request_matching["ignoreUrlParameters"]
        are not compared. Without request_matching the pact info setting is
        used, then DEFAULT_REQUEST_MATCHING.
        """
        ignored = self._ignored_parameters(request_matching)
        method, url, body = request_parts(live_request)
        url = self._normalize(url, base_url, ignored)
        shape = body_shape(body) if body is not None else None

        result = []
        for record in self.records:
            if request_id is not None and record.request_id != request_id:
                continue
            if record.method != method:
                continue
            if self._normalize(record.url, base_url, ignored) != url:
                continue
            if "body" in record.request and record.request["body"] is not None:
                if shape is None or body_shape(parse_body(record.request["body"])) != shape:
                    continue
            result.append(record)
        return result

    def next_record_matching_request(
        self,
        live_request: Any,
        base_url: Optional[str] = None,
        request_id: Optional[str] = None,
        request_matching: Optional[Mapping[str, Any]] = None,
    ) -> Optional[PactRecord]:
        """
        Return the record matching live_request by content.

        Repeating the same request returns the matching records in order and
        then keeps returning the last one.
        """
        records = self.get_records_matching_request(live_request, base_url, request_id, request_matching)
        if not records:
            return None

        method, url, body = request_parts(live_request)
        key = request_key(method, self._normalize(url, base_url, self._ignored_parameters(request_matching)))
        if body is not None:
            key = f"{key} {fingerprint(body_shape(body))}"
        if request_id is not None:
            key = f"{key} #{request_id}"

        index = self._request_indexes.get(key, 0)
        self._request_indexes[key] = index + 1
        return records[min(index, len(records) - 1)]

    def _ignored_parameters(self, request_matching: Optional[Mapping[str, Any]]) -> Tuple[str, ...]:
        if request_matching is None:
            request_matching = self.info.request_matching
        if request_matching is None:
            request_matching = DEFAULT_REQUEST_MATCHING
        return tuple(request_matching.get("ignoreUrlParameters") or ())

    def _normalize(
        self, url: Optional[str], base_url: Optional[str], ignored: Iterable[str] = ()
    ) -> Optional[str]:
        if url is None:
            return None
        for base in (base_url, self.info.base_url):
            if base:
                url = normalize_url(url, base)
        url = strip_url_parameters(normalize_url(url), ignored)
        return unquote(url) if url else url

    # =========================================================================
    # Mutation
    # =========================================================================

    def find_equivalent(self, record: PactRecord) -> Optional[int]:
        """Index of the first record with the same method and url, or None."""
        url = self._normalize(record.url, None)
        for index, candidate in enumerate(self.records):
            if candidate.method == record.method and self._normalize(candidate.url, None) == url:
                return index
        return None

    def append_record(self, record: Union[PactRecord, Mapping[str, Any]], as_new: bool = False) -> bool:
        """
        Append record.

        With as_new, nothing is appended if a record with the same method
        and url exists.

        Returns:
            True if the record was appended
        """
        record = _as_record(record)
        if as_new and self.find_equivalent(record) is not None:
            logger.debug(f"Skipping existing record {record.method} {record.url} in {self.id}")
            return False
        self.records.append(record)
        return True

    def replace_record(self, record: Union[PactRecord, Mapping[str, Any]]) -> bool:
        """Replace the first record with the same method and url, or append."""
        record = _as_record(record)
        index = self.find_equivalent(record)
        if index is None:
            self.records.append(record)
        else:
            self.records[index] = record
        return True

    def clear_records(self) -> None:
        """Remove all records and reset the cursor."""
        self.records = []
        self.reset_cursor()

    def copy(self) -> "Pact":
        """Deep copy including cursor and lookup indexes."""
        result = Pact(self.id, copy.deepcopy(self.info), [r.copy() for r in self.records])
        result._cursor = self._cursor
        result._request_indexes = dict(self._request_indexes)
        return result

    # =========================================================================
    # Serialization
    # =========================================================================

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "info": self.info.to_dict(),
            "records": [r.to_dict() for r in self.records],
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Pact":
        """
        Create a pact from its stored form.

        Raises:
            PactIdError: If neither data["id"] nor data["info"]["id"] is valid
        """
        info = data.get("info") or {}
        return cls(data.get("id") or info.get("id"), info, data.get("records") or [])

    @classmethod
    def from_records_or_responses(
        cls,
        items: Iterable[Any],
        id: Any,
        info: Union[PactInfo, Mapping[str, Any], None] = None,
    ) -> "Pact":
        """Create a pact from records, record dicts or live response dicts."""
        records = []
        for item in items:
            if isinstance(item, PactRecord):
                records.append(item)
            elif isinstance(item, Mapping) and ("request" in item or "response" in item):
                records.append(PactRecord.from_dict(item))
            else:
                records.append(PactRecord.from_live_response(item))
        return cls(id, info, records)


def is_pact(obj: Any) -> bool:
    """Check for a Pact or a stored pact dict."""
    if isinstance(obj, Pact):
        return True
    return (
        isinstance(obj, Mapping)
        and isinstance(obj.get("records"), list)
        and pact_id(obj.get("id") or (obj.get("info") or {}).get("id")) is not None
    )


def request_parts(live_request: Any) -> Tuple[str, Optional[str], Any]:
    """Extract (METHOD, url, parsed body) from a request dict or object."""
    if isinstance(live_request, Mapping):
        method = live_request.get("method")
        url = live_request.get("url")
        body = live_request.get("body")
    else:
        method = getattr(live_request, "method", None)
        url = getattr(live_request, "url", None)
        body = getattr(live_request, "body", None)
    body = parse_body(body)
    if body in ("", b""):
        body = None
    return str(method or "GET").upper(), url, body


def _as_record(record: Union[PactRecord, Mapping[str, Any]]) -> PactRecord:
    return record if isinstance(record, PactRecord) else PactRecord.from_dict(record)
