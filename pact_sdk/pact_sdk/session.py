"""
Client side pact session for the requests library.

A PactSession owns one pact and handles requests according to its mode:

    disabled   live call
    record(ing) live call, response recorded into the pact and saved
    apply      live call, response validated against the next record
    mock       no network, the next record's response is returned

patch_requests() routes requests.Session.request through a session so
existing client code is recorded or mocked without changes.
"""

import json
import logging
from typing import Any, Callable, Dict, Optional, Union

import requests
from requests import PreparedRequest, Response, Session

from pact_sdk.adapter import PactAdapter
from pact_sdk.context import PactContext, get_context
from pact_sdk.errors import PactMatchError, PactNotFoundError, PactTimeoutError
from pact_sdk.matcher import RecordMatcher
from pact_sdk.modes import PactMode, RecordingMode
from pact_sdk.pact import Pact, PactInfo
from pact_sdk.preprocessor import PactPreprocessor
from pact_sdk.reconciler import PactHooks, RecordingReconciler
from pact_sdk.record import PactRecord
from pact_sdk.url import is_absolute_url, remove_base_url, url_for_base_url, validate_base_url

logger = logging.getLogger(__name__)


class PactSession:
    """
    Records, validates or mocks the requests of one test.

    Usage:
        session = PactSession("inventory__get_device", mode="apply",
                              adapter=FilePactAdapter("./pacts"),
                              base_url="https://tenant.example.com")
        session.start()
        response = session.request("GET", "/inventory/managedObjects/1")
    """

    def __init__(
        self,
        pact: Union[Pact, str, None] = None,
        mode: Union[PactMode, str] = PactMode.DISABLED,
        recording_mode: Union[RecordingMode, str] = RecordingMode.APPEND,
        adapter: Optional[PactAdapter] = None,
        matcher: Optional[RecordMatcher] = None,
        preprocessor: Optional[PactPreprocessor] = None,
        base_url: Optional[str] = None,
        tenant: Optional[str] = None,
        strict_matching: bool = True,
        timeout: Optional[float] = 60.0,
        fail_on_missing_pacts: bool = True,
        fail_on_pact_validation: bool = True,
        ignore_not_found: bool = False,
        http_session: Optional[Session] = None,
        hooks: Optional[PactHooks] = None,
    ):
        validate_base_url(base_url)
        self.mode = PactMode.parse(mode)
        self.reconciler = RecordingReconciler(recording_mode, hooks)
        self.adapter = adapter
        self.matcher = matcher or RecordMatcher(base_url=base_url)
        self.preprocessor = preprocessor or PactPreprocessor()
        self.base_url = base_url
        self.tenant = tenant
        self.strict_matching = strict_matching
        self.timeout = timeout
        self.fail_on_missing_pacts = fail_on_missing_pacts
        self.fail_on_pact_validation = fail_on_pact_validation
        self.ignore_not_found = ignore_not_found
        self.http = http_session or requests.Session()
        self.pact = self._resolve_pact(pact)

    @classmethod
    def from_context(
        cls,
        context: Optional[PactContext] = None,
        adapter: Optional[PactAdapter] = None,
        **kwargs: Any,
    ) -> "PactSession":
        """Create a session from a PactContext, by default the current one."""
        ctx = context or get_context()
        options = dict(
            pact=ctx.pact,
            mode=ctx.mode,
            recording_mode=ctx.recording_mode,
            adapter=adapter,
            preprocessor=PactPreprocessor(ctx.preprocessor),
            base_url=ctx.base_url,
            tenant=ctx.tenant,
            strict_matching=ctx.strict_matching,
            fail_on_missing_pacts=ctx.fail_on_missing_pacts,
            fail_on_pact_validation=ctx.fail_on_pact_validation,
            ignore_not_found=ctx.ignore_not_found,
        )
        options.update(kwargs)
        return cls(**options)

    def _resolve_pact(self, pact: Union[Pact, str, None]) -> Optional[Pact]:
        if pact is None or isinstance(pact, Pact):
            return pact
        loaded = self.adapter.load_pact(pact) if self.adapter else None
        if loaded is None and self.mode.is_recording:
            loaded = Pact(pact, PactInfo(
                base_url=self.base_url,
                tenant=self.tenant,
                recording_mode=self.reconciler.mode.value,
                preprocessor=self.preprocessor.options.to_info() or None,
            ))
            logger.info(f"Created pact {loaded.id}")
        return loaded

    @property
    def recording_mode(self) -> RecordingMode:
        return self.reconciler.mode

    # =========================================================================
    # Lifecycle
    # =========================================================================

    def start(self) -> None:
        """Start the session: reset the cursor, clear the pact in refresh mode."""
        if self.pact is None:
            return
        self.pact.reset_cursor()
        if self.mode.is_recording and self.reconciler.start_session(self.pact):
            self._save()

    # =========================================================================
    # Requests
    # =========================================================================

    def request(
        self,
        method: str,
        url: str,
        request_id: Optional[str] = None,
        **kwargs: Any,
    ) -> Response:
        """
        Send or mock a request according to the session mode.

        Raises:
            PactNotFoundError: No pact or no record left, unless tolerated
            PactMatchError: Live response does not match, in apply mode
            PactTimeoutError: The live call timed out
        """
        method = method.upper()
        if self.base_url and not is_absolute_url(url):
            url = url_for_base_url(self.base_url, url)

        if self.mode == PactMode.MOCK:
            return self._mock(method, url, request_id)

        response = self._send(method, url, **kwargs)

        if self.mode.is_recording:
            self._record(response, request_id)
        elif self.mode == PactMode.APPLY:
            self._validate(response, request_id)
        return response

    def get(self, url: str, **kwargs: Any) -> Response:
        return self.request("GET", url, **kwargs)

    def post(self, url: str, **kwargs: Any) -> Response:
        return self.request("POST", url, **kwargs)

    def put(self, url: str, **kwargs: Any) -> Response:
        return self.request("PUT", url, **kwargs)

    def delete(self, url: str, **kwargs: Any) -> Response:
        return self.request("DELETE", url, **kwargs)

    def _send(self, method: str, url: str, **kwargs: Any) -> Response:
        kwargs.setdefault("timeout", self.timeout)
        send = _original_request or Session.request
        try:
            return send(self.http, method, url, **kwargs)
        except requests.exceptions.Timeout as e:
            raise PactTimeoutError(method, url, kwargs.get("timeout")) from e

    def _mock(self, method: str, url: str, request_id: Optional[str]) -> Response:
        record = self._next_record(request_id)
        if record is None:
            return _build_response(
                {"status": 404, "statusText": "Not Found", "body": f"No recording for {method} {url}"},
                method,
                url,
            )
        logger.debug(f"Mocking {method} {url} with record {self.pact.cursor - 1} of {self.pact.id}")
        return _build_response(record.response, method, url)

    def _record(self, response: Response, request_id: Optional[str]) -> None:
        if self.pact is None:
            self._not_found("No pact to record into", missing_pact=True)
            return

        record = PactRecord.from_live_response(
            response,
            client=self.http,
            context=_record_context(request_id),
        )
        if self.base_url and record.url:
            record.request["url"] = remove_base_url(record.url, self.base_url)
        self.preprocessor.apply(record)

        record = self.reconciler.prepare_record(record)
        if record is None:
            return
        if self.reconciler.reconcile(self.pact, record):
            self._save()

    def _save(self) -> None:
        if self.adapter is None:
            return
        pact = self.reconciler.prepare_pact(self.pact)
        if pact is not None:
            self.adapter.save_pact(pact)

    def _validate(self, response: Response, request_id: Optional[str]) -> None:
        record = self._next_record(request_id)
        if record is None:
            return
        index = self.pact.cursor - 1

        actual = PactRecord.from_live_response(response, client=self.http)
        self.preprocessor.apply(actual, self.pact.info.preprocessor)

        strict = self.strict_matching
        if record.options and record.options.get("strictMatching") is not None:
            strict = bool(record.options["strictMatching"])

        try:
            self.matcher.match(record, actual, strict=strict, base_url=self.base_url)
        except PactMatchError as e:
            e.with_context(self.pact.id, index)
            if self.fail_on_pact_validation:
                raise
            logger.warning(str(e))

    def _next_record(self, request_id: Optional[str]) -> Optional[PactRecord]:
        if self.pact is None:
            self._not_found("No pact available", missing_pact=True)
            return None
        index = self.pact.cursor
        record = self.pact.next_record(request_id)
        if record is None:
            tag = f" for request id {request_id!r}" if request_id else ""
            self._not_found(f"No record left{tag}", record_index=index)
        return record

    def _not_found(self, message: str, missing_pact: bool = False, record_index: Optional[int] = None) -> None:
        pact_id = self.pact.id if self.pact is not None else None
        error = PactNotFoundError(message, pact_id=pact_id, record_index=record_index)
        tolerated = not self.fail_on_missing_pacts if missing_pact else self.ignore_not_found
        if not tolerated:
            raise error
        logger.warning(str(error))


def _record_context(request_id: Optional[str]) -> Optional[Dict[str, Any]]:
    if not request_id:
        return None
    return {"options": {"requestId": request_id}}


def _build_response(data: Dict[str, Any], method: str, url: str) -> Response:
    """Build a requests.Response from a recorded response dict."""
    response = Response()
    response.status_code = data.get("status") or 200
    response.reason = data.get("statusText") or ""
    response._content = _encode_body(data.get("body"))
    response.headers.update(data.get("headers") or {})
    if data.get("body") is not None and not isinstance(data.get("body"), (str, bytes)):
        response.headers.setdefault("content-type", "application/json")
    response.encoding = "utf-8"
    response.url = url
    response.request = PreparedRequest()
    response.request.method = method
    response.request.url = url
    return response


def _encode_body(body: Any) -> bytes:
    """Encode a body value to bytes for Response._content."""
    if body is None:
        return b""
    if isinstance(body, bytes):
        return body
    if isinstance(body, str):
        return body.encode("utf-8")
    return json.dumps(body).encode("utf-8")


# =============================================================================
# requests patching
# =============================================================================

_original_request: Optional[Callable] = None
_active_session: Optional[PactSession] = None


def patch_requests(session: PactSession) -> None:
    """Route requests.Session.request through session."""
    global _original_request, _active_session

    _active_session = session
    if _original_request is not None:
        return

    _original_request = Session.request
    Session.request = _patched_request


def unpatch_requests() -> None:
    """Restore the original requests.Session.request."""
    global _original_request, _active_session

    _active_session = None
    if _original_request is None:
        return

    Session.request = _original_request
    _original_request = None


def is_patched() -> bool:
    return _original_request is not None


def _patched_request(self: Session, method: str, url: str, **kwargs: Any) -> Response:
    session = _active_session
    if session is None or self is session.http:
        return _original_request(self, method, url, **kwargs)
    return session.request(method, url, **kwargs)


class RequestsPatch:
    """
    Context manager for temporarily patching requests.

    Example:
        with RequestsPatch(session):
            response = requests.get("https://tenant.example.com/inventory")
    """

    def __init__(self, session: PactSession):
        self.session = session

    def __enter__(self) -> PactSession:
        patch_requests(self.session)
        return self.session

    def __exit__(self, *args) -> None:
        unpatch_requests()
