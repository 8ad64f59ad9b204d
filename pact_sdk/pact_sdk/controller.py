"""
Mock/record HTTP controller.

A Flask app that sits between a client and a remote API. Depending on the
mode it serves recorded responses of the current pact, proxies requests to
the base url, or proxies and records them.

Control plane, under resource_path (default /c8yctrl):

    HEAD   /c8yctrl                  liveness
    GET    /c8yctrl/status           status json
    GET    /c8yctrl/current          current pact (404 if none)
    POST   /c8yctrl/current          load or create the current pact
    DELETE /c8yctrl/current          forget the current pact
    POST   /c8yctrl/current/clear    remove all records of the current pact
    GET    /c8yctrl/current/request  projected requests of the current pact
    GET    /c8yctrl/current/response projected responses of the current pact
    GET|POST|PUT /c8yctrl/log        log level and log messages

Every other path is the data plane.

The current pact is only replaced, never mutated in place by captures: a
capture reconciles into a copy and swaps the reference under a lock. Each
request works on the pact that was current when it arrived.
"""

import argparse
import copy
import json
import logging
import re
import sys
import threading
import time
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

import requests
from flask import Flask, Response, request

from pact_sdk.adapter import FilePactAdapter, PactAdapter
from pact_sdk.config import PactConfig, load_config, parse_bool
from pact_sdk.errors import PactConfigError, PactLoadError
from pact_sdk.modes import PactMode, RecordingMode
from pact_sdk.pact import DEFAULT_REQUEST_MATCHING, Pact, PactInfo, pact_id
from pact_sdk.preprocessor import PactPreprocessor, header_value
from pact_sdk.reconciler import PactHooks, RecordingReconciler
from pact_sdk.record import PactRecord, live_response_from_requests
from pact_sdk.sink import PactWriter
from pact_sdk.url import remove_base_url, url_for_base_url, validate_base_url

logger = logging.getLogger(__name__)

REQUEST_ID_HEADER = "x-c8yctrl-request-id"
MODE_HEADER = "x-c8yctrl-mode"
TYPE_HEADER = "x-c8yctrl-type"

LOG_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "warn": logging.WARNING,
    "error": logging.ERROR,
    "critical": logging.CRITICAL,
}

# not forwarded to the target or back to the client
HOP_BY_HOP_HEADERS = frozenset([
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailers",
    "transfer-encoding",
    "upgrade",
    "host",
    "content-length",
    "content-encoding",
])

URL_PROPERTIES = ("self", "next", "initRequest")

_HOST = re.compile(r"https?://[^/]+")

HTTP_METHODS = ["GET", "POST", "PUT", "DELETE", "PATCH", "HEAD", "OPTIONS"]

NOT_FOUND_BODY = (
    "<html>\n<head><title>404 Recording Not Found</title></head>"
    "\n<body bgcolor=\"white\">\n<center><h1>404 Recording Not Found</h1>"
    "</center>\n<hr><center>pact-sdk/{name}</center>"
    "\n</body>\n</html>\n"
)


class PactHttpController:
    """
    Flask based mock and recording server.

    Usage:
        controller = PactHttpController(
            adapter=FilePactAdapter("./pacts"),
            base_url="https://tenant.example.com",
            mode="recording",
        )
        controller.run()

        # or in tests
        client = controller.app.test_client()
        client.post("/c8yctrl/current", json={"id": "my_test"})
    """

    def __init__(
        self,
        adapter: Optional[PactAdapter] = None,
        base_url: Optional[str] = None,
        tenant: Optional[str] = None,
        mode: Union[PactMode, str] = PactMode.APPLY,
        recording_mode: Union[RecordingMode, str] = RecordingMode.APPEND,
        strict_mocking: bool = True,
        preprocessor: Optional[PactPreprocessor] = None,
        hooks: Optional[PactHooks] = None,
        resource_path: str = "/c8yctrl",
        hostname: str = "localhost",
        port: int = 3000,
        timeout: Optional[float] = 60.0,
        mock_not_found_response: Union[Mapping[str, Any], Callable[[Any], Any], None] = None,
        request_matching: Optional[Dict[str, Any]] = None,
        http_session: Optional[requests.Session] = None,
        writer: Optional[PactWriter] = None,
    ):
        validate_base_url(base_url)
        self.adapter = adapter
        self.base_url = base_url.rstrip("/") if base_url else None
        self.tenant = tenant
        self.strict_mocking = strict_mocking
        self.preprocessor = preprocessor or PactPreprocessor()
        self.hooks = hooks or PactHooks()
        self.resource_path = "/" + resource_path.strip("/")
        self.hostname = hostname
        self.port = port
        self.timeout = timeout
        self.mock_not_found_response = mock_not_found_response
        if request_matching is None:
            request_matching = copy.deepcopy(DEFAULT_REQUEST_MATCHING)
        self.request_matching = request_matching
        self.http = http_session or requests.Session()
        self.writer = writer
        if self.writer is None and adapter is not None:
            self.writer = PactWriter(adapter)

        self._mode = PactMode.parse(mode)
        self.reconciler = RecordingReconciler(recording_mode, self.hooks)
        self._current: Optional[Pact] = None
        self._lock = threading.RLock()
        self._started_at = time.time()

        self.app = Flask(__name__, static_folder=None)
        self._register_routes()

        if adapter is not None:
            logger.info(f"Adapter: {adapter.description()}")

    @classmethod
    def from_config(cls, config: PactConfig, **kwargs: Any) -> "PactHttpController":
        """Create a controller with a FilePactAdapter from a loaded config."""
        options = dict(
            adapter=FilePactAdapter(config.folder),
            base_url=config.base_url,
            tenant=config.tenant,
            mode=config.mode if config.mode != PactMode.DISABLED else PactMode.APPLY,
            recording_mode=config.recording_mode,
            strict_mocking=config.strict_mocking,
            preprocessor=PactPreprocessor(config.preprocessor_options()),
            resource_path=str(config.get("resource_path")),
            port=config.port,
            timeout=config.timeout,
            request_matching=config.get("request_matching"),
        )
        options.update(kwargs)
        return cls(**options)

    # =========================================================================
    # State
    # =========================================================================

    @property
    def mode(self) -> PactMode:
        return self._mode

    @mode.setter
    def mode(self, value: Any) -> None:
        try:
            self._mode = PactMode.parse(value)
        except PactConfigError:
            logger.warning(
                f'Invalid mode: "{value}". Ignoring and continuing with mode "{self._mode.value}".'
            )

    @property
    def recording_mode(self) -> RecordingMode:
        return self.reconciler.mode

    @recording_mode.setter
    def recording_mode(self, value: Any) -> None:
        try:
            mode = RecordingMode.parse(value)
        except PactConfigError:
            logger.warning(
                f'Invalid recording mode: "{value}". Ignoring and continuing with '
                f'recording mode "{self.reconciler.mode.value}".'
            )
            return
        self.reconciler = RecordingReconciler(mode, self.hooks)

    @property
    def current_pact(self) -> Optional[Pact]:
        with self._lock:
            return self._current

    @current_pact.setter
    def current_pact(self, pact: Optional[Pact]) -> None:
        with self._lock:
            self._current = pact

    def is_recording_enabled(self) -> bool:
        return self._mode.is_recording and self.adapter is not None and self.base_url is not None

    def is_mocking_enabled(self) -> bool:
        return self._mode.is_mocking

    def get_status(self) -> Dict[str, Any]:
        from pact_sdk import __version__

        current = self.current_pact
        return {
            "status": "ok",
            "uptime": round(time.time() - self._started_at, 3),
            "version": __version__,
            "adapter": self.adapter.description() if self.adapter else None,
            "baseUrl": self.base_url,
            "tenant": self.tenant,
            "current": {"id": current.id if current else None},
            "mode": self._mode.value,
            "supportedModes": PactMode.values(),
            "recording": {
                "recordingMode": self.recording_mode.value,
                "supportedRecordingModes": RecordingMode.values(),
                "isRecordingEnabled": self.is_recording_enabled(),
            },
            "mocking": {
                "isMockingEnabled": self.is_mocking_enabled(),
                "strictMocking": self.strict_mocking,
            },
            "logger": {"level": _level_name()},
        }

    # =========================================================================
    # Serialization
    # =========================================================================

    def stringify(self, obj: Any) -> str:
        """JSON with self/next/initRequest urls pointing at this controller."""
        if obj is None or obj == "":
            return ""
        return json.dumps(self._replace_urls(obj), indent=2, default=str)

    def _replace_urls(self, obj: Any) -> Any:
        if isinstance(obj, dict):
            result = {}
            for key, value in obj.items():
                if key in URL_PROPERTIES and isinstance(value, str) and value.startswith("http"):
                    value = _HOST.sub(f"http://{self.hostname}:{self.port}", value, count=1)
                result[key] = self._replace_urls(value)
            return result
        if isinstance(obj, list):
            return [self._replace_urls(v) for v in obj]
        return obj

    def _json_response(self, data: Any, status: int = 200) -> Response:
        return Response(self.stringify(data), status=status, mimetype="application/json")

    # =========================================================================
    # Routes
    # =========================================================================

    def _register_routes(self) -> None:
        app = self.app
        rp = self.resource_path

        app.add_url_rule(rp, "ctrl_head", self._head, methods=["HEAD"])
        app.add_url_rule(f"{rp}/status", "ctrl_status", self._status, methods=["GET"])
        app.add_url_rule(f"{rp}/current", "ctrl_get_current", self._get_current, methods=["GET"])
        app.add_url_rule(f"{rp}/current", "ctrl_post_current", self._post_current, methods=["POST"])
        app.add_url_rule(f"{rp}/current", "ctrl_delete_current", self._delete_current, methods=["DELETE"])
        app.add_url_rule(f"{rp}/current/clear", "ctrl_clear", self._clear_current, methods=["POST"])
        app.add_url_rule(f"{rp}/current/request", "ctrl_requests", self._current_requests, methods=["GET"])
        app.add_url_rule(f"{rp}/current/response", "ctrl_responses", self._current_responses, methods=["GET"])
        app.add_url_rule(f"{rp}/log", "ctrl_get_log", self._get_log, methods=["GET"])
        app.add_url_rule(f"{rp}/log", "ctrl_post_log", self._post_log, methods=["POST"])
        app.add_url_rule(f"{rp}/log", "ctrl_put_log", self._put_log, methods=["PUT"])

        app.add_url_rule("/", "data_root", self._handle, defaults={"path": ""}, methods=HTTP_METHODS)
        app.add_url_rule("/<path:path>", "data", self._handle, methods=HTTP_METHODS)

    def _head(self) -> Response:
        return Response(status=200)

    def _status(self) -> Response:
        return self._json_response(self.get_status())

    def _get_current(self) -> Response:
        current = self.current_pact
        if current is None:
            return Response("No current pact set", status=404)
        return self._json_response(current.to_dict())

    def _post_current(self) -> Response:
        params = _parameters()

        if "mode" in params:
            self.mode = params["mode"]
        if "recordingMode" in params:
            self.recording_mode = params["recordingMode"]
        if "strictMocking" in params:
            try:
                self.strict_mocking = parse_bool(params["strictMocking"], "strictMocking")
            except PactConfigError as e:
                logger.warning(f"{e}. Ignoring and continuing with strictMocking {self.strict_mocking}.")

        id = pact_id(params.get("id")) or pact_id(params.get("title"))
        if id is None:
            return Response("Missing or invalid pact id", status=404)

        refresh = self.recording_mode == RecordingMode.REFRESH and self.is_recording_enabled()
        clear = _is_clear_requested(params.get("clear"))
        logger.debug(
            f"mode: {self._mode.value}, recordingMode: {self.recording_mode.value}, "
            f"strictMocking: {self.strict_mocking}, refresh: {refresh}, clear: {clear}"
        )

        # queued snapshots of this pact are newer than its file
        if self.writer is not None and not self.writer.flush(timeout=self.timeout):
            logger.warning(f"Pending writes not finished, loading pact {id} may miss records")

        try:
            current = self.adapter.load_pact(id) if self.adapter else None
        except PactLoadError as e:
            logger.error(str(e))
            return Response(str(e), status=500)

        status = 200
        if current is None and self.is_recording_enabled():
            current = Pact(id, self._new_pact_info(params))
            status = 201
            logger.info(f"Created pact {id}")
        if current is None:
            return Response(
                f"Not found. Could not find pact with id {id}. Enable recording to create a new pact.",
                status=404,
            )

        if refresh or clear:
            current.clear_records()
            self._save(current.copy())
            logger.debug(f"Cleared pact {id} (refresh: {refresh}, clear: {clear})")

        self.current_pact = current
        return self._json_response(current.to_dict(), status)

    def _new_pact_info(self, params: Mapping[str, Any]) -> PactInfo:
        title = params.get("title")
        return PactInfo(
            producer=params.get("producer"),
            consumer=params.get("consumer"),
            base_url=self.base_url,
            tenant=self.tenant,
            title=[title] if isinstance(title, str) else title,
            description=params.get("description"),
            tags=params.get("tags"),
            recording_mode=self.recording_mode.value,
            strict_mocking=self.strict_mocking,
            preprocessor=self.preprocessor.options.to_info() or None,
            request_matching=self.request_matching,
            version=params.get("version"),
        )

    def _delete_current(self) -> Response:
        self.current_pact = None
        return Response(status=204)

    def _clear_current(self) -> Response:
        with self._lock:
            current = self._current
            if current is None:
                return Response("No current pact set", status=404)
            cleared = current.copy()
            cleared.clear_records()
            self._current = cleared
        return self._json_response(cleared.to_dict())

    def _current_requests(self) -> Response:
        current = self.current_pact
        if current is None:
            return Response("No current pact set", status=404)
        items = [r.request for r in current.records]
        return self._json_response(self._project(items, _projection_keys()))

    def _current_responses(self) -> Response:
        current = self.current_pact
        if current is None:
            return Response("No current pact set", status=404)
        items = [dict(r.response, url=r.url) for r in current.records]
        return self._json_response(self._project(items, _projection_keys()))

    def _project(self, items: List[Mapping[str, Any]], keys: List[str]) -> List[Dict[str, Any]]:
        result = []
        for item in items:
            projected = {k: item[k] for k in keys if k in item}
            if "size" in keys:
                body = item.get("body")
                projected["size"] = len(body if isinstance(body, str) else self.stringify(body)) if body else 0
            result.append(projected)
        return result

    def _get_log(self) -> Response:
        return self._json_response({"level": _level_name()})

    def _post_log(self) -> Response:
        params = _parameters()
        level = params.get("level")
        if level is not None and (not isinstance(level, str) or level.lower() not in LOG_LEVELS):
            return Response(f"Invalid log level. Use one of: {', '.join(LOG_LEVELS)}", status=400)
        message = params.get("message")
        if isinstance(message, str):
            logger.log(LOG_LEVELS[(level or "info").lower()], message)
        return Response(status=204)

    def _put_log(self) -> Response:
        level = _parameters().get("level")
        if not isinstance(level, str) or level.lower() not in LOG_LEVELS:
            return Response(f"Invalid log level. Use one of: {', '.join(LOG_LEVELS)}", status=400)
        logging.getLogger("pact_sdk").setLevel(LOG_LEVELS[level.lower()])
        return Response(status=204)

    # =========================================================================
    # Data plane
    # =========================================================================

    def _handle(self, path: str) -> Response:
        if request.path == self.resource_path or request.path.startswith(self.resource_path + "/"):
            return Response("Not found", status=404)

        pact = self.current_pact
        live = _live_request()
        request_id = request.headers.get(REQUEST_ID_HEADER)

        if self.is_mocking_enabled():
            response = self._mock(pact, live, request_id)
            if response is not None:
                return response

        if self.base_url:
            return self._proxy(pact, live, request_id)

        logger.error(f"No response for {live['method']} {live['url']}")
        return Response("Not found", status=404)

    def _mock(self, pact: Optional[Pact], live: Dict[str, Any], request_id: Optional[str]) -> Optional[Response]:
        record = None
        if pact is not None:
            record = pact.next_record_matching_request(
                live, self.base_url, request_id, self.request_matching
            )

        if record is not None and self.hooks.mock_request is not None:
            replaced = self.hooks.mock_request(live, record)
            if replaced is None:
                logger.debug(f"Mocking {live['method']} {live['url']} skipped by hook")
                return None
            record = replaced

        if record is not None:
            logger.debug(f"Mocking {live['method']} {live['url']} from pact {pact.id}")
            return self._mock_response(record.response, "mocked")

        if not self.strict_mocking:
            return None

        response = None
        if self.hooks.mock_not_found is not None:
            response = self.hooks.mock_not_found(live)
        if response is None and self.mock_not_found_response is not None:
            r = self.mock_not_found_response
            response = r(live) if callable(r) else r
        if response is None:
            response = {
                "status": 404,
                "statusText": "Not Found",
                "headers": {"content-type": "text/html"},
                "body": NOT_FOUND_BODY.format(name=self.__class__.__name__),
            }
        logger.debug(f"No recording for {live['method']} {live['url']}")
        return self._mock_response(response, "notfound")

    def _mock_response(self, response: Mapping[str, Any], kind: str) -> Response:
        body = response.get("body")
        text = body if isinstance(body, str) else self.stringify(body)
        data = text.encode("utf-8")

        headers = {
            k: v for k, v in (response.get("headers") or {}).items()
            if str(k).lower() not in ("content-length", "date", "connection", "transfer-encoding")
        }
        if header_value(headers, "content-type") is None and not isinstance(body, str) and body is not None:
            headers["content-type"] = "application/json"
        headers[MODE_HEADER] = self._mode.value
        headers[TYPE_HEADER] = kind
        headers["content-length"] = str(len(data))
        return Response(data, status=response.get("status") or 200, headers=headers)

    def _proxy(self, pact: Optional[Pact], live: Dict[str, Any], request_id: Optional[str]) -> Response:
        if self.hooks.proxy_request is not None:
            short = self.hooks.proxy_request(live)
            if short is not None:
                return self._mock_response(short, "proxy")

        url = url_for_base_url(self.base_url, live["url"])
        headers = {
            k: v for k, v in request.headers.items()
            if k.lower() not in HOP_BY_HOP_HEADERS and k.lower() != REQUEST_ID_HEADER
        }
        try:
            resp = self.http.request(
                live["method"],
                url,
                headers=headers,
                data=request.get_data() or None,
                timeout=self.timeout,
                allow_redirects=False,
            )
        except requests.exceptions.Timeout:
            logger.error(f"Request {live['method']} {url} timed out after {self.timeout}s")
            return Response(f"Gateway timeout: {url}", status=504)
        except requests.exceptions.ConnectionError as e:
            logger.error(f"Request {live['method']} {url} failed: {e}")
            return Response(f"Bad gateway: {url}", status=502)

        if self.is_recording_enabled():
            keep = True
            if self.hooks.proxy_response is not None:
                keep = self.hooks.proxy_response(live, resp) is not False
            if keep:
                self._capture(pact, live, resp, request_id)

        out_headers = [
            (k, v) for k, v in resp.headers.items() if k.lower() not in HOP_BY_HOP_HEADERS
        ]
        return Response(resp.content, status=resp.status_code, headers=out_headers)

    def _capture(
        self,
        pact: Optional[Pact],
        live: Dict[str, Any],
        resp: requests.Response,
        request_id: Optional[str],
    ) -> None:
        if pact is None:
            logger.warning(f"Not recording {live['method']} {live['url']}, no current pact")
            return

        live_response = live_response_from_requests(resp)
        live_response["url"] = remove_base_url(live_response.get("url") or live["url"], self.base_url)
        context = {"options": {"requestId": request_id}} if request_id else None
        record = PactRecord.from_live_response(live_response, context=context)
        self.preprocessor.apply(record)

        record = self.reconciler.prepare_record(record)
        if record is None:
            return

        with self._lock:
            current = self._current
            if current is None or current.id != pact.id:
                logger.warning(f"Pact {pact.id} is no longer current, dropping record {live['url']}")
                return
            snapshot = current.copy()
            if not self.reconciler.reconcile(snapshot, record):
                return
            self._current = snapshot

        self._save(snapshot.copy())

    def _save(self, pact: Pact) -> None:
        pact = self.reconciler.prepare_pact(pact)
        if pact is None:
            return
        if self.writer is None:
            logger.warning(f"Failed to save pact {pact.id}. No adapter configured.")
            return
        self.writer.submit(pact)

    # =========================================================================
    # Server
    # =========================================================================

    def run(self, host: str = "0.0.0.0") -> None:
        """Start the development server (blocking)."""
        if self.base_url:
            logger.info(f"BaseURL: {self.base_url}")
        logger.info(f"Started: {self.hostname}:{self.port} (mode: {self._mode.value})")
        try:
            self.app.run(host=host, port=self.port, threaded=True)
        finally:
            if self.writer is not None:
                self.writer.close()


def _parameters() -> Dict[str, Any]:
    """Json body, form and query parameters, query last."""
    params: Dict[str, Any] = {}
    body = request.get_json(silent=True)
    if isinstance(body, dict):
        params.update(body)
    params.update(request.form.to_dict())
    params.update(request.args.to_dict())
    return params


def _projection_keys() -> List[str]:
    keys = request.args.getlist("keys")
    if not keys:
        return [k for k in request.args.keys()]
    result = []
    for value in keys:
        result.extend(k.strip() for k in value.split(",") if k.strip())
    return result


def _live_request() -> Dict[str, Any]:
    url = request.path
    if request.query_string:
        url = f"{url}?{request.query_string.decode('utf-8')}"
    body = request.get_data(as_text=True)
    return {
        "method": request.method,
        "url": url,
        "headers": dict(request.headers),
        "body": body or None,
    }


def _is_clear_requested(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str) and value.strip() == "":
        return True
    try:
        return parse_bool(value, "clear")
    except PactConfigError:
        return False


def _level_name() -> str:
    level = logging.getLogger("pact_sdk").getEffectiveLevel()
    return logging.getLevelName(level).lower()


def main():
    """CLI entry point for pactctrl."""
    parser = argparse.ArgumentParser(
        description="Serve, record and mock HTTP pacts",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Mock from recorded pacts
  pactctrl --folder ./pacts --mode mock

  # Record against a live system
  pactctrl --folder ./pacts --mode recording --base-url https://tenant.example.com
        """,
    )
    parser.add_argument("--config", "-c", type=str, help="Path to pact.yaml configuration file")
    parser.add_argument("--folder", "-f", type=str, help="Folder of pact files")
    parser.add_argument("--base-url", "-b", type=str, help="Base url to proxy requests to")
    parser.add_argument("--tenant", "-t", type=str, help="Tenant of the base url")
    parser.add_argument("--port", "-p", type=int, help="Port to listen on")
    parser.add_argument("--mode", "-m", type=str, help=f"One of {', '.join(PactMode.values())}")
    parser.add_argument("--recording-mode", type=str, help=f"One of {', '.join(RecordingMode.values())}")
    parser.add_argument("--strict-mocking", type=str, help="Return 404 for requests without recording")
    parser.add_argument("--resource-path", type=str, help="Path of the control endpoints")
    parser.add_argument("--timeout", type=float, help="Timeout of proxied requests in seconds")
    parser.add_argument("--log-level", type=str, help=f"One of {', '.join(LOG_LEVELS)}")

    args = parser.parse_args()

    overrides = {
        "folder": args.folder,
        "base_url": args.base_url,
        "tenant": args.tenant,
        "port": args.port,
        "mode": args.mode,
        "recording_mode": args.recording_mode,
        "strict_mocking": args.strict_mocking,
        "resource_path": args.resource_path,
        "timeout": args.timeout,
        "log_level": args.log_level,
    }
    try:
        config = load_config(args.config, **{k: v for k, v in overrides.items() if v is not None})
        level = str(config.get("log_level")).lower()
        if level not in LOG_LEVELS:
            raise PactConfigError("log level", level, list(LOG_LEVELS))
        logging.basicConfig(
            level=LOG_LEVELS[level],
            format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        )
        controller = PactHttpController.from_config(config)
    except (PactConfigError, OSError) as e:
        print(f"Error: {e}")
        sys.exit(1)

    controller.run()


if __name__ == "__main__":
    main()
