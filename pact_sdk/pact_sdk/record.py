"""
Pact record model.

A PactRecord is one captured HTTP exchange. Records are built from live
responses, either plain "live response" dicts or requests.Response
objects, and converted back into live response dicts for mocking.

Live response dict keys:
    method, url, requestHeaders, requestBody   -> record.request
    status, statusText, headers, body,
    duration, isOkStatusCode, $body            -> record.response
"""

import base64
import copy
import logging
from dataclasses import dataclass, field
from email.utils import parsedate_to_datetime
from datetime import datetime
from typing import Any, Dict, List, Mapping, Optional, Union
from urllib.parse import urlsplit

import requests
from requests.auth import HTTPBasicAuth

from pact_sdk.canonical import parse_body

logger = logging.getLogger(__name__)

BASIC_AUTH = "BasicAuth"
BEARER_AUTH = "BearerAuth"
COOKIE_AUTH = "CookieAuth"

# live response key -> record request key
REQUEST_KEYS = {
    "method": "method",
    "url": "url",
    "requestHeaders": "headers",
    "requestBody": "body",
}

RESPONSE_KEYS = (
    "status",
    "statusText",
    "headers",
    "body",
    "duration",
    "isOkStatusCode",
    "$body",
)


@dataclass
class PactRecord:
    """
    One recorded request/response pair.

    Absent fields are omitted from request and response, never set to None.
    A None value in request or response means the recorded value was null.
    """
    request: Dict[str, Any] = field(default_factory=dict)
    response: Dict[str, Any] = field(default_factory=dict)
    auth: Optional[Dict[str, Any]] = None
    options: Optional[Dict[str, Any]] = None
    created_object: Optional[str] = None
    id: Optional[str] = None

    @classmethod
    def from_live_response(
        cls,
        response: Union[Mapping[str, Any], requests.Response],
        client: Any = None,
        context: Optional[Mapping[str, Any]] = None,
    ) -> "PactRecord":
        """
        Build a record from a live response.

        All nested values are deep copied. Auth is detected from the client,
        the request headers and the context, in this order: explicit client
        auth, bearer token, basic credentials, cookies.

        Args:
            response: Live response dict or requests.Response
            client: Optional client object with an ``auth`` attribute
            context: Optional dict with loggedInUser, loggedInUserAlias,
                token, password, authType, options and id
        """
        if isinstance(response, requests.Response):
            response = live_response_from_requests(response)
        source = copy.deepcopy(dict(response or {}))
        context = context or {}

        request: Dict[str, Any] = {}
        for live_key, key in REQUEST_KEYS.items():
            if live_key in source:
                request[key] = source[live_key]

        record_response: Dict[str, Any] = {}
        for key in RESPONSE_KEYS:
            if key in source:
                record_response[key] = source[key]

        options = context.get("options")
        return cls(
            request=request,
            response=record_response,
            auth=detect_auth(request.get("headers"), client, context),
            options=copy.deepcopy(dict(options)) if options else None,
            created_object=extract_created_object(request, record_response),
            id=context.get("id"),
        )

    @classmethod
    def from_dict(cls, data: Union[Mapping[str, Any], "PactRecord"]) -> "PactRecord":
        """Create a record from its stored dict form."""
        if isinstance(data, PactRecord):
            return copy.deepcopy(data)
        data = copy.deepcopy(dict(data))
        return cls(
            request=data.get("request") or {},
            response=data.get("response") or {},
            auth=data.get("auth"),
            options=data.get("options"),
            created_object=data.get("createdObject"),
            id=data.get("id"),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Stored dict form, omitting unset optional fields."""
        result: Dict[str, Any] = {
            "request": copy.deepcopy(self.request),
            "response": copy.deepcopy(self.response),
        }
        if self.auth is not None:
            result["auth"] = copy.deepcopy(self.auth)
        if self.options is not None:
            result["options"] = copy.deepcopy(self.options)
        if self.created_object is not None:
            result["createdObject"] = self.created_object
        if self.id is not None:
            result["id"] = self.id
        return result

    def to_live_response(self) -> Dict[str, Any]:
        """
        Convert back into a live response dict.

        Every field present in the record is reproduced, nothing is added.
        """
        result: Dict[str, Any] = {}
        for key in RESPONSE_KEYS:
            if key in self.response:
                result[key] = copy.deepcopy(self.response[key])
        for live_key, key in REQUEST_KEYS.items():
            if key in self.request:
                result[live_key] = copy.deepcopy(self.request[key])
        return result

    def copy(self) -> "PactRecord":
        return copy.deepcopy(self)

    @property
    def method(self) -> str:
        return str(self.request.get("method") or "GET").upper()

    @property
    def url(self) -> Optional[str]:
        return self.request.get("url")

    @property
    def status(self) -> Optional[int]:
        return self.response.get("status")

    @property
    def request_id(self) -> Optional[str]:
        """Tag binding this record to live requests, from options.requestId."""
        if not self.options:
            return None
        return self.options.get("requestId")

    @property
    def auth_type(self) -> Optional[str]:
        return self.auth.get("type") if self.auth else None

    def has_request_header(self, name: str) -> bool:
        """Check for a request header (case-insensitive)."""
        headers = self.request.get("headers") or {}
        return any(str(k).lower() == name.lower() for k in headers)

    def date(self) -> Optional[datetime]:
        """Parsed date response header, or None."""
        headers = self.response.get("headers") or {}
        for key, value in headers.items():
            if str(key).lower() == "date" and value:
                try:
                    return parsedate_to_datetime(value)
                except (TypeError, ValueError):
                    return None
        return None

    def user_aliases(self) -> List[str]:
        """userAlias of auth as a list."""
        if not self.auth:
            return []
        alias = self.auth.get("userAlias")
        if alias is None:
            return []
        if isinstance(alias, (list, tuple)):
            return list(alias)
        return [alias]


def extract_created_object(
    request: Mapping[str, Any], response: Mapping[str, Any]
) -> Optional[str]:
    """
    Id of the object created by a POST request.

    Read from body.id, else from the last path segment of the Location header.
    """
    if str((request or {}).get("method") or "").upper() != "POST":
        return None

    body = (response or {}).get("body")
    if isinstance(body, dict) and body.get("id") is not None:
        return str(body["id"])

    headers = (response or {}).get("headers") or {}
    location = None
    for key, value in headers.items():
        if str(key).lower() == "location":
            location = value
            break
    if not location or not isinstance(location, str):
        return None

    path = urlsplit(location).path.rstrip("/")
    segment = path.split("/")[-1] if path else ""
    return segment or None


def detect_auth(
    headers: Optional[Mapping[str, Any]],
    client: Any = None,
    context: Optional[Mapping[str, Any]] = None,
) -> Optional[Dict[str, Any]]:
    """
    Detect the auth used for a request.

    Priority: explicit client auth > bearer token > basic credentials >
    cookies > none.
    """
    context = context or {}
    user = context.get("loggedInUser")
    alias = context.get("loggedInUserAlias")

    client_auth = getattr(client, "auth", None) if client is not None else None
    if client_auth is not None:
        info = _client_auth_info(client_auth, user, alias)
        if info:
            return info

    lowered = {str(k).lower(): v for k, v in (headers or {}).items()}
    authorization = str(lowered.get("authorization") or "")
    scheme = authorization.split(" ", 1)[0].lower()

    if context.get("token") or scheme == "bearer":
        auth_type = BEARER_AUTH
    elif context.get("password") or scheme == "basic":
        auth_type = BASIC_AUTH
        if user is None and scheme == "basic":
            user = _basic_auth_user(authorization)
    elif "cookie" in lowered or user:
        auth_type = COOKIE_AUTH
    else:
        return None

    return _auth_dict(context.get("authType") or auth_type, user, alias)


def _client_auth_info(auth: Any, user: Any, alias: Any) -> Optional[Dict[str, Any]]:
    if isinstance(auth, HTTPBasicAuth):
        return _auth_dict(BASIC_AUTH, auth.username, alias)
    if isinstance(auth, Mapping):
        if not auth.get("type") and not auth.get("user"):
            return None
        return _auth_dict(
            auth.get("type") or BASIC_AUTH,
            auth.get("user", user),
            auth.get("userAlias", alias),
        )
    auth_type = getattr(auth, "type", None)
    auth_user = getattr(auth, "user", None)
    if auth_type or auth_user:
        return _auth_dict(auth_type or BASIC_AUTH, auth_user or user, getattr(auth, "userAlias", alias))
    return None


def _auth_dict(auth_type: str, user: Any, alias: Any) -> Dict[str, Any]:
    result: Dict[str, Any] = {}
    if user is not None:
        result["user"] = user
    if alias is not None:
        result["userAlias"] = copy.deepcopy(alias)
    result["type"] = auth_type
    return result


def _basic_auth_user(authorization: str) -> Optional[str]:
    try:
        decoded = base64.b64decode(authorization.split(" ", 1)[1]).decode("utf-8")
    except (IndexError, ValueError, UnicodeDecodeError):
        return None
    return decoded.split(":", 1)[0] or None


def live_response_from_requests(response: requests.Response) -> Dict[str, Any]:
    """Convert a requests.Response into a live response dict."""
    result: Dict[str, Any] = {
        "status": response.status_code,
        "statusText": response.reason or "",
        "headers": dict(response.headers),
        "isOkStatusCode": 200 <= response.status_code < 400,
    }
    if response.content:
        result["body"] = _response_body(response)
    if response.elapsed is not None:
        result["duration"] = int(response.elapsed.total_seconds() * 1000)

    prepared = response.request
    if prepared is not None:
        if prepared.method:
            result["method"] = prepared.method
        if prepared.url:
            result["url"] = prepared.url
        if prepared.headers:
            result["requestHeaders"] = dict(prepared.headers)
        if prepared.body is not None:
            result["requestBody"] = parse_body(prepared.body)
    elif response.url:
        result["url"] = response.url
    return result


def _response_body(response: requests.Response) -> Any:
    content_type = response.headers.get("content-type", "")
    if "json" in content_type:
        try:
            return response.json()
        except ValueError:
            return response.text
    return parse_body(response.text)
