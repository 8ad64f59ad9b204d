"""
Pact adapters: persistence of pacts.

The core only relies on the PactAdapter contract. FilePactAdapter stores
one file per pact id:

    folder/
        <pact_id>.json      written by save_pact()
        <pact_id>.yaml      read only

HarPactAdapter stores the same pacts as HTTP Archive (HAR 1.2) files so
recordings can be opened with browser and proxy tooling:

    folder/
        <pact_id>.har
"""

import json
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union
from urllib.parse import parse_qsl, urlsplit

import yaml

from pact_sdk import __version__
from pact_sdk.errors import PactError, PactLoadError
from pact_sdk.pact import Pact, pact_id, validate_pact_id
from pact_sdk.url import remove_base_url, url_for_base_url

logger = logging.getLogger(__name__)

PACT_FILE_SUFFIXES = (".json", ".yaml", ".yml")
HAR_VERSION = "1.2"


class PactAdapter(ABC):
    """Interface for loading and saving pacts."""

    @abstractmethod
    def load_pact(self, id: Any) -> Optional[Pact]:
        """
        Load a pact.

        Returns:
            The pact, or None if it does not exist

        Raises:
            PactLoadError: If the pact exists but cannot be read
        """

    @abstractmethod
    def save_pact(self, pact: Pact) -> None:
        """Write pact, replacing any stored version."""

    @abstractmethod
    def delete_pact(self, id: Any) -> None:
        """Delete a pact. Deleting a missing pact is not an error."""

    @abstractmethod
    def pact_exists(self, id: Any) -> bool:
        """Check if a pact is stored for id."""

    @abstractmethod
    def load_pacts(self) -> Dict[str, Pact]:
        """Load all readable pacts keyed by id."""

    def description(self) -> str:
        return self.__class__.__name__

    def get_folder(self) -> Optional[str]:
        return None


class FilePactAdapter(PactAdapter):
    """
    Filesystem adapter reading JSON and YAML pacts and writing JSON.

    Usage:
        adapter = FilePactAdapter("./pacts")
        adapter.save_pact(pact)
        pact = adapter.load_pact("my_test")
    """

    # the first suffix is written, all are read
    suffixes = PACT_FILE_SUFFIXES

    def __init__(self, folder: Union[str, Path]):
        self.folder = Path(folder)

    def description(self) -> str:
        return f"{self.__class__.__name__} ({self.folder})"

    def get_folder(self) -> str:
        return str(self.folder)

    def _ensure_dir(self) -> None:
        self.folder.mkdir(parents=True, exist_ok=True)

    def _file_for(self, id: Any) -> Optional[Path]:
        """Existing file of a pact id, preferring the written suffix."""
        name = pact_id(id)
        if name is None:
            return None
        for suffix in self.suffixes:
            path = self.folder / f"{name}{suffix}"
            if path.exists():
                return path
        return None

    # =========================================================================
    # PactAdapter
    # =========================================================================

    def load_pact(self, id: Any) -> Optional[Pact]:
        path = self._file_for(id)
        if path is None:
            logger.debug(f"No pact file for {id!r} in {self.folder}")
            return None
        data = self._read_file(path)
        try:
            data = self._from_file_data(data, path)
            if not data.get("id") and not (data.get("info") or {}).get("id"):
                data["id"] = path.stem
            pact = Pact.from_dict(data)
        except (PactError, TypeError, ValueError, AttributeError, KeyError) as e:
            raise PactLoadError(str(path), str(e)) from e
        logger.debug(f"Loaded pact {pact.id} ({len(pact.records)} records) from {path}")
        return pact

    def save_pact(self, pact: Pact) -> None:
        self._ensure_dir()
        path = self.folder / f"{pact.id}{self.suffixes[0]}"
        self._write_json(path, self._to_file_data(pact))
        for suffix in self.suffixes[1:]:
            stale = self.folder / f"{pact.id}{suffix}"
            if stale.exists():
                stale.unlink()
        logger.debug(f"Saved pact {pact.id} to {path}")

    def delete_pact(self, id: Any) -> None:
        name = validate_pact_id(id)
        for suffix in self.suffixes:
            path = self.folder / f"{name}{suffix}"
            if path.exists():
                path.unlink()
                logger.debug(f"Deleted {path}")

    def pact_exists(self, id: Any) -> bool:
        return self._file_for(id) is not None

    def load_pacts(self) -> Dict[str, Pact]:
        if not self.folder.exists():
            return {}

        result: Dict[str, Pact] = {}
        for path in sorted(self.folder.iterdir()):
            if path.suffix not in self.suffixes or not path.is_file():
                continue
            try:
                pact = self.load_pact(path.stem)
            except PactLoadError as e:
                logger.error(f"Skipping pact file: {e}")
                continue
            if pact is not None and pact.id not in result:
                result[pact.id] = pact
        return result

    # =========================================================================
    # Utility Methods
    # =========================================================================

    def _to_file_data(self, pact: Pact) -> Dict[str, Any]:
        """Stored form of pact."""
        return pact.to_dict()

    def _from_file_data(self, data: Dict[str, Any], path: Path) -> Dict[str, Any]:
        """Pact dict of a file's content."""
        return data

    def _write_json(self, path: Path, data: Any) -> None:
        """Write data to a JSON file."""
        with open(path, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, default=str)

    def _read_file(self, path: Path) -> Dict[str, Any]:
        """Read a JSON or YAML pact file."""
        try:
            with open(path, "r", encoding="utf-8") as f:
                if path.suffix in (".yaml", ".yml"):
                    data = yaml.safe_load(f)
                else:
                    data = json.load(f)
        except (json.JSONDecodeError, yaml.YAMLError, OSError, UnicodeDecodeError) as e:
            raise PactLoadError(str(path), str(e)) from e

        if not isinstance(data, dict):
            raise PactLoadError(str(path), "expected an object")
        return data


class HarPactAdapter(FilePactAdapter):
    """
    Filesystem adapter storing pacts as HAR files.

    Each record becomes one entry of log.entries. Headers are written as
    name/value lists, query parameters as queryString and request bodies
    as postData. Record fields HAR has no place for (id, auth, options,
    createdObject, isOkStatusCode) and the pact info are kept as JSON in
    the comment of the entry and of the log.

    HAR files written by other tools load as well; entry urls are made
    relative to the base url of the pact info if one is stored.
    """

    suffixes = (".har",)

    # =========================================================================
    # Pact -> HAR
    # =========================================================================

    def _to_file_data(self, pact: Pact) -> Dict[str, Any]:
        info = pact.info.to_dict()
        producer = info.get("producer")
        if isinstance(producer, Mapping):
            producer = producer.get("name")
        return {
            "log": {
                "version": HAR_VERSION,
                "creator": {
                    "name": str(producer or "pact_sdk"),
                    "version": __version__,
                },
                "entries": [self._entry(record, pact.info.base_url) for record in pact.records],
                "comment": json.dumps({"id": pact.id, "info": info}, default=str),
            }
        }

    def _entry(self, record: Any, base_url: Optional[str]) -> Dict[str, Any]:
        request = record.request
        response = record.response
        url = str(request.get("url") or "")
        absolute_url = url_for_base_url(base_url, url) if url else url

        har_request: Dict[str, Any] = {
            "method": record.method,
            "url": absolute_url,
            "httpVersion": "HTTP/1.1",
            "cookies": [],
            "headers": _har_headers(request.get("headers")),
            "queryString": [
                {"name": name, "value": value}
                for name, value in parse_qsl(urlsplit(url).query, keep_blank_values=True)
            ],
            "headersSize": -1,
            "bodySize": 0,
        }
        if request.get("body") is not None:
            har_request["postData"] = _har_content(request["body"], request.get("headers"))
            har_request["bodySize"] = len(har_request["postData"]["text"])

        content: Dict[str, Any] = {"size": 0, "mimeType": _content_type(response.get("headers")) or ""}
        if "body" in response:
            content = _har_content(response["body"], response.get("headers"))
            content["size"] = len(content["text"])

        duration = response.get("duration")
        time = duration if isinstance(duration, (int, float)) else 0
        meta = {
            key: value
            for key, value in (
                ("id", record.id),
                ("auth", record.auth),
                ("options", record.options),
                ("createdObject", record.created_object),
                ("isOkStatusCode", response.get("isOkStatusCode")),
                ("duration", duration if "duration" in response else None),
            )
            if value is not None
        }

        entry: Dict[str, Any] = {
            "startedDateTime": datetime.now(timezone.utc).isoformat(),
            "time": time,
            "request": har_request,
            "response": {
                "status": response.get("status") or 0,
                "statusText": response.get("statusText") or "",
                "httpVersion": "HTTP/1.1",
                "cookies": [],
                "headers": _har_headers(response.get("headers")),
                "content": content,
                "redirectURL": "",
                "headersSize": -1,
                "bodySize": content["size"],
            },
            "cache": {},
            "timings": {"send": -1, "wait": time, "receive": -1},
        }
        entry["comment"] = json.dumps(meta, default=str)
        return entry

    # =========================================================================
    # HAR -> Pact
    # =========================================================================

    def _from_file_data(self, data: Dict[str, Any], path: Path) -> Dict[str, Any]:
        log = data.get("log")
        if not isinstance(log, Mapping):
            raise ValueError("missing HAR log object")

        meta = _comment(log.get("comment"))
        info = dict(meta.get("info") or {})
        base_url = info.get("baseUrl")
        if not meta and log.get("creator"):
            creator = log["creator"]
            info["producer"] = {"name": creator.get("name"), "version": creator.get("version")}

        return {
            "id": meta.get("id") or info.get("id") or path.stem,
            "info": info,
            "records": [self._record(entry, base_url) for entry in log.get("entries") or []],
        }

    def _record(self, entry: Mapping[str, Any], base_url: Optional[str]) -> Dict[str, Any]:
        meta = _comment(entry.get("comment"))
        har_request = entry["request"]
        har_response = entry["response"]

        request: Dict[str, Any] = {
            "method": har_request.get("method") or "GET",
            "url": remove_base_url(har_request.get("url"), base_url),
        }
        headers = _dict_headers(har_request.get("headers"))
        if headers:
            request["headers"] = headers
        post_data = har_request.get("postData")
        if post_data and "text" in post_data:
            request["body"] = _parse_text(post_data)

        response: Dict[str, Any] = {"status": har_response.get("status")}
        if har_response.get("statusText"):
            response["statusText"] = har_response["statusText"]
        headers = _dict_headers(har_response.get("headers"))
        if headers:
            response["headers"] = headers
        content = har_response.get("content") or {}
        if "text" in content:
            response["body"] = _parse_text(content)
        if "duration" in meta:
            response["duration"] = meta["duration"]
        elif "comment" not in entry and isinstance(entry.get("time"), (int, float)) and entry["time"] >= 0:
            response["duration"] = entry["time"]
        if "isOkStatusCode" in meta:
            response["isOkStatusCode"] = meta["isOkStatusCode"]

        record: Dict[str, Any] = {"request": request, "response": response}
        for key in ("auth", "options", "createdObject", "id"):
            if meta.get(key) is not None:
                record[key] = meta[key]
        return record


def _har_headers(headers: Optional[Mapping[str, Any]]) -> List[Dict[str, str]]:
    result = []
    for name, value in (headers or {}).items():
        values = value if isinstance(value, (list, tuple)) else [value]
        result.extend({"name": str(name), "value": str(v)} for v in values)
    return result


def _dict_headers(headers: Optional[List[Mapping[str, Any]]]) -> Dict[str, Any]:
    """Name/value list to dict. Repeated names collect into a list."""
    result: Dict[str, Any] = {}
    for header in headers or []:
        name, value = header["name"], header.get("value", "")
        if name not in result:
            result[name] = value
        elif isinstance(result[name], list):
            result[name].append(value)
        else:
            result[name] = [result[name], value]
    return result


def _content_type(headers: Optional[Mapping[str, Any]]) -> Optional[str]:
    for name, value in (headers or {}).items():
        if str(name).lower() == "content-type" and value:
            return str(value)
    return None


def _har_content(body: Any, headers: Optional[Mapping[str, Any]]) -> Dict[str, Any]:
    """postData/content of a body. Non-string bodies are written as JSON."""
    mime_type = _content_type(headers)
    if isinstance(body, str):
        # a string body is restored as text only for non-JSON mime types
        if not mime_type or "json" in mime_type:
            mime_type = "text/plain"
        return {"mimeType": mime_type, "text": body}
    if not mime_type or "json" not in mime_type:
        mime_type = "application/json"
    return {"mimeType": mime_type, "text": json.dumps(body, default=str)}


def _parse_text(content: Mapping[str, Any]) -> Any:
    text = content.get("text")
    if "json" in str(content.get("mimeType") or ""):
        try:
            return json.loads(text)
        except (TypeError, ValueError):
            return text
    return text


def _comment(value: Any) -> Dict[str, Any]:
    """Metadata stored in a HAR comment, or {} for plain comments."""
    if not value:
        return {}
    try:
        data = json.loads(value)
    except (TypeError, ValueError):
        return {}
    return data if isinstance(data, dict) else {}
