"""
Matching of pact records.

RecordMatcher decides whether a live record matches a recorded one:

1. request.method is compared case-insensitively
2. response.status must be equal, regardless of strictness
3. "$"-prefixed schema keys (e.g. response.$body) validate the actual value
   with a SchemaMatcher; the structural match of that value is skipped
   unless match_schema_and_object is set
4. strict: every expected key must exist and match in the actual record,
   extra actual keys are tolerated; non-strict: only request.method,
   request.url and response.status are compared
5. urls are compared after removing the base url

Failures raise PactMatchError naming the dotted key path of the mismatch.
"""

import copy
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from jsonschema import Draft7Validator, FormatChecker
from jsonschema.exceptions import SchemaError

from pact_sdk.errors import PactMatchError
from pact_sdk.keypath import Segment, find_key, format_key_path
from pact_sdk.url import normalize_url

logger = logging.getLogger(__name__)

# JSON schema keywords starting with "$" that are regular properties
JSON_SCHEMA_KEYWORDS = frozenset([
    "$schema",
    "$id",
    "$ref",
    "$comment",
    "$defs",
    "$vocabulary",
    "$anchor",
    "$dynamicRef",
    "$dynamicAnchor",
    "$recursiveRef",
    "$recursiveAnchor",
])

PERMISSIVE_FIELDS = ("request.method", "request.url", "response.status")

_ISO_DATE = re.compile(
    r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}(\.\d{1,9})?(Z|[+-]\d{2}:\d{2})$"
)


def is_schema_key(key: Any) -> bool:
    """Check if key holds a schema for its sibling, e.g. "$body"."""
    return isinstance(key, str) and key.startswith("$") and key not in JSON_SCHEMA_KEYWORDS


@dataclass
class MatchOptions:
    """Options passed through a match."""
    strict_matching: bool = True
    match_schema_and_object: bool = False
    ignore_case: bool = True
    ignore_primitive_array_order: bool = False
    schema_matcher: Optional["SchemaMatcher"] = None
    parents: List[Segment] = field(default_factory=list)

    def child(self, *segments: Segment) -> "MatchOptions":
        return replace(self, parents=self.parents + list(segments))


class PactMatcher(ABC):
    """Matches an actual value against an expected value."""

    @abstractmethod
    def match(self, actual: Any, expected: Any, options: Optional[MatchOptions] = None) -> bool:
        """
        Return True if actual matches expected.

        Implementations raise PactMatchError, or any exception with a
        message, to describe the mismatch.
        """


class SchemaMatcher(ABC):
    """Validates a value against a JSON schema."""

    @abstractmethod
    def match(self, value: Any, schema: Dict[str, Any], strict: Optional[bool] = None) -> bool:
        """Return True if value is valid. Raise with a message otherwise."""


class JsonSchemaMatcher(SchemaMatcher):
    """
    Schema matcher based on jsonschema (Draft 7).

    If strict is given, additionalProperties of every object schema is set
    to ``not strict`` on a copy of the schema.
    """

    def match(self, value: Any, schema: Dict[str, Any], strict: Optional[bool] = None) -> bool:
        if schema is None:
            raise ValueError("Schema must not be empty.")
        schema = copy.deepcopy(schema)
        if strict is not None:
            _set_additional_properties(schema, not strict)

        try:
            validator = Draft7Validator(schema, format_checker=FormatChecker())
            errors = sorted(validator.iter_errors(value), key=lambda e: list(e.absolute_path))
        except SchemaError as e:
            raise ValueError(f"Invalid schema: {e.message}")

        if errors:
            raise ValueError(", ".join(_schema_error_text(e) for e in errors))
        return True


def validate_schema_key(actual: Dict[str, Any], schema_key: str, schema: Any,
                        options: MatchOptions) -> None:
    """
    Validate the sibling value of a "$key" schema with the schema matcher.

    Raises:
        PactMatchError: If no schema matcher is set or validation fails
    """
    name = schema_key[1:]
    path = format_key_path(options.parents + [name])
    actual_key = find_key(actual, name, options.ignore_case)
    value = actual[actual_key] if actual_key is not None else None
    if options.schema_matcher is None:
        raise PactMatchError(
            f'Pact validation failed! No schema matcher registered to validate "{path}".',
            actual=value, expected=schema, key=name, key_path=path, schema=schema,
        )
    try:
        valid = options.schema_matcher.match(value, schema, options.strict_matching)
        reason = ""
    except PactMatchError:
        raise
    except Exception as e:
        valid = False
        reason = f" ({e})"
    if not valid:
        raise PactMatchError(
            f'Pact validation failed! Schema for "{path}" does not match{reason}.',
            actual=value, expected=schema, key=name, key_path=path, schema=schema,
        )


def _set_additional_properties(schema: Any, value: bool) -> None:
    if isinstance(schema, dict):
        if schema.get("type") == "object" and isinstance(schema.get("additionalProperties", True), bool):
            schema["additionalProperties"] = value
        for child in schema.values():
            _set_additional_properties(child, value)
    elif isinstance(schema, list):
        for item in schema:
            _set_additional_properties(item, value)


def _schema_error_text(error: Any) -> str:
    """Format a validation error as "data/<path> <message>"."""
    path = "/".join(str(p) for p in error.absolute_path)
    location = f"data/{path}" if path else "data"
    if error.validator == "type":
        expected = error.validator_value
        if isinstance(expected, list):
            expected = ",".join(expected)
        return f"{location} must be {expected}"
    if error.validator == "required":
        missing = re.findall(r"'([^']+)' is a required property", error.message)
        name = missing[0] if missing else error.message
        return f"{location} must have required property '{name}'"
    if error.validator == "additionalProperties":
        return f"{location} must NOT have additional properties"
    return f"{location} {error.message}"


class DefaultPactMatcher(PactMatcher):
    """
    Structural matcher with per-property matchers.

    Property matchers are looked up by key at every level of the match.
    Keys without a property matcher are compared by equality, recursing
    into dicts and lists.
    """

    def __init__(
        self,
        property_matchers: Optional[Dict[str, PactMatcher]] = None,
        options: Optional[MatchOptions] = None,
    ):
        if property_matchers is None:
            property_matchers = default_property_matchers()
        self.property_matchers = property_matchers
        self.options = options or MatchOptions(schema_matcher=JsonSchemaMatcher())

    def add_property_matcher(self, name: str, matcher: PactMatcher) -> None:
        self.property_matchers[name] = matcher

    def remove_property_matcher(self, name: str) -> None:
        self.property_matchers.pop(name, None)

    def get_property_matcher(self, name: Any, ignore_case: bool = True) -> Optional[PactMatcher]:
        if not isinstance(name, str):
            return None
        key = find_key(self.property_matchers, name, ignore_case)
        return self.property_matchers[key] if key is not None else None

    def match(self, actual: Any, expected: Any, options: Optional[MatchOptions] = None) -> bool:
        options = options or self.options
        if actual is expected:
            return True

        if isinstance(expected, list) or isinstance(actual, list):
            if not (isinstance(expected, list) and isinstance(actual, list)):
                self._fail(options, "Type mismatch", actual, expected)
            self._match_lists(actual, expected, options)
            return True

        if not isinstance(expected, dict) or not isinstance(actual, dict):
            if not _equal(actual, expected):
                self._fail(options, "do not match", actual, expected)
            return True

        schema_keys = [k for k in expected if is_schema_key(k)]
        for schema_key in schema_keys:
            validate_schema_key(actual, schema_key, expected[schema_key], options)

        for key, expected_value in expected.items():
            if is_schema_key(key):
                continue
            if f"${key}" in schema_keys and not options.match_schema_and_object:
                continue

            child = options.child(key)
            property_matcher = self.get_property_matcher(key, options.ignore_case)
            actual_key = find_key(actual, key, options.ignore_case) if isinstance(key, str) else None
            if actual_key is None and key in actual:
                actual_key = key

            if actual_key is None:
                self._fail(child, "not found in actual object", None, expected_value,
                           message=f'"{_path(child)}" not found in actual object.')
            if isinstance(property_matcher, IgnoreMatcher):
                continue
            actual_value = actual[actual_key]

            if property_matcher is not None:
                self._run_property_matcher(property_matcher, actual_value, expected_value, child)
            else:
                self.match(actual_value, expected_value, child)
        return True

    def _match_lists(self, actual: list, expected: list, options: MatchOptions) -> None:
        if len(actual) != len(expected):
            self._fail(
                options, "different lengths", actual, expected,
                message=f'Arrays at "{_path(options) or "root"}" have different lengths.',
            )
        if options.ignore_primitive_array_order and _primitives(actual) and _primitives(expected):
            actual = sorted(actual, key=_sort_key)
            expected = sorted(expected, key=_sort_key)
        for index, (actual_item, expected_item) in enumerate(zip(actual, expected)):
            self.match(actual_item, expected_item, options.child(index))

    def _run_property_matcher(
        self, matcher: PactMatcher, actual: Any, expected: Any, options: MatchOptions
    ) -> None:
        try:
            result = matcher.match(actual, expected, options)
            reason = ""
        except PactMatchError:
            raise
        except Exception as e:
            result = False
            reason = f" {e}"
        if not result:
            self._fail(options, "do not match", actual, expected,
                       message=f'Values for "{_path(options)}" do not match.{reason}')

    def _fail(self, options: MatchOptions, reason: str, actual: Any, expected: Any,
              message: Optional[str] = None) -> None:
        path = _path(options)
        if message is None:
            if reason == "Type mismatch":
                message = (
                    f'Type mismatch at "{path or "root"}". Expected '
                    f'{type(expected).__name__} but got {type(actual).__name__}.'
                )
            else:
                message = (
                    f'Values for "{path}" do not match. '
                    f"Expected {expected!r} but got {actual!r}."
                )
        raise PactMatchError(
            f"Pact validation failed! {message}",
            actual=actual,
            expected=expected,
            key=str(options.parents[-1]) if options.parents else None,
            key_path=path,
        )


class BodyMatcher(DefaultPactMatcher):
    """
    Matcher for request and response bodies.

    Ids and owners only need the same type, timestamps must be ISO dates,
    and values of links, statistics, passwords and tenant ids are not
    compared. Ignored keys must still exist in the actual body.
    """

    def __init__(self, property_matchers: Optional[Dict[str, PactMatcher]] = None):
        super().__init__(dict(property_matchers or {}))
        self.add_property_matcher("id", SameTypeMatcher())
        self.add_property_matcher("statistics", IgnoreMatcher())
        self.add_property_matcher("lastUpdated", ISODateStringMatcher())
        self.add_property_matcher("creationTime", ISODateStringMatcher())
        self.add_property_matcher("next", IgnoreMatcher())
        self.add_property_matcher("self", IgnoreMatcher())
        self.add_property_matcher("password", IgnoreMatcher())
        self.add_property_matcher("owner", SameTypeMatcher())
        self.add_property_matcher("tenantId", IgnoreMatcher())
        self.add_property_matcher("lastPasswordChange", ISODateStringMatcher())


class IgnoreMatcher(PactMatcher):
    def match(self, actual: Any, expected: Any, options: Optional[MatchOptions] = None) -> bool:
        return True


class SameTypeMatcher(PactMatcher):
    def match(self, actual: Any, expected: Any, options: Optional[MatchOptions] = None) -> bool:
        if _type_name(actual) != _type_name(expected):
            raise ValueError(
                f"Values are not of same type. Expected {_type_name(expected)} "
                f"but got {_type_name(actual)}"
            )
        return True


class NumberMatcher(PactMatcher):
    def match(self, actual: Any, expected: Any, options: Optional[MatchOptions] = None) -> bool:
        for value in (actual, expected):
            if isinstance(value, bool) or not isinstance(value, (int, float)) or value != value:
                raise ValueError(f'Value "{value}" is not a number.')
        return True


class StringMatcher(PactMatcher):
    def match(self, actual: Any, expected: Any, options: Optional[MatchOptions] = None) -> bool:
        for value in (actual, expected):
            if not isinstance(value, str):
                raise ValueError(f'Value "{value}" is not a string.')
        return True


class IdentifierMatcher(PactMatcher):
    """Both values must be numeric id strings."""

    def match(self, actual: Any, expected: Any, options: Optional[MatchOptions] = None) -> bool:
        for value in (actual, expected):
            if not isinstance(value, str) or not value.isdigit():
                raise ValueError(f'Value "{value}" is not a valid identifier.')
        return True


class ISODateStringMatcher(PactMatcher):
    """Both values must be ISO 8601 timestamps with a time zone."""

    def match(self, actual: Any, expected: Any, options: Optional[MatchOptions] = None) -> bool:
        for value in (actual, expected):
            if not isinstance(value, str):
                raise ValueError(f'Value "{value}" is not a string.')
            if not _ISO_DATE.match(value) or parse_iso_date(value) is None:
                raise ValueError(f'Value "{value}" is not a valid ISO date string.')
        return True


def parse_iso_date(value: str) -> Optional[datetime]:
    """Parse an ISO 8601 timestamp, or return None."""
    text = value.replace("Z", "+00:00")
    match = re.match(r"^(.*T\d{2}:\d{2}:\d{2})(\.\d+)?(.*)$", text)
    if match:
        base, fraction, zone = match.groups()
        if fraction:
            fraction = "." + fraction[1:7].ljust(6, "0")
        text = f"{base}{fraction or ''}{zone}"
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None


def default_property_matchers() -> Dict[str, PactMatcher]:
    """Property matchers used for records unless others are given."""
    return {
        "body": BodyMatcher(),
        "requestBody": BodyMatcher(),
        "duration": NumberMatcher(),
        "date": IgnoreMatcher(),
        "Authorization": IgnoreMatcher(),
        "auth": IgnoreMatcher(),
        "options": IgnoreMatcher(),
        "createdObject": IgnoreMatcher(),
        "location": IgnoreMatcher(),
        "url": IgnoreMatcher(),
        "X-XSRF-TOKEN": IgnoreMatcher(),
        "lastMessage": ISODateStringMatcher(),
    }


class RecordMatcher:
    """
    Matches an actual record against an expected record.

    Matcher and schema matcher are injected, defaulting to
    DefaultPactMatcher and JsonSchemaMatcher.
    """

    def __init__(
        self,
        matcher: Optional[PactMatcher] = None,
        schema_matcher: Optional[SchemaMatcher] = None,
        match_schema_and_object: bool = False,
        ignore_primitive_array_order: bool = False,
        base_url: Optional[str] = None,
    ):
        self.matcher = matcher or DefaultPactMatcher()
        self.schema_matcher = schema_matcher or JsonSchemaMatcher()
        self.match_schema_and_object = match_schema_and_object
        self.ignore_primitive_array_order = ignore_primitive_array_order
        self.base_url = base_url

    def match(
        self,
        expected: Any,
        actual: Any,
        strict: bool = True,
        base_url: Optional[str] = None,
    ) -> bool:
        """
        Match actual against expected.

        Args:
            expected: Recorded PactRecord or record dict
            actual: Live PactRecord or record dict
            strict: Compare every expected field, not only method/url/status
            base_url: Base url removed from both urls before comparison

        Returns:
            True if the records match

        Raises:
            PactMatchError: Naming the first mismatching key path
        """
        expected = _record_dict(expected)
        actual = _record_dict(actual)
        base_url = base_url or self.base_url
        exp_req, act_req = expected.get("request") or {}, actual.get("request") or {}
        exp_res, act_res = expected.get("response") or {}, actual.get("response") or {}

        if "method" in exp_req and "method" in act_req:
            if str(exp_req["method"]).upper() != str(act_req["method"]).upper():
                _raise_field("request.method", act_req["method"], exp_req["method"])

        if "status" in exp_res and "status" in act_res:
            if exp_res["status"] != act_res["status"]:
                _raise_field("response.status", act_res["status"], exp_res["status"])

        if "url" in exp_req and "url" in act_req:
            exp_url = normalize_url(exp_req["url"], base_url)
            act_url = normalize_url(act_req["url"], base_url)
            if exp_url != act_url:
                _raise_field("request.url", act_req["url"], exp_req["url"])

        options = MatchOptions(
            strict_matching=strict,
            match_schema_and_object=self.match_schema_and_object,
            ignore_primitive_array_order=self.ignore_primitive_array_order,
            schema_matcher=self.schema_matcher,
        )
        for name, exp_part, act_part in (("request", exp_req, act_req), ("response", exp_res, act_res)):
            schema_keys = [k for k in exp_part if is_schema_key(k)]
            for schema_key in schema_keys:
                validate_schema_key(act_part, schema_key, exp_part[schema_key], options.child(name))

        if not strict:
            return True

        for name, exp_part, act_part in (("request", exp_req, act_req), ("response", exp_res, act_res)):
            handled = {"method", "url"} if name == "request" else {"status"}
            remaining = {}
            for key, value in exp_part.items():
                if key in handled or is_schema_key(key):
                    continue
                if f"${key}" in exp_part and not self.match_schema_and_object:
                    continue
                remaining[key] = value
            if not remaining:
                continue
            self.matcher.match(act_part, remaining, options.child(name))
        return True


def match_records(expected: Any, actual: Any, strict: bool = True, **kwargs: Any) -> bool:
    """Convenience function to match two records with default matchers."""
    return RecordMatcher(**kwargs).match(expected, actual, strict)


def _record_dict(record: Any) -> Dict[str, Any]:
    if record is None:
        return {}
    if hasattr(record, "to_dict") and not isinstance(record, dict):
        return record.to_dict()
    return record


def _raise_field(path: str, actual: Any, expected: Any) -> None:
    raise PactMatchError(
        f'Pact validation failed! Values for "{path}" do not match. '
        f"Expected {expected!r} but got {actual!r}.",
        actual=actual,
        expected=expected,
        key=path.split(".")[-1],
        key_path=path,
    )


def _path(options: MatchOptions) -> str:
    return format_key_path(options.parents)


def _equal(actual: Any, expected: Any) -> bool:
    if isinstance(actual, bool) != isinstance(expected, bool):
        return False
    return actual == expected


def _primitives(values: list) -> bool:
    return all(v is None or isinstance(v, (str, int, float, bool)) for v in values)


def _sort_key(value: Any) -> Any:
    return (type(value).__name__, str(value))


def _type_name(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "boolean"
    if isinstance(value, (int, float)):
        return "number"
    if isinstance(value, str):
        return "string"
    if isinstance(value, list):
        return "array"
    return "object"
