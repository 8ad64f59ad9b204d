"""Tests for pact_sdk.matcher module."""

import pytest

from pact_sdk.errors import PactMatchError
from pact_sdk.matcher import (
    DefaultPactMatcher,
    IgnoreMatcher,
    JsonSchemaMatcher,
    MatchOptions,
    RecordMatcher,
    match_records,
    parse_iso_date,
)
from pact_sdk.record import PactRecord


def record(status=200, body=None, method="GET", url="/inventory/managedObjects/1", **response):
    response = dict(response, status=status)
    if body is not None:
        response["body"] = body
    return {"request": {"method": method, "url": url}, "response": response}


NAME_SCHEMA = {
    "type": "object",
    "properties": {"name": {"type": "string"}},
}


class TestRecordMatcher:
    """Tests for RecordMatcher.match()."""

    def test_identical(self, get_record):
        assert RecordMatcher().match(get_record, get_record.copy())

    def test_extra_actual_keys_tolerated(self):
        expected = record(body={"name": "a"})
        actual = record(body={"name": "a", "type": "c8y_Device"})
        assert match_records(expected, actual)

    def test_missing_expected_key_fails(self):
        expected = record(body={"name": "a", "type": "c8y_Device"})
        actual = record(body={"name": "a"})
        with pytest.raises(PactMatchError) as exc:
            match_records(expected, actual)
        assert '"response.body.type" not found in actual object.' in str(exc.value)
        assert exc.value.key_path == "response.body.type"
        assert exc.value.key == "type"

    def test_value_mismatch(self):
        with pytest.raises(PactMatchError) as exc:
            match_records(record(body={"name": "a"}), record(body={"name": "b"}))
        assert exc.value.key_path == "response.body.name"
        assert exc.value.expected == "a"
        assert exc.value.actual == "b"

    def test_status_checked_even_when_permissive(self):
        with pytest.raises(PactMatchError) as exc:
            match_records(record(status=200), record(status=404), strict=False)
        assert 'Values for "response.status" do not match' in str(exc.value)

    def test_permissive_ignores_body(self):
        assert match_records(record(body={"name": "a"}), record(body={"name": "b"}), strict=False)

    def test_method_case_insensitive(self):
        assert match_records(record(method="get"), record(method="GET"))

    def test_method_mismatch(self):
        with pytest.raises(PactMatchError) as exc:
            match_records(record(method="GET"), record(method="DELETE"))
        assert exc.value.key_path == "request.method"

    def test_url_base_removed(self):
        expected = record(url="/inventory/managedObjects/1")
        actual = record(url="https://t100.example.com/inventory/managedObjects/1")
        matcher = RecordMatcher(base_url="https://t100.example.com")
        assert matcher.match(expected, actual)

    def test_url_mismatch(self):
        with pytest.raises(PactMatchError) as exc:
            match_records(record(url="/a"), record(url="/b"))
        assert exc.value.key_path == "request.url"

    def test_headers_compared_when_strict(self):
        expected = record(headers={"x-version": "1"})
        with pytest.raises(PactMatchError) as exc:
            match_records(expected, record(headers={"x-version": "2"}))
        assert exc.value.key_path == "response.headers.x-version"
        with pytest.raises(PactMatchError) as exc:
            match_records(expected, record())
        assert exc.value.key_path == "response.headers"

    def test_header_names_case_insensitive(self):
        expected = record(headers={"Content-Type": "application/json"})
        assert match_records(expected, record(headers={"content-type": "application/json"}))

    def test_volatile_headers_ignored(self):
        expected = record(headers={"Date": "Mon, 01 Jan 2024 00:00:00 GMT", "Location": "/a/1"})
        actual = record(headers={"date": "Tue, 02 Jan 2024 00:00:00 GMT", "location": "/a/2"})
        assert match_records(expected, actual)

    def test_ignored_header_must_exist(self):
        expected = record(headers={"date": "Mon, 01 Jan 2024 00:00:00 GMT"})
        with pytest.raises(PactMatchError) as exc:
            match_records(expected, record(headers={}))
        assert '"response.headers.date" not found in actual object.' in str(exc.value)

    def test_headers_skipped_when_permissive(self):
        expected = record(headers={"x-version": "1"})
        assert match_records(expected, record(headers={"x-version": "2"}), strict=False)

    def test_accepts_records_and_dicts(self, get_record):
        assert match_records(get_record, get_record.to_dict())


class TestSchemaMatching:
    """Tests for "$"-prefixed schema keys."""

    def test_schema_failure_message(self):
        expected = record()
        expected["response"]["$body"] = NAME_SCHEMA
        actual = record(body={"name": 123})
        with pytest.raises(PactMatchError) as exc:
            match_records(expected, actual)
        assert "data/name must be string" in str(exc.value)
        assert exc.value.key_path == "response.body"
        assert exc.value.schema == NAME_SCHEMA

    def test_schema_replaces_object_match(self):
        expected = record(body={"name": "recorded"})
        expected["response"]["$body"] = NAME_SCHEMA
        assert match_records(expected, record(body={"name": "live"}))

    def test_schema_and_object(self):
        expected = record(body={"name": "recorded"})
        expected["response"]["$body"] = NAME_SCHEMA
        with pytest.raises(PactMatchError):
            match_records(expected, record(body={"name": "live"}), match_schema_and_object=True)

    def test_schema_checked_when_permissive(self):
        expected = record()
        expected["response"]["$body"] = NAME_SCHEMA
        with pytest.raises(PactMatchError):
            match_records(expected, record(body={"name": 1}), strict=False)

    def test_strict_schema_rejects_additional_properties(self):
        expected = record()
        expected["response"]["$body"] = NAME_SCHEMA
        actual = record(body={"name": "a", "extra": 1})
        with pytest.raises(PactMatchError) as exc:
            match_records(expected, actual)
        assert "must NOT have additional properties" in str(exc.value)
        assert match_records(expected, actual, strict=False)

    def test_no_schema_matcher(self):
        matcher = DefaultPactMatcher(options=MatchOptions(schema_matcher=None))
        with pytest.raises(PactMatchError) as exc:
            matcher.match({"body": 1}, {"$body": {"type": "number"}})
        assert "No schema matcher registered" in str(exc.value)

    def test_json_schema_keywords_not_schema_keys(self):
        matcher = DefaultPactMatcher()
        assert matcher.match({"$schema": "x", "a": 1}, {"$schema": "x", "a": 1})


class TestJsonSchemaMatcher:
    """Tests for JsonSchemaMatcher."""

    def test_valid(self):
        assert JsonSchemaMatcher().match({"name": "a"}, NAME_SCHEMA)

    def test_required(self):
        schema = dict(NAME_SCHEMA, required=["name"])
        with pytest.raises(ValueError) as exc:
            JsonSchemaMatcher().match({}, schema)
        assert "data must have required property 'name'" in str(exc.value)

    def test_schema_not_modified(self):
        schema = {"type": "object", "properties": {}}
        JsonSchemaMatcher().match({}, schema, strict=True)
        assert "additionalProperties" not in schema

    def test_empty_schema(self):
        with pytest.raises(ValueError):
            JsonSchemaMatcher().match({}, None)


class TestDefaultPactMatcher:
    """Tests for DefaultPactMatcher and property matchers."""

    def test_list_lengths(self):
        with pytest.raises(PactMatchError) as exc:
            DefaultPactMatcher().match({"items": [1, 2]}, {"items": [1]})
        assert 'Arrays at "items" have different lengths.' in str(exc.value)

    def test_primitive_array_order(self):
        matcher = DefaultPactMatcher()
        with pytest.raises(PactMatchError):
            matcher.match([2, 1], [1, 2])
        options = MatchOptions(ignore_primitive_array_order=True)
        assert matcher.match([2, 1], [1, 2], options)

    def test_type_mismatch(self):
        with pytest.raises(PactMatchError) as exc:
            DefaultPactMatcher().match({"a": {"b": 1}}, {"a": [1]})
        assert 'Type mismatch at "a"' in str(exc.value)

    def test_bool_is_not_number(self):
        with pytest.raises(PactMatchError):
            DefaultPactMatcher().match({"a": True}, {"a": 1})

    def test_body_matcher_same_type_id(self):
        matcher = DefaultPactMatcher()
        assert matcher.match({"body": {"id": "2"}}, {"body": {"id": "1"}})
        with pytest.raises(PactMatchError) as exc:
            matcher.match({"body": {"id": 2}}, {"body": {"id": "1"}})
        assert "Values are not of same type" in str(exc.value)

    def test_body_matcher_ignored_fields(self):
        expected = {"body": {"self": "https://a/1", "statistics": {"totalPages": 2}, "password": "x"}}
        actual = {"body": {"self": "https://b/1", "statistics": None, "password": "y"}}
        assert DefaultPactMatcher().match(actual, expected)

    def test_body_matcher_ignored_field_missing(self):
        expected = {"body": {"self": "https://a/1"}}
        with pytest.raises(PactMatchError) as exc:
            DefaultPactMatcher().match({"body": {}}, expected)
        assert exc.value.key_path == "body.self"

    def test_iso_dates(self):
        matcher = DefaultPactMatcher()
        expected = {"body": {"creationTime": "2024-01-02T03:04:05.123Z"}}
        assert matcher.match({"body": {"creationTime": "2024-05-06T07:08:09+02:00"}}, expected)
        with pytest.raises(PactMatchError):
            matcher.match({"body": {"creationTime": "yesterday"}}, expected)

    def test_custom_property_matcher(self):
        matcher = DefaultPactMatcher()
        matcher.add_property_matcher("volatile", IgnoreMatcher())
        assert matcher.match({"volatile": 2}, {"volatile": 1})
        matcher.remove_property_matcher("volatile")
        with pytest.raises(PactMatchError):
            matcher.match({"volatile": 2}, {"volatile": 1})

    def test_parse_iso_date(self):
        assert parse_iso_date("2024-01-02T03:04:05.123456789Z").microsecond == 123456
        assert parse_iso_date("nope") is None


class TestMatchErrorContext:
    """Tests for PactMatchError.with_context()."""

    def test_with_context(self):
        expected = PactRecord.from_dict(record(status=200))
        actual = PactRecord.from_dict(record(status=500))
        with pytest.raises(PactMatchError) as exc:
            RecordMatcher().match(expected, actual)
        error = exc.value.with_context("my_pact", 3)
        assert str(error).endswith("(pact: my_pact, record: 3)")
        assert error.pact_id == "my_pact"
        assert error.record_index == 3
