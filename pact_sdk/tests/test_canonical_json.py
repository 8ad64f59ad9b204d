"""Tests for pact_sdk.canonical module."""

from datetime import datetime
from decimal import Decimal

import pytest

from pact_sdk.canonical import (
    body_shape,
    canonicalize_json,
    fingerprint,
    parse_body,
    request_key,
)


class TestCanonicalizeJson:
    """Tests for canonicalize_json()."""

    def test_key_order_irrelevant(self):
        assert canonicalize_json({"b": 1, "a": 2}) == canonicalize_json({"a": 2, "b": 1})

    def test_compact(self):
        assert canonicalize_json({"a": [1, 2]}) == '{"a":[1,2]}'

    def test_special_types(self):
        value = {"when": datetime(2024, 1, 2, 3, 4, 5), "amount": Decimal("1.5")}
        assert canonicalize_json(value) == '{"amount":1.5,"when":"2024-01-02T03:04:05"}'

    def test_unsupported_type(self):
        with pytest.raises(TypeError):
            canonicalize_json({"x": object()})


class TestFingerprint:
    """Tests for fingerprint()."""

    def test_stable(self):
        assert fingerprint({"a": 1, "b": 2}) == fingerprint({"b": 2, "a": 1})

    def test_length(self):
        assert len(fingerprint("x")) == 16
        assert len(fingerprint("x", length=8)) == 8

    def test_differs(self):
        assert fingerprint({"a": 1}) != fingerprint({"a": 2})


class TestBodyShape:
    """Tests for body_shape()."""

    def test_values_ignored(self):
        assert body_shape({"name": "a", "tags": [1, 2]}) == {"name": "str", "tags": ["number"]}
        assert body_shape({"name": "a"}) == body_shape({"name": "b"})

    def test_scalars(self):
        assert body_shape(None) == "null"
        assert body_shape(True) == "bool"
        assert body_shape(1.5) == "number"

    def test_mixed_list(self):
        assert body_shape([1, "a", 2]) == ["number", "str"]


class TestParseBody:
    """Tests for parse_body() and request_key()."""

    def test_json_string(self):
        assert parse_body('{"a": 1}') == {"a": 1}
        assert parse_body(b"[1, 2]") == [1, 2]

    def test_non_json(self):
        assert parse_body("plain text") == "plain text"
        assert parse_body("{broken") == "{broken"
        assert parse_body({"a": 1}) == {"a": 1}

    def test_request_key(self):
        assert request_key("get", "/a") == "GET /a"
        assert request_key(None, None) == "GET "
