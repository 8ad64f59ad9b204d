"""Tests for pact_sdk.keypath module."""

from pact_sdk.keypath import (
    delete_value,
    find_key_paths,
    format_key_path,
    get_value,
    has_value,
    parse_key_path,
    resolve_key_path,
    resolve_key_paths,
    set_value,
)


class TestParseKeyPath:
    """Tests for parse_key_path()."""

    def test_dotted(self):
        assert parse_key_path("request.headers.Authorization") == ["request", "headers", "Authorization"]

    def test_indices(self):
        assert parse_key_path("body.items[1].name") == ["body", "items", 1, "name"]

    def test_quoted(self):
        assert parse_key_path('headers["content-type"]') == ["headers", "content-type"]

    def test_empty(self):
        assert parse_key_path(None) == []
        assert parse_key_path("") == []

    def test_format_round_trip(self):
        assert format_key_path(["body", "items", 1, "name"]) == "body.items[1].name"


class TestResolveKeyPath:
    """Tests for resolve_key_path() and friends."""

    def test_case_insensitive(self):
        obj = {"Request": {"Headers": {"X-Token": "a"}}}
        assert resolve_key_path(obj, "request.headers.x-token") == ["Request", "Headers", "X-Token"]

    def test_case_sensitive(self):
        obj = {"Request": {}}
        assert resolve_key_path(obj, "request", ignore_case=False) is None

    def test_missing(self):
        assert resolve_key_path({"a": {}}, "a.b.c") is None

    def test_list_index(self):
        obj = {"items": [{"n": 1}, {"n": 2}]}
        assert resolve_key_path(obj, "items[1].n") == ["items", 1, "n"]
        assert resolve_key_path(obj, "items[5].n") is None

    def test_fan_out(self):
        obj = {"users": [{"password": "a"}, {"name": "b"}, {"password": "c"}]}
        assert resolve_key_paths(obj, "users.password") == [
            ["users", 0, "password"],
            ["users", 2, "password"],
        ]

    def test_find_key_paths(self):
        obj = {"a": {"secret": 1, "b": [{"Secret": 2}]}}
        assert find_key_paths(obj, "secret") == [["a", "secret"], ["a", "b", 0, "Secret"]]


class TestValues:
    """Tests for get/set/delete helpers."""

    def test_get_value(self):
        obj = {"a": {"b": [10, 20]}}
        assert get_value(obj, "a.b[1]") == 20
        assert get_value(obj, "a.c", default="x") == "x"

    def test_has_value_with_none(self):
        assert has_value({"a": None}, "a")
        assert not has_value({"a": None}, "b")

    def test_set_and_delete(self):
        obj = {"a": {"b": 1}}
        set_value(obj, ["a", "b"], 2)
        assert obj == {"a": {"b": 2}}
        delete_value(obj, ["a", "b"])
        assert obj == {"a": {}}
