"""Tests for pact_sdk.url module."""

import pytest

from pact_sdk.errors import PactConfigError
from pact_sdk.url import (
    is_absolute_url,
    normalize_url,
    relative_url,
    remove_base_url,
    strip_url_parameters,
    tenant_url,
    update_urls,
    url_for_base_url,
    validate_base_url,
)


class TestAbsoluteUrls:
    """Tests for absolute url detection and validation."""

    def test_is_absolute(self):
        assert is_absolute_url("https://example.com/path")
        assert is_absolute_url("HTTP://example.com")
        assert not is_absolute_url("/path")
        assert not is_absolute_url(None)

    def test_validate_base_url_accepts_none(self):
        validate_base_url(None)
        validate_base_url("https://example.com")

    def test_validate_base_url_rejects_relative(self):
        with pytest.raises(PactConfigError):
            validate_base_url("example.com")


class TestRelativeUrl:
    """Tests for relative_url()."""

    def test_path_and_query(self):
        assert relative_url("http://example.com/my/path?x=y") == "/my/path?x=y"

    def test_root(self):
        assert relative_url("http://example.com") == "/"

    def test_relative_unchanged(self):
        assert relative_url("/my/path") == "/my/path"


class TestRemoveBaseUrl:
    """Tests for remove_base_url()."""

    def test_strip(self):
        result = remove_base_url("https://example.com/inventory?a=1", "https://example.com")
        assert result == "/inventory?a=1"

    def test_trailing_slash_ignored(self):
        assert remove_base_url("https://example.com/x", "https://example.com/") == "/x"

    def test_equal_to_base(self):
        assert remove_base_url("https://example.com/", "https://example.com") == "/"

    def test_other_host_unchanged(self):
        url = "https://other.com/x"
        assert remove_base_url(url, "https://example.com") == url

    def test_host_prefix_not_stripped(self):
        url = "https://example.com.evil/x"
        assert remove_base_url(url, "https://example.com") == url


class TestNormalizeUrl:
    """Tests for normalize_url() and url_for_base_url()."""

    def test_normalize_with_base(self):
        assert normalize_url("https://example.com/a", "https://example.com") == "/a"

    def test_normalize_other_host(self):
        assert normalize_url("https://other.com/a?b=c", "https://example.com") == "/a?b=c"

    def test_url_for_base_url(self):
        assert url_for_base_url("https://example.com", "/a") == "https://example.com/a"
        assert url_for_base_url("https://example.com", "a") == "https://example.com/a"
        assert url_for_base_url(None, "/a") == "/a"


class TestStripUrlParameters:
    """Tests for strip_url_parameters()."""

    def test_removes_named_parameters(self):
        url = "/measurements?dateFrom=2024-01-01&source=1&dateTo=2024-01-02"
        assert strip_url_parameters(url, ["dateFrom", "dateTo"]) == "/measurements?source=1"

    def test_all_removed(self):
        assert strip_url_parameters("/events?_=123", ["_"]) == "/events"

    def test_keeps_encoding_and_order(self):
        url = "/inventory?query=name%20eq%20%27x%27&nocache=1&pageSize=5"
        assert strip_url_parameters(url, ["nocache"]) == "/inventory?query=name%20eq%20%27x%27&pageSize=5"

    def test_unchanged(self):
        assert strip_url_parameters("/a?b=c", []) == "/a?b=c"
        assert strip_url_parameters("/a", ["b"]) == "/a"
        assert strip_url_parameters(None, ["b"]) is None


class TestTenantUrls:
    """Tests for tenant_url() and update_urls()."""

    def test_tenant_url_replaces_first_label(self):
        assert tenant_url("https://abc.eu-latest.example.com", "t100") == "https://t100.eu-latest.example.com"

    def test_tenant_url_requires_both(self):
        assert tenant_url("https://example.com", None) is None

    def test_update_urls(self):
        value = '{"self": "https://old.example.com/inventory/1"}'
        result = update_urls(
            value,
            {"baseUrl": "https://old.example.com"},
            {"baseUrl": "https://new.example.com"},
        )
        assert result == '{"self": "https://new.example.com/inventory/1"}'

    def test_update_urls_without_target(self):
        assert update_urls("abc", {"baseUrl": "https://a.com"}, {}) == "abc"
