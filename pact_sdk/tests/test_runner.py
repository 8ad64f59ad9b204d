"""Tests for pact_sdk.runner module."""

import json

import pytest
import requests
import responses

from pact_sdk.errors import PactConfigError
from pact_sdk.pact import Pact
from pact_sdk.record import PactRecord
from pact_sdk.runner import PactRunner, RecordResult, RunReport, _readable_path

RECORDED_URL = "https://recorded.example.com"
TARGET_URL = "https://target.example.com"


def create_and_get_pact(id="create_device", **info):
    info.setdefault("baseUrl", RECORDED_URL)
    return Pact(id, info, [
        PactRecord(
            request={
                "method": "POST",
                "url": f"{RECORDED_URL}/inventory/managedObjects",
                "headers": {"Authorization": "Basic ****", "Content-Type": "application/json"},
                "body": {"name": "device", "link": f"{RECORDED_URL}/x"},
            },
            response={"status": 201, "body": {"id": "42", "name": "device"}},
        ),
        PactRecord(
            request={"method": "GET", "url": "/inventory/managedObjects/42"},
            response={"status": 200, "body": {"id": "42", "name": "device"}},
        ),
    ])


@pytest.fixture
def runner(file_adapter):
    return PactRunner(file_adapter, TARGET_URL)


class TestPactRunner:
    """Tests for PactRunner."""

    def test_requires_base_url(self, file_adapter):
        with pytest.raises(PactConfigError):
            PactRunner(file_adapter, None)
        with pytest.raises(PactConfigError):
            PactRunner(file_adapter, "target.example.com")

    @responses.activate
    def test_replay_maps_created_ids(self, runner, file_adapter):
        responses.add(responses.POST, f"{TARGET_URL}/inventory/managedObjects",
                      json={"id": "77", "name": "device"}, status=201)
        responses.add(responses.GET, f"{TARGET_URL}/inventory/managedObjects/77",
                      json={"id": "77", "name": "device"})
        file_adapter.save_pact(create_and_get_pact())

        report = runner.run()

        assert report.passed
        assert report.total == 2
        assert report.passed_count == 2
        assert [r.url for r in report.results] == [
            "/inventory/managedObjects",
            "/inventory/managedObjects/77",
        ]

        sent = responses.calls[0].request
        assert "Authorization" not in sent.headers
        assert json.loads(sent.body) == {"name": "device", "link": f"{TARGET_URL}/x"}

    @responses.activate
    def test_created_ids_replaced_as_whole_values(self, runner, file_adapter):
        responses.add(responses.POST, f"{TARGET_URL}/inventory/managedObjects",
                      json={"id": "77"}, status=201)
        responses.add(responses.GET, f"{TARGET_URL}/inventory/managedObjects/77", json={})
        responses.add(responses.GET, f"{TARGET_URL}/inventory/managedObjects/10", json={})
        responses.add(responses.PUT, f"{TARGET_URL}/inventory/managedObjects/77", json={})
        file_adapter.save_pact(Pact("short_ids", {"baseUrl": RECORDED_URL}, [
            PactRecord(
                request={"method": "POST", "url": "/inventory/managedObjects", "body": {"name": "d"}},
                response={"status": 201, "body": {"id": "1"}},
            ),
            PactRecord(request={"method": "GET", "url": "/inventory/managedObjects/1"}, response={"status": 200}),
            PactRecord(request={"method": "GET", "url": "/inventory/managedObjects/10"}, response={"status": 200}),
            PactRecord(
                request={
                    "method": "PUT",
                    "url": "/inventory/managedObjects/1",
                    "body": {"name": "device 1", "parent": {"id": "1"}, "count": 21},
                },
                response={"status": 200},
            ),
        ]))

        runner.run()

        assert [call.request.url for call in responses.calls] == [
            f"{TARGET_URL}/inventory/managedObjects",
            f"{TARGET_URL}/inventory/managedObjects/77",
            f"{TARGET_URL}/inventory/managedObjects/10",
            f"{TARGET_URL}/inventory/managedObjects/77",
        ]
        assert json.loads(responses.calls[3].request.body) == {
            "name": "device 1",
            "parent": {"id": "77"},
            "count": 21,
        }

    @responses.activate
    def test_mismatch_reported(self, runner, file_adapter):
        responses.add(responses.POST, f"{TARGET_URL}/inventory/managedObjects",
                      json={"id": "77", "name": "device"}, status=201)
        responses.add(responses.GET, f"{TARGET_URL}/inventory/managedObjects/77",
                      json={"id": "77", "name": "other"})
        file_adapter.save_pact(create_and_get_pact())

        report = runner.run(["create_device"])

        assert not report.passed
        failure = report.failures()[0]
        assert failure.index == 1
        assert failure.key_path == "response.body.name"
        assert "(pact: create_device, record: 1)" in failure.error
        assert "body.name: 'device' -> 'other'" in failure.differences

        markdown = report.to_markdown()
        assert "# Pact Run Report" in markdown
        assert "## Failures" in markdown
        assert "### create_device" in markdown
        assert "FAILED" in markdown

    @responses.activate
    def test_request_failure(self, runner, file_adapter):
        responses.add(responses.POST, f"{TARGET_URL}/inventory/managedObjects",
                      body=requests.exceptions.ConnectionError("refused"))
        pact = create_and_get_pact()
        pact.records = pact.records[:1]
        file_adapter.save_pact(pact)

        report = runner.run()
        assert report.failed_count == 1
        assert report.results[0].error.startswith("Request failed")

    def test_missing_pact(self, runner):
        report = runner.run(["missing"])
        assert report.errors == ["Pact not found: missing"]
        assert not report.passed
        assert "## Errors" in report.to_markdown()

    def test_post_without_body_skipped(self, runner):
        pact = Pact("no_body", records=[
            PactRecord(request={"method": "POST", "url": "/a"}, response={"status": 201}),
        ])
        results = runner.run_pact(pact)
        assert results[0].skipped
        assert results[0].passed

    @responses.activate
    def test_method_and_path_filters(self, file_adapter):
        responses.add(responses.GET, f"{TARGET_URL}/inventory/managedObjects/42",
                      json={"id": "42", "name": "device"})
        file_adapter.save_pact(create_and_get_pact())
        runner = PactRunner(file_adapter, TARGET_URL, methods=["get"], paths=["/inventory"])

        report = runner.run()
        assert report.total == 1
        assert report.results[0].method == "GET"
        assert report.passed

    def test_consumer_filter(self, file_adapter):
        file_adapter.save_pact(create_and_get_pact(consumer={"name": "web"}))
        runner = PactRunner(file_adapter, TARGET_URL, consumer="mobile")
        assert runner.run().total == 0


class TestRunReport:
    """Tests for RunReport."""

    def test_counts(self):
        report = RunReport(base_url=TARGET_URL, results=[
            RecordResult("p", 0, "GET", "/a", passed=True),
            RecordResult("p", 1, "POST", "/b", passed=True, skipped=True),
            RecordResult("p", 2, "GET", "/c", passed=False, error="boom | bang"),
        ])
        assert report.passed_count == 1
        assert report.skipped_count == 1
        assert report.failed_count == 1
        assert not report.passed
        assert report.to_dict()["results"][2]["error"] == "boom | bang"
        assert "boom \\| bang" in report.to_markdown()

    def test_passed_markdown(self):
        markdown = RunReport(base_url=TARGET_URL).to_markdown()
        assert "PASSED" in markdown
        assert "## Failures" not in markdown

    def test_readable_path(self):
        assert _readable_path("root['body']['total']") == "body.total"
