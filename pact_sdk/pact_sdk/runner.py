"""
PactRunner - replay stored pacts against a live system.

Every record of a pact is sent to the target base url and the live
response is validated against the record. Ids of objects created by POST
requests are mapped to the ids created during the run and substituted in
later urls and bodies.

Usage:
    pact-run --folder ./pacts --base-url https://tenant.example.com
"""

import argparse
import json
import logging
import re
import sys
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

import requests
from deepdiff import DeepDiff

from pact_sdk.adapter import FilePactAdapter, PactAdapter
from pact_sdk.canonical import parse_body
from pact_sdk.config import load_config, parse_list
from pact_sdk.errors import PactConfigError, PactError, PactMatchError
from pact_sdk.matcher import RecordMatcher
from pact_sdk.pact import Pact
from pact_sdk.preprocessor import PactPreprocessor
from pact_sdk.record import PactRecord, extract_created_object
from pact_sdk.url import remove_base_url, update_urls, url_for_base_url, validate_base_url

logger = logging.getLogger(__name__)

# request headers never replayed
OMITTED_HEADERS = frozenset([
    "authorization",
    "x-xsrf-token",
    "cookie",
    "host",
    "content-length",
    "connection",
    "transfer-encoding",
    "accept-encoding",
])


@dataclass
class RecordResult:
    """Result of replaying one record."""
    pact_id: str
    index: int
    method: str
    url: str
    passed: bool
    skipped: bool = False
    status: Optional[int] = None
    error: Optional[str] = None
    key_path: Optional[str] = None
    differences: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "pact_id": self.pact_id,
            "index": self.index,
            "method": self.method,
            "url": self.url,
            "passed": self.passed,
            "skipped": self.skipped,
            "status": self.status,
            "error": self.error,
            "key_path": self.key_path,
            "differences": self.differences,
        }


@dataclass
class RunReport:
    """Results of a runner invocation."""
    base_url: str
    results: List[RecordResult] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    duration_seconds: float = 0.0

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def passed_count(self) -> int:
        return sum(1 for r in self.results if r.passed and not r.skipped)

    @property
    def failed_count(self) -> int:
        return sum(1 for r in self.results if not r.passed)

    @property
    def skipped_count(self) -> int:
        return sum(1 for r in self.results if r.skipped)

    @property
    def passed(self) -> bool:
        return self.failed_count == 0 and not self.errors

    def failures(self) -> List[RecordResult]:
        return [r for r in self.results if not r.passed]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "base_url": self.base_url,
            "passed": self.passed,
            "total": self.total,
            "passed_count": self.passed_count,
            "failed_count": self.failed_count,
            "skipped_count": self.skipped_count,
            "duration_seconds": self.duration_seconds,
            "errors": self.errors,
            "results": [r.to_dict() for r in self.results],
        }

    def to_markdown(self) -> str:
        """Generate markdown report."""
        lines = [
            "# Pact Run Report",
            "",
            f"**Target:** {self.base_url}",
            "",
            "## Summary",
            "",
            "| Metric | Value |",
            "|--------|-------|",
            f"| Records | {self.total} |",
            f"| Passed | {self.passed_count} |",
            f"| Failed | {self.failed_count} |",
            f"| Skipped | {self.skipped_count} |",
            f"| Duration | {self.duration_seconds:.2f}s |",
            "",
            f"## Overall Status: {'✅ PASSED' if self.passed else '❌ FAILED'}",
            "",
        ]

        failures = self.failures()
        if failures:
            lines.append("## Failures")
            lines.append("")

            by_pact: Dict[str, List[RecordResult]] = {}
            for result in failures:
                by_pact.setdefault(result.pact_id, []).append(result)

            for pact_id, results in by_pact.items():
                lines.append(f"### {pact_id}")
                lines.append("")
                lines.append("| Record | Request | Path | Error |")
                lines.append("|--------|---------|------|-------|")
                for result in results:
                    error = (result.error or "").replace("|", "\\|").replace("\n", " ")
                    lines.append(
                        f"| {result.index} | `{result.method} {result.url}` "
                        f"| `{result.key_path or ''}` | {error} |"
                    )
                    for diff in result.differences:
                        lines.append(f"|  |  |  | {diff} |")
                lines.append("")

        if self.errors:
            lines.append("## Errors")
            lines.append("")
            for error in self.errors:
                lines.append(f"- {error}")
            lines.append("")

        return "\n".join(lines)


class PactRunner:
    """
    Replays pacts from an adapter against a base url.

    Usage:
        runner = PactRunner(FilePactAdapter("./pacts"), "https://tenant.example.com")
        report = runner.run()
        if not report.passed:
            print(report.to_markdown())
    """

    def __init__(
        self,
        adapter: PactAdapter,
        base_url: str,
        tenant: Optional[str] = None,
        matcher: Optional[RecordMatcher] = None,
        preprocessor: Optional[PactPreprocessor] = None,
        timeout: Optional[float] = 60.0,
        methods: Optional[Iterable[str]] = None,
        paths: Optional[Iterable[str]] = None,
        consumer: Optional[str] = None,
        producer: Optional[str] = None,
        http_session: Optional[requests.Session] = None,
    ):
        validate_base_url(base_url)
        if not base_url:
            raise PactConfigError("base url", base_url)
        self.adapter = adapter
        self.base_url = base_url.rstrip("/")
        self.tenant = tenant
        self.matcher = matcher or RecordMatcher()
        self.preprocessor = preprocessor or PactPreprocessor()
        self.timeout = timeout
        self.methods = [m.upper() for m in methods or []]
        self.paths = list(paths or [])
        self.consumer = consumer
        self.producer = producer
        self.http = http_session or requests.Session()
        self._id_mapper: Dict[str, str] = {}

    def run(self, ids: Optional[Iterable[str]] = None) -> RunReport:
        """
        Replay pacts, all pacts of the adapter if ids is None.

        Returns:
            RunReport with one RecordResult per record
        """
        start_time = time.time()
        report = RunReport(base_url=self.base_url)

        if ids is None:
            pacts = list(self.adapter.load_pacts().values())
        else:
            pacts = []
            for id in ids:
                try:
                    pact = self.adapter.load_pact(id)
                except PactError as e:
                    report.errors.append(str(e))
                    continue
                if pact is None:
                    report.errors.append(f"Pact not found: {id}")
                    continue
                pacts.append(pact)

        for pact in pacts:
            if not self._is_selected(pact):
                logger.debug(f"Skipping pact {pact.id}, consumer or producer does not match")
                continue
            logger.info(f"Running pact {pact.id} ({len(pact.records)} records)")
            report.results.extend(self.run_pact(pact))

        report.duration_seconds = time.time() - start_time
        logger.info(
            f"Run finished: {report.passed_count} passed, {report.failed_count} failed, "
            f"{report.skipped_count} skipped"
        )
        return report

    def run_pact(self, pact: Pact) -> List[RecordResult]:
        """Replay all records of pact in order."""
        self._id_mapper = {}
        results = []
        for index, record in enumerate(pact.records):
            if not self._is_record_selected(record):
                continue
            results.append(self.replay(pact, index, record))
        return results

    def replay(self, pact: Pact, index: int, record: PactRecord) -> RecordResult:
        """Send one record and validate the response."""
        info = pact.info.to_dict()
        url = self._create_url(record, pact)
        result = RecordResult(pact.id, index, record.method, url or "", passed=True)

        if not url:
            result.skipped = True
            result.error = "Skipping request without url"
            return result

        body = self._create_body(record, info)
        if record.method == "POST" and not body:
            result.skipped = True
            result.error = f"Skipping POST request without body: {url}"
            logger.debug(result.error)
            return result

        headers = self._create_headers(record)
        try:
            response = self.http.request(
                record.method,
                url_for_base_url(self.base_url, url),
                headers=headers,
                data=body.encode("utf-8") if body else None,
                timeout=self.timeout,
                allow_redirects=False,
            )
        except requests.exceptions.RequestException as e:
            result.passed = False
            result.error = f"Request failed: {e}"
            return result

        result.status = response.status_code
        self._map_created_id(record, response)

        expected = record.copy()
        expected.request["url"] = url
        # omitted headers are never sent
        if "headers" in expected.request:
            expected.request["headers"] = headers
        if body:
            expected.request["body"] = parse_body(body)
        actual = PactRecord.from_live_response(response)
        actual.request["url"] = url
        self.preprocessor.apply(actual, pact.info.preprocessor)

        strict = pact.info.strict_matching if pact.info.strict_matching is not None else True
        try:
            self.matcher.match(expected, actual, strict=strict, base_url=self.base_url)
        except PactMatchError as e:
            e.with_context(pact.id, index)
            result.passed = False
            result.error = str(e)
            result.key_path = e.key_path
            result.differences = _differences(expected.response, actual.response)
        return result

    # =========================================================================
    # Request building
    # =========================================================================

    def _is_selected(self, pact: Pact) -> bool:
        if self.consumer is not None and _name(pact.info.consumer) != self.consumer:
            return False
        if self.producer is not None and _name(pact.info.producer) != self.producer:
            return False
        return True

    def _is_record_selected(self, record: PactRecord) -> bool:
        if self.methods and record.method not in self.methods:
            return False
        if self.paths and record.url is not None:
            if not any(record.url.startswith(p) for p in self.paths):
                return False
        return True

    def _create_url(self, record: PactRecord, pact: Pact) -> Optional[str]:
        url = record.url
        if not url:
            return None
        for base in (pact.info.base_url, self.base_url):
            url = remove_base_url(url, base)
        return self._update_ids(url)

    def _create_headers(self, record: PactRecord) -> Dict[str, Any]:
        headers = record.request.get("headers") or {}
        return {k: v for k, v in headers.items() if str(k).lower() not in OMITTED_HEADERS}

    def _create_body(self, record: PactRecord, info: Dict[str, Any]) -> Optional[str]:
        body = record.request.get("body")
        if body is None or body == "":
            return None
        text = body if isinstance(body, str) else json.dumps(body)
        text = self._update_ids(text)
        return update_urls(text, info, {"baseUrl": self.base_url, "tenant": self.tenant})

    def _update_ids(self, value: str) -> str:
        """Replace recorded ids that form a whole path segment, query value or JSON string."""
        for old, new in self._id_mapper.items():
            pattern = re.compile(r'(?<![^/=&"])' + re.escape(old) + r'(?![^/?&#"])')
            value = pattern.sub(lambda _: new, value)
        return value

    def _map_created_id(self, record: PactRecord, response: requests.Response) -> None:
        created = record.created_object or extract_created_object(record.request, record.response)
        if record.method != "POST" or not created:
            return
        try:
            body = response.json()
        except ValueError:
            return
        new_id = body.get("id") if isinstance(body, dict) else None
        if new_id:
            logger.debug(f"Mapping created object {created} -> {new_id}")
            self._id_mapper[created] = str(new_id)


def _name(value: Any) -> Optional[str]:
    if isinstance(value, dict):
        return value.get("name")
    return value


def _differences(expected: Dict[str, Any], actual: Dict[str, Any]) -> List[str]:
    """Readable list of differences of status and body."""
    golden = {"status": expected.get("status"), "body": expected.get("body")}
    candidate = {"status": actual.get("status"), "body": actual.get("body")}
    diff = DeepDiff(golden, candidate, ignore_order=True, verbose_level=2)

    lines = []
    for change_type, changes in diff.items():
        if change_type in ("values_changed", "type_changes"):
            for path, change in changes.items():
                lines.append(
                    f"{_readable_path(path)}: {change.get('old_value')!r} -> {change.get('new_value')!r}"
                )
        elif change_type in ("dictionary_item_added", "iterable_item_added"):
            for path in changes:
                lines.append(f"{_readable_path(path)}: added")
        elif change_type in ("dictionary_item_removed", "iterable_item_removed"):
            for path in changes:
                lines.append(f"{_readable_path(path)}: removed")
    return lines


def _readable_path(deepdiff_path: str) -> str:
    # DeepDiff uses format like "root['body']['total']"
    path = deepdiff_path.replace("root", "").replace("']['", ".").replace("['", "").replace("']", "")
    return path[1:] if path.startswith(".") else path


def main():
    """CLI entry point for pact-run."""
    parser = argparse.ArgumentParser(
        description="Replay recorded pacts against a live system",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run all pacts of a folder
  pact-run --folder ./pacts --base-url https://tenant.example.com

  # Run selected pacts, GET requests only, and write a report
  pact-run --base-url https://tenant.example.com --methods GET --output ./reports my_test
        """,
    )
    parser.add_argument("ids", nargs="*", help="Pact ids to run (default: all)")
    parser.add_argument("--config", "-c", type=str, help="Path to pact.yaml configuration file")
    parser.add_argument("--folder", "-f", type=str, help="Folder of pact files")
    parser.add_argument("--base-url", "-b", type=str, help="Base url of the target system")
    parser.add_argument("--tenant", "-t", type=str, help="Tenant of the target system")
    parser.add_argument("--methods", type=str, help="Comma separated methods to replay")
    parser.add_argument("--paths", type=str, help="Comma separated path prefixes to replay")
    parser.add_argument("--consumer", type=str, help="Only run pacts of this consumer")
    parser.add_argument("--producer", type=str, help="Only run pacts of this producer")
    parser.add_argument("--timeout", type=float, help="Request timeout in seconds")
    parser.add_argument("--output", "-o", type=Path, help="Output directory for reports")
    parser.add_argument("--json", action="store_true", help="Also write a JSON report")
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose output")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    overrides = {
        "folder": args.folder,
        "base_url": args.base_url,
        "tenant": args.tenant,
        "timeout": args.timeout,
    }
    try:
        config = load_config(args.config, **{k: v for k, v in overrides.items() if v is not None})
        if not config.base_url:
            print("Error: --base-url or PACT_BASE_URL is required")
            sys.exit(1)
        runner = PactRunner(
            FilePactAdapter(config.folder),
            config.base_url,
            tenant=config.tenant,
            preprocessor=PactPreprocessor(config.preprocessor_options()),
            timeout=config.timeout,
            methods=parse_list(args.methods) if args.methods else None,
            paths=parse_list(args.paths) if args.paths else None,
            consumer=args.consumer,
            producer=args.producer,
        )
    except (PactConfigError, OSError) as e:
        print(f"Error: {e}")
        sys.exit(1)

    print(f"Running pacts from {config.folder} against {config.base_url}")
    print("-" * 60)

    report = runner.run(args.ids or None)

    print("\n" + "=" * 60)
    print("PACT RUN SUMMARY")
    print("=" * 60)
    print(f"Records:  {report.total}")
    print(f"Passed:   {report.passed_count}")
    print(f"Failed:   {report.failed_count}")
    print(f"Skipped:  {report.skipped_count}")
    print(f"Duration: {report.duration_seconds:.2f}s")
    print("=" * 60)

    for failure in report.failures():
        print(f"  - {failure.error}")
    for error in report.errors:
        print(f"  - {error}")

    if args.output:
        args.output.mkdir(parents=True, exist_ok=True)
        md_path = args.output / "report.md"
        md_path.write_text(report.to_markdown())
        print(f"\nMarkdown report: {md_path}")
        if args.json:
            json_path = args.output / "report.json"
            json_path.write_text(json.dumps(report.to_dict(), indent=2))
            print(f"JSON report: {json_path}")

    if report.passed:
        print("\n✅ PASSED")
        sys.exit(0)
    else:
        print("\n❌ FAILED")
        sys.exit(1)


if __name__ == "__main__":
    main()
