"""
Exception types raised by pact_sdk.

Every error carries enough context (pact id, record index, key path) to
locate the offending fixture without re-running with extra logging.
"""

from typing import Any, Optional


class PactError(Exception):
    """Base class for all pact_sdk errors."""


class PactConfigError(PactError):
    """Raised when an unsupported mode, level or option value is consumed."""

    def __init__(self, name: str, value: Any, supported: Optional[list] = None):
        self.name = name
        self.value = value
        self.supported = supported or []
        message = f"Unsupported {name}: {value!r}"
        if self.supported:
            message += f" (supported: {', '.join(str(s) for s in self.supported)})"
        super().__init__(message)


class PactIdError(PactError):
    """Raised when a pact identifier is empty after normalization."""

    def __init__(self, value: Any):
        self.value = value
        super().__init__(f"Invalid pact id: {value!r}")


class PactLoadError(PactError):
    """Raised when a stored pact exists but cannot be parsed."""

    def __init__(self, path: Any, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Failed to load pact from {path}: {reason}")


class PactNotFoundError(PactError):
    """Raised when no pact or no record is available for a request."""

    def __init__(
        self,
        message: str,
        pact_id: Optional[str] = None,
        record_index: Optional[int] = None,
    ):
        self.pact_id = pact_id
        self.record_index = record_index
        details = []
        if pact_id is not None:
            details.append(f"pact: {pact_id}")
        if record_index is not None:
            details.append(f"record: {record_index}")
        if details:
            message = f"{message} ({', '.join(details)})"
        super().__init__(message)


class PactTimeoutError(PactError):
    """Raised when a live call exceeds its timeout."""

    def __init__(self, method: str, url: str, timeout: Optional[float]):
        self.method = method
        self.url = url
        self.timeout = timeout
        super().__init__(f"Request {method} {url} timed out after {timeout}s")


class PactMatchError(PactError):
    """
    Raised when an actual record does not match the expected record.

    Attributes:
        actual: The actual value at the failing path
        expected: The expected value at the failing path
        key: Last segment of the failing path
        key_path: Full dotted path of the mismatch, e.g. "response.body.name"
        schema: The JSON schema used, when the failure is a schema failure
        pact_id: Id of the pact the expected record belongs to
        record_index: Index of the expected record in its pact
    """

    def __init__(
        self,
        message: str,
        actual: Any = None,
        expected: Any = None,
        key: Optional[str] = None,
        key_path: Optional[str] = None,
        schema: Any = None,
    ):
        self.reason = message
        self.actual = actual
        self.expected = expected
        self.key = key
        self.key_path = key_path
        self.schema = schema
        self.pact_id: Optional[str] = None
        self.record_index: Optional[int] = None
        super().__init__(message)

    def with_context(
        self, pact_id: Optional[str] = None, record_index: Optional[int] = None
    ) -> "PactMatchError":
        """Attach pact id and record index and rebuild the message."""
        self.pact_id = pact_id
        self.record_index = record_index
        details = []
        if pact_id is not None:
            details.append(f"pact: {pact_id}")
        if record_index is not None:
            details.append(f"record: {record_index}")
        message = self.reason
        if details:
            message = f"{message} ({', '.join(details)})"
        self.args = (message,)
        return self
