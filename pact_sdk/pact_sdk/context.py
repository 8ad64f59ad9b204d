"""
Pact context management: contextvars-based storage for the active session.

The context is an explicit handle holding the mode and the current pact of
a session. Each thread and each asyncio Task gets its own context, so
concurrent test sessions never share a pact cursor by accident.
"""

from contextvars import ContextVar, Token
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

from pact_sdk.config import PactConfig, load_config
from pact_sdk.modes import PactMode, RecordingMode


@dataclass
class PactContext:
    """
    Session-scoped pact state.

    Attributes:
        mode: Current pact mode
        recording_mode: How captured records merge into the current pact
        strict_matching: Compare every expected field when validating
        fail_on_missing_pacts: Raise if no pact is available in apply/mock mode
        fail_on_pact_validation: Raise on matcher failures
        ignore_not_found: Tolerate exhausted pacts and unmatched requests
        base_url: Base url of the system under test
        tenant: Tenant of the system under test
        pact: The current pact, if any
        request_id: Tag used to select records of the current pact
        preprocessor: Preprocessor options set for this session
    """
    mode: PactMode = PactMode.DISABLED
    recording_mode: RecordingMode = RecordingMode.APPEND
    strict_matching: bool = True
    fail_on_missing_pacts: bool = True
    fail_on_pact_validation: bool = True
    ignore_not_found: bool = False
    base_url: Optional[str] = None
    tenant: Optional[str] = None
    pact: Any = None
    request_id: Optional[str] = None
    preprocessor: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_enabled(self) -> bool:
        return self.mode != PactMode.DISABLED

    @property
    def is_recording(self) -> bool:
        return self.mode.is_recording

    @property
    def is_mocking(self) -> bool:
        return self.mode.is_mocking

    @classmethod
    def from_config(cls, config: PactConfig) -> "PactContext":
        """Create a context from a loaded config."""
        return cls(
            mode=config.mode,
            recording_mode=config.recording_mode,
            strict_matching=config.strict_matching,
            fail_on_missing_pacts=bool(config.get("fail_on_missing_pacts")),
            fail_on_pact_validation=bool(config.get("fail_on_pact_validation")),
            ignore_not_found=bool(config.get("ignore_not_found")),
            base_url=config.base_url,
            tenant=config.tenant,
            preprocessor=config.preprocessor_options(),
        )

    # -- ContextVar class-level API -----------------------------------------

    @staticmethod
    def get_current() -> Optional["PactContext"]:
        """Return the current context, or None if not set."""
        return _context_var.get()

    @staticmethod
    def set_current(ctx: "PactContext") -> Token:
        """Set the current context and return a Token for later reset."""
        return _context_var.set(ctx)

    @staticmethod
    def reset_current(token: Token) -> None:
        """Restore the context to the value before the matching set_current()."""
        _context_var.reset(token)


_context_var: ContextVar[Optional[PactContext]] = ContextVar(
    "pact_context", default=None,
)


def get_context() -> PactContext:
    """
    Get the pact context of the current thread/task.

    If none has been set, one is created from the environment and the
    config file (see pact_sdk.config).
    """
    ctx = _context_var.get()
    if ctx is None:
        ctx = PactContext.from_config(load_config())
        _context_var.set(ctx)
    return ctx


def set_context(context: PactContext) -> None:
    """Set the pact context for the current thread/task."""
    _context_var.set(context)


def clear_context() -> None:
    """Clear the pact context for the current thread/task."""
    _context_var.set(None)
