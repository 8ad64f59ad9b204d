"""
pact_sdk - HTTP pact recording, matching and mock serving

This package provides tools to:
- Record HTTP request/response pairs into pacts
- Obfuscate and ignore sensitive fields before persisting
- Validate live responses against recorded pacts
- Serve recorded pacts from a mock/record HTTP controller
- Replay stored pacts against a live system
"""

__version__ = "0.1.0"

from pact_sdk.errors import (
    PactError,
    PactConfigError,
    PactIdError,
    PactLoadError,
    PactMatchError,
    PactNotFoundError,
    PactTimeoutError,
)
from pact_sdk.modes import PactMode, RecordingMode
from pact_sdk.config import PactConfig, load_config, merge_options
from pact_sdk.context import PactContext, get_context, set_context, clear_context
from pact_sdk.record import PactRecord
from pact_sdk.preprocessor import PactPreprocessor, PreprocessorOptions
from pact_sdk.matcher import (
    DefaultPactMatcher,
    JsonSchemaMatcher,
    MatchOptions,
    PactMatcher,
    RecordMatcher,
    SchemaMatcher,
    match_records,
)
from pact_sdk.pact import Pact, PactInfo, pact_id, validate_pact_id
from pact_sdk.reconciler import PactHooks, RecordingReconciler
from pact_sdk.adapter import FilePactAdapter, HarPactAdapter, PactAdapter
from pact_sdk.sink import PactWriter
from pact_sdk.controller import PactHttpController
from pact_sdk.session import PactSession, RequestsPatch, patch_requests, unpatch_requests
from pact_sdk.runner import PactRunner, RecordResult, RunReport

__all__ = [
    # Errors
    "PactError",
    "PactConfigError",
    "PactIdError",
    "PactLoadError",
    "PactMatchError",
    "PactNotFoundError",
    "PactTimeoutError",
    # Modes and config
    "PactMode",
    "RecordingMode",
    "PactConfig",
    "load_config",
    "merge_options",
    # Context
    "PactContext",
    "get_context",
    "set_context",
    "clear_context",
    # Records
    "PactRecord",
    "PactPreprocessor",
    "PreprocessorOptions",
    # Matching
    "PactMatcher",
    "SchemaMatcher",
    "DefaultPactMatcher",
    "JsonSchemaMatcher",
    "MatchOptions",
    "RecordMatcher",
    "match_records",
    # Pacts
    "Pact",
    "PactInfo",
    "pact_id",
    "validate_pact_id",
    "PactHooks",
    "RecordingReconciler",
    # Persistence
    "PactAdapter",
    "FilePactAdapter",
    "HarPactAdapter",
    "PactWriter",
    # Controller, session, runner
    "PactHttpController",
    "PactSession",
    "RequestsPatch",
    "patch_requests",
    "unpatch_requests",
    "PactRunner",
    "RunReport",
    "RecordResult",
]
