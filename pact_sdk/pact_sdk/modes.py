"""Pact and recording modes."""

from enum import Enum
from typing import Any, List, Union

from pact_sdk.errors import PactConfigError


class PactMode(Enum):
    """Operating modes of a pact session or controller."""
    DISABLED = "disabled"
    RECORD = "record"
    RECORDING = "recording"
    APPLY = "apply"
    MOCK = "mock"

    @classmethod
    def parse(cls, value: Union[str, "PactMode", None]) -> "PactMode":
        """
        Parse a mode string (case-insensitive).

        Raises:
            PactConfigError: If value is not a supported mode
        """
        return _parse_enum(cls, "pact mode", value)

    @classmethod
    def values(cls) -> List[str]:
        return [m.value for m in cls]

    @property
    def is_recording(self) -> bool:
        return self in (PactMode.RECORD, PactMode.RECORDING)

    @property
    def is_mocking(self) -> bool:
        return self in (PactMode.APPLY, PactMode.MOCK)


class RecordingMode(Enum):
    """How captured records merge into an existing pact."""
    APPEND = "append"
    NEW = "new"
    REPLACE = "replace"
    REFRESH = "refresh"

    @classmethod
    def parse(cls, value: Union[str, "RecordingMode", None]) -> "RecordingMode":
        """
        Parse a recording mode string (case-insensitive).

        Raises:
            PactConfigError: If value is not a supported recording mode
        """
        return _parse_enum(cls, "recording mode", value)

    @classmethod
    def values(cls) -> List[str]:
        return [m.value for m in cls]


def _parse_enum(enum_cls: Any, name: str, value: Any) -> Any:
    if isinstance(value, enum_cls):
        return value
    if isinstance(value, str):
        try:
            return enum_cls(value.strip().lower())
        except ValueError:
            pass
    raise PactConfigError(name, value, enum_cls.values())
