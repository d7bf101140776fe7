"""
Base Contracts and Shared Types

Foundational types used by every layer of the knowledge base.
All types here are IMMUTABLE and represent pure data.

BOUNDARY ENFORCEMENT:
=====================
- Layers may import types but MUST NOT modify this module
- All types are frozen dataclasses for immutability guarantee
- Expected failures travel as Result/Error values, never as exceptions
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional, Tuple
from enum import Enum, auto


# =============================================================================
# ERROR STATES (Explicit, never silent)
# =============================================================================

class ErrorCode(Enum):
    """
    Explicit error codes for operations that abort.
    Validation problems are NOT errors in this sense - they are diagnostics.
    """
    # Document errors
    MALFORMED_DOCUMENT = auto()
    UNSUPPORTED_SCHEMA_VERSION = auto()
    SOURCE_PAGE_NOT_FOUND = auto()
    NO_SOURCE_PAGES = auto()
    NO_GUIDES = auto()

    # Storage errors
    FILE_NOT_FOUND = auto()
    READ_FAILED = auto()
    WRITE_FAILED = auto()
    PARSE_FAILED = auto()
    INDEXES_UNAVAILABLE = auto()

    # Collaborator errors
    FETCH_FAILED = auto()
    EXTRACTION_FAILED = auto()

    # Publishing errors
    VALIDATION_FAILED = auto()
    PUBLIC_CONTRACT_VIOLATION = auto()


@dataclass(frozen=True)
class Error:
    """
    Immutable error representation with full context.
    Errors are data, not exceptions - they can be stored and reported.
    """
    code: ErrorCode
    message: str
    timestamp: datetime
    context: Tuple[Tuple[str, str], ...] = field(default_factory=tuple)

    @staticmethod
    def create(code: ErrorCode, message: str, **context: str) -> Error:
        return Error(
            code=code,
            message=message,
            timestamp=datetime.now(timezone.utc),
            context=tuple((k, str(v)) for k, v in context.items())
        )

    def with_context(self, key: str, value: str) -> Error:
        """Return new Error with additional context (immutable)."""
        return Error(
            code=self.code,
            message=self.message,
            timestamp=self.timestamp,
            context=self.context + ((key, value),)
        )

    def __str__(self) -> str:
        if not self.context:
            return f"{self.code.name}: {self.message}"
        details = ", ".join(f"{k}={v}" for k, v in self.context)
        return f"{self.code.name}: {self.message} ({details})"


@dataclass(frozen=True)
class Result:
    """
    Result type for operations that can fail.
    Either contains a value OR an error, never both.
    """
    value: Optional[object] = None
    error: Optional[Error] = None

    @property
    def is_success(self) -> bool:
        return self.error is None

    @property
    def is_failure(self) -> bool:
        return self.error is not None

    @staticmethod
    def success(value: object) -> Result:
        return Result(value=value, error=None)

    @staticmethod
    def failure(error: Error) -> Result:
        return Result(value=None, error=error)


# =============================================================================
# TEMPORAL TYPES (Immutable, explicit semantics)
# =============================================================================

@dataclass(frozen=True)
class Timestamp:
    """
    Immutable timestamp with explicit semantics.
    All timestamps are UTC, never local time. Serialized with a 'Z' suffix
    and millisecond precision, which is the form stored in kb.json.
    """
    value: datetime

    def __post_init__(self):
        if self.value.tzinfo is None:
            object.__setattr__(self, 'value', self.value.replace(tzinfo=timezone.utc))
        else:
            object.__setattr__(self, 'value', self.value.astimezone(timezone.utc))

    @staticmethod
    def now() -> Timestamp:
        return Timestamp(value=datetime.now(timezone.utc))

    @staticmethod
    def from_iso(iso_string: str) -> Timestamp:
        dt = datetime.fromisoformat(iso_string.replace('Z', '+00:00'))
        return Timestamp(value=dt)

    def to_iso(self) -> str:
        text = self.value.strftime('%Y-%m-%dT%H:%M:%S')
        return f"{text}.{self.value.microsecond // 1000:03d}Z"

    def day(self) -> str:
        """Calendar day (YYYY-MM-DD) used to key snapshots."""
        return self.value.strftime('%Y-%m-%d')

    def __lt__(self, other: Timestamp) -> bool:
        return self.value < other.value

    def __le__(self, other: Timestamp) -> bool:
        return self.value <= other.value


def now_iso() -> str:
    """Current UTC time in stored form."""
    return Timestamp.now().to_iso()


def parse_iso(value: object) -> Optional[Timestamp]:
    """Parse a stored timestamp; None when absent or unparseable."""
    if not isinstance(value, str) or not value:
        return None
    try:
        return Timestamp.from_iso(value)
    except ValueError:
        return None
