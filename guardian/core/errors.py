"""
Error taxonomy for the patch guard engine.

Per-candidate errors (generation, schema, scope, pattern) are contained and
turned into NO_GO verdicts. ``AbstainClassification`` is the only run-fatal
error: it stops strategy generation entirely.

Parsers and validators return a ``Result`` instead of raising so that the
containment rule is visible in their signatures.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Generic, Optional, TypeVar, cast

if TYPE_CHECKING:
    from guardian.agent.self_healing.types import AbstainReport

T = TypeVar("T")


class ErrorKind(Enum):
    """Failure modes a candidate evaluation can end in."""

    GENERATION = "generation"  # unparsable or empty model output
    SCHEMA_VIOLATION = "schema_violation"  # out-of-range or wrongly-typed fields
    SCOPE_VIOLATION = "scope_violation"  # diff touches a path outside the allow-list
    PATTERN_VIOLATION = "pattern_violation"  # banned marker in the diff
    ABSTAIN = "abstain"  # failure judged not patchable
    INTERNAL = "internal"  # unexpected exception inside one evaluation


class GuardianError(Exception):
    """Base class for engine errors."""

    kind: ErrorKind = ErrorKind.INTERNAL

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class GenerationError(GuardianError):
    """Raised when the generator returns nothing usable."""

    kind = ErrorKind.GENERATION


class SchemaViolationError(GuardianError):
    """Raised when a generator payload breaks its schema."""

    kind = ErrorKind.SCHEMA_VIOLATION


class ScopeViolationError(GuardianError):
    """Raised when a diff edits files outside the patch plan."""

    kind = ErrorKind.SCOPE_VIOLATION

    def __init__(self, message: str, paths: Optional[list[str]] = None):
        super().__init__(message)
        self.paths = list(paths or [])


class PatternViolationError(GuardianError):
    """Raised when the deterministic guard matches a banned pattern."""

    kind = ErrorKind.PATTERN_VIOLATION

    def __init__(self, message: str, categories: Optional[list[str]] = None):
        super().__init__(message)
        self.categories = list(categories or [])


class AbstainClassification(GuardianError):
    """Raised when the failure is not something a patch can fix."""

    kind = ErrorKind.ABSTAIN

    def __init__(self, report: "AbstainReport"):
        super().__init__(f"Failure classified as {report.classification}")
        self.report = report


@dataclass(frozen=True)
class Result(Generic[T]):
    """Either a value or a ``GuardianError``, never both."""

    value: Optional[T] = None
    error: Optional[GuardianError] = None

    @classmethod
    def ok(cls, value: T) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def fail(cls, error: GuardianError) -> "Result[T]":
        return cls(error=error)

    @property
    def is_ok(self) -> bool:
        return self.error is None

    @property
    def kind(self) -> Optional[ErrorKind]:
        return self.error.kind if self.error is not None else None

    def unwrap(self) -> T:
        if self.error is not None:
            raise self.error
        return cast(T, self.value)
