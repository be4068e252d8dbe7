"""
Error taxonomy for the report pipeline.

Fatal errors abort a run and surface to the request boundary as a generic
failure. Degradable errors are caught at the owning stage, recorded as a
Degradation, and the run continues with fewer sections.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Generic, Optional, TypeVar

T = TypeVar("T")


class ReportError(Exception):
    """Base class for report pipeline failures."""

    fatal = True


class MissingCredentials(ReportError):
    """Tracker credentials are absent or not base64 'username:password'."""


class UpstreamFetchError(ReportError):
    """The tracker API returned a non-2xx status or an unusable payload."""

    def __init__(self, resource: str, message: str, status_code: Optional[int] = None):
        self.resource = resource
        self.status_code = status_code
        super().__init__(f"Failed to fetch {resource}: {message}")


class TitleMismatch(ReportError):
    """The rendered preview is not the document that was requested."""

    def __init__(self, expected: str, actual: str):
        self.expected = expected
        self.actual = actual
        super().__init__(f'Page title does not match task name - expected "{expected}", got "{actual}"')


class CaptureFailed(ReportError):
    """The browser could not render or print the preview."""


class TocGenerationFailed(ReportError):
    """Outline extraction or TOC page rendering failed."""

    fatal = False


class CoverConversionFailed(ReportError):
    """The cover template could not be filled or converted to PDF."""

    fatal = False


class HistoryCaptureFailed(ReportError):
    """The change-history page could not be captured."""

    fatal = False


class AssemblyFailed(ReportError):
    """Sections could not be loaded or merged."""

    fatal = False


@dataclass
class Degradation:
    """
    Record of a degradable failure absorbed by the pipeline.

    The caller never sees these except as a missing section; they are kept
    on the result for logging and tests.
    """

    stage: str  # e.g., "toc", "cover", "history", "assembly"
    message: str
    exception_type: Optional[str] = None
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "stage": self.stage,
            "message": self.message,
            "exception_type": self.exception_type,
            "timestamp": self.timestamp,
        }


@dataclass
class StageResult(Generic[T]):
    """Outcome of an optional stage: either a value or the reason it has none."""

    stage: str
    value: Optional[T] = None
    error: Optional[Degradation] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.value is not None

    @classmethod
    def success(cls, stage: str, value: T) -> "StageResult[T]":
        return cls(stage=stage, value=value)

    @classmethod
    def skipped(cls, stage: str) -> "StageResult[T]":
        """Stage was not requested; neither value nor error."""
        return cls(stage=stage)

    @classmethod
    def failure(cls, stage: str, exc: BaseException) -> "StageResult[T]":
        return cls(
            stage=stage,
            error=Degradation(
                stage=stage,
                message=str(exc),
                exception_type=type(exc).__name__,
            ),
        )
