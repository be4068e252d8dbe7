"""
Shared models for the report service.

Pydantic models validate upstream payloads and API responses; dataclasses
carry the per-run state through the pipeline.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, Field, field_validator
from pydantic.alias_generators import to_camel

from .errors import Degradation


SECTION_ORDER: Tuple[str, ...] = ("cover", "history", "toc", "body")

# Identifier -> value pairs scraped from the rendered preview
ExtractedMetrics = Dict[str, str]


# === Upstream payloads ===

class TaskMetadata(BaseModel):
    """Task item as returned by the tracker items API."""

    id: Any = Field(..., description="Task identifier")
    name: str = Field(..., description="Task name; must equal the preview page title")
    tracker_id: Any = Field(..., description="Identifier of the tracker owning the task")

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "TaskMetadata":
        tracker = payload.get("tracker") or {}
        return cls(id=payload.get("id"), name=payload.get("name"), tracker_id=tracker.get("id"))


class TrackerMetadata(BaseModel):
    """Tracker as returned by the tracker API."""

    id: Any
    description: Optional[str] = None

    class Config:
        extra = "ignore"


class PreviewMetadata(BaseModel):
    """Rendering options returned by the preview-metadata endpoint."""

    header_template: Optional[str] = Field(None, description="Chromium header template HTML")
    footer_template: Optional[str] = Field(None, description="Chromium footer template HTML")
    render_toc: bool = Field(True, description="Prepend a table of contents")
    render_history: bool = Field(False, description="Prepend the change-history section")
    cover_template: Optional[str] = Field(
        None, description="Cover .docx template file name inside the templates directory"
    )
    cover_data: Dict[str, str] = Field(
        default_factory=dict, description="Placeholder substitutions for the cover"
    )

    @field_validator("cover_data", mode="before")
    @classmethod
    def stringify_cover_values(cls, v: Any) -> Dict[str, str]:
        """Upstream sends numbers and nulls; substitutions are always text."""
        if v is None:
            return {}
        if not isinstance(v, dict):
            raise ValueError("cover_data must be an object")
        return {str(k): "" if val is None else str(val) for k, val in v.items()}

    @property
    def wants_cover(self) -> bool:
        return bool(self.cover_template and self.cover_template.strip())

    class Config:
        alias_generator = to_camel
        populate_by_name = True
        extra = "ignore"


# === Pipeline state ===

@dataclass(frozen=True)
class GenerationRequest:
    """Everything one pipeline run needs; immutable for the run."""

    task_id: str
    user_id: str
    template_name: Optional[str]
    task: TaskMetadata
    tracker: TrackerMetadata
    preview: PreviewMetadata


@dataclass(frozen=True)
class TocEntry:
    """One line of the plain-text TOC listing."""

    title: str
    indent: int
    page: int


@dataclass(frozen=True)
class RenderedSection:
    """A named PDF section."""

    name: str
    pdf_bytes: bytes

    def __post_init__(self):
        if self.name not in SECTION_ORDER:
            raise ValueError(f"Unknown section: {self.name}")


@dataclass(frozen=True)
class AssemblyPlan:
    """Present sections in the fixed order cover, history, toc, body."""

    sections: Tuple[RenderedSection, ...]

    @classmethod
    def build(
        cls,
        body: bytes,
        toc: Optional[bytes] = None,
        history: Optional[bytes] = None,
        cover: Optional[bytes] = None,
    ) -> "AssemblyPlan":
        present = {"cover": cover, "history": history, "toc": toc, "body": body}
        return cls(
            sections=tuple(
                RenderedSection(name, present[name])
                for name in SECTION_ORDER
                if present[name] is not None
            )
        )

    def __post_init__(self):
        names = [section.name for section in self.sections]
        if names.count("body") != 1:
            raise ValueError("AssemblyPlan requires exactly one body section")
        if len(set(names)) != len(names):
            raise ValueError(f"Duplicate sections in plan: {names}")
        if names != sorted(names, key=SECTION_ORDER.index):
            raise ValueError(f"Sections out of order: {names}")

    @property
    def names(self) -> List[str]:
        return [section.name for section in self.sections]

    @property
    def body(self) -> RenderedSection:
        return self.get("body")

    def get(self, name: str) -> Optional[RenderedSection]:
        for section in self.sections:
            if section.name == name:
                return section
        return None


@dataclass
class AssemblyOutcome:
    """Merged document, or the body alone when merging failed."""

    pdf_bytes: bytes
    sections: List[str]
    degraded: bool = False
    error: Optional[Degradation] = None


@dataclass
class ReportResult:
    """What a pipeline run hands back to the request boundary."""

    pdf_bytes: bytes
    metrics: ExtractedMetrics = field(default_factory=dict)
    sections: List[str] = field(default_factory=lambda: ["body"])
    degradations: List[Degradation] = field(default_factory=list)

    @property
    def degraded(self) -> bool:
        return bool(self.degradations)


# === API responses ===

class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "healthy"
    timestamp: datetime
    uptime_seconds: float
    active_workers: int
    max_workers: int
