"""
Pydantic request/response models for the Narrative Gateway API.

Field names are camelCase to match the case-management front end.
"""
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, field_validator


# --- Report Summary ---

class ReportData(BaseModel):
    """Case data behind a report; every collection must arrive as a list."""
    model_config = ConfigDict(extra="allow")

    progressNotes: Optional[list[Any]] = None
    caseNotes: Optional[list[Any]] = None
    notes: Optional[list[Any]] = None
    behaviorPoints: Optional[list[Any]] = None
    dailyRatings: Optional[list[Any]] = None


class SummarizeReportRequest(BaseModel):
    youth: dict
    reportType: str
    period: Optional[dict] = None
    data: Optional[ReportData] = None

    @field_validator("youth")
    @classmethod
    def youth_not_empty(cls, v: dict) -> dict:
        if not v:
            raise ValueError("Youth details are required")
        return v

    @field_validator("reportType")
    @classmethod
    def report_type_not_empty(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Report type cannot be empty")
        return v.strip()


# --- Behavioral Insights ---

class BehavioralInsightsRequest(BaseModel):
    behaviorData: list[Any] = []
    youth: dict = {}
    period: Optional[dict] = None


# --- Report Enhancement ---

class EnhanceReportRequest(BaseModel):
    reportContent: str
    reportType: str = "summary"
    youth: dict = {}

    @field_validator("reportContent")
    @classmethod
    def content_not_empty(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Report content is required")
        return v


# --- Case Notes ---

class SummarizeNoteRequest(BaseModel):
    noteContent: str
    maxLength: int = 150

    @field_validator("noteContent")
    @classmethod
    def note_not_empty(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Note content cannot be empty")
        return v

    @field_validator("maxLength")
    @classmethod
    def max_length_positive(cls, v: int) -> int:
        if v <= 0:
            raise ValueError("maxLength must be positive")
        return v


class AnalyzeNoteRequest(BaseModel):
    noteContent: str
    youth: dict = {}

    @field_validator("noteContent")
    @classmethod
    def note_not_empty(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Note content cannot be empty")
        return v


# --- Incidents ---

class CategorizeIncidentRequest(BaseModel):
    description: str
    youth: dict = {}

    @field_validator("description")
    @classmethod
    def description_not_empty(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Incident description cannot be empty")
        return v


class AnalyzeIncidentRequest(BaseModel):
    incidentData: dict
    historicalIncidents: list[Any] = []
    youthId: Optional[str] = None
    youth: dict = {}

    @field_validator("incidentData")
    @classmethod
    def incident_not_empty(cls, v: dict) -> dict:
        if not v:
            raise ValueError("Incident data is required")
        return v


# --- Behavior Trends ---

class AnalyzeBehaviorRequest(BaseModel):
    behaviorData: list[Any]
    youthId: Optional[str] = None
    timeframe: Optional[int] = None
    youth: dict = {}

    @field_validator("behaviorData")
    @classmethod
    def behavior_not_empty(cls, v: list) -> list:
        if not v:
            raise ValueError("Behavior data is required")
        return v


# --- Query ---

class QueryRequest(BaseModel):
    question: str
    context: Optional[dict] = None
    youth: dict = {}

    @field_validator("question")
    @classmethod
    def question_not_empty(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Question cannot be empty")
        return v


# --- Treatment Recommendations ---

class TreatmentRecommendationsRequest(BaseModel):
    youth: dict
    progressData: Any = None
    assessmentData: Any = None

    @field_validator("youth")
    @classmethod
    def youth_not_empty(cls, v: dict) -> dict:
        if not v:
            raise ValueError("Youth details are required")
        return v


# --- Responses ---

class HealthResponse(BaseModel):
    status: str
    provider: str
    configured: bool
