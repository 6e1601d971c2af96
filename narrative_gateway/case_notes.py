"""
Case bundle model.

A CaseBundle is everything one gateway operation needs about a youth: profile
attributes, case notes, behavior points, daily ratings and report metadata.
Case notes arrive in several historical encodings and are decoded exactly once,
here, into StructuredNote or PlainNote.
"""
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Union

logger = logging.getLogger(__name__)


class EndpointKind(str, Enum):
    SUMMARIZE_REPORT = "summarize-report"
    BEHAVIORAL_INSIGHTS = "behavioral-insights"
    ENHANCE_REPORT = "enhance-report"
    SUMMARIZE_NOTE = "summarize-note"
    ANALYZE_NOTE = "analyze-note"
    CATEGORIZE_INCIDENT = "categorize-incident"
    ANALYZE_INCIDENT = "analyze-incident"
    ANALYZE_BEHAVIOR = "analyze-behavior"
    QUERY = "query"
    TREATMENT_RECOMMENDATIONS = "treatment-recommendations"


DEFAULT_SUMMARY_WORDS = 150

# US-style dates from older records; ISO 8601 is tried first
_DATE_FORMATS = ("%m/%d/%Y", "%m/%d/%y", "%Y/%m/%d")


def _text(value: Any) -> str:
    """Flatten a profile value (string, number or list) into display text."""
    if value is None:
        return ""
    if isinstance(value, (list, tuple)):
        return ", ".join(_text(v) for v in value if _text(v))
    if isinstance(value, dict):
        return ", ".join(_text(v) for v in value.values() if _text(v))
    return str(value).strip()


def _number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or value is None:
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _as_list(value: Any) -> list:
    """Request collections as a list; a lone string or scalar becomes one item."""
    if value is None or value == "":
        return []
    if isinstance(value, (list, tuple)):
        return list(value)
    return [value]


def parse_note_date(value: str) -> Optional[datetime]:
    """Naive UTC datetime for an ISO or m/d/Y date string, else None."""
    value = (value or "").strip()
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        parsed = None
        for fmt in _DATE_FORMATS:
            try:
                parsed = datetime.strptime(value, fmt)
                break
            except ValueError:
                continue
    if parsed is None:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


@dataclass(frozen=True)
class YouthProfile:
    first_name: str = ""
    last_name: str = ""
    level: str = ""
    diagnoses: str = ""
    academic_strengths: str = ""
    academic_challenges: str = ""
    peer_interaction: Optional[float] = None
    investment_level: Optional[float] = None
    raw: dict = field(default_factory=dict, compare=False)

    @classmethod
    def from_dict(cls, data: Optional[dict]) -> "YouthProfile":
        data = data if isinstance(data, dict) else {}
        return cls(
            first_name=_text(data.get("firstName")),
            last_name=_text(data.get("lastName")),
            level=_text(data.get("level")),
            diagnoses=_text(data.get("currentDiagnoses") or data.get("diagnoses")),
            academic_strengths=_text(data.get("academicStrengths")),
            academic_challenges=_text(data.get("academicChallenges")),
            peer_interaction=_number(data.get("peerInteraction")),
            investment_level=_number(data.get("investmentLevel")),
            raw=dict(data),
        )

    @property
    def display_name(self) -> str:
        return self.first_name or "The youth"

    @property
    def full_name(self) -> str:
        full = f"{self.first_name} {self.last_name}".strip()
        return full or "the youth"


@dataclass(frozen=True)
class StructuredNote:
    """Note stored as JSON with a `sections` object."""
    sections: dict
    summary: str = ""
    date: str = ""
    category: str = ""

    @property
    def text(self) -> str:
        parts = [self.summary, *self.sections.values()]
        return " ".join(p for p in parts if p)


@dataclass(frozen=True)
class PlainNote:
    """Legacy JSON `{"summary": ...}` or raw text."""
    body: str
    summary: str = ""
    date: str = ""
    category: str = ""

    @property
    def text(self) -> str:
        parts = [self.summary, self.body]
        return " ".join(p for p in parts if p)


Note = Union[StructuredNote, PlainNote]


def _parse_payload(payload: str) -> Optional[dict]:
    stripped = payload.strip()
    if not stripped.startswith("{"):
        return None
    try:
        parsed = json.loads(stripped)
    except json.JSONDecodeError:
        return None
    return parsed if isinstance(parsed, dict) else None


def decode_note(record: Any) -> Optional[Note]:
    """Decode one stored case note.

    Accepted shapes, in order of preference:
      1. JSON text with a `sections` object
      2. legacy JSON text with a `summary` string
      3. anything else, kept as raw text
    A record-level `summary` is prepended in every case. Returns None for
    records with no usable text.
    """
    if isinstance(record, str):
        record = {"note": record}
    if not isinstance(record, dict):
        return None

    summary = _text(record.get("summary"))
    date = _text(record.get("date") or record.get("createdAt") or record.get("created_at"))
    category = _text(record.get("category"))
    payload = record.get("note", record.get("content", record.get("text")))

    if isinstance(payload, dict):
        parsed = payload
    elif isinstance(payload, str):
        parsed = _parse_payload(payload)
    else:
        parsed = None

    if parsed is not None and isinstance(parsed.get("sections"), dict):
        sections = {
            str(name): value.strip()
            for name, value in parsed["sections"].items()
            if isinstance(value, str) and value.strip()
        }
        note: Note = StructuredNote(sections=sections, summary=summary, date=date, category=category)
    elif parsed is not None and isinstance(parsed.get("summary"), str):
        note = PlainNote(body=parsed["summary"].strip(), summary=summary, date=date, category=category)
    elif isinstance(payload, str):
        note = PlainNote(body=payload.strip(), summary=summary, date=date, category=category)
    else:
        note = PlainNote(body="", summary=summary, date=date, category=category)

    return note if note.text else None


def _behavior_total(entry: Any) -> Optional[float]:
    if isinstance(entry, dict):
        return _number(entry.get("totalPoints", entry.get("points")))
    return _number(entry)


@dataclass
class CaseBundle:
    """Input to both the gateway prompts and the fallback generator."""
    youth: YouthProfile = field(default_factory=YouthProfile)
    note_records: list = field(default_factory=list)
    behavior_records: list = field(default_factory=list)
    daily_ratings: list = field(default_factory=list)
    report_type: str = "summary"
    period: dict = field(default_factory=dict)
    report_content: str = ""
    max_length: int = DEFAULT_SUMMARY_WORDS
    incident: dict = field(default_factory=dict)
    incident_history: list = field(default_factory=list)
    question: str = ""
    context: dict = field(default_factory=dict)
    progress_data: Any = None
    assessment_data: Any = None
    notes: list = field(init=False, repr=False)

    def __post_init__(self):
        if isinstance(self.youth, dict):
            self.youth = YouthProfile.from_dict(self.youth)
        decoded = (decode_note(record) for record in _as_list(self.note_records))
        self.notes = [note for note in decoded if note is not None]

    @property
    def behavior_points(self) -> list[float]:
        points = (_behavior_total(entry) for entry in _as_list(self.behavior_records))
        return [p for p in points if p is not None]

    @property
    def note_text(self) -> str:
        return "\n\n".join(note.text for note in self.notes)

    @property
    def incident_text(self) -> str:
        incident = self.incident
        return _text(incident.get("description") or incident.get("summary") or incident.get("narrative"))

    @property
    def is_text_expansion(self) -> bool:
        """Query requests from a form field ask for prose, not analysis."""
        return bool(self.context.get("fieldType") or self.context.get("currentText"))

    def recent_notes(self, limit: int = 3) -> list:
        """Most recent notes first.

        Notes order by parsed date; undated or unparseable notes sort before
        dated ones, and ties keep later-in-list as newer.
        """
        def newest(pair):
            position, note = pair
            parsed = parse_note_date(note.date)
            return (parsed is not None, parsed or datetime.min, position)

        ranked = sorted(enumerate(self.notes), key=newest, reverse=True)
        return [note for _, note in ranked[:limit]]

    @classmethod
    def from_request(cls, kind: Union[EndpointKind, str], body: dict) -> "CaseBundle":
        kind = EndpointKind(kind)
        youth = YouthProfile.from_dict(body.get("youth"))

        if kind is EndpointKind.SUMMARIZE_REPORT:
            data = body.get("data")
            data = data if isinstance(data, dict) else {}
            notes = data.get("progressNotes") or data.get("caseNotes") or data.get("notes")
            return cls(
                youth=youth,
                note_records=_as_list(notes),
                behavior_records=_as_list(data.get("behaviorPoints")),
                daily_ratings=_as_list(data.get("dailyRatings")),
                report_type=body.get("reportType") or "summary",
                period=body.get("period") or {},
            )
        if kind in (EndpointKind.BEHAVIORAL_INSIGHTS, EndpointKind.ANALYZE_BEHAVIOR):
            return cls(
                youth=youth,
                behavior_records=_as_list(body.get("behaviorData")),
                period=body.get("period") or {},
            )
        if kind is EndpointKind.ENHANCE_REPORT:
            return cls(
                youth=youth,
                report_type=body.get("reportType") or "summary",
                report_content=body.get("reportContent") or "",
            )
        if kind is EndpointKind.CATEGORIZE_INCIDENT:
            return cls(youth=youth, incident={"description": _text(body.get("description"))})
        if kind is EndpointKind.ANALYZE_INCIDENT:
            incident = body.get("incidentData")
            if not isinstance(incident, dict):
                incident = {"description": _text(incident)}
            return cls(
                youth=youth,
                incident=incident,
                incident_history=_as_list(body.get("historicalIncidents")),
            )
        if kind is EndpointKind.QUERY:
            context = body.get("context")
            context = context if isinstance(context, dict) else {}
            if not youth.raw:
                youth = YouthProfile.from_dict(context.get("youth"))
            return cls(youth=youth, question=_text(body.get("question")), context=context)
        if kind is EndpointKind.TREATMENT_RECOMMENDATIONS:
            progress = body.get("progressData")
            details = progress if isinstance(progress, dict) else {}
            points = details.get("behaviorPoints") if details else progress
            return cls(
                youth=youth,
                note_records=_as_list(details.get("progressNotes") or details.get("caseNotes")),
                behavior_records=_as_list(points),
                progress_data=progress,
                assessment_data=body.get("assessmentData"),
            )

        note_content = body.get("noteContent") or ""
        return cls(
            youth=youth,
            note_records=[note_content] if note_content else [],
            max_length=int(body.get("maxLength") or DEFAULT_SUMMARY_WORDS),
        )

    def to_request_body(self, kind: Union[EndpointKind, str]) -> dict:
        kind = EndpointKind(kind)
        youth = self.youth.raw

        if kind is EndpointKind.SUMMARIZE_REPORT:
            return {
                "youth": youth,
                "reportType": self.report_type,
                "period": self.period,
                "data": {
                    "behaviorPoints": self.behavior_records,
                    "progressNotes": self.note_records,
                    "dailyRatings": self.daily_ratings,
                },
            }
        if kind in (EndpointKind.BEHAVIORAL_INSIGHTS, EndpointKind.ANALYZE_BEHAVIOR):
            return {"behaviorData": self.behavior_records, "youth": youth, "period": self.period}
        if kind is EndpointKind.ENHANCE_REPORT:
            return {"reportContent": self.report_content, "reportType": self.report_type, "youth": youth}
        if kind is EndpointKind.SUMMARIZE_NOTE:
            return {"noteContent": self.note_text or self.report_content, "maxLength": self.max_length}
        if kind is EndpointKind.CATEGORIZE_INCIDENT:
            return {"description": self.incident_text, "youth": youth}
        if kind is EndpointKind.ANALYZE_INCIDENT:
            return {"incidentData": self.incident, "historicalIncidents": self.incident_history, "youth": youth}
        if kind is EndpointKind.QUERY:
            return {"question": self.question, "context": self.context, "youth": youth}
        if kind is EndpointKind.TREATMENT_RECOMMENDATIONS:
            progress = self.progress_data
            if progress is None:
                progress = {"behaviorPoints": self.behavior_records, "progressNotes": self.note_records}
            return {"youth": youth, "progressData": progress, "assessmentData": self.assessment_data}
        return {"noteContent": self.note_text or self.report_content, "youth": youth}
