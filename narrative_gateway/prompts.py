"""
Prompt templates for the narrative endpoints.
Note: literal JSON braces are doubled ({{ }}) to escape them for .format()
"""
import json

from .case_notes import CaseBundle
from .formatters import (
    behavior_stats,
    format_notes,
    format_period,
    format_points,
    format_ratings,
)

# --- Report narrative ---

REPORT_SYSTEM_PROMPT = """You are a professional clinical writer specializing in youth residential treatment reports. Generate comprehensive, evidence-based narratives that are appropriate for {report_type} reports. Use clinical language while maintaining clarity. Focus on measurable outcomes, treatment progress, and professional recommendations.
Write plain prose paragraphs. Do not use markdown."""

REPORT_PROMPT = """Generate a professional {report_type} report for {full_name}, age {age}.
Admission: {admission}, Level: {level}, Diagnoses: {diagnoses}
Period: {period}
Points: {total_points} total, {average_points} avg/day, {point_entries} entries
Trend: {trend}
Daily ratings (averages): {ratings}

Case notes:
{notes}

Cover: narrative summary, peer and adult interaction, investment level, dealing with authority, strengths, deficiencies."""

# --- Behavioral insights ---

INSIGHTS_SYSTEM_PROMPT = "You are a data analyst specializing in behavioral statistics for youth residential treatment."

INSIGHTS_PROMPT = """Analyze behavioral data for {full_name}:
{count} entries, Avg: {average}, Median: {median}, StdDev: {stdev}
Range: {minimum} - {maximum}, Recent: {recent}
Level: {level}, Investment: {investment}/5
Provide statistical insights, patterns, and recommendations."""

# --- Report enhancement ---

ENHANCE_SYSTEM_PROMPT = "You are a professional clinical writer specializing in enhancing youth treatment reports."

ENHANCE_PROMPT = """Please enhance this {report_type} report for {full_name}. Improve clarity, professionalism, and clinical accuracy.

Original:
{content}

Enhanced:"""

# --- Note summary ---

SUMMARIZE_NOTE_SYSTEM_PROMPT = "Summarize case notes concisely while preserving critical information."

SUMMARIZE_NOTE_PROMPT = """Summarize in {max_length} words or less:

{content}"""

# --- Note analysis (structured) ---

ANALYZE_NOTE_SYSTEM_PROMPT = """Analyze case notes for sentiment, risk indicators, and recommended actions. Respond in JSON with this format:
{{
  "sentiment": "positive|neutral|concerning|critical",
  "riskIndicators": ["..."],
  "suggestedActions": ["..."],
  "summary": "one or two sentences"
}}"""

ANALYZE_NOTE_PROMPT = """Analyze for {first_name}:

{content}"""

# --- Incidents (structured) ---

CATEGORIZE_INCIDENT_SYSTEM_PROMPT = """Categorize incidents in a youth residential treatment program. Respond in JSON with this format:
{{
  "category": "...",
  "subcategory": "...",
  "severity": "low|medium|high|critical",
  "tags": ["..."],
  "confidence": 0.0
}}"""

CATEGORIZE_INCIDENT_PROMPT = """Categorize:

{description}"""

ANALYZE_INCIDENT_SYSTEM_PROMPT = """Analyze incidents for patterns and triggers. Respond in JSON with this format:
{{
  "severity": "low|medium|high|critical",
  "category": "...",
  "patterns": ["..."],
  "triggers": ["..."],
  "recommendations": ["..."]
}}"""

ANALYZE_INCIDENT_PROMPT = """Current: {incident}
History: {history}"""

MAX_INCIDENT_HISTORY = 10

# --- Behavior trends (structured) ---

ANALYZE_BEHAVIOR_SYSTEM_PROMPT = """Analyze behavioral trends. Respond in JSON with this format:
{{
  "trends": {{"overall": "improving|stable|declining", "shortTerm": "...", "longTerm": "..."}},
  "predictions": {{"nextWeekAverage": 0, "concernAreas": ["..."]}},
  "recommendations": ["..."]
}}"""

ANALYZE_BEHAVIOR_PROMPT = """Points ({count} days): {points}
Average: {average}"""

TREND_WINDOW_DAYS = 30

# --- Free-form query ---

QUERY_SYSTEM_PROMPT = "Help with clinical data analysis."

QUERY_PROMPT = """Question: "{question}"
Data: {context}"""

TEXT_EXPANSION_SYSTEM_PROMPT = "Expand brief notes into professional clinical paragraphs."

# --- Treatment recommendations (structured) ---

TREATMENT_SYSTEM_PROMPT = """Provide evidence-based, trauma-informed treatment recommendations. Respond in JSON with this format:
{{
  "recommendations": ["..."],
  "priorities": [{{"area": "...", "priority": "high|medium|low", "rationale": "..."}}],
  "narrative": "..."
}}"""

TREATMENT_PROMPT = """Youth: {youth}
Progress: {progress}
Assessment: {assessment}"""


def _dump(value) -> str:
    return json.dumps(value, default=str)


def _trend_label(points: list) -> str:
    # First three vs last three entries, only once there is enough data
    if len(points) <= 5:
        return "Stable"
    delta = sum(points[-3:]) / 3 - sum(points[:3]) / 3
    if delta > 0:
        return "Improving"
    if delta < 0:
        return "Declining"
    return "Stable"


def build_report_prompt(bundle: CaseBundle) -> tuple[str, str]:
    youth = bundle.youth
    stats = behavior_stats(bundle.behavior_points)
    system = REPORT_SYSTEM_PROMPT.format(report_type=bundle.report_type)
    user = REPORT_PROMPT.format(
        report_type=bundle.report_type,
        full_name=youth.full_name,
        age=youth.raw.get("age") or "N/A",
        admission=youth.raw.get("admissionDate") or "N/A",
        level=youth.level or "N/A",
        diagnoses=youth.diagnoses or "TBD",
        period=format_period(bundle.period) or "N/A",
        total_points=format_points(stats["total"]),
        average_points=round(stats["average"]),
        point_entries=stats["count"],
        trend=_trend_label(bundle.behavior_points),
        ratings=format_ratings(bundle.daily_ratings),
        notes=format_notes(bundle.notes),
    )
    return system, user


def build_insights_prompt(bundle: CaseBundle) -> tuple[str, str]:
    youth = bundle.youth
    stats = behavior_stats(bundle.behavior_points)
    user = INSIGHTS_PROMPT.format(
        full_name=youth.full_name,
        count=stats["count"],
        average=f"{stats['average']:.1f}",
        median=format_points(stats.get("median", 0)),
        stdev=f"{stats.get('stdev', 0.0):.1f}",
        minimum=format_points(stats.get("min", 0)),
        maximum=format_points(stats.get("max", 0)),
        recent=", ".join(format_points(p) for p in stats.get("recent", [])) or "none",
        level=youth.level or "N/A",
        investment=format_points(youth.investment_level) if youth.investment_level is not None else "N/A",
    )
    return INSIGHTS_SYSTEM_PROMPT, user


def build_enhance_prompt(bundle: CaseBundle) -> tuple[str, str]:
    user = ENHANCE_PROMPT.format(
        report_type=bundle.report_type,
        full_name=bundle.youth.full_name,
        content=bundle.report_content,
    )
    return ENHANCE_SYSTEM_PROMPT, user


def build_summarize_note_prompt(bundle: CaseBundle) -> tuple[str, str]:
    user = SUMMARIZE_NOTE_PROMPT.format(max_length=bundle.max_length, content=bundle.note_text)
    return SUMMARIZE_NOTE_SYSTEM_PROMPT, user


def build_analyze_note_prompt(bundle: CaseBundle) -> tuple[str, str]:
    user = ANALYZE_NOTE_PROMPT.format(
        first_name=bundle.youth.first_name or "the youth",
        content=bundle.note_text,
    )
    return ANALYZE_NOTE_SYSTEM_PROMPT.format(), user


def build_categorize_incident_prompt(bundle: CaseBundle) -> tuple[str, str]:
    user = CATEGORIZE_INCIDENT_PROMPT.format(description=bundle.incident_text)
    return CATEGORIZE_INCIDENT_SYSTEM_PROMPT.format(), user


def build_analyze_incident_prompt(bundle: CaseBundle) -> tuple[str, str]:
    user = ANALYZE_INCIDENT_PROMPT.format(
        incident=_dump(bundle.incident),
        history=_dump(bundle.incident_history[:MAX_INCIDENT_HISTORY]),
    )
    return ANALYZE_INCIDENT_SYSTEM_PROMPT.format(), user


def build_analyze_behavior_prompt(bundle: CaseBundle) -> tuple[str, str]:
    points = bundle.behavior_points[-TREND_WINDOW_DAYS:]
    average = sum(points) / len(points) if points else 0.0
    user = ANALYZE_BEHAVIOR_PROMPT.format(
        count=len(points),
        points=", ".join(format_points(p) for p in points) or "none",
        average=f"{average:.1f}",
    )
    return ANALYZE_BEHAVIOR_SYSTEM_PROMPT.format(), user


def build_query_prompt(bundle: CaseBundle) -> tuple[str, str]:
    if bundle.is_text_expansion:
        return TEXT_EXPANSION_SYSTEM_PROMPT, bundle.question
    return QUERY_SYSTEM_PROMPT, QUERY_PROMPT.format(question=bundle.question, context=_dump(bundle.context))


def build_treatment_prompt(bundle: CaseBundle) -> tuple[str, str]:
    user = TREATMENT_PROMPT.format(
        youth=_dump(bundle.youth.raw),
        progress=_dump(bundle.progress_data),
        assessment=_dump(bundle.assessment_data),
    )
    return TREATMENT_SYSTEM_PROMPT.format(), user
