"""
Offline fallback narrative generator.

Produces usable report prose with no model at all: rule tables pick a template
for each report section from keywords found in the case notes, and the
templates are filled from the youth profile, behavior points and the most
recent note excerpts. Output is deterministic for a given bundle.

Every public generator runs its result through strip_markdown() so callers
always receive plain prose.
"""
import logging
import re
from collections import Counter
from dataclasses import dataclass
from typing import Callable, Optional, Union

from .case_notes import CaseBundle, EndpointKind
from .formatters import behavior_stats, compact, format_period, format_points, truncate_words

logger = logging.getLogger(__name__)

EXCERPT_CHARS = 160
MAX_EXCERPTS = 3

NARRATIVE_SUMMARY = "NARRATIVE SUMMARY"
PEER_AND_ADULT = "PEER AND ADULT INTERACTION"
INVESTMENT = "INVESTMENT LEVEL"
AUTHORITY = "DEALING WITH AUTHORITY"
STRENGTHS = "STRENGTHS"
DEFICIENCIES = "DEFICIENCIES"

SECTION_LABELS = (NARRATIVE_SUMMARY, PEER_AND_ADULT, INVESTMENT, AUTHORITY, STRENGTHS, DEFICIENCIES)

# --- Keyword tables ---

POSITIVE_KEYWORDS = (
    "improved", "progress", "cooperative", "respectful", "engaged", "motivated",
    "compliant", "calm", "participated", "stable", "successful", "positive",
    "goal met", "earned privilege", "accountable", "self-regulated",
)

CONCERNING_KEYWORDS = (
    "struggle", "resistant", "defiant", "argument", "agitated", "noncompliant",
    "refused", "verbal conflict", "disruptive", "impulsive", "regression",
    "inappropriate", "boundary issue", "power struggle",
)

CRITICAL_KEYWORDS = (
    "assault", "fight", "violent", "self-harm", "suicidal", "runaway",
    "elopement", "restraint", "threat", "weapon", "injury", "overdose",
)

INCIDENT_KEYWORDS = (
    "incident", "behavior report", "crisis", "escalation", "safety concern",
    "major violation",
)

CATEGORY_KEYWORDS = {
    "behavior": ("behavior", "conduct", "expectation", "rule", "compliance"),
    "therapy": ("therapy", "counseling", "session", "intervention", "coping"),
    "academics": ("school", "academic", "class", "teacher", "homework", "grade"),
    "family": ("family", "parent", "guardian", "visit", "phone call"),
    "medical": ("medical", "medication", "nurse", "health"),
    "incident": ("incident", "crisis", "escalation", "safety"),
}

DOMAIN_KEYWORDS = {
    "peer": {
        "positive": ("peer support", "got along", "cooperative with peers", "respectful to peers", "positive peer"),
        "negative": ("peer conflict", "argument with peer", "bullying", "peer altercation", "peer issue"),
    },
    "adult": {
        "positive": ("respectful to staff", "accepted redirection", "appropriate with staff", "followed staff direction"),
        "negative": ("staff conflict", "argued with staff", "refused staff direction", "disrespectful to staff"),
    },
    "investment": {
        "positive": ("engaged in treatment", "participated in group", "motivated", "goal-focused", "invested in program"),
        "negative": ("minimal effort", "unengaged", "refused participation", "avoidant", "did not participate"),
    },
    "authority": {
        "positive": ("followed rules", "accepted limits", "compliant with structure", "accepted consequences"),
        "negative": ("defiant", "rule violation", "challenged authority", "power struggle", "noncompliant"),
    },
}


def count_hits(text: str, keywords) -> int:
    return sum(1 for keyword in keywords if keyword in text)


@dataclass(frozen=True)
class Rule:
    """A template chosen when `predicate` holds for the lowercased note text."""
    label: str
    predicate: Callable[[str], bool]
    template: str

    def applies(self, text: str) -> bool:
        return self.predicate(text)


def mentions(*keyword_groups) -> Callable[[str], bool]:
    keywords = tuple(k for group in keyword_groups for k in group)
    return lambda text: count_hits(text, keywords) > 0


def always(_text: str) -> bool:
    return True


# Ranked: first matching rule wins, so conflict outranks cooperation
SECTION_RULES = {
    PEER_AND_ADULT: (
        Rule(
            "needs improvement",
            mentions(DOMAIN_KEYWORDS["peer"]["negative"], DOMAIN_KEYWORDS["adult"]["negative"], ("verbal conflict", "argument")),
            "**{name}** needs improvement in peer and adult interaction. Documentation describes conflict with "
            "peers or staff, and continued work on communication and conflict resolution is recommended.",
        ),
        Rule(
            "making progress",
            mentions(DOMAIN_KEYWORDS["peer"]["positive"], DOMAIN_KEYWORDS["adult"]["positive"], ("cooperative", "respectful")),
            "**{name}** is making progress in peer and adult interaction. Staff describe cooperative, respectful "
            "exchanges with peers and adults, and {name} is encouraged to keep building on these relationships.",
        ),
        Rule(
            "developing",
            always,
            "**{name}** is developing skills in peer and adult interaction. No strong pattern has been documented "
            "this period, and staff will continue to observe and support appropriate social engagement.",
        ),
    ),
    INVESTMENT: (
        Rule(
            "needs improvement",
            mentions(DOMAIN_KEYWORDS["investment"]["negative"], ("refused",)),
            "**{name}**'s investment level needs improvement. Notes reflect limited participation, and "
            "motivational and engagement strategies are recommended to increase buy-in to treatment.",
        ),
        Rule(
            "making progress",
            mentions(DOMAIN_KEYWORDS["investment"]["positive"], ("engaged", "participated")),
            "**{name}** is making progress in investment level, showing engagement in groups and treatment "
            "activities. Continued encouragement will help sustain this motivation.",
        ),
        Rule(
            "developing",
            always,
            "**{name}**'s investment in the program is developing. Staff will continue to encourage active "
            "participation in groups, school and treatment goals.",
        ),
    ),
    AUTHORITY: (
        Rule(
            "needs improvement",
            mentions(DOMAIN_KEYWORDS["authority"]["negative"], ("refused staff direction",)),
            "**{name}** needs improvement in dealing with authority. Documentation notes difficulty accepting "
            "limits and directives, and consistent expectations with clear consequences are recommended.",
        ),
        Rule(
            "making progress",
            mentions(DOMAIN_KEYWORDS["authority"]["positive"], ("compliant", "accepted redirection")),
            "**{name}** is making progress in dealing with authority, generally following rules and accepting "
            "redirection from staff.",
        ),
        Rule(
            "developing",
            always,
            "**{name}** is developing appropriate responses to authority and program structure. Staff will "
            "continue to reinforce rule-following and acceptance of limits.",
        ),
    ),
}


def select_rule(section: str, text: str) -> Rule:
    for rule in SECTION_RULES[section]:
        if rule.applies(text):
            return rule
    return SECTION_RULES[section][-1]


# --- Markdown stripping ---

_CODE_FENCE_RE = re.compile(r"```[\w-]*\n?")
_HEADING_RE = re.compile(r"^[ \t]{0,3}#{1,6}[ \t]*", re.MULTILINE)
_STAR_BULLET_RE = re.compile(r"^([ \t]*)[*+][ \t]+", re.MULTILINE)
_BOLD_RE = re.compile(r"(\*\*|__)(.+?)\1", re.DOTALL)
_ITALIC_RE = re.compile(r"(?<![\w*])([*_])(?!\s)(.+?)(?<!\s)\1(?![\w*])")
_STRIKE_RE = re.compile(r"~~(.+?)~~", re.DOTALL)
# Single stars are left alone ("5 * 3")
_STRAY_MARKUP_RE = re.compile(r"\*{2,}|`+")
_BLANK_LINES_RE = re.compile(r"\n{3,}")


def strip_markdown(text: str) -> str:
    """Reduce markdown to plain prose: emphasis, headings and code ticks go."""
    if not text:
        return ""
    text = text.replace("\r\n", "\n")
    text = _CODE_FENCE_RE.sub("", text)
    text = _HEADING_RE.sub("", text)
    text = _STAR_BULLET_RE.sub(r"\1- ", text)
    text = _BOLD_RE.sub(r"\2", text)
    text = _ITALIC_RE.sub(r"\2", text)
    text = _STRIKE_RE.sub(r"\1", text)
    text = _STRAY_MARKUP_RE.sub("", text)
    text = "\n".join(line.rstrip() for line in text.split("\n"))
    return _BLANK_LINES_RE.sub("\n\n", text).strip()


# --- Section builders ---

def _excerpts(bundle: CaseBundle) -> list[str]:
    return [
        truncate_words(note.text, EXCERPT_CHARS)
        for note in bundle.recent_notes(MAX_EXCERPTS)
    ]


def _points_sentence(bundle: CaseBundle) -> str:
    stats = behavior_stats(bundle.behavior_points)
    if not stats["count"]:
        return ""
    average = stats["average"]
    if average >= 12:
        reading = "consistent compliance with program expectations"
    else:
        reading = "ongoing development in behavioral consistency"
    return (
        f"Behavior point data shows {format_points(stats['total'])} total points across "
        f"{stats['count']} day(s), averaging {round(average)} points per day, which reflects {reading}."
    )


def _narrative_summary(bundle: CaseBundle, text: str) -> str:
    youth = bundle.youth
    period = format_period(bundle.period)
    period_clause = f" from {period}" if period else ""
    report = bundle.report_type or "summary"

    sentences = [
        f"This {report} report summarizes **{youth.full_name}**'s participation in residential "
        f"treatment programming during the reporting period{period_clause}."
    ]
    if bundle.notes:
        positive = count_hits(text, POSITIVE_KEYWORDS)
        concerning = count_hits(text, CONCERNING_KEYWORDS) + count_hits(text, CRITICAL_KEYWORDS)
        if concerning > positive:
            tone = "with documented concerns that warrant continued attention"
        elif positive > concerning:
            tone = "reflecting generally positive engagement"
        else:
            tone = "reflecting a mix of progress and areas for growth"
        sentences.append(f"Staff documented {len(bundle.notes)} case note(s) {tone}.")
        quoted = "; ".join(f'"{excerpt}"' for excerpt in _excerpts(bundle))
        sentences.append(f"Recent documentation notes: {quoted}.")
    else:
        sentences.append(
            f"Case note documentation for {youth.display_name} is ongoing, and no case notes "
            f"have been recorded for this period yet."
        )

    points = _points_sentence(bundle)
    if points:
        sentences.append(points)
    return " ".join(sentences)


def _strengths(bundle: CaseBundle, text: str) -> str:
    youth = bundle.youth
    strengths = youth.academic_strengths or "following daily routines and program structure"
    sentence = f"{youth.display_name} demonstrates strengths in {strengths}."
    if count_hits(text, POSITIVE_KEYWORDS):
        sentence += " Case notes also highlight positive behaviors that staff will continue to reinforce."
    return sentence


def _deficiencies(bundle: CaseBundle, text: str) -> str:
    youth = bundle.youth
    challenges = youth.academic_challenges or "behavioral consistency"
    sentences = [f"{youth.display_name} continues to work on {challenges}."]
    if youth.diagnoses:
        sentences.append(f"Treatment continues to address {youth.diagnoses} through individualized interventions.")
    if count_hits(text, CRITICAL_KEYWORDS):
        sentences.append("Notes include critical language that requires priority review by the treatment team.")
    return " ".join(sentences)


def report_narrative(bundle: CaseBundle) -> str:
    """The six-section narrative used for report summaries."""
    text = bundle.note_text.lower()
    name = bundle.youth.display_name

    sections = [
        (NARRATIVE_SUMMARY, _narrative_summary(bundle, text)),
        *(
            (section, select_rule(section, text).template.format(name=name))
            for section in (PEER_AND_ADULT, INVESTMENT, AUTHORITY)
        ),
        (STRENGTHS, _strengths(bundle, text)),
        (DEFICIENCIES, _deficiencies(bundle, text)),
    ]
    return "\n\n".join(f"**{label}:**\n{body}" for label, body in sections)


def behavioral_insights(bundle: CaseBundle) -> str:
    name = bundle.youth.display_name
    points = bundle.behavior_points
    if not points:
        return f"No behavioral data available for analysis of {name}."

    stats = behavior_stats(points)
    average = stats["average"]
    trend = stats["trend"]
    strength = stats["trend_strength"]

    analysis = (
        f"BEHAVIORAL ANALYSIS: {name} is averaging {round(average)} points per day over "
        f"{stats['count']} data points, with recent performance showing a {trend} trend"
    )
    if strength > 2:
        change = "increase" if trend == "improving" else "decrease"
        analysis += f" ({strength:.1f} point {change})"
    analysis += ". "

    if average >= 15:
        analysis += "This demonstrates excellent program compliance and readiness for increased privileges and level advancement."
    elif average >= 12:
        analysis += "This shows good progress with opportunities for continued improvement in consistency and engagement."
    else:
        analysis += "This indicates need for additional behavioral support, intervention strategies, and possibly adjusted treatment goals."

    if trend == "improving" and strength > 1:
        analysis += " Recent upward trend suggests effective intervention strategies and increased motivation."
    elif trend == "declining" and strength > 1:
        analysis += " Recent decline warrants immediate review of treatment plan and potential triggers."
    return analysis


def enhanced_report(bundle: CaseBundle) -> str:
    content = strip_markdown(bundle.report_content)
    if not content.strip():
        return report_narrative(bundle)
    paragraphs = [compact(p) for p in re.split(r"\n\s*\n", content)]
    heading = f"{bundle.report_type or 'summary'} report for {bundle.youth.full_name}:"
    return "\n\n".join([heading[:1].upper() + heading[1:], *(p for p in paragraphs if p)])


_SENTENCE_RE = re.compile(r"(?<=[.!?])\s+")


def note_summary(bundle: CaseBundle) -> str:
    """Leading sentences of the notes, capped at max_length words."""
    text = compact(strip_markdown(bundle.note_text))
    if not text:
        return f"No case note content was provided for {bundle.youth.full_name}."

    cap = max(1, bundle.max_length)
    kept: list[str] = []
    used = 0
    for sentence in _SENTENCE_RE.split(text):
        words = sentence.split()
        if used + len(words) > cap:
            if not kept:
                kept.append(" ".join(words[:cap]) + "...")
            break
        kept.append(sentence)
        used += len(words)
    return " ".join(kept)


def analyze_note(text: str, youth_name: Optional[str] = None) -> dict:
    """Keyword sentiment and risk analysis of one note."""
    lowered = compact(text).lower()
    positive = count_hits(lowered, POSITIVE_KEYWORDS)
    concerning = count_hits(lowered, CONCERNING_KEYWORDS)
    critical_terms = [k for k in CRITICAL_KEYWORDS if k in lowered]
    incidents = count_hits(lowered, INCIDENT_KEYWORDS)

    score = round(positive * 1.2 - concerning * 1.3 - len(critical_terms) * 2.5, 2)
    if critical_terms or score <= -3:
        sentiment = "critical"
    elif concerning or incidents or score < -0.5:
        sentiment = "concerning"
    elif positive or score > 0.75:
        sentiment = "positive"
    else:
        sentiment = "neutral"

    categories = [name for name, keywords in CATEGORY_KEYWORDS.items() if count_hits(lowered, keywords)]

    risk_indicators = [f"Mentions {term}" for term in critical_terms]
    if incidents:
        risk_indicators.append(f"{incidents} incident-related mention(s)")

    actions = {
        "critical": [
            "Notify the clinical supervisor and review the safety plan today",
            "Document follow-up in an incident report",
        ],
        "concerning": [
            "Review the note with the treatment team",
            "Monitor behavior closely over the next several shifts",
        ],
        "positive": ["Reinforce the positive behaviors documented"],
        "neutral": ["Continue routine monitoring"],
    }[sentiment]

    subject = youth_name or "The youth"
    return {
        "sentiment": sentiment,
        "sentimentScore": score,
        "categories": categories or ["general"],
        "riskIndicators": risk_indicators,
        "suggestedActions": actions,
        "summary": f"{subject}'s note reads as {sentiment} based on keyword analysis.",
    }


def _as_text_list(value) -> list[str]:
    if isinstance(value, (list, tuple)):
        return [str(v) for v in value if str(v).strip()]
    return [str(value)] if value else []


def render_analysis(result: dict) -> str:
    """Readable text for an analysis dict, from the model or from analyze_note()."""
    lines = [f"Sentiment: {result.get('sentiment') or 'unknown'}."]
    categories = _as_text_list(result.get("categories"))
    if categories:
        lines.append(f"Categories: {', '.join(categories)}.")
    risks = _as_text_list(result.get("riskIndicators"))
    lines.append(f"Risk indicators: {'; '.join(risks) or 'none identified'}.")
    actions = _as_text_list(result.get("suggestedActions"))
    if actions:
        lines.append(f"Suggested actions: {'; '.join(actions)}.")
    if result.get("summary"):
        lines.append(str(result["summary"]))
    return "\n".join(lines)


def note_analysis(bundle: CaseBundle) -> str:
    return render_analysis(analyze_note(bundle.note_text, bundle.youth.first_name or None))


_CAMEL_RE = re.compile(r"(?<=[a-z])(?=[A-Z])")


def _label(key) -> str:
    """camelCase key to a sentence-case label: nextWeekAverage -> Next week average."""
    spaced = _CAMEL_RE.sub(" ", str(key)).lower()
    return spaced[:1].upper() + spaced[1:]


def _field_text(value) -> str:
    if isinstance(value, dict):
        parts = ((_label(k), _field_text(v)) for k, v in value.items())
        return "; ".join(f"{label}: {text}" for label, text in parts if text)
    if isinstance(value, (list, tuple)):
        return "; ".join(t for t in (_field_text(v) for v in value) if t)
    return "" if value is None else str(value).strip()


def render_fields(result: dict) -> str:
    """One "Label: value" line per populated key of a structured result."""
    lines = []
    for key, value in result.items():
        text = _field_text(value)
        if text:
            lines.append(f"{_label(key)}: {text}")
    return "\n".join(lines)


def render_structured(kind: Union[EndpointKind, str], result: dict) -> str:
    if EndpointKind(kind) is EndpointKind.ANALYZE_NOTE:
        return render_analysis(result)
    return render_fields(result)


# --- Incidents ---

# Ranked: on a tie in hits the earlier type wins
INCIDENT_TYPES = {
    "self-harm": ("self-harm", "cutting", "suicidal", "overdose"),
    "physical aggression": ("assault", "fight", "punch", "kick", "struck", "altercation", "violent"),
    "elopement": ("runaway", "elopement", "awol", "left campus"),
    "contraband": ("contraband", "weapon", "drug", "vape", "lighter"),
    "property damage": ("property damage", "destroyed", "broke", "vandal"),
    "verbal aggression": ("threat", "cursing", "yelling", "verbal", "argument", "argued"),
    "noncompliance": ("refused", "defiant", "noncompliant", "rule violation"),
    "medical": ("injury", "medical", "nurse", "medication"),
}

TRIGGER_KEYWORDS = (
    "transition", "peer", "phone call", "visit", "bedtime", "school",
    "consequence", "redirection", "loss of privilege", "court",
)

MAX_TAGS = 5


def categorize_incident(description: str) -> dict:
    """Keyword categorization of one incident description."""
    lowered = compact(description).lower()
    matched = {
        name: [k for k in keywords if k in lowered]
        for name, keywords in INCIDENT_TYPES.items()
    }
    tags = [k for keywords in matched.values() for k in keywords][:MAX_TAGS]
    if not tags:
        return {
            "category": "other",
            "subcategory": "unspecified",
            "severity": "low",
            "tags": [],
            "confidence": 0.2,
        }

    category = max(matched, key=lambda name: len(matched[name]))
    sentiment = analyze_note(description)["sentiment"]
    critical_terms = count_hits(lowered, CRITICAL_KEYWORDS)
    if critical_terms >= 2 or category == "self-harm":
        severity = "critical"
    elif sentiment == "critical":
        severity = "high"
    elif sentiment == "concerning":
        severity = "medium"
    else:
        severity = "low"

    return {
        "category": category,
        "subcategory": matched[category][0],
        "severity": severity,
        "tags": tags,
        "confidence": round(min(0.9, 0.3 + 0.15 * len(tags)), 2),
    }


def _history_category(entry) -> str:
    if isinstance(entry, dict):
        named = entry.get("category") or entry.get("type") or entry.get("incidentType")
        if named:
            return str(named).strip().lower()
        entry = entry.get("description") or ""
    return categorize_incident(str(entry))["category"]


def analyze_incident(bundle: CaseBundle) -> dict:
    """Category, recurrence and trigger keywords for the current incident."""
    text = bundle.incident_text
    current = categorize_incident(text)
    history = Counter(_history_category(entry) for entry in bundle.incident_history)

    patterns = [f"{count} prior {name} incident(s)" for name, count in history.most_common(3)]
    recommendations = list(analyze_note(text)["suggestedActions"])
    if history.get(current["category"]):
        patterns.insert(0, f"Repeats a prior {current['category']} pattern")
        recommendations.append(f"Review the behavior plan for recurring {current['category']} incidents")

    lowered = compact(text).lower()
    return {
        "severity": current["severity"],
        "category": current["category"],
        "patterns": patterns,
        "triggers": [k for k in TRIGGER_KEYWORDS if k in lowered],
        "recommendations": recommendations,
    }


def incident_categorization(bundle: CaseBundle) -> str:
    heading = f"Incident categorization for {bundle.youth.full_name} (keyword match):"
    return heading + "\n" + render_fields(categorize_incident(bundle.incident_text))


def incident_analysis(bundle: CaseBundle) -> str:
    result = analyze_incident(bundle)
    lines = [
        f"Incident analysis for {bundle.youth.full_name}: {result['category']} incident, "
        f"{result['severity']} severity.",
        f"Patterns: {'; '.join(result['patterns']) or 'no prior incidents on record'}.",
        f"Triggers: {'; '.join(result['triggers']) or 'none identified in the description'}.",
        f"Recommendations: {'; '.join(result['recommendations'])}.",
    ]
    return "\n".join(lines)


# --- Behavior trends ---

TREND_WINDOW_DAYS = 30
POINT_EXPECTATION = 12


def behavior_trends(bundle: CaseBundle) -> dict:
    """Trend, projection and recommendations over the last 30 days of points."""
    stats = behavior_stats(bundle.behavior_points[-TREND_WINDOW_DAYS:])
    if not stats["count"]:
        return {
            "trends": {"overall": "stable", "shortTerm": "No behavior data", "longTerm": "No behavior data"},
            "predictions": {"nextWeekAverage": 0, "concernAreas": []},
            "recommendations": ["Begin recording daily behavior points"],
        }

    average = stats["average"]
    recent_average = stats["recent_average"]
    concerns = []
    if recent_average < POINT_EXPECTATION:
        concerns.append(f"Daily totals below the {POINT_EXPECTATION}-point expectation")
    if stats["trend"] == "declining":
        concerns.append("Downward movement in recent days")

    if average >= 15:
        recommendations = ["Consider increased privileges and level advancement"]
    elif average >= POINT_EXPECTATION:
        recommendations = ["Reinforce consistency to sustain current point earning"]
    else:
        recommendations = ["Add behavioral supports and review treatment goals"]
    if stats["trend"] == "declining":
        recommendations.append("Review recent triggers with the treatment team")

    return {
        "trends": {
            "overall": stats["trend"],
            "shortTerm": f"Last {min(7, stats['count'])} day(s) average {recent_average:.1f} points",
            "longTerm": f"{stats['count']}-day average {average:.1f} points",
        },
        "predictions": {"nextWeekAverage": round(recent_average, 1), "concernAreas": concerns},
        "recommendations": recommendations,
    }


def behavior_trend_analysis(bundle: CaseBundle) -> str:
    name = bundle.youth.display_name
    if not bundle.behavior_points:
        return f"No behavioral data available for trend analysis of {name}."
    return f"Behavior trend analysis for {name}:\n" + render_fields(behavior_trends(bundle))


# --- Query ---

def _as_sentence(text: str) -> str:
    text = compact(text)
    text = text[:1].upper() + text[1:]
    return text if text.endswith((".", "!", "?")) else text + "."


def query_answer(bundle: CaseBundle) -> str:
    """Text expansion echoes the draft as a sentence; questions get a notice."""
    if bundle.is_text_expansion:
        draft = compact(str(bundle.context.get("currentText") or "")) or compact(bundle.question)
        if draft:
            return _as_sentence(draft)

    name = bundle.youth.full_name
    question = compact(bundle.question)
    if not question:
        return f"No question about {name} was provided."
    return (
        f'AI assistance is unavailable, so the question about {name} could not be answered: "{question}" '
        f"Review the case record directly or try again later."
    )


# --- Treatment recommendations ---

def treatment_plan(bundle: CaseBundle) -> dict:
    """Priorities and recommendations from the profile, notes and points."""
    youth = bundle.youth
    stats = behavior_stats(bundle.behavior_points)
    sentiment = analyze_note(bundle.note_text)["sentiment"] if bundle.notes else None
    low_points = bool(stats["count"]) and stats["average"] < POINT_EXPECTATION

    priorities = []
    recommendations = []
    if youth.diagnoses:
        priorities.append({
            "area": "clinical",
            "priority": "high",
            "rationale": f"Ongoing treatment needs related to {youth.diagnoses}",
        })
        recommendations.append(f"Continue trauma-informed individual therapy addressing {youth.diagnoses}")
    if sentiment in ("critical", "concerning"):
        priorities.append({
            "area": "safety and behavior",
            "priority": "high" if sentiment == "critical" else "medium",
            "rationale": "Recent case notes contain concerning language",
        })
        recommendations.append("Review the safety plan and increase staff check-ins")
    if low_points:
        priorities.append({
            "area": "behavior",
            "priority": "medium",
            "rationale": f"Average of {round(stats['average'])} daily points is below expectation",
        })
        recommendations.append("Increase positive reinforcement tied to daily point goals")
    elif stats["count"]:
        recommendations.append("Maintain the current behavior plan and reinforce consistent point earning")
    if youth.academic_challenges:
        priorities.append({
            "area": "academics",
            "priority": "medium",
            "rationale": f"Documented challenges with {youth.academic_challenges}",
        })
        recommendations.append(f"Provide targeted academic support for {youth.academic_challenges}")
    if youth.academic_strengths:
        recommendations.append(f"Build on strengths in {youth.academic_strengths} through structured activities")
    recommendations.append("Review progress with the treatment team at the next staffing")

    return {
        "recommendations": recommendations,
        "priorities": priorities,
        "narrative": (
            f"Recommendations for {youth.full_name} cover {len(priorities)} priority area(s) "
            f"identified from the case record."
        ),
    }


def treatment_recommendations(bundle: CaseBundle) -> str:
    plan = treatment_plan(bundle)
    lines = [f"Treatment recommendations for {bundle.youth.full_name}:"]
    lines.extend(f"- {item}" for item in plan["recommendations"])
    if plan["priorities"]:
        ranked = "; ".join(f"{p['area']} ({p['priority']}): {p['rationale']}" for p in plan["priorities"])
        lines.append(f"Priorities: {ranked}.")
    return "\n".join(lines)


GENERATORS = {
    EndpointKind.SUMMARIZE_REPORT: report_narrative,
    EndpointKind.BEHAVIORAL_INSIGHTS: behavioral_insights,
    EndpointKind.ENHANCE_REPORT: enhanced_report,
    EndpointKind.SUMMARIZE_NOTE: note_summary,
    EndpointKind.ANALYZE_NOTE: note_analysis,
    EndpointKind.CATEGORIZE_INCIDENT: incident_categorization,
    EndpointKind.ANALYZE_INCIDENT: incident_analysis,
    EndpointKind.ANALYZE_BEHAVIOR: behavior_trend_analysis,
    EndpointKind.QUERY: query_answer,
    EndpointKind.TREATMENT_RECOMMENDATIONS: treatment_recommendations,
}


def generate(kind: Union[EndpointKind, str], bundle: CaseBundle) -> str:
    """Plain-prose fallback text for one endpoint kind."""
    kind = EndpointKind(kind)
    text = strip_markdown(GENERATORS[kind](bundle))
    logger.info(f"Generated fallback {kind.value} ({len(text)} chars)")
    return text
