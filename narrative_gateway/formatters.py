"""
Text formatting utilities shared by prompts and the fallback generator.

Converts case bundle pieces (notes, behavior points, ratings, periods) into
short human-readable text.
"""
import math
import re

_WHITESPACE_RE = re.compile(r"\s+")


def compact(text: str) -> str:
    return _WHITESPACE_RE.sub(" ", text or "").strip()


def truncate_words(text: str, max_chars: int = 160) -> str:
    """Cap text at max_chars, preferring a word boundary, with an ellipsis."""
    text = compact(text)
    if len(text) <= max_chars:
        return text

    cutoff = text.rfind(" ", 0, max_chars + 1)
    if cutoff < int(max_chars * 0.6):
        cutoff = max_chars
    return text[:cutoff].rstrip(" ,;:") + "..."


def format_period(period: dict) -> str:
    if not period:
        return ""
    start = period.get("startDate") or period.get("from")
    end = period.get("endDate") or period.get("to")
    if start and end:
        return f"{start} to {end}"
    return str(period.get("label") or start or end or "")


def behavior_stats(points: list) -> dict:
    """Summary statistics over daily behavior point totals."""
    if not points:
        return {"count": 0, "total": 0, "average": 0.0}

    count = len(points)
    total = sum(points)
    average = total / count
    ordered = sorted(points)
    variance = sum((p - average) ** 2 for p in points) / count
    recent = points[-7:]
    recent_average = sum(recent) / len(recent)

    if recent_average > average:
        trend = "improving"
    elif recent_average < average:
        trend = "declining"
    else:
        trend = "stable"

    return {
        "count": count,
        "total": total,
        "average": average,
        "median": ordered[count // 2],
        "stdev": math.sqrt(variance),
        "min": ordered[0],
        "max": ordered[-1],
        "recent": points[-5:],
        "recent_average": recent_average,
        "trend": trend,
        "trend_strength": abs(recent_average - average),
    }


def format_points(value: float) -> str:
    """12.0 -> "12", 12.5 -> "12.5"."""
    return str(int(value)) if float(value).is_integer() else f"{value:.1f}"


def format_notes(notes: list, limit: int = 50) -> str:
    """Bullet list of decoded notes for prompts."""
    lines = []
    for note in notes[:limit]:
        header = " ".join(p for p in (note.date, f"[{note.category}]" if note.category else "") if p)
        body = compact(note.text)
        lines.append(f"- {header} {body}" if header else f"- {body}")
    return "\n".join(lines) if lines else "No case notes provided"


def format_ratings(ratings: list) -> str:
    """Average each numeric rating domain across daily ratings."""
    totals: dict = {}
    counts: dict = {}
    for rating in ratings:
        if not isinstance(rating, dict):
            continue
        for key, value in rating.items():
            if isinstance(value, bool) or not isinstance(value, (int, float)):
                continue
            totals[key] = totals.get(key, 0) + value
            counts[key] = counts.get(key, 0) + 1
    if not totals:
        return "No daily ratings provided"
    return ", ".join(f"{key}={totals[key] / counts[key]:.1f}" for key in sorted(totals))
