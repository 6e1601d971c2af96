"""
Best-effort JSON recovery for structured model output.

Models asked for JSON still wrap it in markdown fences, cut it off at the token
limit, or leave trailing commas. extract_json() tries progressively more
aggressive repairs; parse_structured() never raises and yields {} instead.
"""
import json
import logging
import re

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```(?:json)?\s*([\s\S]*?)```")
_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")
_MISSING_COMMA_RE = re.compile(r'"\s*\n\s*"')


def _scan_strings(text: str):
    """Yield (char, in_string, is_quote) while honouring backslash escapes.

    For the quote characters that open or close a string, in_string is the
    state before the quote.
    """
    in_string = False
    i = 0
    while i < len(text):
        c = text[i]
        if in_string and c == "\\" and i + 1 < len(text):
            yield c, True, False
            yield text[i + 1], True, False
            i += 2
            continue
        if c == '"':
            yield c, in_string, True
            in_string = not in_string
        else:
            yield c, in_string, False
        i += 1


def _close_truncated(text: str) -> str:
    """Close an unterminated string plus any open brackets and braces."""
    text = re.sub(r",\s*$", "", text.rstrip())

    stack = []
    in_string = False
    for c, inside, is_quote in _scan_strings(text):
        if is_quote:
            in_string = not inside
            continue
        if inside:
            continue
        if c in "{[":
            stack.append(c)
        elif c == "}" and stack and stack[-1] == "{":
            stack.pop()
        elif c == "]" and stack and stack[-1] == "[":
            stack.pop()

    if in_string:
        text += '"'
    for opener in reversed(stack):
        text += "]" if opener == "[" else "}"
    return text


def _flatten_newlines_in_strings(text: str) -> str:
    """Literal newlines are invalid inside JSON strings; replace them with spaces."""
    out = []
    for c, inside, is_quote in _scan_strings(text):
        out.append(" " if inside and not is_quote and c == "\n" else c)
    return "".join(out)


def extract_json(text: str) -> dict:
    """Extract the first JSON object from model output.

    Raises:
        ValueError: no object could be recovered
    """
    fenced = _FENCE_RE.search(text)
    if fenced:
        text = fenced.group(1)

    start = text.find("{")
    end = text.rfind("}")
    if start == -1:
        raise ValueError("Model response contained no JSON object")
    text = text[start:end + 1] if end > start else text[start:]
    text = _flatten_newlines_in_strings(text)

    candidates = (
        ("direct", lambda t: t),
        ("comma fix", lambda t: _TRAILING_COMMA_RE.sub(r"\1", _MISSING_COMMA_RE.sub('",\n"', t))),
        ("truncation repair", lambda t: _TRAILING_COMMA_RE.sub(r"\1", _close_truncated(t))),
    )
    for label, repair in candidates:
        try:
            parsed = json.loads(repair(text))
        except json.JSONDecodeError as e:
            logger.debug(f"JSON parse failed ({label}): {e}")
            continue
        if isinstance(parsed, dict):
            if label != "direct":
                logger.info(f"Recovered structured output via {label}")
            return parsed

    raise ValueError("Failed to parse model response as a JSON object")


def parse_structured(text: str) -> dict:
    """Like extract_json() but returns {} instead of raising."""
    if not text or not text.strip():
        return {}
    try:
        return extract_json(text)
    except ValueError as e:
        logger.warning(f"Structured output unusable, returning empty object: {e}")
        return {}
