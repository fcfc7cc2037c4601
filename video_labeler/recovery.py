# video_labeler/recovery.py
"""
Pattern-based recovery of annotation fields from free text.

Models regularly put structured data into prose ("Detected Objects:" blocks
inside a description, or a whole answer with no JSON at all). Everything
here is a pure function over strings so each pattern can be tested alone.
"""
from __future__ import annotations

import re
from typing import Dict, List, Optional


# -----------------------------
# Field markers
# -----------------------------

FIELD_OBJECTS = "objects"
FIELD_ACTIONS = "actions"
FIELD_SCENE = "scene"
FIELD_OVERALL = "overall"
FIELD_CONFIDENCE = "confidence"

_FIELD_NAMES: Dict[str, str] = {
    FIELD_OBJECTS: r"detected[ \t_]*objects|objects[ \t_]+detected",
    FIELD_ACTIONS: r"detected[ \t_]*actions|actions[ \t_]+detected",
    FIELD_SCENE: r"scene[ \t_]*classification",
    FIELD_OVERALL: r"overall[ \t_]*confidence(?:[ \t_]*score)?",
    FIELD_CONFIDENCE: r"confidence(?:[ \t_]*score)?",
}

# list fields may announce themselves without a colon ("Detected objects" on its own line)
_LIST_FIELDS = (FIELD_OBJECTS, FIELD_ACTIONS)

_LEAD = r"^[ \t]*(?:[-*#>]+[ \t]*)?[*_`]*[ \t]*"
_TRAIL = r"[ \t]*[*_`]*[ \t]*"


def _marker_re(field: str) -> "re.Pattern":
    if field in _LIST_FIELDS:
        tail = r"(?:[:=]|[ \t]*$)"
    else:
        tail = r"[:=]"
    return re.compile(
        _LEAD + r"(?:" + _FIELD_NAMES[field] + r")" + _TRAIL + tail + r"[*_`]*",
        re.IGNORECASE | re.MULTILINE,
    )


_MARKERS: Dict[str, "re.Pattern"] = {name: _marker_re(name) for name in _FIELD_NAMES}

_BULLET_RE = re.compile(r"^[ \t]*(?:[-*•]|\d+[.)])[ \t]+(?P<body>.+?)[ \t]*$")
_PAREN_RE = re.compile(r"\((?P<attrs>[^()]*)\)[ \t]*$")
_NUMBER_RE = re.compile(r"-?\d+(?:\.\d+)?%?")
_RANGE_RE = re.compile(
    r"(?P<a>\d{1,2}(?::\d{1,2}){1,2}(?:\.\d+)?)\s*(?:-|–|—|to)\s*(?P<b>\d{1,2}(?::\d{1,2}){1,2}(?:\.\d+)?)",
    re.IGNORECASE,
)
_TIMECODE_RE = re.compile(r"\d{1,2}(?::\d{1,2}){1,2}(?:\.\d+)?")


def find_marker(text: str, field: str) -> Optional["re.Match"]:
    if not text:
        return None
    return _MARKERS[field].search(text)


def first_marker_offset(text: str) -> Optional[int]:
    """Offset of the earliest structured-field marker in text, if any."""
    best: Optional[int] = None
    for name in _FIELD_NAMES:
        m = find_marker(text, name)
        if m is not None and (best is None or m.start() < best):
            best = m.start()
    return best


def has_structured_markers(text: str) -> bool:
    return first_marker_offset(text) is not None


def truncate_description(text: str) -> str:
    """Keep only the prose before the first structured-field marker."""
    if not text:
        return ""
    off = first_marker_offset(text)
    if off is None:
        return text.strip()
    return text[:off].rstrip(" \t\r\n*_-#").strip()


def _clean_value(s: str) -> str:
    return s.strip().strip("*_`").strip().strip("\"'").strip()


def extract_field_value(text: str, field: str) -> Optional[str]:
    """Value of a `key: value` line (scene / overall / confidence)."""
    m = find_marker(text, field)
    if m is None:
        return None
    line_end = text.find("\n", m.end())
    raw = text[m.end():] if line_end < 0 else text[m.end():line_end]
    value = _clean_value(raw)
    return value or None


def extract_number(text: Optional[str]) -> Optional[str]:
    if not text:
        return None
    m = _NUMBER_RE.search(text)
    return m.group(0) if m else None


# -----------------------------
# Entity lines
# -----------------------------

_ATTR_KEYS = {
    "confidence": "confidence_score",
    "confidence_score": "confidence_score",
    "score": "confidence_score",
    "conf": "confidence_score",
    "start": "start_timestamp",
    "start_time": "start_timestamp",
    "start_timestamp": "start_timestamp",
    "end": "end_timestamp",
    "end_time": "end_timestamp",
    "end_timestamp": "end_timestamp",
}


def _parse_attrs(attrs: str, out: Dict) -> None:
    for chunk in re.split(r"[,;]", attrs):
        chunk = chunk.strip()
        if not chunk:
            continue
        rng = _RANGE_RE.search(chunk)
        if ":" in chunk or "=" in chunk:
            key, _, value = chunk.partition("=") if "=" in chunk else chunk.partition(":")
            key_n = re.sub(r"[\s-]+", "_", key.strip().lower())
            target = _ATTR_KEYS.get(key_n)
            if target is not None:
                out[target] = _clean_value(value)
                continue
            if key_n in ("time", "timestamp", "timestamps") and rng:
                out["start_timestamp"] = rng.group("a")
                out["end_timestamp"] = rng.group("b")
                continue
        if rng:
            out["start_timestamp"] = rng.group("a")
            out["end_timestamp"] = rng.group("b")
        elif "confidence_score" not in out and _NUMBER_RE.fullmatch(chunk):
            out["confidence_score"] = chunk


def parse_entity_line(line: str) -> Optional[Dict]:
    """
    "- person (confidence_score: 0.92, start: 00:01, end: 00:04)" ->
    {"label": "person", "confidence_score": "0.92", "start_timestamp": "00:01", "end_timestamp": "00:04"}

    The parenthesised part is optional. Non-bullet lines give None.
    """
    m = _BULLET_RE.match(line or "")
    if m is None:
        return None
    body = m.group("body")
    out: Dict = {}
    pm = _PAREN_RE.search(body)
    if pm is not None:
        _parse_attrs(pm.group("attrs"), out)
        body = body[:pm.start()]
    label = _clean_value(body).rstrip(":").strip()
    if not label:
        return None
    out["label"] = label
    return out


def extract_entity_block(text: str, field: str) -> List[Dict]:
    """
    Entries listed under a "Detected Objects:" / "Detected Actions:" marker.

    Entries are dash (or number) bulleted lines following the marker; the
    block ends at the first non-bullet line after an entry or at another
    marker. An inline comma list on the marker line is accepted as well.
    """
    m = find_marker(text, field)
    if m is None:
        return []

    line_end = text.find("\n", m.end())
    inline = _clean_value(text[m.end():] if line_end < 0 else text[m.end():line_end])
    rest = "" if line_end < 0 else text[line_end + 1:]

    out: List[Dict] = []
    started = False
    for line in rest.splitlines():
        if not line.strip():
            if started:
                break
            continue
        if first_marker_offset(line) == 0 and parse_entity_line(line) is None:
            break
        ent = parse_entity_line(line)
        if ent is None:
            break
        out.append(ent)
        started = True

    if not out and inline and inline.lower() not in ("none", "n/a", "-"):
        for part in inline.split(","):
            ent = parse_entity_line(f"- {part.strip()}")
            if ent is not None:
                out.append(ent)
    return out


# -----------------------------
# Plain-text answers
# -----------------------------

_TIME_MARKER_RE = re.compile(
    _LEAD + r"(?P<key>start(?:[ \t_]*time)?|timestamp|time)" + _TRAIL + r"[:=][*_`]*",
    re.IGNORECASE,
)
_END_MARKER_RE = re.compile(
    _LEAD + r"end(?:[ \t_]*time)?" + _TRAIL + r"[:=][*_`]*",
    re.IGNORECASE,
)
_DESCRIPTION_RE = re.compile(
    _LEAD + r"(?:description|summary)" + _TRAIL + r"[:=][*_`]*",
    re.IGNORECASE,
)


def split_time_blocks(text: str) -> List[str]:
    """
    Split a free-text answer into blocks, each starting at a time-marker line
    ("Start:", "Timestamp:", "Time:"). Text before the first marker is dropped.
    """
    blocks: List[List[str]] = []
    for line in (text or "").splitlines():
        if _TIME_MARKER_RE.match(line):
            blocks.append([line])
        elif blocks:
            blocks[-1].append(line)
    return ["\n".join(b).strip() for b in blocks]


def _rest_of_line(line: str, m: "re.Match") -> str:
    return _clean_value(line[m.end():])


def parse_time_block(block: str) -> Optional[Dict]:
    """
    One plain-text block -> a raw segment dict using the same keys as a
    JSON answer. Returns None when the block has no start marker.
    """
    lines = block.splitlines()
    if not lines:
        return None
    head = _TIME_MARKER_RE.match(lines[0])
    if head is None:
        return None

    raw: Dict = {}
    value = _rest_of_line(lines[0], head)
    rng = _RANGE_RE.search(value)
    if rng:
        raw["start_timestamp"] = rng.group("a")
        raw["end_timestamp"] = rng.group("b")
    else:
        tc = _TIMECODE_RE.search(value)
        raw["start_timestamp"] = tc.group(0) if tc else value

    desc_lines: List[str] = []
    in_description = False
    skip_bullets = False
    for line in lines[1:]:
        if not line.strip():
            in_description = False
            skip_bullets = False
            continue
        em = _END_MARKER_RE.match(line)
        if em:
            tc = _TIMECODE_RE.search(line[em.end():])
            if tc:
                raw["end_timestamp"] = tc.group(0)
            in_description = False
            continue
        dm = _DESCRIPTION_RE.match(line)
        if dm:
            first = _rest_of_line(line, dm)
            if first:
                desc_lines.append(first)
            in_description = True
            continue
        if first_marker_offset(line) == 0:
            in_description = False
            skip_bullets = True
            continue
        if skip_bullets and parse_entity_line(line) is not None:
            continue
        if in_description or not desc_lines:
            desc_lines.append(line.strip())
            in_description = True

    raw["description"] = " ".join(x for x in desc_lines if x).strip()

    scene = extract_field_value(block, FIELD_SCENE)
    if scene:
        raw["scene_classification"] = scene
    raw["detected_objects"] = extract_entity_block(block, FIELD_OBJECTS)
    raw["detected_actions"] = extract_entity_block(block, FIELD_ACTIONS)

    conf = extract_number(extract_field_value(block, FIELD_OVERALL))
    if conf is None:
        conf = extract_number(extract_field_value(block, FIELD_CONFIDENCE))
    if conf is not None:
        raw["overall_confidence"] = conf
    return raw


def parse_plain_text(text: str) -> List[Dict]:
    out: List[Dict] = []
    for block in split_time_blocks(text):
        raw = parse_time_block(block)
        if raw is not None:
            out.append(raw)
    return out
