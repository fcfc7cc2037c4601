# video_labeler/normalizer.py
"""
Turn raw analysis output into AnnotationSegment lists.

The analysis service is asked for JSON matching RESPONSE_SCHEMA but in
practice returns anything from clean JSON to fenced JSON with prose around
it, JSON with the structured fields buried in the description, or plain
text. Parsing goes through these stages:

  1. strip code fences and surrounding prose (first "{" .. last "}")
  2. parse JSON and locate the segment list
  3. recover objects/actions/scene/confidence written into descriptions
  4. if there was no JSON at all, parse time-marked plain-text blocks
  5. resolve historical key aliases
  6. backfill missing segment timestamps from child entities

The stage-2/4 result is a Structured, Recovered or Empty outcome.
normalize_response() never raises.
"""
from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple, Union

from . import recovery
from .domain import (
    ENTITY_KIND_ACTION,
    ENTITY_KIND_OBJECT,
    AnnotationSegment,
    DetectedEntity,
    coerce_confidence,
    coerce_time,
    ordered_interval,
)

logger = logging.getLogger(__name__)


# -----------------------------
# Parse outcomes
# -----------------------------

@dataclass(frozen=True)
class Structured:
    """Segments read from a JSON answer."""
    segments: List[AnnotationSegment] = field(default_factory=list)
    kind: str = "structured"


@dataclass(frozen=True)
class Recovered:
    """Segments rebuilt from a plain-text answer."""
    segments: List[AnnotationSegment] = field(default_factory=list)
    kind: str = "recovered"


@dataclass(frozen=True)
class Empty:
    """Nothing usable in the answer."""
    reason: str = ""
    kind: str = "empty"

    @property
    def segments(self) -> List[AnnotationSegment]:
        return []


ParseOutcome = Union[Structured, Recovered, Empty]


# -----------------------------
# Stage 1: envelope
# -----------------------------

_FENCE_RE = re.compile(r"```[A-Za-z0-9_-]*")


def strip_envelope(text: str) -> Optional[str]:
    """
    Remove markdown fences and leading/trailing prose.

    Returns the JSON candidate (first "{" to last "}", or the whole text
    when it is a bare JSON array), or None when there is no candidate.
    """
    if not text:
        return None
    s = _FENCE_RE.sub("", text).strip()
    if s.startswith("[") and s.endswith("]"):
        return s
    start = s.find("{")
    end = s.rfind("}")
    if start < 0 or end <= start:
        return None
    return s[start:end + 1]


def _load_json(text: str) -> Optional[Any]:
    candidate = strip_envelope(text)
    if candidate is None:
        return None
    try:
        parsed = json.loads(candidate)
    except ValueError:
        logger.debug("JSON candidate did not parse (%d chars)", len(candidate))
        return None
    if not isinstance(parsed, (dict, list)):
        return None
    return parsed


# -----------------------------
# Stage 2: segment list resolution
# -----------------------------

_COLLECTION_KEYS = ("annotations", "segments")
_SINGLE_SCENE_KEYS = ("scene",)
_MULTI_SCENE_KEYS = ("scenes",)
_SEGMENT_FIELD_KEYS = (
    "detected_objects", "detected_actions", "objects", "actions", "description",
)


def resolve_segment_list(parsed: Any) -> List[Dict]:
    """Find the raw segment dicts inside a parsed JSON answer."""
    if isinstance(parsed, list):
        return [x for x in parsed if isinstance(x, dict)]
    if not isinstance(parsed, dict):
        return []

    for key in _COLLECTION_KEYS:
        value = parsed.get(key)
        if isinstance(value, list):
            return [x for x in value if isinstance(x, dict)]
    for key in _SINGLE_SCENE_KEYS:
        value = parsed.get(key)
        if isinstance(value, dict):
            return [value]
    for key in _MULTI_SCENE_KEYS:
        value = parsed.get(key)
        if isinstance(value, list):
            return [x for x in value if isinstance(x, dict)]
    if any(k in parsed for k in _SEGMENT_FIELD_KEYS):
        return [parsed]
    return []


# -----------------------------
# Stage 3/5/6: segment building
# -----------------------------

def _first_present(d: Dict, keys: Tuple[str, ...]) -> Any:
    for k in keys:
        v = d.get(k)
        if v is not None and not (isinstance(v, str) and not v.strip()):
            return v
    return None


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, (list, tuple)):
        return ", ".join(str(x).strip() for x in value if str(x).strip())
    if isinstance(value, dict):
        return ", ".join(f"{k}: {v}" for k, v in value.items())
    return str(value).strip()


def _raw_entity(raw: Any, kind: str) -> Optional[Tuple[DetectedEntity, bool]]:
    """Entity plus whether it carried its own timestamps."""
    if isinstance(raw, str):
        label = raw.strip()
        return (DetectedEntity(label=label), False) if label else None
    if not isinstance(raw, dict):
        return None

    label = _first_present(raw, ("label", kind, "name"))
    label = _text(label)
    if not label:
        return None

    st = coerce_time(_first_present(raw, ("start_time", "start_timestamp", "start", "timestamp")))
    et = coerce_time(_first_present(raw, ("end_time", "end_timestamp", "end", "timestamp")))
    timed = st is not None or et is not None
    if st is None:
        st = et if et is not None else 0.0
    if et is None:
        et = st
    st, et = ordered_interval(st, et)

    conf = coerce_confidence(_first_present(raw, ("confidence_score", "confidence", "score")))
    return DetectedEntity(label=label, confidence_score=conf, start_time=st, end_time=et), timed


def _raw_entities(values: Any, kind: str) -> List[Tuple[DetectedEntity, bool]]:
    if isinstance(values, (str, dict)):
        values = [values]
    if not isinstance(values, list):
        return []
    out: List[Tuple[DetectedEntity, bool]] = []
    for v in values:
        ent = _raw_entity(v, kind)
        if ent is not None:
            out.append(ent)
    return out


def build_segment(raw: Dict) -> AnnotationSegment:
    """One raw segment dict (JSON or recovered from text) -> AnnotationSegment."""
    description = _text(raw.get("description"))
    scene = _text(_first_present(raw, ("scene_classification", "scene_type", "classification")))
    conf_raw = _first_present(raw, ("confidence_score", "overall_confidence", "confidence"))
    objects = _raw_entities(_first_present(raw, ("detected_objects", "objects")), ENTITY_KIND_OBJECT)
    actions = _raw_entities(_first_present(raw, ("detected_actions", "actions")), ENTITY_KIND_ACTION)

    if recovery.has_structured_markers(description):
        if not objects:
            objects = _raw_entities(
                recovery.extract_entity_block(description, recovery.FIELD_OBJECTS), ENTITY_KIND_OBJECT
            )
        if not actions:
            actions = _raw_entities(
                recovery.extract_entity_block(description, recovery.FIELD_ACTIONS), ENTITY_KIND_ACTION
            )
        if not scene:
            scene = recovery.extract_field_value(description, recovery.FIELD_SCENE) or ""
        if coerce_confidence(conf_raw) is None:
            conf_raw = recovery.extract_number(
                recovery.extract_field_value(description, recovery.FIELD_OVERALL)
            )
            if conf_raw is None:
                conf_raw = recovery.extract_number(
                    recovery.extract_field_value(description, recovery.FIELD_CONFIDENCE)
                )
        description = recovery.truncate_description(description)

    st = coerce_time(_first_present(raw, ("start_time", "start_timestamp", "start", "timestamp")))
    et = coerce_time(_first_present(raw, ("end_time", "end_timestamp", "end", "timestamp")))

    if not st and not et:
        timed = [e for e, has_time in objects + actions if has_time]
        if timed:
            st = min(e.start_time for e in timed)
            et = max(e.end_time for e in timed)
    if st is None:
        st = et if et is not None else 0.0
    if et is None:
        et = st
    st, et = ordered_interval(st, et)

    # entities with no timestamps of their own span the whole segment
    for ent, has_time in objects + actions:
        if not has_time:
            ent.start_time = st
            ent.end_time = et

    return AnnotationSegment(
        start_time=st,
        end_time=et,
        description=description,
        scene_classification=scene,
        detected_objects=[e for e, _ in objects],
        detected_actions=[e for e, _ in actions],
        confidence_score=coerce_confidence(conf_raw),
    )


# -----------------------------
# Public entry points
# -----------------------------

def parse_response(data: Any) -> ParseOutcome:
    """Classify and parse one raw answer. May raise on truly unexpected input."""
    if data is None:
        return Empty("no data")

    if isinstance(data, (dict, list)):
        parsed: Any = data
    else:
        text = data if isinstance(data, str) else str(data)
        if not text.strip():
            return Empty("empty response")
        parsed = _load_json(text)
        if parsed is None:
            raws = recovery.parse_plain_text(text)
            segments = [build_segment(r) for r in raws]
            if segments:
                logger.debug("Recovered %d segment(s) from plain text", len(segments))
                return Recovered(segments)
            return Empty("response is neither JSON nor time-marked text")

    raws = resolve_segment_list(parsed)
    segments = [build_segment(r) for r in raws]
    if not segments:
        return Empty("no segment list found in JSON response")
    return Structured(segments)


def normalize_response(data: Any) -> List[AnnotationSegment]:
    """Best-effort normalization: worst case an empty list, never an exception."""
    try:
        return list(parse_response(data).segments)
    except Exception:
        logger.exception("Normalization failed; treating response as empty")
        return []


def response_payload(result: Any) -> Any:
    """The `data` member of an analysis call result (or the value itself)."""
    if isinstance(result, dict) and "data" in result:
        return result["data"]
    return result


# -----------------------------
# Suggested classes
# -----------------------------

_JSON_OBJECT_RE = re.compile(r"\{[\s\S]*\}")
_BULLET_PREFIX_RE = re.compile(r"^[\-\d.\s*]+")


def parse_suggested_classes(data: Any) -> List[str]:
    """
    Read the 'suggested_classes' list from a class-suggestion answer.

    Falls back to splitting the text on newlines/commas (list bullets
    stripped) when no JSON object can be read.
    """
    if isinstance(data, dict):
        classes = data.get("suggested_classes")
        if isinstance(classes, list):
            return [str(c).strip() for c in classes if str(c).strip()]
        return []

    text = data if isinstance(data, str) else ""
    m = _JSON_OBJECT_RE.search(text)
    if m is not None:
        try:
            parsed = json.loads(m.group(0))
        except ValueError:
            parsed = None
        if isinstance(parsed, dict):
            classes = parsed.get("suggested_classes") or []
            if isinstance(classes, list):
                return [str(c).strip() for c in classes if str(c).strip()]
            return []

    out: List[str] = []
    for part in re.split(r"[\n,]+", text):
        label = _BULLET_PREFIX_RE.sub("", part).strip()
        if label:
            out.append(label)
    return out
