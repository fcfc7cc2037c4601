# video_labeler/timeutils.py
from __future__ import annotations

import math
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, List, Optional

if TYPE_CHECKING:
    from .domain import AnnotationSet


# -----------------------------
# Timecode parsing / formatting
# -----------------------------

def _timecode_part(part: str) -> Optional[int]:
    s = part.strip()
    if not s:
        return None
    try:
        f = float(s)
    except ValueError:
        return None
    if math.isnan(f) or math.isinf(f) or f < 0:
        return None
    # fractional seconds are truncated
    return int(f)


def parse_timestamp(value: Any) -> float:
    """
    "MM:SS" -> MM*60 + SS, "HH:MM:SS" -> HH*3600 + MM*60 + SS.

    Numbers are taken as seconds already. Anything empty or unparseable
    gives 0; this never raises.
    """
    if value is None or isinstance(value, bool):
        return 0
    if isinstance(value, (int, float)):
        f = float(value)
        if math.isnan(f) or math.isinf(f):
            return 0
        return max(0.0, f)
    if not isinstance(value, str):
        return 0

    parts = value.strip().split(":")
    nums = [_timecode_part(p) for p in parts]
    if any(n is None for n in nums):
        return 0
    if len(nums) == 2:
        return nums[0] * 60 + nums[1]
    if len(nums) == 3:
        return nums[0] * 3600 + nums[1] * 60 + nums[2]
    return 0


def format_time(seconds: Optional[float]) -> str:
    """Seconds -> "MM:SS" (minutes keep counting past an hour)."""
    if not seconds or seconds < 0:
        return "00:00"
    s = int(math.floor(float(seconds)))
    return f"{s // 60:02d}:{s % 60:02d}"


def format_duration(seconds: Optional[float]) -> str:
    """Seconds -> "M:SS" or "H:MM:SS"; "-" when unknown."""
    if seconds is None:
        return "-"
    s = max(0, int(math.floor(float(seconds))))
    hrs = s // 3600
    mins = (s % 3600) // 60
    secs = s % 60
    if hrs > 0:
        return f"{hrs}:{mins:02d}:{secs:02d}"
    return f"{mins}:{secs:02d}"


# -----------------------------
# Lane allocation for timeline rendering
# -----------------------------

# Gap required between two markers sharing a lane, so adjacent markers do not look merged.
LANE_BUFFER_SECONDS = 0.5
MAX_LANES = 10
LANE_HEIGHT_PX = 12


@dataclass(frozen=True)
class TimelineItem:
    """A flattened object/action marker (seconds)."""
    idx: int
    label: str
    kind: str               # "object" | "action"
    start: float
    end: float
    confidence: Optional[float] = None
    segment_index: Optional[int] = None


@dataclass(frozen=True)
class LaneAssignment:
    item: TimelineItem
    lane: int


def flatten_timeline_items(annotation_set: "AnnotationSet") -> List[TimelineItem]:
    """Objects then actions of every segment, in segment order."""
    out: List[TimelineItem] = []
    for seg_idx, seg in enumerate(annotation_set.segments):
        for kind, entities in (("object", seg.detected_objects), ("action", seg.detected_actions)):
            for ent in entities:
                out.append(TimelineItem(
                    idx=len(out),
                    label=ent.label,
                    kind=kind,
                    start=float(ent.start_time),
                    end=float(ent.end_time),
                    confidence=ent.confidence_score,
                    segment_index=seg_idx,
                ))
    return out


def allocate_lanes(
    items: List[TimelineItem],
    buffer_seconds: float = LANE_BUFFER_SECONDS,
    max_lanes: int = MAX_LANES,
) -> List[LaneAssignment]:
    """
    Greedy lane assignment:
      - Stable sort by start time
      - Place each item into the first lane whose last end + buffer <= item start
      - Only the first max_lanes lanes are searched; if none fits the item
        goes to lane 0 and overlaps (lane 0's end time is left as is)

    Returns assignments in placement (sorted) order.
    """
    if not items:
        return []

    norm: List[TimelineItem] = []
    for it in items:
        if it.end < it.start:
            it = TimelineItem(
                idx=it.idx, label=it.label, kind=it.kind, start=it.end, end=it.start,
                confidence=it.confidence, segment_index=it.segment_index,
            )
        norm.append(it)
    norm.sort(key=lambda x: x.start)

    lane_end: List[Optional[float]] = []
    out: List[LaneAssignment] = []
    for it in norm:
        lane = None
        for i in range(max(1, int(max_lanes))):
            if i >= len(lane_end):
                lane_end.append(None)
            last = lane_end[i]
            if last is None or it.start >= last + buffer_seconds:
                lane_end[i] = it.end
                lane = i
                break
        if lane is None:
            lane = 0
        out.append(LaneAssignment(item=it, lane=lane))
    return out


def lane_count(assignments: List[LaneAssignment]) -> int:
    if not assignments:
        return 0
    return max(a.lane for a in assignments) + 1


def group_lanes(assignments: List[LaneAssignment]) -> List[List[TimelineItem]]:
    lanes: List[List[TimelineItem]] = [[] for _ in range(lane_count(assignments))]
    for a in assignments:
        lanes[a.lane].append(a.item)
    return lanes


def compute_lanes_for_set(annotation_set: "AnnotationSet") -> List[LaneAssignment]:
    return allocate_lanes(flatten_timeline_items(annotation_set))
