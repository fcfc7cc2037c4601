# video_labeler/export.py
from __future__ import annotations

import csv
import io
import logging
from typing import Dict, List, Mapping

from .domain import ENTITY_KINDS, AnnotationSet, utc_now_iso
from .persistence import _atomic_write_json, _atomic_write_text

logger = logging.getLogger(__name__)


EXPORT_FORMATS = ("json", "csv", "coco")

CSV_HEADER = [
    "video", "segment_index", "segment_start", "segment_end",
    "scene_classification", "description", "segment_confidence",
    "kind", "label", "confidence", "start_time", "end_time",
]


def _fmt_float(value) -> str:
    return "" if value is None else f"{float(value):.3f}"


def _single_line(text: str) -> str:
    return str(text or "").replace("\r", "").replace("\n", " ").strip()


# -----------------------------
# JSON
# -----------------------------

def to_json_payload(collection_id: str, annotation_sets: Mapping[str, AnnotationSet]) -> Dict:
    return {
        "collection_id": collection_id,
        "exported_at": utc_now_iso(),
        "videos": {key: aset.to_dict() for key, aset in annotation_sets.items()},
    }


# -----------------------------
# CSV
# -----------------------------

def to_csv_rows(annotation_sets: Mapping[str, AnnotationSet]) -> List[List[str]]:
    """
    One row per detected object/action, carrying its segment's context.
    Segments without any entity still get one row with empty entity columns.
    """
    rows: List[List[str]] = []
    for key, aset in annotation_sets.items():
        for i, seg in enumerate(aset.segments):
            context = [
                key,
                str(i),
                _fmt_float(seg.start_time),
                _fmt_float(seg.end_time),
                _single_line(seg.scene_classification),
                _single_line(seg.description),
                _fmt_float(seg.confidence_score),
            ]
            emitted = False
            for kind in ENTITY_KINDS:
                for ent in seg.entities(kind):
                    rows.append(context + [
                        kind,
                        ent.label,
                        _fmt_float(ent.confidence_score),
                        _fmt_float(ent.start_time),
                        _fmt_float(ent.end_time),
                    ])
                    emitted = True
            if not emitted:
                rows.append(context + ["", "", "", "", ""])
    return rows


def to_csv_text(annotation_sets: Mapping[str, AnnotationSet]) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    writer.writerow(CSV_HEADER)
    writer.writerows(to_csv_rows(annotation_sets))
    return buf.getvalue()


# -----------------------------
# COCO
# -----------------------------

def to_coco(annotation_sets: Mapping[str, AnnotationSet]) -> Dict:
    """
    COCO-style dataset: each video is an "image", each distinct label a
    category. Annotations carry a zero bbox placeholder and the entity's
    time interval in "attributes".
    """
    images: List[Dict] = []
    categories: Dict[str, Dict] = {}
    annotations: List[Dict] = []

    for image_id, (key, aset) in enumerate(annotation_sets.items(), start=1):
        images.append({
            "id": image_id,
            "file_name": key,
            "video_url": aset.video_url,
            "annotated_at": aset.annotated_at,
        })
        for seg_index, seg in enumerate(aset.segments):
            for kind in ENTITY_KINDS:
                for ent in seg.entities(kind):
                    cat = categories.get(ent.label)
                    if cat is None:
                        cat = {"id": len(categories) + 1, "name": ent.label, "supercategory": kind}
                        categories[ent.label] = cat
                    annotations.append({
                        "id": len(annotations) + 1,
                        "image_id": image_id,
                        "category_id": cat["id"],
                        "bbox": [0, 0, 0, 0],
                        "area": 0,
                        "iscrowd": 0,
                        "score": ent.confidence_score,
                        "attributes": {
                            "kind": kind,
                            "segment_index": seg_index,
                            "start_time": ent.start_time,
                            "end_time": ent.end_time,
                            "scene_classification": seg.scene_classification,
                        },
                    })

    return {
        "info": {"description": "video_labeler export", "date_created": utc_now_iso()},
        "images": images,
        "categories": list(categories.values()),
        "annotations": annotations,
    }


# -----------------------------
# Writer
# -----------------------------

def export_dataset(
    path: str,
    collection_id: str,
    annotation_sets: Mapping[str, AnnotationSet],
    fmt: str = "json",
) -> str:
    """Writes the dataset atomically to path. Returns the written path."""
    fmt = (fmt or "").lower()
    if fmt == "json":
        _atomic_write_json(path, to_json_payload(collection_id, annotation_sets))
    elif fmt == "csv":
        _atomic_write_text(path, to_csv_text(annotation_sets))
    elif fmt == "coco":
        _atomic_write_json(path, to_coco(annotation_sets))
    else:
        raise ValueError(f"unknown export format {fmt!r}; expected one of {', '.join(EXPORT_FORMATS)}")
    logger.info("Exported %d video(s) of %s as %s to %s", len(annotation_sets), collection_id, fmt, path)
    return path
