# video_labeler/__init__.py
'''
video_labeler/
    __init__.py
    __main__.py
    cli.py                 # argparse entry point: ingest / show / export / labels / view

    app.py                 # QApplication + boot + data root / collection selection
    main_window.py         # review window layout + wiring

    domain.py              # dataclasses: DetectedEntity, AnnotationSegment, AnnotationSet, VideoItem, AppConfig
    errors.py              # exception hierarchy
    timeutils.py           # timestamp parsing/formatting, timeline lane allocation
    recovery.py            # regex helpers recovering fields from free text
    normalizer.py          # raw analysis answer -> segments (structured / recovered / empty)
    confidence.py          # overall confidence + ready / needs_review
    persistence.py         # key-value stores, annotation repository, config.json
    editing.py             # reviewer edits on one annotation set
    batch.py               # sequential batch annotation with per-item status
    export.py              # dataset export: JSON, CSV, COCO

    widgets/
      annotation_timeline.py # scene bands + entity lanes + playhead
      segments_table.py      # segment list + context menu
      segment_editor.py      # edit description / scene / tags of one segment
'''

from __future__ import annotations

__all__ = ["__version__", "run_cli"]

__version__ = "0.1.0"

from .cli import run_cli
