"""Command-line entry points for the video labeler."""
from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from .batch import SUGGESTED_CLASSES_PROMPT, BatchAnnotator, TaskState
from .confidence import classify_readiness
from .domain import ENTITY_KIND_ACTION, STATUS_PENDING, AppConfig, VideoItem, label_color
from .export import EXPORT_FORMATS, export_dataset
from .normalizer import parse_suggested_classes
from .persistence import (
    DATA_ROOT_ENV,
    AnnotationRepository,
    open_store,
    resolve_config,
    save_config,
)
from .timeutils import compute_lanes_for_set, format_duration, format_time, lane_count

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='video-labeler',
        description='Ingest, inspect, review and export model-produced video annotations',
    )
    parser.add_argument(
        '--data-root',
        default=None,
        help=f'Directory holding config.json and the annotation store (defaults to ${DATA_ROOT_ENV})',
    )
    parser.add_argument(
        '--store',
        dest='store_backend',
        choices=('json', 'qsettings'),
        default=None,
        help='Override the configured annotation store backend',
    )
    parser.add_argument(
        '--log-level',
        default='INFO',
        help='Logging level (DEBUG, INFO, WARNING, ...)',
    )
    sub = parser.add_subparsers(dest='command', required=True)

    ingest = sub.add_parser('ingest', help='Normalize raw analysis responses and store them')
    ingest.add_argument('collection', help='Collection id')
    ingest.add_argument('responses', nargs='+', type=Path, help='Raw response files, one per video')
    ingest.add_argument(
        '--item',
        dest='items',
        action='append',
        help='Item key for the matching response file (defaults to the file stem)',
    )
    ingest.add_argument('--video-url', default=None, help='Playback URL stored with a single ingested video')

    show = sub.add_parser('show', help='Print the stored annotations of one video')
    show.add_argument('collection', help='Collection id')
    show.add_argument('item', nargs='?', help='Item key (lists the collection when omitted)')

    export = sub.add_parser('export', help='Export a collection as a dataset file')
    export.add_argument('collection', help='Collection id')
    export.add_argument('output', type=Path, help='Destination file')
    export.add_argument('--format', dest='fmt', choices=EXPORT_FORMATS, default='json')

    labels = sub.add_parser('labels', help='Show or edit the label taxonomy of a collection')
    labels.add_argument('collection', help='Collection id')
    labels.add_argument('--add', action='append', default=[], help='Label to add')
    labels.add_argument('--remove', action='append', default=[], help='Label to remove')
    labels.add_argument(
        '--from-response',
        type=Path,
        default=None,
        help='Add the labels of a class-suggestion response file',
    )
    labels.add_argument(
        '--prompt',
        action='store_true',
        help='Print the class-suggestion prompt for the analysis service and exit',
    )

    view = sub.add_parser('view', help='Open the review window')
    view.add_argument('collection', nargs='?', help='Collection id')

    return parser


def run_cli(argv: Sequence[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    logging.basicConfig(level=getattr(logging, str(args.log_level).upper(), logging.INFO))

    if args.command == 'view':
        # Qt widgets only load for the GUI
        from .app import run_app

        return run_app(data_root=args.data_root, collection_id=args.collection)

    cfg = resolve_config(args.data_root)
    if cfg is None:
        parser.error(f'no data root: pass --data-root or set ${DATA_ROOT_ENV}')
    if args.store_backend:
        cfg.store_backend = args.store_backend
    logger.debug('Config: %s', cfg)

    if args.command == 'labels':
        return _cmd_labels(cfg, args)

    repository = AnnotationRepository(open_store(cfg))
    if args.command == 'ingest':
        return _cmd_ingest(repository, args)
    if args.command == 'show':
        return _cmd_show(repository, args)
    if args.command == 'export':
        return _cmd_export(repository, args)
    parser.error(f'unknown command {args.command!r}')
    return 2


def _read_response(path: Path) -> str:
    try:
        return path.read_text(encoding='utf-8')
    except OSError as exc:
        raise SystemExit(f'Cannot read response file {path}: {exc}') from exc


def _ingest_items(responses: List[Path], items: Optional[List[str]], video_url: Optional[str]) -> List[VideoItem]:
    if items and len(items) != len(responses):
        raise SystemExit(f'Got {len(items)} --item value(s) for {len(responses)} response file(s).')
    if video_url and len(responses) > 1:
        raise SystemExit('--video-url only applies when ingesting a single response.')
    keys = items or [p.stem for p in responses]
    return [
        VideoItem(video_id=str(path), filename=key, video_url=video_url)
        for path, key in zip(responses, keys)
    ]


def _file_analyzer(video_id: str, prompt: str, schema: Optional[Dict]) -> str:
    # OSError here fails just this item
    return Path(video_id).read_text(encoding='utf-8')


def _cmd_ingest(repository: AnnotationRepository, args: argparse.Namespace) -> int:
    items = _ingest_items(args.responses, args.items, args.video_url)
    annotator = BatchAnnotator(_file_analyzer, repository, args.collection)
    tasks = annotator.run(items)

    failed = 0
    for task in tasks:
        if task.state == TaskState.DONE:
            print(
                f'{task.item.item_key}: {task.segment_count} segment(s), '
                f'confidence {task.overall_confidence * 100:.0f}% -> {task.status}'
                + ('' if task.persisted else ' (NOT SAVED)')
            )
            if not task.persisted:
                failed += 1
        else:
            failed += 1
            print(f'{task.item.item_key}: failed ({task.error})')
    return 1 if failed else 0


def _cmd_show(repository: AnnotationRepository, args: argparse.Namespace) -> int:
    if not args.item:
        statuses = repository.get_statuses(args.collection)
        for key in repository.list_items(args.collection):
            print(f'{key}\t{statuses.get(key, STATUS_PENDING)}')
        return 0

    aset = repository.get(args.collection, args.item)
    if aset is None:
        print(f'No annotations stored for {args.collection}/{args.item}', file=sys.stderr)
        return 1

    print(
        f'{args.item}: {len(aset.segments)} segment(s), '
        f'overall confidence {aset.overall_confidence * 100:.0f}% '
        f'({classify_readiness(aset.overall_confidence)}), annotated {aset.annotated_at}'
    )
    for i, seg in enumerate(aset.segments):
        conf = '-' if seg.confidence_score is None else f'{seg.confidence_score * 100:.0f}%'
        print(
            f'[{i}] {format_time(seg.start_time)}-{format_time(seg.end_time)} '
            f'({format_duration(seg.duration)}) conf {conf} scene={seg.scene_classification or "-"}'
        )
        if seg.description:
            print(f'    {seg.description}')

    assignments = compute_lanes_for_set(aset)
    if assignments:
        print(f'Timeline: {len(assignments)} marker(s) on {lane_count(assignments)} lane(s)')
        for a in assignments:
            kind = 'action' if a.item.kind == ENTITY_KIND_ACTION else 'object'
            print(
                f'  lane {a.lane}: {format_time(a.item.start)}-{format_time(a.item.end)} '
                f'{kind} {a.item.label} [{label_color(a.item.label)}]'
            )
    return 0


def _cmd_export(repository: AnnotationRepository, args: argparse.Namespace) -> int:
    sets = repository.load_all(args.collection)
    if not sets:
        print(f'Collection {args.collection} has no stored annotations', file=sys.stderr)
        return 1
    path = export_dataset(os.fspath(args.output), args.collection, sets, fmt=args.fmt)
    print(f'Wrote {len(sets)} video(s) to {path}')
    return 0


def _cmd_labels(cfg: AppConfig, args: argparse.Namespace) -> int:
    if args.prompt:
        print(SUGGESTED_CLASSES_PROMPT)
        return 0

    to_add: List[str] = []
    if args.from_response is not None:
        to_add.extend(parse_suggested_classes(_read_response(args.from_response)))
    to_add.extend(args.add)

    for label in to_add:
        cfg.add_label(args.collection, label)
    for label in args.remove:
        cfg.remove_label(args.collection, label)
    if to_add or args.remove:
        save_config(cfg)
        logger.info('Saved %d label(s) for %s', len(cfg.labels_for(args.collection)), args.collection)

    for label in cfg.labels_for(args.collection):
        print(label)
    return 0
