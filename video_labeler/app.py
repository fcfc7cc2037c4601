# video_labeler/app.py
from __future__ import annotations

import logging
import sys
from typing import Optional

from PyQt5.QtWidgets import QApplication, QFileDialog, QInputDialog, QMessageBox

from .main_window import ReviewWindow
from .persistence import AnnotationRepository, open_store, resolve_config

logger = logging.getLogger(__name__)


def choose_data_root(parent=None) -> Optional[str]:
    d = QFileDialog.getExistingDirectory(parent, "Select Data Root")
    return d or None


def choose_collection(parent=None) -> Optional[str]:
    text, ok = QInputDialog.getText(parent, "Collection", "Collection id:")
    text = (text or "").strip()
    return text if ok and text else None


def run_app(data_root: Optional[str] = None, collection_id: Optional[str] = None) -> int:
    app = QApplication(sys.argv)

    cfg = resolve_config(data_root)
    if cfg is None:
        QMessageBox.information(
            None,
            "Select Data Root",
            "Please choose the data root directory holding config.json and the annotation store.",
        )
        d = choose_data_root()
        if not d:
            return 1
        cfg = resolve_config(d)

    if not collection_id:
        collection_id = choose_collection()
        if not collection_id:
            return 1

    logger.info("Opening %s (%s store) for collection %s", cfg.data_root, cfg.store_backend, collection_id)
    repository = AnnotationRepository(open_store(cfg))

    win = ReviewWindow(repository, collection_id, config=cfg)
    win.show()
    return app.exec_()
