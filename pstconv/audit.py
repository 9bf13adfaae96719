"""Read back descriptor ids from a converted store."""

from __future__ import annotations

import logging
from pathlib import Path

from .errors import StoreError
from .models import OutputFormat, StoreConfig
from .store import READ_ONLY, Folder, create_store, descriptor_id_of

logger = logging.getLogger(__name__)


def extract_descriptor_ids(directory: str | Path, fmt: OutputFormat, encoding: str = "utf-8") -> list[int]:
    """Collect the X-Outlook-Descriptor-Id of every message under `directory`.

    Returns unique ids in the order they were first seen. A folder that fails
    to open or list is logged and skipped.
    """
    store = create_store(directory, fmt, StoreConfig(encoding=encoding))
    ids: dict[int, None] = {}
    store.connect()
    try:
        _collect(store.default_folder(), ids)
    finally:
        store.close()
    return list(ids)


def _collect(folder: Folder, ids: dict[int, None]) -> None:
    try:
        folder.open(READ_ONLY)
    except StoreError as e:
        logger.error("Failed to open folder %s. %s", folder.path, e)
        return

    try:
        try:
            children = folder.list()
        except OSError as e:
            logger.error("Failed to list folder %s. %s", folder.path, e)
            children = []
        for child in children:
            _collect(child, ids)

        if folder.holds_messages:
            try:
                found = [descriptor_id_of(message) for message in folder.messages()]
            except StoreError as e:
                logger.error("Failed to read messages of folder %s. %s", folder.path, e)
                found = []
            for value in found:
                _add_id(value, ids)
    finally:
        try:
            folder.close()
        except StoreError as e:
            logger.warning("Failed to close folder %s. %s", folder.path, e)


def _add_id(value: str, ids: dict[int, None]) -> None:
    try:
        ids.setdefault(int(value), None)
    except ValueError:
        logger.warning("Ignoring malformed descriptor id %r", value)
