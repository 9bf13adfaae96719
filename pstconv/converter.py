"""Convert an Outlook OST/PST file to EML or MBOX."""

from __future__ import annotations

import codecs
import logging
import time
from email.errors import MessageError
from pathlib import Path
from typing import Callable, Iterator, TypeVar

from .errors import (
    ConversionError,
    IllegalDirectoryError,
    SourceStructureError,
    StoreError,
    UnsupportedEncodingError,
)
from .mapper import map_message
from .models import ConversionResult, OutputFormat, SourceFolder, StoreConfig
from .pst_parser import PstFile
from .sanitizer import folder_name
from .store import READ_WRITE, Folder, create_store

logger = logging.getLogger(__name__)

T = TypeVar("T")

ProgressCallback = Callable[[str, int], None]


class PstConverter:
    """Walks a PST folder tree and writes every message into a target store.

    Failures are isolated: a bad message is logged and skipped, a malformed
    folder cursor abandons only that folder's remaining messages and a
    sub-folder that can't be created is skipped with its subtree.
    """

    def __init__(self, progress: ProgressCallback | None = None, source_opener=PstFile):
        self.progress = progress
        self.source_opener = source_opener

    def convert(
        self,
        input_file: str | Path,
        output_directory: str | Path,
        fmt: OutputFormat | None,
        encoding: str,
    ) -> ConversionResult:
        """Convert `input_file` into `output_directory`.

        Arguments are validated before anything is read or written.

        Raises:
            FileNotFoundError: input file missing or not a regular file.
            IllegalDirectoryError: output path exists and is not a directory.
            ValueError: fmt is None.
            UnsupportedEncodingError: encoding is not a known charset.
            SourceFormatError: the PST file can't be parsed.
            StoreError: the output store can't be created.
        """
        input_path = Path(input_file)
        output_path = Path(output_directory)
        if not input_path.exists():
            raise FileNotFoundError(f"No such file: {input_path.absolute()}.")
        if not input_path.is_file():
            raise FileNotFoundError(f"Not a file: {input_path.absolute()}.")
        if output_path.exists() and not output_path.is_dir():
            raise IllegalDirectoryError(f"Not a directory: {output_path.absolute()}.")
        if fmt is None:
            raise ValueError("format is None.")
        resolve_encoding(encoding)

        config = StoreConfig(encoding=encoding)
        start = time.monotonic()
        message_count = 0

        with self.source_opener(str(input_path)) as pst:
            root = pst.root_folder()
            store = create_store(output_path, fmt, config)
            try:
                store.connect()
                message_count = self.convert_folder(root, store.default_folder(), "", config.encoding)
            finally:
                store.close()

        duration_ms = int((time.monotonic() - start) * 1000)
        logger.info("Finished! Converted %d messages in %d ms.", message_count, duration_ms)
        return ConversionResult(message_count=message_count, duration_ms=duration_ms)

    def convert_folder(self, source: SourceFolder, target: Folder, path: str, encoding: str) -> int:
        """Convert one source folder and its subtree; returns the number of messages written."""
        message_count = 0

        if source.content_count > 0:
            for message in _until_malformed(source.children(), f"messages of {path or '/'}"):
                try:
                    target.append_messages(map_message(message, encoding))
                    message_count += 1
                except (ConversionError, MessageError, OSError, ValueError) as e:
                    logger.error(
                        "Failed to convert message %s in %s. %s", message.descriptor_id, path or "/", e
                    )

        for sub_folder in _until_malformed(source.sub_folders(), f"sub-folders of {path or '/'}"):
            name = folder_name(sub_folder.name)
            sub_path = f"{path}/{name}"
            target_child = target.get_folder(name)
            try:
                if not target_child.exists():
                    target_child.create()
                target_child.open(READ_WRITE)
            except StoreError as e:
                logger.warning("Failed to create sub folder %s. %s", sub_path, e)
                continue
            try:
                message_count += self.convert_folder(sub_folder, target_child, sub_path, encoding)
            finally:
                target_child.close()

        logger.debug("Converted %d messages under %s", message_count, path or "/")
        if self.progress is not None:
            self.progress(path or "/", message_count)
        return message_count


def resolve_encoding(encoding: str | None) -> str:
    """Canonical codec name; raises UnsupportedEncodingError for unknown charsets."""
    if not encoding:
        raise UnsupportedEncodingError(f"Unsupported encoding: {encoding!r}")
    try:
        return codecs.lookup(encoding).name
    except LookupError:
        raise UnsupportedEncodingError(f"Unsupported encoding: {encoding}") from None


def _until_malformed(items: Iterator[T], what: str) -> Iterator[T]:
    """Yield from `items`, stopping quietly at the first malformed node."""
    while True:
        try:
            item = next(items)
        except StopIteration:
            return
        except SourceStructureError as e:
            logger.error("Stopped reading %s. %s", what, e)
            return
        yield item
